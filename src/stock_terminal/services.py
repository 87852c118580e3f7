"""Price, statement and valuation orchestration.

Each call resolves the ticker against the stock catalog, issues its
TwelveData requests concurrently, and isolates failures per request: one
source failing never cancels or fails the others.

  get_price()       → live quote; upstream failure propagates (TwelveDataError)
  get_financials()  → merged multi-year statements, cached for cache_ttl_days
                      only when at least one year was produced
  get_valuation()   → fair-value multiples; failed sources degrade to {}

All collaborators (client, catalog, cache) default to the module singletons
and can be injected for tests.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable

from stock_terminal.cache import StatementCache, get_statement_cache
from stock_terminal.catalog import StockCatalog, get_catalog
from stock_terminal.config import get_config
from stock_terminal.financials import _utc_now_iso, merge_financials, to_number
from stock_terminal.models import FinancialsResult, MarketResolution, PriceQuote
from stock_terminal.trends import summarize_trends
from stock_terminal.twelve_client import TwelveDataClient, get_twelve_client
from stock_terminal.valuation import average_fair_value, estimate_valuation

log = logging.getLogger(__name__)

STATEMENT_SOURCES = ("income_statement", "balance_sheet", "cash_flow")
VALUATION_SOURCES = ("price", "statistics", "balance_sheet", "income_statement")


class TickerNotAllowedError(ValueError):
    """Ticker could not be mapped to a supported market."""


async def _resolve(catalog: StockCatalog, ticker: str, market: str | None) -> MarketResolution:
    resolution = await catalog.resolve(ticker, market)
    if not resolution.ok:
        raise TickerNotAllowedError("Ticker not allowed.")
    return resolution


async def _gather_isolated(
    calls: dict[str, Awaitable[Any]],
) -> tuple[dict[str, Any], dict[str, Exception]]:
    """Run *calls* concurrently; split results from per-source failures."""
    names = list(calls)
    outcomes = await asyncio.gather(*calls.values(), return_exceptions=True)
    results: dict[str, Any] = {}
    errors: dict[str, Exception] = {}
    for name, outcome in zip(names, outcomes):
        if isinstance(outcome, Exception):
            errors[name] = outcome
        elif isinstance(outcome, BaseException):
            raise outcome
        else:
            results[name] = outcome
    return results, errors


def _financials_cache_key(resolution: MarketResolution) -> str:
    return f"fin_{resolution.market}_{resolution.display_ticker}"


# ═══════════════════════════════════════════════════════════════════════════
#  Price
# ═══════════════════════════════════════════════════════════════════════════

async def get_price(
    ticker: str,
    market: str | None = None,
    *,
    client: TwelveDataClient | None = None,
    catalog: StockCatalog | None = None,
) -> dict:
    """Live price for *ticker*.  Never cached."""
    client = client or get_twelve_client()
    resolution = await _resolve(catalog or get_catalog(), ticker, market)

    data = await client.price(resolution.symbol)
    price = to_number(data.get("price")) if isinstance(data, dict) else None

    quote = PriceQuote(
        ticker=resolution.display_ticker,
        market=resolution.market,
        price=price if price is not None else 0.0,
        currency=resolution.currency,
        fetched_at=_utc_now_iso(),
    )
    return quote.model_dump(by_alias=True)


# ═══════════════════════════════════════════════════════════════════════════
#  Financial statements
# ═══════════════════════════════════════════════════════════════════════════

def _with_trends(payload: dict) -> dict:
    result = FinancialsResult.model_validate(payload)
    trends = summarize_trends(result)
    return {**payload, "trends": {k: t.model_dump() for k, t in trends.items()}}


async def get_financials(
    ticker: str,
    market: str | None = None,
    *,
    client: TwelveDataClient | None = None,
    catalog: StockCatalog | None = None,
    cache: StatementCache | None = None,
    ttl: float | None = None,
) -> dict:
    """Merged annual statements for *ticker*.

    ``source`` in the result is ``cache`` (served from the TTL cache),
    ``live`` (fetched and cached) or ``live-empty`` (fetched, no usable
    years, not cached).  A cached entry without years counts as a miss and
    is evicted.  Cache reads and writes run in a worker thread.
    """
    client = client or get_twelve_client()
    cache = cache or get_statement_cache()
    ttl = get_config().cache_ttl_seconds if ttl is None else ttl
    resolution = await _resolve(catalog or get_catalog(), ticker, market)
    key = _financials_cache_key(resolution)

    cached = await asyncio.to_thread(cache.get, key, ttl)
    if cached is not None:
        years = cached.get("years") if isinstance(cached, dict) else None
        if isinstance(years, list) and years:
            log.debug("Statement cache hit for %s", key)
            return _with_trends({"source": "cache", **cached})
        log.info("Evicting empty statement cache entry %s", key)
        await asyncio.to_thread(cache.delete, key)

    symbol = resolution.symbol
    results, errors = await _gather_isolated({
        "income_statement": client.income_statement(symbol, period="annual"),
        "balance_sheet": client.balance_sheet(symbol, period="annual"),
        "cash_flow": client.cash_flow(symbol, period="annual"),
    })
    warnings = []
    for name in STATEMENT_SOURCES:
        if name in errors:
            log.warning("%s fetch failed for %s: %s", name, symbol, errors[name])
            warnings.append(f"{name}: {errors[name]}")

    merged = merge_financials(
        results.get("income_statement"),
        results.get("balance_sheet"),
        results.get("cash_flow"),
        ticker=resolution.display_ticker,
        warnings=warnings,
    )
    payload = {"market": resolution.market, **merged.model_dump(by_alias=True)}

    if merged.years:
        await asyncio.to_thread(cache.set, key, payload)
        return _with_trends({"source": "live", **payload})

    await asyncio.to_thread(cache.delete, key)
    return _with_trends({"source": "live-empty", **payload})


# ═══════════════════════════════════════════════════════════════════════════
#  Valuation
# ═══════════════════════════════════════════════════════════════════════════

async def get_valuation(
    ticker: str,
    market: str | None = None,
    *,
    client: TwelveDataClient | None = None,
    catalog: StockCatalog | None = None,
) -> dict:
    """Fair-value estimate for *ticker*.  Never cached.

    Failed sources are substituted with ``{}`` and only logged; unlike
    get_financials no warnings are returned.
    """
    client = client or get_twelve_client()
    resolution = await _resolve(catalog or get_catalog(), ticker, market)

    symbol = resolution.symbol
    results, errors = await _gather_isolated({
        "price": client.price(symbol),
        "statistics": client.statistics(symbol),
        "balance_sheet": client.balance_sheet(symbol),
        "income_statement": client.income_statement(symbol),
    })
    for name in VALUATION_SOURCES:
        if name in errors:
            log.warning("%s fetch failed for %s, using empty payload: %s", name, symbol, errors[name])

    result = estimate_valuation(
        results.get("price", {}),
        results.get("statistics", {}),
        results.get("balance_sheet", {}),
        results.get("income_statement", {}),
        ticker=resolution.display_ticker,
        market=resolution.market,
    )
    return {
        "source": "live",
        **result.model_dump(by_alias=True),
        "fairAvg": average_fair_value(result),
    }
