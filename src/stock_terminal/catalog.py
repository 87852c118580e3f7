"""Static US/SA stock catalog and ticker → market resolution.

Catalog files are industry-grouped JSON:

    {"Information Technology": [{"Ticker": "AAPL", "Company": "Apple Inc."}, ...], ...}

US tickers are upper-cased; Saudi (TASI) tickers are numeric strings and
kept verbatim.  Saudi symbols are sent to TwelveData as ``<ticker>:TADAWUL``.

Files are read once, lazily, on first use.  Concurrent first callers share
the same in-flight load instead of each reading the files.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

from stock_terminal.financials import first_present
from stock_terminal.models import (
    CURRENCY_BY_MARKET,
    CatalogEntry,
    CompanyInfo,
    MarketResolution,
    StockList,
)

log = logging.getLogger(__name__)

SA_SYMBOL_SUFFIX = ":TADAWUL"


class TickerNotFoundError(LookupError):
    """Ticker is in neither the US nor the SA catalog."""


class _MarketPool:
    """Flattened, sorted view of one market's catalog."""
    __slots__ = ("items", "industries", "by_upper")

    def __init__(self, items: list[CatalogEntry], industries: list[str]):
        self.items = items
        self.industries = industries
        self.by_upper = {e.ticker.upper(): e for e in items}


def _normalize_grouped(grouped: Any, market: str) -> _MarketPool:
    items: list[CatalogEntry] = []
    industries: list[str] = []
    if not isinstance(grouped, dict):
        return _MarketPool(items, industries)

    for industry, rows in grouped.items():
        industries.append(industry)
        for row in rows or []:
            if not isinstance(row, dict):
                continue
            ticker = str(first_present(row.get("Ticker"), row.get("ticker")) or "").strip()
            if market == "us":
                ticker = ticker.upper()
            name = str(first_present(row.get("Company"), row.get("name")) or "").strip()
            if not ticker or not name:
                continue
            items.append(CatalogEntry(ticker=ticker, name=name, industry=industry, market=market))

    items.sort(key=lambda e: e.ticker)
    industries.sort()
    return _MarketPool(items, industries)


def _read_grouped(path: Path) -> Any:
    if not path.exists():
        log.warning("Stock list not found: %s", path)
        return {}
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        log.warning("Could not read stock list %s: %s", path, exc)
        return {}


class StockCatalog:
    """US + SA stock lists with lazy, shared loading."""

    def __init__(self, us_path: str | Path, sa_path: str | Path):
        self.us_path = Path(us_path)
        self.sa_path = Path(sa_path)
        self._pools: dict[str, _MarketPool] | None = None
        self._loading: asyncio.Task | None = None

    async def _load(self) -> dict[str, _MarketPool]:
        us_raw, sa_raw = await asyncio.gather(
            asyncio.to_thread(_read_grouped, self.us_path),
            asyncio.to_thread(_read_grouped, self.sa_path),
        )
        pools = {
            "us": _normalize_grouped(us_raw, "us"),
            "sa": _normalize_grouped(sa_raw, "sa"),
        }
        log.info(
            "Loaded stock catalog: %d US, %d SA tickers",
            len(pools["us"].items),
            len(pools["sa"].items),
        )
        return pools

    async def ensure_loaded(self) -> dict[str, _MarketPool]:
        if self._pools is not None:
            return self._pools
        if self._loading is None:
            self._loading = asyncio.ensure_future(self._load())
        task = self._loading
        try:
            # shield: a cancelled caller must not cancel the load for the others
            pools = await asyncio.shield(task)
        finally:
            if task.done() and self._loading is task:
                self._loading = None
        self._pools = pools
        return pools

    # ── Queries ───────────────────────────────────────────────────────

    async def resolve(self, raw_ticker: str | None, requested_market: str | None = None) -> MarketResolution:
        """Map a raw ticker to its market and TwelveData symbol.

        An explicit ``us``/``sa`` market is trusted as given; otherwise the
        US list is checked before the SA list.
        """
        pools = await self.ensure_loaded()
        ticker_us = str(raw_ticker or "").upper()
        ticker_sa = str(raw_ticker or "")

        requested = (requested_market or "").strip().lower()
        market = requested if requested in ("us", "sa") else None
        if market is None:
            if ticker_us in pools["us"].by_upper:
                market = "us"
            elif ticker_sa.upper() in pools["sa"].by_upper:
                market = "sa"
        if market is None:
            return MarketResolution(ok=False)

        symbol = ticker_us if market == "us" else f"{ticker_sa}{SA_SYMBOL_SUFFIX}"
        return MarketResolution(
            ok=True,
            market=market,
            symbol=symbol,
            ticker_us=ticker_us,
            ticker_sa=ticker_sa,
            currency=CURRENCY_BY_MARKET[market],
        )

    async def list_stocks(self, market: str = "us", q: str = "", industry: str = "") -> StockList:
        pools = await self.ensure_loaded()
        m = "sa" if (market or "").lower() == "sa" else "us"
        pool = pools[m]

        items = pool.items
        ind = (industry or "").strip().lower()
        if ind:
            items = [e for e in items if e.industry.lower() == ind]
        needle = (q or "").strip().lower()
        if needle:
            items = [e for e in items if needle in e.ticker.lower() or needle in e.name.lower()]

        return StockList(market=m, count=len(items), industries=pool.industries, items=items)

    async def get_company(self, raw_ticker: str) -> CompanyInfo:
        pools = await self.ensure_loaded()
        up = str(raw_ticker or "").upper()
        for market in ("us", "sa"):
            hit = pools[market].by_upper.get(up)
            if hit:
                return CompanyInfo(
                    ticker=hit.ticker,
                    name=hit.name,
                    market=market,
                    currency=CURRENCY_BY_MARKET[market],
                )
        raise TickerNotFoundError("Ticker not found in US/SA lists.")


# ═══════════════════════════════════════════════════════════════════════════
#  Module-level singleton, shared across the app
# ═══════════════════════════════════════════════════════════════════════════

_catalog: StockCatalog | None = None


def get_catalog() -> StockCatalog:
    """Get or create the shared StockCatalog (file locations from config)."""
    global _catalog
    if _catalog is None:
        from stock_terminal.config import get_config
        config = get_config()
        _catalog = StockCatalog(
            config.data_dir / config.us_catalog_file,
            config.data_dir / config.sa_catalog_file,
        )
    return _catalog
