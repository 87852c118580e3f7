"""Fair-value estimation from live price, statistics and latest statements.

Three per-share multiples are produced:

  fair_ev  — (enterprise value − long-term debt + cash) / shares
  fair_pe  — forward P/E × net income / shares
  fair_ps  — price/sales (TTM) × sales / shares

Inputs are the raw TwelveData ``/price``, ``/statistics``, ``/balance_sheet``
and ``/income_statement`` payloads.  Any of them may be ``{}`` (the caller
substitutes that for a failed fetch); every lookup then falls through to 0.
"""

from __future__ import annotations

import logging
import math
from typing import Any

from stock_terminal.financials import coalesce, dig, first_present, to_number, _utc_now_iso
from stock_terminal.models import CURRENCY_BY_MARKET, ValuationResult

log = logging.getLogger(__name__)


def _finite_or_zero(v: float) -> float:
    return v if math.isfinite(v) else 0.0


def latest_row(payload: Any, field: str) -> dict:
    """Pick the most recent statement row under *field*.

    A list is assumed newest-first (element 0); an ``{"annual": [...]}``
    object is assumed oldest-first (last element); anything else is taken as
    the row itself.
    """
    node = payload.get(field) if isinstance(payload, dict) else None
    if isinstance(node, list):
        row = node[0] if node else None
    elif isinstance(node, dict) and isinstance(node.get("annual"), list):
        annual = node["annual"]
        row = annual[-1] if annual else None
    else:
        row = node
    return row if isinstance(row, dict) else {}


def _statistics_block(statistics: Any) -> dict:
    if not isinstance(statistics, dict):
        return {}
    inner = statistics.get("statistics")
    if inner:
        return inner if isinstance(inner, dict) else {}
    return statistics


def estimate_valuation(
    price: Any,
    statistics: Any,
    balance: Any,
    income: Any,
    *,
    ticker: str,
    market: str,
) -> ValuationResult:
    """Combine the four payloads into a ValuationResult.

    Shares outstanding of zero (or unknown) yields zero for all three
    multiples and for equity per share.  Non-finite results are clamped to 0.
    """
    stats = _statistics_block(statistics)
    px = to_number(price.get("price")) if isinstance(price, dict) else None
    px = px if px is not None else 0.0

    bs0 = latest_row(balance, "balance_sheet")
    is0 = latest_row(income, "income_statement")

    shares = max(
        0.0,
        coalesce(
            dig(stats, "stock_statistics", "shares_outstanding"),
            dig(stats, "stock_statistics", "shares_outstanding_5y_avg"),
            stats.get("shares_outstanding"),
        ),
    )

    ev_reported = coalesce(
        dig(stats, "valuations_metrics", "enterprise_value"),
        dig(stats, "valuation", "enterprise_value"),
        stats.get("enterprise_value"),
    )
    long_term_debt = coalesce(
        dig(bs0, "liabilities", "non_current_liabilities", "long_term_debt"),
        dig(stats, "financials", "long_term_debt"),
    )
    short_term_debt = coalesce(
        dig(bs0, "liabilities", "current_liabilities", "short_term_debt"),
        dig(stats, "financials", "short_term_debt"),
    )
    total_debt = long_term_debt + short_term_debt
    cash = coalesce(
        dig(bs0, "assets", "current_assets", "cash_and_cash_equivalents"),
        dig(bs0, "assets", "current_assets", "cash"),
        dig(stats, "financials", "cash_and_cash_equivalents"),
    )
    market_cap = coalesce(
        dig(stats, "valuations_metrics", "market_capitalization"),
        stats.get("market_cap"),
        dig(stats, "valuation", "market_cap"),
    )
    enterprise_value = ev_reported or max(0.0, market_cap + total_debt - cash)

    forward_pe = coalesce(dig(stats, "valuations_metrics", "forward_pe"))
    price_to_sales = coalesce(dig(stats, "valuations_metrics", "price_to_sales_ttm"))
    net_income = coalesce(is0.get("net_income"), is0.get("net_income_loss"))
    sales = coalesce(is0.get("sales"), is0.get("revenue"), is0.get("total_revenue"))

    total_equity = coalesce(
        first_present(
            dig(bs0, "shareholders_equity", "total_shareholders_equity"),
            bs0.get("total_shareholders_equity"),
            dig(bs0, "shareholders_equity", "total_equity"),
        )
    )

    fair_ev = fair_pe = fair_ps = equity_per_share = 0.0
    if shares > 0:
        equity_per_share = total_equity / shares
        fair_ev = (enterprise_value - long_term_debt + cash) / shares
        fair_pe = (forward_pe * net_income) / shares
        fair_ps = (price_to_sales * sales) / shares
    else:
        log.debug("No shares outstanding for %s; fair values default to 0", ticker)

    return ValuationResult(
        ticker=ticker,
        market=market,
        fetched_at=_utc_now_iso(),
        currency=CURRENCY_BY_MARKET.get(market, "SAR" if market == "sa" else "USD"),
        price=_finite_or_zero(px),
        fair_ev=_finite_or_zero(fair_ev),
        fair_pe=_finite_or_zero(fair_pe),
        fair_ps=_finite_or_zero(fair_ps),
        equity_per_share=_finite_or_zero(equity_per_share),
    )


def average_fair_value(result: ValuationResult) -> float | None:
    """Mean of the finite fair-value multiples, or None if there are none."""
    values = [v for v in (result.fair_ev, result.fair_ps, result.fair_pe) if math.isfinite(v)]
    if not values:
        return None
    return sum(values) / len(values)
