"""First-to-last trend classification for the per-year statement metrics."""

from __future__ import annotations

import math

from stock_terminal.models import FinancialsResult, Trend, YearRecord

# Metrics shown on the stock page, attribute name → wire name
TREND_METRICS: dict[str, str] = {
    "revenue": "revenue",
    "operating_income": "operatingIncome",
    "net_income": "netIncome",
    "total_equity": "totalEquity",
    "free_cash_flow": "freeCashFlow",
}


def metric_series(years: list[YearRecord], field: str) -> list[tuple[str, float]]:
    """(year, value) pairs for records where *field* is a finite number, ascending by year."""
    points = []
    for rec in years:
        value = getattr(rec, field)
        if value is None or not math.isfinite(value):
            continue
        points.append((str(rec.year), float(value)))
    return sorted(points, key=lambda p: int(p[0]))


def calc_trend(series: list[tuple[str, float]], neutral_threshold_pct: float = 2.0) -> Trend:
    """Classify the change between the first and last point of *series*.

    The change is expressed relative to the larger magnitude of the two
    endpoints (floored at 1) so sign flips and near-zero bases stay bounded.
    """
    if len(series) < 2:
        return Trend(kind="no_data")
    first = series[0][1]
    last = series[-1][1]
    denom = max(abs(first), abs(last), 1.0)
    pct = (last - first) / denom * 100
    if not math.isfinite(pct):
        return Trend(kind="no_data")
    if abs(pct) < neutral_threshold_pct:
        return Trend(kind="neutral", pct=pct)
    return Trend(kind="up" if pct > 0 else "down", pct=pct)


def summarize_trends(result: FinancialsResult) -> dict[str, Trend]:
    """Trend per metric, keyed by the metric's wire name."""
    return {
        wire: calc_trend(metric_series(result.years, field))
        for field, wire in TREND_METRICS.items()
    }
