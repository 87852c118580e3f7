"""Financial-statement normalisation and merge engine.

TwelveData (and the mirrors we have seen in front of it) return income
statements, balance sheets and cash-flow statements in shapes that drift
between endpoints, markets and plan tiers: rows may be wrapped under
``income_statement``/``data``/``values``, years may live in ``fiscal_date``
or ``date`` or ``fiscalDateEnding``, and equity may be nested several levels
deep or even JSON-encoded inside a string.

Data flow:
  1. unwrap_rows()  → list of period rows from whatever envelope came back
  2. year_from()    → 4-digit fiscal year for each row (rows without one are dropped)
  3. coalesce()     → first parseable figure among known field aliases
  4. find_equity()  → total shareholders' equity from nested/renamed fields
  5. merge_financials() → one YearRecord per year, ascending, plus warnings

Nothing in this module raises on bad input; missing data degrades to
zeros/None and warning strings.
"""

from __future__ import annotations

import json
import logging
import math
import re
from datetime import datetime, timezone
from typing import Any

from stock_terminal.models import FinancialsResult, YearRecord

log = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Safe numeric helpers
# ═══════════════════════════════════════════════════════════════════════════

# Placeholders upstream uses for "no value"
_NULL_TOKENS = frozenset({"", "—", "-", "na", "null"})

# Plain ASCII decimal, optional exponent; no underscores or non-ASCII digits
_DECIMAL_PATTERN = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?", re.ASCII)


def to_number(v: Any) -> float | None:
    """Convert a value to float, returning None for invalid/missing values.

    Numbers pass through if finite; strings are trimmed, placeholder tokens
    rejected and thousands separators stripped before parsing.
    """
    if v is None or isinstance(v, bool):
        return None
    if isinstance(v, (int, float)):
        try:
            f = float(v)
        except OverflowError:
            return None
        return f if math.isfinite(f) else None
    if not isinstance(v, str):
        return None
    s = v.strip()
    if s.lower() in _NULL_TOKENS:
        return None
    s = s.replace(",", "")
    if not _DECIMAL_PATTERN.fullmatch(s):
        return None
    try:
        f = float(s)
    except (ValueError, OverflowError):
        return None
    return f if math.isfinite(f) else None


def coalesce(*values: Any) -> float:
    """Return the first value that parses to a finite number, else 0.0."""
    for v in values:
        n = to_number(v)
        if n is not None:
            return n
    return 0.0


def first_present(*values: Any) -> Any:
    """Return the first value that is not None."""
    for v in values:
        if v is not None:
            return v
    return None


def dig(obj: Any, *path: str) -> Any:
    """Walk nested dicts along *path*; None as soon as a step is missing."""
    for key in path:
        if not isinstance(obj, dict):
            return None
        obj = obj.get(key)
    return obj


def norm_key(key: Any) -> str:
    """Lower-case and drop everything but letters ("Total_Shareholders-Equity" → "totalshareholdersequity")."""
    return re.sub(r"[^a-z]", "", str(key).lower())


# ═══════════════════════════════════════════════════════════════════════════
#  Row shape helpers
# ═══════════════════════════════════════════════════════════════════════════

# Envelope keys tried in order before falling back to "any list value"
_ROW_ENVELOPE_KEYS = ("data", "values", "income_statements", "balance_sheet", "cash_flow")

# Fields that may carry the fiscal period, in priority order
_YEAR_KEYS = (
    "fiscal_year",
    "fiscalYear",
    "year",
    "date",
    "period",
    "calendarYear",
    "fiscalDateEnding",
    "fiscal_date",
)

_YEAR_PATTERN = re.compile(r"\b(?:19|20)\d{2}\b", re.ASCII)


def unwrap_rows(payload: Any) -> list:
    """Extract the list of period rows from an API response envelope."""
    if not payload:
        return []
    if isinstance(payload, list):
        return payload
    if not isinstance(payload, dict):
        return []
    for key in _ROW_ENVELOPE_KEYS:
        if isinstance(payload.get(key), list):
            return payload[key]
    for value in payload.values():
        if isinstance(value, list):
            return value
    return []


def year_from(row: Any) -> str | None:
    """Return the 4-digit fiscal year of a statement row, or None."""
    if not isinstance(row, dict):
        return None
    raw = first_present(*(row.get(k) for k in _YEAR_KEYS))
    if not raw:
        return None
    match = _YEAR_PATTERN.search(str(raw))
    return match.group(0) if match else None


# ═══════════════════════════════════════════════════════════════════════════
#  Shareholders' equity extraction
# ═══════════════════════════════════════════════════════════════════════════

_NOT_FOUND = object()


def _find_key_dfs(node: Any, target: str, seen: set[int]) -> Any:
    """Depth-first search for the first key normalising to *target*.

    Each dict's own keys are checked before descending into its children.
    Returns the matched value (which may itself be None) or _NOT_FOUND.
    """
    if not isinstance(node, (dict, list)) or id(node) in seen:
        return _NOT_FOUND
    seen.add(id(node))

    if isinstance(node, dict):
        for key, value in node.items():
            if norm_key(key) == target:
                return value
        children = node.values()
    else:
        children = node

    for child in children:
        if isinstance(child, (dict, list)):
            found = _find_key_dfs(child, target, seen)
            if found is not _NOT_FOUND:
                return found
    return _NOT_FOUND


def find_equity(row: Any) -> float | None:
    """Try hard to extract total shareholders' equity from a balance-sheet row.

    Looks for any key resembling ``total_shareholders_equity`` at any depth
    first.  Failing that, a top-level ``shareholders_equity`` is used if it
    is a number, or searched again if it is a nested object or a JSON string.
    Self-referencing input yields None.
    """
    return _find_equity(row, set())


def _find_equity(row: Any, seen: set[int]) -> float | None:
    nested = _find_key_dfs(row, "totalshareholdersequity", set())
    if nested is not _NOT_FOUND:
        return to_number(nested)

    if not isinstance(row, dict):
        return None
    seen.add(id(row))
    key = next((k for k in row if norm_key(k) == "shareholdersequity"), None)
    if key is None:
        return None
    value = row[key]

    n = to_number(value)
    if n is not None:
        return n

    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except (ValueError, RecursionError):
            parsed = None
        if parsed is not None:
            inner = _find_equity(parsed, seen)
            if inner is not None:
                return inner
    if isinstance(value, (dict, list)):
        if id(value) in seen:
            return None
        return _find_equity(value, seen)
    return None


# ═══════════════════════════════════════════════════════════════════════════
#  Statement merge
# ═══════════════════════════════════════════════════════════════════════════

_REVENUE_KEYS = ("total_revenue", "revenue", "net_sales", "sales", "total_sales")
_OPERATING_INCOME_KEYS = (
    "operating_income",
    "operatingIncome",
    "operating_income_loss",
    "operating_profit",
)
_NET_INCOME_KEYS = (
    "net_income",
    "netIncome",
    "net_income_loss",
    "net_income_applicable_to_common_shares",
)
_OPERATING_CASH_FLOW_KEYS = ("operating_cash_flow", "net_cash_provided_by_operating_activities")
_CAPEX_KEYS = ("capital_expenditures", "capex")


def _pick(row: dict, keys: tuple[str, ...]) -> float:
    return coalesce(*(row.get(k) for k in keys))


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def free_cash_flow(row: dict) -> float:
    """Reported FCF if present and non-zero, else operating cash flow − |capex|."""
    direct = to_number(first_present(row.get("free_cash_flow"), row.get("free_cash_flow_ttm")))
    if direct is not None and direct != 0:
        return direct
    ocf = _pick(row, _OPERATING_CASH_FLOW_KEYS)
    capex = _pick(row, _CAPEX_KEYS)
    return ocf - abs(capex)


def merge_financials(
    income: Any,
    balance: Any,
    cash: Any,
    ticker: str,
    warnings: list[str] | None = None,
) -> FinancialsResult:
    """Fold income, balance-sheet and cash-flow payloads into per-year records.

    Args:
        income, balance, cash: raw TwelveData JSON (None, list, or envelope dict)
        ticker: display ticker stored on the result
        warnings: warnings collected upstream (e.g. failed fetches); copied,
            and extraction warnings are appended after them

    Returns a FinancialsResult whose ``years`` are unique and ascending.
    Later rows for an already-seen year overwrite fields on the same record.
    """
    by_year: dict[str, YearRecord] = {}
    notes = list(warnings or [])

    def ensure(yr: str) -> YearRecord:
        if yr not in by_year:
            by_year[yr] = YearRecord(year=yr)
        return by_year[yr]

    for row in unwrap_rows(income):
        yr = year_from(row)
        if not yr:
            continue
        rec = ensure(yr)
        rec.revenue = _pick(row, _REVENUE_KEYS)
        rec.operating_income = _pick(row, _OPERATING_INCOME_KEYS)
        rec.net_income = _pick(row, _NET_INCOME_KEYS)

    for row in unwrap_rows(balance):
        yr = year_from(row)
        if not yr:
            continue
        rec = ensure(yr)
        equity = find_equity(row)
        if equity is None:
            notes.append(f"balance_sheet {yr}: cannot extract total_shareholders_equity")
        else:
            rec.total_equity = equity

    for row in unwrap_rows(cash):
        yr = year_from(row)
        if not yr:
            continue
        ensure(yr).free_cash_flow = free_cash_flow(row)

    years = sorted(
        (r for r in by_year.values() if r.year and r.has_data()),
        key=lambda r: int(r.year),
    )
    log.debug("Merged %d fiscal years for %s (%d warnings)", len(years), ticker, len(notes))

    return FinancialsResult(
        ticker=ticker,
        fetched_at=_utc_now_iso(),
        years=years,
        warnings=notes,
    )
