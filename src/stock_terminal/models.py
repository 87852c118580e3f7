"""Pydantic models for API/tool inputs and outputs.

Attribute names are snake_case; the wire format uses the camelCase aliases
the dashboard front-end reads (``model_dump(by_alias=True)``).
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

Market = Literal["us", "sa"]
Currency = Literal["USD", "SAR"]

CURRENCY_BY_MARKET: dict[str, str] = {"us": "USD", "sa": "SAR"}


class _Wire(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ---------------------------------------------------------------------------
# Catalog & market resolution
# ---------------------------------------------------------------------------

class CatalogEntry(BaseModel):
    ticker: str
    name: str
    industry: str
    market: Market


class StockList(BaseModel):
    market: Market
    count: int
    industries: list[str]
    items: list[CatalogEntry]


class CompanyInfo(BaseModel):
    ticker: str
    name: str
    market: Market
    currency: Currency


class MarketResolution(_Wire):
    """Outcome of mapping a raw ticker onto a market and API symbol."""
    ok: bool
    market: Market | None = None
    symbol: str | None = None
    ticker_us: str | None = Field(default=None, alias="tickerUS")
    ticker_sa: str | None = Field(default=None, alias="tickerSA")
    currency: Currency | None = None

    @property
    def display_ticker(self) -> str:
        """Ticker as shown to users: upper-cased for US, verbatim for SA."""
        return (self.ticker_us if self.market == "us" else self.ticker_sa) or ""


# ---------------------------------------------------------------------------
# Financial statements
# ---------------------------------------------------------------------------

class YearRecord(_Wire):
    """One fiscal year's figures.  None means no source row populated it."""
    year: str
    revenue: float | None = None
    operating_income: float | None = Field(default=None, alias="operatingIncome")
    net_income: float | None = Field(default=None, alias="netIncome")
    total_equity: float | None = Field(default=None, alias="totalEquity")
    free_cash_flow: float | None = Field(default=None, alias="freeCashFlow")

    def has_data(self) -> bool:
        return any(
            v is not None
            for v in (
                self.revenue,
                self.operating_income,
                self.net_income,
                self.total_equity,
                self.free_cash_flow,
            )
        )


class FinancialsResult(_Wire):
    ticker: str
    fetched_at: str = Field(alias="fetchedAt")
    years: list[YearRecord] = []
    warnings: list[str] = []


class Trend(BaseModel):
    kind: Literal["up", "down", "neutral", "no_data"]
    pct: float | None = None


# ---------------------------------------------------------------------------
# Price & valuation
# ---------------------------------------------------------------------------

class PriceQuote(_Wire):
    source: str = "live"
    ticker: str
    market: Market
    price: float = 0.0
    currency: Currency
    fetched_at: str = Field(alias="fetchedAt")


class ValuationResult(_Wire):
    """Fair-value multiples per share.  Every number is finite (0 if unknown)."""
    ticker: str
    market: Market
    fetched_at: str = Field(alias="fetchedAt")
    currency: Currency
    price: float = 0.0
    fair_ev: float = Field(default=0.0, alias="fairEV")
    fair_pe: float = Field(default=0.0, alias="fairPE")
    fair_ps: float = Field(default=0.0, alias="fairPS")
    equity_per_share: float = Field(default=0.0, alias="equityPerShare")
