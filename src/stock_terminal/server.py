"""Stock Terminal MCP server: US/SA equities price, statements and fair value.

Tool hierarchy
──────────────
  Catalog
    1. list_stocks       — S&P 500 / TASI constituents, filterable
    2. get_company       — ticker → name, market, currency

  Market data (TwelveData)
    3. get_price         — live price
    4. get_financials    — merged annual revenue / income / equity / FCF history
    5. get_valuation     — EV, P/E and P/S fair values per share + average
"""

from __future__ import annotations

import logging

from fastmcp import FastMCP

from stock_terminal import services
from stock_terminal.catalog import get_catalog
from stock_terminal.config import get_config

mcp = FastMCP(name="Stock-Terminal")


# ═══════════════════════════════════════════════════════════════════════════
#  CATALOG
# ═══════════════════════════════════════════════════════════════════════════


@mcp.tool()
async def list_stocks(market: str = "us", query: str = "", industry: str = "") -> dict:
    """List stocks in the US (S&P 500) or SA (TASI) catalog.

    Args:
        market: 'us' or 'sa'
        query: substring matched against ticker and company name
        industry: exact industry name (case-insensitive)
    """
    stocks = await get_catalog().list_stocks(market=market, q=query, industry=industry)
    return stocks.model_dump()


@mcp.tool()
async def get_company(ticker: str) -> dict:
    """Look up a ticker's company name, market and trading currency."""
    info = await get_catalog().get_company(ticker)
    return info.model_dump()


# ═══════════════════════════════════════════════════════════════════════════
#  MARKET DATA
# ═══════════════════════════════════════════════════════════════════════════


@mcp.tool()
async def get_price(ticker: str, market: str | None = None) -> dict:
    """Get the live price for a US ticker (e.g. 'AAPL') or Saudi ticker (e.g. '2222')."""
    return await services.get_price(ticker, market)


@mcp.tool()
async def get_financials(ticker: str, market: str | None = None) -> dict:
    """Get annual financial history merged from income, balance and cash-flow statements.

    Each year carries revenue, operatingIncome, netIncome, totalEquity and
    freeCashFlow. ``warnings`` lists sources or fields that could not be
    read; ``trends`` classifies each metric as up/down/neutral.
    """
    return await services.get_financials(ticker, market)


@mcp.tool()
async def get_valuation(ticker: str, market: str | None = None) -> dict:
    """Estimate fair value per share from EV, forward P/E and P/S multiples.

    Returns fairEV, fairPE, fairPS, their average (fairAvg), equity per
    share and the current price, all in the market's currency.
    """
    return await services.get_valuation(ticker, market)


def main():
    config = get_config()
    logging.basicConfig(level=getattr(logging, config.log_level.upper(), logging.INFO))
    mcp.run()


if __name__ == "__main__":
    main()
