"""Stock Terminal HTTP API — backs the US/SA equities dashboard.

Routes
──────
  GET /health                    — liveness + whether an API key is configured
  GET /api/stocks                — catalog listing (?market=us|sa&q=&industry=)
  GET /api/company/{ticker}      — name, market and currency of one ticker
  GET /api/price/{ticker}        — live price (never cached)
  GET /api/financials/{ticker}   — merged annual statements (TTL-cached)
  GET /api/valuation/{ticker}    — fair-value multiples (never cached)

Unknown tickers get 400 ``{"error": "Ticker not allowed."}``; an upstream
failure on the price endpoint gets 502.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from stock_terminal import services
from stock_terminal.catalog import TickerNotFoundError, get_catalog
from stock_terminal.config import get_config
from stock_terminal.twelve_client import TwelveDataError, close_twelve_client

log = logging.getLogger(__name__)

NO_STORE = {"Cache-Control": "no-store"}


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await close_twelve_client()


app = FastAPI(title="Stock Terminal", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_config().origins or ["*"],
    allow_methods=["GET"],
    allow_headers=["*"],
)


def _error(status: int, message: str, headers: dict | None = None) -> JSONResponse:
    return JSONResponse(status_code=status, content={"error": message}, headers=headers)


@app.get("/health")
async def health():
    return {
        "status": "ok",
        "twelvedata_configured": bool(get_config().twelvedata_api_key),
    }


# ═══════════════════════════════════════════════════════════════════════════
#  Catalog
# ═══════════════════════════════════════════════════════════════════════════


@app.get("/api/stocks")
async def list_stocks(market: str = "us", q: str = "", industry: str = ""):
    stocks = await get_catalog().list_stocks(market=market, q=q, industry=industry)
    return stocks.model_dump()


@app.get("/api/company/{ticker}")
async def company(ticker: str):
    try:
        info = await get_catalog().get_company(ticker)
    except TickerNotFoundError as exc:
        return _error(404, str(exc))
    return info.model_dump()


# ═══════════════════════════════════════════════════════════════════════════
#  Market data
# ═══════════════════════════════════════════════════════════════════════════


@app.get("/api/price/{ticker}")
async def price(ticker: str, response: Response, market: str = ""):
    try:
        quote = await services.get_price(ticker, market or None)
    except services.TickerNotAllowedError as exc:
        return _error(400, str(exc), NO_STORE)
    except TwelveDataError as exc:
        log.warning("Price fetch failed for %s: %s", ticker, exc)
        return _error(502, str(exc), NO_STORE)
    response.headers.update(NO_STORE)
    return quote


@app.get("/api/financials/{ticker}")
async def financials(ticker: str, market: str = ""):
    try:
        return await services.get_financials(ticker, market or None)
    except services.TickerNotAllowedError as exc:
        return _error(400, str(exc))


@app.get("/api/valuation/{ticker}")
async def valuation(ticker: str, response: Response, market: str = ""):
    try:
        result = await services.get_valuation(ticker, market or None)
    except services.TickerNotAllowedError as exc:
        return _error(400, str(exc), NO_STORE)
    response.headers.update(NO_STORE)
    return result


def main():
    import uvicorn

    config = get_config()
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    log.info("Data dir  => %s", config.data_dir)
    log.info("Cache dir => %s", config.cache_dir)
    uvicorn.run(app, host="0.0.0.0", port=config.port)


if __name__ == "__main__":
    main()
