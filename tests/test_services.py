"""Tests for the price/financials/valuation orchestration."""

import threading

import pytest

from stock_terminal.cache import MemoryTTLCache
from stock_terminal.services import (
    TickerNotAllowedError,
    get_financials,
    get_price,
    get_valuation,
)
from stock_terminal.twelve_client import TwelveDataError

INCOME = {"income_statement": [
    {"fiscal_date": "2022", "sales": 100, "operating_income": 20, "net_income": 10},
    {"fiscal_date": "2023", "sales": 120, "operating_income": 25, "net_income": 12},
]}
BALANCE = {"balance_sheet": [
    {"fiscal_date": "2022", "shareholders_equity": {"total_shareholders_equity": 300}},
    {"fiscal_date": "2023", "shareholders_equity": {"total_shareholders_equity": 320}},
]}
CASH = {"cash_flow": [
    {"fiscal_date": "2023", "operating_cash_flow": 40, "capital_expenditures": -15},
]}


# --- Price ---


@pytest.mark.asyncio
async def test_get_price(catalog, fake_client):
    client = fake_client(price={"price": "189.50"})
    quote = await get_price("aapl", client=client, catalog=catalog)
    assert quote["ticker"] == "AAPL"
    assert quote["price"] == 189.5
    assert quote["currency"] == "USD"
    assert quote["source"] == "live"
    assert "fetchedAt" in quote
    assert client.calls == [("price", "AAPL")]


@pytest.mark.asyncio
async def test_get_price_sa_symbol(catalog, fake_client):
    client = fake_client(price={})
    quote = await get_price("2222", client=client, catalog=catalog)
    assert quote["price"] == 0
    assert quote["currency"] == "SAR"
    assert client.calls == [("price", "2222:TADAWUL")]


@pytest.mark.asyncio
async def test_get_price_propagates_upstream_error(catalog, fake_client):
    client = fake_client(price=TwelveDataError("HTTP 500", status_code=500))
    with pytest.raises(TwelveDataError):
        await get_price("AAPL", client=client, catalog=catalog)


@pytest.mark.asyncio
async def test_unknown_ticker_not_allowed(catalog, fake_client):
    client = fake_client()
    for call in (get_price, get_valuation):
        with pytest.raises(TickerNotAllowedError, match="Ticker not allowed."):
            await call("NOPE", client=client, catalog=catalog)
    with pytest.raises(TickerNotAllowedError):
        await get_financials("NOPE", client=client, catalog=catalog, cache=MemoryTTLCache(), ttl=60)
    assert client.calls == []


# --- Financials ---


@pytest.mark.asyncio
async def test_financials_live_then_cache(catalog, fake_client):
    client = fake_client(income_statement=INCOME, balance_sheet=BALANCE, cash_flow=CASH)
    cache = MemoryTTLCache()

    first = await get_financials("aapl", client=client, catalog=catalog, cache=cache, ttl=60)
    assert first["source"] == "live"
    assert first["market"] == "us"
    assert first["ticker"] == "AAPL"
    assert first["warnings"] == []
    assert [y["year"] for y in first["years"]] == ["2022", "2023"]
    assert first["years"][1]["freeCashFlow"] == 25
    assert first["years"][0]["freeCashFlow"] is None
    assert first["trends"]["revenue"]["kind"] == "up"
    assert "source" not in cache.get("fin_us_AAPL", 60)

    second = await get_financials("AAPL", client=client, catalog=catalog, cache=cache, ttl=60)
    assert second["source"] == "cache"
    assert second["years"] == first["years"]
    assert len(client.calls) == 3


@pytest.mark.asyncio
async def test_financials_partial_failure_warns_in_source_order(catalog, fake_client):
    client = fake_client(
        income_statement=INCOME,
        balance_sheet=TwelveDataError("rate limited"),
        cash_flow=TwelveDataError("HTTP 500"),
    )
    result = await get_financials("AAPL", client=client, catalog=catalog, cache=MemoryTTLCache(), ttl=60)
    assert result["source"] == "live"
    assert result["warnings"] == ["balance_sheet: rate limited", "cash_flow: HTTP 500"]
    assert [y["totalEquity"] for y in result["years"]] == [None, None]
    assert {name for name, _ in client.calls} == {"income_statement", "balance_sheet", "cash_flow"}


@pytest.mark.asyncio
async def test_financials_all_failed_is_not_cached(catalog, fake_client):
    err = TwelveDataError("down")
    client = fake_client(income_statement=err, balance_sheet=err, cash_flow=err)
    cache = MemoryTTLCache()
    result = await get_financials("2222", client=client, catalog=catalog, cache=cache, ttl=60)
    assert result["source"] == "live-empty"
    assert result["market"] == "sa"
    assert result["years"] == []
    assert len(result["warnings"]) == 3
    assert cache.get("fin_sa_2222", 60) is None


@pytest.mark.asyncio
async def test_empty_cache_entry_is_evicted_and_refetched(catalog, fake_client):
    cache = MemoryTTLCache()
    cache.set("fin_us_MSFT", {"ticker": "MSFT", "fetchedAt": "t", "years": [], "warnings": []})
    client = fake_client(income_statement=INCOME)

    result = await get_financials("MSFT", client=client, catalog=catalog, cache=cache, ttl=60)
    assert result["source"] == "live"
    assert len(client.calls) == 3
    assert cache.get("fin_us_MSFT", 60)["years"]


@pytest.mark.asyncio
async def test_expired_cache_entry_is_refetched(catalog, fake_client):
    cache = MemoryTTLCache()
    client = fake_client(income_statement=INCOME)
    await get_financials("MSFT", client=client, catalog=catalog, cache=cache, ttl=60)
    cache._entries["fin_us_MSFT"].timestamp -= 120

    result = await get_financials("MSFT", client=client, catalog=catalog, cache=cache, ttl=60)
    assert result["source"] == "live"
    assert len(client.calls) == 6


class ThreadRecordingCache(MemoryTTLCache):
    def __init__(self):
        super().__init__()
        self.threads = set()

    def get(self, key, ttl):
        self.threads.add(threading.get_ident())
        return super().get(key, ttl)

    def set(self, key, value):
        self.threads.add(threading.get_ident())
        super().set(key, value)


@pytest.mark.asyncio
async def test_cache_access_runs_off_the_event_loop(catalog, fake_client):
    cache = ThreadRecordingCache()
    client = fake_client(income_statement=INCOME)
    await get_financials("AAPL", client=client, catalog=catalog, cache=cache, ttl=60)
    await get_financials("AAPL", client=client, catalog=catalog, cache=cache, ttl=60)
    assert cache.threads
    assert threading.get_ident() not in cache.threads


# --- Valuation ---


@pytest.mark.asyncio
async def test_valuation_with_failed_source(catalog, fake_client):
    client = fake_client(
        price={"price": "50"},
        statistics=TwelveDataError("HTTP 429"),
        balance_sheet=BALANCE,
        income_statement=INCOME,
    )
    result = await get_valuation("2222", client=client, catalog=catalog)
    assert result["source"] == "live"
    assert result["ticker"] == "2222"
    assert result["currency"] == "SAR"
    assert result["price"] == 50
    assert (result["fairEV"], result["fairPE"], result["fairPS"]) == (0, 0, 0)
    assert "warnings" not in result
    assert {sym for _, sym in client.calls} == {"2222:TADAWUL"}


@pytest.mark.asyncio
async def test_valuation_reports_average(catalog, fake_client):
    stats = {"statistics": {
        "valuations_metrics": {"enterprise_value": 1000, "forward_pe": 10, "price_to_sales_ttm": 2},
        "stock_statistics": {"shares_outstanding": 10},
    }}
    client = fake_client(price={"price": 1}, statistics=stats, balance_sheet={}, income_statement={
        "income_statement": [{"net_income": 30, "sales": 60}],
    })
    result = await get_valuation("XOM", client=client, catalog=catalog)
    assert result["fairEV"] == pytest.approx(100)
    assert result["fairPE"] == pytest.approx(30)
    assert result["fairPS"] == pytest.approx(12)
    assert result["fairAvg"] == pytest.approx((100 + 30 + 12) / 3)
