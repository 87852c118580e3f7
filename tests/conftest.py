"""Shared fixtures: a small on-disk catalog and a scriptable TwelveData fake."""

from __future__ import annotations

import json

import pytest

from stock_terminal.catalog import StockCatalog

US_GROUPED = {
    "Information Technology": [
        {"Ticker": "aapl", "Company": "Apple Inc."},
        {"Ticker": "MSFT", "Company": "Microsoft Corp."},
    ],
    "Energy": [
        {"ticker": "XOM", "name": "Exxon Mobil Corp."},
        {"Ticker": "", "Company": "Nameless ticker is dropped"},
    ],
}

SA_GROUPED = {
    "Energy": [{"Ticker": "2222", "Company": "Saudi Aramco"}],
    "Banks": [{"Ticker": "1120", "Company": "Al Rajhi Bank"}],
}


@pytest.fixture
def catalog_files(tmp_path):
    us = tmp_path / "us.json"
    sa = tmp_path / "sa.json"
    us.write_text(json.dumps(US_GROUPED), encoding="utf-8")
    sa.write_text(json.dumps(SA_GROUPED), encoding="utf-8")
    return us, sa


@pytest.fixture
def catalog(catalog_files):
    return StockCatalog(*catalog_files)


class FakeTwelveClient:
    """Stands in for TwelveDataClient; each endpoint returns or raises what it was given."""

    def __init__(self, **responses):
        self.responses = responses
        self.calls: list[tuple[str, str]] = []

    async def _answer(self, endpoint: str, symbol: str):
        self.calls.append((endpoint, symbol))
        value = self.responses.get(endpoint, {})
        if isinstance(value, Exception):
            raise value
        return value

    async def price(self, symbol):
        return await self._answer("price", symbol)

    async def statistics(self, symbol):
        return await self._answer("statistics", symbol)

    async def income_statement(self, symbol, period="annual"):
        return await self._answer("income_statement", symbol)

    async def balance_sheet(self, symbol, period="annual"):
        return await self._answer("balance_sheet", symbol)

    async def cash_flow(self, symbol, period="annual"):
        return await self._answer("cash_flow", symbol)


@pytest.fixture
def fake_client():
    return FakeTwelveClient
