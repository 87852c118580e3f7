"""Tests for the TwelveData client against a mocked transport."""

import httpx
import pytest

from stock_terminal.twelve_client import TwelveDataClient, TwelveDataError


def _client(handler, **kwargs) -> TwelveDataClient:
    kwargs.setdefault("backoff", 0)
    return TwelveDataClient(
        api_key="test-key",
        base_url="https://td.example",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


@pytest.mark.asyncio
async def test_sends_symbol_period_and_key():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"income_statement": []})

    client = _client(handler)
    data = await client.income_statement("2222:TADAWUL")
    await client.aclose()

    assert data == {"income_statement": []}
    request = seen[0]
    assert request.url.path == "/income_statement"
    assert request.url.params["symbol"] == "2222:TADAWUL"
    assert request.url.params["period"] == "annual"
    assert request.url.params["apikey"] == "test-key"


@pytest.mark.asyncio
async def test_empty_params_are_dropped():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={})

    client = _client(handler)
    await client.balance_sheet("AAPL", period=None)
    await client.aclose()
    assert "period" not in seen[0].url.params


@pytest.mark.asyncio
async def test_error_status_uses_body_message():
    client = _client(lambda request: httpx.Response(404, json={"message": "symbol not found"}))
    with pytest.raises(TwelveDataError, match="symbol not found") as info:
        await client.price("NOPE")
    assert info.value.status_code == 404
    await client.aclose()


@pytest.mark.asyncio
async def test_error_status_without_message():
    client = _client(lambda request: httpx.Response(403, text=""))
    with pytest.raises(TwelveDataError, match="HTTP 403"):
        await client.price("AAPL")
    await client.aclose()


@pytest.mark.asyncio
async def test_status_error_body_on_200_raises():
    body = {"code": 400, "message": "**symbol** not available", "status": "error"}
    client = _client(lambda request: httpx.Response(200, json=body))
    with pytest.raises(TwelveDataError, match="not available") as info:
        await client.statistics("AAPL")
    assert info.value.status_code == 400
    await client.aclose()


@pytest.mark.asyncio
async def test_bad_json_reports_status_and_body_preview():
    client = _client(lambda request: httpx.Response(200, text="<html>" + "x" * 500))
    with pytest.raises(TwelveDataError) as info:
        await client.price("AAPL")
    message = str(info.value)
    assert message.startswith("Bad JSON 200: <html>")
    assert len(message) == len("Bad JSON 200: ") + 150
    await client.aclose()


@pytest.mark.asyncio
async def test_empty_body_is_empty_object():
    client = _client(lambda request: httpx.Response(200, text=""))
    assert await client.cash_flow("AAPL") == {}
    await client.aclose()


@pytest.mark.asyncio
async def test_retries_rate_limit_then_succeeds():
    statuses = [429, 503, 200]
    calls = []

    def handler(request):
        calls.append(request)
        status = statuses[len(calls) - 1]
        return httpx.Response(status, json={"price": "1.0"} if status == 200 else {})

    client = _client(handler, retries=2)
    assert await client.price("AAPL") == {"price": "1.0"}
    assert len(calls) == 3
    await client.aclose()


@pytest.mark.asyncio
async def test_retries_exhausted_returns_last_error():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(500, json={"message": "upstream down"})

    client = _client(handler, retries=1)
    with pytest.raises(TwelveDataError, match="upstream down"):
        await client.price("AAPL")
    assert len(calls) == 2
    await client.aclose()


@pytest.mark.asyncio
async def test_transport_error_is_wrapped():
    def handler(request):
        raise httpx.ConnectError("boom", request=request)

    client = _client(handler, retries=0)
    with pytest.raises(TwelveDataError, match="boom"):
        await client.price("AAPL")
    await client.aclose()


@pytest.mark.asyncio
async def test_missing_api_key():
    client = TwelveDataClient(api_key="", transport=httpx.MockTransport(lambda r: httpx.Response(200)))
    with pytest.raises(TwelveDataError, match="Missing TWELVEDATA_API_KEY"):
        await client.price("AAPL")
    await client.aclose()


@pytest.mark.asyncio
async def test_close_shared_client(monkeypatch):
    from stock_terminal import twelve_client

    client = _client(lambda request: httpx.Response(200, json={}))
    monkeypatch.setattr(twelve_client, "_client", client)

    await twelve_client.close_twelve_client()
    assert client._http.is_closed
    assert twelve_client._client is None

    await twelve_client.close_twelve_client()
