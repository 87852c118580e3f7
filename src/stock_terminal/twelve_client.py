"""Async TwelveData REST client.

Endpoints used (all GET, API key as ``apikey`` query parameter):
  - /price             — latest trade price
  - /statistics        — valuation metrics, share statistics, balance figures
  - /income_statement  — annual/quarterly income statements
  - /balance_sheet     — annual/quarterly balance sheets
  - /cash_flow         — annual/quarterly cash-flow statements

TwelveData reports some failures as HTTP 200 with a
``{"status": "error", "message": ...}`` body; those are raised like HTTP
errors so callers see one failure type.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import httpx

log = logging.getLogger(__name__)

# ═══════════════════════════════════════════════════════════════════════════
#  Constants
# ═══════════════════════════════════════════════════════════════════════════

DEFAULT_BASE_URL = "https://api.twelvedata.com"

# Statuses worth retrying: rate limit and transient server errors
_RETRY_STATUSES = frozenset({429, 500, 502, 503, 504})
_MAX_BACKOFF = 8.0

# How much of an unparseable body to echo back in errors
_BODY_PREVIEW = 150


class TwelveDataError(RuntimeError):
    """Upstream request failed, returned non-JSON, or reported an error."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


# ═══════════════════════════════════════════════════════════════════════════
#  TwelveData client
# ═══════════════════════════════════════════════════════════════════════════

class TwelveDataClient:
    """Thin async wrapper over the TwelveData endpoints the dashboard needs.

    One ``httpx.AsyncClient`` (and its connection pool) is shared by every
    call, so concurrent fetches issued with ``asyncio.gather`` reuse
    connections.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        retries: int = 2,
        backoff: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.retries = retries
        self.backoff = backoff
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    # ── HTTP with retry ───────────────────────────────────────────────

    async def _request(self, path: str, params: dict[str, Any]) -> httpx.Response:
        """GET with automatic retry on 429/5xx and transport errors."""
        if not self.api_key:
            raise TwelveDataError("Missing TWELVEDATA_API_KEY")

        query = {k: str(v) for k, v in params.items() if v is not None and v != ""}
        query["apikey"] = self.api_key

        for attempt in range(1 + self.retries):
            wait = min(self.backoff * 2 ** attempt, _MAX_BACKOFF)
            try:
                resp = await self._http.get(path, params=query)
            except httpx.TransportError as exc:
                if attempt < self.retries:
                    log.warning("TwelveData %s transport error, retrying in %.1fs: %s", path, wait, exc)
                    await asyncio.sleep(wait)
                    continue
                raise TwelveDataError(f"{path}: {exc}") from exc

            if resp.status_code in _RETRY_STATUSES and attempt < self.retries:
                log.warning("TwelveData %s returned %d, retrying in %.1fs", path, resp.status_code, wait)
                await asyncio.sleep(wait)
                continue
            return resp

        # The loop always returns or raises on its final attempt
        raise TwelveDataError(f"{path}: failed after {self.retries + 1} attempts")

    async def _request_json(self, path: str, **params: Any) -> Any:
        """GET *path* and return the decoded JSON body."""
        resp = await self._request(path, params)
        text = resp.text
        try:
            data = json.loads(text) if text.strip() else {}
        except ValueError:
            raise TwelveDataError(
                f"Bad JSON {resp.status_code}: {text[:_BODY_PREVIEW]}",
                status_code=resp.status_code,
            ) from None

        if not resp.is_success:
            message = None
            if isinstance(data, dict):
                message = data.get("message") or data.get("error")
            raise TwelveDataError(message or f"HTTP {resp.status_code}", status_code=resp.status_code)

        if isinstance(data, dict) and data.get("status") == "error":
            raise TwelveDataError(
                data.get("message") or "TwelveData reported an error",
                status_code=data.get("code"),
            )
        return data

    # ── Endpoints ─────────────────────────────────────────────────────

    async def price(self, symbol: str) -> dict:
        return await self._request_json("/price", symbol=symbol)

    async def statistics(self, symbol: str) -> dict:
        return await self._request_json("/statistics", symbol=symbol)

    async def income_statement(self, symbol: str, period: str | None = "annual") -> dict:
        return await self._request_json("/income_statement", symbol=symbol, period=period)

    async def balance_sheet(self, symbol: str, period: str | None = "annual") -> dict:
        return await self._request_json("/balance_sheet", symbol=symbol, period=period)

    async def cash_flow(self, symbol: str, period: str | None = "annual") -> dict:
        return await self._request_json("/cash_flow", symbol=symbol, period=period)


# ═══════════════════════════════════════════════════════════════════════════
#  Module-level singleton, shared across the app
# ═══════════════════════════════════════════════════════════════════════════

_client: TwelveDataClient | None = None


def get_twelve_client() -> TwelveDataClient:
    """Get or create the shared TwelveDataClient singleton.

    Reads the API key, base URL, timeout and retry count from config.
    """
    global _client
    if _client is None:
        from stock_terminal.config import get_config
        config = get_config()
        _client = TwelveDataClient(
            api_key=config.twelvedata_api_key,
            base_url=config.twelvedata_base_url,
            timeout=config.request_timeout,
            retries=config.request_retries,
        )
    return _client


async def close_twelve_client() -> None:
    """Close the shared client's connection pool, if one was created."""
    global _client
    if _client is not None:
        client, _client = _client, None
        await client.aclose()
