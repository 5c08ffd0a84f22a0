from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional

import httpx

from .ledger import CallLedger
from .normalize import sanitize_headers
from .rate_limit import AsyncRateLimiter

logger = logging.getLogger(__name__)

DEFAULT_MAX_BYTES = 5 * 1024 * 1024
RETRY_DELAY_SECONDS = 0.2


class ResponseTooLargeError(RuntimeError):
    pass


class HttpClient:
    """Thin httpx wrapper: byte-capped reads, transport retries, optional ledger.

    Non-2xx responses are returned, not raised; status handling belongs to
    the API clients built on top.
    """

    def __init__(
        self,
        timeout_seconds: float = 30.0,
        retries: int = 2,
        rate_limiter: Optional[AsyncRateLimiter] = None,
        ledger: CallLedger | None = None,
        category: str = "http",
        max_bytes_per_response: int = DEFAULT_MAX_BYTES,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.retries = retries
        self.rate_limiter = rate_limiter
        self.ledger = ledger
        self.category = category
        self.max_bytes_per_response = max_bytes_per_response
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds), follow_redirects=True, transport=transport
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def get(self, url: str, headers: Optional[dict] = None) -> httpx.Response:
        return await self.request("GET", url, headers=headers)

    async def post(
        self,
        url: str,
        json: Optional[dict] = None,
        headers: Optional[dict] = None,
        retries: Optional[int] = None,
    ) -> httpx.Response:
        return await self.request("POST", url, json=json, headers=headers, retries=retries)

    async def _read_capped(self, resp: httpx.Response) -> bytes:
        body = bytearray()
        async for chunk in resp.aiter_bytes():
            body.extend(chunk)
            if len(body) > self.max_bytes_per_response:
                raise ResponseTooLargeError(f"response from {resp.request.url.host} exceeded {self.max_bytes_per_response} bytes")
        return bytes(body)

    def _log_call(self, method: str, url: str, started: float, **fields) -> None:
        if self.ledger is None:
            return
        self.ledger.add(
            type=self.category,
            destination_host=httpx.URL(url).host or "",
            url=url,
            method=method,
            duration_ms=int((time.monotonic() - started) * 1000),
            **fields,
        )

    async def _send_once(self, method: str, url: str, headers: Optional[dict], json: Optional[dict]) -> httpx.Response:
        started = time.monotonic()
        async with self._client.stream(method, url, headers=headers, json=json) as resp:
            content = await self._read_capped(resp)
        self._log_call(method, url, started, status=resp.status_code, bytes_in=len(content))
        return httpx.Response(status_code=resp.status_code, headers=resp.headers, content=content, request=resp.request)

    async def request(
        self,
        method: str,
        url: str,
        headers: Optional[dict] = None,
        json: Optional[dict] = None,
        retries: Optional[int] = None,
    ) -> httpx.Response:
        method = method.upper()
        attempts = 1 + (self.retries if retries is None else retries)

        for attempt in range(1, attempts + 1):
            if self.rate_limiter:
                await self.rate_limiter.wait()
            started = time.monotonic()
            try:
                return await self._send_once(method, url, headers, json)
            except httpx.HTTPError as exc:
                self._log_call(method, url, started, error=str(exc) or exc.__class__.__name__)
                logger.debug(
                    "http error",
                    extra={"url": url, "error": str(exc), "attempt": attempt, "headers": sanitize_headers(headers or {})},
                )
                if attempt == attempts:
                    raise
                await asyncio.sleep(RETRY_DELAY_SECONDS * attempt)
        raise RuntimeError("http request failed")
