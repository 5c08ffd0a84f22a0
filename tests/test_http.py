import asyncio

import httpx
import pytest

from sourceiq.utils.http import HttpClient, ResponseTooLargeError
from sourceiq.utils.ledger import CallLedger
from sourceiq.utils.rate_limit import AsyncRateLimiter


def _run(handler, call, **kwargs):
    async def _go():
        client = HttpClient(transport=httpx.MockTransport(handler), **kwargs)
        try:
            return await call(client)
        finally:
            await client.close()

    return asyncio.run(_go())


def test_byte_cap_raises():
    with pytest.raises(ResponseTooLargeError):
        _run(lambda request: httpx.Response(200, content=b"x" * 64), lambda c: c.get("https://api.example.com/big"), max_bytes_per_response=16)


def test_transport_errors_are_retried_then_raised():
    calls = []

    def handler(request):
        calls.append(request.url.path)
        raise httpx.ConnectError("down", request=request)

    ledger = CallLedger()
    with pytest.raises(httpx.ConnectError):
        _run(handler, lambda c: c.get("https://api.example.com/flaky"), retries=1, ledger=ledger)
    assert len(calls) == 2
    assert ledger.totals()["counts"]["http"] == 2


def test_error_statuses_are_returned_and_recorded():
    ledger = CallLedger()
    resp = _run(
        lambda request: httpx.Response(503, text="busy"),
        lambda c: c.post("https://api.example.com/x", json={"a": 1}, retries=0),
        ledger=ledger,
        category="model_http",
    )
    assert resp.status_code == 503
    assert resp.text == "busy"
    entry = ledger.entries[0]
    assert (entry.type, entry.status, entry.destination_host) == ("model_http", 503, "api.example.com")


def test_rate_limiter_spaces_calls():
    limiter = AsyncRateLimiter(60_000, clock=lambda: 0.0)

    async def _go():
        return [await limiter.wait() for _ in range(3)]

    delays = asyncio.run(_go())
    assert delays[0] == 0
    assert delays[1] == pytest.approx(0.001)
    assert delays[2] == pytest.approx(0.002)
