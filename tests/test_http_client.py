"""Tests for the retrying async HTTP client."""

import asyncio
from typing import List

import httpx
import pytest

from company_finder.core.cancellation import CancelToken
from company_finder.core.errors import ClientRequestError, RequestCancelled, TransientError
from company_finder.core.http_client import AsyncHTTPClient

URL = "http://registry.test/api/companies"


class RecordingSleep:
    """Sleep stand-in that records requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def make_client(handler, sleep=None, **kwargs) -> AsyncHTTPClient:
    return AsyncHTTPClient(
        transport=httpx.MockTransport(handler), sleep=sleep or RecordingSleep(), **kwargs
    )


class TestFetchJson:
    """Tests for status classification and retry."""

    @pytest.mark.asyncio
    async def test_success_single_attempt(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={"companies": [], "total": 0, "hasMore": False})

        async with make_client(handler) as client:
            data = await client.fetch_json(URL, params={"q": "acme"})

        assert data["total"] == 0
        assert len(calls) == 1
        assert calls[0].url.params["q"] == "acme"

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(404, json={"error": "Company not found"})

        sleep = RecordingSleep()
        async with make_client(handler, sleep=sleep) as client:
            with pytest.raises(ClientRequestError) as exc_info:
                await client.fetch_json(URL)

        assert exc_info.value.status == 404
        assert exc_info.value.is_not_found
        assert "Company not found" in exc_info.value.body
        assert len(calls) == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_server_error_retried_with_backoff(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503, text="unavailable")

        sleep = RecordingSleep()
        async with make_client(handler, sleep=sleep) as client:
            with pytest.raises(TransientError) as exc_info:
                await client.fetch_json(URL)

        assert exc_info.value.status == 503
        assert len(calls) == 3
        assert sleep.delays == pytest.approx([0.3, 0.6])

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failure(self):
        responses = [httpx.Response(500), httpx.Response(200, json={"ok": True})]

        def handler(request):
            return responses.pop(0)

        async with make_client(handler) as client:
            assert await client.fetch_json(URL) == {"ok": True}

    @pytest.mark.asyncio
    async def test_network_error_is_transient(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with make_client(handler, max_attempts=2) as client:
            with pytest.raises(TransientError):
                await client.fetch_json(URL)

    @pytest.mark.asyncio
    async def test_malformed_json_is_transient(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, text="<html>not json</html>")

        async with make_client(handler) as client:
            with pytest.raises(TransientError):
                await client.fetch_json(URL)
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_fetch_bytes_returns_body(self):
        def handler(request):
            return httpx.Response(200, content=b"Register Name\n")

        async with make_client(handler) as client:
            assert await client.fetch_bytes(URL) == b"Register Name\n"

    @pytest.mark.asyncio
    async def test_requires_context_manager(self):
        client = make_client(lambda request: httpx.Response(200, json={}))
        with pytest.raises(RuntimeError):
            await client.fetch_json(URL)

    def test_invalid_attempts(self):
        with pytest.raises(ValueError):
            AsyncHTTPClient(max_attempts=0)

    def test_backoff_delay(self):
        client = AsyncHTTPClient(base_delay=0.3)
        assert client.backoff_delay(0) == pytest.approx(0.3)
        assert client.backoff_delay(1) == pytest.approx(0.6)
        assert client.backoff_delay(2) == pytest.approx(1.2)

    @pytest.mark.asyncio
    async def test_stats_count_requests(self):
        async with make_client(lambda request: httpx.Response(200, json={})) as client:
            await client.fetch_json(URL)
            await client.fetch_json(URL)
            assert client.stats["request_count"] == 2


class TestCancellation:
    """Tests for cooperative cancellation."""

    @pytest.mark.asyncio
    async def test_cancelled_token_makes_no_request(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={})

        token = CancelToken()
        token.cancel()
        async with make_client(handler) as client:
            with pytest.raises(RequestCancelled):
                await client.fetch_json(URL, cancel_token=token)
        assert calls == []

    @pytest.mark.asyncio
    async def test_cancel_during_request(self):
        started = asyncio.Event()

        async def handler(request):
            started.set()
            await asyncio.sleep(10)
            return httpx.Response(200, json={})

        token = CancelToken()
        async with make_client(handler) as client:
            task = asyncio.ensure_future(client.fetch_json(URL, cancel_token=token))
            await started.wait()
            token.cancel("superseded")
            with pytest.raises(RequestCancelled) as exc_info:
                await task
        assert exc_info.value.reason == "superseded"

    @pytest.mark.asyncio
    async def test_cancel_during_backoff_stops_retries(self):
        calls = []
        token = CancelToken()

        def handler(request):
            calls.append(request)
            return httpx.Response(500)

        async def cancelling_sleep(delay):
            token.cancel()
            await asyncio.sleep(0)

        async with make_client(handler, sleep=cancelling_sleep) as client:
            with pytest.raises(RequestCancelled):
                await client.fetch_json(URL, cancel_token=token)
        assert len(calls) == 1

