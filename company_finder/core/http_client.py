"""Asynchronous HTTP client with classified retries.

This module wraps ``httpx.AsyncClient`` for the Company Finder endpoints.  It
is a pure request executor: it knows nothing about caching or debouncing.
Failures are classified before the retry decision is made:

- HTTP 4xx raises ``ClientRequestError`` after a single attempt.
- Network errors, HTTP 5xx and malformed bodies are transient and retried
  with exponential backoff (``base_delay * 2 ** attempt``, no jitter).

Every attempt, the request itself and the backoff sleeps observe an optional
``CancelToken`` so a superseded request stops retrying immediately.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from company_finder.core.cancellation import CancelToken
from company_finder.core.errors import ClientRequestError, RequestCancelled, TransientError

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 0.3  # seconds

SleepFunc = Callable[[float], Awaitable[None]]


def _decode_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        raise TransientError(
            f"Malformed response body from {response.request.url}: {exc}",
            status=response.status_code,
        ) from exc


def _raw_bytes(response: httpx.Response) -> bytes:
    return response.content


class AsyncHTTPClient:
    """Async HTTP client with bounded exponential-backoff retry."""

    DEFAULT_USER_AGENT = "CompanyFinder/1.0"

    def __init__(
        self,
        base_url: str = "",
        timeout: float = 10.0,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        base_delay: float = DEFAULT_BASE_DELAY,
        sleep: Optional[SleepFunc] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """Initialize the HTTP client.

        Parameters
        ----------
        base_url : str
            Prefix for relative request URLs.
        timeout : float
            Transport timeout in seconds.  No other deadline is enforced.
        max_attempts : int
            Total attempts for transient failures (at least 1).
        base_delay : float
            Delay before the first retry, in seconds.
        sleep : callable, optional
            Coroutine used for backoff delays.  Defaults to ``asyncio.sleep``.
        transport : httpx.AsyncBaseTransport, optional
            Custom transport, e.g. ``httpx.MockTransport`` in tests.
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._base_url = base_url
        self._timeout = timeout
        self._max_attempts = max_attempts
        self._base_delay = base_delay
        self._sleep = sleep or asyncio.sleep
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self.logger = logging.getLogger(self.__class__.__name__)
        self._request_count = 0
        self._total_request_time = 0.0

    async def __aenter__(self) -> "AsyncHTTPClient":
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            headers={"User-Agent": self.DEFAULT_USER_AGENT},
            follow_redirects=True,
            transport=self._transport,
        )
        self.logger.debug(
            "HTTP client initialized (timeout=%.1fs, max_attempts=%d)",
            self._timeout,
            self._max_attempts,
        )
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            if self._request_count > 0:
                avg_time = self._total_request_time / self._request_count
                self.logger.debug(
                    "HTTP client closed (requests=%d, avg_time=%.2fms)",
                    self._request_count,
                    avg_time * 1000,
                )

    def backoff_delay(self, attempt: int) -> float:
        """Delay after failed attempt number ``attempt`` (0-based)."""
        return self._base_delay * (2**attempt)

    async def fetch_json(
        self,
        url: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> Any:
        """GET ``url`` and decode the JSON body, retrying transient failures."""
        return await self._request_with_retry("GET", url, params, cancel_token, _decode_json)

    async def fetch_bytes(
        self,
        url: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> bytes:
        """GET ``url`` and return the raw body, retrying transient failures."""
        return await self._request_with_retry("GET", url, params, cancel_token, _raw_bytes)

    async def _request_with_retry(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, Any]],
        cancel_token: Optional[CancelToken],
        decode: Callable[[httpx.Response], Any],
    ) -> Any:
        if self._client is None:
            raise RuntimeError("AsyncHTTPClient must be used as an async context manager")

        last_exc: Optional[TransientError] = None

        for attempt in range(self._max_attempts):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()

            self.logger.debug(
                "%s %s (attempt %d/%d)", method, url[:100], attempt + 1, self._max_attempts
            )
            try:
                response = await self._send(method, url, params, cancel_token)
                self._raise_for_status(response)
                return decode(response)
            except (ClientRequestError, RequestCancelled):
                raise
            except TransientError as exc:
                last_exc = exc
            except httpx.HTTPError as exc:
                last_exc = TransientError(f"Request error on {method} {url[:100]}: {exc}")
                last_exc.__cause__ = exc

            self.logger.warning(
                "Transient failure on %s %s (attempt %d/%d): %s",
                method,
                url[:100],
                attempt + 1,
                self._max_attempts,
                last_exc,
            )
            if attempt < self._max_attempts - 1:
                await self._backoff(self.backoff_delay(attempt), cancel_token)

        self.logger.error("All %d attempts failed for %s %s", self._max_attempts, method, url[:100])
        if last_exc is not None:
            raise last_exc
        raise TransientError("HTTP request failed without exception")

    async def _send(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, Any]],
        cancel_token: Optional[CancelToken],
    ) -> httpx.Response:
        assert self._client is not None
        start_time = time.time()
        call = self._client.request(method, url, params=params)
        if cancel_token is not None:
            response = await cancel_token.run(call)
        else:
            response = await call

        elapsed = time.time() - start_time
        self._request_count += 1
        self._total_request_time += elapsed
        self.logger.debug(
            "%s %s -> %d (%.2fms)", method, url[:100], response.status_code, elapsed * 1000
        )
        return response

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        status = response.status_code
        if status < 400:
            return
        body = response.text
        message = f"Request failed: {status} {body}".strip()
        if status < 500:
            raise ClientRequestError(message, status=status, body=body)
        raise TransientError(message, status=status, body=body)

    async def _backoff(self, delay: float, cancel_token: Optional[CancelToken]) -> None:
        self.logger.debug("Retrying in %.2fs", delay)
        if cancel_token is not None:
            await cancel_token.run(self._sleep(delay))
        else:
            await self._sleep(delay)

    @property
    def stats(self) -> Dict[str, Any]:
        """Request count and timing."""
        return {
            "request_count": self._request_count,
            "total_time_ms": self._total_request_time * 1000,
            "avg_time_ms": (
                (self._total_request_time / self._request_count * 1000)
                if self._request_count > 0
                else 0
            ),
        }
