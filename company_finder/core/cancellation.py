"""Cooperative cancellation for in-flight requests.

A ``CancelToken`` is handed from the search controller down through the
retry layer to the transport.  Cancelling it interrupts whatever the holder
is currently awaiting (the HTTP call or a backoff sleep) and makes every
later checkpoint raise ``RequestCancelled``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Optional, TypeVar

from company_finder.core.errors import RequestCancelled

T = TypeVar("T")

logger = logging.getLogger(__name__)


class CancelToken:
    """Signal shared between a request and whoever may supersede it."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "superseded") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()
            logger.debug("Request cancelled (%s)", reason)

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise RequestCancelled(self.reason or "superseded")

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the token is cancelled first.

        Raises
        ------
        RequestCancelled
            If the token fires before the awaitable completes.  The
            awaitable is cancelled and its result discarded.
        """
        self.raise_if_cancelled()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task.done():
            return task.result()

        task.cancel()
        await asyncio.wait({task})
        raise RequestCancelled(self.reason or "superseded")

    async def sleep(self, delay: float) -> None:
        await self.run(asyncio.sleep(delay))
