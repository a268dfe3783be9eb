# core/cancellation.py
"""
Cooperative cancellation handle shared between a caller and the gateway.

The handle is checked before each attempt, raced against in-flight attempts
and backoff sleeps, and polled by streams between reads.
"""

import asyncio
from typing import Awaitable, Optional, TypeVar

from core.exceptions import CancellationError

T = TypeVar("T")


class CancellationToken:
    """
    One-shot cancellation flag backed by an asyncio.Event.

    Once cancelled it stays cancelled; a new request needs a new token.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: Optional[str] = None) -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CancellationError(self.reason or "request cancelled")

    async def wait(self) -> None:
        await self._event.wait()


async def race(awaitable: Awaitable[T], token: Optional[CancellationToken]) -> T:
    """
    Await `awaitable` unless `token` fires first.

    On cancellation the in-flight task is cancelled and awaited so no work
    outlives the request, then CancellationError is raised.
    """
    if token is None:
        return await awaitable

    if token.cancelled:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        token.raise_if_cancelled()
    work = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(token.wait())
    try:
        await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        work.cancel()
        raise
    finally:
        waiter.cancel()

    # Cancellation supersedes a result that resolved in the same tick.
    if token.cancelled:
        if not work.done():
            work.cancel()
        try:
            await work
        except (asyncio.CancelledError, Exception):
            pass
        token.raise_if_cancelled()

    return work.result()


async def sleep(delay: float, token: Optional[CancellationToken]) -> None:
    """Sleep for `delay` seconds, waking early with CancellationError."""
    if token is None:
        await asyncio.sleep(delay)
        return

    token.raise_if_cancelled()
    try:
        await asyncio.wait_for(token.wait(), timeout=delay)
    except asyncio.TimeoutError:
        return
    token.raise_if_cancelled()
