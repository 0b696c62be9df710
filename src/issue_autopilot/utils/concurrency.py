"""Async concurrency primitives used by the synthesis and control planes."""

from __future__ import annotations

import asyncio
import inspect
import time
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Final, TypeVar

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable

T = TypeVar("T")

_CANCELLED: Final[str] = "operation cancelled"


class CancellationToken:
    """One-shot cancellation flag that remembers the first reason given."""

    def __init__(self) -> None:
        self._fired = asyncio.Event()
        self._reason: str | None = None

    def cancel(self, reason: str | None = None) -> None:
        if self._fired.is_set():
            return
        self._reason = reason
        self._fired.set()

    @property
    def is_cancelled(self) -> bool:
        return self._fired.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    async def wait(self) -> None:
        await self._fired.wait()

    def raise_if_cancelled(self) -> None:
        if self.is_cancelled:
            raise asyncio.CancelledError(self._reason or _CANCELLED)


class PermitPool:
    """Fixed number of permits; ``in_use`` is exact because acquire and release run on one loop."""

    def __init__(self, limit: int) -> None:
        if limit <= 0:
            raise ValueError("limit must be > 0")
        self.limit = limit
        self.in_use = 0
        self._permits = asyncio.Semaphore(limit)

    @property
    def available(self) -> int:
        return self.limit - self.in_use

    async def acquire(self) -> None:
        await self._permits.acquire()
        self.in_use += 1

    def release(self) -> None:
        if self.in_use == 0:
            raise RuntimeError("release called more times than acquire")
        self.in_use -= 1
        self._permits.release()

    @asynccontextmanager
    async def permit(self) -> AsyncIterator[None]:
        await self.acquire()
        try:
            yield
        finally:
            self.release()


@dataclass(slots=True)
class Deadline:
    """Monotonic wall-clock budget shared by nested stages."""

    budget_seconds: float
    clock: Callable[[], float] = time.monotonic
    _started: float = field(init=False)

    def __post_init__(self) -> None:
        if self.budget_seconds <= 0:
            raise ValueError("budget_seconds must be > 0")
        self._started = self.clock()

    @property
    def elapsed(self) -> float:
        return self.clock() - self._started

    @property
    def remaining(self) -> float:
        return max(0.0, self.budget_seconds - self.elapsed)

    @property
    def expired(self) -> bool:
        return self.remaining <= 0.0

    def clamp(self, timeout_seconds: float | None) -> float:
        """Return the smaller of ``timeout_seconds`` and what is left of the budget."""

        if timeout_seconds is None:
            return self.remaining
        return min(timeout_seconds, self.remaining)


async def run_with_timeout(
    awaitable: Awaitable[T],
    timeout_seconds: float,
    cancel_token: CancellationToken | None = None,
) -> T:
    """Await ``awaitable`` for at most ``timeout_seconds``.

    Raises ``TimeoutError`` on expiry and ``asyncio.CancelledError`` when
    ``cancel_token`` fires first. The inner work is cancelled and awaited on
    every exit path, including cancellation of the caller.
    """

    if timeout_seconds <= 0:
        _discard(awaitable)
        raise TimeoutError(f"operation timed out after {timeout_seconds} seconds")
    if cancel_token is not None and cancel_token.is_cancelled:
        _discard(awaitable)
        raise asyncio.CancelledError(cancel_token.reason or _CANCELLED)

    work: asyncio.Future[T] = asyncio.ensure_future(awaitable)
    watched: set[asyncio.Future[Any]] = {work}
    stop: asyncio.Future[None] | None = None
    if cancel_token is not None:
        stop = asyncio.ensure_future(cancel_token.wait())
        watched.add(stop)

    try:
        done, _ = await asyncio.wait(
            watched, timeout=timeout_seconds, return_when=asyncio.FIRST_COMPLETED
        )
        if work in done:
            return work.result()
        if stop is not None and stop in done:
            reason = cancel_token.reason if cancel_token is not None else None
            raise asyncio.CancelledError(reason or _CANCELLED)
        raise TimeoutError(f"operation timed out after {timeout_seconds} seconds")
    finally:
        for pending in watched:
            if pending.done():
                continue
            pending.cancel()
            with suppress(asyncio.CancelledError):
                await pending


def _discard(awaitable: Awaitable[object]) -> None:
    # A coroutine that is never scheduled must be closed or it warns on collection.
    if inspect.iscoroutine(awaitable):
        awaitable.close()


__all__ = [
    "CancellationToken",
    "Deadline",
    "PermitPool",
    "run_with_timeout",
]
