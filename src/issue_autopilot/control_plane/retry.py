"""
Exponential-backoff retry for collaborator calls the controller escalates.

Only errors the caller classifies as retryable are retried; everything else
propagates on the first failure. Backoff sleeps honour a cancellation token.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from issue_autopilot.errors import is_retryable_error
from issue_autopilot.utils.concurrency import CancellationToken

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[None]]
FailureHook = Callable[[int, Exception], None]


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 30.0
    multiplier: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts <= 0:
            raise ValueError("max_attempts must be > 0")
        if self.base_delay_seconds < 0:
            raise ValueError("base_delay_seconds must be >= 0")
        if self.max_delay_seconds < self.base_delay_seconds:
            raise ValueError("max_delay_seconds must be >= base_delay_seconds")
        if self.multiplier < 1.0:
            raise ValueError("multiplier must be >= 1.0")

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number ``attempt`` (1-based), capped at ``max_delay_seconds``."""

        if attempt <= 0:
            return 0.0
        delay = self.base_delay_seconds * self.multiplier ** (attempt - 1)
        return min(self.max_delay_seconds, delay)

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        retryable: Callable[[BaseException], bool] = is_retryable_error,
        on_failure: FailureHook | None = None,
        sleep: SleepFn = asyncio.sleep,
        cancel_token: CancellationToken | None = None,
    ) -> T:
        """Call ``operation`` until it succeeds, fails non-retryably, or attempts run out.

        ``on_failure(attempt, exc)`` observes every failed attempt before the
        retry decision; the last exception is re-raised on exhaustion.
        """

        attempt = 0
        while True:
            attempt += 1
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            try:
                return await operation()
            except Exception as exc:
                if on_failure is not None:
                    on_failure(attempt, exc)
                if attempt >= self.max_attempts or not retryable(exc):
                    raise
            await sleep_with_cancellation(
                self.delay_for(attempt), sleep=sleep, cancel_token=cancel_token
            )


async def sleep_with_cancellation(
    delay_seconds: float,
    *,
    sleep: SleepFn = asyncio.sleep,
    cancel_token: CancellationToken | None = None,
) -> None:
    if delay_seconds <= 0:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        return
    if cancel_token is None:
        await sleep(delay_seconds)
        return

    cancel_token.raise_if_cancelled()
    sleep_task = asyncio.create_task(_await_sleep(delay_seconds, sleep))
    cancel_task = asyncio.create_task(cancel_token.wait())
    done, pending = await asyncio.wait(
        {sleep_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED
    )
    try:
        if cancel_task in done:
            sleep_task.cancel()
            await _await_cancelled(sleep_task)
            raise asyncio.CancelledError(cancel_token.reason or "retry cancelled")
        await sleep_task
    finally:
        for task in pending:
            task.cancel()
        await _await_cancelled(cancel_task)


async def _await_sleep(delay_seconds: float, sleep: SleepFn) -> None:
    await sleep(delay_seconds)


async def _await_cancelled(task: asyncio.Task[None]) -> None:
    try:
        await task
    except asyncio.CancelledError:
        return


__all__ = ["RetryPolicy", "SleepFn", "sleep_with_cancellation"]
