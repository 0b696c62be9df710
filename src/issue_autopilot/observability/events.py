"""In-process event bus with replay buffer and captured dispatch failures."""

from __future__ import annotations

import asyncio
import inspect
import threading
from collections import deque
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Final, cast

from issue_autopilot.domain.events import EventType, WorkflowEvent

Subscriber = Callable[[WorkflowEvent], object]

_DEFAULT_ERROR_BUFFER: Final[int] = 1024


@dataclass(frozen=True, slots=True)
class DispatchError:
    """Subscriber failure captured without interrupting the publisher."""

    stage: str
    event_id: str
    target: str
    error_type: str
    message: str


@dataclass(frozen=True, slots=True)
class _Subscription:
    token: int
    event_type: EventType | None
    callback: Subscriber


class EventBus:
    """Event bus with sync and async subscribers and deterministic replay.

    Subscriber exceptions never propagate to the publisher; they are returned
    from ``publish`` and kept in a bounded buffer readable via ``dispatch_errors``.
    """

    def __init__(self, *, buffer_size: int = 1000) -> None:
        if isinstance(buffer_size, bool) or not isinstance(buffer_size, int):
            raise ValueError(f"buffer_size must be an integer, got {type(buffer_size).__name__}")
        if buffer_size <= 0:
            raise ValueError("buffer_size must be > 0")

        self._buffer = deque[WorkflowEvent](maxlen=buffer_size)
        self._subscriptions: dict[int, _Subscription] = {}
        self._pending_async_tasks: set[asyncio.Task[None]] = set()
        self._dispatch_errors = deque[DispatchError](maxlen=_DEFAULT_ERROR_BUFFER)
        self._next_token = 1
        self._lock = threading.RLock()

    def subscribe(self, event_type: EventType | str | None, callback: Subscriber) -> int:
        """Subscribe to one event type, or to all events when ``event_type`` is ``None``."""

        if not callable(callback):
            raise ValueError("callback must be callable")
        normalized = None if event_type is None else EventType(event_type)
        with self._lock:
            token = self._next_token
            self._next_token += 1
            self._subscriptions[token] = _Subscription(token, normalized, callback)
        return token

    def unsubscribe(self, token: int) -> bool:
        with self._lock:
            return self._subscriptions.pop(token, None) is not None

    def publish(self, event: WorkflowEvent) -> tuple[DispatchError, ...]:
        """Publish from synchronous code; async subscribers are scheduled on the running loop."""

        subscriptions = self._record(event)
        errors: list[DispatchError] = []
        for subscription in subscriptions:
            if not _subscription_matches(subscription, event):
                continue
            target = _callback_name(subscription.callback)
            try:
                result = subscription.callback(event)
                if inspect.isawaitable(result):
                    self._schedule(cast("Awaitable[object]", result), event=event, target=target)
            except Exception as exc:  # noqa: BLE001
                errors.append(_dispatch_error(event=event, target=target, exc=exc))
        return self._remember(errors)

    async def publish_async(self, event: WorkflowEvent) -> tuple[DispatchError, ...]:
        """Publish from async code, awaiting async subscribers in subscription order."""

        subscriptions = self._record(event)
        errors: list[DispatchError] = []
        for subscription in subscriptions:
            if not _subscription_matches(subscription, event):
                continue
            try:
                result = subscription.callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:  # noqa: BLE001
                errors.append(
                    _dispatch_error(event=event, target=_callback_name(subscription.callback), exc=exc)
                )
        return self._remember(errors)

    async def emit_async(
        self,
        event_type: EventType | str,
        *,
        run_id: str,
        work_item_id: str,
        payload: Mapping[str, object] | None = None,
    ) -> tuple[WorkflowEvent, tuple[DispatchError, ...]]:
        event = WorkflowEvent.create(
            event_type, run_id=run_id, work_item_id=work_item_id, payload=payload
        )
        return event, await self.publish_async(event)

    async def drain_async(self) -> tuple[DispatchError, ...]:
        """Await async subscriber tasks scheduled by synchronous ``publish``."""

        with self._lock:
            pending = tuple(self._pending_async_tasks)
            self._pending_async_tasks.clear()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        return self.dispatch_errors()

    def replay(
        self,
        *,
        since: datetime | None = None,
        event_type: EventType | str | None = None,
        run_id: str | None = None,
        limit: int | None = None,
    ) -> tuple[WorkflowEvent, ...]:
        """Replay buffered events in publish order."""

        type_filter = None if event_type is None else EventType(event_type)
        with self._lock:
            events = tuple(self._buffer)

        filtered = [
            event
            for event in events
            if (since is None or event.timestamp > since)
            and (type_filter is None or event.event_type is type_filter)
            and (run_id is None or event.run_id == run_id)
        ]
        if limit is not None:
            if limit <= 0:
                return ()
            filtered = filtered[-limit:]
        return tuple(filtered)

    def dispatch_errors(self, *, limit: int | None = None) -> tuple[DispatchError, ...]:
        with self._lock:
            errors = tuple(self._dispatch_errors)
        if limit is None:
            return errors
        if limit <= 0:
            return ()
        return errors[-limit:]

    def _record(self, event: WorkflowEvent) -> tuple[_Subscription, ...]:
        if not isinstance(event, WorkflowEvent):
            raise ValueError(f"event must be WorkflowEvent, got {type(event).__name__}")
        with self._lock:
            self._buffer.append(event)
            return tuple(self._subscriptions.values())

    def _remember(self, errors: list[DispatchError]) -> tuple[DispatchError, ...]:
        if errors:
            with self._lock:
                self._dispatch_errors.extend(errors)
        return tuple(errors)

    def _schedule(self, awaitable: Awaitable[object], *, event: WorkflowEvent, target: str) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            asyncio.run(_await(awaitable))
            return

        task = loop.create_task(_await(awaitable))
        with self._lock:
            self._pending_async_tasks.add(task)
        task.add_done_callback(lambda done: self._on_task_done(done, event=event, target=target))

    def _on_task_done(self, task: asyncio.Task[None], *, event: WorkflowEvent, target: str) -> None:
        with self._lock:
            self._pending_async_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if isinstance(exc, Exception):
            with self._lock:
                self._dispatch_errors.append(_dispatch_error(event=event, target=target, exc=exc))


async def _await(awaitable: Awaitable[object]) -> None:
    await awaitable


def _subscription_matches(subscription: _Subscription, event: WorkflowEvent) -> bool:
    return subscription.event_type is None or subscription.event_type is event.event_type


def _callback_name(callback: object) -> str:
    name = getattr(callback, "__name__", None)
    if isinstance(name, str) and name:
        return name
    return callback.__class__.__name__


def _dispatch_error(*, event: WorkflowEvent, target: str, exc: Exception) -> DispatchError:
    return DispatchError(
        stage="subscriber",
        event_id=event.event_id,
        target=target,
        error_type=exc.__class__.__name__,
        message=str(exc),
    )


__all__ = ["DispatchError", "EventBus", "Subscriber"]
