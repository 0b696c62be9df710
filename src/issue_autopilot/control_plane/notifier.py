"""Lifecycle notifications (started, failed, ready for review, published)."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Protocol, runtime_checkable

import structlog


class LifecycleEvent(StrEnum):
    STARTED = "started"
    FAILED = "failed"
    READY_FOR_REVIEW = "ready_for_review"
    PUBLISHED = "published"


@dataclass(frozen=True, slots=True)
class LifecycleNotice:
    event: LifecycleEvent
    run_id: str
    work_item_id: str
    detail: Mapping[str, object] = field(default_factory=dict)


@runtime_checkable
class LifecycleNotifier(Protocol):
    """Receives lifecycle notices. Raising never aborts the workflow."""

    async def notify(self, notice: LifecycleNotice) -> None: ...


class LoggingNotifier:
    """Default notifier: one structured log line per notice."""

    def __init__(self, *, logger: Any | None = None) -> None:
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    async def notify(self, notice: LifecycleNotice) -> None:
        self._logger.info(
            "control_plane_lifecycle_notice",
            lifecycle_event=notice.event.value,
            run_id=notice.run_id,
            work_item_id=notice.work_item_id,
            **dict(notice.detail),
        )


__all__ = ["LifecycleEvent", "LifecycleNotice", "LifecycleNotifier", "LoggingNotifier"]
