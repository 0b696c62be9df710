"""Control-plane public API."""

from issue_autopilot.control_plane.controller import (
    Classifier,
    Resolver,
    Reviewer,
    WorkflowController,
)
from issue_autopilot.control_plane.notifier import (
    LifecycleEvent,
    LifecycleNotice,
    LifecycleNotifier,
    LoggingNotifier,
)
from issue_autopilot.control_plane.retry import RetryPolicy
from issue_autopilot.control_plane.run_store import (
    InMemoryRunStore,
    JsonlRunStore,
    RunStore,
    read_run_log,
)

__all__ = [
    "Classifier",
    "InMemoryRunStore",
    "JsonlRunStore",
    "LifecycleEvent",
    "LifecycleNotice",
    "LifecycleNotifier",
    "LoggingNotifier",
    "Resolver",
    "RetryPolicy",
    "Reviewer",
    "RunStore",
    "WorkflowController",
    "read_run_log",
]
