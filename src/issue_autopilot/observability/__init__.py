"""Observability: structured logging, metrics aggregation and the workflow event bus."""

from issue_autopilot.observability.events import DispatchError, EventBus
from issue_autopilot.observability.logging import (
    LoggingConfig,
    configure_logging,
    correlation_scope,
    shutdown_logging,
)
from issue_autopilot.observability.metrics import (
    HealthReport,
    HealthStatus,
    MetricsRegistry,
    WorkflowMetrics,
    WorkflowMetricsSnapshot,
)

__all__ = [
    "DispatchError",
    "EventBus",
    "HealthReport",
    "HealthStatus",
    "LoggingConfig",
    "MetricsRegistry",
    "WorkflowMetrics",
    "WorkflowMetricsSnapshot",
    "configure_logging",
    "correlation_scope",
    "shutdown_logging",
]
