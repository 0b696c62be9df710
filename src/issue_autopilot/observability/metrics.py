"""Thread-safe metrics registry and the workflow-level aggregator built on it."""

from __future__ import annotations

import json
import math
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path
from typing import Final, TypeVar

from issue_autopilot.domain.models import ErrorKind, WorkflowError, WorkflowRecord, WorkflowState

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

_Labels = tuple[tuple[str, str], ...]
_Series = tuple[str, _Labels]
_T = TypeVar("_T")

_NAME_LIMIT: Final[int] = 128
_LABEL_LIMIT: Final[int] = 256

RUNS_STARTED: Final[str] = "workflow_runs_started"
RUNS_FINISHED: Final[str] = "workflow_runs_finished"
RUNS_ACTIVE: Final[str] = "workflow_runs_active"
RUN_DURATION: Final[str] = "workflow_run_duration_seconds"
STAGE_DURATION: Final[str] = "workflow_stage_duration_seconds"
HUMAN_REVIEW: Final[str] = "workflow_human_review_total"
FAILURE_REASONS: Final[str] = "workflow_failure_reasons"
ERRORS_RECORDED: Final[str] = "workflow_errors_total"

# Health thresholds applied to completed runs.
_UNHEALTHY_SUCCESS_RATE: Final[float] = 0.7
_DEGRADED_SUCCESS_RATE: Final[float] = 0.9
_UNHEALTHY_ERROR_COUNT: Final[int] = 10
_DEGRADED_MEAN_DURATION_SECONDS: Final[float] = 30.0


@dataclass(slots=True)
class _Samples:
    values: list[float] = field(default_factory=list)

    @property
    def mean(self) -> float:
        return sum(self.values) / len(self.values) if self.values else 0.0

    def summary(self) -> dict[str, JSONValue]:
        if not self.values:
            return {"count": 0, "sum": 0.0, "min": None, "max": None, "avg": 0.0, "last": None}
        return {
            "count": len(self.values),
            "sum": math.fsum(self.values),
            "min": min(self.values),
            "max": max(self.values),
            "avg": self.mean,
            "last": self.values[-1],
        }


class MetricsRegistry:
    """Labelled counters, gauges and sample distributions held in memory.

    Series are keyed by metric name plus sorted label pairs, so exports list
    them in a stable order regardless of insertion order.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._counters: dict[_Series, float] = {}
        self._gauges: dict[_Series, float] = {}
        self._samples: dict[_Series, _Samples] = {}
        self._created_at = datetime.now(tz=UTC)

    def inc(self, name: str, amount: float = 1.0, *, labels: Mapping[str, str] | None = None) -> None:
        delta = _finite(amount, "amount")
        if delta < 0:
            raise ValueError("counter increment amount must be >= 0")
        series = _series(name, labels)
        with self._lock:
            self._counters[series] = self._counters.get(series, 0.0) + delta

    def set_gauge(self, name: str, value: float, *, labels: Mapping[str, str] | None = None) -> None:
        series = _series(name, labels)
        with self._lock:
            self._gauges[series] = _finite(value, "value")

    def add_gauge(self, name: str, delta: float, *, labels: Mapping[str, str] | None = None) -> float:
        """Adjust a gauge and return its new value."""

        series = _series(name, labels)
        change = _finite(delta, "delta")
        with self._lock:
            self._gauges[series] = self._gauges.get(series, 0.0) + change
            return self._gauges[series]

    def observe(self, name: str, value: float, *, labels: Mapping[str, str] | None = None) -> None:
        series = _series(name, labels)
        sample = _finite(value, "value")
        with self._lock:
            self._samples.setdefault(series, _Samples()).values.append(sample)

    def get_counter(self, name: str, *, labels: Mapping[str, str] | None = None) -> float:
        with self._lock:
            return self._counters.get(_series(name, labels), 0.0)

    def get_gauge(self, name: str, *, labels: Mapping[str, str] | None = None) -> float | None:
        with self._lock:
            return self._gauges.get(_series(name, labels))

    def get_distribution(
        self, name: str, *, labels: Mapping[str, str] | None = None
    ) -> dict[str, JSONValue] | None:
        with self._lock:
            samples = self._samples.get(_series(name, labels))
            return samples.summary() if samples is not None else None

    def counters_by_label(self, name: str, label: str) -> dict[str, float]:
        """Sum every counter series of ``name`` by the value of one label."""

        totals: dict[str, float] = {}
        with self._lock:
            for value, amount in _by_label(self._counters, name, label, lambda count: count):
                totals[value] = totals.get(value, 0.0) + amount
        return dict(sorted(totals.items()))

    def distribution_means_by_label(self, name: str, label: str) -> dict[str, float]:
        with self._lock:
            means = dict(_by_label(self._samples, name, label, lambda samples: samples.mean))
        return dict(sorted(means.items()))

    def reset(self) -> None:
        with self._lock:
            for table in (self._counters, self._gauges, self._samples):
                table.clear()
            self._created_at = datetime.now(tz=UTC)

    def snapshot(self) -> dict[str, JSONValue]:
        with self._lock:
            created_at = self._created_at
            counters = {_identifier(series): value for series, value in sorted(self._counters.items())}
            gauges = {_identifier(series): value for series, value in sorted(self._gauges.items())}
            distributions: dict[str, JSONValue] = {
                _identifier(series): samples.summary()
                for series, samples in sorted(self._samples.items(), key=lambda item: item[0])
            }
        now = datetime.now(tz=UTC)
        return {
            "metadata": {
                "created_at": _timestamp(created_at),
                "snapshot_at": _timestamp(now),
                "uptime_seconds": max(0.0, (now - created_at).total_seconds()),
            },
            "counters": dict(counters),
            "gauges": dict(gauges),
            "distributions": distributions,
        }

    def to_json(self, *, indent: int | None = None) -> str:
        separators = (",", ":") if indent is None else None
        return json.dumps(
            self.snapshot(), sort_keys=True, indent=indent, separators=separators, ensure_ascii=False
        )

    def export_json(self, path: str | Path, *, indent: int = 2) -> Path:
        output_path = Path(path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(self.to_json(indent=indent), encoding="utf-8")
        return output_path


class HealthStatus(StrEnum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass(frozen=True, slots=True)
class WorkflowMetricsSnapshot:
    """Aggregate view of finished runs.

    ``failure_reasons`` counts each FAILED run once, keyed by its deciding error.
    ``error_reasons`` counts every recorded error, keyed ``<kind>:<stage>``.
    """

    total_started: int
    total_finished: int
    completed: int
    human_review: int
    failed: int
    active: int
    success_rate: float
    mean_duration_seconds: float
    error_count: int
    stage_mean_seconds: Mapping[str, float] = field(default_factory=dict)
    failure_reasons: Mapping[str, int] = field(default_factory=dict)
    error_reasons: Mapping[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "active": self.active,
            "completed": self.completed,
            "error_count": self.error_count,
            "error_reasons": dict(self.error_reasons),
            "failed": self.failed,
            "failure_reasons": dict(self.failure_reasons),
            "human_review": self.human_review,
            "mean_duration_seconds": self.mean_duration_seconds,
            "stage_mean_seconds": dict(self.stage_mean_seconds),
            "success_rate": self.success_rate,
            "total_finished": self.total_finished,
            "total_started": self.total_started,
        }


@dataclass(frozen=True, slots=True)
class HealthReport:
    status: HealthStatus
    active_runs: int
    success_rate: float
    mean_duration_seconds: float
    error_count: int


class WorkflowMetrics:
    """Aggregates run outcomes; every terminal update happens under one lock."""

    def __init__(self, registry: MetricsRegistry | None = None) -> None:
        self._registry = registry if registry is not None else MetricsRegistry()
        self._lock = threading.RLock()

    @property
    def registry(self) -> MetricsRegistry:
        return self._registry

    def record_started(self) -> None:
        with self._lock:
            self._registry.inc(RUNS_STARTED)
            self._registry.add_gauge(RUNS_ACTIVE, 1.0)

    def record_stage(self, stage: str, seconds: float) -> None:
        self._registry.observe(STAGE_DURATION, max(0.0, seconds), labels={"stage": stage})

    def record_error(self, error: WorkflowError) -> None:
        self._registry.inc(
            ERRORS_RECORDED, labels={"kind": error.kind.value, "reason": error.reason_key}
        )

    def record_terminal(self, record: WorkflowRecord) -> None:
        """Fold a finished run into the aggregates."""

        if not record.is_terminal:
            raise ValueError(f"run {record.run_id} is not terminal: {record.state.value}")
        with self._lock:
            self._registry.inc(RUNS_FINISHED, labels={"state": record.state.value})
            self._registry.add_gauge(RUNS_ACTIVE, -1.0)
            if record.duration_seconds is not None:
                self._registry.observe(RUN_DURATION, record.duration_seconds)
            if record.state is WorkflowState.REQUIRES_HUMAN_REVIEW:
                self._registry.inc(HUMAN_REVIEW)
            if record.state is WorkflowState.FAILED:
                causes = [error for error in record.errors if error.kind is not ErrorKind.NOTIFIER]
                reason = causes[-1].reason_key if causes else "internal:unknown"
                self._registry.inc(FAILURE_REASONS, labels={"reason": reason})

    def snapshot(self) -> WorkflowMetricsSnapshot:
        with self._lock:
            finished = self._registry.counters_by_label(RUNS_FINISHED, "state")
            completed = int(finished.get(WorkflowState.COMPLETE.value, 0))
            human = int(finished.get(WorkflowState.REQUIRES_HUMAN_REVIEW.value, 0))
            failed = int(finished.get(WorkflowState.FAILED.value, 0))
            total_finished = completed + human + failed
            duration = self._registry.get_distribution(RUN_DURATION)
            mean_duration = float(duration["avg"]) if duration else 0.0  # type: ignore[arg-type]
            return WorkflowMetricsSnapshot(
                total_started=int(self._registry.get_counter(RUNS_STARTED)),
                total_finished=total_finished,
                completed=completed,
                human_review=human,
                failed=failed,
                active=int(self._registry.get_gauge(RUNS_ACTIVE) or 0.0),
                success_rate=(completed / total_finished) if total_finished else 0.0,
                mean_duration_seconds=mean_duration,
                error_count=int(sum(self._registry.counters_by_label(ERRORS_RECORDED, "kind").values())),
                stage_mean_seconds=self._registry.distribution_means_by_label(STAGE_DURATION, "stage"),
                failure_reasons={
                    reason: int(count)
                    for reason, count in self._registry.counters_by_label(
                        FAILURE_REASONS, "reason"
                    ).items()
                },
                error_reasons={
                    reason: int(count)
                    for reason, count in self._registry.counters_by_label(
                        ERRORS_RECORDED, "reason"
                    ).items()
                },
            )

    def health(self) -> HealthReport:
        snap = self.snapshot()
        status = HealthStatus.HEALTHY
        if snap.total_finished:
            if (
                snap.success_rate < _UNHEALTHY_SUCCESS_RATE
                or snap.error_count > _UNHEALTHY_ERROR_COUNT
            ):
                status = HealthStatus.UNHEALTHY
            elif (
                snap.success_rate < _DEGRADED_SUCCESS_RATE
                or snap.mean_duration_seconds > _DEGRADED_MEAN_DURATION_SECONDS
            ):
                status = HealthStatus.DEGRADED
        elif snap.error_count > _UNHEALTHY_ERROR_COUNT:
            status = HealthStatus.UNHEALTHY
        return HealthReport(
            status=status,
            active_runs=snap.active,
            success_rate=snap.success_rate,
            mean_duration_seconds=snap.mean_duration_seconds,
            error_count=snap.error_count,
        )


def _series(name: str, labels: Mapping[str, str] | None) -> _Series:
    metric = _bounded(name, "metric name", _NAME_LIMIT)
    pairs = sorted(
        (_bounded(key, "label key", _NAME_LIMIT), _bounded(value, f"label {key!r}", _LABEL_LIMIT))
        for key, value in (labels or {}).items()
    )
    return metric, tuple(pairs)


def _bounded(value: object, what: str, limit: int) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{what} must be a string, got {type(value).__name__}")
    text = value.strip()
    if not text:
        raise ValueError(f"{what} must not be empty")
    if len(text) > limit:
        raise ValueError(f"{what} must be <= {limit} characters")
    return text


def _by_label(
    table: Mapping[_Series, _T], name: str, label: str, measure: Callable[[_T], float]
) -> list[tuple[str, float]]:
    metric = _bounded(name, "metric name", _NAME_LIMIT)
    return [
        (value, measure(item))
        for (series_name, labels), item in table.items()
        if series_name == metric
        for key, value in labels
        if key == label
    ]


def _identifier(series: _Series) -> str:
    name, labels = series
    if not labels:
        return name
    return name + "{" + ",".join(f"{key}={value}" for key, value in labels) + "}"


def _timestamp(moment: datetime) -> str:
    return moment.isoformat(timespec="seconds").replace("+00:00", "Z")


def _finite(value: float, what: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{what} must be numeric, got {type(value).__name__}")
    if not math.isfinite(value):
        raise ValueError(f"{what} must be finite")
    return float(value)


__all__ = [
    "HealthReport",
    "HealthStatus",
    "JSONScalar",
    "JSONValue",
    "MetricsRegistry",
    "WorkflowMetrics",
    "WorkflowMetricsSnapshot",
]
