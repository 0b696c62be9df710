"""
issue-autopilot — workflow controller

File: src/issue_autopilot/control_plane/controller.py

Purpose
- Drive one work item through classify -> resolve -> review -> publish as an
  explicit state machine, one asyncio task per run.

Normative behavior
- Infeasible analyses (or critical complexity) and rejected reviews end in
  REQUIRES_HUMAN_REVIEW; a failed resolution, any stage exception, a timeout
  or a cancellation ends in FAILED.
- Every transition is validated against the state graph, stamped with a
  strictly increasing sequence and timestamp, logged, and published on the
  event bus.
- Each stage runs under min(stage budget, remaining workflow budget).
- Publisher errors flagged retryable are retried with exponential backoff;
  every failed attempt is recorded on the run.
- Notifier failures are recorded and logged but never change the outcome.
- Duplicate active runs for one work item are rejected unless configured.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any, Final, Protocol, TypeVar, runtime_checkable

import structlog

from issue_autopilot.config.settings import WorkflowSettings
from issue_autopilot.control_plane.notifier import (
    LifecycleEvent,
    LifecycleNotice,
    LifecycleNotifier,
)
from issue_autopilot.control_plane.retry import RetryPolicy, SleepFn
from issue_autopilot.control_plane.run_store import InMemoryRunStore, RunStore
from issue_autopilot.domain.events import EventType, WorkflowEvent
from issue_autopilot.domain.ids import generate_run_id
from issue_autopilot.domain.models import (
    Analysis,
    ChangeSet,
    ComplexityTier,
    ErrorKind,
    PublishedChangeRef,
    ResolutionOutcome,
    ReviewOutcome,
    StateTransition,
    WorkflowError,
    WorkflowRecord,
    WorkflowState,
    WorkItem,
    can_transition,
)
from issue_autopilot.errors import (
    AutopilotError,
    CollaboratorError,
    DuplicateRunError,
    InvalidTransitionError,
    ResolutionTimeoutError,
    StageTimeoutError,
    WorkItemValidationError,
)
from issue_autopilot.integration_plane.publisher import Publisher
from issue_autopilot.observability.events import EventBus
from issue_autopilot.observability.logging import correlation_scope
from issue_autopilot.observability.metrics import (
    HealthReport,
    WorkflowMetrics,
    WorkflowMetricsSnapshot,
)
from issue_autopilot.utils.concurrency import (
    CancellationToken,
    Deadline,
    PermitPool,
    run_with_timeout,
)

T = TypeVar("T")

STAGE_ANALYSIS: Final[str] = "analysis"
STAGE_RESOLUTION: Final[str] = "resolution"
STAGE_REVIEW: Final[str] = "review"
STAGE_PUBLISHING: Final[str] = "publishing"
STAGE_WORKFLOW: Final[str] = "workflow"
STAGE_NOTIFIER: Final[str] = "notifier"

_NOTIFY_TIMEOUT_SECONDS: Final[float] = 10.0
_SAFETY_PREFIX: Final[str] = "Safety check failed"


@runtime_checkable
class Classifier(Protocol):
    async def classify(self, item: WorkItem) -> Analysis: ...


@runtime_checkable
class Resolver(Protocol):
    async def resolve(
        self,
        analysis: Analysis,
        item: WorkItem,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> ResolutionOutcome: ...


@runtime_checkable
class Reviewer(Protocol):
    def review(self, change_set: ChangeSet, item: WorkItem | None = None) -> ReviewOutcome: ...


class _RecordedFailure(Exception):
    """Terminal failure whose errors are already on the record."""


@dataclass(slots=True)
class _ActiveRun:
    record: WorkflowRecord
    token: CancellationToken
    deadline: Deadline
    started: float
    stage: str = STAGE_WORKFLOW
    task: asyncio.Task[None] | None = field(default=None, repr=False)


class WorkflowController:
    """Coordinates concurrent per-item pipelines over injected collaborators."""

    def __init__(
        self,
        *,
        classifier: Classifier,
        resolver: Resolver,
        reviewer: Reviewer,
        publisher: Publisher,
        settings: WorkflowSettings | None = None,
        store: RunStore | None = None,
        metrics: WorkflowMetrics | None = None,
        events: EventBus | None = None,
        notifier: LifecycleNotifier | None = None,
        retry_policy: RetryPolicy | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: SleepFn = asyncio.sleep,
        logger: Any | None = None,
    ) -> None:
        self._classifier = classifier
        self._resolver = resolver
        self._reviewer = reviewer
        self._publisher = publisher
        self._settings = settings if settings is not None else WorkflowSettings()
        self._store = store if store is not None else InMemoryRunStore()
        self._metrics = metrics if metrics is not None else WorkflowMetrics()
        self._events = events if events is not None else EventBus()
        self._notifier = notifier
        self._retry = (
            retry_policy
            if retry_policy is not None
            else RetryPolicy(
                max_attempts=self._settings.publish_max_attempts,
                base_delay_seconds=self._settings.publish_backoff_seconds,
                max_delay_seconds=max(
                    self._settings.publish_backoff_max_seconds,
                    self._settings.publish_backoff_seconds,
                ),
            )
        )
        self._clock = clock
        self._sleep = sleep
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._semaphore = (
            PermitPool(self._settings.max_concurrent_runs)
            if self._settings.max_concurrent_runs > 0
            else None
        )
        self._runs: dict[str, _ActiveRun] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._closed = False

    @property
    def events(self) -> EventBus:
        return self._events

    @property
    def metrics(self) -> WorkflowMetrics:
        return self._metrics

    @property
    def store(self) -> RunStore:
        return self._store

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def submit(self, item: WorkItem) -> str:
        """Register a run for ``item`` and schedule it; returns the run id.

        Must be called from a running event loop.
        """

        if not isinstance(item, WorkItem):
            raise WorkItemValidationError(f"submit expects a WorkItem, got {type(item).__name__}")
        if self._closed:
            raise AutopilotError("workflow controller is shut down")
        loop = asyncio.get_running_loop()

        if not self._settings.allow_duplicate_runs:
            active_run_id = self._store.active_run_for(item.id)
            if active_run_id is not None:
                raise DuplicateRunError(item.id, active_run_id)

        run_id = generate_run_id()
        started_at = datetime.now(UTC)
        record = WorkflowRecord(
            run_id=run_id,
            work_item=item,
            started_at=started_at,
            transitions=(StateTransition(1, WorkflowState.INITIALIZING, None, started_at),),
        )
        self._store.add(record)
        run = _ActiveRun(
            record=record,
            token=CancellationToken(),
            deadline=Deadline(self._settings.max_workflow_seconds, clock=self._clock),
            started=self._clock(),
        )
        self._runs[run_id] = run
        self._metrics.record_started()
        self._logger.info("control_plane_run_submitted", run_id=run_id, work_item_id=item.id)

        task = loop.create_task(self._drive(run), name=f"workflow-{run_id}")
        run.task = task
        self._tasks[run_id] = task
        return run_id

    async def run(self, item: WorkItem) -> WorkflowRecord:
        """Submit ``item`` and wait for its terminal record."""

        return await self.wait(self.submit(item))

    async def wait(self, run_id: str) -> WorkflowRecord:
        task = self._tasks.get(run_id)
        if task is not None:
            await asyncio.shield(task)
        return self._store.get(run_id)

    def get_state(self, run_id: str) -> WorkflowRecord:
        return self._store.get(run_id)

    def list_active(self) -> list[WorkflowRecord]:
        return self._store.active()

    def list_completed(self) -> list[WorkflowRecord]:
        return self._store.completed()

    def get_metrics(self) -> WorkflowMetricsSnapshot:
        return self._metrics.snapshot()

    def health(self) -> HealthReport:
        return self._metrics.health()

    def cancel(self, run_id: str, reason: str = "cancelled by operator") -> bool:
        """Request cancellation; returns ``False`` when the run already finished."""

        run = self._runs.get(run_id)
        if run is None:
            self._store.get(run_id)
            return False
        if run.record.is_terminal or run.token.is_cancelled:
            return False
        run.token.cancel(reason)
        self._logger.info("control_plane_cancel_requested", run_id=run_id, reason=reason)
        return True

    async def shutdown(
        self, *, cancel_active: bool = True, reason: str = "controller shutdown"
    ) -> None:
        """Stop accepting runs, optionally cancel active ones, and wait for every task."""

        self._closed = True
        if cancel_active:
            for run_id in list(self._runs):
                self.cancel(run_id, reason)
        pending = list(self._tasks.values())
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        await self._events.drain_async()
        self._logger.info("control_plane_shutdown", cancelled=cancel_active, runs=len(pending))

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _drive(self, run: _ActiveRun) -> None:
        record = run.record
        try:
            with correlation_scope(run_id=record.run_id, work_item_id=record.work_item_id):
                try:
                    await self._execute(run)
                except asyncio.CancelledError:
                    external = not run.token.is_cancelled
                    await self._abort(
                        run, ErrorKind.CANCELLED, run.token.reason or "run task cancelled"
                    )
                    if external:
                        raise
                except _RecordedFailure:
                    await self._finish(run, WorkflowState.FAILED)
                except TimeoutError as exc:
                    if isinstance(exc, ResolutionTimeoutError):
                        self._record_resolution_errors(run, exc.errors)
                    await self._abort(run, ErrorKind.TIMEOUT, str(exc) or "timeout")
                except CollaboratorError as exc:
                    await self._abort(run, ErrorKind.COLLABORATOR, str(exc))
                except Exception as exc:  # noqa: BLE001
                    self._logger.exception(
                        "control_plane_stage_crashed",
                        stage=run.stage,
                        error_type=type(exc).__name__,
                    )
                    await self._abort(run, ErrorKind.INTERNAL, f"{type(exc).__name__}: {exc}")
        finally:
            self._runs.pop(record.run_id, None)
            self._tasks.pop(record.run_id, None)

    async def _execute(self, run: _ActiveRun) -> None:
        record = run.record
        item = record.work_item
        async with self._permit(run):
            self._emit(run, EventType.RUN_STARTED, {"title": item.title})
            await self._notify(run, LifecycleEvent.STARTED)

            self._transition(run, WorkflowState.ANALYZING)
            analysis = await self._stage(
                run, STAGE_ANALYSIS, lambda: self._classifier.classify(item)
            )
            record.analysis = analysis

            self._transition(run, WorkflowState.CHECKING_FEASIBILITY)
            if not analysis.feasible or analysis.complexity is ComplexityTier.CRITICAL:
                await self._finish(
                    run, WorkflowState.REQUIRES_HUMAN_REVIEW, reason=analysis.reasoning
                )
                return

            self._transition(run, WorkflowState.GENERATING_SOLUTION)
            resolution = await self._stage(
                run,
                STAGE_RESOLUTION,
                lambda: self._resolver.resolve(analysis, item, cancel_token=run.token),
            )
            record.resolution = resolution
            if not resolution.success:
                self._record_resolution_errors(run, resolution.errors)
                if not resolution.errors:
                    self._record_error(
                        run, STAGE_RESOLUTION, ErrorKind.POLICY, resolution.reasoning
                    )
                await self._finish(run, WorkflowState.FAILED, reason=resolution.reasoning)
                return

            self._transition(run, WorkflowState.REVIEWING)
            review = await self._stage(
                run,
                STAGE_REVIEW,
                lambda: asyncio.to_thread(self._reviewer.review, resolution.change_set, item),
            )
            record.review = review
            if not review.approved:
                await self._finish(
                    run, WorkflowState.REQUIRES_HUMAN_REVIEW, reason=review.reasoning
                )
                return

            self._transition(run, WorkflowState.PUBLISHING)
            record.published = await self._publish(run, resolution, review)
            await self._finish(run, WorkflowState.COMPLETE)

    async def _stage(
        self, run: _ActiveRun, stage: str, make: Callable[[], Awaitable[T]]
    ) -> T:
        run.stage = stage
        budget, scope = self._stage_budget(run, stage)
        started = self._clock()
        try:
            with correlation_scope(stage=stage):
                return await run_with_timeout(make(), budget, run.token)
        except TimeoutError as exc:
            if isinstance(exc, AutopilotError):
                raise
            raise StageTimeoutError(stage, budget, scope=scope) from exc
        finally:
            elapsed = max(0.0, self._clock() - started)
            timings = run.record.stage_timings
            timings[stage] = round(timings.get(stage, 0.0) + elapsed, 6)
            self._metrics.record_stage(stage, elapsed)

    def _stage_budget(self, run: _ActiveRun, stage: str) -> tuple[float, str]:
        remaining = run.deadline.remaining
        if remaining <= 0:
            raise StageTimeoutError(stage, self._settings.max_workflow_seconds, scope="workflow")
        stage_budget = self._settings.stage_timeout(stage)
        if stage_budget is None or remaining < stage_budget:
            return remaining, "workflow"
        return stage_budget, "stage"

    async def _publish(
        self, run: _ActiveRun, resolution: ResolutionOutcome, review: ReviewOutcome
    ) -> PublishedChangeRef:
        item = run.record.work_item

        def on_failure(attempt: int, exc: Exception) -> None:
            self._record_error(
                run,
                STAGE_PUBLISHING,
                _error_kind(exc),
                f"publish attempt {attempt} failed: {exc}",
            )

        try:
            return await self._retry.run(
                lambda: self._stage(
                    run,
                    STAGE_PUBLISHING,
                    lambda: self._publisher.publish(resolution, review, item),
                ),
                on_failure=on_failure,
                sleep=self._sleep,
                cancel_token=run.token,
            )
        except Exception as exc:
            raise _RecordedFailure(str(exc)) from exc

    @asynccontextmanager
    async def _permit(self, run: _ActiveRun) -> AsyncIterator[None]:
        if self._semaphore is None:
            yield
            return
        remaining = run.deadline.remaining
        if remaining <= 0:
            raise StageTimeoutError(
                STAGE_WORKFLOW, self._settings.max_workflow_seconds, scope="workflow"
            )
        await run_with_timeout(self._semaphore.acquire(), remaining, run.token)
        try:
            yield
        finally:
            self._semaphore.release()

    # ------------------------------------------------------------------
    # Record bookkeeping
    # ------------------------------------------------------------------

    def _transition(self, run: _ActiveRun, target: WorkflowState) -> None:
        record = run.record
        current = record.state
        if not can_transition(current, target):
            raise InvalidTransitionError(record.run_id, current.value, target.value)
        sequence = len(record.transitions) + 1
        record.transitions = (
            *record.transitions,
            StateTransition(sequence, target, current, self._timestamp(record)),
        )
        record.state = target
        self._store.update(record)
        self._logger.info(
            "control_plane_state_changed",
            run_id=record.run_id,
            previous=current.value,
            state=target.value,
            sequence=sequence,
        )
        self._emit(
            run,
            EventType.STATE_CHANGED,
            {"previous": current.value, "state": target.value, "sequence": sequence},
        )

    def _record_error(self, run: _ActiveRun, stage: str, kind: ErrorKind, message: str) -> None:
        record = run.record
        error = WorkflowError(stage=stage, kind=kind, message=message)
        record.errors = (*record.errors, error)
        self._metrics.record_error(error)
        self._logger.warning(
            "control_plane_error_recorded",
            run_id=record.run_id,
            stage=stage,
            kind=kind.value,
            message=message,
        )
        self._emit(
            run,
            EventType.ERROR_RECORDED,
            {"stage": stage, "kind": kind.value, "message": message},
        )

    def _record_resolution_errors(self, run: _ActiveRun, messages: Sequence[str]) -> None:
        for message in messages:
            kind = ErrorKind.POLICY if message.startswith(_SAFETY_PREFIX) else ErrorKind.COLLABORATOR
            self._record_error(run, STAGE_RESOLUTION, kind, message)

    async def _abort(self, run: _ActiveRun, kind: ErrorKind, message: str) -> None:
        if run.record.is_terminal:
            return
        self._record_error(run, run.stage, kind, message)
        await self._finish(run, WorkflowState.FAILED)

    async def _finish(
        self, run: _ActiveRun, state: WorkflowState, *, reason: str | None = None
    ) -> None:
        record = run.record
        self._transition(run, state)
        if state is WorkflowState.REQUIRES_HUMAN_REVIEW:
            record.requires_human_review = True

        notice = {
            WorkflowState.COMPLETE: LifecycleEvent.PUBLISHED,
            WorkflowState.REQUIRES_HUMAN_REVIEW: LifecycleEvent.READY_FOR_REVIEW,
            WorkflowState.FAILED: LifecycleEvent.FAILED,
        }[state]
        detail: dict[str, object] = {"state": state.value}
        if reason:
            detail["reason"] = reason
        if state is WorkflowState.FAILED and record.errors:
            detail["error"] = record.errors[-1].message
        if record.published is not None:
            detail["reference"] = record.published.reference
        try:
            await self._notify(run, notice, detail)
        finally:
            record.finished_at = self._timestamp(record)
            record.duration_seconds = round(max(0.0, self._clock() - run.started), 6)
            self._store.update(record)
            self._store.complete(record)
            self._metrics.record_terminal(record)
        self._emit(
            run,
            EventType.RUN_FINISHED,
            {
                "state": state.value,
                "duration_seconds": record.duration_seconds,
                "error_count": len(record.errors),
            },
        )
        self._logger.info(
            "control_plane_run_finished",
            run_id=record.run_id,
            state=state.value,
            duration_seconds=record.duration_seconds,
            errors=len(record.errors),
        )

    async def _notify(
        self,
        run: _ActiveRun,
        event: LifecycleEvent,
        detail: dict[str, object] | None = None,
    ) -> None:
        if self._notifier is None:
            return
        notice = LifecycleNotice(
            event=event,
            run_id=run.record.run_id,
            work_item_id=run.record.work_item_id,
            detail=detail or {},
        )
        try:
            await run_with_timeout(self._notifier.notify(notice), _NOTIFY_TIMEOUT_SECONDS)
        except Exception as exc:  # noqa: BLE001
            self._record_error(
                run,
                STAGE_NOTIFIER,
                ErrorKind.NOTIFIER,
                f"{event.value} notification failed: {type(exc).__name__}: {exc}",
            )

    def _emit(self, run: _ActiveRun, event_type: EventType, payload: dict[str, object]) -> None:
        event = WorkflowEvent.create(
            event_type,
            run_id=run.record.run_id,
            work_item_id=run.record.work_item_id,
            payload=payload,
        )
        failures = self._events.publish(event)
        for failure in failures:
            self._logger.warning(
                "control_plane_event_dispatch_failed",
                event_type=event_type.value,
                target=failure.target,
                error=failure.message,
            )

    @staticmethod
    def _timestamp(record: WorkflowRecord) -> datetime:
        now = datetime.now(UTC)
        if record.transitions and now <= record.transitions[-1].at:
            return record.transitions[-1].at + timedelta(microseconds=1)
        return now


def _error_kind(exc: BaseException) -> ErrorKind:
    if isinstance(exc, TimeoutError):
        return ErrorKind.TIMEOUT
    if isinstance(exc, CollaboratorError):
        return ErrorKind.COLLABORATOR
    return ErrorKind.INTERNAL


__all__ = [
    "STAGE_ANALYSIS",
    "STAGE_PUBLISHING",
    "STAGE_RESOLUTION",
    "STAGE_REVIEW",
    "Classifier",
    "Resolver",
    "Reviewer",
    "WorkflowController",
]
