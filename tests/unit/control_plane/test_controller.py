"""
issue-autopilot — unit tests for the workflow controller

File: tests/unit/control_plane/test_controller.py

Purpose
- Drive the state machine end to end over scripted collaborators.

What this test file should cover
- Every terminal outcome: COMPLETE, REQUIRES_HUMAN_REVIEW (infeasible or rejected)
  and FAILED (resolution failure, crash, timeout, cancellation, publish failure).
- Transition history: sequences and timestamps strictly increase.
- Duplicate active runs are rejected unless allowed.
- Publish retries with backoff; notifier failures never change the outcome.
- Metrics and health reflect finished runs.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

import pytest

from issue_autopilot.config.settings import WorkflowSettings
from issue_autopilot.control_plane import (
    InMemoryRunStore,
    LifecycleEvent,
    LifecycleNotice,
    WorkflowController,
)
from issue_autopilot.domain.events import EventType, WorkflowEvent
from issue_autopilot.domain.ids import validate_run_id
from issue_autopilot.domain.models import (
    Analysis,
    Category,
    ChangeSet,
    ComplexityTier,
    EditKind,
    ErrorKind,
    FileChange,
    FileEdit,
    PublishedChangeRef,
    ResolutionOutcome,
    ReviewOutcome,
    WorkflowState,
    WorkItem,
)
from issue_autopilot.errors import (
    AutopilotError,
    DuplicateRunError,
    ResolutionTimeoutError,
    UnknownRunError,
    WorkItemValidationError,
)
from issue_autopilot.integration_plane.publisher import PublishError
from issue_autopilot.observability.metrics import HealthStatus

ITEM = WorkItem(id="42", title="Crash on blank input", body="- Handle empty input", labels=frozenset({"bug"}))

CHANGE_SET = ChangeSet(
    changes=(
        FileChange(
            path="src/parser.py",
            edits=(FileEdit(kind=EditKind.ADD, content="def parse(text):\n    return []\n"),),
        ),
    )
)

HAPPY_PATH = [
    WorkflowState.INITIALIZING,
    WorkflowState.ANALYZING,
    WorkflowState.CHECKING_FEASIBILITY,
    WorkflowState.GENERATING_SOLUTION,
    WorkflowState.REVIEWING,
    WorkflowState.PUBLISHING,
    WorkflowState.COMPLETE,
]


def _analysis(*, feasible: bool = True, complexity: ComplexityTier = ComplexityTier.LOW) -> Analysis:
    return Analysis(
        category=Category.DEFECT,
        complexity=complexity,
        requirements=("Handle empty input",),
        acceptance_criteria=(),
        feasible=feasible,
        confidence=0.9,
        reasoning="Categorized as defect" if feasible else "Autonomous resolution not feasible",
    )


def _resolution(success: bool = True, errors: tuple[str, ...] = ()) -> ResolutionOutcome:
    return ResolutionOutcome(
        success=success,
        change_set=CHANGE_SET,
        workspace=None,
        iterations=1,
        reasoning="ok" if success else "Failed to generate valid solution after 5 iterations",
        errors=errors,
    )


def _review(approved: bool = True) -> ReviewOutcome:
    return ReviewOutcome(
        approved=approved,
        score=0.95 if approved else 0.4,
        findings=(),
        recommendations=(),
        sub_scores={},
        reasoning=f"Review {'approved' if approved else 'rejected'}",
    )


@dataclass(slots=True)
class ManualClock:
    now: float = 0.0

    def __call__(self) -> float:
        return self.now


@dataclass(slots=True)
class FakeClassifier:
    analysis: Analysis = field(default_factory=_analysis)
    error: Exception | None = None
    delay_seconds: float = 0.0
    gate: asyncio.Event | None = None
    entered: asyncio.Event = field(default_factory=asyncio.Event)
    clock: ManualClock | None = None
    advance_seconds: float = 0.0
    in_flight: int = 0
    max_in_flight: int = 0

    async def classify(self, item: WorkItem) -> Analysis:
        self.entered.set()
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay_seconds:
                await asyncio.sleep(self.delay_seconds)
            if self.gate is not None:
                await self.gate.wait()
            if self.clock is not None:
                self.clock.now += self.advance_seconds
            if self.error is not None:
                raise self.error
            return self.analysis
        finally:
            self.in_flight -= 1


@dataclass(slots=True)
class FakeResolver:
    outcome: ResolutionOutcome = field(default_factory=_resolution)
    calls: int = 0
    error: Exception | None = None

    async def resolve(self, analysis: Analysis, item: WorkItem, *, cancel_token: Any = None) -> ResolutionOutcome:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.outcome


@dataclass(slots=True)
class FakeReviewer:
    outcome: ReviewOutcome = field(default_factory=_review)

    def review(self, change_set: ChangeSet, item: WorkItem | None = None) -> ReviewOutcome:
        return self.outcome


@dataclass(slots=True)
class FakePublisher:
    failures: list[Exception] = field(default_factory=list)
    attempts: int = 0

    async def publish(self, resolution: ResolutionOutcome, review: ReviewOutcome, item: WorkItem) -> PublishedChangeRef:
        self.attempts += 1
        if self.failures:
            raise self.failures.pop(0)
        return PublishedChangeRef(reference=f"change-{item.id}", location="/tmp/out.json")


@dataclass(slots=True)
class RecordingNotifier:
    fail_on: frozenset[LifecycleEvent] = frozenset()
    cancel_on: frozenset[LifecycleEvent] = frozenset()
    notices: list[LifecycleNotice] = field(default_factory=list)

    async def notify(self, notice: LifecycleNotice) -> None:
        self.notices.append(notice)
        if notice.event in self.cancel_on:
            raise asyncio.CancelledError
        if notice.event in self.fail_on:
            raise RuntimeError("webhook unreachable")

    def events(self) -> list[LifecycleEvent]:
        return [notice.event for notice in self.notices]


@dataclass(slots=True)
class RecordedSleeps:
    delays: list[float] = field(default_factory=list)

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _controller(
    *,
    classifier: FakeClassifier | None = None,
    resolver: FakeResolver | None = None,
    reviewer: FakeReviewer | None = None,
    publisher: FakePublisher | None = None,
    **kwargs: Any,
) -> WorkflowController:
    return WorkflowController(
        classifier=classifier if classifier is not None else FakeClassifier(),
        resolver=resolver if resolver is not None else FakeResolver(),
        reviewer=reviewer if reviewer is not None else FakeReviewer(),
        publisher=publisher if publisher is not None else FakePublisher(),
        **kwargs,
    )


class TestOutcomes:
    async def test_happy_path_completes(self) -> None:
        notifier = RecordingNotifier()
        controller = _controller(notifier=notifier)

        record = await controller.run(ITEM)

        validate_run_id(record.run_id)
        assert record.state is WorkflowState.COMPLETE
        assert [transition.state for transition in record.transitions] == HAPPY_PATH
        assert [transition.sequence for transition in record.transitions] == list(range(1, 8))
        stamps = [transition.at for transition in record.transitions]
        assert stamps == sorted(stamps)
        assert len(set(stamps)) == len(stamps)
        assert record.transitions[0].previous is None
        assert record.published is not None
        assert record.published.reference == "change-42"
        assert record.finished_at is not None
        assert record.duration_seconds is not None
        assert set(record.stage_timings) == {"analysis", "resolution", "review", "publishing"}
        assert record.errors == ()
        assert notifier.events() == [LifecycleEvent.STARTED, LifecycleEvent.PUBLISHED]
        assert notifier.notices[-1].detail["reference"] == "change-42"
        assert controller.list_active() == []
        assert [done.run_id for done in controller.list_completed()] == [record.run_id]

    async def test_infeasible_item_goes_to_human_review(self) -> None:
        resolver = FakeResolver()
        notifier = RecordingNotifier()
        controller = _controller(
            classifier=FakeClassifier(analysis=_analysis(feasible=False)),
            resolver=resolver,
            notifier=notifier,
        )

        record = await controller.run(ITEM)

        assert record.state is WorkflowState.REQUIRES_HUMAN_REVIEW
        assert record.requires_human_review
        assert record.transitions[-2].state is WorkflowState.CHECKING_FEASIBILITY
        assert resolver.calls == 0
        assert notifier.events() == [LifecycleEvent.STARTED, LifecycleEvent.READY_FOR_REVIEW]
        assert notifier.notices[-1].detail["reason"] == "Autonomous resolution not feasible"

    async def test_rejected_review_goes_to_human_review(self) -> None:
        publisher = FakePublisher()
        controller = _controller(reviewer=FakeReviewer(_review(approved=False)), publisher=publisher)

        record = await controller.run(ITEM)

        assert record.state is WorkflowState.REQUIRES_HUMAN_REVIEW
        assert record.transitions[-2].state is WorkflowState.REVIEWING
        assert record.review is not None and not record.review.approved
        assert publisher.attempts == 0

    async def test_failed_resolution_records_each_error(self) -> None:
        resolver = FakeResolver(
            _resolution(
                success=False,
                errors=(
                    "oracle generate failed (unavailable): down",
                    "Safety check failed: Dangerous code pattern detected in src/x.py",
                ),
            )
        )
        controller = _controller(resolver=resolver)

        record = await controller.run(ITEM)

        assert record.state is WorkflowState.FAILED
        assert record.transitions[-2].state is WorkflowState.GENERATING_SOLUTION
        assert [(error.stage, error.kind) for error in record.errors] == [
            ("resolution", ErrorKind.COLLABORATOR),
            ("resolution", ErrorKind.POLICY),
        ]
        assert controller.get_metrics().failure_reasons == {"policy:resolution": 1}

    async def test_resolution_timeout_keeps_errors_collected_before_it(self) -> None:
        resolver = FakeResolver(
            error=ResolutionTimeoutError(
                2,
                1.0,
                (
                    "oracle generate failed (timeout): oracle call timed out after 30s",
                    "Safety check failed: Dangerous code pattern detected in src/x.py",
                ),
            )
        )
        controller = _controller(resolver=resolver)

        record = await controller.run(ITEM)

        assert record.state is WorkflowState.FAILED
        assert [(error.stage, error.kind) for error in record.errors] == [
            ("resolution", ErrorKind.COLLABORATOR),
            ("resolution", ErrorKind.POLICY),
            ("resolution", ErrorKind.TIMEOUT),
        ]
        assert record.errors[0].message.startswith("oracle generate failed (timeout)")
        assert record.errors[-1].message == "Resolution timeout after 2 iterations"
        assert controller.get_metrics().failure_reasons == {"timeout:resolution": 1}
        assert controller.get_metrics().error_reasons == {
            "collaborator:resolution": 1,
            "policy:resolution": 1,
            "timeout:resolution": 1,
        }

    async def test_stage_crash_is_an_internal_failure(self) -> None:
        controller = _controller(classifier=FakeClassifier(error=RuntimeError("boom")))

        record = await controller.run(ITEM)

        assert record.state is WorkflowState.FAILED
        assert len(record.errors) == 1
        assert record.errors[0].stage == "analysis"
        assert record.errors[0].kind is ErrorKind.INTERNAL
        assert record.errors[0].message == "RuntimeError: boom"

    async def test_stage_timeout(self) -> None:
        controller = _controller(
            classifier=FakeClassifier(delay_seconds=5.0),
            settings=WorkflowSettings(stage_timeouts={"analysis": 0.2}),
        )

        record = await controller.run(ITEM)

        assert record.state is WorkflowState.FAILED
        assert record.errors[-1].kind is ErrorKind.TIMEOUT
        assert record.errors[-1].message == "analysis stage exceeded its 0.2s budget"

    async def test_workflow_budget_spans_stages(self) -> None:
        clock = ManualClock()
        controller = _controller(
            classifier=FakeClassifier(clock=clock, advance_seconds=120.0),
            settings=WorkflowSettings(max_workflow_seconds=60.0),
            clock=clock,
        )

        record = await controller.run(ITEM)

        assert record.state is WorkflowState.FAILED
        assert record.errors[-1].stage == "resolution"
        assert record.errors[-1].kind is ErrorKind.TIMEOUT
        assert record.errors[-1].message == "workflow budget exhausted during resolution stage"
        assert record.duration_seconds == 120.0


class TestRunManagement:
    async def test_duplicate_active_runs_are_rejected(self) -> None:
        gate = asyncio.Event()
        controller = _controller(classifier=FakeClassifier(gate=gate))

        first = controller.submit(ITEM)
        with pytest.raises(DuplicateRunError) as excinfo:
            controller.submit(ITEM)
        gate.set()
        await controller.wait(first)

        assert excinfo.value.active_run_id == first
        second = controller.submit(ITEM)
        assert second != first
        assert (await controller.wait(second)).state is WorkflowState.COMPLETE

    async def test_duplicates_allowed_when_configured(self) -> None:
        controller = _controller(settings=WorkflowSettings(allow_duplicate_runs=True))

        run_ids = [controller.submit(ITEM), controller.submit(ITEM)]
        records = [await controller.wait(run_id) for run_id in run_ids]

        assert [record.state for record in records] == [WorkflowState.COMPLETE] * 2

    async def test_cancel_ends_in_failed(self) -> None:
        classifier = FakeClassifier(gate=asyncio.Event())
        notifier = RecordingNotifier()
        controller = _controller(classifier=classifier, notifier=notifier)

        run_id = controller.submit(ITEM)
        await classifier.entered.wait()
        assert controller.get_state(run_id).state is WorkflowState.ANALYZING

        assert controller.cancel(run_id)
        record = await controller.wait(run_id)

        assert record.state is WorkflowState.FAILED
        assert record.errors[-1].kind is ErrorKind.CANCELLED
        assert record.errors[-1].stage == "analysis"
        assert record.errors[-1].message == "cancelled by operator"
        assert notifier.events()[-1] is LifecycleEvent.FAILED
        assert not controller.cancel(run_id)

    async def test_unknown_runs(self) -> None:
        controller = _controller()

        with pytest.raises(UnknownRunError):
            controller.get_state("run-01ARZ3NDEKTSV4RRFFQ69G5FAV")
        with pytest.raises(UnknownRunError):
            controller.cancel("run-01ARZ3NDEKTSV4RRFFQ69G5FAV")

    async def test_concurrency_limit(self) -> None:
        classifier = FakeClassifier(delay_seconds=0.01)
        controller = _controller(
            classifier=classifier, settings=WorkflowSettings(max_concurrent_runs=1)
        )

        run_ids = [
            controller.submit(WorkItem(id=str(number), title=f"Item {number}", body="x"))
            for number in range(3)
        ]
        for run_id in run_ids:
            await controller.wait(run_id)

        assert classifier.max_in_flight == 1

    async def test_submit_validation_and_shutdown(self) -> None:
        classifier = FakeClassifier(gate=asyncio.Event())
        controller = _controller(classifier=classifier)

        with pytest.raises(WorkItemValidationError):
            controller.submit({"id": "42"})  # type: ignore[arg-type]

        run_id = controller.submit(ITEM)
        await classifier.entered.wait()
        await controller.shutdown()

        assert controller.get_state(run_id).state is WorkflowState.FAILED
        assert controller.get_state(run_id).errors[-1].message == "controller shutdown"
        with pytest.raises(AutopilotError, match="shut down"):
            controller.submit(ITEM)

    async def test_injected_store_sees_snapshots(self) -> None:
        store = InMemoryRunStore()
        controller = _controller(store=store)

        record = await controller.run(ITEM)

        assert store.get(record.run_id).state is WorkflowState.COMPLETE
        assert store.active_run_for(ITEM.id) is None


class TestPublishing:
    async def test_retryable_failures_back_off(self) -> None:
        sleeps = RecordedSleeps()
        publisher = FakePublisher(
            failures=[
                PublishError("unavailable", "busy", retryable=True),
                PublishError("unavailable", "busy", retryable=True),
            ]
        )
        controller = _controller(publisher=publisher, sleep=sleeps)

        record = await controller.run(ITEM)

        assert record.state is WorkflowState.COMPLETE
        assert publisher.attempts == 3
        assert sleeps.delays == [1.0, 2.0]
        assert [error.message for error in record.errors] == [
            "publish attempt 1 failed: collaborator=publisher code=unavailable retryable=true detail=busy",
            "publish attempt 2 failed: collaborator=publisher code=unavailable retryable=true detail=busy",
        ]

    async def test_non_retryable_failure_fails_the_run(self) -> None:
        sleeps = RecordedSleeps()
        publisher = FakePublisher(failures=[PublishError("conflict", "branch exists")])
        controller = _controller(publisher=publisher, sleep=sleeps)

        record = await controller.run(ITEM)

        assert record.state is WorkflowState.FAILED
        assert publisher.attempts == 1
        assert sleeps.delays == []
        assert record.errors[-1].kind is ErrorKind.COLLABORATOR
        assert controller.get_metrics().failure_reasons == {"collaborator:publishing": 1}

    async def test_exhausted_retries_fail_the_run(self) -> None:
        publisher = FakePublisher(
            failures=[PublishError("unavailable", "busy", retryable=True) for _ in range(3)]
        )
        controller = _controller(
            publisher=publisher,
            sleep=RecordedSleeps(),
            settings=WorkflowSettings(publish_max_attempts=3),
        )

        record = await controller.run(ITEM)

        assert record.state is WorkflowState.FAILED
        assert publisher.attempts == 3
        assert len(record.errors) == 3


class TestObservability:
    async def test_notifier_failure_does_not_change_outcome(self) -> None:
        notifier = RecordingNotifier(fail_on=frozenset({LifecycleEvent.STARTED}))
        controller = _controller(notifier=notifier)

        record = await controller.run(ITEM)

        assert record.state is WorkflowState.COMPLETE
        assert [(error.stage, error.kind) for error in record.errors] == [
            ("notifier", ErrorKind.NOTIFIER)
        ]
        assert record.errors[0].message == (
            "started notification failed: RuntimeError: webhook unreachable"
        )

    async def test_notifier_errors_are_never_the_failure_reason(self) -> None:
        notifier = RecordingNotifier(fail_on=frozenset({LifecycleEvent.FAILED}))
        controller = _controller(
            classifier=FakeClassifier(error=RuntimeError("boom")), notifier=notifier
        )

        record = await controller.run(ITEM)

        assert record.state is WorkflowState.FAILED
        assert record.errors[-1].kind is ErrorKind.NOTIFIER
        assert controller.get_metrics().failure_reasons == {"internal:analysis": 1}

    async def test_cancellation_during_final_notice_still_completes_bookkeeping(self) -> None:
        notifier = RecordingNotifier(cancel_on=frozenset({LifecycleEvent.PUBLISHED}))
        controller = _controller(notifier=notifier)

        with pytest.raises(asyncio.CancelledError):
            await controller.run(ITEM)

        assert controller.list_active() == []
        completed = controller.list_completed()
        assert [record.state for record in completed] == [WorkflowState.COMPLETE]
        assert completed[0].duration_seconds is not None
        snapshot = controller.get_metrics()
        assert snapshot.active == 0
        assert snapshot.completed == 1

    async def test_events_are_published_in_order(self) -> None:
        controller = _controller()
        seen: list[WorkflowEvent] = []
        controller.events.subscribe(None, seen.append)

        record = await controller.run(ITEM)

        assert seen[0].event_type is EventType.RUN_STARTED
        assert seen[-1].event_type is EventType.RUN_FINISHED
        assert seen[-1].payload["state"] == "complete"
        changes = [event.payload["state"] for event in seen if event.event_type is EventType.STATE_CHANGED]
        assert changes == [state.value for state in HAPPY_PATH[1:]]
        assert {event.run_id for event in seen} == {record.run_id}

    async def test_metrics_and_health(self) -> None:
        controller = _controller()
        assert controller.health().status is HealthStatus.HEALTHY

        await controller.run(ITEM)
        await controller.run(WorkItem(id="43", title="Question", body="How?"))
        snapshot = controller.get_metrics()

        assert snapshot.total_started == 2
        assert snapshot.completed == 2
        assert snapshot.active == 0
        assert snapshot.success_rate == 1.0
        assert set(snapshot.stage_mean_seconds) == {"analysis", "resolution", "review", "publishing"}
        assert controller.health().status is HealthStatus.HEALTHY
