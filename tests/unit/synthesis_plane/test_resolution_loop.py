"""
issue-autopilot — unit tests for the resolution loop

File: tests/unit/synthesis_plane/test_resolution_loop.py

Purpose
- Validate the generate/apply/safety/test/validate/refine cycle against a
  scripted oracle and an in-memory workspace provider.

What this test file should cover
- Success on the first valid change set; refinement after failing tests.
- Oracle failures fall back to the placeholder, which never validates.
- Safety violations are recorded every iteration and tests never run for them.
- The iteration budget is never exceeded and the workspace is destroyed once on
  every exit path, including timeout and cancellation.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import pytest

from issue_autopilot.config.settings import ResolutionSettings
from issue_autopilot.domain.models import (
    Analysis,
    Category,
    ChangeSet,
    ComplexityTier,
    EditKind,
    FileChange,
    FileEdit,
    WorkItem,
    WorkspaceHandle,
)
from issue_autopilot.errors import ResolutionTimeoutError
from issue_autopilot.integration_plane.workspace_manager import (
    LocalDirectoryWorkspaceProvider,
    WorkspaceError,
)
from issue_autopilot.synthesis_plane.codebase import CodebaseSummary
from issue_autopilot.synthesis_plane.oracle import OracleCallError, OracleFeedback, OracleOk
from issue_autopilot.synthesis_plane.resolution_loop import (
    ResolutionLoop,
    ValidationResult,
    placeholder_change_set,
    quality_score,
    validate_change_set,
)
from issue_autopilot.utils.concurrency import CancellationToken

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

GOOD_SOURCE = "def parse(text):\n    return text.split()\n"


def _change_set(path: str = "src/parser.py", content: str = GOOD_SOURCE) -> ChangeSet:
    return ChangeSet(
        changes=(FileChange(path=path, edits=(FileEdit(kind=EditKind.ADD, content=content),)),),
        summary="split input",
    )


def _analysis(
    requirements: tuple[str, ...] = ("Handle empty input",),
    category: Category = Category.DEFECT,
) -> Analysis:
    return Analysis(
        category=category,
        complexity=ComplexityTier.LOW,
        requirements=requirements,
        acceptance_criteria=(),
        feasible=True,
        confidence=0.9,
        reasoning="test",
    )


ITEM = WorkItem(id="42", title="Crash on blank input", body="- Handle empty input")


@dataclass(slots=True)
class ManualClock:
    now: float = 0.0

    def __call__(self) -> float:
        return self.now


@dataclass(slots=True)
class ScriptedOracle:
    generated: Any = field(default_factory=lambda: OracleOk(_change_set()))
    refined: list[Any] = field(default_factory=list)
    feedback: list[OracleFeedback] = field(default_factory=list)
    clock: ManualClock | None = None
    advance_on_generate: float = 0.0

    async def generate(self, context: Any) -> Any:
        if self.clock is not None:
            self.clock.now += self.advance_on_generate
        return self.generated

    async def refine(self, previous: ChangeSet, feedback: OracleFeedback) -> Any:
        self.feedback.append(feedback)
        if not self.refined:
            return OracleCallError(detail="no refinement available", code="unavailable")
        return self.refined.pop(0) if len(self.refined) > 1 else self.refined[0]

    async def classify(self, context: Any) -> Any:
        raise AssertionError("not used")

    async def extract_requirements(self, context: Any) -> Any:
        raise AssertionError("not used")


@dataclass(slots=True)
class SlowOracle:
    delay: float
    calls: list[str] = field(default_factory=list)

    async def generate(self, context: Any) -> Any:
        self.calls.append("generate")
        await asyncio.sleep(self.delay)
        return OracleOk(_change_set())

    async def refine(self, previous: ChangeSet, feedback: OracleFeedback) -> Any:
        self.calls.append("refine")
        await asyncio.sleep(self.delay)
        return OracleOk(_change_set())


@dataclass(slots=True)
class FakeWorkspaces:
    root: Path
    exit_codes: list[int] = field(default_factory=list)
    fail_first_apply: bool = False
    command_delay: float = 0.0
    created: list[str] = field(default_factory=list)
    applied: list[ChangeSet] = field(default_factory=list)
    commands: list[tuple[str, ...]] = field(default_factory=list)
    destroyed: list[str] = field(default_factory=list)

    async def create(self, item_id: str) -> WorkspaceHandle:
        workspace_dir = self.root / f"ws-{item_id}"
        workspace_dir.mkdir(parents=True, exist_ok=True)
        self.created.append(item_id)
        return WorkspaceHandle(workspace_id=f"ws-{item_id}", path=str(workspace_dir))

    async def apply_files(self, handle: WorkspaceHandle, change_set: ChangeSet) -> None:
        if self.fail_first_apply and not self.applied:
            self.applied.append(ChangeSet())
            raise WorkspaceError("io_error", "disk full")
        self.applied.append(change_set)

    async def run_command(self, handle: WorkspaceHandle, argv: Sequence[str]) -> int:
        self.commands.append(tuple(argv))
        if self.command_delay:
            await asyncio.sleep(self.command_delay)
        return self.exit_codes.pop(0) if self.exit_codes else 0

    async def destroy(self, handle: WorkspaceHandle) -> None:
        self.destroyed.append(handle.workspace_id)


class TestQualityScore:
    def test_clean_content_keeps_baseline(self) -> None:
        assert quality_score(_change_set()) == 0.8

    def test_penalties(self) -> None:
        assert quality_score(_change_set(content="x = 1  # TODO: tidy up later")) == 0.7
        assert quality_score(_change_set(content="print(value)\nvalue += 1")) == 0.75
        assert quality_score(_change_set(content="x = 1")) == 0.7

    def test_method_named_print_is_not_debug_output(self) -> None:
        assert quality_score(_change_set(content="self.printer.print(report)")) == 0.8

    def test_deletions_are_not_scored(self) -> None:
        change_set = ChangeSet(
            changes=(
                FileChange(
                    path="src/a.py",
                    edits=(FileEdit(kind=EditKind.DELETE, content="# TODO"),),
                ),
            )
        )

        assert quality_score(change_set) == 0.8

    def test_score_is_floored(self) -> None:
        edits = tuple(FileEdit(kind=EditKind.ADD, content="# TODO") for _ in range(12))
        change_set = ChangeSet(changes=(FileChange(path="src/a.py", edits=edits),))

        assert quality_score(change_set) == 0.0


class TestValidateChangeSet:
    SUMMARY = CodebaseSummary(root="/repo")

    def test_valid_change_set(self) -> None:
        result = validate_change_set(
            _change_set(), _analysis(), self.SUMMARY, ResolutionSettings()
        )

        assert result.valid
        assert result.issues == ()
        assert result.reasoning == (
            "Requirements met: true, Code quality: 0.80, Follows patterns: true"
        )

    def test_empty_change_set(self) -> None:
        result = validate_change_set(ChangeSet(), _analysis(), self.SUMMARY, ResolutionSettings())

        assert not result.requirements_met
        assert result.issues[0] == "Change set is empty"

    def test_requirement_coverage(self) -> None:
        analysis = _analysis(requirements=("a", "b", "c", "d"))

        result = validate_change_set(_change_set(), analysis, self.SUMMARY, ResolutionSettings())

        assert not result.valid
        assert result.issues == ("4 requirements need at least 2 changed files, got 1",)

    def test_quality_must_exceed_threshold(self) -> None:
        result = ValidationResult(requirements_met=True, quality_score=0.7, follows_patterns=True)

        assert not result.valid

    def test_placeholder_never_validates(self) -> None:
        placeholder = placeholder_change_set(ITEM, _analysis())

        result = validate_change_set(placeholder, _analysis(), self.SUMMARY, ResolutionSettings())

        assert placeholder.paths == ("src/fixes/fix_42.py",)
        assert quality_score(placeholder) == 0.7
        assert not result.valid

    def test_placeholder_follows_codebase_language(self) -> None:
        summary = CodebaseSummary(root="/repo", languages=("typescript",))

        placeholder = placeholder_change_set(ITEM, _analysis(), summary)

        assert placeholder.paths == ("src/fixes/fix_42.ts",)
        assert placeholder.changes[0].edits[0].content.startswith(
            "// Fix for work item 42: Crash on blank input"
        )


class TestResolve:
    async def test_first_valid_change_set_wins(self, tmp_path: Path) -> None:
        workspaces = FakeWorkspaces(tmp_path)
        oracle = ScriptedOracle()

        outcome = await ResolutionLoop(oracle, workspaces).resolve(_analysis(), ITEM)

        assert outcome.success
        assert outcome.iterations == 1
        assert outcome.change_set == _change_set()
        assert outcome.tests_passed is None
        assert outcome.errors == ()
        assert outcome.reasoning.startswith("Solution generated successfully in 1 iterations.")
        assert oracle.feedback == []
        assert workspaces.destroyed == ["ws-42"]

    async def test_tracker_style_item_id_resolves_in_local_workspace(self, tmp_path: Path) -> None:
        workspaces = LocalDirectoryWorkspaceProvider(tmp_path / "ws")
        item = WorkItem(id="acme/app#12", title="Crash on blank input", body="- Handle empty input")

        outcome = await ResolutionLoop(ScriptedOracle(), workspaces).resolve(_analysis(), item)

        assert outcome.success
        assert outcome.workspace is not None
        assert outcome.workspace.workspace_id.startswith("acme-app-12-")
        assert workspaces.destroy_count == 1
        assert list((tmp_path / "ws").iterdir()) == []

    async def test_failing_tests_trigger_refinement(self, tmp_path: Path) -> None:
        workspaces = FakeWorkspaces(tmp_path, exit_codes=[1, 0])
        oracle = ScriptedOracle(refined=[OracleOk(_change_set(content=GOOD_SOURCE + "\n\n"))])
        loop = ResolutionLoop(
            oracle, workspaces, settings=ResolutionSettings(test_command=("pytest", "-q"))
        )

        outcome = await loop.resolve(_analysis(), ITEM)

        assert outcome.success
        assert outcome.iterations == 2
        assert outcome.tests_passed is True
        assert workspaces.commands == [("pytest", "-q"), ("pytest", "-q")]
        assert oracle.feedback[0].iteration == 1
        assert oracle.feedback[0].issues == ("Test command exited with a non-zero status",)

    async def test_tests_skipped_for_non_defects_unless_required(self, tmp_path: Path) -> None:
        workspaces = FakeWorkspaces(tmp_path)
        loop = ResolutionLoop(
            ScriptedOracle(), workspaces, settings=ResolutionSettings(test_command=("pytest",))
        )

        outcome = await loop.resolve(_analysis(category=Category.FEATURE), ITEM)

        assert outcome.tests_passed is None
        assert workspaces.commands == []

    async def test_failing_oracle_exhausts_iterations(self, tmp_path: Path) -> None:
        workspaces = FakeWorkspaces(tmp_path)
        oracle = ScriptedOracle(generated=OracleCallError(detail="down", code="unavailable"))
        loop = ResolutionLoop(oracle, workspaces, settings=ResolutionSettings(max_iterations=3))

        outcome = await loop.resolve(_analysis(), ITEM)

        assert not outcome.success
        assert outcome.iterations == 3
        assert outcome.reasoning == "Failed to generate valid solution after 3 iterations"
        assert outcome.change_set.paths == ("src/fixes/fix_42.py",)
        assert outcome.errors == (
            "oracle generate failed (unavailable): down",
            "oracle refine failed (unavailable): no refinement available",
            "oracle refine failed (unavailable): no refinement available",
        )
        assert len(oracle.feedback) == 2
        assert workspaces.destroyed == ["ws-42"]

    async def test_single_iteration_budget_never_refines(self, tmp_path: Path) -> None:
        oracle = ScriptedOracle(generated=OracleOk(_change_set(content="# TODO")))

        outcome = await ResolutionLoop(
            oracle, FakeWorkspaces(tmp_path), settings=ResolutionSettings(max_iterations=1)
        ).resolve(_analysis(), ITEM)

        assert outcome.iterations == 1
        assert not outcome.success
        assert oracle.feedback == []

    async def test_safety_violations_block_tests(self, tmp_path: Path) -> None:
        workspaces = FakeWorkspaces(tmp_path)
        oracle = ScriptedOracle(
            generated=OracleOk(_change_set(path="src/x.py", content="result = eval(user_input)"))
        )
        loop = ResolutionLoop(
            oracle,
            workspaces,
            settings=ResolutionSettings(max_iterations=2, test_command=("pytest",)),
        )

        outcome = await loop.resolve(_analysis(), ITEM)

        assert not outcome.success
        assert outcome.iterations == 2
        assert outcome.errors == (
            "Safety check failed: Dangerous code pattern detected in src/x.py",
        ) * 2
        assert workspaces.commands == []
        assert oracle.feedback == []

    async def test_workspace_failure_falls_back_to_placeholder(self, tmp_path: Path) -> None:
        workspaces = FakeWorkspaces(tmp_path, fail_first_apply=True)
        oracle = ScriptedOracle(refined=[OracleOk(_change_set())])
        loop = ResolutionLoop(oracle, workspaces, settings=ResolutionSettings(max_iterations=3))

        outcome = await loop.resolve(_analysis(), ITEM)

        assert outcome.success
        assert outcome.iterations == 3
        assert workspaces.applied[1].paths == ("src/fixes/fix_42.py",)
        assert outcome.errors == (
            "Iteration 1 failed: collaborator=workspace code=io_error retryable=false "
            "detail=disk full",
        )

    async def test_timeout_raises_and_destroys_workspace(self, tmp_path: Path) -> None:
        clock = ManualClock()
        workspaces = FakeWorkspaces(tmp_path)
        oracle = ScriptedOracle(
            generated=OracleOk(_change_set(content="# TODO")),
            clock=clock,
            advance_on_generate=700.0,
        )
        loop = ResolutionLoop(oracle, workspaces, clock=clock)

        with pytest.raises(ResolutionTimeoutError) as excinfo:
            await loop.resolve(_analysis(), ITEM)

        assert excinfo.value.iterations == 0
        assert excinfo.value.elapsed_seconds == 700.0
        assert str(excinfo.value) == "Resolution timeout after 0 iterations"
        assert workspaces.applied == []
        assert workspaces.destroyed == ["ws-42"]

    async def test_slow_test_command_is_cut_off_at_budget(self, tmp_path: Path) -> None:
        workspaces = FakeWorkspaces(tmp_path, command_delay=1.0)
        loop = ResolutionLoop(
            ScriptedOracle(),
            workspaces,
            settings=ResolutionSettings(max_execution_seconds=0.2, test_command=("true",)),
        )

        started = time.monotonic()
        with pytest.raises(ResolutionTimeoutError) as excinfo:
            await loop.resolve(_analysis(), ITEM)
        elapsed = time.monotonic() - started

        assert elapsed < 0.9
        assert excinfo.value.iterations == 1
        assert workspaces.commands == [("true",)]
        assert workspaces.destroyed == ["ws-42"]

    async def test_oracle_timing_out_every_iteration_uses_placeholder(
        self, tmp_path: Path
    ) -> None:
        workspaces = FakeWorkspaces(tmp_path)
        oracle = SlowOracle(delay=1.0)
        loop = ResolutionLoop(
            oracle,
            workspaces,
            settings=ResolutionSettings(max_iterations=3),
            oracle_timeout_seconds=0.05,
        )

        outcome = await loop.resolve(_analysis(), ITEM)

        assert not outcome.success
        assert outcome.iterations == 3
        assert oracle.calls == ["generate", "refine", "refine"]
        assert len(outcome.errors) == outcome.iterations
        assert all("(timeout)" in error for error in outcome.errors)
        assert outcome.errors[0].startswith("oracle generate failed (timeout)")
        assert outcome.change_set.paths == ("src/fixes/fix_42.py",)
        assert [applied.paths for applied in workspaces.applied] == [("src/fixes/fix_42.py",)] * 3

    async def test_cancellation_destroys_workspace(self, tmp_path: Path) -> None:
        workspaces = FakeWorkspaces(tmp_path)
        token = CancellationToken()
        token.cancel("operator stop")

        with pytest.raises(asyncio.CancelledError):
            await ResolutionLoop(ScriptedOracle(), workspaces).resolve(
                _analysis(), ITEM, cancel_token=token
            )

        assert workspaces.destroyed == ["ws-42"]
        assert workspaces.applied == []
