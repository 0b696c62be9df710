"""
issue-autopilot — bounded generate/validate/repair loop

File: src/issue_autopilot/synthesis_plane/resolution_loop.py

Purpose
- Drive the oracle through generate -> apply -> safety -> test -> validate ->
  (refine | placeholder) until success, iteration exhaustion or timeout.

Guarantees
- Never more than `max_iterations` iterations.
- Exceeding `max_execution_seconds` raises `ResolutionTimeoutError`.
- The workspace is destroyed exactly once per `resolve` call on every exit path.
- Safety gates run on every iteration before tests and are never skipped.
"""

from __future__ import annotations

import asyncio
import math
import re
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Final, TypeVar

import structlog

from issue_autopilot.config.settings import ResolutionSettings, SafetySettings
from issue_autopilot.domain.models import (
    Category,
    ChangeSet,
    EditKind,
    FileChange,
    FileEdit,
    ResolutionOutcome,
)
from issue_autopilot.errors import ResolutionTimeoutError
from issue_autopilot.integration_plane.workspace_manager import branch_slug
from issue_autopilot.synthesis_plane.codebase import CodebaseSummary, survey_codebase
from issue_autopilot.synthesis_plane.oracle import (
    OracleContext,
    OracleFeedback,
    OracleOk,
    call_oracle,
    describe_failure,
)
from issue_autopilot.synthesis_plane.safety import SafetyGate, describe_violations
from issue_autopilot.utils.concurrency import CancellationToken, Deadline, run_with_timeout

if TYPE_CHECKING:
    from collections.abc import Awaitable

    from issue_autopilot.domain.models import Analysis, WorkItem, WorkspaceHandle
    from issue_autopilot.integration_plane.workspace_manager import WorkspaceProvider
    from issue_autopilot.synthesis_plane.oracle import Oracle

T = TypeVar("T")

# --- Quality heuristic ---
_QUALITY_BASELINE = 0.8
_TODO_PENALTY = 0.1
_DEBUG_PENALTY = 0.05
_SHORT_CONTENT_PENALTY = 0.1
_SHORT_CONTENT_CHARS = 10

_TODO_RE: Final[re.Pattern[str]] = re.compile(r"(?:#|//)\s*(?:TODO|FIXME)\b")
_DEBUG_RE: Final[re.Pattern[str]] = re.compile(r"console\.log\(|(?<![\w.])print\(")

_PLACEHOLDER_DIR: Final[str] = "src/fixes"
_COMMENT_PREFIX: Final[dict[str, str]] = {".py": "#", ".ts": "//", ".js": "//"}


@dataclass(frozen=True, slots=True)
class ValidationResult:
    requirements_met: bool
    quality_score: float
    follows_patterns: bool
    issues: tuple[str, ...] = ()
    quality_threshold: float = 0.7

    @property
    def valid(self) -> bool:
        return (
            self.requirements_met
            and self.quality_score > self.quality_threshold
            and self.follows_patterns
        )

    @property
    def reasoning(self) -> str:
        return (
            f"Requirements met: {str(self.requirements_met).lower()}, "
            f"Code quality: {self.quality_score:.2f}, "
            f"Follows patterns: {str(self.follows_patterns).lower()}"
        )


def quality_score(change_set: ChangeSet) -> float:
    """Cheap content heuristic: start at 0.8, subtract per TODO, debug statement and stub edit."""

    score = _QUALITY_BASELINE
    for change in change_set.changes:
        for edit in change.edits:
            if edit.kind is EditKind.DELETE:
                continue
            if _TODO_RE.search(edit.content):
                score -= _TODO_PENALTY
            if _DEBUG_RE.search(edit.content):
                score -= _DEBUG_PENALTY
            if len(edit.content) < _SHORT_CONTENT_CHARS:
                score -= _SHORT_CONTENT_PENALTY
    return round(max(0.0, min(1.0, score)), 4)


def validate_change_set(
    change_set: ChangeSet,
    analysis: Analysis,
    summary: CodebaseSummary,
    settings: ResolutionSettings,
) -> ValidationResult:
    issues: list[str] = []

    needed_files = math.ceil(len(analysis.requirements) / settings.requirements_per_file)
    requirements_met = (
        not change_set.is_empty
        and change_set.file_count >= 1
        and change_set.file_count >= needed_files
    )
    if change_set.is_empty:
        issues.append("Change set is empty")
    elif not requirements_met:
        issues.append(
            f"{len(analysis.requirements)} requirements need at least {needed_files} changed "
            f"files, got {change_set.file_count}"
        )

    score = quality_score(change_set)
    if score <= settings.quality_threshold:
        issues.append(
            f"Code quality {score:.2f} is not above {settings.quality_threshold:.2f}; "
            "remove TODO markers, debug output and stub edits"
        )

    violations = summary.pattern_violations(change_set)
    issues.extend(violations)

    return ValidationResult(
        requirements_met=requirements_met,
        quality_score=score,
        follows_patterns=not violations,
        issues=tuple(issues),
        quality_threshold=settings.quality_threshold,
    )


def placeholder_change_set(
    item: WorkItem,
    analysis: Analysis,
    summary: CodebaseSummary | None = None,
) -> ChangeSet:
    """Single-file stand-in that records the item and its requirements.

    It carries a TODO marker, so it never passes validation on its own.
    """

    extension = _placeholder_extension(summary)
    prefix = _COMMENT_PREFIX[extension]
    stem = branch_slug(item.id).replace("-", "_")
    requirements = ", ".join(analysis.requirements) or "none extracted"
    content = "\n".join(
        (
            f"{prefix} Fix for work item {item.id}: {item.title}",
            f"{prefix} Requirements: {requirements}",
            f"{prefix} TODO: Implement actual fix based on requirements",
        )
    )
    return ChangeSet(
        changes=(
            FileChange(
                path=f"{_PLACEHOLDER_DIR}/fix_{stem}{extension}",
                edits=(FileEdit(kind=EditKind.ADD, content=content),),
            ),
        ),
        summary=f"Placeholder for work item {item.id}",
    )


def _placeholder_extension(summary: CodebaseSummary | None) -> str:
    languages = summary.languages if summary is not None else ()
    if "python" in languages or not languages:
        return ".py"
    if "typescript" in languages:
        return ".ts"
    if "javascript" in languages:
        return ".js"
    return ".py"


class ResolutionLoop:
    """Iterative resolver bound to one oracle and one workspace provider."""

    def __init__(
        self,
        oracle: Oracle,
        workspaces: WorkspaceProvider,
        *,
        settings: ResolutionSettings | None = None,
        safety: SafetySettings | None = None,
        oracle_timeout_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        logger: Any | None = None,
    ) -> None:
        self._oracle = oracle
        self._workspaces = workspaces
        self._settings = settings if settings is not None else ResolutionSettings()
        self._gate = SafetyGate(safety)
        self._oracle_timeout = oracle_timeout_seconds
        self._clock = clock
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def settings(self) -> ResolutionSettings:
        return self._settings

    async def resolve(
        self,
        analysis: Analysis,
        item: WorkItem,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> ResolutionOutcome:
        deadline = Deadline(self._settings.max_execution_seconds, clock=self._clock)
        handle = await self._workspaces.create(item.id)
        try:
            return await self._iterate(analysis, item, handle, deadline, cancel_token)
        finally:
            await self._workspaces.destroy(handle)
            self._logger.info(
                "synthesis_plane_workspace_destroyed",
                work_item_id=item.id,
                workspace_id=handle.workspace_id,
            )

    async def _iterate(
        self,
        analysis: Analysis,
        item: WorkItem,
        handle: WorkspaceHandle,
        deadline: Deadline,
        cancel_token: CancellationToken | None,
    ) -> ResolutionOutcome:
        errors: list[str] = []
        summary = await self._bounded(
            asyncio.to_thread(survey_codebase, handle.path), deadline, 0, errors, cancel_token
        )
        context = OracleContext(work_item=item, analysis=analysis, codebase=summary)

        generated = await call_oracle(
            self._oracle.generate(context),
            timeout_seconds=self._call_timeout(deadline, 0, errors),
            cancel_token=cancel_token,
        )
        if isinstance(generated, OracleOk):
            change_set = generated.value
        else:
            errors.append(describe_failure("generate", generated))
            change_set = placeholder_change_set(item, analysis, summary)

        max_iterations = self._settings.max_iterations
        iterations = 0
        tests_passed: bool | None = None
        while iterations < max_iterations:
            self._check_deadline(deadline, iterations, errors)
            iterations += 1
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            try:
                await self._bounded(
                    self._workspaces.apply_files(handle, change_set),
                    deadline,
                    iterations,
                    errors,
                    cancel_token,
                )

                violations = self._gate.check(change_set)
                if violations:
                    errors.append(describe_violations(violations))
                    self._log_iteration(item, iterations, "safety_rejected", change_set)
                    self._check_deadline(deadline, iterations, errors)
                    continue

                tests_passed = await self._run_tests(
                    handle, analysis, deadline, iterations, errors, cancel_token
                )
                validation = validate_change_set(change_set, analysis, summary, self._settings)
                self._log_iteration(
                    item,
                    iterations,
                    "validated" if validation.valid else "invalid",
                    change_set,
                    quality_score=validation.quality_score,
                    tests_passed=tests_passed,
                )

                if validation.valid and tests_passed is not False:
                    self._check_deadline(deadline, iterations, errors)
                    return ResolutionOutcome(
                        success=True,
                        change_set=change_set,
                        workspace=handle,
                        iterations=iterations,
                        reasoning=(
                            f"Solution generated successfully in {iterations} iterations. "
                            f"{validation.reasoning}"
                        ),
                        errors=tuple(errors),
                        tests_passed=tests_passed,
                        elapsed_seconds=round(deadline.elapsed, 6),
                    )

                if iterations < max_iterations:
                    issues = validation.issues
                    if tests_passed is False:
                        issues = (*issues, "Test command exited with a non-zero status")
                    refined = await call_oracle(
                        self._oracle.refine(
                            change_set,
                            OracleFeedback(context=context, iteration=iterations, issues=issues),
                        ),
                        timeout_seconds=self._call_timeout(deadline, iterations, errors),
                        cancel_token=cancel_token,
                    )
                    if isinstance(refined, OracleOk):
                        change_set = refined.value
                    else:
                        errors.append(describe_failure("refine", refined))
            except (asyncio.CancelledError, ResolutionTimeoutError):
                raise
            except Exception as exc:  # noqa: BLE001
                errors.append(f"Iteration {iterations} failed: {exc}")
                self._logger.warning(
                    "synthesis_plane_iteration_failed",
                    work_item_id=item.id,
                    iteration=iterations,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                change_set = placeholder_change_set(item, analysis, summary)

            self._check_deadline(deadline, iterations, errors)

        return ResolutionOutcome(
            success=False,
            change_set=change_set,
            workspace=handle,
            iterations=iterations,
            reasoning=f"Failed to generate valid solution after {iterations} iterations",
            errors=tuple(errors),
            tests_passed=tests_passed,
            elapsed_seconds=round(deadline.elapsed, 6),
        )

    async def _run_tests(
        self,
        handle: WorkspaceHandle,
        analysis: Analysis,
        deadline: Deadline,
        iterations: int,
        errors: list[str],
        cancel_token: CancellationToken | None,
    ) -> bool | None:
        if analysis.category is not Category.DEFECT and not self._settings.require_tests:
            return None
        if not self._settings.test_command:
            return None
        exit_code = await self._bounded(
            self._workspaces.run_command(handle, self._settings.test_command),
            deadline,
            iterations,
            errors,
            cancel_token,
        )
        return exit_code == 0

    async def _bounded(
        self,
        awaitable: Awaitable[T],
        deadline: Deadline,
        iterations: int,
        errors: list[str],
        cancel_token: CancellationToken | None,
    ) -> T:
        """Await a workspace step within what is left of the execution budget."""

        try:
            return await run_with_timeout(awaitable, deadline.remaining, cancel_token)
        except ResolutionTimeoutError:
            raise
        except TimeoutError as exc:
            raise ResolutionTimeoutError(
                iterations, round(deadline.elapsed, 6), tuple(errors)
            ) from exc

    def _call_timeout(self, deadline: Deadline, iterations: int, errors: list[str]) -> float:
        self._check_deadline(deadline, iterations, errors)
        return deadline.clamp(self._oracle_timeout)

    def _check_deadline(self, deadline: Deadline, iterations: int, errors: list[str]) -> None:
        if deadline.expired:
            raise ResolutionTimeoutError(iterations, round(deadline.elapsed, 6), tuple(errors))

    def _log_iteration(
        self,
        item: WorkItem,
        iteration: int,
        outcome: str,
        change_set: ChangeSet,
        **fields: object,
    ) -> None:
        self._logger.info(
            "synthesis_plane_resolution_iteration",
            work_item_id=item.id,
            iteration=iteration,
            outcome=outcome,
            file_count=change_set.file_count,
            changed_lines=change_set.changed_line_count,
            **fields,
        )


__all__ = [
    "ResolutionLoop",
    "ValidationResult",
    "placeholder_change_set",
    "quality_score",
    "validate_change_set",
]
