"""Exception hierarchy shared by the autopilot planes.

Policy outcomes (infeasible items, rejected reviews) are not exceptions; they
are recorded on the workflow record. Exceptions here cover malformed input,
collaborator failures, budget expiry and engine misuse.
"""

from __future__ import annotations


class AutopilotError(Exception):
    """Base class for all autopilot errors."""


class WorkItemValidationError(AutopilotError, ValueError):
    """Raised when a work item snapshot is malformed before it enters the pipeline."""


class InvalidTransitionError(AutopilotError):
    """Raised when a workflow state change is not an edge of the state graph."""

    def __init__(self, run_id: str, current: str, target: str) -> None:
        self.run_id = run_id
        self.current = current
        self.target = target
        super().__init__(f"run {run_id}: illegal transition {current} -> {target}")


class DuplicateRunError(AutopilotError):
    """Raised when a work item already has an active run and duplicates are disabled."""

    def __init__(self, work_item_id: str, active_run_id: str) -> None:
        self.work_item_id = work_item_id
        self.active_run_id = active_run_id
        super().__init__(f"work item {work_item_id!r} already has active run {active_run_id}")


class UnknownRunError(AutopilotError, KeyError):
    """Raised when a run identifier is not known to the run store."""

    def __init__(self, run_id: str) -> None:
        self.run_id = run_id
        super().__init__(f"unknown run id: {run_id}")

    def __str__(self) -> str:
        return f"unknown run id: {self.run_id}"


class ResolutionTimeoutError(AutopilotError, TimeoutError):
    """Raised when the resolution loop exceeds its wall-clock budget."""

    def __init__(self, iterations: int, elapsed_seconds: float, errors: tuple[str, ...] = ()) -> None:
        self.iterations = iterations
        self.elapsed_seconds = elapsed_seconds
        self.errors = errors
        super().__init__(f"Resolution timeout after {iterations} iterations")


class StageTimeoutError(AutopilotError, TimeoutError):
    """Raised when a workflow stage exceeds its own budget or the run's remaining budget."""

    def __init__(self, stage: str, budget_seconds: float, *, scope: str = "stage") -> None:
        self.stage = stage
        self.budget_seconds = budget_seconds
        self.scope = scope
        if scope == "workflow":
            message = f"workflow budget exhausted during {stage} stage"
        else:
            message = f"{stage} stage exceeded its {budget_seconds:.1f}s budget"
        super().__init__(message)


class CollaboratorError(AutopilotError):
    """Normalized failure raised by an external collaborator edge.

    Carries machine-readable fields so the workflow engine can decide whether
    to retry without inspecting message text.
    """

    def __init__(
        self,
        *,
        collaborator: str,
        code: str,
        detail: str,
        retryable: bool = False,
    ) -> None:
        self.collaborator = collaborator
        self.code = code
        self.detail = " ".join(detail.split()) or code
        self.retryable = bool(retryable)
        super().__init__(
            f"collaborator={collaborator} code={code} "
            f"retryable={str(self.retryable).lower()} detail={self.detail}"
        )


def is_retryable_error(error: BaseException) -> bool:
    """Return ``True`` only for collaborator errors flagged as retryable."""

    return isinstance(error, CollaboratorError) and error.retryable


__all__ = [
    "AutopilotError",
    "CollaboratorError",
    "DuplicateRunError",
    "InvalidTransitionError",
    "ResolutionTimeoutError",
    "StageTimeoutError",
    "UnknownRunError",
    "WorkItemValidationError",
    "is_retryable_error",
]
