"""Domain types shared across planes: work items, analyses, change sets, reviews, run records."""

from issue_autopilot.domain.events import EventType, WorkflowEvent
from issue_autopilot.domain.models import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATES,
    Analysis,
    Category,
    ChangeSet,
    ComplexityTier,
    EditKind,
    ErrorKind,
    FileChange,
    FileEdit,
    FindingCategory,
    PublishedChangeRef,
    ResolutionOutcome,
    ReviewFinding,
    ReviewOutcome,
    Severity,
    StateTransition,
    WorkflowError,
    WorkflowRecord,
    WorkflowState,
    WorkItem,
    WorkspaceHandle,
    can_transition,
)

__all__ = [
    "ALLOWED_TRANSITIONS",
    "Analysis",
    "Category",
    "ChangeSet",
    "ComplexityTier",
    "EditKind",
    "ErrorKind",
    "EventType",
    "FileChange",
    "FileEdit",
    "FindingCategory",
    "PublishedChangeRef",
    "ResolutionOutcome",
    "ReviewFinding",
    "ReviewOutcome",
    "Severity",
    "StateTransition",
    "TERMINAL_STATES",
    "WorkItem",
    "WorkflowError",
    "WorkflowEvent",
    "WorkflowRecord",
    "WorkflowState",
    "WorkspaceHandle",
    "can_transition",
]
