"""Dataclass domain models with strict validation and canonical serialization."""

from __future__ import annotations

import json
import math
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, is_dataclass, replace
from datetime import UTC, datetime
from enum import Enum, StrEnum
from pathlib import PurePosixPath
from typing import Final, NoReturn, TypeVar, cast

from issue_autopilot.constants import SEVERITY_WEIGHTS
from issue_autopilot.errors import WorkItemValidationError

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

_MAX_TITLE: Final[int] = 512
_MAX_BODY: Final[int] = 200_000

TEnum = TypeVar("TEnum", bound=Enum)


class Category(StrEnum):
    DEFECT = "defect"
    FEATURE = "feature"
    ENHANCEMENT = "enhancement"
    DOCUMENTATION = "documentation"
    QUESTION = "question"
    MAINTENANCE = "maintenance"
    UNKNOWN = "unknown"


class ComplexityTier(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _COMPLEXITY_RANK[self]


_COMPLEXITY_RANK: Final[dict[ComplexityTier, int]] = {
    ComplexityTier.LOW: 0,
    ComplexityTier.MEDIUM: 1,
    ComplexityTier.HIGH: 2,
    ComplexityTier.CRITICAL: 3,
}


class EditKind(StrEnum):
    ADD = "add"
    MODIFY = "modify"
    DELETE = "delete"


class Severity(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def weight(self) -> float:
        return SEVERITY_WEIGHTS[self.value]


class FindingCategory(StrEnum):
    SYNTAX = "syntax"
    LOGIC = "logic"
    SECURITY = "security"
    QUALITY = "quality"
    PERFORMANCE = "performance"
    TESTING = "testing"
    DOCUMENTATION = "documentation"


class WorkflowState(StrEnum):
    INITIALIZING = "initializing"
    ANALYZING = "analyzing"
    CHECKING_FEASIBILITY = "checking_feasibility"
    GENERATING_SOLUTION = "generating_solution"
    REVIEWING = "reviewing"
    PUBLISHING = "publishing"
    COMPLETE = "complete"
    REQUIRES_HUMAN_REVIEW = "requires_human_review"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


class ErrorKind(StrEnum):
    """Distinct labels so operators can tell slow collaborators from broken ones."""

    INPUT = "input"
    COLLABORATOR = "collaborator"
    POLICY = "policy"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    INTERNAL = "internal"
    NOTIFIER = "notifier"


TERMINAL_STATES: Final[frozenset[WorkflowState]] = frozenset(
    {
        WorkflowState.COMPLETE,
        WorkflowState.REQUIRES_HUMAN_REVIEW,
        WorkflowState.FAILED,
    }
)

# Forward edges of the state graph. FAILED is reachable from every non-terminal state.
ALLOWED_TRANSITIONS: Final[dict[WorkflowState, frozenset[WorkflowState]]] = {
    WorkflowState.INITIALIZING: frozenset({WorkflowState.ANALYZING, WorkflowState.FAILED}),
    WorkflowState.ANALYZING: frozenset(
        {WorkflowState.CHECKING_FEASIBILITY, WorkflowState.FAILED}
    ),
    WorkflowState.CHECKING_FEASIBILITY: frozenset(
        {
            WorkflowState.GENERATING_SOLUTION,
            WorkflowState.REQUIRES_HUMAN_REVIEW,
            WorkflowState.FAILED,
        }
    ),
    WorkflowState.GENERATING_SOLUTION: frozenset({WorkflowState.REVIEWING, WorkflowState.FAILED}),
    WorkflowState.REVIEWING: frozenset(
        {
            WorkflowState.PUBLISHING,
            WorkflowState.REQUIRES_HUMAN_REVIEW,
            WorkflowState.FAILED,
        }
    ),
    WorkflowState.PUBLISHING: frozenset({WorkflowState.COMPLETE, WorkflowState.FAILED}),
    WorkflowState.COMPLETE: frozenset(),
    WorkflowState.REQUIRES_HUMAN_REVIEW: frozenset(),
    WorkflowState.FAILED: frozenset(),
}


def can_transition(current: WorkflowState, target: WorkflowState) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


class CanonicalModel:
    """Mixin for canonical dict/json serialization."""

    def to_dict(self) -> dict[str, JSONValue]:
        serialized = _serialize_value(self, self.__class__.__name__)
        if not isinstance(serialized, dict):
            _fail(self.__class__.__name__, "serialized model must be an object")
        return serialized

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"), ensure_ascii=False)


@dataclass(frozen=True, slots=True)
class WorkItem(CanonicalModel):
    """Immutable tracker snapshot. The engine never mutates it."""

    id: str
    title: str
    body: str = ""
    labels: frozenset[str] = frozenset()
    is_open: bool = True
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    url: str | None = None

    def __post_init__(self) -> None:
        try:
            item_id = _as_str(self.id, "WorkItem.id", max_len=256)
            title = _as_str(self.title, "WorkItem.title", min_len=0, max_len=_MAX_TITLE)
            body = _as_str(self.body, "WorkItem.body", min_len=0, max_len=_MAX_BODY, strip=False)
            labels = _as_label_set(self.labels, "WorkItem.labels")
            if not isinstance(self.is_open, bool):
                _fail("WorkItem.is_open", f"expected boolean, got {type(self.is_open).__name__}")
            created_at = _as_datetime(self.created_at, "WorkItem.created_at")
            updated_at = _as_datetime(self.updated_at, "WorkItem.updated_at")
            if updated_at < created_at:
                _fail("WorkItem.updated_at", "must be >= WorkItem.created_at")
            url = _as_optional_str(self.url, "WorkItem.url")
        except ValueError as exc:
            raise WorkItemValidationError(str(exc)) from exc

        object.__setattr__(self, "id", item_id)
        object.__setattr__(self, "title", title)
        object.__setattr__(self, "body", body)
        object.__setattr__(self, "labels", labels)
        object.__setattr__(self, "created_at", created_at)
        object.__setattr__(self, "updated_at", updated_at)
        object.__setattr__(self, "url", url)

    @property
    def content(self) -> str:
        """Title and body joined the way classifiers and prompts consume them."""

        return f"{self.title}\n{self.body}".strip()

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> WorkItem:
        parsed = _expect_object(
            data,
            "WorkItem",
            required={"id", "title"},
            optional={"body", "labels", "is_open", "state", "created_at", "updated_at", "url"},
            error_type=WorkItemValidationError,
        )
        kwargs: dict[str, object] = {"id": _coerce_id(parsed["id"]), "title": parsed["title"]}
        if "body" in parsed:
            kwargs["body"] = "" if parsed["body"] is None else parsed["body"]
        if "labels" in parsed:
            kwargs["labels"] = _labels_from_payload(parsed["labels"])
        if "is_open" in parsed:
            kwargs["is_open"] = parsed["is_open"]
        elif "state" in parsed:
            kwargs["is_open"] = str(parsed["state"]).strip().lower() == "open"
        for key in ("created_at", "updated_at"):
            if key in parsed:
                kwargs[key] = _coerce_datetime_payload(parsed[key], f"WorkItem.{key}")
        if "url" in parsed:
            kwargs["url"] = parsed["url"]
        return cls(**kwargs)  # type: ignore[arg-type]


@dataclass(frozen=True, slots=True)
class Analysis(CanonicalModel):
    category: Category
    complexity: ComplexityTier
    requirements: tuple[str, ...]
    acceptance_criteria: tuple[str, ...]
    feasible: bool
    confidence: float
    reasoning: str
    complexity_score: int = 0
    degraded: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "category", _as_enum(Category, self.category, "Analysis.category"))
        object.__setattr__(
            self, "complexity", _as_enum(ComplexityTier, self.complexity, "Analysis.complexity")
        )
        confidence = _as_float(self.confidence, "Analysis.confidence")
        if not 0.0 <= confidence <= 1.0:
            _fail("Analysis.confidence", "must be within [0, 1]")
        object.__setattr__(self, "confidence", confidence)
        object.__setattr__(self, "requirements", tuple(self.requirements))
        object.__setattr__(self, "acceptance_criteria", tuple(self.acceptance_criteria))
        # A critical item is never feasible, whatever the caller computed.
        if self.complexity is ComplexityTier.CRITICAL and self.feasible:
            object.__setattr__(self, "feasible", False)


@dataclass(frozen=True, slots=True)
class FileEdit(CanonicalModel):
    kind: EditKind
    content: str = ""
    line_hint: int | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", _as_enum(EditKind, self.kind, "FileEdit.kind"))
        if not isinstance(self.content, str):
            _fail("FileEdit.content", f"expected string, got {type(self.content).__name__}")
        if self.line_hint is not None:
            _as_int(self.line_hint, "FileEdit.line_hint", minimum=1)

    @property
    def line_count(self) -> int:
        return len(self.content.splitlines()) if self.content else 0


@dataclass(frozen=True, slots=True)
class FileChange(CanonicalModel):
    path: str
    edits: tuple[FileEdit, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "path", _as_relative_path(self.path, "FileChange.path"))
        edits = tuple(self.edits)
        for index, edit in enumerate(edits):
            if not isinstance(edit, FileEdit):
                _fail(f"FileChange.edits[{index}]", "must be FileEdit")
        object.__setattr__(self, "edits", edits)

    @property
    def extension(self) -> str:
        return PurePosixPath(self.path).suffix.lower()

    @property
    def changed_lines(self) -> int:
        return sum(edit.line_count for edit in self.edits)

    @property
    def written_text(self) -> str:
        """Text introduced by add/modify edits; deletions introduce nothing."""

        return "\n".join(edit.content for edit in self.edits if edit.kind is not EditKind.DELETE)

    @property
    def deletes_file(self) -> bool:
        return any(
            edit.kind is EditKind.DELETE and not edit.content and edit.line_hint is None
            for edit in self.edits
        )


@dataclass(frozen=True, slots=True)
class ChangeSet(CanonicalModel):
    changes: tuple[FileChange, ...] = ()
    summary: str = ""

    def __post_init__(self) -> None:
        changes = tuple(self.changes)
        for index, change in enumerate(changes):
            if not isinstance(change, FileChange):
                _fail(f"ChangeSet.changes[{index}]", "must be FileChange")
        object.__setattr__(self, "changes", changes)

    @property
    def paths(self) -> tuple[str, ...]:
        return tuple(dict.fromkeys(change.path for change in self.changes))

    @property
    def file_count(self) -> int:
        return len(self.paths)

    @property
    def changed_line_count(self) -> int:
        return sum(change.changed_lines for change in self.changes)

    @property
    def is_empty(self) -> bool:
        return not self.changes

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> ChangeSet:
        parsed = _expect_object(data, "ChangeSet", required={"changes"}, optional={"summary"})
        raw_changes = _as_sequence(parsed["changes"], "ChangeSet.changes")
        changes: list[FileChange] = []
        for index, raw_change in enumerate(raw_changes):
            path = f"ChangeSet.changes[{index}]"
            change_obj = _expect_object(raw_change, path, required={"path"}, optional={"edits"})
            edits: list[FileEdit] = []
            for edit_index, raw_edit in enumerate(
                _as_sequence(change_obj.get("edits", []), f"{path}.edits")
            ):
                edit_obj = _expect_object(
                    raw_edit,
                    f"{path}.edits[{edit_index}]",
                    required={"kind"},
                    optional={"content", "line_hint"},
                )
                content = edit_obj.get("content", "")
                edits.append(
                    FileEdit(
                        kind=_as_enum(EditKind, edit_obj["kind"], f"{path}.kind"),
                        content="" if content is None else str(content),
                        line_hint=cast("int | None", edit_obj.get("line_hint")),
                    )
                )
            changes.append(FileChange(path=str(change_obj["path"]), edits=tuple(edits)))
        summary = parsed.get("summary", "")
        return cls(changes=tuple(changes), summary="" if summary is None else str(summary))


@dataclass(frozen=True, slots=True)
class WorkspaceHandle(CanonicalModel):
    workspace_id: str
    path: str
    branch: str | None = None


@dataclass(frozen=True, slots=True)
class ResolutionOutcome(CanonicalModel):
    success: bool
    change_set: ChangeSet
    workspace: WorkspaceHandle | None
    iterations: int
    reasoning: str
    errors: tuple[str, ...] = ()
    tests_passed: bool | None = None
    elapsed_seconds: float = 0.0


@dataclass(frozen=True, slots=True)
class ReviewFinding(CanonicalModel):
    severity: Severity
    category: FindingCategory
    message: str
    path: str | None = None
    line: int | None = None
    suggestion: str | None = None
    rule: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "severity", _as_enum(Severity, self.severity, "finding.severity"))
        object.__setattr__(
            self, "category", _as_enum(FindingCategory, self.category, "finding.category")
        )


@dataclass(frozen=True, slots=True)
class ReviewOutcome(CanonicalModel):
    approved: bool
    score: float
    findings: tuple[ReviewFinding, ...]
    recommendations: tuple[str, ...]
    sub_scores: Mapping[str, float]
    reasoning: str

    def count(self, severity: Severity) -> int:
        return sum(1 for finding in self.findings if finding.severity is severity)


@dataclass(frozen=True, slots=True)
class PublishedChangeRef(CanonicalModel):
    reference: str
    location: str | None = None
    branch: str | None = None
    published_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass(frozen=True, slots=True)
class WorkflowError(CanonicalModel):
    stage: str
    kind: ErrorKind
    message: str
    at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def reason_key(self) -> str:
        """Histogram key used by the failure-reason metric."""

        return f"{self.kind.value}:{self.stage}"


@dataclass(frozen=True, slots=True)
class StateTransition(CanonicalModel):
    sequence: int
    state: WorkflowState
    previous: WorkflowState | None
    at: datetime


@dataclass(slots=True)
class WorkflowRecord(CanonicalModel):
    """Per-run record. Only the controller mutates it; readers get snapshots."""

    run_id: str
    work_item: WorkItem
    state: WorkflowState = WorkflowState.INITIALIZING
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    finished_at: datetime | None = None
    duration_seconds: float | None = None
    analysis: Analysis | None = None
    resolution: ResolutionOutcome | None = None
    review: ReviewOutcome | None = None
    published: PublishedChangeRef | None = None
    requires_human_review: bool = False
    errors: tuple[WorkflowError, ...] = ()
    transitions: tuple[StateTransition, ...] = ()
    stage_timings: dict[str, float] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    @property
    def work_item_id(self) -> str:
        return self.work_item.id

    def snapshot(self) -> WorkflowRecord:
        return replace(self, stage_timings=dict(self.stage_timings))


def _fail(path: str, message: str, error_type: type[ValueError] = ValueError) -> NoReturn:
    raise error_type(f"{path}: {message}")


def _expect_object(
    value: object,
    path: str,
    *,
    required: set[str],
    optional: set[str] | None = None,
    error_type: type[ValueError] = ValueError,
) -> dict[str, object]:
    if not isinstance(value, Mapping):
        _fail(path, f"expected object, got {type(value).__name__}", error_type)

    parsed: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            _fail(path, f"object keys must be strings, got {type(key).__name__}", error_type)
        parsed[key] = item

    allowed = required | (optional or set())
    unknown = sorted(key for key in parsed if key not in allowed)
    if unknown:
        _fail(path, f"unexpected fields: {unknown}", error_type)

    missing = sorted(key for key in required if key not in parsed)
    if missing:
        _fail(path, f"missing required fields: {missing}", error_type)
    return parsed


def _as_str(
    value: object,
    path: str,
    *,
    min_len: int = 1,
    max_len: int = 8192,
    strip: bool = True,
) -> str:
    if not isinstance(value, str):
        _fail(path, f"expected string, got {type(value).__name__}")
    normalized = value.strip() if strip else value
    if len(normalized.strip()) < min_len:
        _fail(path, f"must be at least {min_len} character(s)")
    if len(normalized) > max_len:
        _fail(path, f"must be <= {max_len} characters")
    return normalized


def _as_optional_str(value: object, path: str) -> str | None:
    if value is None:
        return None
    return _as_str(value, path)


def _as_int(value: object, path: str, *, minimum: int | None = None) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        _fail(path, f"expected integer, got {type(value).__name__}")
    if minimum is not None and value < minimum:
        _fail(path, f"must be >= {minimum}")
    return value


def _as_float(value: object, path: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        _fail(path, f"expected number, got {type(value).__name__}")
    parsed = float(value)
    if not math.isfinite(parsed):
        _fail(path, "must be finite")
    return parsed


def _as_datetime(value: object, path: str) -> datetime:
    if not isinstance(value, datetime):
        _fail(path, f"expected datetime, got {type(value).__name__}")
    if value.tzinfo is None or value.utcoffset() is None:
        _fail(path, "datetime must be timezone-aware")
    return value.astimezone(UTC)


def _coerce_datetime_payload(value: object, path: str) -> datetime:
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str):
        _fail(path, f"expected ISO-8601 string, got {type(value).__name__}", WorkItemValidationError)
    text = value[:-1] + "+00:00" if value.endswith("Z") else value
    try:
        return datetime.fromisoformat(text)
    except ValueError as exc:
        raise WorkItemValidationError(f"{path}: invalid ISO-8601 datetime {value!r}") from exc


def _as_enum(enum_type: type[TEnum], value: object, path: str) -> TEnum:
    if isinstance(value, enum_type):
        return value
    if not isinstance(value, str):
        _fail(path, f"expected string enum value, got {type(value).__name__}")
    try:
        return enum_type(value.strip().lower())
    except ValueError:
        allowed = ", ".join(sorted(str(item.value) for item in enum_type))
        _fail(path, f"invalid value {value!r}; expected one of: {allowed}")


def _as_sequence(value: object, path: str) -> list[object]:
    if isinstance(value, (list, tuple)):
        return list(value)
    _fail(path, f"expected array, got {type(value).__name__}")


def _as_label_set(value: object, path: str) -> frozenset[str]:
    if isinstance(value, str) or not isinstance(value, (set, frozenset, list, tuple)):
        _fail(path, f"expected a collection of strings, got {type(value).__name__}")
    labels: set[str] = set()
    for index, item in enumerate(value):
        if not isinstance(item, str):
            _fail(f"{path}[{index}]", f"expected string, got {type(item).__name__}")
        normalized = item.strip().lower()
        if normalized:
            labels.add(normalized)
    return frozenset(labels)


def _labels_from_payload(value: object) -> object:
    # Tracker payloads carry labels either as names or as {"name": ...} objects.
    if isinstance(value, (list, tuple)):
        return [
            item.get("name") if isinstance(item, Mapping) else item for item in value
        ]
    return value


def _coerce_id(value: object) -> object:
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


def _as_relative_path(value: object, path: str) -> str:
    raw = _as_str(value, path, max_len=1024).replace("\\", "/")
    while raw.startswith("./"):
        raw = raw[2:]
    candidate = PurePosixPath(raw)
    if candidate.is_absolute():
        _fail(path, "must be a relative path")
    if any(part == ".." for part in candidate.parts):
        _fail(path, "must not traverse upwards")
    return candidate.as_posix()


def _serialize_value(value: object, path: str) -> JSONValue:
    if value is None or isinstance(value, bool):
        return cast("JSONValue", value)
    if isinstance(value, (int, str)):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            _fail(path, "float values must be finite")
        return value
    if isinstance(value, Enum):
        return cast("JSONValue", value.value)
    if isinstance(value, datetime):
        return value.astimezone(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")
    if isinstance(value, (frozenset, set)):
        return sorted(_serialize_value(item, f"{path}[]") for item in value)  # type: ignore[type-var]
    if isinstance(value, (list, tuple)):
        return [_serialize_value(item, f"{path}[]") for item in value]
    if isinstance(value, Mapping):
        out: dict[str, JSONValue] = {}
        for key in sorted(value):
            if not isinstance(key, str):
                _fail(path, "dict keys must be strings")
            out[key] = _serialize_value(value[key], f"{path}.{key}")
        return out
    if is_dataclass(value) and not isinstance(value, type):
        out_obj: dict[str, JSONValue] = {}
        for dataclass_field in fields(value):
            out_obj[dataclass_field.name] = _serialize_value(
                getattr(value, dataclass_field.name),
                f"{path}.{dataclass_field.name}",
            )
        return out_obj
    _fail(path, f"cannot serialize value of type {type(value).__name__}")


__all__ = [
    "ALLOWED_TRANSITIONS",
    "Analysis",
    "CanonicalModel",
    "Category",
    "ChangeSet",
    "ComplexityTier",
    "EditKind",
    "ErrorKind",
    "FileChange",
    "FileEdit",
    "FindingCategory",
    "JSONScalar",
    "JSONValue",
    "PublishedChangeRef",
    "ResolutionOutcome",
    "ReviewFinding",
    "ReviewOutcome",
    "Severity",
    "StateTransition",
    "TERMINAL_STATES",
    "WorkItem",
    "WorkflowError",
    "WorkflowRecord",
    "WorkflowState",
    "WorkspaceHandle",
    "can_transition",
]
