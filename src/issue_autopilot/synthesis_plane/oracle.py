"""
issue-autopilot — code-generation oracle contract

File: src/issue_autopilot/synthesis_plane/oracle.py

Purpose
- Capability interface for the external code-generation oracle.
- Tagged results (`OracleOk | OracleParseError | OracleCallError`) so callers
  branch on outcome instead of catching transport exceptions.
- Text parsers that turn raw oracle replies into domain objects.

Non-goals
- Prompt construction and model selection belong to concrete adapters.
"""

from __future__ import annotations

import json
import re
from collections.abc import Awaitable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Final, Generic, Protocol, TypeAlias, TypeVar, runtime_checkable

from issue_autopilot.domain.models import (
    Analysis,
    Category,
    ChangeSet,
    EditKind,
    FileChange,
    FileEdit,
    WorkItem,
)
from issue_autopilot.utils.concurrency import CancellationToken, run_with_timeout

if TYPE_CHECKING:
    from issue_autopilot.synthesis_plane.codebase import CodebaseSummary

T = TypeVar("T")

_JSON_OBJECT_RE: Final[re.Pattern[str]] = re.compile(r"\{[\s\S]*\}")
_MAX_DETAIL: Final[int] = 500

# Tracker vocabulary that maps onto the closed category set.
_CATEGORY_ALIASES: Final[dict[str, Category]] = {
    "bug": Category.DEFECT,
    "bugfix": Category.DEFECT,
    "fix": Category.DEFECT,
    "defect": Category.DEFECT,
    "feature": Category.FEATURE,
    "enhancement": Category.ENHANCEMENT,
    "improvement": Category.ENHANCEMENT,
    "docs": Category.DOCUMENTATION,
    "documentation": Category.DOCUMENTATION,
    "question": Category.QUESTION,
    "maintenance": Category.MAINTENANCE,
    "chore": Category.MAINTENANCE,
    "unknown": Category.UNKNOWN,
}


@dataclass(frozen=True, slots=True)
class RequirementSet:
    requirements: tuple[str, ...] = ()
    acceptance_criteria: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class OracleContext:
    """Everything an adapter may put into a prompt for one work item."""

    work_item: WorkItem
    analysis: Analysis | None = None
    codebase: CodebaseSummary | None = None


@dataclass(frozen=True, slots=True)
class OracleFeedback:
    """Repair request: why the previous change set was not accepted."""

    context: OracleContext
    iteration: int
    issues: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class OracleOk(Generic[T]):
    value: T


@dataclass(frozen=True, slots=True)
class OracleParseError:
    """The oracle answered, but the answer could not be interpreted."""

    detail: str
    raw: str = field(default="", repr=False)


@dataclass(frozen=True, slots=True)
class OracleCallError:
    """The oracle could not be reached or did not answer in time."""

    detail: str
    code: str = "call_failed"
    retryable: bool = False

    @property
    def timed_out(self) -> bool:
        return self.code == "timeout"


OracleFailure: TypeAlias = OracleParseError | OracleCallError
OracleResult: TypeAlias = OracleOk[T] | OracleParseError | OracleCallError


@runtime_checkable
class Oracle(Protocol):
    """Protocol implemented by code-generation oracle adapters."""

    async def generate(self, context: OracleContext) -> OracleResult[ChangeSet]: ...

    async def refine(
        self, previous: ChangeSet, feedback: OracleFeedback
    ) -> OracleResult[ChangeSet]: ...

    async def classify(self, context: OracleContext) -> OracleResult[Category]: ...

    async def extract_requirements(self, context: OracleContext) -> OracleResult[RequirementSet]: ...


async def call_oracle(
    awaitable: Awaitable[OracleResult[T]],
    *,
    timeout_seconds: float,
    cancel_token: CancellationToken | None = None,
) -> OracleResult[T]:
    """Await one oracle call, folding timeouts and adapter crashes into ``OracleCallError``.

    Cancellation is not folded: it propagates so the caller can stop the run.
    """

    try:
        result = await run_with_timeout(awaitable, timeout_seconds, cancel_token)
    except TimeoutError:
        return OracleCallError(
            detail=f"oracle call timed out after {timeout_seconds:g}s",
            code="timeout",
            retryable=True,
        )
    except Exception as exc:  # noqa: BLE001
        return OracleCallError(detail=_normalize_detail(f"{type(exc).__name__}: {exc}"))
    if not isinstance(result, (OracleOk, OracleParseError, OracleCallError)):
        return OracleParseError(detail=f"adapter returned {type(result).__name__}, not a result")
    return result


def describe_failure(operation: str, failure: OracleFailure) -> str:
    if isinstance(failure, OracleCallError):
        return f"oracle {operation} failed ({failure.code}): {failure.detail}"
    return f"oracle {operation} returned unparseable output: {failure.detail}"


# --- Text parsers ---


def parse_change_set(text: str) -> OracleOk[ChangeSet] | OracleParseError:
    """Parse a JSON change set embedded anywhere in ``text``.

    Two layouts are accepted: ``{"changes": [{"path", "edits": [{"kind", ...}]}]}``
    and the tracker-bot layout ``{"files": [{"path", "changes": [{"type",
    "content", "lineNumber"}]}]}``.
    """

    payload = _extract_json_object(text)
    if isinstance(payload, OracleParseError):
        return payload

    try:
        if "files" in payload:
            change_set = _change_set_from_files_layout(payload)
        else:
            change_set = ChangeSet.from_dict(
                {key: payload[key] for key in ("changes", "summary") if key in payload}
            )
    except (KeyError, TypeError, ValueError) as exc:
        return OracleParseError(detail=_normalize_detail(str(exc)), raw=text)
    return OracleOk(change_set)


def parse_category(text: str) -> OracleOk[Category] | OracleParseError:
    """Parse a bare category word or a ``{"category": ...}`` object."""

    candidate = text.strip()
    if "{" in candidate:
        payload = _extract_json_object(candidate)
        if isinstance(payload, OracleParseError):
            return payload
        raw_category = payload.get("category")
        if not isinstance(raw_category, str):
            return OracleParseError(detail="category field missing or not a string", raw=text)
        candidate = raw_category

    normalized = candidate.strip().strip("`'\".").lower()
    category = _CATEGORY_ALIASES.get(normalized)
    if category is None:
        return OracleParseError(detail=f"unrecognized category {normalized!r}", raw=text)
    return OracleOk(category)


def parse_requirements(text: str) -> OracleOk[RequirementSet] | OracleParseError:
    payload = _extract_json_object(text)
    if isinstance(payload, OracleParseError):
        return payload

    requirements = payload.get("requirements", [])
    criteria = payload.get("acceptance_criteria", payload.get("acceptanceCriteria", []))
    try:
        return OracleOk(
            RequirementSet(
                requirements=_string_tuple(requirements, "requirements"),
                acceptance_criteria=_string_tuple(criteria, "acceptance_criteria"),
            )
        )
    except ValueError as exc:
        return OracleParseError(detail=str(exc), raw=text)


def _extract_json_object(text: str) -> dict[str, object] | OracleParseError:
    if not isinstance(text, str):
        return OracleParseError(detail=f"expected text, got {type(text).__name__}")
    match = _JSON_OBJECT_RE.search(text)
    if match is None:
        return OracleParseError(detail="no JSON object found in oracle output", raw=text)
    try:
        payload = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        return OracleParseError(detail=f"invalid JSON: {exc.msg}", raw=text)
    if not isinstance(payload, dict):
        return OracleParseError(detail="oracle output must be a JSON object", raw=text)
    return payload


def _change_set_from_files_layout(payload: Mapping[str, object]) -> ChangeSet:
    files = payload["files"]
    if not isinstance(files, Sequence) or isinstance(files, str):
        raise ValueError("files: expected array")
    changes: list[FileChange] = []
    for index, raw_file in enumerate(files):
        if not isinstance(raw_file, Mapping):
            raise ValueError(f"files[{index}]: expected object")
        edits = []
        for raw_edit in raw_file.get("changes", []) or []:
            if not isinstance(raw_edit, Mapping):
                raise ValueError(f"files[{index}].changes: expected objects")
            line_hint = raw_edit.get("lineNumber", raw_edit.get("line_hint"))
            edits.append(
                FileEdit(
                    kind=EditKind(str(raw_edit.get("type", raw_edit.get("kind", ""))).lower()),
                    content=str(raw_edit.get("content") or ""),
                    line_hint=line_hint if isinstance(line_hint, int) and line_hint > 0 else None,
                )
            )
        changes.append(FileChange(path=str(raw_file["path"]), edits=tuple(edits)))
    summary = payload.get("reasoning", payload.get("summary", ""))
    return ChangeSet(changes=tuple(changes), summary=str(summary or ""))


def _string_tuple(value: object, path: str) -> tuple[str, ...]:
    if not isinstance(value, (list, tuple)):
        raise ValueError(f"{path}: expected array of strings")
    items: list[str] = []
    for index, item in enumerate(value):
        if not isinstance(item, str):
            raise ValueError(f"{path}[{index}]: expected string")
        if item.strip():
            items.append(item.strip())
    return tuple(items)


def _normalize_detail(detail: str) -> str:
    collapsed = " ".join(detail.split())
    if len(collapsed) > _MAX_DETAIL:
        return collapsed[: _MAX_DETAIL - 3] + "..."
    return collapsed or "unknown error"


__all__ = [
    "Oracle",
    "OracleCallError",
    "OracleContext",
    "OracleFailure",
    "OracleFeedback",
    "OracleOk",
    "OracleParseError",
    "OracleResult",
    "RequirementSet",
    "call_oracle",
    "describe_failure",
    "parse_category",
    "parse_change_set",
    "parse_requirements",
]
