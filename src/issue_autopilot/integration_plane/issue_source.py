"""
Issue sources: where work items come from.

File: src/issue_autopilot/integration_plane/issue_source.py

Purpose
- `IssueSource` protocol consumed by the CLI and the controller drivers.
- `FileIssueSource`: a YAML or JSON document of work items, the local
  reference edge used by tests and offline runs.

Accepted document layouts
- a list of item mappings,
- ``{"items": [...]}``,
- a single item mapping.
"""

from __future__ import annotations

import builtins
import json
import threading
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Final, Literal, Protocol, runtime_checkable

import yaml

from issue_autopilot.domain.models import WorkItem
from issue_autopilot.errors import CollaboratorError, WorkItemValidationError

_YAML_SUFFIXES: Final[frozenset[str]] = frozenset({".yaml", ".yml"})

StateFilter = Literal["open", "closed", "all"]


class IssueSourceError(CollaboratorError):
    def __init__(self, code: str, detail: str, *, retryable: bool = False) -> None:
        super().__init__(collaborator="issue_source", code=code, detail=detail, retryable=retryable)


class IssueNotFoundError(IssueSourceError):
    def __init__(self, item_id: str) -> None:
        self.item_id = item_id
        super().__init__("not_found", f"work item {item_id!r} not found")


class IssueSourceAuthError(IssueSourceError):
    def __init__(self, detail: str) -> None:
        super().__init__("auth", detail)


class IssueRateLimitError(IssueSourceError):
    def __init__(self, detail: str, *, retry_after_seconds: float | None = None) -> None:
        self.retry_after_seconds = retry_after_seconds
        super().__init__("rate_limited", detail, retryable=True)


@dataclass(frozen=True, slots=True)
class IssueFilter:
    """Selection applied by `IssueSource.list`; labels must all be present."""

    state: StateFilter = "open"
    labels: frozenset[str] = frozenset()
    limit: int | None = None

    def matches(self, item: WorkItem) -> bool:
        if self.state == "open" and not item.is_open:
            return False
        if self.state == "closed" and item.is_open:
            return False
        return self.labels.issubset(item.labels)


@runtime_checkable
class IssueSource(Protocol):
    async def fetch(self, item_id: str) -> WorkItem: ...

    async def list(self, issue_filter: IssueFilter | None = None) -> builtins.list[WorkItem]: ...


class FileIssueSource:
    """Reads work items from a YAML/JSON file, re-reading when the file changes."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()
        self._cache: tuple[float, dict[str, WorkItem]] | None = None

    @property
    def path(self) -> Path:
        return self._path

    async def fetch(self, item_id: str) -> WorkItem:
        items = self._load()
        try:
            return items[str(item_id)]
        except KeyError:
            raise IssueNotFoundError(str(item_id)) from None

    async def list(self, issue_filter: IssueFilter | None = None) -> builtins.list[WorkItem]:
        selected = issue_filter if issue_filter is not None else IssueFilter()
        matched = [item for item in self._load().values() if selected.matches(item)]
        if selected.limit is not None:
            matched = matched[: selected.limit]
        return matched

    def _load(self) -> dict[str, WorkItem]:
        with self._lock:
            try:
                mtime = self._path.stat().st_mtime
            except FileNotFoundError:
                raise IssueSourceError("missing_source", f"issue file not found: {self._path}") from None
            if self._cache is not None and self._cache[0] == mtime:
                return self._cache[1]
            items = parse_work_items(self._read_payload())
            self._cache = (mtime, items)
            return items

    def _read_payload(self) -> object:
        try:
            text = self._path.read_text(encoding="utf-8")
        except OSError as exc:
            raise IssueSourceError("read_failed", f"cannot read {self._path}: {exc}") from exc
        try:
            if self._path.suffix.lower() in _YAML_SUFFIXES:
                return yaml.safe_load(text)
            return json.loads(text)
        except (yaml.YAMLError, json.JSONDecodeError) as exc:
            raise IssueSourceError("parse_failed", f"invalid issue file {self._path}: {exc}") from exc


def parse_work_items(payload: object) -> dict[str, WorkItem]:
    """Build an ordered ``id -> WorkItem`` map; duplicate ids are rejected."""

    if payload is None:
        return {}
    raw_items: object
    if isinstance(payload, Mapping):
        raw_items = payload["items"] if "items" in payload else [payload]
    elif isinstance(payload, list):
        raw_items = payload
    else:
        raise WorkItemValidationError(
            f"issue document: expected list or object, got {type(payload).__name__}"
        )
    if not isinstance(raw_items, list):
        raise WorkItemValidationError("issue document: 'items' must be a list")

    out: dict[str, WorkItem] = {}
    for index, raw in enumerate(raw_items):
        if not isinstance(raw, Mapping):
            raise WorkItemValidationError(f"items[{index}]: expected object")
        item = WorkItem.from_dict(raw)
        if item.id in out:
            raise WorkItemValidationError(f"items[{index}].id: duplicate work item id {item.id!r}")
        out[item.id] = item
    return out


__all__ = [
    "FileIssueSource",
    "IssueFilter",
    "IssueNotFoundError",
    "IssueRateLimitError",
    "IssueSource",
    "IssueSourceAuthError",
    "IssueSourceError",
    "parse_work_items",
]
