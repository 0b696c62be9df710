"""
issue-autopilot — workflow run store

File: src/issue_autopilot/control_plane/run_store.py

Purpose
- Injected registry of active and completed `WorkflowRecord`s, replacing any
  module-level run map.

Functional requirements
- Concurrent insert/update from many runs; every method holds one re-entrant lock.
- Readers receive snapshots, never the controller's live record.
- Completed runs are append-only; nothing is ever deleted.
- `JsonlRunStore` additionally appends each completed record to a JSON-lines
  audit log.
"""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Protocol, runtime_checkable

from issue_autopilot.domain.models import WorkflowRecord
from issue_autopilot.errors import UnknownRunError
from issue_autopilot.utils.fs import append_line


@runtime_checkable
class RunStore(Protocol):
    def add(self, record: WorkflowRecord) -> None: ...

    def update(self, record: WorkflowRecord) -> None: ...

    def complete(self, record: WorkflowRecord) -> None: ...

    def get(self, run_id: str) -> WorkflowRecord: ...

    def active(self) -> list[WorkflowRecord]: ...

    def completed(self) -> list[WorkflowRecord]: ...

    def active_run_for(self, work_item_id: str) -> str | None: ...


class InMemoryRunStore:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._active: dict[str, WorkflowRecord] = {}
        self._completed: dict[str, WorkflowRecord] = {}

    def add(self, record: WorkflowRecord) -> None:
        with self._lock:
            if record.run_id in self._active or record.run_id in self._completed:
                raise ValueError(f"run {record.run_id} already stored")
            self._active[record.run_id] = record.snapshot()

    def update(self, record: WorkflowRecord) -> None:
        with self._lock:
            if record.run_id not in self._active:
                raise UnknownRunError(record.run_id)
            self._active[record.run_id] = record.snapshot()

    def complete(self, record: WorkflowRecord) -> None:
        if not record.is_terminal:
            raise ValueError(f"run {record.run_id} is not terminal: {record.state.value}")
        with self._lock:
            if self._active.pop(record.run_id, None) is None:
                raise UnknownRunError(record.run_id)
            self._completed[record.run_id] = record.snapshot()

    def get(self, run_id: str) -> WorkflowRecord:
        with self._lock:
            record = self._active.get(run_id) or self._completed.get(run_id)
            if record is None:
                raise UnknownRunError(run_id)
            return record.snapshot()

    def active(self) -> list[WorkflowRecord]:
        with self._lock:
            return [record.snapshot() for record in self._active.values()]

    def completed(self) -> list[WorkflowRecord]:
        with self._lock:
            return [record.snapshot() for record in self._completed.values()]

    def active_run_for(self, work_item_id: str) -> str | None:
        with self._lock:
            for record in self._active.values():
                if record.work_item_id == work_item_id:
                    return record.run_id
        return None


class JsonlRunStore(InMemoryRunStore):
    """In-memory store that also appends every completed run to ``path``."""

    def __init__(self, path: str | Path) -> None:
        super().__init__()
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def complete(self, record: WorkflowRecord) -> None:
        with self._lock:
            super().complete(record)
            append_line(self._path, record.to_json())


def read_run_log(path: str | Path) -> list[dict[str, object]]:
    """Load the audit log written by `JsonlRunStore`, oldest first."""

    log_path = Path(path)
    if not log_path.exists():
        return []
    out: list[dict[str, object]] = []
    with log_path.open(encoding="utf-8") as handle:
        for number, line in enumerate(handle, start=1):
            if not line.strip():
                continue
            try:
                payload = json.loads(line)
            except json.JSONDecodeError as exc:
                raise ValueError(f"{log_path}:{number}: invalid JSON record: {exc}") from exc
            if not isinstance(payload, dict):
                raise ValueError(f"{log_path}:{number}: expected JSON object")
            out.append(payload)
    return out


__all__ = ["InMemoryRunStore", "JsonlRunStore", "RunStore", "read_run_log"]
