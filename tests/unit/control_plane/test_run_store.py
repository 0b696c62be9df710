"""
issue-autopilot — unit tests for run stores

File: tests/unit/control_plane/test_run_store.py

What this test file should cover
- Active/completed bookkeeping, snapshot isolation and unknown-run errors.
- The JSON-lines audit log written on completion.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING

import pytest

from issue_autopilot.control_plane.run_store import (
    InMemoryRunStore,
    JsonlRunStore,
    RunStore,
    read_run_log,
)
from issue_autopilot.domain.models import WorkflowRecord, WorkflowState, WorkItem
from issue_autopilot.errors import UnknownRunError

if TYPE_CHECKING:
    from pathlib import Path


def _record(run_id: str, item_id: str = "42") -> WorkflowRecord:
    return WorkflowRecord(run_id=run_id, work_item=WorkItem(id=item_id, title="Crash"))


def test_lifecycle_moves_records_from_active_to_completed() -> None:
    store = InMemoryRunStore()
    record = _record("run-a")

    store.add(record)
    assert store.active_run_for("42") == "run-a"

    record.state = WorkflowState.FAILED
    store.complete(record)

    assert isinstance(store, RunStore)
    assert store.active() == []
    assert [done.run_id for done in store.completed()] == ["run-a"]
    assert store.active_run_for("42") is None
    assert store.get("run-a").state is WorkflowState.FAILED


def test_readers_get_snapshots() -> None:
    store = InMemoryRunStore()
    record = _record("run-a")
    store.add(record)

    record.state = WorkflowState.ANALYZING
    record.stage_timings["analysis"] = 1.0
    snapshot = store.get("run-a")
    snapshot.stage_timings["review"] = 2.0

    assert snapshot.state is WorkflowState.INITIALIZING
    assert store.get("run-a").stage_timings == {}

    store.update(record)
    assert store.get("run-a").state is WorkflowState.ANALYZING


def test_misuse_is_rejected() -> None:
    store = InMemoryRunStore()
    record = _record("run-a")
    store.add(record)

    with pytest.raises(ValueError, match="already stored"):
        store.add(record)
    with pytest.raises(ValueError, match="is not terminal: initializing"):
        store.complete(record)
    with pytest.raises(UnknownRunError, match="unknown run id: run-b"):
        store.update(_record("run-b"))
    with pytest.raises(UnknownRunError):
        store.get("run-b")


def test_concurrent_adds_are_all_kept() -> None:
    store = InMemoryRunStore()

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(lambda number: store.add(_record(f"run-{number}", str(number))), range(64)))

    assert len(store.active()) == 64


def test_jsonl_store_appends_completed_runs(tmp_path: Path) -> None:
    log_path = tmp_path / "runs" / "runs.jsonl"
    store = JsonlRunStore(log_path)
    for run_id, state in (("run-a", WorkflowState.COMPLETE), ("run-b", WorkflowState.FAILED)):
        record = _record(run_id)
        store.add(record)
        record.state = state
        store.complete(record)

    entries = read_run_log(log_path)

    assert [(entry["run_id"], entry["state"]) for entry in entries] == [
        ("run-a", "complete"),
        ("run-b", "failed"),
    ]
    assert entries[0]["work_item"]["id"] == "42"  # type: ignore[index]


def test_read_run_log_edge_cases(tmp_path: Path) -> None:
    assert read_run_log(tmp_path / "missing.jsonl") == []

    broken = tmp_path / "broken.jsonl"
    broken.write_text('{"run_id": "a"}\n\n[1]\n', encoding="utf-8")
    with pytest.raises(ValueError, match="broken.jsonl:3: expected JSON object"):
        read_run_log(broken)

    garbled = tmp_path / "garbled.jsonl"
    garbled.write_text("{not json\n", encoding="utf-8")
    with pytest.raises(ValueError, match="garbled.jsonl:1: invalid JSON record"):
        read_run_log(garbled)
