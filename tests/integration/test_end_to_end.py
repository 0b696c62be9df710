"""
issue-autopilot — end-to-end workflow tests

File: tests/integration/test_end_to_end.py

Purpose
- Run real work items through every plane: recorded oracle, local directory
  workspaces, the resolution loop, the review engine and the JSON publisher.

What this test file should cover
- A clean defect fix ends COMPLETE with one published document.
- An oracle that never produces a change ends FAILED after the iteration budget.
- Workspaces are gone once every run has finished.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from issue_autopilot.config.settings import ResolutionSettings, WorkflowSettings
from issue_autopilot.control_plane import InMemoryRunStore, WorkflowController
from issue_autopilot.domain.events import EventType
from issue_autopilot.domain.models import ErrorKind, WorkflowState, WorkItem
from issue_autopilot.integration_plane.publisher import LocalJsonPublisher
from issue_autopilot.integration_plane.workspace_manager import LocalDirectoryWorkspaceProvider
from issue_autopilot.observability.events import EventBus
from issue_autopilot.synthesis_plane.replay_oracle import RecordedOracle
from issue_autopilot.synthesis_plane.resolution_loop import ResolutionLoop
from issue_autopilot.synthesis_plane.work_item_classifier import WorkItemClassifier
from issue_autopilot.verification_plane.review import ReviewEngine

pytestmark = pytest.mark.integration

TEXT_SOURCE = '''"""Text helpers."""


def words(text: str) -> list[str]:
    """Return the whitespace separated words of text."""
    return text.split()
'''

TEXT_TEST = """from text import words


def test_words_of_blank_input() -> None:
    assert words("   ") == []
"""

TRANSCRIPT: dict[str, Any] = {
    "default": {
        "classify": "defect",
        "extract_requirements": {"requirements": ["Handle empty input"]},
        "generate": {
            "summary": "return no words for blank input",
            "changes": [
                {"path": "src/text.py", "edits": [{"kind": "add", "content": TEXT_SOURCE}]},
                {"path": "tests/test_text.py", "edits": [{"kind": "add", "content": TEXT_TEST}]},
                {
                    "path": "README.md",
                    "edits": [{"kind": "add", "content": "# Text\n\nSplits text into words.\n"}],
                },
            ],
        },
    },
    "items": {
        "43": {"generate": {"error": "upstream unavailable", "code": "unavailable"}},
    },
}


def _seed_repo(root: Path) -> Path:
    (root / "src").mkdir(parents=True)
    (root / "tests").mkdir()
    (root / "src" / "calc.py").write_text('"""Calc."""\n\n\ndef add(a, b):\n    return a + b\n', encoding="utf-8")
    (root / "tests" / "test_calc.py").write_text(
        "from calc import add\n\n\ndef test_add():\n    assert add(1, 2) == 3\n", encoding="utf-8"
    )
    return root


def _controller(tmp_path: Path, oracle: RecordedOracle, events: EventBus) -> WorkflowController:
    workspaces = LocalDirectoryWorkspaceProvider(
        tmp_path / "workspaces", seed_dir=_seed_repo(tmp_path / "repo")
    )
    return WorkflowController(
        classifier=WorkItemClassifier(oracle),
        resolver=ResolutionLoop(oracle, workspaces, settings=ResolutionSettings(max_iterations=2)),
        reviewer=ReviewEngine(),
        publisher=LocalJsonPublisher(tmp_path / "published"),
        settings=WorkflowSettings(publish_backoff_seconds=0.0, publish_backoff_max_seconds=0.0),
        store=InMemoryRunStore(),
        events=events,
    )


async def test_clean_fix_is_published(tmp_path: Path) -> None:
    oracle = RecordedOracle.from_mapping(TRANSCRIPT)
    events = EventBus()
    controller = _controller(tmp_path, oracle, events)
    item = WorkItem(
        id="42",
        title="Crash on blank input",
        body="Splitting blank input crashes.\n\n- Handle empty input\n",
        labels=frozenset({"bug"}),
    )

    record = await controller.run(item)
    await controller.shutdown()

    assert record.state is WorkflowState.COMPLETE
    assert record.errors == ()
    assert record.analysis is not None and record.analysis.feasible
    assert record.resolution is not None and record.resolution.iterations == 1
    assert record.review is not None and record.review.approved
    assert record.published is not None and record.published.location is not None

    document = json.loads(Path(record.published.location).read_text(encoding="utf-8"))
    assert document["work_item"]["id"] == "42"
    assert [change["path"] for change in document["change_set"]["changes"]] == [
        "src/text.py",
        "tests/test_text.py",
        "README.md",
    ]

    assert [call.operation for call in oracle.calls] == ["classify", "extract_requirements", "generate"]
    assert list((tmp_path / "workspaces").iterdir()) == []
    changes = events.replay(event_type=EventType.STATE_CHANGED, run_id=record.run_id)
    assert changes[-1].payload["state"] == WorkflowState.COMPLETE.value
    assert [event.payload["sequence"] for event in changes] == sorted(
        event.payload["sequence"] for event in changes
    )


async def test_oracle_outage_fails_after_iteration_budget(tmp_path: Path) -> None:
    oracle = RecordedOracle.from_mapping(TRANSCRIPT)
    controller = _controller(tmp_path, oracle, EventBus())
    item = WorkItem(id="43", title="Crash on tabs", body="- Handle tab input\n", labels=frozenset({"bug"}))

    record = await controller.run(item)
    await controller.shutdown()

    assert record.state is WorkflowState.FAILED
    assert record.published is None
    assert record.resolution is not None
    assert record.resolution.success is False
    assert record.resolution.iterations == 2
    assert [error.kind for error in record.errors] == [ErrorKind.COLLABORATOR, ErrorKind.COLLABORATOR]
    assert [call.operation for call in oracle.calls] == [
        "classify",
        "extract_requirements",
        "generate",
        "refine",
    ]
    assert not list((tmp_path / "published").glob("change-*.json"))
    assert list((tmp_path / "workspaces").iterdir()) == []
