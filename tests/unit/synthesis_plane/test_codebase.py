"""
issue-autopilot — unit tests for the codebase survey

File: tests/unit/synthesis_plane/test_codebase.py

What this test file should cover
- Languages, entry points, test layout, manifests and dependencies are detected.
- Vendored and cache directories are skipped.
- Unreadable trees degrade to a minimal summary instead of raising.
- Pattern checks flag foreign extensions and misplaced tests only when the
  survey carries conventions.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import pytest

from issue_autopilot.domain.models import ChangeSet, EditKind, FileChange, FileEdit
from issue_autopilot.synthesis_plane.codebase import CodebaseSummary, is_test_path, survey_codebase

if TYPE_CHECKING:
    from pathlib import Path


def _write(root: Path, relative: str, text: str = "") -> None:
    target = root / relative
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(text, encoding="utf-8")


@pytest.mark.parametrize(
    ("path", "expected"),
    [
        ("tests/test_parser.py", True),
        ("src/app.test.ts", True),
        ("pkg/io_test.go", True),
        ("spec/helpers/factory.rb", True),
        ("src/app.py", False),
        ("src/testing_utils.py", False),
    ],
)
def test_is_test_path(path: str, expected: bool) -> None:
    assert is_test_path(path) is expected


def test_survey_detects_layout(tmp_path: Path) -> None:
    _write(
        tmp_path,
        "pyproject.toml",
        '[project]\nname = "demo"\ndependencies = ["structlog>=24.1", "PyYAML[libyaml]"]\n',
    )
    _write(tmp_path, "package.json", json.dumps({"devDependencies": {"left-pad": "1.0.0"}}))
    _write(tmp_path, "requirements.txt", "# pinned\nrequests==2.32.0\n-e .\n")
    _write(tmp_path, "src/main.py", "print('hi')\n")
    _write(tmp_path, "tests/test_main.py", "def test_main():\n    pass\n")
    _write(tmp_path, "node_modules/lib/index.js", "module.exports = {}\n")
    _write(tmp_path, ".git/HEAD", "ref: refs/heads/main\n")

    summary = survey_codebase(tmp_path)

    assert not summary.degraded
    assert summary.languages == ("python",)
    assert summary.source_extensions == (".py",)
    assert summary.entry_points == ("src/main.py",)
    assert summary.test_dirs == ("tests",)
    assert summary.test_files == ("tests/test_main.py",)
    assert summary.manifests == ("pyproject.toml", "requirements.txt", "package.json")
    assert summary.dependencies == ("PyYAML", "left-pad", "requests", "structlog")
    assert summary.file_count == 5


def test_nested_test_directories_report_outermost(tmp_path: Path) -> None:
    _write(tmp_path, "pkg/tests/unit/test_a.py")
    _write(tmp_path, "pkg/core.py")

    assert survey_codebase(tmp_path).test_dirs == ("pkg/tests",)


def test_missing_root_degrades(tmp_path: Path) -> None:
    summary = survey_codebase(tmp_path / "absent")

    assert summary.degraded
    assert summary.file_count == 0
    assert summary.notes[0].startswith("codebase survey failed:")


def test_broken_manifest_degrades(tmp_path: Path) -> None:
    _write(tmp_path, "pyproject.toml", "[project\n")

    summary = survey_codebase(tmp_path)

    assert summary.degraded
    assert summary.root == str(tmp_path)


class TestPatternViolations:
    SUMMARY = CodebaseSummary(
        root="/repo",
        languages=("python",),
        source_extensions=(".py",),
        test_dirs=("tests",),
        file_count=12,
    )

    @staticmethod
    def _change_set(*paths: str) -> ChangeSet:
        return ChangeSet(
            changes=tuple(
                FileChange(path=path, edits=(FileEdit(kind=EditKind.ADD, content="x = 1"),))
                for path in paths
            )
        )

    def test_conforming_changes(self) -> None:
        change_set = self._change_set("src/a.py", "tests/test_a.py", "README.md")

        assert self.SUMMARY.pattern_violations(change_set) == ()

    def test_foreign_extension_and_misplaced_test(self) -> None:
        change_set = self._change_set("src/a.rb", "lib/test_a.py")

        assert self.SUMMARY.pattern_violations(change_set) == (
            "src/a.rb: extension .rb not used in this codebase",
            "lib/test_a.py: tests live under tests",
        )

    def test_whole_file_deletions_are_ignored(self) -> None:
        change_set = ChangeSet(
            changes=(FileChange(path="legacy/tool.rb", edits=(FileEdit(kind=EditKind.DELETE),)),)
        )

        assert self.SUMMARY.pattern_violations(change_set) == ()

    def test_degraded_or_empty_surveys_flag_nothing(self) -> None:
        change_set = self._change_set("src/a.rb")

        assert CodebaseSummary.minimal("/repo", "boom").pattern_violations(change_set) == ()
        assert CodebaseSummary(root="/repo").pattern_violations(change_set) == ()
