"""
Integration tests for git-worktree-backed workspace lifecycle.

Coverage:
- fix branch naming from item id and title
- `git worktree list` visibility while a workspace is active
- file application and command execution inside the worktree
- cleanup of the worktree, with and without keeping the fix branch
- parallel workspace creation isolation
"""

from __future__ import annotations

import asyncio
import os
import shutil
import subprocess
from pathlib import Path

import pytest

from issue_autopilot.domain.models import ChangeSet, EditKind, FileChange, FileEdit
from issue_autopilot.integration_plane.workspace_manager import (
    GitWorktreeWorkspaceProvider,
    WorkspaceError,
)

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed"),
]


def _git(repo_root: Path, *args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
    env = os.environ.copy()
    env["GIT_TERMINAL_PROMPT"] = "0"
    env.setdefault("GIT_CONFIG_NOSYSTEM", "1")
    result = subprocess.run(
        ["git", *args],
        cwd=repo_root,
        env=env,
        check=False,
        text=True,
        capture_output=True,
    )
    if check and result.returncode != 0:
        detail = result.stderr.strip() or result.stdout.strip()
        raise RuntimeError(f"git {' '.join(args)} failed: {detail}")
    return result


def _init_repo(tmp_path: Path) -> Path:
    repo_root = tmp_path / "repo"
    (repo_root / "src").mkdir(parents=True)
    _git(repo_root, "init", "--initial-branch=main", "--quiet")
    (repo_root / "src" / "seed.py").write_text("def seed() -> int:\n    return 1\n", encoding="utf-8")
    _git(repo_root, "add", ".")
    _git(
        repo_root,
        "-c",
        "user.name=Workspace Test",
        "-c",
        "user.email=workspace-test@example.com",
        "commit",
        "--quiet",
        "-m",
        "initial",
    )
    return repo_root


def _branches(repo_root: Path) -> list[str]:
    listed = _git(repo_root, "branch", "--format=%(refname:short)").stdout
    return sorted(line.strip() for line in listed.splitlines() if line.strip())


async def test_worktree_lifecycle_keeps_fix_branch(tmp_path: Path) -> None:
    repo_root = _init_repo(tmp_path)
    provider = GitWorktreeWorkspaceProvider(
        repo_root,
        tmp_path / "workspaces",
        title_lookup=lambda item_id: "Crash on blank input",
    )

    handle = await provider.create("42")
    workspace = Path(handle.path)

    assert handle.branch is not None
    assert handle.branch.startswith("autopilot/42-crash-on-blank-input-")
    assert (workspace / "src" / "seed.py").is_file()
    assert str(workspace) in _git(repo_root, "worktree", "list").stdout

    change_set = ChangeSet(
        changes=(
            FileChange(
                path="src/seed.py",
                edits=(FileEdit(kind=EditKind.MODIFY, content="    return 2\n", line_hint=2),),
            ),
        )
    )
    await provider.apply_files(handle, change_set)
    assert (workspace / "src" / "seed.py").read_text(encoding="utf-8") == (
        "def seed() -> int:\n    return 2\n"
    )
    assert await provider.run_command(handle, ["git", "diff", "--quiet"]) == 1

    await provider.destroy(handle)
    await provider.destroy(handle)

    assert not workspace.exists()
    assert str(workspace) not in _git(repo_root, "worktree", "list").stdout
    assert handle.branch in _branches(repo_root)
    assert provider.destroy_count == 1
    assert (repo_root / "src" / "seed.py").read_text(encoding="utf-8").endswith("return 1\n")


async def test_branch_is_deleted_when_not_kept(tmp_path: Path) -> None:
    repo_root = _init_repo(tmp_path)
    provider = GitWorktreeWorkspaceProvider(repo_root, tmp_path / "workspaces", keep_branches=False)

    handle = await provider.create("7")
    await provider.destroy(handle)

    assert _branches(repo_root) == ["main"]


async def test_parallel_workspaces_are_isolated(tmp_path: Path) -> None:
    repo_root = _init_repo(tmp_path)
    provider = GitWorktreeWorkspaceProvider(repo_root, tmp_path / "workspaces")

    handles = await asyncio.gather(*(provider.create(str(number)) for number in range(4)))

    assert len({handle.path for handle in handles}) == 4
    assert len({handle.branch for handle in handles}) == 4
    assert len(provider.active_workspaces) == 4

    await asyncio.gather(*(provider.destroy(handle) for handle in handles))
    assert provider.active_workspaces == ()
    assert list((tmp_path / "workspaces").iterdir()) == []


async def test_unknown_base_branch_fails_cleanly(tmp_path: Path) -> None:
    repo_root = _init_repo(tmp_path)
    provider = GitWorktreeWorkspaceProvider(
        repo_root, tmp_path / "workspaces", base_branch="does-not-exist"
    )

    with pytest.raises(WorkspaceError) as excinfo:
        await provider.create("42")

    assert excinfo.value.code == "git_failed"
    assert provider.active_workspaces == ()
