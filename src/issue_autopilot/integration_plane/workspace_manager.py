"""Isolated workspace providers: local directory copies and git worktrees."""

from __future__ import annotations

import asyncio
import os
import re
import shutil
import subprocess
import threading
from collections.abc import Callable, Mapping, Sequence
from pathlib import Path
from typing import Final, Protocol, runtime_checkable

from issue_autopilot.constants import (
    BRANCH_SLUG_MAX_LEN,
    DEFAULT_BASE_BRANCH,
    DEFAULT_FIX_BRANCH_PREFIX,
    WORKSPACES_DIR,
)
from issue_autopilot.domain.ids import generate_ulid, short_id
from issue_autopilot.domain.models import ChangeSet, EditKind, FileEdit, WorkspaceHandle
from issue_autopilot.errors import CollaboratorError
from issue_autopilot.utils.fs import atomic_write, resolve_within, safe_delete

_SLUG_STRIP_RE: Final[re.Pattern[str]] = re.compile(r"[^a-z0-9]+")
_COPY_IGNORE: Final[tuple[str, ...]] = (".git", ".autopilot", "node_modules", "__pycache__")
_DEFAULT_COMMAND_TIMEOUT: Final[float] = 300.0


class WorkspaceError(CollaboratorError):
    """Raised when a workspace cannot be created, written or removed."""

    def __init__(self, code: str, detail: str, *, retryable: bool = False) -> None:
        super().__init__(collaborator="workspace", code=code, detail=detail, retryable=retryable)


@runtime_checkable
class WorkspaceProvider(Protocol):
    """Capability interface for isolated workspaces."""

    async def create(self, item_id: str) -> WorkspaceHandle: ...

    async def apply_files(self, handle: WorkspaceHandle, change_set: ChangeSet) -> None: ...

    async def run_command(self, handle: WorkspaceHandle, argv: Sequence[str]) -> int: ...

    async def destroy(self, handle: WorkspaceHandle) -> None: ...


def apply_edits(existing: str | None, edits: Sequence[FileEdit]) -> str | None:
    """Apply ``edits`` to a file's prior text; ``None`` means the file is removed.

    - ``add`` appends the content.
    - ``modify`` replaces the hinted line region, the whole prior content when no
      hint is given, or appends when there is no prior content.
    - ``delete`` removes the hinted region, the first occurrence of the content,
      or the whole file when the content is empty.
    """

    text = existing
    for edit in edits:
        if edit.kind is EditKind.ADD:
            text = edit.content if not text else _join(text, edit.content)
        elif edit.kind is EditKind.MODIFY:
            if not text:
                text = edit.content
            elif edit.line_hint is None:
                text = edit.content
            else:
                text = _replace_region(text, edit.line_hint, edit.content)
        elif edit.line_hint is not None and text:
            text = _replace_region(text, edit.line_hint, "", span=max(1, edit.line_count))
        elif edit.content:
            if text and edit.content in text:
                text = text.replace(edit.content, "", 1)
        else:
            text = None
    return text


def branch_slug(item_id: str, title: str = "") -> str:
    """Build a git-safe ``<id>-<title words>`` slug bounded to the configured length."""

    raw = f"{item_id} {title}".strip().lower()
    slug = _SLUG_STRIP_RE.sub("-", raw).strip("-")
    return slug[:BRANCH_SLUG_MAX_LEN].rstrip("-") or "item"


class _FilesystemWorkspaceProvider:
    """Shared file application and command execution for directory-backed workspaces."""

    def __init__(
        self,
        *,
        command_timeout_seconds: float = _DEFAULT_COMMAND_TIMEOUT,
        env_overrides: Mapping[str, str] | None = None,
    ) -> None:
        self._command_timeout = command_timeout_seconds
        self._env_overrides = dict(env_overrides or {})
        self._lock = threading.RLock()
        self._active: dict[str, WorkspaceHandle] = {}
        self.destroy_count = 0

    @property
    def active_workspaces(self) -> tuple[WorkspaceHandle, ...]:
        with self._lock:
            return tuple(self._active[key] for key in sorted(self._active))

    async def apply_files(self, handle: WorkspaceHandle, change_set: ChangeSet) -> None:
        await asyncio.to_thread(self._apply_files_sync, handle, change_set)

    async def run_command(self, handle: WorkspaceHandle, argv: Sequence[str]) -> int:
        if not argv:
            raise ValueError("argv must not be empty")
        return await asyncio.to_thread(self._run_command_sync, handle, tuple(argv))

    def _apply_files_sync(self, handle: WorkspaceHandle, change_set: ChangeSet) -> None:
        root = Path(handle.path)
        for change in change_set.changes:
            try:
                target = resolve_within(root, change.path)
            except ValueError as exc:
                raise WorkspaceError("path_escape", str(exc)) from exc
            existing = target.read_text(encoding="utf-8") if target.is_file() else None
            updated = apply_edits(existing, change.edits)
            if updated is None:
                if target.exists():
                    safe_delete(target, root)
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
            atomic_write(target, updated)

    def _run_command_sync(self, handle: WorkspaceHandle, argv: tuple[str, ...]) -> int:
        env = os.environ.copy()
        env.update(self._env_overrides)
        try:
            proc = subprocess.run(
                list(argv),
                cwd=handle.path,
                env=env,
                check=False,
                text=True,
                capture_output=True,
                timeout=self._command_timeout,
            )
        except subprocess.TimeoutExpired:
            return 124
        except OSError as exc:
            raise WorkspaceError("command_failed", f"{argv[0]}: {exc}") from exc
        return proc.returncode

    def _register(self, handle: WorkspaceHandle) -> WorkspaceHandle:
        with self._lock:
            self._active[handle.workspace_id] = handle
        return handle

    def _release(self, handle: WorkspaceHandle) -> bool:
        """Forget ``handle``; returns False when it was already destroyed."""

        with self._lock:
            if self._active.pop(handle.workspace_id, None) is None:
                return False
            self.destroy_count += 1
            return True


class LocalDirectoryWorkspaceProvider(_FilesystemWorkspaceProvider):
    """Workspaces as plain directories, optionally seeded from a source tree."""

    def __init__(
        self,
        workspace_root: str | Path,
        *,
        seed_dir: str | Path | None = None,
        command_timeout_seconds: float = _DEFAULT_COMMAND_TIMEOUT,
        env_overrides: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(
            command_timeout_seconds=command_timeout_seconds, env_overrides=env_overrides
        )
        self._workspace_root = Path(workspace_root).expanduser().resolve(strict=False)
        self._seed_dir = (
            Path(seed_dir).expanduser().resolve(strict=True) if seed_dir is not None else None
        )

    async def create(self, item_id: str) -> WorkspaceHandle:
        return await asyncio.to_thread(self._create_sync, item_id)

    async def destroy(self, handle: WorkspaceHandle) -> None:
        if not self._release(handle):
            return
        await asyncio.to_thread(self._remove_dir, Path(handle.path))

    def _create_sync(self, item_id: str) -> WorkspaceHandle:
        workspace_id = f"{branch_slug(item_id)}-{short_id(generate_ulid())}"
        workspace_dir = self._workspace_root / workspace_id
        self._workspace_root.mkdir(parents=True, exist_ok=True)
        if workspace_dir.exists():
            raise WorkspaceError("exists", f"workspace directory already exists: {workspace_dir}")
        if self._seed_dir is not None:
            shutil.copytree(
                self._seed_dir,
                workspace_dir,
                symlinks=True,
                ignore=shutil.ignore_patterns(*_COPY_IGNORE),
            )
        else:
            workspace_dir.mkdir()
        return self._register(
            WorkspaceHandle(workspace_id=workspace_id, path=str(workspace_dir))
        )

    def _remove_dir(self, workspace_dir: Path) -> None:
        if workspace_dir.exists() or workspace_dir.is_symlink():
            safe_delete(workspace_dir, self._workspace_root)


class GitWorktreeWorkspaceProvider(_FilesystemWorkspaceProvider):
    """Workspaces as `git worktree` checkouts on per-item fix branches."""

    def __init__(
        self,
        repo_root: str | Path,
        workspace_root: str | Path | None = None,
        *,
        base_branch: str = DEFAULT_BASE_BRANCH,
        branch_prefix: str = DEFAULT_FIX_BRANCH_PREFIX,
        keep_branches: bool = True,
        title_lookup: Callable[[str], str] | None = None,
        command_timeout_seconds: float = _DEFAULT_COMMAND_TIMEOUT,
        env_overrides: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(
            command_timeout_seconds=command_timeout_seconds, env_overrides=env_overrides
        )
        resolved_repo = Path(repo_root).expanduser().resolve(strict=True)
        if not resolved_repo.is_dir():
            raise NotADirectoryError(f"{resolved_repo} is not a directory")
        if workspace_root is None:
            resolved_workspace_root = resolved_repo.joinpath(*WORKSPACES_DIR.parts)
        else:
            candidate_root = Path(workspace_root).expanduser()
            resolved_workspace_root = (
                candidate_root.resolve(strict=False)
                if candidate_root.is_absolute()
                else (resolved_repo / candidate_root).resolve(strict=False)
            )
        self._repo_root = resolved_repo
        self._workspace_root = resolved_workspace_root
        self._base_branch = base_branch
        self._branch_prefix = branch_prefix
        self._keep_branches = keep_branches
        self._title_lookup = title_lookup

    async def create(self, item_id: str) -> WorkspaceHandle:
        return await asyncio.to_thread(self._create_sync, item_id)

    async def destroy(self, handle: WorkspaceHandle) -> None:
        if not self._release(handle):
            return
        await asyncio.to_thread(self._remove_worktree, handle)

    def _create_sync(self, item_id: str) -> WorkspaceHandle:
        suffix = short_id(generate_ulid())
        title = self._title_lookup(item_id) if self._title_lookup is not None else ""
        branch_name = f"{self._branch_prefix}/{branch_slug(item_id, title)}-{suffix}"
        workspace_id = f"{branch_slug(item_id)}-{suffix}"
        workspace_dir = self._workspace_root / workspace_id

        with self._lock:
            self._workspace_root.mkdir(parents=True, exist_ok=True)
            if workspace_dir.exists() or workspace_dir.is_symlink():
                raise WorkspaceError("exists", f"workspace directory already exists: {workspace_dir}")
            self._run_git(
                [
                    "worktree",
                    "add",
                    "--quiet",
                    "-b",
                    branch_name,
                    str(workspace_dir),
                    self._base_branch,
                ],
                check=True,
            )
        return self._register(
            WorkspaceHandle(
                workspace_id=workspace_id,
                path=str(workspace_dir.resolve(strict=False)),
                branch=branch_name,
            )
        )

    def _remove_worktree(self, handle: WorkspaceHandle) -> None:
        workspace_dir = Path(handle.path)
        with self._lock:
            self._run_git(["worktree", "remove", "--force", str(workspace_dir)], check=False)
            if workspace_dir.exists() or workspace_dir.is_symlink():
                safe_delete(workspace_dir, self._workspace_root)
            self._run_git(["worktree", "prune"], check=False)
            if handle.branch and not self._keep_branches:
                self._run_git(["branch", "-D", handle.branch], check=False)

    def _run_git(self, args: Sequence[str], *, check: bool) -> subprocess.CompletedProcess[str]:
        env = os.environ.copy()
        env["GIT_TERMINAL_PROMPT"] = "0"
        env.setdefault("GIT_CONFIG_NOSYSTEM", "1")
        env.update(self._env_overrides)
        proc = subprocess.run(
            ["git", *args],
            cwd=self._repo_root,
            env=env,
            check=False,
            text=True,
            capture_output=True,
        )
        if check and proc.returncode != 0:
            detail = proc.stderr.strip() or proc.stdout.strip()
            raise WorkspaceError(
                "git_failed",
                f"git {' '.join(args)} exited with {proc.returncode}: {detail}",
            )
        return proc


def _join(text: str, addition: str) -> str:
    return text + ("" if text.endswith("\n") else "\n") + addition


def _replace_region(text: str, line_hint: int, content: str, *, span: int | None = None) -> str:
    lines = text.splitlines(keepends=True)
    start = min(line_hint - 1, len(lines))
    replaced = span if span is not None else max(1, len(content.splitlines()))
    new_lines = content.splitlines(keepends=True)
    if new_lines and not new_lines[-1].endswith("\n") and start + replaced < len(lines):
        new_lines[-1] += "\n"
    return "".join(lines[:start] + new_lines + lines[start + replaced :])


__all__ = [
    "GitWorktreeWorkspaceProvider",
    "LocalDirectoryWorkspaceProvider",
    "WorkspaceError",
    "WorkspaceProvider",
    "apply_edits",
    "branch_slug",
]
