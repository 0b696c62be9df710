"""Filesystem helpers: atomic writes, contained path resolution and guarded deletion."""

from __future__ import annotations

import contextlib
import os
import shutil
import tempfile
from pathlib import Path

PathLike = str | os.PathLike[str]

__all__ = [
    "append_line",
    "atomic_write",
    "resolve_within",
    "safe_delete",
]


def atomic_write(path: PathLike, data: bytes | str, *, encoding: str = "utf-8") -> None:
    """Atomically replace ``path`` with ``data`` (temp file in the same directory, then rename)."""

    target = Path(path)
    target_parent = target.parent.resolve(strict=True)

    fd, temp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=target_parent)
    temp_path = Path(temp_name)
    try:
        payload = data if isinstance(data, bytes) else data.encode(encoding)
        with os.fdopen(fd, "wb") as file_handle:
            file_handle.write(payload)
            file_handle.flush()
            os.fsync(file_handle.fileno())
        os.replace(temp_path, target)
    except Exception:
        with contextlib.suppress(OSError):
            temp_path.unlink(missing_ok=True)
        raise


def append_line(path: PathLike, line: str, *, encoding: str = "utf-8") -> None:
    """Append one newline-terminated record, creating parent directories as needed."""

    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    with target.open("a", encoding=encoding) as handle:
        handle.write(line.rstrip("\n") + "\n")
        handle.flush()
        os.fsync(handle.fileno())


def resolve_within(root: PathLike, relative: str) -> Path:
    """Resolve ``relative`` under ``root``; refuse anything that escapes it."""

    base = Path(root).resolve(strict=True)
    candidate = (base / relative).resolve(strict=False)
    if not candidate.is_relative_to(base):
        raise ValueError(f"path escapes workspace root: {relative!r}")
    return candidate


def safe_delete(path: PathLike, workspace_root: PathLike) -> None:
    """Delete ``path`` only if it is contained within ``workspace_root``.

    Symlinks are unlinked without traversing into their targets.
    """

    workspace = Path(workspace_root).resolve(strict=True)
    if not workspace.is_dir():
        raise NotADirectoryError(f"{workspace!s} is not a directory")

    target = Path(path)
    candidate = target.parent.resolve(strict=True) / target.name
    if not candidate.is_relative_to(workspace) or candidate == workspace:
        raise ValueError(f"refusing to delete path outside workspace root: {target!s}")

    if target.is_symlink():
        target.unlink()
        return

    resolved_target = target.resolve(strict=True)
    if not resolved_target.is_relative_to(workspace):
        raise ValueError(f"refusing to delete path outside workspace root: {target!s}")

    if target.is_dir():
        shutil.rmtree(target)
        return
    target.unlink()
