"""Codebase survey used to ground generated changes in the repository's conventions."""

from __future__ import annotations

import json
import os
import tomllib
from collections import Counter
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Final

from issue_autopilot.domain.models import CanonicalModel, ChangeSet

_SKIP_DIRS: Final[frozenset[str]] = frozenset(
    {
        ".git",
        ".hg",
        ".venv",
        "venv",
        "node_modules",
        "__pycache__",
        ".mypy_cache",
        ".pytest_cache",
        ".ruff_cache",
        "dist",
        "build",
        ".autopilot",
    }
)
_MAX_FILES: Final[int] = 5000
_MAX_LISTED: Final[int] = 50

_LANGUAGE_BY_EXTENSION: Final[dict[str, str]] = {
    ".py": "python",
    ".pyi": "python",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".go": "go",
    ".rs": "rust",
    ".java": "java",
    ".rb": "ruby",
    ".css": "css",
    ".html": "html",
}

# Non-code files may appear in any repository regardless of its languages.
_NEUTRAL_EXTENSIONS: Final[frozenset[str]] = frozenset(
    {".md", ".txt", ".json", ".toml", ".yaml", ".yml", ".cfg", ".ini", ".rst", ""}
)

_MANIFESTS: Final[tuple[str, ...]] = (
    "pyproject.toml",
    "setup.cfg",
    "requirements.txt",
    "package.json",
    "go.mod",
    "Cargo.toml",
)

_ENTRY_POINT_CANDIDATES: Final[tuple[str, ...]] = (
    "main.py",
    "__main__.py",
    "app.py",
    "index.js",
    "index.ts",
    "main.ts",
    "main.js",
    "src/index.js",
    "src/index.ts",
    "src/main.ts",
    "src/main.py",
    "main.go",
    "src/main.rs",
)

_TEST_DIR_NAMES: Final[frozenset[str]] = frozenset({"tests", "test", "__tests__", "spec"})


def is_test_path(path: str) -> bool:
    """Return True for paths that follow a common test-file naming convention."""

    posix = PurePosixPath(path)
    name = posix.name
    if ".test." in name or ".spec." in name:
        return True
    if name.startswith("test_") or posix.stem.endswith("_test"):
        return True
    return any(part in _TEST_DIR_NAMES for part in posix.parts[:-1])


@dataclass(frozen=True, slots=True)
class CodebaseSummary(CanonicalModel):
    root: str
    languages: tuple[str, ...] = ()
    source_extensions: tuple[str, ...] = ()
    entry_points: tuple[str, ...] = ()
    test_dirs: tuple[str, ...] = ()
    test_files: tuple[str, ...] = ()
    manifests: tuple[str, ...] = ()
    dependencies: tuple[str, ...] = ()
    file_count: int = 0
    degraded: bool = False
    notes: tuple[str, ...] = ()

    @classmethod
    def minimal(cls, root: str | Path, reason: str) -> CodebaseSummary:
        return cls(root=str(root), degraded=True, notes=(reason,))

    def pattern_violations(self, change_set: ChangeSet) -> tuple[str, ...]:
        """Describe changed paths that do not fit the surveyed layout.

        A degraded or empty survey carries no conventions, so nothing is flagged.
        """

        if self.degraded or self.file_count == 0:
            return ()

        violations: list[str] = []
        known = set(self.source_extensions)
        for change in change_set.changes:
            if change.deletes_file:
                continue
            extension = change.extension
            if known and extension not in known and extension not in _NEUTRAL_EXTENSIONS:
                violations.append(
                    f"{change.path}: extension {extension} not used in this codebase"
                )
            if is_test_path(change.path) and self.test_dirs:
                if not any(
                    change.path == test_dir or change.path.startswith(f"{test_dir}/")
                    for test_dir in self.test_dirs
                ):
                    violations.append(
                        f"{change.path}: tests live under {', '.join(self.test_dirs)}"
                    )
        return tuple(violations)


def survey_codebase(root: str | Path) -> CodebaseSummary:
    """Walk ``root`` and summarize languages, entry points, tests and manifests.

    Never raises: an unreadable tree degrades to ``CodebaseSummary.minimal``.
    """

    base = Path(root)
    try:
        return _survey(base)
    except (OSError, ValueError, UnicodeDecodeError, tomllib.TOMLDecodeError) as exc:
        return CodebaseSummary.minimal(base, f"codebase survey failed: {exc}")


def _survey(base: Path) -> CodebaseSummary:
    if not base.is_dir():
        raise NotADirectoryError(f"{base} is not a directory")

    files = _list_files(base)
    extension_counts = Counter(PurePosixPath(path).suffix.lower() for path in files)
    source_extensions = sorted(ext for ext in extension_counts if ext in _LANGUAGE_BY_EXTENSION)
    languages = sorted({_LANGUAGE_BY_EXTENSION[ext] for ext in source_extensions})

    file_set = set(files)
    entry_points = [candidate for candidate in _ENTRY_POINT_CANDIDATES if candidate in file_set]
    test_files = sorted(path for path in files if is_test_path(path))
    test_dirs = sorted(
        {
            "/".join(parts[: index + 1])
            for parts in (PurePosixPath(path).parts for path in test_files)
            for index, part in enumerate(parts[:-1])
            if part in _TEST_DIR_NAMES
            and not any(p in _TEST_DIR_NAMES for p in parts[:index])
        }
    )
    manifests = [name for name in _MANIFESTS if name in file_set]

    return CodebaseSummary(
        root=str(base),
        languages=tuple(languages),
        source_extensions=tuple(source_extensions),
        entry_points=tuple(entry_points),
        test_dirs=tuple(test_dirs),
        test_files=tuple(test_files[:_MAX_LISTED]),
        manifests=tuple(manifests),
        dependencies=_dependencies(base, manifests),
        file_count=len(files),
    )


def _list_files(base: Path) -> list[str]:
    found: list[str] = []
    for dirpath, dirnames, filenames in os.walk(base):
        dirnames[:] = sorted(name for name in dirnames if name not in _SKIP_DIRS)
        relative_dir = Path(dirpath).relative_to(base)
        for filename in sorted(filenames):
            found.append((relative_dir / filename).as_posix())
            if len(found) >= _MAX_FILES:
                return found
    return found


def _dependencies(base: Path, manifests: list[str]) -> tuple[str, ...]:
    names: set[str] = set()
    if "package.json" in manifests:
        payload = json.loads((base / "package.json").read_text(encoding="utf-8"))
        if isinstance(payload, dict):
            for section in ("dependencies", "devDependencies"):
                deps = payload.get(section)
                if isinstance(deps, dict):
                    names.update(str(name) for name in deps)
    if "pyproject.toml" in manifests:
        with (base / "pyproject.toml").open("rb") as handle:
            project = tomllib.load(handle).get("project", {})
        for requirement in project.get("dependencies", []) if isinstance(project, dict) else []:
            names.add(_requirement_name(str(requirement)))
    if "requirements.txt" in manifests:
        for line in (base / "requirements.txt").read_text(encoding="utf-8").splitlines():
            stripped = line.split("#", 1)[0].strip()
            if stripped and not stripped.startswith("-"):
                names.add(_requirement_name(stripped))
    return tuple(sorted(name for name in names if name))


def _requirement_name(requirement: str) -> str:
    for separator in ("[", "<", ">", "=", "!", "~", ";", " "):
        requirement = requirement.split(separator, 1)[0]
    return requirement.strip()


__all__ = ["CodebaseSummary", "is_test_path", "survey_codebase"]
