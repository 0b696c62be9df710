"""
issue-autopilot — review checker interface and registry

File: src/issue_autopilot/verification_plane/checkers/base.py

Purpose
- Defines the checker interface: input is an immutable `ReviewContext`, output is
  a tuple of `ReviewFinding`s.
- Deterministic registry so analyzers always run (and report) in the same order.

Functional requirements
- Checkers are pure functions of their context; running one twice yields
  identical findings.
- Built-ins self-register through `register_builtin_checker`.
"""

from __future__ import annotations

import inspect
import re
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass
from typing import NoReturn, Protocol, TypeVar, runtime_checkable

from issue_autopilot.config.settings import CustomRule, ReviewSettings
from issue_autopilot.domain.models import (
    ChangeSet,
    FindingCategory,
    ReviewFinding,
    Severity,
    WorkItem,
)
from issue_autopilot.synthesis_plane.codebase import is_test_path

CheckerFactory = Callable[[], "Checker"]

# File extensions reviewed as program source. Docs and data files are skipped by
# code-oriented heuristics.
SOURCE_EXTENSIONS: frozenset[str] = frozenset(
    {".py", ".pyi", ".js", ".jsx", ".mjs", ".cjs", ".ts", ".tsx", ".go", ".rs", ".java", ".rb"}
)


@dataclass(frozen=True, slots=True)
class ReviewFile:
    """Text a change set introduces into one path."""

    path: str
    text: str
    extension: str
    is_test: bool

    @property
    def is_source(self) -> bool:
        return self.extension in SOURCE_EXTENSIONS

    @property
    def lines(self) -> list[str]:
        return self.text.splitlines()

    def numbered_lines(self) -> Iterator[tuple[int, str]]:
        return enumerate(self.text.splitlines(), start=1)

    def first_match(self, pattern: re.Pattern[str]) -> int | None:
        """1-based line of the first match of ``pattern``, or ``None``."""

        for number, line in self.numbered_lines():
            if pattern.search(line):
                return number
        return None


@dataclass(frozen=True, slots=True)
class ReviewContext:
    change_set: ChangeSet
    settings: ReviewSettings
    work_item: WorkItem | None = None
    custom_rules: tuple[CustomRule, ...] = ()
    files: tuple[ReviewFile, ...] = ()

    @classmethod
    def build(
        cls,
        change_set: ChangeSet,
        settings: ReviewSettings,
        *,
        work_item: WorkItem | None = None,
        custom_rules: Sequence[CustomRule] = (),
    ) -> ReviewContext:
        files = tuple(
            ReviewFile(
                path=change.path,
                text=change.written_text,
                extension=change.extension,
                is_test=is_test_path(change.path),
            )
            for change in change_set.changes
            if not change.deletes_file
        )
        return cls(
            change_set=change_set,
            settings=settings,
            work_item=work_item,
            custom_rules=tuple(custom_rules),
            files=files,
        )

    @property
    def source_files(self) -> tuple[ReviewFile, ...]:
        return tuple(item for item in self.files if item.is_source)


@runtime_checkable
class Checker(Protocol):
    """Checker protocol implemented by every analyzer."""

    checker_id: str

    def enabled(self, settings: ReviewSettings) -> bool: ...

    def check(self, context: ReviewContext) -> tuple[ReviewFinding, ...]: ...


@dataclass(frozen=True, slots=True)
class CheckerRegistration:
    checker_id: str
    order: int
    factory: CheckerFactory


class CheckerRegistry:
    """Deterministic checker factory registry, ordered by (order, checker_id)."""

    def __init__(self) -> None:
        self._registrations: dict[str, CheckerRegistration] = {}

    def register(self, checker_id: str, factory: CheckerFactory, *, order: int = 100) -> None:
        normalized_id = _as_checker_id(checker_id)
        if not callable(factory):
            _fail("factory", "must be callable")
        if normalized_id in self._registrations:
            _fail("checker_id", f"checker {normalized_id!r} is already registered")
        self._registrations[normalized_id] = CheckerRegistration(
            checker_id=normalized_id, order=order, factory=factory
        )

    def contains(self, checker_id: str) -> bool:
        return checker_id in self._registrations

    def create(self, checker_id: str) -> Checker:
        registration = self._registrations.get(checker_id)
        if registration is None:
            known = ", ".join(self.registered_ids())
            _fail("checker_id", f"unknown checker {checker_id!r}; registered: [{known}]")
        checker = registration.factory()
        if not isinstance(checker, Checker):
            _fail("factory", f"{checker_id!r} factory did not return a Checker")
        return checker

    def create_all(self) -> tuple[Checker, ...]:
        return tuple(self.create(checker_id) for checker_id in self.registered_ids())

    def registered_ids(self) -> tuple[str, ...]:
        ordered = sorted(self._registrations.values(), key=lambda item: (item.order, item.checker_id))
        return tuple(item.checker_id for item in ordered)


CheckerType = TypeVar("CheckerType", bound=Checker)

DEFAULT_CHECKER_REGISTRY = CheckerRegistry()


def register_builtin_checker(
    checker_id: str,
    *,
    order: int,
    registry: CheckerRegistry | None = None,
) -> Callable[[type[CheckerType]], type[CheckerType]]:
    """Decorator that registers built-in checker classes in deterministic registry order."""

    target = registry if registry is not None else DEFAULT_CHECKER_REGISTRY
    normalized_id = _as_checker_id(checker_id)

    def decorator(checker_cls: type[CheckerType]) -> type[CheckerType]:
        _validate_zero_arg_constructor(checker_cls, checker_id=normalized_id)
        target.register(normalized_id, lambda: checker_cls(), order=order)
        return checker_cls

    return decorator


def finding(
    checker_id: str,
    rule: str,
    severity: Severity,
    category: FindingCategory,
    message: str,
    *,
    path: str | None = None,
    line: int | None = None,
    suggestion: str | None = None,
) -> ReviewFinding:
    return ReviewFinding(
        severity=severity,
        category=category,
        message=message,
        path=path,
        line=line,
        suggestion=suggestion,
        rule=f"{checker_id}.{rule}",
    )


def _validate_zero_arg_constructor(checker_cls: type[object], *, checker_id: str) -> None:
    signature = inspect.signature(checker_cls)
    for parameter in signature.parameters.values():
        if (
            parameter.kind
            in {
                inspect.Parameter.POSITIONAL_ONLY,
                inspect.Parameter.POSITIONAL_OR_KEYWORD,
                inspect.Parameter.KEYWORD_ONLY,
            }
            and parameter.default is inspect.Signature.empty
        ):
            _fail(
                "checker_cls",
                f"{checker_id!r} checker decorator requires a zero-arg constructor; "
                f"parameter '{parameter.name}' is required",
            )


def _as_checker_id(value: object) -> str:
    if not isinstance(value, str) or not value.strip():
        _fail("checker_id", "must be a non-empty string")
    return value.strip()


def _fail(path: str, message: str) -> NoReturn:
    raise ValueError(f"{path}: {message}")


__all__ = [
    "DEFAULT_CHECKER_REGISTRY",
    "SOURCE_EXTENSIONS",
    "Checker",
    "CheckerFactory",
    "CheckerRegistration",
    "CheckerRegistry",
    "ReviewContext",
    "ReviewFile",
    "finding",
    "register_builtin_checker",
]
