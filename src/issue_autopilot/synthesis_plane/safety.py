"""Hard safety gates applied to every candidate change set before tests run."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Final

from issue_autopilot.config.settings import SafetySettings
from issue_autopilot.domain.models import ChangeSet

RULE_FILE_COUNT: Final[str] = "max_files_modified"
RULE_LINE_COUNT: Final[str] = "max_lines_changed"
RULE_EXTENSION: Final[str] = "allowed_extensions"
RULE_DANGEROUS: Final[str] = "dangerous_patterns"


@dataclass(frozen=True, slots=True)
class SafetyViolation:
    rule: str
    message: str
    path: str | None = None


class SafetyGate:
    """Evaluates change sets against size, extension and content limits.

    The gate is a pure function of its settings; compiled patterns are cached
    at construction so one instance can serve many runs.
    """

    def __init__(self, settings: SafetySettings | None = None) -> None:
        self._settings = settings if settings is not None else SafetySettings()
        self._allowed = frozenset(ext.lower() for ext in self._settings.allowed_extensions)
        self._patterns = tuple(
            re.compile(pattern, re.IGNORECASE) for pattern in self._settings.dangerous_patterns
        )

    @property
    def settings(self) -> SafetySettings:
        return self._settings

    def check(self, change_set: ChangeSet) -> tuple[SafetyViolation, ...]:
        violations: list[SafetyViolation] = []

        file_count = change_set.file_count
        if file_count > self._settings.max_files_modified:
            violations.append(
                SafetyViolation(
                    RULE_FILE_COUNT,
                    f"Too many files modified: {file_count} > {self._settings.max_files_modified}",
                )
            )

        line_count = change_set.changed_line_count
        if line_count > self._settings.max_lines_changed:
            violations.append(
                SafetyViolation(
                    RULE_LINE_COUNT,
                    f"Too many lines changed: {line_count} > {self._settings.max_lines_changed}",
                )
            )

        for change in change_set.changes:
            if change.extension not in self._allowed:
                violations.append(
                    SafetyViolation(
                        RULE_EXTENSION,
                        f"Unsupported file extension: {change.extension or '<none>'}",
                        change.path,
                    )
                )
            text = change.written_text
            if any(pattern.search(text) for pattern in self._patterns):
                violations.append(
                    SafetyViolation(
                        RULE_DANGEROUS,
                        f"Dangerous code pattern detected in {change.path}",
                        change.path,
                    )
                )
        return tuple(violations)


def describe_violations(violations: tuple[SafetyViolation, ...]) -> str:
    return "Safety check failed: " + "; ".join(violation.message for violation in violations)


__all__ = [
    "RULE_DANGEROUS",
    "RULE_EXTENSION",
    "RULE_FILE_COUNT",
    "RULE_LINE_COUNT",
    "SafetyGate",
    "SafetyViolation",
    "describe_violations",
]
