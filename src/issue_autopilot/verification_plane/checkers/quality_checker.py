"""Maintainability heuristics: debug output, markers, long lines, magic numbers, complexity."""

from __future__ import annotations

import re
from typing import Final

from issue_autopilot.config.settings import ReviewSettings
from issue_autopilot.domain.models import FindingCategory, ReviewFinding, Severity
from issue_autopilot.verification_plane.checkers.base import (
    ReviewContext,
    ReviewFile,
    finding,
    register_builtin_checker,
)

CHECKER_ID: Final[str] = "quality"

_DEBUG_OUTPUT: Final[re.Pattern[str]] = re.compile(r"console\.log\(|^\s*print\(")
_MARKER: Final[re.Pattern[str]] = re.compile(r"\b(?:TODO|FIXME)\b")
_MAGIC_NUMBER: Final[re.Pattern[str]] = re.compile(r"\b\d{2,}\b")
_FUNCTIONS: Final[re.Pattern[str]] = re.compile(r"\bfunction\s+|\bdef\s+")
_BRANCHES: Final[re.Pattern[str]] = re.compile(r"\b(?:if|elif)\b")
_LOOPS: Final[re.Pattern[str]] = re.compile(r"\b(?:for|while)\b")

FUNCTION_WEIGHT: Final[float] = 1.0
BRANCH_WEIGHT: Final[float] = 0.5
LOOP_WEIGHT: Final[float] = 0.3


def complexity_proxy(text: str) -> float:
    return round(
        len(_FUNCTIONS.findall(text)) * FUNCTION_WEIGHT
        + len(_BRANCHES.findall(text)) * BRANCH_WEIGHT
        + len(_LOOPS.findall(text)) * LOOP_WEIGHT,
        4,
    )


@register_builtin_checker(CHECKER_ID, order=30)
class QualityChecker:
    checker_id = CHECKER_ID

    def enabled(self, settings: ReviewSettings) -> bool:
        return True

    def check(self, context: ReviewContext) -> tuple[ReviewFinding, ...]:
        findings: list[ReviewFinding] = []
        for review_file in context.source_files:
            findings.extend(self._check_file(review_file, context.settings))
        return tuple(findings)

    def _check_file(self, review_file: ReviewFile, settings: ReviewSettings) -> list[ReviewFinding]:
        out: list[ReviewFinding] = []
        path = review_file.path

        line = review_file.first_match(_DEBUG_OUTPUT)
        if line is not None:
            out.append(
                finding(
                    CHECKER_ID,
                    "debug_output",
                    Severity.LOW,
                    FindingCategory.QUALITY,
                    "Avoid debug output statements in production code",
                    path=path,
                    line=line,
                    suggestion="Use a proper logging library instead",
                )
            )

        line = review_file.first_match(_MARKER)
        if line is not None:
            out.append(
                finding(
                    CHECKER_ID,
                    "todo_marker",
                    Severity.MEDIUM,
                    FindingCategory.QUALITY,
                    "TODO comments indicate incomplete implementation",
                    path=path,
                    line=line,
                    suggestion="Complete the implementation or create a proper issue",
                )
            )

        long_lines = [
            number
            for number, text in review_file.numbered_lines()
            if len(text) > settings.max_line_length
        ]
        if long_lines:
            out.append(
                finding(
                    CHECKER_ID,
                    "long_lines",
                    Severity.LOW,
                    FindingCategory.QUALITY,
                    f"{len(long_lines)} lines exceed {settings.max_line_length} characters",
                    path=path,
                    line=long_lines[0],
                    suggestion="Break long lines for better readability",
                )
            )

        if len(_MAGIC_NUMBER.findall(review_file.text)) > settings.magic_number_threshold:
            out.append(
                finding(
                    CHECKER_ID,
                    "magic_numbers",
                    Severity.LOW,
                    FindingCategory.QUALITY,
                    "Multiple magic numbers detected",
                    path=path,
                    line=review_file.first_match(_MAGIC_NUMBER),
                    suggestion="Replace magic numbers with named constants",
                )
            )

        score = complexity_proxy(review_file.text)
        if score > settings.complexity_threshold:
            out.append(
                finding(
                    CHECKER_ID,
                    "complexity",
                    Severity.MEDIUM,
                    FindingCategory.QUALITY,
                    f"High cyclomatic complexity (score: {score:.1f})",
                    path=path,
                    suggestion="Consider breaking down into smaller functions",
                )
            )
        return out


__all__ = ["CHECKER_ID", "QualityChecker", "complexity_proxy"]
