"""
Performance checker — loop anti-patterns and blocking I/O.

Loop bodies are recovered from indentation: every line indented deeper than a
``for``/``while``/``.forEach(`` header belongs to that loop until indentation
returns to the header's level.
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from typing import Final

from issue_autopilot.config.settings import ReviewSettings
from issue_autopilot.domain.models import FindingCategory, ReviewFinding, Severity
from issue_autopilot.verification_plane.checkers.base import (
    ReviewContext,
    ReviewFile,
    finding,
    register_builtin_checker,
)

CHECKER_ID: Final[str] = "performance"

_LOOP_HEADER: Final[re.Pattern[str]] = re.compile(
    r"^\s*(?:for|while)\b|^\s*(?:async\s+for)\b|\.forEach\s*\("
)
_ACCUMULATION: Final[re.Pattern[str]] = re.compile(r"\.(?:push|append)\(")
_REPEATED_LOOKUP: Final[re.Pattern[str]] = re.compile(
    r"document\.(?:querySelector(?:All)?|getElementById|getElementsBy\w+)\(|\.(?:indexOf|index|find)\(|\bin\s+\w+\.keys\(\)"
)
_BLOCKING_IO: Final[re.Pattern[str]] = re.compile(
    r"\b(?:readFileSync|writeFileSync|appendFileSync|execSync|spawnSync)\s*\(|\btime\.sleep\s*\("
)


def loop_body_lines(review_file: ReviewFile) -> Iterator[tuple[int, str]]:
    """Yield ``(line_number, text)`` for lines inside a loop body."""

    header_indents: list[int] = []
    for number, text in review_file.numbered_lines():
        if not text.strip():
            continue
        indent = len(text) - len(text.lstrip())
        while header_indents and indent <= header_indents[-1]:
            header_indents.pop()
        if header_indents:
            yield number, text
        if _LOOP_HEADER.search(text):
            header_indents.append(indent)


@register_builtin_checker(CHECKER_ID, order=50)
class PerformanceChecker:
    checker_id = CHECKER_ID

    def enabled(self, settings: ReviewSettings) -> bool:
        return settings.performance_analysis_enabled

    def check(self, context: ReviewContext) -> tuple[ReviewFinding, ...]:
        findings: list[ReviewFinding] = []
        for review_file in context.source_files:
            findings.extend(self._check_file(review_file))
        return tuple(findings)

    def _check_file(self, review_file: ReviewFile) -> list[ReviewFinding]:
        out: list[ReviewFinding] = []
        accumulation_line: int | None = None
        lookup_line: int | None = None
        # Single-line loops such as ``xs.forEach(x => out.push(x))``.
        for number, text in review_file.numbered_lines():
            if _LOOP_HEADER.search(text) and _ACCUMULATION.search(text):
                accumulation_line = number
                break
        for number, text in loop_body_lines(review_file):
            if (accumulation_line is None or number < accumulation_line) and _ACCUMULATION.search(
                text
            ):
                accumulation_line = number
            if lookup_line is None and _REPEATED_LOOKUP.search(text):
                lookup_line = number

        if accumulation_line is not None:
            out.append(
                finding(
                    CHECKER_ID,
                    "loop_accumulation",
                    Severity.LOW,
                    FindingCategory.PERFORMANCE,
                    "Element-by-element accumulation inside a loop could be optimized",
                    path=review_file.path,
                    line=accumulation_line,
                    suggestion="Consider using map() or a comprehension",
                )
            )
        if lookup_line is not None:
            out.append(
                finding(
                    CHECKER_ID,
                    "loop_lookup",
                    Severity.LOW,
                    FindingCategory.PERFORMANCE,
                    "Repeated lookup inside a loop",
                    path=review_file.path,
                    line=lookup_line,
                    suggestion="Hoist the lookup out of the loop or index the data first",
                )
            )

        line = review_file.first_match(_BLOCKING_IO)
        if line is not None:
            out.append(
                finding(
                    CHECKER_ID,
                    "blocking_io",
                    Severity.MEDIUM,
                    FindingCategory.PERFORMANCE,
                    "Synchronous blocking I/O call",
                    path=review_file.path,
                    line=line,
                    suggestion="Use the asynchronous variant of the call",
                )
            )
        return out


__all__ = ["CHECKER_ID", "PerformanceChecker", "loop_body_lines"]
