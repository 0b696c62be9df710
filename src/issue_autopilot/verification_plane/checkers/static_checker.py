"""
Static checker — syntax and shallow logic heuristics.

Functional requirements
- Flags unbalanced brackets, duplicated punctuation, loosely typed parameters
  and constant branch conditions in source files.
- Flags files that define functions but carry no structured documentation.

Non-functional requirements
- Pure text inspection; no parsing or tool execution.
"""

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

CHECKER_ID: Final[str] = "static"

_BRACKET_PAIRS: Final[tuple[tuple[str, str], ...]] = (("(", ")"), ("[", "]"), ("{", "}"))
_DUPLICATE_PUNCTUATION: Final[re.Pattern[str]] = re.compile(r";;|,,")
_LOOSE_TYPE: Final[re.Pattern[str]] = re.compile(r":\s*(?:any|Any)\b")
_CONSTANT_CONDITION: Final[tuple[re.Pattern[str], ...]] = (
    re.compile(r"\bif\s*\(\s*(?:true|false|0|1)\s*\)"),
    re.compile(r"^\s*(?:el)?if\s+(?:True|False|0|1)\s*:"),
)
_FUNCTION_DEF: Final[re.Pattern[str]] = re.compile(r"\bfunction\s+\w+|^\s*(?:async\s+)?def\s+\w+")
_STRUCTURED_DOC: Final[re.Pattern[str]] = re.compile(r"/\*\*|\"\"\"|'''")


def unbalanced_brackets(text: str) -> tuple[str, ...]:
    """Return the bracket pairs whose open and close counts differ."""

    return tuple(
        f"{opening}{closing}"
        for opening, closing in _BRACKET_PAIRS
        if text.count(opening) != text.count(closing)
    )


@register_builtin_checker(CHECKER_ID, order=10)
class StaticChecker:
    checker_id = CHECKER_ID

    def enabled(self, settings: ReviewSettings) -> bool:
        return True

    def check(self, context: ReviewContext) -> tuple[ReviewFinding, ...]:
        findings: list[ReviewFinding] = []
        for review_file in context.source_files:
            findings.extend(self._check_file(review_file))
        return tuple(findings)

    def _check_file(self, review_file: ReviewFile) -> list[ReviewFinding]:
        out: list[ReviewFinding] = []
        path = review_file.path

        pairs = unbalanced_brackets(review_file.text)
        if pairs:
            out.append(
                finding(
                    CHECKER_ID,
                    "unbalanced_brackets",
                    Severity.HIGH,
                    FindingCategory.SYNTAX,
                    f"Unmatched brackets detected ({' '.join(pairs)})",
                    path=path,
                    suggestion="Check for missing or extra brackets",
                )
            )

        line = review_file.first_match(_DUPLICATE_PUNCTUATION)
        if line is not None:
            out.append(
                finding(
                    CHECKER_ID,
                    "duplicate_punctuation",
                    Severity.LOW,
                    FindingCategory.SYNTAX,
                    "Double semicolons or commas detected",
                    path=path,
                    line=line,
                    suggestion="Remove duplicate punctuation",
                )
            )

        line = review_file.first_match(_LOOSE_TYPE)
        if line is not None:
            out.append(
                finding(
                    CHECKER_ID,
                    "loose_type",
                    Severity.MEDIUM,
                    FindingCategory.LOGIC,
                    'Use of "any" type reduces type safety',
                    path=path,
                    line=line,
                    suggestion="Use specific types instead of any",
                )
            )

        line = _first_of(review_file, _CONSTANT_CONDITION)
        if line is not None:
            out.append(
                finding(
                    CHECKER_ID,
                    "constant_condition",
                    Severity.MEDIUM,
                    FindingCategory.LOGIC,
                    "Constant condition in if statement",
                    path=path,
                    line=line,
                    suggestion="Review the condition logic",
                )
            )

        if not review_file.is_test:
            function_line = _first_of(review_file, (_FUNCTION_DEF,))
            if function_line is not None and _STRUCTURED_DOC.search(review_file.text) is None:
                out.append(
                    finding(
                        CHECKER_ID,
                        "undocumented_module",
                        Severity.LOW,
                        FindingCategory.DOCUMENTATION,
                        "Functions are defined without any structured documentation",
                        path=path,
                        line=function_line,
                        suggestion="Add docstrings or JSDoc comments to public functions",
                    )
                )
        return out


def _first_of(review_file: ReviewFile, patterns: tuple[re.Pattern[str], ...]) -> int | None:
    for number, text in review_file.numbered_lines():
        if any(pattern.search(text) for pattern in patterns):
            return number
    return None


__all__ = ["CHECKER_ID", "StaticChecker", "unbalanced_brackets"]
