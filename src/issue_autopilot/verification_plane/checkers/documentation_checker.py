"""
Documentation checker — exported functions must carry a doc comment.

File: src/issue_autopilot/verification_plane/checkers/documentation_checker.py

Purpose
- Finds public/exported functions in introduced source and reports each one
  that lacks a JSDoc block or a docstring.

Functional requirements
- Runs only when `documentation_required` is set.
- Test files are exempt.
- JavaScript/TypeScript: ``export function name`` must be directly preceded
  by a line closing a ``/** ... */`` block.
- Python: a top-level ``def name`` not starting with ``_`` must open its body
  with a string literal.
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

CHECKER_ID: Final[str] = "documentation"

_SCRIPT_EXTENSIONS: Final[frozenset[str]] = frozenset(
    {".js", ".jsx", ".mjs", ".cjs", ".ts", ".tsx"}
)
_EXPORTED_FUNCTION: Final[re.Pattern[str]] = re.compile(
    r"^\s*export\s+(?:default\s+)?(?:async\s+)?function\s*\*?\s*(\w+)"
)
_PUBLIC_DEF: Final[re.Pattern[str]] = re.compile(r"^(?:async\s+)?def\s+([A-Za-z]\w*)\s*\(")
_DOCSTRING_OPEN: Final[re.Pattern[str]] = re.compile(r"^\s*[rRbBuU]?(?:\"\"\"|''')")


def undocumented_functions(review_file: ReviewFile) -> list[tuple[int, str]]:
    """Return ``(line, name)`` for each exported function without a doc comment."""

    lines = review_file.lines
    if review_file.extension in _SCRIPT_EXTENSIONS:
        return _undocumented_script_functions(lines)
    if review_file.extension in {".py", ".pyi"}:
        return _undocumented_python_functions(lines)
    return []


def _undocumented_script_functions(lines: list[str]) -> list[tuple[int, str]]:
    out: list[tuple[int, str]] = []
    for index, text in enumerate(lines):
        match = _EXPORTED_FUNCTION.match(text)
        if match is None:
            continue
        previous = _previous_non_blank(lines, index)
        if previous is None or not previous.rstrip().endswith("*/"):
            out.append((index + 1, match.group(1)))
    return out


def _undocumented_python_functions(lines: list[str]) -> list[tuple[int, str]]:
    out: list[tuple[int, str]] = []
    for index, text in enumerate(lines):
        match = _PUBLIC_DEF.match(text)
        if match is None:
            continue
        body_index = _signature_end(lines, index) + 1
        first_body = _next_non_blank(lines, body_index)
        if first_body is None or _DOCSTRING_OPEN.match(first_body) is None:
            out.append((index + 1, match.group(1)))
    return out


def _signature_end(lines: list[str], start: int) -> int:
    for index in range(start, len(lines)):
        if lines[index].rstrip().endswith(":"):
            return index
    return start


def _previous_non_blank(lines: list[str], index: int) -> str | None:
    for candidate in reversed(lines[:index]):
        if candidate.strip():
            return candidate
    return None


def _next_non_blank(lines: list[str], index: int) -> str | None:
    for candidate in lines[index:]:
        if candidate.strip():
            return candidate
    return None


@register_builtin_checker(CHECKER_ID, order=60)
class DocumentationChecker:
    checker_id = CHECKER_ID

    def enabled(self, settings: ReviewSettings) -> bool:
        return settings.documentation_required

    def check(self, context: ReviewContext) -> tuple[ReviewFinding, ...]:
        findings: list[ReviewFinding] = []
        for review_file in context.source_files:
            if review_file.is_test:
                continue
            for line, name in undocumented_functions(review_file):
                findings.append(
                    finding(
                        CHECKER_ID,
                        "missing_doc_comment",
                        Severity.LOW,
                        FindingCategory.DOCUMENTATION,
                        f"Function '{name}' lacks a doc comment",
                        path=review_file.path,
                        line=line,
                        suggestion="Add a docstring or JSDoc comment describing the function",
                    )
                )
        return tuple(findings)


__all__ = ["CHECKER_ID", "DocumentationChecker", "undocumented_functions"]
