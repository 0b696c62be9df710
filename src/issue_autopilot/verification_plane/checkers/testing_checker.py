"""
Testing checker — are changes accompanied by structured tests?

Functional requirements
- A change set with source files but no test file yields one finding.
- Each test file must declare at least one test (describe/it/test blocks,
  ``def test_`` functions or ``Test*`` classes).
"""

from __future__ import annotations

import re
from typing import Final

from issue_autopilot.config.settings import ReviewSettings
from issue_autopilot.domain.models import FindingCategory, ReviewFinding, Severity
from issue_autopilot.verification_plane.checkers.base import (
    ReviewContext,
    finding,
    register_builtin_checker,
)

CHECKER_ID: Final[str] = "testing"

_TEST_DECLARATION: Final[re.Pattern[str]] = re.compile(
    r"\b(?:describe|it|test)\s*\(|^\s*(?:async\s+)?def\s+test_\w*|^\s*class\s+Test\w*",
    re.MULTILINE,
)


@register_builtin_checker(CHECKER_ID, order=40)
class TestingChecker:
    __test__ = False
    checker_id = CHECKER_ID

    def enabled(self, settings: ReviewSettings) -> bool:
        return True

    def check(self, context: ReviewContext) -> tuple[ReviewFinding, ...]:
        findings: list[ReviewFinding] = []
        test_files = [item for item in context.files if item.is_test]

        if context.source_files and not test_files:
            findings.append(
                finding(
                    CHECKER_ID,
                    "missing_tests",
                    Severity.MEDIUM,
                    FindingCategory.TESTING,
                    "No test files found in changes",
                    suggestion="Consider adding unit tests for the new functionality",
                )
            )

        for review_file in test_files:
            if not review_file.is_source:
                continue
            if _TEST_DECLARATION.search(review_file.text) is None:
                findings.append(
                    finding(
                        CHECKER_ID,
                        "unstructured_test",
                        Severity.MEDIUM,
                        FindingCategory.TESTING,
                        "Test file lacks proper test structure",
                        path=review_file.path,
                        suggestion="Declare explicit test cases (describe/it blocks or test_ functions)",
                    )
                )
        return tuple(findings)


__all__ = ["CHECKER_ID", "TestingChecker"]
