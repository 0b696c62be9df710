"""
Security checker — vulnerability patterns in introduced code.

Functional requirements
- One finding per (pattern, file), located at the first matching line.
- Disabled entirely when `security_scan_enabled` is false.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Final

from issue_autopilot.config.settings import ReviewSettings
from issue_autopilot.domain.models import FindingCategory, ReviewFinding, Severity
from issue_autopilot.verification_plane.checkers.base import (
    ReviewContext,
    finding,
    register_builtin_checker,
)

CHECKER_ID: Final[str] = "security"


@dataclass(frozen=True, slots=True)
class SecurityPattern:
    code: str
    regex: re.Pattern[str]
    severity: Severity
    message: str
    suggestion: str


SECURITY_PATTERNS: Final[tuple[SecurityPattern, ...]] = (
    SecurityPattern(
        code="sql_injection",
        regex=re.compile(
            r"\b(?:query|execute|executemany|raw)\s*\([^)\n]*(?:[\"']\s*\+|\+\s*[\"']|%\s*\(|\.format\(|\bf[\"'])"
        ),
        severity=Severity.CRITICAL,
        message="Potential SQL injection vulnerability",
        suggestion="Use parameterized queries instead of string concatenation",
    ),
    SecurityPattern(
        code="markup_injection",
        regex=re.compile(r"\.(?:innerHTML|outerHTML)\s*=(?!=)|dangerouslySetInnerHTML|document\.write\("),
        severity=Severity.HIGH,
        message="Direct assignment to innerHTML can lead to XSS vulnerabilities",
        suggestion="Use textContent or createElement with proper sanitization",
    ),
    SecurityPattern(
        code="dynamic_execution",
        regex=re.compile(r"(?<![\w.])(?:eval|exec)\s*\(|\bnew\s+Function\s*\("),
        severity=Severity.CRITICAL,
        message="Use of eval() is dangerous and should be avoided",
        suggestion="Use safer alternatives like JSON.parse() or explicit dispatch",
    ),
    SecurityPattern(
        code="credential_storage",
        regex=re.compile(
            r"document\.cookie|localStorage\.setItem\(\s*[\"'][^\"']*(?:token|password|secret)",
            re.IGNORECASE,
        ),
        severity=Severity.HIGH,
        message="Direct cookie manipulation detected",
        suggestion="Use secure cookie libraries",
    ),
)


@register_builtin_checker(CHECKER_ID, order=20)
class SecurityChecker:
    checker_id = CHECKER_ID

    def enabled(self, settings: ReviewSettings) -> bool:
        return settings.security_scan_enabled

    def check(self, context: ReviewContext) -> tuple[ReviewFinding, ...]:
        findings: list[ReviewFinding] = []
        for review_file in context.files:
            for pattern in SECURITY_PATTERNS:
                line = review_file.first_match(pattern.regex)
                if line is None:
                    continue
                findings.append(
                    finding(
                        CHECKER_ID,
                        pattern.code,
                        pattern.severity,
                        FindingCategory.SECURITY,
                        pattern.message,
                        path=review_file.path,
                        line=line,
                        suggestion=pattern.suggestion,
                    )
                )
        return tuple(findings)


__all__ = ["CHECKER_ID", "SECURITY_PATTERNS", "SecurityChecker", "SecurityPattern"]
