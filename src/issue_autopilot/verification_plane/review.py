"""
issue-autopilot — review engine

File: src/issue_autopilot/verification_plane/review.py

Purpose
- Run every enabled checker over a change set and aggregate the findings into
  a `ReviewOutcome`: approval, weighted score, per-category sub-scores,
  recommendations and a one-line reasoning string.

Normative behavior
- Severity weights: critical 1.0, high 0.7, medium 0.4, low 0.1.
- Sub-scores start at 1.0 and lose the summed weight of their findings,
  floored at 0.
- Aggregate is the weighted sum of sub-scores; any critical finding forces
  score 0 and rejection.
- Approval needs score >= `min_approval_score`; strict mode also rejects any
  high finding.
- Findings are ordered by (analyzer order, path, line, rule).
- A checker exception never escapes: the outcome is a rejection carrying a
  single critical finding that describes the failure.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, Final

import structlog

from issue_autopilot.config.settings import CustomRule, ReviewSettings
from issue_autopilot.domain.models import (
    ChangeSet,
    FindingCategory,
    ReviewFinding,
    ReviewOutcome,
    Severity,
    WorkItem,
)
from issue_autopilot.verification_plane.checkers import (
    DEFAULT_CHECKER_REGISTRY,
    CheckerRegistry,
    ReviewContext,
    load_custom_rules,
    merge_rules,
)

STATIC_ANALYSIS: Final[str] = "static_analysis"
SECURITY: Final[str] = "security"
QUALITY: Final[str] = "quality"
TESTING: Final[str] = "testing"
PERFORMANCE: Final[str] = "performance"
DOCUMENTATION: Final[str] = "documentation"

SUB_SCORE_WEIGHTS: Final[Mapping[str, float]] = {
    SECURITY: 0.25,
    STATIC_ANALYSIS: 0.20,
    QUALITY: 0.20,
    TESTING: 0.15,
    PERFORMANCE: 0.10,
    DOCUMENTATION: 0.10,
}

_CATEGORY_SUB_SCORE: Final[Mapping[FindingCategory, str]] = {
    FindingCategory.SYNTAX: STATIC_ANALYSIS,
    FindingCategory.LOGIC: STATIC_ANALYSIS,
    FindingCategory.SECURITY: SECURITY,
    FindingCategory.QUALITY: QUALITY,
    FindingCategory.TESTING: TESTING,
    FindingCategory.PERFORMANCE: PERFORMANCE,
    FindingCategory.DOCUMENTATION: DOCUMENTATION,
}

RECOMMENDATION_SCORE_THRESHOLD: Final[float] = 0.7


def sub_scores(findings: Sequence[ReviewFinding]) -> dict[str, float]:
    penalties = dict.fromkeys(SUB_SCORE_WEIGHTS, 0.0)
    for item in findings:
        penalties[_CATEGORY_SUB_SCORE[item.category]] += item.severity.weight
    return {key: round(max(0.0, 1.0 - penalty), 4) for key, penalty in penalties.items()}


def aggregate_score(scores: Mapping[str, float], findings: Sequence[ReviewFinding]) -> float:
    if any(item.severity is Severity.CRITICAL for item in findings):
        return 0.0
    total = sum(SUB_SCORE_WEIGHTS[key] * scores[key] for key in SUB_SCORE_WEIGHTS)
    return round(min(1.0, max(0.0, total)), 4)


def recommendations_for(findings: Sequence[ReviewFinding], score: float) -> tuple[str, ...]:
    categories = {item.category for item in findings}
    out: list[str] = []
    if score < RECOMMENDATION_SCORE_THRESHOLD:
        out.append("Address high-severity issues before approval")
    if FindingCategory.SECURITY in categories:
        out.append("Security issues must be resolved before deployment")
    if FindingCategory.TESTING in categories:
        out.append("Add comprehensive tests to ensure code reliability")
    if FindingCategory.DOCUMENTATION in categories:
        out.append("Improve documentation for better maintainability")
    return tuple(out)


def review_reasoning(approved: bool, score: float, findings: Sequence[ReviewFinding]) -> str:
    critical = sum(1 for item in findings if item.severity is Severity.CRITICAL)
    high = sum(1 for item in findings if item.severity is Severity.HIGH)
    return ". ".join(
        (
            f"Review {'approved' if approved else 'rejected'} with score {score * 100:.1f}%",
            f"{len(findings)} issues found",
            f"{critical} critical issues",
            f"{high} high-severity issues",
        )
    )


def failed_review(exc: BaseException) -> ReviewOutcome:
    """Rejected outcome used when analysis itself fails."""

    return ReviewOutcome(
        approved=False,
        score=0.0,
        findings=(
            ReviewFinding(
                severity=Severity.CRITICAL,
                category=FindingCategory.SYNTAX,
                message=f"Review failed: {exc}",
                suggestion="Manual review required",
                rule="review.failure",
            ),
        ),
        recommendations=("Manual code review required due to analysis failure",),
        sub_scores=dict.fromkeys(SUB_SCORE_WEIGHTS, 0.0),
        reasoning="Code review analysis failed",
    )


class ReviewEngine:
    """Synchronous, side-effect free review of a change set."""

    def __init__(
        self,
        settings: ReviewSettings | None = None,
        *,
        registry: CheckerRegistry | None = None,
        extra_rules: Sequence[CustomRule] = (),
        logger: Any | None = None,
    ) -> None:
        self._settings = settings if settings is not None else ReviewSettings()
        self._registry = registry if registry is not None else DEFAULT_CHECKER_REGISTRY
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        file_rules: tuple[CustomRule, ...] = ()
        if self._settings.custom_rules_file is not None:
            file_rules = load_custom_rules(self._settings.custom_rules_file)
        self._rules = merge_rules(self._settings.custom_rules, file_rules, extra_rules)

    @property
    def settings(self) -> ReviewSettings:
        return self._settings

    @property
    def custom_rules(self) -> tuple[CustomRule, ...]:
        return self._rules

    def review(self, change_set: ChangeSet, item: WorkItem | None = None) -> ReviewOutcome:
        try:
            outcome = self._review(change_set, item)
        except Exception as exc:  # noqa: BLE001
            self._logger.error(
                "verification_plane_review_failed",
                work_item_id=item.id if item is not None else None,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return failed_review(exc)
        self._logger.info(
            "verification_plane_review_complete",
            work_item_id=item.id if item is not None else None,
            approved=outcome.approved,
            score=outcome.score,
            findings=len(outcome.findings),
        )
        return outcome

    def _review(self, change_set: ChangeSet, item: WorkItem | None) -> ReviewOutcome:
        context = ReviewContext.build(
            change_set, self._settings, work_item=item, custom_rules=self._rules
        )
        ranked: list[tuple[int, ReviewFinding]] = []
        for order, checker in enumerate(self._registry.create_all()):
            if not checker.enabled(self._settings):
                continue
            ranked.extend((order, found) for found in checker.check(context))
        ranked.sort(
            key=lambda entry: (
                entry[0],
                entry[1].path or "",
                entry[1].line or 0,
                entry[1].rule,
                entry[1].message,
            )
        )
        findings = tuple(found for _, found in ranked)

        scores = sub_scores(findings)
        score = aggregate_score(scores, findings)
        approved = self._approve(score, findings)
        return ReviewOutcome(
            approved=approved,
            score=score,
            findings=findings,
            recommendations=recommendations_for(findings, score),
            sub_scores=scores,
            reasoning=review_reasoning(approved, score, findings),
        )

    def _approve(self, score: float, findings: Sequence[ReviewFinding]) -> bool:
        for item in findings:
            if item.severity is Severity.CRITICAL:
                return False
            if self._settings.strict_mode and item.severity is Severity.HIGH:
                return False
        return score >= self._settings.min_approval_score


__all__ = [
    "SUB_SCORE_WEIGHTS",
    "ReviewEngine",
    "aggregate_score",
    "failed_review",
    "recommendations_for",
    "review_reasoning",
    "sub_scores",
]
