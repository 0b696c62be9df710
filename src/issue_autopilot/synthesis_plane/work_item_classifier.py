"""Feasibility classifier for incoming work items.

File: src/issue_autopilot/synthesis_plane/work_item_classifier.py

Purpose
- Turn a raw WorkItem into an Analysis: category, complexity tier, requirements,
  acceptance criteria, feasibility and confidence.
- Complexity scoring is a pure function of item content and labels; category and
  requirements prefer the oracle and fall back to deterministic heuristics.

Failure semantics
- `classify` never raises. Any internal error or an exceeded analysis budget
  yields a degraded Analysis that routes the item to human review.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any, Final

import structlog

from issue_autopilot.config.settings import ClassifierSettings
from issue_autopilot.domain.models import Analysis, Category, ComplexityTier
from issue_autopilot.synthesis_plane.oracle import (
    OracleContext,
    OracleOk,
    RequirementSet,
    call_oracle,
    describe_failure,
)
from issue_autopilot.utils.concurrency import run_with_timeout

if TYPE_CHECKING:
    from issue_autopilot.domain.models import WorkItem
    from issue_autopilot.synthesis_plane.oracle import Oracle

# --- Complexity signal weights ---
_LONG_CONTENT_CHARS = 2000
_MEDIUM_CONTENT_CHARS = 500
_WEIGHT_LONG_CONTENT = 4
_WEIGHT_MEDIUM_CONTENT = 1
_WEIGHT_COMPLEXITY_LABEL = 2
_MAX_CODE_BLOCK_POINTS = 2
_MAX_PATH_REF_POINTS = 1

# --- Confidence adjustments ---
_BASE_CONFIDENCE = 0.5
_KNOWN_CATEGORY_BONUS = 0.2
_HIGH_COMPLEXITY_PENALTY = 0.2
_REQUIREMENTS_BONUS = 0.2
_DEGRADED_CONFIDENCE = 0.1

_COMPLEXITY_LABEL_TERMS: Final[tuple[str, ...]] = ("complex", "major", "breaking")

_CODE_FENCE_RE: Final[re.Pattern[str]] = re.compile(r"```")
_PATH_REF_RE: Final[re.Pattern[str]] = re.compile(r"(?:^|\s)(?:src|lib|test|docs)/\S+")

# First matching rule wins, so defect keywords outrank everything else.
_LABEL_CATEGORY_RULES: Final[tuple[tuple[tuple[str, ...], Category], ...]] = (
    (("bug", "fix", "error"), Category.DEFECT),
    (("feature",), Category.FEATURE),
    (("docs", "documentation"), Category.DOCUMENTATION),
    (("enhancement", "improvement"), Category.ENHANCEMENT),
    (("question", "help"), Category.QUESTION),
    (("chore", "maintenance", "refactor"), Category.MAINTENANCE),
)

_HEADER_RE: Final[re.Pattern[str]] = re.compile(r"^#{2,6}\s+(?P<title>.+)$")
_LIST_ITEM_RE: Final[re.Pattern[str]] = re.compile(r"^(?:[-*]\s+|\d+[.)]\s+)(?P<item>.+)$")
_ACCEPTANCE_PREFIX_RE: Final[re.Pattern[str]] = re.compile(r"^acceptance:\s*", re.IGNORECASE)
_CHECKBOX_RE: Final[re.Pattern[str]] = re.compile(r"^\[[ xX]\]\s*")


def complexity_score(item: WorkItem) -> int:
    """Score item complexity from content length, labels, code fences and path references."""
    content = item.content
    score = 0

    if len(content) > _LONG_CONTENT_CHARS:
        score += _WEIGHT_LONG_CONTENT
    elif len(content) > _MEDIUM_CONTENT_CHARS:
        score += _WEIGHT_MEDIUM_CONTENT

    if any(term in label for label in item.labels for term in _COMPLEXITY_LABEL_TERMS):
        score += _WEIGHT_COMPLEXITY_LABEL

    score += min(len(_CODE_FENCE_RE.findall(content)), _MAX_CODE_BLOCK_POINTS)
    score += min(len(_PATH_REF_RE.findall(content)), _MAX_PATH_REF_POINTS)
    return score


def complexity_tier(score: int, settings: ClassifierSettings) -> ComplexityTier:
    if score >= settings.critical_threshold:
        return ComplexityTier.CRITICAL
    if score >= settings.high_threshold:
        return ComplexityTier.HIGH
    if score >= settings.medium_threshold:
        return ComplexityTier.MEDIUM
    return ComplexityTier.LOW


def category_from_labels(labels: frozenset[str]) -> Category:
    for label in sorted(labels):
        for terms, category in _LABEL_CATEGORY_RULES:
            if any(term in label for term in terms):
                return category
    return Category.UNKNOWN


def extract_requirements_fallback(content: str) -> RequirementSet:
    """Scan bullet and numbered lines, routing acceptance items by header or prefix."""
    requirements: list[str] = []
    criteria: list[str] = []
    section = ""

    for raw_line in content.splitlines():
        line = raw_line.strip()
        header = _HEADER_RE.match(line)
        if header is not None:
            section = header.group("title").strip().lower()
            continue
        match = _LIST_ITEM_RE.match(line)
        if match is None:
            continue
        item = _CHECKBOX_RE.sub("", match.group("item").strip())
        if not item:
            continue

        lowered = item.lower()
        if lowered.startswith("acceptance:") or "acceptance criteria" in lowered:
            criteria.append(_ACCEPTANCE_PREFIX_RE.sub("", item).strip())
        elif "acceptance" in section and "criteria" in section:
            criteria.append(item)
        else:
            requirements.append(item)

    return RequirementSet(
        requirements=tuple(requirements),
        acceptance_criteria=tuple(item for item in criteria if item),
    )


def is_feasible(
    complexity: ComplexityTier,
    category: Category,
    requirement_count: int,
    settings: ClassifierSettings,
) -> bool:
    if complexity is ComplexityTier.CRITICAL:
        return False
    if category in (Category.QUESTION, Category.UNKNOWN):
        return False
    return requirement_count <= settings.max_requirements


def confidence_for(category: Category, complexity: ComplexityTier, requirement_count: int) -> float:
    confidence = _BASE_CONFIDENCE
    if category is not Category.UNKNOWN:
        confidence += _KNOWN_CATEGORY_BONUS
    if complexity in (ComplexityTier.HIGH, ComplexityTier.CRITICAL):
        confidence -= _HIGH_COMPLEXITY_PENALTY
    if requirement_count > 0:
        confidence += _REQUIREMENTS_BONUS
    return round(max(0.0, min(1.0, confidence)), 4)


def degraded_analysis(reason: str) -> Analysis:
    return Analysis(
        category=Category.UNKNOWN,
        complexity=ComplexityTier.HIGH,
        requirements=(),
        acceptance_criteria=(),
        feasible=False,
        confidence=_DEGRADED_CONFIDENCE,
        reasoning=f"Analysis failed: {reason}. Issue requires human review.",
        degraded=True,
    )


class WorkItemClassifier:
    """Stateless feasibility classifier; safe to share across concurrent runs."""

    def __init__(
        self,
        oracle: Oracle,
        *,
        settings: ClassifierSettings | None = None,
        logger: Any | None = None,
    ) -> None:
        self._oracle = oracle
        self._settings = settings if settings is not None else ClassifierSettings()
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def settings(self) -> ClassifierSettings:
        return self._settings

    async def classify(self, item: WorkItem) -> Analysis:
        budget = self._settings.max_analysis_seconds
        try:
            analysis = await run_with_timeout(self._analyze(item, budget), budget)
        except TimeoutError:
            analysis = degraded_analysis(f"analysis timeout exceeded after {budget:g}s")
        except Exception as exc:  # noqa: BLE001
            analysis = degraded_analysis(f"{type(exc).__name__}: {exc}")

        self._logger.info(
            "synthesis_plane_analysis_complete",
            work_item_id=item.id,
            category=analysis.category.value,
            complexity=analysis.complexity.value,
            complexity_score=analysis.complexity_score,
            feasible=analysis.feasible,
            confidence=analysis.confidence,
            requirement_count=len(analysis.requirements),
            degraded=analysis.degraded,
        )
        return analysis

    async def _analyze(self, item: WorkItem, budget: float) -> Analysis:
        context = OracleContext(work_item=item)
        notes: list[str] = []

        score = complexity_score(item)
        complexity = complexity_tier(score, self._settings)

        if not item.body.strip() and not item.labels:
            # Nothing beyond a title to judge; the oracle is not consulted.
            category = Category.UNKNOWN
            extracted = RequirementSet()
            notes.append("Item has no body and no labels")
        else:
            category = await self._categorize(item, context, budget, notes)
            extracted = await self._extract(item, context, budget, notes)

        requirement_count = len(extracted.requirements)
        feasible = is_feasible(complexity, category, requirement_count, self._settings)
        confidence = confidence_for(category, complexity, requirement_count)
        reasoning = _reasoning(
            category, complexity, feasible, confidence, requirement_count, self._settings, notes
        )
        return Analysis(
            category=category,
            complexity=complexity,
            requirements=extracted.requirements,
            acceptance_criteria=extracted.acceptance_criteria,
            feasible=feasible,
            confidence=confidence,
            reasoning=reasoning,
            complexity_score=score,
        )

    async def _categorize(
        self,
        item: WorkItem,
        context: OracleContext,
        budget: float,
        notes: list[str],
    ) -> Category:
        result = await call_oracle(
            self._oracle.classify(context),
            timeout_seconds=budget,
        )
        if isinstance(result, OracleOk) and isinstance(result.value, Category):
            return result.value
        if isinstance(result, OracleOk):
            notes.append(f"oracle classify returned invalid category {result.value!r}")
        else:
            notes.append(describe_failure("classify", result))
        self._logger.warning(
            "synthesis_plane_category_fallback",
            work_item_id=item.id,
            reason=notes[-1],
        )
        return category_from_labels(item.labels)

    async def _extract(
        self,
        item: WorkItem,
        context: OracleContext,
        budget: float,
        notes: list[str],
    ) -> RequirementSet:
        result = await call_oracle(
            self._oracle.extract_requirements(context),
            timeout_seconds=budget,
        )
        if isinstance(result, OracleOk) and isinstance(result.value, RequirementSet):
            return result.value
        if isinstance(result, OracleOk):
            notes.append("oracle extract_requirements returned an unexpected value")
        else:
            notes.append(describe_failure("extract_requirements", result))
        self._logger.warning(
            "synthesis_plane_requirements_fallback",
            work_item_id=item.id,
            reason=notes[-1],
        )
        return extract_requirements_fallback(item.content)


def _reasoning(
    category: Category,
    complexity: ComplexityTier,
    feasible: bool,
    confidence: float,
    requirement_count: int,
    settings: ClassifierSettings,
    notes: list[str],
) -> str:
    reasons = [
        f"Categorized as {category.value}",
        f"Complexity assessed as {complexity.value}",
        f"Autonomous resolution {'feasible' if feasible else 'not feasible'}",
        f"Analysis confidence: {round(confidence * 100)}%",
    ]
    if not feasible:
        if complexity is ComplexityTier.CRITICAL:
            reasons.append("Critical complexity requires human review")
        if category is Category.QUESTION:
            reasons.append("Questions need human clarification")
        if category is Category.UNKNOWN:
            reasons.append("Unable to determine issue type")
        if requirement_count > settings.max_requirements:
            reasons.append(
                f"Too many requirements: {requirement_count} > {settings.max_requirements}"
            )
    reasons.extend(notes)
    return ". ".join(reasons)


__all__ = [
    "WorkItemClassifier",
    "category_from_labels",
    "complexity_score",
    "complexity_tier",
    "confidence_for",
    "degraded_analysis",
    "extract_requirements_fallback",
    "is_feasible",
]
