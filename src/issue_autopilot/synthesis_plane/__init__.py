"""
Synthesis plane: feasibility classification, the oracle contract and the
bounded resolution loop.

Everything here talks to the code-generation oracle only through the
`Oracle` protocol and its tagged results.
"""

from issue_autopilot.synthesis_plane.codebase import CodebaseSummary, is_test_path, survey_codebase
from issue_autopilot.synthesis_plane.oracle import (
    Oracle,
    OracleCallError,
    OracleContext,
    OracleFeedback,
    OracleOk,
    OracleParseError,
    OracleResult,
    RequirementSet,
    call_oracle,
    parse_category,
    parse_change_set,
    parse_requirements,
)
from issue_autopilot.synthesis_plane.replay_oracle import RecordedOracle, TranscriptError
from issue_autopilot.synthesis_plane.resolution_loop import (
    ResolutionLoop,
    ValidationResult,
    placeholder_change_set,
    quality_score,
    validate_change_set,
)
from issue_autopilot.synthesis_plane.safety import SafetyGate, SafetyViolation
from issue_autopilot.synthesis_plane.work_item_classifier import (
    WorkItemClassifier,
    category_from_labels,
    complexity_score,
    complexity_tier,
    extract_requirements_fallback,
)

__all__ = [
    "CodebaseSummary",
    "Oracle",
    "OracleCallError",
    "OracleContext",
    "OracleFeedback",
    "OracleOk",
    "OracleParseError",
    "OracleResult",
    "RecordedOracle",
    "RequirementSet",
    "ResolutionLoop",
    "SafetyGate",
    "SafetyViolation",
    "TranscriptError",
    "ValidationResult",
    "WorkItemClassifier",
    "call_oracle",
    "category_from_labels",
    "complexity_score",
    "complexity_tier",
    "extract_requirements_fallback",
    "is_test_path",
    "parse_category",
    "parse_change_set",
    "parse_requirements",
    "placeholder_change_set",
    "quality_score",
    "survey_codebase",
    "validate_change_set",
]
