"""Verification plane: deterministic review of generated change sets."""

from issue_autopilot.verification_plane.checkers import (
    DEFAULT_CHECKER_REGISTRY,
    CheckerRegistry,
    ReviewContext,
    load_custom_rules,
)
from issue_autopilot.verification_plane.review import (
    SUB_SCORE_WEIGHTS,
    ReviewEngine,
    failed_review,
)

__all__ = [
    "DEFAULT_CHECKER_REGISTRY",
    "SUB_SCORE_WEIGHTS",
    "CheckerRegistry",
    "ReviewContext",
    "ReviewEngine",
    "failed_review",
    "load_custom_rules",
]
