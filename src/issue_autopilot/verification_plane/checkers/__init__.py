"""
Review checkers: each analyzer inspects the text a change set introduces and
reports `ReviewFinding`s.

Importing this package registers every built-in checker in
`DEFAULT_CHECKER_REGISTRY`, in analyzer order.
"""

from issue_autopilot.verification_plane.checkers.base import (
    DEFAULT_CHECKER_REGISTRY,
    Checker,
    CheckerFactory,
    CheckerRegistration,
    CheckerRegistry,
    ReviewContext,
    ReviewFile,
    finding,
    register_builtin_checker,
)
from issue_autopilot.verification_plane.checkers.custom_rules import (
    CustomRuleChecker,
    CustomRulesError,
    load_custom_rules,
    merge_rules,
)
from issue_autopilot.verification_plane.checkers.documentation_checker import (
    DocumentationChecker,
)
from issue_autopilot.verification_plane.checkers.performance_checker import PerformanceChecker
from issue_autopilot.verification_plane.checkers.quality_checker import QualityChecker
from issue_autopilot.verification_plane.checkers.security_checker import SecurityChecker
from issue_autopilot.verification_plane.checkers.static_checker import StaticChecker
from issue_autopilot.verification_plane.checkers.testing_checker import TestingChecker

__all__ = [
    "DEFAULT_CHECKER_REGISTRY",
    "Checker",
    "CheckerFactory",
    "CheckerRegistration",
    "CheckerRegistry",
    "CustomRuleChecker",
    "CustomRulesError",
    "DocumentationChecker",
    "PerformanceChecker",
    "QualityChecker",
    "ReviewContext",
    "ReviewFile",
    "SecurityChecker",
    "StaticChecker",
    "TestingChecker",
    "finding",
    "load_custom_rules",
    "merge_rules",
    "register_builtin_checker",
]
