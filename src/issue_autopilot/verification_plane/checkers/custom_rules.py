"""User-defined review rules loaded from configuration or a YAML rules file."""

from __future__ import annotations

import re
from collections.abc import Sequence
from pathlib import Path
from typing import Final

import yaml

from issue_autopilot.config.schema import validate_custom_rules
from issue_autopilot.config.settings import CustomRule, ReviewSettings
from issue_autopilot.domain.models import (
    FindingCategory,
    ReviewFinding,
    Severity,
)
from issue_autopilot.verification_plane.checkers.base import (
    ReviewContext,
    finding,
    register_builtin_checker,
)

CHECKER_ID: Final[str] = "custom"


class CustomRulesError(ValueError):
    """Raised when a rules file cannot be read or parsed."""


def load_custom_rules(path: Path) -> tuple[CustomRule, ...]:
    """Load rules from a YAML document holding a list or a ``rules:`` mapping.

    Validation failures raise ``ConfigValidationError`` with every issue found.
    """

    try:
        payload = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise CustomRulesError(f"cannot read rules file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise CustomRulesError(f"invalid YAML in rules file {path}: {exc}") from exc

    if payload is None:
        return ()
    if isinstance(payload, dict):
        payload = payload.get("rules", [])
    parsed = validate_custom_rules(payload, str(path))
    return tuple(CustomRule.from_mapping(rule) for rule in parsed)


def merge_rules(*groups: Sequence[CustomRule]) -> tuple[CustomRule, ...]:
    """Concatenate rule groups; a later rule replaces an earlier one with the same name."""

    by_name: dict[str, CustomRule] = {}
    for group in groups:
        for rule in group:
            by_name.pop(rule.name, None)
            by_name[rule.name] = rule
    return tuple(by_name.values())


@register_builtin_checker(CHECKER_ID, order=70)
class CustomRuleChecker:
    checker_id = CHECKER_ID

    def __init__(self) -> None:
        self._compiled: dict[str, re.Pattern[str]] = {}

    def enabled(self, settings: ReviewSettings) -> bool:
        return True

    def check(self, context: ReviewContext) -> tuple[ReviewFinding, ...]:
        findings: list[ReviewFinding] = []
        for rule in context.custom_rules:
            regex = self._pattern(rule)
            for review_file in context.files:
                line = review_file.first_match(regex)
                if line is None:
                    continue
                findings.append(
                    finding(
                        CHECKER_ID,
                        rule.name,
                        Severity(rule.severity),
                        FindingCategory(rule.category),
                        rule.message,
                        path=review_file.path,
                        line=line,
                        suggestion=rule.suggestion,
                    )
                )
        return tuple(findings)

    def _pattern(self, rule: CustomRule) -> re.Pattern[str]:
        compiled = self._compiled.get(rule.pattern)
        if compiled is None:
            compiled = re.compile(rule.pattern)
            self._compiled[rule.pattern] = compiled
        return compiled


__all__ = [
    "CHECKER_ID",
    "CustomRuleChecker",
    "CustomRulesError",
    "load_custom_rules",
    "merge_rules",
]
