"""Typed, immutable views over a validated config mapping.

Components receive these dataclasses instead of raw dictionaries; every
constructor default mirrors ``DEFAULT_CONFIG`` so tests can build a component
with only the knobs they care about.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from issue_autopilot.config.schema import DEFAULT_CONFIG, assert_valid_config, default_config

_SAFETY_DEFAULTS = DEFAULT_CONFIG["safety"]
_WORKFLOW_DEFAULTS = DEFAULT_CONFIG["workflow"]


@dataclass(frozen=True, slots=True)
class ClassifierSettings:
    medium_threshold: int = 2
    high_threshold: int = 4
    critical_threshold: int = 7
    max_requirements: int = 10
    max_analysis_seconds: float = 30.0


@dataclass(frozen=True, slots=True)
class SafetySettings:
    max_files_modified: int = 10
    max_lines_changed: int = 500
    allowed_extensions: tuple[str, ...] = tuple(_SAFETY_DEFAULTS["allowed_extensions"])
    dangerous_patterns: tuple[str, ...] = tuple(_SAFETY_DEFAULTS["dangerous_patterns"])


@dataclass(frozen=True, slots=True)
class ResolutionSettings:
    max_iterations: int = 5
    max_execution_seconds: float = 600.0
    requirements_per_file: int = 3
    quality_threshold: float = 0.7
    require_tests: bool = False
    test_command: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class CustomRule:
    name: str
    pattern: str
    message: str
    severity: str
    category: str
    suggestion: str | None = None

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> CustomRule:
        return cls(
            name=str(payload["name"]),
            pattern=str(payload["pattern"]),
            message=str(payload["message"]),
            severity=str(payload["severity"]),
            category=str(payload["category"]),
            suggestion=payload.get("suggestion"),
        )


@dataclass(frozen=True, slots=True)
class ReviewSettings:
    min_approval_score: float = 0.7
    strict_mode: bool = False
    security_scan_enabled: bool = True
    performance_analysis_enabled: bool = True
    documentation_required: bool = False
    max_line_length: int = 100
    magic_number_threshold: int = 3
    complexity_threshold: float = 5.0
    custom_rules: tuple[CustomRule, ...] = ()
    custom_rules_file: Path | None = None


@dataclass(frozen=True, slots=True)
class WorkflowSettings:
    max_workflow_seconds: float = 1800.0
    stage_timeouts: Mapping[str, float] = field(
        default_factory=lambda: dict(_WORKFLOW_DEFAULTS["stage_timeouts"])
    )
    allow_duplicate_runs: bool = False
    max_concurrent_runs: int = 4
    publish_max_attempts: int = 3
    publish_backoff_seconds: float = 1.0
    publish_backoff_max_seconds: float = 30.0

    def stage_timeout(self, stage: str) -> float | None:
        return self.stage_timeouts.get(stage)


@dataclass(frozen=True, slots=True)
class PathSettings:
    workspace_root: Path
    state_dir: Path
    published_dir: Path
    log_dir: Path


@dataclass(frozen=True, slots=True)
class AutopilotSettings:
    classifier: ClassifierSettings
    resolution: ResolutionSettings
    safety: SafetySettings
    review: ReviewSettings
    workflow: WorkflowSettings
    paths: PathSettings
    log_level: str = "INFO"
    log_format: str = "json"
    event_buffer_size: int = 1000

    @classmethod
    def defaults(cls) -> AutopilotSettings:
        return cls.from_config(default_config())

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> AutopilotSettings:
        """Build settings from a config mapping, validating it first."""

        validated = assert_valid_config(config)
        review = dict(validated["review"])
        rules = tuple(CustomRule.from_mapping(rule) for rule in review.pop("custom_rules", ()))
        rules_file = review.pop("custom_rules_file", "")
        resolution = dict(validated["resolution"])
        resolution["test_command"] = tuple(resolution["test_command"])
        safety = dict(validated["safety"])
        observability = validated["observability"]
        paths = validated["paths"]
        return cls(
            classifier=ClassifierSettings(**validated["classifier"]),
            resolution=ResolutionSettings(**resolution),
            safety=SafetySettings(
                max_files_modified=safety["max_files_modified"],
                max_lines_changed=safety["max_lines_changed"],
                allowed_extensions=tuple(safety["allowed_extensions"]),
                dangerous_patterns=tuple(safety["dangerous_patterns"]),
            ),
            review=ReviewSettings(
                **review,
                custom_rules=rules,
                custom_rules_file=Path(rules_file) if rules_file else None,
            ),
            workflow=WorkflowSettings(**validated["workflow"]),
            paths=PathSettings(
                workspace_root=Path(paths["workspace_root"]),
                state_dir=Path(paths["state_dir"]),
                published_dir=Path(paths["published_dir"]),
                log_dir=Path(paths["log_dir"]),
            ),
            log_level=observability["log_level"],
            log_format=observability["log_format"],
            event_buffer_size=observability["event_buffer_size"],
        )


__all__ = [
    "AutopilotSettings",
    "ClassifierSettings",
    "CustomRule",
    "PathSettings",
    "ResolutionSettings",
    "ReviewSettings",
    "SafetySettings",
    "WorkflowSettings",
]
