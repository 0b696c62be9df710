"""
issue-autopilot config package public API.

Loading reads ``autopilot.toml`` plus ``AUTOPILOT_`` environment overrides and
fails fast with structured validation errors. No side effects on import.
"""

from issue_autopilot.config.loader import (
    DEFAULT_CONFIG_FILE,
    ENV_PREFIX,
    ConfigLoadError,
    dump_effective_config,
    load_config,
    normalize_paths,
)
from issue_autopilot.config.schema import (
    BUILTIN_PROFILE_NAMES,
    DEFAULT_CONFIG,
    AutopilotConfig,
    ConfigValidationError,
    ConfigValidationIssue,
    ConfigValidationResult,
    apply_profile_overlay,
    assert_valid_config,
    default_config,
    merge_config,
    redact_config,
    validate_config,
)
from issue_autopilot.config.settings import (
    AutopilotSettings,
    ClassifierSettings,
    CustomRule,
    ResolutionSettings,
    ReviewSettings,
    SafetySettings,
    WorkflowSettings,
)

__all__ = [
    "AutopilotConfig",
    "AutopilotSettings",
    "BUILTIN_PROFILE_NAMES",
    "ClassifierSettings",
    "ConfigLoadError",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "CustomRule",
    "DEFAULT_CONFIG",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "ResolutionSettings",
    "ReviewSettings",
    "SafetySettings",
    "WorkflowSettings",
    "apply_profile_overlay",
    "assert_valid_config",
    "default_config",
    "dump_effective_config",
    "load_config",
    "merge_config",
    "normalize_paths",
    "redact_config",
    "validate_config",
]
