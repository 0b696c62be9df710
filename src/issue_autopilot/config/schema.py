"""
issue-autopilot configuration schema and validation.

Defines the authoritative defaults for every tunable threshold of the pipeline
and strict validation rules that report every problem with a dotted field path.
Profile overlays (``strict``, ``permissive``) deep-merge onto the base config
and are re-validated after merging.
"""

from __future__ import annotations

import copy
import math
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, TypedDict

from issue_autopilot.constants import (
    CONFIG_SCHEMA_VERSION,
    LOG_DIR,
    PUBLISHED_DIR,
    STATE_DIR,
    WORKSPACES_DIR,
)

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION
BUILTIN_PROFILE_NAMES: Final[tuple[str, ...]] = ("strict", "permissive")
STAGE_NAMES: Final[tuple[str, ...]] = ("analysis", "resolution", "review", "publishing")
SEVERITY_NAMES: Final[tuple[str, ...]] = ("low", "medium", "high", "critical")
FINDING_CATEGORY_NAMES: Final[tuple[str, ...]] = (
    "syntax",
    "logic",
    "security",
    "quality",
    "performance",
    "testing",
    "documentation",
)

_PROFILE_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_-]*$")
_EXTENSION_PATTERN = re.compile(r"^\.[a-z0-9][a-z0-9_+-]*$")
_CAMEL_CASE_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")

_SENSITIVE_KEY_TOKENS: Final[frozenset[str]] = frozenset(
    {"secret", "token", "password", "passwd", "apikey", "credential", "credentials", "auth"}
)
_SENSITIVE_KEY_PHRASES: Final[tuple[str, ...]] = (
    "api_key",
    "access_token",
    "client_secret",
    "private_key",
    "password",
    "secret",
)

# Config paths that are normalized relative to the config file location.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (
    ("paths", "workspace_root"),
    ("paths", "state_dir"),
    ("paths", "published_dir"),
    ("paths", "log_dir"),
    ("review", "custom_rules_file"),
)


class MetaConfig(TypedDict):
    schema_version: int


class ClassifierConfig(TypedDict):
    medium_threshold: int
    high_threshold: int
    critical_threshold: int
    max_requirements: int
    max_analysis_seconds: float


class ResolutionConfig(TypedDict):
    max_iterations: int
    max_execution_seconds: float
    requirements_per_file: int
    quality_threshold: float
    require_tests: bool
    test_command: list[str]


class SafetyConfig(TypedDict):
    max_files_modified: int
    max_lines_changed: int
    allowed_extensions: list[str]
    dangerous_patterns: list[str]


class CustomRuleConfig(TypedDict, total=False):
    name: str
    pattern: str
    message: str
    severity: str
    category: str
    suggestion: str


class ReviewConfig(TypedDict):
    min_approval_score: float
    strict_mode: bool
    security_scan_enabled: bool
    performance_analysis_enabled: bool
    documentation_required: bool
    max_line_length: int
    magic_number_threshold: int
    complexity_threshold: float
    custom_rules: list[CustomRuleConfig]
    custom_rules_file: str


class WorkflowConfig(TypedDict):
    max_workflow_seconds: float
    stage_timeouts: dict[str, float]
    allow_duplicate_runs: bool
    max_concurrent_runs: int
    publish_max_attempts: int
    publish_backoff_seconds: float
    publish_backoff_max_seconds: float


class ObservabilityConfig(TypedDict):
    log_level: str
    log_format: str
    redact_secrets: bool
    event_buffer_size: int


class PathsConfig(TypedDict):
    workspace_root: str
    state_dir: str
    published_dir: str
    log_dir: str


class AutopilotConfig(TypedDict):
    meta: MetaConfig
    classifier: ClassifierConfig
    resolution: ResolutionConfig
    safety: SafetyConfig
    review: ReviewConfig
    workflow: WorkflowConfig
    observability: ObservabilityConfig
    paths: PathsConfig
    profiles: dict[str, dict[str, Any]]


DEFAULT_CONFIG: Final[AutopilotConfig] = {
    "meta": {
        "schema_version": ConfigSchemaVersion,
    },
    "classifier": {
        "medium_threshold": 2,
        "high_threshold": 4,
        "critical_threshold": 7,
        "max_requirements": 10,
        "max_analysis_seconds": 30.0,
    },
    "resolution": {
        "max_iterations": 5,
        "max_execution_seconds": 600.0,
        "requirements_per_file": 3,
        "quality_threshold": 0.7,
        "require_tests": False,
        "test_command": [],
    },
    "safety": {
        "max_files_modified": 10,
        "max_lines_changed": 500,
        "allowed_extensions": [
            ".py",
            ".pyi",
            ".js",
            ".jsx",
            ".ts",
            ".tsx",
            ".json",
            ".md",
            ".txt",
            ".toml",
            ".yaml",
            ".yml",
            ".css",
            ".html",
        ],
        "dangerous_patterns": [
            r"\beval\s*\(",
            r"\bexec\s*\(",
            r"\bFunction\s*\(",
            r"set(?:Timeout|Interval)\s*\(.*eval",
            r"document\.write\s*\(",
            r"\.innerHTML\s*=",
        ],
    },
    "review": {
        "min_approval_score": 0.7,
        "strict_mode": False,
        "security_scan_enabled": True,
        "performance_analysis_enabled": True,
        "documentation_required": False,
        "max_line_length": 100,
        "magic_number_threshold": 3,
        "complexity_threshold": 5.0,
        "custom_rules": [],
        "custom_rules_file": "",
    },
    "workflow": {
        "max_workflow_seconds": 1800.0,
        "stage_timeouts": {
            "analysis": 60.0,
            "resolution": 900.0,
            "review": 60.0,
            "publishing": 120.0,
        },
        "allow_duplicate_runs": False,
        "max_concurrent_runs": 4,
        "publish_max_attempts": 3,
        "publish_backoff_seconds": 1.0,
        "publish_backoff_max_seconds": 30.0,
    },
    "observability": {
        "log_level": "INFO",
        "log_format": "json",
        "redact_secrets": True,
        "event_buffer_size": 1000,
    },
    "paths": {
        "workspace_root": WORKSPACES_DIR.as_posix(),
        "state_dir": STATE_DIR.as_posix(),
        "published_dir": PUBLISHED_DIR.as_posix(),
        "log_dir": LOG_DIR.as_posix(),
    },
    "profiles": {
        "strict": {
            "review": {
                "strict_mode": True,
                "min_approval_score": 0.8,
                "documentation_required": True,
            },
            "resolution": {"require_tests": True},
        },
        "permissive": {
            "review": {"min_approval_score": 0.6},
            "resolution": {"max_iterations": 8},
        },
    },
}

_SECTION_NAMES: Final[tuple[str, ...]] = (
    "classifier",
    "resolution",
    "safety",
    "review",
    "workflow",
    "observability",
    "paths",
)


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    """Validation result with normalized config when no issues were found."""

    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)

    @property
    def has_issues(self) -> bool:
        return bool(self._items)


def default_config() -> AutopilotConfig:
    """Return a deep copy of deterministic built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "upgrade autopilot.toml to the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "upgrade the issue-autopilot runtime"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deterministically deep-merge ``overlay`` onto ``base``."""

    merged = _deep_copy_mapping(base)
    _merge_into(merged, overlay)
    return merged


def apply_profile_overlay(config: Mapping[str, object], profile: str | None) -> dict[str, Any]:
    """Apply a named profile overlay and re-validate the resulting config."""

    materialized = _deep_copy_mapping(config)
    if profile is None or not profile.strip():
        return materialized

    selected = profile.strip()
    profiles_raw = materialized.get("profiles")
    if not isinstance(profiles_raw, Mapping):
        raise ConfigValidationError(
            (ConfigValidationIssue("profiles", "profiles section is required"),)
        )

    overlay_raw = profiles_raw.get(selected)
    if overlay_raw is None:
        raise ConfigValidationError(
            (ConfigValidationIssue("profiles", f"profile {selected!r} is not defined"),)
        )
    if not isinstance(overlay_raw, Mapping):
        raise ConfigValidationError(
            (ConfigValidationIssue(f"profiles.{selected}", "profile overlay must be an object"),)
        )

    return assert_valid_config(merge_config(materialized, overlay_raw))


def validate_config(
    config: Mapping[str, object] | object,
    *,
    active_profile: str | None = None,
) -> ConfigValidationResult:
    """Validate config and return structured issues with deterministic paths."""

    issues = _IssueCollector()
    root = _as_object(config, "<root>", issues)
    if root is None:
        return ConfigValidationResult(config=None, issues=issues.items())

    normalized = _validate_root(root, issues)

    selected_profile = active_profile.strip() if isinstance(active_profile, str) else None
    if selected_profile:
        profiles = normalized.get("profiles")
        if not isinstance(profiles, Mapping) or selected_profile not in profiles:
            issues.add("profiles", f"profile {selected_profile!r} is not defined")
        else:
            _validate_root(merge_config(normalized, profiles[selected_profile]), issues)

    if issues.has_issues:
        return ConfigValidationResult(config=None, issues=issues.items())
    return ConfigValidationResult(config=normalized, issues=())


def assert_valid_config(
    config: Mapping[str, object] | object,
    *,
    active_profile: str | None = None,
) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    result = validate_config(config, active_profile=active_profile)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def redact_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Return a deterministic redacted representation for logs and dumps."""

    if not isinstance(config, Mapping):
        return {}
    redacted = _redact_value(config)
    if isinstance(redacted, dict):
        return redacted
    return {}


# ---------------------------------------------------------------------------
# Field checks
#
# A check receives (value, dotted path, collector, partial) and returns the
# normalized value, or ``_INVALID`` after recording at least one issue.
# ---------------------------------------------------------------------------

_INVALID: Final = object()

_Check = Callable[[object, str, "_IssueCollector", bool], object]


def _reject(issues: _IssueCollector, path: str, message: str) -> object:
    issues.add(path, message)
    return _INVALID


def _integer(minimum: int) -> _Check:
    def check(value: object, path: str, issues: _IssueCollector, partial: bool) -> object:
        if isinstance(value, bool) or not isinstance(value, int):
            return _reject(issues, path, f"expected integer, got {type(value).__name__}")
        if value < minimum:
            return _reject(issues, path, f"must be >= {minimum}")
        return value

    return check


def _number(*, allow_zero: bool = False, maximum: float | None = None) -> _Check:
    def check(value: object, path: str, issues: _IssueCollector, partial: bool) -> object:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return _reject(issues, path, f"expected number, got {type(value).__name__}")
        parsed = float(value)
        if not math.isfinite(parsed):
            return _reject(issues, path, "must be finite")
        if parsed < 0.0:
            return _reject(issues, path, "must be >= 0.0")
        if parsed == 0.0 and not allow_zero:
            return _reject(issues, path, "must be > 0")
        if maximum is not None and parsed > maximum:
            return _reject(issues, path, f"must be <= {maximum}")
        return parsed

    return check


_ratio = _number(allow_zero=True, maximum=1.0)


def _flag(value: object, path: str, issues: _IssueCollector, partial: bool) -> object:
    if isinstance(value, bool):
        return value
    return _reject(issues, path, f"expected boolean, got {type(value).__name__}")


def _text(value: object, path: str, issues: _IssueCollector, partial: bool = False) -> object:
    if not isinstance(value, str):
        return _reject(issues, path, f"expected string, got {type(value).__name__}")
    stripped = value.strip()
    if not stripped:
        return _reject(issues, path, "must not be empty")
    return stripped


def _path_text(value: object, path: str, issues: _IssueCollector, partial: bool = False) -> object:
    parsed = _text(value, path, issues)
    if isinstance(parsed, str) and "\x00" in parsed:
        return _reject(issues, path, "must not contain NUL bytes")
    return parsed


def _choice(*allowed: str, upper: bool = False) -> _Check:
    def check(value: object, path: str, issues: _IssueCollector, partial: bool) -> object:
        if upper and isinstance(value, str):
            value = value.upper()
        parsed = _text(value, path, issues)
        if parsed is _INVALID or parsed in allowed:
            return parsed
        expected = ", ".join(sorted(allowed))
        return _reject(issues, path, f"invalid value {parsed!r}; expected one of: {expected}")

    return check


def _words(*, allow_empty: bool = False) -> _Check:
    def check(value: object, path: str, issues: _IssueCollector, partial: bool) -> object:
        if not isinstance(value, (list, tuple)):
            return _reject(issues, path, f"expected array, got {type(value).__name__}")
        if not value and not allow_empty:
            return _reject(issues, path, "must not be empty")
        parsed = (_text(item, f"{path}[{index}]", issues) for index, item in enumerate(value))
        return [item for item in parsed if item is not _INVALID]

    return check


def _extensions(value: object, path: str, issues: _IssueCollector, partial: bool) -> object:
    words = _words()(value, path, issues, partial)
    if not isinstance(words, list):
        return words
    normalized: list[str] = []
    for index, raw in enumerate(words):
        extension = raw.lower() if raw.startswith(".") else f".{raw.lower()}"
        if not _EXTENSION_PATTERN.fullmatch(extension):
            issues.add(f"{path}[{index}]", f"invalid file extension {raw!r}")
        elif extension not in normalized:
            normalized.append(extension)
    return normalized


def _patterns(value: object, path: str, issues: _IssueCollector, partial: bool) -> object:
    words = _words(allow_empty=True)(value, path, issues, partial)
    if isinstance(words, list):
        for index, pattern in enumerate(words):
            _compiles(pattern, f"{path}[{index}]", issues)
    return words


def _compiles(pattern: str, path: str, issues: _IssueCollector) -> bool:
    try:
        re.compile(pattern)
    except re.error as exc:
        issues.add(path, f"invalid regular expression: {exc}")
        return False
    return True


def _rules_file(value: object, path: str, issues: _IssueCollector, partial: bool) -> object:
    if isinstance(value, str) and not value.strip():
        return ""
    return _path_text(value, path, issues)


def _rules(value: object, path: str, issues: _IssueCollector, partial: bool) -> object:
    return validate_custom_rules(value, path, issues)


def _schema_version(value: object, path: str, issues: _IssueCollector, partial: bool) -> object:
    parsed = _integer(1)(value, path, issues, partial)
    if isinstance(parsed, int) and parsed != ConfigSchemaVersion:
        issues.add(path, migration_guidance(parsed))
    return parsed


def _redaction(value: object, path: str, issues: _IssueCollector, partial: bool) -> object:
    parsed = _flag(value, path, issues, partial)
    if parsed is False:
        issues.add(path, "secret redaction cannot be disabled")
    return parsed


def _stage_timeouts(value: object, path: str, issues: _IssueCollector, partial: bool) -> object:
    table = _as_object(value, path, issues)
    if table is None:
        return _INVALID
    _reject_unknown_keys(table, set(STAGE_NAMES), path, issues)
    budget = _number()
    timeouts: dict[str, float] = {}
    for stage in STAGE_NAMES:
        if stage not in table:
            if not partial:
                issues.add(_join(path, stage), "missing required field")
            continue
        parsed = budget(table[stage], _join(path, stage), issues, partial)
        if isinstance(parsed, float):
            timeouts[stage] = parsed
    return timeouts


# section -> (field checks, optional fields)
_SECTION_FIELDS: Final[dict[str, tuple[dict[str, _Check], frozenset[str]]]] = {
    "meta": ({"schema_version": _schema_version}, frozenset()),
    "classifier": (
        {
            "medium_threshold": _integer(1),
            "high_threshold": _integer(1),
            "critical_threshold": _integer(1),
            "max_requirements": _integer(1),
            "max_analysis_seconds": _number(),
        },
        frozenset(),
    ),
    "resolution": (
        {
            "max_iterations": _integer(1),
            "max_execution_seconds": _number(),
            "requirements_per_file": _integer(1),
            "quality_threshold": _ratio,
            "require_tests": _flag,
            "test_command": _words(allow_empty=True),
        },
        frozenset(),
    ),
    "safety": (
        {
            "max_files_modified": _integer(1),
            "max_lines_changed": _integer(1),
            "allowed_extensions": _extensions,
            "dangerous_patterns": _patterns,
        },
        frozenset(),
    ),
    "review": (
        {
            "min_approval_score": _ratio,
            "strict_mode": _flag,
            "security_scan_enabled": _flag,
            "performance_analysis_enabled": _flag,
            "documentation_required": _flag,
            "max_line_length": _integer(20),
            "magic_number_threshold": _integer(0),
            "complexity_threshold": _number(),
            "custom_rules": _rules,
            "custom_rules_file": _rules_file,
        },
        frozenset({"custom_rules", "custom_rules_file"}),
    ),
    "workflow": (
        {
            "max_workflow_seconds": _number(),
            "stage_timeouts": _stage_timeouts,
            "allow_duplicate_runs": _flag,
            "max_concurrent_runs": _integer(1),
            "publish_max_attempts": _integer(1),
            "publish_backoff_seconds": _number(allow_zero=True),
            "publish_backoff_max_seconds": _number(allow_zero=True),
        },
        frozenset(),
    ),
    "observability": (
        {
            "log_level": _choice("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL", upper=True),
            "log_format": _choice("json", "console"),
            "redact_secrets": _redaction,
            "event_buffer_size": _integer(1),
        },
        frozenset(),
    ),
    "paths": (
        {
            "workspace_root": _path_text,
            "state_dir": _path_text,
            "published_dir": _path_text,
            "log_dir": _path_text,
        },
        frozenset(),
    ),
}


# ---------------------------------------------------------------------------
# Section and document validation
# ---------------------------------------------------------------------------


def _validate_root(payload: Mapping[str, object], issues: _IssueCollector) -> dict[str, Any]:
    _reject_unknown_keys(payload, {"meta", "profiles", *_SECTION_NAMES}, "", issues)
    _require_keys(payload, {"meta", *_SECTION_NAMES}, "", issues)

    out: dict[str, Any] = {}
    for name in ("meta", *_SECTION_NAMES):
        if name in payload and payload[name] is not None:
            section = _validate_section(name, payload[name], name, issues, partial=False)
            if section is not None:
                out[name] = section

    if payload.get("profiles") is not None:
        profiles = _as_object(payload["profiles"], "profiles", issues)
        if profiles is not None:
            out["profiles"] = _validate_profiles(profiles, issues)

    _validate_cross_fields(out, issues)
    return out


def _validate_section(
    name: str, raw: object, path: str, issues: _IssueCollector, *, partial: bool
) -> dict[str, Any] | None:
    payload = _as_object(raw, path, issues)
    if payload is None:
        return None
    checks, optional = _SECTION_FIELDS[name]
    _reject_unknown_keys(payload, set(checks), path, issues)
    if not partial:
        _require_keys(payload, set(checks) - optional, path, issues)

    out: dict[str, Any] = {}
    for key, check in checks.items():
        if key in payload:
            parsed = check(payload[key], _join(path, key), issues, partial)
            if parsed is not _INVALID:
                out[key] = parsed
    return out


def _validate_profiles(payload: Mapping[str, object], issues: _IssueCollector) -> dict[str, Any]:
    """Profiles are partial overlays: every section and field is optional."""

    out: dict[str, Any] = {}
    for profile_name in sorted(payload):
        profile_path = _join("profiles", profile_name)
        if not _PROFILE_NAME_PATTERN.fullmatch(profile_name):
            issues.add(profile_path, "profile name must match ^[a-z][a-z0-9_-]*$")
            continue
        profile = _as_object(payload[profile_name], profile_path, issues)
        if profile is None:
            continue
        _reject_unknown_keys(profile, set(_SECTION_NAMES), profile_path, issues)
        overlay: dict[str, Any] = {}
        for name in _SECTION_NAMES:
            if profile.get(name) is None:
                continue
            section = _validate_section(
                name, profile[name], _join(profile_path, name), issues, partial=True
            )
            if section is not None:
                overlay[name] = section
        out[profile_name] = overlay
    return out


def validate_custom_rules(
    value: object, path: str, issues: _IssueCollector | None = None
) -> list[dict[str, Any]]:
    """Validate user review rules; raise ``ConfigValidationError`` when no collector is given."""

    collector = issues if issues is not None else _IssueCollector()
    rules: list[dict[str, Any]] = []
    if not isinstance(value, (list, tuple)):
        collector.add(path, f"expected array, got {type(value).__name__}")
    else:
        names: set[str] = set()
        for index, raw_rule in enumerate(value):
            rule_path = f"{path}[{index}]"
            rule = _as_object(raw_rule, rule_path, collector)
            parsed = _validate_custom_rule(rule, rule_path, collector) if rule is not None else None
            if parsed is None:
                continue
            if parsed["name"] in names:
                collector.add(_join(rule_path, "name"), f"duplicate rule name {parsed['name']!r}")
                continue
            names.add(parsed["name"])
            rules.append(parsed)
    if issues is None and collector.has_issues:
        raise ConfigValidationError(collector.items())
    return rules


_RULE_FIELDS: Final[dict[str, _Check]] = {
    "name": _text,
    "pattern": _text,
    "message": _text,
    "severity": _choice(*SEVERITY_NAMES),
    "category": _choice(*FINDING_CATEGORY_NAMES),
}


def _validate_custom_rule(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any] | None:
    _reject_unknown_keys(payload, {*_RULE_FIELDS, "suggestion"}, path, issues)
    _require_keys(payload, set(_RULE_FIELDS), path, issues)
    if not set(_RULE_FIELDS).issubset(payload):
        return None

    rule = {
        key: check(payload[key], _join(path, key), issues, False)
        for key, check in _RULE_FIELDS.items()
    }
    pattern = rule["pattern"]
    if isinstance(pattern, str) and not _compiles(pattern, _join(path, "pattern"), issues):
        rule["pattern"] = _INVALID
    if payload.get("suggestion") is not None:
        rule["suggestion"] = _text(payload["suggestion"], _join(path, "suggestion"), issues)

    if any(value is _INVALID for value in rule.values()):
        return None
    return rule


def _validate_cross_fields(config: Mapping[str, Any], issues: _IssueCollector) -> None:
    classifier = config.get("classifier", {})
    tiers = [classifier.get(f"{tier}_threshold") for tier in ("medium", "high", "critical")]
    for lower, upper, name in zip(tiers, tiers[1:], ("high", "critical"), strict=False):
        if isinstance(lower, int) and isinstance(upper, int) and lower >= upper:
            previous = "medium" if name == "high" else "high"
            issues.add(f"classifier.{name}_threshold", f"must be greater than {previous}_threshold")

    workflow = config.get("workflow", {})
    base = workflow.get("publish_backoff_seconds")
    ceiling = workflow.get("publish_backoff_max_seconds")
    if isinstance(base, float) and isinstance(ceiling, float) and ceiling < base:
        issues.add("workflow.publish_backoff_max_seconds", "must be >= publish_backoff_seconds")


# ---------------------------------------------------------------------------
# Structural helpers
# ---------------------------------------------------------------------------


def _as_object(value: object, path: str, issues: _IssueCollector) -> dict[str, object] | None:
    if not isinstance(value, Mapping):
        issues.add(path, f"expected object, got {type(value).__name__}")
        return None
    out: dict[str, object] = {}
    for key, item in value.items():
        if isinstance(key, str):
            out[key] = item
        else:
            issues.add(path, f"object key must be string, got {type(key).__name__}")
    return out


def _reject_unknown_keys(
    payload: Mapping[str, object], allowed: set[str], path: str, issues: _IssueCollector
) -> None:
    for key in sorted(set(payload) - allowed):
        if _looks_sensitive_key(key):
            issues.add(_join(path, key), "embedded secret values are forbidden in config files")
        else:
            issues.add(_join(path, key), "unknown field")


def _require_keys(
    payload: Mapping[str, object], required: set[str], path: str, issues: _IssueCollector
) -> None:
    for key in sorted(required - set(payload)):
        issues.add(_join(path, key), "missing required field")


def _looks_sensitive_key(key: str) -> bool:
    spaced = _CAMEL_CASE_BOUNDARY.sub(r"\1_\2", key.strip())
    normalized = _NON_ALNUM.sub("_", spaced.lower()).strip("_")
    if any(phrase in normalized for phrase in _SENSITIVE_KEY_PHRASES):
        return True
    return not _SENSITIVE_KEY_TOKENS.isdisjoint(normalized.split("_"))


def _join(path: str, key: str) -> str:
    return f"{path}.{key}" if path else key


def _merge_into(target: dict[str, Any], overlay: Mapping[str, object]) -> None:
    for key in sorted(overlay):
        value = overlay[key]
        existing = target.get(key)
        if isinstance(value, Mapping):
            nested = _deep_copy_mapping(existing) if isinstance(existing, Mapping) else {}
            _merge_into(nested, value)
            target[key] = nested
        else:
            target[key] = copy.deepcopy(value)


def _deep_copy_mapping(value: Mapping[str, object]) -> dict[str, Any]:
    return {key: copy.deepcopy(value[key]) for key in sorted(value) if isinstance(key, str)}


def _redact_value(value: object) -> object:
    if isinstance(value, Mapping):
        return {
            key: "<redacted>" if _looks_sensitive_key(key) else _redact_value(value[key])
            for key in sorted(value)
        }
    if isinstance(value, (list, tuple)):
        return [_redact_value(item) for item in value]
    return value


__all__ = [
    "AutopilotConfig",
    "BUILTIN_PROFILE_NAMES",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "FINDING_CATEGORY_NAMES",
    "PATH_FIELDS",
    "SEVERITY_NAMES",
    "STAGE_NAMES",
    "apply_profile_overlay",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "migration_guidance",
    "redact_config",
    "validate_config",
    "validate_custom_rules",
]
