"""
issue-autopilot — unit tests for config loader

File: tests/unit/config/test_loader.py

Purpose
- Validate deterministic config loading from defaults, TOML, env overrides, and CLI overrides.

What this test file should cover
- Precedence: CLI > env > file > defaults.
- Deterministic env var path mapping and type coercion.
- Path normalization relative to the config file.
- Profile selection and redacted effective config dumping.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path

import pytest

from issue_autopilot.config.loader import (
    ConfigLoadError,
    dump_effective_config,
    load_config,
)
from issue_autopilot.config.schema import ConfigValidationError
from issue_autopilot.config.settings import AutopilotSettings


def _write_config(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def _sha256_json(data: dict[str, object]) -> str:
    payload = json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def test_loader_precedence_default_file_env_cli(tmp_path: Path) -> None:
    config_path = tmp_path / "autopilot.toml"
    default_path = tmp_path / "default.toml"
    _write_config(default_path, "")
    _write_config(
        config_path,
        """
[resolution]
max_iterations = 4
""".strip(),
    )

    default_loaded = load_config(default_path, environ={})
    file_loaded = load_config(config_path, environ={})
    env_loaded = load_config(config_path, environ={"AUTOPILOT_RESOLUTION_MAX_ITERATIONS": "6"})
    cli_loaded = load_config(
        config_path,
        environ={"AUTOPILOT_RESOLUTION_MAX_ITERATIONS": "6"},
        cli_overrides={"resolution.max_iterations": 7},
    )

    assert default_loaded["resolution"]["max_iterations"] == 5
    assert file_loaded["resolution"]["max_iterations"] == 4
    assert env_loaded["resolution"]["max_iterations"] == 6
    assert cli_loaded["resolution"]["max_iterations"] == 7


def test_env_mapping_coerces_nested_floats_bools_and_word_lists(tmp_path: Path) -> None:
    config_path = tmp_path / "autopilot.toml"
    _write_config(config_path, "")

    loaded = load_config(
        config_path,
        environ={
            "AUTOPILOT_WORKFLOW_STAGE_TIMEOUTS_REVIEW": "12.5",
            "AUTOPILOT_WORKFLOW_ALLOW_DUPLICATE_RUNS": "yes",
            "AUTOPILOT_RESOLUTION_TEST_COMMAND": "pytest -q 'tests/unit dir'",
        },
    )

    assert loaded["workflow"]["stage_timeouts"]["review"] == 12.5
    assert loaded["workflow"]["allow_duplicate_runs"] is True
    assert loaded["resolution"]["test_command"] == ["pytest", "-q", "tests/unit dir"]


def test_invalid_env_coercion_raises_actionable_error(tmp_path: Path) -> None:
    config_path = tmp_path / "autopilot.toml"
    _write_config(config_path, "")

    with pytest.raises(ConfigLoadError, match="AUTOPILOT_RESOLUTION_MAX_ITERATIONS"):
        load_config(config_path, environ={"AUTOPILOT_RESOLUTION_MAX_ITERATIONS": "not-an-int"})


def test_env_value_that_violates_schema_fails_validation(tmp_path: Path) -> None:
    config_path = tmp_path / "autopilot.toml"
    _write_config(config_path, "")

    with pytest.raises(ConfigValidationError, match="review.min_approval_score"):
        load_config(config_path, environ={"AUTOPILOT_REVIEW_MIN_APPROVAL_SCORE": "1.5"})


def test_loader_is_deterministic_for_same_inputs(tmp_path: Path) -> None:
    config_path = tmp_path / "autopilot.toml"
    _write_config(config_path, "")

    env = {
        "AUTOPILOT_RESOLUTION_MAX_ITERATIONS": "6",
        "AUTOPILOT_REVIEW_STRICT_MODE": "false",
    }
    cli = {"workflow.max_workflow_seconds": 90.0}

    first = load_config(config_path, environ=env, cli_overrides=cli)
    second = load_config(config_path, environ=env, cli_overrides=cli)

    assert _sha256_json(first) == _sha256_json(second)


def test_path_normalization_is_relative_to_config_file(tmp_path: Path) -> None:
    config_path = tmp_path / "nested" / "autopilot.toml"
    _write_config(
        config_path,
        """
[paths]
workspace_root = "workspaces"
""".strip(),
    )

    loaded = load_config(config_path, environ={})

    base_dir = config_path.parent.resolve()
    assert loaded["paths"]["workspace_root"] == (base_dir / "workspaces").as_posix()
    assert loaded["paths"]["state_dir"] == (base_dir / ".autopilot/state").as_posix()
    assert loaded["review"]["custom_rules_file"] == ""


def test_profile_from_argument_and_environment(tmp_path: Path) -> None:
    config_path = tmp_path / "autopilot.toml"
    _write_config(config_path, "")

    strict = load_config(config_path, profile="strict", environ={})
    permissive = load_config(config_path, environ={"AUTOPILOT_PROFILE": "permissive"})

    assert strict["review"]["strict_mode"] is True
    assert strict["review"]["min_approval_score"] == 0.8
    assert strict["resolution"]["require_tests"] is True
    assert permissive["resolution"]["max_iterations"] == 8
    assert permissive["review"]["strict_mode"] is False


def test_env_override_wins_over_profile(tmp_path: Path) -> None:
    config_path = tmp_path / "autopilot.toml"
    _write_config(config_path, "")

    loaded = load_config(
        config_path,
        profile="permissive",
        environ={"AUTOPILOT_RESOLUTION_MAX_ITERATIONS": "2"},
    )

    assert loaded["resolution"]["max_iterations"] == 2


def test_unknown_profile_is_rejected(tmp_path: Path) -> None:
    config_path = tmp_path / "autopilot.toml"
    _write_config(config_path, "")

    with pytest.raises(ConfigValidationError, match="profile 'nightly' is not defined"):
        load_config(config_path, profile="nightly", environ={})


def test_missing_explicit_config_file_raises(tmp_path: Path) -> None:
    with pytest.raises(ConfigLoadError, match="config file not found"):
        load_config(tmp_path / "missing.toml", environ={})


def test_invalid_toml_raises(tmp_path: Path) -> None:
    config_path = tmp_path / "autopilot.toml"
    _write_config(config_path, "[resolution\nmax_iterations = ")

    with pytest.raises(ConfigLoadError, match="invalid TOML"):
        load_config(config_path, environ={})


def test_dump_effective_config_is_deterministic_json(tmp_path: Path) -> None:
    config_path = tmp_path / "autopilot.toml"
    _write_config(config_path, "")

    loaded = load_config(config_path, environ={})
    first = dump_effective_config(loaded)
    second = dump_effective_config(loaded)

    assert first == second
    parsed = json.loads(first)
    assert parsed["classifier"]["critical_threshold"] == 7
    assert list(parsed) == sorted(parsed)


def test_settings_are_built_from_loaded_config(tmp_path: Path) -> None:
    config_path = tmp_path / "autopilot.toml"
    _write_config(
        config_path,
        """
[resolution]
test_command = ["pytest", "-q"]

[[review.custom_rules]]
name = "no-sleep"
pattern = "time\\\\.sleep\\\\("
message = "Avoid blocking sleeps"
severity = "medium"
category = "performance"
""".strip(),
    )

    settings = AutopilotSettings.from_config(load_config(config_path, environ={}))

    assert settings.resolution.test_command == ("pytest", "-q")
    assert settings.review.custom_rules[0].name == "no-sleep"
    assert settings.review.custom_rules[0].pattern == r"time\.sleep\("
    assert settings.review.custom_rules_file is None
    assert settings.paths.workspace_root == tmp_path.resolve() / ".autopilot" / "workspaces"
    assert settings.workflow.stage_timeout("review") == 60.0
    assert settings.workflow.stage_timeout("unknown") is None


def test_config_package_exports_loader_and_errors(tmp_path: Path) -> None:
    import issue_autopilot.config as config_pkg

    config_path = tmp_path / "autopilot.toml"
    _write_config(config_path, "")

    loaded = config_pkg.load_config(config_path, environ={})
    assert loaded["meta"]["schema_version"] == 1

    with pytest.raises(config_pkg.ConfigLoadError):
        config_pkg.load_config(tmp_path / "missing.toml")
