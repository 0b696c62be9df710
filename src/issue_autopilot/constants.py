"""Stable constants shared across the autopilot planes."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Final

# Git branch names.
DEFAULT_BASE_BRANCH: Final[str] = "main"
DEFAULT_FIX_BRANCH_PREFIX: Final[str] = "autopilot"
BRANCH_SLUG_MAX_LEN: Final[int] = 50

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1
RUN_RECORD_SCHEMA_VERSION: Final[int] = 1

# Default runtime paths (relative to the config file unless overridden).
WORKSPACES_DIR: Final[PurePosixPath] = PurePosixPath(".autopilot/workspaces")
STATE_DIR: Final[PurePosixPath] = PurePosixPath(".autopilot/state")
PUBLISHED_DIR: Final[PurePosixPath] = PurePosixPath(".autopilot/published")
LOG_DIR: Final[PurePosixPath] = PurePosixPath(".autopilot/logs")

# Complexity tiers in ascending order.
COMPLEXITY_TIERS: Final[tuple[str, ...]] = ("low", "medium", "high", "critical")

# Review severities, weights applied to sub-scores.
SEVERITY_WEIGHTS: Final[dict[str, float]] = {
    "critical": 1.0,
    "high": 0.7,
    "medium": 0.4,
    "low": 0.1,
}

__all__ = [
    "BRANCH_SLUG_MAX_LEN",
    "COMPLEXITY_TIERS",
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_BASE_BRANCH",
    "DEFAULT_FIX_BRANCH_PREFIX",
    "LOG_DIR",
    "PUBLISHED_DIR",
    "RUN_RECORD_SCHEMA_VERSION",
    "SEVERITY_WEIGHTS",
    "STATE_DIR",
    "WORKSPACES_DIR",
]
