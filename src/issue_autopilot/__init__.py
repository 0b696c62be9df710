"""
issue-autopilot: automated resolution pipeline for tracked issues.

The package classifies a work item, drives a bounded generate/validate/repair
loop against a code-generation oracle, reviews the resulting change set and
publishes it, escalating to human review whenever confidence or quality is
insufficient.

Importing the package has no side effects: no config loading, no logging setup.
"""

from __future__ import annotations

__version__ = "0.1.0"

__all__ = ["__version__"]
