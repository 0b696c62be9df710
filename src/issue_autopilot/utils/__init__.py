"""Utility exports for filesystem and concurrency helpers."""

from issue_autopilot.utils.concurrency import (
    CancellationToken,
    Deadline,
    PermitPool,
    run_with_timeout,
)
from issue_autopilot.utils.fs import append_line, atomic_write, resolve_within, safe_delete

__all__ = [
    "CancellationToken",
    "Deadline",
    "PermitPool",
    "append_line",
    "atomic_write",
    "resolve_within",
    "run_with_timeout",
    "safe_delete",
]
