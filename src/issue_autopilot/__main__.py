"""Module entrypoint for ``python -m issue_autopilot``."""

from __future__ import annotations

from issue_autopilot.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
