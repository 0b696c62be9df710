"""Executable CLI entrypoint for ``issue_autopilot``."""

from __future__ import annotations

import sys
import traceback
from enum import IntEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence


class ExitCode(IntEnum):
    """Process exit-code contract shared by every subcommand."""

    SUCCESS = 0
    NOT_APPROVED = 1
    CONFIG_ERROR = 2
    COLLABORATOR_ERROR = 3
    INTERNAL_ERROR = 4


def cli_entrypoint(argv: Sequence[str] | None = None) -> int:
    """Entrypoint used by ``python -m issue_autopilot`` and the console script."""

    try:
        from issue_autopilot.ui.cli import run_cli

        return _exit_code_from(run_cli(argv))
    except SystemExit as exc:
        return _exit_code_from(exc.code)
    except BaseException as exc:  # noqa: BLE001 - CLI boundary normalization.
        code = exit_code_for(exc)
        if code is ExitCode.INTERNAL_ERROR:
            traceback.print_exception(type(exc), exc, exc.__traceback__, file=sys.stderr)
        else:
            _write_stderr(str(exc).strip() or type(exc).__name__)
        return int(code)


def exit_code_for(exc: BaseException) -> ExitCode:
    """Classify an escaped exception by the first recognised error in its cause chain."""

    from issue_autopilot.config import ConfigLoadError, ConfigValidationError
    from issue_autopilot.errors import CollaboratorError, WorkItemValidationError

    routes: tuple[tuple[tuple[type[BaseException], ...], ExitCode], ...] = (
        (
            (ConfigLoadError, ConfigValidationError, WorkItemValidationError),
            ExitCode.CONFIG_ERROR,
        ),
        ((CollaboratorError,), ExitCode.COLLABORATOR_ERROR),
        ((FileNotFoundError, NotADirectoryError, PermissionError), ExitCode.CONFIG_ERROR),
    )
    for link in _cause_chain(exc):
        for types, code in routes:
            if isinstance(link, types):
                return code
    return ExitCode.INTERNAL_ERROR


def _exit_code_from(raw: object) -> int:
    if raw is None:
        return int(ExitCode.SUCCESS)
    if isinstance(raw, int) and raw in {code.value for code in ExitCode}:
        return raw
    if isinstance(raw, str) and raw.strip():
        _write_stderr(raw.strip())
    return int(ExitCode.INTERNAL_ERROR)


def _cause_chain(exc: BaseException) -> Iterator[BaseException]:
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        if current.__cause__ is not None:
            current = current.__cause__
        elif not current.__suppress_context__:
            current = current.__context__
        else:
            current = None


def _write_stderr(message: str) -> None:
    sys.stderr.write(message.rstrip("\n") + "\n")


__all__ = ["ExitCode", "cli_entrypoint", "exit_code_for"]
