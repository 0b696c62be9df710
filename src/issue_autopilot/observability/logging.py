"""Structured logging setup: structlog on top of stdlib logging, JSON lines, redaction."""

from __future__ import annotations

import logging
import re
import sys
import threading
from collections.abc import Iterator, Mapping, MutableMapping
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Any, Final

import structlog

_REDACTED_VALUE: Final[str] = "***REDACTED***"
_DEFAULT_LOG_FILENAME: Final[str] = "autopilot.jsonl"
_DEFAULT_LOGGER_NAME: Final[str] = "issue_autopilot"

CORRELATION_KEYS: Final[tuple[str, ...]] = ("run_id", "work_item_id", "stage", "event_id")

_SENSITIVE_KEY_TERMS: Final[tuple[str, ...]] = (
    "secret",
    "token",
    "password",
    "passphrase",
    "api_key",
    "apikey",
    "authorization",
    "credential",
    "cookie",
    "private_key",
    "client_secret",
)

_SENSITIVE_ASSIGNMENT_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"(?i)\b(api[_-]?key|token|password|secret|client_secret|authorization)\b\s*([:=])\s*([^\s,;]+)"
)
_BEARER_TOKEN_PATTERN: Final[re.Pattern[str]] = re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._~+/-]+=*")
_GITHUB_TOKEN_PATTERN: Final[re.Pattern[str]] = re.compile(r"\bgh[pousr]_[A-Za-z0-9]{20,}\b")

_HANDLE_LOCK = threading.Lock()
_ACTIVE_HANDLE: LoggingHandle | None = None


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    level: int | str = "INFO"
    log_format: str = "json"
    log_dir: Path | str | None = None
    log_filename: str = _DEFAULT_LOG_FILENAME
    logger_name: str = _DEFAULT_LOGGER_NAME
    stream: IO[str] | None = None
    redact: bool = True


@dataclass(slots=True)
class LoggingHandle:
    """Handlers installed by ``configure_logging``; ``close`` detaches them."""

    logger: logging.Logger
    handlers: tuple[logging.Handler, ...]
    log_path: Path | None

    def flush(self) -> None:
        for handler in self.handlers:
            handler.flush()

    def close(self) -> None:
        for handler in self.handlers:
            self.logger.removeHandler(handler)
            handler.flush()
            handler.close()


def configure_logging(config: LoggingConfig | None = None) -> LoggingHandle:
    """Route structlog events through stdlib logging as JSON lines (or console text).

    Calling it again replaces the previously installed handlers.
    """

    cfg = config or LoggingConfig()
    level = _parse_log_level(cfg.level)

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if cfg.redact:
        shared_processors.append(redact_event_dict)

    renderer: Any
    if cfg.log_format == "console":
        renderer = structlog.dev.ConsoleRenderer(colors=False)
    else:
        renderer = structlog.processors.JSONRenderer(sort_keys=True)

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            renderer,
        ],
    )

    handlers: list[logging.Handler] = []
    stream_handler = logging.StreamHandler(cfg.stream if cfg.stream is not None else sys.stderr)
    stream_handler.setFormatter(formatter)
    handlers.append(stream_handler)

    log_path: Path | None = None
    if cfg.log_dir is not None:
        log_dir = Path(cfg.log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        log_path = log_dir / cfg.log_filename
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        # Files are always JSON lines regardless of the console format.
        file_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                foreign_pre_chain=shared_processors,
                processors=[
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    structlog.processors.format_exc_info,
                    structlog.processors.JSONRenderer(sort_keys=True),
                ],
            )
        )
        handlers.append(file_handler)

    for handler in handlers:
        handler.setLevel(level)

    logger = logging.getLogger(cfg.logger_name)
    logger.setLevel(level)
    logger.propagate = False

    global _ACTIVE_HANDLE
    with _HANDLE_LOCK:
        if _ACTIVE_HANDLE is not None:
            _ACTIVE_HANDLE.close()
        for handler in handlers:
            logger.addHandler(handler)
        _ACTIVE_HANDLE = LoggingHandle(logger=logger, handlers=tuple(handlers), log_path=log_path)
        handle = _ACTIVE_HANDLE

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )
    return handle


def shutdown_logging() -> None:
    global _ACTIVE_HANDLE
    with _HANDLE_LOCK:
        if _ACTIVE_HANDLE is not None:
            _ACTIVE_HANDLE.close()
            _ACTIVE_HANDLE = None


@contextmanager
def correlation_scope(**fields: str | None) -> Iterator[None]:
    """Temporarily bind correlation fields (``run_id``, ``stage``...) to every log event."""

    bound = {key: value for key, value in fields.items() if value is not None}
    with structlog.contextvars.bound_contextvars(**bound):
        yield


def get_correlation_context() -> dict[str, Any]:
    context = structlog.contextvars.get_contextvars()
    return {key: context[key] for key in CORRELATION_KEYS if key in context}


def redact_event_dict(
    _logger: object, _method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """structlog processor masking sensitive keys and credential-looking substrings."""

    for key in list(event_dict):
        event_dict[key] = redact_value(event_dict[key], key_context=key)
    return event_dict


def redact_value(value: object, *, key_context: str | None = None) -> object:
    if key_context is not None and _requires_redaction_for_key(key_context):
        return _REDACTED_VALUE
    if isinstance(value, str):
        return _redact_string(value)
    if isinstance(value, Mapping):
        return {key: redact_value(item, key_context=str(key)) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [redact_value(item) for item in value]
    return value


def _requires_redaction_for_key(key: str) -> bool:
    key_lower = key.lower()
    return any(term in key_lower for term in _SENSITIVE_KEY_TERMS)


def _redact_string(text: str) -> str:
    redacted = _SENSITIVE_ASSIGNMENT_PATTERN.sub(
        lambda match: f"{match.group(1)}{match.group(2)}{_REDACTED_VALUE}", text
    )
    redacted = _BEARER_TOKEN_PATTERN.sub(f"Bearer {_REDACTED_VALUE}", redacted)
    return _GITHUB_TOKEN_PATTERN.sub(_REDACTED_VALUE, redacted)


def _parse_log_level(value: int | str) -> int:
    if isinstance(value, int):
        return value
    parsed = logging.getLevelName(value.strip().upper())
    if isinstance(parsed, int):
        return parsed
    raise ValueError(f"unsupported logging level {value!r}")


__all__ = [
    "CORRELATION_KEYS",
    "LoggingConfig",
    "LoggingHandle",
    "configure_logging",
    "correlation_scope",
    "get_correlation_context",
    "redact_event_dict",
    "redact_value",
    "shutdown_logging",
]
