"""Sortable identifiers for workflow runs, lifecycle events and workspaces.

Run and event ids are ``<prefix>-<ulid>``: a 48-bit millisecond timestamp and
80 random bits rendered as 26 Crockford Base32 characters, so ids sort by
creation time when compared as strings.
"""

from __future__ import annotations

import re
import secrets
import time
from collections.abc import Callable
from typing import Final

CROCKFORD_BASE32_ALPHABET: Final[str] = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
ULID_LENGTH: Final[int] = 26
ULID_MAX_TIMESTAMP_MS: Final[int] = (1 << 48) - 1

RUN_ID_PREFIX: Final[str] = "run"
EVENT_ID_PREFIX: Final[str] = "evt"

# First character is capped at 7: a 26-char Base32 string holds 130 bits.
_ULID_PATTERN: Final[re.Pattern[str]] = re.compile(
    rf"[0-7][{CROCKFORD_BASE32_ALPHABET}]{{{ULID_LENGTH - 1}}}"
)
_RANDOM_BYTES: Final[int] = 10

RandBytes = Callable[[int], bytes]


def generate_ulid(
    *,
    timestamp_ms: int | None = None,
    randbytes: RandBytes | None = None,
) -> str:
    millis = time.time_ns() // 1_000_000 if timestamp_ms is None else timestamp_ms
    if not 0 <= millis <= ULID_MAX_TIMESTAMP_MS:
        raise ValueError(f"timestamp_ms out of range: {millis}")
    entropy = (randbytes or secrets.token_bytes)(_RANDOM_BYTES)
    if len(entropy) != _RANDOM_BYTES:
        raise ValueError(f"randbytes must return exactly {_RANDOM_BYTES} bytes")

    value = (millis << 80) | int.from_bytes(entropy, "big")
    chars: list[str] = []
    for _ in range(ULID_LENGTH):
        chars.append(CROCKFORD_BASE32_ALPHABET[value & 0x1F])
        value >>= 5
    return "".join(reversed(chars))


def validate_ulid(value: str) -> None:
    if not isinstance(value, str) or not _ULID_PATTERN.fullmatch(value.upper()):
        raise ValueError(f"not a valid ULID: {value!r}")


def parse_ulid_timestamp_ms(value: str) -> int:
    validate_ulid(value)
    decoded = 0
    for char in value.upper():
        decoded = (decoded << 5) | CROCKFORD_BASE32_ALPHABET.index(char)
    return decoded >> 80


def short_id(value: str) -> str:
    """Last eight characters, for branch names and log lines."""

    if len(value) < 8:
        raise ValueError("id must be at least 8 characters")
    return value[-8:]


def generate_run_id() -> str:
    return f"{RUN_ID_PREFIX}-{generate_ulid()}"


def generate_event_id() -> str:
    return f"{EVENT_ID_PREFIX}-{generate_ulid()}"


def validate_run_id(value: str) -> None:
    _validate_prefixed(value, RUN_ID_PREFIX)


def validate_event_id(value: str) -> None:
    _validate_prefixed(value, EVENT_ID_PREFIX)


def _validate_prefixed(value: str, prefix: str) -> None:
    head, sep, tail = value.partition("-") if isinstance(value, str) else ("", "", "")
    if head != prefix or not sep:
        raise ValueError(f"expected an id starting with {prefix}-, got {value!r}")
    validate_ulid(tail)


__all__ = [
    "CROCKFORD_BASE32_ALPHABET",
    "EVENT_ID_PREFIX",
    "RUN_ID_PREFIX",
    "ULID_LENGTH",
    "generate_event_id",
    "generate_run_id",
    "generate_ulid",
    "parse_ulid_timestamp_ms",
    "short_id",
    "validate_event_id",
    "validate_run_id",
    "validate_ulid",
]
