"""Workflow event envelope published on every run lifecycle change."""

from __future__ import annotations

import json
import math
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from typing import Final

from issue_autopilot.domain import ids

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

_MAX_JSON_DEPTH: Final[int] = 16


class EventType(StrEnum):
    RUN_STARTED = "RunStarted"
    STATE_CHANGED = "StateChanged"
    ERROR_RECORDED = "ErrorRecorded"
    RUN_FINISHED = "RunFinished"


@dataclass(frozen=True, slots=True)
class WorkflowEvent:
    event_id: str
    event_type: EventType
    timestamp: datetime
    run_id: str
    work_item_id: str
    payload: Mapping[str, JSONValue]

    def __post_init__(self) -> None:
        ids.validate_event_id(self.event_id)
        object.__setattr__(self, "event_type", EventType(self.event_type))
        if self.timestamp.tzinfo is None or self.timestamp.utcoffset() is None:
            raise ValueError("WorkflowEvent.timestamp: datetime must be timezone-aware")
        object.__setattr__(self, "timestamp", self.timestamp.astimezone(UTC))
        object.__setattr__(self, "payload", as_json_object(self.payload, "WorkflowEvent.payload"))

    @classmethod
    def create(
        cls,
        event_type: EventType | str,
        *,
        run_id: str,
        work_item_id: str,
        payload: Mapping[str, object] | None = None,
    ) -> WorkflowEvent:
        return cls(
            event_id=ids.generate_event_id(),
            event_type=EventType(event_type),
            timestamp=datetime.now(tz=UTC),
            run_id=run_id,
            work_item_id=work_item_id,
            payload=as_json_object(payload or {}, "payload"),
        )

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type.value,
            "timestamp": self.timestamp.isoformat(timespec="microseconds").replace("+00:00", "Z"),
            "run_id": self.run_id,
            "work_item_id": self.work_item_id,
            "payload": dict(self.payload),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def as_json_object(value: object, path: str) -> dict[str, JSONValue]:
    parsed = _as_json_value(value, path)
    if not isinstance(parsed, dict):
        raise ValueError(f"{path}: expected object")
    return parsed


def _as_json_value(value: object, path: str, *, depth: int = 0) -> JSONValue:
    if depth > _MAX_JSON_DEPTH:
        raise ValueError(f"{path}: JSON nesting too deep")
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValueError(f"{path}: float value must be finite")
        return value
    if isinstance(value, (list, tuple)):
        return [
            _as_json_value(item, f"{path}[{index}]", depth=depth + 1)
            for index, item in enumerate(value)
        ]
    if isinstance(value, Mapping):
        out: dict[str, JSONValue] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise ValueError(f"{path}: object keys must be strings")
            out[key] = _as_json_value(item, f"{path}.{key}", depth=depth + 1)
        return out
    raise ValueError(f"{path}: value is not JSON-serializable ({type(value).__name__})")


__all__ = ["EventType", "JSONValue", "WorkflowEvent", "as_json_object"]
