"""Recorded-replay oracle: answers oracle calls from a YAML transcript.

Transcript layout::

    default:
      classify: defect
      extract_requirements:
        requirements: ["Handle empty input"]
      generate:
        - changes: [{path: src/fix.py, edits: [{kind: add, content: "..."}]}]
      refine: []
    items:
      "42":
        generate:
          - error: upstream unavailable
            code: unavailable
            retryable: true

Each operation holds one response or a list consumed in order; the last entry
repeats once the list is exhausted. A response is structured data, raw text
(run through the text parsers) or an ``error`` mapping.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Final

import yaml

from issue_autopilot.domain.models import Category, ChangeSet
from issue_autopilot.synthesis_plane.oracle import (
    OracleCallError,
    OracleContext,
    OracleFeedback,
    OracleParseError,
    OracleResult,
    RequirementSet,
    parse_category,
    parse_change_set,
    parse_requirements,
)

OPERATIONS: Final[tuple[str, ...]] = ("classify", "extract_requirements", "generate", "refine")


class TranscriptError(ValueError):
    """Raised when a replay transcript is malformed."""


@dataclass(frozen=True, slots=True)
class RecordedCall:
    operation: str
    work_item_id: str
    iteration: int | None = None


@dataclass(slots=True)
class RecordedOracle:
    default: Mapping[str, Any] = field(default_factory=dict)
    items: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)
    calls: list[RecordedCall] = field(default_factory=list)
    _cursors: dict[tuple[str, str], int] = field(default_factory=dict)

    def __post_init__(self) -> None:
        _check_section(self.default, "default")
        for item_id, section in self.items.items():
            _check_section(section, f"items.{item_id}")

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> RecordedOracle:
        if not isinstance(payload, Mapping):
            raise TranscriptError("transcript: expected a mapping at top level")
        unknown = sorted(set(payload) - {"default", "items"})
        if unknown:
            raise TranscriptError(f"transcript: unexpected keys {unknown}")
        items = payload.get("items") or {}
        if not isinstance(items, Mapping):
            raise TranscriptError("transcript.items: expected a mapping")
        return cls(
            default=payload.get("default") or {},
            items={str(key): value or {} for key, value in items.items()},
        )

    @classmethod
    def from_file(cls, path: str | Path) -> RecordedOracle:
        text = Path(path).read_text(encoding="utf-8")
        try:
            payload = yaml.safe_load(text) if Path(path).suffix != ".json" else json.loads(text)
        except (yaml.YAMLError, json.JSONDecodeError) as exc:
            raise TranscriptError(f"{path}: cannot parse transcript: {exc}") from exc
        return cls.from_mapping(payload or {})

    def calls_for(self, operation: str) -> list[RecordedCall]:
        return [call for call in self.calls if call.operation == operation]

    async def generate(self, context: OracleContext) -> OracleResult[ChangeSet]:
        return self._answer("generate", context.work_item.id, _to_change_set)

    async def refine(self, previous: ChangeSet, feedback: OracleFeedback) -> OracleResult[ChangeSet]:
        return self._answer(
            "refine",
            feedback.context.work_item.id,
            _to_change_set,
            iteration=feedback.iteration,
        )

    async def classify(self, context: OracleContext) -> OracleResult[Category]:
        return self._answer("classify", context.work_item.id, _to_category)

    async def extract_requirements(self, context: OracleContext) -> OracleResult[RequirementSet]:
        return self._answer("extract_requirements", context.work_item.id, _to_requirements)

    def _answer(
        self,
        operation: str,
        work_item_id: str,
        convert: Callable[[object], OracleResult[Any]],
        *,
        iteration: int | None = None,
    ) -> OracleResult[Any]:
        self.calls.append(RecordedCall(operation, work_item_id, iteration))
        section = self.items.get(work_item_id, {})
        if operation not in section:
            section = self.default
        if operation not in section:
            return OracleCallError(
                detail=f"no recorded {operation} response for {work_item_id}",
                code="not_recorded",
            )

        responses = section[operation]
        if not isinstance(responses, list):
            responses = [responses]
        if not responses:
            return OracleCallError(
                detail=f"no recorded {operation} response for {work_item_id}",
                code="not_recorded",
            )
        key = (work_item_id, operation)
        cursor = self._cursors.get(key, 0)
        self._cursors[key] = cursor + 1
        response = responses[min(cursor, len(responses) - 1)]

        if isinstance(response, Mapping) and "error" in response:
            return OracleCallError(
                detail=str(response["error"]),
                code=str(response.get("code", "call_failed")),
                retryable=bool(response.get("retryable", False)),
            )
        return convert(response)


def _to_change_set(response: object) -> OracleResult[ChangeSet]:
    if isinstance(response, str):
        return parse_change_set(response)
    if isinstance(response, Mapping):
        return parse_change_set(json.dumps(response))
    return OracleParseError(detail=f"unsupported change set response {type(response).__name__}")


def _to_category(response: object) -> OracleResult[Category]:
    if isinstance(response, str):
        return parse_category(response)
    if isinstance(response, Mapping):
        return parse_category(json.dumps(response))
    return OracleParseError(detail=f"unsupported category response {type(response).__name__}")


def _to_requirements(response: object) -> OracleResult[RequirementSet]:
    if isinstance(response, str):
        return parse_requirements(response)
    if isinstance(response, Mapping):
        return parse_requirements(json.dumps(response))
    if isinstance(response, list):
        return parse_requirements(json.dumps({"requirements": response}))
    return OracleParseError(detail=f"unsupported requirements response {type(response).__name__}")


def _check_section(section: object, path: str) -> None:
    if not isinstance(section, Mapping):
        raise TranscriptError(f"transcript.{path}: expected a mapping")
    unknown = sorted(set(section) - set(OPERATIONS))
    if unknown:
        raise TranscriptError(f"transcript.{path}: unknown operations {unknown}")


__all__ = ["OPERATIONS", "RecordedCall", "RecordedOracle", "TranscriptError"]
