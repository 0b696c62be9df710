"""Unit tests for the oracle result contract and its text parsers."""

from __future__ import annotations

import asyncio

import pytest

from issue_autopilot.domain.models import Category, EditKind
from issue_autopilot.synthesis_plane.oracle import (
    Oracle,
    OracleCallError,
    OracleOk,
    OracleParseError,
    call_oracle,
    describe_failure,
    parse_category,
    parse_change_set,
    parse_requirements,
)
from issue_autopilot.synthesis_plane.replay_oracle import RecordedOracle
from issue_autopilot.utils.concurrency import CancellationToken


async def _returning(value: object) -> object:
    return value


async def _raising(exc: Exception) -> object:
    raise exc


async def _sleeping(seconds: float) -> object:
    await asyncio.sleep(seconds)
    return OracleOk("late")


class TestParseChangeSet:
    def test_json_embedded_in_prose(self) -> None:
        text = (
            "Here is the fix:\n"
            '{"changes": [{"path": "./src/a.py", "edits": [{"kind": "add", "content": "x = 1\\n"}]}],'
            ' "summary": "add constant"}\n'
            "Let me know if it works."
        )

        result = parse_change_set(text)

        assert isinstance(result, OracleOk)
        assert result.value.paths == ("src/a.py",)
        assert result.value.summary == "add constant"
        assert result.value.changes[0].edits[0].kind is EditKind.ADD

    def test_files_layout(self) -> None:
        text = (
            '{"files": [{"path": "src/a.js", "changes": ['
            '{"type": "MODIFY", "content": "let a = 1;", "lineNumber": 3},'
            '{"type": "add", "content": "export { a };", "lineNumber": 0}]}],'
            ' "reasoning": "declare a"}'
        )

        result = parse_change_set(text)

        assert isinstance(result, OracleOk)
        edits = result.value.changes[0].edits
        assert [edit.kind for edit in edits] == [EditKind.MODIFY, EditKind.ADD]
        assert [edit.line_hint for edit in edits] == [3, None]
        assert result.value.summary == "declare a"

    @pytest.mark.parametrize(
        ("text", "detail"),
        [
            ("no braces here", "no JSON object found in oracle output"),
            ("[1, 2]", "no JSON object found in oracle output"),
            ("{not json}", "invalid JSON"),
        ],
    )
    def test_unparseable_text(self, text: str, detail: str) -> None:
        result = parse_change_set(text)

        assert isinstance(result, OracleParseError)
        assert result.detail.startswith(detail)

    def test_invalid_paths_and_kinds_are_parse_errors(self) -> None:
        escaping = '{"changes": [{"path": "../etc/passwd", "edits": []}]}'
        bad_kind = '{"files": [{"path": "a.py", "changes": [{"type": "rename"}]}]}'

        escaped = parse_change_set(escaping)
        renamed = parse_change_set(bad_kind)

        assert isinstance(escaped, OracleParseError)
        assert "must not traverse upwards" in escaped.detail
        assert escaped.raw == escaping
        assert isinstance(renamed, OracleParseError)


class TestParseCategory:
    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("Defect", Category.DEFECT),
            ("`bug`.", Category.DEFECT),
            ("improvement", Category.ENHANCEMENT),
            ('{"category": "docs"}', Category.DOCUMENTATION),
            ("chore\n", Category.MAINTENANCE),
        ],
    )
    def test_known_words(self, text: str, expected: Category) -> None:
        assert parse_category(text) == OracleOk(expected)

    def test_unknown_word(self) -> None:
        result = parse_category("banana")

        assert isinstance(result, OracleParseError)
        assert result.detail == "unrecognized category 'banana'"

    def test_non_string_category_field(self) -> None:
        result = parse_category('{"category": 3}')

        assert isinstance(result, OracleParseError)
        assert result.detail == "category field missing or not a string"


class TestParseRequirements:
    def test_both_spellings_of_acceptance_criteria(self) -> None:
        result = parse_requirements(
            '{"requirements": ["a", " ", "b "], "acceptanceCriteria": ["c"]}'
        )

        assert isinstance(result, OracleOk)
        assert result.value.requirements == ("a", "b")
        assert result.value.acceptance_criteria == ("c",)

    @pytest.mark.parametrize(
        ("text", "detail"),
        [
            ('{"requirements": "a"}', "requirements: expected array of strings"),
            ('{"requirements": [1]}', "requirements[0]: expected string"),
            ('{"acceptance_criteria": [null]}', "acceptance_criteria[0]: expected string"),
        ],
    )
    def test_malformed_lists(self, text: str, detail: str) -> None:
        result = parse_requirements(text)

        assert isinstance(result, OracleParseError)
        assert result.detail == detail


class TestCallOracle:
    async def test_passes_results_through(self) -> None:
        ok = OracleOk(Category.FEATURE)

        assert await call_oracle(_returning(ok), timeout_seconds=1.0) is ok

    async def test_timeout_is_a_retryable_call_error(self) -> None:
        result = await call_oracle(_sleeping(5.0), timeout_seconds=0.01)

        assert isinstance(result, OracleCallError)
        assert result.timed_out
        assert result.retryable
        assert result.detail == "oracle call timed out after 0.01s"

    async def test_adapter_crash_is_folded(self) -> None:
        result = await call_oracle(_raising(RuntimeError("boom\n  again")), timeout_seconds=1.0)

        assert result == OracleCallError(detail="RuntimeError: boom again")
        assert not result.timed_out

    async def test_long_details_are_truncated(self) -> None:
        result = await call_oracle(_raising(RuntimeError("x" * 900)), timeout_seconds=1.0)

        assert isinstance(result, OracleCallError)
        assert len(result.detail) == 500
        assert result.detail.endswith("...")

    async def test_non_result_values_are_parse_errors(self) -> None:
        result = await call_oracle(_returning("plain text"), timeout_seconds=1.0)

        assert result == OracleParseError(detail="adapter returned str, not a result")

    async def test_cancellation_propagates(self) -> None:
        token = CancellationToken()
        token.cancel("operator stop")

        with pytest.raises(asyncio.CancelledError):
            await call_oracle(_sleeping(5.0), timeout_seconds=1.0, cancel_token=token)


def test_describe_failure() -> None:
    assert (
        describe_failure("generate", OracleCallError(detail="down", code="unavailable"))
        == "oracle generate failed (unavailable): down"
    )
    assert (
        describe_failure("refine", OracleParseError(detail="no JSON"))
        == "oracle refine returned unparseable output: no JSON"
    )


def test_recorded_oracle_satisfies_protocol() -> None:
    assert isinstance(RecordedOracle(), Oracle)
