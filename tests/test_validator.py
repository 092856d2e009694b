"""Tests for schema validation with a single repair round-trip."""

import pytest

from questlog.errors import OracleTimeout
from questlog.schemas import RelevancePayload, StatusChangePayload, TaskPayload
from questlog.telemetry import DiscardReason
from questlog.validator import (
    SchemaValidator,
    clean_response_text,
    extract_between_markers,
)

from fakes import REPAIR_PROMPT, as_json, repaired


RELEVANCE = {
    "goal_id": 3,
    "is_relevant": True,
    "explanation": "mentions the marathon",
    "relevant_sub_goals": [
        {"sub_goal_id": 11, "name": "Run 10k", "description": "", "explanation": "training run"}
    ],
}


class TestResponseCleaning:
    def test_strips_code_fence(self):
        text = 'Here you go:\n```json\n{"a": 1}\n```\nanything else?'
        assert clean_response_text(text) == '{"a": 1}'

    def test_slices_first_to_last_brace(self):
        assert clean_response_text('Sure! {"a": {"b": 2}} Thanks') == '{"a": {"b": 2}}'

    def test_markers(self):
        assert extract_between_markers("noise START JSON\n{}\nEND JSON tail") == "{}"
        assert extract_between_markers("START JSON {} no end") is None
        assert extract_between_markers("{}") is None


class TestDirectParse:
    @pytest.mark.asyncio
    async def test_valid_json_makes_no_oracle_call(self, oracle, tracker):
        validator = SchemaValidator(oracle, tracker)

        record = await validator.validate(as_json(RELEVANCE), RelevancePayload)

        assert record is not None
        assert record.goal_id == 3
        assert record.relevant_sub_goals[0].sub_goal_id == 11
        assert oracle.calls == []
        assert tracker.total() == 0

    @pytest.mark.asyncio
    async def test_fenced_json_parses_directly(self, oracle):
        validator = SchemaValidator(oracle)
        raw = f"```json\n{as_json(RELEVANCE)}\n```"

        record = await validator.validate(raw, RelevancePayload)

        assert record is not None
        assert oracle.calls == []

    @pytest.mark.asyncio
    async def test_null_sentinels_become_none(self, oracle):
        validator = SchemaValidator(oracle)
        raw = as_json(
            {
                "actionable": True,
                "title": "Call dentist",
                "deadline": "null",
                "location": "undefined",
                "priority": "URGENT",
                "tags": ["#Health", "health", " Calls "],
                "parent_goal_id": "null",
            }
        )

        record = await validator.validate(raw, TaskPayload)

        assert record.deadline is None
        assert record.location is None
        assert record.parent_goal_id is None
        assert record.priority is None
        assert record.tags == ("health", "calls")


class TestRepair:
    @pytest.mark.asyncio
    async def test_malformed_json_repaired_once(self, oracle, tracker):
        oracle.route(REPAIR_PROMPT, repaired(RELEVANCE))
        validator = SchemaValidator(oracle, tracker)

        record = await validator.validate('{"goal_id": 3, "is_relevant": true,', RelevancePayload)

        assert record is not None
        assert record.is_relevant is True
        assert len(oracle.calls) == 1
        assert oracle.calls[0]["temperature"] == 0.0
        assert oracle.calls[0]["structured"] is False

    @pytest.mark.asyncio
    async def test_repair_failure_returns_none_after_one_call(self, oracle, tracker):
        oracle.route(REPAIR_PROMPT, "START JSON\n{still broken\nEND JSON")
        validator = SchemaValidator(oracle, tracker)

        record = await validator.validate("not json at all", RelevancePayload)

        assert record is None
        assert len(oracle.calls) == 1
        assert tracker.counts() == {DiscardReason.VALIDATION_FAILED.value: 1}

    @pytest.mark.asyncio
    async def test_repair_null_returns_none(self, oracle, tracker):
        oracle.route(REPAIR_PROMPT, repaired(None))
        validator = SchemaValidator(oracle, tracker)

        assert await validator.validate("garbage", RelevancePayload) is None
        assert len(oracle.calls) == 1

    @pytest.mark.asyncio
    async def test_repair_without_markers_returns_none(self, oracle, tracker):
        oracle.route(REPAIR_PROMPT, as_json(RELEVANCE))
        validator = SchemaValidator(oracle, tracker)

        assert await validator.validate("garbage", RelevancePayload) is None

    @pytest.mark.asyncio
    async def test_repair_timeout_returns_none(self, oracle, tracker):
        """A timeout on the repair call is a validation failure, not an error."""
        oracle.route(REPAIR_PROMPT, OracleTimeout("timed out"))
        validator = SchemaValidator(oracle, tracker)

        record = await validator.validate("{broken", StatusChangePayload)

        assert record is None
        assert tracker.counts() == {DiscardReason.REPAIR_UNAVAILABLE.value: 1}

    @pytest.mark.asyncio
    async def test_wrong_types_trigger_repair(self, oracle):
        """String ids are not silently coerced."""
        oracle.route(REPAIR_PROMPT, repaired(None))
        validator = SchemaValidator(oracle)
        raw = as_json({**RELEVANCE, "goal_id": "3"})

        assert await validator.validate(raw, RelevancePayload) is None
        assert len(oracle.calls) == 1

    @pytest.mark.asyncio
    async def test_hint_included_in_repair_prompt(self, oracle):
        oracle.route(REPAIR_PROMPT, repaired(RELEVANCE))
        validator = SchemaValidator(oracle)

        await validator.validate("{", RelevancePayload, hint="goal_id must be 3")

        assert "goal_id must be 3" in oracle.calls[0]["prompt"]
