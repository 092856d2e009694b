"""Tests for task/goal extraction, upgrades and conversation extraction."""

from datetime import datetime, timezone

import pytest

from fakes import (
    CONVERSATION_PROMPT,
    GOAL_PROMPT,
    REPAIR_PROMPT,
    TASK_PROMPT,
    UPGRADE_PROMPT,
    as_json,
    repaired,
)
from questlog.config import PipelineConfig
from questlog.errors import OracleRateLimited
from questlog.extractor import SuggestionExtractor
from questlog.telemetry import DiscardReason
from questlog.types import (
    ContentUnit,
    Priority,
    RelevanceContext,
    RelevanceResult,
    SourceKind,
    TaskSuggestion,
)


@pytest.fixture
def extractor(oracle, tracker):
    return SuggestionExtractor(oracle, config=PipelineConfig(), tracker=tracker)


@pytest.fixture
def piano() -> ContentUnit:
    return ContentUnit(
        text="Thinking about maybe eventually learning piano",
        source_kind=SourceKind.CHAT,
        user_id="user-1",
        created_at=datetime(2025, 3, 14, 18, 0, tzinfo=timezone.utc),
        id="content-piano",
    )


def _task(**overrides):
    base = {
        "actionable": True,
        "title": "Call the dentist",
        "description": "Book a cleaning",
        "scheduled_for": "2025-03-15",
        "deadline": "null",
        "location": None,
        "priority": "High",
        "tags": ["Health", "#calls"],
        "parent_goal_id": None,
    }
    base.update(overrides)
    return as_json(base)


def _pending_task(**overrides) -> TaskSuggestion:
    fields = {
        "id": "task-original",
        "source_content_id": "content-1",
        "title": "Practice scales",
        "description": "Ten minutes a day",
        "scheduled_for": "2025-03-15",
        "deadline": "2025-04-01",
        "priority": Priority.HIGH,
        "tags": ("music",),
    }
    fields.update(overrides)
    return TaskSuggestion(**fields)


class TestExtractTask:
    @pytest.mark.asyncio
    async def test_builds_suggestion_with_defaults(self, extractor, oracle, content):
        oracle.route(TASK_PROMPT, _task())

        task = await extractor.extract_task(content)

        assert task.id.startswith("task-")
        assert task.source_content_id == "content-1"
        assert task.title == "Call the dentist"
        assert task.deadline is None
        assert task.priority == Priority.HIGH
        assert task.tags == ("health", "calls")
        assert task.source_kind == SourceKind.JOURNAL
        assert oracle.calls[0]["structured"] is True

    @pytest.mark.asyncio
    async def test_missing_date_and_priority_fall_back(self, extractor, oracle, content):
        oracle.route(TASK_PROMPT, _task(scheduled_for="someday", priority=None))

        task = await extractor.extract_task(content)

        assert task.scheduled_for == "2025-03-14"
        assert task.priority == Priority.MEDIUM

    @pytest.mark.asyncio
    async def test_not_actionable_returns_none(self, extractor, oracle, tracker, content):
        oracle.route(TASK_PROMPT, as_json({"actionable": False}))

        assert await extractor.extract_task(content) is None
        assert tracker.counts() == {DiscardReason.NOT_ACTIONABLE.value: 1}

    @pytest.mark.asyncio
    async def test_oracle_error_returns_none(self, extractor, oracle, tracker, content):
        oracle.route(TASK_PROMPT, OracleRateLimited("429", retry_after=3))

        assert await extractor.extract_task(content) is None
        assert tracker.counts() == {DiscardReason.ORACLE_ERROR.value: 1}

    @pytest.mark.asyncio
    async def test_parent_goal_kept_only_when_relevant(self, extractor, oracle, content, website_goal):
        context = RelevanceContext(
            results=(RelevanceResult(goal_id=1, is_relevant=True, explanation="login page"),),
            goals=(website_goal,),
        )
        oracle.route(TASK_PROMPT, _task(parent_goal_id=1), _task(parent_goal_id=4))

        kept = await extractor.extract_task(content, context)
        dropped = await extractor.extract_task(content, context)

        assert kept.parent_goal_id == 1
        assert dropped.parent_goal_id is None
        assert "Goal ID 1: Launch personal website" in oracle.calls[0]["prompt"]

    @pytest.mark.asyncio
    async def test_template_shaped_parent_goal_needs_no_repair(self, extractor, oracle, content, website_goal):
        context = RelevanceContext(
            results=(RelevanceResult(goal_id=1, is_relevant=True, explanation="login page"),),
            goals=(website_goal,),
        )
        oracle.route(TASK_PROMPT, _task(title="Fix login bug", parent_goal_id=1))

        task = await extractor.extract_task(content, context)

        assert task.parent_goal_id == 1
        assert oracle.calls_matching(REPAIR_PROMPT) == []
        assert '"parent_goal_id": id number of' in oracle.calls[0]["prompt"]

    @pytest.mark.asyncio
    async def test_parent_goal_dropped_without_context(self, extractor, oracle, content):
        oracle.route(TASK_PROMPT, _task(parent_goal_id=1))

        task = await extractor.extract_task(content)

        assert task.parent_goal_id is None

    @pytest.mark.asyncio
    async def test_repaired_output_used(self, extractor, oracle, content):
        oracle.route(TASK_PROMPT, "title: Call the dentist")
        oracle.route(REPAIR_PROMPT, repaired({"actionable": True, "title": "Call the dentist"}))

        task = await extractor.extract_task(content)

        assert task.title == "Call the dentist"
        assert task.description == ""


class TestExtractGoal:
    @pytest.mark.asyncio
    async def test_goal_with_related_tasks(self, extractor, oracle, piano):
        """Extraction is not gated on relevance."""
        oracle.route(
            GOAL_PROMPT,
            as_json(
                {
                    "actionable": True,
                    "title": "Learn Piano",
                    "tagline": "Play a simple piece by summer",
                    "description": "Build a steady practice habit",
                    "start_date": "null",
                    "end_date": "2025-06-30",
                    "related_tasks": [
                        {"title": "Find a teacher", "description": "", "scheduled_for": "2025-03-20"},
                        {"title": "Buy a keyboard", "description": "88 keys"},
                    ],
                }
            ),
        )

        goal = await extractor.extract_goal(piano, RelevanceContext())

        assert goal.id.startswith("goal-")
        assert goal.title == "Learn Piano"
        assert goal.start_date is None
        assert goal.end_date == "2025-06-30"
        titles = [t.title for t in goal.related_task_suggestions]
        assert titles == ["Find a teacher", "Buy a keyboard"]
        assert goal.related_task_suggestions[0].scheduled_for == "2025-03-20"
        assert goal.related_task_suggestions[1].scheduled_for == "2025-03-14"
        assert all(t.source_content_id == "content-piano" for t in goal.related_task_suggestions)

    @pytest.mark.asyncio
    async def test_not_actionable(self, extractor, oracle, piano):
        oracle.route(GOAL_PROMPT, as_json({"actionable": False, "title": None}))

        assert await extractor.extract_goal(piano) is None

    @pytest.mark.asyncio
    async def test_actionable_without_title_is_invalid(self, extractor, oracle, piano):
        oracle.route(GOAL_PROMPT, as_json({"actionable": True, "title": "null"}))
        oracle.route(REPAIR_PROMPT, repaired(None))

        assert await extractor.extract_goal(piano) is None


class TestUpgrade:
    @pytest.mark.asyncio
    async def test_original_task_first_and_extras_inherit(self, extractor, oracle):
        task = _pending_task()
        oracle.route(
            UPGRADE_PROMPT,
            as_json(
                {
                    "title": "Learn Piano",
                    "tagline": "From scales to songs",
                    "description": "A structured practice plan",
                    "start_date": None,
                    "end_date": None,
                    "additional_tasks": [
                        {"title": "Practice scales.", "description": "repeat of the original"},
                        {"title": "Learn Für Elise", "description": ""},
                        {"title": "Book a lesson", "description": ""},
                        {"title": "Record a performance", "description": ""},
                        {"title": "Join a recital", "description": ""},
                    ],
                }
            ),
        )

        goal = await extractor.upgrade_task_to_goal(task)

        related = goal.related_task_suggestions
        assert related[0] is task
        assert [t.title for t in related[1:]] == ["Learn Für Elise", "Book a lesson", "Record a performance"]
        assert all(t.priority == Priority.HIGH and t.tags == ("music",) for t in related[1:])
        assert goal.start_date == "2025-03-15"
        assert goal.end_date == "2025-04-01"
        assert "Add 1 to 3 additional tasks" in oracle.calls[0]["prompt"]

    @pytest.mark.asyncio
    async def test_cap_follows_config(self, oracle, tracker):
        extractor = SuggestionExtractor(oracle, config=PipelineConfig(max_extra_subtasks=1), tracker=tracker)
        oracle.route(
            UPGRADE_PROMPT,
            as_json(
                {
                    "title": "Learn Piano",
                    "additional_tasks": [{"title": "Book a lesson"}, {"title": "Buy sheet music"}],
                }
            ),
        )

        goal = await extractor.upgrade_task_to_goal(_pending_task())

        assert len(goal.related_task_suggestions) == 2

    @pytest.mark.asyncio
    async def test_only_duplicates_of_original_fails(self, extractor, oracle, tracker):
        oracle.route(
            UPGRADE_PROMPT,
            as_json({"title": "Learn Piano", "additional_tasks": [{"title": "practice scales"}]}),
        )

        assert await extractor.upgrade_task_to_goal(_pending_task()) is None
        assert tracker.counts() == {DiscardReason.VALIDATION_FAILED.value: 1}

    @pytest.mark.asyncio
    async def test_no_additional_tasks_is_invalid(self, extractor, oracle):
        oracle.route(UPGRADE_PROMPT, as_json({"title": "Learn Piano", "additional_tasks": []}))
        oracle.route(REPAIR_PROMPT, repaired(None))

        assert await extractor.upgrade_task_to_goal(_pending_task()) is None


class TestConversation:
    @pytest.mark.asyncio
    async def test_each_listed_task_extracted(self, extractor, oracle, content):
        messages = [
            {"role": "user", "content": "I need to renew my passport before May"},
            {"role": "assistant", "content": "Want me to remind you?"},
            {"role": "user", "content": "Yes, and I'll email the landlord tomorrow"},
        ]
        oracle.route(
            CONVERSATION_PROMPT,
            as_json(
                {
                    "tasks": [
                        {"content": "Renew passport", "related_messages": ["before May"], "confidence": 0.9},
                        {"content": "Email the landlord", "timing": "immediate", "confidence": 0.8},
                    ]
                }
            ),
        )
        oracle.route(
            TASK_PROMPT,
            _task(title="Renew passport"),
            as_json({"actionable": False}),
        )

        tasks = await extractor.extract_tasks_from_conversation(messages, content)

        assert [t.title for t in tasks] == ["Renew passport"]
        assert "USER: I need to renew my passport" in oracle.calls[0]["prompt"]
        assert len(oracle.calls_matching(TASK_PROMPT)) == 2

    @pytest.mark.asyncio
    async def test_empty_conversation(self, extractor, oracle, content):
        assert await extractor.extract_tasks_from_conversation([], content) == []
        assert oracle.calls == []
