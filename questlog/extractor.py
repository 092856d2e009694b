"""
Suggestion extraction: turns content into task and goal suggestions.

Each operation builds a prompt for a fixed JSON shape, makes one
structured oracle call and validates the answer through the schema
validator. Field defaulting happens here: dates become ISO dates or are
dropped, priority defaults to medium, tags are normalized.
"""

from __future__ import annotations

import logging
from typing import Optional

from .config import PipelineConfig
from .errors import OracleError
from .normalize import content_key, normalize_date
from .oracle import TextOracle
from .schemas import (
    ConversationTasksPayload,
    GoalPayload,
    RelatedTaskPayload,
    TaskPayload,
    UpgradePayload,
)
from .telemetry import DiscardReason, DiscardTracker
from .types import (
    ContentUnit,
    GoalSuggestion,
    Priority,
    RelevanceContext,
    SourceKind,
    TaskSuggestion,
    new_suggestion_id,
)
from .validator import SchemaValidator

logger = logging.getLogger(__name__)


def _context_block(context: Optional[RelevanceContext]) -> str:
    if context is None:
        return ""
    described = context.describe()
    if not described:
        return ""
    return f"\nExisting goals this content relates to:\n{described}\n"


def build_task_prompt(content: ContentUnit, context: Optional[RelevanceContext]) -> str:
    today = content.created_at.date().isoformat()
    return f"""Create a task based on this {content.source_kind.value} content.
Only create a task if the user states a concrete, actionable commitment or need.

Today's date: {today}
Content: "{content.text}"
{_context_block(context)}
Generate a JSON object with these EXACT fields:
{{
  "actionable": true if the content contains an actionable task, otherwise false,
  "title": "Brief task title",
  "description": "Detailed description incorporating context",
  "scheduled_for": "YYYY-MM-DD format date when task should start",
  "deadline": "YYYY-MM-DD format deadline if mentioned, otherwise null",
  "location": "Location if mentioned, otherwise null",
  "priority": "high, medium, or low based on urgency/importance",
  "tags": ["relevant", "keyword", "tags"],
  "parent_goal_id": id number of the existing goal this task belongs to, or null
}}"""


def build_goal_prompt(content: ContentUnit, context: Optional[RelevanceContext]) -> str:
    today = content.created_at.date().isoformat()
    return f"""Decide whether this {content.source_kind.value} content describes a new long-running goal
(a larger objective that needs several tasks), and if so describe it.
Do not propose a goal that duplicates one of the existing goals listed below.

Today's date: {today}
Content: "{content.text}"
{_context_block(context)}
Generate a JSON object with these EXACT fields:
{{
  "actionable": true if the content describes a new goal, otherwise false,
  "title": "Goal title",
  "tagline": "Short, one-line description of the goal",
  "description": "Detailed description of the overall objective",
  "start_date": "YYYY-MM-DD or null",
  "end_date": "YYYY-MM-DD or null",
  "related_tasks": [
    {{
      "title": "Task that would help complete this goal",
      "description": "Description of the task",
      "scheduled_for": "YYYY-MM-DD"
    }}
  ]
}}"""


def build_upgrade_prompt(task: TaskSuggestion, max_extra: int) -> str:
    lines = [
        f"Task Title: {task.title}",
        f"Task Description: {task.description}",
        f"Scheduled For: {task.scheduled_for}",
    ]
    if task.deadline:
        lines.append(f"Deadline: {task.deadline}")
    if task.location:
        lines.append(f"Location: {task.location}")
    lines.append(f"Priority: {task.priority.value}")
    if task.tags:
        lines.append(f"Tags: {', '.join(task.tags)}")
    details = "\n".join(lines)

    return f"""Upgrade this task to a goal (a larger objective that might require multiple tasks):

{details}

Generate a JSON object with these EXACT fields:
{{
  "title": "Goal title - can be based on the original task or expanded",
  "tagline": "Short, one-line description of the goal",
  "description": "Detailed description of the overall objective",
  "start_date": "YYYY-MM-DD - use the original task's scheduled date",
  "end_date": "YYYY-MM-DD - use the original task's deadline or a reasonable date",
  "additional_tasks": [
    {{
      "title": "Another task that would help complete this goal",
      "description": "Description of the task",
      "scheduled_for": "YYYY-MM-DD"
    }}
  ]
}}

IMPORTANT:
- Do NOT repeat the original task in additional_tasks
- Add 1 to {max_extra} additional tasks that would help achieve this goal
- Make the goal a meaningful expansion of the original task
- Set reasonable dates based on the original task"""


def build_conversation_prompt(messages: list[dict]) -> str:
    transcript = "\n".join(
        f"{str(msg.get('role', 'user')).upper()}: {msg.get('content', '')}" for msg in messages
    )
    return f"""Analyze this conversation for specific, actionable tasks that the user needs to complete.
Look ONLY for:
1. Direct user commitments with clear actions ("I will do X", "I need to do Y")
2. User agreeing to concrete suggestions ("Yes, I'll try that")
3. Tasks with explicit actions or deadlines

IGNORE vague intentions without specific actions.

Conversation:
{transcript}

Return your findings in this exact JSON format:
{{
  "tasks": [
    {{
      "content": "The specific action to be taken",
      "source_message": "The original message with the task",
      "related_messages": ["Message with timing info"],
      "confidence": 0.8,
      "timing": "immediate or short-term"
    }}
  ]
}}"""


class SuggestionExtractor:
    """
    Produces task and goal suggestions from content.

    Attributes:
        oracle: Text oracle used for extraction.
        validator: Schema validator (shares the oracle for repairs).
        config: Pipeline configuration.
        tracker: Discard tracker.
    """

    def __init__(
        self,
        oracle: TextOracle,
        validator: Optional[SchemaValidator] = None,
        config: Optional[PipelineConfig] = None,
        tracker: Optional[DiscardTracker] = None,
    ):
        self.oracle = oracle
        self.tracker = tracker or DiscardTracker()
        self.validator = validator or SchemaValidator(oracle, self.tracker)
        self.config = config or PipelineConfig()

    async def _call(self, prompt: str, max_output_tokens: int, label: str) -> Optional[str]:
        try:
            return await self.oracle.generate(
                prompt, structured=True, max_output_tokens=max_output_tokens, temperature=0.3
            )
        except OracleError as e:
            self.tracker.record(DiscardReason.ORACLE_ERROR, "extractor", f"{label}: {e}")
            return None

    @staticmethod
    def _related_task(
        payload: RelatedTaskPayload,
        *,
        source_content_id: str,
        source_kind: SourceKind,
        default_date: str,
        priority: Priority = Priority.MEDIUM,
        tags: tuple[str, ...] = (),
    ) -> TaskSuggestion:
        return TaskSuggestion(
            id=new_suggestion_id("task"),
            source_content_id=source_content_id,
            title=payload.title.strip(),
            description=payload.description.strip(),
            scheduled_for=normalize_date(payload.scheduled_for) or default_date,
            priority=priority,
            tags=tags,
            source_kind=source_kind,
        )

    async def extract_task(
        self,
        content: ContentUnit,
        context: Optional[RelevanceContext] = None,
    ) -> Optional[TaskSuggestion]:
        """
        Extract a task suggestion from content.

        Args:
            content: The content unit to analyze.
            context: Optional relevance results; a suggested parent goal is
                only kept if it is one of the relevant goals.

        Returns:
            TaskSuggestion, or None if nothing actionable was found.
        """
        raw = await self._call(build_task_prompt(content, context), 1000, "task")
        if raw is None:
            return None

        record = await self.validator.validate(raw, TaskPayload)
        if record is None:
            return None
        if not record.actionable:
            self.tracker.record(DiscardReason.NOT_ACTIONABLE, "extractor", f"task for content {content.id}")
            return None

        today = content.created_at.date().isoformat()
        parent_goal_id = record.parent_goal_id
        if parent_goal_id is not None:
            allowed = {g.id for g in context.relevant_goals()} if context else set()
            if parent_goal_id not in allowed:
                logger.debug(f"Dropping parent_goal_id={parent_goal_id}: not a relevant goal")
                parent_goal_id = None

        suggestion = TaskSuggestion(
            id=new_suggestion_id("task"),
            source_content_id=content.id,
            title=record.title.strip(),
            description=record.description.strip(),
            scheduled_for=normalize_date(record.scheduled_for) or today,
            deadline=normalize_date(record.deadline),
            location=record.location.strip() if record.location else None,
            priority=Priority(record.priority) if record.priority else Priority.MEDIUM,
            tags=record.tags,
            parent_goal_id=parent_goal_id,
            source_kind=content.source_kind,
        )
        logger.info(f"Generated task suggestion: {suggestion.title}")
        return suggestion

    async def extract_goal(
        self,
        content: ContentUnit,
        context: Optional[RelevanceContext] = None,
    ) -> Optional[GoalSuggestion]:
        """Extract a goal suggestion (with related tasks) from content."""
        raw = await self._call(build_goal_prompt(content, context), 1500, "goal")
        if raw is None:
            return None

        record = await self.validator.validate(raw, GoalPayload)
        if record is None:
            return None
        if not record.actionable:
            self.tracker.record(DiscardReason.NOT_ACTIONABLE, "extractor", f"goal for content {content.id}")
            return None

        start_date = normalize_date(record.start_date)
        default_date = start_date or content.created_at.date().isoformat()
        related = tuple(
            self._related_task(
                item,
                source_content_id=content.id,
                source_kind=content.source_kind,
                default_date=default_date,
            )
            for item in record.related_tasks
        )

        suggestion = GoalSuggestion(
            id=new_suggestion_id("goal"),
            source_content_id=content.id,
            title=record.title.strip(),
            tagline=record.tagline.strip(),
            description=record.description.strip(),
            start_date=start_date,
            end_date=normalize_date(record.end_date),
            related_task_suggestions=related,
            source_kind=content.source_kind,
        )
        logger.info(f"Generated goal suggestion: {suggestion.title} ({len(related)} related task(s))")
        return suggestion

    async def upgrade_task_to_goal(self, task: TaskSuggestion) -> Optional[GoalSuggestion]:
        """
        Expand a task suggestion into a goal suggestion.

        The original task is the first related task, unchanged. Between one
        and ``max_extra_subtasks`` generated tasks follow it, inheriting its
        priority and tags.
        """
        logger.info(f"Upgrading task to goal: {task.title}")
        max_extra = self.config.max_extra_subtasks
        raw = await self._call(build_upgrade_prompt(task, max_extra), 1500, "upgrade")
        if raw is None:
            return None

        record = await self.validator.validate(raw, UpgradePayload)
        if record is None:
            return None

        original_key = content_key(task.title)
        extras: list[TaskSuggestion] = []
        seen = {original_key}
        for item in record.additional_tasks:
            key = content_key(item.title)
            if key in seen:
                continue
            seen.add(key)
            extras.append(
                self._related_task(
                    item,
                    source_content_id=task.source_content_id,
                    source_kind=task.source_kind,
                    default_date=task.scheduled_for,
                    priority=task.priority,
                    tags=task.tags,
                )
            )
            if len(extras) == max_extra:
                break

        if not extras:
            self.tracker.record(
                DiscardReason.VALIDATION_FAILED, "extractor", f"upgrade of {task.id} produced no new tasks"
            )
            return None

        return GoalSuggestion(
            id=new_suggestion_id("goal"),
            source_content_id=task.source_content_id,
            title=record.title.strip(),
            tagline=record.tagline.strip(),
            description=record.description.strip(),
            start_date=normalize_date(record.start_date) or task.scheduled_for,
            end_date=normalize_date(record.end_date) or task.deadline,
            related_task_suggestions=(task, *extras),
            source_kind=task.source_kind,
        )

    async def extract_tasks_from_conversation(
        self,
        messages: list[dict],
        content: ContentUnit,
    ) -> list[TaskSuggestion]:
        """
        Extract every committed task from a multi-message conversation.

        Args:
            messages: Chat messages as ``{"role": ..., "content": ...}`` dicts.
            content: Content unit the suggestions are attributed to.

        Returns:
            Task suggestions, possibly empty.
        """
        if not messages:
            return []
        raw = await self._call(build_conversation_prompt(messages), 2000, "conversation")
        if raw is None:
            return []

        record = await self.validator.validate(raw, ConversationTasksPayload)
        if record is None:
            return []
        logger.info(f"Found {len(record.tasks)} potential task(s) in conversation")

        suggestions: list[TaskSuggestion] = []
        for item in record.tasks:
            related = "\n".join(item.related_messages)
            text = item.content if not related else f"{item.content}\n{related}"
            unit = ContentUnit(
                text=text,
                source_kind=content.source_kind,
                user_id=content.user_id,
                created_at=content.created_at,
                id=content.id,
            )
            suggestion = await self.extract_task(unit)
            if suggestion is not None:
                suggestions.append(suggestion)
        return suggestions
