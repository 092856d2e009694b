"""
Relevance matching between a content unit and the user's goals.

Each goal is judged independently and concurrently. The unassigned bucket
has no theme of its own, so its sub-goals are judged one by one with a
narrower prompt. After collection, sub-goals that also matched under a
named goal are removed from the bucket's result.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Optional

from .config import PipelineConfig
from .errors import OracleError
from .oracle import TextOracle
from .schemas import RelevancePayload, SubGoalMovesPayload
from .telemetry import DiscardReason, DiscardTracker
from .types import (
    ContentUnit,
    GoalEntity,
    RelevanceResult,
    RelevantSubGoal,
)
from .validator import SchemaValidator

logger = logging.getLogger(__name__)


def _format_sub_goals(goal: GoalEntity) -> str:
    if not goal.sub_goals:
        return "No tasks"
    return "\n".join(
        f"- Task ID {sub.id}: {sub.title}: {sub.description or 'No description'}"
        for sub in goal.sub_goals
    )


def build_goal_prompt(content: ContentUnit, goal: GoalEntity) -> str:
    """Prompt judging one named goal against the content."""
    return f"""You are analyzing if a goal is relevant to a user's {content.source_kind.value} entry.
Consider these criteria:
1. Direct mentions of the goal title or related keywords
2. Strong connections to the goal description
3. Clear references to related activities
4. Current goal status
5. Specific mentions or implications related to individual tasks

Be STRICT - only mark relevant if there's a CLEAR connection, above 90% certainty.

Entry: "{content.text}"

Goal ID: {goal.id}
Title: {goal.title}
Description: {goal.description or 'No description yet'}
Status: {goal.status.value}
Tasks:
{_format_sub_goals(goal)}

Reply ONLY with a JSON object in this EXACT format:
{{
  "goal_id": {goal.id},
  "is_relevant": true or false,
  "explanation": "why the goal is relevant, or null if not",
  "relevant_sub_goals": [
    {{
      "sub_goal_id": number,
      "name": "task name",
      "description": "task description",
      "explanation": "clear explanation of direct relevance"
    }}
  ]
}}"""


def build_unassigned_prompt(content: ContentUnit, bucket: GoalEntity) -> str:
    """Prompt judging each unassigned sub-goal on its own, ignoring the bucket."""
    return f"""You are analyzing tasks from a miscellaneous collection to determine their relevance to a user's {content.source_kind.value} entry.
Consider ONLY the tasks individually - do NOT consider the collection's description or context.
Be VERY selective - only include tasks with clear, direct relevance to the entry.

Entry: "{content.text}"

Tasks to analyze:
{_format_sub_goals(bucket)}

Reply ONLY with a JSON object in this EXACT format:
{{
  "goal_id": {bucket.id},
  "is_relevant": true only if at least one task is relevant,
  "explanation": "tasks related to specific mentions, or null",
  "relevant_sub_goals": [
    {{
      "sub_goal_id": number,
      "name": "task name",
      "description": "task description",
      "explanation": "CLEAR explanation of the direct connection to the entry"
    }}
  ]
}}"""


def build_move_prompt(goal: GoalEntity, bucket: GoalEntity) -> str:
    """Prompt picking unassigned sub-goals that belong under a new goal."""
    return f"""You are analyzing tasks from a miscellaneous collection to see if they would be better suited for a newly created goal.
For each task, determine if it belongs in the new goal based on:
1. Direct relevance to the goal's title or description
2. Thematic alignment with the goal's purpose
3. Similar tags or keywords
4. Logical grouping with the goal's scope

New Goal:
Title: {goal.title}
Tagline: {goal.tagline or 'No tagline'}
Description: {goal.description or 'No description'}
Tags: {', '.join(goal.tags) or 'No tags'}

Tasks to analyze:
{_format_sub_goals(bucket)}

Reply ONLY with a JSON object in this EXACT format:
{{
  "sub_goals_to_move": [
    {{"sub_goal_id": number, "reason": "why this task fits the new goal"}}
  ]
}}

Be SELECTIVE - only include tasks with a CLEAR and STRONG connection to the new goal."""


def reassign_unassigned(results: list[RelevanceResult], unassigned_ids: set[int]) -> list[RelevanceResult]:
    """
    Drop unassigned-bucket sub-goals that also matched under a named goal.

    If that empties the bucket's relevant list, the bucket is marked not
    relevant.
    """
    claimed: set[int] = set()
    for result in results:
        if result.goal_id in unassigned_ids or not result.is_relevant:
            continue
        claimed.update(sub.sub_goal_id for sub in result.relevant_sub_goals)

    reassigned: list[RelevanceResult] = []
    for result in results:
        if result.goal_id not in unassigned_ids:
            reassigned.append(result)
            continue
        remaining = tuple(s for s in result.relevant_sub_goals if s.sub_goal_id not in claimed)
        if len(remaining) != len(result.relevant_sub_goals):
            logger.debug(
                f"Reassigned {len(result.relevant_sub_goals) - len(remaining)} unassigned "
                f"sub-goal(s) to named goals"
            )
        reassigned.append(
            replace(
                result,
                relevant_sub_goals=remaining,
                is_relevant=result.is_relevant and bool(remaining),
            )
        )
    return reassigned


class RelevanceMatcher:
    """
    Determines which goals and sub-goals a content unit refers to.

    Attributes:
        oracle: Text oracle for relevance judgments.
        validator: Schema validator (shares the oracle for repairs).
        config: Pipeline configuration (attempt budget).
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

    async def _judge(self, goal: GoalEntity, prompt: str) -> Optional[RelevancePayload]:
        """Run up to ``relevance_attempts`` full-prompt attempts for one goal."""
        for attempt in range(1, self.config.relevance_attempts + 1):
            try:
                raw = await self.oracle.generate(
                    prompt, structured=True, max_output_tokens=2000, temperature=0.3
                )
            except OracleError as e:
                self.tracker.record(
                    DiscardReason.ORACLE_ERROR, "relevance", f"goal={goal.id} attempt={attempt}: {e}"
                )
                continue

            record = await self.validator.validate(
                raw, RelevancePayload, hint=f"goal_id must be {goal.id}"
            )
            if record is None:
                logger.debug(f"Relevance attempt {attempt} for goal {goal.id} failed validation")
                continue
            if record.goal_id != goal.id:
                self.tracker.record(
                    DiscardReason.VALIDATION_FAILED,
                    "relevance",
                    f"goal={goal.id} answered for goal_id={record.goal_id}",
                )
                continue
            return record

        logger.info(f"Goal {goal.id} treated as not relevant after {self.config.relevance_attempts} attempt(s)")
        return None

    @staticmethod
    def _to_result(goal: GoalEntity, record: Optional[RelevancePayload]) -> RelevanceResult:
        if record is None:
            return RelevanceResult(goal_id=goal.id, is_relevant=False)

        sub_goals: list[RelevantSubGoal] = []
        seen: set[int] = set()
        for item in record.relevant_sub_goals:
            known = goal.find_sub_goal(item.sub_goal_id)
            if known is None or item.sub_goal_id in seen:
                continue
            seen.add(item.sub_goal_id)
            sub_goals.append(
                RelevantSubGoal(
                    sub_goal_id=known.id,
                    name=item.name or known.title,
                    description=item.description or known.description,
                    explanation=item.explanation,
                )
            )

        is_relevant = record.is_relevant
        if goal.is_unassigned:
            is_relevant = is_relevant and bool(sub_goals)
        return RelevanceResult(
            goal_id=goal.id,
            is_relevant=is_relevant,
            explanation=record.explanation if is_relevant else None,
            relevant_sub_goals=tuple(sub_goals) if is_relevant else (),
        )

    async def analyze_goal(self, content: ContentUnit, goal: GoalEntity) -> RelevanceResult:
        """Judge a single goal; the unassigned bucket uses the per-sub-goal prompt."""
        if goal.is_unassigned:
            if not goal.sub_goals:
                return RelevanceResult(goal_id=goal.id, is_relevant=False)
            prompt = build_unassigned_prompt(content, goal)
        else:
            prompt = build_goal_prompt(content, goal)
        record = await self._judge(goal, prompt)
        return self._to_result(goal, record)

    async def find_relevant(
        self,
        content: ContentUnit,
        goals: list[GoalEntity],
    ) -> list[RelevanceResult]:
        """
        Find the goals a content unit is relevant to.

        Args:
            content: The content unit to analyze.
            goals: Existing goals with their sub-goals.

        Returns:
            Results with ``is_relevant`` set; the unassigned bucket only
            appears with at least one relevant sub-goal.
        """
        if not goals:
            return []

        logger.info(f"Analyzing {len(goals)} goal(s) for relevance to content {content.id}")
        outcomes = await asyncio.gather(
            *(self.analyze_goal(content, goal) for goal in goals),
            return_exceptions=True,
        )

        results: list[RelevanceResult] = []
        for goal, outcome in zip(goals, outcomes):
            if isinstance(outcome, BaseException):
                self.tracker.record(DiscardReason.PATH_FAILED, "relevance", f"goal={goal.id}: {outcome!r}")
                results.append(RelevanceResult(goal_id=goal.id, is_relevant=False))
            else:
                results.append(outcome)

        unassigned_ids = {g.id for g in goals if g.is_unassigned}
        results = reassign_unassigned(results, unassigned_ids)
        relevant = [r for r in results if r.is_relevant]
        logger.info(f"Found {len(relevant)} relevant goal(s) for content {content.id}")
        return relevant

    async def find_misc_sub_goals_for(self, goal: GoalEntity, bucket: GoalEntity) -> list[int]:
        """
        Pick sub-goals from the unassigned bucket that belong under ``goal``.

        Returns:
            Ids of bucket sub-goals to move; empty on any failure.
        """
        if not bucket.sub_goals:
            return []
        try:
            raw = await self.oracle.generate(
                build_move_prompt(goal, bucket), structured=True, max_output_tokens=2000
            )
        except OracleError as e:
            self.tracker.record(DiscardReason.ORACLE_ERROR, "relevance", f"move analysis: {e}")
            return []

        record = await self.validator.validate(raw, SubGoalMovesPayload)
        if record is None:
            return []

        bucket_ids = {sub.id for sub in bucket.sub_goals}
        moves: list[int] = []
        for move in record.sub_goals_to_move:
            if move.sub_goal_id in bucket_ids and move.sub_goal_id not in moves:
                moves.append(move.sub_goal_id)
        return moves
