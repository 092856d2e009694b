"""Status-transition detection for active sub-goals.

Decides whether a content unit says a specific sub-goal was started or
finished. Safety gates, in order:
1. Output must validate against the status-change shape
2. A change must be explicitly detected with a sub-goal id and new status
3. Confidence must be strictly above the configured floor
4. The sub-goal must be one of the active sub-goals passed in
5. The move must be legal from the sub-goal's current status

Any failed gate discards the result; nothing is corrected.
"""

from __future__ import annotations

import logging
from typing import Optional

from .config import PipelineConfig
from .errors import IllegalTransition, OracleError
from .oracle import TextOracle
from .schemas import StatusChangePayload
from .telemetry import DiscardReason, DiscardTracker
from .types import (
    ContentUnit,
    StatusChangeResult,
    SubGoal,
    SubGoalStatus,
    is_legal_transition,
)
from .validator import SchemaValidator

logger = logging.getLogger(__name__)


def build_status_prompt(content: ContentUnit, sub_goals: list[SubGoal], floor: float) -> str:
    listing = "\n".join(
        f"Task ID: {sub.id} | Title: {sub.title} | Current Status: {sub.status.value}"
        for sub in sub_goals
    )
    return f"""Analyze the user's entry STRICTLY to determine if they are stating that they have either:
1. COMPLETED an existing task (currently 'ToDo' or 'InProgress'). The target status would be 'Done'.
2. STARTED WORKING ON or ARE CURRENTLY WORKING ON an existing task (currently 'ToDo'). The target status would be 'InProgress'.

User Entry: "{content.text}"

Existing Active Tasks:
{listing}

CRITICAL EVALUATION:
- Completion ('Done'): Does the entry clearly state a task is FINISHED, DONE, or COMPLETED?
- Starting ('InProgress'): Does the entry clearly state the user began work or is currently working on a 'ToDo' task?
  Intent must be present action ("Starting X", "Working on X now"), not future plans ("I will start X").
- Identify the single MOST LIKELY task and the corresponding action.
- If the entry mentions completing one task and starting another, prefer the completion.

Reply ONLY with a JSON object in this EXACT format:
{{
  "status_change_detected": true or false,
  "sub_goal_id": task id number or null,
  "new_status": "Done" or "InProgress" or null,
  "confidence": 0.0 to 1.0 (must be above {floor} for detection),
  "reason": "Brief explanation for the decision"
}}"""


def check_transition(sub_goal: SubGoal, new_status: SubGoalStatus) -> None:
    """Raise IllegalTransition unless the move is in the transition table."""
    if not is_legal_transition(sub_goal.status, new_status):
        raise IllegalTransition(sub_goal.status.value, SubGoalStatus(new_status).value)


class StatusTransitionDetector:
    """
    Detects implicit sub-goal state transitions in content.

    Attributes:
        oracle: Text oracle for detection.
        validator: Schema validator (shares the oracle for repairs).
        config: Pipeline configuration (confidence floor).
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

    def _discard(self, reason: DiscardReason, detail: str) -> None:
        self.tracker.record(reason, "status", detail)

    async def detect(
        self,
        content: ContentUnit,
        active_sub_goals: list[SubGoal],
    ) -> Optional[StatusChangeResult]:
        """
        Detect a status change implied by the content.

        Args:
            content: The content unit to analyze.
            active_sub_goals: Sub-goals in ToDo or InProgress.

        Returns:
            A validated StatusChangeResult, or None.
        """
        candidates = [sub for sub in active_sub_goals if sub.is_active()]
        if not candidates:
            logger.debug("No active sub-goals to check for status changes")
            return None

        floor = self.config.status_confidence_floor
        try:
            raw = await self.oracle.generate(
                build_status_prompt(content, candidates, floor),
                structured=True,
                max_output_tokens=500,
                temperature=0.15,
            )
        except OracleError as e:
            self._discard(DiscardReason.ORACLE_ERROR, str(e))
            return None

        record = await self.validator.validate(raw, StatusChangePayload)
        if record is None:
            return None

        if not record.status_change_detected or record.sub_goal_id is None or record.new_status is None:
            logger.debug(f"No status change detected: {record.reason}")
            return None

        if record.confidence <= floor:
            self._discard(
                DiscardReason.LOW_CONFIDENCE,
                f"sub_goal={record.sub_goal_id} confidence={record.confidence} <= {floor}",
            )
            return None

        by_id = {sub.id: sub for sub in candidates}
        sub_goal = by_id.get(record.sub_goal_id)
        if sub_goal is None:
            self._discard(DiscardReason.UNKNOWN_SUB_GOAL, f"sub_goal={record.sub_goal_id}")
            return None

        new_status = SubGoalStatus(record.new_status)
        try:
            check_transition(sub_goal, new_status)
        except IllegalTransition as e:
            self._discard(DiscardReason.ILLEGAL_TRANSITION, f"sub_goal={sub_goal.id}: {e}")
            return None

        logger.info(
            f"Valid status change to '{new_status.value}' for sub-goal {sub_goal.id} "
            f"(was {sub_goal.status.value}, confidence={record.confidence})"
        )
        return StatusChangeResult(
            sub_goal_id=sub_goal.id,
            new_status=new_status,
            confidence=record.confidence,
            reason=record.reason,
        )
