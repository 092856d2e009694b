"""Interface to the goal-storage collaborator.

The pipeline only calls these methods; persistence guarantees belong to
the implementation (see ``goals.AsyncGoalStore`` for the bundled one).
"""
from __future__ import annotations

from typing import Optional, Protocol

from .types import GoalEntity, GoalSuggestion, SubGoal, SubGoalStatus, TaskSuggestion


class GoalStorage(Protocol):
    """Goal and sub-goal persistence used by the orchestrator."""

    async def list_goals(self, user_id: str) -> list[GoalEntity]: ...

    async def create_goal(self, user_id: str, suggestion: GoalSuggestion) -> GoalEntity: ...

    async def create_sub_goal(
        self,
        user_id: str,
        suggestion: TaskSuggestion,
        parent_goal_id: Optional[int],
    ) -> SubGoal: ...

    async def update_sub_goal_status(
        self,
        sub_goal_id: int,
        status: SubGoalStatus,
        user_id: str,
    ) -> SubGoal: ...

    async def list_active_sub_goals(self, user_id: str) -> list[SubGoal]: ...

    async def move_sub_goals(
        self,
        user_id: str,
        from_goal_id: int,
        to_goal_id: int,
        sub_goal_ids: list[int],
    ) -> int: ...
