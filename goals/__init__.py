"""Goal and sub-goal storage for the suggestion pipeline."""

from .store import AsyncGoalStore, GoalStore, UNASSIGNED_TITLE

__all__ = [
    "GoalStore",
    "AsyncGoalStore",
    "UNASSIGNED_TITLE",
]
