"""
Type definitions for the suggestion pipeline.

Provides typed dataclasses for:
- ContentUnit: A piece of user text that triggers analysis
- GoalEntity / SubGoal: Read-only views of the user's goals ("quests")
  and their sub-goals ("tasks")
- RelevanceResult: Per-goal relevance judgment
- TaskSuggestion / GoalSuggestion: Pending, not-yet-persisted proposals
- StatusChangeResult: Detected sub-goal state transition
- SuggestionSnapshot: Immutable view of the registry contents
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union
from uuid import uuid4


def _now_utc() -> datetime:
    """Return current UTC timestamp."""
    return datetime.now(timezone.utc)


def _generate_id() -> str:
    """Generate a unique ID for content units."""
    return str(uuid4())


def new_suggestion_id(kind: str) -> str:
    """Generate an opaque suggestion id, never reused across instances."""
    return f"{kind}-{uuid4().hex}"


class SourceKind(str, Enum):
    """Where a content unit came from."""

    CHAT = "chat"
    JOURNAL = "journal"


class GoalStatus(str, Enum):
    """Lifecycle status of a goal entity."""

    ACTIVE = "Active"
    ON_HOLD = "OnHold"
    COMPLETED = "Completed"


class SubGoalStatus(str, Enum):
    """Lifecycle status of a sub-goal."""

    TODO = "ToDo"
    IN_PROGRESS = "InProgress"
    DONE = "Done"


class Priority(str, Enum):
    """Priority of a task suggestion."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


ACTIVE_SUB_GOAL_STATUSES = frozenset({SubGoalStatus.TODO, SubGoalStatus.IN_PROGRESS})

# (current, requested) pairs that a detected status change may apply.
LEGAL_TRANSITIONS = frozenset(
    {
        (SubGoalStatus.TODO, SubGoalStatus.IN_PROGRESS),
        (SubGoalStatus.TODO, SubGoalStatus.DONE),
        (SubGoalStatus.IN_PROGRESS, SubGoalStatus.DONE),
    }
)


def is_legal_transition(current: SubGoalStatus, requested: SubGoalStatus) -> bool:
    """Check a sub-goal status move against the transition table."""
    return (SubGoalStatus(current), SubGoalStatus(requested)) in LEGAL_TRANSITIONS


@dataclass(frozen=True)
class ContentUnit:
    """
    A piece of free-form user text that triggers analysis.

    Attributes:
        text: The raw user text.
        source_kind: Chat message or journal/checkup entry.
        user_id: Owner of the text; used for collaborator calls.
        created_at: When the text was written.
        id: Unique identifier, referenced by suggestions.
    """

    text: str
    source_kind: SourceKind = SourceKind.CHAT
    user_id: str = ""
    created_at: datetime = field(default_factory=_now_utc)
    id: str = field(default_factory=_generate_id)


@dataclass(frozen=True)
class SubGoal:
    """A concrete unit of work under a goal, or in the unassigned bucket."""

    id: int
    title: str
    description: str = ""
    status: SubGoalStatus = SubGoalStatus.TODO
    parent_goal_id: Optional[int] = None
    scheduled_for: Optional[str] = None
    deadline: Optional[str] = None
    location: Optional[str] = None
    priority: Priority = Priority.MEDIUM
    tags: tuple[str, ...] = ()

    def is_active(self) -> bool:
        """Check if this sub-goal can still change status."""
        return self.status in ACTIVE_SUB_GOAL_STATUSES


@dataclass(frozen=True)
class GoalEntity:
    """
    A long-running goal with its sub-goals.

    Attributes:
        id: Integer id allocated by the goal store.
        title: Short goal title.
        description: Longer free text.
        status: Active, OnHold or Completed.
        sub_goals: Sub-goals currently filed under this goal.
        is_unassigned: True for the catch-all bucket holding sub-goals
            without a specific parent.
    """

    id: int
    title: str
    description: str = ""
    status: GoalStatus = GoalStatus.ACTIVE
    sub_goals: tuple[SubGoal, ...] = ()
    is_unassigned: bool = False
    tagline: str = ""
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    tags: tuple[str, ...] = ()

    def find_sub_goal(self, sub_goal_id: int) -> Optional[SubGoal]:
        for sub_goal in self.sub_goals:
            if sub_goal.id == sub_goal_id:
                return sub_goal
        return None


@dataclass(frozen=True)
class RelevantSubGoal:
    """A sub-goal the content refers to, with the oracle's explanation."""

    sub_goal_id: int
    name: str
    description: str = ""
    explanation: str = ""


@dataclass(frozen=True)
class RelevanceResult:
    """Transient relevance judgment for one (content unit, goal) pair."""

    goal_id: int
    is_relevant: bool
    explanation: Optional[str] = None
    relevant_sub_goals: tuple[RelevantSubGoal, ...] = ()


@dataclass(frozen=True)
class RelevanceContext:
    """Relevance results paired with the goals they refer to, for extraction prompts."""

    results: tuple[RelevanceResult, ...] = ()
    goals: tuple[GoalEntity, ...] = ()

    def relevant_goals(self) -> list[GoalEntity]:
        """Named goals (not the unassigned bucket) judged relevant."""
        relevant_ids = {r.goal_id for r in self.results if r.is_relevant}
        return [g for g in self.goals if g.id in relevant_ids and not g.is_unassigned]

    def describe(self) -> str:
        """Render the context for inclusion in a prompt."""
        by_id = {g.id: g for g in self.goals}
        lines: list[str] = []
        for result in self.results:
            goal = by_id.get(result.goal_id)
            if goal is None or not result.is_relevant:
                continue
            label = "Unassigned tasks" if goal.is_unassigned else f"Goal ID {goal.id}: {goal.title}"
            lines.append(f"- {label} ({result.explanation or 'relevant'})")
            for sub in result.relevant_sub_goals:
                lines.append(f"    - Task {sub.sub_goal_id}: {sub.name} ({sub.explanation})")
        return "\n".join(lines)


@dataclass(frozen=True)
class TaskSuggestion:
    """
    A pending proposal for a new sub-goal.

    Attributes:
        id: Opaque id, unique per suggestion instance.
        source_content_id: Id of the content unit it was extracted from.
        title: Short task title.
        description: Task details.
        scheduled_for: ISO date the task should start.
        deadline: Optional ISO due date.
        location: Optional place.
        priority: high, medium or low.
        tags: Normalized lowercase tags.
        parent_goal_id: Existing goal this task belongs to, if any.
    """

    id: str
    source_content_id: str
    title: str
    description: str
    scheduled_for: str
    deadline: Optional[str] = None
    location: Optional[str] = None
    priority: Priority = Priority.MEDIUM
    tags: tuple[str, ...] = ()
    parent_goal_id: Optional[int] = None
    source_kind: SourceKind = SourceKind.CHAT
    created_at: datetime = field(default_factory=_now_utc)


@dataclass(frozen=True)
class GoalSuggestion:
    """A pending proposal for a new goal, owning its related task suggestions."""

    id: str
    source_content_id: str
    title: str
    tagline: str
    description: str
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    related_task_suggestions: tuple[TaskSuggestion, ...] = ()
    source_kind: SourceKind = SourceKind.CHAT
    created_at: datetime = field(default_factory=_now_utc)


Suggestion = Union[TaskSuggestion, GoalSuggestion]


@dataclass(frozen=True)
class StatusChangeResult:
    """A detected, validated sub-goal status change."""

    sub_goal_id: int
    new_status: SubGoalStatus
    confidence: float
    reason: str = ""


@dataclass(frozen=True)
class SuggestionSnapshot:
    """Immutable view of pending suggestions delivered to subscribers."""

    tasks: tuple[TaskSuggestion, ...] = ()
    goals: tuple[GoalSuggestion, ...] = ()

    def is_empty(self) -> bool:
        return not self.tasks and not self.goals
