"""
Pydantic models for the JSON shapes the oracle is asked to produce.

Each model is the "expected shape" handed to the schema validator. Field
checks are strict where identity matters (ids must be integers, flags
must be booleans). String stand-ins for null are converted to real None
here, once, so nothing downstream re-checks for them.
"""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictInt,
    field_validator,
    model_validator,
)

from .normalize import is_null_sentinel, normalize_tags


def _null_to_none(value: Any) -> Any:
    return None if is_null_sentinel(value) else value


class OracleShape(BaseModel):
    """Base for oracle output shapes; unknown keys are ignored."""

    model_config = ConfigDict(extra="ignore")


class RelevantSubGoalPayload(OracleShape):
    sub_goal_id: StrictInt
    name: str = ""
    description: str = ""
    explanation: str = ""

    @field_validator("name", "description", "explanation", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> Any:
        return "" if is_null_sentinel(value) else value


class RelevancePayload(OracleShape):
    """Relevance of one goal to a content unit."""

    goal_id: StrictInt
    is_relevant: StrictBool
    explanation: Optional[str] = None
    relevant_sub_goals: list[RelevantSubGoalPayload]

    coerce_nulls = field_validator("explanation", mode="before")(_null_to_none)


class TaskPayload(OracleShape):
    """A single task extracted from content."""

    actionable: StrictBool = True
    title: Optional[str] = None
    description: str = ""
    scheduled_for: Optional[str] = None
    deadline: Optional[str] = None
    location: Optional[str] = None
    priority: Optional[Literal["high", "medium", "low"]] = None
    tags: tuple[str, ...] = ()
    parent_goal_id: Optional[StrictInt] = None

    coerce_nulls = field_validator(
        "title", "scheduled_for", "deadline", "location", "parent_goal_id", mode="before"
    )(_null_to_none)

    @field_validator("description", mode="before")
    @classmethod
    def _coerce_description(cls, value: Any) -> Any:
        return "" if is_null_sentinel(value) else value

    @field_validator("priority", mode="before")
    @classmethod
    def _coerce_priority(cls, value: Any) -> Any:
        if is_null_sentinel(value):
            return None
        lowered = str(value).strip().lower()
        return lowered if lowered in ("high", "medium", "low") else None

    @field_validator("tags", mode="before")
    @classmethod
    def _coerce_tags(cls, value: Any) -> Any:
        if is_null_sentinel(value):
            return ()
        if isinstance(value, (list, tuple, str)):
            return normalize_tags(value)
        return value

    @model_validator(mode="after")
    def _require_title(self) -> "TaskPayload":
        if self.actionable and not (self.title and self.title.strip()):
            raise ValueError("actionable task requires a title")
        return self


class RelatedTaskPayload(OracleShape):
    title: str = Field(min_length=1)
    description: str = ""
    scheduled_for: Optional[str] = None

    coerce_nulls = field_validator("scheduled_for", mode="before")(_null_to_none)

    @field_validator("description", mode="before")
    @classmethod
    def _coerce_description(cls, value: Any) -> Any:
        return "" if is_null_sentinel(value) else value


class GoalPayload(OracleShape):
    """A long-running goal extracted from content."""

    actionable: StrictBool = True
    title: Optional[str] = None
    tagline: str = ""
    description: str = ""
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    related_tasks: list[RelatedTaskPayload] = Field(default_factory=list)

    coerce_nulls = field_validator("title", "start_date", "end_date", mode="before")(_null_to_none)

    @field_validator("tagline", "description", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> Any:
        return "" if is_null_sentinel(value) else value

    @field_validator("related_tasks", mode="before")
    @classmethod
    def _coerce_related(cls, value: Any) -> Any:
        return [] if value is None else value

    @model_validator(mode="after")
    def _require_title(self) -> "GoalPayload":
        if self.actionable and not (self.title and self.title.strip()):
            raise ValueError("actionable goal requires a title")
        return self


class UpgradePayload(OracleShape):
    """A goal expanded from a single task; ``additional_tasks`` excludes the task itself."""

    title: str = Field(min_length=1)
    tagline: str = ""
    description: str = ""
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    additional_tasks: list[RelatedTaskPayload] = Field(min_length=1)

    coerce_nulls = field_validator("start_date", "end_date", mode="before")(_null_to_none)

    @field_validator("tagline", "description", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> Any:
        return "" if is_null_sentinel(value) else value


class StatusChangePayload(OracleShape):
    """Detected status change for one active sub-goal."""

    status_change_detected: StrictBool
    sub_goal_id: Optional[StrictInt] = None
    new_status: Optional[Literal["InProgress", "Done"]] = None
    confidence: float = Field(ge=0.0, le=1.0)
    reason: str = ""

    coerce_nulls = field_validator("sub_goal_id", "new_status", mode="before")(_null_to_none)

    @field_validator("reason", mode="before")
    @classmethod
    def _coerce_reason(cls, value: Any) -> Any:
        return "" if is_null_sentinel(value) else value


class ConversationTaskItem(OracleShape):
    content: str = Field(min_length=1)
    source_message: str = ""
    related_messages: list[str] = Field(default_factory=list)
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    timing: Optional[Literal["immediate", "short-term"]] = None

    coerce_nulls = field_validator("timing", mode="before")(_null_to_none)


class ConversationTasksPayload(OracleShape):
    """Committed tasks found in a multi-message conversation."""

    tasks: list[ConversationTaskItem]


class SubGoalMove(OracleShape):
    sub_goal_id: StrictInt
    reason: str = ""


class SubGoalMovesPayload(OracleShape):
    """Unassigned sub-goals that belong under a newly created goal."""

    sub_goals_to_move: list[SubGoalMove]
