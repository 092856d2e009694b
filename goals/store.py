"""YAML-backed goal store: goals ("quests") and their sub-goals ("tasks").

One file per user under ``<state_dir>/goals/<user_id>.yaml``. Every user
has exactly one unassigned bucket, created on demand, which holds
sub-goals without a specific parent.
"""
from __future__ import annotations

import asyncio
import logging
import re
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import yaml

from questlog.config import resolve_state_dir
from questlog.normalize import normalize_date, normalize_tags, normalize_text
from questlog.types import (
    GoalEntity,
    GoalStatus,
    GoalSuggestion,
    Priority,
    SubGoal,
    SubGoalStatus,
    TaskSuggestion,
    is_legal_transition,
)

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1
UNASSIGNED_TITLE = "Misc"
UNASSIGNED_DESCRIPTION = "Tasks not yet tied to a specific goal."


def _now_utc(now: Optional[datetime] = None) -> datetime:
    current = now or datetime.now(timezone.utc)
    if current.tzinfo is None:
        return current.replace(tzinfo=timezone.utc)
    return current


def _user_file(user_id: str, base_dir: Path) -> Path:
    if not user_id or not str(user_id).strip():
        raise ValueError("user_id is required")
    safe = re.sub(r"[^A-Za-z0-9_.-]", "_", str(user_id).strip())
    return base_dir / "goals" / f"{safe}.yaml"


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    data = yaml.safe_load(path.read_text())
    if not isinstance(data, dict):
        return {}
    return data


def _write_yaml(path: Path, payload: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(".yaml.tmp")
    with tmp_path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(payload, handle, sort_keys=False)
    tmp_path.replace(path)


def _sub_goal_from_dict(data: dict[str, Any], parent_goal_id: Optional[int]) -> SubGoal:
    return SubGoal(
        id=int(data["id"]),
        title=str(data.get("title", "")),
        description=str(data.get("description") or ""),
        status=SubGoalStatus(data.get("status", SubGoalStatus.TODO.value)),
        parent_goal_id=parent_goal_id,
        scheduled_for=data.get("scheduled_for"),
        deadline=data.get("deadline"),
        location=data.get("location"),
        priority=Priority(data.get("priority", Priority.MEDIUM.value)),
        tags=tuple(data.get("tags") or ()),
    )


def _goal_from_dict(data: dict[str, Any]) -> GoalEntity:
    is_unassigned = bool(data.get("is_unassigned", False))
    goal_id = int(data["id"])
    parent = None if is_unassigned else goal_id
    return GoalEntity(
        id=goal_id,
        title=str(data.get("title", "")),
        description=str(data.get("description") or ""),
        status=GoalStatus(data.get("status", GoalStatus.ACTIVE.value)),
        sub_goals=tuple(_sub_goal_from_dict(s, parent) for s in data.get("sub_goals") or []),
        is_unassigned=is_unassigned,
        tagline=str(data.get("tagline") or ""),
        start_date=data.get("start_date"),
        end_date=data.get("end_date"),
        tags=tuple(data.get("tags") or ()),
    )


def _find_goal(goals: list[dict[str, Any]], goal_id: int) -> dict[str, Any]:
    for goal in goals:
        if int(goal.get("id", -1)) == goal_id:
            return goal
    raise KeyError(f"Goal '{goal_id}' not found")


def _find_sub_goal(goals: list[dict[str, Any]], sub_goal_id: int) -> tuple[dict[str, Any], dict[str, Any]]:
    for goal in goals:
        for sub in goal.get("sub_goals") or []:
            if int(sub.get("id", -1)) == sub_goal_id:
                return goal, sub
    raise KeyError(f"Sub-goal '{sub_goal_id}' not found")


class GoalStore:
    """
    Synchronous goal store backed by per-user YAML files.

    Integer ids are allocated from per-user counters and never reused.
    """

    def __init__(self, base_dir: Optional[Path] = None):
        self.base_dir = resolve_state_dir(base_dir)
        self._lock = threading.Lock()

    def _load(self, user_id: str) -> dict[str, Any]:
        data = _load_yaml(_user_file(user_id, self.base_dir))
        goals = data.get("goals") if isinstance(data.get("goals"), list) else []
        return {
            "schema_version": data.get("schema_version", SCHEMA_VERSION),
            "user_id": str(user_id),
            "updated_at": data.get("updated_at"),
            "next_goal_id": int(data.get("next_goal_id", 1)),
            "next_sub_goal_id": int(data.get("next_sub_goal_id", 1)),
            "goals": goals,
        }

    def _save(self, user_id: str, payload: dict[str, Any], now: datetime) -> None:
        payload["schema_version"] = SCHEMA_VERSION
        payload["updated_at"] = now.isoformat()
        _write_yaml(_user_file(user_id, self.base_dir), payload)

    @staticmethod
    def _allocate(payload: dict[str, Any], key: str) -> int:
        value = payload[key]
        payload[key] = value + 1
        return value

    def _ensure_unassigned(self, payload: dict[str, Any], now: datetime) -> tuple[dict[str, Any], bool]:
        for goal in payload["goals"]:
            if goal.get("is_unassigned"):
                return goal, False
        bucket = {
            "id": self._allocate(payload, "next_goal_id"),
            "title": UNASSIGNED_TITLE,
            "tagline": "",
            "description": UNASSIGNED_DESCRIPTION,
            "status": GoalStatus.ACTIVE.value,
            "is_unassigned": True,
            "created_at": now.isoformat(),
            "tags": [],
            "sub_goals": [],
        }
        payload["goals"].append(bucket)
        return bucket, True

    def list_goals(self, user_id: str) -> list[GoalEntity]:
        with self._lock:
            payload = self._load(user_id)
        return [_goal_from_dict(goal) for goal in payload["goals"]]

    def get_or_create_unassigned_goal(self, user_id: str, *, now: Optional[datetime] = None) -> GoalEntity:
        timestamp = _now_utc(now)
        with self._lock:
            payload = self._load(user_id)
            bucket, created = self._ensure_unassigned(payload, timestamp)
            if created:
                self._save(user_id, payload, timestamp)
                logger.info(f"Created unassigned goal bucket {bucket['id']} for user {user_id}")
        return _goal_from_dict(bucket)

    def create_goal(
        self,
        user_id: str,
        suggestion: GoalSuggestion,
        *,
        now: Optional[datetime] = None,
    ) -> GoalEntity:
        """Persist a goal from a suggestion. Related tasks are created separately."""
        title = normalize_text(suggestion.title)
        if not title:
            raise ValueError("Goal title is required")

        timestamp = _now_utc(now)
        with self._lock:
            payload = self._load(user_id)
            goal = {
                "id": self._allocate(payload, "next_goal_id"),
                "title": title,
                "tagline": suggestion.tagline,
                "description": suggestion.description,
                "status": GoalStatus.ACTIVE.value,
                "is_unassigned": False,
                "start_date": normalize_date(suggestion.start_date),
                "end_date": normalize_date(suggestion.end_date),
                "created_at": timestamp.isoformat(),
                "tags": [],
                "sub_goals": [],
            }
            payload["goals"].append(goal)
            self._save(user_id, payload, timestamp)

        logger.info(f"Created goal {goal['id']}: {title}")
        return _goal_from_dict(goal)

    def create_sub_goal(
        self,
        user_id: str,
        suggestion: TaskSuggestion,
        parent_goal_id: Optional[int],
        *,
        now: Optional[datetime] = None,
    ) -> SubGoal:
        """Persist a sub-goal under ``parent_goal_id``, or the unassigned bucket if None."""
        title = normalize_text(suggestion.title)
        if not title:
            raise ValueError("Sub-goal title is required")

        timestamp = _now_utc(now)
        with self._lock:
            payload = self._load(user_id)
            if parent_goal_id is None:
                goal, _ = self._ensure_unassigned(payload, timestamp)
            else:
                goal = _find_goal(payload["goals"], parent_goal_id)

            sub = {
                "id": self._allocate(payload, "next_sub_goal_id"),
                "title": title,
                "description": suggestion.description,
                "status": SubGoalStatus.TODO.value,
                "scheduled_for": normalize_date(suggestion.scheduled_for),
                "deadline": normalize_date(suggestion.deadline),
                "location": suggestion.location,
                "priority": Priority(suggestion.priority).value,
                "tags": list(normalize_tags(suggestion.tags)),
                "created_at": timestamp.isoformat(),
            }
            goal.setdefault("sub_goals", []).append(sub)
            self._save(user_id, payload, timestamp)

        parent = None if goal.get("is_unassigned") else int(goal["id"])
        logger.info(f"Created sub-goal {sub['id']} under goal {goal['id']}: {title}")
        return _sub_goal_from_dict(sub, parent)

    def update_sub_goal_status(
        self,
        sub_goal_id: int,
        status: SubGoalStatus,
        user_id: str,
        *,
        now: Optional[datetime] = None,
    ) -> SubGoal:
        """
        Move a sub-goal to a new status.

        Raises:
            KeyError: Unknown sub-goal.
            ValueError: The move is not in the transition table.
        """
        new_status = SubGoalStatus(status)
        timestamp = _now_utc(now)
        with self._lock:
            payload = self._load(user_id)
            goal, sub = _find_sub_goal(payload["goals"], sub_goal_id)
            current = SubGoalStatus(sub.get("status", SubGoalStatus.TODO.value))
            if not is_legal_transition(current, new_status):
                raise ValueError(
                    f"Cannot move sub-goal {sub_goal_id} from {current.value} to {new_status.value}"
                )
            sub["status"] = new_status.value
            sub["updated_at"] = timestamp.isoformat()
            if new_status == SubGoalStatus.DONE:
                sub["completed_at"] = timestamp.isoformat()
            self._save(user_id, payload, timestamp)

        parent = None if goal.get("is_unassigned") else int(goal["id"])
        return _sub_goal_from_dict(sub, parent)

    def list_active_sub_goals(self, user_id: str) -> list[SubGoal]:
        active: list[SubGoal] = []
        for goal in self.list_goals(user_id):
            active.extend(sub for sub in goal.sub_goals if sub.is_active())
        return active

    def move_sub_goals(
        self,
        user_id: str,
        from_goal_id: int,
        to_goal_id: int,
        sub_goal_ids: list[int],
        *,
        now: Optional[datetime] = None,
    ) -> int:
        """Move the listed sub-goals between goals. Returns how many moved."""
        wanted = {int(i) for i in sub_goal_ids}
        if not wanted or from_goal_id == to_goal_id:
            return 0

        timestamp = _now_utc(now)
        with self._lock:
            payload = self._load(user_id)
            source = _find_goal(payload["goals"], from_goal_id)
            target = _find_goal(payload["goals"], to_goal_id)
            staying: list[dict[str, Any]] = []
            moving: list[dict[str, Any]] = []
            for sub in source.get("sub_goals") or []:
                (moving if int(sub["id"]) in wanted else staying).append(sub)
            if not moving:
                return 0
            source["sub_goals"] = staying
            target.setdefault("sub_goals", []).extend(moving)
            self._save(user_id, payload, timestamp)

        logger.info(f"Moved {len(moving)} sub-goal(s) from goal {from_goal_id} to {to_goal_id}")
        return len(moving)


class AsyncGoalStore:
    """Async facade over GoalStore; file I/O runs in a worker thread."""

    def __init__(self, store: Optional[GoalStore] = None, base_dir: Optional[Path] = None):
        self.store = store or GoalStore(base_dir)

    async def list_goals(self, user_id: str) -> list[GoalEntity]:
        return await asyncio.to_thread(self.store.list_goals, user_id)

    async def create_goal(self, user_id: str, suggestion: GoalSuggestion) -> GoalEntity:
        return await asyncio.to_thread(self.store.create_goal, user_id, suggestion)

    async def create_sub_goal(
        self,
        user_id: str,
        suggestion: TaskSuggestion,
        parent_goal_id: Optional[int],
    ) -> SubGoal:
        return await asyncio.to_thread(self.store.create_sub_goal, user_id, suggestion, parent_goal_id)

    async def update_sub_goal_status(self, sub_goal_id: int, status: SubGoalStatus, user_id: str) -> SubGoal:
        return await asyncio.to_thread(self.store.update_sub_goal_status, sub_goal_id, status, user_id)

    async def list_active_sub_goals(self, user_id: str) -> list[SubGoal]:
        return await asyncio.to_thread(self.store.list_active_sub_goals, user_id)

    async def get_or_create_unassigned_goal(self, user_id: str) -> GoalEntity:
        return await asyncio.to_thread(self.store.get_or_create_unassigned_goal, user_id)

    async def move_sub_goals(
        self,
        user_id: str,
        from_goal_id: int,
        to_goal_id: int,
        sub_goal_ids: list[int],
    ) -> int:
        return await asyncio.to_thread(
            self.store.move_sub_goals, user_id, from_goal_id, to_goal_id, sub_goal_ids
        )
