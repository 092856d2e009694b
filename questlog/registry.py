"""
In-memory registry of pending suggestions.

All mutations go through the documented methods under one lock, and
subscribers only ever see immutable snapshots.

Dedup rule: a task suggestion listed under a pending goal suggestion is
never also a standalone entry. Adding a goal removes content-equal
standalone tasks; adding a task that a pending goal already owns drops
it. Either order converges to the same state.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from .normalize import content_key
from .telemetry import DiscardReason, DiscardTracker
from .types import GoalSuggestion, Suggestion, SuggestionSnapshot, TaskSuggestion

logger = logging.getLogger(__name__)

Subscriber = Callable[[SuggestionSnapshot], None]


def same_content(a: TaskSuggestion, b: TaskSuggestion) -> bool:
    """Two task suggestions are content-equal if ids or normalized titles match."""
    return a.id == b.id or content_key(a.title) == content_key(b.title)


class SuggestionRegistry:
    """
    Store of pending task and goal suggestions keyed by id.

    Notifications are delivered while the lock is held so subscribers see
    snapshots in mutation order. The lock is re-entrant, so a subscriber
    may read the registry from its callback.
    """

    def __init__(self, tracker: Optional[DiscardTracker] = None):
        self._lock = threading.RLock()
        self._tasks: list[TaskSuggestion] = []
        self._goals: list[GoalSuggestion] = []
        self._subscribers: list[Subscriber] = []
        self.tracker = tracker

    def _snapshot(self) -> SuggestionSnapshot:
        return SuggestionSnapshot(tasks=tuple(self._tasks), goals=tuple(self._goals))

    def _notify(self) -> None:
        snapshot = self._snapshot()
        logger.debug(
            f"Notifying {len(self._subscribers)} subscriber(s): "
            f"tasks={len(snapshot.tasks)} goals={len(snapshot.goals)}"
        )
        for callback in list(self._subscribers):
            try:
                callback(snapshot)
            except Exception as e:
                logger.error(f"Error in suggestion subscriber: {e}", exc_info=True)

    def _contains_id(self, suggestion_id: str) -> bool:
        if any(t.id == suggestion_id for t in self._tasks):
            return True
        for goal in self._goals:
            if goal.id == suggestion_id:
                return True
            if any(t.id == suggestion_id for t in goal.related_task_suggestions):
                return True
        return False

    def _owned_by_goal(self, task: TaskSuggestion) -> Optional[GoalSuggestion]:
        for goal in self._goals:
            if any(same_content(task, child) for child in goal.related_task_suggestions):
                return goal
        return None

    def _add_task(self, task: TaskSuggestion) -> bool:
        owner = self._owned_by_goal(task)
        if owner is not None:
            if self.tracker is not None:
                self.tracker.record(
                    DiscardReason.DUPLICATE, "registry", f"task '{task.title}' owned by goal {owner.id}"
                )
            return False
        self._tasks.append(task)
        logger.info(f"Added task suggestion: {task.title}")
        return True

    def _add_goal(self, goal: GoalSuggestion) -> bool:
        children = goal.related_task_suggestions
        kept: list[TaskSuggestion] = []
        for task in self._tasks:
            if any(same_content(task, child) for child in children):
                logger.info(f"Task suggestion '{task.title}' now pending under goal '{goal.title}'")
                continue
            kept.append(task)
        self._tasks = kept
        self._goals.append(goal)
        logger.info(f"Added goal suggestion: {goal.title}")
        return True

    def _add(self, suggestion: Suggestion) -> bool:
        if self._contains_id(suggestion.id):
            logger.debug(f"Suggestion {suggestion.id} already registered")
            return False
        if isinstance(suggestion, GoalSuggestion):
            return self._add_goal(suggestion)
        return self._add_task(suggestion)

    def _position(self, suggestion_id: str) -> Optional[tuple[list, int]]:
        for entries in (self._tasks, self._goals):
            for index, entry in enumerate(entries):
                if entry.id == suggestion_id:
                    return entries, index
        return None

    def _remove(self, suggestion_id: str) -> Optional[Suggestion]:
        position = self._position(suggestion_id)
        if position is None:
            return None
        entries, index = position
        return entries.pop(index)

    def add(self, suggestion: Suggestion) -> bool:
        """
        Add a suggestion, applying the dedup rule before notifying.

        Returns:
            True if the registry changed.
        """
        with self._lock:
            changed = self._add(suggestion)
            if changed:
                self._notify()
            return changed

    def remove(self, suggestion_id: str) -> Optional[Suggestion]:
        """Remove a standalone task or goal suggestion by id."""
        with self._lock:
            removed = self._remove(suggestion_id)
            if removed is not None:
                logger.info(f"Removed suggestion: {suggestion_id}")
                self._notify()
            return removed

    def replace(self, suggestion_id: str, replacement: Suggestion) -> bool:
        """
        Atomically swap a pending suggestion for another, notifying once.

        Returns:
            False (and changes nothing) if ``suggestion_id`` is not pending.
        """
        with self._lock:
            position = self._position(suggestion_id)
            if position is None:
                return False
            entries, index = position
            removed = entries.pop(index)
            if not self._add(replacement):
                entries.insert(index, removed)
                return False
            self._notify()
            return True

    def get(self, suggestion_id: str) -> Optional[Suggestion]:
        with self._lock:
            for task in self._tasks:
                if task.id == suggestion_id:
                    return task
            for goal in self._goals:
                if goal.id == suggestion_id:
                    return goal
            return None

    def list(self) -> SuggestionSnapshot:
        """Current pending suggestions."""
        with self._lock:
            return self._snapshot()

    def clear(self) -> None:
        with self._lock:
            if not self._tasks and not self._goals:
                return
            self._tasks = []
            self._goals = []
            logger.info("Cleared all suggestions")
            self._notify()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """
        Register a callback for "suggestions changed".

        The callback is called immediately with the current snapshot.

        Returns:
            A function that unsubscribes the callback.
        """
        with self._lock:
            self._subscribers.append(callback)
            try:
                callback(self._snapshot())
            except Exception as e:
                logger.error(f"Error in suggestion subscriber: {e}", exc_info=True)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe
