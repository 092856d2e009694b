"""Discard tracking for the suggestion pipeline.

Every time the pipeline throws away an oracle result it records why, so
prompts and thresholds can be tuned later from the counts.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class DiscardReason(str, Enum):
    """Why a pipeline result was dropped."""

    ORACLE_ERROR = "oracle_error"
    VALIDATION_FAILED = "validation_failed"
    REPAIR_UNAVAILABLE = "repair_unavailable"
    NOT_ACTIONABLE = "not_actionable"
    LOW_CONFIDENCE = "low_confidence"
    UNKNOWN_SUB_GOAL = "unknown_sub_goal"
    ILLEGAL_TRANSITION = "illegal_transition"
    DUPLICATE = "duplicate"
    PATH_FAILED = "path_failed"


@dataclass
class DiscardEvent:
    """The most recent discard, kept for inspection."""

    reason: DiscardReason
    component: str
    detail: str
    timestamp: datetime


class DiscardTracker:
    """
    Thread-safe counter of discard events.

    One tracker is constructed with the pipeline and passed to each
    component that can discard results.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._counts: Counter[DiscardReason] = Counter()
        self._last_event: Optional[DiscardEvent] = None

    def record(self, reason: DiscardReason, component: str, detail: str = "") -> None:
        """Record a discard event and log it."""
        with self._lock:
            self._counts[reason] += 1
            self._last_event = DiscardEvent(
                reason=reason,
                component=component,
                detail=detail,
                timestamp=datetime.now(timezone.utc),
            )
        logger.info(f"Discarded result in {component}: reason={reason.value} {detail}".rstrip())

    def counts(self) -> dict[str, int]:
        """Snapshot of discard counts keyed by reason value."""
        with self._lock:
            return {reason.value: count for reason, count in self._counts.items()}

    def total(self) -> int:
        with self._lock:
            return sum(self._counts.values())

    def last_event(self) -> Optional[DiscardEvent]:
        with self._lock:
            return self._last_event

    def clear(self) -> None:
        """Clear tracked counts (useful for testing)."""
        with self._lock:
            self._counts.clear()
            self._last_event = None
