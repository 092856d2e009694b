"""Error taxonomy for the suggestion pipeline.

Transport errors come from the oracle client. Everything else is raised and
absorbed inside the pipeline; none of these escape ``analyze``.
"""
from __future__ import annotations

from typing import Optional


class QuestlogError(Exception):
    """Base error for the suggestion pipeline."""

    pass


class OracleError(QuestlogError):
    """Oracle call failed at the transport level."""

    pass


class OracleUnavailable(OracleError):
    """Oracle could not be reached or returned an unusable response."""

    pass


class OracleTimeout(OracleError):
    """Oracle call exceeded its timeout."""

    pass


class OracleRateLimited(OracleError):
    """Oracle rejected the call with HTTP 429."""

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class ValidationFailed(QuestlogError):
    """Oracle output did not match the expected shape after repair."""

    pass


class IllegalTransition(QuestlogError):
    """Requested sub-goal status change is not allowed from its current status."""

    def __init__(self, current: str, requested: str):
        super().__init__(f"Illegal transition from {current} to {requested}")
        self.current = current
        self.requested = requested
