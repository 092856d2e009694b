"""
Text, tag and date normalization shared by the extractor, registry and
goal store.

Applied once at the oracle boundary so downstream code never has to deal
with sentinel strings or ad hoc formats.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timezone
from typing import Any, Iterable, Optional

# Strings the oracle emits in place of a real null.
NULL_SENTINELS = frozenset({"null", "none", "undefined", "n/a", ""})


def is_null_sentinel(value: Any) -> bool:
    """Check for None or a string that stands in for null."""
    if value is None:
        return True
    return isinstance(value, str) and value.strip().lower() in NULL_SENTINELS


def normalize_text(text: str) -> str:
    """
    Normalize free text for comparison.

    - Strips whitespace
    - Removes markdown bullets/numbers
    - Removes surrounding quotes
    - Collapses whitespace
    """
    if not text:
        return ""

    cleaned = str(text).strip()
    cleaned = re.sub(r"^[-*•]\s*", "", cleaned)
    cleaned = re.sub(r"^\d+[\.)]\s*", "", cleaned)
    cleaned = re.sub(r'^["\']|["\']$', "", cleaned)
    cleaned = re.sub(r"\s+", " ", cleaned).strip()

    return cleaned


def content_key(title: str) -> str:
    """Key under which two task suggestions count as the same content."""
    key = normalize_text(title).casefold()
    return re.sub(r"[.!?;:,]+$", "", key).strip()


def normalize_tags(tags: Optional[Iterable[Any]]) -> tuple[str, ...]:
    """Lowercase, strip and de-duplicate tags, keeping first-seen order."""
    if isinstance(tags, str):
        tags = tags.split(",")
    cleaned: list[str] = []
    for tag in tags or []:
        value = str(tag).strip().lstrip("#")
        if not value:
            continue
        lowered = value.lower()
        if lowered not in cleaned:
            cleaned.append(lowered)
    return tuple(cleaned)


def normalize_date(value: Optional[Any]) -> Optional[str]:
    """
    Normalize a date-like value to ``YYYY-MM-DD``.

    Accepts date/datetime objects, ISO dates and ISO datetimes. Anything
    unparseable becomes None.
    """
    if is_null_sentinel(value):
        return None
    if isinstance(value, datetime):
        dt = value
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()

    text = str(value).strip()
    match = re.match(r"^(\d{4}-\d{2}-\d{2})", text)
    if not match:
        return None
    try:
        return date.fromisoformat(match.group(1)).isoformat()
    except ValueError:
        return None
