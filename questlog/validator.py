"""
Schema validation with a single bounded repair round-trip.

The validator parses raw oracle output against a pydantic shape. If that
fails it asks the oracle once to repair the output, expecting the answer
between two sentinel markers, and validates the repaired text with the
same checks. It never raises: a missing result is ``None``.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Optional, TypeVar

from pydantic import BaseModel, ValidationError

from .errors import OracleError, ValidationFailed
from .oracle import TextOracle
from .telemetry import DiscardReason, DiscardTracker

logger = logging.getLogger(__name__)

START_MARKER = "START JSON"
END_MARKER = "END JSON"

ShapeT = TypeVar("ShapeT", bound=BaseModel)

_CODE_FENCE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")


def clean_response_text(text: str) -> str:
    """Strip markdown fences and surrounding prose from an oracle response."""
    cleaned = text.strip()
    match = _CODE_FENCE.search(cleaned)
    if match:
        cleaned = match.group(1).strip()
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start != -1 and end > start:
        return cleaned[start : end + 1]
    return cleaned


def extract_between_markers(text: str) -> Optional[str]:
    """Return the content between the repair markers, or None if absent."""
    start = text.find(START_MARKER)
    if start == -1:
        return None
    end = text.find(END_MARKER, start + len(START_MARKER))
    if end == -1:
        return None
    return text[start + len(START_MARKER) : end].strip()


def parse_shape(raw: str, shape: type[ShapeT]) -> ShapeT:
    """Parse raw text directly against a shape. Raises ValidationError."""
    return shape.model_validate_json(clean_response_text(raw))


def _build_repair_prompt(raw: str, shape: type[BaseModel], hint: str) -> str:
    schema = json.dumps(shape.model_json_schema(), indent=2)
    hint_block = f"\nAdditional constraints: {hint}\n" if hint else ""
    return f"""You are a JSON validator and repair system. Your job is to:
1. Check if the input is valid JSON
2. If it's valid, ensure it matches the expected format
3. If it's invalid but fixable, repair it
4. If it's beyond repair, return null

Expected JSON schema:
{schema}
{hint_block}
Input to validate: {json.dumps(raw)}

IMPORTANT: Your response must be EXACTLY in this format:
{START_MARKER}
{{valid json object or the word null}}
{END_MARKER}

DO NOT add any backticks, quotes, or other markers around the JSON."""


class SchemaValidator:
    """
    Validates oracle output against a pydantic shape, repairing once.

    Attributes:
        oracle: Oracle used for the repair call.
        tracker: Optional discard tracker.
    """

    def __init__(self, oracle: TextOracle, tracker: Optional[DiscardTracker] = None):
        self.oracle = oracle
        self.tracker = tracker

    def _discard(self, reason: DiscardReason, detail: str) -> None:
        if self.tracker is not None:
            self.tracker.record(reason, "validator", detail)
        else:
            logger.info(f"Validation discard: {reason.value} {detail}")

    def _parse_repaired(self, repaired: str, shape: type[ShapeT]) -> ShapeT:
        """Parse a repair answer. Raises ValidationFailed."""
        content = extract_between_markers(repaired or "")
        if content is None:
            raise ValidationFailed(f"{shape.__name__}: repair missing markers")
        if content.strip().lower() == "null":
            raise ValidationFailed(f"{shape.__name__}: unrepairable")
        try:
            return parse_shape(content, shape)
        except ValidationError as e:
            raise ValidationFailed(f"{shape.__name__}: repaired output invalid") from e

    async def validate(
        self,
        raw: str,
        shape: type[ShapeT],
        *,
        hint: str = "",
    ) -> Optional[ShapeT]:
        """
        Validate raw oracle output against ``shape``.

        Args:
            raw: Raw oracle response.
            shape: Pydantic model describing the expected record.
            hint: Extra constraints mentioned in the repair prompt
                (e.g. which goal id the record must carry).

        Returns:
            The parsed record, or None if neither the raw text nor the
            single repair attempt produced a valid record.
        """
        try:
            return parse_shape(raw, shape)
        except ValidationError as e:
            logger.debug(f"{shape.__name__} direct parse failed: {e.error_count()} error(s)")

        try:
            repaired = await self.oracle.generate(
                _build_repair_prompt(raw, shape, hint),
                structured=False,
                max_output_tokens=2000,
                temperature=0.0,
                system="You are a JSON validator and repair system.",
            )
        except OracleError as e:
            self._discard(DiscardReason.REPAIR_UNAVAILABLE, f"{shape.__name__}: {e}")
            return None

        try:
            record = self._parse_repaired(repaired, shape)
        except ValidationFailed as e:
            self._discard(DiscardReason.VALIDATION_FAILED, str(e))
            return None

        logger.info(f"{shape.__name__} repaired and validated")
        return record
