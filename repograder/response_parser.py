"""
Lenient parsing of the review model's reply.

The model is asked for a bare JSON object but sometimes wraps it in prose
or code fences. Parsing is done in two stages: a strict decode of the whole
reply, then a bounded scan for the outermost balanced ``{...}`` span. The
result is tagged, `ParsedResponse` or `EmptyResponse`; nothing here raises.
"""

import json
import logging
import math
from typing import Any, Literal

from pydantic import BaseModel

logger = logging.getLogger(__name__)

# Replies longer than this are only scanned up to this many characters
MAX_SCAN_CHARS: int = 200_000


class ParsedResponse(BaseModel):
    data: dict[str, Any]
    stage: Literal["strict", "extracted"]


class EmptyResponse(BaseModel):
    reason: str


ParseResult = ParsedResponse | EmptyResponse


def parse_model_response(content: str | None) -> ParseResult:
    """
    Decode a JSON object from the model's reply.

    Args:
        content: Raw reply text.

    Returns:
        ParsedResponse with the decoded object, or EmptyResponse explaining
        why nothing could be decoded.
    """
    if not content or not content.strip():
        return EmptyResponse(reason="empty reply")

    try:
        data = json.loads(content)
        if isinstance(data, dict):
            return ParsedResponse(data=data, stage="strict")
    except ValueError:
        pass

    for span in _balanced_object_spans(content[:MAX_SCAN_CHARS]):
        try:
            data = json.loads(span)
        except ValueError:
            continue
        if isinstance(data, dict):
            return ParsedResponse(data=data, stage="extracted")

    return EmptyResponse(reason="no JSON object found in reply")


def _balanced_object_spans(text: str):
    """
    Yield balanced ``{...}`` spans, outermost first, left to right.

    Braces inside JSON strings are ignored. When a span fails to decode the
    caller moves on to the next candidate, which starts at the next opening
    brace after the failed span's start.
    """
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        end = -1
        for index in range(start, len(text)):
            char = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    end = index
                    break

        if end != -1:
            yield text[start:end + 1]
        start = text.find("{", start + 1)


def coerce_score(data: dict[str, Any], field: str, required: bool = True) -> float | None:
    """
    Read a 0-100 score from decoded reply data.

    Missing or non-numeric values become 0 (or None when not required) and are
    logged as data-quality anomalies; out-of-range values are clamped.
    """
    value = data.get(field)

    if isinstance(value, bool) or not isinstance(value, (int, float)) or math.isnan(value):
        if value is None and not required:
            return None
        logger.warning("Analysis reply field '%s' is not numeric (%r); using 0", field, value)
        return 0.0 if required else None

    if value < 0 or value > 100:
        logger.warning("Analysis reply field '%s' out of range (%r); clamping to 0-100", field, value)
    return float(min(max(value, 0), 100))
