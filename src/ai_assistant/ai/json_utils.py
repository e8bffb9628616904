"""Tolerant JSON handling for model-originated payloads."""

from __future__ import annotations

import json
import re
from typing import Any, Optional

from json_repair import repair_json

from ai_assistant.errors import ParseError

_CONTROL_WHITESPACE = re.compile(r"[\r\n\t]")


def strip_line_breaks(text: str) -> str:
    return _CONTROL_WHITESPACE.sub("", text)


def extract_json_string(text: Optional[str]) -> Optional[str]:
    """Return the substring from the first ``{`` to the last ``}``, or None."""
    if not text:
        return None
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end < start:
        return None
    return text[start : end + 1]


def repair_and_load(text: Optional[str]) -> Any:
    """Repair minor syntax errors, then parse strictly.

    Raises ParseError when the repaired text still is not valid JSON.
    """
    if text is None or not text.strip():
        raise ParseError("Empty JSON payload", raw=text)
    try:
        repaired = repair_json(text)
        return json.loads(repaired)
    except (ValueError, RecursionError) as e:
        raise ParseError(f"Unparsable JSON payload: {e}", raw=text) from e


def parse_json_object(text: Optional[str]) -> dict[str, Any]:
    """Like :func:`repair_and_load` but the top level must be an object."""
    data = repair_and_load(text)
    if not isinstance(data, dict):
        raise ParseError(f"Expected a JSON object, got {type(data).__name__}", raw=text)
    return data
