"""Optimistic extraction of structured data from free-form oracle text."""
import json
import logging
import re
from typing import Any, Dict, Optional

from .errors import DecisionMalformed

logger = logging.getLogger(__name__)

# Everything below 0x20 except tab/newline/carriage return, plus DEL
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")

_CODE_BLOCK = re.compile(r"```([\w+-]*)[ \t]*\n(.*?)```", re.DOTALL)


def strip_control_chars(text: str) -> str:
    return _CONTROL_CHARS.sub("", text)


def find_object_span(text: str) -> Optional[str]:
    """Return the first balanced ``{...}`` span in text, ignoring braces inside strings."""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escape = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escape:
                    escape = False
                elif ch == "\\":
                    escape = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start:i + 1]
        # Never closed; retry from the next opening brace
        start = text.find("{", start + 1)
    return None


def extract_json_object(text: str) -> Dict[str, Any]:
    """Parse the first JSON object embedded in text.

    Raises DecisionMalformed when no object can be found or decoded.
    """
    if not text:
        raise DecisionMalformed("empty oracle response")
    span = find_object_span(strip_control_chars(text))
    if span is None:
        raise DecisionMalformed("no JSON object in oracle response")
    try:
        value = json.loads(span, strict=False)
    except json.JSONDecodeError as e:
        raise DecisionMalformed(f"invalid JSON: {e}") from e
    if not isinstance(value, dict):
        raise DecisionMalformed("oracle JSON is not an object")
    return value


def try_extract_json_object(text: str, label: str = "oracle") -> Optional[Dict[str, Any]]:
    """Like extract_json_object, but logs and returns None on failure."""
    try:
        return extract_json_object(text)
    except DecisionMalformed as e:
        logger.warning(f"{label} JSON parse failed: {e}; raw={text[:200]!r}")
        return None


def extract_code_block(text: str, language: str = "python") -> Optional[str]:
    """Return the first fenced code block, preferring one tagged with language."""
    blocks = _CODE_BLOCK.findall(text or "")
    if not blocks:
        return None
    for tag, body in blocks:
        if tag.lower() in (language, language[:2]):
            return body.strip("\n")
    return blocks[0][1].strip("\n")


def coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "y", "1")
    if isinstance(value, (int, float)):
        return value != 0
    return False
