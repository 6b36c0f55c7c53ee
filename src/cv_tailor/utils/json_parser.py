"""Recover JSON from untrusted LLM output.

Works purely on text, so it does not matter which backend produced it.
"""

from __future__ import annotations

import json
import re

from cv_tailor.errors import ParseError

_OPENING_FENCE = re.compile(r"^```[a-zA-Z0-9_-]*[ \t]*\r?\n?")
_CLOSING_FENCE = re.compile(r"\r?\n?```\s*$")
_TRAILING_COMMA = re.compile(r",\s*([}\]])")

_NAMED_ESCAPES = {"\n": "\\n", "\r": "\\r", "\t": "\\t"}


def normalize(text: str) -> dict:
    """Extract and repair a JSON object from model text.

    Tries in order, stopping at the first successful decode:
    1. Strip leading/trailing code fences
    2. Cut from the first '{' to the last '}' (drops prose around the object)
    3. Decode directly
    4. Escape raw control characters inside string literals, decode
    5. Drop trailing commas before '}' or ']', decode

    Raises:
        ParseError: carrying a bounded excerpt of the raw text.
    """
    if not text or not text.strip():
        raise ParseError("Model returned an empty response", text)

    candidate = extract_object_text(strip_code_fences(text))
    if candidate is None:
        raise ParseError("No JSON object found in model response", text)

    decoded = _try_decode(candidate)
    if decoded is None:
        candidate = repair_control_characters(candidate)
        decoded = _try_decode(candidate)
    if decoded is None:
        decoded = _try_decode(strip_trailing_commas(candidate))

    if decoded is None:
        raise ParseError(
            "Failed to parse AI response. The AI may not have returned valid JSON.", text
        )
    if not isinstance(decoded, dict):
        raise ParseError("Model response is not a JSON object", text)
    return decoded


def extract_json(text: str) -> dict | list:
    """Like normalize(), but also accepts a top-level JSON array."""
    stripped = strip_code_fences(text or "")
    try:
        return json.loads(stripped)
    except (json.JSONDecodeError, TypeError):
        pass

    array_start = stripped.find("[")
    object_start = stripped.find("{")
    if array_start != -1 and (object_start == -1 or array_start < object_start):
        result = _extract_brackets(stripped)
        if result is not None:
            return result
    return normalize(text)


def strip_code_fences(text: str) -> str:
    """Remove a leading ```lang marker and a trailing ``` marker."""
    text = text.strip()
    text = _OPENING_FENCE.sub("", text, count=1)
    text = _CLOSING_FENCE.sub("", text, count=1)
    return text.strip()


def extract_object_text(text: str) -> str | None:
    """Return the substring from the first '{' to the last '}'."""
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    return text[start : end + 1]


def repair_control_characters(text: str) -> str:
    """Escape raw control characters that appear inside JSON string literals.

    Characters outside string literals pass through unchanged.
    """
    out: list[str] = []
    in_string = False
    escape_next = False
    for char in text:
        if escape_next:
            out.append(char)
            escape_next = False
            continue
        if char == "\\":
            out.append(char)
            escape_next = True
            continue
        if char == '"':
            in_string = not in_string
            out.append(char)
            continue
        if in_string and ord(char) < 0x20:
            out.append(_NAMED_ESCAPES.get(char, "\\u%04x" % ord(char)))
        else:
            out.append(char)
    return "".join(out)


def strip_trailing_commas(text: str) -> str:
    return _TRAILING_COMMA.sub(r"\1", text)


def _try_decode(text: str):
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return None


def _extract_brackets(text: str) -> list | None:
    """Try to extract a JSON array from first '[' to last ']'."""
    start = text.find("[")
    end = text.rfind("]")
    if start != -1 and end != -1 and end > start:
        candidate = text[start : end + 1]
        for attempt in (candidate, repair_control_characters(candidate)):
            decoded = _try_decode(attempt)
            if isinstance(decoded, list):
                return decoded
        decoded = _try_decode(strip_trailing_commas(repair_control_characters(candidate)))
        if isinstance(decoded, list):
            return decoded
    return None
