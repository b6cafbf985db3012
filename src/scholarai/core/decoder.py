"""Best-effort decoding of JSON payloads returned by a generative model.

Model output is frequently wrapped in markdown fences, carries raw control
characters inside string values, or is cut off at the token limit. The
decoder applies a fixed list of repair rules and never raises:

1. strip a surrounding ```json ... ``` fence
2. escape raw control characters inside strings (``\\n``, ``\\r``, ``\\t``),
   drop any other control byte
3. strict parse
4. repair truncation: drop a dangling escape, close an open string, drop a
   trailing comma, complete a dangling ``"key":`` with ``null``, then close
   every unclosed ``[`` / ``{`` innermost first
5. strict parse again, else ``{}``
"""

import json
import logging
import re
from typing import Any, List, Tuple

logger = logging.getLogger(__name__)

_FENCE_OPEN = re.compile(r"^```[a-zA-Z0-9_-]*\s*")
_FENCE_CLOSE = re.compile(r"\s*```$")
_CONTROL_ESCAPES = {"\n": "\\n", "\r": "\\r", "\t": "\\t"}
_CLOSERS = {"{": "}", "[": "]"}


def strip_code_fence(text: str) -> str:
    """Remove a markdown code fence around the payload, if present."""
    text = text.strip()
    if text.startswith("```"):
        text = _FENCE_OPEN.sub("", text, count=1)
        text = _FENCE_CLOSE.sub("", text, count=1)
    return text.strip()


def escape_control_characters(text: str) -> str:
    """Escape raw control characters inside JSON strings; drop stray ones outside."""
    out = []
    in_string = False
    escaped = False
    for ch in text:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            elif ord(ch) < 0x20:
                out.append(_CONTROL_ESCAPES.get(ch, ""))
                continue
        else:
            if ch == '"':
                in_string = True
            elif ord(ch) < 0x20 and ch not in _CONTROL_ESCAPES:
                continue
        out.append(ch)
    return "".join(out)


def _scan(text: str) -> Tuple[bool, bool, List[str]]:
    """Return (inside string, pending escape, unclosed openers) at end of text."""
    in_string = False
    escaped = False
    stack: List[str] = []
    for ch in text:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch in _CLOSERS:
            stack.append(ch)
        elif ch in ("}", "]") and stack and _CLOSERS[stack[-1]] == ch:
            stack.pop()
    return in_string, escaped, stack


def repair_truncated_json(text: str) -> str:
    """Close whatever a truncated JSON document left open."""
    in_string, escaped, _ = _scan(text)

    if escaped:
        text = text[:-1]
    if in_string:
        text += '"'

    text = text.rstrip()
    if text.endswith(","):
        text = text[:-1].rstrip()
    if text.endswith(":"):
        text += " null"

    _, _, stack = _scan(text)
    return text + "".join(_CLOSERS[opener] for opener in reversed(stack))


def decode_model_json(raw_text: Any) -> Any:
    """
    Parse a model response into JSON data.

    Args:
        raw_text: Raw response text (``None`` and non-strings are tolerated)

    Returns:
        Parsed value, or an empty dict when the payload cannot be recovered
    """
    if not isinstance(raw_text, str) or not raw_text.strip():
        return {}

    text = escape_control_characters(strip_code_fence(raw_text))

    try:
        return json.loads(text)
    except ValueError:
        pass

    repaired = repair_truncated_json(text)
    try:
        value = json.loads(repaired)
        logger.info("Repaired malformed model JSON")
        return value
    except ValueError as e:
        logger.warning(f"Could not decode model response ({len(raw_text)} chars): {e}")
        return {}
