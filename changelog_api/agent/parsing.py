"""Resilient JSON extraction from model output.

Models wrap JSON in markdown fences, add prose around it, leave trailing
commas, and get cut off mid-document when they hit the token limit. The
parser handles each case in turn:

1. strip fenced code-block delimiters and parse directly;
2. locate a bracket and scan it with a string-aware tokenizer;
3. balanced: parse the substring (again without trailing commas), moving
   on to the next bracket when it is not JSON;
4. unterminated: cut after the latest complete array element and close
   the still open brackets, walking back through earlier cut points.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any

from changelog_api.errors import ResponseParseError


logger = logging.getLogger(__name__)

MAX_REPAIR_ATTEMPTS = 50
MAX_CANDIDATES = 10

_OPENING_FENCE = re.compile(r"```[\w+-]*[ \t]*\n?")
_CLOSERS = {"[": "]", "{": "}"}


def strip_code_fences(text: str) -> str:
    """Return the body of the first fenced block, or the trimmed text.

    An opening fence without a closing one (a truncated response) keeps
    everything after the fence.
    """
    text = text.strip()
    match = _OPENING_FENCE.search(text)
    if match is None:
        return text
    body = text[match.end():]
    closing = body.find("```")
    if closing != -1:
        body = body[:closing]
    return body.strip()


# =============================================================================
# Tokenizer
# =============================================================================

@dataclass
class ScanResult:
    """Outcome of scanning from an opening bracket."""

    start: int
    end: int | None = None  # exclusive end when the structure is balanced
    malformed: bool = False
    open_stack: list[str] = field(default_factory=list)
    # (cut index, closers still open at that point)
    boundaries: list[tuple[int, tuple[str, ...]]] = field(default_factory=list)

    @property
    def balanced(self) -> bool:
        return self.end is not None


def scan_structure(text: str, start: int) -> ScanResult:
    """Scan a JSON structure starting at ``text[start]``.

    Brackets inside string literals (including escaped quotes) are ignored.
    Cut points are recorded only where an array element is complete: after
    an object or array that closes inside an array, and before a comma of a
    scalar array with no object open around it. Cutting anywhere else would
    leave an object missing some of its members.
    """
    result = ScanResult(start=start)
    stack: list[str] = []
    in_string = False
    escaped = False

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
        elif char in _CLOSERS:
            stack.append(_CLOSERS[char])
        elif char in "]}":
            if not stack or stack[-1] != char:
                result.malformed = True
                return result
            stack.pop()
            if not stack:
                result.end = index + 1
                return result
            if stack[-1] == "]":
                result.boundaries.append((index + 1, tuple(stack)))
        elif char == "," and stack and stack[-1] == "]" and "}" not in stack:
            result.boundaries.append((index, tuple(stack)))

    result.open_stack = stack
    return result


def remove_trailing_commas(text: str) -> str:
    """Drop commas that directly precede a closing bracket, outside strings."""
    out: list[str] = []
    pending_comma: list[str] = []
    in_string = False
    escaped = False

    for char in text:
        if in_string:
            out.append(char)
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue

        if pending_comma:
            if char.isspace():
                pending_comma.append(char)
                continue
            if char in "]}":
                # Keep the whitespace, drop the comma
                out.extend(pending_comma[1:])
            else:
                out.extend(pending_comma)
            pending_comma = []

        if char == ",":
            pending_comma = [char]
        else:
            if char == '"':
                in_string = True
            out.append(char)

    out.extend(pending_comma)
    return "".join(out)


# =============================================================================
# Parsing
# =============================================================================

def _loads(text: str) -> Any:
    try:
        return json.loads(text)
    except ValueError:
        return None


def _matches(value: Any, expect: type | None) -> bool:
    if value is None:
        return False
    return expect is None or isinstance(value, expect)


def _next_bracket(text: str, expect: type | None, position: int = 0) -> int:
    if expect is list:
        return text.find("[", position)
    if expect is dict:
        return text.find("{", position)
    candidates = [i for i in (text.find("[", position), text.find("{", position)) if i != -1]
    return min(candidates) if candidates else -1


def _repair_truncated(text: str, scan: ScanResult, expect: type | None) -> Any:
    attempts = 0
    for cut, open_closers in reversed(scan.boundaries):
        if attempts >= MAX_REPAIR_ATTEMPTS:
            break
        attempts += 1
        candidate = text[scan.start:cut].rstrip()
        candidate = remove_trailing_commas(candidate) + "".join(reversed(open_closers))
        value = _loads(candidate)
        if _matches(value, expect):
            return value
    return None


def extract_json(text: str, expect: type | None = None) -> tuple[Any, bool]:
    """Extract a JSON value from ``text``.

    Returns ``(value, repaired)``; ``value`` is None when nothing could be
    recovered.
    """
    value = _loads(text)
    if _matches(value, expect):
        return value, False

    start = _next_bracket(text, expect)
    candidates = 0
    while start != -1 and candidates < MAX_CANDIDATES:
        candidates += 1
        scan = scan_structure(text, start)
        if scan.malformed:
            start = _next_bracket(text, expect, start + 1)
            continue

        if not scan.balanced:
            # Everything after an unterminated bracket is nested inside it
            return _repair_truncated(text, scan, expect), True

        snippet = text[start:scan.end]
        value = _loads(snippet)
        if _matches(value, expect):
            return value, False
        value = _loads(remove_trailing_commas(snippet))
        if _matches(value, expect):
            return value, True
        # Prose such as "[3 of 3]" ahead of the payload
        start = _next_bracket(text, expect, scan.end)

    return None, False


def parse_json_response(text: str | None, expect: type | None = None) -> Any:
    """Parse model output into JSON, repairing it where possible.

    Args:
        text: Raw model output
        expect: ``list`` or ``dict`` when the caller knows the top-level shape

    Raises:
        ResponseParseError: When no attempt yields a value of the expected shape
    """
    if text is None or not text.strip():
        raise ResponseParseError("Empty response from language model", code="EMPTY_RESPONSE")

    stripped = strip_code_fences(text)
    value, repaired = extract_json(stripped, expect)
    if value is None and stripped != text.strip():
        value, repaired = extract_json(text.strip(), expect)

    if value is None:
        logger.warning(f"Could not parse model output ({len(text)} chars): {text[:200]!r}")
        raise ResponseParseError("Model output is not valid JSON")

    if repaired:
        logger.warning(f"Repaired malformed model output ({len(text)} chars)")
    return value
