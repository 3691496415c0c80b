"""Lenient JSON helpers shared by the preprocessor and the response validator."""

from __future__ import annotations

import json
import re
from typing import Any, Iterator

_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_BARE_KEY_RE = re.compile(r"([{,]\s*)([A-Za-z_][\w\-]*)(\s*):")
_SINGLE_QUOTED_RE = re.compile(r"'([^'\"\\]*)'")


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code fence (```json ... ```) if present."""
    text = text.strip()
    if text.startswith("```"):
        # Remove opening fence (e.g. ```json)
        first_newline = text.find("\n")
        if first_newline != -1:
            text = text[first_newline + 1:]
        else:
            text = text[3:]
        # Remove closing fence
        if text.rstrip().endswith("```"):
            text = text.rstrip()[:-3].rstrip()
    return text


def repair_json(text: str) -> str:
    """Apply mechanical fixes for common LLM/operator JSON mistakes.

    Handles single-quoted strings, unquoted keys and trailing commas. The
    result is not guaranteed to decode; callers still need to try it.
    """
    fixed = _SINGLE_QUOTED_RE.sub(r'"\1"', text)
    fixed = _BARE_KEY_RE.sub(r'\1"\2"\3:', fixed)
    fixed = _TRAILING_COMMA_RE.sub(r"\1", fixed)
    return fixed


def iter_brace_blocks(text: str) -> Iterator[tuple[int, int]]:
    """Yield ``(start, end)`` spans of balanced top-level ``{...}`` regions.

    Braces inside double-quoted strings (with backslash escapes) are ignored.
    An unterminated block at the end of the text is not yielded.
    """
    depth = 0
    start = -1
    in_string = False
    escaped = False
    for i, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"' and depth > 0:
            in_string = True
        elif ch == "{":
            if depth == 0:
                start = i
            depth += 1
        elif ch == "}" and depth > 0:
            depth -= 1
            if depth == 0:
                yield start, i + 1


def extract_first_json_object(text: str) -> str | None:
    """Return the first balanced ``{...}`` substring of *text*, if any."""
    for start, end in iter_brace_blocks(text):
        return text[start:end]
    return None


def loads_json(text: str) -> Any:
    """Decode *text* as JSON, reporting runaway nesting and oversized
    integers as decode errors.

    Raises:
        json.JSONDecodeError: If *text* is not JSON, nests too deeply or
            holds an integer past the interpreter's digit limit.
    """
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        raise
    except RecursionError as exc:
        raise json.JSONDecodeError("JSON nests too deeply", text, 0) from exc
    except ValueError as exc:
        raise json.JSONDecodeError(str(exc), text, 0) from exc


def loads_lenient(text: str) -> Any:
    """Decode *text* as JSON, retrying once after :func:`repair_json`.

    Raises:
        json.JSONDecodeError: If neither the original nor the repaired text
            decodes.
    """
    try:
        return loads_json(text)
    except json.JSONDecodeError:
        return loads_json(repair_json(text))
