"""Input sanitization and literal structure extraction.

The preprocessor never raises for content problems: malformed JSON, odd
control characters or oversized input all degrade to weaker extraction
results rather than errors.

Usage::

    pre = InputPreprocessor()
    cleaned, data = pre.preprocess(raw_text)
    data.methods       # ["POST"]
    data.urls          # ["https://api.example.com/users"]
    data.json_blocks   # [JsonBlock(raw='{"name": "x"}', valid=True, ...)]
"""

from __future__ import annotations

import json
import logging
import re
from typing import Optional

from loadspec.parsing.json_utils import iter_brace_blocks, loads_json, repair_json
from loadspec.parsing.models import JsonBlock, StructuredData

logger = logging.getLogger(__name__)

DEFAULT_MAX_INPUT_LENGTH = 10_000

# Confidence assigned to JSON blocks that decode (directly or after repair)
# versus blocks that only look like JSON.
VALID_JSON_CONFIDENCE = 0.9
SUSPECT_JSON_CONFIDENCE = 0.5

_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
_HORIZONTAL_WS_RE = re.compile(r"[ \t]+")
_EXCESS_NEWLINES_RE = re.compile(r"\n{3,}")

# Verbs that are also everyday English words are matched case-insensitively;
# HEAD and OPTIONS only count when written in capitals.
METHOD_PATTERN = re.compile(
    r"\b(?:(?i:get|post|put|delete|patch)|HEAD|OPTIONS)\b"
)

_URL_RE = re.compile(
    r"https?://[^\s\"'<>`]+"
    r"|(?:^|(?<=[\s\"'(=]))/[^\s\"'<>`]+",
    re.MULTILINE,
)
_URL_TRAILING_PUNCT = ".,;:!?)'\""

_HEADER_LINE_RE = re.compile(
    r"^[ \t]*([A-Za-z][A-Za-z0-9-]*):[ \t]*([^\r\n\\]+)$",
    re.MULTILINE,
)
_QUOTED_HEADER_RE = re.compile(
    r"[\"']([A-Za-z][A-Za-z0-9-]*)[\"']\s*:\s*[\"']([^\"'\\]+)[\"']"
)
_CURL_HEADER_RE = re.compile(
    r"(?:-H|--header)\s+[\"']([A-Za-z][A-Za-z0-9-]*):\s*([^\"'\\]+)[\"']"
)
_KEY_VALUE_RE = re.compile(r"\b(\w+)\s*[:=]\s*([^\n\r,;]+)")

_REQUEST_SEPARATORS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\n\s*-{3,}\s*\n"),
    re.compile(r"\n\s*={3,}\s*\n"),
    re.compile(r"\n\s*Request\s*\d*\s*:?\s*\n", re.IGNORECASE),
    re.compile(r"\n\s*\d+\.\s*\n"),
)

# Line-start "Word: value" shapes that are prose labels, not HTTP headers.
_NON_HEADER_KEYS = frozenset(
    {
        "http", "https", "note", "notes", "request", "response", "example",
        "step", "test", "url", "endpoint", "method", "body", "payload",
        "data", "duration", "users", "load", "pattern", "type", "json",
    }
)

# Quoted "key": "value" pairs are only headers when the key is one of these
# (or an X- extension); otherwise they are ordinary JSON body fields.
KNOWN_HEADERS = frozenset(
    {
        "accept", "accept-encoding", "accept-language", "authorization",
        "cache-control", "connection", "content-length", "content-type",
        "cookie", "host", "origin", "referer", "user-agent", "api-key",
    }
)


def normalize_header_name(key: str) -> str:
    """Normalize a header name to Title-Case-Hyphenated (``content-type`` → ``Content-Type``)."""
    return "-".join(part[:1].upper() + part[1:] for part in key.lower().split("-"))


def _clean_header_value(value: str) -> str:
    return value.strip().rstrip("'\"\\").lstrip("'\"").strip()


class InputPreprocessor:
    """Sanitize raw operator text and extract literal structured candidates.

    Attributes:
        max_input_length: Inputs longer than this are truncated after
            sanitization.
    """

    def __init__(self, max_input_length: int = DEFAULT_MAX_INPUT_LENGTH) -> None:
        if max_input_length <= 0:
            raise ValueError("max_input_length must be positive")
        self.max_input_length = max_input_length

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def preprocess(self, raw: Optional[str]) -> tuple[str, StructuredData]:
        """Sanitize *raw* and extract structured data from the cleaned text."""
        cleaned = self.sanitize(raw)
        return cleaned, self.extract_structured_data(cleaned)

    def sanitize(self, text: Optional[str]) -> str:
        """Normalize whitespace, drop control characters and cap the length."""
        if not text:
            return ""
        sanitized = _CONTROL_CHARS_RE.sub(" ", text)
        sanitized = sanitized.replace("\r\n", "\n").replace("\r", "\n")
        sanitized = _HORIZONTAL_WS_RE.sub(" ", sanitized)
        sanitized = "\n".join(line.strip() for line in sanitized.split("\n"))
        sanitized = _EXCESS_NEWLINES_RE.sub("\n\n", sanitized).strip()

        if len(sanitized) > self.max_input_length:
            logger.warning(
                "Input truncated from %d to %d characters",
                len(sanitized),
                self.max_input_length,
            )
            sanitized = sanitized[: self.max_input_length]
        return sanitized

    def extract_structured_data(self, text: str) -> StructuredData:
        """Extract methods, URLs, headers, JSON blocks and key/value pairs."""
        return StructuredData(
            methods=self.extract_methods(text),
            urls=self.extract_urls(text),
            headers=self.extract_headers(text),
            json_blocks=self.extract_json_blocks(text),
            key_value_pairs=self.extract_key_value_pairs(text),
            request_segments=self.separate_requests(text),
        )

    # ------------------------------------------------------------------
    # Extractors
    # ------------------------------------------------------------------

    def extract_methods(self, text: str) -> list[str]:
        """Return HTTP verbs in order of first appearance."""
        seen: dict[str, None] = {}
        for match in METHOD_PATTERN.finditer(text):
            seen.setdefault(match.group(0).upper(), None)
        return list(seen)

    def extract_urls(self, text: str) -> list[str]:
        """Return absolute and root-relative URLs, deduplicated in order."""
        seen: dict[str, None] = {}
        for match in _URL_RE.finditer(text):
            url = match.group(0).rstrip(_URL_TRAILING_PUNCT)
            if len(url) > 1 and url not in ("http://", "https://"):
                seen.setdefault(url, None)
        return list(seen)

    def extract_headers(self, text: str) -> dict[str, str]:
        headers: dict[str, str] = {}

        for match in _HEADER_LINE_RE.finditer(text):
            key, value = match.group(1), match.group(2)
            if key.lower() in _NON_HEADER_KEYS or value.lstrip().startswith("//"):
                continue
            headers[normalize_header_name(key)] = _clean_header_value(value)

        for match in _QUOTED_HEADER_RE.finditer(text):
            key = match.group(1)
            lowered = key.lower()
            if lowered in KNOWN_HEADERS or lowered.startswith("x-"):
                headers[normalize_header_name(key)] = _clean_header_value(match.group(2))

        for match in _CURL_HEADER_RE.finditer(text):
            headers[normalize_header_name(match.group(1))] = _clean_header_value(
                match.group(2)
            )

        return {k: v for k, v in headers.items() if v}

    def extract_json_blocks(self, text: str) -> list[JsonBlock]:
        """Return brace-matched top-level JSON blocks.

        Blocks that do not decode are retried after :func:`repair_json`;
        blocks that still fail are kept at reduced confidence when they look
        like JSON (contain a ``:``) and dropped otherwise (``{id}`` path
        parameters, for example).
        """
        blocks: list[JsonBlock] = []
        for start, end in iter_brace_blocks(text):
            raw = text[start:end]
            parsed = None
            valid = False
            for candidate in (raw, repair_json(raw)):
                try:
                    parsed = loads_json(candidate)
                    valid = True
                    break
                except json.JSONDecodeError:
                    continue

            if valid:
                blocks.append(
                    JsonBlock(
                        raw=raw,
                        parsed=parsed,
                        valid=True,
                        confidence=VALID_JSON_CONFIDENCE,
                        start=start,
                        end=end,
                    )
                )
            elif ":" in raw:
                logger.debug("Keeping undecodable JSON-like block at %d", start)
                blocks.append(
                    JsonBlock(
                        raw=raw,
                        valid=False,
                        confidence=SUSPECT_JSON_CONFIDENCE,
                        start=start,
                        end=end,
                    )
                )
        return blocks

    def extract_key_value_pairs(self, text: str) -> dict[str, str]:
        """Return loose ``key: value`` / ``key=value`` tokens outside JSON blocks."""
        masked = text
        for start, end in iter_brace_blocks(text):
            masked = masked[:start] + " " * (end - start) + masked[end:]

        pairs: dict[str, str] = {}
        for match in _KEY_VALUE_RE.finditer(masked):
            key, value = match.group(1), match.group(2).strip()
            if key.lower() in ("http", "https") or not value:
                continue
            pairs[key] = value
        return pairs

    def separate_requests(self, text: str) -> list[str]:
        """Split text into candidate request segments.

        Recognised separators: ``---`` and ``===`` rules, ``Request N:``
        labels and bare numbered lines (``1.``) on their own line.
        """
        segments = ["\n" + text]
        for separator in _REQUEST_SEPARATORS:
            segments = [part for seg in segments for part in separator.split(seg)]
        return [s.strip() for s in segments if s.strip()]
