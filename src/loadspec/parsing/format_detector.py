"""Format classification: score the input against known shapes and emit hints."""

from __future__ import annotations

import logging
import re

from loadspec.parsing.models import (
    FormatDetectionResult,
    HintKind,
    InputFormat,
    ParsingHint,
    StructuredData,
)
from loadspec.parsing.preprocessor import METHOD_PATTERN, normalize_header_name

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Hint patterns and confidences
# ---------------------------------------------------------------------------

_URL_RE = re.compile(r"https?://[^\s<>\"{}|\\^`\[\]]+")
_HEADER_LINE_RE = re.compile(r"^[ \t]*([\w-]+):[ \t]*[^\r\n]+$", re.MULTILINE)
_COUNT_RE = re.compile(r"\b(\d{1,9})(?!\d)\s*(?:users?|concurrent|parallel|threads?)\b", re.IGNORECASE)

METHOD_HINT_CONFIDENCE = 0.9
URL_HINT_CONFIDENCE = 0.95
HEADER_HINT_CONFIDENCE = 0.8
COUNT_HINT_CONFIDENCE = 0.8

# ---------------------------------------------------------------------------
# Format signatures
# ---------------------------------------------------------------------------

_CURL_RE = re.compile(r"\bcurl\s+(?:-{1,2}[A-Za-z]|['\"]?https?://)", re.IGNORECASE)

_HTTP_RAW_INDICATORS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^(?:GET|POST|PUT|DELETE|PATCH|HEAD|OPTIONS)\s+\S+\s+HTTP/\d\.\d", re.MULTILINE),
    re.compile(r"^Host:\s*\S+", re.MULTILINE | re.IGNORECASE),
    re.compile(r"^User-Agent:\s*\S+", re.MULTILINE | re.IGNORECASE),
)

_NL_MARKERS_RE = re.compile(
    r"\b(test|load|performance|users?|requests?|endpoint|please|create|need|want)\b",
    re.IGNORECASE,
)

NATURAL_LANGUAGE_INDICATORS: tuple[str, ...] = (
    "please",
    "can you",
    "i want",
    "i need",
    "create a test",
    "load test",
    "performance test",
    "test with",
    "simulate",
)

CURL_CONFIDENCE = 0.95
HTTP_RAW_CONFIDENCE = 0.9
HTTP_RAW_PARTIAL_SCORE = 0.6
CONCATENATED_SCORE = 0.8
JSON_WITH_TEXT_SCORE = 0.7
MIXED_SCORE = 0.6

# Minimum prose (characters outside JSON blocks) for json_with_text.
_MIN_SURROUNDING_TEXT = 20


class FormatDetector:
    """Classify input text into one :class:`InputFormat`.

    ``curl`` and fully-indicated ``http_raw`` inputs short-circuit with a
    fixed confidence. Every other format is scored, each positive score is
    scaled by a complexity factor derived from hint density and input
    length, and the best score wins with natural language as the tie-break.

    Example::

        detector = FormatDetector()
        result = detector.detect("curl -X POST https://api.example.com/users", data)
        assert result.format is InputFormat.CURL
    """

    def detect(self, text: str, structured: StructuredData) -> FormatDetectionResult:
        hints = self.extract_hints(text, structured)

        if _CURL_RE.search(text):
            return FormatDetectionResult(
                format=InputFormat.CURL, confidence=CURL_CONFIDENCE, hints=hints
            )

        raw_matches = sum(1 for p in _HTTP_RAW_INDICATORS if p.search(text))
        if raw_matches >= 2:
            return FormatDetectionResult(
                format=InputFormat.HTTP_RAW, confidence=HTTP_RAW_CONFIDENCE, hints=hints
            )

        scores = self._score_formats(text, structured, hints, raw_matches)
        complexity = self.complexity(text, hints)
        for fmt, score in scores.items():
            if score > 0:
                scores[fmt] = min(score * complexity, 1.0)

        best = InputFormat.NATURAL_LANGUAGE
        best_score = scores[best]
        for fmt, score in scores.items():
            if score > best_score:
                best, best_score = fmt, score

        logger.debug("Detected format %s (%.2f) from %d hints", best.value, best_score, len(hints))
        return FormatDetectionResult(
            format=best, confidence=min(best_score, 1.0), hints=hints
        )

    # ------------------------------------------------------------------
    # Hints
    # ------------------------------------------------------------------

    def extract_hints(self, text: str, structured: StructuredData) -> list[ParsingHint]:
        """Collect method, url, header, body and count hints with their spans."""
        hints: list[ParsingHint] = []

        for m in METHOD_PATTERN.finditer(text):
            hints.append(
                ParsingHint(
                    kind=HintKind.METHOD,
                    value=m.group(0).upper(),
                    confidence=METHOD_HINT_CONFIDENCE,
                    span=(m.start(), m.end()),
                )
            )

        for m in _URL_RE.finditer(text):
            hints.append(
                ParsingHint(
                    kind=HintKind.URL,
                    value=m.group(0),
                    confidence=URL_HINT_CONFIDENCE,
                    span=(m.start(), m.end()),
                )
            )

        for m in _HEADER_LINE_RE.finditer(text):
            if normalize_header_name(m.group(1)) in structured.headers:
                hints.append(
                    ParsingHint(
                        kind=HintKind.HEADERS,
                        value=m.group(0).strip(),
                        confidence=HEADER_HINT_CONFIDENCE,
                        span=(m.start(), m.end()),
                    )
                )

        for block in structured.json_blocks:
            hints.append(
                ParsingHint(
                    kind=HintKind.BODY,
                    value=block.raw,
                    confidence=block.confidence,
                    span=(block.start, block.end),
                )
            )

        for m in _COUNT_RE.finditer(text):
            hints.append(
                ParsingHint(
                    kind=HintKind.COUNT,
                    value=m.group(1),
                    confidence=COUNT_HINT_CONFIDENCE,
                    span=(m.start(), m.end()),
                )
            )

        return hints

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    @staticmethod
    def complexity(text: str, hints: list[ParsingHint]) -> float:
        hint_bonus = min(len(hints) * 0.05, 0.2)
        length_bonus = min(len(text) / 2000, 0.1)
        return min(0.7 + hint_bonus + length_bonus, 1.0)

    def _score_formats(
        self,
        text: str,
        structured: StructuredData,
        hints: list[ParsingHint],
        raw_matches: int,
    ) -> dict[InputFormat, float]:
        # Iteration order decides ties between non-default formats.
        scores: dict[InputFormat, float] = {
            InputFormat.NATURAL_LANGUAGE: 0.0,
            InputFormat.MIXED: 0.0,
            InputFormat.CURL: 0.0,
            InputFormat.HTTP_RAW: 0.0,
            InputFormat.JSON_WITH_TEXT: 0.0,
            InputFormat.CONCATENATED: 0.0,
        }
        kinds = [h.kind for h in hints]

        if raw_matches == 1:
            scores[InputFormat.HTTP_RAW] = HTTP_RAW_PARTIAL_SCORE

        if kinds.count(HintKind.METHOD) > 1 or kinds.count(HintKind.URL) > 1:
            scores[InputFormat.CONCATENATED] = CONCATENATED_SCORE

        if HintKind.BODY in kinds:
            prose = text
            for block in sorted(structured.json_blocks, key=lambda b: b.start, reverse=True):
                prose = prose[: block.start] + prose[block.end:]
            if len(prose.strip()) > _MIN_SURROUNDING_TEXT:
                scores[InputFormat.JSON_WITH_TEXT] = JSON_WITH_TEXT_SCORE

        has_structure = any(
            k in (HintKind.URL, HintKind.HEADERS, HintKind.METHOD) for k in kinds
        )
        if has_structure and _NL_MARKERS_RE.search(text):
            scores[InputFormat.MIXED] = MIXED_SCORE

        lowered = text.lower()
        nl_score = 0.1 + 0.15 * sum(1 for i in NATURAL_LANGUAGE_INDICATORS if i in lowered)
        if not hints:
            nl_score += 0.4
        scores[InputFormat.NATURAL_LANGUAGE] = min(nl_score, 0.9)

        return scores
