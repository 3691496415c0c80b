"""Context building, field inference and ambiguity detection.

The three operations are independent pure transforms over an immutable
:class:`ParseContext`::

    ctx = enhancer.build_context(raw, cleaned, structured, detection)
    ctx = enhancer.infer_missing_fields(ctx)
    ctx = enhancer.resolve_ambiguities(ctx)

Each returns a new context, so every heuristic layer can be exercised on
its own and ``resolve_ambiguities`` can be re-run without compounding its
confidence penalty.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Optional

from loadspec.parsing.models import (
    Ambiguity,
    ExtractedComponents,
    FormatDetectionResult,
    HintKind,
    InferredFields,
    LoadPatternType,
    ParseContext,
    StructuredData,
    TestType,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Defaults and keyword tables
# ---------------------------------------------------------------------------

DEFAULT_TEST_TYPE = TestType.BASELINE
DEFAULT_DURATION = "30s"
DEFAULT_LOAD_PATTERN = LoadPatternType.CONSTANT

DEFAULT_METHOD_CANDIDATES = ["GET", "POST"]
DEFAULT_URL_CANDIDATES = ["http://localhost:8080", "https://api.example.com"]
DEFAULT_USER_COUNT_CANDIDATES = ["1", "10", "100"]
DEFAULT_DURATION_CANDIDATES = ["30s", "1m", "5m"]
DEFAULT_LOAD_PATTERN_CANDIDATES = ["constant", "ramp-up", "spike"]
CONTENT_TYPE_CANDIDATES = ["application/json", "application/x-www-form-urlencoded"]

# Specific test types are checked before the generic "load" family so that
# "stress load test" is a stress test.
TEST_TYPE_KEYWORDS: list[tuple[TestType, tuple[str, ...]]] = [
    (TestType.STRESS, ("stress", "breaking point", "breaking")),
    (TestType.SPIKE, ("spike", "burst", "peak")),
    (TestType.ENDURANCE, ("endurance", "soak", "long running", "extended")),
    (TestType.VOLUME, ("volume", "large dataset", "bulk")),
    (TestType.BASELINE, ("baseline", "load", "performance", "capacity")),
]

LOAD_PATTERN_KEYWORDS: list[tuple[LoadPatternType, tuple[str, ...]]] = [
    (LoadPatternType.CONSTANT, ("constant", "steady", "fixed", "stable")),
    (LoadPatternType.RAMP_UP, ("ramp", "ramping", "gradual", "gradually", "increase", "scale up")),
    (LoadPatternType.SPIKE, ("spike", "burst", "sudden")),
    (LoadPatternType.STEP, ("step", "stepped", "steps")),
]

# Test-type specific durations when none is stated.
_TEST_TYPE_DURATIONS: dict[TestType, str] = {
    TestType.STRESS: "60s",
    TestType.SPIKE: "60s",
    TestType.ENDURANCE: "10m",
}

_DURATION_RE = re.compile(
    r"\b(\d{1,9})(?!\d)\s*(seconds?|secs?|s|minutes?|mins?|m|hours?|hrs?|h)\b",
    re.IGNORECASE,
)

STRESS_USER_THRESHOLD = 1000
CRITICAL_AMBIGUITY_FIELDS = frozenset({"method", "url"})
CRITICAL_AMBIGUITY_PENALTY = 0.2
MINOR_AMBIGUITY_PENALTY = 0.05
DEFAULT_FIELD_DISCOUNT = 0.9
MIN_CONFIDENCE = 0.1

_URL_TRAILING_PUNCT = ".,;:!?)'\""


def _keyword_match(text: str, keywords: tuple[str, ...]) -> bool:
    return any(re.search(rf"\b{re.escape(k)}\b", text) for k in keywords)


def _unique(items: list[Any]) -> list[Any]:
    seen: list[Any] = []
    for item in items:
        if item not in seen:
            seen.append(item)
    return seen


def is_relative_url(url: str) -> bool:
    return url.startswith("/") and not url.startswith("//")


class ContextEnhancer:
    """Build and refine the working :class:`ParseContext` for one input."""

    # ------------------------------------------------------------------
    # build
    # ------------------------------------------------------------------

    def build_context(
        self,
        original_input: str,
        cleaned_input: str,
        structured: StructuredData,
        detection: FormatDetectionResult,
    ) -> ParseContext:
        """Merge structured data and hints into a fresh context."""
        components = self._extract_components(structured, detection)
        confidence = self._initial_confidence(structured, detection)
        return ParseContext(
            original_input=original_input,
            cleaned_input=cleaned_input,
            format=detection.format,
            format_confidence=detection.confidence,
            hints=list(detection.hints),
            structured=structured,
            extracted_components=components,
            confidence=confidence,
            base_confidence=confidence,
        )

    @staticmethod
    def _extract_components(
        structured: StructuredData, detection: FormatDetectionResult
    ) -> ExtractedComponents:
        methods = list(structured.methods)
        for hint in detection.hints:
            if hint.kind == HintKind.METHOD:
                methods.append(hint.value)

        urls = list(structured.urls)
        for hint in detection.hints:
            if hint.kind != HintKind.URL:
                continue
            value = hint.value.rstrip(_URL_TRAILING_PUNCT)
            # Hint URLs stop at template braces; the structured URL is fuller.
            if not any(u.startswith(value) for u in urls):
                urls.append(value)

        bodies = [b.parsed if b.valid else b.raw for b in structured.json_blocks]
        counts = [
            int(h.value) for h in detection.hints
            if h.kind == HintKind.COUNT and h.value.isdigit()
        ]
        return ExtractedComponents(
            methods=_unique(methods),
            urls=_unique(urls),
            headers=dict(structured.headers),
            bodies=bodies,
            counts=_unique(counts),
        )

    @staticmethod
    def _initial_confidence(
        structured: StructuredData, detection: FormatDetectionResult
    ) -> float:
        confidence = 0.3
        if structured.methods:
            confidence += 0.15
        if structured.urls:
            confidence += 0.2
        if structured.headers:
            confidence += 0.1
        if any(b.valid for b in structured.json_blocks):
            confidence += 0.15
        strong_hints = sum(1 for h in detection.hints if h.confidence > 0.8)
        confidence += min(strong_hints * 0.05, 0.2)
        return min(confidence, 1.0)

    # ------------------------------------------------------------------
    # infer
    # ------------------------------------------------------------------

    def infer_missing_fields(self, ctx: ParseContext) -> ParseContext:
        """Fill test type, duration, load pattern and request body.

        Each field tries an explicit keyword, then contextual inference, then
        a fixed default; every field that lands on its default discounts the
        confidence by ``DEFAULT_FIELD_DISCOUNT``.
        """
        text = ctx.cleaned_input.lower()
        fields = ctx.inferred_fields
        defaulted: list[str] = list(ctx.defaulted_fields)

        test_type = fields.test_type
        if test_type is None:
            test_type, used_default = self._infer_test_type(text, ctx.extracted_components)
            if used_default:
                defaulted.append("testType")

        duration = fields.duration
        if duration is None:
            duration, used_default = self._infer_duration(ctx.cleaned_input, test_type)
            if used_default:
                defaulted.append("duration")

        load_pattern = fields.load_pattern
        if load_pattern is None:
            load_pattern, used_default = self._infer_load_pattern(text, test_type)
            if used_default:
                defaulted.append("loadPattern")

        request_body = fields.request_body
        if request_body is None:
            request_body = self._infer_request_body(ctx.structured)

        defaulted = _unique(defaulted)
        newly_defaulted = len(defaulted) - len(ctx.defaulted_fields)
        confidence = max(
            ctx.base_confidence * (DEFAULT_FIELD_DISCOUNT ** newly_defaulted),
            MIN_CONFIDENCE,
        )
        logger.debug(
            "Inferred test_type=%s duration=%s load_pattern=%s (defaults: %s)",
            test_type.value,
            duration,
            load_pattern.value,
            defaulted or "none",
        )
        return ctx.model_copy(
            update={
                "inferred_fields": InferredFields(
                    test_type=test_type,
                    duration=duration,
                    load_pattern=load_pattern,
                    request_body=request_body,
                ),
                "defaulted_fields": defaulted,
                "confidence": confidence,
                "base_confidence": confidence,
            }
        )

    @staticmethod
    def _infer_test_type(
        text: str, components: ExtractedComponents
    ) -> tuple[TestType, bool]:
        for test_type, keywords in TEST_TYPE_KEYWORDS:
            if _keyword_match(text, keywords):
                return test_type, False
        if any(c > STRESS_USER_THRESHOLD for c in components.counts):
            return TestType.STRESS, False
        if "concurrent" in text or "parallel" in text:
            return TestType.BASELINE, False
        return DEFAULT_TEST_TYPE, True

    @staticmethod
    def _infer_duration(text: str, test_type: TestType) -> tuple[str, bool]:
        match = _DURATION_RE.search(text)
        if match:
            unit = match.group(2).lower()[0]
            return f"{int(match.group(1))}{unit}", False
        if test_type in _TEST_TYPE_DURATIONS:
            return _TEST_TYPE_DURATIONS[test_type], False
        return DEFAULT_DURATION, True

    @staticmethod
    def _infer_load_pattern(
        text: str, test_type: TestType
    ) -> tuple[LoadPatternType, bool]:
        for pattern, keywords in LOAD_PATTERN_KEYWORDS:
            if _keyword_match(text, keywords):
                return pattern, False
        if test_type == TestType.SPIKE:
            return LoadPatternType.SPIKE, False
        if test_type == TestType.STRESS:
            return LoadPatternType.RAMP_UP, False
        return DEFAULT_LOAD_PATTERN, True

    @staticmethod
    def _infer_request_body(structured: StructuredData) -> Optional[Any]:
        """The first decodable JSON block, used verbatim."""
        for block in structured.json_blocks:
            if block.valid:
                return block.parsed
        return None

    # ------------------------------------------------------------------
    # resolve
    # ------------------------------------------------------------------

    def resolve_ambiguities(self, ctx: ParseContext) -> ParseContext:
        """Record every under- or over-determined field.

        Confidence is recomputed from ``base_confidence`` so the operation is
        idempotent.
        """
        comps = ctx.extracted_components
        ambiguities: list[Ambiguity] = []

        if not comps.methods:
            ambiguities.append(
                Ambiguity(
                    field="method",
                    possible_values=list(DEFAULT_METHOD_CANDIDATES),
                    reason="No HTTP method specified; GET suits reads and POST suits writes",
                )
            )
        elif len(comps.methods) > 1:
            ambiguities.append(
                Ambiguity(
                    field="method",
                    possible_values=list(comps.methods),
                    reason="Multiple HTTP methods found; unclear which one to test",
                )
            )

        if not comps.urls:
            ambiguities.append(
                Ambiguity(
                    field="url",
                    possible_values=list(DEFAULT_URL_CANDIDATES),
                    reason="No URL specified; a target endpoint is required",
                )
            )
        elif len(comps.urls) > 1:
            ambiguities.append(
                Ambiguity(
                    field="url",
                    possible_values=list(comps.urls),
                    reason="Multiple URLs found; unclear which endpoint to test",
                )
            )
        elif is_relative_url(comps.urls[0]):
            url = comps.urls[0]
            ambiguities.append(
                Ambiguity(
                    field="url",
                    possible_values=[f"http://localhost{url}", f"https://api.example.com{url}"],
                    reason="Relative URL found; protocol and host are missing",
                )
            )

        if not comps.counts:
            ambiguities.append(
                Ambiguity(
                    field="userCount",
                    possible_values=list(DEFAULT_USER_COUNT_CANDIDATES),
                    reason="No user count specified",
                )
            )
        elif len(comps.counts) > 1:
            ambiguities.append(
                Ambiguity(
                    field="userCount",
                    possible_values=[str(c) for c in comps.counts],
                    reason="Multiple counts found; unclear which is the user count",
                )
            )

        auth_headers = [
            k for k in comps.headers
            if "auth" in k.lower() or "token" in k.lower() or k.lower() == "api-key"
        ]
        if len(auth_headers) > 1:
            ambiguities.append(
                Ambiguity(
                    field="authentication",
                    possible_values=auth_headers,
                    reason="Multiple authentication headers found; unclear which one to use",
                )
            )

        has_content_type = any(k.lower() == "content-type" for k in comps.headers)
        if comps.bodies and not has_content_type:
            ambiguities.append(
                Ambiguity(
                    field="content-type",
                    possible_values=list(CONTENT_TYPE_CANDIDATES),
                    reason="Request body found but no Content-Type header specified",
                )
            )

        if "duration" in ctx.defaulted_fields:
            ambiguities.append(
                Ambiguity(
                    field="duration",
                    possible_values=list(DEFAULT_DURATION_CANDIDATES),
                    reason="No test duration specified; using the default",
                )
            )
        if "loadPattern" in ctx.defaulted_fields:
            ambiguities.append(
                Ambiguity(
                    field="loadPattern",
                    possible_values=list(DEFAULT_LOAD_PATTERN_CANDIDATES),
                    reason="No load pattern specified; using constant load",
                )
            )

        critical = sum(1 for a in ambiguities if a.field in CRITICAL_AMBIGUITY_FIELDS)
        minor = len(ambiguities) - critical
        confidence = max(
            ctx.base_confidence
            - critical * CRITICAL_AMBIGUITY_PENALTY
            - minor * MINOR_AMBIGUITY_PENALTY,
            MIN_CONFIDENCE,
        )
        return ctx.model_copy(
            update={"ambiguities": ambiguities, "confidence": confidence}
        )

    def enhance(
        self,
        original_input: str,
        cleaned_input: str,
        structured: StructuredData,
        detection: FormatDetectionResult,
    ) -> ParseContext:
        """Run build, infer and resolve in order."""
        ctx = self.build_context(original_input, cleaned_input, structured, detection)
        return self.resolve_ambiguities(self.infer_missing_fields(ctx))
