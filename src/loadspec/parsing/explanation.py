"""Confidence scoring and human-readable explanation of a parsed spec."""

from __future__ import annotations

import logging
from typing import Any, Optional

from pydantic import BaseModel, Field

from loadspec.parsing.context_enhancer import DEFAULT_URL_CANDIDATES
from loadspec.parsing.models import (
    AmbiguityResolution,
    Assumption,
    HttpMethod,
    LoadPatternType,
    LoadTestSpec,
    ParseContext,
    ParsingExplanation,
    TestType,
)

logger = logging.getLogger(__name__)

AI_CONFIDENCE_FLOOR = 0.3
FALLBACK_CONFIDENCE_FLOOR = 0.1
LOW_CONFIDENCE_WARNING = 0.5
HIGH_CONCURRENCY_USERS = 100
MIN_STRESS_DURATION_SECONDS = 60

USER_COUNT_ALTERNATIVES = [1, 10, 50, 100]
_COMMON_METHODS = ["GET", "POST", "PUT", "DELETE"]
_AUTH_HEADERS = frozenset({"authorization", "api-key", "x-api-key", "x-auth-token"})


class ExplanationReport(BaseModel):
    """Everything the engine derives for one (context, spec) pair."""

    confidence: float = Field(..., ge=0.0, le=1.0)
    assumptions: list[Assumption] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    explanation: ParsingExplanation


def _has_auth(headers: dict[str, str]) -> bool:
    return any(k.lower() in _AUTH_HEADERS for k in headers)


def _looks_like_api(url: str) -> bool:
    lowered = url.lower()
    return "/api" in lowered or "://api." in lowered


class ExplanationEngine:
    """Score a spec against its parse context and explain the result.

    Suggestions are advisory only; nothing here mutates the spec.
    """

    def report(
        self, ctx: ParseContext, spec: LoadTestSpec, *, used_fallback: bool = False
    ) -> ExplanationReport:
        confidence = self.confidence(ctx, spec, used_fallback=used_fallback)
        logger.debug(
            "Confidence %.2f -> %.2f (fallback=%s)", ctx.confidence, confidence, used_fallback
        )
        return ExplanationReport(
            confidence=confidence,
            assumptions=self.assumptions(ctx, spec),
            warnings=self.warnings(ctx, spec, confidence),
            suggestions=self.suggestions(spec),
            explanation=self.explain(ctx, spec),
        )

    # ------------------------------------------------------------------
    # Confidence
    # ------------------------------------------------------------------

    def confidence(
        self, ctx: ParseContext, spec: LoadTestSpec, *, used_fallback: bool = False
    ) -> float:
        """Adjust the context confidence by what the spec actually contains.

        The result is clamped to ``[floor, 1]`` where the floor is
        ``AI_CONFIDENCE_FLOOR`` for backend results and
        ``FALLBACK_CONFIDENCE_FLOOR`` for fallback results.
        """
        score = ctx.confidence
        primary = spec.requests[0]
        if primary.method and primary.url:
            score += 0.2
        pattern = spec.load_pattern
        if (pattern.virtual_users or 0) > 0 or (pattern.requests_per_second or 0) > 0:
            score += 0.1
        if "testType" in ctx.defaulted_fields and spec.test_type == TestType.BASELINE:
            score -= 0.1
        score -= 0.05 * len(ctx.ambiguities)

        floor = FALLBACK_CONFIDENCE_FLOOR if used_fallback else AI_CONFIDENCE_FLOOR
        return round(min(max(score, floor), 1.0), 4)

    # ------------------------------------------------------------------
    # Assumptions
    # ------------------------------------------------------------------

    def assumptions(self, ctx: ParseContext, spec: LoadTestSpec) -> list[Assumption]:
        """List spec fields that have no corroborating signal in the input."""
        comps = ctx.extracted_components
        primary = spec.requests[0]
        items: list[Assumption] = []

        method = primary.method.value
        if method not in comps.methods:
            items.append(
                Assumption(
                    field="method",
                    assumed_value=method,
                    reason="HTTP method was not stated in the input",
                    alternatives=[m for m in _COMMON_METHODS if m != method],
                )
            )

        if not any(primary.url == u or primary.url.endswith(u) or u.endswith(primary.url)
                   for u in comps.urls):
            items.append(
                Assumption(
                    field="url",
                    assumed_value=primary.url,
                    reason="Target URL was not found in the input",
                    alternatives=[u for u in DEFAULT_URL_CANDIDATES if u != primary.url],
                )
            )

        users = spec.load_pattern.virtual_users
        if users is not None and users not in comps.counts:
            items.append(
                Assumption(
                    field="virtualUsers",
                    assumed_value=users,
                    reason="User count was not stated in the input",
                    alternatives=[n for n in USER_COUNT_ALTERNATIVES if n != users],
                )
            )

        if "testType" in ctx.defaulted_fields:
            items.append(
                Assumption(
                    field="testType",
                    assumed_value=spec.test_type.value,
                    reason="No test type keywords found in the input",
                    alternatives=[t.value for t in TestType if t != spec.test_type],
                )
            )
        return items

    # ------------------------------------------------------------------
    # Warnings and suggestions
    # ------------------------------------------------------------------

    def warnings(
        self, ctx: ParseContext, spec: LoadTestSpec, confidence: float
    ) -> list[str]:
        items: list[str] = []
        if confidence < LOW_CONFIDENCE_WARNING:
            items.append(
                f"Low parsing confidence ({confidence:.0%}); review the generated specification"
            )
        for ambiguity in ctx.ambiguities:
            items.append(f"Ambiguous {ambiguity.field}: {ambiguity.reason}")

        for request in spec.requests:
            if _looks_like_api(request.url) and not _has_auth(request.headers):
                items.append(
                    f"API endpoint {request.url} has no authentication header; "
                    "add one if the API requires it"
                )
                break

        pattern = spec.load_pattern
        if (
            (pattern.virtual_users or 0) > HIGH_CONCURRENCY_USERS
            and pattern.type == LoadPatternType.CONSTANT
        ):
            items.append(
                f"{pattern.virtual_users} constant users without ramp-up may overwhelm "
                "the target; consider a ramp-up pattern"
            )
        return items

    def suggestions(self, spec: LoadTestSpec) -> list[str]:
        items: list[str] = []
        for request in spec.requests:
            method = request.method
            headers = {k.lower() for k in request.headers}
            if method == HttpMethod.POST and "content-type" not in headers:
                items.append("Add a Content-Type header to POST requests")
            if (
                method in (HttpMethod.POST, HttpMethod.PUT, HttpMethod.PATCH)
                and request.body is None
                and request.payload is None
            ):
                items.append(f"Add a request payload for {method.value} {request.url}")

        if (
            spec.test_type == TestType.STRESS
            and spec.duration.to_seconds() < MIN_STRESS_DURATION_SECONDS
        ):
            items.append("Stress tests usually need several minutes; consider a longer duration")

        if not any(r.validation for r in spec.requests):
            items.append("Add response validation (status code, response time) to catch failures")
        return list(dict.fromkeys(items))

    # ------------------------------------------------------------------
    # Explanation
    # ------------------------------------------------------------------

    def explain(self, ctx: ParseContext, spec: LoadTestSpec) -> ParsingExplanation:
        """Summarize what was extracted and how each ambiguity was settled."""
        resolutions = [
            AmbiguityResolution(
                field=a.field,
                chosen=self._chosen_value(a.field, spec),
                alternatives=list(a.possible_values),
                reason=a.reason,
            )
            for a in ctx.ambiguities
        ]
        return ParsingExplanation(
            extracted_components=ctx.extracted_components.model_dump(),
            ambiguity_resolutions=resolutions,
        )

    @staticmethod
    def _chosen_value(field: str, spec: LoadTestSpec) -> Optional[Any]:
        primary = spec.requests[0]
        pattern = spec.load_pattern
        if field == "method":
            return primary.method.value
        if field == "url":
            return primary.url
        if field == "userCount":
            return pattern.virtual_users or pattern.requests_per_second
        if field == "duration":
            return f"{spec.duration.value:g} {spec.duration.unit.value}"
        if field == "loadPattern":
            return pattern.type.value
        if field == "content-type":
            for key, value in primary.headers.items():
                if key.lower() == "content-type":
                    return value
            return None
        if field == "authentication":
            for key in primary.headers:
                if key.lower() in _AUTH_HEADERS:
                    return key
            return None
        return None
