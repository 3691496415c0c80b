"""Deterministic, AI-free parser built from regex rules and keyword tables.

Used standalone (``LoadSpecParser.parse_with_fallback_only``) and as the
last recovery strategy of the pipeline. It never raises: the weakest
outcome is a minimal templated spec at the confidence floor.
"""

from __future__ import annotations

import json
import logging
import re
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from pydantic import BaseModel, Field, ValidationError

from loadspec.parsing.exceptions import FallbackParsingError
from loadspec.parsing.json_utils import iter_brace_blocks, loads_lenient
from loadspec.parsing.models import (
    Assumption,
    Duration,
    DurationUnit,
    HttpMethod,
    LoadPattern,
    LoadPatternType,
    LoadTestSpec,
    PayloadTemplate,
    PayloadVariable,
    RequestSpec,
    TestType,
    normalize_unit,
)

logger = logging.getLogger(__name__)

BASE_CONFIDENCE = 0.3
RULE_CONFIDENCE_STEP = 0.1
MAX_CONFIDENCE = 0.8
TEMPLATE_CONFIDENCE = 0.1
KEYWORD_TRIGGER_THRESHOLD = 3

DEFAULT_URL = "/api/endpoint"
TEMPLATE_URL = "http://example.com"
DEFAULT_VIRTUAL_USERS = 10
MAX_USERS_FROM_TOTAL_REQUESTS = 100
DEFAULT_DURATION = Duration(value=1, unit=DurationUnit.MINUTES)
RAMP_UP_TIME = Duration(value=2, unit=DurationUnit.MINUTES)

_BODY_METHODS = frozenset({HttpMethod.POST, HttpMethod.PUT, HttpMethod.PATCH})
_URL_TRAILING_PUNCT = ".,;:!?)'\""
_PLACEHOLDER_RE = re.compile(r"\{\{\s*(\w+)\s*\}\}")
# At most nine digits; longer runs are noise, not load parameters.
_NUMBER = r"(?<!\d)(\d{1,9})(?!\d)"


# ---------------------------------------------------------------------------
# Rule table
# ---------------------------------------------------------------------------


def _extract_payload(text: str) -> Optional[dict[str, Any]]:
    """Return the first JSON-looking block as a literal body or a template."""
    for start, end in iter_brace_blocks(text):
        raw = text[start:end]
        if ":" not in raw:
            continue
        try:
            return {"body": loads_lenient(raw)}
        except json.JSONDecodeError:
            names = list(dict.fromkeys(_PLACEHOLDER_RE.findall(raw)))
            return {"payload": {"template": raw, "variables": names}}
    return None


@dataclass(frozen=True)
class FallbackRule:
    """One regex rule; ``extract`` maps a match to partial spec fields."""

    name: str
    pattern: re.Pattern[str]
    extract: Callable[[re.Match[str], str], Optional[dict[str, Any]]]

    def apply(self, text: str) -> Optional[dict[str, Any]]:
        match = self.pattern.search(text)
        if match is None:
            return None
        return self.extract(match, text)


# Rules run in this order and each may overwrite fields set by an earlier
# one: the last match wins.
FALLBACK_RULES: list[FallbackRule] = [
    FallbackRule(
        name="http-method-url",
        pattern=re.compile(r"\b(GET|POST|PUT|DELETE|PATCH)\s+(\S+)", re.IGNORECASE),
        extract=lambda m, _: {
            "method": m.group(1).upper(),
            "url": m.group(2).rstrip(_URL_TRAILING_PUNCT),
        },
    ),
    FallbackRule(
        name="url-only",
        pattern=re.compile(r"(https?://\S+|(?<!\S)/[^\s/]\S*)", re.IGNORECASE),
        extract=lambda m, _: {"url": m.group(1).rstrip(_URL_TRAILING_PUNCT)},
    ),
    FallbackRule(
        name="virtual-users",
        pattern=re.compile(
            _NUMBER + r"\s*(?:virtual\s*users?|users?|concurrent|parallel)\b", re.IGNORECASE
        ),
        extract=lambda m, _: {"virtual_users": int(m.group(1))},
    ),
    FallbackRule(
        name="requests-per-second",
        pattern=re.compile(
            _NUMBER + r"\s*(?:rps|requests?\s*per\s*second|req/s)", re.IGNORECASE
        ),
        extract=lambda m, _: {"requests_per_second": int(m.group(1))},
    ),
    FallbackRule(
        name="total-requests",
        pattern=re.compile(_NUMBER + r"\s*(?:requests?|calls?)\b", re.IGNORECASE),
        extract=lambda m, _: {"total_requests": int(m.group(1))},
    ),
    FallbackRule(
        name="duration",
        pattern=re.compile(
            r"(?:for\s+)?" + _NUMBER + r"\s*(seconds?|secs?|minutes?|mins?|hours?|hrs?)\b",
            re.IGNORECASE,
        ),
        extract=lambda m, _: (
            {"duration": Duration(value=int(m.group(1)), unit=normalize_unit(m.group(2)))}
            if int(m.group(1)) > 0 else None
        ),
    ),
    FallbackRule(
        name="test-type",
        pattern=re.compile(r"\b(spike|stress|endurance|volume|baseline)\s*test", re.IGNORECASE),
        extract=lambda m, _: {"test_type": TestType(m.group(1).lower())},
    ),
    FallbackRule(
        name="payload-json",
        pattern=re.compile(r"\{"),
        extract=lambda _, text: _extract_payload(text),
    ),
]


# ---------------------------------------------------------------------------
# Keyword tables
# ---------------------------------------------------------------------------

METHOD_KEYWORDS: dict[str, HttpMethod] = {
    "get": HttpMethod.GET,
    "post": HttpMethod.POST,
    "put": HttpMethod.PUT,
    "delete": HttpMethod.DELETE,
    "patch": HttpMethod.PATCH,
    "fetch": HttpMethod.GET,
    "retrieve": HttpMethod.GET,
    "create": HttpMethod.POST,
    "submit": HttpMethod.POST,
    "update": HttpMethod.PUT,
    "remove": HttpMethod.DELETE,
    "modify": HttpMethod.PATCH,
}

TEST_TYPE_KEYWORDS: dict[str, TestType] = {
    "spike": TestType.SPIKE,
    "stress": TestType.STRESS,
    "endurance": TestType.ENDURANCE,
    "soak": TestType.ENDURANCE,
    "volume": TestType.VOLUME,
    "baseline": TestType.BASELINE,
    "load": TestType.BASELINE,
    "performance": TestType.BASELINE,
}

LOAD_PATTERN_KEYWORDS: dict[str, LoadPatternType] = {
    "spike": LoadPatternType.SPIKE,
    "gradually": LoadPatternType.RAMP_UP,
    "ramp": LoadPatternType.RAMP_UP,
    "increase": LoadPatternType.RAMP_UP,
    "constant": LoadPatternType.CONSTANT,
    "steady": LoadPatternType.CONSTANT,
    "step": LoadPatternType.STEP,
}


def _first_keyword(text: str, table: dict[str, Any]) -> Optional[Any]:
    for keyword, value in table.items():
        if re.search(rf"\b{keyword}", text):
            return value
    return None


def _variable_type(name: str) -> tuple[str, dict[str, Any]]:
    lowered = name.lower()
    if "email" in lowered:
        return "random_email", {}
    if "uuid" in lowered:
        return "uuid", {}
    if lowered.endswith("id"):
        return "random_id", {"min": 1000, "max": 999999}
    if "time" in lowered or "date" in lowered:
        return "timestamp", {}
    return "random_string", {"length": 10}


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


class FallbackParseResult(BaseModel):
    spec: LoadTestSpec
    confidence: float = Field(..., ge=0.0, le=MAX_CONFIDENCE)
    method: str = Field(
        ..., description="pattern-matching, keyword-extraction or template-based"
    )
    matched_patterns: list[str] = Field(default_factory=list)
    assumptions: list[Assumption] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class FallbackParser:
    """Pattern and keyword parser that always returns a usable spec.

    Example::

        result = FallbackParser().parse("GET https://api.example.com/users")
        result.spec.requests[0].url   # "https://api.example.com/users"
        result.matched_patterns       # ["http-method-url", "url-only"]
    """

    def __init__(self, rules: Optional[list[FallbackRule]] = None) -> None:
        self.rules = rules if rules is not None else FALLBACK_RULES

    def parse(self, text: Optional[str]) -> FallbackParseResult:
        text = text or ""
        try:
            return self._parse(text)
        except (FallbackParsingError, ValidationError, ValueError) as exc:
            logger.warning("Fallback rules failed (%s); returning the minimal template", exc)
            return self.template_result(text, reason="Extracted values could not form a valid spec")

    def _parse(self, text: str) -> FallbackParseResult:
        data: dict[str, Any] = {}
        matched: list[str] = []
        for rule in self.rules:
            extracted = rule.apply(text)
            if extracted:
                data.update(extracted)
                matched.append(rule.name)

        confidence = BASE_CONFIDENCE + RULE_CONFIDENCE_STEP * len(matched)
        method = "pattern-matching"
        if len(matched) < KEYWORD_TRIGGER_THRESHOLD:
            keywords = self.extract_keywords(text)
            for key, value in keywords.items():
                data.setdefault(key, value)
            if keywords:
                matched.append("keyword-extraction")
                confidence += RULE_CONFIDENCE_STEP
                method = "keyword-extraction"

        if not matched:
            return self.template_result(text, reason="No recognizable load-test details")

        spec, assumptions = self._build_spec(data, text)
        logger.debug("Fallback matched %s", matched)
        return FallbackParseResult(
            spec=spec,
            confidence=round(min(confidence, MAX_CONFIDENCE), 4),
            method=method,
            matched_patterns=matched,
            assumptions=assumptions,
            warnings=["Parsed with deterministic rules; AI parsing was not used"],
        )

    def extract_keywords(self, text: str) -> dict[str, Any]:
        """Look up method, test type and load pattern synonyms."""
        lowered = text.lower()
        found: dict[str, Any] = {}
        for key, table in (
            ("method", METHOD_KEYWORDS),
            ("test_type", TEST_TYPE_KEYWORDS),
            ("load_pattern_type", LOAD_PATTERN_KEYWORDS),
        ):
            value = _first_keyword(lowered, table)
            if value is not None:
                found[key] = value.value
        return found

    def template_result(self, text: str, *, reason: str) -> FallbackParseResult:
        """The minimal spec returned when nothing usable was found."""
        spec = LoadTestSpec(
            id=self._new_id(),
            name="Basic Load Test",
            description=text or "Templated load test",
            test_type=TestType.BASELINE,
            requests=[RequestSpec(method=HttpMethod.GET, url=TEMPLATE_URL)],
            load_pattern=LoadPattern(
                type=LoadPatternType.CONSTANT, virtual_users=DEFAULT_VIRTUAL_USERS
            ),
            duration=DEFAULT_DURATION,
        )
        assumptions = [
            Assumption(field="method", assumed_value="GET", reason=reason,
                       alternatives=["POST", "PUT", "DELETE"]),
            Assumption(field="url", assumed_value=TEMPLATE_URL, reason=reason),
            Assumption(field="virtualUsers", assumed_value=DEFAULT_VIRTUAL_USERS, reason=reason,
                       alternatives=[1, 50, 100]),
            Assumption(field="duration", assumed_value="1 minutes", reason=reason),
        ]
        return FallbackParseResult(
            spec=spec,
            confidence=TEMPLATE_CONFIDENCE,
            method="template-based",
            matched_patterns=[],
            assumptions=assumptions,
            warnings=[
                f"{reason}; generated a placeholder test against {TEMPLATE_URL}",
                "Provide a URL, HTTP method and user count for a meaningful test",
            ],
        )

    # ------------------------------------------------------------------
    # Admissibility
    # ------------------------------------------------------------------

    @staticmethod
    def can_parse(text: Optional[str]) -> bool:
        """Quick check: does *text* contain a URL, a method word or a number?"""
        if not text:
            return False
        has_url = re.search(r"https?://\S+|/\S+", text) is not None
        has_method = re.search(
            r"\b(get|post|put|delete|patch|fetch|create|update|remove)\b", text, re.IGNORECASE
        ) is not None
        has_number = re.search(r"\d+", text) is not None
        return has_url or has_method or has_number

    @staticmethod
    def confidence_score(text: Optional[str]) -> float:
        """Weighted estimate of how well the rules will do on *text*."""
        if not text:
            return 0.0
        score = 0.0
        if re.search(r"https?://\S+", text):
            score += 0.3
        elif re.search(r"(?<!\S)/\S+", text):
            score += 0.2
        if re.search(r"\b(GET|POST|PUT|DELETE|PATCH)\b", text, re.IGNORECASE):
            score += 0.2
        if re.search(r"(?<!\d)\d+\s*(users?|rps|requests?)", text, re.IGNORECASE):
            score += 0.2
        if re.search(r"(?<!\d)\d+\s*(seconds?|minutes?|hours?)", text, re.IGNORECASE):
            score += 0.1
        if re.search(r"(spike|stress|endurance|volume|baseline)", text, re.IGNORECASE):
            score += 0.1
        return round(min(score, MAX_CONFIDENCE), 4)

    # ------------------------------------------------------------------
    # Spec assembly
    # ------------------------------------------------------------------

    def _build_spec(
        self, data: dict[str, Any], text: str
    ) -> tuple[LoadTestSpec, list[Assumption]]:
        assumptions: list[Assumption] = []
        lowered = text.lower()

        if "method" in data:
            method = HttpMethod(data["method"])
        else:
            method = HttpMethod.POST if "body" in data or "payload" in data else HttpMethod.GET
            assumptions.append(
                Assumption(field="method", assumed_value=method.value,
                           reason="No HTTP method found in the input",
                           alternatives=[m.value for m in (HttpMethod.GET, HttpMethod.POST)
                                         if m != method])
            )

        url = data.get("url")
        if not url:
            url = DEFAULT_URL
            assumptions.append(
                Assumption(field="url", assumed_value=url,
                           reason="No URL found in the input")
            )

        request: dict[str, Any] = {"method": method, "url": url}
        if method in _BODY_METHODS:
            request["headers"] = {"Content-Type": "application/json"}
        if "body" in data:
            request["body"] = data["body"]
        elif "payload" in data:
            request["payload"] = PayloadTemplate(
                template=data["payload"]["template"],
                variables=[
                    PayloadVariable(name=name, type=vtype, parameters=params)
                    for name in data["payload"]["variables"]
                    for vtype, params in [_variable_type(name)]
                ],
            )

        test_type = data.get("test_type")
        if test_type is None:
            test_type = _first_keyword(lowered, TEST_TYPE_KEYWORDS) or TestType.BASELINE
        test_type = TestType(test_type)

        pattern_type = data.get("load_pattern_type")
        pattern_type = (
            LoadPatternType(pattern_type) if pattern_type
            else self._infer_pattern(lowered, test_type)
        )

        pattern: dict[str, Any] = {"type": pattern_type}
        if data.get("virtual_users"):
            pattern["virtual_users"] = data["virtual_users"]
        elif data.get("requests_per_second"):
            pattern["requests_per_second"] = data["requests_per_second"]
        elif data.get("total_requests"):
            pattern["virtual_users"] = min(data["total_requests"], MAX_USERS_FROM_TOTAL_REQUESTS)
            assumptions.append(
                Assumption(field="virtualUsers", assumed_value=pattern["virtual_users"],
                           reason="Derived from the total request count",
                           alternatives=[DEFAULT_VIRTUAL_USERS])
            )
        else:
            pattern["virtual_users"] = self._default_user_count(text)
            assumptions.append(
                Assumption(field="virtualUsers", assumed_value=pattern["virtual_users"],
                           reason="No user count found in the input",
                           alternatives=[1, 50, 100])
            )
        if pattern_type == LoadPatternType.RAMP_UP:
            pattern["ramp_up_time"] = RAMP_UP_TIME

        duration = data.get("duration")
        if duration is None:
            duration = DEFAULT_DURATION
            assumptions.append(
                Assumption(field="duration", assumed_value="1 minutes",
                           reason="No test duration found in the input",
                           alternatives=["30 seconds", "5 minutes"])
            )

        try:
            spec = LoadTestSpec(
                id=self._new_id(),
                name=self._test_name(test_type, data.get("method")),
                description=text,
                test_type=test_type,
                requests=[RequestSpec(**request)],
                load_pattern=LoadPattern(**pattern),
                duration=duration,
            )
        except ValidationError as exc:
            raise FallbackParsingError(str(exc)) from exc
        return spec, assumptions

    @staticmethod
    def _infer_pattern(lowered: str, test_type: TestType) -> LoadPatternType:
        if test_type == TestType.SPIKE or "spike" in lowered:
            return LoadPatternType.SPIKE
        if (
            test_type == TestType.STRESS
            or "gradually" in lowered
            or "ramp" in lowered
        ):
            return LoadPatternType.RAMP_UP
        if re.search(r"\bsteps?\b", lowered):
            return LoadPatternType.STEP
        return LoadPatternType.CONSTANT

    @staticmethod
    def _default_user_count(text: str) -> int:
        numbers = re.findall(r"\d+", text)
        if numbers and len(numbers[0]) <= 5:
            first = int(numbers[0])
            if 1 <= first <= 10_000:
                return first
        return DEFAULT_VIRTUAL_USERS

    @staticmethod
    def _test_name(test_type: TestType, method: Optional[str]) -> str:
        today = datetime.now(timezone.utc).date().isoformat()
        return f"{test_type.value.capitalize()} Test - {method or 'API'} ({today})"

    @staticmethod
    def _new_id() -> str:
        return f"test_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"
