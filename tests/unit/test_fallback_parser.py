"""Unit tests for the deterministic FallbackParser."""

from __future__ import annotations

import re

import pytest

from loadspec.parsing.fallback_parser import (
    DEFAULT_URL,
    FALLBACK_RULES,
    MAX_CONFIDENCE,
    TEMPLATE_CONFIDENCE,
    TEMPLATE_URL,
    FallbackParser,
    FallbackRule,
)
from loadspec.parsing.models import (
    Duration,
    DurationUnit,
    HttpMethod,
    LoadPatternType,
    TestType,
)


@pytest.fixture
def parser() -> FallbackParser:
    return FallbackParser()


def _fields(result) -> dict[str, object]:
    return {a.field: a.assumed_value for a in result.assumptions}


# ---------------------------------------------------------------------------
# Pattern matching
# ---------------------------------------------------------------------------


class TestPatternMatching:
    def test_complete_request(self, parser: FallbackParser) -> None:
        result = parser.parse("GET https://api.example.com/users with 50 users for 2 minutes")
        spec = result.spec
        assert spec.requests[0].method == HttpMethod.GET
        assert spec.requests[0].url == "https://api.example.com/users"
        assert spec.load_pattern.virtual_users == 50
        assert spec.load_pattern.type == LoadPatternType.CONSTANT
        assert spec.duration == Duration(value=2, unit=DurationUnit.MINUTES)
        assert spec.test_type == TestType.BASELINE
        assert result.method == "pattern-matching"
        assert result.matched_patterns == [
            "http-method-url",
            "url-only",
            "virtual-users",
            "duration",
        ]
        assert result.confidence == pytest.approx(0.7)
        assert result.assumptions == []
        assert result.warnings == ["Parsed with deterministic rules; AI parsing was not used"]

    def test_method_and_url_only(self, parser: FallbackParser) -> None:
        result = parser.parse("GET https://api.example.com/users")
        request = result.spec.requests[0]
        assert (request.method, request.url) == (HttpMethod.GET, "https://api.example.com/users")
        assert "http-method-url" in result.matched_patterns
        assert result.confidence > 0.3

    def test_spike_with_request_total(self, parser: FallbackParser) -> None:
        spec = parser.parse("Spike test with 1000 requests in 10 seconds to GET /api/users").spec
        assert spec.test_type == TestType.SPIKE
        assert spec.load_pattern.type == LoadPatternType.SPIKE
        assert spec.duration == Duration(value=10, unit=DurationUnit.SECONDS)
        assert spec.requests[0].url == "/api/users"

    def test_broken_json_keeps_method_and_url(self, parser: FallbackParser) -> None:
        result = parser.parse('POST https://api.example.com/orders {"name": "a",, "x"}')
        request = result.spec.requests[0]
        assert request.method == HttpMethod.POST
        assert request.url == "https://api.example.com/orders"
        assert request.body is None
        assert request.payload is not None

    def test_confidence_capped(self, parser: FallbackParser) -> None:
        result = parser.parse(
            "stress test GET https://api.example.com/users with 50 users for 2 minutes"
        )
        assert len(result.matched_patterns) == 5
        assert result.confidence == MAX_CONFIDENCE

    def test_last_match_wins(self, parser: FallbackParser) -> None:
        result = parser.parse("hit https://a.example.com/x then POST /api/orders")
        request = result.spec.requests[0]
        # url-only runs after http-method-url and overwrites its url
        assert request.url == "https://a.example.com/x"
        assert request.method == HttpMethod.POST

    def test_trailing_punctuation_stripped(self, parser: FallbackParser) -> None:
        result = parser.parse("Please test GET https://api.example.com/status.")
        assert result.spec.requests[0].url == "https://api.example.com/status"

    def test_literal_body(self, parser: FallbackParser) -> None:
        result = parser.parse(
            'POST /api/orders {"requestId": "r-1", "payload": [{"externalId": "X"}]}'
        )
        request = result.spec.requests[0]
        assert request.method == HttpMethod.POST
        assert request.body == {"requestId": "r-1", "payload": [{"externalId": "X"}]}
        assert request.headers == {"Content-Type": "application/json"}
        assert "payload-json" in result.matched_patterns

    def test_payload_template(self, parser: FallbackParser) -> None:
        result = parser.parse('POST /api/users {"email": "{{email}}", "id": {{userId}}}')
        payload = result.spec.requests[0].payload
        assert payload is not None
        assert result.spec.requests[0].body is None
        assert [(v.name, v.type) for v in payload.variables] == [
            ("email", "random_email"),
            ("userId", "random_id"),
        ]
        assert payload.variables[1].parameters == {"min": 1000, "max": 999999}

    def test_stress_ramps_up(self, parser: FallbackParser) -> None:
        result = parser.parse("stress test POST /api/login with 2000 users")
        spec = result.spec
        assert spec.test_type == TestType.STRESS
        assert spec.load_pattern.type == LoadPatternType.RAMP_UP
        assert spec.load_pattern.ramp_up_time == Duration(value=2, unit=DurationUnit.MINUTES)
        assert spec.name.startswith("Stress Test - POST (")

    def test_spike(self, parser: FallbackParser) -> None:
        spec = parser.parse("spike test with 1000 users on GET /health").spec
        assert spec.test_type == TestType.SPIKE
        assert spec.load_pattern.type == LoadPatternType.SPIKE

    def test_total_requests_bounded(self, parser: FallbackParser) -> None:
        result = parser.parse("send 500 requests to /api/items")
        assert result.spec.load_pattern.virtual_users == 100
        assert _fields(result)["virtualUsers"] == 100
        assert _fields(result)["method"] == "GET"

    def test_requests_per_second(self, parser: FallbackParser) -> None:
        spec = parser.parse("GET /api/items at 200 rps").spec
        assert spec.load_pattern.requests_per_second == 200
        assert spec.load_pattern.virtual_users is None

    def test_zero_duration_ignored(self, parser: FallbackParser) -> None:
        result = parser.parse("GET /x for 0 minutes")
        assert "duration" not in result.matched_patterns
        assert result.spec.duration == Duration(value=1, unit=DurationUnit.MINUTES)
        assert "duration" in _fields(result)


# ---------------------------------------------------------------------------
# Keywords and defaults
# ---------------------------------------------------------------------------


class TestKeywords:
    def test_keyword_only_input(self, parser: FallbackParser) -> None:
        result = parser.parse("please fetch the users quickly")
        assert result.method == "keyword-extraction"
        assert result.matched_patterns == ["keyword-extraction"]
        assert result.confidence == pytest.approx(0.4)
        assert result.spec.requests[0].method == HttpMethod.GET
        assert result.spec.requests[0].url == DEFAULT_URL
        assert "url" in _fields(result)
        assert "method" not in _fields(result)

    def test_keywords_do_not_override_rules(self, parser: FallbackParser) -> None:
        result = parser.parse("create a soak run against PUT /api/items")
        assert result.spec.requests[0].method == HttpMethod.PUT
        assert result.spec.test_type == TestType.ENDURANCE

    def test_keywords_skipped_when_rules_suffice(self, parser: FallbackParser) -> None:
        result = parser.parse("GET https://api.example.com/users with 50 users, ramp gradually")
        assert "keyword-extraction" not in result.matched_patterns
        assert result.spec.load_pattern.type == LoadPatternType.RAMP_UP

    def test_extract_keywords(self, parser: FallbackParser) -> None:
        assert parser.extract_keywords("Submit orders with a steady load") == {
            "method": "POST",
            "test_type": "baseline",
            "load_pattern_type": "constant",
        }


# ---------------------------------------------------------------------------
# Template result
# ---------------------------------------------------------------------------


class TestTemplate:
    def test_empty_input(self, parser: FallbackParser) -> None:
        result = parser.parse("")
        assert result.method == "template-based"
        assert result.confidence == TEMPLATE_CONFIDENCE
        assert result.spec.requests[0].url == TEMPLATE_URL
        assert result.spec.load_pattern.virtual_users == 10
        assert [a.field for a in result.assumptions] == [
            "method",
            "url",
            "virtualUsers",
            "duration",
        ]
        assert len(result.warnings) == 2

    def test_none_input(self, parser: FallbackParser) -> None:
        assert parser.parse(None).method == "template-based"

    def test_unusable_values_fall_back_to_template(self) -> None:
        bad = FallbackRule(
            name="bad-rate",
            pattern=re.compile("x"),
            extract=lambda m, t: {"requests_per_second": -5},
        )
        result = FallbackParser(rules=[bad]).parse("x marks the spot")
        assert result.method == "template-based"
        assert result.warnings[0].startswith("Extracted values could not form a valid spec")

    def test_rule_raising_validation_error(self) -> None:
        negative = FallbackRule(
            name="negative-duration",
            pattern=re.compile("x"),
            extract=lambda m, t: {"duration": Duration(value=-1)},
        )
        result = FallbackParser(rules=[negative]).parse("x marks the spot")
        assert result.method == "template-based"

    def test_zero_users_take_default(self, parser: FallbackParser) -> None:
        result = parser.parse("GET /api/users with 0 users")
        assert result.method == "pattern-matching"
        assert result.spec.load_pattern.virtual_users == 10

    def test_ids_are_unique(self, parser: FallbackParser) -> None:
        first = parser.parse("GET /a").spec.id
        second = parser.parse("GET /a").spec.id
        assert first != second
        assert first.startswith("test_")


# ---------------------------------------------------------------------------
# Admissibility helpers
# ---------------------------------------------------------------------------


class TestAdmissibility:
    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("", False),
            (None, False),
            ("hello there", False),
            ("42", True),
            ("check /health", True),
            ("update the profile", True),
        ],
    )
    def test_can_parse(self, text, expected: bool) -> None:
        assert FallbackParser.can_parse(text) is expected

    def test_confidence_score(self) -> None:
        assert FallbackParser.confidence_score("") == 0.0
        assert FallbackParser.confidence_score("GET /health") == pytest.approx(0.4)
        full = "stress test GET https://api.example.com/users with 50 users for 2 minutes"
        assert FallbackParser.confidence_score(full) == MAX_CONFIDENCE

    def test_rule_order(self) -> None:
        assert [r.name for r in FALLBACK_RULES] == [
            "http-method-url",
            "url-only",
            "virtual-users",
            "requests-per-second",
            "total-requests",
            "duration",
            "test-type",
            "payload-json",
        ]


class TestOversizedNumbers:
    def test_long_digit_runs_ignored(self, parser: FallbackParser) -> None:
        text = "GET /api/users with " + "9" * 5000 + " users for " + "9" * 400 + " seconds"
        result = parser.parse(text)
        assert "virtual-users" not in result.matched_patterns
        assert "duration" not in result.matched_patterns
        assert result.spec.requests[0].url == "/api/users"
        assert result.spec.load_pattern.virtual_users < 10**9

    def test_nine_digits_kept(self, parser: FallbackParser) -> None:
        spec = parser.parse("GET /api/users with 123456789 users").spec
        assert spec.load_pattern.virtual_users == 123456789

    def test_digits_only(self, parser: FallbackParser) -> None:
        result = parser.parse("9" * 5000)
        assert result.spec.requests
        assert FallbackParser.confidence_score("9" * 5000 + " users") < MAX_CONFIDENCE
