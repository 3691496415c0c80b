"""Unit tests for SpecValidator."""

from __future__ import annotations

from typing import Any, Optional

import pytest

from loadspec.parsing.models import (
    Ambiguity,
    Duration,
    DurationUnit,
    HttpMethod,
    LoadPattern,
    LoadPatternType,
    LoadTestSpec,
    ParseContext,
    PayloadTemplate,
    PayloadVariable,
    RequestSpec,
    TestType,
)
from loadspec.parsing.spec_validator import (
    IssueSeverity,
    IssueType,
    SpecRule,
    SpecValidator,
    ValidationIssue,
    is_valid_url,
)


def _spec(
    url: str = "https://api.shop.test/users",
    *,
    users: Optional[int] = 20,
    rps: Optional[float] = None,
    pattern: LoadPatternType = LoadPatternType.CONSTANT,
    test_type: TestType = TestType.BASELINE,
    duration: Duration = Duration(value=5, unit=DurationUnit.MINUTES),
    **request: Any,
) -> LoadTestSpec:
    return LoadTestSpec(
        id="test_1",
        test_type=test_type,
        requests=[RequestSpec(method=request.pop("method", HttpMethod.GET), url=url, **request)],
        load_pattern=LoadPattern(type=pattern, virtual_users=users, requests_per_second=rps),
        duration=duration,
    )


def _ctx(text: str = "GET https://api.shop.test/users with 20 users", **overrides: Any) -> ParseContext:
    data: dict[str, Any] = {"original_input": text, "cleaned_input": text, "confidence": 0.8}
    data.update(overrides)
    return ParseContext(**data)


@pytest.fixture
def validator() -> SpecValidator:
    return SpecValidator()


class TestCleanSpec:
    def test_no_issues(self, validator: SpecValidator) -> None:
        report = validator.validate(_spec(), _ctx())
        assert report.issues == []
        assert report.suggestions == []
        assert report.is_valid is True
        assert report.can_proceed is True


class TestUrls:
    @pytest.mark.parametrize(
        ("url", "valid"),
        [
            ("https://api.shop.test/users", True),
            ("/api/users", True),
            ("/", False),
            ("api.shop.test/users", False),
            ("ftp://files.shop.test", False),
            ("http://[::1", False),
        ],
    )
    def test_is_valid_url(self, url: str, valid: bool) -> None:
        assert is_valid_url(url) is valid

    def test_invalid_format_warned(self, validator: SpecValidator) -> None:
        report = validator.validate(_spec("users-service"), _ctx())
        assert report.warnings == ["Request 1: URL format may be invalid"]
        assert (
            "Ensure URL is complete with protocol (https://) or starts with /"
            in report.suggestions
        )

    @pytest.mark.parametrize(
        "url", ["http://example.com", "https://api.example.com/users", "/api/endpoint"]
    )
    def test_placeholder_warned(self, validator: SpecValidator, url: str) -> None:
        report = validator.validate(_spec(url), _ctx())
        assert "Request 1: URL appears to be a placeholder" in report.warnings

    def test_lookalike_host_not_placeholder(self, validator: SpecValidator) -> None:
        report = validator.validate(_spec("https://notexample.com/users"), _ctx())
        assert report.warnings == []


class TestLoadParameters:
    def test_very_high_users(self, validator: SpecValidator) -> None:
        report = validator.validate(_spec(users=15_000), _ctx())
        assert report.warnings == [
            "Very high number of virtual users may cause resource issues"
        ]

    def test_users_at_limit_ok(self, validator: SpecValidator) -> None:
        assert validator.validate(_spec(users=10_000), _ctx()).warnings == []

    def test_very_high_rps(self, validator: SpecValidator) -> None:
        report = validator.validate(_spec(users=None, rps=5_000), _ctx())
        assert report.warnings == ["Very high RPS may overwhelm the target system"]

    def test_ramp_up_without_time(self, validator: SpecValidator) -> None:
        report = validator.validate(_spec(pattern=LoadPatternType.RAMP_UP), _ctx())
        assert report.warnings == ["Ramp-up time not specified for ramp-up test"]


class TestPayloads:
    def _payload_spec(self, template: str, *names: str, **request: Any) -> LoadTestSpec:
        payload = PayloadTemplate(
            template=template, variables=[PayloadVariable(name=n) for n in names]
        )
        return _spec(method=HttpMethod.POST, payload=payload, **request)

    def test_quoted_and_bare_placeholders_accepted(self, validator: SpecValidator) -> None:
        spec = self._payload_spec('{"email": "{{email}}"}', "email")
        assert validator.validate(spec, _ctx()).issues == []
        spec = self._payload_spec('{"count": {{count}}}', "count")
        assert validator.validate(spec, _ctx()).issues == []

    def test_invalid_json_template_is_error(self, validator: SpecValidator) -> None:
        report = validator.validate(self._payload_spec('{"name": json}'), _ctx())
        assert report.errors == ["Request 1: Payload template is not valid JSON"]
        assert report.is_valid is False
        assert report.can_proceed is True

    def test_non_json_content_type_skips_decode(self, validator: SpecValidator) -> None:
        spec = self._payload_spec("name={{name}}", "name", headers={"Content-Type": "text/plain"})
        assert validator.validate(spec, _ctx()).issues == []

    def test_undefined_and_unused_variables(self, validator: SpecValidator) -> None:
        spec = self._payload_spec('{"a": "{{a}}", "b": "{{b}}"}', "a", "c")
        report = validator.validate(spec, _ctx())
        assert report.warnings == ["Request 1: Variables b used in template but not defined"]
        suggestion = next(i for i in report.issues if i.type == IssueType.SUGGESTION)
        assert suggestion.message == "Request 1: Variables c defined but not used in template"
        assert suggestion.severity == IssueSeverity.LOW


class TestDuration:
    def test_very_short(self, validator: SpecValidator) -> None:
        report = validator.validate(_spec(duration=Duration(value=5)), _ctx())
        assert report.warnings == ["Very short test duration may not provide meaningful results"]

    def test_very_long(self, validator: SpecValidator) -> None:
        report = validator.validate(
            _spec(duration=Duration(value=2, unit=DurationUnit.HOURS)), _ctx()
        )
        assert report.warnings == ["Very long test duration may consume significant resources"]


class TestTestTypeConsistency:
    def test_spike_needs_spike_pattern(self, validator: SpecValidator) -> None:
        report = validator.validate(_spec(test_type=TestType.SPIKE), _ctx())
        assert report.warnings == ['Test type "spike" should use spike load pattern']
        matched = _spec(test_type=TestType.SPIKE, pattern=LoadPatternType.SPIKE)
        assert validator.validate(matched, _ctx()).issues == []

    def test_stress_prefers_ramp_up(self, validator: SpecValidator) -> None:
        report = validator.validate(_spec(test_type=TestType.STRESS), _ctx())
        assert report.warnings == []
        assert report.issues[0].type == IssueType.SUGGESTION
        assert 'Consider using "ramp-up" load pattern for stress testing' in report.suggestions


class TestSuggestions:
    def test_context_based(self, validator: SpecValidator) -> None:
        ctx = _ctx(
            "hammer the login page",
            confidence=0.2,
            ambiguities=[Ambiguity(field="url", reason="No URL found")],
        )
        assert validator.validate(_spec(), ctx).suggestions == [
            "Try rephrasing your command with more specific details",
            "Provide more specific information to reduce ambiguity",
            "Include the complete API endpoint URL you want to test",
            "Specify numeric values for load parameters (users, requests, duration)",
        ]

    def test_deduplicated(self, validator: SpecValidator) -> None:
        spec = _spec("users-service")
        spec.requests = spec.requests * 2
        suggestions = validator.validate(spec, _ctx()).suggestions
        assert suggestions.count(
            "Ensure URL is complete with protocol (https://) or starts with /"
        ) == 1


class TestCustomRules:
    def test_rules_replaceable(self) -> None:
        issue = ValidationIssue(
            type=IssueType.ERROR,
            field="id",
            message="Test ID is reserved",
            severity=IssueSeverity.CRITICAL,
        )
        validator = SpecValidator([SpecRule("reserved-id", lambda spec: [issue])])
        report = validator.validate(_spec(), _ctx())
        assert report.errors == ["Test ID is reserved"]
        assert report.can_proceed is False
