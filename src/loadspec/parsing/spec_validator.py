"""Sanity checks on a finished :class:`LoadTestSpec`.

The pydantic models already reject specs that cannot run. This pass looks
for specs that run but probably do not do what the operator wanted:
placeholder URLs, extreme load or duration values, payload templates that
will not render as JSON and test types that contradict their load pattern.
Nothing here mutates the spec; findings become warnings and suggestions on
the :class:`ParseResult`.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional
from urllib.parse import SplitResult, urlsplit

from pydantic import BaseModel, Field

from loadspec.parsing.json_utils import loads_json
from loadspec.parsing.models import (
    LoadPatternType,
    LoadTestSpec,
    ParseContext,
    RequestSpec,
    TestType,
)

logger = logging.getLogger(__name__)

MAX_VIRTUAL_USERS = 10_000
MAX_REQUESTS_PER_SECOND = 1_000
MIN_DURATION_SECONDS = 10
MAX_DURATION_SECONDS = 3_600
LOW_CONFIDENCE = 0.5

PLACEHOLDER_URLS = frozenset({"/api/endpoint"})
_PLACEHOLDER_HOST = "example.com"
_TEMPLATE_VAR_RE = re.compile(r"\{\{\s*(\w+)\s*\}\}")


class IssueType(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    SUGGESTION = "suggestion"


class IssueSeverity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ValidationIssue(BaseModel):
    """One finding about a spec field, with the fix to offer the operator."""

    type: IssueType
    field: str
    message: str
    severity: IssueSeverity
    suggestion: Optional[str] = None


class SpecValidationReport(BaseModel):
    issues: list[ValidationIssue] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)

    def _messages(self, kind: IssueType) -> list[str]:
        return [i.message for i in self.issues if i.type == kind]

    @property
    def errors(self) -> list[str]:
        return self._messages(IssueType.ERROR)

    @property
    def warnings(self) -> list[str]:
        return self._messages(IssueType.WARNING)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def can_proceed(self) -> bool:
        return not any(
            i.type == IssueType.ERROR and i.severity == IssueSeverity.CRITICAL
            for i in self.issues
        )


def _split(url: str) -> Optional[SplitResult]:
    try:
        return urlsplit(url)
    except ValueError:
        return None


def is_valid_url(url: str) -> bool:
    """Absolute http(s) URLs with a host, or root-relative paths."""
    if url.startswith("/"):
        return len(url) > 1
    parts = _split(url)
    return parts is not None and parts.scheme in ("http", "https") and bool(parts.netloc)


def _is_placeholder(url: str) -> bool:
    if url in PLACEHOLDER_URLS:
        return True
    parts = _split(url)
    host = (parts.hostname if parts is not None else None) or ""
    return host == _PLACEHOLDER_HOST or host.endswith("." + _PLACEHOLDER_HOST)


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


def _check_urls(spec: LoadTestSpec) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []
    for index, request in enumerate(spec.requests, start=1):
        field = f"requests[{index - 1}].url"
        if not is_valid_url(request.url):
            issues.append(ValidationIssue(
                type=IssueType.WARNING,
                field=field,
                message=f"Request {index}: URL format may be invalid",
                severity=IssueSeverity.MEDIUM,
                suggestion="Ensure URL is complete with protocol (https://) or starts with /",
            ))
        if _is_placeholder(request.url):
            issues.append(ValidationIssue(
                type=IssueType.WARNING,
                field=field,
                message=f"Request {index}: URL appears to be a placeholder",
                severity=IssueSeverity.HIGH,
                suggestion="Replace with your actual API endpoint URL",
            ))
    return issues


def _check_load(spec: LoadTestSpec) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []
    pattern = spec.load_pattern
    if pattern.virtual_users is not None and pattern.virtual_users > MAX_VIRTUAL_USERS:
        issues.append(ValidationIssue(
            type=IssueType.WARNING,
            field="loadPattern.virtualUsers",
            message="Very high number of virtual users may cause resource issues",
            severity=IssueSeverity.MEDIUM,
            suggestion="Consider starting with a smaller number and scaling up",
        ))
    if (
        pattern.requests_per_second is not None
        and pattern.requests_per_second > MAX_REQUESTS_PER_SECOND
    ):
        issues.append(ValidationIssue(
            type=IssueType.WARNING,
            field="loadPattern.requestsPerSecond",
            message="Very high RPS may overwhelm the target system",
            severity=IssueSeverity.MEDIUM,
            suggestion="Consider starting with a lower RPS and increasing gradually",
        ))
    if pattern.type == LoadPatternType.RAMP_UP and pattern.ramp_up_time is None:
        issues.append(ValidationIssue(
            type=IssueType.WARNING,
            field="loadPattern.rampUpTime",
            message="Ramp-up time not specified for ramp-up test",
            severity=IssueSeverity.MEDIUM,
            suggestion='Specify how long the ramp-up should take (e.g., "2 minutes")',
        ))
    return issues


def _renders_as_json(template: str) -> bool:
    """Placeholders may sit inside JSON strings or stand in for whole values."""
    for value in ("test_value", '"test_value"'):
        try:
            loads_json(_TEMPLATE_VAR_RE.sub(value, template))
        except json.JSONDecodeError:
            continue
        return True
    return False


def _payload_issues(index: int, request: RequestSpec) -> list[ValidationIssue]:
    payload = request.payload
    if payload is None:
        return []
    issues: list[ValidationIssue] = []
    field = f"requests[{index - 1}].payload"
    content_type = next(
        (v for k, v in request.headers.items() if k.lower() == "content-type"), None
    )
    if content_type is None or "application/json" in content_type:
        if not _renders_as_json(payload.template):
            issues.append(ValidationIssue(
                type=IssueType.ERROR,
                field=f"{field}.template",
                message=f"Request {index}: Payload template is not valid JSON",
                severity=IssueSeverity.HIGH,
                suggestion="Ensure payload template is valid JSON with {{variable}} placeholders",
            ))

    used = list(dict.fromkeys(_TEMPLATE_VAR_RE.findall(payload.template)))
    defined = [v.name for v in payload.variables]
    missing = [name for name in used if name not in defined]
    if missing:
        issues.append(ValidationIssue(
            type=IssueType.WARNING,
            field=f"{field}.variables",
            message=(
                f"Request {index}: Variables {', '.join(missing)} used in template "
                "but not defined"
            ),
            severity=IssueSeverity.MEDIUM,
            suggestion="Define variable types for all template placeholders",
        ))
    unused = [name for name in defined if name not in used]
    if unused:
        issues.append(ValidationIssue(
            type=IssueType.SUGGESTION,
            field=f"{field}.variables",
            message=(
                f"Request {index}: Variables {', '.join(unused)} defined but not used "
                "in template"
            ),
            severity=IssueSeverity.LOW,
            suggestion="Remove unused variable definitions or add them to the template",
        ))
    return issues


def _check_payloads(spec: LoadTestSpec) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []
    for index, request in enumerate(spec.requests, start=1):
        issues.extend(_payload_issues(index, request))
    return issues


def _check_duration(spec: LoadTestSpec) -> list[ValidationIssue]:
    seconds = spec.duration.to_seconds()
    if seconds < MIN_DURATION_SECONDS:
        return [ValidationIssue(
            type=IssueType.WARNING,
            field="duration",
            message="Very short test duration may not provide meaningful results",
            severity=IssueSeverity.MEDIUM,
            suggestion="Consider running the test for at least 30 seconds",
        )]
    if seconds > MAX_DURATION_SECONDS:
        return [ValidationIssue(
            type=IssueType.WARNING,
            field="duration",
            message="Very long test duration may consume significant resources",
            severity=IssueSeverity.MEDIUM,
            suggestion="Consider starting with shorter tests and increasing duration gradually",
        )]
    return []


def _check_test_type(spec: LoadTestSpec) -> list[ValidationIssue]:
    pattern = spec.load_pattern.type
    if spec.test_type == TestType.SPIKE and pattern != LoadPatternType.SPIKE:
        return [ValidationIssue(
            type=IssueType.WARNING,
            field="testType",
            message='Test type "spike" should use spike load pattern',
            severity=IssueSeverity.MEDIUM,
            suggestion='Change load pattern type to "spike" or adjust test type',
        )]
    if spec.test_type == TestType.STRESS and pattern != LoadPatternType.RAMP_UP:
        return [ValidationIssue(
            type=IssueType.SUGGESTION,
            field="testType",
            message="Stress tests typically use ramp-up load pattern",
            severity=IssueSeverity.LOW,
            suggestion='Consider using "ramp-up" load pattern for stress testing',
        )]
    return []


@dataclass(frozen=True)
class SpecRule:
    name: str
    check: Callable[[LoadTestSpec], list[ValidationIssue]]


SPEC_RULES: list[SpecRule] = [
    SpecRule("url-format", _check_urls),
    SpecRule("load-parameters", _check_load),
    SpecRule("payload-structure", _check_payloads),
    SpecRule("duration-validity", _check_duration),
    SpecRule("test-type-consistency", _check_test_type),
]


class SpecValidator:
    """Run every :data:`SPEC_RULES` check and collect actionable advice.

    Example::

        report = SpecValidator().validate(result.spec, ctx)
        report.warnings     # ["Request 1: URL appears to be a placeholder"]
        report.can_proceed  # True
    """

    def __init__(self, rules: Optional[list[SpecRule]] = None) -> None:
        self.rules = rules if rules is not None else SPEC_RULES

    def validate(self, spec: LoadTestSpec, ctx: ParseContext) -> SpecValidationReport:
        issues: list[ValidationIssue] = []
        for rule in self.rules:
            found = rule.check(spec)
            if found:
                logger.debug("Rule %s reported %d issues", rule.name, len(found))
            issues.extend(found)
        return SpecValidationReport(issues=issues, suggestions=self._suggestions(issues, ctx))

    @staticmethod
    def _suggestions(issues: list[ValidationIssue], ctx: ParseContext) -> list[str]:
        suggestions = [i.suggestion for i in issues if i.suggestion]
        if ctx.confidence < LOW_CONFIDENCE:
            suggestions.append("Try rephrasing your command with more specific details")
        if ctx.ambiguities:
            suggestions.append("Provide more specific information to reduce ambiguity")
        lowered = ctx.original_input.lower()
        if "http" not in lowered and "/" not in lowered:
            suggestions.append("Include the complete API endpoint URL you want to test")
        if not re.search(r"\d", lowered):
            suggestions.append(
                "Specify numeric values for load parameters (users, requests, duration)"
            )
        return list(dict.fromkeys(suggestions))
