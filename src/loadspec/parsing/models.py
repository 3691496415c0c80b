"""Pydantic data models for the load-test parsing pipeline.

Two families live here:

- Working records produced while parsing one input (:class:`StructuredData`,
  :class:`ParsingHint`, :class:`ParseContext`, ...). They are frozen; every
  refinement step returns a new instance via ``model_copy(update=...)``.
- The output :class:`LoadTestSpec` and its parts. These use camelCase aliases
  (``testType``, ``loadPattern``, ``virtualUsers``) because that is the shape
  backends are asked to emit and downstream consumers read.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class HttpMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"
    PATCH = "PATCH"
    HEAD = "HEAD"
    OPTIONS = "OPTIONS"


class TestType(str, Enum):
    """Kind of load test being requested."""

    __test__ = False

    BASELINE = "baseline"
    SPIKE = "spike"
    STRESS = "stress"
    ENDURANCE = "endurance"
    VOLUME = "volume"


class LoadPatternType(str, Enum):
    CONSTANT = "constant"
    RAMP_UP = "ramp-up"
    SPIKE = "spike"
    STEP = "step"


class DurationUnit(str, Enum):
    SECONDS = "seconds"
    MINUTES = "minutes"
    HOURS = "hours"


class InputFormat(str, Enum):
    """Input shapes recognised by the format detector."""

    CURL = "curl"
    HTTP_RAW = "http_raw"
    CONCATENATED = "concatenated"
    JSON_WITH_TEXT = "json_with_text"
    MIXED = "mixed"
    NATURAL_LANGUAGE = "natural_language"


class HintKind(str, Enum):
    METHOD = "method"
    URL = "url"
    HEADERS = "headers"
    BODY = "body"
    COUNT = "count"


class ErrorLevel(str, Enum):
    """Pipeline stage a failure originated from."""

    INPUT = "input"
    AI = "ai"
    VALIDATION = "validation"
    FALLBACK = "fallback"


class RecoveryAction(str, Enum):
    RETRY = "retry"
    ENHANCE_PROMPT = "enhance_prompt"
    FALLBACK = "fallback"
    USER_INPUT = "user_input"


_UNIT_ALIASES: dict[str, DurationUnit] = {
    "s": DurationUnit.SECONDS,
    "sec": DurationUnit.SECONDS,
    "secs": DurationUnit.SECONDS,
    "second": DurationUnit.SECONDS,
    "seconds": DurationUnit.SECONDS,
    "m": DurationUnit.MINUTES,
    "min": DurationUnit.MINUTES,
    "mins": DurationUnit.MINUTES,
    "minute": DurationUnit.MINUTES,
    "minutes": DurationUnit.MINUTES,
    "h": DurationUnit.HOURS,
    "hr": DurationUnit.HOURS,
    "hrs": DurationUnit.HOURS,
    "hour": DurationUnit.HOURS,
    "hours": DurationUnit.HOURS,
}

_DURATION_TEXT_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([a-zA-Z]+)\s*$")

_UNIT_SECONDS: dict[DurationUnit, int] = {
    DurationUnit.SECONDS: 1,
    DurationUnit.MINUTES: 60,
    DurationUnit.HOURS: 3600,
}


def normalize_unit(value: str) -> DurationUnit:
    """Map a unit spelling such as ``"s"`` or ``"Mins"`` to :class:`DurationUnit`.

    Raises:
        ValueError: If the spelling is not recognised.
    """
    unit = _UNIT_ALIASES.get(value.strip().lower())
    if unit is None:
        raise ValueError(f"Unknown duration unit: {value!r}")
    return unit


# ---------------------------------------------------------------------------
# Preprocessing and detection records
# ---------------------------------------------------------------------------


class JsonBlock(BaseModel):
    """A brace-matched ``{...}`` region found in the input."""

    model_config = ConfigDict(frozen=True)

    raw: str = Field(..., description="Exact substring including braces")
    parsed: Any = Field(default=None, description="Decoded value when valid")
    valid: bool = Field(default=False, description="Whether the block decoded")
    confidence: float = Field(default=0.9, ge=0.0, le=1.0)
    start: int = Field(default=0, ge=0)
    end: int = Field(default=0, ge=0)


class StructuredData(BaseModel):
    """Literal structured candidates extracted from sanitized input."""

    model_config = ConfigDict(frozen=True)

    methods: list[str] = Field(default_factory=list)
    urls: list[str] = Field(default_factory=list)
    headers: dict[str, str] = Field(default_factory=dict)
    json_blocks: list[JsonBlock] = Field(default_factory=list)
    key_value_pairs: dict[str, str] = Field(default_factory=dict)
    request_segments: list[str] = Field(default_factory=list)

    @property
    def valid_json_bodies(self) -> list[Any]:
        return [b.parsed for b in self.json_blocks if b.valid]


class ParsingHint(BaseModel):
    """One piece of evidence found in the input."""

    model_config = ConfigDict(frozen=True)

    kind: HintKind
    value: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    span: tuple[int, int] = Field(default=(0, 0))


class FormatDetectionResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    format: InputFormat
    confidence: float = Field(..., ge=0.0, le=1.0)
    hints: list[ParsingHint] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Parse context
# ---------------------------------------------------------------------------


class ExtractedComponents(BaseModel):
    """Hints and structured data merged into candidate field values."""

    model_config = ConfigDict(frozen=True)

    methods: list[str] = Field(default_factory=list)
    urls: list[str] = Field(default_factory=list)
    headers: dict[str, str] = Field(default_factory=dict)
    bodies: list[Any] = Field(
        default_factory=list,
        description="Decoded JSON bodies, or raw text for blocks that did not decode",
    )
    counts: list[int] = Field(default_factory=list)


class InferredFields(BaseModel):
    model_config = ConfigDict(frozen=True)

    test_type: Optional[TestType] = None
    duration: Optional[str] = Field(
        default=None,
        description="Compact duration text such as '30s' or '10m'",
    )
    load_pattern: Optional[LoadPatternType] = None
    request_body: Any = None


class Ambiguity(BaseModel):
    """A field with zero or several plausible values."""

    model_config = ConfigDict(frozen=True)

    field: str
    possible_values: list[str] = Field(default_factory=list)
    reason: str

    def describe(self) -> str:
        options = ", ".join(self.possible_values) or "none"
        return f"{self.field}: {self.reason} (options: {options})"


class ParseContext(BaseModel):
    """Everything known or inferred about a single input.

    Attributes:
        confidence: Current confidence after inference and ambiguity
            discounts.
        base_confidence: Confidence before ambiguity discounts, so that
            :meth:`ContextEnhancer.resolve_ambiguities` can be re-run without
            compounding its penalty.
        defaulted_fields: Inferred fields that fell through to a fixed default.
    """

    model_config = ConfigDict(frozen=True)

    original_input: str
    cleaned_input: str
    format: InputFormat = InputFormat.NATURAL_LANGUAGE
    format_confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    hints: list[ParsingHint] = Field(default_factory=list)
    structured: StructuredData = Field(default_factory=StructuredData)
    extracted_components: ExtractedComponents = Field(default_factory=ExtractedComponents)
    inferred_fields: InferredFields = Field(default_factory=InferredFields)
    defaulted_fields: list[str] = Field(default_factory=list)
    ambiguities: list[Ambiguity] = Field(default_factory=list)
    confidence: float = Field(default=0.3, ge=0.0, le=1.0)
    base_confidence: float = Field(default=0.3, ge=0.0, le=1.0)


# ---------------------------------------------------------------------------
# Load test specification
# ---------------------------------------------------------------------------

_WIRE_CONFIG = ConfigDict(
    alias_generator=to_camel,
    populate_by_name=True,
    validate_assignment=True,
    str_strip_whitespace=True,
)


class Duration(BaseModel):
    """A positive length of time."""

    model_config = _WIRE_CONFIG

    value: float = Field(..., gt=0, allow_inf_nan=False)
    unit: DurationUnit = DurationUnit.SECONDS

    @field_validator("unit", mode="before")
    @classmethod
    def _normalize_unit(cls, v: Any) -> Any:
        """Accept shorthand spellings (``s``, ``min``, ``hrs``)."""
        if isinstance(v, str):
            return normalize_unit(v)
        return v

    @classmethod
    def parse(cls, text: str) -> "Duration":
        """Build a Duration from compact text such as ``"30s"`` or ``"2 minutes"``.

        Raises:
            ValueError: If the text is not a number followed by a unit.
        """
        match = _DURATION_TEXT_RE.match(text)
        if not match:
            raise ValueError(f"Cannot parse duration: {text!r}")
        return cls(value=float(match.group(1)), unit=normalize_unit(match.group(2)))

    def to_seconds(self) -> float:
        return self.value * _UNIT_SECONDS[self.unit]


class PayloadVariable(BaseModel):
    model_config = _WIRE_CONFIG

    name: str
    type: str = "string"
    parameters: dict[str, Any] = Field(default_factory=dict)


class PayloadTemplate(BaseModel):
    """A request body template with generated variables."""

    model_config = _WIRE_CONFIG

    template: str
    variables: list[PayloadVariable] = Field(default_factory=list)


class ResponseCheck(BaseModel):
    model_config = _WIRE_CONFIG

    type: str
    condition: str
    expected_value: Any = None


class RequestSpec(BaseModel):
    """One HTTP request exercised by the load test.

    A request carries either a literal ``body`` (sent verbatim) or a
    ``payload`` template, never both.
    """

    model_config = _WIRE_CONFIG

    method: HttpMethod
    url: str = Field(..., min_length=1)
    headers: dict[str, str] = Field(default_factory=dict)
    body: Any = Field(default=None, description="Literal request body")
    payload: Optional[PayloadTemplate] = Field(default=None)
    validation: list[ResponseCheck] = Field(default_factory=list)

    @field_validator("method", mode="before")
    @classmethod
    def _upper_method(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @model_validator(mode="after")
    def _body_xor_payload(self) -> "RequestSpec":
        """Reject requests that carry both a literal body and a template."""
        if self.body is not None and self.payload is not None:
            raise ValueError("A request may define either body or payload, not both")
        return self


class LoadPattern(BaseModel):
    model_config = _WIRE_CONFIG

    type: LoadPatternType = LoadPatternType.CONSTANT
    virtual_users: Optional[int] = Field(default=None, gt=0)
    requests_per_second: Optional[float] = Field(default=None, gt=0, allow_inf_nan=False)
    ramp_up_time: Optional[Duration] = None

    @model_validator(mode="after")
    def _require_volume(self) -> "LoadPattern":
        """A load pattern must say how much load to apply."""
        if self.virtual_users is None and self.requests_per_second is None:
            raise ValueError("loadPattern needs virtualUsers or requestsPerSecond")
        return self


class LoadTestSpec(BaseModel):
    """Structured, validated load-test specification."""

    model_config = _WIRE_CONFIG

    id: str = Field(..., min_length=1)
    name: str = Field(default="Load Test")
    description: str = Field(default="")
    test_type: TestType = TestType.BASELINE
    requests: list[RequestSpec] = Field(..., min_length=1)
    load_pattern: LoadPattern
    duration: Duration


# ---------------------------------------------------------------------------
# Explanation records
# ---------------------------------------------------------------------------


class Assumption(BaseModel):
    """A spec field whose value was synthesized rather than extracted."""

    field: str
    assumed_value: Any
    reason: str
    alternatives: list[Any] = Field(default_factory=list)


class AmbiguityResolution(BaseModel):
    field: str
    chosen: Any
    alternatives: list[str] = Field(default_factory=list)
    reason: str


class ParsingExplanation(BaseModel):
    """What was read from the input and how open questions were settled."""

    extracted_components: dict[str, Any] = Field(default_factory=dict)
    ambiguity_resolutions: list[AmbiguityResolution] = Field(default_factory=list)


class ProcessingStep(BaseModel):
    name: str
    success: bool = True
    duration_ms: float = 0.0
    detail: Optional[str] = None


# ---------------------------------------------------------------------------
# Error recovery records
# ---------------------------------------------------------------------------


class RecoveryStrategy(BaseModel):
    """A remedial action for a classified failure."""

    can_recover: bool
    strategy: RecoveryAction
    confidence: float = Field(..., ge=0.0, le=1.0)
    estimated_success: float = Field(default=0.0, ge=0.0, le=1.0)
    max_retries: int = Field(default=0, ge=0)
    retry_delay: float = Field(default=0.0, ge=0.0, description="Seconds")


class ParseError(BaseModel):
    """A classified pipeline failure with human-readable guidance."""

    level: ErrorLevel
    type: str
    message: str
    suggestions: list[str] = Field(default_factory=list)
    recovery_strategy: Optional[RecoveryStrategy] = None


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class ParseResult(BaseModel):
    """A spec plus the metadata explaining how much to trust it."""

    spec: LoadTestSpec
    confidence: float = Field(..., ge=0.0, le=1.0)
    ambiguities: list[str] = Field(default_factory=list)
    assumptions: list[Assumption] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    processing_steps: list[ProcessingStep] = Field(default_factory=list)
    used_fallback: bool = False
    backend_name: Optional[str] = None
    format: Optional[InputFormat] = None
    explanation: Optional[ParsingExplanation] = None


class RecoveryResult(BaseModel):
    success: bool
    result: Optional[ParseResult] = None
    error: Optional[ParseError] = None
    attempts_used: int = 0
    recovery_path: list[RecoveryAction] = Field(default_factory=list)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
