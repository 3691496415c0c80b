"""Prompt composition: turn a ParseContext into a backend-neutral package.

The package holds the system text, examples chosen for relevance to the
detected input, one clarification per ambiguity, explicit parsing
instructions and corrective directives. Backend adapters only see the
flattened output of :meth:`PromptPackage.to_messages` or
:meth:`PromptPackage.to_prompt`.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Callable

from pydantic import BaseModel, ConfigDict, Field

from loadspec.parsing.models import (
    Ambiguity,
    Duration,
    DurationUnit,
    HttpMethod,
    InputFormat,
    LoadPattern,
    LoadPatternType,
    LoadTestSpec,
    ParseContext,
    PayloadTemplate,
    PayloadVariable,
    RequestSpec,
    TestType,
)
from loadspec.parsing.prompt_templates import PromptTemplate

logger = logging.getLogger(__name__)

MAX_EXAMPLES = 5
EXAMPLES_PER_RULE = 2
LOW_CONFIDENCE_PROMPT_THRESHOLD = 0.5
LOW_CONFIDENCE_CLARIFICATION_THRESHOLD = 0.6
MAX_SEGMENT_CHARS = 200

LITERAL_BODY_DIRECTIVE = (
    "A complete literal JSON object in the input is the request body verbatim; "
    "never decompose it into template variables."
)

FORMAT_INSTRUCTIONS: dict[InputFormat, str] = {
    InputFormat.NATURAL_LANGUAGE: (
        "Focus on extracting intent from the natural language description. "
        "Infer technical details from context clues."
    ),
    InputFormat.MIXED: (
        "Parse both structured data and natural language. Prioritize explicit "
        "structured data over inferred values."
    ),
    InputFormat.CURL: (
        "Extract all parameters from the curl command. Pay attention to headers, "
        "method and data flags."
    ),
    InputFormat.HTTP_RAW: (
        "Parse the raw HTTP request. Extract method, path, headers and body from "
        "the HTTP structure."
    ),
    InputFormat.JSON_WITH_TEXT: (
        "Use JSON blocks as request bodies. Use the surrounding text for test "
        "configuration."
    ),
    InputFormat.CONCATENATED: (
        "Identify and separate the individual requests. Create one request entry "
        "for each."
    ),
}

FORMAT_CLARIFICATIONS: dict[InputFormat, str] = {
    InputFormat.CURL: "Parsing a curl command: extract every flag and parameter.",
    InputFormat.HTTP_RAW: "Parsing a raw HTTP request: extract method, headers and body.",
    InputFormat.CONCATENATED: "Multiple requests detected: create a request entry for each.",
    InputFormat.JSON_WITH_TEXT: "JSON data found with descriptive text: use the JSON as the request body.",
    InputFormat.MIXED: "Mixed structured and natural language input: prefer the structured data.",
}

AMBIGUITY_HANDLING_INSTRUCTIONS = [
    "When several values are possible, choose the most common or reasonable default.",
    "Prefer explicit values over inferred ones.",
    "Use context clues to resolve ambiguities.",
]

FALLBACK_DIRECTIVES = [
    "If parsing is difficult, extract whatever components are clearly identifiable.",
    "Use reasonable defaults for missing required fields.",
    "Always return a structurally valid JSON object.",
]


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class PromptExample(BaseModel):
    """An input/output pair shown to the backend."""

    model_config = ConfigDict(frozen=True)

    input: str
    description: str
    output: LoadTestSpec

    @property
    def output_json(self) -> str:
        return json.dumps(
            self.output.model_dump(mode="json", by_alias=True, exclude_none=True),
            separators=(",", ":"),
        )


class PromptPackage(BaseModel):
    """Backend-neutral instruction package."""

    model_config = ConfigDict(frozen=True)

    system_prompt: str
    examples: list[PromptExample] = Field(default_factory=list)
    clarifications: list[str] = Field(default_factory=list)
    parsing_instructions: list[str] = Field(default_factory=list)
    directives: list[str] = Field(default_factory=list)
    user_input: str
    user_prompt: str = Field(..., description="Rendered user turn")

    def to_messages(self) -> list[dict[str, str]]:
        return [
            {"role": "system", "content": self.system_prompt},
            {"role": "user", "content": self.user_prompt},
        ]

    def to_prompt(self) -> str:
        return f"{self.system_prompt}\n\n{self.user_prompt}"


# ---------------------------------------------------------------------------
# Example library
# ---------------------------------------------------------------------------


def _build_example_library() -> list[PromptExample]:
    return [
        PromptExample(
            input="POST to /api/users with 50 concurrent users for 2 minutes",
            description="Basic POST request with a constant user count",
            output=LoadTestSpec(
                id="example_post_users",
                name="POST Users Load Test",
                description="POST to /api/users with 50 concurrent users for 2 minutes",
                test_type=TestType.BASELINE,
                requests=[
                    RequestSpec(
                        method=HttpMethod.POST,
                        url="/api/users",
                        headers={"Content-Type": "application/json"},
                        payload=PayloadTemplate(
                            template='{"name": "{{name}}", "email": "{{email}}"}',
                            variables=[
                                PayloadVariable(name="name", type="random_string"),
                                PayloadVariable(name="email", type="random_email"),
                            ],
                        ),
                    )
                ],
                load_pattern=LoadPattern(type=LoadPatternType.CONSTANT, virtual_users=50),
                duration=Duration(value=2, unit=DurationUnit.MINUTES),
            ),
        ),
        PromptExample(
            input="Spike test with 1000 users hitting GET https://api.example.com/health in 10 seconds",
            description="Spike test against a health endpoint",
            output=LoadTestSpec(
                id="example_spike_health",
                name="Health Spike Test",
                description="Spike test with 1000 users hitting the health endpoint",
                test_type=TestType.SPIKE,
                requests=[RequestSpec(method=HttpMethod.GET, url="https://api.example.com/health")],
                load_pattern=LoadPattern(type=LoadPatternType.SPIKE, virtual_users=1000),
                duration=Duration(value=10, unit=DurationUnit.SECONDS),
            ),
        ),
        PromptExample(
            input=(
                "curl -X POST https://api.example.com/orders -H 'Content-Type: application/json' "
                "-d '{\"orderId\": \"ord-42\", \"quantity\": 2}' with 20 users"
            ),
            description="curl command with a literal JSON body",
            output=LoadTestSpec(
                id="example_curl_orders",
                name="Orders curl Test",
                description="Replay a curl POST to the orders endpoint",
                test_type=TestType.BASELINE,
                requests=[
                    RequestSpec(
                        method=HttpMethod.POST,
                        url="https://api.example.com/orders",
                        headers={"Content-Type": "application/json"},
                        body={"orderId": "ord-42", "quantity": 2},
                    )
                ],
                load_pattern=LoadPattern(type=LoadPatternType.CONSTANT, virtual_users=20),
                duration=Duration(value=30, unit=DurationUnit.SECONDS),
            ),
        ),
        PromptExample(
            input="Stress test /api/login ramping from 10 to 200 users over 5 minutes",
            description="Stress test with a ramp-up pattern",
            output=LoadTestSpec(
                id="example_stress_login",
                name="Login Stress Test",
                description="Ramp login traffic up to 200 users",
                test_type=TestType.STRESS,
                requests=[
                    RequestSpec(
                        method=HttpMethod.POST,
                        url="/api/login",
                        headers={"Content-Type": "application/json"},
                    )
                ],
                load_pattern=LoadPattern(
                    type=LoadPatternType.RAMP_UP,
                    virtual_users=200,
                    ramp_up_time=Duration(value=5, unit=DurationUnit.MINUTES),
                ),
                duration=Duration(value=5, unit=DurationUnit.MINUTES),
            ),
        ),
        PromptExample(
            input="GET /api/products?category=electronics with header Authorization: Bearer token123",
            description="GET request with query parameters and authentication",
            output=LoadTestSpec(
                id="example_get_products",
                name="Products Query Test",
                description="Authenticated product listing",
                test_type=TestType.BASELINE,
                requests=[
                    RequestSpec(
                        method=HttpMethod.GET,
                        url="/api/products?category=electronics",
                        headers={"Authorization": "Bearer token123"},
                    )
                ],
                load_pattern=LoadPattern(type=LoadPatternType.CONSTANT, virtual_users=10),
                duration=Duration(value=1, unit=DurationUnit.MINUTES),
            ),
        ),
    ]


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class _ExampleRule:
    name: str
    condition: Callable[[ParseContext], bool]
    matches: Callable[[PromptExample], bool]


def _first_method(example: PromptExample) -> str:
    return example.output.requests[0].method.value


def _default_rules() -> list[_ExampleRule]:
    return [
        _ExampleRule(
            name="post",
            condition=lambda ctx: "POST" in ctx.extracted_components.methods,
            matches=lambda ex: _first_method(ex) == "POST",
        ),
        _ExampleRule(
            name="high_concurrency",
            condition=lambda ctx: any(c > 100 for c in ctx.extracted_components.counts),
            matches=lambda ex: (ex.output.load_pattern.virtual_users or 0) > 100,
        ),
        _ExampleRule(
            name="spike",
            condition=lambda ctx: ctx.inferred_fields.test_type == TestType.SPIKE,
            matches=lambda ex: ex.output.test_type == TestType.SPIKE,
        ),
        _ExampleRule(
            name="get",
            condition=lambda ctx: "GET" in ctx.extracted_components.methods,
            matches=lambda ex: _first_method(ex) == "GET",
        ),
        _ExampleRule(
            name="stress",
            condition=lambda ctx: ctx.inferred_fields.test_type == TestType.STRESS,
            matches=lambda ex: ex.output.test_type == TestType.STRESS,
        ),
        _ExampleRule(
            name="any",
            condition=lambda ctx: True,
            matches=lambda ex: True,
        ),
    ]


class SmartPromptBuilder:
    """Compose :class:`PromptPackage` instances from a parse context.

    Example::

        builder = SmartPromptBuilder()
        package = builder.build(ctx)
        response = await backend.generate_completion(
            CompletionRequest(messages=package.to_messages(), response_format="json")
        )
    """

    def __init__(
        self,
        templates: PromptTemplate | None = None,
        examples: list[PromptExample] | None = None,
    ) -> None:
        self.templates = templates or PromptTemplate()
        self.examples = examples if examples is not None else _build_example_library()
        self._rules = _default_rules()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def build(self, ctx: ParseContext) -> PromptPackage:
        """Assemble the full package for *ctx*."""
        system_prompt = self.templates.render(
            "system_prompt",
            format_instructions=FORMAT_INSTRUCTIONS[ctx.format],
            low_confidence=ctx.confidence < LOW_CONFIDENCE_PROMPT_THRESHOLD,
            ambiguity_instructions=AMBIGUITY_HANDLING_INSTRUCTIONS if ctx.ambiguities else [],
        )
        package_fields = {
            "system_prompt": system_prompt,
            "examples": self.select_examples(ctx),
            "clarifications": self.clarifications(ctx),
            "parsing_instructions": self.parsing_instructions(ctx),
            "directives": self.directives(ctx),
            "user_input": ctx.cleaned_input,
        }
        package = self._render(package_fields)
        logger.debug(
            "Built prompt with %d examples, %d clarifications (%d chars)",
            len(package.examples),
            len(package.clarifications),
            len(package.user_prompt),
        )
        return package

    def enhance(self, package: PromptPackage, error: str) -> PromptPackage:
        """Return a copy of *package* that tells the backend what went wrong last time."""
        fields = package.model_dump(exclude={"user_prompt"})
        fields["examples"] = list(package.examples)
        fields["directives"] = list(package.directives) + [
            f"Previous parsing failed with: {error}. Correct this in your response."
        ]
        return self._render(fields)

    def correction_prompt(
        self, user_input: str, previous_response: str, errors: list[str]
    ) -> str:
        return self.templates.render(
            "correction",
            errors=errors,
            user_input=user_input,
            previous_response=previous_response,
        )

    # ------------------------------------------------------------------
    # Sections
    # ------------------------------------------------------------------

    def select_examples(self, ctx: ParseContext) -> list[PromptExample]:
        """Pick up to ``MAX_EXAMPLES`` examples, best-scoring first per rule."""
        selected: list[PromptExample] = []
        for rule in self._rules:
            if not rule.condition(ctx):
                continue
            candidates = [ex for ex in self.examples if rule.matches(ex)]
            candidates.sort(key=lambda ex: self.relevance(ex, ctx), reverse=True)
            selected.extend(candidates[:EXAMPLES_PER_RULE])

        unique: list[PromptExample] = []
        seen_inputs: set[str] = set()
        for ex in selected:
            if ex.input not in seen_inputs:
                seen_inputs.add(ex.input)
                unique.append(ex)
        return unique[:MAX_EXAMPLES]

    @staticmethod
    def relevance(example: PromptExample, ctx: ParseContext) -> float:
        """Score how closely *example* resembles the context."""
        score = 0.0
        comps = ctx.extracted_components
        request = example.output.requests[0]
        if request.method.value in comps.methods:
            score += 0.3
        if example.output.test_type == ctx.inferred_fields.test_type:
            score += 0.3
        if example.output.load_pattern.type == ctx.inferred_fields.load_pattern:
            score += 0.2
        example_tail = request.url.rstrip("/").split("/")[-1].split("?")[0]
        for url in comps.urls:
            url_tail = url.rstrip("/").split("/")[-1].split("?")[0]
            if url_tail and example_tail and (url_tail in request.url or example_tail in url):
                score += 0.2
                break
        return round(score, 2)

    def clarifications(self, ctx: ParseContext) -> list[str]:
        items = [self._clarify(a) for a in ctx.ambiguities]
        if ctx.format in FORMAT_CLARIFICATIONS:
            items.append(FORMAT_CLARIFICATIONS[ctx.format])
        if ctx.confidence < LOW_CONFIDENCE_CLARIFICATION_THRESHOLD:
            items.append(
                "Input appears ambiguous or incomplete. Make reasonable assumptions."
            )
        return items

    @staticmethod
    def _clarify(ambiguity: Ambiguity) -> str:
        first = ambiguity.possible_values[0] if ambiguity.possible_values else "a default"
        others = ", ".join(ambiguity.possible_values[1:])
        unless = f" unless the input clearly implies {others}" if others else ""
        if ambiguity.field == "method":
            return f"HTTP method unclear. Use {first}{unless}."
        if ambiguity.field == "url":
            return f"URL incomplete or ambiguous ({ambiguity.reason}). Use {first}{unless}."
        if ambiguity.field == "userCount":
            return f"User count unclear. Use {first} virtual users{unless}."
        if ambiguity.field == "duration":
            return f"Test duration not specified. Use {first}{unless}."
        if ambiguity.field == "content-type":
            return f"Request body has no Content-Type header. Use {first}{unless}."
        return f"{ambiguity.field}: {ambiguity.reason}. Use {first}{unless}."

    @staticmethod
    def parsing_instructions(ctx: ParseContext) -> list[str]:
        comps = ctx.extracted_components
        fields = ctx.inferred_fields
        items: list[str] = []
        if comps.methods:
            items.append(f"Use HTTP method: {comps.methods[0]}")
        if comps.urls:
            items.append(f"Target URL: {comps.urls[0]}")
        if comps.counts:
            items.append(f"User count: {comps.counts[0]}")
        if fields.test_type is not None:
            items.append(f"Test type: {fields.test_type.value}")
        if fields.load_pattern is not None:
            items.append(f"Load pattern: {fields.load_pattern.value}")
        if fields.duration is not None:
            items.append(f"Duration: {fields.duration}")
        if fields.request_body is not None:
            items.append(
                "Use this JSON exactly as the request body: "
                + json.dumps(fields.request_body, separators=(",", ":"))
            )
        segments = ctx.structured.request_segments
        if ctx.format == InputFormat.CONCATENATED and len(segments) > 1:
            items.append(
                f"The input splits into {len(segments)} request segments; "
                "create one request entry per segment"
            )
            for number, segment in enumerate(segments, start=1):
                items.append(f"Segment {number}: {segment[:MAX_SEGMENT_CHARS]}")
        return items

    @staticmethod
    def directives(ctx: ParseContext) -> list[str]:
        items = [LITERAL_BODY_DIRECTIVE, *FALLBACK_DIRECTIVES]
        if ctx.confidence < 0.3:
            items.append("Very low confidence input: use a minimal viable test configuration.")
        if len(ctx.ambiguities) > 3:
            items.append("Highly ambiguous input: prioritize the method and URL.")
        return items

    def _render(self, fields: dict) -> PromptPackage:
        user_prompt = self.templates.render(
            "parse_request",
            examples=fields["examples"],
            clarifications=fields["clarifications"],
            parsing_instructions=fields["parsing_instructions"],
            directives=fields["directives"],
            user_input=fields["user_input"],
        )
        return PromptPackage(user_prompt=user_prompt, **fields)
