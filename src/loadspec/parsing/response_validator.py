"""Turn raw backend text into a validated :class:`LoadTestSpec`.

Validation runs in escalating passes:

1. decode (code fences stripped, one mechanical repair retry)
2. structural checks on the decoded object
3. local correction from the parse context when few fields are wrong
4. remote correction rounds that send the errors back to the backend

A literal JSON body found in the operator input is restored verbatim after
every pass, whatever the backend did with it.
"""

from __future__ import annotations

import copy
import json
import logging
import math
import time
from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel, Field, ValidationError

from loadspec.parsing.context_enhancer import (
    DEFAULT_DURATION,
    DEFAULT_LOAD_PATTERN,
    DEFAULT_TEST_TYPE,
)
from loadspec.parsing.exceptions import ResponseValidationError
from loadspec.parsing.json_utils import (
    extract_first_json_object,
    loads_lenient,
    strip_code_fences,
)
from loadspec.parsing.models import (
    Duration,
    HttpMethod,
    LoadPatternType,
    LoadTestSpec,
    ParseContext,
    TestType,
    normalize_unit,
)
from loadspec.parsing.prompt_builder import SmartPromptBuilder

logger = logging.getLogger(__name__)

DEFAULT_MAX_CORRECTION_ROUNDS = 2
MAX_LOCAL_CORRECTION_ERRORS = 3
DEFAULT_VIRTUAL_USERS = 10
DEFAULT_URL = "/api/endpoint"

REQUIRED_FIELDS = ("id", "name", "testType", "requests", "loadPattern", "duration")
_BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})
_METHODS = frozenset(m.value for m in HttpMethod)
_PATTERN_TYPES = frozenset(p.value for p in LoadPatternType)
_TEST_TYPES = frozenset(t.value for t in TestType)

CompletionCallable = Callable[[str], Awaitable[str]]


class ValidationOutcome(BaseModel):
    """A validated spec with a record of the repairs it needed."""

    spec: LoadTestSpec
    corrected_fields: list[str] = Field(default_factory=list)
    correction_rounds: int = 0
    body_restored: bool = False


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return isinstance(value, int) or math.isfinite(value)


def _is_choice(value: Any, choices: frozenset[str]) -> bool:
    return isinstance(value, str) and value in choices


class ResponseValidator:
    """Decode, check and repair backend responses.

    Args:
        prompt_builder: Renders the correction prompt for remote rounds.
        max_correction_rounds: Backend round-trips allowed after local
            correction fails.
    """

    def __init__(
        self,
        prompt_builder: Optional[SmartPromptBuilder] = None,
        max_correction_rounds: int = DEFAULT_MAX_CORRECTION_ROUNDS,
    ) -> None:
        if max_correction_rounds < 0:
            raise ValueError("max_correction_rounds must be >= 0")
        self.prompt_builder = prompt_builder or SmartPromptBuilder()
        self.max_correction_rounds = max_correction_rounds

    # ------------------------------------------------------------------
    # Decode
    # ------------------------------------------------------------------

    def decode(self, text: str) -> dict[str, Any]:
        """Extract the JSON object from *text*.

        Raises:
            ResponseValidationError: If no JSON object can be decoded.
        """
        cleaned = strip_code_fences(text or "")
        candidate = extract_first_json_object(cleaned) or cleaned
        try:
            data = loads_lenient(candidate)
        except json.JSONDecodeError as exc:
            raise ResponseValidationError(
                [f"Response is not valid JSON: {exc.msg}"], raw_response=text
            ) from exc
        if not isinstance(data, dict):
            raise ResponseValidationError(
                ["Response is not a JSON object"], raw_response=text
            )
        return data

    @staticmethod
    def normalize(data: dict[str, Any]) -> dict[str, Any]:
        """Canonicalize harmless spelling variants (enum case, compact durations)."""
        normalized = copy.deepcopy(data)
        if isinstance(normalized.get("testType"), str):
            normalized["testType"] = normalized["testType"].strip().lower()
        pattern = normalized.get("loadPattern")
        if isinstance(pattern, dict) and isinstance(pattern.get("type"), str):
            pattern["type"] = pattern["type"].strip().lower().replace("_", "-")
        for holder, key in ((normalized, "duration"), (pattern, "rampUpTime")):
            if isinstance(holder, dict) and isinstance(holder.get(key), str):
                try:
                    holder[key] = Duration.parse(holder[key]).model_dump(mode="json")
                except ValueError:
                    continue
        return normalized

    # ------------------------------------------------------------------
    # Structural checks
    # ------------------------------------------------------------------

    def structural_errors(self, data: dict[str, Any]) -> list[str]:
        errors: list[str] = []
        for field in REQUIRED_FIELDS:
            if data.get(field) in (None, "", [], {}):
                errors.append(f"Missing required field: {field}")

        test_type = data.get("testType")
        if test_type not in (None, "", [], {}) and not _is_choice(test_type, _TEST_TYPES):
            errors.append(f"Invalid test type: {test_type!r}")

        requests = data.get("requests")
        if isinstance(requests, list):
            for index, request in enumerate(requests, start=1):
                if not isinstance(request, dict):
                    errors.append(f"Request {index}: must be an object")
                    continue
                method = request.get("method")
                if not method:
                    errors.append(f"Request {index}: HTTP method is required")
                elif str(method).upper() not in _METHODS:
                    errors.append(f"Request {index}: invalid HTTP method {method!r}")
                if not request.get("url"):
                    errors.append(f"Request {index}: URL is required")
                if request.get("body") is not None and request.get("payload") is not None:
                    errors.append(f"Request {index}: body and payload are mutually exclusive")
        elif requests is not None:
            errors.append("requests must be a list")

        pattern = data.get("loadPattern")
        if isinstance(pattern, dict):
            if not pattern.get("type"):
                errors.append("Load pattern type is required")
            elif not _is_choice(pattern["type"], _PATTERN_TYPES):
                errors.append(f"Invalid load pattern type: {pattern['type']!r}")
            users = pattern.get("virtualUsers")
            rps = pattern.get("requestsPerSecond")
            if not (_is_number(users) and users > 0) and not (_is_number(rps) and rps > 0):
                errors.append("Load pattern needs positive virtualUsers or requestsPerSecond")
        elif pattern is not None:
            errors.append("loadPattern must be an object")

        duration = data.get("duration")
        if duration is not None and duration != {}:
            errors.extend(self._duration_errors(duration))
        return errors

    @staticmethod
    def _duration_errors(duration: Any) -> list[str]:
        if isinstance(duration, str):
            try:
                Duration.parse(duration)
            except ValueError:
                return [f"Duration {duration!r} is not a number with a unit"]
            return []
        if not isinstance(duration, dict):
            return ["Duration must be an object with value and unit"]
        errors: list[str] = []
        value = duration.get("value")
        if not _is_number(value):
            errors.append("Duration value must be numeric")
        elif value <= 0:
            errors.append("Duration value must be positive")
        unit = duration.get("unit")
        if not unit:
            errors.append("Duration unit is required")
        else:
            try:
                normalize_unit(str(unit))
            except ValueError:
                errors.append(f"Invalid duration unit: {unit!r}")
        return errors

    # ------------------------------------------------------------------
    # Local correction
    # ------------------------------------------------------------------

    def correct_locally(
        self, data: dict[str, Any], ctx: ParseContext
    ) -> tuple[dict[str, Any], list[str]]:
        """Fill missing or broken fields from *ctx*.

        Returns the corrected copy and the names of the fields touched.
        """
        fixed = copy.deepcopy(data)
        touched: list[str] = []
        comps = ctx.extracted_components
        inferred = ctx.inferred_fields

        if not fixed.get("id"):
            fixed["id"] = f"test_{int(time.time() * 1000)}"
            touched.append("id")
        if not fixed.get("name"):
            fixed["name"] = "Load Test"
            touched.append("name")
        if not fixed.get("description"):
            fixed["description"] = ctx.cleaned_input
        if not _is_choice(fixed.get("testType"), _TEST_TYPES):
            fixed["testType"] = (inferred.test_type or DEFAULT_TEST_TYPE).value
            touched.append("testType")

        default_method = comps.methods[0] if comps.methods else (
            "POST" if inferred.request_body is not None else "GET"
        )
        default_url = comps.urls[0] if comps.urls else DEFAULT_URL
        requests = fixed.get("requests")
        if not isinstance(requests, list) or not requests:
            fixed["requests"] = [{"method": default_method, "url": default_url}]
            touched.append("requests")
        else:
            for request in requests:
                if not isinstance(request, dict):
                    continue
                method = request.get("method")
                if not method or str(method).upper() not in _METHODS:
                    request["method"] = default_method
                    touched.append("requests.method")
                if not request.get("url"):
                    request["url"] = default_url
                    touched.append("requests.url")
                if request.get("body") is not None and request.get("payload") is not None:
                    request.pop("payload")
                    touched.append("requests.payload")
            fixed["requests"] = [r for r in requests if isinstance(r, dict)] or [
                {"method": default_method, "url": default_url}
            ]

        pattern = fixed.get("loadPattern")
        if not isinstance(pattern, dict):
            pattern = {}
            touched.append("loadPattern")
        if not _is_choice(pattern.get("type"), _PATTERN_TYPES):
            pattern["type"] = (inferred.load_pattern or DEFAULT_LOAD_PATTERN).value
            touched.append("loadPattern.type")
        users = pattern.get("virtualUsers")
        rps = pattern.get("requestsPerSecond")
        if not (_is_number(users) and users > 0) and not (_is_number(rps) and rps > 0):
            pattern.pop("requestsPerSecond", None)
            pattern["virtualUsers"] = comps.counts[0] if comps.counts else DEFAULT_VIRTUAL_USERS
            touched.append("loadPattern.virtualUsers")
        fixed["loadPattern"] = pattern

        duration = fixed.get("duration")
        if isinstance(duration, str) and not self._duration_errors(duration):
            fixed["duration"] = Duration.parse(duration).model_dump(mode="json")
        elif duration in (None, {}) or self._duration_errors(duration):
            fallback = Duration.parse(inferred.duration or DEFAULT_DURATION)
            fixed["duration"] = fallback.model_dump(mode="json")
            touched.append("duration")

        return fixed, list(dict.fromkeys(touched))

    # ------------------------------------------------------------------
    # Literal bodies
    # ------------------------------------------------------------------

    @staticmethod
    def restore_literal_body(
        data: dict[str, Any], ctx: ParseContext
    ) -> tuple[dict[str, Any], bool]:
        """Put the operator's literal JSON body back on the primary request.

        Applies when the backend replaced it with a template, altered it or
        dropped it from a body-carrying request.
        """
        literal = ctx.inferred_fields.request_body
        requests = data.get("requests")
        if literal is None or not isinstance(requests, list) or not requests:
            return data, False
        primary = requests[0]
        if not isinstance(primary, dict):
            return data, False

        body = primary.get("body")
        method = str(primary.get("method") or "").upper()
        templated = primary.get("payload") is not None
        altered = body is not None and body != literal
        dropped = body is None and method in _BODY_METHODS
        if not (templated or altered or dropped):
            return data, False

        restored = copy.deepcopy(data)
        restored_primary = restored["requests"][0]
        restored_primary.pop("payload", None)
        restored_primary["body"] = copy.deepcopy(literal)
        logger.info("Restored literal request body on the primary request")
        return restored, True

    # ------------------------------------------------------------------
    # Full passes
    # ------------------------------------------------------------------

    def validate(self, text: str, ctx: ParseContext) -> ValidationOutcome:
        """Decode, check and locally correct *text* without any backend calls.

        Raises:
            ResponseValidationError: If the response cannot be decoded, has
                more errors than local correction handles, or still fails
                model validation after correction.
        """
        data = self.normalize(self.decode(text))
        data, restored = self.restore_literal_body(data, ctx)

        touched: list[str] = []
        errors = self.structural_errors(data)
        if errors:
            if len(errors) > MAX_LOCAL_CORRECTION_ERRORS:
                raise ResponseValidationError(errors, raw_response=text)
            logger.debug("Correcting %d structural errors locally: %s", len(errors), errors)
            data, touched = self.correct_locally(data, ctx)
            data, again = self.restore_literal_body(data, ctx)
            restored = restored or again
            remaining = self.structural_errors(data)
            if remaining:
                raise ResponseValidationError(remaining, raw_response=text)

        try:
            spec = LoadTestSpec.model_validate(data)
        except ValidationError as exc:
            raise ResponseValidationError(
                [self._format_pydantic_error(e) for e in exc.errors()],
                raw_response=text,
            ) from exc
        return ValidationOutcome(spec=spec, corrected_fields=touched, body_restored=restored)

    async def validate_with_correction(
        self,
        text: str,
        ctx: ParseContext,
        complete: CompletionCallable,
    ) -> ValidationOutcome:
        """Run :meth:`validate`, asking the backend to fix its output on failure.

        Args:
            text: The first backend response.
            ctx: Context of the input being parsed.
            complete: Sends a prompt to the backend and returns its text.

        Raises:
            ResponseValidationError: After ``max_correction_rounds`` failed
                remote rounds.
        """
        current = text
        rounds = 0
        while True:
            try:
                outcome = self.validate(current, ctx)
            except ResponseValidationError as exc:
                if rounds >= self.max_correction_rounds:
                    logger.warning(
                        "Response still invalid after %d correction rounds", rounds
                    )
                    raise
                rounds += 1
                logger.info(
                    "Requesting correction round %d/%d for %d errors",
                    rounds,
                    self.max_correction_rounds,
                    len(exc.errors),
                )
                prompt = self.prompt_builder.correction_prompt(
                    ctx.cleaned_input, current, exc.errors
                )
                current = await complete(prompt)
                continue
            return outcome.model_copy(update={"correction_rounds": rounds})

    @staticmethod
    def _format_pydantic_error(error: dict[str, Any]) -> str:
        location = ".".join(str(part) for part in error.get("loc", ())) or "spec"
        return f"{location}: {error.get('msg', 'invalid value')}"

