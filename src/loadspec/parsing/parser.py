"""Pipeline entry point: natural-language text in, :class:`ParseResult` out.

Stages run strictly in order::

    preprocess -> detect -> build_context -> infer -> resolve
        -> compose_prompt -> ai_completion -> validate -> explain

The first five stages are pure and synchronous. Backend and validation
failures are routed through the :class:`ErrorRecoveryCoordinator`, and the
deterministic :class:`FallbackParser` guarantees that every call ends with
a usable spec.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

from loadspec.config import ParserSettings
from loadspec.llm.base import AIBackend
from loadspec.llm.exceptions import BackendError
from loadspec.llm.factory import create_backend
from loadspec.llm.models import CompletionRequest, CompletionResponse, ResponseFormat
from loadspec.metrics import ParseAttempt, ParsingMetricsCollector
from loadspec.parsing.context_enhancer import ContextEnhancer
from loadspec.parsing.error_recovery import ErrorRecoveryCoordinator, RecoveryOperations
from loadspec.parsing.exceptions import ParsingError
from loadspec.parsing.explanation import ExplanationEngine
from loadspec.parsing.fallback_parser import FallbackParser
from loadspec.parsing.format_detector import FormatDetector
from loadspec.parsing.models import (
    Assumption,
    ErrorLevel,
    ParseContext,
    ParseResult,
    ProcessingStep,
)
from loadspec.parsing.preprocessor import InputPreprocessor
from loadspec.parsing.prompt_builder import PromptPackage, SmartPromptBuilder
from loadspec.parsing.response_validator import ResponseValidator
from loadspec.parsing.spec_validator import SpecValidator

logger = logging.getLogger(__name__)

AI_UNAVAILABLE_PENALTY = 0.8
AI_UNAVAILABLE_WARNING = "AI unavailable: parsed with the deterministic fallback parser"


def _dedupe(items: list[str]) -> list[str]:
    return list(dict.fromkeys(items))


class LoadSpecParser:
    """Parse operator text into a validated load-test specification.

    Example::

        parser = LoadSpecParser.from_settings(load_config())
        result = await parser.parse("Spike test with 1000 users on GET /api/users")
        result.spec.test_type        # TestType.SPIKE
        result.processing_steps[-1]  # ProcessingStep(name="explain", ...)

    Args:
        backend: Completion backend. ``None`` runs every call through the
            fallback parser.
        settings: Pipeline settings; defaults are used when omitted.
    """

    def __init__(
        self,
        backend: Optional[AIBackend] = None,
        settings: Optional[ParserSettings] = None,
        *,
        prompt_builder: Optional[SmartPromptBuilder] = None,
        recovery: Optional[ErrorRecoveryCoordinator] = None,
        metrics: Optional[ParsingMetricsCollector] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings or ParserSettings()
        self.backend = backend
        self.preprocessor = InputPreprocessor(self.settings.max_input_length)
        self.detector = FormatDetector()
        self.enhancer = ContextEnhancer()
        self.prompt_builder = prompt_builder or SmartPromptBuilder()
        self.validator = ResponseValidator(
            self.prompt_builder, max_correction_rounds=self.settings.max_correction_rounds
        )
        self.explainer = ExplanationEngine()
        self.spec_validator = SpecValidator()
        self.fallback = FallbackParser()
        self.recovery = recovery or ErrorRecoveryCoordinator(
            max_retries=self.settings.max_retries,
            enable_fallback=self.settings.enable_fallback,
        )
        self.metrics = metrics or ParsingMetricsCollector()
        self._init_lock = asyncio.Lock()
        self._clock = clock
        self._init_failed_at: Optional[float] = None

    @classmethod
    def from_settings(cls, settings: ParserSettings) -> "LoadSpecParser":
        """Build a parser with the backend described by *settings*."""
        return cls(create_backend(settings.to_backend_config()), settings)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> bool:
        """Initialize the backend; return whether it is ready.

        A failed initialization is retried once ``health_check_interval``
        seconds have passed, so a backend that comes up later is picked up
        without restarting the process.
        """
        if self.backend is None:
            return False
        async with self._init_lock:
            if self.backend.is_ready():
                return True
            if (
                self._init_failed_at is not None
                and self._clock() - self._init_failed_at < self.settings.health_check_interval
            ):
                return False
            try:
                await self.backend.initialize()
            except BackendError as exc:
                self._init_failed_at = self._clock()
                logger.warning("Backend %s unavailable: %s", self.backend.name, exc)
                return False
            self._init_failed_at = None
        return self.backend.is_ready()

    async def close(self) -> None:
        if self.backend is not None:
            await self.backend.close()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def analyze(self, text: Optional[str], steps: Optional[list[ProcessingStep]] = None) -> ParseContext:
        """Run the pure stages and return the resolved context."""
        steps = steps if steps is not None else []
        with self._step(steps, "preprocess"):
            cleaned, structured = self.preprocessor.preprocess(text)
        with self._step(steps, "detect"):
            detection = self.detector.detect(cleaned, structured)
        with self._step(steps, "build_context"):
            ctx = self.enhancer.build_context(text or "", cleaned, structured, detection)
        with self._step(steps, "infer"):
            ctx = self.enhancer.infer_missing_fields(ctx)
        with self._step(steps, "resolve"):
            ctx = self.enhancer.resolve_ambiguities(ctx)
        return ctx

    async def parse(self, text: Optional[str]) -> ParseResult:
        """Parse *text* with the backend, recovering or falling back on failure."""
        started = time.perf_counter()
        steps: list[ProcessingStep] = []
        ctx = self.analyze(text, steps)
        retries = 0
        error_type: Optional[str] = None

        if not ctx.cleaned_input:
            empty = self.recovery.classify("Input is empty", ErrorLevel.INPUT)
            error_type = empty.type
            result = self._fallback_result(
                ctx, steps, reason="Input is empty", extra_suggestions=empty.suggestions
            )
        elif not await self.initialize():
            result = self._fallback_result(ctx, steps, ai_unavailable=True)
        else:
            with self._step(steps, "compose_prompt"):
                package = self.prompt_builder.build(ctx)
            try:
                result = await self._ai_parse(ctx, package, steps)
            except (BackendError, ParsingError) as exc:
                level = ErrorLevel.AI if isinstance(exc, BackendError) else ErrorLevel.VALIDATION
                result, retries, error_type = await self._recover(exc, level, ctx, package, steps)

        self._record(ctx, result, started, retries, error_type)
        return result

    def parse_with_fallback_only(self, text: Optional[str]) -> ParseResult:
        """Parse *text* with the deterministic rules only; never calls a backend."""
        started = time.perf_counter()
        steps: list[ProcessingStep] = []
        ctx = self.analyze(text, steps)
        reason = None if ctx.cleaned_input else "Input is empty"
        result = self._fallback_result(ctx, steps, reason=reason)
        self._record(ctx, result, started, 0, None)
        return result

    # ------------------------------------------------------------------
    # AI path
    # ------------------------------------------------------------------

    async def _ai_parse(
        self, ctx: ParseContext, package: PromptPackage, steps: list[ProcessingStep]
    ) -> ParseResult:
        backend = self.backend
        if backend is None:
            raise ParsingError("No AI backend is configured")
        request = CompletionRequest(
            messages=package.to_messages(),
            temperature=self.settings.temperature,
            max_tokens=self.settings.max_tokens,
            response_format=ResponseFormat.JSON,
        )
        with self._step(steps, "ai_completion"):
            response = await backend.generate_completion(request)
        self._record_usage(response)

        async def complete(prompt: str) -> str:
            with self._step(steps, "ai_correction"):
                correction = await backend.generate_completion(
                    CompletionRequest(
                        prompt=prompt,
                        temperature=self.settings.temperature,
                        max_tokens=self.settings.max_tokens,
                        response_format=ResponseFormat.JSON,
                    )
                )
            self._record_usage(correction)
            return correction.text

        with self._step(steps, "validate"):
            outcome = await self.validator.validate_with_correction(response.text, ctx, complete)

        with self._step(steps, "explain"):
            report = self.explainer.report(ctx, outcome.spec)
            checks = self.spec_validator.validate(outcome.spec, ctx)
        confidence = report.confidence
        warnings = report.warnings + checks.errors + checks.warnings

        if confidence < self.settings.confidence_threshold:
            warnings.append(
                f"Confidence {confidence:.0%} is below the {self.settings.confidence_threshold:.0%} "
                "threshold; review the specification before running it"
            )
        if outcome.body_restored:
            warnings.append("The literal request body from the input was restored verbatim")

        result = ParseResult(
            spec=outcome.spec,
            confidence=confidence,
            ambiguities=[a.describe() for a in ctx.ambiguities],
            assumptions=report.assumptions,
            warnings=_dedupe(warnings),
            suggestions=_dedupe(
                report.suggestions + checks.suggestions + self._clarifications(ctx)
            ),
            processing_steps=list(steps),
            used_fallback=False,
            backend_name=backend.name,
            format=ctx.format,
            explanation=report.explanation,
        )
        if confidence < self.settings.fallback_confidence_threshold:
            alternative = self._fallback_result(ctx, steps)
            if alternative.confidence > result.confidence:
                logger.info("Fallback result is more confident than the AI result; using it")
                return alternative
        return result

    async def _recover(
        self,
        exc: Exception,
        level: ErrorLevel,
        ctx: ParseContext,
        package: PromptPackage,
        steps: list[ProcessingStep],
    ) -> tuple[ParseResult, int, str]:
        logger.warning("%s stage failed: %s", level.value, exc)
        ai_unavailable = level == ErrorLevel.AI

        operations = RecoveryOperations(
            retry=lambda: self._ai_parse(ctx, package, steps),
            enhance_prompt=lambda message: self._ai_parse(
                ctx, self.prompt_builder.enhance(package, message), steps
            ),
            fallback=lambda: self._fallback_result(
                ctx, steps, ai_unavailable=ai_unavailable, reason=str(exc)
            ),
        )
        outcome = await self.recovery.recover(exc, level, ctx.cleaned_input, operations)
        steps.append(
            ProcessingStep(
                name="recovery",
                success=outcome.success,
                detail=" -> ".join(a.value for a in outcome.recovery_path) or None,
            )
        )
        error_type = self.recovery.classify(exc, level, ctx.cleaned_input).type
        if outcome.success and outcome.result is not None:
            result = outcome.result.model_copy(
                update={"processing_steps": list(steps)}
            )
            return result, outcome.attempts_used, error_type

        suggestions = outcome.error.suggestions if outcome.error else []
        result = self._fallback_result(
            ctx,
            steps,
            ai_unavailable=ai_unavailable,
            reason=f"All recovery strategies failed: {exc}",
            extra_suggestions=suggestions,
        )
        return result, outcome.attempts_used, error_type

    # ------------------------------------------------------------------
    # Fallback path
    # ------------------------------------------------------------------

    def _fallback_result(
        self,
        ctx: ParseContext,
        steps: list[ProcessingStep],
        *,
        ai_unavailable: bool = False,
        reason: Optional[str] = None,
        extra_suggestions: Optional[list[str]] = None,
    ) -> ParseResult:
        with self._step(steps, "fallback_parse"):
            parsed = self.fallback.parse(ctx.cleaned_input)
        spec = parsed.spec

        confidence = parsed.confidence
        if ai_unavailable:
            confidence *= AI_UNAVAILABLE_PENALTY
        confidence = round(confidence, 4)

        assumptions = list(parsed.assumptions)
        known = {a.field for a in assumptions}
        assumptions += [a for a in self.explainer.assumptions(ctx, spec) if a.field not in known]
        warnings = list(parsed.warnings)
        if ai_unavailable:
            assumptions.insert(
                0,
                Assumption(
                    field="parser",
                    assumed_value="fallback",
                    reason="AI backend unavailable; the spec comes from deterministic rules",
                    alternatives=["ai"],
                ),
            )
            warnings.insert(0, AI_UNAVAILABLE_WARNING)
        if reason:
            warnings.append(reason)
        warnings += self.explainer.warnings(ctx, spec, confidence)
        checks = self.spec_validator.validate(spec, ctx)
        warnings += checks.errors + checks.warnings

        suggestions = self.explainer.suggestions(spec) + checks.suggestions
        suggestions += self._clarifications(ctx)
        suggestions += extra_suggestions or []

        return ParseResult(
            spec=spec,
            confidence=confidence,
            ambiguities=[a.describe() for a in ctx.ambiguities],
            assumptions=assumptions,
            warnings=_dedupe(warnings),
            suggestions=_dedupe(suggestions),
            processing_steps=list(steps),
            used_fallback=True,
            backend_name=None,
            format=ctx.format,
            explanation=self.explainer.explain(ctx, spec),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _clarifications(self, ctx: ParseContext) -> list[str]:
        if ctx.confidence >= self.settings.ambiguity_threshold:
            return []
        return [f"Clarify {a.field}: {a.reason}" for a in ctx.ambiguities]

    @contextmanager
    def _step(self, steps: list[ProcessingStep], name: str) -> Iterator[None]:
        started = time.perf_counter()
        try:
            yield
        except Exception as exc:
            steps.append(
                ProcessingStep(
                    name=name,
                    success=False,
                    duration_ms=(time.perf_counter() - started) * 1000,
                    detail=str(exc),
                )
            )
            raise
        steps.append(
            ProcessingStep(name=name, duration_ms=(time.perf_counter() - started) * 1000)
        )

    def _record_usage(self, response: CompletionResponse) -> None:
        self.metrics.record_tokens(
            response.model,
            prompt_tokens=response.usage.prompt_tokens,
            completion_tokens=response.usage.completion_tokens,
        )

    def _record(
        self,
        ctx: ParseContext,
        result: ParseResult,
        started: float,
        retries: int,
        error_type: Optional[str],
    ) -> None:
        self.metrics.record_attempt(
            ParseAttempt(
                input_length=len(ctx.original_input),
                detected_format=ctx.format.value,
                confidence=result.confidence,
                response_time_ms=(time.perf_counter() - started) * 1000,
                success=not result.used_fallback,
                used_fallback=result.used_fallback,
                retry_count=retries,
                assumptions=len(result.assumptions),
                warnings=len(result.warnings),
                error_type=error_type,
            )
        )
        logger.info(
            "Parsed input (%d chars, %s) with confidence %.2f%s",
            len(ctx.original_input),
            ctx.format.value,
            result.confidence,
            " via fallback" if result.used_fallback else "",
        )
