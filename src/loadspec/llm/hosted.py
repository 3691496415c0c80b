"""Hosted-provider backend adapter (OpenAI, Anthropic) via LiteLLM."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

import litellm

from loadspec.llm.base import AIBackend
from loadspec.llm.error_handler import ErrorStatistics, classify_error
from loadspec.llm.exceptions import (
    BackendError,
    BackendTimeoutError,
    ConfigurationError,
    InvalidResponseError,
)
from loadspec.llm.models import (
    PROVIDERS_REQUIRING_KEY,
    BackendConfig,
    BackendKind,
    CompletionRequest,
    CompletionResponse,
    ResponseFormat,
    ResponseMetadata,
    TokenUsage,
)
from loadspec.llm.retry import RetryPolicy

logger = logging.getLogger(__name__)

MIN_RESPONSE_LENGTH = 10

# Maximum truncation length for logged prompts / responses.
_LOG_TRUNCATE_LEN = 1000


def _truncate(text: str, max_len: int = _LOG_TRUNCATE_LEN) -> str:
    """Truncate text to *max_len* characters, appending '…' if clipped."""
    if len(text) <= max_len:
        return text
    return text[:max_len] + "…"


class HostedBackend(AIBackend):
    """Completion backend for hosted APIs, routed through ``litellm.acompletion``.

    The provider is chosen by :attr:`BackendConfig.kind`; LiteLLM resolves the
    wire format from the model name. A custom ``endpoint`` is passed through
    as ``api_base`` so proxies and compatible gateways work unchanged.
    """

    def __init__(
        self,
        config: BackendConfig,
        *,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        if config.kind == BackendKind.OLLAMA:
            raise ConfigurationError("HostedBackend does not serve ollama; use OllamaBackend")
        if config.kind in PROVIDERS_REQUIRING_KEY and not config.api_key:
            raise ConfigurationError(
                f"An API key is required for the {config.kind.value} provider"
            )
        self.config = config
        self.retry_policy = retry_policy or RetryPolicy(config.retry)
        self.errors = ErrorStatistics()
        self._initialized = False
        self._healthy: bool | None = None

        # Suppress litellm's own verbose logging by default
        litellm.suppress_debug_info = True

    @property
    def name(self) -> str:
        return f"{self.config.kind.value} ({self.config.resolved_model})"

    async def initialize(self) -> None:
        """Confirm credentials with a minimal completion.

        Raises:
            BackendError: If the provider rejects the credential check.
        """
        if not await self.health_check():
            raise ConfigurationError(f"{self.name} failed its startup health check")
        self._initialized = True
        logger.info("Hosted backend ready: %s", self.name)

    def is_ready(self) -> bool:
        return self._initialized

    async def health_check(self) -> bool:
        try:
            await self._call(
                [{"role": "user", "content": "ping"}],
                model=self.config.resolved_model,
                max_tokens=1,
                temperature=0.0,
            )
        except BackendError as exc:
            logger.warning("%s health check failed: %s", self.name, exc)
            self._healthy = False
            return False
        self._healthy = True
        return True

    async def generate_completion(
        self, request: CompletionRequest
    ) -> CompletionResponse:
        """Run a completion with the shared retry policy.

        Raises:
            RetryExhaustedError: If every retryable attempt failed.
            BackendError: For non-retryable failures.
        """
        try:
            return await self.retry_policy.run(
                lambda: self._generate_once(request),
                description=f"{self.name} completion",
            )
        except BackendError as exc:
            self.errors.record(exc, "generate_completion", self.name)
            raise

    async def _generate_once(self, request: CompletionRequest) -> CompletionResponse:
        model = request.model or self.config.resolved_model
        kwargs: dict[str, Any] = {}
        if (
            request.response_format == ResponseFormat.JSON
            and self.config.kind == BackendKind.OPENAI
        ):
            kwargs["response_format"] = {"type": "json_object"}

        start = time.monotonic()
        response = await self._call(
            request.as_messages(),
            model=model,
            max_tokens=request.max_tokens,
            temperature=request.temperature,
            **kwargs,
        )
        elapsed_ms = (time.monotonic() - start) * 1000

        text = (response.choices[0].message.content or "").strip()
        logger.debug("%s response: %s", self.name, _truncate(text))
        if len(text) < MIN_RESPONSE_LENGTH:
            raise InvalidResponseError(
                f"{self.name} returned an implausibly short response ({len(text)} chars)"
            )

        usage = response.usage
        return CompletionResponse(
            text=text,
            model=getattr(response, "model", None) or model,
            usage=TokenUsage(
                prompt_tokens=usage.prompt_tokens if usage else 0,
                completion_tokens=usage.completion_tokens if usage else 0,
                total_tokens=usage.total_tokens if usage else 0,
            ),
            metadata=ResponseMetadata(
                provider=self.config.kind.value,
                duration_ms=elapsed_ms,
            ),
        )

    async def _call(self, messages: list[dict[str, Any]], **kwargs: Any) -> Any:
        if self.config.endpoint:
            kwargs["api_base"] = self.config.resolved_endpoint
        try:
            return await asyncio.wait_for(
                litellm.acompletion(
                    messages=messages,
                    api_key=self.config.api_key,
                    **kwargs,
                ),
                timeout=self.config.timeout,
            )
        except asyncio.TimeoutError as exc:
            raise BackendTimeoutError(
                f"{self.name} request timed out after {self.config.timeout}s"
            ) from exc
        except BackendError:
            raise
        except Exception as exc:
            raise classify_error(exc) from exc
