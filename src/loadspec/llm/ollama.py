"""Self-hosted backend adapter for an Ollama model server.

Owns the pieces a shared local server needs that hosted APIs do not:

- a bounded :class:`ConnectionPool` so concurrent parses queue FIFO instead
  of flooding the server,
- a :class:`HealthCache` consulted before every request,
- model provisioning via ``/api/pull`` when the configured model is absent.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Optional

import httpx

from loadspec.llm.base import AIBackend
from loadspec.llm.error_handler import ErrorStatistics, classify_error
from loadspec.llm.exceptions import (
    BackendError,
    BackendTimeoutError,
    InvalidResponseError,
    ModelUnavailableError,
    ServiceUnavailableError,
)
from loadspec.llm.health import HealthCache
from loadspec.llm.models import (
    AIErrorType,
    BackendConfig,
    BackendKind,
    CompletionRequest,
    CompletionResponse,
    ResponseFormat,
    ResponseMetadata,
    TokenUsage,
)
from loadspec.llm.pool import ConnectionPool
from loadspec.llm.retry import RetryPolicy

logger = logging.getLogger(__name__)

# Responses shorter than this cannot hold a load-test spec.
MIN_RESPONSE_LENGTH = 10

_HEALTH_TIMEOUT = 5.0
_PULL_TIMEOUT = 600.0


class OllamaBackend(AIBackend):
    """Ollama completion backend with pooling, health caching and retry.

    Example::

        backend = OllamaBackend(BackendConfig(model="llama3.2:1b"))
        await backend.initialize()
        resp = await backend.generate_completion(
            CompletionRequest(prompt="Parse: GET /health", response_format="json")
        )

    Attributes:
        config: Adapter configuration.
        pool: Connection pool bounding in-flight requests.
        health: Cached health-check result.
        errors: Error statistics shared by every call through this adapter.
    """

    def __init__(
        self,
        config: BackendConfig | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self.config = config or BackendConfig(kind=BackendKind.OLLAMA)
        self._client = client or httpx.AsyncClient(
            base_url=self.config.resolved_endpoint,
            timeout=self.config.timeout,
        )
        self._owns_client = client is None
        self.pool = ConnectionPool(self.config.pool_size)
        self.health = HealthCache(
            self._check_health, ttl=self.config.health_check_interval
        )
        self.retry_policy = retry_policy or RetryPolicy(self.config.retry)
        self.errors = ErrorStatistics()
        self._initialized = False

    @property
    def name(self) -> str:
        return f"ollama ({self.config.resolved_model})"

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Verify the server is up and the model is present, pulling it if not.

        Raises:
            ServiceUnavailableError: If the server does not answer.
            ModelUnavailableError: If the model is absent and cannot be pulled.
        """
        if not await self.health.get(force=True):
            raise ServiceUnavailableError(
                f"Ollama server at {self.config.resolved_endpoint} is not reachable"
            )

        model = self.config.resolved_model
        if not await self.check_model_availability(model):
            if not self.config.auto_pull:
                raise ModelUnavailableError(f"Model {model!r} is not available")
            logger.info("Model %s not found locally; pulling", model)
            await self.pull_model(model)

        self._initialized = True
        logger.info("Ollama backend ready: %s", self.name)

    def is_ready(self) -> bool:
        return self._initialized

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # Health and model management
    # ------------------------------------------------------------------

    async def _check_health(self) -> bool:
        try:
            response = await self._client.get("/api/tags", timeout=_HEALTH_TIMEOUT)
        except httpx.HTTPError as exc:
            logger.warning("Ollama health check failed: %s", exc)
            return False
        return response.status_code == 200

    async def health_check(self) -> bool:
        """Query the server now and refresh the cached health state."""
        return await self.health.get(force=True)

    async def list_models(self) -> list[str]:
        """Return the names of models installed on the server."""
        try:
            response = await self._client.get("/api/tags", timeout=_HEALTH_TIMEOUT)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise classify_error(exc) from exc
        try:
            data = response.json()
        except ValueError as exc:
            raise InvalidResponseError("Ollama returned a non-JSON model list") from exc
        if not isinstance(data, dict):
            raise InvalidResponseError("Ollama returned a malformed model list")
        return [m.get("name", "") for m in data.get("models", []) if isinstance(m, dict)]

    async def check_model_availability(self, model: str) -> bool:
        names = await self.list_models()
        # Ollama reports "llama3.2:latest" for a bare "llama3.2".
        return any(n == model or n == f"{model}:latest" for n in names)

    async def pull_model(self, model: str) -> None:
        """Provision *model* on the server.

        Raises:
            ModelUnavailableError: If the pull request fails.
        """
        try:
            response = await self._client.post(
                "/api/pull",
                json={"name": model, "stream": False},
                timeout=_PULL_TIMEOUT,
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise ModelUnavailableError(
                f"Failed to pull model {model!r}: {exc}"
            ) from exc
        logger.info("Pulled model %s", model)

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    async def generate_completion(
        self, request: CompletionRequest
    ) -> CompletionResponse:
        """Run a completion through the pool with retry.

        Raises:
            ServiceUnavailableError: If the cached or refreshed health is bad.
            RetryExhaustedError: If every retryable attempt failed.
            BackendError: For non-retryable failures.
        """
        if not await self.health.get():
            error = ServiceUnavailableError(
                f"Ollama server at {self.config.resolved_endpoint} is unhealthy"
            )
            self.errors.record(error, "generate_completion", self.name)
            raise error

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
        payload: dict[str, Any] = {
            "model": model,
            "prompt": request.as_prompt(),
            "stream": False,
            "options": {
                "temperature": request.temperature,
                "top_p": 0.9,
                "num_predict": request.max_tokens,
            },
        }
        if request.response_format == ResponseFormat.JSON:
            payload["format"] = "json"

        start = time.monotonic()
        async with self.pool.slot():
            try:
                response = await asyncio.wait_for(
                    self._client.post("/api/generate", json=payload),
                    timeout=self.config.timeout,
                )
                response.raise_for_status()
            except asyncio.TimeoutError as exc:
                raise BackendTimeoutError(
                    f"Ollama request timed out after {self.config.timeout}s"
                ) from exc
            except httpx.HTTPError as exc:
                classified = classify_error(exc)
                if classified.error_type in (
                    AIErrorType.CONNECTION_FAILED,
                    AIErrorType.SERVICE_UNAVAILABLE,
                ):
                    self.health.invalidate()
                raise classified from exc

        try:
            data = response.json()
        except ValueError as exc:
            raise InvalidResponseError(
                f"Ollama returned a non-JSON body: {response.text[:200]!r}"
            ) from exc
        if not isinstance(data, dict):
            raise InvalidResponseError(
                f"Ollama returned {type(data).__name__} instead of an object"
            )
        text = str(data.get("response") or "").strip()
        if len(text) < MIN_RESPONSE_LENGTH:
            raise InvalidResponseError(
                f"Ollama returned an implausibly short response ({len(text)} chars)"
            )

        prompt_tokens = int(data.get("prompt_eval_count") or 0)
        completion_tokens = int(data.get("eval_count") or 0)
        return CompletionResponse(
            text=text,
            model=data.get("model", model),
            usage=TokenUsage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
            ),
            metadata=ResponseMetadata(
                provider="ollama",
                duration_ms=(time.monotonic() - start) * 1000,
                cached=data.get("load_duration", 1) == 0,
            ),
        )

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def service_health(self) -> dict[str, Optional[Any]]:
        """Report cached health plus pool occupancy."""
        stats = self.pool.stats()
        return {
            "healthy": self.health.healthy,
            "last_checked": self.health.checked_at,
            "active_connections": stats["active"],
            "queued_requests": stats["queued"],
            "max_connections": stats["max_connections"],
        }
