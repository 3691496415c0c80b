"""Unit tests for OllamaBackend.

HTTP traffic is served by :class:`httpx.MockTransport`, so no Ollama server
is needed.
"""

from __future__ import annotations

import json
from typing import Any, Callable

import httpx
import pytest

from loadspec.llm.exceptions import (
    BackendTimeoutError,
    InvalidResponseError,
    ModelUnavailableError,
    RetryExhaustedError,
    ServiceUnavailableError,
)
from loadspec.llm.health import HealthCache
from loadspec.llm.models import (
    AIErrorType,
    BackendConfig,
    CompletionRequest,
    ResponseFormat,
    RetryConfig,
)
from loadspec.llm.ollama import OllamaBackend
from loadspec.llm.retry import RetryPolicy

ENDPOINT = "http://ollama.test:11434"
SPEC_JSON = '{"id": "t1", "name": "Smoke", "requests": []}'


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class _Server:
    """Scriptable stand-in for the Ollama HTTP API."""

    def __init__(self) -> None:
        self.healthy = True
        self.models = ["llama3.2:1b"]
        self.tags_text: str | None = None
        self.generate: list[Callable[[], httpx.Response]] = []
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/api/tags":
            if not self.healthy:
                return httpx.Response(503)
            if self.tags_text is not None:
                return httpx.Response(200, text=self.tags_text)
            return httpx.Response(
                200, json={"models": [{"name": m} for m in self.models]}
            )
        if request.url.path == "/api/pull":
            body = json.loads(request.content)
            self.models.append(body["name"])
            return httpx.Response(200, json={"status": "success"})
        if request.url.path == "/api/generate":
            if self.generate:
                return self.generate.pop(0)()
            return _generated(SPEC_JSON)
        return httpx.Response(404)

    def generate_payloads(self) -> list[dict[str, Any]]:
        return [
            json.loads(r.content) for r in self.requests if r.url.path == "/api/generate"
        ]


def _generated(text: str, **extra: Any) -> httpx.Response:
    body = {
        "model": "llama3.2:1b",
        "response": text,
        "prompt_eval_count": 12,
        "eval_count": 30,
        "load_duration": 5,
    }
    body.update(extra)
    return httpx.Response(200, json=body)


async def _no_sleep(_: float) -> None:
    return None


def _backend(server: _Server, **config: Any) -> OllamaBackend:
    cfg = BackendConfig(endpoint=ENDPOINT, **config)
    client = httpx.AsyncClient(
        base_url=ENDPOINT, transport=httpx.MockTransport(server.handler)
    )
    policy = RetryPolicy(
        RetryConfig(max_attempts=3, base_delay=0, jitter=False), sleep=_no_sleep
    )
    return OllamaBackend(cfg, client=client, retry_policy=policy)


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestInitialize:
    @pytest.mark.asyncio
    async def test_ready_when_model_present(self) -> None:
        server = _Server()
        backend = _backend(server)
        assert backend.is_ready() is False
        await backend.initialize()
        assert backend.is_ready() is True
        assert backend.name == "ollama (llama3.2:1b)"

    @pytest.mark.asyncio
    async def test_latest_tag_matches_bare_name(self) -> None:
        server = _Server()
        server.models = ["mistral:latest"]
        backend = _backend(server, model="mistral")
        await backend.initialize()
        assert not any(r.url.path == "/api/pull" for r in server.requests)

    @pytest.mark.asyncio
    async def test_pulls_missing_model(self) -> None:
        server = _Server()
        server.models = []
        backend = _backend(server)
        await backend.initialize()
        assert "llama3.2:1b" in server.models
        assert backend.is_ready() is True

    @pytest.mark.asyncio
    async def test_missing_model_without_auto_pull(self) -> None:
        server = _Server()
        server.models = []
        backend = _backend(server, auto_pull=False)
        with pytest.raises(ModelUnavailableError):
            await backend.initialize()

    @pytest.mark.asyncio
    async def test_unreachable_server(self) -> None:
        server = _Server()
        server.healthy = False
        backend = _backend(server)
        with pytest.raises(ServiceUnavailableError):
            await backend.initialize()
        assert backend.is_ready() is False


# ---------------------------------------------------------------------------
# Completion
# ---------------------------------------------------------------------------


class TestGenerateCompletion:
    @pytest.mark.asyncio
    async def test_success(self) -> None:
        server = _Server()
        backend = _backend(server)
        await backend.initialize()
        resp = await backend.generate_completion(
            CompletionRequest(prompt="GET /health", response_format=ResponseFormat.JSON)
        )
        assert resp.text == SPEC_JSON
        assert resp.usage.prompt_tokens == 12
        assert resp.usage.completion_tokens == 30
        assert resp.usage.total_tokens == 42
        assert resp.metadata.provider == "ollama"
        assert resp.metadata.cached is False

    @pytest.mark.asyncio
    async def test_payload_shape(self) -> None:
        server = _Server()
        backend = _backend(server)
        await backend.initialize()
        await backend.generate_completion(
            CompletionRequest(
                prompt="GET /health",
                temperature=0.2,
                max_tokens=500,
                response_format=ResponseFormat.JSON,
            )
        )
        payload = server.generate_payloads()[0]
        assert payload["model"] == "llama3.2:1b"
        assert payload["stream"] is False
        assert payload["format"] == "json"
        assert payload["options"]["temperature"] == 0.2
        assert payload["options"]["num_predict"] == 500

    @pytest.mark.asyncio
    async def test_text_format_omits_format_key(self) -> None:
        server = _Server()
        backend = _backend(server)
        await backend.generate_completion(CompletionRequest(prompt="hello there"))
        assert "format" not in server.generate_payloads()[0]

    @pytest.mark.asyncio
    async def test_retries_server_errors(self) -> None:
        server = _Server()
        server.generate = [lambda: httpx.Response(503), lambda: _generated(SPEC_JSON)]
        backend = _backend(server)
        resp = await backend.generate_completion(CompletionRequest(prompt="x"))
        assert resp.text == SPEC_JSON
        assert len(server.generate_payloads()) == 2

    @pytest.mark.asyncio
    async def test_exhausted_retries_recorded(self) -> None:
        server = _Server()
        server.generate = [lambda: httpx.Response(429)] * 3
        backend = _backend(server)
        with pytest.raises(RetryExhaustedError) as exc_info:
            await backend.generate_completion(CompletionRequest(prompt="x"))
        assert exc_info.value.error_type == AIErrorType.RATE_LIMITED
        assert backend.errors.snapshot()["total_errors"] == 1

    @pytest.mark.asyncio
    async def test_short_response_invalid(self) -> None:
        server = _Server()
        server.generate = [lambda: _generated("{}")]
        backend = _backend(server)
        with pytest.raises(InvalidResponseError):
            await backend.generate_completion(CompletionRequest(prompt="x"))
        # Not retryable
        assert len(server.generate_payloads()) == 1

    @pytest.mark.asyncio
    async def test_unhealthy_server_rejected(self) -> None:
        server = _Server()
        server.healthy = False
        backend = _backend(server)
        with pytest.raises(ServiceUnavailableError):
            await backend.generate_completion(CompletionRequest(prompt="x"))
        assert server.generate_payloads() == []

    @pytest.mark.asyncio
    async def test_timeout_classified(self) -> None:
        server = _Server()

        def _raise_timeout() -> httpx.Response:
            raise httpx.ReadTimeout("timed out")

        server.generate = [_raise_timeout] * 3
        backend = _backend(server)
        with pytest.raises(RetryExhaustedError) as exc_info:
            await backend.generate_completion(CompletionRequest(prompt="x"))
        assert isinstance(exc_info.value.last_error, BackendTimeoutError)

    @pytest.mark.asyncio
    async def test_pool_released_after_calls(self) -> None:
        server = _Server()
        backend = _backend(server, pool_size=2)
        await backend.generate_completion(CompletionRequest(prompt="x"))
        health = backend.service_health()
        assert health["active_connections"] == 0
        assert health["queued_requests"] == 0
        assert health["max_connections"] == 2
        assert health["healthy"] is True


class TestHealthCheck:
    @pytest.mark.asyncio
    async def test_health_check_refreshes(self) -> None:
        server = _Server()
        backend = _backend(server)
        assert await backend.health_check() is True
        server.healthy = False
        assert await backend.health_check() is False
        assert backend.is_ready() is False


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _refused() -> httpx.Response:
    raise httpx.ConnectError("connection refused")


class TestOutageRecovery:
    @pytest.mark.asyncio
    async def test_usable_again_after_outage(self) -> None:
        server = _Server()
        clock = _Clock()
        backend = _backend(server)
        backend.health = HealthCache(backend._check_health, ttl=30.0, clock=clock)
        await backend.initialize()
        request = CompletionRequest(prompt="GET /health")
        assert (await backend.generate_completion(request)).text == SPEC_JSON

        server.healthy = False
        server.generate = [_refused] * 3
        with pytest.raises(RetryExhaustedError):
            await backend.generate_completion(request)
        # The refused connection invalidated the cache, so the next call re-checks
        with pytest.raises(ServiceUnavailableError):
            await backend.generate_completion(request)
        assert backend.is_ready() is True

        server.healthy = True
        clock.now = 31.0
        assert (await backend.generate_completion(request)).text == SPEC_JSON
        assert backend.service_health()["healthy"] is True

    @pytest.mark.asyncio
    async def test_cached_outage_held_for_ttl(self) -> None:
        server = _Server()
        clock = _Clock()
        backend = _backend(server)
        backend.health = HealthCache(backend._check_health, ttl=30.0, clock=clock)
        await backend.initialize()
        server.healthy = False
        assert await backend.health_check() is False

        server.healthy = True
        clock.now = 10.0
        with pytest.raises(ServiceUnavailableError):
            await backend.generate_completion(CompletionRequest(prompt="GET /health"))
        clock.now = 40.0
        resp = await backend.generate_completion(CompletionRequest(prompt="GET /health"))
        assert resp.text == SPEC_JSON


class TestMalformedBodies:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(200, text="<html>502 proxy error</html>"),
            httpx.Response(200, text=""),
            httpx.Response(200, json=["not", "an", "object"]),
        ],
    )
    async def test_generate_body_not_an_object(self, response: httpx.Response) -> None:
        server = _Server()
        server.generate = [lambda: response]
        backend = _backend(server)
        with pytest.raises(InvalidResponseError):
            await backend.generate_completion(CompletionRequest(prompt="x"))
        assert len(server.generate_payloads()) == 1

    @pytest.mark.asyncio
    async def test_tags_body_not_json(self) -> None:
        server = _Server()
        server.tags_text = "maintenance"
        backend = _backend(server)
        with pytest.raises(InvalidResponseError):
            await backend.list_models()
