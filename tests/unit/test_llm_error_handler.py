"""Unit tests for loadspec.llm.error_handler."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from loadspec.llm.error_handler import (
    ErrorStatistics,
    classify_error,
    degradation_strategy,
)
from loadspec.llm.exceptions import (
    AuthenticationFailedError,
    BackendError,
    BackendTimeoutError,
    ConnectionFailedError,
    ModelUnavailableError,
    RateLimitedError,
    ResourceExhaustedError,
    ServiceUnavailableError,
)
from loadspec.llm.models import AIErrorType


def _status_error(status: int) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "http://localhost:11434/api/generate")
    response = httpx.Response(status, request=request)
    return httpx.HTTPStatusError("status", request=request, response=response)


# ---------------------------------------------------------------------------
# classify_error
# ---------------------------------------------------------------------------


class TestClassifyError:
    def test_backend_error_passthrough(self) -> None:
        err = RateLimitedError("429")
        assert classify_error(err) is err

    @pytest.mark.parametrize(
        ("status", "cls"),
        [
            (401, AuthenticationFailedError),
            (403, AuthenticationFailedError),
            (404, ModelUnavailableError),
            (429, RateLimitedError),
            (504, BackendTimeoutError),
            (503, ServiceUnavailableError),
        ],
    )
    def test_http_status(self, status: int, cls: type) -> None:
        classified = classify_error(_status_error(status))
        assert isinstance(classified, cls)
        assert classified.status_code == status

    def test_httpx_timeout(self) -> None:
        classified = classify_error(httpx.ReadTimeout("read timed out"))
        assert classified.error_type == AIErrorType.TIMEOUT

    def test_asyncio_timeout(self) -> None:
        assert isinstance(classify_error(asyncio.TimeoutError()), BackendTimeoutError)

    def test_connect_error(self) -> None:
        classified = classify_error(httpx.ConnectError("refused"))
        assert isinstance(classified, ConnectionFailedError)

    def test_builtin_connection_error(self) -> None:
        classified = classify_error(ConnectionRefusedError("nope"))
        assert classified.error_type == AIErrorType.CONNECTION_FAILED

    @pytest.mark.parametrize(
        ("message", "error_type"),
        [
            ("Rate limit reached for requests", AIErrorType.RATE_LIMITED),
            ("model not found: llama9", AIErrorType.MODEL_UNAVAILABLE),
            ("CUDA out of memory", AIErrorType.RESOURCE_EXHAUSTED),
            ("ECONNREFUSED 127.0.0.1:11434", AIErrorType.CONNECTION_FAILED),
            ("could not parse output", AIErrorType.INVALID_RESPONSE),
        ],
    )
    def test_message_keywords(self, message: str, error_type: AIErrorType) -> None:
        assert classify_error(RuntimeError(message)).error_type == error_type

    def test_unknown(self) -> None:
        classified = classify_error(RuntimeError("something odd"))
        assert type(classified) is BackendError
        assert classified.error_type == AIErrorType.UNKNOWN

    def test_status_code_attribute(self) -> None:
        class _SdkError(Exception):
            status_code = 429

        assert isinstance(classify_error(_SdkError("x")), RateLimitedError)

    def test_cause_chained(self) -> None:
        original = httpx.ConnectError("refused")
        assert classify_error(original).__cause__ is original

    def test_empty_message_uses_class_name(self) -> None:
        assert classify_error(RuntimeError()).message == "RuntimeError"


# ---------------------------------------------------------------------------
# Degradation
# ---------------------------------------------------------------------------


class TestDegradationStrategy:
    def test_unavailable_falls_back(self) -> None:
        strategy = degradation_strategy(ServiceUnavailableError("down"))
        assert strategy.can_degrade is True
        assert strategy.strategy == "fallback_parsing"
        assert strategy.confidence == 0.3

    def test_rate_limit_retry_later(self) -> None:
        assert degradation_strategy(RateLimitedError("x")).strategy == "retry_later"

    def test_resource_exhausted_simplified(self) -> None:
        assert (
            degradation_strategy(ResourceExhaustedError("x")).strategy
            == "simplified_parsing"
        )

    def test_auth_cannot_degrade(self) -> None:
        strategy = degradation_strategy(AuthenticationFailedError("x"))
        assert strategy.can_degrade is False
        assert strategy.confidence == 0.0


# ---------------------------------------------------------------------------
# ErrorStatistics
# ---------------------------------------------------------------------------


class TestErrorStatistics:
    def test_empty_snapshot(self) -> None:
        snap = ErrorStatistics().snapshot()
        assert snap["total_errors"] == 0
        assert snap["errors_by_type"] == {}
        assert snap["recent_errors"] == []

    def test_counts_by_type(self) -> None:
        stats = ErrorStatistics()
        stats.record(RateLimitedError("a"), "generate_completion", "ollama")
        stats.record(RateLimitedError("b"), "generate_completion", "ollama")
        stats.record(BackendTimeoutError("c"), "health_check")
        snap = stats.snapshot()
        assert snap["total_errors"] == 3
        assert snap["errors_by_type"] == {"RATE_LIMITED": 2, "TIMEOUT": 1}
        trends = {t["type"]: t["frequency"] for t in snap["error_trends"]}
        assert trends == {"RATE_LIMITED": 2, "TIMEOUT": 1}

    def test_recent_errors_limited_to_ten(self) -> None:
        stats = ErrorStatistics()
        for i in range(15):
            stats.record(BackendError(f"e{i}"), "op")
        recent = stats.snapshot()["recent_errors"]
        assert len(recent) == 10
        assert recent[-1].message == "e14"

    def test_diagnostics_bounded(self) -> None:
        stats = ErrorStatistics(max_diagnostics=3)
        for i in range(5):
            stats.record(BackendError(f"e{i}"), "op")
        snap = stats.snapshot()
        assert snap["total_errors"] == 5
        assert [d.message for d in snap["recent_errors"]] == ["e2", "e3", "e4"]

    def test_clear(self) -> None:
        stats = ErrorStatistics()
        stats.record(BackendError("x"), "op")
        stats.clear()
        assert stats.snapshot()["total_errors"] == 0
