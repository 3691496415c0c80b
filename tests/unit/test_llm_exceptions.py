"""Unit tests for loadspec.llm.exceptions."""

from __future__ import annotations

import pytest

from loadspec.llm.exceptions import (
    AuthenticationFailedError,
    BackendError,
    BackendTimeoutError,
    ConfigurationError,
    ConnectionFailedError,
    InvalidResponseError,
    ModelUnavailableError,
    RateLimitedError,
    ResourceExhaustedError,
    RetryExhaustedError,
    ServiceUnavailableError,
)
from loadspec.llm.models import AIErrorType


class TestExceptionHierarchy:
    """All backend exceptions inherit from BackendError."""

    @pytest.mark.parametrize(
        "cls",
        [
            AuthenticationFailedError,
            BackendTimeoutError,
            ConfigurationError,
            ConnectionFailedError,
            InvalidResponseError,
            ModelUnavailableError,
            RateLimitedError,
            ResourceExhaustedError,
            ServiceUnavailableError,
        ],
    )
    def test_subclass_of_backend_error(self, cls: type) -> None:
        assert issubclass(cls, BackendError)

    def test_catch_all_with_base(self) -> None:
        with pytest.raises(BackendError):
            raise RateLimitedError("slow down")


class TestErrorTypes:
    """Each subclass carries its classified error type."""

    @pytest.mark.parametrize(
        ("cls", "error_type"),
        [
            (ServiceUnavailableError, AIErrorType.SERVICE_UNAVAILABLE),
            (ConnectionFailedError, AIErrorType.CONNECTION_FAILED),
            (BackendTimeoutError, AIErrorType.TIMEOUT),
            (RateLimitedError, AIErrorType.RATE_LIMITED),
            (ModelUnavailableError, AIErrorType.MODEL_UNAVAILABLE),
            (AuthenticationFailedError, AIErrorType.AUTHENTICATION_FAILED),
            (ResourceExhaustedError, AIErrorType.RESOURCE_EXHAUSTED),
            (InvalidResponseError, AIErrorType.INVALID_RESPONSE),
        ],
    )
    def test_error_type(self, cls: type, error_type: AIErrorType) -> None:
        assert cls("boom").error_type == error_type

    def test_base_is_unknown(self) -> None:
        assert BackendError("boom").error_type == AIErrorType.UNKNOWN


class TestRetryability:
    def test_transient_errors_retryable(self) -> None:
        assert RateLimitedError("x").retryable is True
        assert BackendTimeoutError("x").retryable is True
        assert ConnectionFailedError("x").retryable is True

    def test_permanent_errors_not_retryable(self) -> None:
        assert ConfigurationError("x").retryable is False
        assert AuthenticationFailedError("x").retryable is False
        assert ModelUnavailableError("x").retryable is False
        assert InvalidResponseError("x").retryable is False

    def test_override_per_instance(self) -> None:
        err = ServiceUnavailableError("x", retryable=False)
        assert err.retryable is False
        # Class default untouched
        assert ServiceUnavailableError("y").retryable is True

    def test_status_code_kept(self) -> None:
        err = ServiceUnavailableError("bad gateway", status_code=502)
        assert err.status_code == 502
        assert err.message == "bad gateway"


class TestRetryExhaustedError:
    def test_attributes(self) -> None:
        last = RateLimitedError("429")
        err = RetryExhaustedError(attempts=3, last_error=last)
        assert err.attempts == 3
        assert err.last_error is last
        assert "3" in str(err)
        assert "429" in str(err)

    def test_inherits_last_error_type(self) -> None:
        err = RetryExhaustedError(attempts=2, last_error=BackendTimeoutError("slow"))
        assert err.error_type == AIErrorType.TIMEOUT
        assert err.retryable is False

    def test_plain_exception_is_unknown(self) -> None:
        err = RetryExhaustedError(attempts=1, last_error=ValueError("odd"))
        assert err.error_type == AIErrorType.UNKNOWN
