"""Custom exceptions for the AI backend layer."""

from __future__ import annotations

from typing import Optional

from loadspec.llm.models import AIErrorType


class BackendError(Exception):
    """Base exception for all AI backend errors.

    Attributes:
        error_type: Classified failure category.
        retryable: Whether the shared retry policy may try again.
        status_code: HTTP status code when the failure came from a response.
    """

    error_type: AIErrorType = AIErrorType.UNKNOWN
    retryable: bool = True

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        retryable: Optional[bool] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        if retryable is not None:
            self.retryable = retryable


class ConfigurationError(BackendError):
    """Raised when a backend is misconfigured.

    Examples: missing API keys, unknown provider names, bad settings values.
    """

    retryable = False


class ServiceUnavailableError(BackendError):
    """Raised when the backend reports itself unhealthy or returns 5xx."""

    error_type = AIErrorType.SERVICE_UNAVAILABLE


class ConnectionFailedError(BackendError):
    error_type = AIErrorType.CONNECTION_FAILED


class BackendTimeoutError(BackendError):
    error_type = AIErrorType.TIMEOUT


class RateLimitedError(BackendError):
    error_type = AIErrorType.RATE_LIMITED


class ModelUnavailableError(BackendError):
    """Raised when the requested model is not present on the backend."""

    error_type = AIErrorType.MODEL_UNAVAILABLE
    retryable = False


class AuthenticationFailedError(BackendError):
    error_type = AIErrorType.AUTHENTICATION_FAILED
    retryable = False


class ResourceExhaustedError(BackendError):
    error_type = AIErrorType.RESOURCE_EXHAUSTED


class InvalidResponseError(BackendError):
    """Raised when a backend answers with empty or implausible content."""

    error_type = AIErrorType.INVALID_RESPONSE
    retryable = False


class RetryExhaustedError(BackendError):
    """Raised when all retry attempts have been exhausted.

    Attributes:
        attempts: Number of attempts made.
        last_error: The last error encountered before giving up.
    """

    retryable = False

    def __init__(self, attempts: int, last_error: Exception) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"All {attempts} retry attempts exhausted. "
            f"Last error: {last_error}"
        )
        self.error_type = getattr(last_error, "error_type", AIErrorType.UNKNOWN)
