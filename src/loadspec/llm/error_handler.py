"""Classification of backend failures and running error statistics.

Every adapter funnels raw transport and SDK exceptions through
:func:`classify_error` so that the retry policy and the recovery
coordinator reason about one taxonomy (:class:`AIErrorType`) regardless of
which HTTP client or provider SDK raised the original error.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections import Counter, deque
from datetime import datetime, timezone
from typing import Any, Optional

import httpx
from litellm import exceptions as litellm_exceptions
from pydantic import BaseModel, Field

from loadspec.llm.exceptions import (
    AuthenticationFailedError,
    BackendError,
    BackendTimeoutError,
    ConnectionFailedError,
    InvalidResponseError,
    ModelUnavailableError,
    RateLimitedError,
    ResourceExhaustedError,
    ServiceUnavailableError,
)
from loadspec.llm.models import AIErrorType

logger = logging.getLogger(__name__)

_DIAGNOSTIC_LIMIT = 100
_RECENT_LIMIT = 10

_TYPE_TO_ERROR: dict[AIErrorType, type[BackendError]] = {
    AIErrorType.AUTHENTICATION_FAILED: AuthenticationFailedError,
    AIErrorType.RATE_LIMITED: RateLimitedError,
    AIErrorType.MODEL_UNAVAILABLE: ModelUnavailableError,
    AIErrorType.SERVICE_UNAVAILABLE: ServiceUnavailableError,
    AIErrorType.CONNECTION_FAILED: ConnectionFailedError,
    AIErrorType.TIMEOUT: BackendTimeoutError,
    AIErrorType.INVALID_RESPONSE: InvalidResponseError,
    AIErrorType.RESOURCE_EXHAUSTED: ResourceExhaustedError,
}

# Ordered: the first matching keyword group decides the type.
_MESSAGE_KEYWORDS: list[tuple[AIErrorType, tuple[str, ...]]] = [
    (AIErrorType.RATE_LIMITED, ("rate limit", "too many requests")),
    (AIErrorType.TIMEOUT, ("timeout", "timed out")),
    (AIErrorType.MODEL_UNAVAILABLE, ("model not found", "model unavailable", "no such model")),
    (AIErrorType.RESOURCE_EXHAUSTED, ("out of memory", "resource exhausted", "quota")),
    (AIErrorType.CONNECTION_FAILED, ("econnrefused", "connection refused", "connection error")),
    (AIErrorType.INVALID_RESPONSE, ("parse", "json")),
]

_LITELLM_TYPES: list[tuple[type[Exception], AIErrorType]] = [
    (litellm_exceptions.AuthenticationError, AIErrorType.AUTHENTICATION_FAILED),
    (litellm_exceptions.RateLimitError, AIErrorType.RATE_LIMITED),
    (litellm_exceptions.Timeout, AIErrorType.TIMEOUT),
    (litellm_exceptions.NotFoundError, AIErrorType.MODEL_UNAVAILABLE),
    (litellm_exceptions.ServiceUnavailableError, AIErrorType.SERVICE_UNAVAILABLE),
    (litellm_exceptions.APIConnectionError, AIErrorType.CONNECTION_FAILED),
    (litellm_exceptions.BadRequestError, AIErrorType.INVALID_RESPONSE),
]


def _type_from_status(status: int) -> Optional[AIErrorType]:
    if status in (401, 403):
        return AIErrorType.AUTHENTICATION_FAILED
    if status == 429:
        return AIErrorType.RATE_LIMITED
    if status == 404:
        return AIErrorType.MODEL_UNAVAILABLE
    if status in (408, 504):
        return AIErrorType.TIMEOUT
    if 500 <= status < 600:
        return AIErrorType.SERVICE_UNAVAILABLE
    return None


def _type_from_message(message: str) -> AIErrorType:
    lowered = message.lower()
    for error_type, keywords in _MESSAGE_KEYWORDS:
        if any(k in lowered for k in keywords):
            return error_type
    return AIErrorType.UNKNOWN


def classify_error(exc: BaseException) -> BackendError:
    """Map any exception raised while talking to a backend onto BackendError.

    Already-classified errors are returned unchanged. Otherwise the HTTP
    status wins, then known exception classes, then message keywords.

    Args:
        exc: The raw exception.

    Returns:
        A :class:`BackendError` subclass instance chained to *exc*.
    """
    if isinstance(exc, BackendError):
        return exc

    status: Optional[int] = None
    error_type: Optional[AIErrorType] = None

    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
    else:
        raw_status = getattr(exc, "status_code", None)
        if isinstance(raw_status, int):
            status = raw_status

    if status is not None:
        error_type = _type_from_status(status)

    if error_type is None:
        if isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)):
            error_type = AIErrorType.TIMEOUT
        elif isinstance(exc, (httpx.ConnectError, httpx.NetworkError, ConnectionError)):
            error_type = AIErrorType.CONNECTION_FAILED
        else:
            for cls, mapped in _LITELLM_TYPES:
                if isinstance(exc, cls):
                    error_type = mapped
                    break

    if error_type is None:
        error_type = _type_from_message(str(exc))

    error_cls = _TYPE_TO_ERROR.get(error_type, BackendError)
    message = str(exc) or exc.__class__.__name__
    classified = error_cls(message, status_code=status)
    classified.__cause__ = exc
    return classified


# ---------------------------------------------------------------------------
# Graceful degradation
# ---------------------------------------------------------------------------


class DegradationStrategy(BaseModel):
    """What the pipeline can still offer when a backend failure persists."""

    can_degrade: bool
    strategy: str
    confidence: float = Field(ge=0.0, le=1.0)
    limitations: list[str] = Field(default_factory=list)


def degradation_strategy(error: BackendError) -> DegradationStrategy:
    """Describe the degraded mode available for *error*."""
    if error.error_type in (
        AIErrorType.MODEL_UNAVAILABLE,
        AIErrorType.SERVICE_UNAVAILABLE,
        AIErrorType.CONNECTION_FAILED,
    ):
        return DegradationStrategy(
            can_degrade=True,
            strategy="fallback_parsing",
            confidence=0.3,
            limitations=[
                "Limited parsing accuracy",
                "No AI-powered suggestions",
                "Basic pattern matching only",
            ],
        )
    if error.error_type in (AIErrorType.TIMEOUT, AIErrorType.RATE_LIMITED):
        return DegradationStrategy(
            can_degrade=True,
            strategy="retry_later",
            confidence=0.6,
            limitations=["Parsing delayed until the backend recovers"],
        )
    if error.error_type == AIErrorType.RESOURCE_EXHAUSTED:
        return DegradationStrategy(
            can_degrade=True,
            strategy="simplified_parsing",
            confidence=0.4,
            limitations=["Reduced parsing complexity", "May miss advanced features"],
        )
    return DegradationStrategy(
        can_degrade=False,
        strategy="none",
        confidence=0.0,
        limitations=["No fallback available for this error type"],
    )


# ---------------------------------------------------------------------------
# Error statistics
# ---------------------------------------------------------------------------


class ErrorDiagnostic(BaseModel):
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    operation: str
    error_type: AIErrorType
    message: str
    status_code: Optional[int] = None
    backend: Optional[str] = None


class ErrorStatistics:
    """Running failure counts and a bounded diagnostic log.

    Shared by concurrent parses through one backend instance, so every
    mutation happens under a lock.
    """

    def __init__(self, max_diagnostics: int = _DIAGNOSTIC_LIMIT) -> None:
        self._lock = threading.Lock()
        self._counts: Counter[AIErrorType] = Counter()
        self._last_seen: dict[AIErrorType, datetime] = {}
        self._diagnostics: deque[ErrorDiagnostic] = deque(maxlen=max_diagnostics)

    def record(
        self,
        error: BackendError,
        operation: str,
        backend: Optional[str] = None,
    ) -> ErrorDiagnostic:
        """Record one classified failure."""
        diagnostic = ErrorDiagnostic(
            operation=operation,
            error_type=error.error_type,
            message=error.message,
            status_code=error.status_code,
            backend=backend,
        )
        with self._lock:
            self._counts[error.error_type] += 1
            self._last_seen[error.error_type] = diagnostic.timestamp
            self._diagnostics.append(diagnostic)
        logger.debug(
            "Recorded %s during %s (%s)",
            error.error_type.value,
            operation,
            backend or "unknown backend",
        )
        return diagnostic

    def snapshot(self) -> dict[str, Any]:
        """Return totals, per-type counts, recent diagnostics and trends."""
        with self._lock:
            recent = list(self._diagnostics)[-_RECENT_LIMIT:]
            return {
                "total_errors": sum(self._counts.values()),
                "errors_by_type": {t.value: c for t, c in self._counts.items()},
                "recent_errors": recent,
                "error_trends": [
                    {
                        "type": t.value,
                        "frequency": c,
                        "last_occurrence": self._last_seen.get(t),
                    }
                    for t, c in self._counts.items()
                ],
            }

    def clear(self) -> None:
        with self._lock:
            self._counts.clear()
            self._last_seen.clear()
            self._diagnostics.clear()
