"""loadspec AI backend layer – uniform access to completion services.

- :class:`AIBackend` – Abstract adapter contract
- :class:`OllamaBackend` – Self-hosted adapter with pooling and health caching
- :class:`HostedBackend` – OpenAI / Anthropic adapter via LiteLLM
- :class:`RetryPolicy` – Capped exponential backoff with jitter
- :func:`create_backend` / :func:`create_backend_from_env` – Factory
"""

from loadspec.llm.base import AIBackend
from loadspec.llm.error_handler import ErrorStatistics, classify_error
from loadspec.llm.exceptions import (
    AuthenticationFailedError,
    BackendError,
    BackendTimeoutError,
    ConfigurationError,
    ConnectionFailedError,
    InvalidResponseError,
    ModelUnavailableError,
    RateLimitedError,
    RetryExhaustedError,
    ServiceUnavailableError,
)
from loadspec.llm.factory import create_backend, create_backend_from_env
from loadspec.llm.hosted import HostedBackend
from loadspec.llm.models import (
    AIErrorType,
    BackendConfig,
    BackendKind,
    CompletionRequest,
    CompletionResponse,
    ResponseFormat,
    RetryConfig,
)
from loadspec.llm.ollama import OllamaBackend
from loadspec.llm.pool import ConnectionPool
from loadspec.llm.retry import RetryPolicy

__all__ = [
    "AIBackend",
    "AIErrorType",
    "AuthenticationFailedError",
    "BackendConfig",
    "BackendError",
    "BackendKind",
    "BackendTimeoutError",
    "CompletionRequest",
    "CompletionResponse",
    "ConfigurationError",
    "ConnectionFailedError",
    "ConnectionPool",
    "ErrorStatistics",
    "HostedBackend",
    "InvalidResponseError",
    "ModelUnavailableError",
    "OllamaBackend",
    "RateLimitedError",
    "ResponseFormat",
    "RetryConfig",
    "RetryExhaustedError",
    "RetryPolicy",
    "ServiceUnavailableError",
    "classify_error",
    "create_backend",
    "create_backend_from_env",
]
