"""Data models and enumerations for the AI backend layer."""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class BackendKind(str, Enum):
    """Supported backend families."""

    OLLAMA = "ollama"
    OPENAI = "openai"
    CLAUDE = "claude"


class ResponseFormat(str, Enum):
    TEXT = "text"
    JSON = "json"


class AIErrorType(str, Enum):
    """Classified backend failure categories."""

    CONNECTION_FAILED = "CONNECTION_FAILED"
    MODEL_UNAVAILABLE = "MODEL_UNAVAILABLE"
    TIMEOUT = "TIMEOUT"
    RATE_LIMITED = "RATE_LIMITED"
    INVALID_RESPONSE = "INVALID_RESPONSE"
    RESOURCE_EXHAUSTED = "RESOURCE_EXHAUSTED"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    AUTHENTICATION_FAILED = "AUTHENTICATION_FAILED"
    UNKNOWN = "UNKNOWN"


# ---------------------------------------------------------------------------
# Default models and endpoints per backend family
# ---------------------------------------------------------------------------

DEFAULT_MODELS: dict[BackendKind, str] = {
    BackendKind.OLLAMA: "llama3.2:1b",
    BackendKind.OPENAI: "gpt-4o-mini",
    BackendKind.CLAUDE: "claude-3-haiku-20240307",
}

DEFAULT_ENDPOINTS: dict[BackendKind, str] = {
    BackendKind.OLLAMA: "http://localhost:11434",
    BackendKind.OPENAI: "https://api.openai.com/v1",
    BackendKind.CLAUDE: "https://api.anthropic.com/v1",
}

# Hosted providers cannot be reached without a key.
PROVIDERS_REQUIRING_KEY: frozenset[BackendKind] = frozenset(
    {BackendKind.OPENAI, BackendKind.CLAUDE}
)


# ---------------------------------------------------------------------------
# Wire contract
# ---------------------------------------------------------------------------


class CompletionRequest(BaseModel):
    """A backend-neutral completion request.

    Exactly one of ``prompt`` or ``messages`` must be supplied; adapters
    convert between the two when their wire format needs the other shape.
    """

    model_config = ConfigDict(frozen=True)

    prompt: Optional[str] = Field(default=None, description="Plain prompt text")
    messages: list[dict[str, Any]] = Field(
        default_factory=list,
        description="Chat messages ({'role': ..., 'content': ...})",
    )
    model: Optional[str] = Field(
        default=None,
        description="Target model; adapters fall back to their configured model",
    )
    temperature: float = Field(default=0.1, ge=0.0, le=2.0)
    max_tokens: int = Field(default=1000, gt=0)
    response_format: ResponseFormat = Field(default=ResponseFormat.TEXT)

    @model_validator(mode="after")
    def _require_content(self) -> "CompletionRequest":
        """Ensure the request carries either a prompt or messages."""
        if not self.prompt and not self.messages:
            raise ValueError("CompletionRequest needs a prompt or messages")
        return self

    def as_prompt(self) -> str:
        """Flatten messages into a single prompt string."""
        if self.prompt:
            return self.prompt
        parts = []
        for msg in self.messages:
            role = msg.get("role", "user")
            content = msg.get("content", "")
            if role == "system":
                parts.append(content)
            else:
                parts.append(f"{role.capitalize()}: {content}")
        return "\n\n".join(parts)

    def as_messages(self) -> list[dict[str, Any]]:
        """Return chat messages, wrapping a plain prompt as a user turn."""
        if self.messages:
            return list(self.messages)
        return [{"role": "user", "content": self.prompt or ""}]


class TokenUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ResponseMetadata(BaseModel):
    provider: str
    duration_ms: float = 0.0
    cached: bool = False


class CompletionResponse(BaseModel):
    """Normalized completion result returned by every adapter."""

    text: str
    model: str
    usage: TokenUsage = Field(default_factory=TokenUsage)
    metadata: ResponseMetadata


# ---------------------------------------------------------------------------
# Adapter configuration
# ---------------------------------------------------------------------------


class RetryConfig(BaseModel):
    """Backoff settings shared by every adapter."""

    model_config = ConfigDict(frozen=False, validate_assignment=True)

    max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Total attempts including the first one",
    )
    base_delay: float = Field(
        default=1.0,
        ge=0,
        description="Base delay in seconds for exponential backoff",
    )
    max_delay: float = Field(
        default=30.0,
        gt=0,
        description="Upper bound on a single backoff delay in seconds",
    )
    multiplier: float = Field(default=2.0, ge=1.0)
    jitter: bool = Field(default=True, description="Randomize delays")


class BackendConfig(BaseModel):
    """Configuration for a single backend adapter."""

    model_config = ConfigDict(frozen=False, validate_assignment=True)

    kind: BackendKind = Field(default=BackendKind.OLLAMA)
    endpoint: Optional[str] = Field(default=None)
    model: Optional[str] = Field(default=None)
    api_key: Optional[str] = Field(default=None, repr=False)
    temperature: float = Field(default=0.1, ge=0.0, le=2.0)
    max_tokens: int = Field(default=1000, gt=0)
    timeout: float = Field(
        default=30.0,
        gt=0,
        description="Per-request timeout in seconds",
    )
    pool_size: int = Field(
        default=5,
        ge=1,
        description="Maximum simultaneous in-flight requests",
    )
    health_check_interval: float = Field(
        default=30.0,
        gt=0,
        description="Seconds a cached health result stays fresh",
    )
    auto_pull: bool = Field(
        default=True,
        description="Provision a missing model during initialize()",
    )
    retry: RetryConfig = Field(default_factory=RetryConfig)

    @property
    def resolved_model(self) -> str:
        return self.model or DEFAULT_MODELS[self.kind]

    @property
    def resolved_endpoint(self) -> str:
        return (self.endpoint or DEFAULT_ENDPOINTS[self.kind]).rstrip("/")
