"""In-process parsing metrics and per-model token usage."""

from __future__ import annotations

import threading
from collections import Counter, deque
from dataclasses import dataclass, field
from typing import Any, Optional

from pydantic import BaseModel, Field

DEFAULT_MAX_ATTEMPTS = 1000


class ParseAttempt(BaseModel):
    """Outcome of one ``LoadSpecParser.parse`` call."""

    input_length: int = Field(..., ge=0)
    detected_format: Optional[str] = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    response_time_ms: float = Field(default=0.0, ge=0.0)
    success: bool = True
    used_fallback: bool = False
    retry_count: int = Field(default=0, ge=0)
    assumptions: int = Field(default=0, ge=0)
    warnings: int = Field(default=0, ge=0)
    error_type: Optional[str] = None


@dataclass
class _ModelUsage:
    """Accumulated token usage for a single model."""

    requests: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0


@dataclass
class _Totals:
    attempts: int = 0
    successes: int = 0
    fallbacks: int = 0
    retries: int = 0
    confidence_sum: float = 0.0
    response_time_sum: float = 0.0
    errors_by_type: Counter = field(default_factory=Counter)
    formats: Counter = field(default_factory=Counter)


class ParsingMetricsCollector:
    """Aggregate parse outcomes and token usage.

    Totals cover every recorded attempt; only the most recent
    ``max_attempts`` attempts are kept individually.

    Example::

        metrics = ParsingMetricsCollector()
        metrics.record_tokens("llama3.2:1b", prompt_tokens=120, completion_tokens=80)
        metrics.record_attempt(ParseAttempt(input_length=42, confidence=0.8))
        metrics.summary()["average_confidence"]   # 0.8
    """

    def __init__(self, max_attempts: int = DEFAULT_MAX_ATTEMPTS) -> None:
        self._lock = threading.Lock()
        self._attempts: deque[ParseAttempt] = deque(maxlen=max_attempts)
        self._totals = _Totals()
        self._usage: dict[str, _ModelUsage] = {}

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record_attempt(self, attempt: ParseAttempt) -> None:
        with self._lock:
            self._attempts.append(attempt)
            totals = self._totals
            totals.attempts += 1
            totals.successes += int(attempt.success)
            totals.fallbacks += int(attempt.used_fallback)
            totals.retries += attempt.retry_count
            totals.confidence_sum += attempt.confidence
            totals.response_time_sum += attempt.response_time_ms
            if attempt.detected_format:
                totals.formats[attempt.detected_format] += 1
            if attempt.error_type:
                totals.errors_by_type[attempt.error_type] += 1

    def record_tokens(
        self,
        model: str,
        prompt_tokens: int,
        completion_tokens: int,
    ) -> None:
        """Record token usage for one backend completion.

        Args:
            model: The model identifier (e.g. ``"llama3.2:1b"``).
            prompt_tokens: Number of prompt/input tokens.
            completion_tokens: Number of completion/output tokens.
        """
        with self._lock:
            entry = self._usage.setdefault(model, _ModelUsage())
            entry.requests += 1
            entry.prompt_tokens += prompt_tokens
            entry.completion_tokens += completion_tokens

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def recent_attempts(self, limit: int = 10) -> list[ParseAttempt]:
        with self._lock:
            return list(self._attempts)[-limit:]

    def get_total_tokens(self) -> int:
        """Return total tokens (prompt + completion) across all models."""
        with self._lock:
            return sum(u.prompt_tokens + u.completion_tokens for u in self._usage.values())

    def get_breakdown_by_model(self) -> dict[str, dict[str, int]]:
        """Return per-model token usage.

        Returns:
            Dict mapping model name → ``{"requests": …, "prompt_tokens": …,
            "completion_tokens": …, "total_tokens": …}``
        """
        with self._lock:
            return {
                model: {
                    "requests": usage.requests,
                    "prompt_tokens": usage.prompt_tokens,
                    "completion_tokens": usage.completion_tokens,
                    "total_tokens": usage.prompt_tokens + usage.completion_tokens,
                }
                for model, usage in self._usage.items()
            }

    def summary(self) -> dict[str, Any]:
        with self._lock:
            totals = self._totals
            count = totals.attempts
            return {
                "total_requests": count,
                "successful_parses": totals.successes,
                "failed_parses": count - totals.successes,
                "fallback_used": totals.fallbacks,
                "retry_count": totals.retries,
                "average_confidence": totals.confidence_sum / count if count else 0.0,
                "average_response_time_ms": totals.response_time_sum / count if count else 0.0,
                "errors_by_type": dict(totals.errors_by_type),
                "formats": dict(totals.formats),
            }

    def reset(self) -> None:
        """Clear all accumulated data."""
        with self._lock:
            self._attempts.clear()
            self._totals = _Totals()
            self._usage.clear()
