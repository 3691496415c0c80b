"""Classify pipeline failures and drive recovery strategies.

The coordinator turns any exception raised by a pipeline stage into a
:class:`ParseError`, ranks the applicable :class:`RecoveryStrategy`
entries and executes them through caller-supplied operations until one
produces a result. Attempts are counted per ``level:type:input-prefix``
key in a bounded LRU so that the same failing input cannot retry forever
across calls.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import Counter, OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Union

from loadspec.llm.exceptions import BackendError
from loadspec.llm.models import AIErrorType
from loadspec.parsing.models import (
    ErrorLevel,
    ParseError,
    ParseResult,
    RecoveryAction,
    RecoveryResult,
    RecoveryStrategy,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY = 1.0
DEFAULT_MAX_TRACKED_KEYS = 1000
NETWORK_MAX_DELAY = 5.0
RATE_LIMIT_MAX_DELAY = 60.0
KEY_INPUT_PREFIX = 50

FALLBACK_STRATEGY_CONFIDENCE = 0.5

# Error types, by the stage that raised them.
RATE_LIMIT = "rate_limit"
TIMEOUT = "timeout"
NETWORK = "network"
INVALID_RESPONSE = "invalid_response"
MALFORMED_INPUT = "malformed_input"
AMBIGUOUS_INPUT = "ambiguous_input"
MISSING_DATA = "missing_data"
INPUT_ERROR = "input_error"
AI_ERROR = "ai_error"
SCHEMA_ERROR = "schema_error"
FALLBACK_FAILED = "fallback_failed"

_BACKEND_TYPES: dict[AIErrorType, str] = {
    AIErrorType.RATE_LIMITED: RATE_LIMIT,
    AIErrorType.TIMEOUT: TIMEOUT,
    AIErrorType.CONNECTION_FAILED: NETWORK,
    AIErrorType.SERVICE_UNAVAILABLE: NETWORK,
    AIErrorType.INVALID_RESPONSE: INVALID_RESPONSE,
}

_KEYWORDS: dict[ErrorLevel, list[tuple[tuple[str, ...], str]]] = {
    ErrorLevel.AI: [
        (("rate limit", "too many requests", "429"), RATE_LIMIT),
        (("timeout", "timed out"), TIMEOUT),
        (("network", "connection", "econnrefused", "unavailable", "unreachable"), NETWORK),
        (("invalid", "parse", "json", "malformed"), INVALID_RESPONSE),
    ],
    ErrorLevel.INPUT: [
        (("malformed", "invalid format", "unrecognized", "unparseable"), MALFORMED_INPUT),
        (("ambiguous", "unclear"), AMBIGUOUS_INPUT),
        (("missing", "empty", "required"), MISSING_DATA),
    ],
    ErrorLevel.VALIDATION: [
        (("not valid json", "json", "parse", "malformed"), INVALID_RESPONSE),
        (("missing", "required"), MISSING_DATA),
    ],
    ErrorLevel.FALLBACK: [],
}

_LEVEL_DEFAULT_TYPES: dict[ErrorLevel, str] = {
    ErrorLevel.INPUT: INPUT_ERROR,
    ErrorLevel.AI: AI_ERROR,
    ErrorLevel.VALIDATION: SCHEMA_ERROR,
    ErrorLevel.FALLBACK: FALLBACK_FAILED,
}

_SUGGESTIONS: dict[str, list[str]] = {
    RATE_LIMIT: [
        "Wait a moment before trying again",
        "Reduce how often requests are sent to the AI service",
    ],
    TIMEOUT: [
        "Check that the AI service is running and responsive",
        "Try a shorter, simpler description",
    ],
    NETWORK: [
        "Check network connectivity to the AI backend",
        "Verify the configured backend endpoint",
    ],
    INVALID_RESPONSE: [
        "Rephrase the request more explicitly",
        "Include the HTTP method and the full URL",
    ],
    MALFORMED_INPUT: [
        "Use a form like 'GET https://api.example.com/users with 50 users for 2 minutes'",
        "Check pasted curl commands and JSON for syntax errors",
    ],
    AMBIGUOUS_INPUT: [
        "State one HTTP method and one URL per test",
        "Give the user count and duration explicitly",
    ],
    MISSING_DATA: [
        "Specify the target URL",
        "Specify the number of users and the test duration",
    ],
    FALLBACK_FAILED: [
        "Provide the request details manually",
        "Start from a simple example such as 'GET https://example.com for 1 minute'",
    ],
}
_DEFAULT_SUGGESTIONS = [
    "Try rephrasing the request",
    "Check the input for typos",
]

ResultOrAwaitable = Union[ParseResult, Awaitable[ParseResult]]


@dataclass
class RecoveryOperations:
    """Callbacks the coordinator uses to execute strategies.

    ``retry`` repeats the failed backend stage; ``enhance_prompt`` re-runs
    it with the error message embedded in the prompt; ``fallback`` runs the
    deterministic parser. Missing callbacks make their strategy unavailable.
    """

    retry: Optional[Callable[[], Awaitable[ParseResult]]] = None
    enhance_prompt: Optional[Callable[[str], Awaitable[ParseResult]]] = None
    fallback: Optional[Callable[[], ResultOrAwaitable]] = None


class ErrorRecoveryCoordinator:
    """Select and execute recovery strategies for classified failures."""

    def __init__(
        self,
        *,
        max_retries: int = DEFAULT_MAX_RETRIES,
        base_delay: float = DEFAULT_BASE_DELAY,
        enable_fallback: bool = True,
        max_tracked_keys: int = DEFAULT_MAX_TRACKED_KEYS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if max_tracked_keys < 1:
            raise ValueError("max_tracked_keys must be >= 1")
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.enable_fallback = enable_fallback
        self.max_tracked_keys = max_tracked_keys
        self._sleep = sleep
        self._attempts: OrderedDict[str, int] = OrderedDict()

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    def classify(
        self,
        error: Union[BaseException, str],
        level: ErrorLevel,
        input_text: str = "",
    ) -> ParseError:
        """Map *error* to a typed :class:`ParseError` with suggestions."""
        message = str(error) or type(error).__name__
        error_type = self._error_type(error, message, level)
        parse_error = ParseError(
            level=level,
            type=error_type,
            message=message,
            suggestions=list(_SUGGESTIONS.get(error_type, _DEFAULT_SUGGESTIONS)),
        )
        strategies = self.strategies_for(parse_error)
        if strategies:
            parse_error = parse_error.model_copy(update={"recovery_strategy": strategies[0]})
        logger.debug("Classified %s error as %s: %s", level.value, error_type, message)
        return parse_error

    @staticmethod
    def _error_type(error: Union[BaseException, str], message: str, level: ErrorLevel) -> str:
        if level == ErrorLevel.AI and isinstance(error, BackendError):
            mapped = _BACKEND_TYPES.get(error.error_type)
            if mapped:
                return mapped
        lowered = message.lower()
        for keywords, error_type in _KEYWORDS[level]:
            if any(k in lowered for k in keywords):
                return error_type
        return _LEVEL_DEFAULT_TYPES[level]

    # ------------------------------------------------------------------
    # Strategy selection
    # ------------------------------------------------------------------

    def strategies_for(self, parse_error: ParseError, attempt: int = 1) -> list[RecoveryStrategy]:
        """Return applicable strategies, most confident first.

        Args:
            parse_error: The classified failure.
            attempt: 1-based attempt number, used for backoff delays.
        """
        attempt = max(attempt, 1)
        error_type = parse_error.type
        strategies: list[RecoveryStrategy] = []

        if error_type == RATE_LIMIT:
            strategies.append(
                RecoveryStrategy(
                    can_recover=True,
                    strategy=RecoveryAction.RETRY,
                    confidence=0.9,
                    estimated_success=0.8,
                    max_retries=self.max_retries,
                    retry_delay=min(self.base_delay * 2 ** attempt, RATE_LIMIT_MAX_DELAY),
                )
            )
        elif error_type in (NETWORK, TIMEOUT):
            strategies.append(
                RecoveryStrategy(
                    can_recover=True,
                    strategy=RecoveryAction.RETRY,
                    confidence=0.7,
                    estimated_success=0.6,
                    max_retries=self.max_retries,
                    retry_delay=min(NETWORK_MAX_DELAY, self.base_delay * 2 ** (attempt - 1)),
                )
            )
        elif error_type == INVALID_RESPONSE:
            strategies.append(
                RecoveryStrategy(
                    can_recover=True,
                    strategy=RecoveryAction.ENHANCE_PROMPT,
                    confidence=0.7,
                    estimated_success=0.6,
                    max_retries=2,
                )
            )
        elif error_type in (MALFORMED_INPUT, AMBIGUOUS_INPUT):
            strategies.append(
                RecoveryStrategy(
                    can_recover=True,
                    strategy=RecoveryAction.FALLBACK,
                    confidence=0.8,
                    estimated_success=0.7,
                )
            )
        elif error_type == MISSING_DATA:
            strategies.append(
                RecoveryStrategy(
                    can_recover=True,
                    strategy=RecoveryAction.ENHANCE_PROMPT,
                    confidence=0.6,
                    estimated_success=0.5,
                    max_retries=1,
                )
            )
        else:
            strategies.append(self._level_default(parse_error.level))

        if self.enable_fallback and parse_error.level != ErrorLevel.FALLBACK and not any(
            s.strategy == RecoveryAction.FALLBACK for s in strategies
        ):
            strategies.append(
                RecoveryStrategy(
                    can_recover=True,
                    strategy=RecoveryAction.FALLBACK,
                    confidence=FALLBACK_STRATEGY_CONFIDENCE,
                    estimated_success=0.6,
                )
            )
        return sorted(strategies, key=lambda s: s.confidence, reverse=True)

    def _level_default(self, level: ErrorLevel) -> RecoveryStrategy:
        if level == ErrorLevel.INPUT:
            return RecoveryStrategy(
                can_recover=True, strategy=RecoveryAction.FALLBACK,
                confidence=0.6, estimated_success=0.5,
            )
        if level == ErrorLevel.AI:
            return RecoveryStrategy(
                can_recover=True, strategy=RecoveryAction.RETRY,
                confidence=0.4, estimated_success=0.3,
                max_retries=self.max_retries, retry_delay=self.base_delay,
            )
        if level == ErrorLevel.VALIDATION:
            return RecoveryStrategy(
                can_recover=True, strategy=RecoveryAction.ENHANCE_PROMPT,
                confidence=0.5, estimated_success=0.4, max_retries=1,
            )
        return RecoveryStrategy(
            can_recover=False, strategy=RecoveryAction.USER_INPUT,
            confidence=0.1, estimated_success=0.0,
        )

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    @staticmethod
    def attempt_key(level: ErrorLevel, error_type: str, input_text: str) -> str:
        return f"{level.value}:{error_type}:{input_text[:KEY_INPUT_PREFIX]}"

    async def recover(
        self,
        error: Union[BaseException, str],
        level: ErrorLevel,
        input_text: str,
        operations: RecoveryOperations,
    ) -> RecoveryResult:
        """Try strategies in descending confidence order until one succeeds.

        Retry and prompt-enhancement attempts draw on the per-key budget of
        ``max_retries``; the fallback strategy does not.
        """
        parse_error = self.classify(error, level, input_text)
        key = self.attempt_key(level, parse_error.type, input_text)
        path: list[RecoveryAction] = []
        used = 0
        last_error: Optional[BaseException] = None

        for strategy in self.strategies_for(parse_error, self._attempts.get(key, 0) + 1):
            if not strategy.can_recover:
                continue
            action = strategy.strategy
            if action == RecoveryAction.FALLBACK:
                if operations.fallback is None:
                    continue
                path.append(action)
                used += 1
                try:
                    result = operations.fallback()
                    if inspect.isawaitable(result):
                        result = await result
                except Exception as exc:
                    logger.warning("Fallback recovery failed: %s", exc)
                    last_error = exc
                    continue
                return self._success(key, result, used, path)

            operation = (
                operations.retry if action == RecoveryAction.RETRY else operations.enhance_prompt
            )
            if operation is None:
                continue
            rounds = max(strategy.max_retries, 1)
            for _ in range(rounds):
                attempt = self._attempts.get(key, 0) + 1
                if attempt > self.max_retries:
                    logger.info("Recovery budget exhausted for %s", key)
                    break
                self._record_attempt(key)
                path.append(action)
                used += 1
                delay = self._delay_for(parse_error, strategy, attempt)
                if delay > 0:
                    await self._sleep(delay)
                try:
                    if action == RecoveryAction.RETRY:
                        result = await operation()
                    else:
                        result = await operation(parse_error.message)
                except Exception as exc:
                    logger.warning(
                        "Recovery %s attempt %d failed: %s", action.value, attempt, exc
                    )
                    last_error = exc
                    continue
                return self._success(key, result, used, path)

        final_error = parse_error
        if last_error is not None:
            final_error = parse_error.model_copy(
                update={"message": f"{parse_error.message} (last recovery error: {last_error})"}
            )
        logger.warning(
            "All recovery strategies failed for %s error %s", level.value, parse_error.type
        )
        return RecoveryResult(
            success=False,
            error=final_error,
            attempts_used=used,
            recovery_path=path,
            confidence=0.0,
        )

    def _delay_for(
        self, parse_error: ParseError, strategy: RecoveryStrategy, attempt: int
    ) -> float:
        if strategy.strategy != RecoveryAction.RETRY:
            return 0.0
        if parse_error.type == RATE_LIMIT:
            return min(self.base_delay * 2 ** attempt, RATE_LIMIT_MAX_DELAY)
        if parse_error.type in (NETWORK, TIMEOUT):
            return min(NETWORK_MAX_DELAY, self.base_delay * 2 ** (attempt - 1))
        return strategy.retry_delay

    def _success(
        self, key: str, result: ParseResult, used: int, path: list[RecoveryAction]
    ) -> RecoveryResult:
        self._attempts.pop(key, None)
        logger.info("Recovered via %s after %d attempts", path[-1].value, used)
        return RecoveryResult(
            success=True,
            result=result,
            attempts_used=used,
            recovery_path=path,
            confidence=result.confidence,
        )

    def _record_attempt(self, key: str) -> None:
        self._attempts[key] = self._attempts.get(key, 0) + 1
        self._attempts.move_to_end(key)
        while len(self._attempts) > self.max_tracked_keys:
            evicted, _ = self._attempts.popitem(last=False)
            logger.debug("Evicted recovery counter %s", evicted)

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def attempts_for(self, key: str) -> int:
        return self._attempts.get(key, 0)

    def reset_recovery_attempts(self, key: Optional[str] = None) -> None:
        """Forget one counter, or all of them when *key* is None."""
        if key is None:
            self._attempts.clear()
        else:
            self._attempts.pop(key, None)

    def recovery_stats(self) -> dict[str, Any]:
        by_level: Counter[str] = Counter()
        for key, count in self._attempts.items():
            by_level[key.split(":", 1)[0]] += count
        return {
            "tracked_keys": len(self._attempts),
            "max_tracked_keys": self.max_tracked_keys,
            "total_attempts": sum(self._attempts.values()),
            "attempts_by_level": dict(by_level),
        }
