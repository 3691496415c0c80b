"""Abstract backend interface for AI completion services."""

from __future__ import annotations

from abc import ABC, abstractmethod

from loadspec.llm.models import CompletionRequest, CompletionResponse


class AIBackend(ABC):
    """Uniform contract over interchangeable completion services.

    Callers only rely on these five members, so the self-hosted and hosted
    adapters can be swapped freely by :func:`loadspec.llm.factory.create_backend`.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable backend name used in logs and results."""

    @abstractmethod
    async def initialize(self) -> None:
        """Prepare the backend (connect, verify credentials, provision model)."""

    @abstractmethod
    async def generate_completion(
        self, request: CompletionRequest
    ) -> CompletionResponse:
        """Run one completion, retrying transient failures internally."""

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if the backend is reachable and able to serve requests."""

    @abstractmethod
    def is_ready(self) -> bool:
        """Return True once :meth:`initialize` succeeded.

        Transient outages after that are reported by :meth:`health_check` and
        by failing completions, not by this flag.
        """

    async def close(self) -> None:
        """Release any held network resources."""
        return None
