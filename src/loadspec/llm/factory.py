"""Backend factory: build an :class:`AIBackend` from configuration."""

from __future__ import annotations

import logging
import os
from typing import Mapping, Optional

from loadspec.llm.base import AIBackend
from loadspec.llm.exceptions import ConfigurationError
from loadspec.llm.hosted import HostedBackend
from loadspec.llm.models import BackendConfig, BackendKind
from loadspec.llm.ollama import OllamaBackend

logger = logging.getLogger(__name__)

# Accepted spellings for each backend family.
_PROVIDER_ALIASES: dict[str, BackendKind] = {
    "ollama": BackendKind.OLLAMA,
    "local": BackendKind.OLLAMA,
    "openai": BackendKind.OPENAI,
    "claude": BackendKind.CLAUDE,
    "anthropic": BackendKind.CLAUDE,
}


def resolve_provider(name: str) -> BackendKind:
    """Map a provider name (case-insensitive) to a :class:`BackendKind`.

    Raises:
        ConfigurationError: For unknown provider names.
    """
    kind = _PROVIDER_ALIASES.get(name.strip().lower())
    if kind is None:
        known = ", ".join(sorted(_PROVIDER_ALIASES))
        raise ConfigurationError(f"Unknown AI provider {name!r}; expected one of: {known}")
    return kind


def create_backend(config: BackendConfig) -> AIBackend:
    """Instantiate the adapter for ``config.kind``."""
    if config.kind == BackendKind.OLLAMA:
        backend: AIBackend = OllamaBackend(config)
    else:
        backend = HostedBackend(config)
    logger.debug("Created backend %s", backend.name)
    return backend


def backend_config_from_env(
    environ: Optional[Mapping[str, str]] = None,
) -> BackendConfig:
    """Read ``AI_PROVIDER``, ``AI_API_KEY``, ``AI_ENDPOINT`` and ``AI_MODEL``."""
    env = os.environ if environ is None else environ
    kind = resolve_provider(env.get("AI_PROVIDER", "ollama"))
    return BackendConfig(
        kind=kind,
        api_key=env.get("AI_API_KEY") or None,
        endpoint=env.get("AI_ENDPOINT") or None,
        model=env.get("AI_MODEL") or None,
    )


def create_backend_from_env(
    environ: Optional[Mapping[str, str]] = None,
) -> AIBackend:
    return create_backend(backend_config_from_env(environ))
