"""Unit tests for loadspec.llm.factory."""

from __future__ import annotations

import pytest

from loadspec.llm.exceptions import ConfigurationError
from loadspec.llm.factory import (
    backend_config_from_env,
    create_backend,
    create_backend_from_env,
    resolve_provider,
)
from loadspec.llm.hosted import HostedBackend
from loadspec.llm.models import BackendConfig, BackendKind
from loadspec.llm.ollama import OllamaBackend


class TestResolveProvider:
    @pytest.mark.parametrize(
        ("name", "kind"),
        [
            ("ollama", BackendKind.OLLAMA),
            ("local", BackendKind.OLLAMA),
            ("OpenAI", BackendKind.OPENAI),
            ("claude", BackendKind.CLAUDE),
            (" anthropic ", BackendKind.CLAUDE),
        ],
    )
    def test_aliases(self, name: str, kind: BackendKind) -> None:
        assert resolve_provider(name) == kind

    def test_unknown_provider(self) -> None:
        with pytest.raises(ConfigurationError, match="gemini"):
            resolve_provider("gemini")


class TestCreateBackend:
    def test_ollama(self) -> None:
        assert isinstance(create_backend(BackendConfig()), OllamaBackend)

    def test_hosted(self) -> None:
        backend = create_backend(
            BackendConfig(kind=BackendKind.OPENAI, api_key="sk-test")
        )
        assert isinstance(backend, HostedBackend)

    def test_hosted_without_key(self) -> None:
        with pytest.raises(ConfigurationError):
            create_backend(BackendConfig(kind=BackendKind.CLAUDE))


class TestFromEnv:
    def test_defaults_to_ollama(self) -> None:
        cfg = backend_config_from_env({})
        assert cfg.kind == BackendKind.OLLAMA
        assert cfg.api_key is None
        assert cfg.model is None

    def test_reads_all_variables(self) -> None:
        cfg = backend_config_from_env(
            {
                "AI_PROVIDER": "anthropic",
                "AI_API_KEY": "sk-ant",
                "AI_ENDPOINT": "https://proxy.test/v1",
                "AI_MODEL": "claude-3-5-sonnet",
            }
        )
        assert cfg.kind == BackendKind.CLAUDE
        assert cfg.api_key == "sk-ant"
        assert cfg.endpoint == "https://proxy.test/v1"
        assert cfg.model == "claude-3-5-sonnet"

    def test_empty_values_treated_as_unset(self) -> None:
        cfg = backend_config_from_env({"AI_MODEL": ""})
        assert cfg.model is None

    def test_create_from_env(self) -> None:
        backend = create_backend_from_env({"AI_PROVIDER": "openai", "AI_API_KEY": "k"})
        assert isinstance(backend, HostedBackend)
        assert backend.name == "openai (gpt-4o-mini)"
