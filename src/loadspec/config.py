"""Parser configuration management.

Loads settings from a TOML file with environment variable overrides
(``LOADSPEC_`` prefix) and validates every bound once at startup.  Uses
:mod:`tomllib` on Python 3.11+.
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError

from loadspec.llm.exceptions import ConfigurationError
from loadspec.llm.factory import resolve_provider
from loadspec.llm.models import BackendConfig, RetryConfig

# ---------------------------------------------------------------------------
# Default paths
# ---------------------------------------------------------------------------

DEFAULT_CONFIG_DIR = ".loadspec"
DEFAULT_CONFIG_FILE = "config.toml"
ENV_PREFIX = "LOADSPEC_"

# ---------------------------------------------------------------------------
# Configuration model
# ---------------------------------------------------------------------------


class ParserSettings(BaseModel):
    """Pipeline and backend settings with sensible defaults.

    All fields can be overridden via environment variables with the
    ``LOADSPEC_`` prefix.  For example ``LOADSPEC_POOL_SIZE=10``.
    """

    provider: str = "ollama"
    endpoint: Optional[str] = None
    model: Optional[str] = None
    api_key: Optional[str] = Field(default=None, repr=False)
    temperature: float = Field(default=0.1, ge=0.0, le=2.0)
    max_tokens: int = Field(default=1000, gt=0)
    timeout: float = Field(default=30.0, gt=0, description="Seconds per backend call")
    max_retries: int = Field(default=3, ge=0, le=10)
    pool_size: int = Field(default=5, ge=1)
    health_check_interval: float = Field(default=30.0, gt=0)
    max_input_length: int = Field(default=10_000, gt=0)
    confidence_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    fallback_confidence_threshold: float = Field(default=0.3, ge=0.0, le=1.0)
    ambiguity_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    max_correction_rounds: int = Field(default=2, ge=0, le=5)
    enable_fallback: bool = True
    log_level: str = "INFO"
    log_file: Optional[Path] = None

    model_config = {"extra": "ignore"}

    def to_backend_config(self) -> BackendConfig:
        """Translate into the adapter configuration.

        ``max_retries`` is the total number of backend attempts; zero still
        makes one attempt.
        """
        return BackendConfig(
            kind=resolve_provider(self.provider),
            endpoint=self.endpoint,
            model=self.model,
            api_key=self.api_key,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            timeout=self.timeout,
            pool_size=self.pool_size,
            health_check_interval=self.health_check_interval,
            retry=RetryConfig(max_attempts=max(self.max_retries, 1)),
        )


# ---------------------------------------------------------------------------
# Loader helpers
# ---------------------------------------------------------------------------


def _apply_env_overrides(data: dict) -> dict:
    """Apply LOADSPEC_ environment variable overrides to *data*."""
    field_names = set(ParserSettings.model_fields.keys())
    for key, value in os.environ.items():
        if key.startswith(ENV_PREFIX):
            field = key[len(ENV_PREFIX):].lower()
            if field in field_names:
                data[field] = value
    return data


def _describe(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        field = ".".join(str(p) for p in error.get("loc", ()))
        parts.append(f"{field}: {error.get('msg')} (got {error.get('input')!r})")
    return "; ".join(parts)


def load_config(config_path: Path | None = None, project_dir: Path | None = None) -> ParserSettings:
    """Load settings from a TOML file with env-var overrides.

    Parameters
    ----------
    config_path:
        Explicit path to a TOML file.  When *None*, looks for
        ``<project_dir>/.loadspec/config.toml``.
    project_dir:
        Project root directory.  Defaults to :func:`Path.cwd`.

    Returns
    -------
    ParserSettings
        Parsed and validated settings.

    Raises
    ------
    ConfigurationError
        If the file is not valid TOML, a value is out of range or the
        provider name is unknown.
    """
    project = project_dir or Path.cwd()
    path = config_path or (project / DEFAULT_CONFIG_DIR / DEFAULT_CONFIG_FILE)

    data: dict = {}
    if path.exists():
        try:
            with open(path, "rb") as fh:
                data = tomllib.load(fh)
        except tomllib.TOMLDecodeError as exc:
            raise ConfigurationError(f"Invalid TOML in {path}: {exc}") from exc

    # Flatten nested TOML sections ([backend], [pipeline], [logging])
    flat: dict = {}
    for k, v in data.items():
        if isinstance(v, dict):
            flat.update(v)
        else:
            flat[k] = v

    flat = _apply_env_overrides(flat)
    try:
        settings = ParserSettings(**flat)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration: {_describe(exc)}") from exc

    # Reject unknown providers at startup rather than on first use.
    resolve_provider(settings.provider)
    return settings


def default_config_toml() -> str:
    """Return default configuration as a TOML string."""
    return """\
# loadspec configuration

[backend]
provider = "ollama"
model = "llama3.2:1b"
timeout = 30.0
max_retries = 3
pool_size = 5

[pipeline]
max_input_length = 10000
confidence_threshold = 0.7
fallback_confidence_threshold = 0.3
ambiguity_threshold = 0.5

[logging]
log_level = "INFO"
"""
