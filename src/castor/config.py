"""Configuration: frozen Config with explicit provider/model requirements."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
import os
from typing import Any, Literal

from dotenv import load_dotenv

from castor.errors import ConfigurationError
from castor.options import GenerationOptions, coerce_options
from castor.retry import RetryPolicy

load_dotenv()

ProviderName = Literal["openai", "anthropic"]

# Provider-specific API key environment variable names
_API_KEY_ENV_VARS: dict[ProviderName, str] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
}


@dataclass(frozen=True)
class Config:
    """Immutable per-provider configuration.

    Set once at construction and read-only afterwards. API keys are
    auto-resolved from standard environment variables.

    Example:
        config = Config(provider="openai", model="gpt-4o-mini")
        # API key is automatically resolved from OPENAI_API_KEY
    """

    provider: ProviderName
    model: str
    #: Auto-resolved from ``OPENAI_API_KEY`` or ``ANTHROPIC_API_KEY`` when *None*.
    api_key: str | None = None
    #: Provider-default options; per-call options override them key by key.
    options: GenerationOptions | Mapping[str, Any] | None = None
    extra_headers: Mapping[str, str] = field(default_factory=dict)
    #: Overrides the provider endpoint (proxies, compatible gateways).
    base_url: str | None = None
    timeout_s: float = 60.0
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    def __post_init__(self) -> None:
        """Auto-resolve API key and validate configuration."""
        if self.provider not in _API_KEY_ENV_VARS:
            raise ConfigurationError(
                f"Unknown provider: {self.provider!r}",
                hint="Supported providers: 'openai', 'anthropic'",
            )

        model = self.model.strip() if isinstance(self.model, str) else ""
        if not model:
            raise ConfigurationError(
                "model must be a non-empty string",
                hint="Pass model='gpt-4o-mini' or another model identifier.",
            )
        object.__setattr__(self, "model", model)

        if self.timeout_s <= 0:
            raise ConfigurationError(
                f"timeout_s must be > 0, got {self.timeout_s}",
                hint="This bounds each HTTP request in seconds.",
            )

        object.__setattr__(self, "options", coerce_options(self.options))
        object.__setattr__(self, "extra_headers", dict(self.extra_headers))

        # Auto-resolve API key from environment if not provided
        if self.api_key is None:
            env_var = _API_KEY_ENV_VARS[self.provider]
            object.__setattr__(self, "api_key", os.environ.get(env_var))

        if not self.api_key:
            env_var = _API_KEY_ENV_VARS[self.provider]
            raise ConfigurationError(
                f"API key required for {self.provider}",
                hint=f"Set {env_var} environment variable or pass api_key=...",
            )

    def __str__(self) -> str:
        """Return a redacted, developer-friendly representation."""
        return (
            f"Config(provider={self.provider!r}, model={self.model!r}, "
            f"api_key={'[REDACTED]' if self.api_key else None})"
        )

    __repr__ = __str__
