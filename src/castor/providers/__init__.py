"""Provider implementations."""

from __future__ import annotations

from typing import TYPE_CHECKING

from castor.errors import ConfigurationError

from .anthropic import AnthropicProvider
from .base import Provider, ProviderCapabilities
from .models import END_OF_STREAM, SKIP, StreamSignal
from .openai import OpenAIProvider

if TYPE_CHECKING:
    from castor.config import Config


def get_provider(config: Config) -> Provider:
    """Get the provider configured by *config*."""
    if not config.api_key:
        raise ConfigurationError(
            "api_key required for real API",
            hint=f"Set the {config.provider} API key or pass Config(api_key=...).",
        )

    kwargs = {
        "options": config.options,
        "extra_headers": config.extra_headers,
        "base_url": config.base_url,
    }
    if config.provider == "openai":
        return OpenAIProvider(config.api_key, config.model, **kwargs)
    if config.provider == "anthropic":
        return AnthropicProvider(config.api_key, config.model, **kwargs)

    raise ConfigurationError(
        f"Unknown provider: {config.provider!r}",
        hint="Supported providers: 'openai', 'anthropic'",
    )


__all__ = [
    "END_OF_STREAM",
    "SKIP",
    "AnthropicProvider",
    "OpenAIProvider",
    "Provider",
    "ProviderCapabilities",
    "StreamSignal",
    "get_provider",
]
