from __future__ import annotations

import dataclasses

import pytest

from castor.config import Config
from castor.errors import ConfigurationError
from castor.options import GenerationOptions
from castor.providers import AnthropicProvider, OpenAIProvider, Provider, get_provider
from castor.retry import RetryPolicy

pytestmark = pytest.mark.unit


def test_api_key_resolved_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "sk-env")

    config = Config(provider="openai", model="gpt-4o-mini")

    assert config.api_key == "sk-env"


def test_anthropic_key_uses_its_own_env_var(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "sk-openai")
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant")

    config = Config(provider="anthropic", model="claude-3-5-haiku-latest")

    assert config.api_key == "sk-ant"


def test_missing_api_key_raises_with_env_var_hint() -> None:
    with pytest.raises(ConfigurationError) as exc:
        Config(provider="openai", model="gpt-4o-mini")

    assert "OPENAI_API_KEY" in (exc.value.hint or "")


def test_unknown_provider_rejected() -> None:
    with pytest.raises(ConfigurationError) as exc:
        Config(provider="gemini", model="x", api_key="k")  # type: ignore[arg-type]

    assert "openai" in (exc.value.hint or "")


@pytest.mark.parametrize("model", ["", "   "])
def test_blank_model_rejected(model: str) -> None:
    with pytest.raises(ConfigurationError):
        Config(provider="openai", model=model, api_key="k")


def test_model_is_stripped() -> None:
    assert Config(provider="openai", model=" gpt-4o ", api_key="k").model == "gpt-4o"


def test_non_positive_timeout_rejected() -> None:
    with pytest.raises(ConfigurationError):
        Config(provider="openai", model="gpt-4o", api_key="k", timeout_s=0)


def test_options_mapping_coerced() -> None:
    config = Config(
        provider="openai", model="gpt-4o", api_key="k", options={"temperature": 0.2}
    )

    assert isinstance(config.options, GenerationOptions)
    assert config.options.temperature == 0.2


def test_invalid_options_surface_as_configuration_error() -> None:
    with pytest.raises(ConfigurationError):
        Config(provider="openai", model="gpt-4o", api_key="k", options={"top_p": 9})


def test_repr_redacts_api_key() -> None:
    config = Config(provider="openai", model="gpt-4o", api_key="sk-secret")

    assert "sk-secret" not in repr(config)
    assert "sk-secret" not in str(config)
    assert "[REDACTED]" in repr(config)


def test_config_is_frozen() -> None:
    config = Config(provider="openai", model="gpt-4o", api_key="k")
    with pytest.raises(dataclasses.FrozenInstanceError):
        config.model = "gpt-4"  # type: ignore[misc]


def test_default_retry_policy() -> None:
    assert Config(provider="openai", model="gpt-4o", api_key="k").retry == RetryPolicy()


@pytest.mark.parametrize(
    ("provider", "model", "expected"),
    [
        ("openai", "gpt-4o-mini", OpenAIProvider),
        ("anthropic", "claude-3-5-haiku-latest", AnthropicProvider),
    ],
)
def test_get_provider_selects_implementation(
    provider: str, model: str, expected: type
) -> None:
    config = Config(
        provider=provider,  # type: ignore[arg-type]
        model=model,
        api_key="k",
        extra_headers={"X-Trace": "1"},
        base_url="http://localhost:8080/v1/chat",
    )

    impl = get_provider(config)

    assert isinstance(impl, expected)
    assert isinstance(impl, Provider)
    assert impl.model == model
    assert impl.endpoint == "http://localhost:8080/v1/chat"
    assert impl.headers()["X-Trace"] == "1"
