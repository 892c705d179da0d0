"""Pytest configuration and fixtures.

Provides environment isolation, logging configuration, shared provider
fixtures, and automatic API test skipping. Fixtures under "Environment
Isolation" are autouse.
"""

from __future__ import annotations

from contextlib import suppress
import json
import logging
import os
from typing import Any

import pytest

from castor.providers import AnthropicProvider, OpenAIProvider

OPENAI_MODEL = "gpt-4o-mini"
ANTHROPIC_MODEL = "claude-3-5-haiku-latest"

# =============================================================================
# Environment Isolation (Autouse)
# =============================================================================


@pytest.fixture(autouse=True)
def block_dotenv(request, monkeypatch):
    """Prevent python-dotenv from loading project .env files during tests.

    Opt-out: @pytest.mark.allow_dotenv
    """
    if request.node.get_closest_marker("allow_dotenv"):
        return
    with suppress(Exception):
        monkeypatch.setattr(
            "dotenv.load_dotenv", lambda *_args, **_kwargs: False, raising=False
        )


@pytest.fixture(autouse=True)
def isolate_provider_env(request, monkeypatch):
    """Ensure a clean provider environment for each test.

    Clears OPENAI_* and ANTHROPIC_* env vars to prevent test pollution.
    Opt-out: @pytest.mark.allow_env_pollution or @pytest.mark.api
    """
    if request.node.get_closest_marker("allow_env_pollution") or (
        "api" in request.node.keywords
    ):
        return

    for key in list(os.environ.keys()):
        if key.startswith(("OPENAI_", "ANTHROPIC_")):
            monkeypatch.delenv(key, raising=False)


# =============================================================================
# Logging
# =============================================================================


@pytest.fixture(scope="session", autouse=True)
def quiet_noisy_libraries():
    """Suppress noisy third-party loggers."""
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


# =============================================================================
# Provider Fixtures
# =============================================================================


@pytest.fixture
def openai_provider() -> OpenAIProvider:
    """OpenAI provider targeting a plain chat model."""
    return OpenAIProvider("sk-test", OPENAI_MODEL)


@pytest.fixture
def anthropic_provider() -> AnthropicProvider:
    """Anthropic provider targeting a model without sampling quirks."""
    return AnthropicProvider("sk-ant-test", ANTHROPIC_MODEL)


def decode(body: bytes) -> dict[str, Any]:
    """Decode a built request body for assertions."""
    data = json.loads(body)
    assert isinstance(data, dict)
    return data


def encode(payload: Any) -> bytes:
    """Encode a fake provider response body."""
    return json.dumps(payload).encode("utf-8")


# =============================================================================
# Pytest Hooks
# =============================================================================

API_TESTS_REASON = "API tests require ENABLE_API_TESTS=1"


def _api_tests_enabled() -> bool:
    return bool(os.getenv("ENABLE_API_TESTS"))


def pytest_collection_modifyitems(items):
    """Automatically skip API tests when not explicitly enabled."""
    if _api_tests_enabled():
        return
    skip_api = pytest.mark.skip(reason=API_TESTS_REASON)
    for item in items:
        if "api" in item.keywords:
            item.add_marker(skip_api)
