"""Model-family quirk resolution and option rewriting."""

from __future__ import annotations

from hypothesis import given, settings
from hypothesis import strategies as st
import pytest

from castor.providers import OpenAIProvider
from castor.providers.quirks import (
    ANTHROPIC_RULES,
    OPENAI_RULES,
    ModelRule,
    Quirk,
    apply_option_quirks,
    contains,
    prefix,
    resolve_quirks,
)
from tests.conftest import decode

pytestmark = pytest.mark.unit

_model_suffix = st.text(alphabet="abcdefghijklmnopqrstuvwxyz0123456789-.", max_size=16)


# =============================================================================
# Rule tables
# =============================================================================


@pytest.mark.parametrize(
    ("model", "expected"),
    [
        ("gpt-4", Quirk.NONE),
        ("gpt-3.5-turbo", Quirk.NONE),
        ("gpt-4o", Quirk.MAX_COMPLETION_TOKENS),
        ("gpt-4o-mini", Quirk.MAX_COMPLETION_TOKENS),
        (
            "o1-mini",
            Quirk.MAX_COMPLETION_TOKENS
            | Quirk.REASONING_EFFORT
            | Quirk.NO_TEMPERATURE
            | Quirk.NO_TOOL_CHOICE
            | Quirk.DEVELOPER_ROLE,
        ),
        (
            "gpt-5-nano",
            Quirk.MAX_COMPLETION_TOKENS
            | Quirk.REASONING_EFFORT
            | Quirk.NO_TEMPERATURE
            | Quirk.NO_TOOL_CHOICE
            | Quirk.DEVELOPER_ROLE,
        ),
        (
            "gpt-4o-search-preview",
            Quirk.MAX_COMPLETION_TOKENS | Quirk.WEB_SEARCH_OPTIONS,
        ),
    ],
)
def test_openai_rules(model: str, expected: Quirk) -> None:
    assert resolve_quirks(OPENAI_RULES, model) == expected


def test_resolution_is_case_insensitive() -> None:
    assert resolve_quirks(OPENAI_RULES, " O3-Mini ") == resolve_quirks(
        OPENAI_RULES, "o3-mini"
    )


@pytest.mark.parametrize(
    ("model", "expected"),
    [
        ("claude-3-5-haiku-latest", Quirk.NONE),
        ("claude-sonnet-4-5-20250929", Quirk.EXCLUSIVE_SAMPLING),
        ("claude-opus-4-1", Quirk.EXCLUSIVE_SAMPLING),
    ],
)
def test_anthropic_rules(model: str, expected: Quirk) -> None:
    assert resolve_quirks(ANTHROPIC_RULES, model) == expected


def test_predicate_builders() -> None:
    assert prefix("o1", "o3")("o3-mini")
    assert not prefix("o1")("gpt-o1")
    assert contains("4o")("gpt-4o-mini")
    assert not contains("4o")("gpt-4")


def test_appended_rule_extends_table_without_code_changes() -> None:
    rules = (*OPENAI_RULES, ModelRule("acme", prefix("acme-"), Quirk.NO_TEMPERATURE))
    provider = OpenAIProvider("sk-test", "acme-large", rules=rules)

    request = decode(provider.build("hi", {"temperature": 0.3, "seed": 7}))

    assert "temperature" not in request
    assert request["seed"] == 7


# =============================================================================
# apply_option_quirks
# =============================================================================


def test_max_tokens_renamed_for_completion_token_families() -> None:
    out = apply_option_quirks(Quirk.MAX_COMPLETION_TOKENS, {"max_tokens": 100})
    assert out == {"max_completion_tokens": 100}


def test_max_completion_tokens_renamed_back_for_legacy_families() -> None:
    out = apply_option_quirks(Quirk.NONE, {"max_completion_tokens": 50})
    assert out == {"max_tokens": 50}


def test_reasoning_effort_dropped_unless_supported() -> None:
    assert apply_option_quirks(Quirk.NONE, {"reasoning_effort": "low"}) == {}
    assert apply_option_quirks(
        Quirk.REASONING_EFFORT, {"reasoning_effort": "low"}
    ) == {"reasoning_effort": "low"}


def test_exclusive_sampling_keeps_temperature() -> None:
    out = apply_option_quirks(
        Quirk.EXCLUSIVE_SAMPLING, {"temperature": 0.5, "top_p": 0.9}
    )
    assert out == {"temperature": 0.5}

    only_top_p = apply_option_quirks(Quirk.EXCLUSIVE_SAMPLING, {"top_p": 0.9})
    assert only_top_p == {"top_p": 0.9}


def test_input_options_are_not_mutated() -> None:
    options = {"max_tokens": 10, "temperature": 1.0}
    apply_option_quirks(Quirk.MAX_COMPLETION_TOKENS | Quirk.NO_TEMPERATURE, options)
    assert options == {"max_tokens": 10, "temperature": 1.0}


# =============================================================================
# Properties over built requests
# =============================================================================


@given(
    family=st.sampled_from(["o1", "o3", "o4"]),
    suffix=_model_suffix,
    temperature=st.floats(min_value=0, max_value=2),
)
@settings(max_examples=10, deadline=None, derandomize=True)
def test_reasoning_families_never_send_temperature(
    family: str, suffix: str, temperature: float
) -> None:
    provider = OpenAIProvider("sk-test", family + suffix)
    request = decode(provider.build("hi", {"temperature": temperature}))
    assert "temperature" not in request


@given(
    model=_model_suffix,
    key=st.sampled_from(["max_tokens", "max_completion_tokens"]),
    limit=st.integers(min_value=1, max_value=4096),
)
@settings(max_examples=10, deadline=None, derandomize=True)
def test_exactly_one_output_limit_key_survives(model: str, key: str, limit: int) -> None:
    provider = OpenAIProvider("sk-test", model or "gpt-4")
    request = decode(provider.build("hi", {key: limit}))

    present = [k for k in ("max_tokens", "max_completion_tokens") if k in request]
    assert len(present) == 1
    assert request[present[0]] == limit
