"""GenerationOptions validation, merging and passthrough."""

from __future__ import annotations

from pydantic import ValidationError
import pytest

from castor.errors import ConfigurationError
from castor.options import STRUCTURAL_KEYS, GenerationOptions, coerce_options
from castor.providers._utils import split_options

pytestmark = pytest.mark.unit


def test_unknown_keys_pass_through_as_extras() -> None:
    opts = GenerationOptions(temperature=0.2, logprobs=True, top_logprobs=3)

    assert opts.extras == {"logprobs": True, "top_logprobs": 3}
    assert opts.to_wire() == {"temperature": 0.2, "logprobs": True, "top_logprobs": 3}


def test_to_wire_omits_unset_defaults() -> None:
    assert GenerationOptions().to_wire() == {}


@pytest.mark.parametrize(
    "kwargs",
    [{"temperature": -0.1}, {"top_p": 1.5}, {"max_tokens": 0}],
)
def test_out_of_range_values_rejected(kwargs: dict) -> None:
    with pytest.raises(ValidationError):
        GenerationOptions(**kwargs)


def test_blank_text_fields_normalize_to_none() -> None:
    opts = GenerationOptions(system_prompt="   ", reasoning_effort=" high ")

    assert opts.system_prompt is None
    assert opts.reasoning_effort == "high"


def test_options_are_frozen() -> None:
    opts = GenerationOptions(temperature=0.1)
    with pytest.raises(ValidationError):
        opts.temperature = 0.9  # type: ignore[misc]


def test_merged_over_caller_wins_key_by_key() -> None:
    defaults = GenerationOptions(temperature=0.5, max_tokens=10)
    caller = GenerationOptions(temperature=0.9, seed=1)

    assert caller.merged_over(defaults) == {
        "temperature": 0.9,
        "max_tokens": 10,
        "seed": 1,
    }


def test_coerce_options_accepts_mapping_and_none() -> None:
    assert coerce_options(None) == GenerationOptions()
    assert coerce_options({"seed": 3}).seed == 3

    opts = GenerationOptions(seed=4)
    assert coerce_options(opts) is opts


def test_coerce_options_wraps_validation_errors() -> None:
    with pytest.raises(ConfigurationError) as exc:
        coerce_options({"temperature": -1})

    assert "temperature" in (exc.value.hint or "")


def test_coerce_options_rejects_non_mappings() -> None:
    with pytest.raises(ConfigurationError):
        coerce_options(["temperature", 0.2])  # type: ignore[arg-type]


def test_split_options_separates_structural_keys() -> None:
    structural, passthrough = split_options(
        {
            "system_prompt": "be brief",
            "tool_choice": "auto",
            "strict_tools": True,
            "temperature": 0.3,
            "logprobs": True,
        },
        GenerationOptions(seed=9),
    )

    assert structural == {
        "system_prompt": "be brief",
        "tool_choice": "auto",
        "strict_tools": True,
    }
    assert passthrough == {"temperature": 0.3, "logprobs": True, "seed": 9}
    assert not STRUCTURAL_KEYS & passthrough.keys()


def test_split_options_always_drops_stream() -> None:
    structural, passthrough = split_options(
        {"stream": True, "seed": 1}, GenerationOptions(stream=False)
    )
    assert "stream" not in structural
    assert passthrough == {"seed": 1}
