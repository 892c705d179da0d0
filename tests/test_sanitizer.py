"""Schema sanitizer and schema coercion behavior."""

from __future__ import annotations

from typing import Any

from hypothesis import given, settings
from hypothesis import strategies as st
from pydantic import BaseModel
import pytest

from castor.errors import SchemaError
from castor.providers._utils import coerce_schema, sanitize_schema

pytestmark = pytest.mark.unit

_ALLOWED_KEYS = {"type", "properties", "required", "items", "additionalProperties"}

_leaf_schemas = st.fixed_dictionaries(
    {"type": st.sampled_from(["string", "integer", "number", "boolean"])},
    optional={
        "format": st.sampled_from(["email", "date-time", "uri"]),
        "description": st.text(max_size=10),
        "minLength": st.integers(min_value=0, max_value=5),
    },
)

_schemas = st.recursive(
    _leaf_schemas,
    lambda children: st.one_of(
        st.fixed_dictionaries(
            {
                "type": st.just("object"),
                "properties": st.dictionaries(
                    st.text(min_size=1, max_size=5), children, max_size=3
                ),
            },
            optional={
                "required": st.lists(st.text(min_size=1, max_size=5), max_size=2),
                "additionalProperties": st.booleans(),
                "title": st.text(max_size=5),
            },
        ),
        st.fixed_dictionaries(
            {"type": st.just("array"), "items": children},
            optional={"minItems": st.integers(min_value=0, max_value=3)},
        ),
    ),
    max_leaves=8,
)


def _object_nodes(schema: Any) -> list[dict[str, Any]]:
    """Collect every dict node reachable through properties/items."""
    if not isinstance(schema, dict):
        return []
    nodes = [schema]
    for sub in (schema.get("properties") or {}).values():
        nodes.extend(_object_nodes(sub))
    if "items" in schema:
        nodes.extend(_object_nodes(schema["items"]))
    return nodes


# =============================================================================
# sanitize_schema
# =============================================================================


def test_drops_unsupported_keys_and_closes_objects() -> None:
    schema = {
        "$schema": "http://json-schema.org/draft-07/schema#",
        "title": "Person",
        "type": "object",
        "properties": {"email": {"type": "string", "format": "email"}},
        "required": ["email"],
    }

    assert sanitize_schema(schema) == {
        "type": "object",
        "properties": {"email": {"type": "string"}},
        "required": ["email"],
        "additionalProperties": False,
    }


def test_recurses_into_array_items() -> None:
    schema = {
        "type": "array",
        "items": {"type": "object", "properties": {"n": {"type": "integer"}}},
        "minItems": 1,
    }

    assert sanitize_schema(schema) == {
        "type": "array",
        "items": {
            "type": "object",
            "properties": {"n": {"type": "integer"}},
            "additionalProperties": False,
        },
    }


def test_overrides_caller_additional_properties() -> None:
    schema = {"type": "object", "properties": {}, "additionalProperties": True}

    assert sanitize_schema(schema)["additionalProperties"] is False


def test_object_without_properties_still_closed() -> None:
    assert sanitize_schema({"type": "object"}) == {
        "type": "object",
        "additionalProperties": False,
    }


@pytest.mark.parametrize("value", ["text", 3, None, [1, 2], True])
def test_non_dict_input_is_returned_unchanged(value: Any) -> None:
    assert sanitize_schema(value) == value


def test_does_not_mutate_input() -> None:
    schema = {"type": "object", "properties": {"a": {"type": "string", "format": "x"}}}
    snapshot = {"type": "object", "properties": {"a": {"type": "string", "format": "x"}}}

    sanitize_schema(schema)

    assert schema == snapshot


@given(schema=_schemas)
@settings(max_examples=10, deadline=None, derandomize=True)
def test_sanitize_is_idempotent(schema: dict[str, Any]) -> None:
    once = sanitize_schema(schema)
    assert sanitize_schema(once) == once


@given(schema=_schemas)
@settings(max_examples=10, deadline=None, derandomize=True)
def test_every_object_node_is_closed_and_whitelisted(schema: dict[str, Any]) -> None:
    for node in _object_nodes(sanitize_schema(schema)):
        assert set(node) <= _ALLOWED_KEYS
        if node.get("type") == "object":
            assert node["additionalProperties"] is False
        else:
            assert "additionalProperties" not in node


# =============================================================================
# coerce_schema
# =============================================================================


class _Person(BaseModel):
    name: str
    age: int


def test_coerce_accepts_json_text_and_bytes() -> None:
    assert coerce_schema('{"type": "string"}') == {"type": "string"}
    assert coerce_schema(b'{"type": "integer"}') == {"type": "integer"}


def test_coerce_accepts_pydantic_model_class() -> None:
    result = sanitize_schema(coerce_schema(_Person))

    assert result == {
        "type": "object",
        "properties": {"name": {"type": "string"}, "age": {"type": "integer"}},
        "required": ["name", "age"],
        "additionalProperties": False,
    }


def test_coerce_passes_json_values_through() -> None:
    assert coerce_schema(["a", 1]) == ["a", 1]


def test_coerce_rejects_invalid_json_text() -> None:
    with pytest.raises(SchemaError) as exc:
        coerce_schema("{not json", provider="openai")

    assert exc.value.provider == "openai"
    assert exc.value.hint is not None


def test_coerce_rejects_unserializable_values() -> None:
    with pytest.raises(SchemaError):
        coerce_schema(object())
