"""Shared utilities for provider implementations."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
import json
import logging
from typing import Any

from pydantic import BaseModel

from castor.errors import EncodingError, MalformedResponseError, SchemaError
from castor.options import STRUCTURAL_KEYS, GenerationOptions, coerce_options
from castor.types import Tool, tool_from_dict

log = logging.getLogger(__name__)

_SCHEMA_KEYS = ("type", "properties", "required", "items")


def sanitize_schema(schema: Any) -> Any:
    """Reduce a JSON schema to the subset strict structured output accepts.

    Keeps only ``type``, ``properties``, ``required`` and ``items`` (recursing
    into property values and ``items``) and pins ``additionalProperties`` to
    False on every object node. Everything else is dropped silently. Non-dict
    input is returned unchanged, so this never fails.
    """
    if not isinstance(schema, dict):
        return schema

    result: dict[str, Any] = {}
    for key in _SCHEMA_KEYS:
        if key not in schema:
            continue
        value = schema[key]
        if key == "properties":
            props = value if isinstance(value, dict) else {}
            result[key] = {name: sanitize_schema(sub) for name, sub in props.items()}
        elif key == "items":
            result[key] = sanitize_schema(value)
        else:
            result[key] = value

    if schema.get("type") == "object":
        result["additionalProperties"] = False
    return result


def coerce_schema(schema: Any, *, provider: str | None = None) -> Any:
    """Turn caller schema input into a JSON value.

    Accepts JSON text (``str``/``bytes``), a dict, a pydantic model class, or
    any JSON-serializable value.

    Raises:
        SchemaError: When the input is not valid structured data.
    """
    if isinstance(schema, type) and issubclass(schema, BaseModel):
        return schema.model_json_schema()
    if isinstance(schema, dict):
        return schema
    if isinstance(schema, (str, bytes, bytearray)):
        try:
            return json.loads(schema)
        except (ValueError, UnicodeDecodeError) as e:
            raise SchemaError(
                f"Failed to parse schema as JSON: {e}",
                hint="Pass a JSON Schema dict or valid JSON text.",
                provider=provider,
            ) from e
    try:
        return json.loads(json.dumps(schema))
    except (TypeError, ValueError) as e:
        raise SchemaError(
            f"Schema of type {type(schema).__name__} is not JSON-serializable",
            hint="Pass a JSON Schema dict or valid JSON text.",
            provider=provider,
        ) from e


def encode_request(payload: dict[str, Any], *, provider: str) -> bytes:
    """Serialize an assembled request body to JSON bytes.

    Raises:
        EncodingError: When the payload holds values JSON cannot represent.
    """
    try:
        return json.dumps(payload, ensure_ascii=False, allow_nan=False).encode("utf-8")
    except (TypeError, ValueError) as e:
        log.error("Failed to encode %s request: %s", provider, e)
        raise EncodingError(
            f"Failed to encode {provider} request: {e}",
            hint="Options and tool parameters must be JSON-serializable.",
            provider=provider,
        ) from e


def decode_body(body: bytes | str, *, provider: str) -> dict[str, Any]:
    """Decode a response body into a JSON object."""
    try:
        data = json.loads(body)
    except (ValueError, UnicodeDecodeError) as e:
        raise MalformedResponseError(
            f"Error parsing {provider} response: {e}",
            provider=provider,
            field="body",
        ) from e
    if not isinstance(data, dict):
        raise MalformedResponseError(
            f"Expected a JSON object from {provider}, got {type(data).__name__}",
            provider=provider,
            field="body",
        )
    return data


def split_options(
    options: GenerationOptions | Mapping[str, Any] | None,
    defaults: GenerationOptions | None,
) -> tuple[dict[str, Any], dict[str, Any]]:
    """Merge caller options over provider defaults.

    Returns ``(structural, passthrough)``: the structural keys the builders
    handle themselves, and every other key to copy onto the request. ``stream``
    is dropped from both; only the streaming builders set it.
    """
    merged = coerce_options(options).merged_over(defaults)
    merged.pop("stream", None)
    structural = {key: merged.pop(key) for key in STRUCTURAL_KEYS if key in merged}
    return structural, merged


def collect_tools(
    tools: Sequence[Tool], structural: Mapping[str, Any]
) -> list[Tool]:
    """Return explicit tools plus any passed loosely under ``options["tools"]``."""
    collected = list(tools)
    for raw in structural.get("tools") or ():
        collected.append(tool_from_dict(raw) if isinstance(raw, dict) else raw)
    return collected


def format_function_call(name: str, arguments: Any) -> str:
    """Render a tool call as ``name({...})`` with stable key order."""
    rendered = json.dumps(arguments, sort_keys=True, ensure_ascii=False)
    return f"{name}({rendered})"


def as_count(value: Any) -> int:
    """Coerce a reported token count to a non-negative int (missing -> 0)."""
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)) and value > 0:
        return int(value)
    return 0
