"""Anthropic Messages API provider: request builder, response parser, stream decoder."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
import json
import logging
from typing import Any

from castor.errors import (
    EmptyChunkError,
    EmptyResponseError,
    MalformedChunkError,
    NoContentError,
    StreamError,
)
from castor.options import GenerationOptions, coerce_options
from castor.providers._utils import (
    as_count,
    coerce_schema,
    collect_tools,
    decode_body,
    encode_request,
    format_function_call,
    sanitize_schema,
    split_options,
)
from castor.providers.base import ProviderCapabilities
from castor.providers.models import END_OF_STREAM, SKIP, ChunkResult
from castor.providers.quirks import (
    ANTHROPIC_RULES,
    ModelRule,
    Quirk,
    apply_option_quirks,
    resolve_quirks,
)
from castor.types import (
    ANNOTATIONS_KEY,
    CITATIONS_KEY,
    WEB_SEARCH_CALLS_KEY,
    Annotation,
    FunctionTool,
    Message,
    ResponseDetails,
    Result,
    Source,
    TokenUsage,
    Tool,
    ToolCall,
    URLCitation,
    WebSearchAction,
    WebSearchCall,
    WebSearchTool,
)

log = logging.getLogger(__name__)

_PROVIDER = "anthropic"
_ENDPOINT = "https://api.anthropic.com/v1/messages"
_API_VERSION = "2023-06-01"
_DEFAULT_MAX_TOKENS = 4096
_WEB_SEARCH_TOOL_TYPE = "web_search_20250305"
_SCHEMA_TOOL_NAME = "structured_response"
_CITATION_TYPE = "web_search_result_location"
# OpenAI-only sampling knobs the Messages API rejects as unknown fields.
_UNSUPPORTED_OPTIONS = frozenset(
    {"frequency_penalty", "presence_penalty", "seed", "n", "logprobs", "top_logprobs"}
)


class AnthropicProvider:
    """Anthropic Messages API provider."""

    def __init__(
        self,
        api_key: str,
        model: str,
        *,
        options: GenerationOptions | Mapping[str, Any] | None = None,
        extra_headers: Mapping[str, str] | None = None,
        base_url: str | None = None,
        rules: Sequence[ModelRule] = ANTHROPIC_RULES,
    ) -> None:
        """Initialize with credentials, target model and default options."""
        self.api_key = api_key
        self._model = model
        self._defaults = coerce_options(options)
        self._extra_headers = dict(extra_headers or {})
        self._endpoint = base_url or _ENDPOINT
        self._quirks = resolve_quirks(rules, model)

    @property
    def name(self) -> str:
        """Provider identifier."""
        return _PROVIDER

    @property
    def model(self) -> str:
        """Model identifier every request targets."""
        return self._model

    @property
    def endpoint(self) -> str:
        """Messages endpoint URL."""
        return self._endpoint

    @property
    def quirks(self) -> Quirk:
        """Quirks resolved for the configured model."""
        return self._quirks

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Return supported feature flags."""
        return ProviderCapabilities(
            structured_outputs=True,
            streaming=True,
            function_tools=True,
            web_search_tool=True,
            cache_usage=True,
        )

    def headers(self) -> dict[str, str]:
        """API key and version headers, then any extra headers."""
        headers = {
            "Content-Type": "application/json",
            "x-api-key": self.api_key,
            "anthropic-version": _API_VERSION,
        }
        headers.update(self._extra_headers)
        return headers

    def set_extra_headers(self, extra_headers: Mapping[str, str]) -> None:
        """Replace the extra headers sent with every request."""
        self._extra_headers = dict(extra_headers)

    # --- Request building ---

    def build(
        self,
        prompt: str,
        options: GenerationOptions | Mapping[str, Any] | None = None,
        tools: Sequence[Tool] = (),
    ) -> bytes:
        """Build a request for a single user prompt."""
        return self._build([Message(role="user", content=prompt)], options, tools)

    def build_messages(
        self,
        messages: Sequence[Message],
        options: GenerationOptions | Mapping[str, Any] | None = None,
        tools: Sequence[Tool] = (),
    ) -> bytes:
        """Build a request replaying *messages*; system turns move to ``system``."""
        return self._build(messages, options, tools)

    def build_stream(
        self,
        prompt: str | Sequence[Message],
        options: GenerationOptions | Mapping[str, Any] | None = None,
        tools: Sequence[Tool] = (),
    ) -> bytes:
        """Build a streaming request."""
        return self._build(_as_messages(prompt), options, tools, stream=True)

    def build_with_schema(
        self,
        prompt: str | Sequence[Message],
        schema: Any,
        options: GenerationOptions | Mapping[str, Any] | None = None,
    ) -> bytes:
        """Build a structured-output request as a forced tool call.

        The sanitized schema becomes the ``input_schema`` of a single tool the
        model is required to call; ``parse`` returns that tool input as JSON.
        """
        clean_schema = sanitize_schema(coerce_schema(schema, provider=_PROVIDER))
        log.debug("Sanitized schema for %s: %s", self._model, clean_schema)

        structural, passthrough = split_options(options, self._defaults)
        request = self._base_request(_as_messages(prompt), structural)
        request["tools"] = [
            {
                "name": _SCHEMA_TOOL_NAME,
                "description": "Respond with output matching this schema.",
                "input_schema": clean_schema,
            }
        ]
        request["tool_choice"] = {"type": "tool", "name": _SCHEMA_TOOL_NAME}
        return self._finalize(request, passthrough)

    def _build(
        self,
        messages: Sequence[Message],
        options: GenerationOptions | Mapping[str, Any] | None,
        tools: Sequence[Tool],
        *,
        stream: bool = False,
    ) -> bytes:
        structural, passthrough = split_options(options, self._defaults)
        request = self._base_request(messages, structural)
        if stream:
            request["stream"] = True

        entries = [_tool_entry(t) for t in collect_tools(tools, structural)]
        if entries:
            request["tools"] = entries
            mapped = _map_tool_choice(structural.get("tool_choice"))
            if mapped is not None and Quirk.NO_TOOL_CHOICE not in self._quirks:
                request["tool_choice"] = mapped

        return self._finalize(request, passthrough)

    def _base_request(
        self, messages: Sequence[Message], structural: Mapping[str, Any]
    ) -> dict[str, Any]:
        system_parts: list[str] = []
        system_prompt = structural.get("system_prompt")
        if system_prompt:
            system_parts.append(system_prompt)

        wire_messages: list[dict[str, Any]] = []
        for msg in messages:
            if msg.role in ("system", "developer"):
                if msg.content:
                    system_parts.append(msg.content)
                continue
            _append_message(wire_messages, _message_entry(msg))

        request: dict[str, Any] = {"model": self._model, "messages": wire_messages}
        if system_parts:
            request["system"] = "\n\n".join(system_parts)
        return request

    def _finalize(self, request: dict[str, Any], passthrough: dict[str, Any]) -> bytes:
        resolved = apply_option_quirks(self._quirks, passthrough, model=self._model)
        for key in _UNSUPPORTED_OPTIONS.intersection(resolved):
            log.debug("Dropped %s unsupported by the Messages API", key)
            del resolved[key]
        stop = resolved.pop("stop", None)
        if stop is not None:
            resolved["stop_sequences"] = [stop] if isinstance(stop, str) else list(stop)

        resolved.setdefault("max_tokens", _DEFAULT_MAX_TOKENS)
        for key, value in resolved.items():
            if key in request:
                log.debug("Ignoring option %r; set structurally", key)
                continue
            request[key] = value
        return encode_request(request, provider=_PROVIDER)

    # --- Response parsing ---

    def parse(self, body: bytes | str) -> Result:
        """Parse a Messages API response.

        Text blocks are concatenated in order; their web-search citations are
        anchored to the span the block occupies in the concatenated text.

        Raises:
            MalformedResponseError: When the body is not a JSON object.
            EmptyResponseError: When the response has no content blocks.
            NoContentError: When no block carries text or a tool call.
        """
        data = decode_body(body, provider=_PROVIDER)
        if data.get("type") == "error":
            error = data.get("error") if isinstance(data.get("error"), dict) else {}
            raise EmptyResponseError(
                f"error response from API: {error.get('message', '')}".rstrip(": "),
                provider=_PROVIDER,
                field="error",
            )

        content = data.get("content")
        if not isinstance(content, list) or not content:
            raise EmptyResponseError(
                "empty response from API", provider=_PROVIDER, field="content"
            )

        parts: list[str] = []
        offset = 0
        annotations: list[Annotation] = []
        citations: list[URLCitation] = []
        tool_calls: list[ToolCall] = []
        searches: dict[str, dict[str, Any]] = {}

        for idx, block in enumerate(content):
            if not isinstance(block, dict):
                continue
            block_type = block.get("type")

            if block_type == "text":
                text = block.get("text") if isinstance(block.get("text"), str) else ""
                start, end = offset, offset + len(text)
                for raw in block.get("citations") or ():
                    if not isinstance(raw, dict):
                        continue
                    ann = Annotation(
                        type=_as_str(raw.get("type")),
                        start_index=start,
                        end_index=end,
                        url=_as_str(raw.get("url")),
                        title=_as_str(raw.get("title")),
                    )
                    annotations.append(ann)
                    if ann.type == _CITATION_TYPE:
                        citations.append(
                            URLCitation(
                                start_index=start,
                                end_index=end,
                                url=ann.url,
                                title=ann.title,
                            )
                        )
                parts.append(text)
                offset = end

            elif block_type == "server_tool_use":
                tool_input = block.get("input") if isinstance(block.get("input"), dict) else {}
                searches[_as_str(block.get("id"))] = {
                    "query": _as_str(tool_input.get("query")),
                    "status": "in_progress",
                    "sources": (),
                }

            elif block_type == "web_search_tool_result":
                record = searches.setdefault(
                    _as_str(block.get("tool_use_id")),
                    {"query": "", "status": "in_progress", "sources": ()},
                )
                results = block.get("content")
                if isinstance(results, list):
                    record["status"] = "completed"
                    record["sources"] = tuple(
                        Source(
                            url=_as_str(r.get("url")),
                            title=_as_str(r.get("title")),
                            type=_as_str(r.get("type")),
                        )
                        for r in results
                        if isinstance(r, dict)
                    )
                elif isinstance(results, dict):
                    code = _as_str(results.get("error_code"))
                    record["status"] = f"failed:{code}" if code else "failed"

            elif block_type == "tool_use":
                tool_calls.append(
                    ToolCall(
                        id=_as_str(block.get("id")),
                        name=_as_str(block.get("name")),
                        arguments=block.get("input", {}),
                    )
                )
            else:
                log.debug("Ignoring %s content block %d", block_type, idx)

        search_calls = tuple(
            WebSearchCall(
                id=call_id,
                status=record["status"],
                action=WebSearchAction(
                    type="search", query=record["query"], sources=record["sources"]
                ),
            )
            for call_id, record in searches.items()
        )
        metadata: dict[str, Any] = {}
        if search_calls or annotations:
            metadata = {
                WEB_SEARCH_CALLS_KEY: search_calls,
                ANNOTATIONS_KEY: tuple(annotations),
                CITATIONS_KEY: tuple(citations),
            }

        details = ResponseDetails(
            id=_as_str(data.get("id")),
            model=_as_str(data.get("model")),
            usage=_parse_usage(data.get("usage")),
            metadata=metadata,
            tool_calls=tuple(tool_calls),
            finish_reason=_as_str(data.get("stop_reason")) or None,
        )

        text = "".join(parts)
        if text:
            return Result(text, details)
        if len(tool_calls) == 1 and tool_calls[0].name == _SCHEMA_TOOL_NAME:
            return Result(json.dumps(tool_calls[0].arguments, ensure_ascii=False), details)
        if tool_calls:
            rendered = "\n".join(
                format_function_call(call.name, call.arguments) for call in tool_calls
            )
            return Result(rendered, details)
        raise NoContentError(
            "no text or tool use in response", provider=_PROVIDER, field="content"
        )

    # --- Streaming ---

    def decode_chunk(self, chunk: bytes | str) -> ChunkResult:
        """Decode one server-sent event line.

        ``event:`` lines and non-text events are skipped; the event type
        carried in each ``data:`` payload decides the outcome.
        """
        text = chunk.decode("utf-8") if isinstance(chunk, (bytes, bytearray)) else chunk
        text = text.strip()
        if not text:
            raise EmptyChunkError("empty chunk", provider=_PROVIDER)
        if text.startswith((":", "event:")):
            return SKIP
        if text.startswith("data:"):
            text = text[len("data:") :].strip()
            if not text:
                raise EmptyChunkError("empty chunk", provider=_PROVIDER)

        try:
            event = json.loads(text)
        except ValueError as e:
            raise MalformedChunkError(f"malformed event: {e}", provider=_PROVIDER) from e
        if not isinstance(event, dict) or not isinstance(event.get("type"), str):
            raise MalformedChunkError("event has no type", provider=_PROVIDER)

        event_type = event["type"]
        if event_type == "message_stop":
            return END_OF_STREAM
        if event_type == "error":
            error = event.get("error") if isinstance(event.get("error"), dict) else {}
            raise StreamError(
                f"stream error: {error.get('type', 'unknown')}: {error.get('message', '')}",
                provider=_PROVIDER,
            )
        if event_type == "content_block_delta":
            delta = event.get("delta") if isinstance(event.get("delta"), dict) else {}
            if delta.get("type") == "text_delta" and isinstance(delta.get("text"), str):
                return delta["text"]
        return SKIP


# --- Request helpers ---


def _as_messages(prompt: str | Sequence[Message]) -> list[Message]:
    if isinstance(prompt, str):
        return [Message(role="user", content=prompt)]
    return list(prompt)


def _message_entry(msg: Message) -> dict[str, Any]:
    """Render one user/assistant/tool message as Anthropic content."""
    if msg.role == "tool":
        block: dict[str, Any] = {
            "type": "tool_result",
            "tool_use_id": msg.metadata.get("tool_call_id", ""),
            "content": msg.content,
        }
        return {"role": "user", "content": [block]}

    if msg.cache_control:
        return {
            "role": msg.role,
            "content": [
                {
                    "type": "text",
                    "text": msg.content,
                    "cache_control": {"type": msg.cache_control},
                }
            ],
        }
    return {"role": msg.role, "content": msg.content}


def _append_message(messages: list[dict[str, Any]], msg: dict[str, Any]) -> None:
    """Append *msg*, merging into the previous message when roles match.

    The Messages API requires strict user/assistant alternation.
    """
    if messages and messages[-1]["role"] == msg["role"]:
        prev = messages[-1]
        prev_content = prev["content"]
        new_content = msg["content"]
        if isinstance(prev_content, str):
            prev_content = [{"type": "text", "text": prev_content}]
        if isinstance(new_content, str):
            new_content = [{"type": "text", "text": new_content}]
        prev["content"] = prev_content + new_content
    else:
        messages.append(msg)


def _tool_entry(tool: Tool) -> dict[str, Any]:
    if isinstance(tool, FunctionTool):
        return {
            "name": tool.name,
            "description": tool.description,
            "input_schema": tool.parameters,
        }
    return _web_search_entry(tool)


def _web_search_entry(tool: WebSearchTool) -> dict[str, Any]:
    entry: dict[str, Any] = {"type": _WEB_SEARCH_TOOL_TYPE, "name": "web_search"}
    if tool.max_uses is not None:
        entry["max_uses"] = tool.max_uses
    filters = tool.filters or {}
    allowed = tool.allowed_domains or filters.get("allowed_domains")
    blocked = tool.blocked_domains or filters.get("blocked_domains")
    if allowed:
        entry["allowed_domains"] = list(allowed)
    if blocked:
        entry["blocked_domains"] = list(blocked)
    if tool.user_location:
        entry["user_location"] = {"type": "approximate", **tool.user_location}
    if tool.external_web_access is not None:
        log.debug("external_web_access is not supported by Anthropic web search")
    return entry


def _map_tool_choice(tool_choice: Any) -> dict[str, Any] | None:
    """Map tool_choice to Anthropic format."""
    if tool_choice is None:
        return None
    if isinstance(tool_choice, str):
        if tool_choice == "required":
            return {"type": "any"}
        if tool_choice in ("auto", "none", "any"):
            return {"type": tool_choice}
        return {"type": "tool", "name": tool_choice}
    if isinstance(tool_choice, dict):
        if "type" in tool_choice and tool_choice["type"] != "function":
            return dict(tool_choice)
        fn = tool_choice.get("function")
        name = tool_choice.get("name") or (fn.get("name") if isinstance(fn, dict) else None)
        if name:
            return {"type": "tool", "name": name}
    return None


# --- Response helpers ---


def _as_str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _parse_usage(raw: Any) -> TokenUsage:
    if not isinstance(raw, dict):
        return TokenUsage()
    prompt = as_count(raw.get("input_tokens"))
    completion = as_count(raw.get("output_tokens"))
    return TokenUsage(
        prompt_tokens=prompt,
        completion_tokens=completion,
        total_tokens=prompt + completion,
        cache_creation_tokens=as_count(raw.get("cache_creation_input_tokens")),
        cache_read_tokens=as_count(raw.get("cache_read_input_tokens")),
    )
