"""OpenAI Chat Completions provider: request builder, response parser, stream decoder."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
import json
import logging
from typing import Any

from castor.errors import (
    EmptyChunkError,
    EmptyResponseError,
    MalformedChunkError,
    MalformedResponseError,
    NoChoicesError,
    NoContentError,
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
    OPENAI_RULES,
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

_PROVIDER = "openai"
_ENDPOINT = "https://api.openai.com/v1/chat/completions"
_SCHEMA_NAME = "structured_response"
_DONE_MARKER = "[DONE]"
_SSE_DATA_PREFIX = "data:"


class OpenAIProvider:
    """OpenAI Chat Completions provider.

    Builds wire requests for one model, applying that model family's quirks
    from an ordered rule table, and normalizes both plain completions and
    search-augmented ``output`` arrays.
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        *,
        options: GenerationOptions | Mapping[str, Any] | None = None,
        extra_headers: Mapping[str, str] | None = None,
        base_url: str | None = None,
        rules: Sequence[ModelRule] = OPENAI_RULES,
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
        """Chat Completions endpoint URL."""
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
            web_search_tool=False,
            cache_usage=True,
        )

    def headers(self) -> dict[str, str]:
        """Bearer auth and JSON content type, then any extra headers."""
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
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
        return self._build_chat([Message(role="user", content=prompt)], options, tools)

    def build_messages(
        self,
        messages: Sequence[Message],
        options: GenerationOptions | Mapping[str, Any] | None = None,
        tools: Sequence[Tool] = (),
    ) -> bytes:
        """Build a request that replays *messages* in order."""
        return self._build_chat(messages, options, tools)

    def build_stream(
        self,
        prompt: str | Sequence[Message],
        options: GenerationOptions | Mapping[str, Any] | None = None,
        tools: Sequence[Tool] = (),
    ) -> bytes:
        """Build a streaming request; same pipeline as ``build`` plus ``stream``."""
        return self._build_chat(_as_messages(prompt), options, tools, stream=True)

    def build_with_schema(
        self,
        prompt: str | Sequence[Message],
        schema: Any,
        options: GenerationOptions | Mapping[str, Any] | None = None,
    ) -> bytes:
        """Build a structured-output request constrained by *schema*.

        Raises:
            SchemaError: When *schema* is not valid structured data.
            EncodingError: When the assembled request cannot be serialized.
        """
        clean_schema = sanitize_schema(coerce_schema(schema, provider=_PROVIDER))
        log.debug("Sanitized schema for %s: %s", self._model, clean_schema)

        structural, passthrough = split_options(options, self._defaults)
        request: dict[str, Any] = {
            "model": self._model,
            "messages": self._render_messages(
                _as_messages(prompt), structural.get("system_prompt")
            ),
            "response_format": {
                "type": "json_schema",
                "json_schema": {
                    "name": _SCHEMA_NAME,
                    "schema": clean_schema,
                    "strict": True,
                },
            },
        }
        return self._finalize(request, passthrough)

    def _build_chat(
        self,
        messages: Sequence[Message],
        options: GenerationOptions | Mapping[str, Any] | None,
        tools: Sequence[Tool],
        *,
        stream: bool = False,
    ) -> bytes:
        structural, passthrough = split_options(options, self._defaults)
        request: dict[str, Any] = {
            "model": self._model,
            "messages": self._render_messages(messages, structural.get("system_prompt")),
        }
        if stream:
            request["stream"] = True

        function_tools, web_search = _partition_tools(collect_tools(tools, structural))
        if function_tools:
            strict = bool(structural.get("strict_tools"))
            request["tools"] = [_function_tool_entry(t, strict=strict) for t in function_tools]

            tool_choice = structural.get("tool_choice")
            if tool_choice is not None:
                if Quirk.NO_TOOL_CHOICE in self._quirks:
                    log.debug("Omitting tool_choice rejected by %s", self._model)
                else:
                    request["tool_choice"] = tool_choice

        if web_search is not None:
            if Quirk.WEB_SEARCH_OPTIONS in self._quirks:
                request["web_search_options"] = _web_search_options(web_search)
            else:
                log.debug(
                    "Skipping web_search tool; %s takes no web_search tool entry",
                    self._model,
                )

        return self._finalize(request, passthrough)

    def _render_messages(
        self, messages: Sequence[Message], system_prompt: str | None
    ) -> list[dict[str, Any]]:
        rendered: list[dict[str, Any]] = []
        if system_prompt:
            role = "developer" if Quirk.DEVELOPER_ROLE in self._quirks else "system"
            rendered.append({"role": role, "content": system_prompt})
        for msg in messages:
            entry: dict[str, Any] = {"role": msg.role, "content": msg.content}
            for key, value in msg.metadata.items():
                entry.setdefault(key, value)
            rendered.append(entry)
        return rendered

    def _finalize(self, request: dict[str, Any], passthrough: dict[str, Any]) -> bytes:
        """Apply model-family quirks to passthrough options and encode."""
        resolved = apply_option_quirks(self._quirks, passthrough, model=self._model)
        for key, value in resolved.items():
            if key in request:
                log.debug("Ignoring option %r; set structurally", key)
                continue
            request[key] = value
        return encode_request(request, provider=_PROVIDER)

    # --- Response parsing ---

    def parse(self, body: bytes | str) -> Result:
        """Parse a response body into text and normalized details.

        A non-empty ``output`` array (search-augmented responses) selects the
        web-search path; anything else is read as a single-choice completion.

        Raises:
            MalformedResponseError: When the body is not a JSON object.
            EmptyResponseError: When no choice or message is present.
            NoContentError: When the message has neither text nor tool calls.
        """
        data = decode_body(body, provider=_PROVIDER)
        response_id = _as_str(data.get("id"))
        model = _as_str(data.get("model"))
        usage = _parse_usage(data.get("usage"))

        output = data.get("output")
        if isinstance(output, list) and output:
            return _parse_output_items(output, response_id, model, usage)

        choices = data.get("choices")
        if not isinstance(choices, list) or not choices:
            raise EmptyResponseError(
                "empty response from API", provider=_PROVIDER, field="choices"
            )
        choice = choices[0] if isinstance(choices[0], dict) else {}
        message = choice.get("message")
        if not isinstance(message, dict):
            raise EmptyResponseError(
                "response choice has no message",
                provider=_PROVIDER,
                field="choices[0].message",
            )

        tool_calls = _parse_tool_calls(message.get("tool_calls"))
        details = ResponseDetails(
            id=response_id,
            model=model,
            usage=usage,
            tool_calls=tool_calls,
            finish_reason=_as_str(choice.get("finish_reason")) or None,
        )

        text = _message_text(message.get("content"))
        if text:
            return Result(text, details)
        if tool_calls:
            rendered = "\n".join(
                format_function_call(call.name, call.arguments) for call in tool_calls
            )
            return Result(rendered, details)
        raise NoContentError(
            "no content or tool calls in response",
            provider=_PROVIDER,
            field="choices[0].message",
        )

    # --- Streaming ---

    def decode_chunk(self, chunk: bytes | str) -> ChunkResult:
        """Decode one streaming chunk.

        Returns the text delta, ``END_OF_STREAM`` on ``[DONE]`` or a finish
        reason, and ``SKIP`` for role-only deltas and SSE comment lines.

        Raises:
            EmptyChunkError: Whitespace-only chunk; read the next one.
            MalformedChunkError: Chunk is not a JSON object; the stream is unusable.
            NoChoicesError: Chunk has no choice list.
        """
        text = chunk.decode("utf-8") if isinstance(chunk, (bytes, bytearray)) else chunk
        text = text.strip()
        if not text:
            raise EmptyChunkError("empty chunk", provider=_PROVIDER)
        if text.startswith(":"):
            return SKIP
        if text.startswith(_SSE_DATA_PREFIX):
            text = text[len(_SSE_DATA_PREFIX) :].strip()
            if not text:
                raise EmptyChunkError("empty chunk", provider=_PROVIDER)
        if text == _DONE_MARKER:
            return END_OF_STREAM

        try:
            data = json.loads(text)
        except ValueError as e:
            raise MalformedChunkError(f"malformed response: {e}", provider=_PROVIDER) from e
        if not isinstance(data, dict):
            raise MalformedChunkError(
                f"malformed response: expected object, got {type(data).__name__}",
                provider=_PROVIDER,
            )

        choices = data.get("choices")
        if not isinstance(choices, list) or not choices:
            raise NoChoicesError("no choices in response", provider=_PROVIDER)
        choice = choices[0] if isinstance(choices[0], dict) else {}

        if choice.get("finish_reason"):
            return END_OF_STREAM

        delta = choice.get("delta")
        delta = delta if isinstance(delta, dict) else {}
        content = delta.get("content")
        content = content if isinstance(content, str) else ""
        if delta.get("role") and not content:
            return SKIP
        return content


# --- Request helpers ---


def _as_messages(prompt: str | Sequence[Message]) -> list[Message]:
    if isinstance(prompt, str):
        return [Message(role="user", content=prompt)]
    return list(prompt)


def _partition_tools(
    tools: Sequence[Tool],
) -> tuple[list[FunctionTool], WebSearchTool | None]:
    """Split function tools from the (first) web-search tool."""
    function_tools: list[FunctionTool] = []
    web_search: WebSearchTool | None = None
    for tool in tools:
        if isinstance(tool, WebSearchTool):
            web_search = web_search or tool
        else:
            function_tools.append(tool)
    return function_tools, web_search


def _function_tool_entry(tool: FunctionTool, *, strict: bool) -> dict[str, Any]:
    function: dict[str, Any] = {
        "name": tool.name,
        "description": tool.description,
        "parameters": tool.parameters,
    }
    if strict:
        function["strict"] = True
    return {"type": "function", "function": function}


def _web_search_options(tool: WebSearchTool) -> dict[str, Any]:
    """Chat Completions ``web_search_options`` for search-preview models."""
    options: dict[str, Any] = {}
    location = tool.user_location
    if location:
        if "type" in location:
            options["user_location"] = dict(location)
        else:
            options["user_location"] = {"type": "approximate", "approximate": dict(location)}
    if tool.filters:
        options["filters"] = dict(tool.filters)
    return options


# --- Response helpers ---


def _as_str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _parse_usage(raw: Any) -> TokenUsage:
    """Normalize Chat Completions or Responses-style usage blocks."""
    if not isinstance(raw, dict):
        return TokenUsage()
    prompt = as_count(raw.get("prompt_tokens", raw.get("input_tokens")))
    completion = as_count(raw.get("completion_tokens", raw.get("output_tokens")))
    total = as_count(raw.get("total_tokens")) or prompt + completion

    details = raw.get("prompt_tokens_details") or raw.get("input_tokens_details")
    cached = as_count(details.get("cached_tokens")) if isinstance(details, dict) else 0
    return TokenUsage(
        prompt_tokens=prompt,
        completion_tokens=completion,
        total_tokens=total,
        cache_read_tokens=cached,
    )


def _message_text(content: Any) -> str:
    """Return message text; content-part lists are joined in order."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(
            part["text"]
            for part in content
            if isinstance(part, dict) and isinstance(part.get("text"), str)
        )
    return ""


def _decode_arguments(raw: Any, *, field: str) -> Any:
    """Decode tool-call arguments to structured data without re-encoding."""
    if not isinstance(raw, str):
        return raw if raw is not None else {}
    if not raw.strip():
        return {}
    try:
        return json.loads(raw)
    except ValueError as e:
        raise MalformedResponseError(
            f"error parsing function arguments: {e}",
            provider=_PROVIDER,
            field=field,
        ) from e


def _parse_tool_calls(raw: Any) -> tuple[ToolCall, ...]:
    if not isinstance(raw, list):
        return ()
    calls: list[ToolCall] = []
    for idx, item in enumerate(raw):
        if not isinstance(item, dict):
            continue
        function = item.get("function")
        if not isinstance(function, dict):
            continue
        calls.append(
            ToolCall(
                id=_as_str(item.get("id")),
                name=_as_str(function.get("name")),
                arguments=_decode_arguments(
                    function.get("arguments"),
                    field=f"choices[0].message.tool_calls[{idx}].function.arguments",
                ),
            )
        )
    return tuple(calls)


def _parse_search_call(item: dict[str, Any]) -> WebSearchCall:
    action_raw = item.get("action")
    action: WebSearchAction | None = None
    if isinstance(action_raw, dict):
        domains = action_raw.get("domains")
        sources = action_raw.get("sources")
        action = WebSearchAction(
            type=_as_str(action_raw.get("type")),
            query=_as_str(action_raw.get("query")),
            domains=tuple(d for d in domains if isinstance(d, str))
            if isinstance(domains, list)
            else (),
            sources=tuple(
                Source(
                    url=_as_str(src.get("url")),
                    title=_as_str(src.get("title")),
                    type=_as_str(src.get("type")),
                )
                for src in sources
                if isinstance(src, dict)
            )
            if isinstance(sources, list)
            else (),
        )
    return WebSearchCall(
        id=_as_str(item.get("id")),
        status=_as_str(item.get("status")),
        action=action,
        type=_as_str(item.get("type")) or "web_search_call",
    )


def _parse_annotation(raw: dict[str, Any]) -> Annotation:
    return Annotation(
        type=_as_str(raw.get("type")),
        start_index=as_count(raw.get("start_index")),
        end_index=as_count(raw.get("end_index")),
        url=_as_str(raw.get("url")),
        title=_as_str(raw.get("title")),
    )


def _parse_output_items(
    output: list[Any], response_id: str, model: str, usage: TokenUsage
) -> Result:
    """Read a search-augmented ``output`` array.

    Text fragments of ``message`` items are concatenated in array order and
    annotation offsets are kept exactly as the API reported them against
    that concatenation.
    """
    search_calls: list[WebSearchCall] = []
    annotations: list[Annotation] = []
    citations: list[URLCitation] = []
    tool_calls: list[ToolCall] = []
    parts: list[str] = []

    for idx, item in enumerate(output):
        if not isinstance(item, dict):
            continue
        item_type = _as_str(item.get("type"))

        if item_type.endswith("search_call"):
            search_calls.append(_parse_search_call(item))

        elif item_type == "message":
            content = item.get("content")
            if not isinstance(content, list):
                continue
            for fragment in content:
                if not isinstance(fragment, dict):
                    continue
                text = fragment.get("text")
                if isinstance(text, str):
                    parts.append(text)
                for raw_ann in fragment.get("annotations") or ():
                    if not isinstance(raw_ann, dict):
                        continue
                    ann = _parse_annotation(raw_ann)
                    annotations.append(ann)
                    if ann.type == "url_citation":
                        citations.append(
                            URLCitation(
                                start_index=ann.start_index,
                                end_index=ann.end_index,
                                url=ann.url,
                                title=ann.title,
                            )
                        )

        elif item_type == "function_call":
            tool_calls.append(
                ToolCall(
                    id=_as_str(item.get("call_id") or item.get("id")),
                    name=_as_str(item.get("name")),
                    arguments=_decode_arguments(
                        item.get("arguments"), field=f"output[{idx}].arguments"
                    ),
                )
            )

    text = "".join(parts)
    if not text and tool_calls:
        text = "\n".join(format_function_call(c.name, c.arguments) for c in tool_calls)

    details = ResponseDetails(
        id=response_id,
        model=model,
        usage=usage,
        metadata={
            WEB_SEARCH_CALLS_KEY: tuple(search_calls),
            ANNOTATIONS_KEY: tuple(annotations),
            CITATIONS_KEY: tuple(citations),
        },
        tool_calls=tuple(tool_calls),
    )
    return Result(text, details)
