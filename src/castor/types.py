"""Provider-agnostic data contracts.

Records here are pure data: they are created fresh per request/response pair
and never hold a reference to the provider that produced them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, NamedTuple

from castor.errors import ConfigurationError

Role = Literal["system", "user", "assistant", "developer", "tool"]

#: Metadata keys populated by web-search-aware parsers.
WEB_SEARCH_CALLS_KEY = "web_search_calls"
ANNOTATIONS_KEY = "annotations"
CITATIONS_KEY = "citations"


@dataclass(frozen=True)
class Message:
    """A single conversation turn.

    ``metadata`` entries are copied onto the provider wire message verbatim
    (e.g. ``name`` or ``tool_call_id``).
    """

    role: Role
    content: str
    tokens: int = 0
    #: Caching hint such as ``"ephemeral"``; only some providers honor it.
    cache_control: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


# --- Tools (tagged union) ---


@dataclass(frozen=True)
class FunctionTool:
    """A caller-defined function the model may invoke."""

    name: str
    description: str = ""
    parameters: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )

    kind: Literal["function"] = field(default="function", init=False)


@dataclass(frozen=True)
class WebSearchTool:
    """A provider-executed web search capability.

    Not every provider accepts every field; unsupported fields are left out
    of the wire request rather than rejected.
    """

    max_uses: int | None = None
    allowed_domains: tuple[str, ...] | None = None
    blocked_domains: tuple[str, ...] | None = None
    user_location: dict[str, Any] | None = None
    external_web_access: bool | None = None
    #: Provider-shaped domain filter, e.g. ``{"allowed_domains": [...]}``.
    filters: dict[str, Any] | None = None

    kind: Literal["web_search"] = field(default="web_search", init=False)


Tool = FunctionTool | WebSearchTool


def tool_from_dict(raw: dict[str, Any]) -> Tool:
    """Build a Tool from its loose dict form.

    Accepts ``{"type": "function", "function": {...}}``, a bare
    ``{"name": ..., "parameters": ...}`` function definition, or
    ``{"type": "web_search", ...}``.
    """
    tool_type = raw.get("type") or raw.get("kind") or "function"
    if tool_type == "web_search":
        allowed = raw.get("allowed_domains")
        blocked = raw.get("blocked_domains")
        return WebSearchTool(
            max_uses=raw.get("max_uses"),
            allowed_domains=tuple(allowed) if allowed is not None else None,
            blocked_domains=tuple(blocked) if blocked is not None else None,
            user_location=raw.get("user_location"),
            external_web_access=raw.get("external_web_access"),
            filters=raw.get("filters"),
        )
    if tool_type != "function":
        raise ConfigurationError(
            f"Unknown tool type: {tool_type!r}",
            hint="Use type 'function' or 'web_search'.",
        )

    fn = raw.get("function", raw)
    if not isinstance(fn, dict) or not fn.get("name"):
        raise ConfigurationError(
            "Function tools require a 'name'",
            hint="Pass {'type': 'function', 'function': {'name': ...}}.",
        )
    return FunctionTool(
        name=fn["name"],
        description=fn.get("description", ""),
        parameters=fn.get("parameters") or {"type": "object", "properties": {}},
    )


# --- Usage & details ---


@dataclass(frozen=True)
class TokenUsage:
    """Normalized token counts. Cache fields stay zero unless reported."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    cache_creation_tokens: int = 0
    cache_read_tokens: int = 0

    def __post_init__(self) -> None:
        """Reject negative counts."""
        for name in (
            "prompt_tokens",
            "completion_tokens",
            "total_tokens",
            "cache_creation_tokens",
            "cache_read_tokens",
        ):
            if getattr(self, name) < 0:
                raise ValueError(f"TokenUsage.{name} must be >= 0")


@dataclass(frozen=True)
class ToolCall:
    """A tool call requested by the model.

    ``arguments`` is the decoded JSON value exactly as returned.
    """

    id: str
    name: str
    arguments: Any


@dataclass(frozen=True)
class ResponseDetails:
    """Response metadata returned next to the generated text.

    ``metadata`` is an open sidecar for provider extras (web-search calls,
    annotations, citations) that never leak into the text.
    """

    id: str = ""
    model: str = ""
    usage: TokenUsage = field(default_factory=TokenUsage)
    metadata: dict[str, Any] = field(default_factory=dict)
    tool_calls: tuple[ToolCall, ...] = ()
    finish_reason: str | None = None


class Result(NamedTuple):
    """Normalized parser output."""

    text: str
    details: ResponseDetails


# --- Web search artifacts ---


@dataclass(frozen=True)
class Source:
    """A URL consulted during a search, cited or not."""

    url: str
    title: str = ""
    type: str = ""


@dataclass(frozen=True)
class WebSearchAction:
    """What one search call did: ``search``, ``open_page`` or ``find_in_page``."""

    type: str
    query: str = ""
    domains: tuple[str, ...] = ()
    sources: tuple[Source, ...] = ()


@dataclass(frozen=True)
class WebSearchCall:
    """One server-executed search."""

    id: str
    status: str = ""
    action: WebSearchAction | None = None
    type: str = "web_search_call"


@dataclass(frozen=True)
class Annotation:
    """An annotation on the final text; offsets index the concatenated text."""

    type: str
    start_index: int = 0
    end_index: int = 0
    url: str = ""
    title: str = ""


@dataclass(frozen=True)
class URLCitation:
    """A ``url_citation`` annotation, kept separately for convenience."""

    start_index: int
    end_index: int
    url: str
    title: str = ""
    type: str = "url_citation"
