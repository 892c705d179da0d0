"""Provider protocol: build requests, parse responses, decode stream chunks."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from castor.options import GenerationOptions
    from castor.providers.models import ChunkResult
    from castor.types import Message, Result, Tool


@dataclass(frozen=True)
class ProviderCapabilities:
    """Feature flags exposed by providers."""

    structured_outputs: bool
    streaming: bool
    function_tools: bool = True
    #: Web search passed as a tool entry (False: filtered out before sending).
    web_search_tool: bool = False
    #: Provider reports cache creation/read token counts.
    cache_usage: bool = False


@runtime_checkable
class Provider(Protocol):
    """Per-provider request builder, response parser and stream decoder.

    Implementations are pure: no method performs I/O. The only state is the
    read-only configuration passed at construction.
    """

    @property
    def name(self) -> str:
        """Stable provider identifier, e.g. ``"openai"``."""
        ...

    @property
    def model(self) -> str:
        """Model identifier every request targets."""
        ...

    @property
    def endpoint(self) -> str:
        """URL the built request is POSTed to."""
        ...

    @property
    def capabilities(self) -> ProviderCapabilities:
        """Feature capabilities."""
        ...

    def headers(self) -> dict[str, str]:
        """HTTP headers for a request, extra headers included."""
        ...

    def build(
        self,
        prompt: str,
        options: GenerationOptions | Mapping[str, Any] | None = None,
        tools: Sequence[Tool] = (),
    ) -> bytes:
        """Build a request for a single user prompt."""
        ...

    def build_messages(
        self,
        messages: Sequence[Message],
        options: GenerationOptions | Mapping[str, Any] | None = None,
        tools: Sequence[Tool] = (),
    ) -> bytes:
        """Build a request that replays a conversation in order."""
        ...

    def build_with_schema(
        self,
        prompt: str | Sequence[Message],
        schema: Any,
        options: GenerationOptions | Mapping[str, Any] | None = None,
    ) -> bytes:
        """Build a structured-output request constrained by *schema*."""
        ...

    def build_stream(
        self,
        prompt: str | Sequence[Message],
        options: GenerationOptions | Mapping[str, Any] | None = None,
        tools: Sequence[Tool] = (),
    ) -> bytes:
        """Build a streaming request."""
        ...

    def parse(self, body: bytes | str) -> Result:
        """Parse a complete response body."""
        ...

    def decode_chunk(self, chunk: bytes | str) -> ChunkResult:
        """Decode one streaming chunk into a text delta or a signal."""
        ...
