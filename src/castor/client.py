"""HTTP transport: POST built requests and hand the bytes back to the core.

Each call opens one ``httpx.AsyncClient`` and closes it afterwards. Retries
wrap whole non-streaming requests only; a stream that has started yielding
text is never replayed.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable, Mapping, Sequence
import logging
from typing import Any

import httpx

from castor.config import Config
from castor.errors import EmptyChunkError
from castor.options import GenerationOptions
from castor.providers import get_provider
from castor.providers._errors import error_from_response, wrap_provider_error
from castor.providers.base import Provider
from castor.providers.models import END_OF_STREAM, SKIP
from castor.retry import retry_async
from castor.types import Message, Result, Tool

log = logging.getLogger(__name__)

OptionsInput = GenerationOptions | Mapping[str, Any] | None


async def generate(
    prompt: str,
    *,
    config: Config,
    options: OptionsInput = None,
    tools: Sequence[Tool] = (),
    transport: httpx.AsyncBaseTransport | None = None,
) -> Result:
    """Generate text for a single prompt.

    Args:
        prompt: The user prompt.
        config: Provider, model, credentials and default options.
        options: Per-call options; override ``config.options`` key by key.
        tools: Function and web-search tools offered to the model.
        transport: Optional httpx transport (tests, proxies).

    Returns:
        ``Result(text, details)``.

    Example:
        config = Config(provider="openai", model="gpt-4o-mini")
        text, details = await generate("Say hi", config=config)
    """
    provider = get_provider(config)
    body = provider.build(prompt, options, tools)
    return await _complete(provider, body, config=config, transport=transport)


async def generate_messages(
    messages: Sequence[Message],
    *,
    config: Config,
    options: OptionsInput = None,
    tools: Sequence[Tool] = (),
    transport: httpx.AsyncBaseTransport | None = None,
) -> Result:
    """Generate the next turn of a conversation replayed in order."""
    provider = get_provider(config)
    body = provider.build_messages(messages, options, tools)
    return await _complete(provider, body, config=config, transport=transport)


async def generate_structured(
    prompt: str | Sequence[Message],
    schema: Any,
    *,
    config: Config,
    options: OptionsInput = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Result:
    """Generate JSON text constrained by *schema*.

    The schema is sanitized to the strict subset providers accept; the
    returned text is the JSON document as produced by the model.
    """
    provider = get_provider(config)
    body = provider.build_with_schema(prompt, schema, options)
    return await _complete(provider, body, config=config, transport=transport)


async def stream(
    prompt: str | Sequence[Message],
    *,
    config: Config,
    options: OptionsInput = None,
    tools: Sequence[Tool] = (),
    transport: httpx.AsyncBaseTransport | None = None,
) -> AsyncIterator[str]:
    """Yield text deltas as they arrive.

    Empty lines and skip signals are dropped; the iterator ends on the
    provider's end-of-stream signal. Malformed chunks raise.
    """
    provider = get_provider(config)
    body = provider.build_stream(prompt, options, tools)

    async with httpx.AsyncClient(transport=transport, timeout=config.timeout_s) as http:
        try:
            async with http.stream(
                "POST", provider.endpoint, content=body, headers=provider.headers()
            ) as response:
                if response.is_error:
                    await response.aread()
                    raise error_from_response(
                        response, provider=provider.name, phase="stream"
                    )
                async for line in response.aiter_lines():
                    try:
                        decoded = provider.decode_chunk(line)
                    except EmptyChunkError:
                        continue
                    if decoded is END_OF_STREAM:
                        return
                    if decoded is SKIP or not decoded:
                        continue
                    yield decoded
        except httpx.HTTPError as e:
            raise wrap_provider_error(e, provider=provider.name, phase="stream") from e


async def _complete(
    provider: Provider,
    body: bytes,
    *,
    config: Config,
    transport: httpx.AsyncBaseTransport | None,
) -> Result:
    async with httpx.AsyncClient(transport=transport, timeout=config.timeout_s) as http:
        raw = await retry_async(
            _post_factory(http, provider, body),
            policy=config.retry,
        )
    return provider.parse(raw)


def _post_factory(
    http: httpx.AsyncClient, provider: Provider, body: bytes
) -> Callable[[], Awaitable[bytes]]:
    async def _post() -> bytes:
        log.debug("POST %s (%d bytes) model=%s", provider.endpoint, len(body), provider.model)
        try:
            response = await http.post(
                provider.endpoint, content=body, headers=provider.headers()
            )
        except httpx.HTTPError as e:
            raise wrap_provider_error(e, provider=provider.name, phase="generate") from e
        if response.is_error:
            raise error_from_response(response, provider=provider.name, phase="generate")
        return response.content

    return _post
