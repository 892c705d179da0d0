"""Exception hierarchy for Castor."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator


class CastorError(Exception):
    """Base exception for all Castor errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class ConfigurationError(CastorError):
    """Configuration validation or resolution failed."""


# --- Request construction ---


class RequestError(CastorError):
    """Building a provider request failed."""

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        provider: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.provider = provider


class SchemaError(RequestError):
    """A structured-output schema could not be read as JSON."""


class EncodingError(RequestError):
    """The assembled request could not be serialized to JSON."""


# --- Response parsing ---


class ResponseError(CastorError):
    """A provider response carried no usable payload.

    ``field`` names the part of the body that was missing or malformed.
    """

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        provider: str | None = None,
        field: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.provider = provider
        self.field = field


class EmptyResponseError(ResponseError):
    """The response had no choice, message, or output item."""


class NoContentError(ResponseError):
    """The message had neither text nor tool calls."""


class MalformedResponseError(ResponseError):
    """The response body was not valid JSON."""


# --- Streaming ---


class StreamError(CastorError):
    """Decoding one streaming chunk failed."""

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        provider: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.provider = provider

    #: Whether the caller may keep reading the stream after this error.
    recoverable: bool = False


class EmptyChunkError(StreamError):
    """A whitespace-only chunk; request the next one."""

    recoverable = True


class MalformedChunkError(StreamError):
    """A chunk that is not valid JSON. Fatal for the stream."""


class NoChoicesError(StreamError):
    """A chunk without a choice list."""


# --- Transport ---


class APIError(CastorError):
    """API call failed.

    The transport attaches retry metadata so retries can be bounded without
    brittle substring matching.
    """

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        retryable: bool | None = None,
        status_code: int | None = None,
        retry_after_s: float | None = None,
        provider: str | None = None,
        phase: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.retryable = retryable
        self.status_code = status_code
        self.retry_after_s = retry_after_s
        self.provider = provider
        self.phase = phase


class RateLimitError(APIError):
    """Rate limit exceeded (HTTP 429)."""


def _walk_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield *exc* and its ``__cause__``/``__context__`` chain, with cycle protection."""
    seen: set[int] = set()
    stack: list[BaseException] = [exc]
    while stack:
        cur = stack.pop()
        if id(cur) in seen:
            continue
        seen.add(id(cur))
        yield cur

        cause = cur.__cause__
        if isinstance(cause, BaseException):
            stack.append(cause)
        context = cur.__context__
        if isinstance(context, BaseException):
            stack.append(context)
