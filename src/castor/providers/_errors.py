"""Map transport failures into APIError with stable retry metadata."""

from __future__ import annotations

import asyncio
from email.utils import parsedate_to_datetime
import json
import time
from typing import Any

import httpx

from castor.config import _API_KEY_ENV_VARS
from castor.errors import APIError, RateLimitError, _walk_exception_chain
from castor.retry import RETRYABLE_STATUS_CODES


def extract_status_code(exc: BaseException) -> int | None:
    """Walk the exception chain to find an HTTP status code."""
    for e in _walk_exception_chain(exc):
        for attr in ("status_code", "status"):
            value = getattr(e, attr, None)
            if isinstance(value, int) and 100 <= value <= 599:
                return value
        response = getattr(e, "response", None)
        value = getattr(response, "status_code", None)
        if isinstance(value, int) and 100 <= value <= 599:
            return value
    return None


def parse_retry_after(raw: Any) -> float | None:
    """Parse a ``Retry-After`` header: delta-seconds or an HTTP date."""
    if not isinstance(raw, str) or not raw.strip():
        return None
    try:
        seconds = float(raw)
    except ValueError:
        try:
            when = parsedate_to_datetime(raw)
        except (TypeError, ValueError):
            return None
        seconds = when.timestamp() - time.time()
    return max(seconds, 0.0)


def extract_retry_after_s(exc: BaseException) -> float | None:
    """Walk the exception chain to find a retry-after delay in seconds."""
    for e in _walk_exception_chain(exc):
        value = getattr(e, "retry_after", None)
        if isinstance(value, (int, float)) and value >= 0:
            return float(value)

        response = getattr(e, "response", None)
        headers: Any = getattr(response, "headers", None)
        if headers is not None:
            seconds = parse_retry_after(headers.get("Retry-After"))
            if seconds is not None:
                return seconds
    return None


def _auth_hint(provider: str, status_code: int | None) -> str | None:
    """Generate a hint for auth errors where naming the env var is useful."""
    if status_code in {401, 403}:
        env_var = _API_KEY_ENV_VARS.get(provider, "API key")
        return f"Check credentials/permissions (try setting {env_var} or Config.api_key)."
    return None


def _error_message_from_body(response: httpx.Response) -> str:
    """Extract ``error.message`` from a provider error body, if any."""
    try:
        data = json.loads(response.content)
    except (ValueError, UnicodeDecodeError):
        return response.text.strip()[:200]
    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict):
        message = error.get("message")
        if isinstance(message, str):
            return message
    return ""


def error_from_response(response: httpx.Response, *, provider: str, phase: str) -> APIError:
    """Build an APIError for a non-2xx provider response."""
    status_code = response.status_code
    retry_after_s = parse_retry_after(response.headers.get("Retry-After"))
    cause = _error_message_from_body(response)

    err_cls: type[APIError] = RateLimitError if status_code == 429 else APIError
    msg = f"{provider} {phase} failed (status={status_code})"
    return err_cls(
        f"{msg}: {cause}" if cause else msg,
        hint=_auth_hint(provider, status_code),
        retryable=status_code in RETRYABLE_STATUS_CODES or retry_after_s is not None,
        status_code=status_code,
        retry_after_s=retry_after_s,
        provider=provider,
        phase=phase,
    )


def wrap_provider_error(
    exc: BaseException,
    *,
    provider: str,
    phase: str,
    message: str | None = None,
) -> APIError:
    """Map transport exceptions into APIError with stable retry metadata."""
    if isinstance(exc, asyncio.CancelledError):
        raise exc

    # Already wrapped; fill in missing context only.
    if isinstance(exc, APIError):
        if exc.provider is None:
            exc.provider = provider
        if exc.phase is None:
            exc.phase = phase
        return exc

    status_code = extract_status_code(exc)
    retry_after_s = extract_retry_after_s(exc)

    retryable = retry_after_s is not None
    if isinstance(status_code, int) and status_code in RETRYABLE_STATUS_CODES:
        retryable = True
    else:
        for e in _walk_exception_chain(exc):
            if isinstance(e, (httpx.TimeoutException, httpx.TransportError)):
                retryable = True
                break

    msg = message or f"{provider} {phase} failed"
    err_cls: type[APIError] = RateLimitError if status_code == 429 else APIError
    status_note = f" (status={status_code})" if isinstance(status_code, int) else ""
    cause = str(exc)
    return err_cls(
        f"{msg}{status_note}: {cause}" if cause else f"{msg}{status_note}",
        hint=_auth_hint(provider, status_code),
        retryable=retryable,
        status_code=status_code,
        retry_after_s=retry_after_s,
        provider=provider,
        phase=phase,
    )
