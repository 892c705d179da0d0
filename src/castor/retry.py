"""Bounded async retry for the HTTP transport.

The pure request/response core never retries; only ``castor.client`` wraps
its POSTs in ``retry_async``. Streams are never replayed once started.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import random
import time
from typing import TYPE_CHECKING, TypeVar

import httpx

from castor.errors import (
    APIError,
    ConfigurationError,
    RequestError,
    ResponseError,
    StreamError,
    _walk_exception_chain,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

T = TypeVar("T")

log = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({408, 409, 429, 500, 502, 503, 504})

# Failures of the pure core: the same bytes fail the same way every time.
_DETERMINISTIC_ERRORS = (RequestError, ResponseError, StreamError)


@dataclass(frozen=True)
class RetryPolicy:
    """How hard ``castor.client`` retries a failed POST.

    ``max_attempts`` counts the first try, so ``RetryPolicy(max_attempts=1)``
    disables retries. ``max_elapsed_s`` bounds the total time spent sleeping
    and retrying; ``None`` leaves it unbounded.
    """

    max_attempts: int = 2
    initial_delay_s: float = 0.5
    backoff_multiplier: float = 2.0
    max_delay_s: float = 5.0
    jitter: bool = True
    max_elapsed_s: float | None = 15.0

    def __post_init__(self) -> None:
        """Reject policies that could never retry sensibly."""
        _require(self.max_attempts >= 1, "max_attempts must be >= 1")
        _require(self.initial_delay_s >= 0, "initial_delay_s must be >= 0")
        _require(self.backoff_multiplier > 0, "backoff_multiplier must be > 0")
        _require(self.max_delay_s >= 0, "max_delay_s must be >= 0")
        _require(
            self.max_elapsed_s is None or self.max_elapsed_s >= 0,
            "max_elapsed_s must be >= 0 or None",
        )


def _require(ok: bool, message: str) -> None:
    if not ok:
        raise ConfigurationError(
            f"Invalid RetryPolicy: {message}",
            hint="Use RetryPolicy(max_attempts=1) to turn retries off.",
        )


def should_retry(exc: BaseException) -> bool:
    """Return True when a failed POST is worth sending again.

    - Cancellation is never retried.
    - Builder, parser and chunk-decoder errors are deterministic.
    - APIError is retried when marked retryable or carrying a retryable
      HTTP status, unless it was raised mid-stream.
    - Timeouts and httpx transport failures are retried.
    """
    if isinstance(exc, (asyncio.CancelledError, *_DETERMINISTIC_ERRORS)):
        return False

    if isinstance(exc, APIError):
        if exc.phase == "stream":
            return False
        return exc.retryable is True or exc.status_code in RETRYABLE_STATUS_CODES

    return any(
        isinstance(e, (TimeoutError, httpx.TimeoutException, httpx.TransportError))
        for e in _walk_exception_chain(exc)
    )


def _compute_backoff_delay(
    policy: RetryPolicy, *, retry_index: int, retry_after_s: float | None = None
) -> float:
    """Sleep before retry number *retry_index* (1-based).

    A server ``Retry-After`` raises the floor but never lowers it.
    """
    base = policy.initial_delay_s * policy.backoff_multiplier ** max(0, retry_index - 1)
    base = min(policy.max_delay_s, base)
    delay = random.random() * base if policy.jitter and base > 0 else base  # noqa: S311
    if isinstance(retry_after_s, (int, float)) and retry_after_s >= 0:
        delay = max(delay, retry_after_s)
    return max(0.0, delay)


async def retry_async(
    factory: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    should_retry: Callable[[BaseException], bool] = should_retry,
) -> T:
    """Await ``factory()`` until it succeeds or *policy* is exhausted.

    The last exception propagates unchanged.
    """
    deadline = (
        time.monotonic() + policy.max_elapsed_s if policy.max_elapsed_s is not None else None
    )
    attempt = 1
    while True:
        try:
            return await factory()
        except Exception as exc:
            if attempt >= policy.max_attempts or not should_retry(exc):
                raise

            delay = _compute_backoff_delay(
                policy,
                retry_index=attempt,
                retry_after_s=getattr(exc, "retry_after_s", None),
            )
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise
                delay = min(delay, remaining)

            log.debug(
                "Retrying %s after %s (attempt %d/%d, sleeping %.2fs)",
                getattr(exc, "provider", None) or "request",
                type(exc).__name__,
                attempt,
                policy.max_attempts,
                delay,
            )
            if delay > 0:
                await asyncio.sleep(delay)
            attempt += 1
