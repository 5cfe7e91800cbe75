"""Deadline-bounded retry with exponential backoff for engine calls.

Each attempt gets its own deadline (``RetryPolicy.timeout``), separate from
whatever timeout the HTTP client inside the SDK uses.  A missed deadline
becomes a :class:`ProviderTimeoutError`, which is retryable; after the last
attempt it propagates to the caller.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

from tally.core.errors import (
    ProviderOverloadedError,
    ProviderRateLimitError,
    ProviderTimeoutError,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

T = TypeVar("T")

logger = logging.getLogger(__name__)

_RETRYABLE_TYPES: tuple[type[Exception], ...] = (
    ProviderRateLimitError,
    ProviderTimeoutError,
    ProviderOverloadedError,
)


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """How long one engine attempt may take and how often to retry."""

    timeout: float = 60.0
    max_retries: int = 2
    base_delay: float = 1.0
    max_delay: float = 20.0
    jitter: bool = True


def is_retryable(error: Exception) -> bool:
    """Check if an error should trigger a retry."""
    return isinstance(error, _RETRYABLE_TYPES)


def backoff_delay(attempt: int, policy: RetryPolicy, error: Exception) -> float:
    """Seconds to wait before retry number ``attempt + 1``."""
    if isinstance(error, ProviderRateLimitError) and error.retry_after is not None:
        return min(error.retry_after, policy.max_delay)

    delay: float = min(policy.base_delay * (2**attempt), policy.max_delay)
    if policy.jitter:
        delay *= random.uniform(0.5, 1.5)
    return delay


async def call_with_deadline(
    fn: Callable[[], Awaitable[T]],
    *,
    provider_id: str,
    timeout: float,
) -> T:
    """Await ``fn()`` but give up after ``timeout`` seconds."""
    try:
        async with asyncio.timeout(timeout):
            return await fn()
    except TimeoutError as e:
        msg = f"No response within {timeout:g}s"
        raise ProviderTimeoutError(provider_id, msg) from e


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    *,
    provider_id: str = "engine",
    on_retry: Callable[[int, float, Exception], None] | None = None,
) -> T:
    """Execute fn under a per-attempt deadline, retrying transient failures.

    Retries on ProviderRateLimitError, ProviderTimeoutError (including a
    missed deadline) and ProviderOverloadedError. Everything else
    propagates immediately.

    Raises:
        The last error once retries are exhausted.
    """
    cfg = policy or RetryPolicy()

    for attempt in range(cfg.max_retries + 1):
        try:
            return await call_with_deadline(
                fn, provider_id=provider_id, timeout=cfg.timeout
            )
        except Exception as e:
            if not is_retryable(e) or attempt >= cfg.max_retries:
                raise
            delay = backoff_delay(attempt, cfg, e)
            logger.warning(
                "Engine call failed (%s), retry %d/%d in %.1fs",
                e,
                attempt + 1,
                cfg.max_retries,
                delay,
            )
            if on_retry is not None:
                on_retry(attempt + 1, delay, e)
            await asyncio.sleep(delay)

    msg = f"Retry loop exited unexpectedly (max_retries={cfg.max_retries})"
    raise RuntimeError(msg)
