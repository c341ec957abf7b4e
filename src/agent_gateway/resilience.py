"""Retry utilities for calls into the upstream agent runtime.

Provides:
  - RetryPolicy: Configurable retry parameters.
  - retry_async: Decorator for async functions with exponential backoff + jitter.

Only calls that produce no client-visible output are retried (conversation
creation and catalog reads). The chunk stream is never retried:
once a chunk has been relayed, replaying the run would duplicate output.
"""
from __future__ import annotations

import asyncio
import functools
import logging
import random
from dataclasses import dataclass
from typing import Callable, Optional, Tuple, Type

from agent_gateway.exceptions import UpstreamTransientError

logger = logging.getLogger("agent_gateway.resilience")


# ---------------------------------------------------------------------------
# Retry Policy
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RetryPolicy:
    """Configuration for retry behaviour.

    Attributes:
        max_retries: Maximum number of retry attempts (0 = no retries).
        base_delay: Initial delay in seconds before first retry.
        max_delay: Cap on delay.
        backoff_factor: Multiplier for exponential growth (2.0 = doubling).
        jitter: Randomisation range added to delay.
        retryable_exceptions: Exception types that trigger a retry.
    """
    max_retries: int = 2
    base_delay: float = 0.5
    max_delay: float = 8.0
    backoff_factor: float = 2.0
    jitter: float = 0.3
    retryable_exceptions: Tuple[Type[Exception], ...] = (UpstreamTransientError,)


UPSTREAM_RETRY_POLICY = RetryPolicy()

NO_RETRY_POLICY = RetryPolicy(max_retries=0)


def _calculate_delay(attempt: int, policy: RetryPolicy) -> float:
    """Calculate delay with exponential backoff + jitter."""
    delay = policy.base_delay * (policy.backoff_factor ** attempt)
    delay = min(delay, policy.max_delay)
    jitter = random.uniform(0, policy.jitter)
    return delay + jitter


# ---------------------------------------------------------------------------
# Retry decorator
# ---------------------------------------------------------------------------

def retry_async(
    policy: Optional[RetryPolicy] = None,
    *,
    on_retry: Optional[Callable[[Exception, int, float], None]] = None,
):
    """Decorator: retry an async function with exponential backoff.

    Usage::

        @retry_async(UPSTREAM_RETRY_POLICY)
        async def create_conversation(...):
            ...

    The policy may also be resolved per call: when the decorated function is
    a method and its instance has a ``retry_policy`` attribute, that policy
    wins over the decorator argument.

    Args:
        policy: RetryPolicy (defaults to UPSTREAM_RETRY_POLICY).
        on_retry: Optional callback(exception, attempt, delay) for logging.
    """
    _default = policy or UPSTREAM_RETRY_POLICY

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            _policy = _default
            if args and isinstance(getattr(args[0], "retry_policy", None), RetryPolicy):
                _policy = args[0].retry_policy

            for attempt in range(_policy.max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except _policy.retryable_exceptions as e:
                    if attempt >= _policy.max_retries:
                        if _policy.max_retries:
                            logger.error(
                                f"All {_policy.max_retries} retries exhausted "
                                f"for {func.__name__}: {e}"
                            )
                        raise
                    delay = _calculate_delay(attempt, _policy)
                    logger.warning(
                        f"Retry {attempt + 1}/{_policy.max_retries} "
                        f"for {func.__name__}: {e} "
                        f"(waiting {delay:.1f}s)"
                    )
                    if on_retry:
                        on_retry(e, attempt + 1, delay)
                    await asyncio.sleep(delay)

        return wrapper
    return decorator
