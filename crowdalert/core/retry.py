"""
Bounded retry with exponential backoff and jitter.

Only transient failures are retried; the caller names which exception
types count as transient (normally UpstreamUnavailableError).

Backoff formula:
    delay = min(max_delay, base × 2^(attempt - 1)) × U(0.5, 1.0)

    Example (base=0.5s, max=5s):
        Retry 1: 0.25–0.5s, Retry 2: 0.5–1s, Retry 3: 1–2s
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry parameters for one kind of upstream call."""
    max_retries: int = 2
    backoff_base_seconds: float = 0.5
    backoff_max_seconds: float = 5.0
    jitter: bool = True


NO_RETRY = RetryPolicy(max_retries=0)


def compute_backoff(policy: RetryPolicy, attempt: int) -> float:
    """
    Delay before the next try.

    Parameters
    ----------
    policy : RetryPolicy
    attempt : int
        Number of the attempt that just failed (1-based).
    """
    delay = min(
        policy.backoff_max_seconds,
        policy.backoff_base_seconds * (2 ** max(0, attempt - 1)),
    )
    if policy.jitter:
        delay *= 0.5 + random.random() * 0.5
    return delay


async def retry_async(
    func: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    retry_on: Tuple[Type[BaseException], ...],
    label: str = "call",
) -> T:
    """
    Await ``func()`` and retry it on ``retry_on`` exceptions.

    Anything not listed in ``retry_on`` propagates immediately. After the
    last retry the final exception is re-raised.
    """
    attempt = 1
    while True:
        try:
            return await func()
        except retry_on as exc:
            if attempt > policy.max_retries:
                raise
            delay = compute_backoff(policy, attempt)
            logger.info(
                "Retry %d/%d for %s in %.2fs (%s)",
                attempt, policy.max_retries, label, delay, exc,
            )
            await asyncio.sleep(delay)
            attempt += 1
