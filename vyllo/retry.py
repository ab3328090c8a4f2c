"""
retry.py: Exponential backoff for rate-limited provider calls.

    Outcome            │ Action
    ───────────────────┼────────────────────────────────────────────────
    Success            │ Return immediately
    RateLimitedError   │ Wait base × 2^k + uniform(0, jitter), try again
    Anything else      │ Raise immediately
    Cap reached        │ Raise the last RateLimitedError
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from .errors import RateLimitedError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]
Jitter = Callable[[float, float], float]


@dataclass(frozen=True)
class RetryPolicy:
    base_delay: float = 2.0     # seconds before the first retry
    jitter: float = 1.0         # upper bound of the uniform random addend
    max_retries: int = 3        # retries after the initial attempt

    def delay_for(self, retry_index: int, rand: Jitter = random.uniform) -> float:
        return self.base_delay * (2 ** retry_index) + rand(0.0, self.jitter)


DEFAULT_POLICY = RetryPolicy()


async def invoke(
    op: Callable[[], Awaitable[T]],
    policy: RetryPolicy = DEFAULT_POLICY,
    *,
    sleep: Sleep = asyncio.sleep,
    rand: Jitter = random.uniform,
    label: str = "request",
) -> T:
    """
    Await op(), retrying only on RateLimitedError.

    At most policy.max_retries + 1 attempts are made. sleep and rand are
    injectable so callers (and tests) control the clock and jitter source.
    """
    retry_index = 0
    while True:
        try:
            return await op()
        except RateLimitedError as exc:
            if retry_index >= policy.max_retries:
                logger.error(
                    "%s: rate limited, giving up after %d attempts", label, retry_index + 1
                )
                raise
            delay = policy.delay_for(retry_index, rand)
            logger.warning(
                "%s: rate limit hit (%s). Retrying in %dms (%d/%d)",
                label, exc, round(delay * 1000), retry_index + 1, policy.max_retries,
            )
            await sleep(delay)
            retry_index += 1


class RetryingInvoker:
    """Binds a policy, clock and jitter source so collaborators share one config."""

    def __init__(
        self,
        policy: RetryPolicy = DEFAULT_POLICY,
        sleep: Optional[Sleep] = None,
        rand: Optional[Jitter] = None,
    ) -> None:
        self.policy = policy
        self._sleep = sleep or asyncio.sleep
        self._rand = rand or random.uniform

    async def invoke(self, op: Callable[[], Awaitable[T]], label: str = "request") -> T:
        return await invoke(op, self.policy, sleep=self._sleep, rand=self._rand, label=label)
