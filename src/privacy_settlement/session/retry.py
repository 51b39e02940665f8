"""Bounded retry with capped exponential backoff for decryption.

Two base delays: ordinary failures back off from ``base_delay``; a
``NotYetMaterialized`` failure backs off from the longer
``not_materialized_base_delay`` because the threshold network needs
time, not a different request.  Both grow by ``2 ** (attempt - 1)`` and
are capped at ``max_delay``.  Successive delays inside one call never
decrease.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from privacy_settlement.core.errors import (
    DecryptionRetriesExhausted,
    NoSession,
    NotYetMaterialized,
    SessionExpired,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]

# Not retried: the caller has to re-authorize first.
_NON_RETRYABLE: tuple[type[BaseException], ...] = (NoSession, SessionExpired)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 1.0
    not_materialized_base_delay: float = 4.0
    max_delay: float = 30.0
    jitter: float = 0.0  # fraction of the delay added at random

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    def delay_for(self, attempt: int, error: BaseException) -> float:
        """Delay after failed ``attempt`` (1-based)."""
        base = (
            self.not_materialized_base_delay
            if isinstance(error, NotYetMaterialized)
            else self.base_delay
        )
        delay = base * (2 ** (attempt - 1))
        if self.jitter > 0:
            delay += random.uniform(0, delay * self.jitter)
        return min(delay, self.max_delay)


async def retry_decrypt(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    sleep: Sleep = asyncio.sleep,
    label: str = "unseal",
) -> T:
    """Run ``operation`` until it succeeds or ``policy.max_attempts`` is hit.

    Raises ``DecryptionRetriesExhausted`` carrying the last failure.
    ``NoSession`` / ``SessionExpired`` propagate immediately.
    """
    last_error: Exception | None = None
    previous_delay = 0.0

    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await operation()
        except _NON_RETRYABLE:
            raise
        except Exception as exc:
            last_error = exc
            if attempt == policy.max_attempts:
                break
            delay = max(previous_delay, policy.delay_for(attempt, exc))
            previous_delay = delay
            logger.warning(
                "%s attempt %d/%d failed (%s), retrying in %.1fs",
                label, attempt, policy.max_attempts, exc, delay,
            )
            await sleep(delay)

    logger.error(
        "%s failed after %d attempts: %s", label, policy.max_attempts, last_error
    )
    raise DecryptionRetriesExhausted(policy.max_attempts, last_error)
