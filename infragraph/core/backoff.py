"""Exponential backoff shared by every provider client."""

from __future__ import annotations

import asyncio
import random
from typing import Awaitable, Callable, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from infragraph.core.errors import ProviderUnavailable, RateLimited, TransientError
from infragraph.core.logging import get_logger

log = get_logger("core.backoff")

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


class BackoffPolicy(BaseModel):
    """Capped, jittered exponential backoff.

    Retry ``n`` (0-based) waits ``min(max_delay, base_delay * 2**n)`` scaled down
    by up to ``jitter`` (0 = no jitter, 1 = full jitter). A ``Retry-After`` hint
    from a rate-limited response raises the wait to at least that value, still
    bounded by ``max_delay``.
    """

    model_config = ConfigDict(frozen=True)

    base_delay: float = Field(1.0, ge=0)
    max_delay: float = Field(30.0, ge=0)
    jitter: float = Field(0.5, ge=0, le=1)
    max_retries: int = Field(3, ge=0)

    def compute_delay(
        self,
        attempt: int,
        retry_after: Optional[float] = None,
        rng: Optional[random.Random] = None,
    ) -> float:
        rng = rng or random
        capped = min(self.max_delay, self.base_delay * (2 ** attempt))
        delay = capped * (1.0 - self.jitter * rng.random())
        if retry_after is not None:
            delay = max(delay, retry_after)
        return min(delay, self.max_delay)

    async def run(
        self,
        provider: str,
        operation: Callable[[], Awaitable[T]],
        *,
        sleep: Sleep = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ) -> T:
        """Await ``operation`` until it succeeds, retrying only on ``TransientError``.

        ``PermanentError`` and anything else propagate on the first occurrence.
        Raises ``ProviderUnavailable`` once ``max_retries`` retries have failed.
        """
        attempt = 0
        while True:
            try:
                return await operation()
            except TransientError as exc:
                if attempt >= self.max_retries:
                    log.error(f"{provider}: giving up after {attempt + 1} attempts ({exc.message})")
                    raise ProviderUnavailable(provider, attempt + 1, exc) from exc

                retry_after = exc.retry_after if isinstance(exc, RateLimited) else None
                delay = self.compute_delay(attempt, retry_after, rng)
                log.warning(
                    f"{provider}: attempt {attempt + 1} failed ({exc.message}); retrying in {delay:.2f}s"
                )
                attempt += 1
                await sleep(delay)
