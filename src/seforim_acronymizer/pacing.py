"""
Token-budget pacing for outbound LLM calls.

The upstream service enforces a tokens-per-minute quota. Rather than track
exact token usage, we estimate tokens per request and space calls out by a
fixed minimum delay derived from that estimate.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

from .config import RateLimitConfig

logger = logging.getLogger(__name__)


def monotonic_ms() -> int:
    """Current monotonic time in milliseconds."""
    return int(time.monotonic() * 1000)


class Pacer:
    """
    Enforces a minimum delay between granted call slots.

    One instance should be shared by every caller hitting the same upstream
    quota. ``acquire_slot`` is serialized with a lock so concurrent callers
    cannot both observe the same ``last_call_at_ms``.
    """

    def __init__(
        self,
        config: RateLimitConfig,
        clock: Callable[[], int] = monotonic_ms,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config
        self.last_call_at_ms: int | None = None
        self._min_delay_ms: int | None = None
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()

    @property
    def min_delay_ms(self) -> int:
        """Minimum delay between slots, computed once on first use."""
        if self._min_delay_ms is None:
            self._min_delay_ms = self.config.min_delay_ms()
            logger.debug(
                f"Pacing at {self._min_delay_ms}ms between calls "
                f"(tpm={self.config.tpm_limit}, "
                f"est_tokens={self.config.est_tokens_per_request})"
            )
        return self._min_delay_ms

    async def acquire_slot(self) -> None:
        """Wait until the next call is allowed, then claim it."""
        async with self._lock:
            if self.last_call_at_ms is not None:
                wait_ms = (self.last_call_at_ms + self.min_delay_ms) - self._clock()
                if wait_ms > 0:
                    logger.debug(f"Pacing: waiting {wait_ms}ms")
                    await self._sleep(wait_ms / 1000)
            self.last_call_at_ms = self._clock()
