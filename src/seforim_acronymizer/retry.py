"""
Retry handling for rate-limited LLM calls.

Only rate-limit failures are retried. Everything else propagates on the
first attempt so schema and programming errors surface immediately.
"""

import asyncio
import logging
import random
import re
from collections.abc import Awaitable, Callable
from typing import TypeVar

from .config import RateLimitConfig
from .errors import RateLimitError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RATE_LIMIT_MARKERS = ("rate limit", "429", "rate_limit_exceeded")

RETRY_AFTER_PATTERN = re.compile(r"try again in\s*([0-9.]+)s", re.IGNORECASE)


def is_rate_limit(error: BaseException) -> bool:
    """Check whether an error signals upstream quota exhaustion."""
    if isinstance(error, RateLimitError):
        return True
    message = str(error).lower()
    return any(marker in message for marker in RATE_LIMIT_MARKERS)


def retry_after_ms(error: BaseException) -> int | None:
    """
    Extract a server-suggested wait from an error, in milliseconds.

    Prefers the typed ``retry_after`` hint on RateLimitError, then falls back
    to parsing "try again in 2.5s" out of the message.
    """
    retry_after = getattr(error, "retry_after", None)
    if retry_after is not None:
        return round(float(retry_after) * 1000)

    match = RETRY_AFTER_PATTERN.search(str(error))
    if not match:
        return None
    try:
        return round(float(match.group(1)) * 1000)
    except ValueError:
        return None


class RetryGuard:
    """Runs async operations, retrying rate-limit failures with backoff."""

    def __init__(
        self,
        max_retries: int = 8,
        base_delay_ms: int = 1_200,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: random.Random | None = None,
    ):
        self.max_retries = max_retries
        self.base_delay_ms = base_delay_ms
        self._sleep = sleep
        self._rng = rng or random.Random()

    @classmethod
    def from_config(cls, config: RateLimitConfig, **kwargs) -> "RetryGuard":
        return cls(
            max_retries=config.max_retries,
            base_delay_ms=config.base_delay_ms,
            **kwargs,
        )

    def backoff_ms(self, error: BaseException, attempt: int) -> int:
        """Wait before the next attempt: server hint or exponential, plus jitter."""
        wait = retry_after_ms(error)
        if wait is None:
            wait = self.base_delay_ms * (2**attempt)
        jitter = self._rng.randrange(self.base_delay_ms) if self.base_delay_ms > 0 else 0
        return wait + jitter

    async def run_with_retries(self, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Await ``operation()``, retrying on rate-limit failures.

        The operation is invoked at most ``max_retries + 1`` times. Non
        rate-limit errors are raised unchanged on first occurrence; once
        retries are exhausted the last rate-limit error is raised.
        """
        attempt = 0
        while True:
            try:
                return await operation()
            except Exception as e:
                if not is_rate_limit(e):
                    raise
                if attempt >= self.max_retries:
                    logger.error(f"Rate limit retries exhausted after {attempt} retries")
                    raise

                sleep_ms = self.backoff_ms(e, attempt)
                attempt += 1
                logger.warning(
                    f"429 rate limit, backing off {sleep_ms}ms "
                    f"(attempt {attempt}/{self.max_retries})"
                )
                await self._sleep(sleep_ms / 1000)
