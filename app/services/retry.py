"""
Bounded retry for generation calls.

Every exception counts as a failed attempt: network errors, timeouts and
malformed model output are all treated as transient.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryOrchestrator:
    def __init__(
        self,
        max_attempts: int = 2,
        delay_seconds: float = 2.0,
        attempt_timeout: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.delay_seconds = delay_seconds
        self.attempt_timeout = attempt_timeout
        self._sleep = sleep

    async def with_retry(self, op: Callable[[], Awaitable[T]], label: str = "operation") -> T:
        """
        Run op up to max_attempts times, waiting delay_seconds between
        attempts (not after the last). Re-raises the last error unchanged.
        """
        last_error: Optional[Exception] = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                if self.attempt_timeout is not None:
                    return await asyncio.wait_for(op(), timeout=self.attempt_timeout)
                return await op()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                last_error = e
                logger.warning(
                    f"{label} attempt {attempt}/{self.max_attempts} failed: {e!r}"
                )
                if attempt < self.max_attempts:
                    await self._sleep(self.delay_seconds)

        raise last_error
