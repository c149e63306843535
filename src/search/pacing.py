"""
Pacing gate for outbound searches.

Guarantees a minimum gap between consecutive searches of one engine
instance. Waiting suspends the calling task only; the event loop keeps
running.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any

from src.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_MIN_INTERVAL = 2.5


class PacingGate:
    """
    Minimum-interval gate.

    wait_turn() returns once min_interval has passed since the previous
    wait_turn() returned. Callers are served one at a time in arrival order.

    Example:
        gate = PacingGate(min_interval=2.5)
        await gate.wait_turn()
        await page.goto(url)
    """

    def __init__(
        self,
        min_interval: float = DEFAULT_MIN_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if min_interval < 0:
            raise ValueError("min_interval must be >= 0")
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._last_request: float | None = None
        self._lock = asyncio.Lock()

    @property
    def last_request(self) -> float | None:
        return self._last_request

    async def wait_turn(self) -> float:
        """Wait until the next request may go out.

        Returns:
            Seconds waited.
        """
        async with self._lock:
            waited = 0.0
            if self._last_request is not None:
                elapsed = self._clock() - self._last_request
                if elapsed < self.min_interval:
                    waited = self.min_interval - elapsed
                    logger.debug("Pacing wait", wait_seconds=round(waited, 3))
                    await self._sleep(waited)

            self._last_request = self._clock()
            return waited

    def reset(self) -> None:
        """Forget the previous request. For testing purposes."""
        self._last_request = None
