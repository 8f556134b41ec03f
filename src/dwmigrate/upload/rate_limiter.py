"""Fixed inter-record delay for the upload loop.

DocuWare gives no rate-limit headers to adapt to, so throttling is a single
configurable pause inserted before every upload attempt.
"""

from __future__ import annotations

import asyncio
import logging

logger = logging.getLogger(__name__)


class FixedDelayRateLimiter:
    """Sleeps ``delay_ms`` milliseconds before each upload attempt.

    A delay of 0 disables throttling.
    """

    def __init__(self, delay_ms: int = 0) -> None:
        if delay_ms < 0:
            raise ValueError(f"delay_ms must be >= 0, got {delay_ms}")
        self._delay_ms = delay_ms
        self.wait_count = 0

    @property
    def delay_seconds(self) -> float:
        return self._delay_ms / 1000.0

    async def wait_if_needed(self) -> None:
        """Sleep for the configured delay (no-op when it is 0)."""
        if self._delay_ms <= 0:
            return
        self.wait_count += 1
        logger.debug("Rate limiter: sleeping %.3fs", self.delay_seconds)
        await asyncio.sleep(self.delay_seconds)
