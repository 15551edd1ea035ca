"""
Clock abstraction used by every scheduler and polling loop.

All waits in the engine go through a Clock so tests can drive time
deterministically instead of sleeping for real.
"""

import asyncio
import time


class Clock:
    """Wall clock in epoch milliseconds plus an awaitable sleep."""

    def now_ms(self) -> int:
        return int(time.time() * 1000)

    async def sleep(self, seconds: float):
        await asyncio.sleep(max(0.0, seconds))


SYSTEM_CLOCK = Clock()
