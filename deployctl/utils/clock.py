import asyncio
import time
from typing import Optional


class Clock:
    """Monotonic time source with waits that an abort signal can interrupt."""

    def now(self) -> float:
        return time.monotonic()

    async def wait(self, seconds: float, abort: Optional[asyncio.Event] = None) -> bool:
        """Sleep for ``seconds``; return True if ``abort`` fired first."""
        if abort is None:
            await asyncio.sleep(seconds)
            return False
        if abort.is_set():
            return True
        try:
            await asyncio.wait_for(abort.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False
