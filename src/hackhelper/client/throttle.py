"""Per-session request spacing."""

from __future__ import annotations
import asyncio


class RequestThrottle:
    """Keeps at least ``min_interval`` seconds between throttled requests.

    One throttle belongs to one monitoring session; sessions never share
    spacing state.
    """

    def __init__(self, min_interval: float = 0.0):
        self.min_interval = max(0.0, min_interval)
        self.calls = 0
        self._last: float | None = None
        self._lock = asyncio.Lock()

    async def wait(self) -> None:
        async with self._lock:
            loop = asyncio.get_running_loop()
            if self._last is not None and self.min_interval > 0:
                delay = self._last + self.min_interval - loop.time()
                if delay > 0:
                    await asyncio.sleep(delay)
            self._last = loop.time()
            self.calls += 1
