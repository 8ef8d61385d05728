"""Workspace-wide throttle for Slack Web API calls.

Every outbound Slack call acquires one token first. Tokens are emitted by a
ticker task at a fixed period, so call starts are spaced at least one
interval apart no matter how many tasks are waiting.
"""
import logging

import trio

logger = logging.getLogger(__name__)


class RateLimiter:
    """Fixed-period token emitter.

    Tokens are handed over on a zero-buffer memory channel with
    ``send_nowait``: a tick with no waiting task is dropped, so idle time
    never turns into a burst of calls later.

    Attributes:
        interval: Seconds between tokens
        tokens_issued: Number of tokens handed to callers so far
    """

    def __init__(self, interval_seconds: float = 3.0) -> None:
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive, got {interval_seconds}")
        self.interval = float(interval_seconds)
        self.tokens_issued = 0
        self._send, self._receive = trio.open_memory_channel(0)

    async def run(self) -> None:
        """Emit one token per interval, forever."""
        logger.info("Rate limiter started: 1 API call per %ss", self.interval)
        deadline = trio.current_time()
        while True:
            deadline += self.interval
            await trio.sleep_until(deadline)
            now = trio.current_time()
            if now - deadline >= self.interval:
                # stalled past one or more ticks; drop them instead of catching up
                deadline = now
            try:
                self._send.send_nowait(None)
            except trio.WouldBlock:
                continue
            self.tokens_issued += 1

    async def acquire(self) -> None:
        """Block until the next token is available."""
        await self._receive.receive()
