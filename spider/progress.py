from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

_CENT = Decimal("0.01")

if TYPE_CHECKING:
    from .queue import RequestQueue


def percent_of(done: int, total: int) -> int:
    """Whole percent of ``done/total``, the ratio rounded half-up to two decimals first."""
    ratio = (Decimal(done) / Decimal(total)).quantize(_CENT, rounding=ROUND_HALF_UP)
    return int(ratio * 100)


class ProgressReporter:
    """Logs crawl progress every ``log_step`` resolved requests."""

    def __init__(self, queue: "RequestQueue", log_step: int, logger: logging.Logger):
        self.queue = queue
        self.log_step = max(1, int(log_step))
        self.log = logger

    async def report(self) -> Optional[int]:
        total = await self.queue.total()
        overplus = await self.queue.overplus()
        done = total if overplus <= 0 else total - overplus
        if total <= 0 or done % self.log_step != 0:
            return None
        percent = percent_of(done, total)
        self.log.info("crawl progress: %d%%, done: %d, remaining: %d", percent, done, max(overplus, 0))
        return percent


class PopulationProgress:
    """Queue-build progress against the caller's expected queue length, in >=5 point steps."""

    def __init__(self, queue_len: Optional[int], logger: logging.Logger, *, min_delta: int = 5):
        self.queue_len = queue_len
        self.log = logger
        self.min_delta = min_delta
        self._last = 0

    async def step(self, index: int, length: Callable[[], Awaitable[int]]) -> Optional[int]:
        if not self.queue_len:
            return None
        current = percent_of(index + 1, self.queue_len)
        if current - self._last < self.min_delta:
            return None
        self._last = current
        self.log.info("queue build: %d%%, queue length: %d", current, await length())
        return current
