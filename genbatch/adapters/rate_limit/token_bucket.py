"""In-process token bucket limiter.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Bound to one asyncio event loop: every mutation runs inside a single loop
  turn, so two acquirers can never both take the same last token.
- Waiters that cannot be served immediately are queued FIFO and released by
  a timer scheduled for the next expected token, so they progress without
  new callers arriving.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections import deque
from typing import Callable

from genbatch.adapters.rate_limit.base import AbstractRateLimiter, LimiterStatus
from genbatch.core.errors import LimiterResetError

logger = logging.getLogger(__name__)


class TokenBucketLimiter(AbstractRateLimiter):
    """Requests-per-minute limiter with burst capacity.

    Tokens refill at ``rpm / window_seconds`` per second, in whole-token
    increments, up to ``burst``. ``acquire()`` never rejects: it queues and
    eventually grants, preserving arrival order among waiters.
    """

    def __init__(
        self,
        *,
        rpm: float,
        burst: int = 1,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        name: str = "default",
    ) -> None:
        """Initialize the limiter with a full bucket.

        Args:
            rpm: Requests allowed per window.
            burst: Maximum tokens available at once.
            window_seconds: Window length the RPM refers to.
            clock: Monotonic time source in seconds.
            name: Label used in logs (usually the category).

        Raises:
            ValueError: If rpm, burst or window_seconds are invalid.
        """
        if rpm <= 0:
            raise ValueError("rpm must be > 0")
        if burst < 1:
            raise ValueError("burst must be >= 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")

        self.name = name
        self._rpm = float(rpm)
        self._burst = int(burst)
        self._window_seconds = float(window_seconds)
        self._interval = self._window_seconds / self._rpm
        self._clock = clock

        self._tokens = float(self._burst)
        self._last_refill = clock()
        self._waiters: deque[asyncio.Future[None]] = deque()
        self._timer: asyncio.TimerHandle | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def rpm(self) -> float:
        return self._rpm

    @property
    def burst(self) -> int:
        return self._burst

    @property
    def window_seconds(self) -> float:
        return self._window_seconds

    @property
    def interval(self) -> float:
        """Seconds between two refilled tokens at the current rate."""
        return self._interval

    async def acquire(self) -> None:
        """Wait for a token.

        Raises:
            LimiterResetError: If the limiter is reset while this call waits.
        """
        loop = asyncio.get_running_loop()
        self._loop = loop
        waiter: asyncio.Future[None] = loop.create_future()
        self._waiters.append(waiter)
        self._process_queue()

        if not waiter.done():
            logger.debug(
                "rate_limit.queued",
                extra={
                    "limiter": self.name,
                    "queue_length": len(self._waiters),
                    "rpm": self._rpm,
                },
            )

        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.cancelled():
                # Never granted; stop counting it as queued.
                if waiter in self._waiters:
                    self._waiters.remove(waiter)
            elif waiter.exception() is None:
                # Granted, but the caller went away before using the token.
                self._tokens = min(float(self._burst), self._tokens + 1)
                self._process_queue()
            raise

    def status(self) -> LimiterStatus:
        self._process_queue()
        return LimiterStatus(
            tokens=self._tokens,
            queue_length=len(self._waiters),
            rpm=self._rpm,
            burst=self._burst,
        )

    def reset(self) -> None:
        """Fail every queued waiter and restore tokens to full burst."""
        self._cancel_timer()

        pending = list(self._waiters)
        self._waiters.clear()
        failed = 0
        for waiter in pending:
            if waiter.done():
                continue
            waiter.set_exception(
                LimiterResetError(
                    code="limiter_reset",
                    message=f"Rate limiter '{self.name}' was reset while waiting",
                )
            )
            failed += 1

        self._tokens = float(self._burst)
        self._last_refill = self._clock()

        logger.info(
            "rate_limit.reset",
            extra={"limiter": self.name, "failed_waiters": failed},
        )

    def set_rpm(self, rpm: float) -> None:
        """Change the refill rate, banking tokens earned at the old rate first."""
        if rpm <= 0:
            raise ValueError("rpm must be > 0")

        self._refill()
        self._rpm = float(rpm)
        self._interval = self._window_seconds / self._rpm

        # The pending timer was computed from the old interval.
        self._cancel_timer()
        self._schedule_next()

    def clamp_tokens(self, max_tokens: float) -> None:
        """Lower the available tokens to at most ``max_tokens``."""
        self._refill()
        self._tokens = min(self._tokens, max(0.0, float(max_tokens)))

    def _refill(self) -> None:
        now = self._clock()

        # Time spent with a full bucket is never banked.
        if self._tokens >= self._burst:
            self._last_refill = now
            return

        elapsed = now - self._last_refill
        if elapsed < self._interval:
            return

        added = math.floor(elapsed / self._interval)
        self._tokens = min(float(self._burst), self._tokens + added)
        if self._tokens >= self._burst:
            self._last_refill = now
        else:
            # Advance only by the time the added tokens account for so the
            # fractional remainder carries over to the next refill.
            self._last_refill += added * self._interval

    def _process_queue(self) -> None:
        self._refill()

        while self._waiters and self._tokens >= 1:
            waiter = self._waiters.popleft()
            if waiter.done():
                # Cancelled by its caller before being served.
                continue
            self._tokens -= 1
            waiter.set_result(None)

        self._schedule_next()

    def _schedule_next(self) -> None:
        if not self._waiters or self._timer is not None or self._loop is None:
            return
        if self._loop.is_closed():
            return

        delay = max(0.0, self._interval - (self._clock() - self._last_refill))
        self._timer = self._loop.call_later(delay, self._on_timer)

    def _on_timer(self) -> None:
        self._timer = None
        self._process_queue()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
