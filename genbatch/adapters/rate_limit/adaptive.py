"""Adaptive limiter: token bucket pacing that reacts to remote throttling.

Backoff is fast and exponential; recovery is slow and multiplicative, one
step per success once the penalty has been paid off.
"""

from __future__ import annotations

import logging
import math
import time
from typing import Callable

from genbatch.adapters.rate_limit.base import AbstractRateLimiter, AdaptiveLimiterStatus
from genbatch.adapters.rate_limit.token_bucket import TokenBucketLimiter
from genbatch.core.errors import ErrorKind, classify_error

logger = logging.getLogger(__name__)

# Never pace slower than one request per window.
MIN_RPM = 1.0


class AdaptiveLimiter(AbstractRateLimiter):
    """Wraps a ``TokenBucketLimiter`` and adjusts its rate from outcomes.

    Only RATE_LIMIT failures change state; validation, network, timeout and
    other failures are ignored here.
    """

    def __init__(
        self,
        bucket: TokenBucketLimiter,
        *,
        backoff_factor: float = 0.7,
        recovery_factor: float = 1.05,
        max_backoff_exponent: int = 5,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if not 0 < backoff_factor <= 1:
            raise ValueError("backoff_factor must be in (0, 1]")
        if recovery_factor < 1:
            raise ValueError("recovery_factor must be >= 1")
        if max_backoff_exponent < 0:
            raise ValueError("max_backoff_exponent must be >= 0")

        self._bucket = bucket
        self._original_rpm = bucket.rpm
        self._backoff_factor = backoff_factor
        self._recovery_factor = recovery_factor
        self._max_backoff_exponent = max_backoff_exponent
        self._clock = clock

        self._consecutive_errors = 0
        self._last_error_at: float | None = None

    @classmethod
    def create(
        cls,
        *,
        rpm: float,
        burst: int,
        window_seconds: float = 60.0,
        backoff_factor: float = 0.7,
        recovery_factor: float = 1.05,
        max_backoff_exponent: int = 5,
        name: str = "default",
    ) -> "AdaptiveLimiter":
        """Build an adaptive limiter around a fresh token bucket."""
        bucket = TokenBucketLimiter(
            rpm=rpm,
            burst=burst,
            window_seconds=window_seconds,
            name=name,
        )
        return cls(
            bucket,
            backoff_factor=backoff_factor,
            recovery_factor=recovery_factor,
            max_backoff_exponent=max_backoff_exponent,
        )

    @property
    def name(self) -> str:
        return self._bucket.name

    @property
    def consecutive_errors(self) -> int:
        return self._consecutive_errors

    @property
    def effective_rpm(self) -> float:
        return self._bucket.rpm

    @property
    def original_rpm(self) -> float:
        return self._original_rpm

    async def acquire(self) -> None:
        await self._bucket.acquire()

    def on_success(self) -> None:
        """Pay off one step of penalty; recover the rate once it is cleared."""
        if self._consecutive_errors > 0:
            self._consecutive_errors -= 1

        if self._consecutive_errors == 0 and self._bucket.rpm < self._original_rpm:
            recovered = min(self._original_rpm, self._bucket.rpm * self._recovery_factor)
            self._bucket.set_rpm(recovered)
            logger.info(
                "rate_limit.recovered",
                extra={
                    "limiter": self.name,
                    "rpm": round(recovered, 3),
                    "original_rpm": self._original_rpm,
                },
            )

    def on_failure(self, error: ErrorKind | BaseException) -> None:
        """Apply backoff if ``error`` is a rate-limit rejection.

        Args:
            error: Failure kind, or the exception raised by the work function.
        """
        kind = error if isinstance(error, ErrorKind) else classify_error(error).kind
        if kind is not ErrorKind.RATE_LIMIT:
            return

        self._consecutive_errors += 1
        self._last_error_at = self._clock()

        multiplier = self._backoff_factor ** min(
            self._consecutive_errors, self._max_backoff_exponent
        )
        adapted = max(MIN_RPM, self._original_rpm * multiplier)
        self._bucket.set_rpm(adapted)
        # An in-progress burst must not spend through the old allowance.
        self._bucket.clamp_tokens(math.floor(self._bucket.burst * multiplier))

        logger.warning(
            "rate_limit.backoff",
            extra={
                "limiter": self.name,
                "consecutive_errors": self._consecutive_errors,
                "rpm": round(adapted, 3),
                "original_rpm": self._original_rpm,
            },
        )

    def status(self) -> AdaptiveLimiterStatus:
        base = self._bucket.status()
        return AdaptiveLimiterStatus(
            tokens=base.tokens,
            queue_length=base.queue_length,
            rpm=base.rpm,
            burst=base.burst,
            consecutive_errors=self._consecutive_errors,
            adapted_rpm=self._bucket.rpm,
            original_rpm=self._original_rpm,
            last_error_at=self._last_error_at,
        )

    def reset(self) -> None:
        """Drop any penalty and reset the underlying bucket."""
        self._consecutive_errors = 0
        self._last_error_at = None
        self._bucket.set_rpm(self._original_rpm)
        self._bucket.reset()
