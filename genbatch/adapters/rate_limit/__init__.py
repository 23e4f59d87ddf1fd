"""Rate limiting adapters.

This package provides the pacing primitives used by the scheduler: a fixed
token bucket and an adaptive wrapper that reacts to remote throttling.
"""

from genbatch.adapters.rate_limit.adaptive import AdaptiveLimiter
from genbatch.adapters.rate_limit.base import (
    AbstractRateLimiter,
    AdaptiveLimiterStatus,
    LimiterStatus,
)
from genbatch.adapters.rate_limit.token_bucket import TokenBucketLimiter

__all__ = [
    "AbstractRateLimiter",
    "AdaptiveLimiter",
    "AdaptiveLimiterStatus",
    "LimiterStatus",
    "TokenBucketLimiter",
]
