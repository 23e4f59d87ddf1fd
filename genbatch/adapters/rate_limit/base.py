"""Rate limiter interfaces.

The scheduler depends on this abstraction (not the concrete implementation)
so a fixed token bucket and its adaptive wrapper are interchangeable.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Any


@dataclass(frozen=True)
class LimiterStatus:
    """Read-only snapshot of a limiter.

    Attributes:
        tokens: Tokens available right now (never above burst).
        queue_length: Acquire calls waiting for a token.
        rpm: Requests per minute currently enforced.
        burst: Maximum tokens available at once.
    """

    tokens: float
    queue_length: int
    rpm: float
    burst: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class AdaptiveLimiterStatus(LimiterStatus):
    """Limiter snapshot plus the adaptive backoff state.

    Attributes:
        consecutive_errors: Current rate-limit penalty counter.
        adapted_rpm: Effective RPM after backoff/recovery.
        original_rpm: RPM the limiter was configured with.
        last_error_at: Monotonic timestamp of the last rate-limit error, if any.
    """

    consecutive_errors: int = 0
    adapted_rpm: float = 0.0
    original_rpm: float = 0.0
    last_error_at: float | None = None


class AbstractRateLimiter(ABC):
    """Interface for limiters that pace admission of work."""

    @abstractmethod
    async def acquire(self) -> None:
        """Wait until a token is granted. Waiters are served in FIFO order."""
        raise NotImplementedError

    @abstractmethod
    def status(self) -> LimiterStatus:
        """Return a snapshot after refilling tokens for elapsed time."""
        raise NotImplementedError

    @abstractmethod
    def reset(self) -> None:
        """Fail pending waiters and restore the bucket to full burst."""
        raise NotImplementedError
