"""Category-scoped, rate-limited task submission.

The scheduler owns one ``AdaptiveLimiter`` per category and a shared
``TaskRegistry``. Submitting work returns immediately with a task id; the
work itself first waits for its category's limiter, then runs, and its
outcome feeds both the category metrics and the limiter's backoff state.

Categories are fully independent: a saturated image queue never delays
speech submissions.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any

from genbatch.adapters.rate_limit.adaptive import AdaptiveLimiter
from genbatch.core.config import RateLimitSettings
from genbatch.core.errors import ValidationAppError, classify_error
from genbatch.services.task_registry import BarrierResult, TaskRegistry, TaskSubmission, WorkFn

logger = logging.getLogger(__name__)


class TaskCategory(str, Enum):
    IMAGE = "image"
    SPEECH = "speech"


@dataclass
class CategoryMetrics:
    """Counters for one category. Only reset by an explicit operator call.

    ``requests`` counts work that got past the limiter; each such request
    ends in exactly one of ``successes`` or ``errors`` (cancellation counts
    as an error).
    """

    requests: int = 0
    successes: int = 0
    errors: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


def build_limiters(config: RateLimitSettings) -> dict[TaskCategory, AdaptiveLimiter]:
    """Create one adaptive limiter per category from configuration."""

    limits = {
        TaskCategory.IMAGE: (config.image_rpm, config.image_burst),
        TaskCategory.SPEECH: (config.speech_rpm, config.speech_burst),
    }
    return {
        category: AdaptiveLimiter.create(
            rpm=rpm,
            burst=burst,
            window_seconds=config.window_seconds,
            backoff_factor=config.backoff_factor,
            recovery_factor=config.recovery_factor,
            max_backoff_exponent=config.max_backoff_exponent,
            name=category.value,
        )
        for category, (rpm, burst) in limits.items()
    }


class CategoryScheduler:
    """Public entry point: rate-limited submission plus barrier.

    Attributes:
        registry: Registry tracking every submitted task.
        limiters: Adaptive limiter per category.
    """

    def __init__(
        self,
        limiters: dict[TaskCategory, AdaptiveLimiter],
        registry: TaskRegistry | None = None,
    ) -> None:
        self.registry = registry or TaskRegistry()
        self.limiters = dict(limiters)
        self._metrics = {category: CategoryMetrics() for category in self.limiters}

    @classmethod
    def from_settings(
        cls,
        config: RateLimitSettings,
        registry: TaskRegistry | None = None,
    ) -> "CategoryScheduler":
        return cls(build_limiters(config), registry=registry)

    def submit_categorized(
        self,
        category: TaskCategory | str,
        work: WorkFn,
        task_id: str | None = None,
    ) -> TaskSubmission:
        """Submit ``work`` gated by the category's limiter.

        Args:
            category: Category tag, e.g. ``"image"`` or ``"speech"``.
            work: Zero-argument coroutine function performing one remote call.
            task_id: Optional caller-supplied id.

        Returns:
            TaskSubmission; the id is available immediately.

        Raises:
            ValidationAppError: If the category is unknown.
            DuplicateTaskError: If ``task_id`` is already tracked.
        """
        resolved = self._resolve_category(category)
        limiter = self.limiters[resolved]
        metrics = self._metrics[resolved]

        async def rate_limited_work() -> Any:
            await limiter.acquire()
            metrics.requests += 1
            try:
                result = await work()
            except asyncio.CancelledError:
                # No limiter feedback for cancelled work.
                metrics.errors += 1
                raise
            except Exception as exc:
                metrics.errors += 1
                error = classify_error(exc)
                limiter.on_failure(error.kind)
                if error is exc:
                    raise
                raise error from exc
            metrics.successes += 1
            limiter.on_success()
            return result

        return self.registry.submit(rate_limited_work, task_id, category=resolved.value)

    def submit_image(self, work: WorkFn, task_id: str | None = None) -> TaskSubmission:
        return self.submit_categorized(TaskCategory.IMAGE, work, task_id)

    def submit_speech(self, work: WorkFn, task_id: str | None = None) -> TaskSubmission:
        return self.submit_categorized(TaskCategory.SPEECH, work, task_id)

    async def collect(self) -> BarrierResult:
        """Barrier, then clear the collected outcomes."""
        result = await self.registry.barrier()
        self.registry.clear_completed()
        return result

    def rate_limiter_status(self) -> dict[str, dict[str, Any]]:
        return {
            category.value: limiter.status().to_dict()
            for category, limiter in self.limiters.items()
        }

    def metrics(self) -> dict[str, Any]:
        """Per-category counters plus limiter snapshots and registry stats."""
        return {
            "categories": {
                category.value: metrics.to_dict()
                for category, metrics in self._metrics.items()
            },
            "rate_limiters": self.rate_limiter_status(),
            "tasks": self.registry.stats().to_dict(),
        }

    def reset_metrics(self) -> None:
        """Zero all counters and return every limiter to its initial state.

        Waiters still queued on a limiter fail with ``LimiterResetError``.
        """
        # Zeroed in place: in-flight work holds references to these objects.
        for metrics in self._metrics.values():
            metrics.requests = 0
            metrics.successes = 0
            metrics.errors = 0
        for limiter in self.limiters.values():
            limiter.reset()
        logger.info("metrics.reset", extra={"categories": [c.value for c in self.limiters]})

    def _resolve_category(self, category: TaskCategory | str) -> TaskCategory:
        try:
            resolved = TaskCategory(category)
        except ValueError:
            resolved = None
        if resolved is None or resolved not in self.limiters:
            raise ValidationAppError(
                code="unknown_category",
                message=f"Unknown task category: {category}",
                details={"category": str(category)},
            )
        return resolved
