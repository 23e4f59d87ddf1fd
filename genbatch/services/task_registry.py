"""In-memory registry of background work with a barrier.

Work functions are started as asyncio tasks the moment they are submitted.
Each settles exactly once: the entry moves from the in-flight set to the
completed set in a single synchronous step, so at any observation point an
id is in exactly one of {in-flight, completed, absent}.

All state lives in process memory and is lost on restart. The registry is
bound to the event loop that submits to it and is not thread-safe.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Awaitable, Callable
from uuid import uuid4

from genbatch.core.errors import AppError, DuplicateTaskError, classify_error
from genbatch.core.logging import bind_task_id, reset_task_id

logger = logging.getLogger(__name__)

WorkFn = Callable[[], Awaitable[Any]]


class TaskState(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class TaskOutcome:
    """Terminal record of a settled task.

    Attributes:
        task_id: Task identifier.
        category: Category tag the task was submitted under, if any.
        success: Whether the work function returned normally.
        result: Returned value when successful.
        error: Serialized ``AppError`` (kind, code, message, details) on failure.
        submitted_at: UNIX time the task was registered.
        completed_at: UNIX time the task settled.
    """

    task_id: str
    category: str | None
    success: bool
    submitted_at: float
    completed_at: float
    result: Any = None
    error: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class TaskSubmission:
    task_id: str
    handle: asyncio.Task[None]


@dataclass(frozen=True)
class TaskStatusReport:
    task_id: str
    state: TaskState
    category: str | None = None
    outcome: TaskOutcome | None = None


@dataclass(frozen=True)
class BarrierResult:
    completed: int
    results: list[TaskOutcome]


@dataclass(frozen=True)
class RegistryStats:
    in_flight: int
    completed: int
    total_processed: int

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass
class _InFlightEntry:
    task_id: str
    category: str | None
    submitted_at: float
    handle: asyncio.Task[None] | None = None


class TaskRegistry:
    """Tracks in-flight and completed work and exposes a barrier.

    Attributes:
        total_processed: Number of tasks that have settled since creation.
    """

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._in_flight: dict[str, _InFlightEntry] = {}
        self._completed: dict[str, TaskOutcome] = {}
        self.total_processed = 0

    def submit(
        self,
        work: WorkFn,
        task_id: str | None = None,
        *,
        category: str | None = None,
    ) -> TaskSubmission:
        """Register a task and start running ``work`` without waiting for it.

        Must be called from inside a running event loop.

        Args:
            work: Zero-argument coroutine function performing the work.
            task_id: Optional caller-supplied id; generated when omitted.
            category: Optional category tag recorded with the outcome.

        Returns:
            TaskSubmission with the id and the asyncio handle.

        Raises:
            DuplicateTaskError: If ``task_id`` is already tracked.
        """
        if task_id is None:
            task_id = self._generate_task_id()
        elif self._is_tracked(task_id):
            raise DuplicateTaskError(
                code="duplicate_task_id",
                message=f"Task id '{task_id}' is already tracked",
                details={"task_id": task_id},
            )

        loop = asyncio.get_running_loop()
        entry = _InFlightEntry(task_id=task_id, category=category, submitted_at=self._clock())
        # Registered before the task exists so an eagerly started task can settle.
        self._in_flight[task_id] = entry
        handle = loop.create_task(self._run(task_id, work), name=f"genbatch-{task_id}")
        entry.handle = handle

        logger.info(
            "task.submitted",
            extra={
                "task_id": task_id,
                "category": category,
                "in_flight": len(self._in_flight),
            },
        )
        return TaskSubmission(task_id=task_id, handle=handle)

    async def barrier(self) -> BarrierResult:
        """Wait for every task in flight at call time, then report outcomes.

        Tasks submitted while waiting are not awaited. The result includes
        every completed-and-uncleared task, including ones that finished
        before this call. Task failures are returned as data, never raised.
        """
        pending = [entry.handle for entry in self._in_flight.values() if entry.handle is not None]
        logger.info("barrier.wait", extra={"in_flight": len(pending)})

        if pending:
            # asyncio.wait (unlike gather) leaves the tasks running if the
            # barrier itself is cancelled.
            await asyncio.wait(pending)

        results = list(self._completed.values())
        logger.info(
            "barrier.done",
            extra={
                "completed": len(results),
                "failed": sum(1 for outcome in results if not outcome.success),
            },
        )
        return BarrierResult(completed=len(results), results=results)

    def status(self, task_id: str) -> TaskStatusReport:
        entry = self._in_flight.get(task_id)
        if entry is not None:
            return TaskStatusReport(
                task_id=task_id,
                state=TaskState.RUNNING,
                category=entry.category,
            )

        outcome = self._completed.get(task_id)
        if outcome is not None:
            return TaskStatusReport(
                task_id=task_id,
                state=TaskState.COMPLETED,
                category=outcome.category,
                outcome=outcome,
            )

        return TaskStatusReport(task_id=task_id, state=TaskState.NOT_FOUND)

    def list_tasks(self) -> list[TaskStatusReport]:
        """Return running tasks followed by completed-and-uncleared ones."""
        running = [
            TaskStatusReport(task_id=entry.task_id, state=TaskState.RUNNING, category=entry.category)
            for entry in self._in_flight.values()
        ]
        completed = [
            TaskStatusReport(
                task_id=outcome.task_id,
                state=TaskState.COMPLETED,
                category=outcome.category,
                outcome=outcome,
            )
            for outcome in self._completed.values()
        ]
        return running + completed

    def clear_completed(self) -> int:
        """Drop all completed entries and return how many were removed."""
        count = len(self._completed)
        self._completed.clear()
        logger.debug("task.cleared", extra={"count": count})
        return count

    def stats(self) -> RegistryStats:
        return RegistryStats(
            in_flight=len(self._in_flight),
            completed=len(self._completed),
            total_processed=self.total_processed,
        )

    async def _run(self, task_id: str, work: WorkFn) -> None:
        token = bind_task_id(task_id)
        try:
            result = await work()
        except asyncio.CancelledError:
            self._settle(
                task_id,
                error=AppError(code="task_cancelled", message="Task was cancelled before it settled"),
            )
            raise
        except Exception as exc:  # noqa: BLE001
            error = classify_error(exc)
            self._settle(task_id, error=error)
        else:
            self._settle(task_id, result=result)
        finally:
            reset_task_id(token)

    def _settle(
        self,
        task_id: str,
        *,
        result: Any = None,
        error: AppError | None = None,
    ) -> None:
        entry = self._in_flight.pop(task_id)
        outcome = TaskOutcome(
            task_id=task_id,
            category=entry.category,
            success=error is None,
            submitted_at=entry.submitted_at,
            completed_at=self._clock(),
            result=result,
            error=error.to_dict() if error is not None else None,
        )
        self._completed[task_id] = outcome
        self.total_processed += 1

        if error is None:
            logger.info(
                "task.completed",
                extra={"task_id": task_id, "category": entry.category},
            )
        else:
            logger.warning(
                "task.failed",
                extra={
                    "task_id": task_id,
                    "category": entry.category,
                    "error_kind": error.kind.value,
                    "error_code": error.code,
                },
            )

    def _is_tracked(self, task_id: str) -> bool:
        return task_id in self._in_flight or task_id in self._completed

    def _generate_task_id(self) -> str:
        while True:
            task_id = f"task_{int(self._clock() * 1000)}_{uuid4().hex[:9]}"
            if not self._is_tracked(task_id):
                return task_id
