"""Tests for the in-memory task registry and its barrier."""

from __future__ import annotations

import asyncio

import pytest

from genbatch.core.errors import DuplicateTaskError, ErrorKind, RateLimitAppError
from genbatch.services.task_registry import TaskRegistry, TaskState


def _returning(value, delay: float = 0.0):
    async def work():
        if delay:
            await asyncio.sleep(delay)
        return value

    return work


def _raising(exc: Exception, delay: float = 0.0):
    async def work():
        if delay:
            await asyncio.sleep(delay)
        raise exc

    return work


@pytest.mark.asyncio
async def test_barrier_with_no_tasks_returns_zero() -> None:
    registry = TaskRegistry()

    result = await registry.barrier()

    assert result.completed == 0
    assert result.results == []


@pytest.mark.asyncio
async def test_submit_returns_immediately_with_running_state() -> None:
    registry = TaskRegistry()
    release = asyncio.Event()

    async def work():
        await release.wait()
        return "done"

    submission = registry.submit(work, "task-1")

    assert submission.task_id == "task-1"
    assert registry.status("task-1").state is TaskState.RUNNING
    assert registry.stats().in_flight == 1

    release.set()
    await registry.barrier()
    assert registry.status("task-1").state is TaskState.COMPLETED


@pytest.mark.asyncio
async def test_generated_ids_are_unique() -> None:
    registry = TaskRegistry()

    ids = {registry.submit(_returning(i)).task_id for i in range(20)}

    assert len(ids) == 20
    assert all(task_id.startswith("task_") for task_id in ids)
    await registry.barrier()


@pytest.mark.asyncio
async def test_duplicate_id_is_rejected_while_tracked() -> None:
    registry = TaskRegistry()
    registry.submit(_returning(1), "same")

    with pytest.raises(DuplicateTaskError):
        registry.submit(_returning(2), "same")

    await registry.barrier()
    # Still tracked as completed until cleared.
    with pytest.raises(DuplicateTaskError):
        registry.submit(_returning(3), "same")

    registry.clear_completed()
    registry.submit(_returning(4), "same")
    result = await registry.barrier()
    assert [outcome.result for outcome in result.results] == [4]


@pytest.mark.asyncio
async def test_barrier_waits_for_all_in_flight_tasks() -> None:
    registry = TaskRegistry()
    for i in range(5):
        registry.submit(_returning(i, delay=0.01 * (5 - i)), f"t{i}")

    result = await registry.barrier()

    assert result.completed == 5
    assert sorted(outcome.result for outcome in result.results) == [0, 1, 2, 3, 4]
    assert registry.stats().in_flight == 0


@pytest.mark.asyncio
async def test_failures_are_recorded_not_raised() -> None:
    registry = TaskRegistry()
    registry.submit(_returning("ok"), "good")
    registry.submit(_raising(RateLimitAppError(code="provider_rate_limited", message="slow")), "throttled")
    registry.submit(_raising(RuntimeError("boom")), "broken")

    result = await registry.barrier()

    outcomes = {outcome.task_id: outcome for outcome in result.results}
    assert outcomes["good"].success is True
    assert outcomes["throttled"].success is False
    assert outcomes["throttled"].error["kind"] == ErrorKind.RATE_LIMIT.value
    assert outcomes["broken"].error["kind"] == ErrorKind.GENERIC.value
    assert outcomes["broken"].error["message"] == "boom"


@pytest.mark.asyncio
async def test_failed_task_is_completed_until_cleared() -> None:
    registry = TaskRegistry()
    registry.submit(_raising(ValueError("bad input")), "t1")
    await registry.barrier()

    report = registry.status("t1")
    assert report.state is TaskState.COMPLETED
    assert report.outcome is not None
    assert report.outcome.success is False
    assert report.outcome.error["kind"] == ErrorKind.VALIDATION.value

    assert registry.clear_completed() == 1
    assert registry.status("t1").state is TaskState.NOT_FOUND


@pytest.mark.asyncio
async def test_barrier_includes_tasks_finished_before_the_call() -> None:
    registry = TaskRegistry()
    registry.submit(_returning("early"), "early")
    await asyncio.sleep(0.01)
    assert registry.status("early").state is TaskState.COMPLETED

    registry.submit(_returning("late", delay=0.01), "late")
    result = await registry.barrier()

    assert {outcome.task_id for outcome in result.results} == {"early", "late"}


@pytest.mark.asyncio
async def test_barrier_does_not_wait_for_tasks_submitted_later() -> None:
    registry = TaskRegistry()
    release = asyncio.Event()

    async def blocked():
        await release.wait()

    registry.submit(_returning(1, delay=0.01), "first")

    async def submit_late():
        await asyncio.sleep(0)
        registry.submit(blocked, "late")

    late = asyncio.create_task(submit_late())
    result = await asyncio.wait_for(registry.barrier(), timeout=1.0)
    await late

    assert [outcome.task_id for outcome in result.results] == ["first"]
    assert registry.status("late").state is TaskState.RUNNING

    release.set()
    await registry.barrier()


@pytest.mark.asyncio
async def test_cancelled_task_is_recorded_as_failure() -> None:
    registry = TaskRegistry()
    submission = registry.submit(_returning(1, delay=10), "slow")
    await asyncio.sleep(0)

    submission.handle.cancel()
    result = await registry.barrier()

    assert result.completed == 1
    assert result.results[0].success is False
    assert result.results[0].error["code"] == "task_cancelled"


@pytest.mark.asyncio
async def test_cancelling_barrier_leaves_tasks_running() -> None:
    registry = TaskRegistry()
    registry.submit(_returning("value", delay=0.05), "t1")

    barrier = asyncio.create_task(registry.barrier())
    await asyncio.sleep(0.01)
    barrier.cancel()
    with pytest.raises(asyncio.CancelledError):
        await barrier

    result = await registry.barrier()
    assert result.results[0].success is True
    assert result.results[0].result == "value"


@pytest.mark.asyncio
async def test_list_tasks_and_stats() -> None:
    registry = TaskRegistry()
    release = asyncio.Event()

    async def blocked():
        await release.wait()

    registry.submit(_returning("a"), "done")
    await asyncio.sleep(0)
    registry.submit(blocked, "running")
    await asyncio.sleep(0)

    states = {report.task_id: report.state for report in registry.list_tasks()}
    assert states == {"done": TaskState.COMPLETED, "running": TaskState.RUNNING}
    assert registry.stats().to_dict() == {"in_flight": 1, "completed": 1, "total_processed": 1}

    release.set()
    await registry.barrier()
    registry.clear_completed()
    assert registry.stats().to_dict() == {"in_flight": 0, "completed": 0, "total_processed": 2}
