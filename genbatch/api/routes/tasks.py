from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status

from genbatch.core.auth import verify_api_key
from genbatch.schemas.tasks import (
    BarrierResponse,
    ImageTaskRequest,
    MetricsResponse,
    SpeechTaskRequest,
    TaskListResponse,
    TaskOutcomeModel,
    TaskStatusResponse,
    TaskSubmittedResponse,
)
from genbatch.services.image_service import ImageGenerationService
from genbatch.services.scheduler import CategoryScheduler, TaskCategory
from genbatch.services.speech_service import SpeechGenerationService
from genbatch.services.task_registry import TaskState
from genbatch.utils.file_store import resolve_output_path

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Tasks"], dependencies=[Depends(verify_api_key)])


def get_scheduler(request: Request) -> CategoryScheduler:
    return request.app.state.scheduler


def get_image_service(request: Request) -> ImageGenerationService:
    return request.app.state.image_service


def get_speech_service(request: Request) -> SpeechGenerationService:
    return request.app.state.speech_service


@router.post(
    "/tasks/image",
    response_model=TaskSubmittedResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def submit_image_task(
    body: ImageTaskRequest,
    scheduler: CategoryScheduler = Depends(get_scheduler),
    service: ImageGenerationService = Depends(get_image_service),
) -> TaskSubmittedResponse:
    """Queue one image generation; returns as soon as the task is registered.

    Raises:
        DuplicateTaskError: 400 if ``task_id`` is already tracked.
        ValidationAppError: 400 if ``output_file`` leaves the output directory.
    """
    resolve_output_path(body.output_file, service.output_dir)
    submission = scheduler.submit_image(lambda: service.generate(body), body.task_id)
    return TaskSubmittedResponse(task_id=submission.task_id, category=TaskCategory.IMAGE.value)


@router.post(
    "/tasks/speech",
    response_model=TaskSubmittedResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def submit_speech_task(
    body: SpeechTaskRequest,
    scheduler: CategoryScheduler = Depends(get_scheduler),
    service: SpeechGenerationService = Depends(get_speech_service),
) -> TaskSubmittedResponse:
    """Queue one text-to-speech call; returns as soon as the task is registered."""
    resolve_output_path(body.output_file, service.output_dir)
    submission = scheduler.submit_speech(lambda: service.generate(body), body.task_id)
    return TaskSubmittedResponse(task_id=submission.task_id, category=TaskCategory.SPEECH.value)


@router.post("/tasks/barrier", response_model=BarrierResponse)
async def wait_for_tasks(
    scheduler: CategoryScheduler = Depends(get_scheduler),
) -> BarrierResponse:
    """Wait for every task submitted so far and collect all outcomes.

    Collected outcomes are cleared, so a second barrier only reports tasks
    that settled after this one.
    """
    result = await scheduler.collect()
    logger.info("tasks.collected", extra={"completed": result.completed})
    return BarrierResponse(
        completed=result.completed,
        results=[TaskOutcomeModel.from_outcome(outcome) for outcome in result.results],
    )


@router.get("/tasks", response_model=TaskListResponse)
async def list_tasks(
    scheduler: CategoryScheduler = Depends(get_scheduler),
) -> TaskListResponse:
    return TaskListResponse(
        tasks=[TaskStatusResponse.from_report(report) for report in scheduler.registry.list_tasks()]
    )


@router.get("/tasks/{task_id}", response_model=TaskStatusResponse)
async def get_task_status(
    task_id: str,
    scheduler: CategoryScheduler = Depends(get_scheduler),
) -> TaskStatusResponse:
    report = scheduler.registry.status(task_id)
    if report.state is TaskState.NOT_FOUND:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Task '{task_id}' not found",
        )
    return TaskStatusResponse.from_report(report)


@router.get("/metrics", response_model=MetricsResponse)
async def get_metrics(
    scheduler: CategoryScheduler = Depends(get_scheduler),
) -> MetricsResponse:
    return MetricsResponse(**scheduler.metrics())


@router.post("/metrics/reset", response_model=MetricsResponse)
async def reset_metrics(
    scheduler: CategoryScheduler = Depends(get_scheduler),
) -> MetricsResponse:
    """Zero the counters and restore every limiter to its configured rate.

    Requests still waiting on a limiter fail with ``limiter_reset``.
    """
    scheduler.reset_metrics()
    logger.info("metrics.reset")
    return MetricsResponse(**scheduler.metrics())
