"""Pydantic schemas for task submission, status, barrier and metrics."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from genbatch.schemas.generation import ImageGenerationRequest, SpeechGenerationRequest
from genbatch.services.task_registry import TaskOutcome, TaskState, TaskStatusReport


class _TaskIdMixin(BaseModel):
    task_id: str | None = Field(
        default=None,
        min_length=1,
        max_length=128,
        description="Optional caller-supplied id; generated when omitted.",
    )


class ImageTaskRequest(ImageGenerationRequest, _TaskIdMixin):
    """Image generation parameters plus an optional task id."""


class SpeechTaskRequest(SpeechGenerationRequest, _TaskIdMixin):
    """Speech generation parameters plus an optional task id."""


class TaskSubmittedResponse(BaseModel):
    task_id: str = Field(..., description="Id to poll or to match in barrier results.")
    category: str


class TaskOutcomeModel(BaseModel):
    """Terminal record of one task."""

    task_id: str
    category: str | None = None
    success: bool
    result: Any = None
    error: dict[str, Any] | None = Field(
        default=None,
        description="kind, code, message and optional details when success is false.",
    )
    submitted_at: float
    completed_at: float

    @classmethod
    def from_outcome(cls, outcome: TaskOutcome) -> "TaskOutcomeModel":
        return cls.model_validate(outcome.to_dict())


class TaskStatusResponse(BaseModel):
    task_id: str
    state: TaskState
    category: str | None = None
    outcome: TaskOutcomeModel | None = None

    @classmethod
    def from_report(cls, report: TaskStatusReport) -> "TaskStatusResponse":
        return cls(
            task_id=report.task_id,
            state=report.state,
            category=report.category,
            outcome=TaskOutcomeModel.from_outcome(report.outcome) if report.outcome else None,
        )


class TaskListResponse(BaseModel):
    tasks: list[TaskStatusResponse] = Field(default_factory=list)


class BarrierResponse(BaseModel):
    completed: int = Field(..., description="Number of outcomes collected by this barrier.")
    results: list[TaskOutcomeModel] = Field(default_factory=list)


class MetricsResponse(BaseModel):
    categories: dict[str, dict[str, int]] = Field(
        ..., description="requests / successes / errors per category."
    )
    rate_limiters: dict[str, dict[str, Any]] = Field(
        ..., description="Adaptive limiter snapshot per category."
    )
    tasks: dict[str, int] = Field(
        ..., description="in_flight / completed / total_processed."
    )
