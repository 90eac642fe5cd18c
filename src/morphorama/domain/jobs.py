"""Models for durable evolution jobs."""

from uuid import UUID

from pydantic import BaseModel, Field


class EvolutionJobPayload(BaseModel):
    """Work item carried by the queue."""

    job_id: str
    run_id: UUID
    source_photo_id: UUID


class EvolutionJobStatus(BaseModel):
    """Queue-side view of a job, including its last reported progress."""

    job_id: str
    run_id: UUID
    source_photo_id: UUID
    status: str
    attempts: int = Field(default=0, ge=0)
    iteration: int = Field(default=0, ge=0)
    total: int | None = Field(default=None, ge=1)
    progress: int = Field(default=0, ge=0, le=100)
    last_error: str | None = None
    enqueued_at: float | None = None
    processing_started_at: float | None = None
    finished_at: float | None = None
