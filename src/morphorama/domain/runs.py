"""Domain models for evolution runs."""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from uuid import UUID


class RunStatus(StrEnum):
    """Lifecycle states of an evolution run."""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class EvolutionMode(StrEnum):
    """How each iteration's instruction is obtained."""

    GUIDED = "guided"
    FIXED = "fixed"


DEFAULT_TOTAL_ITERATIONS = 60


@dataclass(frozen=True)
class RunRecord:
    """Represents a persisted evolution run."""

    id: UUID
    source_photo_id: UUID
    status: RunStatus
    mode: EvolutionMode
    current_iteration: int
    total_iterations: int
    retry_count: int = 0
    error_message: str | None = None
    queue_job_id: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_seconds: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in {RunStatus.COMPLETED, RunStatus.FAILED}


@dataclass(frozen=True)
class RunProgress:
    """Snapshot of a run's progress for polling clients."""

    run_id: UUID
    status: RunStatus
    current_iteration: int
    total_iterations: int
    percentage: int
    error_message: str | None = None


@dataclass(frozen=True)
class RunStats:
    """Counts of runs by status."""

    total: int
    queued: int
    processing: int
    completed: int
    failed: int


@dataclass(frozen=True)
class EvolutionOutcome:
    """Result returned once a run reaches a terminal state."""

    run_id: UUID
    status: RunStatus
    frames_generated: int
    duration_seconds: int
    error: str | None = None


@dataclass(frozen=True)
class EvolutionProgress:
    """Per-iteration progress event."""

    run_id: UUID
    iteration: int
    total: int

    @property
    def percentage(self) -> int:
        return progress_percentage(self.iteration, self.total)


def progress_percentage(current: int, total: int) -> int:
    """Return the completed share of a run as a whole percentage."""
    if total <= 0:
        return 0
    return round(current / total * 100)
