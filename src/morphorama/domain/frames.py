"""Domain models for evolution frames."""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID


@dataclass(frozen=True)
class FrameRecord:
    """One persisted output of one iteration."""

    id: UUID
    run_id: UUID
    iteration: int
    file_path: str
    file_size: int
    width: int | None
    height: int | None
    prompt_used: str | None
    generation_time_ms: int | None
    provider: str | None
    model_version: str | None
    created_at: datetime | None = None


@dataclass(frozen=True)
class NewFrame:
    """Frame metadata to be written to the ledger."""

    run_id: UUID
    iteration: int
    file_path: str
    file_size: int
    width: int | None
    height: int | None
    prompt_used: str | None
    generation_time_ms: int | None
    provider: str | None
    model_version: str | None


@dataclass(frozen=True)
class FrameImage:
    """Raw frame bytes with their content type."""

    content: bytes
    content_type: str


@dataclass(frozen=True)
class FrameStats:
    """Aggregate statistics over all frames."""

    total_frames: int
    avg_generation_time_ms: int
    avg_file_size_mb: float
