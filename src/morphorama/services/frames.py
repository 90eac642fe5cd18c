"""Frame store: blob bytes plus the frame metadata ledger."""

import logging
from dataclasses import dataclass
from typing import Protocol
from uuid import UUID

from morphorama.domain.errors import NotFoundError
from morphorama.domain.frames import FrameImage, FrameRecord, FrameStats, NewFrame
from morphorama.domain.generation import GeneratedImage
from morphorama.domain.runs import RunRecord
from morphorama.services.storage import (
    EVOLUTIONS_BUCKET,
    BlobStorage,
    content_type_for,
    frame_key,
    split_path,
)

_logger = logging.getLogger(__name__)

_BYTES_PER_MB = 1024 * 1024


class FrameRepository(Protocol):
    """Persistence interface for frame metadata."""

    def create_frame(self, frame: NewFrame) -> FrameRecord:
        """Insert a frame row and return it."""

    def get_frame(self, run_id: UUID, iteration: int) -> FrameRecord | None:
        """Return the frame for an iteration, if present."""

    def list_frames(self, run_id: UUID) -> list[FrameRecord]:
        """Return frames of a run ordered by iteration ascending."""

    def delete_frames(self, run_id: UUID) -> int:
        """Delete all frames of a run and return how many were removed."""

    def list_generation_metrics(self) -> list[tuple[int | None, int]]:
        """Return (generation_time_ms, file_size) for every frame."""


class RunLookup(Protocol):
    def get_run(self, run_id: UUID) -> RunRecord | None:
        """Return a run by id, if present."""


@dataclass
class FrameService:
    """Persists and serves evolution frames."""

    repository: FrameRepository
    storage: BlobStorage
    runs: RunLookup

    def save_frame(
        self,
        run_id: UUID,
        iteration: int,
        image: GeneratedImage,
        *,
        prompt_used: str | None,
        generation_time_ms: int,
    ) -> FrameRecord:
        """Upload frame bytes, then record the frame in the ledger."""
        file_path = self.upload_frame(run_id, iteration, image)
        return self.record_frame(
            run_id,
            iteration,
            image,
            file_path=file_path,
            prompt_used=prompt_used,
            generation_time_ms=generation_time_ms,
        )

    def upload_frame(self, run_id: UUID, iteration: int, image: GeneratedImage) -> str:
        """Store frame bytes under a key matching their image type."""
        key = frame_key(run_id, iteration, image.content_type)
        return self.storage.upload(
            EVOLUTIONS_BUCKET, key, image.image_bytes, content_type_for(key)
        )

    def record_frame(  # noqa: PLR0913
        self,
        run_id: UUID,
        iteration: int,
        image: GeneratedImage,
        *,
        file_path: str,
        prompt_used: str | None,
        generation_time_ms: int,
    ) -> FrameRecord:
        """Insert the ledger row for an uploaded frame."""
        frame = self.repository.create_frame(
            NewFrame(
                run_id=run_id,
                iteration=iteration,
                file_path=file_path,
                file_size=len(image.image_bytes),
                width=image.width,
                height=image.height,
                prompt_used=prompt_used,
                generation_time_ms=generation_time_ms,
                provider=image.provider,
                model_version=image.model,
            )
        )
        _logger.info(
            "Created frame %s for run %s (%s)", iteration, run_id, frame.file_path
        )
        return frame

    def find_frame(self, run_id: UUID, iteration: int) -> FrameRecord | None:
        """Return the recorded frame for an iteration without checking the run."""
        return self.repository.get_frame(run_id, iteration)

    def list_frames(self, run_id: UUID) -> list[FrameRecord]:
        """Return frames of a run ordered by iteration."""
        if self.runs.get_run(run_id) is None:
            raise NotFoundError(f"Evolution run {run_id} not found")
        frames = self.repository.list_frames(run_id)
        return sorted(frames, key=lambda frame: frame.iteration)

    def get_frame_image(self, run_id: UUID, iteration: int) -> FrameImage:
        """Return the stored bytes for one frame."""
        frame = self.repository.get_frame(run_id, iteration)
        if frame is None:
            raise NotFoundError(f"Frame {iteration} of run {run_id} not found")
        bucket, key = split_path(frame.file_path)
        content = self.storage.download(bucket, key)
        return FrameImage(content=content, content_type=content_type_for(key))

    def delete_frames(self, run_id: UUID) -> int:
        """Remove frame blobs and rows for a run."""
        frames = self.repository.list_frames(run_id)
        keys_by_bucket: dict[str, list[str]] = {}
        for frame in frames:
            bucket, key = split_path(frame.file_path)
            keys_by_bucket.setdefault(bucket, []).append(key)
        for bucket, keys in keys_by_bucket.items():
            self.storage.remove(bucket, keys)
        deleted = self.repository.delete_frames(run_id)
        _logger.info("Deleted %s frames for run %s", deleted, run_id)
        return deleted

    def get_stats(self) -> FrameStats:
        """Aggregate latency and size across all frames."""
        metrics = self.repository.list_generation_metrics()
        if not metrics:
            return FrameStats(
                total_frames=0, avg_generation_time_ms=0, avg_file_size_mb=0.0
            )
        timings = [timing for timing, _ in metrics if timing is not None]
        sizes = [size for _, size in metrics]
        avg_timing = round(sum(timings) / len(timings)) if timings else 0
        avg_size_mb = round(sum(sizes) / len(sizes) / _BYTES_PER_MB, 2)
        return FrameStats(
            total_frames=len(metrics),
            avg_generation_time_ms=avg_timing,
            avg_file_size_mb=avg_size_mb,
        )
