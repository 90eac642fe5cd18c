"""Run ledger service: creation, progress queries and reconciliation."""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Protocol
from uuid import UUID

from morphorama.domain.errors import NotFoundError
from morphorama.domain.runs import (
    DEFAULT_TOTAL_ITERATIONS,
    EvolutionMode,
    RunProgress,
    RunRecord,
    progress_percentage,
)
from morphorama.services.frames import FrameService
from morphorama.services.photos import PhotoService

_logger = logging.getLogger(__name__)


class RunRepository(Protocol):
    """Persistence interface for evolution runs."""

    def create_run(
        self, source_photo_id: UUID, total_iterations: int, mode: EvolutionMode
    ) -> RunRecord:
        """Insert a queued run and return it."""

    def get_run(self, run_id: UUID) -> RunRecord | None:
        """Return a run by id, if present."""

    def claim_run(self, run_id: UUID, started_at: datetime) -> RunRecord | None:
        """Move a queued run to processing; return None when not queued."""

    def advance_progress(self, run_id: UUID, iteration: int) -> None:
        """Set current_iteration on a processing run.

        Raises PersistenceError when the write is not applied.
        """

    def mark_completed(
        self, run_id: UUID, completed_at: datetime, duration_seconds: int
    ) -> None:
        """Record a successful terminal state."""

    def mark_failed(
        self,
        run_id: UUID,
        error_message: str,
        completed_at: datetime,
        duration_seconds: int,
    ) -> None:
        """Record a failed terminal state and bump retry_count."""

    def set_queue_job_id(self, run_id: UUID, job_id: str) -> None:
        """Attach the durable queue job carrying this run."""

    def list_recent(self, limit: int) -> list[RunRecord]:
        """Return the newest runs first."""

    def list_for_photo(self, photo_id: UUID) -> list[RunRecord]:
        """Return runs of one source photo, newest first."""

    def list_stale(self, updated_before: datetime) -> list[RunRecord]:
        """Return processing runs not written since the given time."""

    def count_by_status(self) -> dict[str, int]:
        """Return the number of runs per status."""

    def delete_run(self, run_id: UUID) -> None:
        """Delete a run row."""


@dataclass
class RunService:
    """Application operations over the run ledger."""

    repository: RunRepository
    photos: PhotoService
    frames: FrameService
    default_mode: EvolutionMode = EvolutionMode.GUIDED
    default_total_iterations: int = DEFAULT_TOTAL_ITERATIONS

    def create_run(
        self,
        source_photo_id: UUID,
        total_iterations: int | None = None,
        mode: EvolutionMode | None = None,
    ) -> RunRecord:
        """Create a queued run for an approved photo."""
        iterations = (
            self.default_total_iterations
            if total_iterations is None
            else total_iterations
        )
        if iterations < 1:
            raise ValueError("total_iterations must be at least 1")
        self.photos.get_approved_photo(source_photo_id)
        run = self.repository.create_run(
            source_photo_id, iterations, mode or self.default_mode
        )
        _logger.info(
            "Created run %s for photo %s (%s iterations, %s)",
            run.id,
            source_photo_id,
            iterations,
            run.mode,
        )
        return run

    def get_run(self, run_id: UUID) -> RunRecord:
        run = self.repository.get_run(run_id)
        if run is None:
            raise NotFoundError(f"Evolution run {run_id} not found")
        return run

    def get_progress(self, run_id: UUID) -> RunProgress:
        """Return status and percentage for a run."""
        run = self.get_run(run_id)
        return RunProgress(
            run_id=run.id,
            status=run.status,
            current_iteration=run.current_iteration,
            total_iterations=run.total_iterations,
            percentage=progress_percentage(
                run.current_iteration, run.total_iterations
            ),
            error_message=run.error_message,
        )

    def attach_queue_job(self, run_id: UUID, job_id: str) -> None:
        self.repository.set_queue_job_id(run_id, job_id)

    def list_recent(self, limit: int = 10) -> list[RunRecord]:
        return self.repository.list_recent(limit)

    def list_for_photo(self, photo_id: UUID) -> list[RunRecord]:
        return self.repository.list_for_photo(photo_id)

    def delete_run(self, run_id: UUID) -> None:
        """Delete a run together with its frames and their blobs."""
        self.get_run(run_id)
        self.frames.delete_frames(run_id)
        self.repository.delete_run(run_id)
        _logger.info("Deleted run %s", run_id)

    def fail_stale_runs(
        self, max_idle_seconds: int, now: datetime | None = None
    ) -> list[UUID]:
        """Fail processing runs that have not progressed recently."""
        current = now or datetime.now(tz=UTC)
        cutoff = current - timedelta(seconds=max_idle_seconds)
        failed: list[UUID] = []
        for run in self.repository.list_stale(cutoff):
            duration = (
                int((current - run.started_at).total_seconds())
                if run.started_at
                else 0
            )
            self.repository.mark_failed(
                run.id,
                f"Run stalled: no progress for {max_idle_seconds}s",
                current,
                duration,
            )
            _logger.warning(
                "Marked stale run %s failed at iteration %s/%s",
                run.id,
                run.current_iteration,
                run.total_iterations,
            )
            failed.append(run.id)
        return failed
