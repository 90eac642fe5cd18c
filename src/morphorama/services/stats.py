"""Aggregate statistics over runs and frames."""

from dataclasses import dataclass

from morphorama.domain.frames import FrameStats
from morphorama.domain.runs import RunStats, RunStatus
from morphorama.services.frames import FrameService
from morphorama.services.runs import RunRepository


@dataclass(frozen=True)
class EvolutionStats:
    """Combined run and frame statistics."""

    runs: RunStats
    frames: FrameStats


@dataclass
class StatsService:
    run_repository: RunRepository
    frames: FrameService

    def get_stats(self) -> EvolutionStats:
        """Return run counts by status and frame averages."""
        counts = self.run_repository.count_by_status()
        runs = RunStats(
            total=sum(counts.values()),
            queued=counts.get(RunStatus.QUEUED, 0),
            processing=counts.get(RunStatus.PROCESSING, 0),
            completed=counts.get(RunStatus.COMPLETED, 0),
            failed=counts.get(RunStatus.FAILED, 0),
        )
        return EvolutionStats(runs=runs, frames=self.frames.get_stats())
