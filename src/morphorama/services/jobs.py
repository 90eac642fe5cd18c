"""Entry point for starting evolutions directly or through the job queue."""

import asyncio
import logging
from dataclasses import dataclass, field, replace
from typing import Protocol
from uuid import UUID

from morphorama.domain.errors import ConfigurationError
from morphorama.domain.runs import EvolutionMode, RunRecord
from morphorama.services.evolution import EvolutionOrchestrator
from morphorama.services.runs import RunService

_logger = logging.getLogger(__name__)


class EvolutionJobQueue(Protocol):
    """Durable queue carrying evolution jobs to workers."""

    async def enqueue(self, run_id: UUID, source_photo_id: UUID) -> str:
        """Queue a run and return the job id."""


@dataclass
class EvolutionJobService:
    """Creates runs and hands them to an executor."""

    runs: RunService
    orchestrator: EvolutionOrchestrator
    queue: EvolutionJobQueue | None = None
    _tasks: set[asyncio.Task] = field(default_factory=set, init=False, repr=False)

    async def start_evolution(
        self,
        photo_id: UUID,
        total_iterations: int | None = None,
        mode: EvolutionMode | None = None,
        *,
        use_queue: bool = False,
    ) -> RunRecord:
        """Create a run and start it without waiting for the result.

        Failures after this returns surface only through the run status.
        """
        if use_queue and self.queue is None:
            raise ConfigurationError("Queued execution requires a job queue")
        self.orchestrator.check_mode(mode or self.runs.default_mode)
        run = await asyncio.to_thread(
            self.runs.create_run, photo_id, total_iterations, mode
        )
        if use_queue:
            job_id = await self.queue.enqueue(run.id, photo_id)
            await asyncio.to_thread(self.runs.attach_queue_job, run.id, job_id)
            _logger.info("Queued run %s as job %s", run.id, job_id)
            return replace(run, queue_job_id=job_id)

        task = asyncio.create_task(self._run_in_background(run.id, photo_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        _logger.info("Started run %s in process", run.id)
        return run

    async def wait_idle(self) -> None:
        """Wait for all in-process runs to finish."""
        if self._tasks:
            await asyncio.gather(*self._tasks)

    async def _run_in_background(self, run_id: UUID, photo_id: UUID) -> None:
        try:
            await self.orchestrator.run_evolution(run_id, photo_id)
        except Exception:
            _logger.exception("Background evolution %s did not run", run_id)
