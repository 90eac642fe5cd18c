"""Queue worker that executes evolution runs."""

import asyncio
import logging
import signal
import time
from collections.abc import Callable
from dataclasses import dataclass
from uuid import UUID

from morphorama.adapters.redis_job_queue import RedisJobQueue
from morphorama.app_logging import configure_logging
from morphorama.containers import build_container
from morphorama.domain.errors import RunClaimError
from morphorama.domain.runs import EvolutionProgress
from morphorama.services.evolution import EvolutionOrchestrator
from morphorama.services.runs import RunService

_logger = logging.getLogger(__name__)


@dataclass
class EvolutionWorker:
    """Consumes evolution jobs with bounded concurrency."""

    orchestrator: EvolutionOrchestrator
    runs: RunService
    queue: RedisJobQueue
    concurrency: int = 2
    stale_run_timeout_seconds: int = 900
    reconcile_interval_seconds: int = 300
    dequeue_timeout_seconds: float = 5
    clock: Callable[[], float] = time.monotonic

    async def run(self, stop_event: asyncio.Event) -> None:
        """Process jobs until the stop event is set."""
        await self.orchestrator.ensure_ready()
        await self.queue.recover_stale(self.stale_run_timeout_seconds)
        await self.reconcile()
        last_reconcile = self.clock()

        semaphore = asyncio.Semaphore(self.concurrency)
        tasks: set[asyncio.Task] = set()
        _logger.info("Worker started (concurrency %s)", self.concurrency)
        while not stop_event.is_set():
            if self.clock() - last_reconcile >= self.reconcile_interval_seconds:
                await self.reconcile()
                last_reconcile = self.clock()
            await semaphore.acquire()
            job_id = None
            if not stop_event.is_set():
                job_id = await self.queue.dequeue(self.dequeue_timeout_seconds)
            if job_id is None:
                semaphore.release()
                continue
            task = asyncio.create_task(self._process_in_slot(job_id, semaphore))
            tasks.add(task)
            task.add_done_callback(tasks.discard)

        if tasks:
            _logger.info("Waiting for %s in-flight jobs", len(tasks))
            await asyncio.gather(*tasks)
        _logger.info("Worker stopped")

    async def reconcile(self) -> list[UUID]:
        """Fail runs stuck in processing beyond the stale timeout."""
        return await asyncio.to_thread(
            self.runs.fail_stale_runs, self.stale_run_timeout_seconds
        )

    async def process_job(self, job_id: str) -> None:
        """Run one job and acknowledge it according to how it ended."""
        payload = await self.queue.get_payload(job_id)
        if payload is None:
            await self.queue.ack(job_id, status="discarded")
            return

        async def report(event: EvolutionProgress) -> None:
            await self.queue.update_progress(job_id, event)

        try:
            outcome = await self.orchestrator.run_evolution(
                payload.run_id, payload.source_photo_id, progress=report
            )
        except RunClaimError as exc:
            _logger.warning("Skipping job %s: %s", job_id, exc)
            await self.queue.ack(job_id, status="skipped")
            return
        except Exception as exc:
            _logger.exception("Job %s raised", job_id)
            await self.queue.nack(job_id, str(exc) or type(exc).__name__)
            return
        await self.queue.ack(job_id, status=outcome.status.value)

    async def _process_in_slot(self, job_id: str, semaphore: asyncio.Semaphore) -> None:
        try:
            await self.process_job(job_id)
        finally:
            semaphore.release()


async def _serve() -> None:
    container = build_container()
    settings = container.settings
    worker = EvolutionWorker(
        orchestrator=container.orchestrator,
        runs=container.run_service,
        queue=container.job_queue,
        concurrency=settings.worker_concurrency,
        stale_run_timeout_seconds=settings.stale_run_timeout_seconds,
        reconcile_interval_seconds=settings.reconcile_interval_seconds,
    )
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, stop_event.set)
    try:
        await worker.run(stop_event)
    finally:
        await container.close_resources()


def main() -> None:
    """Console entry point for the evolution worker."""
    configure_logging()
    asyncio.run(_serve())


if __name__ == "__main__":
    main()
