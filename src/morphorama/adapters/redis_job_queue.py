"""Redis-backed evolution job queue with reliable delivery.

Jobs move between keys as follows:

    LPUSH evolution:jobs -> BLMOVE evolution:processing -> LREM on ack/nack

A failed job is parked in the `evolution:delayed` sorted set, scored by the
time it becomes due, until its attempts run out. It then lands in
`evolution:failed`. Per-job state lives in the `evolution:job:{id}` hash.
"""

import logging
import time
from dataclasses import dataclass
from uuid import UUID, uuid4

import redis.asyncio as aioredis
from pydantic import ValidationError

from morphorama.domain.jobs import EvolutionJobPayload, EvolutionJobStatus
from morphorama.domain.runs import EvolutionProgress
from morphorama.services.jobs import EvolutionJobQueue

_logger = logging.getLogger(__name__)

JOBS_KEY = "evolution:jobs"
PROCESSING_KEY = "evolution:processing"
DELAYED_KEY = "evolution:delayed"
COMPLETED_KEY = "evolution:completed"
FAILED_KEY = "evolution:failed"
JOB_KEY_PREFIX = "evolution:job:"
JOB_TTL_SECONDS = 7 * 24 * 3600
_ERROR_CHARS = 500


def job_key(job_id: str) -> str:
    return f"{JOB_KEY_PREFIX}{job_id}"


@dataclass
class RedisJobQueue(EvolutionJobQueue):
    """At-least-once queue of evolution runs."""

    redis: aioredis.Redis
    max_attempts: int = 3
    backoff_seconds: float = 2.0
    keep_completed: int = 100
    keep_failed: int = 50

    @classmethod
    def create(  # noqa: PLR0913
        cls,
        redis_url: str,
        *,
        max_attempts: int = 3,
        backoff_seconds: float = 2.0,
        keep_completed: int = 100,
        keep_failed: int = 50,
    ) -> "RedisJobQueue":
        """Create a queue bound to a Redis URL."""
        return cls(
            redis=aioredis.from_url(redis_url, decode_responses=True),
            max_attempts=max_attempts,
            backoff_seconds=backoff_seconds,
            keep_completed=keep_completed,
            keep_failed=keep_failed,
        )

    async def enqueue(self, run_id: UUID, source_photo_id: UUID) -> str:
        """Store job metadata and push the job onto the pending list."""
        job_id = uuid4().hex
        key = job_key(job_id)
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.hset(
                key,
                mapping={
                    "job_id": job_id,
                    "run_id": str(run_id),
                    "source_photo_id": str(source_photo_id),
                    "status": "queued",
                    "attempts": 0,
                    "enqueued_at": time.time(),
                },
            )
            pipe.expire(key, JOB_TTL_SECONDS)
            pipe.lpush(JOBS_KEY, job_id)
            await pipe.execute()
        _logger.info("Enqueued job %s for run %s", job_id, run_id)
        return job_id

    async def dequeue(self, timeout: float = 5) -> str | None:
        """Move the next due job to the processing list and return its id."""
        await self.promote_due_jobs()
        job_id = await self.redis.blmove(
            JOBS_KEY, PROCESSING_KEY, timeout, src="RIGHT", dest="LEFT"
        )
        if job_id is None:
            return None
        await self.redis.hset(
            job_key(job_id),
            mapping={"status": "processing", "processing_started_at": time.time()},
        )
        _logger.info("Dequeued job %s", job_id)
        return job_id

    async def promote_due_jobs(self, now: float | None = None) -> int:
        """Move delayed jobs whose backoff has elapsed back to the pending list."""
        due = await self.redis.zrangebyscore(DELAYED_KEY, "-inf", now or time.time())
        promoted = 0
        for job_id in due:
            # zrem decides which worker promotes a job
            if await self.redis.zrem(DELAYED_KEY, job_id):
                await self.redis.lpush(JOBS_KEY, job_id)
                await self.redis.hset(job_key(job_id), "status", "queued")
                promoted += 1
        return promoted

    async def get_payload(self, job_id: str) -> EvolutionJobPayload | None:
        data = await self.redis.hgetall(job_key(job_id))
        if not data:
            return None
        try:
            return EvolutionJobPayload.model_validate(data)
        except ValidationError:
            _logger.warning("Job %s has an invalid payload", job_id, exc_info=True)
            return None

    async def get_job(self, job_id: str) -> EvolutionJobStatus | None:
        """Return the queue-side status of a job."""
        data = await self.redis.hgetall(job_key(job_id))
        if not data:
            return None
        return EvolutionJobStatus.model_validate(data)

    async def update_progress(self, job_id: str, progress: EvolutionProgress) -> None:
        await self.redis.hset(
            job_key(job_id),
            mapping={
                "iteration": progress.iteration,
                "total": progress.total,
                "progress": progress.percentage,
            },
        )

    async def ack(self, job_id: str, status: str = "completed") -> None:
        """Remove a finished job from processing and record it as done."""
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.lrem(PROCESSING_KEY, 1, job_id)
            pipe.hset(
                job_key(job_id),
                mapping={"status": status, "finished_at": time.time()},
            )
            pipe.lpush(COMPLETED_KEY, job_id)
            pipe.ltrim(COMPLETED_KEY, 0, self.keep_completed - 1)
            await pipe.execute()
        _logger.info("Acked job %s (%s)", job_id, status)

    async def nack(self, job_id: str, error: str) -> bool:
        """Schedule a retry with exponential backoff; return False once exhausted."""
        key = job_key(job_id)
        attempts = await self.redis.hincrby(key, "attempts", 1)
        await self.redis.hset(key, "last_error", error[:_ERROR_CHARS])
        await self.redis.lrem(PROCESSING_KEY, 1, job_id)
        if attempts < self.max_attempts:
            delay = self.backoff_seconds * 2 ** (attempts - 1)
            await self.redis.zadd(DELAYED_KEY, {job_id: time.time() + delay})
            await self.redis.hset(key, "status", "delayed")
            _logger.warning(
                "Job %s failed (attempt %s/%s), retrying in %ss: %s",
                job_id,
                attempts,
                self.max_attempts,
                delay,
                error,
            )
            return True
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.hset(key, mapping={"status": "failed", "finished_at": time.time()})
            pipe.lpush(FAILED_KEY, job_id)
            pipe.ltrim(FAILED_KEY, 0, self.keep_failed - 1)
            await pipe.execute()
        _logger.error(
            "Job %s failed permanently after %s attempts: %s", job_id, attempts, error
        )
        return False

    async def recover_stale(self, max_age_seconds: float) -> int:
        """Requeue in-flight jobs whose worker stopped responding."""
        now = time.time()
        recovered = 0
        for job_id in await self.redis.lrange(PROCESSING_KEY, 0, -1):
            started = await self.redis.hget(job_key(job_id), "processing_started_at")
            if started is None:
                await self.redis.lrem(PROCESSING_KEY, 1, job_id)
                _logger.warning("Removed orphaned job %s from processing", job_id)
                continue
            if now - float(started) > max_age_seconds:
                await self.redis.lrem(PROCESSING_KEY, 1, job_id)
                await self.redis.lpush(JOBS_KEY, job_id)
                await self.redis.hset(job_key(job_id), "status", "queued")
                recovered += 1
                _logger.warning("Recovered stale job %s", job_id)
        return recovered

    async def close(self) -> None:
        await self.redis.aclose()
