"""Supabase-backed run ledger."""

from collections import Counter
from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import UUID

from supabase import Client

from morphorama.domain.errors import PersistenceError
from morphorama.domain.runs import EvolutionMode, RunRecord, RunStatus
from morphorama.services.runs import RunRepository

_TABLE = "evolutions"
_COLUMNS = (
    "id, source_photo_id, status, mode, current_iteration, total_iterations, "
    "retry_count, error_message, queue_job_id, started_at, completed_at, "
    "duration_seconds, created_at, updated_at"
)


@dataclass
class SupabaseRunRepository(RunRepository):
    """Supabase implementation of the run ledger.

    Status changes and progress writes are conditional updates, so a write
    that finds the row in an unexpected state returns no data.
    """

    client: Client

    def create_run(
        self, source_photo_id: UUID, total_iterations: int, mode: EvolutionMode
    ) -> RunRecord:
        response = (
            self.client.table(_TABLE)
            .insert(
                {
                    "source_photo_id": str(source_photo_id),
                    "status": RunStatus.QUEUED.value,
                    "mode": mode.value,
                    "current_iteration": 0,
                    "total_iterations": total_iterations,
                }
            )
            .execute()
        )
        if not response.data:
            raise RuntimeError("Failed to create evolution run")
        return _to_run(response.data[0])

    def get_run(self, run_id: UUID) -> RunRecord | None:
        response = (
            self.client.table(_TABLE)
            .select(_COLUMNS)
            .eq("id", str(run_id))
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return _to_run(response.data[0])

    def claim_run(self, run_id: UUID, started_at: datetime) -> RunRecord | None:
        """Move a queued run to processing; None when another caller owns it."""
        response = (
            self.client.table(_TABLE)
            .update(
                {
                    "status": RunStatus.PROCESSING.value,
                    "started_at": started_at.isoformat(),
                    "updated_at": started_at.isoformat(),
                }
            )
            .eq("id", str(run_id))
            .eq("status", RunStatus.QUEUED.value)
            .execute()
        )
        if not response.data:
            return None
        return _to_run(response.data[0])

    def advance_progress(self, run_id: UUID, iteration: int) -> None:
        """Advance current_iteration without ever moving it backwards."""
        try:
            response = (
                self.client.table(_TABLE)
                .update(
                    {
                        "current_iteration": iteration,
                        "updated_at": _now_iso(),
                    }
                )
                .eq("id", str(run_id))
                .eq("status", RunStatus.PROCESSING.value)
                .lte("current_iteration", iteration)
                .execute()
            )
        except Exception as exc:
            raise PersistenceError(
                f"Failed to advance run {run_id} to iteration {iteration}: {exc}"
            ) from exc
        if not response.data:
            raise PersistenceError(
                f"Run {run_id} progress was not advanced to iteration {iteration}"
            )

    def mark_completed(
        self, run_id: UUID, completed_at: datetime, duration_seconds: int
    ) -> None:
        self._finish(
            run_id,
            {
                "status": RunStatus.COMPLETED.value,
                "completed_at": completed_at.isoformat(),
                "duration_seconds": duration_seconds,
                "error_message": None,
                "updated_at": completed_at.isoformat(),
            },
        )

    def mark_failed(
        self,
        run_id: UUID,
        error_message: str,
        completed_at: datetime,
        duration_seconds: int,
    ) -> None:
        """Fail a processing run and count the whole-run failure."""
        try:
            run = self.get_run(run_id)
        except Exception as exc:
            raise PersistenceError(f"Failed to read run {run_id}: {exc}") from exc
        retry_count = run.retry_count if run else 0
        self._finish(
            run_id,
            {
                "status": RunStatus.FAILED.value,
                "error_message": error_message,
                "completed_at": completed_at.isoformat(),
                "duration_seconds": duration_seconds,
                "retry_count": retry_count + 1,
                "updated_at": completed_at.isoformat(),
            },
        )

    def _finish(self, run_id: UUID, payload: dict[str, object]) -> None:
        """Write a terminal status; a no-op once the run has left processing."""
        try:
            self.client.table(_TABLE).update(payload).eq("id", str(run_id)).eq(
                "status", RunStatus.PROCESSING.value
            ).execute()
        except Exception as exc:
            raise PersistenceError(
                f"Failed to record final status of run {run_id}: {exc}"
            ) from exc

    def set_queue_job_id(self, run_id: UUID, job_id: str) -> None:
        self.client.table(_TABLE).update(
            {"queue_job_id": job_id, "updated_at": _now_iso()}
        ).eq("id", str(run_id)).execute()

    def list_recent(self, limit: int) -> list[RunRecord]:
        response = (
            self.client.table(_TABLE)
            .select(_COLUMNS)
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
        )
        return [_to_run(row) for row in response.data or []]

    def list_for_photo(self, photo_id: UUID) -> list[RunRecord]:
        response = (
            self.client.table(_TABLE)
            .select(_COLUMNS)
            .eq("source_photo_id", str(photo_id))
            .order("created_at", desc=True)
            .execute()
        )
        return [_to_run(row) for row in response.data or []]

    def list_stale(self, updated_before: datetime) -> list[RunRecord]:
        response = (
            self.client.table(_TABLE)
            .select(_COLUMNS)
            .eq("status", RunStatus.PROCESSING.value)
            .lt("updated_at", updated_before.isoformat())
            .execute()
        )
        return [_to_run(row) for row in response.data or []]

    def count_by_status(self) -> dict[str, int]:
        response = self.client.table(_TABLE).select("status").execute()
        return dict(Counter(row["status"] for row in response.data or []))

    def delete_run(self, run_id: UUID) -> None:
        self.client.table(_TABLE).delete().eq("id", str(run_id)).execute()


def _to_run(row: dict[str, object]) -> RunRecord:
    return RunRecord(
        id=UUID(str(row["id"])),
        source_photo_id=UUID(str(row["source_photo_id"])),
        status=RunStatus(row["status"]),
        mode=EvolutionMode(row.get("mode") or EvolutionMode.GUIDED),
        current_iteration=int(row.get("current_iteration") or 0),
        total_iterations=int(row["total_iterations"]),
        retry_count=int(row.get("retry_count") or 0),
        error_message=row.get("error_message"),
        queue_job_id=row.get("queue_job_id"),
        started_at=_parse_timestamp(row.get("started_at")),
        completed_at=_parse_timestamp(row.get("completed_at")),
        duration_seconds=row.get("duration_seconds"),
        created_at=_parse_timestamp(row.get("created_at")),
        updated_at=_parse_timestamp(row.get("updated_at")),
    )


def _parse_timestamp(value: object) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed


def _now_iso() -> str:
    return datetime.now(tz=UTC).isoformat()
