"""Supabase-backed frame ledger."""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from supabase import Client

from morphorama.domain.errors import PersistenceError
from morphorama.domain.frames import FrameRecord, NewFrame
from morphorama.services.frames import FrameRepository

_TABLE = "evolution_frames"
_COLUMNS = (
    "id, evolution_id, iteration_number, file_path, file_size, width, height, "
    "prompt_used, generation_time_ms, provider, model_version, created_at"
)


@dataclass
class SupabaseFrameRepository(FrameRepository):
    """Supabase implementation for evolution frames."""

    client: Client

    def create_frame(self, frame: NewFrame) -> FrameRecord:
        """Insert a frame row and return it."""
        try:
            response = (
                self.client.table(_TABLE)
                .insert(
                    {
                        "evolution_id": str(frame.run_id),
                        "iteration_number": frame.iteration,
                        "file_path": frame.file_path,
                        "file_size": frame.file_size,
                        "width": frame.width,
                        "height": frame.height,
                        "prompt_used": frame.prompt_used,
                        "generation_time_ms": frame.generation_time_ms,
                        "provider": frame.provider,
                        "model_version": frame.model_version,
                    }
                )
                .execute()
            )
        except Exception as exc:
            raise PersistenceError(
                f"Failed to record frame {frame.iteration} of run {frame.run_id}: "
                f"{exc}"
            ) from exc
        if not response.data:
            raise PersistenceError(
                f"Failed to record frame {frame.iteration} of run {frame.run_id}"
            )
        return _to_frame(response.data[0])

    def get_frame(self, run_id: UUID, iteration: int) -> FrameRecord | None:
        response = (
            self.client.table(_TABLE)
            .select(_COLUMNS)
            .eq("evolution_id", str(run_id))
            .eq("iteration_number", iteration)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return _to_frame(response.data[0])

    def list_frames(self, run_id: UUID) -> list[FrameRecord]:
        response = (
            self.client.table(_TABLE)
            .select(_COLUMNS)
            .eq("evolution_id", str(run_id))
            .order("iteration_number")
            .execute()
        )
        return [_to_frame(row) for row in response.data or []]

    def delete_frames(self, run_id: UUID) -> int:
        response = (
            self.client.table(_TABLE)
            .delete()
            .eq("evolution_id", str(run_id))
            .execute()
        )
        return len(response.data or [])

    def list_generation_metrics(self) -> list[tuple[int | None, int]]:
        response = (
            self.client.table(_TABLE).select("generation_time_ms, file_size").execute()
        )
        return [
            (row.get("generation_time_ms"), int(row.get("file_size") or 0))
            for row in response.data or []
        ]


def _to_frame(row: dict[str, object]) -> FrameRecord:
    created_at = row.get("created_at")
    return FrameRecord(
        id=UUID(str(row["id"])),
        run_id=UUID(str(row["evolution_id"])),
        iteration=int(row["iteration_number"]),
        file_path=str(row["file_path"]),
        file_size=int(row["file_size"]),
        width=row.get("width"),
        height=row.get("height"),
        prompt_used=row.get("prompt_used"),
        generation_time_ms=row.get("generation_time_ms"),
        provider=row.get("provider"),
        model_version=row.get("model_version"),
        created_at=datetime.fromisoformat(str(created_at)) if created_at else None,
    )
