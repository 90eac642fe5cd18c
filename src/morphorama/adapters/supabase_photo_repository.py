"""Supabase-backed photo metadata lookup."""

from dataclasses import dataclass
from uuid import UUID

from supabase import Client

from morphorama.domain.photos import PhotoRecord
from morphorama.services.photos import PhotoRepository


@dataclass
class SupabasePhotoRepository(PhotoRepository):
    """Supabase implementation for photo metadata."""

    client: Client

    def get_photo(self, photo_id: UUID) -> PhotoRecord | None:
        """Return a photo by id, if present."""
        response = (
            self.client.table("photos")
            .select("id, original_filename, stored_filename, status, width, height")
            .eq("id", str(photo_id))
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        row = response.data[0]
        return PhotoRecord(
            id=UUID(row["id"]),
            original_filename=row["original_filename"],
            stored_filename=row["stored_filename"],
            status=row["status"],
            width=row.get("width"),
            height=row.get("height"),
        )
