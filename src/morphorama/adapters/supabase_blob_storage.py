"""Supabase Storage implementation of blob storage."""

from dataclasses import dataclass

from supabase import Client

from morphorama.domain.errors import NotFoundError, PersistenceError
from morphorama.services.storage import BlobStorage


@dataclass
class SupabaseBlobStorage(BlobStorage):
    """Stores frames and photos in Supabase Storage buckets."""

    client: Client

    def upload(self, bucket: str, key: str, data: bytes, content_type: str) -> str:
        """Upload bytes, replacing any object already at the key."""
        try:
            self.client.storage.from_(bucket).upload(
                key,
                data,
                file_options={"content-type": content_type, "upsert": "true"},
            )
        except Exception as exc:
            raise PersistenceError(f"Failed to store {bucket}/{key}: {exc}") from exc
        return f"{bucket}/{key}"

    def download(self, bucket: str, key: str) -> bytes:
        try:
            content = self.client.storage.from_(bucket).download(key)
        except Exception as exc:
            raise NotFoundError(f"Blob {bucket}/{key} not available: {exc}") from exc
        if not content:
            raise NotFoundError(f"Blob {bucket}/{key} is empty")
        return content

    def remove(self, bucket: str, keys: list[str]) -> None:
        if keys:
            self.client.storage.from_(bucket).remove(keys)
