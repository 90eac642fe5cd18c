"""Blob storage interface and key layout."""

from typing import Protocol
from uuid import UUID

UPLOADS_BUCKET = "uploads"
EVOLUTIONS_BUCKET = "evolutions"
FRAME_CONTENT_TYPE = "image/png"

_EXTENSIONS = {"image/png": "png", "image/jpeg": "jpg", "image/webp": "webp"}
_CONTENT_TYPES = {extension: mime for mime, extension in _EXTENSIONS.items()}


class BlobStorage(Protocol):
    """Interface for durable object storage."""

    def upload(self, bucket: str, key: str, data: bytes, content_type: str) -> str:
        """Store bytes under a key and return the `bucket/key` path."""

    def download(self, bucket: str, key: str) -> bytes:
        """Return the bytes stored under a key."""

    def remove(self, bucket: str, keys: list[str]) -> None:
        """Delete the given keys from a bucket."""


def frame_key(
    run_id: UUID, iteration: int, content_type: str = FRAME_CONTENT_TYPE
) -> str:
    """Return the object key for a frame of a run."""
    extension = _EXTENSIONS.get(content_type, "png")
    return f"{run_id}/frame-{iteration:03d}.{extension}"


def content_type_for(file_path: str) -> str:
    """Return the image MIME type implied by a stored path."""
    extension = file_path.rsplit(".", 1)[-1].lower()
    return _CONTENT_TYPES.get(extension, FRAME_CONTENT_TYPE)


def split_path(file_path: str) -> tuple[str, str]:
    """Split a stored `bucket/key` path into its bucket and key."""
    bucket, _, key = file_path.partition("/")
    return bucket, key
