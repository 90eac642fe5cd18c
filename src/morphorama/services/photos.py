"""Read access to moderated source photos."""

from dataclasses import dataclass
from typing import Protocol
from uuid import UUID

from morphorama.domain.errors import NotFoundError, PhotoNotApprovedError
from morphorama.domain.photos import PhotoRecord
from morphorama.services.storage import UPLOADS_BUCKET, BlobStorage


class PhotoRepository(Protocol):
    """Persistence interface for photo metadata."""

    def get_photo(self, photo_id: UUID) -> PhotoRecord | None:
        """Return a photo by id, if present."""


@dataclass
class PhotoService:
    """Looks up source photos and loads their bytes."""

    repository: PhotoRepository
    storage: BlobStorage

    def get_photo(self, photo_id: UUID) -> PhotoRecord:
        """Return a photo or raise NotFoundError."""
        photo = self.repository.get_photo(photo_id)
        if photo is None:
            raise NotFoundError(f"Source photo {photo_id} not found")
        return photo

    def get_approved_photo(self, photo_id: UUID) -> PhotoRecord:
        """Return a photo that has passed moderation."""
        photo = self.get_photo(photo_id)
        if not photo.is_approved:
            raise PhotoNotApprovedError(
                f"Photo {photo_id} must be approved before evolution "
                f"(status: {photo.status})"
            )
        return photo

    def load_image(self, photo_id: UUID) -> bytes:
        """Download the original bytes of a photo."""
        photo = self.get_photo(photo_id)
        return self.storage.download(UPLOADS_BUCKET, photo.stored_filename)
