"""Domain models for moderated source photos."""

from dataclasses import dataclass
from uuid import UUID


@dataclass(frozen=True)
class PhotoRecord:
    """Represents an uploaded photo."""

    id: UUID
    original_filename: str
    stored_filename: str
    status: str
    width: int | None = None
    height: int | None = None

    @property
    def is_approved(self) -> bool:
        return self.status == "approved"
