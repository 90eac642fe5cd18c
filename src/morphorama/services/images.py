"""Image generation capability and image inspection helpers."""

from io import BytesIO
from typing import Protocol

from PIL import Image, UnidentifiedImageError

from morphorama.domain.errors import InvalidImageError
from morphorama.domain.generation import GeneratedImage, ImageInfo, ImageRequest

_MIN_IMAGE_BYTES = 100


class ImageProvider(Protocol):
    """Interface for AI image generation backends."""

    provider_id: str

    async def generate(self, request: ImageRequest) -> GeneratedImage:
        """Generate an image, optionally transforming a source image."""

    async def validate_credentials(self) -> None:
        """Raise ProviderAuthError when the configured credentials are rejected."""


def inspect_image(image_bytes: bytes, *, provider: str = "unknown") -> ImageInfo:
    """Decode image bytes and return dimensions and format."""
    if len(image_bytes) < _MIN_IMAGE_BYTES:
        raise InvalidImageError(
            provider, f"Invalid image data received ({len(image_bytes)} bytes)"
        )
    try:
        with Image.open(BytesIO(image_bytes)) as image:
            width, height = image.size
            image_format = (image.format or "PNG").upper()
    except (UnidentifiedImageError, OSError) as exc:
        raise InvalidImageError(provider, f"Response is not an image: {exc}") from exc
    return ImageInfo(
        width=width,
        height=height,
        format=image_format,
        content_type=Image.MIME.get(image_format, "image/png"),
    )


def build_generated_image(
    image_bytes: bytes, *, provider: str, model: str, latency_ms: int
) -> GeneratedImage:
    """Validate provider output and wrap it with metadata."""
    info = inspect_image(image_bytes, provider=provider)
    return GeneratedImage(
        image_bytes=image_bytes,
        width=info.width,
        height=info.height,
        content_type=info.content_type,
        provider=provider,
        model=model,
        latency_ms=latency_ms,
    )
