"""Models for provider requests and results."""

from dataclasses import dataclass


@dataclass(frozen=True)
class ImageRequest:
    """Input for a single image generation call."""

    prompt: str
    source_image: bytes | None = None
    aspect_ratio: str = "1:1"
    seed: int | None = None
    negative_prompt: str | None = None


@dataclass(frozen=True)
class GeneratedImage:
    """Image returned by a provider along with its metadata."""

    image_bytes: bytes
    width: int
    height: int
    content_type: str
    provider: str
    model: str
    latency_ms: int


@dataclass(frozen=True)
class DerivedPrompt:
    """Instruction text for one iteration."""

    text: str
    model: str | None = None
    latency_ms: int = 0


@dataclass(frozen=True)
class ImageInfo:
    """Facts obtained by decoding image bytes."""

    width: int
    height: int
    format: str
    content_type: str
