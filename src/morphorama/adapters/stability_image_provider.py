"""Stability AI image generation provider."""

import logging
import time
from dataclasses import dataclass

import httpx

from morphorama.adapters.http_errors import send_request
from morphorama.domain.errors import InvalidImageError
from morphorama.domain.generation import GeneratedImage, ImageRequest
from morphorama.services.images import ImageProvider, build_generated_image
from morphorama.services.prompts import detect_mime_type

_logger = logging.getLogger(__name__)

STABILITY_BASE_URL = "https://api.stability.ai"
_CONTENT_FILTERED = "CONTENT_FILTERED"


@dataclass
class StabilityImageProvider(ImageProvider):
    """Stable Image (SD3) generation over the v2beta REST API."""

    api_key: str
    http_client: httpx.AsyncClient
    model: str = "sd3.5-large"
    strength: float = 0.7
    base_url: str = STABILITY_BASE_URL
    timeout: float = 120.0
    provider_id: str = "stability-ai"

    @classmethod
    def create(
        cls,
        api_key: str,
        *,
        model: str = "sd3.5-large",
        strength: float = 0.7,
        timeout: float = 120.0,
    ) -> "StabilityImageProvider":
        """Create a provider with a managed httpx session."""
        return cls(
            api_key=api_key,
            http_client=httpx.AsyncClient(),
            model=model,
            strength=strength,
            timeout=timeout,
        )

    async def generate(self, request: ImageRequest) -> GeneratedImage:
        """Generate an image, using image-to-image when a source is given."""
        data = {
            "prompt": request.prompt,
            "model": self.model,
            "output_format": "png",
        }
        if request.negative_prompt:
            data["negative_prompt"] = request.negative_prompt
        if request.seed is not None:
            data["seed"] = str(request.seed)
        if request.source_image:
            data["mode"] = "image-to-image"
            data["strength"] = str(self.strength)
            files = {
                "image": (
                    "source",
                    request.source_image,
                    detect_mime_type(request.source_image),
                )
            }
        else:
            data["aspect_ratio"] = request.aspect_ratio
            files = {"none": (None, b"")}

        started = time.perf_counter()
        response = await send_request(
            self.http_client,
            "POST",
            f"{self.base_url}/v2beta/stable-image/generate/sd3",
            provider=self.provider_id,
            headers=self._headers(accept="image/*"),
            data=data,
            files=files,
            timeout=self.timeout,
        )
        latency_ms = round((time.perf_counter() - started) * 1000)
        if response.headers.get("finish-reason") == _CONTENT_FILTERED:
            raise InvalidImageError(
                self.provider_id, "Output blocked by content filter"
            )
        image = build_generated_image(
            response.content,
            provider=self.provider_id,
            model=self.model,
            latency_ms=latency_ms,
        )
        _logger.debug(
            "Stability generated %sx%s in %sms", image.width, image.height, latency_ms
        )
        return image

    async def validate_credentials(self) -> None:
        """Check the API key against the account endpoint."""
        await send_request(
            self.http_client,
            "GET",
            f"{self.base_url}/v1/user/account",
            provider=self.provider_id,
            headers=self._headers(accept="application/json"),
            timeout=self.timeout,
        )

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.http_client.aclose()

    def _headers(self, *, accept: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}", "Accept": accept}
