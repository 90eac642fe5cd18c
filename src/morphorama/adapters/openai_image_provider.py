"""OpenAI Images API generation provider."""

import base64
import binascii
import time
from dataclasses import dataclass

from openai import AsyncOpenAI

from morphorama.adapters.openai_errors import openai_errors
from morphorama.domain.errors import InvalidImageError
from morphorama.domain.generation import GeneratedImage, ImageRequest
from morphorama.services.images import ImageProvider, build_generated_image
from morphorama.services.prompts import detect_mime_type

_SIZES = {
    "1:1": "1024x1024",
    "3:2": "1536x1024",
    "2:3": "1024x1536",
}


@dataclass
class OpenAIImageProvider(ImageProvider):
    """Image generation and editing via the OpenAI Images API."""

    client: AsyncOpenAI
    model: str = "gpt-image-1"
    provider_id: str = "openai"

    @classmethod
    def create(
        cls, api_key: str, *, model: str = "gpt-image-1", timeout: float = 120.0
    ) -> "OpenAIImageProvider":
        """Create an OpenAI image provider."""
        return cls(client=AsyncOpenAI(api_key=api_key, timeout=timeout), model=model)

    async def generate(self, request: ImageRequest) -> GeneratedImage:
        """Edit the source image, or generate from text when there is none."""
        size = _SIZES.get(request.aspect_ratio, "auto")
        started = time.perf_counter()
        async with openai_errors(self.provider_id):
            if request.source_image:
                response = await self.client.images.edit(
                    model=self.model,
                    image=(
                        "source",
                        request.source_image,
                        detect_mime_type(request.source_image),
                    ),
                    prompt=request.prompt,
                    size=size,
                )
            else:
                response = await self.client.images.generate(
                    model=self.model, prompt=request.prompt, size=size
                )
        latency_ms = round((time.perf_counter() - started) * 1000)
        if not response.data or not response.data[0].b64_json:
            raise InvalidImageError(self.provider_id, "Response contained no image")
        try:
            image_bytes = base64.b64decode(response.data[0].b64_json)
        except binascii.Error as exc:
            raise InvalidImageError(
                self.provider_id, f"Image payload is not base64: {exc}"
            ) from exc
        return build_generated_image(
            image_bytes,
            provider=self.provider_id,
            model=self.model,
            latency_ms=latency_ms,
        )

    async def validate_credentials(self) -> None:
        """List models to confirm the API key is accepted."""
        async with openai_errors(self.provider_id):
            await self.client.models.list()

    async def close(self) -> None:
        await self.client.close()
