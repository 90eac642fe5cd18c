"""Hugging Face Inference API image generation provider."""

import time
from dataclasses import dataclass

import httpx

from morphorama.adapters.http_errors import raise_for_provider_status, send_request
from morphorama.domain.errors import ProviderUnavailableError
from morphorama.domain.generation import GeneratedImage, ImageRequest
from morphorama.services.images import ImageProvider, build_generated_image

HUGGINGFACE_INFERENCE_URL = "https://api-inference.huggingface.co"
HUGGINGFACE_HUB_URL = "https://huggingface.co"
_MODEL_LOADING = 503


@dataclass
class HuggingFaceImageProvider(ImageProvider):
    """Text-to-image generation through the hosted Inference API.

    The endpoint has no image input, so each iteration is generated from the
    instruction text alone and the source image is not sent.
    """

    api_key: str
    http_client: httpx.AsyncClient
    model: str = "black-forest-labs/FLUX.1-schnell"
    inference_url: str = HUGGINGFACE_INFERENCE_URL
    hub_url: str = HUGGINGFACE_HUB_URL
    timeout: float = 120.0
    provider_id: str = "huggingface"

    @classmethod
    def create(
        cls,
        api_key: str,
        *,
        model: str = "black-forest-labs/FLUX.1-schnell",
        timeout: float = 120.0,
    ) -> "HuggingFaceImageProvider":
        """Create a provider with a managed httpx session."""
        return cls(
            api_key=api_key,
            http_client=httpx.AsyncClient(),
            model=model,
            timeout=timeout,
        )

    async def generate(self, request: ImageRequest) -> GeneratedImage:
        """Generate an image from the prompt."""
        parameters: dict[str, object] = {}
        if request.negative_prompt:
            parameters["negative_prompt"] = request.negative_prompt
        if request.seed is not None:
            parameters["seed"] = request.seed
        payload: dict[str, object] = {"inputs": request.prompt}
        if parameters:
            payload["parameters"] = parameters

        started = time.perf_counter()
        try:
            response = await self.http_client.post(
                f"{self.inference_url}/models/{self.model}",
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Accept": "image/png",
                },
                json=payload,
                timeout=self.timeout,
            )
        except httpx.TransportError as exc:
            raise ProviderUnavailableError(
                self.provider_id, f"Transport error: {exc}"
            ) from exc
        if response.status_code == _MODEL_LOADING:
            raise ProviderUnavailableError(
                self.provider_id,
                "Model is loading; this can take 20-60 seconds on first use",
            )
        raise_for_provider_status(response, self.provider_id)
        latency_ms = round((time.perf_counter() - started) * 1000)
        return build_generated_image(
            response.content,
            provider=self.provider_id,
            model=self.model,
            latency_ms=latency_ms,
        )

    async def validate_credentials(self) -> None:
        """Check the token against the Hub identity endpoint."""
        await send_request(
            self.http_client,
            "GET",
            f"{self.hub_url}/api/whoami-v2",
            provider=self.provider_id,
            headers={"Authorization": f"Bearer {self.api_key}"},
            timeout=self.timeout,
        )

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.http_client.aclose()
