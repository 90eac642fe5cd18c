"""OpenAI Responses API client for evolution prompts."""

from dataclasses import dataclass

from openai import AsyncOpenAI

from morphorama.adapters.openai_errors import openai_errors
from morphorama.services.prompts import PromptClient

_PROVIDER = "openai"


@dataclass
class OpenAIPromptClient(PromptClient):
    """Prompt client backed by the OpenAI Responses API."""

    client: AsyncOpenAI
    model: str = "gpt-5.2"

    @classmethod
    def create(
        cls, api_key: str, *, model: str = "gpt-5.2", timeout: float = 60.0
    ) -> "OpenAIPromptClient":
        """Create an OpenAI prompt client."""
        return cls(client=AsyncOpenAI(api_key=api_key, timeout=timeout), model=model)

    async def complete(self, *, instructions: str, image_data_url: str) -> str:
        """Ask the model for the next prompt given the current image."""
        async with openai_errors(_PROVIDER):
            response = await self.client.responses.create(
                model=self.model,
                input=[
                    {
                        "role": "user",
                        "content": [
                            {"type": "input_text", "text": instructions},
                            {"type": "input_image", "image_url": image_data_url},
                        ],
                    }
                ],
                store=False,
            )
        return response.output_text or ""

    async def validate_credentials(self) -> None:
        async with openai_errors(_PROVIDER):
            await self.client.models.list()

    async def close(self) -> None:
        await self.client.close()
