"""Prompt derivation from the current image using vision LLMs."""

import base64
import time
from dataclasses import dataclass
from typing import Protocol

from morphorama.domain.errors import ProviderUnavailableError
from morphorama.domain.generation import DerivedPrompt

_COLD_START_FRAMING = """You are a creative AI art director working on an \
experimental photo evolution project.

Analyze this photograph carefully and create an imaginative transformation \
prompt that will evolve it into something unexpected and artistic.

Guidelines:
- Be bold and creative - think surreal, dreamlike, or fantastical transformations
- Focus on visual elements, mood, composition, and style
- The evolution should be interesting but not completely unrecognizable
- Keep the prompt concise (1-2 sentences, max 100 words)
- Return ONLY the image generation prompt, no explanations

Example good prompts:
- "Transform into a vibrant underwater scene with coral architecture and \
bioluminescent creatures"
- "Evolve into a steampunk mechanical world with brass gears and Victorian \
aesthetics"
- "Shift into a surreal melting dreamscape with flowing, liquid forms"

Now analyze the image and create your evolution prompt:"""

_CONTINUATION_FRAMING = """You are continuing an artistic photo evolution \
sequence ({position}).

Analyze this evolved image and create the NEXT transformation prompt that \
continues the creative journey.{previous}

Guidelines:
- Build upon the current visual state while introducing new creative elements
- Maintain some continuity with previous iterations but keep evolving
- Be imaginative - introduce new themes, styles, or surreal elements
- Keep the prompt concise (1-2 sentences, max 100 words)
- Return ONLY the image generation prompt, no explanations

Create the next evolution prompt:"""


class PromptClient(Protocol):
    """Interface for a vision LLM that answers with plain text."""

    model: str

    async def complete(self, *, instructions: str, image_data_url: str) -> str:
        """Return the model's text answer for an image and instructions."""

    async def validate_credentials(self) -> None:
        """Raise ProviderAuthError when the configured credentials are rejected."""


class PromptGenerator(Protocol):
    """Interface for deriving the next evolution instruction."""

    async def derive(
        self,
        image_bytes: bytes,
        iteration: int,
        previous_instruction: str | None,
        total_iterations: int | None = None,
    ) -> DerivedPrompt:
        """Return the instruction for the given iteration."""

    async def validate_credentials(self) -> None:
        """Raise ProviderAuthError when the configured credentials are rejected."""


@dataclass
class VisionPromptGenerator(PromptGenerator):
    """Derives evolution prompts by showing the current image to a vision LLM."""

    client: PromptClient
    provider_id: str

    async def derive(
        self,
        image_bytes: bytes,
        iteration: int,
        previous_instruction: str | None,
        total_iterations: int | None = None,
    ) -> DerivedPrompt:
        """Analyze the image and return a fresh instruction."""
        framing = build_framing(iteration, previous_instruction, total_iterations)
        started = time.perf_counter()
        raw = await self.client.complete(
            instructions=framing,
            image_data_url=_to_data_url(image_bytes),
        )
        latency_ms = round((time.perf_counter() - started) * 1000)
        text = _clean_prompt(raw)
        if not text:
            raise ProviderUnavailableError(self.provider_id, "Empty prompt returned")
        return DerivedPrompt(text=text, model=self.client.model, latency_ms=latency_ms)

    async def validate_credentials(self) -> None:
        """Delegate credential validation to the underlying client."""
        await self.client.validate_credentials()


def build_framing(
    iteration: int,
    previous_instruction: str | None,
    total_iterations: int | None = None,
) -> str:
    """Return cold-start framing for the first iteration, continuation after."""
    if iteration == 1:
        return _COLD_START_FRAMING
    position = (
        f"iteration {iteration} of {total_iterations}"
        if total_iterations
        else f"iteration {iteration}"
    )
    previous = (
        f'\n\nPrevious evolution prompt: "{previous_instruction}"'
        if previous_instruction
        else ""
    )
    return _CONTINUATION_FRAMING.format(position=position, previous=previous)


def _clean_prompt(raw: str) -> str:
    return raw.strip().strip('"').strip()


def _to_data_url(image_bytes: bytes) -> str:
    """Convert bytes to a base64 data URL for image input."""
    mime_type = detect_mime_type(image_bytes)
    encoded = base64.b64encode(image_bytes).decode("utf-8")
    return f"data:{mime_type};base64,{encoded}"


def detect_mime_type(image_bytes: bytes) -> str:
    """Infer a basic image MIME type from file signatures."""
    if image_bytes.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if image_bytes.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if image_bytes[:4] == b"RIFF" and image_bytes[8:12] == b"WEBP":
        return "image/webp"
    if image_bytes.startswith(b"GIF8"):
        return "image/gif"
    return "image/jpeg"
