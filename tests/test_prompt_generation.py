"""Tests for prompt framing, instruction strategies and image inspection."""

import asyncio
import base64

import pytest

from morphorama.domain.errors import (
    ConfigurationError,
    InvalidImageError,
    ProviderUnavailableError,
)
from morphorama.domain.runs import EvolutionMode
from morphorama.services.images import build_generated_image, inspect_image
from morphorama.services.instructions import (
    FixedInstruction,
    GuidedInstructions,
    strategy_for_mode,
)
from morphorama.services.prompts import (
    VisionPromptGenerator,
    build_framing,
    detect_mime_type,
)
from tests.conftest import FakePromptClient, FakePromptGenerator, make_png


def test_cold_start_framing_for_first_iteration() -> None:
    framing = build_framing(1, None, total_iterations=60)

    assert "Analyze this photograph" in framing
    assert "Previous evolution prompt" not in framing


def test_continuation_framing_quotes_previous_instruction() -> None:
    framing = build_framing(4, "Make it glow", total_iterations=60)

    assert "iteration 4 of 60" in framing
    assert 'Previous evolution prompt: "Make it glow"' in framing


def test_continuation_framing_without_total() -> None:
    framing = build_framing(2, None)

    assert "(iteration 2)" in framing
    assert "Previous evolution prompt" not in framing


def test_vision_generator_cleans_answer_and_sends_data_url() -> None:
    client = FakePromptClient()
    generator = VisionPromptGenerator(client=client, provider_id="openai")
    image = make_png()

    derived = asyncio.run(generator.derive(image, 2, "Earlier prompt", 10))

    instructions, data_url = client.calls[0]
    assert derived.text == "Turn it into a watercolor"
    assert derived.model == "fake-llm"
    assert 'Previous evolution prompt: "Earlier prompt"' in instructions
    assert data_url == "data:image/png;base64," + base64.b64encode(image).decode()


def test_vision_generator_rejects_empty_answer() -> None:
    generator = VisionPromptGenerator(
        client=FakePromptClient(answer='  ""  '), provider_id="gemini"
    )

    with pytest.raises(ProviderUnavailableError, match="gemini"):
        asyncio.run(generator.derive(make_png(), 1, None))


@pytest.mark.parametrize(
    ("payload", "expected"),
    [
        (b"\xff\xd8\xff\xe0rest", "image/jpeg"),
        (b"\x89PNG\r\n\x1a\nrest", "image/png"),
        (b"RIFF\x00\x00\x00\x00WEBPrest", "image/webp"),
        (b"GIF89arest", "image/gif"),
        (b"unknown", "image/jpeg"),
    ],
)
def test_detect_mime_type(payload: bytes, expected: str) -> None:
    assert detect_mime_type(payload) == expected


def test_fixed_strategy_returns_constant_text() -> None:
    strategy = FixedInstruction(text="Keep it the same")

    first = asyncio.run(strategy.next_instruction(b"", 1, None, 3))
    second = asyncio.run(strategy.next_instruction(b"", 2, first.text, 3))

    assert first.text == second.text == "Keep it the same"
    assert first.latency_ms == 0


def test_guided_strategy_delegates_to_generator() -> None:
    generator = FakePromptGenerator()
    strategy = GuidedInstructions(generator=generator)

    derived = asyncio.run(strategy.next_instruction(b"img", 2, "evolve step 1", 5))

    assert derived.text == "evolve step 2"
    assert generator.calls == [(2, "evolve step 1")]


def test_strategy_for_mode_selection() -> None:
    generator = FakePromptGenerator()

    fixed = strategy_for_mode(
        EvolutionMode.FIXED, prompt_generator=None, fixed_instruction="same"
    )
    guided = strategy_for_mode(
        EvolutionMode.GUIDED, prompt_generator=generator, fixed_instruction="same"
    )

    assert fixed.mode == EvolutionMode.FIXED
    assert guided.mode == EvolutionMode.GUIDED
    with pytest.raises(ConfigurationError):
        strategy_for_mode(
            EvolutionMode.GUIDED, prompt_generator=None, fixed_instruction="same"
        )


def test_inspect_image_reads_dimensions() -> None:
    info = inspect_image(make_png(64, 16))

    assert (info.width, info.height) == (64, 16)
    assert info.format == "PNG"
    assert info.content_type == "image/png"


def test_inspect_image_rejects_tiny_payload() -> None:
    with pytest.raises(InvalidImageError, match="12 bytes"):
        inspect_image(b"not an image", provider="stability-ai")


def test_inspect_image_rejects_non_image_bytes() -> None:
    with pytest.raises(InvalidImageError, match="not an image"):
        inspect_image(b"<html>" + b"x" * 200 + b"</html>")


def test_build_generated_image_wraps_metadata() -> None:
    image = build_generated_image(
        make_png(20, 30), provider="openai", model="gpt-image-1", latency_ms=12
    )

    assert (image.width, image.height) == (20, 30)
    assert image.provider == "openai"
    assert image.latency_ms == 12
