"""Tests for container wiring."""

import asyncio

import pytest

from morphorama.adapters.gemini_prompt_client import GeminiPromptClient
from morphorama.adapters.huggingface_image_provider import HuggingFaceImageProvider
from morphorama.adapters.stability_image_provider import StabilityImageProvider
from morphorama.config import Settings
from morphorama.containers import (
    build_container,
    build_image_provider,
    build_prompt_client,
)
from morphorama.domain.errors import ConfigurationError
from morphorama.domain.runs import EvolutionMode


def test_build_container_creates_services(settings: Settings) -> None:
    container = build_container(settings)

    assert container.run_service is not None
    assert container.job_service.queue is container.job_queue
    assert isinstance(container.orchestrator.image_provider, StabilityImageProvider)
    assert container.orchestrator.prompt_generator is not None
    asyncio.run(container.close_resources())


def test_build_container_reports_missing_keys(settings: Settings) -> None:
    incomplete = settings.model_copy(
        update={"stability_api_key": None, "openai_api_key": None}
    )

    with pytest.raises(ConfigurationError) as excinfo:
        build_container(incomplete)

    assert "STABILITY_API_KEY" in str(excinfo.value)
    assert "OPENAI_API_KEY" in str(excinfo.value)


def test_provider_selection(settings: Settings) -> None:
    configured = settings.model_copy(
        update={
            "image_provider": "huggingface",
            "huggingface_api_key": "hf-key",
            "prompt_provider": "gemini",
            "gemini_api_key": "g-key",
        }
    )

    image_provider = build_image_provider(configured)
    prompt_client = build_prompt_client(configured)

    assert isinstance(image_provider, HuggingFaceImageProvider)
    assert isinstance(prompt_client, GeminiPromptClient)
    asyncio.run(image_provider.close())
    asyncio.run(prompt_client.close())


def test_fixed_mode_needs_no_prompt_client(settings: Settings) -> None:
    fixed = settings.model_copy(
        update={"evolution_mode": EvolutionMode.FIXED, "openai_api_key": None}
    )

    container = build_container(fixed)

    assert container.orchestrator.prompt_generator is None
    assert container.run_service.default_mode == EvolutionMode.FIXED
    asyncio.run(container.close_resources())


def test_generation_options_reach_the_orchestrator(settings: Settings) -> None:
    configured = settings.model_copy(
        update={"image_seed": 99, "negative_prompt": "low quality"}
    )

    container = build_container(configured)

    assert container.orchestrator.seed == 99
    assert container.orchestrator.negative_prompt == "low quality"
    asyncio.run(container.close_resources())
