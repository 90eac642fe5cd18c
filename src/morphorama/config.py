"""Application configuration."""

import os
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

from morphorama.domain.runs import DEFAULT_TOTAL_ITERATIONS, EvolutionMode

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")

DEFAULT_FIXED_INSTRUCTION = (
    "Recreate this image as faithfully as possible, keeping its subject, "
    "composition, colors and style unchanged."
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    supabase_url: str
    supabase_service_key: str
    redis_url: str = "redis://localhost:6379/0"

    image_provider: Literal["stability-ai", "huggingface", "openai"] = "stability-ai"
    prompt_provider: Literal["openai", "gemini"] = "openai"
    evolution_mode: EvolutionMode = EvolutionMode.GUIDED
    fixed_instruction: str = DEFAULT_FIXED_INSTRUCTION

    stability_api_key: str | None = None
    stability_model: str = "sd3.5-large"
    stability_strength: float = 0.7
    huggingface_api_key: str | None = None
    huggingface_model: str = "black-forest-labs/FLUX.1-schnell"
    openai_api_key: str | None = None
    openai_model: str = "gpt-5.2"
    openai_image_model: str = "gpt-image-1"
    gemini_api_key: str | None = None
    gemini_model: str = "gemini-2.0-flash"

    default_total_iterations: int = DEFAULT_TOTAL_ITERATIONS
    aspect_ratio: str = "1:1"
    negative_prompt: str | None = None
    image_seed: int | None = None
    step_delay_seconds: float = 1.0
    max_step_retries: int = 3
    retry_base_delay_seconds: float = 2.0
    image_request_timeout_seconds: float = 120.0
    prompt_request_timeout_seconds: float = 60.0

    worker_concurrency: int = 2
    stale_run_timeout_seconds: int = 900
    reconcile_interval_seconds: int = 300
    queue_max_attempts: int = 3
    queue_backoff_seconds: float = 2.0
    queue_keep_completed: int = 100
    queue_keep_failed: int = 50

    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )


_IMAGE_PROVIDER_KEYS = {
    "stability-ai": ("stability_api_key", "STABILITY_API_KEY"),
    "huggingface": ("huggingface_api_key", "HUGGINGFACE_API_KEY"),
    "openai": ("openai_api_key", "OPENAI_API_KEY"),
}

_PROMPT_PROVIDER_KEYS = {
    "openai": ("openai_api_key", "OPENAI_API_KEY"),
    "gemini": ("gemini_api_key", "GEMINI_API_KEY"),
}


def missing_provider_keys(settings: Settings) -> list[str]:
    """List API keys required by the selected providers but not configured."""
    missing: list[str] = []
    field_name, env_name = _IMAGE_PROVIDER_KEYS[settings.image_provider]
    if not getattr(settings, field_name):
        missing.append(
            f"{env_name} (required for image provider: {settings.image_provider})"
        )
    if settings.evolution_mode == EvolutionMode.GUIDED:
        field_name, env_name = _PROMPT_PROVIDER_KEYS[settings.prompt_provider]
        if not getattr(settings, field_name):
            missing.append(
                f"{env_name} (required for prompt provider: {settings.prompt_provider})"
            )
    return missing
