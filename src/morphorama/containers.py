"""Dependency container wiring for the application."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from supabase import create_client

from morphorama.adapters.gemini_prompt_client import GeminiPromptClient
from morphorama.adapters.huggingface_image_provider import HuggingFaceImageProvider
from morphorama.adapters.openai_image_provider import OpenAIImageProvider
from morphorama.adapters.openai_prompt_client import OpenAIPromptClient
from morphorama.adapters.redis_job_queue import RedisJobQueue
from morphorama.adapters.stability_image_provider import StabilityImageProvider
from morphorama.adapters.supabase_blob_storage import SupabaseBlobStorage
from morphorama.adapters.supabase_frame_repository import SupabaseFrameRepository
from morphorama.adapters.supabase_photo_repository import SupabasePhotoRepository
from morphorama.adapters.supabase_run_repository import SupabaseRunRepository
from morphorama.config import Settings, missing_provider_keys
from morphorama.domain.errors import ConfigurationError
from morphorama.services.evolution import EvolutionOrchestrator
from morphorama.services.frames import FrameService
from morphorama.services.jobs import EvolutionJobService
from morphorama.services.photos import PhotoService
from morphorama.services.prompts import VisionPromptGenerator
from morphorama.services.runs import RunService
from morphorama.services.stats import StatsService

ImageProviderAdapter = (
    StabilityImageProvider | HuggingFaceImageProvider | OpenAIImageProvider
)
PromptClientAdapter = OpenAIPromptClient | GeminiPromptClient


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    run_service: RunService
    frame_service: FrameService
    photo_service: PhotoService
    stats_service: StatsService
    orchestrator: EvolutionOrchestrator
    job_service: EvolutionJobService
    job_queue: RedisJobQueue
    close_resources: Callable[[], Awaitable[None]]


def build_image_provider(settings: Settings) -> ImageProviderAdapter:
    """Select the configured image provider."""
    timeout = settings.image_request_timeout_seconds
    if settings.image_provider == "stability-ai":
        return StabilityImageProvider.create(
            settings.stability_api_key,
            model=settings.stability_model,
            strength=settings.stability_strength,
            timeout=timeout,
        )
    if settings.image_provider == "huggingface":
        return HuggingFaceImageProvider.create(
            settings.huggingface_api_key,
            model=settings.huggingface_model,
            timeout=timeout,
        )
    return OpenAIImageProvider.create(
        settings.openai_api_key,
        model=settings.openai_image_model,
        timeout=timeout,
    )


def build_prompt_client(settings: Settings) -> PromptClientAdapter | None:
    """Select the configured prompt client, if its key is present."""
    timeout = settings.prompt_request_timeout_seconds
    if settings.prompt_provider == "gemini":
        if not settings.gemini_api_key:
            return None
        return GeminiPromptClient.create(
            settings.gemini_api_key, model=settings.gemini_model, timeout=timeout
        )
    if not settings.openai_api_key:
        return None
    return OpenAIPromptClient.create(
        settings.openai_api_key, model=settings.openai_model, timeout=timeout
    )


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    missing = missing_provider_keys(resolved_settings)
    if missing:
        raise ConfigurationError("Missing API keys: " + ", ".join(missing))

    supabase_client = create_client(
        resolved_settings.supabase_url, resolved_settings.supabase_service_key
    )
    run_repository = SupabaseRunRepository(supabase_client)
    frame_repository = SupabaseFrameRepository(supabase_client)
    photo_repository = SupabasePhotoRepository(supabase_client)
    storage = SupabaseBlobStorage(supabase_client)

    photo_service = PhotoService(photo_repository, storage)
    frame_service = FrameService(frame_repository, storage, run_repository)
    run_service = RunService(
        repository=run_repository,
        photos=photo_service,
        frames=frame_service,
        default_mode=resolved_settings.evolution_mode,
        default_total_iterations=resolved_settings.default_total_iterations,
    )
    stats_service = StatsService(run_repository, frame_service)

    image_provider = build_image_provider(resolved_settings)
    prompt_client = build_prompt_client(resolved_settings)
    prompt_generator = (
        VisionPromptGenerator(
            client=prompt_client, provider_id=resolved_settings.prompt_provider
        )
        if prompt_client
        else None
    )
    orchestrator = EvolutionOrchestrator(
        runs=run_repository,
        photos=photo_service,
        frames=frame_service,
        image_provider=image_provider,
        fixed_instruction=resolved_settings.fixed_instruction,
        prompt_generator=prompt_generator,
        aspect_ratio=resolved_settings.aspect_ratio,
        step_delay_seconds=resolved_settings.step_delay_seconds,
        max_step_retries=resolved_settings.max_step_retries,
        retry_base_delay_seconds=resolved_settings.retry_base_delay_seconds,
        negative_prompt=resolved_settings.negative_prompt,
        seed=resolved_settings.image_seed,
    )
    job_queue = RedisJobQueue.create(
        resolved_settings.redis_url,
        max_attempts=resolved_settings.queue_max_attempts,
        backoff_seconds=resolved_settings.queue_backoff_seconds,
        keep_completed=resolved_settings.queue_keep_completed,
        keep_failed=resolved_settings.queue_keep_failed,
    )
    job_service = EvolutionJobService(
        runs=run_service, orchestrator=orchestrator, queue=job_queue
    )

    async def close_resources() -> None:
        await job_service.wait_idle()
        await image_provider.close()
        if prompt_client is not None:
            await prompt_client.close()
        await job_queue.close()

    return AppContainer(
        settings=resolved_settings,
        run_service=run_service,
        frame_service=frame_service,
        photo_service=photo_service,
        stats_service=stats_service,
        orchestrator=orchestrator,
        job_service=job_service,
        job_queue=job_queue,
        close_resources=close_resources,
    )
