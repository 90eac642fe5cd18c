"""Evolution orchestrator: the sequential generate-persist-advance loop."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from uuid import UUID

from morphorama.domain.errors import (
    ConfigurationError,
    PersistenceError,
    ProviderAuthError,
    ProviderError,
    RunClaimError,
)
from morphorama.domain.frames import FrameRecord
from morphorama.domain.generation import DerivedPrompt, GeneratedImage, ImageRequest
from morphorama.domain.runs import (
    EvolutionMode,
    EvolutionOutcome,
    EvolutionProgress,
    RunRecord,
    RunStatus,
)
from morphorama.services.frames import FrameService
from morphorama.services.images import ImageProvider
from morphorama.services.instructions import InstructionStrategy, strategy_for_mode
from morphorama.services.photos import PhotoService
from morphorama.services.prompts import PromptGenerator
from morphorama.services.runs import RunRepository

_logger = logging.getLogger(__name__)

_PROMPT_PREVIEW_CHARS = 80

ProgressReporter = Callable[[EvolutionProgress], Awaitable[None]]

_RETRYABLE_ERRORS = (ProviderError, PersistenceError)


@dataclass
class _StepState:
    """Work already done for the iteration currently being attempted."""

    instruction: DerivedPrompt | None = None
    image: GeneratedImage | None = None
    frame: FrameRecord | None = None


@dataclass
class EvolutionOrchestrator:
    """Runs one evolution: N sequential image-to-image steps with retries."""

    runs: RunRepository
    photos: PhotoService
    frames: FrameService
    image_provider: ImageProvider
    fixed_instruction: str
    prompt_generator: PromptGenerator | None = None
    aspect_ratio: str = "1:1"
    step_delay_seconds: float = 1.0
    max_step_retries: int = 3
    retry_base_delay_seconds: float = 2.0
    negative_prompt: str | None = None
    seed: int | None = None
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    clock: Callable[[], float] = time.monotonic
    _ready: bool = field(default=False, init=False, repr=False)

    async def ensure_ready(self) -> None:
        """Validate provider credentials once before accepting runs."""
        if self._ready:
            return
        try:
            await self.image_provider.validate_credentials()
            if self.prompt_generator is not None:
                await self.prompt_generator.validate_credentials()
        except ProviderAuthError as exc:
            raise ConfigurationError(f"Provider credentials rejected: {exc}") from exc
        self._ready = True
        _logger.info(
            "Evolution orchestrator ready (image provider: %s)",
            self.image_provider.provider_id,
        )

    def check_mode(self, mode: EvolutionMode) -> InstructionStrategy:
        """Return the strategy for a mode, or raise ConfigurationError."""
        return strategy_for_mode(
            mode,
            prompt_generator=self.prompt_generator,
            fixed_instruction=self.fixed_instruction,
        )

    async def run_evolution(
        self,
        run_id: UUID,
        source_photo_id: UUID,
        progress: ProgressReporter | None = None,
    ) -> EvolutionOutcome:
        """Execute every iteration of a run and record its terminal state."""
        await self.ensure_ready()
        pending = await asyncio.to_thread(self.runs.get_run, run_id)
        if pending is not None:
            self.check_mode(pending.mode)
        run = await asyncio.to_thread(self.runs.claim_run, run_id, _utcnow())
        if run is None:
            raise RunClaimError(f"Run {run_id} is not queued; refusing to process it")

        started = self.clock()
        completed = 0
        _logger.info(
            "Starting evolution %s: %s iterations in %s mode",
            run_id,
            run.total_iterations,
            run.mode,
        )
        try:
            strategy = self.check_mode(run.mode)
            current_image = await asyncio.to_thread(
                self.photos.load_image, source_photo_id
            )
            previous_instruction: str | None = None
            for iteration in range(1, run.total_iterations + 1):
                current_image, previous_instruction = await self._run_step(
                    run, strategy, iteration, current_image, previous_instruction
                )
                completed = iteration
                await self._report(
                    progress,
                    EvolutionProgress(
                        run_id=run_id, iteration=iteration, total=run.total_iterations
                    ),
                )
                if iteration < run.total_iterations:
                    await self.sleep(self.step_delay_seconds)
        except Exception as exc:  # noqa: BLE001
            return await self._fail(run_id, exc, started, completed)

        duration = self._elapsed(started)
        await self._record_terminal(
            run_id, self.runs.mark_completed, run_id, _utcnow(), duration
        )
        _logger.info(
            "Evolution %s completed: %s frames in %ss", run_id, completed, duration
        )
        return EvolutionOutcome(
            run_id=run_id,
            status=RunStatus.COMPLETED,
            frames_generated=completed,
            duration_seconds=duration,
        )

    async def _run_step(
        self,
        run: RunRecord,
        strategy: InstructionStrategy,
        iteration: int,
        current_image: bytes,
        previous_instruction: str | None,
    ) -> tuple[bytes, str]:
        """Produce, persist and record one frame, retrying transient failures."""
        state = _StepState()
        attempt = 0
        while True:
            try:
                return await self._attempt_step(
                    run, strategy, iteration, current_image, previous_instruction, state
                )
            except ProviderAuthError:
                raise
            except _RETRYABLE_ERRORS as exc:
                attempt += 1
                if attempt > self.max_step_retries:
                    _logger.error(
                        "Iteration %s of run %s failed after %s retries: %s",
                        iteration,
                        run.id,
                        self.max_step_retries,
                        exc,
                    )
                    raise
                delay = self.retry_base_delay_seconds * attempt
                _logger.warning(
                    "Iteration %s of run %s failed (retry %s/%s in %ss): %s",
                    iteration,
                    run.id,
                    attempt,
                    self.max_step_retries,
                    delay,
                    exc,
                )
                await self.sleep(delay)

    async def _attempt_step(  # noqa: PLR0913
        self,
        run: RunRecord,
        strategy: InstructionStrategy,
        iteration: int,
        current_image: bytes,
        previous_instruction: str | None,
        state: _StepState,
    ) -> tuple[bytes, str]:
        if state.frame is None and state.image is not None:
            # an earlier save may have committed before its response was lost
            state.frame = await asyncio.to_thread(
                self.frames.find_frame, run.id, iteration
            )
            if state.frame is not None:
                _logger.info(
                    "Run %s iteration %s was already recorded; adopting it",
                    run.id,
                    iteration,
                )
        if state.frame is None:
            if state.image is None:
                state.instruction = await strategy.next_instruction(
                    current_image,
                    iteration,
                    previous_instruction,
                    run.total_iterations,
                )
                state.image = await self.image_provider.generate(
                    ImageRequest(
                        prompt=state.instruction.text,
                        source_image=current_image,
                        aspect_ratio=self.aspect_ratio,
                        seed=self.seed,
                        negative_prompt=self.negative_prompt,
                    )
                )
            state.frame = await asyncio.to_thread(
                self.frames.save_frame,
                run.id,
                iteration,
                state.image,
                prompt_used=state.instruction.text,
                generation_time_ms=state.instruction.latency_ms
                + state.image.latency_ms,
            )
            _logger.info(
                "Run %s iteration %s/%s: %sx%s, %s bytes, prompt: %s",
                run.id,
                iteration,
                run.total_iterations,
                state.image.width,
                state.image.height,
                len(state.image.image_bytes),
                state.instruction.text[:_PROMPT_PREVIEW_CHARS],
            )
        # the frame is durable before the counter moves
        await asyncio.to_thread(self.runs.advance_progress, run.id, iteration)
        return state.image.image_bytes, state.instruction.text

    async def _report(
        self, progress: ProgressReporter | None, event: EvolutionProgress
    ) -> None:
        if progress is None:
            return
        try:
            await progress(event)
        except Exception:  # noqa: BLE001
            _logger.warning(
                "Progress reporter failed for run %s", event.run_id, exc_info=True
            )

    async def _fail(
        self, run_id: UUID, exc: Exception, started: float, completed: int
    ) -> EvolutionOutcome:
        duration = self._elapsed(started)
        message = str(exc) or type(exc).__name__
        await self._record_terminal(
            run_id, self.runs.mark_failed, run_id, message, _utcnow(), duration
        )
        _logger.error(
            "Evolution %s failed after %s frames: %s", run_id, completed, message
        )
        return EvolutionOutcome(
            run_id=run_id,
            status=RunStatus.FAILED,
            frames_generated=completed,
            duration_seconds=duration,
            error=message,
        )

    async def _record_terminal(
        self, run_id: UUID, write: Callable[..., None], *args: object
    ) -> None:
        """Apply a terminal ledger write, retrying transient failures."""
        attempt = 0
        while True:
            try:
                await asyncio.to_thread(write, *args)
                return
            except PersistenceError as exc:
                attempt += 1
                if attempt > self.max_step_retries:
                    raise
                delay = self.retry_base_delay_seconds * attempt
                _logger.warning(
                    "Final status write for run %s failed (retry %s/%s in %ss): %s",
                    run_id,
                    attempt,
                    self.max_step_retries,
                    delay,
                    exc,
                )
                await self.sleep(delay)

    def _elapsed(self, started: float) -> int:
        return round(self.clock() - started)


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)
