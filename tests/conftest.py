"""Shared test fixtures."""

import random
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from io import BytesIO
from uuid import UUID, uuid4

import pytest
from PIL import Image

from morphorama.config import Settings
from morphorama.domain.errors import PersistenceError
from morphorama.domain.frames import FrameRecord, NewFrame
from morphorama.domain.generation import DerivedPrompt, GeneratedImage, ImageRequest
from morphorama.domain.photos import PhotoRecord
from morphorama.domain.runs import EvolutionMode, RunRecord, RunStatus
from morphorama.services.evolution import EvolutionOrchestrator
from morphorama.services.frames import FrameRepository, FrameService
from morphorama.services.images import ImageProvider, build_generated_image
from morphorama.services.photos import PhotoRepository, PhotoService
from morphorama.services.prompts import PromptClient, PromptGenerator
from morphorama.services.runs import RunRepository, RunService
from morphorama.services.storage import UPLOADS_BUCKET, BlobStorage


def make_png(width: int = 32, height: int = 32, seed: int = 0) -> bytes:
    """Return real PNG bytes filled with seeded noise."""
    pixels = random.Random(seed).randbytes(width * height * 3)
    image = Image.frombytes("RGB", (width, height), pixels)
    buffer = BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


@dataclass
class InMemoryRunRepository(RunRepository):
    """In-memory run ledger for tests."""

    runs: dict[UUID, RunRecord] = field(default_factory=dict)
    events: list[str] = field(default_factory=list)
    advance_failures: int = 0
    terminal_failures: int = 0

    def add(self, run: RunRecord) -> RunRecord:
        self.runs[run.id] = run
        return run

    def create_run(
        self, source_photo_id: UUID, total_iterations: int, mode: EvolutionMode
    ) -> RunRecord:
        now = datetime.now(tz=UTC)
        run = RunRecord(
            id=uuid4(),
            source_photo_id=source_photo_id,
            status=RunStatus.QUEUED,
            mode=mode,
            current_iteration=0,
            total_iterations=total_iterations,
            created_at=now,
            updated_at=now,
        )
        return self.add(run)

    def get_run(self, run_id: UUID) -> RunRecord | None:
        return self.runs.get(run_id)

    def claim_run(self, run_id: UUID, started_at: datetime) -> RunRecord | None:
        run = self.runs.get(run_id)
        if run is None or run.status != RunStatus.QUEUED:
            return None
        self.events.append("claim")
        return self.add(
            replace(
                run,
                status=RunStatus.PROCESSING,
                started_at=started_at,
                updated_at=started_at,
            )
        )

    def advance_progress(self, run_id: UUID, iteration: int) -> None:
        if self.advance_failures:
            self.advance_failures -= 1
            raise PersistenceError(f"ledger unavailable at iteration {iteration}")
        run = self.runs[run_id]
        if run.status != RunStatus.PROCESSING or run.current_iteration > iteration:
            raise PersistenceError("conditional update matched no rows")
        self.events.append(f"advance:{iteration}")
        self.add(
            replace(
                run, current_iteration=iteration, updated_at=datetime.now(tz=UTC)
            )
        )

    def mark_completed(
        self, run_id: UUID, completed_at: datetime, duration_seconds: int
    ) -> None:
        self._fail_terminal_write()
        self.events.append("completed")
        self.add(
            replace(
                self.runs[run_id],
                status=RunStatus.COMPLETED,
                completed_at=completed_at,
                duration_seconds=duration_seconds,
                updated_at=completed_at,
            )
        )

    def mark_failed(
        self,
        run_id: UUID,
        error_message: str,
        completed_at: datetime,
        duration_seconds: int,
    ) -> None:
        self._fail_terminal_write()
        self.events.append("failed")
        run = self.runs[run_id]
        self.add(
            replace(
                run,
                status=RunStatus.FAILED,
                error_message=error_message,
                completed_at=completed_at,
                duration_seconds=duration_seconds,
                retry_count=run.retry_count + 1,
                updated_at=completed_at,
            )
        )

    def _fail_terminal_write(self) -> None:
        if self.terminal_failures:
            self.terminal_failures -= 1
            raise PersistenceError("status write failed")

    def set_queue_job_id(self, run_id: UUID, job_id: str) -> None:
        self.add(replace(self.runs[run_id], queue_job_id=job_id))

    def list_recent(self, limit: int) -> list[RunRecord]:
        ordered = sorted(
            self.runs.values(), key=lambda run: run.created_at, reverse=True
        )
        return ordered[:limit]

    def list_for_photo(self, photo_id: UUID) -> list[RunRecord]:
        return [run for run in self.runs.values() if run.source_photo_id == photo_id]

    def list_stale(self, updated_before: datetime) -> list[RunRecord]:
        return [
            run
            for run in self.runs.values()
            if run.status == RunStatus.PROCESSING
            and run.updated_at is not None
            and run.updated_at < updated_before
        ]

    def count_by_status(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for run in self.runs.values():
            counts[run.status.value] = counts.get(run.status.value, 0) + 1
        return counts

    def delete_run(self, run_id: UUID) -> None:
        self.runs.pop(run_id, None)


@dataclass
class InMemoryFrameRepository(FrameRepository):
    """In-memory frame ledger enforcing (run, iteration) uniqueness."""

    frames: dict[tuple[UUID, int], FrameRecord] = field(default_factory=dict)
    events: list[str] = field(default_factory=list)
    create_failures: int = 0
    lost_commits: int = 0

    def create_frame(self, frame: NewFrame) -> FrameRecord:
        if self.create_failures:
            self.create_failures -= 1
            raise PersistenceError("frame insert failed")
        key = (frame.run_id, frame.iteration)
        if key in self.frames:
            raise PersistenceError(f"duplicate frame {frame.iteration}")
        record = FrameRecord(
            id=uuid4(),
            run_id=frame.run_id,
            iteration=frame.iteration,
            file_path=frame.file_path,
            file_size=frame.file_size,
            width=frame.width,
            height=frame.height,
            prompt_used=frame.prompt_used,
            generation_time_ms=frame.generation_time_ms,
            provider=frame.provider,
            model_version=frame.model_version,
            created_at=datetime.now(tz=UTC),
        )
        self.frames[key] = record
        self.events.append(f"frame:{frame.iteration}")
        if self.lost_commits:
            self.lost_commits -= 1
            raise PersistenceError("connection reset after insert")
        return record

    def get_frame(self, run_id: UUID, iteration: int) -> FrameRecord | None:
        return self.frames.get((run_id, iteration))

    def list_frames(self, run_id: UUID) -> list[FrameRecord]:
        return sorted(
            (frame for frame in self.frames.values() if frame.run_id == run_id),
            key=lambda frame: frame.iteration,
        )

    def delete_frames(self, run_id: UUID) -> int:
        keys = [key for key in self.frames if key[0] == run_id]
        for key in keys:
            del self.frames[key]
        return len(keys)

    def list_generation_metrics(self) -> list[tuple[int | None, int]]:
        return [
            (frame.generation_time_ms, frame.file_size)
            for frame in self.frames.values()
        ]


@dataclass
class InMemoryPhotoRepository(PhotoRepository):
    photos: dict[UUID, PhotoRecord] = field(default_factory=dict)

    def get_photo(self, photo_id: UUID) -> PhotoRecord | None:
        return self.photos.get(photo_id)


@dataclass
class InMemoryBlobStorage(BlobStorage):
    """In-memory object store keyed by (bucket, key)."""

    objects: dict[tuple[str, str], bytes] = field(default_factory=dict)
    events: list[str] = field(default_factory=list)
    upload_failures: int = 0

    def upload(self, bucket: str, key: str, data: bytes, content_type: str) -> str:
        if self.upload_failures:
            self.upload_failures -= 1
            raise PersistenceError(f"upload of {key} failed")
        self.objects[(bucket, key)] = data
        self.events.append(f"upload:{key}")
        return f"{bucket}/{key}"

    def download(self, bucket: str, key: str) -> bytes:
        return self.objects[(bucket, key)]

    def remove(self, bucket: str, keys: list[str]) -> None:
        for key in keys:
            self.objects.pop((bucket, key), None)


@dataclass
class FakeImageProvider(ImageProvider):
    """Returns distinct PNGs; scripted errors are raised call by call."""

    script: list[Exception | None] = field(default_factory=list)
    requests: list[ImageRequest] = field(default_factory=list)
    validation_error: Exception | None = None
    provider_id: str = "fake-images"
    model: str = "fake-model-1"
    latency_ms: int = 50

    async def generate(self, request: ImageRequest) -> GeneratedImage:
        self.requests.append(request)
        outcome = self.script.pop(0) if self.script else None
        if outcome is not None:
            raise outcome
        return build_generated_image(
            make_png(48, 40, seed=len(self.requests)),
            provider=self.provider_id,
            model=self.model,
            latency_ms=self.latency_ms,
        )

    async def validate_credentials(self) -> None:
        if self.validation_error is not None:
            raise self.validation_error


@dataclass
class FakePromptGenerator(PromptGenerator):
    """Records derive calls and returns numbered prompts."""

    calls: list[tuple[int, str | None]] = field(default_factory=list)
    script: list[Exception | None] = field(default_factory=list)
    validation_error: Exception | None = None
    latency_ms: int = 20

    async def derive(
        self,
        image_bytes: bytes,
        iteration: int,
        previous_instruction: str | None,
        total_iterations: int | None = None,
    ) -> DerivedPrompt:
        self.calls.append((iteration, previous_instruction))
        outcome = self.script.pop(0) if self.script else None
        if outcome is not None:
            raise outcome
        return DerivedPrompt(
            text=f"evolve step {iteration}",
            model="fake-llm",
            latency_ms=self.latency_ms,
        )

    async def validate_credentials(self) -> None:
        if self.validation_error is not None:
            raise self.validation_error


@dataclass
class FakePromptClient(PromptClient):
    answer: str = '  "Turn it into a watercolor"  '
    model: str = "fake-llm"
    calls: list[tuple[str, str]] = field(default_factory=list)

    async def complete(self, *, instructions: str, image_data_url: str) -> str:
        self.calls.append((instructions, image_data_url))
        return self.answer

    async def validate_credentials(self) -> None:
        return None


@dataclass
class Harness:
    """Orchestrator wired to in-memory collaborators."""

    runs: InMemoryRunRepository
    frame_repository: InMemoryFrameRepository
    photo_repository: InMemoryPhotoRepository
    storage: InMemoryBlobStorage
    image_provider: FakeImageProvider
    prompt_generator: FakePromptGenerator
    run_service: RunService
    frame_service: FrameService
    orchestrator: EvolutionOrchestrator
    delays: list[float]
    photo: PhotoRecord

    def create_run(
        self, total_iterations: int = 3, mode: EvolutionMode = EvolutionMode.GUIDED
    ) -> RunRecord:
        return self.run_service.create_run(self.photo.id, total_iterations, mode)


def add_photo(
    photos: InMemoryPhotoRepository,
    storage: InMemoryBlobStorage,
    status: str = "approved",
) -> PhotoRecord:
    photo = PhotoRecord(
        id=uuid4(),
        original_filename="beach.png",
        stored_filename=f"{uuid4()}.png",
        status=status,
        width=32,
        height=32,
    )
    photos.photos[photo.id] = photo
    storage.objects[(UPLOADS_BUCKET, photo.stored_filename)] = make_png()
    return photo


def build_harness(
    clock: Callable[[], float] | None = None, **orchestrator_options: object
) -> Harness:
    events: list[str] = []
    runs = InMemoryRunRepository(events=events)
    frame_repository = InMemoryFrameRepository(events=events)
    photo_repository = InMemoryPhotoRepository()
    storage = InMemoryBlobStorage(events=events)
    image_provider = FakeImageProvider()
    prompt_generator = FakePromptGenerator()
    photo_service = PhotoService(photo_repository, storage)
    frame_service = FrameService(frame_repository, storage, runs)
    run_service = RunService(runs, photo_service, frame_service)
    delays: list[float] = []

    async def record_sleep(seconds: float) -> None:
        delays.append(seconds)

    options: dict[str, object] = {"prompt_generator": prompt_generator}
    options.update(orchestrator_options)
    orchestrator = EvolutionOrchestrator(
        runs=runs,
        photos=photo_service,
        frames=frame_service,
        image_provider=image_provider,
        fixed_instruction="Recreate this image exactly.",
        sleep=record_sleep,
        clock=clock or (lambda: 1000.0),
        **options,
    )
    return Harness(
        runs=runs,
        frame_repository=frame_repository,
        photo_repository=photo_repository,
        storage=storage,
        image_provider=image_provider,
        prompt_generator=prompt_generator,
        run_service=run_service,
        frame_service=frame_service,
        orchestrator=orchestrator,
        delays=delays,
        photo=add_photo(photo_repository, storage),
    )


@pytest.fixture
def harness() -> Harness:
    return build_harness()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        supabase_url="https://example.supabase.co",
        supabase_service_key="eyJhbGciOiJIUzI1NiJ9.eyJyb2xlIjoic2VydmljZSJ9.sig",
        stability_api_key="stability-key",
        openai_api_key="openai-key",
    )
