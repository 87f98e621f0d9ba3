"""Stage handlers: one function per pipeline stage, selected by lookup table.

A handler receives the persisted Job (already re-checked to be at its stage)
and returns a StageOutcome describing what should happen next. Handlers call
providers and the media assembler but never write to the Job Store or the
Task Queue themselves; ``PipelineOrchestrator`` applies the outcome through
``JobStore.try_transition`` so output fields and the stage move together.

Outcomes:
    Advance(values, on_applied)     synchronous completion → next stage
    AwaitProvider(task_id, values)  submitted to a provider → PendingTask
    NoOp(reason)                    nothing to do (e.g., PendingTask outstanding)

Failures are raised as exceptions and classified by ``classify_error``.

Result appliers (``RESULT_APPLIERS``) are the asynchronous stages' second
half: they turn a resolved provider result into the output fields written
when the Completion Listener advances the job.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import timedelta
from functools import partial
from pathlib import Path
from typing import TYPE_CHECKING, Any, Awaitable, Callable

import httpx
from pydantic import ValidationError

from songreel.clients.base import AsyncProvider
from songreel.clients.r2 import ArtifactPublisher, video_key
from songreel.clients.youtube import PublishedVideo, VideoPublisher
from songreel.exceptions import MediaAssemblyError, PipelineError, ProviderRejection, TransportError
from songreel.models import Job, JobStage
from songreel.schemas.pipeline import GeneratedSong
from songreel.services.agents import ImageConceptAgent, SongConceptAgent, SongSelectorAgent
from songreel.services.media_assembler import MediaAssembler
from songreel.store import JobStore
from songreel.utils.logging import get_logger
from songreel.utils.url_validator import URLValidator

if TYPE_CHECKING:
    from songreel.queue import TaskQueue

log = get_logger(__name__)


@dataclass(frozen=True)
class PollPolicy:
    """Polling cadence for an asynchronous stage.

    Attributes:
        interval: Delay between polls when no webhook is configured.
        max_attempts: Polls allowed before the job fails with PollExhausted.
        webhook_grace: Delay before the first safety poll when a webhook is
            configured (covers callbacks that never arrive).
    """

    interval: timedelta
    max_attempts: int
    webhook_grace: timedelta


POLL_POLICIES: dict[JobStage, PollPolicy] = {
    JobStage.GENERATING_MUSIC: PollPolicy(
        interval=timedelta(seconds=10), max_attempts=60, webhook_grace=timedelta(minutes=5)
    ),
    JobStage.GENERATING_IMAGE: PollPolicy(
        interval=timedelta(seconds=3), max_attempts=100, webhook_grace=timedelta(minutes=2)
    ),
}

# Callback path segment per asynchronous stage
CALLBACK_SEGMENTS: dict[JobStage, str] = {
    JobStage.GENERATING_MUSIC: "suno",
    JobStage.GENERATING_IMAGE: "nano",
}


@dataclass
class StageContext:
    """Collaborators shared by handlers, the orchestrator and the listener."""

    store: JobStore
    queue: "TaskQueue"
    music: AsyncProvider
    image: AsyncProvider
    song_agent: SongConceptAgent
    selector_agent: SongSelectorAgent
    image_agent: ImageConceptAgent
    assembler: MediaAssembler
    publisher: ArtifactPublisher
    url_validator: URLValidator
    callback_base: str | None = None
    video_publisher: VideoPublisher | None = None
    poll_policies: dict[JobStage, PollPolicy] = field(default_factory=lambda: dict(POLL_POLICIES))

    def provider_for(self, stage: JobStage) -> AsyncProvider:
        if stage is JobStage.GENERATING_MUSIC:
            return self.music
        if stage is JobStage.GENERATING_IMAGE:
            return self.image
        raise ValueError(f"Stage has no asynchronous provider: {stage.value}")

    def callback_url(self, stage: JobStage, job_id: object) -> str | None:
        if not self.callback_base:
            return None
        return f"{self.callback_base}/{CALLBACK_SEGMENTS[stage]}/{job_id}"


@dataclass(frozen=True)
class Advance:
    values: dict[str, Any] = field(default_factory=dict)
    # Runs once the transition is persisted, never on a conflict
    on_applied: Callable[[], None] | None = field(default=None, compare=False)


@dataclass(frozen=True)
class AwaitProvider:
    provider_task_id: str
    values: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class NoOp:
    reason: str


StageOutcome = Advance | AwaitProvider | NoOp
StageHandler = Callable[[StageContext, Job], Awaitable[StageOutcome]]
ResultApplier = Callable[[StageContext, Job, Any], Awaitable[dict[str, Any]]]


def classify_error(exception: BaseException) -> tuple[bool, str]:
    """Classify an exception as transient (retriable) or permanent.

    Transient:
        TransportError, httpx.TransportError, TimeoutError, ConnectionError

    Permanent:
        Everything else. PipelineError subclasses report their ``kind``;
        other exceptions report their class name.

    Returns:
        Tuple of (is_transient, kind)

    Example:
        >>> classify_error(TransportError("suno returned 503"))
        (True, 'TransportError')
        >>> classify_error(ProviderRejection("SENSITIVE_WORD_ERROR"))
        (False, 'ProviderRejection')
    """
    if isinstance(exception, TransportError):
        return True, TransportError.kind

    if isinstance(exception, httpx.TransportError | TimeoutError | asyncio.TimeoutError | ConnectionError):
        return True, TransportError.kind

    if isinstance(exception, PipelineError):
        return False, exception.kind

    return False, type(exception).__name__


async def handle_analyzing(ctx: StageContext, job: Job) -> StageOutcome:
    song_prompt = await ctx.song_agent.run(job.concept, model=job.llm_model)
    return Advance({"song_prompt": song_prompt.model_dump()})


async def handle_generating_music(ctx: StageContext, job: Job) -> StageOutcome:
    if job.has_pending_task:
        return NoOp("music task already pending")
    if not job.song_prompt:
        raise ProviderRejection("song prompt missing; analyzing produced no output")

    callback_url = ctx.callback_url(JobStage.GENERATING_MUSIC, job.id)
    task_id = await ctx.music.submit(job.song_prompt, callback_url)
    return AwaitProvider(task_id, {"music_task_id": task_id})


async def handle_selecting_song(ctx: StageContext, job: Job) -> StageOutcome:
    try:
        songs = [GeneratedSong.model_validate(song) for song in job.generated_songs or []]
    except ValidationError as e:
        raise ProviderRejection(f"stored song candidates are invalid: {e}") from e
    if not songs:
        raise ProviderRejection("music generation returned no songs")

    chosen = await ctx.selector_agent.run(job.concept, songs, model=job.llm_model)
    return Advance({"selected_song_id": chosen.id, "audio_url": chosen.audio_url})


async def handle_generating_image(ctx: StageContext, job: Job) -> StageOutcome:
    if job.has_pending_task:
        return NoOp("image task already pending")

    image_prompt = job.image_prompt
    if not image_prompt:
        image_prompt = (
            await ctx.image_agent.run(job.concept, job.song_prompt, model=job.llm_model)
        ).model_dump()

    callback_url = ctx.callback_url(JobStage.GENERATING_IMAGE, job.id)
    task_id = await ctx.image.submit(image_prompt, callback_url)
    return AwaitProvider(task_id, {"image_task_id": task_id, "image_prompt": image_prompt})


async def handle_processing_video(ctx: StageContext, job: Job) -> StageOutcome:
    if not job.audio_url or not job.image_url:
        raise MediaAssemblyError("audio_url and image_url are required to assemble the video")

    artifact_path, duration = await ctx.assembler.assemble(job.audio_url, job.image_url, job.id)
    return Advance({"video_path": str(artifact_path), "video_duration": duration})


async def handle_uploading(ctx: StageContext, job: Job) -> StageOutcome:
    if not job.video_path:
        raise MediaAssemblyError("no assembled video to upload")

    video_url = await ctx.publisher.publish(Path(job.video_path), video_key(job.id))
    # The workspace is still needed if this result is never persisted
    return Advance({"video_url": video_url}, on_applied=partial(ctx.assembler.cleanup, job.id))


STAGE_HANDLERS: dict[JobStage, StageHandler] = {
    JobStage.ANALYZING: handle_analyzing,
    JobStage.GENERATING_MUSIC: handle_generating_music,
    JobStage.SELECTING_SONG: handle_selecting_song,
    JobStage.GENERATING_IMAGE: handle_generating_image,
    JobStage.PROCESSING_VIDEO: handle_processing_video,
    JobStage.UPLOADING: handle_uploading,
}


def publication_metadata(job: Job) -> tuple[str, str]:
    """YouTube title and description for a completed job."""
    song_prompt = job.song_prompt or {}
    title = song_prompt.get("title") or job.concept
    description = job.concept
    if song_prompt.get("style"):
        description = f"{description}\n\nStyle: {song_prompt['style']}"
    return title, description


async def publish_video(ctx: StageContext, job: Job) -> PublishedVideo:
    """Upload a completed job's published video to YouTube.

    Raises:
        ProviderRejection: No publisher configured, or the job has no video URL.
    """
    if ctx.video_publisher is None:
        raise ProviderRejection("YouTube publishing is not configured", provider="youtube")
    if not job.video_url:
        raise ProviderRejection("completed job has no video URL", provider="youtube")

    title, description = publication_metadata(job)
    return await ctx.video_publisher.publish(job.video_url, title, description)


async def _is_valid_url(ctx: StageContext, url: str) -> bool:
    # DNS resolution blocks, keep it off the event loop
    return await asyncio.to_thread(ctx.url_validator.is_valid, url)


async def apply_music_result(ctx: StageContext, job: Job, result: Any) -> dict[str, Any]:
    """Validate generated songs; unusable tracks are dropped.

    Raises:
        ProviderRejection: No song with a valid audio URL.
    """
    songs: list[dict[str, Any]] = []
    for item in result or []:
        try:
            song = GeneratedSong.model_validate(item)
        except ValidationError:
            log.warning("song_candidate_invalid", job_id=str(job.id))
            continue
        if not await _is_valid_url(ctx, song.audio_url):
            log.warning("song_audio_url_rejected", job_id=str(job.id), song_id=song.id)
            continue
        songs.append(song.model_dump())

    if not songs:
        raise ProviderRejection("music generation returned no songs", provider="suno")
    return {"generated_songs": songs}


async def apply_image_result(ctx: StageContext, job: Job, result: Any) -> dict[str, Any]:
    """Pick the first valid image URL.

    Raises:
        ProviderRejection: No valid URL in the result.
    """
    for url in result or []:
        if isinstance(url, str) and await _is_valid_url(ctx, url):
            return {"image_url": url}
        log.warning("image_url_rejected", job_id=str(job.id))

    raise ProviderRejection("image generation returned no usable image", provider="nano_banana")


RESULT_APPLIERS: dict[JobStage, ResultApplier] = {
    JobStage.GENERATING_MUSIC: apply_music_result,
    JobStage.GENERATING_IMAGE: apply_image_result,
}
