"""Pipeline orchestrator: worker-side processing of advance items.

Each Task Queue delivery is one ``AdvancePayload``. The orchestrator:

1. Routes poll items to the Completion Listener and publish items to the
   YouTube upload.
2. Loads the job and re-checks its stage. Items for a stage the job has
   already left are redeliveries: they re-enqueue whatever the job is
   waiting on (deduplicated) and exit. The first item of a job moves it
   from ``pending`` into ``analyzing``.
3. Looks up the stage handler in ``STAGE_HANDLERS`` and runs it outside any
   database transaction.
4. Applies the returned outcome with one conditional ``try_transition`` and,
   only if it applied, enqueues the next item (next stage or first poll).

Retry & Failure Escalation:
    - transient (TransportError, timeouts): re-enqueue the stage with
      ``attempt + 1`` after ``attempt × retry_base_delay``; once
      ``max_stage_attempts`` attempts have failed, fail with TransportError
    - permanent (ProviderRejection, MediaAssemblyError, anything else):
      fail immediately
    - StateConflict: no-op
    - Job Store / queue unreachable: raised, the entrypoint redelivers

Usage:
    ctx = build_stage_context(store, task_queue)
    orchestrator = PipelineOrchestrator(ctx)
    await orchestrator.advance(AdvancePayload.from_bytes(job.payload))
"""

from datetime import timedelta

from songreel import config
from songreel.clients.nano_banana import NanoBananaClient
from songreel.clients.openrouter import OpenRouterClient
from songreel.clients.r2 import R2Publisher
from songreel.clients.suno import SunoClient
from songreel.clients.youtube import YouTubeClient
from songreel.exceptions import JobNotFoundError, StateConflict
from songreel.models import Job, JobStage, is_past, next_stage, utcnow
from songreel.queue import (
    AdvancePayload,
    TaskQueue,
    advance_token,
    poll_token,
    publish_token,
    retry_token,
)
from songreel.services.agents import ImageConceptAgent, SongConceptAgent, SongSelectorAgent
from songreel.services.completion import CompletionListener
from songreel.services.media_assembler import MediaAssembler
from songreel.services.stage_handlers import (
    STAGE_HANDLERS,
    Advance,
    AwaitProvider,
    NoOp,
    StageContext,
    StageOutcome,
    classify_error,
    publish_video,
)
from songreel.store import ERROR_MESSAGE_MAX_LENGTH, PENDING_TASK_CLEARED, JobMutation, JobStore
from songreel.utils.logging import get_logger
from songreel.utils.url_validator import URLValidator

log = get_logger(__name__)

RETRY_BASE_DELAY = timedelta(minutes=1)


class PipelineOrchestrator:
    """Drives jobs through the stage state machine one advance item at a time.

    Attributes:
        ctx: Shared collaborators (store, queue, providers, agents, assembler).
        listener: Completion Listener sharing the same context.
        max_stage_attempts: Transport-error attempts per stage.
        retry_base_delay: Backoff unit for transport retries.
    """

    def __init__(
        self,
        ctx: StageContext,
        max_stage_attempts: int = 3,
        retry_base_delay: timedelta = RETRY_BASE_DELAY,
        listener: CompletionListener | None = None,
    ):
        self.ctx = ctx
        self.max_stage_attempts = max_stage_attempts
        self.retry_base_delay = retry_base_delay
        self.listener = listener or CompletionListener(ctx, max_stage_attempts=max_stage_attempts)

    def classify_error(self, exception: Exception) -> tuple[bool, str]:
        """Classify exception as transient (retriable) or permanent. See classify_error."""
        return classify_error(exception)

    async def advance(self, payload: AdvancePayload) -> None:
        """Process one advance item.

        Pipeline failures are recorded on the job. Job Store and queue errors
        propagate so the entrypoint redelivers the item.
        """
        stage = payload.stage
        bound = log.bind(job_id=str(payload.job_id), stage=stage.value, attempt=payload.attempt)

        if payload.publish:
            await self._publish(payload)
            return

        if payload.is_poll:
            try:
                await self.listener.handle_poll(payload)
            except StateConflict:
                bound.debug("poll_state_conflict")
            except Exception as e:
                # Provider transport errors are handled inside handle_poll, so a
                # transient error here means the Job Store or queue is unreachable
                is_transient, kind = self.classify_error(e)
                if is_transient:
                    raise
                await self.ctx.store.fail(
                    payload.job_id, stage, kind, str(e), expected_task_id=payload.provider_task_id
                )
            return

        try:
            job = await self.ctx.store.load(payload.job_id)
        except JobNotFoundError:
            bound.warning("advance_job_not_found")
            return

        job = await self._enter_stage(job, stage)
        if job is None:
            return

        handler = STAGE_HANDLERS.get(stage)
        if handler is None:
            bound.error("no_handler_for_stage")
            return

        bound.info("stage_started")
        try:
            outcome = await handler(self.ctx, job)
        except StateConflict:
            bound.debug("stage_state_conflict")
            return
        except Exception as e:
            await self._handle_stage_error(job, payload, e)
            return

        await self._apply_outcome(job, stage, outcome)

    async def _enter_stage(self, job: Job, stage: JobStage) -> Job | None:
        """Return the job if it is at ``stage``, or None if the item is stale."""
        if job.stage is stage:
            return job

        if job.stage.is_terminal or is_past(job.stage, stage):
            log.info(
                "advance_item_stale",
                job_id=str(job.id),
                stage=stage.value,
                actual_stage=job.stage.value,
            )
            # The transition that moved the job on may have lost its follow-up
            await self.listener.reschedule(job)
            return None

        if job.stage is JobStage.PENDING and stage is JobStage.ANALYZING:
            applied, job = await self.ctx.store.try_transition(
                job.id, JobStage.PENDING, JobMutation(stage=JobStage.ANALYZING)
            )
            if applied or job.stage is stage:
                return job
            return None

        # Items are only enqueued after the transition into their stage applied
        log.warning(
            "advance_item_ahead_of_job",
            job_id=str(job.id),
            stage=stage.value,
            actual_stage=job.stage.value,
        )
        return None

    async def _apply_outcome(self, job: Job, stage: JobStage, outcome: StageOutcome) -> None:
        bound = log.bind(job_id=str(job.id), stage=stage.value)

        if isinstance(outcome, NoOp):
            bound.info("stage_noop", reason=outcome.reason)
            await self.listener.reschedule(job)
            return

        if isinstance(outcome, Advance):
            target = next_stage(stage)
            applied, job = await self.ctx.store.try_transition(
                job.id,
                stage,
                JobMutation(stage=target, values={**outcome.values, **PENDING_TASK_CLEARED}),
            )
            if not applied:
                bound.info("stage_advance_conflict", actual_stage=job.stage.value)
                return

            bound.info("stage_advanced", next_stage=target.value)
            if outcome.on_applied is not None:
                outcome.on_applied()
            if not target.is_terminal:
                await self.ctx.queue.enqueue(
                    advance_token(job.id, target),
                    AdvancePayload(job_id=job.id, stage=target),
                )
            return

        if isinstance(outcome, AwaitProvider):
            applied, job = await self.ctx.store.try_transition(
                job.id,
                stage,
                JobMutation(
                    values={
                        **outcome.values,
                        "pending_task_id": outcome.provider_task_id,
                        "poll_attempt": 0,
                        "pending_since": utcnow(),
                    },
                    require_no_pending=True,
                ),
            )
            if not applied:
                bound.warning(
                    "pending_task_conflict",
                    provider_task_id=outcome.provider_task_id,
                    existing_task_id=job.pending_task_id,
                )
                return

            policy = self.ctx.poll_policies[stage]
            delay = policy.webhook_grace if self.ctx.callback_base else policy.interval
            bound.info(
                "pending_task_registered",
                provider_task_id=outcome.provider_task_id,
                webhook=self.ctx.callback_base is not None,
                first_poll_seconds=delay.total_seconds(),
            )
            await self.ctx.queue.enqueue(
                poll_token(job.id, stage, 1),
                AdvancePayload(
                    job_id=job.id,
                    stage=stage,
                    poll_attempt=1,
                    provider_task_id=outcome.provider_task_id,
                ),
                delay=delay,
            )
            return

        raise TypeError(f"Unknown stage outcome: {outcome!r}")

    async def _handle_stage_error(self, job: Job, payload: AdvancePayload, error: Exception) -> None:
        stage = payload.stage
        is_transient, kind = self.classify_error(error)
        bound = log.bind(job_id=str(job.id), stage=stage.value, attempt=payload.attempt, kind=kind)

        if is_transient and payload.attempt < self.max_stage_attempts:
            retry = payload.model_copy(update={"attempt": payload.attempt + 1})
            delay = self.retry_base_delay * payload.attempt
            bound.warning(
                "stage_retry_scheduled",
                error=str(error)[:200],
                delay_seconds=delay.total_seconds(),
            )
            await self.ctx.queue.enqueue(
                retry_token(job.id, stage, retry.attempt), retry, delay=delay
            )
            return

        message = str(error) or type(error).__name__
        if is_transient:
            message = f"{message} (gave up after {payload.attempt} attempts)"
        bound.error("stage_failed", error=message[:200], transient=is_transient)
        await self.ctx.store.fail(job.id, stage, kind, message)

    async def _publish(self, payload: AdvancePayload) -> None:
        """Upload a completed job's video to YouTube and record the outcome.

        The job stays completed whatever happens; failures land in
        ``youtube_error``. Transient errors retry like stage errors.
        """
        bound = log.bind(job_id=str(payload.job_id), attempt=payload.attempt)

        try:
            job = await self.ctx.store.load(payload.job_id)
        except JobNotFoundError:
            bound.warning("publish_job_not_found")
            return

        if job.stage is not JobStage.COMPLETED or job.youtube_video_id:
            bound.info("publish_item_stale", stage=job.stage.value, youtube_video_id=job.youtube_video_id)
            return

        if self.ctx.video_publisher is None:
            bound.error("publish_not_configured")
            await self.ctx.store.record_publication(
                job.id, {"youtube_error": "YouTube publishing is not configured"}
            )
            return

        try:
            published = await publish_video(self.ctx, job)
        except Exception as e:
            is_transient, kind = self.classify_error(e)
            if is_transient and payload.attempt < self.max_stage_attempts:
                retry = payload.model_copy(update={"attempt": payload.attempt + 1})
                delay = self.retry_base_delay * payload.attempt
                bound.warning(
                    "publish_retry_scheduled",
                    error=str(e)[:200],
                    delay_seconds=delay.total_seconds(),
                )
                await self.ctx.queue.enqueue(
                    publish_token(job.id, retry.attempt), retry, delay=delay
                )
                return

            message = f"{kind}: {str(e) or type(e).__name__}"
            bound.error("publish_failed", error=message[:200], transient=is_transient)
            await self.ctx.store.record_publication(
                job.id, {"youtube_error": message[:ERROR_MESSAGE_MAX_LENGTH]}
            )
            return

        await self.ctx.store.record_publication(
            job.id,
            {
                "youtube_video_id": published.video_id,
                "youtube_url": published.url,
                "youtube_error": None,
            },
        )
        bound.info("job_published", youtube_url=published.url)


def build_stage_context(store: JobStore, task_queue: TaskQueue) -> StageContext:
    """Build collaborators from environment configuration.

    Raises:
        ConfigurationError: If a provider credential is missing.
    """
    kie_api_key = config.get_kie_api_key()
    kie_base_url = config.get_kie_base_url()
    llm = OpenRouterClient(
        api_key=config.get_openrouter_api_key(),
        base_url=config.get_openrouter_base_url(),
    )
    model = config.get_default_llm_model()
    url_validator = URLValidator()

    youtube = config.get_youtube_settings()
    video_publisher = None
    if youtube is not None:
        video_publisher = YouTubeClient(
            youtube.client_id,
            youtube.client_secret,
            youtube.refresh_token,
            privacy_status=youtube.privacy_status,
        )

    return StageContext(
        store=store,
        queue=task_queue,
        music=SunoClient(base_url=kie_base_url, api_key=kie_api_key),
        image=NanoBananaClient(base_url=kie_base_url, api_key=kie_api_key),
        song_agent=SongConceptAgent(llm, model),
        selector_agent=SongSelectorAgent(llm, model),
        image_agent=ImageConceptAgent(llm, model),
        assembler=MediaAssembler(
            config.get_workspace_dir(),
            url_validator,
            ffmpeg_timeout=config.get_ffmpeg_timeout(),
        ),
        publisher=R2Publisher(config.get_r2_settings()),
        url_validator=url_validator,
        callback_base=config.get_webhook_callback_base(),
        video_publisher=video_publisher,
    )


async def close_stage_context(ctx: StageContext) -> None:
    """Close HTTP clients held by the context."""
    await ctx.music.close()  # type: ignore[attr-defined]
    await ctx.image.close()  # type: ignore[attr-defined]
    await ctx.song_agent.llm.close()  # type: ignore[attr-defined]
    await ctx.assembler.close()
    if ctx.video_publisher is not None:
        await ctx.video_publisher.close()
