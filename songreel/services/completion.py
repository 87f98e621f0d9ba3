"""Completion Listener: webhook and poll results converge on one resolver.

Entry points:
    - handle_webhook(event): a provider pushed a result to our callback URL
    - handle_poll(payload): a scheduled poll item fired; ask the provider

Both end in ``resolve(job_id, stage, provider_task_id, status)``, which only
advances the job through ``JobStore.try_transition`` guarded on the stage AND
the PendingTask ID. When a webhook and a poll race, exactly one UPDATE
matches; the loser sees ``applied=False`` and returns without enqueueing
anything (StateConflict, a silent no-op).

Poll Lifecycle:
    poll n fires → fetch_status
        pending and n < max      → record n, enqueue poll n+1 after interval
        pending and n == max     → fail with PollExhausted (once)
        transport error          → counts as pending; ``max_stage_attempts``
                                   consecutive failures fail with TransportError
        succeeded / failed       → resolve

Redelivered polls:
    A poll whose number is already recorded on the job, or that finds the
    job at a later stage, re-enqueues what the job is waiting on
    (``reschedule``) instead of polling again.
"""

import uuid
from dataclasses import dataclass

from songreel.clients.base import ProviderState, ProviderStatus
from songreel.exceptions import JobNotFoundError, PollExhausted, ProviderRejection
from songreel.models import Job, JobStage, next_stage
from songreel.queue import AdvancePayload, advance_token, poll_token
from songreel.services.stage_handlers import RESULT_APPLIERS, StageContext, classify_error
from songreel.store import PENDING_TASK_CLEARED, JobMutation
from songreel.utils.logging import get_logger

log = get_logger(__name__)

# Which stage a provider's callback resolves
PROVIDER_STAGES: dict[str, JobStage] = {
    "suno": JobStage.GENERATING_MUSIC,
    "nano": JobStage.GENERATING_IMAGE,
}


@dataclass(frozen=True)
class WebhookEvent:
    """Normalized "stage result available" event produced by the webhook ingress."""

    provider: str
    job_id: uuid.UUID
    provider_task_id: str
    status: ProviderStatus

    @property
    def stage(self) -> JobStage:
        return PROVIDER_STAGES[self.provider]


class CompletionListener:
    """Resolves PendingTasks from webhooks and polls."""

    def __init__(self, ctx: StageContext, max_stage_attempts: int = 3):
        self.ctx = ctx
        self.max_stage_attempts = max_stage_attempts

    async def resolve(
        self,
        job_id: uuid.UUID,
        stage: JobStage,
        provider_task_id: str,
        status: ProviderStatus,
    ) -> bool:
        """Apply a provider result to the job's PendingTask.

        Returns:
            True if this call moved the job (advanced or failed it), False for
            pending results and StateConflict no-ops.
        """
        bound = log.bind(job_id=str(job_id), stage=stage.value, provider_task_id=provider_task_id)

        try:
            job = await self.ctx.store.load(job_id)
        except JobNotFoundError:
            bound.warning("resolution_job_not_found")
            return False

        if job.stage is not stage or job.pending_task_id != provider_task_id:
            bound.info(
                "resolution_stale",
                actual_stage=job.stage.value,
                pending_task_id=job.pending_task_id,
            )
            return False

        if status.state is ProviderState.PENDING:
            return False

        if status.state is ProviderState.FAILED:
            return await self.ctx.store.fail(
                job.id,
                stage,
                ProviderRejection.kind,
                f"provider reported failure: {status.error or 'unknown error'}",
                expected_task_id=provider_task_id,
            )

        try:
            values = await RESULT_APPLIERS[stage](self.ctx, job, status.result)
        except ProviderRejection as e:
            return await self.ctx.store.fail(
                job.id, stage, e.kind, e.message, expected_task_id=provider_task_id
            )

        target = next_stage(stage)
        applied, job = await self.ctx.store.try_transition(
            job.id,
            stage,
            JobMutation(
                stage=target,
                values={**values, **PENDING_TASK_CLEARED},
                expected_task_id=provider_task_id,
            ),
        )
        if not applied:
            bound.info("resolution_conflict", actual_stage=job.stage.value)
            return False

        bound.info("pending_task_resolved", next_stage=target.value)
        await self.ctx.queue.enqueue(
            advance_token(job.id, target),
            AdvancePayload(job_id=job.id, stage=target),
        )
        return True

    async def reschedule(self, job: Job) -> bool:
        """Re-enqueue the item a non-terminal job is waiting on.

        Used when a redelivered item (or the stalled job sweeper) finds that
        the follow-up of an applied transition may never have been enqueued:
        the next poll of an outstanding PendingTask, otherwise the advance
        item of the current stage. Dispatch tokens collapse this into the
        outstanding item when it does exist.

        Returns:
            True if a new item was queued.
        """
        if job.stage.is_terminal:
            return False

        if job.has_pending_task:
            policy = self.ctx.poll_policies[job.stage]
            next_poll = job.poll_attempt + 1
            first_poll = job.poll_attempt == 0
            delay = policy.webhook_grace if first_poll and self.ctx.callback_base else policy.interval
            key = poll_token(job.id, job.stage, next_poll)
            payload = AdvancePayload(
                job_id=job.id,
                stage=job.stage,
                poll_attempt=next_poll,
                provider_task_id=job.pending_task_id,
            )
        else:
            stage = JobStage.ANALYZING if job.stage is JobStage.PENDING else job.stage
            delay = None
            key = advance_token(job.id, stage)
            payload = AdvancePayload(job_id=job.id, stage=stage)

        enqueued = await self.ctx.queue.enqueue(key, payload, delay=delay)
        if enqueued:
            log.warning(
                "lost_item_rescheduled",
                job_id=str(job.id),
                stage=job.stage.value,
                dedup_key=key,
            )
        return enqueued

    async def handle_webhook(self, event: WebhookEvent) -> bool:
        """Resolve a webhook-delivered result."""
        log.info(
            "webhook_event_received",
            provider=event.provider,
            job_id=str(event.job_id),
            provider_task_id=event.provider_task_id,
            state=event.status.state.value,
        )
        return await self.resolve(event.job_id, event.stage, event.provider_task_id, event.status)

    async def handle_poll(self, payload: AdvancePayload) -> None:
        """Run one poll cycle for a PendingTask."""
        stage = payload.stage
        task_id = payload.provider_task_id or ""
        bound = log.bind(
            job_id=str(payload.job_id),
            stage=stage.value,
            provider_task_id=task_id,
            poll_attempt=payload.poll_attempt,
        )

        try:
            job = await self.ctx.store.load(payload.job_id)
        except JobNotFoundError:
            bound.warning("poll_job_not_found")
            return

        if job.stage is not stage:
            # The job moved on; its follow-up item may have been lost
            bound.info("poll_stale", actual_stage=job.stage.value)
            await self.reschedule(job)
            return

        if job.pending_task_id != task_id:
            bound.info("poll_stale", pending_task_id=job.pending_task_id)
            return

        if payload.poll_attempt <= job.poll_attempt:
            # Poll already recorded; only the enqueue of the next one may be missing
            bound.info("poll_duplicate", recorded_poll_attempt=job.poll_attempt)
            await self.reschedule(job)
            return

        policy = self.ctx.poll_policies[stage]
        provider = self.ctx.provider_for(stage)
        transport_failures = payload.attempt - 1

        try:
            status = await provider.fetch_status(task_id)
        except Exception as e:
            is_transient, kind = classify_error(e)
            if not is_transient:
                raise
            transport_failures += 1
            bound.warning("poll_transport_error", error=str(e)[:200], failures=transport_failures)
            if transport_failures >= self.max_stage_attempts:
                await self.ctx.store.fail(
                    job.id,
                    stage,
                    kind,
                    f"status check failed {transport_failures} times: {e}",
                    expected_task_id=task_id,
                )
                return
            status = ProviderStatus.pending()
        else:
            transport_failures = 0

        if status.state is not ProviderState.PENDING:
            await self.resolve(job.id, stage, task_id, status)
            return

        if payload.poll_attempt >= policy.max_attempts:
            failed = await self.ctx.store.fail(
                job.id,
                stage,
                PollExhausted.kind,
                f"{provider.provider_name} did not finish after {payload.poll_attempt} polls",
                expected_task_id=task_id,
            )
            if failed:
                bound.warning("poll_exhausted", max_attempts=policy.max_attempts)
            return

        applied, _ = await self.ctx.store.try_transition(
            job.id,
            stage,
            JobMutation(values={"poll_attempt": payload.poll_attempt}, expected_task_id=task_id),
        )
        if not applied:
            bound.info("poll_conflict")
            return

        next_poll = payload.poll_attempt + 1
        await self.ctx.queue.enqueue(
            poll_token(job.id, stage, next_poll),
            AdvancePayload(
                job_id=job.id,
                stage=stage,
                poll_attempt=next_poll,
                attempt=transport_failures + 1,
                provider_task_id=task_id,
            ),
            delay=policy.interval,
        )
        bound.debug("poll_rescheduled", next_poll=next_poll)
