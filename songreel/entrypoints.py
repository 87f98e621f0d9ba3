"""PgQueuer entrypoint definitions for the song-video pipeline.

There is one entrypoint, ``advance_job``. Every advance item (stage run,
scheduled poll, transport retry, publish) carries an ``AdvancePayload`` and is
handed to ``PipelineOrchestrator.advance``, which re-checks the job's stage
before doing anything. Redeliveries are therefore harmless.

Entrypoint Contract:
    1. Claim item (PgQueuer automatic, FOR UPDATE SKIP LOCKED)
    2. Decode and validate the payload
    3. Advance the job (provider calls OUTSIDE any transaction)
    4. Pipeline failures are recorded on the job, not raised. Infrastructure
       errors (Job Store or queue unreachable) redeliver the item in-process
       with backoff, then propagate to PgQueuer

Redelivery:
    - in-process: ``redelivery_attempts`` runs of the same payload (tenacity)
    - crashed worker: ``retry_timer`` re-picks items whose worker stopped
      heartbeating
    - anything still lost is found by the stalled job sweeper

References:
    - PgQueuer Documentation: https://pgqueuer.readthedocs.io/
"""

from datetime import timedelta

from pgqueuer import PgQueuer
from pgqueuer.models import Job
from pydantic import ValidationError
from sqlalchemy.exc import InterfaceError, OperationalError
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from songreel.queue import ADVANCE_ENTRYPOINT, AdvancePayload
from songreel.services.orchestrator import PipelineOrchestrator
from songreel.utils.logging import get_logger

log = get_logger(__name__)

RETRY_TIMER = timedelta(minutes=5)

# Job Store / queue connectivity; ConnectionError is an OSError
INFRASTRUCTURE_ERRORS = (OSError, OperationalError, InterfaceError)


def decode_payload(job: Job) -> AdvancePayload:
    """Decode a PgQueuer job payload.

    Raises:
        ValueError: If the payload is missing or not a valid AdvancePayload
    """
    if job.payload is None:
        raise ValueError("Job payload is None")

    if not isinstance(job.payload, bytes):
        raise ValueError(f"Job payload must be bytes, got {type(job.payload)}")

    try:
        return AdvancePayload.from_bytes(job.payload)
    except ValidationError as e:
        raise ValueError(f"Invalid advance payload: {e}") from e


def register_entrypoints(
    pgq: PgQueuer,
    orchestrator: PipelineOrchestrator,
    concurrency_limit: int = 10,
    retry_timer: timedelta = RETRY_TIMER,
    redelivery_attempts: int = 5,
    redelivery_wait: wait_base | None = None,
) -> None:
    """Register the advance entrypoint with a PgQueuer instance.

    Registration happens after PgQueuer and the orchestrator exist, so
    nothing is bound at import time.

    Args:
        pgq: Initialized PgQueuer instance
        orchestrator: Orchestrator that processes every advance item
        concurrency_limit: Items processed concurrently by this worker
        retry_timer: Age after which PgQueuer re-picks a stalled item
        redelivery_attempts: In-process runs of an item hitting infrastructure errors
        redelivery_wait: tenacity wait between those runs
    """
    wait = redelivery_wait or wait_exponential(multiplier=1, min=2, max=30)

    @pgq.entrypoint(
        ADVANCE_ENTRYPOINT,
        concurrency_limit=concurrency_limit,
        retry_timer=retry_timer,
    )
    async def advance_job(job: Job) -> None:
        """Advance one job by one step."""
        try:
            payload = decode_payload(job)
        except ValueError as e:
            # Undecodable items can never succeed, drop them
            log.error("advance_payload_invalid", pgqueuer_job_id=str(job.id), error=str(e))
            return

        log.info(
            "advance_item_claimed",
            pgqueuer_job_id=str(job.id),
            job_id=str(payload.job_id),
            stage=payload.stage.value,
            attempt=payload.attempt,
            poll_attempt=payload.poll_attempt,
        )
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(INFRASTRUCTURE_ERRORS),
            stop=stop_after_attempt(redelivery_attempts),
            wait=wait,
            before_sleep=lambda retry_state: log.warning(
                "advance_item_redelivery",
                pgqueuer_job_id=str(job.id),
                job_id=str(payload.job_id),
                attempt=retry_state.attempt_number,
                error=str(retry_state.outcome.exception())[:200],
            ),
            reraise=True,
        ):
            with attempt:
                await orchestrator.advance(payload)

    log.info(
        "entrypoints_registered",
        entrypoints=[ADVANCE_ENTRYPOINT],
        concurrency_limit=concurrency_limit,
        retry_timer_seconds=retry_timer.total_seconds(),
    )
