"""PgQueuer initialization and the Task Queue used by the orchestrator.

This module handles PgQueuer setup with an asyncpg connection pool and exposes
the ``TaskQueue`` contract every pipeline component depends on. Components
receive a ``TaskQueue`` instance; nothing in the package reaches for a global
queue, so tests swap in an in-memory double.

Delivery Model:
    - At-least-once: PgQueuer claims items with FOR UPDATE SKIP LOCKED
    - Delayed delivery: ``execute_after`` schedules polls and retries
    - Deduplication: every enqueue carries a dispatch token as ``dedupe_key``

Dispatch Tokens:
    advance:<jobID>:<stage>              advance job into/through a stage
    advance:<jobID>:<stage>:poll:<n>     n-th scheduled poll of the PendingTask
    advance:<jobID>:<stage>:retry:<n>    n-th attempt after a transport error
    publish:<jobID>[:retry:<n>]          YouTube upload of a completed job

    PgQueuer only deduplicates queued/picked items, and the item scheduling a
    follow-up is itself still picked, so follow-ups carry their attempt number.

Lost Items:
    An item is lost when a worker persists a transition and then dies (or the
    queue write fails) before the follow-up enqueue. Recovery is layered:
    the entrypoint's ``retry_timer`` re-picks items whose worker stopped
    heartbeating, a redelivered item that finds nothing to do re-enqueues the
    job's current item (``CompletionListener.reschedule``), and the stalled
    job sweeper covers items that were never redelivered at all.

Usage:
    from songreel.queue import PgQueuerTaskQueue, initialize_pgqueuer

    pgq, pool = await initialize_pgqueuer()
    task_queue = PgQueuerTaskQueue(Queries(AsyncpgPoolDriver(pool)))
    await task_queue.enqueue(advance_token(job.id, JobStage.ANALYZING), payload)
"""

import os
import uuid
from datetime import timedelta
from typing import Protocol

import asyncpg
from pgqueuer import PgQueuer
from pgqueuer.db import AsyncpgPoolDriver
from pgqueuer.errors import DuplicateJobError
from pgqueuer.qm import QueueManager
from pgqueuer.queries import Queries
from pydantic import BaseModel, Field

from songreel.models import JobStage
from songreel.utils.logging import get_logger

log = get_logger(__name__)

ADVANCE_ENTRYPOINT = "advance_job"


class AdvancePayload(BaseModel):
    """Work item asking a worker to advance one job through one stage.

    Attributes:
        job_id: Job to advance.
        stage: Stage the item is for (the handler re-checks it on delivery).
        attempt: Transport-error attempt counter, starting at 1.
        poll_attempt: Poll number for poll items, 0 otherwise.
        provider_task_id: PendingTask provider ID, set on poll items only.
        publish: Upload the completed job's video to YouTube.
    """

    job_id: uuid.UUID
    stage: JobStage
    attempt: int = Field(default=1, ge=1)
    poll_attempt: int = Field(default=0, ge=0)
    provider_task_id: str | None = None
    publish: bool = False

    @property
    def is_poll(self) -> bool:
        return self.poll_attempt > 0

    def to_bytes(self) -> bytes:
        return self.model_dump_json().encode()

    @classmethod
    def from_bytes(cls, data: bytes) -> "AdvancePayload":
        return cls.model_validate_json(data)


def advance_token(job_id: uuid.UUID | str, stage: JobStage) -> str:
    """Dedup key for the item that runs ``stage`` for ``job_id``."""
    return f"advance:{job_id}:{stage.value}"


def poll_token(job_id: uuid.UUID | str, stage: JobStage, poll_attempt: int) -> str:
    """Dedup key for the ``poll_attempt``-th poll of a stage's PendingTask."""
    return f"{advance_token(job_id, stage)}:poll:{poll_attempt}"


def retry_token(job_id: uuid.UUID | str, stage: JobStage, attempt: int) -> str:
    """Dedup key for re-running a stage after a transport error."""
    return f"{advance_token(job_id, stage)}:retry:{attempt}"


def publish_token(job_id: uuid.UUID | str, attempt: int = 1) -> str:
    """Dedup key for the YouTube upload of a completed job."""
    if attempt > 1:
        return f"publish:{job_id}:retry:{attempt}"
    return f"publish:{job_id}"


def token_for(payload: AdvancePayload) -> str:
    """Recompute the dispatch token of an existing payload."""
    if payload.publish:
        return publish_token(payload.job_id, payload.attempt)
    if payload.is_poll:
        return poll_token(payload.job_id, payload.stage, payload.poll_attempt)
    if payload.attempt > 1:
        return retry_token(payload.job_id, payload.stage, payload.attempt)
    return advance_token(payload.job_id, payload.stage)


class TaskQueue(Protocol):
    """Durable at-least-once queue of advance items."""

    async def enqueue(
        self,
        dedup_key: str,
        payload: AdvancePayload,
        delay: timedelta | None = None,
    ) -> bool:
        """Enqueue ``payload`` unless an item with ``dedup_key`` is outstanding.

        Returns:
            True if a new item was queued, False if it collapsed into an existing one.
        """
        ...


class PgQueuerTaskQueue:
    """TaskQueue backed by PgQueuer's ``Queries.enqueue``."""

    def __init__(self, queries: Queries, entrypoint: str = ADVANCE_ENTRYPOINT):
        self._queries = queries
        self._entrypoint = entrypoint

    async def enqueue(
        self,
        dedup_key: str,
        payload: AdvancePayload,
        delay: timedelta | None = None,
    ) -> bool:
        try:
            await self._queries.enqueue(
                self._entrypoint,
                payload.to_bytes(),
                execute_after=delay,
                dedupe_key=dedup_key,
            )
        except DuplicateJobError:
            log.info("advance_item_deduplicated", dedup_key=dedup_key)
            return False

        log.info(
            "advance_item_enqueued",
            dedup_key=dedup_key,
            job_id=str(payload.job_id),
            stage=payload.stage.value,
            delay_seconds=delay.total_seconds() if delay else 0,
        )
        return True


async def create_asyncpg_pool() -> asyncpg.Pool:
    """Create the asyncpg pool shared by PgQueuer and the TaskQueue.

    Raises:
        ValueError: If DATABASE_URL not set
    """
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        raise ValueError("DATABASE_URL environment variable not set")

    # asyncpg wants a plain postgresql:// DSN
    database_url = database_url.replace("postgresql+asyncpg://", "postgresql://", 1)

    log.info("initializing_asyncpg_pool", min_size=2, max_size=10, timeout=30)

    return await asyncpg.create_pool(
        dsn=database_url,
        min_size=2,
        max_size=10,
        timeout=30,
        command_timeout=1800,
    )


async def initialize_pgqueuer() -> tuple[PgQueuer, asyncpg.Pool]:
    """Create the asyncpg pool, install the PgQueuer schema and build PgQueuer.

    command_timeout=1800 only bounds a single statement. Items held by a
    crashed worker are re-picked through the entrypoint's ``retry_timer``
    (see ``register_entrypoints``).

    Returns:
        tuple[PgQueuer, asyncpg.Pool]

    Raises:
        ValueError: If DATABASE_URL not set
        asyncpg.PostgresError: If database connection fails
    """
    pool = await create_asyncpg_pool()

    # Idempotent: safe to call on every start
    log.info("installing_pgqueuer_schema")
    qm = QueueManager(AsyncpgPoolDriver(pool))
    try:
        await qm.queries.install()
    except asyncpg.DuplicateObjectError:
        log.info("pgqueuer_schema_already_installed")
    log.info("pgqueuer_schema_installed")

    driver = AsyncpgPoolDriver(pool)
    pgq = PgQueuer(driver)

    log.info("pgqueuer_initialized", entrypoint=ADVANCE_ENTRYPOINT)
    return pgq, pool


def build_task_queue(pool: asyncpg.Pool) -> PgQueuerTaskQueue:
    """Build the PgQueuer-backed TaskQueue for an existing asyncpg pool."""
    return PgQueuerTaskQueue(Queries(AsyncpgPoolDriver(pool)))
