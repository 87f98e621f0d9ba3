"""Job Store: durable job state and the conditional transition primitive.

All mutations of a job go through ``JobStore.try_transition``, which issues a
single ``UPDATE jobs SET ... WHERE id = :id AND stage = :expected`` and checks
the affected row count. This is what makes a webhook racing a poll for the
same PendingTask safe without a distributed lock: exactly one of them sees
``rowcount == 1``.

Short Transaction Pattern:
    Each operation opens its own session, commits, and closes it. Callers
    never hold a transaction open across a provider call.

Usage:
    store = JobStore(async_session_factory)
    job = await store.create(concept="lofi rain song", llm_model="anthropic/claude-3.5-sonnet")

    applied, job = await store.try_transition(
        job.id,
        JobStage.ANALYZING,
        JobMutation(stage=JobStage.GENERATING_MUSIC, values={"song_prompt": prompt}),
    )
"""

import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from songreel.exceptions import JobNotFoundError
from songreel.models import TERMINAL_STAGES, Job, JobStage, utcnow
from songreel.utils.logging import get_logger

log = get_logger(__name__)

ERROR_MESSAGE_MAX_LENGTH = 1000

# Written after completion, only through record_publication
PUBLICATION_FIELDS = frozenset({"youtube_video_id", "youtube_url", "youtube_error"})

# Columns a mutation may never touch
_PROTECTED_FIELDS = frozenset(
    {"id", "stage", "concept", "llm_model", "user_id", "created_at", *PUBLICATION_FIELDS}
)

# Clearing these ends the PendingTask
PENDING_TASK_CLEARED: dict[str, Any] = {
    "pending_task_id": None,
    "poll_attempt": 0,
    "pending_since": None,
}


@dataclass
class JobMutation:
    """Change requested from ``try_transition``.

    Attributes:
        stage: New stage, or None for a field-only update within the stage.
        values: Column values to write in the same UPDATE.
        expected_task_id: Only apply if the outstanding PendingTask has this ID.
        require_no_pending: Only apply if no PendingTask is outstanding.
    """

    stage: JobStage | None = None
    values: dict[str, Any] = field(default_factory=dict)
    expected_task_id: str | None = None
    require_no_pending: bool = False


def build_error_detail(stage: JobStage, kind: str, message: str) -> dict[str, str]:
    """Build the ``error_detail`` payload stored on failed jobs."""
    return {
        "stage": stage.value,
        "kind": kind,
        "message": message[:ERROR_MESSAGE_MAX_LENGTH],
    }


class JobStore:
    """Durable record of jobs backed by SQLAlchemy async sessions."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def create(
        self,
        concept: str,
        llm_model: str,
        user_id: str | None = None,
    ) -> Job:
        """Insert a new job in the ``pending`` stage."""
        job = Job(
            concept=concept,
            llm_model=llm_model,
            user_id=user_id,
            stage=JobStage.PENDING,
        )
        async with self._session_factory() as db, db.begin():
            db.add(job)

        log.info("job_created", job_id=str(job.id), llm_model=llm_model)
        return job

    async def load(self, job_id: uuid.UUID | str) -> Job:
        """Load a job by ID.

        Raises:
            JobNotFoundError: If no job has this ID.
        """
        job_uuid = _as_uuid(job_id)
        async with self._session_factory() as db:
            job = await db.get(Job, job_uuid)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def try_transition(
        self,
        job_id: uuid.UUID | str,
        expected_stage: JobStage,
        mutation: JobMutation,
    ) -> tuple[bool, Job]:
        """Atomically apply ``mutation`` if the job is still at ``expected_stage``.

        Args:
            job_id: Job to mutate.
            expected_stage: Stage the caller observed; the UPDATE is guarded on it.
            mutation: New stage and/or column values plus PendingTask guards.

        Returns:
            ``(applied, job)`` where ``job`` is the row as persisted after the
            attempt (the caller's view when applied, the winner's otherwise).

        Raises:
            InvalidStateTransitionError: If the requested stage change is not in
                Job.VALID_TRANSITIONS, or ``expected_stage`` is terminal.
            JobNotFoundError: If the job does not exist.
            ValueError: If ``mutation.values`` names a protected column.
        """
        Job.check_transition(expected_stage, mutation.stage)

        protected = _PROTECTED_FIELDS.intersection(mutation.values)
        if protected:
            raise ValueError(f"Mutation may not write protected fields: {sorted(protected)}")

        job_uuid = _as_uuid(job_id)
        values = dict(mutation.values)
        values["updated_at"] = utcnow()
        if mutation.stage is not None:
            values["stage"] = mutation.stage

        stmt = update(Job).where(Job.id == job_uuid, Job.stage == expected_stage)
        if mutation.expected_task_id is not None:
            stmt = stmt.where(Job.pending_task_id == mutation.expected_task_id)
        if mutation.require_no_pending:
            stmt = stmt.where(Job.pending_task_id.is_(None))
        stmt = stmt.values(**values).execution_options(synchronize_session=False)

        async with self._session_factory() as db, db.begin():
            result = await db.execute(stmt)
            applied = result.rowcount == 1
            job = await db.get(Job, job_uuid, populate_existing=True)

        if job is None:
            raise JobNotFoundError(job_id)

        if applied:
            log.debug(
                "job_transition_applied",
                job_id=str(job_uuid),
                from_stage=expected_stage.value,
                to_stage=job.stage.value,
            )
        else:
            log.debug(
                "job_transition_conflict",
                job_id=str(job_uuid),
                expected_stage=expected_stage.value,
                actual_stage=job.stage.value,
                pending_task_id=job.pending_task_id,
            )
        return applied, job

    async def fail(
        self,
        job_id: uuid.UUID | str,
        expected_stage: JobStage,
        kind: str,
        message: str,
        expected_task_id: str | None = None,
    ) -> bool:
        """Move a job to ``failed`` with a stage-tagged error detail.

        Args:
            expected_task_id: When set, only fail if this PendingTask is
                still the outstanding one.

        Returns:
            True if this call failed the job; False if it had already moved on.
        """
        if expected_stage.is_terminal:
            return False

        applied, _ = await self.try_transition(
            job_id,
            expected_stage,
            JobMutation(
                stage=JobStage.FAILED,
                values={
                    "error_detail": build_error_detail(expected_stage, kind, message),
                    **PENDING_TASK_CLEARED,
                },
                expected_task_id=expected_task_id,
            ),
        )
        if applied:
            log.warning(
                "job_failed",
                job_id=str(job_id),
                stage=expected_stage.value,
                kind=kind,
                message=message[:200],
            )
        return applied

    async def record_publication(self, job_id: uuid.UUID | str, values: dict[str, Any]) -> bool:
        """Write YouTube publication fields on a completed, unpublished job.

        This is the only write allowed on a terminal job. It never changes
        ``stage`` and stops applying once ``youtube_video_id`` is set, so a
        duplicate upload cannot overwrite the first one.

        Returns:
            True if the row was updated.

        Raises:
            ValueError: If ``values`` names anything but publication fields.
        """
        unknown = set(values) - PUBLICATION_FIELDS
        if unknown:
            raise ValueError(f"Not publication fields: {sorted(unknown)}")

        job_uuid = _as_uuid(job_id)
        stmt = (
            update(Job)
            .where(
                Job.id == job_uuid,
                Job.stage == JobStage.COMPLETED,
                Job.youtube_video_id.is_(None),
            )
            .values(**values, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        async with self._session_factory() as db, db.begin():
            result = await db.execute(stmt)
        applied = result.rowcount == 1

        log.info(
            "job_publication_recorded" if applied else "job_publication_conflict",
            job_id=str(job_uuid),
            fields=sorted(values),
        )
        return applied

    async def list_stalled(self, older_than: timedelta, limit: int = 100) -> list[Job]:
        """Non-terminal jobs not updated for ``older_than``, oldest first."""
        cutoff = utcnow() - older_than
        stmt = (
            select(Job)
            .where(Job.stage.not_in(list(TERMINAL_STAGES)), Job.updated_at < cutoff)
            .order_by(Job.updated_at)
            .limit(limit)
        )
        async with self._session_factory() as db:
            result = await db.execute(stmt)
            return list(result.scalars().all())


def _as_uuid(job_id: uuid.UUID | str) -> uuid.UUID:
    if isinstance(job_id, uuid.UUID):
        return job_id
    return uuid.UUID(str(job_id))
