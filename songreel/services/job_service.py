"""Job creation and publication requests.

Creates the job row and enqueues its first advance item
(``advance:<job_id>:analyzing``). The two steps are not one transaction:
a job left in ``pending`` because the enqueue failed is picked up by the
stalled job sweeper. Calling ``enqueue_first_stage`` again is also safe
thanks to the dedup key.

Publishing a completed job to YouTube is requested separately
(``request_publish``) and runs on a worker like any other advance item.
"""

import uuid

import structlog

from songreel.config import get_default_llm_model
from songreel.exceptions import StateConflict
from songreel.models import Job, JobStage
from songreel.queue import AdvancePayload, TaskQueue, advance_token, publish_token
from songreel.store import JobStore

log = structlog.get_logger()


async def enqueue_first_stage(task_queue: TaskQueue, job: Job) -> bool:
    """Enqueue the item that moves ``job`` from pending into analyzing."""
    return await task_queue.enqueue(
        advance_token(job.id, JobStage.ANALYZING),
        AdvancePayload(job_id=job.id, stage=JobStage.ANALYZING),
    )


async def create_job(
    store: JobStore,
    task_queue: TaskQueue,
    concept: str,
    llm_model: str | None = None,
    user_id: str | None = None,
) -> Job:
    """Create a job and start its pipeline.

    Args:
        store: Job Store
        task_queue: Task Queue receiving the first advance item
        concept: Free-form song concept
        llm_model: OpenRouter model ID (default: DEFAULT_LLM_MODEL)
        user_id: Optional owner reference

    Returns:
        The persisted job, still in ``pending``
    """
    job = await store.create(
        concept=concept,
        llm_model=llm_model or get_default_llm_model(),
        user_id=user_id,
    )
    enqueued = await enqueue_first_stage(task_queue, job)
    log.info("job_submitted", job_id=str(job.id), enqueued=enqueued)
    return job


async def request_publish(store: JobStore, task_queue: TaskQueue, job_id: uuid.UUID) -> Job:
    """Enqueue the YouTube upload of a completed job.

    Raises:
        JobNotFoundError: No job with this ID.
        StateConflict: The job is not completed, or already published.
    """
    job = await store.load(job_id)
    if job.stage is not JobStage.COMPLETED:
        raise StateConflict(f"Only completed jobs can be published (job is {job.stage.value})")
    if job.youtube_video_id:
        raise StateConflict(f"Job is already published: {job.youtube_url}")

    enqueued = await task_queue.enqueue(
        publish_token(job.id),
        AdvancePayload(job_id=job.id, stage=JobStage.COMPLETED, publish=True),
    )
    log.info("job_publish_requested", job_id=str(job.id), enqueued=enqueued)
    return job
