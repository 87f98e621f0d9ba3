"""Stalled job sweeper.

A job whose follow-up item was never enqueued (the worker died between the
conditional update and the enqueue, or the queue write failed) and never
redelivered sits in a non-terminal stage forever. Every worker runs this
loop next to PgQueuer: jobs untouched for longer than the stalled age get
their current item re-enqueued through ``CompletionListener.reschedule``.

Dispatch tokens make the sweep safe to run from several workers at once and
harmless for jobs whose item is merely delayed: the re-enqueue collapses
into the outstanding item.
"""

import asyncio
import uuid
from datetime import timedelta

from sqlalchemy.exc import SQLAlchemyError

from songreel.services.completion import CompletionListener
from songreel.store import JobStore
from songreel.utils.logging import get_logger

log = get_logger(__name__)

ERROR_BACKOFF_SECONDS = 10


async def sweep_stalled_jobs(
    store: JobStore,
    listener: CompletionListener,
    older_than: timedelta,
    limit: int = 100,
) -> int:
    """Reschedule non-terminal jobs not updated for ``older_than``.

    Returns:
        Number of jobs for which a new item was queued.
    """
    stalled = await store.list_stalled(older_than, limit=limit)
    rescheduled = 0
    for job in stalled:
        if await listener.reschedule(job):
            rescheduled += 1

    if stalled:
        log.info(
            "stalled_jobs_swept",
            stalled=len(stalled),
            rescheduled=rescheduled,
            older_than_seconds=older_than.total_seconds(),
        )
    return rescheduled


async def stalled_job_sweep_loop(
    store: JobStore,
    listener: CompletionListener,
    interval: int,
    older_than: int,
) -> None:
    """Background task: sweep stalled jobs every ``interval`` seconds.

    Runs until cancelled by worker shutdown. Database and queue errors are
    logged and the loop keeps going.

    Args:
        store: Job Store to scan.
        listener: Listener whose ``reschedule`` re-enqueues the current item.
        interval: Seconds between sweeps.
        older_than: Seconds without an update after which a job is stalled.
    """
    log.info("stalled_job_sweep_started", interval_seconds=interval, older_than_seconds=older_than)

    while True:
        try:
            await asyncio.sleep(interval)
            await sweep_stalled_jobs(store, listener, timedelta(seconds=older_than))

        except asyncio.CancelledError:
            log.info("stalled_job_sweep_cancelled")
            break
        except (RuntimeError, OSError, TimeoutError, SQLAlchemyError) as e:
            # Does NOT catch system exceptions (KeyboardInterrupt, SystemExit)
            log.error(
                "stalled_job_sweep_error",
                correlation_id=str(uuid.uuid4()),
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            await asyncio.sleep(ERROR_BACKOFF_SECONDS)
