"""Worker process entry point for the songreel pipeline.

Workers claim advance items from PgQueuer and drive jobs through the stage
state machine. Any number of worker processes can run side by side: item
claiming is atomic and every stage transition is a conditional update.

Architecture Pattern:
    - Separate Process: Each worker runs as an independent Python process
    - Async Execution: Bounded by the advance_job entrypoint concurrency limit
    - Short Transactions: Load → close DB → call provider → conditional update
    - Graceful Shutdown: SIGTERM/SIGINT stop claiming, in-flight items finish

Usage:
    python -m songreel.worker
"""

import asyncio
import os
import signal
import sys
from dataclasses import dataclass

import asyncpg
from pgqueuer import PgQueuer

from songreel.config import (
    get_database_url,
    get_max_stage_attempts,
    get_stalled_job_age,
    get_stalled_job_sweep_interval,
    get_worker_concurrency,
)
from songreel.utils.logging import get_logger

log = get_logger(__name__)

# Shutdown flag (set by signal handler)
shutdown_requested = False

# Resources closed on shutdown
asyncpg_pool: asyncpg.Pool | None = None
_pgq: PgQueuer | None = None


def signal_handler(signum: int, frame: object = None) -> None:
    """Handle SIGTERM/SIGINT: stop claiming new items.

    PgQueuer finishes the items already in flight before ``run()`` returns.

    Args:
        signum: Signal number
        frame: Current stack frame (unused)
    """
    global shutdown_requested
    log.info(
        "shutdown_signal_received",
        signal=signum,
        signal_name=signal.Signals(signum).name,
    )
    shutdown_requested = True
    if _pgq is not None:
        _pgq.shutdown.set()


@dataclass
class WorkerConfig:
    """Worker configuration loaded from environment variables."""

    database_url: str
    concurrency: int
    max_stage_attempts: int
    sweep_interval: int = 300
    stalled_job_age: int = 1800


def get_config() -> WorkerConfig:
    """Load and validate worker configuration.

    Raises:
        ValueError: If DATABASE_URL is not set.
    """
    return WorkerConfig(
        database_url=get_database_url(),
        concurrency=get_worker_concurrency(),
        max_stage_attempts=get_max_stage_attempts(),
        sweep_interval=get_stalled_job_sweep_interval(),
        stalled_job_age=get_stalled_job_age(),
    )


async def worker_main_loop(config: WorkerConfig) -> None:
    """Initialize PgQueuer and collaborators, then process items until shutdown.

    Raises:
        ConfigurationError: If a provider credential is missing
        asyncpg.PostgresError: If the database is unreachable
    """
    global asyncpg_pool, _pgq

    from songreel.database import async_session_factory
    from songreel.entrypoints import register_entrypoints
    from songreel.queue import build_task_queue, initialize_pgqueuer
    from songreel.services.orchestrator import (
        PipelineOrchestrator,
        build_stage_context,
        close_stage_context,
    )
    from songreel.services.sweeper import stalled_job_sweep_loop
    from songreel.store import JobStore

    worker_id = os.getenv("WORKER_ID", "worker-local")
    log.info("worker_started_with_pgqueuer", worker_id=worker_id, concurrency=config.concurrency)

    if async_session_factory is None:
        raise ValueError("DATABASE_URL environment variable not set")

    pgq, pool = await initialize_pgqueuer()
    asyncpg_pool = pool
    _pgq = pgq

    ctx = build_stage_context(JobStore(async_session_factory), build_task_queue(pool))
    sweep_task: asyncio.Task | None = None
    try:
        orchestrator = PipelineOrchestrator(ctx, max_stage_attempts=config.max_stage_attempts)
        register_entrypoints(pgq, orchestrator, concurrency_limit=config.concurrency)

        sweep_task = asyncio.create_task(
            stalled_job_sweep_loop(
                ctx.store,
                orchestrator.listener,
                interval=config.sweep_interval,
                older_than=config.stalled_job_age,
            )
        )

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, signal_handler, sig)

        # Handles polling, LISTEN/NOTIFY and FOR UPDATE SKIP LOCKED
        await pgq.run()
    finally:
        if sweep_task is not None:
            sweep_task.cancel()
            try:
                await sweep_task
            except asyncio.CancelledError:
                log.info("stalled_job_sweep_task_cancelled")
        await close_stage_context(ctx)
        log.info("worker_shutdown", worker_id=worker_id)


async def shutdown_worker() -> None:
    """Close the asyncpg pool and the SQLAlchemy engine."""
    from songreel.database import engine

    log.info("closing_database_connections")

    if asyncpg_pool is not None:
        await asyncpg_pool.close()
        log.info("asyncpg_pool_closed")

    if engine is not None:
        await engine.dispose()
        log.info("sqlalchemy_engine_closed")


async def run_worker(config: WorkerConfig) -> None:
    try:
        await worker_main_loop(config)
    finally:
        await shutdown_worker()


def main() -> None:
    """Worker process entry point.

    Exit Codes:
        0: Clean shutdown (SIGTERM/SIGINT received)
        1: Fatal error (configuration invalid, database unreachable)
    """
    try:
        config = get_config()
    except Exception as e:
        log.error("configuration_load_failed", error=str(e), error_type=type(e).__name__)
        sys.exit(1)

    # Redact credentials when logging
    database_host = (
        config.database_url.split("@")[-1].split("/")[0] if "@" in config.database_url else "local"
    )
    log.info(
        "worker_configuration_loaded",
        database_url_host=database_host,
        concurrency=config.concurrency,
        max_stage_attempts=config.max_stage_attempts,
    )

    try:
        asyncio.run(run_worker(config))
    except KeyboardInterrupt:
        log.info("worker_interrupted_by_user")
    except Exception as e:
        log.exception("worker_fatal_error", error=str(e), error_type=type(e).__name__)
        sys.exit(1)

    log.info("worker_exited_successfully")
    sys.exit(0)


if __name__ == "__main__":
    main()
