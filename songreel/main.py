"""FastAPI application for the songreel pipeline.

The web service accepts job submissions and provider webhooks. It never runs
stages itself: it creates jobs, enqueues advance items and resolves
PendingTasks through the Completion Listener; workers do the rest.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import FastAPI, status
from fastapi.responses import JSONResponse

from songreel.routes import jobs, webhooks

log = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage startup/shutdown of shared collaborators.

    Startup:
    - Open the asyncpg pool and build the PgQueuer-backed TaskQueue
    - Build the JobStore and the CompletionListener

    Shutdown:
    - Close provider HTTP clients and the asyncpg pool
    """
    from songreel.config import get_max_stage_attempts
    from songreel.database import async_session_factory, engine
    from songreel.queue import build_task_queue, create_asyncpg_pool
    from songreel.services.completion import CompletionListener
    from songreel.services.orchestrator import build_stage_context, close_stage_context
    from songreel.store import JobStore

    app.state.store = None
    app.state.task_queue = None
    app.state.listener = None

    if async_session_factory is None:
        log.warning(
            "pipeline_disabled",
            message="DATABASE_URL not set, job and webhook routes will return 503",
        )
        yield
        return

    pool = await create_asyncpg_pool()
    store = JobStore(async_session_factory)
    task_queue = build_task_queue(pool)
    ctx = build_stage_context(store, task_queue)

    app.state.store = store
    app.state.task_queue = task_queue
    app.state.listener = CompletionListener(ctx, max_stage_attempts=get_max_stage_attempts())
    log.info("pipeline_services_initialized", webhooks_enabled=ctx.callback_base is not None)

    try:
        yield  # Application runs here
    finally:
        await close_stage_context(ctx)
        await pool.close()
        if engine is not None:
            await engine.dispose()
        log.info("pipeline_services_closed")


app = FastAPI(
    title="Songreel - Song Video Pipeline",
    description="Turns a song concept into a published music video",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(jobs.router)
app.include_router(webhooks.router)


@app.get("/health", status_code=status.HTTP_200_OK)
async def health_check() -> JSONResponse:
    """Health check endpoint for deployment validation."""
    return JSONResponse(
        content={
            "status": "healthy",
            "service": "songreel",
            "pipeline": getattr(app.state, "store", None) is not None,
        }
    )


if __name__ == "__main__":
    import uvicorn

    # Binding to 0.0.0.0 is intentional for container deployments
    uvicorn.run(
        "songreel.main:app",
        host="0.0.0.0",  # noqa: S104
        port=8000,
        reload=True,
    )
