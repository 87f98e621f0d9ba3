"""Job routes.

- POST /api/v1/jobs - submit a concept, start the pipeline
- GET /api/v1/jobs/{job_id} - read-only job status
- POST /api/v1/jobs/{job_id}/publish - upload a completed job to YouTube
"""

import uuid

import structlog
from fastapi import APIRouter, HTTPException, Request, status

from songreel.config import get_youtube_settings
from songreel.exceptions import JobNotFoundError, StateConflict
from songreel.routes import require_state
from songreel.schemas.job import JobCreate, JobResponse
from songreel.services.job_service import create_job, request_publish

log = structlog.get_logger()
router = APIRouter(prefix="/api/v1/jobs", tags=["jobs"])


@router.post("", status_code=status.HTTP_201_CREATED, response_model=JobResponse)
async def submit_job(body: JobCreate, request: Request) -> JobResponse:
    """Create a job and enqueue its first stage."""
    job = await create_job(
        require_state(request, "store"),
        require_state(request, "task_queue"),
        concept=body.concept,
        llm_model=body.llm_model,
        user_id=body.user_id,
    )
    return JobResponse.model_validate(job)


@router.get("/{job_id}", response_model=JobResponse)
async def get_job(job_id: uuid.UUID, request: Request) -> JobResponse:
    """Return the job's current stage and outputs.

    Returns:
        200 OK: Job found
        404 Not Found: No job with this ID
    """
    try:
        job = await require_state(request, "store").load(job_id)
    except JobNotFoundError as e:
        raise HTTPException(status_code=404, detail="Job not found") from e
    return JobResponse.model_validate(job)


@router.post(
    "/{job_id}/publish",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=JobResponse,
)
async def publish_job(job_id: uuid.UUID, request: Request) -> JobResponse:
    """Queue the YouTube upload of a completed job.

    Returns:
        202 Accepted: Upload queued; poll GET /jobs/{job_id} for youtube_url
        404 Not Found: No job with this ID
        409 Conflict: Job not completed, or already published
        503 Service Unavailable: YouTube publishing not configured
    """
    if get_youtube_settings() is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="YouTube publishing is not configured",
        )

    try:
        job = await request_publish(
            require_state(request, "store"),
            require_state(request, "task_queue"),
            job_id,
        )
    except JobNotFoundError as e:
        raise HTTPException(status_code=404, detail="Job not found") from e
    except StateConflict as e:
        raise HTTPException(status_code=409, detail=e.message) from e
    return JobResponse.model_validate(job)
