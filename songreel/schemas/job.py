"""Pydantic schemas for Job creation and status responses.

Schema Naming Convention:
    - JobCreate: For POST requests (submitting a concept)
    - JobResponse: For API responses (serializing from database)
    - ErrorDetail: Stage-tagged failure description on failed jobs
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from songreel.models import JobStage


class JobCreate(BaseModel):
    """Schema for creating a new job.

    Used in POST /api/v1/jobs. The job starts in ``pending`` and the first
    advance item is enqueued in the same request.
    """

    concept: str = Field(
        ...,
        min_length=1,
        max_length=5000,
        description="Free-form song concept",
        examples=["A lo-fi song about rainy Sunday mornings in Lisbon"],
    )
    llm_model: str | None = Field(
        default=None,
        max_length=100,
        description="OpenRouter model ID. Default: DEFAULT_LLM_MODEL.",
        examples=["anthropic/claude-3.5-sonnet"],
    )
    user_id: str | None = Field(
        default=None,
        max_length=100,
        description="Owner reference (opaque)",
    )


class ErrorDetail(BaseModel):
    stage: str
    kind: str
    message: str


class JobResponse(BaseModel):
    """Schema for Job API responses.

    Serialization:
        Uses from_attributes=True to load directly from SQLAlchemy models.
        Stage is serialized as its string value (e.g., "generating_music").
    """

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: str | None = None
    concept: str
    llm_model: str
    stage: JobStage = Field(..., description="Current pipeline stage")
    song_prompt: dict | None = None
    generated_songs: list[dict] | None = None
    selected_song_id: str | None = None
    audio_url: str | None = None
    image_url: str | None = None
    video_duration: float | None = None
    video_url: str | None = Field(default=None, description="Published video URL (nullable)")
    youtube_url: str | None = None
    youtube_error: str | None = Field(
        default=None, description="Last YouTube upload failure; the job stays completed"
    )
    pending_task_id: str | None = None
    poll_attempt: int = 0
    error_detail: ErrorDetail | None = None
    created_at: datetime
    updated_at: datetime
