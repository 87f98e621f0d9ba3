"""SQLAlchemy 2.0 ORM models.

This module contains the Job aggregate and its stage state machine.
All models use the Mapped[type] annotation pattern required by SQLAlchemy 2.0.

Pipeline Flow (Happy Path):
    pending → analyzing → generating_music → selecting_song → generating_image
    → processing_video → uploading → completed

    Any non-terminal stage may move to ``failed``. ``completed`` and ``failed``
    are terminal.

    A completed job may still be published to YouTube afterwards. That only
    writes the ``youtube_*`` columns and never changes ``stage``.

PendingTask:
    While a stage's external call is outstanding the job carries
    ``pending_task_id``, ``poll_attempt`` and ``pending_since``. The stage of
    the PendingTask is the job's current stage. The columns are cleared in
    the same conditional update that advances ``stage``.
"""

import enum
import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, DateTime, Enum, Float, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, validates

from songreel.exceptions import InvalidStateTransitionError


def utcnow() -> datetime:
    """Get current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


class JobStage(enum.Enum):
    """Pipeline stages in canonical order, plus the terminal ``failed`` stage."""

    PENDING = "pending"
    ANALYZING = "analyzing"
    GENERATING_MUSIC = "generating_music"
    SELECTING_SONG = "selecting_song"
    GENERATING_IMAGE = "generating_image"
    PROCESSING_VIDEO = "processing_video"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STAGES


STAGE_ORDER: list[JobStage] = [
    JobStage.PENDING,
    JobStage.ANALYZING,
    JobStage.GENERATING_MUSIC,
    JobStage.SELECTING_SONG,
    JobStage.GENERATING_IMAGE,
    JobStage.PROCESSING_VIDEO,
    JobStage.UPLOADING,
    JobStage.COMPLETED,
]

TERMINAL_STAGES = frozenset({JobStage.COMPLETED, JobStage.FAILED})

# Stages whose handler submits to a provider and completes via webhook or poll
ASYNC_STAGES = frozenset({JobStage.GENERATING_MUSIC, JobStage.GENERATING_IMAGE})


def next_stage(stage: JobStage) -> JobStage:
    """Return the stage that follows ``stage`` on the happy path.

    Raises:
        ValueError: If ``stage`` is terminal.
    """
    if stage.is_terminal:
        raise ValueError(f"Terminal stage has no successor: {stage.value}")
    return STAGE_ORDER[STAGE_ORDER.index(stage) + 1]


def previous_stage(stage: JobStage) -> JobStage | None:
    """Return the stage preceding ``stage`` (None for pending and failed)."""
    if stage is JobStage.FAILED or stage is JobStage.PENDING:
        return None
    return STAGE_ORDER[STAGE_ORDER.index(stage) - 1]


def is_past(current: JobStage, stage: JobStage) -> bool:
    """True if a job at ``current`` has already moved beyond ``stage``."""
    if current is JobStage.FAILED:
        return True
    return STAGE_ORDER.index(current) > STAGE_ORDER.index(stage)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class Job(Base):
    """One concept-to-video pipeline run.

    Attributes:
        id: UUID primary key.
        user_id: Owner reference (opaque, nullable).
        concept: User-submitted concept (immutable).
        llm_model: Model used for the LLM stages (immutable).
        stage: Current pipeline stage (indexed).
        song_prompt: Analyzing output ``{prompt, style, title, instrumental, model}``.
        music_task_id: Suno task ID recorded when music generation was submitted.
        generated_songs: Candidate songs ``[{id, audio_url, title, duration}]``.
        selected_song_id / audio_url: Selecting-song output.
        image_prompt: Image prompt ``{prompt, aspect_ratio, resolution}``.
        image_task_id: NanoBanana task ID recorded at submission.
        image_url: Generating-image output.
        video_path / video_duration: Processing-video output (assembled artifact).
        video_url: Uploading output (published artifact URL).
        youtube_video_id / youtube_url: Optional post-completion YouTube upload.
        youtube_error: Last YouTube upload failure (the job stays completed).
        pending_task_id / poll_attempt / pending_since: Outstanding PendingTask.
        error_detail: ``{stage, kind, message}``; set only when stage is failed.
        created_at / updated_at: UTC bookkeeping timestamps.
    """

    __tablename__ = "jobs"

    # Each non-terminal stage may advance one step, fail, or stay put for a
    # field-only update (e.g., registering a PendingTask)
    VALID_TRANSITIONS = {
        stage: [stage, STAGE_ORDER[index + 1], JobStage.FAILED]
        for index, stage in enumerate(STAGE_ORDER[:-1])
    }
    VALID_TRANSITIONS[JobStage.COMPLETED] = []
    VALID_TRANSITIONS[JobStage.FAILED] = []

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    user_id: Mapped[str | None] = mapped_column(
        String(100),
        index=True,
    )

    concept: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )

    llm_model: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    # values_callable stores enum.value (lowercase) not enum.name
    stage: Mapped[JobStage] = mapped_column(
        Enum(
            JobStage,
            native_enum=True,
            name="jobstage",
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        default=JobStage.PENDING,
        index=True,
    )

    # Stage outputs (append-only)
    song_prompt: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    music_task_id: Mapped[str | None] = mapped_column(String(256))
    generated_songs: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON)
    selected_song_id: Mapped[str | None] = mapped_column(String(256))
    audio_url: Mapped[str | None] = mapped_column(Text)
    image_prompt: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    image_task_id: Mapped[str | None] = mapped_column(String(256))
    image_url: Mapped[str | None] = mapped_column(Text)
    video_path: Mapped[str | None] = mapped_column(Text)
    video_duration: Mapped[float | None] = mapped_column(Float)
    video_url: Mapped[str | None] = mapped_column(Text)

    # Post-completion publication, written only by JobStore.record_publication
    youtube_video_id: Mapped[str | None] = mapped_column(String(64))
    youtube_url: Mapped[str | None] = mapped_column(Text)
    youtube_error: Mapped[str | None] = mapped_column(Text)

    # PendingTask bookkeeping
    pending_task_id: Mapped[str | None] = mapped_column(
        String(256),
        index=True,
    )
    poll_attempt: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    pending_since: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
    )

    error_detail: Mapped[dict[str, Any] | None] = mapped_column(JSON)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    __table_args__ = (
        Index("ix_jobs_created_at", "created_at"),
        Index("ix_jobs_stage_updated_at", "stage", "updated_at"),
    )

    @classmethod
    def check_transition(cls, from_stage: JobStage, to_stage: JobStage | None) -> None:
        """Raise InvalidStateTransitionError unless ``from_stage → to_stage`` is allowed.

        ``to_stage=None`` means a field-only update, which is still refused
        for terminal stages.
        """
        allowed = cls.VALID_TRANSITIONS.get(from_stage, [])
        target = from_stage if to_stage is None else to_stage
        if target not in allowed:
            to_value = to_stage.value if to_stage is not None else "(fields only)"
            raise InvalidStateTransitionError(
                f"Invalid transition: {from_stage.value} → {to_value}",
                from_stage=from_stage,
                to_stage=to_stage,
            )

    @validates("stage")
    def validate_stage_change(self, key: str, value: JobStage) -> JobStage:
        """Validate ORM-level stage assignment against VALID_TRANSITIONS.

        Skipped on initial creation (stage is None). The Job Store does not
        go through here; it calls check_transition before its conditional
        UPDATE.
        """
        if self.stage is None:
            return value
        if value is self.stage:
            self.check_transition(self.stage, None)
            return value
        self.check_transition(self.stage, value)
        return value

    @property
    def has_pending_task(self) -> bool:
        return self.pending_task_id is not None

    def __repr__(self) -> str:
        return f"<Job(id={self.id!s:.8}, stage={self.stage.value!r}, pending={self.pending_task_id!r})>"
