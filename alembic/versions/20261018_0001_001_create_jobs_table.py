"""001 create jobs table

Revision ID: 001_create_jobs
Revises:
Create Date: 2026-10-18

Creates the jobstage enum and the jobs table: one row per concept-to-video
pipeline run, holding its stage, append-only stage outputs, the outstanding
PendingTask and the failure detail.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_create_jobs"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

JOB_STAGES = (
    "pending",
    "analyzing",
    "generating_music",
    "selecting_song",
    "generating_image",
    "processing_video",
    "uploading",
    "completed",
    "failed",
)


def upgrade() -> None:
    """Create jobstage enum and jobs table with indexes."""
    jobstage = postgresql.ENUM(*JOB_STAGES, name="jobstage", create_type=False)
    jobstage.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "jobs",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", sa.String(100), nullable=True),
        sa.Column("concept", sa.Text(), nullable=False),
        sa.Column("llm_model", sa.String(100), nullable=False),
        sa.Column("stage", jobstage, nullable=False, server_default="pending"),
        # Stage outputs
        sa.Column("song_prompt", sa.JSON(), nullable=True),
        sa.Column("music_task_id", sa.String(256), nullable=True),
        sa.Column("generated_songs", sa.JSON(), nullable=True),
        sa.Column("selected_song_id", sa.String(256), nullable=True),
        sa.Column("audio_url", sa.Text(), nullable=True),
        sa.Column("image_prompt", sa.JSON(), nullable=True),
        sa.Column("image_task_id", sa.String(256), nullable=True),
        sa.Column("image_url", sa.Text(), nullable=True),
        sa.Column("video_path", sa.Text(), nullable=True),
        sa.Column("video_duration", sa.Float(), nullable=True),
        sa.Column("video_url", sa.Text(), nullable=True),
        # PendingTask
        sa.Column("pending_task_id", sa.String(256), nullable=True),
        sa.Column("poll_attempt", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("pending_since", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_detail", sa.JSON(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_index("ix_jobs_stage", "jobs", ["stage"])
    op.create_index("ix_jobs_user_id", "jobs", ["user_id"])
    op.create_index("ix_jobs_created_at", "jobs", ["created_at"])

    # Webhook/poll resolution looks jobs up by outstanding provider task
    op.create_index(
        "ix_jobs_pending_task_id",
        "jobs",
        ["pending_task_id"],
        postgresql_where=sa.text("pending_task_id IS NOT NULL"),
    )


def downgrade() -> None:
    """Drop jobs table and jobstage enum."""
    op.drop_index("ix_jobs_pending_task_id", table_name="jobs")
    op.drop_index("ix_jobs_created_at", table_name="jobs")
    op.drop_index("ix_jobs_user_id", table_name="jobs")
    op.drop_index("ix_jobs_stage", table_name="jobs")
    op.drop_table("jobs")
    postgresql.ENUM(name="jobstage").drop(op.get_bind(), checkfirst=True)
