"""002 add publication columns

Revision ID: 002_add_publication
Revises: 001_create_jobs
Create Date: 2026-10-18

Adds the post-completion YouTube publication columns and the index the
stalled job sweeper scans (non-terminal jobs by last update).
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "002_add_publication"
down_revision: str | None = "001_create_jobs"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Add youtube_* columns and the stage/updated_at index."""
    op.add_column("jobs", sa.Column("youtube_video_id", sa.String(64), nullable=True))
    op.add_column("jobs", sa.Column("youtube_url", sa.Text(), nullable=True))
    op.add_column("jobs", sa.Column("youtube_error", sa.Text(), nullable=True))

    op.create_index("ix_jobs_stage_updated_at", "jobs", ["stage", "updated_at"])


def downgrade() -> None:
    """Drop the index and the youtube_* columns."""
    op.drop_index("ix_jobs_stage_updated_at", table_name="jobs")
    op.drop_column("jobs", "youtube_error")
    op.drop_column("jobs", "youtube_url")
    op.drop_column("jobs", "youtube_video_id")
