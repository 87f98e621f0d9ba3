"""Songreel: concept-to-music-video pipeline orchestrator.

This package contains the FastAPI web service (job submission, provider
webhooks) and the PgQueuer worker that drives each job through its stages:
LLM song concept → music generation → song selection → image generation →
video assembly → upload. Durable job state lives in PostgreSQL.
"""

from songreel.database import async_session_factory, get_session
from songreel.models import Base, Job, JobStage

__all__ = [
    "Base",
    "Job",
    "JobStage",
    "async_session_factory",
    "get_session",
]
