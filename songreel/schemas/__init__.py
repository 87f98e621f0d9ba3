"""Pydantic schemas for validation and serialization."""

from songreel.schemas.job import ErrorDetail, JobCreate, JobResponse
from songreel.schemas.pipeline import GeneratedSong, ImagePrompt, SongPrompt, SongSelection
from songreel.schemas.webhook import NanoCallbackPayload, SunoCallbackPayload

__all__ = [
    "ErrorDetail",
    "GeneratedSong",
    "ImagePrompt",
    "JobCreate",
    "JobResponse",
    "NanoCallbackPayload",
    "SongPrompt",
    "SongSelection",
    "SunoCallbackPayload",
]
