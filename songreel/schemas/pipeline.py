"""Pydantic models for stage outputs stored on the Job.

These validate LLM replies before they are persisted, and define the JSON
shape of ``song_prompt``, ``generated_songs`` and ``image_prompt``.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

SUNO_PROMPT_MAX_LENGTH = 3000


class SongPrompt(BaseModel):
    """Analyzing output: what to ask the music provider for."""

    model_config = ConfigDict(populate_by_name=True)

    prompt: str = Field(..., min_length=1)
    style: str = ""
    title: str = ""
    instrumental: bool = False
    model: str = "V5"

    @field_validator("prompt")
    @classmethod
    def truncate_prompt(cls, v: str) -> str:
        return v[:SUNO_PROMPT_MAX_LENGTH]


class GeneratedSong(BaseModel):
    """One candidate track returned by the music provider."""

    id: str = Field(..., min_length=1)
    audio_url: str
    title: str = ""
    duration: float = 0.0


class SongSelection(BaseModel):
    """Song selector reply."""

    model_config = ConfigDict(populate_by_name=True)

    selected_song_id: str = Field(..., alias="selectedSongId", min_length=1)
    reasoning: str = ""


class ImagePrompt(BaseModel):
    """Image concept reply persisted as ``image_prompt``."""

    model_config = ConfigDict(populate_by_name=True)

    prompt: str = Field(..., min_length=1)
    aspect_ratio: Literal["16:9", "9:16", "1:1", "4:3", "3:4"] = Field(
        default="16:9", alias="aspectRatio"
    )
    resolution: str = "1K"
