"""Tests for job and pipeline schemas."""

import uuid
from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from songreel.models import Job, JobStage
from songreel.schemas import JobCreate, JobResponse
from songreel.schemas.pipeline import ImagePrompt, SongPrompt, SongSelection


def test_job_create_limits():
    assert JobCreate(concept="x").llm_model is None

    with pytest.raises(ValidationError):
        JobCreate(concept="")
    with pytest.raises(ValidationError):
        JobCreate(concept="x", llm_model="m" * 101)


def test_job_response_from_model():
    now = datetime(2026, 10, 18, tzinfo=timezone.utc)
    job = Job(
        id=uuid.uuid4(),
        concept="c",
        llm_model="m",
        stage=JobStage.GENERATING_MUSIC,
        pending_task_id="suno-task-1",
        poll_attempt=3,
        created_at=now,
        updated_at=now,
    )

    response = JobResponse.model_validate(job)

    assert response.stage is JobStage.GENERATING_MUSIC
    assert response.model_dump(mode="json")["stage"] == "generating_music"
    assert response.poll_attempt == 3
    assert response.error_detail is None


def test_song_selection_alias():
    assert SongSelection.model_validate({"selectedSongId": "b"}).selected_song_id == "b"
    assert SongSelection(selected_song_id="b").reasoning == ""


def test_image_prompt_alias_and_defaults():
    prompt = ImagePrompt.model_validate({"prompt": "rain"})

    assert prompt.aspect_ratio == "16:9"
    assert prompt.resolution == "1K"
    assert ImagePrompt.model_validate({"prompt": "rain", "aspectRatio": "9:16"}).aspect_ratio == "9:16"


def test_song_prompt_requires_prompt():
    with pytest.raises(ValidationError):
        SongPrompt.model_validate({"style": "jazz"})
