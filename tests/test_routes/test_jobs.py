"""Tests for job submission and status routes."""

import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from songreel.exceptions import JobNotFoundError
from songreel.main import app
from songreel.models import Job, JobStage
from songreel.queue import advance_token, publish_token
from tests.support.fakes import FakeTaskQueue


def make_job(**overrides) -> Job:
    now = datetime(2026, 10, 18, 9, 30, tzinfo=timezone.utc)
    values = {
        "id": uuid.uuid4(),
        "concept": "A lo-fi song about rainy Sunday mornings",
        "llm_model": "anthropic/claude-3.5-sonnet",
        "stage": JobStage.PENDING,
        "poll_attempt": 0,
        "created_at": now,
        "updated_at": now,
    }
    values.update(overrides)
    return Job(**values)


@pytest.fixture
def store():
    mock_store = AsyncMock()
    app.state.store = mock_store
    yield mock_store
    app.state.store = None


@pytest.fixture
def task_queue():
    queue = FakeTaskQueue()
    app.state.task_queue = queue
    yield queue
    app.state.task_queue = None


@pytest.fixture
def client(store, task_queue):
    return TestClient(app)


def test_submit_job_returns_201_and_enqueues(client, store, task_queue):
    job = make_job(user_id="u-1")
    store.create.return_value = job

    response = client.post(
        "/api/v1/jobs",
        json={"concept": job.concept, "llm_model": "anthropic/claude-3.5-sonnet", "user_id": "u-1"},
    )

    assert response.status_code == 201
    body = response.json()
    assert body["id"] == str(job.id)
    assert body["stage"] == "pending"
    assert body["video_url"] is None
    store.create.assert_awaited_once_with(
        concept=job.concept, llm_model="anthropic/claude-3.5-sonnet", user_id="u-1"
    )
    assert task_queue.keys == [advance_token(job.id, JobStage.ANALYZING)]


@pytest.mark.parametrize("body", [{}, {"concept": ""}, {"concept": "x" * 5001}])
def test_submit_job_validates_concept(client, body):
    response = client.post("/api/v1/jobs", json=body)

    assert response.status_code == 422


def test_get_job_returns_outputs(client, store):
    job = make_job(
        stage=JobStage.COMPLETED,
        selected_song_id="song-b",
        audio_url="https://cdn1.suno.ai/song-b.mp3",
        video_duration=182.5,
        video_url="https://videos.r2.dev/videos/x.mp4",
    )
    store.load.return_value = job

    response = client.get(f"/api/v1/jobs/{job.id}")

    assert response.status_code == 200
    body = response.json()
    assert body["stage"] == "completed"
    assert body["video_url"] == "https://videos.r2.dev/videos/x.mp4"
    assert body["video_duration"] == 182.5


def test_get_failed_job_includes_error_detail(client, store):
    job = make_job(
        stage=JobStage.FAILED,
        error_detail={"stage": "generating_music", "kind": "TransportError", "message": "suno returned 503"},
    )
    store.load.return_value = job

    body = client.get(f"/api/v1/jobs/{job.id}").json()

    assert body["error_detail"] == {
        "stage": "generating_music",
        "kind": "TransportError",
        "message": "suno returned 503",
    }


def test_get_unknown_job_returns_404(client, store):
    job_id = uuid.uuid4()
    store.load.side_effect = JobNotFoundError(job_id)

    response = client.get(f"/api/v1/jobs/{job_id}")

    assert response.status_code == 404


def test_get_job_invalid_id_returns_422(client):
    assert client.get("/api/v1/jobs/not-a-uuid").status_code == 422


def test_routes_return_503_without_pipeline():
    app.state.store = None
    app.state.task_queue = None

    response = TestClient(app).post("/api/v1/jobs", json={"concept": "x"})

    assert response.status_code == 503


@pytest.fixture
def youtube_enabled(monkeypatch):
    monkeypatch.setenv("YOUTUBE_CLIENT_ID", "client.apps.googleusercontent.com")
    monkeypatch.setenv("YOUTUBE_CLIENT_SECRET", "secret")
    monkeypatch.setenv("YOUTUBE_REFRESH_TOKEN", "1//refresh")


def test_publish_completed_job_returns_202_and_enqueues(client, store, task_queue, youtube_enabled):
    job = make_job(stage=JobStage.COMPLETED, video_url="https://videos.r2.dev/videos/x.mp4")
    store.load.return_value = job

    response = client.post(f"/api/v1/jobs/{job.id}/publish")

    assert response.status_code == 202
    assert response.json()["youtube_url"] is None
    assert task_queue.keys == [publish_token(job.id)]
    assert task_queue.accepted[0].payload.publish is True


@pytest.mark.parametrize(
    "overrides",
    [
        {"stage": JobStage.UPLOADING},
        {"stage": JobStage.FAILED},
        {
            "stage": JobStage.COMPLETED,
            "youtube_video_id": "dQw4w9WgXcQ",
            "youtube_url": "https://www.youtube.com/watch?v=dQw4w9WgXcQ",
        },
    ],
)
def test_publish_conflicts_return_409(client, store, task_queue, youtube_enabled, overrides):
    store.load.return_value = make_job(**overrides)

    response = client.post(f"/api/v1/jobs/{uuid.uuid4()}/publish")

    assert response.status_code == 409
    assert task_queue.accepted == []


def test_publish_unknown_job_returns_404(client, store, youtube_enabled):
    store.load.side_effect = JobNotFoundError("x")

    assert client.post(f"/api/v1/jobs/{uuid.uuid4()}/publish").status_code == 404


def test_publish_without_youtube_credentials_returns_503(client, store, task_queue, monkeypatch):
    monkeypatch.delenv("YOUTUBE_REFRESH_TOKEN", raising=False)

    response = client.post(f"/api/v1/jobs/{uuid.uuid4()}/publish")

    assert response.status_code == 503
    store.load.assert_not_awaited()
