"""In-memory doubles for the Task Queue and the Provider Gateway.

FakeTaskQueue models PgQueuer's deduplication: a dedup key is held while its
item is queued or being processed (picked) and released once processing ends.
Delays are recorded but not honoured; items are delivered FIFO.
"""

import json
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any

from songreel.clients.base import ProviderStatus
from songreel.clients.youtube import PublishedVideo
from songreel.queue import AdvancePayload
from songreel.services.agents import (
    IMAGE_CONCEPT_PROMPT,
    SONG_CONCEPT_PROMPT,
    SONG_SELECTOR_PROMPT,
)


@dataclass
class QueuedItem:
    dedup_key: str
    payload: AdvancePayload
    delay: timedelta | None = None


class FakeTaskQueue:
    """TaskQueue double recording every enqueue attempt.

    ``errors`` are raised by the next enqueue calls, in order, before anything
    is queued (a queue database that is briefly unreachable).
    """

    def __init__(self, errors: list[Exception] | None = None):
        self.queued: list[QueuedItem] = []
        self.accepted: list[QueuedItem] = []
        self.collapsed: list[str] = []
        self.errors = list(errors or [])
        self._held: set[str] = set()

    async def enqueue(
        self,
        dedup_key: str,
        payload: AdvancePayload,
        delay: timedelta | None = None,
    ) -> bool:
        if self.errors:
            raise self.errors.pop(0)
        if dedup_key in self._held:
            self.collapsed.append(dedup_key)
            return False
        item = QueuedItem(dedup_key, payload, delay)
        self._held.add(dedup_key)
        self.queued.append(item)
        self.accepted.append(item)
        return True

    @property
    def keys(self) -> list[str]:
        return [item.dedup_key for item in self.accepted]

    def pop(self) -> QueuedItem:
        return self.queued.pop(0)

    def release(self, item: QueuedItem) -> None:
        self._held.discard(item.dedup_key)

    async def run_next(self, orchestrator: Any) -> QueuedItem:
        """Deliver the oldest item; its key stays held until advance returns."""
        item = self.pop()
        try:
            await orchestrator.advance(item.payload)
        finally:
            self.release(item)
        return item

    async def drain(self, orchestrator: Any, max_items: int = 200) -> list[QueuedItem]:
        delivered = []
        while self.queued:
            if len(delivered) >= max_items:
                raise AssertionError("queue did not drain; pipeline is looping")
            delivered.append(await self.run_next(orchestrator))
        return delivered


class FakeProvider:
    """Scripted AsyncProvider.

    ``submit_results`` and ``statuses`` are consumed in order; an Exception
    entry is raised instead of returned. Once ``statuses`` runs out the last
    entry repeats.
    """

    def __init__(
        self,
        provider_name: str,
        statuses: list[ProviderStatus | Exception] | None = None,
        submit_results: list[str | Exception] | None = None,
    ):
        self.provider_name = provider_name
        self.statuses = list(statuses or [ProviderStatus.pending()])
        self.submit_results = list(submit_results or [])
        self.submissions: list[tuple[dict[str, Any], str | None]] = []
        self.status_calls: list[str] = []
        self.closed = False

    async def submit(self, request: dict[str, Any], callback_url: str | None = None) -> str:
        self.submissions.append((request, callback_url))
        if self.submit_results:
            result = self.submit_results.pop(0)
            if isinstance(result, Exception):
                raise result
            return result
        return f"{self.provider_name}-task-{len(self.submissions)}"

    async def fetch_status(self, provider_task_id: str) -> ProviderStatus:
        self.status_calls.append(provider_task_id)
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        if isinstance(status, Exception):
            raise status
        return status

    async def close(self) -> None:
        self.closed = True


SONG_PROMPT_REPLY = {
    "prompt": "[Verse]\nRain on the window\n[Chorus]\nSunday slow",
    "style": "lo-fi hip hop, mellow",
    "title": "Sunday Rain",
    "instrumental": False,
}

IMAGE_PROMPT_REPLY = {
    "prompt": "Rainy window at dawn, warm lamp light, muted blues",
    "aspectRatio": "16:9",
    "resolution": "1K",
}


class FakeChatClient:
    """LLM double answering each agent by its system prompt."""

    def __init__(self, selected_song_id: str = "song-b", errors: list[Exception] | None = None):
        self.selected_song_id = selected_song_id
        self.errors = list(errors or [])
        self.calls: list[tuple[str, str, str]] = []
        self.replies: dict[str, str] = {}

    async def chat(self, model: str, system_prompt: str, user_prompt: str) -> str:
        self.calls.append((model, system_prompt, user_prompt))
        if self.errors:
            raise self.errors.pop(0)
        if system_prompt.startswith(SONG_CONCEPT_PROMPT):
            return self.replies.get("song", json.dumps(SONG_PROMPT_REPLY))
        if system_prompt.startswith(SONG_SELECTOR_PROMPT):
            return self.replies.get(
                "selector",
                json.dumps({"selectedSongId": self.selected_song_id, "reasoning": "better fit"}),
            )
        if system_prompt.startswith(IMAGE_CONCEPT_PROMPT):
            return self.replies.get("image", "```json\n" + json.dumps(IMAGE_PROMPT_REPLY) + "\n```")
        raise AssertionError(f"unexpected system prompt: {system_prompt[:40]}")

    async def close(self) -> None:
        pass


class FakeAssembler:
    """MediaAssembler double; no downloads, no ffmpeg."""

    def __init__(self, workspace_dir: Path, duration: float = 182.5, errors: list[Exception] | None = None):
        self.workspace_dir = workspace_dir
        self.duration = duration
        self.errors = list(errors or [])
        self.assembled: list[tuple[str, str, Any]] = []
        self.cleaned: list[Any] = []

    async def assemble(self, audio_url: str, image_url: str, job_id: Any) -> tuple[Path, float]:
        self.assembled.append((audio_url, image_url, job_id))
        if self.errors:
            raise self.errors.pop(0)
        path = self.workspace_dir / str(job_id) / "output.mp4"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"\x00\x00\x00\x18ftypmp42")
        return path, self.duration

    def cleanup(self, job_id: Any) -> None:
        self.cleaned.append(job_id)

    async def close(self) -> None:
        pass


@dataclass
class FakePublisher:
    base_url: str = "https://videos.r2.dev"
    published: list[tuple[Path, str]] = field(default_factory=list)
    errors: list[Exception] = field(default_factory=list)

    async def publish(self, local_path: Path, key: str) -> str:
        self.published.append((local_path, key))
        if self.errors:
            raise self.errors.pop(0)
        return f"{self.base_url}/{key}"


@dataclass
class FakeVideoPublisher:
    """VideoPublisher double; ``errors`` are raised by the next publish calls."""

    video_id: str = "dQw4w9WgXcQ"
    uploads: list[tuple[str, str, str]] = field(default_factory=list)
    errors: list[Exception] = field(default_factory=list)
    closed: bool = False

    async def publish(self, video_url: str, title: str, description: str) -> PublishedVideo:
        self.uploads.append((video_url, title, description))
        if self.errors:
            raise self.errors.pop(0)
        return PublishedVideo(
            video_id=self.video_id, url=f"https://www.youtube.com/watch?v={self.video_id}"
        )

    async def close(self) -> None:
        self.closed = True


def suno_songs(*ids: str) -> list[dict[str, Any]]:
    """Normalized Suno tracks as returned by SunoClient.fetch_status."""
    return [
        {
            "id": song_id,
            "audio_url": f"https://cdn1.suno.ai/{song_id}.mp3",
            "title": f"Sunday Rain ({song_id})",
            "duration": 150.0 + index * 30,
        }
        for index, song_id in enumerate(ids)
    ]


IMAGE_URL = "https://tempfile.aiquickdraw.com/images/cover.png"
