"""Suno music generation client (KIE API).

Submits a song prompt and reports generated tracks. Generation usually takes
1-3 minutes and produces two candidate songs. Completion arrives either as a
callback to ``callBackUrl`` or through ``record-info`` polling.

Usage:
    client = SunoClient(api_key=get_kie_api_key(), base_url=get_kie_base_url())
    task_id = await client.submit(song_prompt, callback_url=None)
    status = await client.fetch_status(task_id)
    await client.close()
"""

from typing import Any

from songreel.clients.base import KieClient, ProviderStatus

DEFAULT_MODEL = "V5"

STATUS_PENDING = "PENDING"
STATUS_TEXT_SUCCESS = "TEXT_SUCCESS"
STATUS_FIRST_SUCCESS = "FIRST_SUCCESS"
STATUS_SUCCESS = "SUCCESS"

PENDING_STATUSES = frozenset({STATUS_PENDING, STATUS_TEXT_SUCCESS, STATUS_FIRST_SUCCESS})
FAILED_STATUSES = frozenset(
    {
        "CREATE_TASK_FAILED",
        "GENERATE_AUDIO_FAILED",
        "CALLBACK_EXCEPTION",
        "SENSITIVE_WORD_ERROR",
    }
)


def normalize_song(item: dict[str, Any]) -> dict[str, Any]:
    """Convert a Suno track (record-info or callback shape) to ``{id, audio_url, title, duration}``."""
    return {
        "id": str(item.get("id") or ""),
        "audio_url": item.get("audio_url") or item.get("audioUrl") or "",
        "title": item.get("title") or "",
        "duration": float(item.get("duration") or 0.0),
    }


class SunoClient(KieClient):
    """Client for Suno song generation hosted on KIE."""

    provider_name = "suno"

    async def submit(self, request: dict[str, Any], callback_url: str | None = None) -> str:
        """Start song generation.

        Args:
            request: Song prompt ``{prompt, style, title, instrumental, model}``.
            callback_url: Webhook URL, or None to rely on polling.

        Returns:
            Suno task ID.
        """
        body: dict[str, Any] = {
            "prompt": request.get("prompt", ""),
            "customMode": True,
            "instrumental": bool(request.get("instrumental", False)),
            "model": request.get("model") or DEFAULT_MODEL,
        }
        if request.get("style"):
            body["style"] = request["style"]
        if request.get("title"):
            body["title"] = request["title"]
        if callback_url:
            body["callBackUrl"] = callback_url

        data = self._unwrap(await self._request_json("POST", "/api/v1/generate", json=body))
        return self._task_id(data)

    async def fetch_status(self, provider_task_id: str) -> ProviderStatus:
        """Query generation status.

        Returns:
            succeeded with a list of normalized songs, pending, or failed.
        """
        body = await self._request_json(
            "GET", "/api/v1/generate/record-info", params={"taskId": provider_task_id}
        )
        data = self._unwrap(body)
        status = str(data.get("status") or STATUS_PENDING).upper()

        if status == STATUS_SUCCESS:
            response = data.get("response") or {}
            songs = [normalize_song(item) for item in response.get("sunoData") or []]
            return ProviderStatus.succeeded(songs)

        if status in FAILED_STATUSES:
            return ProviderStatus.failed(data.get("errorMessage") or status)

        return ProviderStatus.pending()
