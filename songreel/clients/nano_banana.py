"""NanoBanana image generation client (KIE jobs API).

Usage:
    client = NanoBananaClient(api_key=get_kie_api_key(), base_url=get_kie_base_url())
    task_id = await client.submit({"prompt": "...", "aspect_ratio": "16:9"})
    status = await client.fetch_status(task_id)  # result: list of image URLs
"""

import json
from typing import Any

from songreel.clients.base import KieClient, ProviderStatus

MODEL = "google/nano-banana"
DEFAULT_ASPECT_RATIO = "16:9"
DEFAULT_RESOLUTION = "1K"

STATE_SUCCESS = "success"
STATE_FAIL = "fail"


def parse_result_urls(result_json: str | None) -> list[str]:
    """Extract ``resultUrls`` from NanoBanana's stringified ``resultJson``.

    Returns:
        The URL list, empty when resultJson is missing or malformed.
    """
    if not result_json:
        return []
    try:
        parsed = json.loads(result_json)
    except (TypeError, ValueError):
        return []
    if not isinstance(parsed, dict):
        return []
    return [url for url in parsed.get("resultUrls") or [] if isinstance(url, str)]


def status_from_record(data: dict[str, Any]) -> ProviderStatus:
    """Map a NanoBanana task record (poll or callback ``data``) to ProviderStatus."""
    state = str(data.get("state") or "").lower()
    if state == STATE_SUCCESS:
        return ProviderStatus.succeeded(parse_result_urls(data.get("resultJson")))
    if state == STATE_FAIL:
        reason = data.get("failMsg") or data.get("failCode") or "image generation failed"
        return ProviderStatus.failed(str(reason))
    return ProviderStatus.pending()


class NanoBananaClient(KieClient):
    """Client for google/nano-banana image generation hosted on KIE."""

    provider_name = "nano_banana"

    async def submit(self, request: dict[str, Any], callback_url: str | None = None) -> str:
        """Create an image generation task.

        Args:
            request: Image prompt ``{prompt, aspect_ratio, resolution}``.
            callback_url: Webhook URL, or None to rely on polling.
        """
        body: dict[str, Any] = {
            "model": MODEL,
            "input": {
                "prompt": request.get("prompt", ""),
                "aspect_ratio": request.get("aspect_ratio") or DEFAULT_ASPECT_RATIO,
                "resolution": request.get("resolution") or DEFAULT_RESOLUTION,
                "output_format": "png",
            },
        }
        if callback_url:
            body["callBackUrl"] = callback_url

        data = self._unwrap(await self._request_json("POST", "/api/v1/jobs/createTask", json=body))
        return self._task_id(data)

    async def fetch_status(self, provider_task_id: str) -> ProviderStatus:
        body = await self._request_json(
            "GET", "/api/v1/jobs/recordInfo", params={"taskId": provider_task_id}
        )
        return status_from_record(self._unwrap(body))
