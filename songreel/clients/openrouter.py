"""OpenRouter chat completion client.

The analyzing, selecting-song and generating-image stages use the LLM
synchronously: one request, one answer, no task ID.

Usage:
    client = OpenRouterClient(api_key=get_openrouter_api_key())
    text = await client.chat("anthropic/claude-3.5-sonnet", system_prompt, user_prompt)
"""

from typing import Any

from songreel.clients.base import ProviderClient
from songreel.exceptions import ProviderRejection


class OpenRouterClient(ProviderClient):
    """Client for OpenRouter ``/chat/completions``."""

    provider_name = "openrouter"

    def __init__(self, api_key: str, base_url: str = "https://openrouter.ai/api/v1", **kwargs: Any):
        # LLM answers can take a while for long lyrics
        kwargs.setdefault("timeout", 120.0)
        super().__init__(base_url=base_url, api_key=api_key, **kwargs)

    async def chat(
        self,
        model: str,
        system_prompt: str,
        user_prompt: str,
        temperature: float | None = None,
    ) -> str:
        """Send a system + user prompt and return the assistant message content.

        Raises:
            ProviderRejection: API error object or no choices in the response.
            TransportError: Network failure after retries.
        """
        body: dict[str, Any] = {
            "model": model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        }
        if temperature is not None:
            body["temperature"] = temperature

        response = await self._request_json("POST", "/chat/completions", json=body)

        error = response.get("error") if isinstance(response, dict) else None
        if error:
            raise ProviderRejection(
                f"openrouter error: {error.get('message', error)}", provider=self.provider_name
            )

        choices = response.get("choices") if isinstance(response, dict) else None
        if not choices:
            raise ProviderRejection("openrouter returned no choices", provider=self.provider_name)

        content = (choices[0].get("message") or {}).get("content") or ""
        if not content.strip():
            raise ProviderRejection("openrouter returned an empty message", provider=self.provider_name)
        return content
