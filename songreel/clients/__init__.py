"""Provider Gateway clients (LLM, music, image, object storage)."""

from songreel.clients.base import AsyncProvider, ProviderState, ProviderStatus

__all__ = ["AsyncProvider", "ProviderState", "ProviderStatus"]
