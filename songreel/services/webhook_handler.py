"""Provider webhook handler service.

This module provides webhook ingress functionality:
- Shared-secret token verification (constant-time, fail closed)
- Normalization of Suno / NanoBanana callbacks into a WebhookEvent
- Background processing through the Completion Listener

Architecture:
- Webhook endpoint verifies and parses, then returns immediately
- Background task hands the event to CompletionListener.handle_webhook
- Duplicate callbacks are harmless: resolution is a conditional update
  guarded on the job's stage and outstanding PendingTask ID
"""

import hmac
import uuid

import structlog

from songreel.clients.base import ProviderStatus
from songreel.clients.nano_banana import status_from_record
from songreel.clients.suno import normalize_song
from songreel.config import get_webhook_secret, is_development
from songreel.exceptions import InvalidWebhook
from songreel.schemas.webhook import NanoCallbackPayload, SunoCallbackPayload
from songreel.services.completion import CompletionListener, WebhookEvent

log = structlog.get_logger()


class WebhookAuthResult:
    """Outcome of token verification, mapped to HTTP status by the route."""

    OK = "ok"
    UNAUTHORIZED = "unauthorized"
    NOT_CONFIGURED = "not_configured"


def verify_webhook_token(token: str | None, secret: str | None = None) -> str:
    """Verify the webhook shared secret.

    Args:
        token: Token from the URL path or X-Webhook-Token header
        secret: Expected secret (default: WEBHOOK_SECRET)

    Returns:
        WebhookAuthResult.OK, UNAUTHORIZED or NOT_CONFIGURED

    Security:
        Uses constant-time comparison to prevent timing attacks. Without a
        configured secret only the development environment accepts callbacks.
    """
    if secret is None:
        secret = get_webhook_secret()

    if not secret:
        if is_development():
            log.warning("webhook_secret_not_configured_dev_passthrough")
            return WebhookAuthResult.OK
        log.error("webhook_secret_not_configured")
        return WebhookAuthResult.NOT_CONFIGURED

    if not hmac.compare_digest((token or "").encode(), secret.encode()):
        log.warning(
            "webhook_token_verification_failed",
            token_provided=token[:4] + "..." if token else None,
        )
        return WebhookAuthResult.UNAUTHORIZED

    return WebhookAuthResult.OK


def suno_event(job_id: uuid.UUID, payload: SunoCallbackPayload) -> WebhookEvent:
    """Normalize a final Suno callback.

    Raises:
        InvalidWebhook: If called for a partial (text/first) callback.
    """
    if payload.is_partial:
        raise InvalidWebhook(f"partial suno callback: {payload.data.callback_type}")

    data = payload.data
    if payload.is_failure:
        status = ProviderStatus.failed(data.error_message or payload.msg or f"code {payload.code}")
    else:
        songs = [normalize_song(track.model_dump()) for track in data.data or []]
        status = ProviderStatus.succeeded(songs)

    return WebhookEvent(provider="suno", job_id=job_id, provider_task_id=data.task_id, status=status)


def nano_event(job_id: uuid.UUID, payload: NanoCallbackPayload) -> WebhookEvent:
    """Normalize a NanoBanana callback. A non-200 code is a failure."""
    data = payload.data
    if payload.code != 200:
        status = ProviderStatus.failed(data.fail_msg or payload.message or f"code {payload.code}")
    else:
        status = status_from_record(data.as_record())

    return WebhookEvent(provider="nano", job_id=job_id, provider_task_id=data.task_id, status=status)


async def process_webhook_event(listener: CompletionListener, event: WebhookEvent) -> None:
    """Background task: resolve the event, never raise into the ASGI server."""
    correlation_id = str(uuid.uuid4())
    log.info(
        "webhook_processing_started",
        correlation_id=correlation_id,
        provider=event.provider,
        job_id=str(event.job_id),
        provider_task_id=event.provider_task_id,
    )
    try:
        resolved = await listener.handle_webhook(event)
    except Exception as e:
        log.error(
            "webhook_processing_error",
            correlation_id=correlation_id,
            job_id=str(event.job_id),
            error=str(e),
            error_type=type(e).__name__,
        )
        # Don't raise - webhook already acknowledged
        return

    log.info(
        "webhook_processing_completed",
        correlation_id=correlation_id,
        job_id=str(event.job_id),
        resolved=resolved,
    )
