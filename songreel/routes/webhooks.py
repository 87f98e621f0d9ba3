"""Provider webhook routes.

This module provides FastAPI routes for receiving provider callbacks:
- POST /api/v1/webhooks/{token}/suno/{job_id} - Suno music callback
- POST /api/v1/webhooks/{token}/nano/{job_id} - NanoBanana image callback
- POST /api/v1/webhooks/suno/{job_id}, /nano/{job_id} - same, token in
  the X-Webhook-Token header

Pattern:
- Verify token (fast, no DB)
- Parse payload (fast, validation)
- Queue background task (resolution through the Completion Listener)
- Return 200 immediately (<500ms)
"""

import time
import uuid
from typing import Callable, TypeVar

import structlog
from fastapi import APIRouter, BackgroundTasks, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from songreel.routes import require_state
from songreel.schemas.webhook import NanoCallbackPayload, SunoCallbackPayload
from songreel.services.completion import WebhookEvent
from songreel.services.webhook_handler import (
    WebhookAuthResult,
    nano_event,
    process_webhook_event,
    suno_event,
    verify_webhook_token,
)

log = structlog.get_logger()
router = APIRouter(prefix="/api/v1/webhooks", tags=["webhooks"])

TOKEN_HEADER = "X-Webhook-Token"

PayloadT = TypeVar("PayloadT", bound=BaseModel)


def _authorize(token: str | None, provider: str, job_id: str) -> None:
    result = verify_webhook_token(token)
    if result == WebhookAuthResult.NOT_CONFIGURED:
        raise HTTPException(status_code=503, detail="Webhook secret not configured")
    if result == WebhookAuthResult.UNAUTHORIZED:
        log.warning(
            "webhook_unauthorized",
            provider=provider,
            job_id=job_id[:36],
            token=token[:4] + "..." if token else None,
        )
        raise HTTPException(status_code=401, detail="Invalid webhook token")


def _parse_job_id(job_id: str) -> uuid.UUID:
    try:
        return uuid.UUID(job_id)
    except ValueError as e:
        log.warning("webhook_invalid_job_id", job_id=job_id[:36])
        raise HTTPException(status_code=400, detail="Invalid job ID") from e


def _parse_body(body: bytes, schema: type[PayloadT], provider: str) -> PayloadT:
    try:
        return schema.model_validate_json(body)
    except ValidationError as e:
        log.warning(
            "webhook_invalid_payload",
            provider=provider,
            error=str(e)[:500],
            body=body.decode(errors="replace")[:200],
        )
        raise HTTPException(status_code=400, detail="Invalid payload format") from e


def _accept(
    request: Request,
    background_tasks: BackgroundTasks,
    event: WebhookEvent,
    start_time: float,
) -> JSONResponse:
    listener = require_state(request, "listener")
    background_tasks.add_task(process_webhook_event, listener, event)

    elapsed_ms = (time.time() - start_time) * 1000
    log.info(
        "webhook_accepted",
        provider=event.provider,
        job_id=str(event.job_id),
        provider_task_id=event.provider_task_id,
        state=event.status.state.value,
        elapsed_ms=elapsed_ms,
    )
    if elapsed_ms > 500:
        log.warning("webhook_slow_response", elapsed_ms=elapsed_ms, target_ms=500)

    return JSONResponse(status_code=200, content={"status": "accepted"})


async def _handle_suno(
    request: Request, background_tasks: BackgroundTasks, token: str | None, job_id: str
) -> JSONResponse:
    start_time = time.time()
    _authorize(token, "suno", job_id)
    job_uuid = _parse_job_id(job_id)

    payload = _parse_body(await request.body(), SunoCallbackPayload, "suno")

    if payload.is_partial:
        # Lyrics or first track only; the complete callback follows
        log.info(
            "suno_partial_callback_acknowledged",
            job_id=str(job_uuid),
            callback_type=payload.data.callback_type,
        )
        return JSONResponse(status_code=200, content={"status": "acknowledged"})

    return _accept(request, background_tasks, suno_event(job_uuid, payload), start_time)


async def _handle_nano(
    request: Request, background_tasks: BackgroundTasks, token: str | None, job_id: str
) -> JSONResponse:
    start_time = time.time()
    _authorize(token, "nano", job_id)
    job_uuid = _parse_job_id(job_id)

    payload = _parse_body(await request.body(), NanoCallbackPayload, "nano")

    return _accept(request, background_tasks, nano_event(job_uuid, payload), start_time)


_HANDLERS: dict[str, Callable] = {"suno": _handle_suno, "nano": _handle_nano}


@router.post("/{token}/suno/{job_id}")
async def handle_suno_webhook(
    token: str, job_id: str, request: Request, background_tasks: BackgroundTasks
) -> JSONResponse:
    """Handle a Suno callback authenticated by the path token.

    Returns:
        200 OK: Callback accepted (or partial callback acknowledged)
        401 Unauthorized: Invalid token
        400 Bad Request: Invalid job ID or payload format
        503 Service Unavailable: Webhook secret not configured
    """
    return await _handle_suno(request, background_tasks, token, job_id)


@router.post("/{token}/nano/{job_id}")
async def handle_nano_webhook(
    token: str, job_id: str, request: Request, background_tasks: BackgroundTasks
) -> JSONResponse:
    """Handle a NanoBanana callback authenticated by the path token."""
    return await _handle_nano(request, background_tasks, token, job_id)


@router.post("/{provider}/{job_id}")
async def handle_header_authenticated_webhook(
    provider: str, job_id: str, request: Request, background_tasks: BackgroundTasks
) -> JSONResponse:
    """Handle a callback authenticated by the X-Webhook-Token header."""
    handler = _HANDLERS.get(provider)
    if handler is None:
        raise HTTPException(status_code=404, detail="Unknown provider")
    return await handler(request, background_tasks, request.headers.get(TOKEN_HEADER), job_id)
