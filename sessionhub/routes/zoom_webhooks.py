"""
Zoom webhook endpoint.

Mounted under /webhooks/zoom. Every delivery, the URL validation challenge
included, must carry a valid ``x-zm-signature``. Recording events are handed
to the worker so the acknowledgement never waits on a download.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional, Union

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import (
    AuthenticationException,
    ConfigurationException,
    ValidationException,
)
from ..database import get_db
from ..integrations.zoom_client import url_validation_response, verify_webhook_signature
from ..schemas.payment_schemas import WebhookResponse
from ..services.session_orchestrator import SessionOrchestrator
from ..tasks.names import PROCESS_RECORDING
from ..tasks.scheduler import JobScheduler
from .dependencies import get_scheduler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks/zoom", tags=["zoom-webhooks"])

URL_VALIDATION = "endpoint.url_validation"
MEETING_STARTED = "meeting.started"
MEETING_ENDED = "meeting.ended"
RECORDING_EVENTS = frozenset({"recording.completed", "recording.transcript_completed"})


class _ZoomBaseModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class _ZoomObject(_ZoomBaseModel):
    id: Optional[Union[int, str]] = None
    topic: Optional[str] = None
    duration: Optional[int] = None
    download_access_token: Optional[str] = None


class _ZoomPayload(_ZoomBaseModel):
    plain_token: Optional[str] = Field(default=None, alias="plainToken")
    object: Optional[_ZoomObject] = None


class _ZoomEvent(_ZoomBaseModel):
    event: str = Field(min_length=1)
    payload: _ZoomPayload = Field(default_factory=_ZoomPayload)
    download_token: Optional[str] = None


def _meeting_id(event: _ZoomEvent) -> str:
    obj = event.payload.object
    if obj is None or obj.id in (None, ""):
        raise ValidationException(f"{event.event} event has no meeting id")
    return str(obj.id)


@router.post("", response_model=None)
async def handle_zoom_webhook(
    request: Request,
    db: Session = Depends(get_db),
    scheduler: JobScheduler = Depends(get_scheduler),
) -> Union[WebhookResponse, Dict[str, Any]]:
    """Verify, then dispatch a Zoom event."""
    secret = settings.zoom_webhook_secret_token.get_secret_value()
    if not secret:
        logger.error("Zoom webhook secret token is not configured")
        raise ConfigurationException("Zoom webhook secret is not configured")

    raw = await request.body()
    body = raw.decode("utf-8")
    timestamp = request.headers.get("x-zm-request-timestamp")
    signature = request.headers.get("x-zm-signature")
    if not verify_webhook_signature(secret, timestamp, body, signature):
        logger.warning("Zoom webhook signature verification failed")
        raise AuthenticationException("Invalid webhook signature", code="INVALID_SIGNATURE")

    try:
        event = _ZoomEvent.model_validate(json.loads(body))
    except (ValueError, ValidationError) as exc:
        logger.warning("Malformed Zoom webhook payload: %s", exc)
        raise ValidationException("Invalid payload format", code="MALFORMED_PAYLOAD")

    logger.info("Zoom webhook received: %s", event.event)

    if event.event == URL_VALIDATION:
        if not event.payload.plain_token:
            raise ValidationException("plainToken is missing")
        return url_validation_response(secret, event.payload.plain_token)

    if event.event == MEETING_STARTED:
        meeting_id = _meeting_id(event)
        orchestrator = SessionOrchestrator(db, scheduler=scheduler)
        started = await asyncio.to_thread(orchestrator.mark_in_progress_by_meeting, meeting_id)
        logger.info("[AUDIT] Meeting %s started (session moved: %s)", meeting_id, started)
    elif event.event == MEETING_ENDED:
        obj = event.payload.object
        logger.info(
            "[AUDIT] Meeting %s ended after %s min",
            _meeting_id(event),
            obj.duration if obj else None,
        )
    elif event.event in RECORDING_EVENTS:
        meeting_id = _meeting_id(event)
        obj = event.payload.object
        token = event.download_token or (obj.download_access_token if obj else None)
        scheduler.enqueue(PROCESS_RECORDING, args=(meeting_id, token))
        logger.info("[AUDIT] Recording processing queued for meeting %s", meeting_id)
    else:
        logger.info("Unhandled Zoom event type: %s", event.event)
        return WebhookResponse(status="ignored", event_type=event.event)

    return WebhookResponse(status="success", event_type=event.event)
