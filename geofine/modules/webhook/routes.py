"""
Webhook API Routes
"""
import logging
from datetime import datetime
from typing import Any, List, Optional

from fastapi import APIRouter, Body, Depends, Header, HTTPException, Query, Request
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from geofine.core.database import get_db
from geofine.core.errors import AuthError, ValidationError
from geofine.models.events import RawEvent
from geofine.modules.webhook.service import WebhookIngestionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhook", tags=["webhook"])


# Response models
class WebhookAccepted(BaseModel):
    message: str
    event_id: int


class EventLogEntry(BaseModel):
    id: int
    timestamp: Optional[datetime]
    eventType: str
    deviceId: str
    success: bool
    payload: Any


class EventLogStats(BaseModel):
    total: int
    today: int
    pending: int


class EventLogResponse(BaseModel):
    logs: List[EventLogEntry]
    stats: EventLogStats


def get_event_queue(request: Request):
    """Queue installed on the app at startup"""
    return getattr(request.app.state, 'event_queue', None)


@router.post("/traccar", status_code=202, response_model=WebhookAccepted)
def receive_traccar_event(
    body: Any = Body(None),
    x_api_key: Optional[str] = Header(None),
    db: Session = Depends(get_db),
    event_queue=Depends(get_event_queue),
):
    """
    Receive one telemetry event.

    The event is stored before responding; detection runs afterwards, so a
    202 says nothing about whether an infraction was found.
    """
    service = WebhookIngestionService(db, event_queue)
    try:
        raw_event = service.handle(x_api_key, body)
    except AuthError as e:
        raise HTTPException(status_code=401, detail=str(e))
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SQLAlchemyError as e:
        logger.error(f"Could not store webhook event: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")

    return {
        "message": "Event received and processing started",
        "event_id": raw_event.id,
    }


@router.get("/logs", response_model=EventLogResponse)
def get_event_logs(
    limit: int = Query(50, ge=1, le=500),
    x_api_key: Optional[str] = Header(None),
    db: Session = Depends(get_db),
):
    """Recent raw events for the calling tenant"""
    try:
        tenant = WebhookIngestionService(db).authenticate(x_api_key)
    except AuthError as e:
        raise HTTPException(status_code=401, detail=str(e))

    base = db.query(RawEvent).filter(RawEvent.tenant_id == tenant.id)
    today_start = datetime.combine(datetime.utcnow().date(), datetime.min.time())

    logs = base.order_by(RawEvent.received_at.desc(), RawEvent.id.desc()).limit(limit).all()

    return {
        "logs": [log.to_dict() for log in logs],
        "stats": {
            "total": base.count(),
            "today": base.filter(RawEvent.received_at >= today_start).count(),
            "pending": base.filter(RawEvent.processed_at.is_(None)).count(),
        },
    }
