"""
Webhook Ingestion Service - accept telemetry events and run detection

The HTTP side only authenticates, validates, stores the RawEvent and hands
its id to the event queue. EventPipeline does the detection work later, in
its own session, one event at a time.
"""
import logging
import re
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from geofine.core.errors import (
    AuthError, ValidationError, InvalidDeviceIdError, QueueFullError,
    ResolutionRaceError, RuleEvaluationPersistenceError, StorageTimeoutError,
)
from geofine.core.results import Result
from geofine.models.events import RawEvent, RawEventType
from geofine.models.tenant import Tenant
from geofine.models.vehicle import Vehicle
from geofine.modules.arrivals.service import ArrivalTracker
from geofine.modules.infractions.service import RuleEvaluator
from geofine.modules.stops.service import StopResolver
from geofine.modules.vehicles.service import VehicleResolver

logger = logging.getLogger(__name__)

# Traccar sometimes sends '+0000' offsets, which fromisoformat rejects on older Pythons
_COMPACT_OFFSET = re.compile(r'([+-]\d{2})(\d{2})$')


def _to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def parse_timestamp(value) -> Optional[datetime]:
    """ISO-8601 string or epoch seconds/milliseconds -> naive UTC"""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        seconds = value / 1000 if value > 1e11 else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(tzinfo=None)
    if isinstance(value, str) and value.strip():
        text = value.strip().replace('Z', '+00:00')
        text = _COMPACT_OFFSET.sub(r'\1:\2', text)
        try:
            return _to_naive_utc(datetime.fromisoformat(text))
        except ValueError:
            return None
    return None


def event_timestamp(payload: dict, fallback: datetime) -> Result[datetime]:
    """When the event happened, per the vendor; falls back to receive time"""
    position = payload.get('position') if isinstance(payload.get('position'), dict) else {}
    event = payload.get('event') if isinstance(payload.get('event'), dict) else {}

    candidates = [
        payload.get('serverTime'), payload.get('fixTime'), payload.get('deviceTime'),
        event.get('eventTime'), position.get('fixTime'), position.get('serverTime'),
        payload.get('time'),
    ]
    warnings = []
    for candidate in candidates:
        if candidate is None:
            continue
        parsed = parse_timestamp(candidate)
        if parsed:
            return Result(parsed, warnings)
        warnings.append(f"Unparseable event time {candidate!r}")
    if warnings:
        warnings.append("Using receive time")
    return Result(fallback, warnings)


def _is_missing(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class WebhookIngestionService:
    """
    Synchronous half of ingestion: auth, validation, audit, enqueue.
    """

    def __init__(self, db: Session, event_queue=None):
        self.db = db
        self.event_queue = event_queue

    def authenticate(self, api_key: Optional[str]) -> Tenant:
        if not api_key:
            raise AuthError("API Key is required")
        tenant = self.db.query(Tenant).filter(Tenant.api_key == api_key).first()
        if not tenant or not tenant.active:
            raise AuthError("Invalid or inactive tenant")
        return tenant

    @staticmethod
    def validate(body) -> dict:
        if not isinstance(body, dict):
            raise ValidationError("Body must be a JSON object")
        if _is_missing(body.get('deviceId')) or _is_missing(body.get('type')):
            raise ValidationError("deviceId and type are required")
        return body

    def handle(self, api_key: Optional[str], body) -> RawEvent:
        """
        Accept one webhook call.

        Returns:
            The persisted RawEvent

        Raises:
            AuthError: bad or inactive API key
            ValidationError: missing deviceId/type
            SQLAlchemyError: the audit record could not be stored
        """
        tenant = self.authenticate(api_key)
        body = self.validate(body)

        raw_event = RawEvent(
            tenant_id=tenant.id,
            device_id=str(body['deviceId']),
            event_type=RawEventType.from_vendor(body['type']),
            vendor_type=str(body['type']),
            payload=body,
            received_at=datetime.utcnow(),
        )
        try:
            self.db.add(raw_event)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise

        logger.info(f"Received event {raw_event.id}: {raw_event.vendor_type} from device {raw_event.device_id}")

        if self.event_queue is not None:
            try:
                self.event_queue.submit(raw_event.id)
            except QueueFullError as e:
                # Raw event stays unprocessed in the audit table for replay
                logger.error(f"[tenant={tenant.id} device={raw_event.device_id}] Event {raw_event.id} not queued: {e}")

        return raw_event


class EventPipeline:
    """
    Asynchronous half of ingestion: resolve, track and evaluate one event.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def process(self, raw_event_id: int) -> bool:
        """
        Run detection for one stored event.

        Returns:
            True when the event completed and processed_at was stamped
        """
        db = self.session_factory()
        context = f"[event={raw_event_id}]"
        try:
            raw_event = db.get(RawEvent, raw_event_id)
            if raw_event is None:
                logger.error(f"{context} Raw event not found")
                return False

            context = (
                f"[event={raw_event.id} tenant={raw_event.tenant_id} "
                f"device={raw_event.device_id} type={raw_event.vendor_type}]"
            )
            if not self._run(db, raw_event, context):
                return False

            raw_event.processed_at = datetime.utcnow()
            db.commit()
            return True

        except InvalidDeviceIdError as e:
            logger.error(f"{context} Invalid device id, event dropped: {e}")
        except RuleEvaluationPersistenceError as e:
            logger.error(f"{context} Detection aborted: {e}", exc_info=True)
        except ResolutionRaceError as e:
            logger.error(f"{context} Resolution failed: {e}")
        except OperationalError as e:
            error = StorageTimeoutError(str(e.orig))
            logger.error(f"{context} Storage unavailable (retryable): {error}")
        except Exception as e:
            logger.error(f"{context} Error processing event: {e}", exc_info=True)
        finally:
            db.rollback()
            db.close()
        return False

    def _run(self, db: Session, raw_event: RawEvent, context: str) -> bool:
        payload = raw_event.payload or {}

        when = event_timestamp(payload, raw_event.received_at)
        for warning in when.warnings:
            logger.warning(f"{context} {warning}")

        device_hint = payload.get('device') if isinstance(payload.get('device'), dict) else None
        vehicle = VehicleResolver(db).resolve(raw_event.tenant_id, raw_event.device_id, device_hint)
        if vehicle is None:
            logger.warning(f"{context} No vehicle available; skipping detection")
            return False

        if raw_event.event_type == RawEventType.geofence_enter:
            self._handle_enter(db, raw_event, vehicle, when.value, context)
        elif raw_event.event_type == RawEventType.geofence_exit:
            self._handle_exit(db, raw_event, vehicle, when.value, context)
        elif raw_event.event_type == RawEventType.overspeed_alarm:
            RuleEvaluator(db).check_overspeed(
                raw_event.tenant_id, vehicle.id, payload, when.value, raw_event.id
            )
        return True

    def _handle_enter(self, db: Session, raw_event: RawEvent, vehicle: Vehicle,
                      arrived_at: datetime, context: str):
        payload = raw_event.payload
        evaluator = RuleEvaluator(db)

        stop = StopResolver(db).resolve_from_payload(raw_event.tenant_id, payload)
        if stop is None:
            logger.info(f"{context} Enter without geofence id; no stop context")
        else:
            tracker = ArrivalTracker(db)
            anchor = tracker.last_departure(vehicle.id, stop.id)
            outcome = tracker.open_arrival(
                raw_event.tenant_id, vehicle.id, stop.id, arrived_at, raw_event.id
            )
            if outcome.superseded is not None:
                logger.info(f"{context} Re-entry at stop {stop.id}; segment check skipped")
            else:
                evaluator.check_segment_time(
                    raw_event.tenant_id, vehicle.id, stop.id, arrived_at, anchor, raw_event.id
                )

        evaluator.check_overspeed(raw_event.tenant_id, vehicle.id, payload, arrived_at, raw_event.id)

    def _handle_exit(self, db: Session, raw_event: RawEvent, vehicle: Vehicle,
                     departed_at: datetime, context: str):
        payload = raw_event.payload
        evaluator = RuleEvaluator(db)

        stop = StopResolver(db).resolve_from_payload(raw_event.tenant_id, payload)
        if stop is not None:
            arrival = ArrivalTracker(db).close_arrival(vehicle.id, stop.id, departed_at, raw_event.id)
            if arrival is not None:
                if arrival.dwell_minutes < 0:
                    logger.warning(f"{context} Exit precedes enter at stop {stop.id}; dwell check skipped")
                else:
                    evaluator.check_dwell_time(
                        raw_event.tenant_id, vehicle.id, stop.id, arrival.dwell_minutes,
                        departed_at, raw_event.id,
                    )

        evaluator.check_overspeed(raw_event.tenant_id, vehicle.id, payload, departed_at, raw_event.id)
