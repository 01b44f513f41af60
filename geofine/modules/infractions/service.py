"""
Rule Evaluator - detect infractions and issue fines

Three independent checks share one pattern: load the active rule for the
context key, compare the measured value with its thresholds and, on a
violation, write an Infraction and its Fine in one transaction:

    fine = base + excess_units * penalty_per_unit
"""
import logging
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from geofine.core.errors import RuleEvaluationPersistenceError
from geofine.core.results import Result
from geofine.models.arrivals import minutes_between, round_half_up
from geofine.models.infractions import Infraction, InfractionType, Fine
from geofine.models.rules import SegmentRule, StopRule, SpeedZone
from geofine.modules.arrivals.service import SegmentAnchor
from geofine.modules.stops.service import extract_geofence

logger = logging.getLogger(__name__)

KNOTS_TO_KMH = 1.852
CENTS = Decimal('0.01')


def compute_fine(base, excess_units, penalty_per_unit) -> Decimal:
    """Base amount plus a per-unit rate times the size of the violation"""
    amount = Decimal(str(base or 0)) + Decimal(str(excess_units)) * Decimal(str(penalty_per_unit or 0))
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


def read_speed_kmh(payload: dict) -> Result[int]:
    """
    Reported speed in km/h.

    The vendor reports knots, in `position.speed` or top-level `speed`.
    Missing or malformed speeds count as 0.
    """
    payload = payload if isinstance(payload, dict) else {}
    position = payload.get('position') if isinstance(payload.get('position'), dict) else {}

    raw = position.get('speed')
    if raw is None:
        raw = payload.get('speed')
    if raw is None:
        return Result(0).warn("No speed reported; assuming 0")

    try:
        if isinstance(raw, bool):
            raise TypeError("boolean speed")
        knots = float(raw)
    except (TypeError, ValueError):
        return Result(0).warn(f"Malformed speed {raw!r}; assuming 0")

    return Result(max(0, round_half_up(knots * KNOTS_TO_KMH)))


class RuleEvaluator:
    """
    Evaluates dwell-time, segment-time and overspeed rules.

    Every check returns the created Infraction, or None when there is no
    active rule or no violation.
    """

    def __init__(self, db: Session):
        self.db = db

    def _active_rule(self, model, tenant_id: int, *criteria):
        return self.db.query(model)\
            .filter(model.tenant_id == tenant_id, model.active.is_(True), *criteria)\
            .order_by(model.id)\
            .first()

    def check_dwell_time(self, tenant_id: int, vehicle_id: int, stop_id: int, dwell_minutes: int,
                         detected_at: Optional[datetime] = None,
                         raw_event_id: Optional[int] = None) -> Optional[Infraction]:
        """Compare a closed arrival's dwell with the stop's rule"""
        rule = self._active_rule(StopRule, tenant_id, StopRule.stop_id == stop_id)
        if not rule:
            return None

        if dwell_minutes > rule.max_dwell_minutes:
            violation = 'exceeded'
            excess = dwell_minutes - rule.max_dwell_minutes
        elif rule.min_dwell_time_minutes is not None and dwell_minutes < rule.min_dwell_time_minutes:
            violation = 'early'
            excess = rule.min_dwell_time_minutes - dwell_minutes
        else:
            return None

        amount = compute_fine(rule.fine_amount_usd, excess, rule.penalty_per_minute_usd)
        return self._record(
            tenant_id, vehicle_id, InfractionType.DWELL_TIME, amount,
            {
                'violation': violation,
                'rule_id': rule.id,
                'stop_id': stop_id,
                'dwell_minutes': dwell_minutes,
                'max_allowed': rule.max_dwell_minutes,
                'min_required': rule.min_dwell_time_minutes,
                'excess_minutes': excess,
            },
            detected_at, raw_event_id,
        )

    def check_segment_time(self, tenant_id: int, vehicle_id: int, to_stop_id: int,
                           arrival_time: datetime, anchor: Optional[SegmentAnchor],
                           raw_event_id: Optional[int] = None) -> Optional[Infraction]:
        """Compare travel time since the last departure with the segment rule"""
        if anchor is None:
            return None

        rule = self._active_rule(
            SegmentRule, tenant_id,
            SegmentRule.from_stop_id == anchor.from_stop_id,
            SegmentRule.to_stop_id == to_stop_id,
        )
        if not rule:
            return None

        travel_minutes = minutes_between(anchor.departed_at, arrival_time)
        if travel_minutes < 0:
            logger.warning(
                f"Vehicle {vehicle_id} arrived at stop {to_stop_id} before leaving stop "
                f"{anchor.from_stop_id}; events out of order, segment check skipped"
            )
            return None

        if travel_minutes > rule.expected_max_minutes:
            violation = 'late'
            excess = travel_minutes - rule.expected_max_minutes
        elif rule.expected_min_minutes is not None and travel_minutes < rule.expected_min_minutes:
            violation = 'early'
            excess = rule.expected_min_minutes - travel_minutes
        else:
            return None

        amount = compute_fine(rule.fine_amount_usd, excess, rule.penalty_per_minute_usd)
        return self._record(
            tenant_id, vehicle_id, InfractionType.TIME_SEGMENT, amount,
            {
                'violation': violation,
                'rule_id': rule.id,
                'route_id': rule.route_id,
                'from_stop_id': rule.from_stop_id,
                'to_stop_id': rule.to_stop_id,
                'travel_minutes': travel_minutes,
                'max_allowed': rule.expected_max_minutes,
                'min_required': rule.expected_min_minutes,
                'excess_minutes': excess,
            },
            arrival_time, raw_event_id,
        )

    def check_overspeed(self, tenant_id: int, vehicle_id: int, payload: dict,
                        detected_at: Optional[datetime] = None,
                        raw_event_id: Optional[int] = None) -> Optional[Infraction]:
        """Compare the reported speed with the speed zone of the payload's geofence"""
        ref = extract_geofence(payload)
        if ref is None:
            return None

        zone = self._active_rule(SpeedZone, tenant_id, SpeedZone.geofence_id == ref.id)
        if not zone:
            return None

        speed = read_speed_kmh(payload)
        for warning in speed.warnings:
            logger.warning(f"[tenant={tenant_id} vehicle={vehicle_id}] {warning}")

        if speed.value <= zone.max_speed_kmh:
            return None

        excess = speed.value - zone.max_speed_kmh
        amount = compute_fine(zone.fine_amount_usd, excess, zone.penalty_per_kmh_usd)
        return self._record(
            tenant_id, vehicle_id, InfractionType.OVERSPEED, amount,
            {
                'zone_id': zone.id,
                'zone_name': zone.name,
                'geofence_id': ref.id,
                'speed_kmh': speed.value,
                'max_allowed': zone.max_speed_kmh,
                'excess_kmh': excess,
            },
            detected_at, raw_event_id,
        )

    def _record(self, tenant_id: int, vehicle_id: int, infraction_type: InfractionType,
                amount: Decimal, details: dict, detected_at: Optional[datetime],
                raw_event_id: Optional[int]) -> Infraction:
        """Write the Infraction and its Fine together"""
        details = dict(details, fine_usd=str(amount))
        infraction = Infraction(
            tenant_id=tenant_id,
            vehicle_id=vehicle_id,
            type=infraction_type,
            detected_at=detected_at or datetime.utcnow(),
            details=details,
            raw_event_id=raw_event_id,
        )
        infraction.fine = Fine(tenant_id=tenant_id, amount_usd=amount)

        try:
            self.db.add(infraction)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise RuleEvaluationPersistenceError(
                f"Could not persist {infraction_type.value} infraction for vehicle {vehicle_id}: {e}"
            ) from e

        logger.info(
            f"🚨 {infraction_type.value} infraction {infraction.id} for vehicle {vehicle_id}: "
            f"${amount} ({details.get('violation', 'over limit')})"
        )
        return infraction
