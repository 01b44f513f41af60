"""
Arrival Tracker - pair geofence enter/exit events into stop visits

Per (vehicle, stop):
    NoArrival -> Open(arrived_at) -> Closed(arrived_at, departed_at, dwell)
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from geofine.core.errors import ResolutionRaceError
from geofine.models.arrivals import StopArrival, CloseReason

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SegmentAnchor:
    """Where and when the vehicle last left a stop"""
    from_stop_id: int
    departed_at: datetime


@dataclass
class OpenOutcome:
    arrival: StopArrival
    superseded: Optional[StopArrival] = None


class ArrivalTracker:
    """
    Tracks vehicle presence at stops.

    Logic:
    - Enter = open a new arrival. An arrival still open for the same
      vehicle+stop is closed as superseded first, so at most one is open.
    - Exit = close the most recent open arrival for the vehicle+stop.
      No open arrival means no duration, so nothing changes.
    """

    def __init__(self, db: Session):
        self.db = db

    def find_open_arrival(self, vehicle_id: int, stop_id: int) -> Optional[StopArrival]:
        """Most recent open arrival for the pair"""
        return self.db.query(StopArrival)\
            .filter(StopArrival.vehicle_id == vehicle_id)\
            .filter(StopArrival.stop_id == stop_id)\
            .filter(StopArrival.departed_at.is_(None))\
            .order_by(StopArrival.arrived_at.desc(), StopArrival.id.desc())\
            .first()

    def open_arrival(self, tenant_id: int, vehicle_id: int, stop_id: int,
                     arrived_at: datetime, enter_event_id: Optional[int] = None) -> OpenOutcome:
        """
        Record a vehicle entering a stop.

        The open-arrival unique index rejects a concurrent enter for the same
        pair; the loser re-reads the winner's arrival and supersedes it.

        Raises:
            ResolutionRaceError: the pair still conflicts after re-reading
        """
        try:
            return self._open(tenant_id, vehicle_id, stop_id, arrived_at, enter_event_id)
        except IntegrityError:
            self.db.rollback()
            logger.warning(f"Concurrent enter for vehicle {vehicle_id} at stop {stop_id}; re-reading open arrival")

        try:
            return self._open(tenant_id, vehicle_id, stop_id, arrived_at, enter_event_id)
        except IntegrityError as e:
            self.db.rollback()
            raise ResolutionRaceError(
                f"Open arrival for vehicle {vehicle_id} at stop {stop_id} still conflicts: {e.orig}"
            ) from e

    def _open(self, tenant_id: int, vehicle_id: int, stop_id: int,
              arrived_at: datetime, enter_event_id: Optional[int]) -> OpenOutcome:
        outcome = OpenOutcome(arrival=None)

        previous = self.find_open_arrival(vehicle_id, stop_id)
        if previous:
            previous.close(max(arrived_at, previous.arrived_at), CloseReason.superseded, enter_event_id)
            outcome.superseded = previous
            logger.warning(
                f"⚠️  Vehicle {vehicle_id} re-entered stop {stop_id} without exit; "
                f"arrival {previous.id} closed as superseded"
            )

        arrival = StopArrival(
            tenant_id=tenant_id,
            vehicle_id=vehicle_id,
            stop_id=stop_id,
            arrived_at=arrived_at,
            enter_event_id=enter_event_id,
        )
        self.db.add(arrival)
        self.db.commit()
        outcome.arrival = arrival

        logger.info(f"🚌 Vehicle {vehicle_id} arrived at stop {stop_id} at {arrived_at}")
        return outcome

    def close_arrival(self, vehicle_id: int, stop_id: int, departed_at: datetime,
                      exit_event_id: Optional[int] = None) -> Optional[StopArrival]:
        """
        Record a vehicle leaving a stop.

        Returns:
            The closed arrival, or None when no open arrival matched
        """
        arrival = self.find_open_arrival(vehicle_id, stop_id)
        if not arrival:
            logger.warning(f"⚠️  Exit for vehicle {vehicle_id} at stop {stop_id} but no open arrival found")
            return None

        dwell = arrival.close(departed_at, CloseReason.exit, exit_event_id)
        self.db.commit()

        logger.info(f"✅ Vehicle {vehicle_id} left stop {stop_id}: {dwell} minutes")
        return arrival

    def last_departure(self, vehicle_id: int, exclude_stop_id: int) -> Optional[SegmentAnchor]:
        """
        Most recent observed exit at any other stop.

        Superseded closes are skipped: their departed_at is a re-enter time,
        not an exit the vendor reported.
        """
        arrival = self.db.query(StopArrival)\
            .filter(StopArrival.vehicle_id == vehicle_id)\
            .filter(StopArrival.stop_id != exclude_stop_id)\
            .filter(StopArrival.closed_reason == CloseReason.exit.value)\
            .order_by(StopArrival.departed_at.desc(), StopArrival.id.desc())\
            .first()

        if not arrival:
            return None
        return SegmentAnchor(from_stop_id=arrival.stop_id, departed_at=arrival.departed_at)
