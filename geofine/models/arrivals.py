"""
Arrival models for tracking vehicle presence at stops
"""
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Index, text
from datetime import datetime
import enum
import math

from geofine.models.events import Base


class CloseReason(enum.Enum):
    """Why an arrival was closed"""
    exit = "exit"               # Matching geofence exit event
    superseded = "superseded"   # A newer enter for the same vehicle+stop


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positive values (vendor-compatible)"""
    return int(math.floor(value + 0.5))


def minutes_between(start: datetime, end: datetime) -> int:
    """Whole minutes between two timestamps, rounded half up"""
    return round_half_up((end - start).total_seconds() / 60)


class StopArrival(Base):
    """One visit of one vehicle to one stop"""
    __tablename__ = 'stop_arrivals'
    __table_args__ = (
        # At most one open arrival per (vehicle, stop)
        Index(
            'uq_arrival_vehicle_stop_open', 'vehicle_id', 'stop_id',
            unique=True,
            sqlite_where=text('departed_at IS NULL'),
            postgresql_where=text('departed_at IS NULL'),
        ),
        Index('idx_arrival_vehicle_departed', 'vehicle_id', 'departed_at'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(Integer, ForeignKey('tenants.id'), nullable=False, index=True)
    vehicle_id = Column(Integer, ForeignKey('vehicles.id'), nullable=False)
    stop_id = Column(Integer, ForeignKey('stops.id'), nullable=False)

    # Entry information
    arrived_at = Column(DateTime, nullable=False, index=True)
    enter_event_id = Column(Integer, ForeignKey('raw_events.id'), nullable=True)

    # Exit information (null while open)
    departed_at = Column(DateTime, nullable=True)
    exit_event_id = Column(Integer, ForeignKey('raw_events.id'), nullable=True)
    dwell_minutes = Column(Integer, nullable=True)  # Calculated on close
    closed_reason = Column(String(20), nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    def __repr__(self):
        state = "open" if self.is_open else "closed"
        return f"<StopArrival(id={self.id}, {state}, arrived={self.arrived_at})>"

    @property
    def is_open(self) -> bool:
        return self.departed_at is None

    def close(self, departed_at: datetime, reason: CloseReason, exit_event_id=None) -> int:
        """Close the arrival and calculate dwell in minutes"""
        self.departed_at = departed_at
        self.exit_event_id = exit_event_id
        self.closed_reason = reason.value
        self.dwell_minutes = minutes_between(self.arrived_at, departed_at)
        return self.dwell_minutes
