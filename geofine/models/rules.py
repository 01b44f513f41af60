"""
Business rule models evaluated by the infraction detector
"""
from sqlalchemy import Column, Integer, String, Boolean, Numeric, DateTime, ForeignKey
from datetime import datetime

from geofine.models.events import Base


class SegmentRule(Base):
    """Expected travel time from one stop to the next"""
    __tablename__ = 'segment_rules'

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(Integer, ForeignKey('tenants.id'), nullable=False, index=True)
    route_id = Column(Integer, ForeignKey('routes.id'), nullable=True)
    from_stop_id = Column(Integer, ForeignKey('stops.id'), nullable=False, index=True)
    to_stop_id = Column(Integer, ForeignKey('stops.id'), nullable=False, index=True)

    expected_min_minutes = Column(Integer, nullable=True)
    expected_max_minutes = Column(Integer, nullable=False)

    fine_amount_usd = Column(Numeric(10, 2), nullable=False)
    penalty_per_minute_usd = Column(Numeric(10, 2), nullable=False, default=0)

    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    def __repr__(self):
        return f"<SegmentRule(id={self.id}, {self.from_stop_id}->{self.to_stop_id}, max={self.expected_max_minutes})>"


class StopRule(Base):
    """Allowed dwell time at a stop"""
    __tablename__ = 'stop_rules'

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(Integer, ForeignKey('tenants.id'), nullable=False, index=True)
    stop_id = Column(Integer, ForeignKey('stops.id'), nullable=False, index=True)

    min_dwell_time_minutes = Column(Integer, nullable=True)
    max_dwell_minutes = Column(Integer, nullable=False)

    fine_amount_usd = Column(Numeric(10, 2), nullable=False)
    penalty_per_minute_usd = Column(Numeric(10, 2), nullable=False, default=0)

    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    def __repr__(self):
        return f"<StopRule(id={self.id}, stop={self.stop_id}, max={self.max_dwell_minutes})>"


class SpeedZone(Base):
    """Speed limit inside a vendor geofence"""
    __tablename__ = 'speed_zones'

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(Integer, ForeignKey('tenants.id'), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    geofence_id = Column(String(100), nullable=False, index=True)

    # Display only
    stop_id = Column(Integer, ForeignKey('stops.id'), nullable=True)
    route_id = Column(Integer, ForeignKey('routes.id'), nullable=True)

    max_speed_kmh = Column(Integer, nullable=False)
    fine_amount_usd = Column(Numeric(10, 2), nullable=False)
    penalty_per_kmh_usd = Column(Numeric(10, 2), nullable=False, default=0)

    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    def __repr__(self):
        return f"<SpeedZone(id={self.id}, geofence={self.geofence_id}, max={self.max_speed_kmh})>"
