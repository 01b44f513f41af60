"""
Infraction and Fine models - billable output of the detector
"""
from sqlalchemy import Column, Integer, DateTime, JSON, Enum, Numeric, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime
import enum

from geofine.models.events import Base


class InfractionType(enum.Enum):
    OVERSPEED = "OVERSPEED"
    DWELL_TIME = "DWELL_TIME"
    TIME_SEGMENT = "TIME_SEGMENT"


class InfractionStatus(enum.Enum):
    """Changed by operators only"""
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    DISMISSED = "DISMISSED"


class Infraction(Base):
    """One detected violation"""
    __tablename__ = 'infractions'

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(Integer, ForeignKey('tenants.id'), nullable=False, index=True)
    vehicle_id = Column(Integer, ForeignKey('vehicles.id'), nullable=False, index=True)
    type = Column(Enum(InfractionType), nullable=False, index=True)
    detected_at = Column(DateTime, nullable=False, index=True)
    details = Column(JSON, nullable=False)
    status = Column(Enum(InfractionStatus), nullable=False, default=InfractionStatus.PENDING)

    # The telemetry event that triggered detection
    raw_event_id = Column(Integer, ForeignKey('raw_events.id'), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    fine = relationship("Fine", back_populates="infraction", uselist=False)

    def __repr__(self):
        return f"<Infraction(id={self.id}, type={self.type.value}, vehicle={self.vehicle_id})>"


class Fine(Base):
    """Amount owed for an infraction"""
    __tablename__ = 'fines'

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(Integer, ForeignKey('tenants.id'), nullable=False, index=True)
    infraction_id = Column(Integer, ForeignKey('infractions.id'), nullable=False, unique=True)
    amount_usd = Column(Numeric(10, 2), nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    infraction = relationship("Infraction", back_populates="fine")

    def __repr__(self):
        return f"<Fine(id={self.id}, infraction={self.infraction_id}, amount={self.amount_usd})>"
