"""
Vehicle Model - fleet vehicles mirrored from telemetry devices
"""
from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey, UniqueConstraint
from datetime import datetime
from geofine.models.events import Base

# Plates coming from the vendor are free text; keep them short
PLATE_MAX_LENGTH = 20


class Vehicle(Base):
    """
    Represents a vehicle in a tenant's fleet.
    Identified by the vendor device id, unique per tenant.
    """
    __tablename__ = 'vehicles'
    __table_args__ = (
        UniqueConstraint('tenant_id', 'device_id', name='uq_vehicle_tenant_device'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(Integer, ForeignKey('tenants.id'), nullable=False, index=True)
    device_id = Column(Integer, nullable=False)

    plate = Column(String(PLATE_MAX_LENGTH), nullable=False)
    internal_code = Column(String(100), nullable=True)

    # True when created from an unknown-device sighting
    auto_created = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    def __repr__(self):
        return f"<Vehicle(id={self.id}, plate='{self.plate}', device={self.device_id})>"
