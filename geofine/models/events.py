"""
Event models for storing inbound telemetry webhooks
"""
from sqlalchemy import Column, String, Integer, DateTime, JSON, Enum, ForeignKey
from sqlalchemy.orm import declarative_base
from datetime import datetime
import enum

Base = declarative_base()


class RawEventType(enum.Enum):
    """Normalized telemetry event type"""
    position = "position"
    geofence_enter = "geofence_enter"
    geofence_exit = "geofence_exit"
    overspeed_alarm = "overspeed_alarm"
    ignition = "ignition"
    other = "other"

    @classmethod
    def from_vendor(cls, vendor_type) -> "RawEventType":
        """Map the vendor's `type` string (e.g. 'geofenceEnter')"""
        return VENDOR_EVENT_TYPES.get(str(vendor_type), cls.other)


VENDOR_EVENT_TYPES = {
    'position': RawEventType.position,
    'deviceMoving': RawEventType.position,
    'deviceStopped': RawEventType.position,
    'geofenceEnter': RawEventType.geofence_enter,
    'geofenceExit': RawEventType.geofence_exit,
    'deviceOverspeed': RawEventType.overspeed_alarm,
    'ignitionOn': RawEventType.ignition,
    'ignitionOff': RawEventType.ignition,
}


class RawEvent(Base):
    """Raw events from the telemetry vendor - immutable audit log"""
    __tablename__ = 'raw_events'

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(Integer, ForeignKey('tenants.id'), nullable=False, index=True)
    device_id = Column(String(100), nullable=False, index=True)
    event_type = Column(Enum(RawEventType), nullable=False)
    vendor_type = Column(String(100), nullable=False)  # 'geofenceEnter', ...
    payload = Column(JSON, nullable=False)  # Full webhook body
    received_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    processed_at = Column(DateTime, nullable=True)  # Stamped once the pipeline completes

    def __repr__(self):
        return f"<RawEvent(id={self.id}, type={self.vendor_type}, device={self.device_id})>"

    def to_dict(self):
        return {
            'id': self.id,
            'timestamp': self.received_at.isoformat() if self.received_at else None,
            'eventType': self.vendor_type,
            'deviceId': self.device_id,
            'success': self.processed_at is not None,
            'payload': self.payload,
        }
