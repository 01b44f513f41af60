"""Database models"""
from geofine.models.events import Base, RawEvent, RawEventType
from geofine.models.tenant import Tenant
from geofine.models.vehicle import Vehicle
from geofine.models.stops import Route, Stop
from geofine.models.arrivals import StopArrival, CloseReason
from geofine.models.rules import SegmentRule, StopRule, SpeedZone
from geofine.models.infractions import Infraction, InfractionType, InfractionStatus, Fine

__all__ = [
    'Base', 'RawEvent', 'RawEventType', 'Tenant', 'Vehicle', 'Route', 'Stop',
    'StopArrival', 'CloseReason', 'SegmentRule', 'StopRule', 'SpeedZone',
    'Infraction', 'InfractionType', 'InfractionStatus', 'Fine',
]
