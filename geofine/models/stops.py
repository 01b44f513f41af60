"""
Route and Stop models - geofences mirrored from the telemetry vendor
"""
from sqlalchemy import (
    Column, Integer, String, Float, DateTime, Boolean, JSON, ForeignKey,
    UniqueConstraint, CheckConstraint,
)
from sqlalchemy.orm import relationship
from datetime import datetime

from geofine.models.events import Base


class Route(Base):
    """An ordered set of stops for one tenant"""
    __tablename__ = 'routes'
    __table_args__ = (
        UniqueConstraint('tenant_id', 'name', name='uq_route_tenant_name'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(Integer, ForeignKey('tenants.id'), nullable=False, index=True)
    name = Column(String(200), nullable=False)

    # Holds stops auto-imported from vendor geofences
    auto_import = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    stops = relationship("Stop", back_populates="route", order_by="Stop.order")

    def __repr__(self):
        return f"<Route(id={self.id}, name='{self.name}')>"


class Stop(Base):
    """
    A geofence the fleet arrives at and departs from.

    The geometry is one tagged document, either
    {"kind": "circle", "center": {"lat", "lng"} | None, "radius_m"} or
    {"kind": "polygon", "vertices": [{"lat", "lng"}, ...]}.
    """
    __tablename__ = 'stops'
    __table_args__ = (
        UniqueConstraint('tenant_id', 'geofence_id', name='uq_stop_tenant_geofence'),
        CheckConstraint("geometry_kind IN ('circle', 'polygon')", name='ck_stop_geometry_kind'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(Integer, ForeignKey('tenants.id'), nullable=False, index=True)
    route_id = Column(Integer, ForeignKey('routes.id'), nullable=False, index=True)
    name = Column(String(200), nullable=False)

    # Vendor geofence id; immutable once set
    geofence_id = Column(String(100), nullable=True)

    geometry_kind = Column(String(20), nullable=False)
    geometry = Column(JSON, nullable=False)

    # Anchor point for map display
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)

    order = Column(Integer, nullable=False, default=0)

    # Import provenance and parser warnings
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    route = relationship("Route", back_populates="stops")

    def __repr__(self):
        return f"<Stop(id={self.id}, name='{self.name}', geofence={self.geofence_id})>"

    @property
    def shape(self):
        """Geometry as a Circle or Polygon"""
        from geofine.modules.geometry.parser import shape_from_dict
        return shape_from_dict(self.geometry)

    def set_shape(self, shape, anchor=None):
        """Replace the geometry (operators may edit it; the geofence id stays)"""
        self.geometry = shape.to_dict()
        self.geometry_kind = shape.kind
        if anchor is not None:
            self.latitude, self.longitude = anchor.lat, anchor.lng
