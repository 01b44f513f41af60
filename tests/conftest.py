"""
Shared fixtures: in-memory database, tenant and reference data factories
"""

import pytest
from datetime import datetime
from decimal import Decimal
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from geofine.models import (
    Base, Tenant, Vehicle, Route, Stop, SegmentRule, StopRule, SpeedZone,
)
from geofine.modules.geometry.parser import Circle, LatLng


TEST_DATABASE_URL = "sqlite://"


@pytest.fixture(name="engine")
def engine_fixture():
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(name="session_factory")
def session_factory_fixture(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(name="db")
def db_fixture(session_factory):
    """Create tables and provide test database session"""
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def tenant(db):
    tenant = Tenant(name="Demo Fleet", api_key="demo-api-key-12345", active=True)
    db.add(tenant)
    db.commit()
    return tenant


@pytest.fixture
def vehicle(db, tenant):
    vehicle = Vehicle(tenant_id=tenant.id, device_id=4242, plate="ABC-1234", internal_code="BUS-01")
    db.add(vehicle)
    db.commit()
    return vehicle


@pytest.fixture
def route(db, tenant):
    route = Route(tenant_id=tenant.id, name="Line 7")
    db.add(route)
    db.commit()
    return route


@pytest.fixture
def make_stop(db, tenant, route):
    """Factory for circle stops on the test route"""
    def _make(name, geofence_id=None, order=1):
        stop = Stop(
            tenant_id=tenant.id,
            route_id=route.id,
            name=name,
            geofence_id=geofence_id,
            order=order,
        )
        center = LatLng(lat=-2.9, lng=-79.0)
        stop.set_shape(Circle(center=center, radius_m=80), center)
        db.add(stop)
        db.commit()
        return stop
    return _make


@pytest.fixture
def make_stop_rule(db, tenant):
    def _make(stop, max_dwell, fine, penalty, min_dwell=None, active=True):
        rule = StopRule(
            tenant_id=tenant.id,
            stop_id=stop.id,
            min_dwell_time_minutes=min_dwell,
            max_dwell_minutes=max_dwell,
            fine_amount_usd=Decimal(str(fine)),
            penalty_per_minute_usd=Decimal(str(penalty)),
            active=active,
        )
        db.add(rule)
        db.commit()
        return rule
    return _make


@pytest.fixture
def make_segment_rule(db, tenant, route):
    def _make(from_stop, to_stop, max_minutes, fine, penalty, min_minutes=None, active=True):
        rule = SegmentRule(
            tenant_id=tenant.id,
            route_id=route.id,
            from_stop_id=from_stop.id,
            to_stop_id=to_stop.id,
            expected_min_minutes=min_minutes,
            expected_max_minutes=max_minutes,
            fine_amount_usd=Decimal(str(fine)),
            penalty_per_minute_usd=Decimal(str(penalty)),
            active=active,
        )
        db.add(rule)
        db.commit()
        return rule
    return _make


@pytest.fixture
def make_speed_zone(db, tenant):
    def _make(geofence_id, max_kmh, fine, penalty, active=True):
        zone = SpeedZone(
            tenant_id=tenant.id,
            name=f"Zone {geofence_id}",
            geofence_id=str(geofence_id),
            max_speed_kmh=max_kmh,
            fine_amount_usd=Decimal(str(fine)),
            penalty_per_kmh_usd=Decimal(str(penalty)),
            active=active,
        )
        db.add(zone)
        db.commit()
        return zone
    return _make


@pytest.fixture
def base_time():
    return datetime(2025, 3, 10, 8, 0, 0)
