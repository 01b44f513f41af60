"""
Stop Resolver - match vendor geofences to stops, healing and importing
"""
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from geofine.core import config
from geofine.core.errors import ResolutionRaceError
from geofine.core.persistence import create_or_reread
from geofine.models.stops import Route, Stop
from geofine.modules.geometry.parser import LatLng, parse_geometry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GeofenceRef:
    """Geofence identity pulled out of a vendor payload"""
    id: str
    name: Optional[str] = None
    area: Optional[str] = None


def _as_dict(value) -> dict:
    return value if isinstance(value, dict) else {}


def _first(*values):
    for value in values:
        if value is not None and value != '':
            return value
    return None


def _id_str(value) -> str:
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def extract_geofence(payload: dict) -> Optional[GeofenceRef]:
    """
    Find the geofence id/name/area in a webhook body.

    The vendor puts them in different places depending on event type and
    forwarding config: top level first, then `event` / `event.attributes`,
    then `additional`.
    """
    payload = _as_dict(payload)
    geofence = _as_dict(payload.get('geofence'))
    event = _as_dict(payload.get('event'))
    attributes = _as_dict(event.get('attributes'))
    additional = _as_dict(payload.get('additional'))

    geofence_id = _first(
        payload.get('geofenceId'), payload.get('geofence_id'), geofence.get('id'),
        event.get('geofenceId'), attributes.get('geofenceId'), attributes.get('geofence_id'),
        additional.get('geofenceId'), additional.get('geofence_id'),
    )
    if geofence_id is None or _id_str(geofence_id) == '':
        return None

    name = _first(
        geofence.get('name'),
        attributes.get('geofenceName'), attributes.get('geofence'),
        additional.get('geofenceName'), additional.get('geofence'),
    )
    area = _first(geofence.get('area'), attributes.get('area'), additional.get('area'))

    return GeofenceRef(
        id=_id_str(geofence_id),
        name=str(name).strip() if name is not None else None,
        area=area if isinstance(area, str) else None,
    )


def payload_position(payload: dict) -> Optional[LatLng]:
    """Reported vehicle position, used as a best-effort geofence center"""
    position = _as_dict(_as_dict(payload).get('position'))
    try:
        return LatLng(lat=float(position['latitude']), lng=float(position['longitude']))
    except (KeyError, TypeError, ValueError):
        return None


class StopResolver:
    """
    Resolve a vendor geofence to a Stop.

    Lookup order:
    - exact (tenant, geofence id)
    - case-insensitive name among stops not yet linked to a geofence,
      healed by backfilling the geofence id
    - auto-import under the tenant's default route
    """

    def __init__(self, db: Session):
        self.db = db

    def find_by_geofence(self, tenant_id: int, geofence_id: str) -> Optional[Stop]:
        return self.db.query(Stop)\
            .filter(Stop.tenant_id == tenant_id, Stop.geofence_id == geofence_id)\
            .first()

    def find_by_name(self, tenant_id: int, name: str) -> Optional[Stop]:
        """Unlinked stop with this name, any case"""
        return self.db.query(Stop)\
            .filter(Stop.tenant_id == tenant_id)\
            .filter(Stop.geofence_id.is_(None))\
            .filter(func.lower(Stop.name) == name.strip().lower())\
            .order_by(Stop.id)\
            .first()

    def resolve_from_payload(self, tenant_id: int, payload: dict) -> Optional[Stop]:
        """Resolve the payload's geofence; None when it carries none"""
        ref = extract_geofence(payload)
        if ref is None:
            logger.debug(f"[tenant={tenant_id}] No geofence id in payload")
            return None
        return self.resolve(tenant_id, ref.id, ref.name, ref.area, payload_position(payload))

    def resolve(self, tenant_id: int, geofence_id: str, geofence_name: Optional[str] = None,
                area: Optional[str] = None, fallback_center: Optional[LatLng] = None) -> Stop:
        stop = self.find_by_geofence(tenant_id, geofence_id)
        if stop:
            return stop

        if geofence_name:
            stop = self._heal_by_name(tenant_id, geofence_id, geofence_name)
            if stop:
                return stop

        return self._import_stop(tenant_id, geofence_id, geofence_name, area, fallback_center)

    def _heal_by_name(self, tenant_id: int, geofence_id: str, name: str) -> Optional[Stop]:
        stop = self.find_by_name(tenant_id, name)
        if not stop:
            return None

        # Only claim the stop while it is still unlinked
        try:
            claimed = self.db.query(Stop)\
                .filter(Stop.id == stop.id, Stop.geofence_id.is_(None))\
                .update({Stop.geofence_id: geofence_id}, synchronize_session=False)
            self.db.commit()
        except IntegrityError:
            # Geofence was linked or imported by a concurrent event
            self.db.rollback()
            return self.find_by_geofence(tenant_id, geofence_id)

        if not claimed:
            logger.info(f"Stop '{stop.name}' was linked to another geofence concurrently; not healing {geofence_id}")
            return self.find_by_geofence(tenant_id, geofence_id)

        self.db.refresh(stop)
        logger.info(f"🔗 Linked geofence '{name}' ({geofence_id}) to stop '{stop.name}' by name match")
        return stop

    def ensure_default_route(self, tenant_id: int) -> Route:
        """Get or create the route that holds imported geofences"""
        name = config.IMPORTED_ROUTE_NAME

        def find():
            return self.db.query(Route)\
                .filter(Route.tenant_id == tenant_id, Route.name == name)\
                .first()

        route = find()
        if route:
            return route

        route, created = create_or_reread(
            self.db, Route(tenant_id=tenant_id, name=name, auto_import=True), find
        )
        if created:
            logger.info(f"Created default route '{name}' for tenant {tenant_id}")
        return route

    def _next_order(self, route_id: int) -> int:
        current = self.db.query(func.max(Stop.order)).filter(Stop.route_id == route_id).scalar()
        return (current or 0) + 1

    def _import_stop(self, tenant_id: int, geofence_id: str, name: Optional[str],
                     area: Optional[str], fallback_center: Optional[LatLng]) -> Stop:
        route = self.ensure_default_route(tenant_id)

        parsed = parse_geometry(area, fallback_center)
        geometry = parsed.value
        for warning in parsed.warnings:
            logger.warning(f"[tenant={tenant_id} geofence={geofence_id}] {warning}")

        stop = Stop(
            tenant_id=tenant_id,
            route_id=route.id,
            name=(name or f"Geofence {geofence_id}")[:200],
            geofence_id=geofence_id,
            order=self._next_order(route.id),
            details={
                'source': 'auto-import',
                'raw_area': area,
                'geometry_defaulted': geometry.defaulted,
                'warnings': list(parsed.warnings),
            },
        )
        stop.set_shape(geometry.shape, geometry.anchor)

        try:
            stop, created = create_or_reread(
                self.db, stop, lambda: self.find_by_geofence(tenant_id, geofence_id)
            )
        except ResolutionRaceError:
            logger.error(f"[tenant={tenant_id}] Stop import for geofence {geofence_id} lost a race and cannot be re-read")
            raise

        if created:
            logger.info(f"✅ Imported stop '{stop.name}' for geofence {geofence_id} (kind={stop.geometry_kind})")
        return stop
