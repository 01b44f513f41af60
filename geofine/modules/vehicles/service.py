"""
Vehicle Resolver - map telemetry device ids to fleet vehicles
"""
import logging
import re
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from geofine.core.errors import InvalidDeviceIdError, ResolutionRaceError
from geofine.core.persistence import create_or_reread
from geofine.core.results import Result
from geofine.models.vehicle import Vehicle, PLATE_MAX_LENGTH

logger = logging.getLogger(__name__)

_NON_DIGITS = re.compile(r'\D')


def parse_device_id(raw) -> Result[int]:
    """
    Parse a vendor device id to an integer.

    Vendors sometimes wrap the id in noise ('dev-123'); non-digits are
    stripped once before giving up.
    """
    if isinstance(raw, bool) or raw is None:
        raise InvalidDeviceIdError(f"Device id {raw!r} is not a valid number")
    if isinstance(raw, int):
        return Result(raw)

    text = str(raw).strip()
    try:
        return Result(int(text))
    except ValueError:
        pass

    # JSON numbers may arrive as 555.0; stripping the dot would give 5550
    try:
        number = float(text)
    except ValueError:
        number = None
    if number is not None:
        if not number.is_integer():
            raise InvalidDeviceIdError(f"Device id {raw!r} is not a whole number")
        return Result(int(number))

    digits = _NON_DIGITS.sub('', text)
    if not digits:
        raise InvalidDeviceIdError(f"Device id {raw!r} is not a valid number")
    return Result(int(digits)).warn(f"Device id {raw!r} stripped to {digits}")


def placeholder_plate(device_id: int, device_hint: Optional[dict]) -> str:
    """Plate from the hint's plate, else its name, else PENDING-<id>"""
    hint = device_hint or {}
    plate = hint.get('plate_number') or hint.get('plate') or hint.get('name') or f"PENDING-{device_id}"
    return str(plate)[:PLATE_MAX_LENGTH]


class VehicleResolver:
    """
    Find the vehicle for a device, creating a placeholder for unknown devices.
    """

    def __init__(self, db: Session):
        self.db = db

    def find(self, tenant_id: int, device_id: int) -> Optional[Vehicle]:
        return self.db.query(Vehicle)\
            .filter(Vehicle.tenant_id == tenant_id, Vehicle.device_id == device_id)\
            .first()

    def resolve(self, tenant_id: int, vendor_device_id, device_hint: Optional[dict] = None) -> Optional[Vehicle]:
        """
        Args:
            tenant_id: Owning tenant
            vendor_device_id: Raw deviceId from the webhook
            device_hint: Vendor 'device' object (name, plate_number)

        Returns:
            The Vehicle, or None if it could not be created

        Raises:
            InvalidDeviceIdError: deviceId has no usable digits
        """
        parsed = parse_device_id(vendor_device_id)
        for warning in parsed.warnings:
            logger.warning(f"[tenant={tenant_id}] {warning}")
        device_id = parsed.value

        vehicle = self.find(tenant_id, device_id)
        if vehicle:
            logger.debug(f"Vehicle found: {vehicle.plate} (device {device_id})")
            return vehicle

        logger.info(f"⚠️  Vehicle with device {device_id} not found for tenant {tenant_id}. Creating...")
        return self._create(tenant_id, device_id, device_hint)

    def _create(self, tenant_id: int, device_id: int, device_hint: Optional[dict]) -> Optional[Vehicle]:
        hint = device_hint or {}
        vehicle = Vehicle(
            tenant_id=tenant_id,
            device_id=device_id,
            plate=placeholder_plate(device_id, hint),
            internal_code=str(hint.get('name') or f"AUTO-{device_id}")[:100],
            auto_created=True,
        )
        try:
            vehicle, created = create_or_reread(
                self.db, vehicle, lambda: self.find(tenant_id, device_id)
            )
        except ResolutionRaceError as e:
            logger.error(f"Vehicle for device {device_id} still missing after conflict: {e}")
            return None
        except SQLAlchemyError as e:
            logger.error(f"Error creating auto-vehicle {device_id}: {e}", exc_info=True)
            self.db.rollback()
            return None

        if created:
            logger.info(f"✅ Created new vehicle: {vehicle.plate} (ID: {vehicle.id})")
        return vehicle
