"""
Geometry Parser - vendor WKT geofences to circle/polygon shapes

The telemetry vendor sends geofence areas as well-known text:

    CIRCLE (<lng> <lat>, <radius_m>)
    POLYGON ((<lng> <lat>, <lng> <lat>, ...))   (single parens also seen)

Coordinates arrive longitude first; shapes store {lat, lng}.
"""
import logging
import math
import re
from dataclasses import dataclass
from typing import ClassVar, Optional, Tuple, Union

from geofine.core import config
from geofine.core.errors import GeometryParseError
from geofine.core.results import Result

logger = logging.getLogger(__name__)

_WKT_PATTERN = re.compile(r'^\s*([A-Za-z_]+)\s*\((.*)\)\s*$', re.DOTALL)


@dataclass(frozen=True)
class LatLng:
    lat: float
    lng: float

    def to_dict(self):
        return {'lat': self.lat, 'lng': self.lng}


@dataclass(frozen=True)
class Circle:
    center: Optional[LatLng]
    radius_m: float
    kind: ClassVar[str] = 'circle'

    def to_dict(self):
        return {
            'kind': self.kind,
            'center': self.center.to_dict() if self.center else None,
            'radius_m': self.radius_m,
        }


@dataclass(frozen=True)
class Polygon:
    vertices: Tuple[LatLng, ...]
    kind: ClassVar[str] = 'polygon'

    def to_dict(self):
        return {'kind': self.kind, 'vertices': [v.to_dict() for v in self.vertices]}


Shape = Union[Circle, Polygon]


@dataclass(frozen=True)
class ParsedGeometry:
    """A parsed shape, its anchor point and whether the default was used"""
    shape: Shape
    anchor: Optional[LatLng]
    defaulted: bool = False


def shape_from_dict(data: dict) -> Shape:
    """Inverse of Circle.to_dict / Polygon.to_dict"""
    kind = (data or {}).get('kind')
    if kind == Circle.kind:
        center = data.get('center')
        return Circle(
            center=LatLng(center['lat'], center['lng']) if center else None,
            radius_m=float(data['radius_m']),
        )
    if kind == Polygon.kind:
        return Polygon(vertices=tuple(LatLng(v['lat'], v['lng']) for v in data['vertices']))
    raise ValueError(f"Unknown geometry kind: {kind!r}")


def _number(token: str) -> float:
    value = float(token)
    if not math.isfinite(value):
        raise ValueError(f"not a finite number: {token}")
    return value


def _lng_lat(token: str) -> LatLng:
    """'<lng> <lat>' -> LatLng(lat, lng)"""
    parts = token.split()
    if len(parts) < 2:
        raise ValueError(f"expected '<lng> <lat>', got {token!r}")
    lng, lat = _number(parts[0]), _number(parts[1])
    return LatLng(lat=lat, lng=lng)


def parse_circle(body: str) -> Circle:
    """Parse the inside of CIRCLE (...)"""
    if ',' not in body:
        raise GeometryParseError(f"Circle without radius: {body!r}")
    center_token, radius_token = body.split(',', 1)
    try:
        center = _lng_lat(center_token)
    except ValueError as e:
        raise GeometryParseError(f"Bad circle center: {e}") from e
    try:
        radius = _number(radius_token.strip())
    except ValueError as e:
        raise GeometryParseError(f"Bad circle radius: {radius_token!r}") from e
    if radius < 0:
        raise GeometryParseError(f"Negative circle radius: {radius}")
    return Circle(center=center, radius_m=radius)


def parse_polygon(body: str) -> Result[Polygon]:
    """
    Parse the inside of POLYGON (...), single or double parenthesized.

    Vertices that are not two numbers are dropped with a warning; only the
    outer ring is read.
    """
    ring = body.strip()
    if ring.startswith('('):
        end = ring.find(')')
        ring = ring[1:end] if end != -1 else ring[1:]

    vertices = []
    dropped = []
    for token in ring.split(','):
        try:
            vertices.append(_lng_lat(token))
        except ValueError:
            dropped.append(token.strip())

    if not vertices:
        raise GeometryParseError(f"Polygon has no valid vertices: {body!r}")

    result = Result(Polygon(vertices=tuple(vertices)))
    if dropped:
        result.warn(f"Dropped {len(dropped)} unparseable polygon vertices: {dropped}")
    return result


def default_geometry(fallback_center: Optional[LatLng] = None,
                     radius_m: Optional[float] = None) -> ParsedGeometry:
    """Best-effort circle used when the vendor geometry is unusable"""
    radius = config.DEFAULT_GEOFENCE_RADIUS_M if radius_m is None else radius_m
    return ParsedGeometry(
        shape=Circle(center=fallback_center, radius_m=radius),
        anchor=fallback_center,
        defaulted=True,
    )


def parse_geometry(area: Optional[str],
                   fallback_center: Optional[LatLng] = None) -> Result[ParsedGeometry]:
    """
    Parse a vendor geometry string.

    Never raises: anything unparseable becomes a default circle, and the
    reason is returned as a warning.
    """
    if not isinstance(area, str) or not area.strip():
        return Result(default_geometry(fallback_center)).warn(
            "No geofence geometry supplied; using default circle"
        )

    match = _WKT_PATTERN.match(area)
    keyword = match.group(1).upper() if match else None

    try:
        if keyword == 'CIRCLE':
            circle = parse_circle(match.group(2))
            return Result(ParsedGeometry(shape=circle, anchor=circle.center))
        if keyword == 'POLYGON':
            polygon = parse_polygon(match.group(2))
            return Result(
                ParsedGeometry(shape=polygon.value, anchor=polygon.value.vertices[0]),
                polygon.warnings,
            )
    except GeometryParseError as e:
        logger.warning(f"Geometry parse failed, using default circle: {e}")
        return Result(default_geometry(fallback_center)).warn(f"Geometry parse failed: {e}")

    return Result(default_geometry(fallback_center)).warn(
        f"Unknown geometry keyword {keyword!r}; using default circle"
    )
