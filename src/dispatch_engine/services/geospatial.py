"""Geospatial helper functions."""

from __future__ import annotations

import functools
import math
from typing import Sequence

from shapely.geometry import Point, Polygon
from shapely.prepared import PreparedGeometry, prep

from ..models.domain import GeoPoint, ServiceArea

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Compute distance between two coordinates using the Haversine formula."""

    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def distance_between(origin: GeoPoint, destination: GeoPoint) -> float:
    return haversine_km(origin.lat, origin.lon, destination.lat, destination.lon)


def bearing_degrees(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate the initial bearing from (lat1, lon1) to (lat2, lon2)."""

    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_lambda = math.radians(lon2 - lon1)
    y = math.sin(delta_lambda) * math.cos(phi2)
    x = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(delta_lambda)
    bearing = math.degrees(math.atan2(y, x))
    return (bearing + 360) % 360


def compass_heading(bearing: float) -> str:
    if bearing < 45 or bearing > 315:
        return "North"
    if bearing < 135:
        return "East"
    if bearing < 225:
        return "South"
    return "West"


@functools.lru_cache(maxsize=1024)
def _prepared_area(vertices: tuple[tuple[float, float], ...]) -> PreparedGeometry:
    return prep(Polygon([(lng, lat) for lat, lng in vertices]))


def area_contains(area: ServiceArea, point: GeoPoint) -> bool:
    """Geofence check; points on the boundary count as inside."""

    return _prepared_area(area.vertices).covers(Point(point.lon, point.lat))


def any_area_contains(areas: Sequence[ServiceArea], point: GeoPoint) -> bool:
    return any(area_contains(area, point) for area in areas)
