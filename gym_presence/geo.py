"""Geospatial utilities (no external dependencies)."""

from __future__ import annotations

import math

from gym_presence.models import Coordinate

EARTH_RADIUS_M = 6_371_000.0  # mean Earth radius in meters


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Compute Haversine distance in meters between two lat/lon points.

    Args:
        lat1: Latitude 1 in degrees.
        lon1: Longitude 1 in degrees.
        lat2: Latitude 2 in degrees.
        lon2: Longitude 2 in degrees.

    Returns:
        Distance in meters.
    """

    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2.0) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2.0) ** 2
    c = 2.0 * math.atan2(math.sqrt(a), math.sqrt(1.0 - a))
    return EARTH_RADIUS_M * c


def distance_m(a: Coordinate, b: Coordinate) -> float:
    """Great-circle distance between two coordinates."""

    return haversine_m(a.latitude, a.longitude, b.latitude, b.longitude)


def is_inside_circle(point: Coordinate, center: Coordinate, radius_m: float) -> bool:
    """Check whether a point is inside or on the boundary of a circle geofence."""

    return distance_m(point, center) <= radius_m


def coord_key(lat: float, lon: float, precision: int = 4) -> str:
    """Build a stable grid key by rounding coordinates.

    Notes:
        Precision=4 is ~11m of latitude; two points in the same cell share a key.
    """

    return f"{round(lat, precision):.{precision}f},{round(lon, precision):.{precision}f}"


def offset(origin: Coordinate, north_m: float, east_m: float) -> Coordinate:
    """Shift a coordinate by a small metric offset (flat-earth approximation)."""

    d_lat = north_m / EARTH_RADIUS_M
    d_lon = east_m / (EARTH_RADIUS_M * math.cos(math.radians(origin.latitude)))
    return Coordinate(
        latitude=origin.latitude + math.degrees(d_lat),
        longitude=origin.longitude + math.degrees(d_lon),
    )


def bounding_box(center: Coordinate, radius_m: float) -> tuple[float, float, float, float]:
    """Return (min_lon, min_lat, max_lon, max_lat) of a square enclosing the circle."""

    sw = offset(center, -radius_m, -radius_m)
    ne = offset(center, radius_m, radius_m)
    return sw.longitude, sw.latitude, ne.longitude, ne.latitude
