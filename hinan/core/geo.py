"""
GeoMath
=======

Great-circle distance and straight-line interpolation.

Interpolation is linear in degrees rather than geodesic; routes span a few
kilometres at most.
"""

import math

from hinan.core.schema import Coordinate, Route

EARTH_RADIUS_M = 6_371_000.0


def distance_meters(a: Coordinate, b: Coordinate) -> float:
    """Haversine distance between two coordinates, in meters."""
    lat1, lng1, lat2, lng2 = map(math.radians, [a.lat, a.lng, b.lat, b.lng])

    dlat = lat2 - lat1
    dlng = lng2 - lng1

    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlng / 2) ** 2
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))
    return EARTH_RADIUS_M * c


def interpolate(start: Coordinate, end: Coordinate, step_count: int) -> Route:
    """
    Split the segment start -> end into `step_count` equal increments.

    Returns `step_count` waypoints; the start point is not included and the
    last waypoint is exactly `end`.

    Raises
    ------
    ValueError
        If step_count < 1
    """
    if step_count < 1:
        raise ValueError(f"step_count must be >= 1, got {step_count}")

    d_lat = (end.lat - start.lat) / step_count
    d_lng = (end.lng - start.lng) / step_count

    waypoints = [
        Coordinate(lat=start.lat + d_lat * i, lng=start.lng + d_lng * i)
        for i in range(1, step_count)
    ]
    # Pin the destination so accumulated float error never leaves it short.
    waypoints.append(end)
    return tuple(waypoints)
