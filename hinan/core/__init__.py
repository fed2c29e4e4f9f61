"""
Hinan Core: Geometry and Route Planning
=======================================

Pure, stateless building blocks shared by every process.

Public API:
- Coordinate: Immutable lat/lng value
- Shelter: Shelter candidate supplied by the Backend
- CombinedData: Backend response (opaque map + shelters)
- Route: Tuple of waypoints, empty meaning "arrived"
- distance_meters / interpolate: GeoMath
- plan_route: Route Planner
"""

from hinan.core.schema import (
    Coordinate,
    Shelter,
    CombinedData,
    Route,
)
from hinan.core.geo import EARTH_RADIUS_M, distance_meters, interpolate
from hinan.core.planner import (
    ARRIVAL_STEP_THRESHOLD,
    MAX_ROUTE_STEPS,
    STEP_LENGTH_M,
    plan_route,
)

__all__ = [
    "Coordinate",
    "Shelter",
    "CombinedData",
    "Route",
    "EARTH_RADIUS_M",
    "distance_meters",
    "interpolate",
    "ARRIVAL_STEP_THRESHOLD",
    "MAX_ROUTE_STEPS",
    "STEP_LENGTH_M",
    "plan_route",
]
