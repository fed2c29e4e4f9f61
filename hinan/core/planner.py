"""
Route Planner
=============

Turns (start, end) into a Route, or into the empty "arrived" Route when the
two points are close enough.
"""

import math
from typing import Optional

from hinan.core.geo import distance_meters, interpolate
from hinan.core.schema import Coordinate, Route

STEP_LENGTH_M = 10.0
"""Nominal distance covered by one waypoint step."""

ARRIVAL_STEP_THRESHOLD = 2
"""Fewer steps than this counts as arrived."""

MAX_ROUTE_STEPS = 100_000
"""Upper bound on waypoints per route (1000 km at STEP_LENGTH_M)."""


def plan_route(start: Optional[Coordinate], end: Optional[Coordinate]) -> Route:
    """
    Plan a straight-line route from start to end.

    Pure and idempotent. Returns the empty Route when either endpoint is
    missing, or when the distance yields fewer than ARRIVAL_STEP_THRESHOLD
    steps. The latter is the single source of the completion signal.

    Routes longer than MAX_ROUTE_STEPS steps are spread over MAX_ROUTE_STEPS
    waypoints, so each step covers more than STEP_LENGTH_M.
    """
    if start is None or end is None:
        return ()

    distance = distance_meters(start, end)
    step_count = min(math.floor(distance / STEP_LENGTH_M), MAX_ROUTE_STEPS)

    if step_count < ARRIVAL_STEP_THRESHOLD:
        return ()

    return interpolate(start, end, step_count)
