"""
Evacuation Schema
=================

Data models exchanged between the Agent, the Coordinator and the Backend.

Models:
- Coordinate: A latitude/longitude pair in degrees
- Shelter: A shelter candidate (flat on the wire: id, name, lat, lng)
- CombinedData: The Backend's answer to a location lookup
- Route: Ordered waypoints toward a destination
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Coordinate(BaseModel):
    """
    A point on the earth's surface.

    Immutable and hashable, so it can be shared freely between the
    connection handler and the regeneration timer.
    """

    model_config = ConfigDict(frozen=True, extra="ignore", allow_inf_nan=False)

    lat: float
    """Latitude in degrees."""

    lng: float
    """Longitude in degrees."""

    def __repr__(self) -> str:
        return f"Coordinate({self.lat:.6f}, {self.lng:.6f})"


class Shelter(BaseModel):
    """
    A shelter candidate.

    Produced once per session by the Backend and never mutated afterwards.
    """

    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    id: int
    name: str
    lat: float
    lng: float

    @property
    def location(self) -> Coordinate:
        """Where the shelter is."""
        return Coordinate(lat=self.lat, lng=self.lng)


class CombinedData(BaseModel):
    """
    Map descriptor plus shelter list, as returned by the Backend.

    The map descriptor is opaque to the Coordinator: it is stored and passed
    through, never inspected.
    """

    model_config = ConfigDict(frozen=True)

    map: Any = None
    shelters: tuple[Shelter, ...] = Field(default_factory=tuple)


Route = tuple[Coordinate, ...]
"""
Waypoints from the current position to the destination, excluding the start
and including the destination. The empty tuple means "already arrived".
"""
