"""
Shelter Data Service
====================
Generates the map descriptor and shelter candidates for a location.

Shelters are scattered 0.001-0.003 degrees (roughly 100-300 m) from the
requested location on each axis, with a random sign per axis.
"""

import random
import string
from typing import Any, Dict, Optional

from hinan.core.schema import CombinedData, Coordinate, Shelter

DEFAULT_SHELTER_COUNT = 3
MIN_OFFSET_DEG = 0.001
MAX_OFFSET_DEG = 0.003
MAP_RADIUS_KM = 3


def build_map_descriptor(location: Coordinate) -> Dict[str, Any]:
    """Placeholder map data around a location."""
    return {
        "area": f"Map data around ({location.lat}, {location.lng}) within {MAP_RADIUS_KM}km",
    }


def _random_offset(rng: random.Random) -> float:
    magnitude = rng.uniform(MIN_OFFSET_DEG, MAX_OFFSET_DEG)
    return magnitude if rng.random() < 0.5 else -magnitude


def _shelter_name(index: int) -> str:
    letters = string.ascii_uppercase
    if index < len(letters):
        return f"Shelter {letters[index]}"
    return f"Shelter {index + 1}"


def build_combined_data(
    location: Coordinate,
    rng: Optional[random.Random] = None,
    count: int = DEFAULT_SHELTER_COUNT,
) -> CombinedData:
    """
    Build the Backend response for a location.

    Parameters
    ----------
    location : Coordinate
        Where the Agent is
    rng : random.Random, optional
        Random source (pass a seeded one for reproducible output)
    count : int
        Number of shelters to generate

    Returns
    -------
    CombinedData
        Map descriptor plus `count` shelters with ids 1..count
    """
    if count < 0:
        raise ValueError("count must be non-negative")
    rng = rng or random.Random()

    shelters = tuple(
        Shelter(
            id=i + 1,
            name=_shelter_name(i),
            lat=location.lat + _random_offset(rng),
            lng=location.lng + _random_offset(rng),
        )
        for i in range(count)
    )
    return CombinedData(map=build_map_descriptor(location), shelters=shelters)
