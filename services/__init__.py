"""
Services Module
===============
Backend process for Hinan: map descriptor and shelter candidates.
"""

from .shelter_data import (
    DEFAULT_SHELTER_COUNT,
    build_combined_data,
    build_map_descriptor,
)

__all__ = [
    "DEFAULT_SHELTER_COUNT",
    "build_combined_data",
    "build_map_descriptor",
]
