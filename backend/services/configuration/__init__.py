"""
Runtime configuration backed by AppSetting rows.

This module handles:
    - Cached lookup of the rider search radius
    - Cache invalidation pushed from AppSetting changes
"""

from .radius import (
    DistanceRadiusProvider,
    get_distance_radius_provider,
    invalidate_distance_radius_cache,
)

__all__ = [
    "DistanceRadiusProvider",
    "get_distance_radius_provider",
    "invalidate_distance_radius_cache",
]
