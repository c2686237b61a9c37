"""
Rider presence and proximity matching.

This module handles:
    - The in-memory on-duty rider registry
    - Disconnect grace handling for on-duty riders
    - Radius-bounded proximity search
"""

from .registry import (
    DriverPresence,
    NearbyDriver,
    OnDutyRegistry,
    get_on_duty_registry,
)
from .proximity import find_nearby_drivers

__all__ = [
    "DriverPresence",
    "NearbyDriver",
    "OnDutyRegistry",
    "get_on_duty_registry",
    "find_nearby_drivers",
]
