"""
Ride dispatch service.

This module handles:
    - Per-ride search/timeout controllers
    - Expiring searching rides left without a controller
"""

from .controller import (
    DatabaseRideStore,
    DispatchController,
    DispatchManager,
    get_dispatch_manager,
)
from .sweeper import dispatch_budget_seconds, expire_stale_rides

__all__ = [
    "DatabaseRideStore",
    "DispatchController",
    "DispatchManager",
    "get_dispatch_manager",
    "dispatch_budget_seconds",
    "expire_stale_rides",
]
