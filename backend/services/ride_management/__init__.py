"""
Ride management service - Core ride lifecycle operations.

This module handles:
    - Creating rides
    - Accepting and declining rides
    - Advancing ride status
    - Cancelling and timing out rides
    - Payment method selection
    - Querying rides
"""

from .ride_lifecycle import (
    RideResult,
    RideSnapshot,
    create_ride,
    accept_ride,
    update_ride_status,
    cancel_ride,
    set_payment_method,
    timeout_ride,
    get_ride,
    get_ride_snapshot,
    get_active_ride_ids,
    is_ride_participant,
    list_searching_rides,
    list_user_rides,
    serialize_ride,
)

from .exceptions import (
    RideError,
    InvalidRideRequestError,
    RideNotFoundError,
    NotRideParticipantError,
    RideNotAvailableError,
    RideAlreadyCompletedError,
    VehicleMismatchError,
    DriverTooFarError,
    DriverNotAvailableError,
    LocationSyncRequiredError,
)

__all__ = [
    # Results
    "RideResult",
    "RideSnapshot",
    # Lifecycle operations
    "create_ride",
    "accept_ride",
    "update_ride_status",
    "cancel_ride",
    "set_payment_method",
    "timeout_ride",
    # Queries
    "get_ride",
    "get_ride_snapshot",
    "get_active_ride_ids",
    "is_ride_participant",
    "list_searching_rides",
    "list_user_rides",
    "serialize_ride",
    # Exceptions
    "RideError",
    "InvalidRideRequestError",
    "RideNotFoundError",
    "NotRideParticipantError",
    "RideNotAvailableError",
    "RideAlreadyCompletedError",
    "VehicleMismatchError",
    "DriverTooFarError",
    "DriverNotAvailableError",
    "LocationSyncRequiredError",
]
