"""Custom exceptions for ride management."""

from typing import Any, Dict, Optional


class RideError(Exception):
    """Base class for ride operation failures reported back to the caller."""
    error_code = "ride_error"
    http_status = 400

    def __init__(self, message: str = "", details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def as_dict(self) -> Dict[str, Any]:
        return {
            "error": self.error_code,
            "message": self.message,
            **self.details,
        }


class InvalidRideRequestError(RideError):
    """Raised when ride input fails validation."""
    error_code = "invalid_request"
    http_status = 400


class RideNotFoundError(RideError):
    """Raised when a ride cannot be found."""
    error_code = "ride_not_found"
    http_status = 404


class NotRideParticipantError(RideError):
    """Raised when the caller is not allowed to act on the ride."""
    error_code = "not_ride_participant"
    http_status = 403


class RideNotAvailableError(RideError):
    """Raised when a ride is not in an available state for the operation."""
    error_code = "ride_not_available"
    http_status = 409


class RideAlreadyCompletedError(RideNotAvailableError):
    """Raised when a completed ride would be mutated."""
    error_code = "ride_already_completed"


class VehicleMismatchError(RideNotAvailableError):
    """Raised when the rider's vehicle differs from the requested one."""
    error_code = "vehicle_mismatch"


class DriverTooFarError(RideNotAvailableError):
    """Raised when the rider is outside the search radius of the pickup."""
    error_code = "rider_too_far"


class DriverNotAvailableError(RideNotAvailableError):
    """Raised when rider is not on duty with a usable location."""
    error_code = "rider_not_on_duty"


class LocationSyncRequiredError(RideNotAvailableError):
    """Raised when the rider is on duty but their presence record was lost; the client should resend its location."""
    error_code = "location_sync_required"
