"""
Typed inbound WebSocket messages.

Clients send JSON objects with a `type` key. `parse_inbound` turns them into
one of the dataclasses below (or raises InboundEventError) so consumers route
on types rather than poking at raw dicts.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


class InboundEventError(ValueError):
    """Raised when a client message is malformed or of an unknown type."""


def _coordinates(data: Dict[str, Any]) -> Dict[str, Any]:
    coords = data.get("coordinates")
    if coords is None:
        # Flat {"latitude": .., "longitude": ..} messages are accepted too
        coords = {key: data.get(key) for key in ("latitude", "longitude", "heading")}
    if not isinstance(coords, dict):
        raise InboundEventError("coordinates must be an object")
    return coords


def _positive_id(data: Dict[str, Any], key: str) -> int:
    value = data.get(key)
    if value is None or isinstance(value, bool):
        raise InboundEventError(f"{key} is required")
    try:
        number = int(value)
    except (TypeError, ValueError, OverflowError):
        raise InboundEventError(f"Invalid {key}")
    if number <= 0 or (isinstance(value, float) and value != number):
        raise InboundEventError(f"Invalid {key}")
    return number


@dataclass(frozen=True)
class GoOnDuty:
    type = "go_on_duty"
    coordinates: Dict[str, Any]

    @classmethod
    def from_message(cls, data):
        return cls(coordinates=_coordinates(data))


@dataclass(frozen=True)
class GoOffDuty:
    type = "go_off_duty"

    @classmethod
    def from_message(cls, data):
        return cls()


@dataclass(frozen=True)
class UpdateLocation:
    type = "update_location"
    coordinates: Dict[str, Any]

    @classmethod
    def from_message(cls, data):
        return cls(coordinates=_coordinates(data))


@dataclass(frozen=True)
class RequestSearchingRides:
    type = "request_searching_rides"

    @classmethod
    def from_message(cls, data):
        return cls()


@dataclass(frozen=True)
class CreateRide:
    type = "create_ride"
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_message(cls, data):
        return cls(data={key: value for key, value in data.items() if key != "type"})


@dataclass(frozen=True)
class AcceptRide:
    type = "accept_ride"
    ride_id: int

    @classmethod
    def from_message(cls, data):
        return cls(ride_id=_positive_id(data, "ride_id"))


@dataclass(frozen=True)
class UpdateRideStatus:
    type = "update_ride_status"
    ride_id: int
    status: str

    @classmethod
    def from_message(cls, data):
        status = data.get("status")
        if not isinstance(status, str) or not status:
            raise InboundEventError("status is required")
        return cls(ride_id=_positive_id(data, "ride_id"), status=status)


@dataclass(frozen=True)
class CancelRide:
    type = "cancel_ride"
    ride_id: int
    reason: Optional[str] = None

    @classmethod
    def from_message(cls, data):
        reason = data.get("reason")
        if reason is not None and not isinstance(reason, str):
            raise InboundEventError("reason must be a string")
        return cls(ride_id=_positive_id(data, "ride_id"), reason=reason)


@dataclass(frozen=True)
class SetPaymentMethod:
    type = "set_payment_method"
    ride_id: int
    payment_method: str

    @classmethod
    def from_message(cls, data):
        method = data.get("payment_method")
        if not isinstance(method, str) or not method:
            raise InboundEventError("payment_method is required")
        return cls(ride_id=_positive_id(data, "ride_id"), payment_method=method.upper())


@dataclass(frozen=True)
class SubscribeZone:
    type = "subscribe_zone"
    coordinates: Dict[str, Any]

    @classmethod
    def from_message(cls, data):
        return cls(coordinates=_coordinates(data))


@dataclass(frozen=True)
class SubscribeRide:
    type = "subscribe_ride"
    ride_id: int

    @classmethod
    def from_message(cls, data):
        return cls(ride_id=_positive_id(data, "ride_id"))


@dataclass(frozen=True)
class LeaveRide:
    type = "leave_ride"
    ride_id: int

    @classmethod
    def from_message(cls, data):
        return cls(ride_id=_positive_id(data, "ride_id"))


@dataclass(frozen=True)
class SubscribeRiderLocation:
    type = "subscribe_rider_location"
    rider_id: int

    @classmethod
    def from_message(cls, data):
        return cls(rider_id=_positive_id(data, "rider_id"))


INBOUND_EVENTS = {
    event_cls.type: event_cls
    for event_cls in (
        GoOnDuty,
        GoOffDuty,
        UpdateLocation,
        RequestSearchingRides,
        CreateRide,
        AcceptRide,
        UpdateRideStatus,
        CancelRide,
        SetPaymentMethod,
        SubscribeZone,
        SubscribeRide,
        LeaveRide,
        SubscribeRiderLocation,
    )
}


def parse_inbound(data: Any):
    """Build the typed event for a decoded client message."""
    if not isinstance(data, dict):
        raise InboundEventError("Message must be a JSON object")

    msg_type = data.get("type")
    if not msg_type:
        raise InboundEventError("Message type is required")

    event_cls = INBOUND_EVENTS.get(msg_type)
    if event_cls is None:
        raise InboundEventError(f"Unknown message type: {msg_type}")
    return event_cls.from_message(data)
