"""
Outbound ride events.

Services describe what must be announced as OutboundEvent values; the
realtime layer delivers them over the channel layer. Keeping the two apart
lets the ride lifecycle run (and be tested) without a live socket.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Tuple

# ---------------------- Group Names ----------------------

ON_DUTY_GROUP = "on_duty"
NEARBY_WATCHERS_GROUP = "nearby_watchers"


def ride_group(ride_id: int) -> str:
    return f"ride_{ride_id}"


def user_group(user_id: int) -> str:
    return f"user_{user_id}"


def rider_location_group(rider_id: int) -> str:
    return f"rider_location_{rider_id}"


# ---------------------- Event Names ----------------------

NEW_RIDE_OFFER = "new_ride_offer"
RIDE_ACCEPTED = "ride_accepted"
RIDE_UPDATED = "ride_updated"
RIDE_COMPLETED = "ride_completed"
RIDE_CANCELLED = "ride_cancelled"
RIDE_TIMEOUT = "ride_timeout"
RIDE_REMOVED_FOR_DRIVER = "ride_removed_for_driver"
NEARBY_DRIVERS = "nearby_drivers"
ALL_SEARCHING_RIDES = "all_searching_rides"
REQUEST_LOCATION_SYNC = "request_location_sync"
PASSENGER_CANCELLED_RIDE = "passenger_cancelled_ride"
RIDER_CANCELLED_RIDE = "rider_cancelled_ride"
PAYMENT_METHOD_SELECTED = "payment_method_selected"
RIDER_LOCATION_UPDATE = "rider_location_update"


@dataclass(frozen=True)
class OutboundEvent:
    """One message for one channel-layer group."""
    name: str
    payload: Dict[str, Any]
    group: str
    exclude_user_ids: Tuple[int, ...] = field(default_factory=tuple)

    def as_message(self) -> Dict[str, Any]:
        """Channel-layer message handled by the consumers' `ride_event` method."""
        return {
            "type": "ride.event",
            "event": self.name,
            "payload": self.payload,
            "exclude_user_ids": list(self.exclude_user_ids),
        }


def to_on_duty(name: str, payload: Dict[str, Any], exclude_user_ids=()) -> OutboundEvent:
    return OutboundEvent(name, payload, ON_DUTY_GROUP, tuple(exclude_user_ids))


def to_ride(name: str, ride_id: int, payload: Dict[str, Any]) -> OutboundEvent:
    return OutboundEvent(name, payload, ride_group(ride_id))


def to_user(name: str, user_id: int, payload: Dict[str, Any]) -> OutboundEvent:
    return OutboundEvent(name, payload, user_group(user_id))
