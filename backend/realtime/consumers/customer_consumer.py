"""Customer WebSocket consumer: ride requests, payment and rider tracking."""

import logging
from typing import Any, Dict, List, Optional

from channels.db import database_sync_to_async

from accounts.models import User
from common.utils.geo import Coordinates, parse_coordinates
from realtime.events import (
    CreateRide,
    SetPaymentMethod,
    SubscribeRiderLocation,
    SubscribeZone,
)
from rides.models import Ride
from services import events
from services.matching import find_nearby_drivers
from services.ride_management import (
    NotRideParticipantError,
    create_ride,
    serialize_ride,
    set_payment_method,
)
from services.ride_management.state_machine import ASSIGNED_STATUSES
from .base import BaseConsumer

logger = logging.getLogger(__name__)


class CustomerConsumer(BaseConsumer):
    """
    WebSocket consumer for customers.

    Handles:
        - Creating rides (starts the ride's dispatch loop)
        - Cancelling rides and choosing the payment method
        - Watching on-duty riders around a point (subscribe_zone)
        - Following the assigned rider's live location
    """

    role_required = User.ROLE_CUSTOMER
    handlers = {
        **BaseConsumer.handlers,
        CreateRide: "handle_create_ride",
        SetPaymentMethod: "handle_set_payment_method",
        SubscribeZone: "handle_subscribe_zone",
        SubscribeRiderLocation: "handle_subscribe_rider_location",
    }

    async def on_connect(self):
        self.zone: Optional[Coordinates] = None
        await super().on_connect()

    # ---------------------- Message Handlers ----------------------

    async def handle_create_ride(self, event: CreateRide):
        result = await database_sync_to_async(create_ride)(self.user, event.data)
        await self._join_group(events.ride_group(result.ride.id))
        await self.apply_result(result)
        ride_data = await database_sync_to_async(serialize_ride)(result.ride, include_otp=True)
        await self.send_success(
            "ride_created",
            ride=ride_data,
            fares=(result.extra or {}).get("fares", {}),
            message=result.message,
        )

    async def handle_set_payment_method(self, event: SetPaymentMethod):
        result = await database_sync_to_async(set_payment_method)(
            self.user, event.ride_id, event.payment_method
        )
        await self.apply_result(result)
        await self.send_success(
            "payment_method_success",
            ride_id=event.ride_id,
            payment_method=result.ride.payment_method,
            message=result.message,
        )

    async def handle_subscribe_zone(self, event: SubscribeZone):
        coords = parse_coordinates(event.coordinates)
        if coords is None:
            await self.send_error("subscribe_zone requires valid latitude and longitude", code="invalid_coordinates")
            return
        self.zone = coords
        await self._join_group(events.NEARBY_WATCHERS_GROUP)
        await self._send_nearby_riders()

    async def handle_subscribe_rider_location(self, event: SubscribeRiderLocation):
        if not await self._is_assigned_rider(event.rider_id):
            raise NotRideParticipantError(
                "You can only track the rider assigned to your ride",
                details={"rider_id": event.rider_id},
            )
        await self._join_group(events.rider_location_group(event.rider_id))

        presence = self.get_registry().get(event.rider_id)
        await self.send_success(
            events.RIDER_LOCATION_UPDATE,
            rider_id=event.rider_id,
            coordinates=presence.coords.as_dict() if presence else None,
        )

    # ---------------------- Event Handlers (from group_send) ----------------------

    async def nearby_refresh(self, event):
        """An on-duty rider moved or toggled duty; recompute this zone."""
        if self.zone is not None:
            await self._send_nearby_riders()

    # ---------------------- Helpers ----------------------

    async def _send_nearby_riders(self):
        riders = await self._find_nearby(self.zone)
        await self.send_success(
            events.NEARBY_DRIVERS,
            coordinates=self.zone.as_dict(),
            riders=riders,
        )

    # ---------------------- Database Helpers ----------------------

    @database_sync_to_async
    def _find_nearby(self, coords: Coordinates) -> List[Dict[str, Any]]:
        # The radius lookup may hit the database
        drivers = find_nearby_drivers(coords.latitude, coords.longitude, registry=self.get_registry())
        return [driver.as_dict() for driver in drivers]

    @database_sync_to_async
    def _is_assigned_rider(self, rider_id: int) -> bool:
        return Ride.objects.filter(
            customer_id=self.user_id,
            rider_id=rider_id,
            status__in=ASSIGNED_STATUSES,
        ).exists()
