"""Rider WebSocket consumer: duty status, live location and ride handling."""

import logging
from typing import Any, Dict, List, Optional

from channels.db import database_sync_to_async
from django.conf import settings

from accounts.models import User
from common.utils.geo import parse_coordinates
from realtime.broadcast import publish_events_async, should_broadcast
from realtime.events import (
    AcceptRide,
    GoOffDuty,
    GoOnDuty,
    RequestSearchingRides,
    UpdateLocation,
    UpdateRideStatus,
)
from services import events
from services.ride_management import (
    accept_ride,
    list_searching_rides,
    serialize_ride,
    update_ride_status,
)
from .base import BaseConsumer

logger = logging.getLogger(__name__)


class RiderConsumer(BaseConsumer):
    """
    WebSocket consumer for riders.

    Handles:
        - Going on/off duty (on-duty registry + on-duty broadcast group)
        - Location pings (registry update, customer tracking, nearby refresh)
        - Accepting rides, advancing their status, declining/cancelling
    """

    role_required = User.ROLE_RIDER
    handlers = {
        **BaseConsumer.handlers,
        GoOnDuty: "handle_go_on_duty",
        GoOffDuty: "handle_go_off_duty",
        UpdateLocation: "handle_update_location",
        RequestSearchingRides: "handle_request_searching_rides",
        AcceptRide: "handle_accept_ride",
        UpdateRideStatus: "handle_update_ride_status",
    }

    async def on_connect(self):
        """Pick up an existing on-duty entry if this is a reconnect."""
        self.vehicle_type = await self._get_vehicle_type()

        registry = self.get_registry()
        presence = registry.reattach(self.user_id, self.channel_name)
        if presence is not None:
            await self._join_on_duty()

        await self.send_json({
            "type": "connection_established",
            "user_id": self.user_id,
            "role": self.role,
            "vehicle_type": self.vehicle_type,
            "on_duty": presence is not None,
        })

    async def on_disconnect(self, close_code):
        """Keep the rider on duty for a grace period in case they reconnect."""
        registry = self.get_registry()
        if registry.is_on_duty(self.user_id) or registry.is_group_member(self.user_id):
            registry.schedule_removal(
                self.user_id,
                self.channel_name,
                settings.DRIVER_DISCONNECT_GRACE_SECONDS,
            )

    # ---------------------- Message Handlers ----------------------

    async def handle_go_on_duty(self, event: GoOnDuty):
        if not self.vehicle_type:
            await self.send_error("A rider profile with a vehicle type is required to go on duty", code="no_vehicle")
            return

        presence = self.get_registry().set_on_duty(
            self.user_id,
            event.coordinates,
            self.vehicle_type,
            connection=self.channel_name,
            name=self.user.display_name,
        )
        if presence is None:
            await self.send_error("Valid latitude and longitude are required to go on duty", code="invalid_coordinates")
            return

        await self._join_on_duty()
        await self.send_success("on_duty", coordinates=presence.coords.as_dict(), vehicle_type=self.vehicle_type)
        await self._send_searching_rides()
        await self._refresh_watchers(force=True)

    async def handle_go_off_duty(self, event: GoOffDuty):
        registry = self.get_registry()
        registry.set_off_duty(self.user_id)
        registry.leave_group(self.user_id)
        await self._leave_group(events.ON_DUTY_GROUP)
        await self.send_success("off_duty")
        await self._refresh_watchers(force=True)

    async def handle_update_location(self, event: UpdateLocation):
        coords = parse_coordinates(event.coordinates)
        if coords is None:
            await self.send_error("update_location requires valid latitude and longitude", code="invalid_coordinates")
            return

        presence = self.get_registry().update_location(
            self.user_id,
            coords,
            vehicle_type=self.vehicle_type,
            connection=self.channel_name,
            name=self.user.display_name,
        )
        if presence is None:
            # Off duty: nothing to track
            return

        if events.ON_DUTY_GROUP not in self.joined_groups:
            await self._join_on_duty()

        await publish_events_async([
            events.OutboundEvent(
                events.RIDER_LOCATION_UPDATE,
                {"rider_id": self.user_id, "coordinates": coords.as_dict()},
                events.rider_location_group(self.user_id),
            )
        ], self.channel_layer)
        await self._refresh_watchers()

    async def handle_request_searching_rides(self, event: RequestSearchingRides):
        await self._send_searching_rides()

    async def handle_accept_ride(self, event: AcceptRide):
        result = await database_sync_to_async(accept_ride)(
            self.user, event.ride_id, registry=self.get_registry()
        )
        # Join before publishing so this connection gets the ride's updates
        await self._join_group(events.ride_group(result.ride.id))
        await self.apply_result(result)
        ride_data = await database_sync_to_async(serialize_ride)(result.ride)
        await self.send_success("accept_ride_success", ride=ride_data, message=result.message)

    async def handle_update_ride_status(self, event: UpdateRideStatus):
        result = await database_sync_to_async(update_ride_status)(
            event.ride_id, event.status, actor=self.user
        )
        await self.apply_result(result)
        await self.send_success(
            "update_ride_status_success",
            ride_id=event.ride_id,
            status=result.ride.status,
            changed=result.changed,
            message=result.message,
        )

    # ---------------------- Helpers ----------------------

    async def _join_on_duty(self):
        await self._join_group(events.ON_DUTY_GROUP)
        self.get_registry().join_group(self.user_id, self.channel_name)

    async def _send_searching_rides(self):
        rides = await self._get_searching_rides()
        await self.send_success(events.ALL_SEARCHING_RIDES, rides=rides)

    async def _refresh_watchers(self, force: bool = False):
        """Ask customers watching a zone to recompute their nearby riders list."""
        if not force and not should_broadcast(f"nearby:{self.user_id}", settings.NEARBY_REFRESH_MIN_INTERVAL):
            return
        try:
            await self.channel_layer.group_send(events.NEARBY_WATCHERS_GROUP, {"type": "nearby.refresh"})
        except Exception:
            logger.exception("Failed to notify nearby watchers for rider %s", self.user_id)

    # ---------------------- Database Helpers ----------------------

    @database_sync_to_async
    def _get_vehicle_type(self) -> Optional[str]:
        profile = getattr(self.user, "driver_profile", None)
        return getattr(profile, "vehicle_type", None)

    @database_sync_to_async
    def _get_searching_rides(self) -> List[Dict[str, Any]]:
        return [serialize_ride(ride) for ride in list_searching_rides(exclude_rider_id=self.user_id)]
