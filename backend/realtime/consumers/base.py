"""Base WebSocket consumer with shared functionality for all consumers."""

import asyncio
import logging
from typing import Any, Dict, Optional, Set

from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncJsonWebsocketConsumer

from realtime.broadcast import publish_events_async
from realtime.events import (
    CancelRide,
    InboundEventError,
    LeaveRide,
    SubscribeRide,
    parse_inbound,
)
from services.dispatch import DispatchManager, get_dispatch_manager
from services.events import REQUEST_LOCATION_SYNC, ride_group, user_group
from services.matching import OnDutyRegistry, get_on_duty_registry
from services.ride_management import (
    LocationSyncRequiredError,
    NotRideParticipantError,
    RideError,
    RideResult,
    cancel_ride,
    get_active_ride_ids,
    get_ride,
    is_ride_participant,
    serialize_ride,
)

logger = logging.getLogger(__name__)


class BaseConsumer(AsyncJsonWebsocketConsumer):
    """
    Base consumer with shared connection management and helper methods.

    Subclasses should set:
        - role_required: the user role allowed on this endpoint
        - handlers: {inbound event class: handler method name}
    and may override on_connect / on_disconnect.
    """

    role_required: Optional[str] = None
    handlers: Dict[type, str] = {
        SubscribeRide: "handle_subscribe_ride",
        LeaveRide: "handle_leave_ride",
        CancelRide: "handle_cancel_ride",
    }

    # Injected in tests; default to the process-wide instances
    registry: Optional[OnDutyRegistry] = None
    dispatch_manager: Optional[DispatchManager] = None

    def get_registry(self) -> OnDutyRegistry:
        if self.registry is not None:
            return self.registry
        return get_on_duty_registry()

    def get_dispatch_manager(self) -> DispatchManager:
        if self.dispatch_manager is not None:
            return self.dispatch_manager
        return get_dispatch_manager()

    async def connect(self):
        self.user = self.scope["user"]

        if self.user.is_anonymous:
            await self.close()
            return

        # Basic attributes available to all consumers
        self.user_id = getattr(self.user, "id", None)
        self.role = getattr(self.user, "role", None)

        # Track joined groups for cleanup
        self.joined_groups: Set[str] = set()

        if self.role_required and self.role != self.role_required:
            await self.accept()
            await self.send_error(f"This endpoint is for {self.role_required}s only", code="forbidden")
            await self.close(code=4003)
            return

        # Personal group (useful for targeted server->user messages)
        self.user_group = user_group(self.user_id)
        await self._join_group(self.user_group)

        self.get_dispatch_manager().bind_loop(asyncio.get_running_loop())

        await self.accept()
        await self._rejoin_active_rides()
        await self.on_connect()

    async def on_connect(self):
        """Override in subclass for custom connect logic."""
        await self.send_json({
            "type": "connection_established",
            "user_id": self.user_id,
            "role": self.role,
        })

    async def disconnect(self, close_code):
        """Leave all joined groups on disconnect."""
        if not hasattr(self, "joined_groups"):
            return
        try:
            for group in list(self.joined_groups):
                await self._leave_group(group)
            await self.on_disconnect(close_code)
        except Exception:
            logger.exception("Error during disconnect for user %s", getattr(self, 'user_id', 'unknown'))

    async def on_disconnect(self, close_code):
        """Override in subclass for custom disconnect logic."""
        pass

    async def receive_json(self, content: Dict[str, Any], **kwargs):
        """Parse incoming messages and route them to their handler."""
        try:
            event = parse_inbound(content)
        except InboundEventError as e:
            await self.send_error(str(e), code="invalid_message")
            return

        handler_name = self.handlers.get(type(event))
        if handler_name is None:
            await self.send_error(f"{event.type} is not available for {self.role}s", code="forbidden")
            return

        try:
            await getattr(self, handler_name)(event)
        except RideError as e:
            await self.send_ride_error(event.type, e)
        except Exception:
            logger.exception("Error handling message type %s from user %s", event.type, self.user_id)
            await self.send_error(f"Error processing {event.type}")

    # ---------------------- Group Management Helpers ----------------------

    async def _join_group(self, group_name: str):
        """Join a channel group and track it."""
        await self.channel_layer.group_add(group_name, self.channel_name)
        self.joined_groups.add(group_name)

    async def _leave_group(self, group_name: str):
        """Leave a channel group and untrack it."""
        await self.channel_layer.group_discard(group_name, self.channel_name)
        self.joined_groups.discard(group_name)

    async def _rejoin_active_rides(self):
        """Resubscribe a (re)connecting user to the rides they are part of."""
        for ride_id in await database_sync_to_async(get_active_ride_ids)(self.user):
            await self._join_group(ride_group(ride_id))

    # ---------------------- Response Helpers ----------------------

    async def send_error(self, message: str, code: str = "error", **extra):
        """Send an error message to the client."""
        await self.send_json({
            "type": "error",
            "error": code,
            "message": message,
            **extra,
        })

    async def send_ride_error(self, event_type: str, exc: RideError):
        await self.send_json({
            "type": "error",
            "event": event_type,
            **exc.as_dict(),
        })
        if isinstance(exc, LocationSyncRequiredError):
            await self.send_json({
                "type": REQUEST_LOCATION_SYNC,
                "ride_id": exc.details.get("ride_id"),
                "message": "Please resend your current location",
            })

    async def send_success(self, event_type: str, **kwargs):
        """Send a success response to the client."""
        await self.send_json({
            "type": event_type,
            **kwargs,
        })

    async def apply_result(self, result: RideResult):
        """Publish a ride operation's events and start/stop its dispatch loop."""
        manager = self.get_dispatch_manager()
        if result.ride is not None:
            if result.stop_dispatch:
                manager.stop(result.ride.id, result.stop_dispatch)
            if result.start_dispatch:
                manager.start(result.ride.id)
        await publish_events_async(result.events, self.channel_layer)

    # ---------------------- Shared Message Handlers ----------------------

    async def handle_subscribe_ride(self, event: SubscribeRide):
        if not await database_sync_to_async(is_ride_participant)(self.user, event.ride_id):
            raise NotRideParticipantError("You are not part of this ride", details={"ride_id": event.ride_id})
        await self._join_group(ride_group(event.ride_id))
        ride_data = await self._get_ride_payload(event.ride_id)
        await self.send_success("ride_data", ride=ride_data)

    async def handle_leave_ride(self, event: LeaveRide):
        await self._leave_group(ride_group(event.ride_id))
        await self.send_success("left_ride", ride_id=event.ride_id)

    async def handle_cancel_ride(self, event: CancelRide):
        result = await database_sync_to_async(cancel_ride)(self.user, event.ride_id, event.reason)
        await self.apply_result(result)
        if result.ride is not None and result.ride.customer_id != self.user_id:
            # The rider is out of this ride either way (declined or cancelled)
            await self._leave_group(ride_group(result.ride.id))
        await self.send_success(
            "cancel_ride_success",
            ride_id=event.ride_id,
            status=result.ride.status if result.ride else None,
            message=result.message,
        )

    # ---------------------- Event Handlers (from group_send) ----------------------

    async def ride_event(self, event):
        """Forward a service-level ride event to the client."""
        if self.user_id in event.get("exclude_user_ids", []):
            return
        await self.send_json({
            "type": event["event"],
            **event.get("payload", {}),
        })

    # ---------------------- Database Helpers ----------------------

    @database_sync_to_async
    def _get_ride_payload(self, ride_id: int) -> Dict[str, Any]:
        ride = get_ride(ride_id)
        return serialize_ride(ride, include_otp=ride.customer_id == self.user_id)
