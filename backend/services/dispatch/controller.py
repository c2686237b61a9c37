"""
Per-ride dispatch loop.

While a ride is SEARCHING_FOR_RIDER its controller wakes up every
`interval` seconds, re-reads the ride from the database, publishes the
riders currently in range to the ride's group, and after `max_retries`
ticks times the ride out. The database is the only source of truth: a ride
accepted or cancelled through another connection is noticed on the next
tick even if nobody called `stop()`.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Awaitable, Callable, Dict, List, Optional

from channels.db import database_sync_to_async
from django.conf import settings

from rides.models import STATUS_SEARCHING
from services import events
from services.configuration import DistanceRadiusProvider, get_distance_radius_provider
from services.events import OutboundEvent
from services.matching import OnDutyRegistry, find_nearby_drivers, get_on_duty_registry
from services.ride_management import RideResult, RideSnapshot, get_ride_snapshot, timeout_ride

logger = logging.getLogger(__name__)

Publisher = Callable[[List[OutboundEvent]], Awaitable[None]]

STOP_RESOLVED = "resolved"
STOP_SHUTDOWN = "shutdown"


class DatabaseRideStore:
    """Async access to the ride rows the dispatch loop needs."""

    async def get_snapshot(self, ride_id: int) -> Optional[RideSnapshot]:
        return await database_sync_to_async(get_ride_snapshot)(ride_id)

    async def timeout(self, ride_id: int) -> RideResult:
        return await database_sync_to_async(timeout_ride)(ride_id)


async def _default_publisher(outbound: List[OutboundEvent]):
    from realtime.broadcast import publish_events_async
    await publish_events_async(outbound)


class DispatchController:
    """Search/timeout loop for a single ride."""

    def __init__(
        self,
        ride_id: int,
        store,
        publish: Publisher,
        registry: OnDutyRegistry,
        radius_provider: DistanceRadiusProvider,
        interval: float,
        max_retries: int,
        on_stop: Optional[Callable[["DispatchController"], None]] = None,
    ):
        self.ride_id = ride_id
        self.store = store
        self.publish = publish
        self.registry = registry
        self.radius_provider = radius_provider
        self.interval = interval
        self.max_retries = max_retries
        self.retries = 0
        self.stop_reason: Optional[str] = None
        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self._on_stop = on_stop
        self._task: Optional[asyncio.Task] = None
        self._ticking = False

    @property
    def stopped(self) -> bool:
        return self.stop_reason is not None

    def start(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self.loop = loop or asyncio.get_running_loop()
        self._task = self.loop.create_task(self._run())
        logger.info("Dispatch loop started for ride %s (every %ss, %d retries)",
                    self.ride_id, self.interval, self.max_retries)

    def stop(self, reason: str):
        """Stop the loop. Only the first call has any effect."""
        if self.stopped:
            return
        self.stop_reason = reason
        # A tick in flight finishes and then sees the flag
        if self._task is not None and not self._ticking and not self._task.done():
            self._task.cancel()
        logger.info("Dispatch loop for ride %s stopped (%s) after %d tick(s)", self.ride_id, reason, self.retries)
        if self._on_stop is not None:
            self._on_stop(self)

    async def wait(self):
        """Wait for the loop task to finish (used by shutdown and tests)."""
        if self._task is None:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            pass

    async def _run(self):
        while not self.stopped:
            await asyncio.sleep(self.interval)
            if self.stopped:
                break
            self._ticking = True
            try:
                await self.tick()
            except Exception:
                logger.exception("Dispatch tick failed for ride %s", self.ride_id)
            finally:
                self._ticking = False

    async def tick(self):
        """One pass: re-check the ride, match riders, enforce the retry budget."""
        self.retries += 1

        try:
            snapshot = await self.store.get_snapshot(self.ride_id)
        except Exception:
            logger.exception("Could not read ride %s, will retry", self.ride_id)
            if self.retries >= self.max_retries:
                await self._expire()
            return

        if snapshot is None or snapshot.status != STATUS_SEARCHING:
            self.stop(STOP_RESOLVED)
            return

        if self.retries >= self.max_retries:
            await self._expire()
            return

        await self._publish_nearby(snapshot)

    async def _publish_nearby(self, snapshot: RideSnapshot):
        try:
            drivers = await database_sync_to_async(find_nearby_drivers)(
                snapshot.pickup_latitude,
                snapshot.pickup_longitude,
                exclude_ids=snapshot.blacklisted_rider_ids,
                vehicle_type=snapshot.vehicle,
                registry=self.registry,
                radius_provider=self.radius_provider,
            )
            logger.debug("Ride %s tick %d: %d rider(s) in range", self.ride_id, self.retries, len(drivers))
            await self.publish([events.to_ride(events.NEARBY_DRIVERS, self.ride_id, {
                "ride_id": self.ride_id,
                "riders": [driver.as_dict() for driver in drivers],
                "attempt": self.retries,
                "max_attempts": self.max_retries,
            })])
        except Exception:
            logger.exception("Failed to publish nearby riders for ride %s", self.ride_id)

    async def _expire(self):
        # Final re-check; an accept may have landed since the last read
        snapshot = await self.store.get_snapshot(self.ride_id)
        if snapshot is None or snapshot.status != STATUS_SEARCHING:
            self.stop(STOP_RESOLVED)
            return

        result = await self.store.timeout(self.ride_id)
        if result.changed:
            try:
                await self.publish(result.events)
            except Exception:
                logger.exception("Failed to publish timeout for ride %s", self.ride_id)
        self.stop(result.stop_dispatch or STOP_RESOLVED)


class DispatchManager:
    """
    Owns the dispatch controllers of this process, one per searching ride.

    `start` and `stop` are idempotent. Both may be called from worker
    threads (ORM code run through database_sync_to_async or sync views);
    the work is then handed to the event loop with call_soon_threadsafe.
    """

    def __init__(
        self,
        store=None,
        publish: Optional[Publisher] = None,
        registry: Optional[OnDutyRegistry] = None,
        radius_provider: Optional[DistanceRadiusProvider] = None,
        interval: Optional[float] = None,
        max_retries: Optional[int] = None,
    ):
        self.store = store or DatabaseRideStore()
        self.publish = publish or _default_publisher
        self.registry = registry
        self.radius_provider = radius_provider
        self.interval = settings.RIDE_DISPATCH_INTERVAL_SECONDS if interval is None else interval
        self.max_retries = settings.RIDE_DISPATCH_MAX_RETRIES if max_retries is None else max_retries
        self._controllers: Dict[int, DispatchController] = {}
        self._lock = threading.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def bind_loop(self, loop: asyncio.AbstractEventLoop):
        """Remember the server's event loop for starts requested from threads."""
        self._loop = loop

    def start(self, ride_id: int) -> Optional[DispatchController]:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is not None:
            self._loop = loop
            return self._start_in_loop(ride_id, loop)

        if self._loop is None or self._loop.is_closed():
            logger.warning("No event loop for ride %s dispatch; the stale ride sweeper will expire it", ride_id)
            return None
        self._loop.call_soon_threadsafe(self._start_in_loop, ride_id, self._loop)
        return None

    def stop(self, ride_id: int, reason: str) -> bool:
        with self._lock:
            controller = self._controllers.get(ride_id)
        if controller is None:
            return False

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if controller.loop is None or controller.loop is running:
            controller.stop(reason)
        elif not controller.loop.is_closed():
            controller.loop.call_soon_threadsafe(controller.stop, reason)
        return True

    def is_running(self, ride_id: int) -> bool:
        with self._lock:
            controller = self._controllers.get(ride_id)
        return controller is not None and not controller.stopped

    def get(self, ride_id: int) -> Optional[DispatchController]:
        with self._lock:
            return self._controllers.get(ride_id)

    def active_ride_ids(self) -> List[int]:
        with self._lock:
            return [ride_id for ride_id, c in self._controllers.items() if not c.stopped]

    async def stop_all(self, reason: str = STOP_SHUTDOWN):
        with self._lock:
            controllers = list(self._controllers.values())
        for controller in controllers:
            controller.stop(reason)
        for controller in controllers:
            await controller.wait()

    def _start_in_loop(self, ride_id: int, loop: asyncio.AbstractEventLoop) -> DispatchController:
        with self._lock:
            existing = self._controllers.get(ride_id)
            if existing is not None and not existing.stopped:
                return existing
            controller = DispatchController(
                ride_id,
                store=self.store,
                publish=self.publish,
                registry=self.registry if self.registry is not None else get_on_duty_registry(),
                radius_provider=self.radius_provider if self.radius_provider is not None else get_distance_radius_provider(),
                interval=self.interval,
                max_retries=self.max_retries,
                on_stop=self._forget,
            )
            self._controllers[ride_id] = controller
        controller.start(loop)
        return controller

    def _forget(self, controller: DispatchController):
        with self._lock:
            if self._controllers.get(controller.ride_id) is controller:
                del self._controllers[controller.ride_id]


# ---------------------- Default Instance ----------------------

_dispatch_manager: Optional[DispatchManager] = None


def get_dispatch_manager() -> DispatchManager:
    """Get the process-wide DispatchManager instance."""
    global _dispatch_manager
    if _dispatch_manager is None:
        _dispatch_manager = DispatchManager()
    return _dispatch_manager
