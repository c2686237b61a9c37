"""
In-memory registry of on-duty riders.

Presence is process-local and never persisted: riders re-signal on-duty after
a restart. Only a rider's own events (go on duty, location ping, go off duty,
disconnect) mutate their entry.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Union

from common.utils.geo import Coordinates, calculate_distance, parse_coordinates

logger = logging.getLogger(__name__)

CoordinatesInput = Union[Coordinates, Dict[str, Any], None]


@dataclass
class DriverPresence:
    """Last known state of an on-duty rider."""
    driver_id: int
    coords: Coordinates
    vehicle_type: str
    connection: Optional[str] = None
    name: str = ""
    updated_at: float = field(default_factory=time.time)


@dataclass
class NearbyDriver:
    """A registry hit for a proximity query."""
    driver_id: int
    name: str
    vehicle_type: str
    latitude: float
    longitude: float
    heading: Optional[float]
    distance_meters: float

    def as_dict(self) -> Dict[str, Any]:
        return {
            "rider_id": self.driver_id,
            "name": self.name,
            "vehicle_type": self.vehicle_type,
            "coordinates": {
                "latitude": self.latitude,
                "longitude": self.longitude,
                "heading": self.heading,
            },
            "distance": round(self.distance_meters, 1),
        }


def _coerce(coords: CoordinatesInput) -> Optional[Coordinates]:
    if isinstance(coords, Coordinates):
        return coords
    return parse_coordinates(coords)


class OnDutyRegistry:
    """
    Mapping of rider id to presence, plus on-duty group membership.

    Membership mirrors the riders whose connection joined the on-duty
    broadcast group. It outlives a presence record that was lost to
    connection churn, which is what lets `update_location` re-insert it.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._drivers: Dict[int, DriverPresence] = {}
        self._group_members: Dict[int, Optional[str]] = {}
        self._pending_removals: Dict[int, asyncio.TimerHandle] = {}

    # ---------------------- Presence ----------------------

    def set_on_duty(
        self,
        driver_id: int,
        coords: CoordinatesInput,
        vehicle_type: str,
        connection: Optional[str] = None,
        name: str = "",
    ) -> Optional[DriverPresence]:
        """Upsert a presence record. Unusable coordinates are dropped (returns None)."""
        parsed = _coerce(coords)
        if parsed is None:
            logger.warning("Dropping on-duty signal from rider %s: invalid coordinates %r", driver_id, coords)
            return None

        presence = DriverPresence(
            driver_id=driver_id,
            coords=parsed,
            vehicle_type=vehicle_type,
            connection=connection,
            name=name,
        )
        with self._lock:
            self._drivers[driver_id] = presence
            self._cancel_pending_removal(driver_id)

        logger.info("Rider %s on duty (%s) at %.5f,%.5f", driver_id, vehicle_type, parsed.latitude, parsed.longitude)
        return presence

    def update_location(
        self,
        driver_id: int,
        coords: CoordinatesInput,
        vehicle_type: Optional[str] = None,
        connection: Optional[str] = None,
        name: str = "",
    ) -> Optional[DriverPresence]:
        """
        Move a rider. If the record is missing but the rider is still a member
        of the on-duty group, the record is re-inserted (requires vehicle_type).
        Returns the updated presence, or None when the update was dropped.
        """
        parsed = _coerce(coords)
        if parsed is None:
            logger.warning("Dropping location update from rider %s: invalid coordinates %r", driver_id, coords)
            return None

        with self._lock:
            presence = self._drivers.get(driver_id)
            if presence is not None:
                presence.coords = parsed
                presence.updated_at = time.time()
                if connection:
                    presence.connection = connection
                return presence

            if driver_id not in self._group_members:
                logger.debug("Ignoring location update from off-duty rider %s", driver_id)
                return None

            if not vehicle_type:
                logger.warning("Cannot re-register rider %s without a vehicle type", driver_id)
                return None

            presence = DriverPresence(
                driver_id=driver_id,
                coords=parsed,
                vehicle_type=vehicle_type,
                connection=connection or self._group_members.get(driver_id),
                name=name,
            )
            self._drivers[driver_id] = presence

        logger.info("Re-registered on-duty rider %s from location update", driver_id)
        return presence

    def set_off_duty(self, driver_id: int) -> bool:
        with self._lock:
            self._cancel_pending_removal(driver_id)
            removed = self._drivers.pop(driver_id, None) is not None
        if removed:
            logger.info("Rider %s off duty", driver_id)
        return removed

    def get(self, driver_id: int) -> Optional[DriverPresence]:
        with self._lock:
            return self._drivers.get(driver_id)

    def is_on_duty(self, driver_id: int) -> bool:
        with self._lock:
            return driver_id in self._drivers

    def __len__(self) -> int:
        with self._lock:
            return len(self._drivers)

    def clear(self):
        with self._lock:
            for handle in self._pending_removals.values():
                handle.cancel()
            self._pending_removals.clear()
            self._drivers.clear()
            self._group_members.clear()

    # ---------------------- On-duty Group Membership ----------------------

    def join_group(self, driver_id: int, connection: Optional[str]):
        with self._lock:
            self._group_members[driver_id] = connection

    def leave_group(self, driver_id: int, connection: Optional[str] = None):
        """Drop membership; with `connection`, only if it is still the current one."""
        with self._lock:
            if connection is not None and self._group_members.get(driver_id) != connection:
                return
            self._group_members.pop(driver_id, None)

    def is_group_member(self, driver_id: int) -> bool:
        with self._lock:
            return driver_id in self._group_members

    def group_members(self) -> Dict[int, Optional[str]]:
        with self._lock:
            return dict(self._group_members)

    # ---------------------- Proximity ----------------------

    def find_nearby(
        self,
        latitude: float,
        longitude: float,
        max_radius_meters: float,
        exclude_ids: Optional[Iterable[int]] = None,
        vehicle_type: Optional[str] = None,
    ) -> List[NearbyDriver]:
        """
        Riders within `max_radius_meters` of the origin, closest first.

        Full scan over the on-duty set, which stays small enough that a
        spatial index would not pay for itself.
        """
        excluded = set(exclude_ids or ())
        with self._lock:
            candidates = list(self._drivers.values())

        results = []
        for presence in candidates:
            if presence.driver_id in excluded:
                continue
            if vehicle_type and presence.vehicle_type != vehicle_type:
                continue
            distance = calculate_distance(
                latitude, longitude,
                presence.coords.latitude, presence.coords.longitude,
            )
            if distance > max_radius_meters:
                continue
            results.append(NearbyDriver(
                driver_id=presence.driver_id,
                name=presence.name,
                vehicle_type=presence.vehicle_type,
                latitude=presence.coords.latitude,
                longitude=presence.coords.longitude,
                heading=presence.coords.heading,
                distance_meters=distance,
            ))

        results.sort(key=lambda d: d.distance_meters)
        return results

    # ---------------------- Disconnect Grace ----------------------

    def schedule_removal(
        self,
        driver_id: int,
        connection: Optional[str],
        grace_seconds: float,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        """
        Remove the rider after `grace_seconds` unless they reconnect first.

        Removal only happens if the record still belongs to `connection`; a
        reconnect that re-attached a new connection keeps the entry.
        """
        loop = loop or asyncio.get_running_loop()
        with self._lock:
            self._cancel_pending_removal(driver_id)
            self._pending_removals[driver_id] = loop.call_later(
                grace_seconds, self._expire, driver_id, connection,
            )
        logger.debug("Rider %s disconnected, removal in %ss", driver_id, grace_seconds)

    def reattach(self, driver_id: int, connection: str) -> Optional[DriverPresence]:
        """Bind a reconnecting rider's entry to its new connection."""
        with self._lock:
            self._cancel_pending_removal(driver_id)
            presence = self._drivers.get(driver_id)
            if presence is None:
                return None
            presence.connection = connection
            if driver_id in self._group_members:
                self._group_members[driver_id] = connection
        logger.info("Rider %s reconnected, kept on duty", driver_id)
        return presence

    def has_pending_removal(self, driver_id: int) -> bool:
        with self._lock:
            return driver_id in self._pending_removals

    def _expire(self, driver_id: int, connection: Optional[str]):
        with self._lock:
            self._pending_removals.pop(driver_id, None)
            presence = self._drivers.get(driver_id)
            if presence is not None and presence.connection != connection:
                return
            self._drivers.pop(driver_id, None)
            if self._group_members.get(driver_id) == connection:
                self._group_members.pop(driver_id, None)
        logger.info("Rider %s removed after disconnect grace period", driver_id)

    def _cancel_pending_removal(self, driver_id: int):
        handle = self._pending_removals.pop(driver_id, None)
        if handle is not None:
            handle.cancel()


# ---------------------- Default Instance ----------------------

_on_duty_registry: Optional[OnDutyRegistry] = None


def get_on_duty_registry() -> OnDutyRegistry:
    """Get the process-wide OnDutyRegistry instance."""
    global _on_duty_registry
    if _on_duty_registry is None:
        _on_duty_registry = OnDutyRegistry()
    return _on_duty_registry
