"""Proximity matching: registry scan bounded by the configured search radius."""

import logging
from typing import Iterable, List, Optional

from services.configuration import DistanceRadiusProvider, get_distance_radius_provider
from .registry import NearbyDriver, OnDutyRegistry, get_on_duty_registry

logger = logging.getLogger(__name__)


def find_nearby_drivers(
    latitude: float,
    longitude: float,
    exclude_ids: Optional[Iterable[int]] = None,
    vehicle_type: Optional[str] = None,
    registry: Optional[OnDutyRegistry] = None,
    radius_provider: Optional[DistanceRadiusProvider] = None,
) -> List[NearbyDriver]:
    """
    On-duty riders within the configured radius of a point, closest first.

    Args:
        latitude: Origin latitude (usually the pickup point)
        longitude: Origin longitude
        exclude_ids: Rider ids to skip (e.g. the ride's blacklist)
        vehicle_type: Only riders driving this vehicle type
        registry: Registry to scan (defaults to the process registry)
        radius_provider: Radius source (defaults to the process provider)
    """
    if registry is None:
        registry = get_on_duty_registry()
    if radius_provider is None:
        radius_provider = get_distance_radius_provider()

    max_radius = radius_provider.get_meters()
    drivers = registry.find_nearby(
        latitude,
        longitude,
        max_radius,
        exclude_ids=exclude_ids,
        vehicle_type=vehicle_type,
    )
    logger.debug(
        "Proximity match at %.5f,%.5f (radius=%sm, vehicle=%s): %d rider(s)",
        latitude, longitude, max_radius, vehicle_type, len(drivers),
    )
    return drivers
