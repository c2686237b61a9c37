"""Cached rider search radius (AppSetting DISTANCE_RADIUS, stored in km)."""

import logging
import threading
import time
from typing import Callable, Optional

from django.conf import settings
from django.db import DatabaseError

from rides.models import AppSetting

logger = logging.getLogger(__name__)


class DistanceRadiusProvider:
    """
    Serves the maximum matching radius in meters.

    The value is read from the DISTANCE_RADIUS AppSetting (created with the
    default when missing), cached for `ttl` seconds and dropped early by
    `invalidate()` whenever the setting changes.
    """

    def __init__(
        self,
        ttl: Optional[float] = None,
        default_km: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl = settings.DISTANCE_RADIUS_CACHE_SECONDS if ttl is None else ttl
        self.default_km = settings.DEFAULT_DISTANCE_RADIUS_KM if default_km is None else default_km
        self._clock = clock
        self._lock = threading.Lock()
        self._cached_meters: Optional[float] = None
        self._expires_at = 0.0

    @property
    def default_meters(self) -> float:
        return self.default_km * 1000

    def get_meters(self) -> float:
        """Current radius in meters; hits the database at most once per TTL."""
        with self._lock:
            now = self._clock()
            if self._cached_meters is not None and now < self._expires_at:
                return self._cached_meters

        meters = self._load_meters()

        with self._lock:
            self._cached_meters = meters
            self._expires_at = self._clock() + self.ttl
        return meters

    def get_km(self) -> float:
        return self.get_meters() / 1000

    def invalidate(self):
        with self._lock:
            self._cached_meters = None
            self._expires_at = 0.0
        logger.info("Distance radius cache invalidated")

    def _load_meters(self) -> float:
        try:
            setting, created = AppSetting.objects.get_or_create(
                key=AppSetting.DISTANCE_RADIUS,
                defaults={
                    "value": self.default_km,
                    "unit": "km",
                    "description": "Maximum distance between a rider and the pickup point",
                },
            )
        except DatabaseError:
            logger.exception("Failed to load distance radius, using default %skm", self.default_km)
            return self.default_meters

        if created:
            logger.info("Created default distance radius setting: %skm", self.default_km)

        if setting.value is None or setting.value <= 0:
            logger.warning("Ignoring invalid distance radius %r, using default", setting.value)
            return self.default_meters
        return float(setting.value) * 1000


# ---------------------- Default Instance ----------------------

_distance_radius_provider: Optional[DistanceRadiusProvider] = None


def get_distance_radius_provider() -> DistanceRadiusProvider:
    """Get the process-wide DistanceRadiusProvider instance."""
    global _distance_radius_provider
    if _distance_radius_provider is None:
        _distance_radius_provider = DistanceRadiusProvider()
    return _distance_radius_provider


def invalidate_distance_radius_cache():
    get_distance_radius_provider().invalidate()
