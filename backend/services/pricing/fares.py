"""Fare computation: max(distance x per-km rate, minimum rate) per vehicle type."""

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from django.conf import settings
from django.db import DatabaseError

from rides.models import FareRate, VEHICLE_TYPES

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FareRateConfig:
    minimum_rate: float
    per_km_rate: float

    def fare(self, distance_km: float) -> float:
        return max(distance_km * self.per_km_rate, self.minimum_rate)


def _default_rates() -> Dict[str, FareRateConfig]:
    return {
        vehicle: FareRateConfig(
            minimum_rate=float(rate["minimum_rate"]),
            per_km_rate=float(rate["per_km_rate"]),
        )
        for vehicle, rate in settings.DEFAULT_FARE_RATES.items()
    }


def get_fare_rates() -> Dict[str, FareRateConfig]:
    """
    Resolve the rate table.

    Stored FareRate rows override the defaults per vehicle type; vehicle
    types without a row keep their default rate.
    """
    rates = _default_rates()
    try:
        for row in FareRate.objects.all():
            rates[row.vehicle_type] = FareRateConfig(
                minimum_rate=row.minimum_rate,
                per_km_rate=row.per_km_rate,
            )
    except DatabaseError:
        logger.exception("Failed to load fare rates, using defaults")
    return rates


def compute_fares(distance_km: float, rates: Optional[Dict[str, FareRateConfig]] = None) -> Dict[str, float]:
    """
    Compute the fare for every vehicle type.

    Args:
        distance_km: Trip distance in kilometers
        rates: Optional pre-resolved rate table (defaults to get_fare_rates())

    Returns:
        Mapping of vehicle type to fare
    """
    rates = rates if rates is not None else get_fare_rates()
    return {
        vehicle: rates[vehicle].fare(distance_km)
        for vehicle in VEHICLE_TYPES
        if vehicle in rates
    }


def fare_for(vehicle: str, distance_km: float) -> float:
    """Fare for a single vehicle type."""
    fares = compute_fares(distance_km)
    if vehicle not in fares:
        raise KeyError(f"No fare rate for vehicle type {vehicle!r}")
    return fares[vehicle]
