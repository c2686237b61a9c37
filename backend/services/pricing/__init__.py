"""
Fare calculation service.

This module handles:
    - Per-vehicle fare computation from trip distance
    - Resolving fare rates from FareRate rows with built-in defaults
"""

from .fares import compute_fares, fare_for, get_fare_rates, FareRateConfig

__all__ = [
    "compute_fares",
    "fare_for",
    "get_fare_rates",
    "FareRateConfig",
]
