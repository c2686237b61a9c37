"""Common utility functions."""

from .geo import Coordinates, calculate_distance, distance_km, parse_coordinates
from .otp import generate_otp

__all__ = [
    "Coordinates",
    "calculate_distance",
    "distance_km",
    "parse_coordinates",
    "generate_otp",
]
