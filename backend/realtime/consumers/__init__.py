"""Realtime consumers for WebSocket communication."""

from .base import BaseConsumer
from .rider_consumer import RiderConsumer
from .customer_consumer import CustomerConsumer

__all__ = [
    "BaseConsumer",
    "RiderConsumer",
    "CustomerConsumer",
]
