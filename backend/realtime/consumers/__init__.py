"""Realtime consumers for WebSocket communication."""

from .base import BaseConsumer
from .driver_consumer import DriverConsumer
from .rider_consumer import RiderConsumer
from .ride_consumer import RideConsumer

__all__ = [
    "BaseConsumer",
    "DriverConsumer",
    "RiderConsumer",
    "RideConsumer",
]
