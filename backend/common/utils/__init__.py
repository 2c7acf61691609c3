"""Common utility functions."""

from .geo import (
    FareBreakdown,
    bounding_box,
    calculate_distance,
    calculate_eta,
    calculate_fare,
    surge_multiplier,
)

__all__ = [
    "FareBreakdown",
    "bounding_box",
    "calculate_distance",
    "calculate_eta",
    "calculate_fare",
    "surge_multiplier",
]
