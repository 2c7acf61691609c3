"""
Geographic and pricing utility functions.

This module provides the pure calculations used by matching and the ride
lifecycle: great-circle distance, ETA, fare breakdowns and surge tiers.
Nothing in here touches the database.
"""

import math
from dataclasses import dataclass, asdict
from math import radians, cos, sin, asin, sqrt
from typing import Dict, Any, Tuple


EARTH_RADIUS_KM = 6371.0

# Average city speed used for ETA estimates
AVERAGE_SPEED_KMH = 30.0
MINIMUM_ETA_MINUTES = 2

PRICING_CONFIG = {
    "BASE_FARES": {
        "standard": 2.5,
        "comfort": 3.5,
        "premium": 5.0,
    },
    "PER_KM_RATES": {
        "standard": 1.5,
        "comfort": 2.0,
        "premium": 2.75,
    },
    "PER_MINUTE_RATES": {
        "standard": 0.3,
        "comfort": 0.4,
        "premium": 0.5,
    },
    # Floor applied after surge
    "MINIMUM_FARE": 5.0,
    "CURRENCY": "USD",
    "SURGE_MULTIPLIER": {
        "LOW": 1.0,
        "MEDIUM": 1.5,
        "HIGH": 2.0,
    },
}

DEFAULT_VEHICLE_CLASS = "standard"


@dataclass(frozen=True)
class FareBreakdown:
    """Fare components, all rounded to 2 decimal places."""
    base_fare: float
    distance_fare: float
    time_fare: float
    subtotal: float
    surge_multiplier: float
    total: float
    currency: str = PRICING_CONFIG["CURRENCY"]

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def calculate_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate distance between two points in kilometers using Haversine formula.

    Args:
        lat1: Latitude of first point
        lon1: Longitude of first point
        lat2: Latitude of second point
        lon2: Longitude of second point

    Returns:
        Distance in kilometers
    """
    lat1, lon1, lat2, lon2 = map(radians, [float(lat1), float(lon1), float(lat2), float(lon2)])
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    a = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
    c = 2 * asin(sqrt(a))
    return c * EARTH_RADIUS_KM


def calculate_eta(distance_km: float) -> int:
    """ETA in whole minutes at average city speed, never below 2 minutes."""
    minutes = math.ceil(float(distance_km) / AVERAGE_SPEED_KMH * 60)
    return max(MINIMUM_ETA_MINUTES, minutes)


def calculate_fare(
    distance_km: float,
    duration_min: float,
    vehicle_class: str = DEFAULT_VEHICLE_CLASS,
    surge_multiplier: float = 1.0,
) -> FareBreakdown:
    """
    Calculate the fare for a trip.

    total = max(minimum_fare, (base + distance * per_km + duration * per_minute) * surge)

    Unknown vehicle classes are priced as standard.
    """
    base_fares = PRICING_CONFIG["BASE_FARES"]
    per_km_rates = PRICING_CONFIG["PER_KM_RATES"]
    per_minute_rates = PRICING_CONFIG["PER_MINUTE_RATES"]

    if vehicle_class not in base_fares:
        vehicle_class = DEFAULT_VEHICLE_CLASS

    base_fare = base_fares[vehicle_class]
    distance_fare = float(distance_km) * per_km_rates[vehicle_class]
    time_fare = float(duration_min) * per_minute_rates[vehicle_class]
    subtotal = base_fare + distance_fare + time_fare

    total = max(PRICING_CONFIG["MINIMUM_FARE"], subtotal * float(surge_multiplier))

    return FareBreakdown(
        base_fare=round(base_fare, 2),
        distance_fare=round(distance_fare, 2),
        time_fare=round(time_fare, 2),
        subtotal=round(subtotal, 2),
        surge_multiplier=float(surge_multiplier),
        total=round(total, 2),
    )


def surge_multiplier(open_requests: int, available_drivers: int) -> float:
    """
    Pick a surge tier from the demand/supply ratio around a pickup point.

    Up to one open request per available driver is LOW, up to two is MEDIUM,
    anything beyond (or no drivers at all while demand exists) is HIGH.
    """
    tiers = PRICING_CONFIG["SURGE_MULTIPLIER"]
    if open_requests <= 0:
        return tiers["LOW"]
    if available_drivers <= 0:
        return tiers["HIGH"]

    ratio = open_requests / available_drivers
    if ratio <= 1:
        return tiers["LOW"]
    if ratio <= 2:
        return tiers["MEDIUM"]
    return tiers["HIGH"]


def bounding_box(lat: float, lon: float, radius_km: float) -> Tuple[float, float, float, float]:
    """
    Get the (min_lat, max_lat, min_lon, max_lon) box enclosing a circle.

    Used to prefilter indexed queries before the exact haversine check.
    """
    lat = float(lat)
    lon = float(lon)
    # 1 degree latitude ≈ 111km, 1 degree longitude shrinks with latitude
    lat_offset = radius_km / 111.0
    cos_lat = abs(cos(radians(lat)))
    if cos_lat < 1e-6:
        lon_offset = 180.0
    else:
        lon_offset = min(180.0, radius_km / (111.0 * cos_lat))

    return (
        max(-90.0, lat - lat_offset),
        min(90.0, lat + lat_offset),
        max(-180.0, lon - lon_offset),
        min(180.0, lon + lon_offset),
    )
