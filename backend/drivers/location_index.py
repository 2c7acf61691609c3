"""
Lookup of available drivers around a point.

Queries the indexed lat/lng columns with a bounding box first and then keeps
only drivers within the exact haversine radius.
"""

import logging
from datetime import timedelta
from typing import List, Tuple, Iterable

from django.conf import settings
from django.utils import timezone

from common.utils import bounding_box, calculate_distance
from drivers.models import DriverProfile

logger = logging.getLogger(__name__)


def stale_location_cutoff(now=None):
    stale_seconds = getattr(settings, "DRIVER_LOCATION_STALE_SECONDS", 120)
    return (now or timezone.now()) - timedelta(seconds=stale_seconds)


def available_drivers_queryset(now=None):
    """Online drivers with no current ride and a recent location."""
    return (
        DriverProfile.objects.select_related("user")
        .filter(
            is_online=True,
            current_ride__isnull=True,
            current_latitude__isnull=False,
            current_longitude__isnull=False,
            last_location_update__gte=stale_location_cutoff(now),
        )
    )


def find_available_drivers_near(
    lat: float,
    lon: float,
    radius_km: float,
    exclude_user_ids: Iterable[int] = (),
    now=None,
) -> List[Tuple[DriverProfile, float]]:
    """
    Return (profile, distance_km) pairs for available drivers within ``radius_km``.

    Args:
        lat: Pickup latitude
        lon: Pickup longitude
        radius_km: Search radius in kilometers
        exclude_user_ids: Users never to return (e.g. the rider)
        now: Reference time for location freshness

    Returns:
        Unsorted list of (DriverProfile, distance in km)
    """
    min_lat, max_lat, min_lon, max_lon = bounding_box(lat, lon, radius_km)

    queryset = available_drivers_queryset(now).filter(
        current_latitude__range=(min_lat, max_lat),
        current_longitude__range=(min_lon, max_lon),
    )
    exclude_user_ids = [uid for uid in exclude_user_ids if uid is not None]
    if exclude_user_ids:
        queryset = queryset.exclude(user_id__in=exclude_user_ids)

    nearby: List[Tuple[DriverProfile, float]] = []
    for profile in queryset:
        distance = calculate_distance(
            float(lat), float(lon),
            float(profile.current_latitude), float(profile.current_longitude),
        )
        if distance <= radius_km:
            nearby.append((profile, distance))

    logger.debug("Found %d drivers within %skm of (%s, %s)", len(nearby), radius_km, lat, lon)
    return nearby


def count_available_drivers_near(lat: float, lon: float, radius_km: float, now=None) -> int:
    return len(find_available_drivers_near(lat, lon, radius_km, now=now))
