import logging

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from drivers.models import DriverProfile
from realtime.bus import RideEvent, LOCATION_UPDATE, ride_channel, user_channel
from rides.models import Ride, TERMINAL_STATUSES
from services.ride_management.exceptions import DriverNotFound, DriverBusy, ValidationFailed

logger = logging.getLogger(__name__)


def get_driver_profile(user_id: int, for_update: bool = False) -> DriverProfile:
    queryset = DriverProfile.objects.select_related("user")
    if for_update:
        queryset = queryset.select_for_update()
    profile = queryset.filter(user_id=user_id).first()
    if profile is None:
        raise DriverNotFound("Driver profile not found")
    return profile


def validate_coordinates(lat, lon):
    try:
        lat = float(lat)
        lon = float(lon)
    except (TypeError, ValueError):
        raise ValidationFailed("latitude and longitude must be numbers")
    if not (-90 <= lat <= 90) or not (-180 <= lon <= 180):
        raise ValidationFailed("latitude or longitude out of range")
    return lat, lon


def _smooth(current: float, sample: float) -> float:
    """Exponential moving average step, kept inside [0, 1]."""
    alpha = getattr(settings, "DRIVER_RATE_SMOOTHING", 0.1)
    return max(0.0, min(1.0, (1 - alpha) * current + alpha * sample))


# DRIVER STATUS UPDATE
@transaction.atomic
def set_driver_online(user_id: int, online: bool) -> DriverProfile:
    """
    Switch a driver online or offline.

    Going offline while assigned to a non-terminal ride raises DriverBusy;
    a leftover pointer to a finished ride is cleared.
    """
    profile = get_driver_profile(user_id, for_update=True)

    if online:
        profile.is_online = True
        profile.save(update_fields=["is_online"])
        logger.info("Driver %s is online", user_id)
        return profile

    if profile.current_ride_id:
        current_status = (
            Ride.objects.filter(pk=profile.current_ride_id)
            .values_list("status", flat=True)
            .first()
        )
        if current_status is not None and current_status not in TERMINAL_STATUSES:
            raise DriverBusy("Finish or cancel your current ride before going offline")

    profile.is_online = False
    profile.current_ride = None
    profile.save(update_fields=["is_online", "current_ride"])
    logger.info("Driver %s is offline", user_id)
    return profile


def update_driver_location(user_id: int, lat, lon) -> DriverProfile:
    """
    Update driver location, used by:
    - HTTP fallback
    - WebSocket driver tracking events
    """
    lat, lon = validate_coordinates(lat, lon)
    profile = get_driver_profile(user_id)
    profile.current_latitude = round(lat, 6)
    profile.current_longitude = round(lon, 6)
    profile.last_location_update = timezone.now()
    profile.save(update_fields=["current_latitude", "current_longitude", "last_location_update"])
    return profile


# DISPATCH STATISTICS
def assign_current_ride(user_id: int, ride: Ride) -> bool:
    """
    Point the driver at ``ride``. False if the driver already has one or
    went offline since they were last read.
    """
    updated = DriverProfile.objects.filter(
        user_id=user_id,
        is_online=True,
        current_ride__isnull=True,
    ).update(current_ride=ride)
    return bool(updated)


def release_current_ride(user_id: int, ride_id: int) -> None:
    DriverProfile.objects.filter(user_id=user_id, current_ride_id=ride_id).update(current_ride=None)


def record_completion(user_id: int, ride_id: int) -> DriverProfile:
    profile = get_driver_profile(user_id, for_update=True)
    profile.completed_rides += 1
    profile.acceptance_rate = _smooth(profile.acceptance_rate, 1.0)
    if profile.current_ride_id == ride_id:
        profile.current_ride = None
    profile.save(update_fields=["completed_rides", "acceptance_rate", "current_ride"])
    return profile


def record_driver_cancellation(user_id: int) -> DriverProfile:
    profile = get_driver_profile(user_id, for_update=True)
    profile.cancellation_rate = _smooth(profile.cancellation_rate, 1.0)
    profile.acceptance_rate = _smooth(profile.acceptance_rate, 0.0)
    profile.save(update_fields=["cancellation_rate", "acceptance_rate"])
    return profile


def record_rating(user_id: int, rating: int) -> DriverProfile:
    profile = get_driver_profile(user_id, for_update=True)
    total = (profile.rating or 0) * profile.rating_count + rating
    profile.rating_count += 1
    profile.rating = round(total / profile.rating_count, 2)
    profile.save(update_fields=["rating", "rating_count"])
    return profile


# LOCATION PINGS
def publish_location_to_ride(profile: DriverProfile, bus=None):
    """
    Forward a driver location to the rider of the current ride, if any.
    Returns the published event or None.
    """
    if not profile.current_ride_id or not profile.has_location:
        return None

    ride = Ride.objects.filter(pk=profile.current_ride_id).first()
    if ride is None or ride.status in TERMINAL_STATUSES:
        return None

    if bus is None:
        from services.container import get_ride_services
        bus = get_ride_services().bus

    event = RideEvent.for_ride(ride, LOCATION_UPDATE, {
        "driver_id": profile.user_id,
        "latitude": float(profile.current_latitude),
        "longitude": float(profile.current_longitude),
        "timestamp": profile.last_location_update.isoformat(),
    })
    bus.publish_many([ride_channel(ride.id), user_channel(ride.rider_id)], event)
    return event
