"""
Ride persistence with optimistic concurrency.

Every write goes through ``RideStore.update`` which only touches the row when
its ``version`` still matches what the caller read, and bumps it by one.
"""

import logging
from typing import Any, Dict, Optional

from django.db import IntegrityError, transaction
from django.db.models import F, Q

from rides.models import Ride, RideStatus, ACTIVE_STATUSES
from .exceptions import RideNotFound, Conflict, ActiveRideExists

logger = logging.getLogger(__name__)


class RideStore:
    """Thin wrapper around the Ride table."""

    def create(self, **fields) -> Ride:
        try:
            with transaction.atomic():
                return Ride.objects.create(**fields)
        except IntegrityError:
            raise ActiveRideExists("You already have an active ride request")

    def get(self, ride_id: int) -> Ride:
        try:
            return Ride.objects.select_related("rider", "driver").get(pk=ride_id)
        except Ride.DoesNotExist:
            raise RideNotFound(f"Ride {ride_id} not found")

    def update(self, ride_id: int, patch: Dict[str, Any], expected_version: int) -> Ride:
        """
        Apply ``patch`` if the stored version equals ``expected_version``.

        Raises:
            RideNotFound: the ride does not exist
            Conflict: another writer got there first, or a uniqueness rule was hit
        """
        try:
            with transaction.atomic():
                updated = Ride.objects.filter(pk=ride_id, version=expected_version).update(
                    version=F("version") + 1,
                    **patch,
                )
        except IntegrityError as exc:
            logger.info("Integrity conflict updating ride %s: %s", ride_id, exc)
            raise Conflict(f"Ride {ride_id} conflicts with another active ride")

        if not updated:
            if not Ride.objects.filter(pk=ride_id).exists():
                raise RideNotFound(f"Ride {ride_id} not found")
            raise Conflict(f"Ride {ride_id} was modified concurrently")

        return self.get(ride_id)

    def find_active_for_rider(self, rider_id: int) -> Optional[Ride]:
        return (
            Ride.objects.select_related("rider", "driver")
            .filter(rider_id=rider_id, status__in=ACTIVE_STATUSES)
            .first()
        )

    def find_active_for_driver(self, driver_id: int) -> Optional[Ride]:
        return (
            Ride.objects.select_related("rider", "driver")
            .filter(driver_id=driver_id, status__in=ACTIVE_STATUSES)
            .first()
        )

    def history(self, user_id: int, as_driver: bool, status: Optional[str] = None):
        """Rides of a rider, or of a driver including ones they were released from. Newest first."""
        if as_driver:
            queryset = Ride.objects.filter(Q(driver_id=user_id) | Q(released_driver_id=user_id))
        else:
            queryset = Ride.objects.filter(rider_id=user_id)
        if status:
            queryset = queryset.filter(status=status)
        return queryset.select_related("rider", "driver").order_by("-requested_at", "-id")

    def count_open_requests_near(self, min_lat, max_lat, min_lon, max_lon) -> int:
        return Ride.objects.filter(
            status=RideStatus.REQUESTED,
            pickup_latitude__range=(min_lat, max_lat),
            pickup_longitude__range=(min_lon, max_lon),
        ).count()
