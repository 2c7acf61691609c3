"""
Core ride lifecycle operations.

Every status change goes through the same steps: check the transition table,
check the actor, write with a compare-and-swap on ``version``, then publish
the new status once the transaction commits.
"""

import logging
import math
from datetime import datetime
from decimal import Decimal
from typing import Optional, Callable, Dict, Any

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from common.utils import calculate_distance, calculate_eta, calculate_fare, FareBreakdown
from drivers import services as driver_services
from drivers.models import VehicleClass
from realtime import bus as events
from realtime.bus import EventBus, driver_channel
from realtime.delivery import NotificationDelivery
from rides.models import Ride, RideStatus
from services.otp import OtpChallenge
from . import transitions
from .transitions import Actor
from .penalties import cancellation_penalty
from .store import RideStore
from .exceptions import (
    ActiveRideExists,
    AlreadyRated,
    Conflict,
    DriverBusy,
    InvalidTransition,
    RideAlreadyTaken,
    Unauthorized,
    ValidationFailed,
)

logger = logging.getLogger(__name__)

User = get_user_model()

MIN_RATING = 1
MAX_RATING = 5
TAKEN_STATUSES = (
    RideStatus.ACCEPTED,
    RideStatus.DRIVER_ARRIVED,
    RideStatus.OTP_PENDING,
    RideStatus.IN_PROGRESS,
)


def _money(value: float) -> Decimal:
    return Decimal(str(value)).quantize(Decimal("0.01"))


def fare_fields(fare: FareBreakdown) -> Dict[str, Any]:
    return {
        "base_fare": _money(fare.base_fare),
        "distance_fare": _money(fare.distance_fare),
        "time_fare": _money(fare.time_fare),
        "surge_multiplier": _money(fare.surge_multiplier),
        "total_fare": _money(fare.total),
        "currency": fare.currency,
    }


def otp_subject(ride: Ride) -> str:
    """Codes are keyed by the rider's phone, falling back to the user id."""
    phone = getattr(ride.rider, "phone_number", "") if ride.rider_id else ""
    return phone or f"user_{ride.rider_id}"


class RideLifecycle:
    """
    The ride state machine.

    All operations return the updated ride or raise a ``RideError``.
    """

    def __init__(
        self,
        store: Optional[RideStore] = None,
        bus: Optional[EventBus] = None,
        otp: Optional[OtpChallenge] = None,
        notifier: Optional[NotificationDelivery] = None,
        offers=None,
        clock: Optional[Callable[[], datetime]] = None,
        verify_retries: Optional[int] = None,
    ):
        self.store = store or RideStore()
        self.bus = bus or EventBus()
        self.otp = otp or OtpChallenge()
        self.notifier = notifier or NotificationDelivery()
        self.offers = offers
        self.clock = clock or timezone.now
        self.verify_retries = verify_retries or getattr(settings, "RIDE_START_MAX_RETRIES", 3)

    # ===================== Helpers =====================

    def _stamp(self, ride: Ride) -> datetime:
        """Current time, never earlier than a timestamp the ride already has."""
        now = self.clock()
        for field_name in transitions.TIMESTAMP_FIELDS.values():
            value = getattr(ride, field_name, None)
            if value is not None and value > now:
                now = value
        return now

    def _transition(self, ride: Ride, actor: Actor, target: str, patch: Optional[Dict[str, Any]] = None) -> Ride:
        transitions.check(ride, actor, target)
        patch = dict(patch or {})
        patch["status"] = target
        patch.setdefault(transitions.TIMESTAMP_FIELDS[target], self._stamp(ride))
        updated = self.store.update(ride.id, patch, ride.version)
        logger.info(
            "Ride %s: %s -> %s by %s %s (v%s)",
            ride.id, ride.status, target, actor.role, actor.user_id, updated.version,
        )
        return updated

    # ===================== Rider Operations =====================

    def create_ride(
        self,
        rider,
        pickup_latitude: float,
        pickup_longitude: float,
        dropoff_latitude: float,
        dropoff_longitude: float,
        vehicle_class: str = VehicleClass.STANDARD,
        pickup_address: str = "",
        dropoff_address: str = "",
        surge_multiplier: float = 1.0,
    ) -> Ride:
        """
        Create a REQUESTED ride with an estimated fare.

        Raises:
            Unauthorized: the user is not a rider
            ValidationFailed: coordinates out of range
            ActiveRideExists: the rider already has a non-terminal ride
        """
        if not getattr(rider, "is_rider", False):
            raise Unauthorized("Only riders can request rides")

        pickup_latitude, pickup_longitude = driver_services.validate_coordinates(pickup_latitude, pickup_longitude)
        dropoff_latitude, dropoff_longitude = driver_services.validate_coordinates(dropoff_latitude, dropoff_longitude)
        if vehicle_class not in VehicleClass.values:
            vehicle_class = VehicleClass.STANDARD

        if self.store.find_active_for_rider(rider.id):
            raise ActiveRideExists("You already have an active ride request")

        distance = calculate_distance(pickup_latitude, pickup_longitude, dropoff_latitude, dropoff_longitude)
        duration = calculate_eta(distance)
        fare = calculate_fare(distance, duration, vehicle_class, surge_multiplier)

        with transaction.atomic():
            ride = self.store.create(
                rider=rider,
                pickup_latitude=round(pickup_latitude, 6),
                pickup_longitude=round(pickup_longitude, 6),
                pickup_address=pickup_address,
                dropoff_latitude=round(dropoff_latitude, 6),
                dropoff_longitude=round(dropoff_longitude, 6),
                dropoff_address=dropoff_address,
                vehicle_class=vehicle_class,
                status=RideStatus.REQUESTED,
                distance_km=round(distance, 3),
                estimated_duration_min=duration,
                requested_at=self.clock(),
                **fare_fields(fare),
            )
            self.bus.publish_ride_event(ride, events.RIDE_REQUESTED, {"fare": fare.as_dict()})

        logger.info("Ride %s requested by rider %s (%.2fkm, %s)", ride.id, rider.id, distance, fare.total)
        return ride

    # ===================== Driver Operations =====================

    def accept(self, ride_id: int, driver) -> Ride:
        """
        Assign ``driver`` to a REQUESTED ride.

        Raises:
            RideAlreadyTaken: another driver holds the ride
            InvalidTransition: the ride is finished or cancelled
            Unauthorized: not a driver, offline, or not offered this ride
            DriverBusy: the driver is already on a ride, or went offline
                while accepting
            Conflict: lost a concurrent write, worth retrying
        """
        actor = Actor.for_user(driver)
        ride = self.store.get(ride_id)

        if ride.status in TAKEN_STATUSES and ride.driver_id not in (None, driver.id):
            raise RideAlreadyTaken("This ride was already accepted by another driver")

        transitions.check(ride, actor, RideStatus.ACCEPTED)

        profile = driver_services.get_driver_profile(driver.id)
        if not profile.is_online:
            raise Unauthorized("Go online before accepting rides")
        if profile.current_ride_id:
            raise DriverBusy("You already have an active ride")

        if self.offers is not None:
            offer = self.offers.get(ride.id)
            if offer is not None and not offer.includes(driver.id):
                raise Unauthorized("This ride was not offered to you")

        with transaction.atomic():
            ride = self._transition(ride, actor, RideStatus.ACCEPTED, {"driver_id": driver.id})
            if not driver_services.assign_current_ride(driver.id, ride):
                raise DriverBusy("You went offline or already have an active ride")
            self.bus.publish_ride_event(ride, events.RIDE_ACCEPTED, {
                "driver_id": driver.id,
                "driver_name": driver.get_full_name() or driver.username,
                "vehicle_number": profile.vehicle_number,
                "vehicle_class": profile.vehicle_class,
            })

        return ride

    def mark_arrived(self, ride_id: int, driver) -> Ride:
        actor = Actor.for_user(driver)
        ride = self.store.get(ride_id)
        with transaction.atomic():
            ride = self._transition(ride, actor, RideStatus.DRIVER_ARRIVED)
            self.bus.publish_ride_event(ride, events.DRIVER_ARRIVED)
        return ride

    def issue_start_otp(self, ride_id: int, actor: Actor) -> Ride:
        """
        Move the ride to OTP_PENDING and send the rider a pickup code.

        The code only travels through notification delivery, never the bus.
        """
        ride = self.store.get(ride_id)
        transitions.check(ride, actor, RideStatus.OTP_PENDING)

        with transaction.atomic():
            issued = self.otp.issue(otp_subject(ride), ride.id)
            ride = self._transition(ride, actor, RideStatus.OTP_PENDING, {
                "otp_code_hash": issued.code_hash,
                "otp_verified": False,
            })
            self._deliver_code(ride, issued)
            self.bus.publish_ride_event(ride, events.OTP_ISSUED, {"expires_at": issued.expires_at.isoformat()})

        return ride

    def resend_start_otp(self, ride_id: int, actor: Actor) -> Ride:
        """Replace the pickup code of an OTP_PENDING ride, e.g. after it expired."""
        ride = self.store.get(ride_id)
        if ride.status != RideStatus.OTP_PENDING:
            raise InvalidTransition(ride.status, RideStatus.OTP_PENDING, "No pickup code to resend for this ride")
        # The rider may ask for a new code too
        if actor.is_rider:
            transitions.authorize(ride, actor, RideStatus.IN_PROGRESS)
        else:
            transitions.authorize(ride, actor, RideStatus.OTP_PENDING)

        with transaction.atomic():
            issued = self.otp.issue(otp_subject(ride), ride.id)
            ride = self.store.update(ride.id, {
                "otp_code_hash": issued.code_hash,
                "otp_issued_at": self._stamp(ride),
            }, ride.version)
            self._deliver_code(ride, issued)
            self.bus.publish_ride_event(ride, events.OTP_ISSUED, {
                "expires_at": issued.expires_at.isoformat(),
                "resent": True,
            })

        logger.info("Pickup code re-issued for ride %s by %s %s", ride.id, actor.role, actor.user_id)
        return ride

    def verify_otp(self, ride_id: int, actor: Actor, code: str) -> Ride:
        """
        Check the pickup code and start the ride.

        OTP errors (NotFound, Expired, AttemptsExceeded, InvalidOtp) propagate
        after the attempt has been recorded.

        A correct code is consumed before the status changes. Lost writes are
        retried while the ride is still OTP_PENDING; if every retry loses, the
        ride keeps waiting and ``resend_start_otp`` issues a new code.
        """
        ride = self.store.get(ride_id)
        transitions.check(ride, actor, RideStatus.IN_PROGRESS)

        verification = self.otp.verify(otp_subject(ride), str(code).strip(), ride.id)

        patch = {
            "otp_verified": True,
            "otp_verified_by": actor.role,
            "otp_verified_at": verification.verified_at,
        }
        for attempt in range(1, self.verify_retries + 1):
            try:
                with transaction.atomic():
                    ride = self._transition(ride, actor, RideStatus.IN_PROGRESS, patch)
                    self.bus.publish_ride_event(ride, events.RIDE_STARTED)
                return ride
            except Conflict:
                if attempt == self.verify_retries:
                    raise
                # Only a resend can race a pending ride; the check in
                # _transition stops once the ride has moved on
                logger.info("Retrying start of ride %s (%d)", ride_id, attempt)
                ride = self.store.get(ride_id)

    def complete(
        self,
        ride_id: int,
        driver,
        actual_distance_km: Optional[float] = None,
        actual_duration_min: Optional[float] = None,
    ) -> Ride:
        """
        Finish an IN_PROGRESS ride and compute the final fare (no surge).

        Missing actuals fall back to the estimate for distance and to the
        elapsed time since start for duration.
        """
        actor = Actor.for_user(driver)
        ride = self.store.get(ride_id)
        transitions.check(ride, actor, RideStatus.COMPLETED)

        completed_at = self._stamp(ride)
        if actual_distance_km is None:
            actual_distance_km = ride.distance_km
        if actual_duration_min is None:
            if ride.started_at:
                actual_duration_min = max(1, math.ceil((completed_at - ride.started_at).total_seconds() / 60))
            else:
                actual_duration_min = ride.estimated_duration_min
        if actual_distance_km < 0 or actual_duration_min < 0:
            raise ValidationFailed("Distance and duration cannot be negative")

        fare = calculate_fare(actual_distance_km, actual_duration_min, ride.vehicle_class, 1.0)

        with transaction.atomic():
            ride = self._transition(ride, actor, RideStatus.COMPLETED, {
                "completed_at": completed_at,
                "actual_distance_km": round(float(actual_distance_km), 3),
                "actual_duration_min": int(math.ceil(actual_duration_min)),
                **fare_fields(fare),
            })
            User.objects.filter(pk__in=[ride.rider_id, ride.driver_id]).update(
                completed_rides=F("completed_rides") + 1
            )
            driver_services.record_completion(ride.driver_id, ride.id)
            self.bus.publish_ride_event(ride, events.RIDE_COMPLETED, {"fare": fare.as_dict()})

        return ride

    # ===================== Shared Operations =====================

    def cancel(self, ride_id: int, actor: Actor, reason: str = "") -> Ride:
        """
        Cancel a ride and record the informational penalty.

        The assigned driver is released and kept in ``released_driver``.
        """
        ride = self.store.get(ride_id)
        transitions.check(ride, actor, RideStatus.CANCELLED)

        penalty = cancellation_penalty(ride, actor.role)
        released_driver_id = ride.driver_id

        with transaction.atomic():
            ride = self._transition(ride, actor, RideStatus.CANCELLED, {
                "cancellation_reason": reason or f"Cancelled by {actor.role}",
                "cancelled_by": actor.role,
                "cancelled_by_user_id": actor.user_id,
                "cancellation_penalty": penalty,
                "driver_id": None,
                "released_driver_id": released_driver_id,
            })
            extra_channels = []
            if released_driver_id:
                driver_services.release_current_ride(released_driver_id, ride.id)
                extra_channels.append(driver_channel(released_driver_id))
                if actor.is_driver:
                    driver_services.record_driver_cancellation(released_driver_id)
            self.bus.publish_ride_event(ride, events.RIDE_CANCELLED, {
                "cancelled_by": actor.role,
                "reason": ride.cancellation_reason,
                "penalty": str(penalty),
            }, extra_channels=extra_channels)

        return ride

    def rate(self, ride_id: int, actor: Actor, rating: int, comment: str = "") -> Ride:
        """
        Rate the other party of a completed ride, once per side.

        The rider rates the driver and the driver rates the rider.
        """
        try:
            rating = int(rating)
        except (TypeError, ValueError):
            raise ValidationFailed("rating must be an integer between 1 and 5")
        if not MIN_RATING <= rating <= MAX_RATING:
            raise ValidationFailed("rating must be an integer between 1 and 5")

        ride = self.store.get(ride_id)
        if ride.status != RideStatus.COMPLETED:
            raise InvalidTransition(ride.status, "rated", "Only completed rides can be rated")

        now = self.clock()
        if actor.is_rider and actor.user_id == ride.rider_id:
            if ride.rider_rating is not None:
                raise AlreadyRated("You already rated this ride")
            patch = {"rider_rating": rating, "rider_comment": comment, "rider_rated_at": now}
            rated_user_id = ride.driver_id
        elif actor.is_driver and actor.user_id == ride.driver_id:
            if ride.driver_rating is not None:
                raise AlreadyRated("You already rated this ride")
            patch = {"driver_rating": rating, "driver_comment": comment, "driver_rated_at": now}
            rated_user_id = ride.rider_id
        else:
            raise Unauthorized("Only ride participants can rate a ride")

        with transaction.atomic():
            ride = self.store.update(ride.id, patch, ride.version)
            if actor.is_rider:
                driver_services.record_rating(rated_user_id, rating)
            else:
                _record_user_rating(rated_user_id, rating)
            self.bus.publish_ride_event(ride, events.RIDE_RATED, {"by": actor.role, "rating": rating})

        logger.info("Ride %s rated %s by %s", ride.id, rating, actor.role)
        return ride

    # ===================== Queries =====================

    def get_ride(self, ride_id: int, user) -> Ride:
        ride = self.store.get(ride_id)
        if user.id not in (ride.rider_id, ride.driver_id, ride.released_driver_id):
            raise Unauthorized("You are not a participant of this ride")
        return ride

    def current_ride_for(self, user) -> Optional[Ride]:
        if getattr(user, "is_driver", False):
            return self.store.find_active_for_driver(user.id)
        return self.store.find_active_for_rider(user.id)

    def ride_history(self, user, status: Optional[str] = None):
        return self.store.history(user.id, as_driver=getattr(user, "is_driver", False), status=status)

    # ===================== Notifications =====================

    def _deliver_code(self, ride: Ride, issued) -> None:
        subject = otp_subject(ride)
        message = f"Your pickup code for ride #{ride.id} is {issued.code}. Share it with your driver."
        transaction.on_commit(lambda: self.notifier.deliver(subject, message))


def _record_user_rating(user_id: int, rating: int) -> None:
    user = User.objects.select_for_update().get(pk=user_id)
    total = (user.rating or 0) * user.rating_count + rating
    user.rating_count += 1
    user.rating = round(total / user.rating_count, 2)
    user.save(update_fields=["rating", "rating_count"])
