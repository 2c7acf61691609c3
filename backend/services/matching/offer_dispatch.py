"""
Offer dispatch and expiry handling.

Broadcast pattern for ride offers:
1. Ride created, matcher ranks drivers within the base radius
2. Offer sent to every candidate at once (driver_<id> groups)
3. First acceptance wins through the ride compare-and-swap
4. No acceptance before the timeout: escalate the radius once
5. Still nothing: tell the rider no drivers are available
"""

import logging
from decimal import Decimal
from typing import Callable, Iterable, Optional, Tuple

from django.conf import settings
from django.db import transaction

from common.utils import bounding_box, surge_multiplier
from drivers import location_index
from drivers.models import VehicleClass
from realtime import bus as events
from realtime.bus import EventBus, RideEvent, driver_channel, ride_channel, user_channel
from rides.models import Ride, RideStatus
from services.ride_management.ride_lifecycle import RideLifecycle
from services.ride_management.transitions import Actor
from services.ride_management.exceptions import (
    Conflict,
    NoDriversAvailable,
    RideAlreadyTaken,
    RideNotFound,
)
from .driver_matcher import DriverMatcher, Candidate
from .offers import MatchOffer, OfferBook

logger = logging.getLogger(__name__)

INITIAL_ATTEMPT = 1
ESCALATED_ATTEMPT = 2


def schedule_offer_timeout(ride_id: int, attempt: int, countdown: int) -> None:
    """Queue the Celery expiry task for this offer attempt."""
    from rides.tasks import expire_ride_offer_task
    expire_ride_offer_task.apply_async((ride_id, attempt), countdown=countdown)


def ride_summary(ride: Ride) -> dict:
    from rides.serializers import RideSerializer
    return dict(RideSerializer(ride).data)


class DispatchCoordinator:
    def __init__(
        self,
        lifecycle: RideLifecycle,
        matcher: Optional[DriverMatcher] = None,
        offers: Optional[OfferBook] = None,
        bus: Optional[EventBus] = None,
        scheduler: Optional[Callable[[int, int, int], None]] = None,
        escalated_radius_km: Optional[float] = None,
        timeout_seconds: Optional[int] = None,
        accept_retries: Optional[int] = None,
    ):
        self.lifecycle = lifecycle
        self.matcher = matcher or DriverMatcher()
        self.offers = offers or OfferBook()
        self.bus = bus or lifecycle.bus
        self.scheduler = scheduler or schedule_offer_timeout
        self.escalated_radius_km = escalated_radius_km or getattr(settings, "RIDE_MATCH_ESCALATED_RADIUS_KM", 15)
        self.timeout_seconds = timeout_seconds or getattr(settings, "RIDE_OFFER_TIMEOUT_SECONDS", 45)
        self.accept_retries = accept_retries or getattr(settings, "RIDE_ACCEPT_MAX_RETRIES", 3)

    # ===================== Request =====================

    def current_surge(self, lat: float, lon: float) -> float:
        """Surge tier from open requests vs available drivers around the pickup."""
        radius = self.matcher.radius_km
        min_lat, max_lat, min_lon, max_lon = bounding_box(lat, lon, radius)
        open_requests = self.lifecycle.store.count_open_requests_near(min_lat, max_lat, min_lon, max_lon)
        available = location_index.count_available_drivers_near(lat, lon, radius)
        # The request being made counts as demand
        return surge_multiplier(open_requests + 1, available)

    def request_ride(
        self,
        rider,
        pickup_latitude: float,
        pickup_longitude: float,
        dropoff_latitude: float,
        dropoff_longitude: float,
        vehicle_class: str = VehicleClass.STANDARD,
        pickup_address: str = "",
        dropoff_address: str = "",
    ) -> Ride:
        """
        Create a ride and broadcast it to the best drivers nearby.

        Raises:
            NoDriversAvailable: nobody within the escalated radius; the ride
                stays REQUESTED and is attached to the error
        """
        surge = self.current_surge(float(pickup_latitude), float(pickup_longitude))
        ride = self.lifecycle.create_ride(
            rider,
            pickup_latitude,
            pickup_longitude,
            dropoff_latitude,
            dropoff_longitude,
            vehicle_class=vehicle_class,
            pickup_address=pickup_address,
            dropoff_address=dropoff_address,
            surge_multiplier=surge,
        )

        attempt, radius = INITIAL_ATTEMPT, self.matcher.radius_km
        candidates = self._find_candidates(ride, radius)
        if not candidates:
            attempt, radius = ESCALATED_ATTEMPT, self.escalated_radius_km
            candidates = self._find_candidates(ride, radius)

        if not candidates:
            self._announce_no_drivers(ride)
            raise NoDriversAvailable(ride=ride)

        offer = MatchOffer(ride_id=ride.id, attempt=attempt, radius_km=radius, candidates=candidates)
        self._broadcast(ride, offer, candidates)
        return ride

    # ===================== Timeout / Escalation =====================

    def handle_offer_timeout(self, ride_id: int, attempt: int) -> Optional[MatchOffer]:
        """
        Called when an offer attempt ran out of time.

        Returns the escalated offer, or None when there is nothing left to do.
        """
        try:
            ride = self.lifecycle.store.get(ride_id)
        except RideNotFound:
            logger.warning("Offer timeout for missing ride %s", ride_id)
            return None

        if ride.status != RideStatus.REQUESTED:
            logger.debug("Ride %s already %s, ignoring offer timeout", ride_id, ride.status)
            self.offers.discard(ride_id)
            return None

        offer = self.offers.get(ride_id)
        if offer is not None and offer.attempt != attempt:
            logger.debug("Offer attempt %s for ride %s superseded by %s", attempt, ride_id, offer.attempt)
            return None

        if attempt < ESCALATED_ATTEMPT:
            candidates = self._find_candidates(ride, self.escalated_radius_km)
            if candidates:
                already_offered = set(offer.driver_ids) if offer else set()
                escalated = MatchOffer(
                    ride_id=ride.id,
                    attempt=ESCALATED_ATTEMPT,
                    radius_km=self.escalated_radius_km,
                    candidates=candidates,
                )
                newcomers = [c for c in candidates if c.driver_id not in already_offered]
                self._broadcast(ride, escalated, newcomers)

                # An accept or cancel that committed before the offer was stored
                # has already discarded the old one and will not see this one
                current = self.lifecycle.store.get(ride_id)
                if current.status != RideStatus.REQUESTED:
                    self.offers.discard(ride_id)
                    if current.status == RideStatus.CANCELLED:
                        event_type, message = events.RIDE_CANCELLED, "Ride request cancelled."
                    else:
                        event_type, message = events.RIDE_TAKEN, "This ride was taken by another driver."
                    self._notify_drivers(
                        current,
                        [c.driver_id for c in newcomers if c.driver_id != current.driver_id],
                        event_type,
                        {"message": message},
                    )
                    logger.info("Ride %s went %s while escalating, offer withdrawn", ride_id, current.status)
                    return None

                logger.info(
                    "Escalated ride %s to %skm (%d new drivers)",
                    ride.id, self.escalated_radius_km, len(newcomers),
                )
                return escalated

        self.offers.discard(ride_id)
        self._announce_no_drivers(ride)
        return None

    # ===================== Accept / Cancel =====================

    def accept_ride(self, ride_id: int, driver) -> Ride:
        """
        First acceptance wins. Lost compare-and-swaps are retried while the
        ride is still REQUESTED; once someone else holds it RideAlreadyTaken
        is raised.
        """
        for attempt in range(1, self.accept_retries + 1):
            try:
                ride = self.lifecycle.accept(ride_id, driver)
                break
            except RideAlreadyTaken:
                logger.info("Driver %s lost ride %s to another driver", driver.id, ride_id)
                raise
            except Conflict as exc:
                # Only plain version conflicts are worth another try
                if type(exc) is not Conflict or attempt == self.accept_retries:
                    raise
                logger.info("Retrying accept of ride %s by driver %s (%d)", ride_id, driver.id, attempt)

        offer = self.offers.discard(ride.id)
        if offer is not None:
            others = [driver_id for driver_id in offer.driver_ids if driver_id != driver.id]
            self._notify_drivers(ride, others, events.RIDE_TAKEN, {"message": "This ride was taken by another driver."})
        return ride

    def cancel_ride(self, ride_id: int, actor: Actor, reason: str = "") -> Tuple[Ride, Decimal]:
        ride = self.lifecycle.cancel(ride_id, actor, reason)
        offer = self.offers.discard(ride.id)
        if offer is not None:
            others = [d for d in offer.driver_ids if d != ride.released_driver_id]
            self._notify_drivers(ride, others, events.RIDE_CANCELLED, {"message": "Ride request cancelled."})
        return ride, ride.cancellation_penalty or Decimal("0.00")

    # ===================== Helpers =====================

    def _find_candidates(self, ride: Ride, radius_km: float):
        return self.matcher.find_candidates(
            float(ride.pickup_latitude),
            float(ride.pickup_longitude),
            vehicle_class=ride.vehicle_class,
            radius_km=radius_km,
            exclude_user_id=ride.rider_id,
        )

    def _broadcast(self, ride: Ride, offer: MatchOffer, recipients: Iterable[Candidate]) -> None:
        self.offers.put(offer)
        summary = ride_summary(ride)
        for candidate in recipients:
            event = RideEvent.for_ride(ride, events.RIDE_OFFER, {
                "ride": summary,
                "attempt": offer.attempt,
                "distance_to_pickup_km": candidate.distance_km,
                "eta_min": candidate.eta_min,
                "expires_in": self.timeout_seconds,
            })
            self.bus.publish_on_commit([driver_channel(candidate.driver_id)], event)

        ride_id, attempt, countdown = ride.id, offer.attempt, self.timeout_seconds
        transaction.on_commit(lambda: self.scheduler(ride_id, attempt, countdown))
        logger.info(
            "Offered ride %s to %d drivers (attempt %s, %skm)",
            ride.id, len(offer.candidates), offer.attempt, offer.radius_km,
        )

    def _notify_drivers(self, ride: Ride, driver_ids, event_type: str, payload: dict) -> None:
        if not driver_ids:
            return
        event = RideEvent.for_ride(ride, event_type, payload)
        self.bus.publish_on_commit([driver_channel(driver_id) for driver_id in driver_ids], event)

    def _announce_no_drivers(self, ride: Ride) -> None:
        event = RideEvent.for_ride(ride, events.NO_DRIVERS_AVAILABLE, {
            "message": "No drivers found nearby. Please try again later.",
        })
        self.bus.publish_on_commit([user_channel(ride.rider_id), ride_channel(ride.id)], event)
        logger.info("No drivers available for ride %s", ride.id)
