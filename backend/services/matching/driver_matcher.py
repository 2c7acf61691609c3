"""
Driver matching.

Finds available drivers near the pickup, drops the ones that do not qualify
and ranks the rest with a 100 point score:

    proximity   30  (loses 3 points per km)
    rating      30  (unrated drivers count as 4.5 stars)
    acceptance  20
    experience  20  (one point per 100 completed rides)
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Callable

from django.conf import settings

from common.utils import calculate_eta
from drivers.models import DriverProfile, VehicleClass
from drivers import location_index

logger = logging.getLogger(__name__)

MIN_DRIVER_RATING = 3.5
MIN_ACCEPTANCE_RATE = 0.75
DEFAULT_DRIVER_RATING = 4.5

# Which driver vehicle classes can serve a requested class
COMPATIBLE_CLASSES = {
    VehicleClass.STANDARD: {VehicleClass.STANDARD, VehicleClass.COMFORT, VehicleClass.PREMIUM},
    VehicleClass.COMFORT: {VehicleClass.COMFORT, VehicleClass.PREMIUM},
    VehicleClass.PREMIUM: {VehicleClass.PREMIUM},
}


@dataclass(frozen=True)
class Candidate:
    driver_id: int
    score: float
    distance_km: float
    eta_min: int


def is_class_compatible(requested: str, offered: str) -> bool:
    return offered in COMPATIBLE_CLASSES.get(requested, COMPATIBLE_CLASSES[VehicleClass.STANDARD])


def is_eligible(profile: DriverProfile, vehicle_class: str) -> bool:
    if profile.rating is not None and profile.rating < MIN_DRIVER_RATING:
        return False
    if profile.acceptance_rate < MIN_ACCEPTANCE_RATE:
        return False
    return is_class_compatible(vehicle_class, profile.vehicle_class)


def score_driver(profile: DriverProfile, distance_km: float) -> float:
    proximity = max(0.0, 30 - distance_km * 3)
    rating = (profile.rating if profile.rating is not None else DEFAULT_DRIVER_RATING) / 5 * 30
    acceptance = profile.acceptance_rate * 20
    experience = min(20.0, profile.completed_rides / 100)
    return max(0.0, min(100.0, proximity + rating + acceptance + experience))


class DriverMatcher:
    def __init__(
        self,
        radius_km: Optional[float] = None,
        max_candidates: Optional[int] = None,
        finder: Optional[Callable] = None,
    ):
        self.radius_km = radius_km or getattr(settings, "RIDE_MATCH_RADIUS_KM", 10)
        self.max_candidates = max_candidates or getattr(settings, "RIDE_MATCH_MAX_CANDIDATES", 10)
        self.finder = finder or location_index.find_available_drivers_near

    def find_candidates(
        self,
        lat: float,
        lon: float,
        vehicle_class: str = VehicleClass.STANDARD,
        radius_km: Optional[float] = None,
        exclude_user_id: Optional[int] = None,
    ) -> List[Candidate]:
        """
        Ranked candidates for a pickup, best first, at most ``max_candidates``.

        Ties go to the nearer driver, then the lower driver id.
        """
        radius_km = radius_km or self.radius_km
        nearby = self.finder(lat, lon, radius_km, exclude_user_ids=[exclude_user_id])

        candidates: List[Candidate] = []
        for profile, distance in nearby:
            if not is_eligible(profile, vehicle_class):
                continue
            candidates.append(Candidate(
                driver_id=profile.user_id,
                score=round(score_driver(profile, distance), 2),
                distance_km=round(distance, 3),
                eta_min=calculate_eta(distance),
            ))

        candidates.sort(key=lambda c: (-c.score, c.distance_km, c.driver_id))
        candidates = candidates[:self.max_candidates]

        logger.info(
            "Matched %d/%d drivers within %skm for class %s",
            len(candidates), len(nearby), radius_km, vehicle_class,
        )
        return candidates
