"""
Live match offers.

An offer lists the drivers a ride was broadcast to. It only lives in the
cache: a new attempt replaces it, acceptance or cancellation discards it.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from django.conf import settings
from django.core.cache import caches
from django.utils import timezone

from .driver_matcher import Candidate

KEY_PREFIX = "ride_offer"


@dataclass
class MatchOffer:
    ride_id: int
    attempt: int
    radius_km: float
    candidates: List[Candidate] = field(default_factory=list)
    issued_at: datetime = field(default_factory=timezone.now)

    @property
    def driver_ids(self) -> List[int]:
        return [c.driver_id for c in self.candidates]

    def includes(self, driver_id: int) -> bool:
        return driver_id in self.driver_ids

    def candidate_for(self, driver_id: int) -> Optional[Candidate]:
        for candidate in self.candidates:
            if candidate.driver_id == driver_id:
                return candidate
        return None


class OfferBook:
    """Cache-backed store of the current offer per ride."""

    def __init__(self, cache_alias: Optional[str] = None, ttl_seconds: Optional[int] = None):
        self.cache_alias = cache_alias or getattr(settings, "RIDE_OFFER_CACHE_ALIAS", "default")
        # Outlive both attempts so a late timeout task still finds the offer
        self.ttl_seconds = ttl_seconds or getattr(settings, "RIDE_OFFER_TIMEOUT_SECONDS", 45) * 4

    @property
    def cache(self):
        return caches[self.cache_alias]

    def _key(self, ride_id: int) -> str:
        return f"{KEY_PREFIX}:{ride_id}"

    def put(self, offer: MatchOffer) -> MatchOffer:
        self.cache.set(self._key(offer.ride_id), offer, timeout=self.ttl_seconds)
        return offer

    def get(self, ride_id: int) -> Optional[MatchOffer]:
        return self.cache.get(self._key(ride_id))

    def discard(self, ride_id: int) -> Optional[MatchOffer]:
        offer = self.get(ride_id)
        self.cache.delete(self._key(ride_id))
        return offer
