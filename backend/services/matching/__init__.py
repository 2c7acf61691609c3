"""
Driver matching and offer dispatch service.

This module handles:
    - Ranking eligible drivers around a pickup
    - Broadcasting offers and resolving the first acceptance
    - Escalating the search radius when an offer times out
"""

from .driver_matcher import DriverMatcher, Candidate
from .offers import MatchOffer, OfferBook
from .offer_dispatch import DispatchCoordinator

__all__ = [
    "DriverMatcher",
    "Candidate",
    "MatchOffer",
    "OfferBook",
    "DispatchCoordinator",
]
