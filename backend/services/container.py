"""
Wiring of the ride services.

Views, consumers and tasks call ``get_ride_services()``; tests build the
pieces directly with their own clock, scheduler or bus.
"""

from dataclasses import dataclass
from typing import Optional

from realtime.bus import EventBus
from realtime.delivery import NotificationDelivery
from services.matching import DispatchCoordinator, DriverMatcher, OfferBook
from services.otp import OtpChallenge
from services.ride_management import RideLifecycle, RideStore


@dataclass
class RideServices:
    store: RideStore
    bus: EventBus
    otp: OtpChallenge
    notifier: NotificationDelivery
    matcher: DriverMatcher
    offers: OfferBook
    lifecycle: RideLifecycle
    dispatch: DispatchCoordinator


def build_ride_services(bus: Optional[EventBus] = None, scheduler=None, clock=None) -> RideServices:
    store = RideStore()
    bus = bus or EventBus()
    otp = OtpChallenge(clock=clock)
    notifier = NotificationDelivery()
    matcher = DriverMatcher()
    offers = OfferBook()
    lifecycle = RideLifecycle(
        store=store,
        bus=bus,
        otp=otp,
        notifier=notifier,
        offers=offers,
        clock=clock,
    )
    dispatch = DispatchCoordinator(
        lifecycle,
        matcher=matcher,
        offers=offers,
        bus=bus,
        scheduler=scheduler,
    )
    return RideServices(
        store=store,
        bus=bus,
        otp=otp,
        notifier=notifier,
        matcher=matcher,
        offers=offers,
        lifecycle=lifecycle,
        dispatch=dispatch,
    )


_services: Optional[RideServices] = None


def get_ride_services() -> RideServices:
    """Process-wide services, built on first use."""
    global _services
    if _services is None:
        _services = build_ride_services()
    return _services


def reset_ride_services() -> None:
    global _services
    _services = None
