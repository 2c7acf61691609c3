"""Cancellation penalty rules. The penalty is informational and never charged here."""

from decimal import Decimal, ROUND_HALF_UP

from rides.models import Ride, RideStatus, ActorRole


RIDER_PENALTY_RATE = Decimal("0.50")
DRIVER_PENALTY_RATE = Decimal("0.25")

_CENTS = Decimal("0.01")


def cancellation_penalty(ride: Ride, cancelled_by: str) -> Decimal:
    """
    Penalty for cancelling ``ride`` in its current status.

    Rider cancelling an accepted or in-progress ride pays half the total fare,
    driver cancelling an accepted ride forfeits a quarter of the base fare.
    Everything else is free.
    """
    if cancelled_by == ActorRole.RIDER and ride.status in (RideStatus.ACCEPTED, RideStatus.IN_PROGRESS):
        amount = Decimal(ride.total_fare) * RIDER_PENALTY_RATE
    elif cancelled_by == ActorRole.DRIVER and ride.status == RideStatus.ACCEPTED:
        amount = Decimal(ride.base_fare) * DRIVER_PENALTY_RATE
    else:
        amount = Decimal("0")
    return amount.quantize(_CENTS, rounding=ROUND_HALF_UP)
