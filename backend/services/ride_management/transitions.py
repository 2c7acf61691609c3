"""
Ride state machine: the transition table, per-status timestamps and the
rules for who may move a ride into each status.
"""

from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional

from rides.models import Ride, RideStatus, ActorRole
from .exceptions import InvalidTransition, Unauthorized


TRANSITIONS: Dict[str, FrozenSet[str]] = {
    RideStatus.REQUESTED: frozenset({RideStatus.ACCEPTED, RideStatus.CANCELLED}),
    RideStatus.ACCEPTED: frozenset({
        RideStatus.DRIVER_ARRIVED,
        RideStatus.OTP_PENDING,
        RideStatus.CANCELLED,
    }),
    RideStatus.DRIVER_ARRIVED: frozenset({RideStatus.OTP_PENDING, RideStatus.CANCELLED}),
    RideStatus.OTP_PENDING: frozenset({RideStatus.IN_PROGRESS}),
    RideStatus.IN_PROGRESS: frozenset({RideStatus.COMPLETED}),
    RideStatus.COMPLETED: frozenset(),
    RideStatus.CANCELLED: frozenset(),
}

# Field stamped when a ride enters the status
TIMESTAMP_FIELDS: Dict[str, str] = {
    RideStatus.REQUESTED: "requested_at",
    RideStatus.ACCEPTED: "accepted_at",
    RideStatus.DRIVER_ARRIVED: "arrived_at",
    RideStatus.OTP_PENDING: "otp_issued_at",
    RideStatus.IN_PROGRESS: "started_at",
    RideStatus.COMPLETED: "completed_at",
    RideStatus.CANCELLED: "cancelled_at",
}


@dataclass(frozen=True)
class Actor:
    """Who is performing an operation. ``user_id`` is None for the system."""
    user_id: Optional[int]
    role: str

    @classmethod
    def for_user(cls, user) -> "Actor":
        role = ActorRole.DRIVER if getattr(user, "is_driver", False) else ActorRole.RIDER
        return cls(user_id=user.id, role=role)

    @classmethod
    def system(cls) -> "Actor":
        return cls(user_id=None, role=ActorRole.SYSTEM)

    @property
    def is_system(self) -> bool:
        return self.role == ActorRole.SYSTEM

    @property
    def is_driver(self) -> bool:
        return self.role == ActorRole.DRIVER

    @property
    def is_rider(self) -> bool:
        return self.role == ActorRole.RIDER


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def ensure_transition(current: str, target: str) -> None:
    if not can_transition(current, target):
        raise InvalidTransition(current, target)


def _is_assigned_driver(ride: Ride, actor: Actor) -> bool:
    return actor.is_driver and ride.driver_id is not None and actor.user_id == ride.driver_id


def _is_ride_rider(ride: Ride, actor: Actor) -> bool:
    return actor.is_rider and actor.user_id == ride.rider_id


def authorize(ride: Ride, actor: Actor, target: str) -> None:
    """
    Check that ``actor`` may move ``ride`` into ``target``.

    Availability and offer membership for ACCEPTED are checked by the
    lifecycle, which has the driver profile and the offer book at hand.
    """
    if target == RideStatus.ACCEPTED:
        allowed = actor.is_driver and actor.user_id != ride.rider_id
    elif target in (RideStatus.DRIVER_ARRIVED, RideStatus.COMPLETED):
        allowed = _is_assigned_driver(ride, actor)
    elif target == RideStatus.OTP_PENDING:
        allowed = actor.is_system or _is_assigned_driver(ride, actor)
    elif target == RideStatus.IN_PROGRESS:
        allowed = _is_assigned_driver(ride, actor) or _is_ride_rider(ride, actor)
    elif target == RideStatus.CANCELLED:
        allowed = actor.is_system or _is_ride_rider(ride, actor) or _is_assigned_driver(ride, actor)
    else:
        allowed = False

    if not allowed:
        raise Unauthorized(f"{actor.role} {actor.user_id} may not move ride {ride.id} to {target}")


def check(ride: Ride, actor: Actor, target: str) -> None:
    """Transition validity first, then actor authorization."""
    ensure_transition(ride.status, target)
    authorize(ride, actor, target)
