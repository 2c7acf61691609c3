"""
Ride management service - Core ride lifecycle operations.

This module handles:
    - The ride state machine and who may drive each transition
    - Optimistic-concurrency persistence of rides
    - Cancellation penalties
    - Typed errors shared by every ride service
"""

from .exceptions import (
    RideError,
    InvalidTransition,
    Unauthorized,
    NotFound,
    RideNotFound,
    DriverNotFound,
    OtpNotFound,
    Expired,
    OtpExpired,
    AttemptsExceeded,
    InvalidOtp,
    NoDriversAvailable,
    Conflict,
    RideAlreadyTaken,
    ActiveRideExists,
    DriverBusy,
    AlreadyRated,
    ValidationFailed,
)
from .transitions import Actor, TRANSITIONS, can_transition
from .penalties import cancellation_penalty
from .store import RideStore
from .ride_lifecycle import RideLifecycle

__all__ = [
    # Lifecycle
    "RideLifecycle",
    "RideStore",
    "Actor",
    "TRANSITIONS",
    "can_transition",
    "cancellation_penalty",
    # Exceptions
    "RideError",
    "InvalidTransition",
    "Unauthorized",
    "NotFound",
    "RideNotFound",
    "DriverNotFound",
    "OtpNotFound",
    "Expired",
    "OtpExpired",
    "AttemptsExceeded",
    "InvalidOtp",
    "NoDriversAvailable",
    "Conflict",
    "RideAlreadyTaken",
    "ActiveRideExists",
    "DriverBusy",
    "AlreadyRated",
    "ValidationFailed",
]
