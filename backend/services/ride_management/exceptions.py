"""Custom exceptions for ride management."""


class RideError(Exception):
    """Base class for every typed ride error. ``code`` is the machine-readable reason."""
    code = "ride_error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__doc__)
        self.message = message or self.__class__.__doc__


class InvalidTransition(RideError):
    """Raised when the ride status does not allow the requested change."""
    code = "invalid_transition"

    def __init__(self, current: str, target: str, message: str = ""):
        self.current = current
        self.target = target
        super().__init__(message or f"Cannot move ride from {current} to {target}")


class Unauthorized(RideError):
    """Raised when the acting user may not perform this operation on the ride."""
    code = "unauthorized"


class NotFound(RideError):
    """Raised when a requested object does not exist."""
    code = "not_found"


class RideNotFound(NotFound):
    """Raised when a ride cannot be found."""
    code = "ride_not_found"


class DriverNotFound(NotFound):
    """Raised when a driver profile cannot be found."""
    code = "driver_not_found"


class OtpNotFound(NotFound):
    """Raised when no pickup code is outstanding for the ride."""
    code = "otp_not_found"


class Expired(NotFound):
    """Raised when a time-limited object has expired."""
    code = "expired"


class OtpExpired(Expired):
    """Raised when the pickup code has expired. Request a new one."""
    code = "otp_expired"


class AttemptsExceeded(RideError):
    """Raised when the pickup code was tried too many times."""
    code = "attempts_exceeded"


class InvalidOtp(RideError):
    """Raised when the pickup code is wrong."""
    code = "invalid_otp"

    def __init__(self, attempts_left: int, message: str = ""):
        self.attempts_left = attempts_left
        super().__init__(message or f"Invalid code, {attempts_left} attempt(s) left")


class NoDriversAvailable(RideError):
    """Raised when no eligible driver could be found for a ride."""
    code = "no_drivers_available"

    def __init__(self, ride=None, message: str = ""):
        self.ride = ride
        super().__init__(message or "No drivers available nearby. Please try again later.")


class Conflict(RideError):
    """Raised when a concurrent write won or a uniqueness rule was hit."""
    code = "conflict"


class RideAlreadyTaken(Conflict):
    """Raised when another driver already accepted this ride."""
    code = "ride_already_taken"


class ActiveRideExists(Conflict):
    """Raised when user already has an active ride."""
    code = "active_ride_exists"


class DriverBusy(Conflict):
    """Raised when the driver is on a ride and cannot take or drop work."""
    code = "driver_busy"


class AlreadyRated(Conflict):
    """Raised when this side of the ride has already been rated."""
    code = "already_rated"


class ValidationFailed(RideError):
    """Raised when input values are out of range."""
    code = "validation_failed"
