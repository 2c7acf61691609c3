"""Translate ride service errors into API responses."""

import logging

from rest_framework import status
from rest_framework.response import Response

from services.ride_management.exceptions import (
    RideError,
    InvalidTransition,
    Unauthorized,
    NotFound,
    Expired,
    AttemptsExceeded,
    InvalidOtp,
    NoDriversAvailable,
    Conflict,
    ValidationFailed,
)

logger = logging.getLogger(__name__)

# Most specific first
STATUS_BY_ERROR = (
    (Expired, status.HTTP_410_GONE),
    (NotFound, status.HTTP_404_NOT_FOUND),
    (Unauthorized, status.HTTP_403_FORBIDDEN),
    (InvalidTransition, status.HTTP_409_CONFLICT),
    (Conflict, status.HTTP_409_CONFLICT),
    (AttemptsExceeded, status.HTTP_429_TOO_MANY_REQUESTS),
    (InvalidOtp, status.HTTP_400_BAD_REQUEST),
    (ValidationFailed, status.HTTP_400_BAD_REQUEST),
    (NoDriversAvailable, status.HTTP_404_NOT_FOUND),
)


def status_for(exc: RideError) -> int:
    for error_class, http_status in STATUS_BY_ERROR:
        if isinstance(exc, error_class):
            return http_status
    return status.HTTP_400_BAD_REQUEST


def error_response(exc: RideError) -> Response:
    body = {"error": exc.code, "message": exc.message}
    if isinstance(exc, InvalidOtp):
        body["attempts_left"] = exc.attempts_left
    http_status = status_for(exc)
    logger.debug("Ride error %s -> %s: %s", exc.code, http_status, exc.message)
    return Response(body, status=http_status)
