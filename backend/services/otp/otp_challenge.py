"""
Pickup passcode (OTP) issue and verification.

A record lives per (subject, ride). It is removed on success, when attempts
run out, or when it is found expired; ``purge_expired`` reaps the rest.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from django.conf import settings
from django.contrib.auth.hashers import make_password, check_password
from django.db import transaction
from django.utils import timezone

from rides.models import OtpRecord
from services.ride_management.exceptions import (
    OtpNotFound,
    OtpExpired,
    AttemptsExceeded,
    InvalidOtp,
)

logger = logging.getLogger(__name__)

OTP_LENGTH = 6


@dataclass(frozen=True)
class IssuedOtp:
    """The plain code is only ever available here, right after issue."""
    code: str
    code_hash: str
    expires_at: datetime


@dataclass(frozen=True)
class OtpVerification:
    subject: str
    ride_id: int
    verified_at: datetime


def generate_code(length: int = OTP_LENGTH) -> str:
    return f"{secrets.randbelow(10 ** length):0{length}d}"


class OtpChallenge:
    def __init__(
        self,
        ttl_seconds: Optional[int] = None,
        max_attempts: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.ttl_seconds = ttl_seconds or getattr(settings, "RIDE_OTP_TTL_SECONDS", 600)
        self.max_attempts = max_attempts or getattr(settings, "RIDE_OTP_MAX_ATTEMPTS", 3)
        self.clock = clock or timezone.now

    @transaction.atomic
    def issue(self, subject: str, ride_id: int) -> IssuedOtp:
        """Create a fresh code for (subject, ride), replacing any earlier one."""
        code = generate_code()
        code_hash = make_password(code)
        now = self.clock()
        expires_at = now + timedelta(seconds=self.ttl_seconds)

        OtpRecord.objects.update_or_create(
            subject=subject,
            ride_id=ride_id,
            defaults={
                "code_hash": code_hash,
                "created_at": now,
                "expires_at": expires_at,
                "attempts": 0,
                "max_attempts": self.max_attempts,
            },
        )
        logger.info("Issued pickup code for ride %s (expires %s)", ride_id, expires_at.isoformat())
        return IssuedOtp(code=code, code_hash=code_hash, expires_at=expires_at)

    def verify(self, subject: str, code: str, ride_id: int) -> OtpVerification:
        """
        Check ``code`` against the outstanding record.

        Raises:
            OtpNotFound: nothing outstanding for (subject, ride)
            OtpExpired: the record expired; it is deleted
            AttemptsExceeded: too many wrong tries already; it is deleted
            InvalidOtp: wrong code; the attempt is counted
        """
        error = None
        now = self.clock()

        # The attempt counter must persist even though we raise, so the
        # block commits before any error leaves this method.
        with transaction.atomic():
            record = (
                OtpRecord.objects.select_for_update()
                .filter(subject=subject, ride_id=ride_id)
                .first()
            )
            if record is None:
                error = OtpNotFound(f"No pickup code outstanding for ride {ride_id}")
            elif now >= record.expires_at:
                record.delete()
                error = OtpExpired()
            elif record.attempts >= record.max_attempts:
                record.delete()
                error = AttemptsExceeded("Too many attempts. Request a new code.")
            elif not check_password(str(code), record.code_hash):
                record.attempts += 1
                record.save(update_fields=["attempts"])
                error = InvalidOtp(attempts_left=max(0, record.max_attempts - record.attempts))
            else:
                record.delete()

        if error is not None:
            logger.info("Pickup code check failed for ride %s: %s", ride_id, error.code)
            raise error

        return OtpVerification(subject=subject, ride_id=ride_id, verified_at=now)

    def purge_expired(self) -> int:
        deleted, _ = OtpRecord.objects.filter(expires_at__lte=self.clock()).delete()
        if deleted:
            logger.info("Purged %d expired pickup codes", deleted)
        return deleted
