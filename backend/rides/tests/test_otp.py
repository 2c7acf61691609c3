from unittest.mock import patch

from django.core.cache import cache
from django.test import TestCase
from django.utils import timezone

from realtime import bus as events
from realtime.delivery import LocmemBackend
from rides.models import OtpRecord, Ride, RideStatus
from services.otp import OtpChallenge, generate_code
from services.ride_management import (
    Actor,
    AttemptsExceeded,
    Conflict,
    Expired,
    InvalidOtp,
    InvalidTransition,
    NotFound,
    OtpExpired,
    OtpNotFound,
)

from .helpers import DROPOFF, PICKUP, FakeClock, delivered_code, make_driver, make_rider, make_services


def _wrong(code):
    return "111111" if code != "111111" else "222222"


class OtpChallengeTests(TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.otp = OtpChallenge(ttl_seconds=600, max_attempts=3, clock=self.clock)
        self.rider = make_rider()
        self.ride = Ride.objects.create(
            rider=self.rider,
            pickup_latitude=PICKUP[0],
            pickup_longitude=PICKUP[1],
            dropoff_latitude=DROPOFF[0],
            dropoff_longitude=DROPOFF[1],
            requested_at=timezone.now(),
        )
        self.subject = self.rider.phone_number

    def test_generated_codes_are_six_digits(self):
        for _ in range(20):
            code = generate_code()
            self.assertEqual(len(code), 6)
            self.assertTrue(code.isdigit())

    def test_code_is_stored_hashed(self):
        issued = self.otp.issue(self.subject, self.ride.id)
        record = OtpRecord.objects.get(subject=self.subject, ride=self.ride)
        self.assertNotEqual(record.code_hash, issued.code)
        self.assertEqual(record.code_hash, issued.code_hash)

    def test_right_code_verifies_exactly_once(self):
        issued = self.otp.issue(self.subject, self.ride.id)

        verification = self.otp.verify(self.subject, issued.code, self.ride.id)
        self.assertEqual(verification.ride_id, self.ride.id)
        self.assertFalse(OtpRecord.objects.exists())

        with self.assertRaises(OtpNotFound):
            self.otp.verify(self.subject, issued.code, self.ride.id)

    def test_wrong_code_counts_an_attempt(self):
        issued = self.otp.issue(self.subject, self.ride.id)

        with self.assertRaises(InvalidOtp) as ctx:
            self.otp.verify(self.subject, _wrong(issued.code), self.ride.id)

        self.assertEqual(ctx.exception.attempts_left, 2)
        self.assertEqual(OtpRecord.objects.get().attempts, 1)

    def test_fourth_attempt_is_refused_even_with_the_right_code(self):
        issued = self.otp.issue(self.subject, self.ride.id)
        for _ in range(3):
            with self.assertRaises(InvalidOtp):
                self.otp.verify(self.subject, _wrong(issued.code), self.ride.id)

        with self.assertRaises(AttemptsExceeded):
            self.otp.verify(self.subject, issued.code, self.ride.id)
        self.assertFalse(OtpRecord.objects.exists())

    def test_code_expires_after_ttl(self):
        issued = self.otp.issue(self.subject, self.ride.id)
        self.clock.advance(minutes=11)

        with self.assertRaises(OtpExpired) as ctx:
            self.otp.verify(self.subject, issued.code, self.ride.id)

        self.assertIsInstance(ctx.exception, Expired)
        self.assertIsInstance(ctx.exception, NotFound)
        self.assertFalse(OtpRecord.objects.exists())

    def test_reissue_replaces_previous_code(self):
        first = self.otp.issue(self.subject, self.ride.id)
        second = self.otp.issue(self.subject, self.ride.id)
        self.assertEqual(OtpRecord.objects.count(), 1)

        if first.code != second.code:
            with self.assertRaises(InvalidOtp):
                self.otp.verify(self.subject, first.code, self.ride.id)
        self.otp.verify(self.subject, second.code, self.ride.id)

    def test_purge_removes_only_expired_codes(self):
        other_rider = make_rider("other", "9000000055")
        other_ride = Ride.objects.create(
            rider=other_rider,
            pickup_latitude=PICKUP[0],
            pickup_longitude=PICKUP[1],
            dropoff_latitude=DROPOFF[0],
            dropoff_longitude=DROPOFF[1],
            requested_at=timezone.now(),
        )
        self.otp.issue(self.subject, self.ride.id)
        self.clock.advance(minutes=8)
        self.otp.issue(other_rider.phone_number, other_ride.id)
        self.clock.advance(minutes=3)

        self.assertEqual(self.otp.purge_expired(), 1)
        self.assertEqual(list(OtpRecord.objects.values_list("ride_id", flat=True)), [other_ride.id])


class PickupVerificationTests(TestCase):
    """Pickup codes driven through the ride lifecycle."""

    def setUp(self):
        cache.clear()
        LocmemBackend.outbox.clear()
        self.clock = FakeClock()
        self.services, self.bus, _ = make_services(clock=self.clock)
        self.lifecycle = self.services.lifecycle
        self.rider = make_rider()
        self.driver = make_driver("driver_one", "9000000001")

        with self.captureOnCommitCallbacks(execute=True):
            ride = self.lifecycle.create_ride(self.rider, *PICKUP, *DROPOFF)
            ride = self.lifecycle.accept(ride.id, self.driver)
            self.ride = self.lifecycle.issue_start_otp(ride.id, Actor.for_user(self.driver))

    def test_code_goes_to_the_rider(self):
        subject, _ = LocmemBackend.outbox[-1]
        self.assertEqual(subject, self.rider.phone_number)
        self.assertIsNotNone(delivered_code(LocmemBackend.outbox, self.ride.id))

    def test_rider_can_enter_the_code(self):
        code = delivered_code(LocmemBackend.outbox, self.ride.id)
        with self.captureOnCommitCallbacks(execute=True):
            ride = self.lifecycle.verify_otp(self.ride.id, Actor.for_user(self.rider), code)
        self.assertEqual(ride.status, RideStatus.IN_PROGRESS)
        self.assertEqual(ride.otp_verified_by, "rider")

    def test_wrong_code_keeps_ride_waiting(self):
        code = delivered_code(LocmemBackend.outbox, self.ride.id)
        with self.assertRaises(InvalidOtp):
            self.lifecycle.verify_otp(self.ride.id, Actor.for_user(self.driver), _wrong(code))
        self.assertEqual(Ride.objects.get(pk=self.ride.id).status, RideStatus.OTP_PENDING)

    def test_expired_code_can_be_replaced(self):
        old_code = delivered_code(LocmemBackend.outbox, self.ride.id)
        self.clock.advance(minutes=11)
        with self.assertRaises(OtpExpired):
            self.lifecycle.verify_otp(self.ride.id, Actor.for_user(self.driver), old_code)
        self.assertEqual(Ride.objects.get(pk=self.ride.id).status, RideStatus.OTP_PENDING)

        with self.captureOnCommitCallbacks(execute=True):
            self.lifecycle.resend_start_otp(self.ride.id, Actor.for_user(self.rider))
        new_code = delivered_code(LocmemBackend.outbox, self.ride.id)

        with self.captureOnCommitCallbacks(execute=True):
            ride = self.lifecycle.verify_otp(self.ride.id, Actor.for_user(self.driver), new_code)
        self.assertEqual(ride.status, RideStatus.IN_PROGRESS)

    def test_resend_needs_a_pending_code(self):
        code = delivered_code(LocmemBackend.outbox, self.ride.id)
        with self.captureOnCommitCallbacks(execute=True):
            self.lifecycle.verify_otp(self.ride.id, Actor.for_user(self.driver), code)

        with self.assertRaises(InvalidTransition):
            self.lifecycle.resend_start_otp(self.ride.id, Actor.for_user(self.driver))

    def _losing_writes(self, count):
        """Make the next ``count`` ride writes lose to a concurrent writer."""
        store = self.lifecycle.store
        real_update = store.update
        losses = [Conflict() for _ in range(count)]

        def update(*args, **kwargs):
            if losses:
                raise losses.pop()
            return real_update(*args, **kwargs)

        return patch.object(store, "update", side_effect=update)

    def test_start_is_retried_after_lost_writes(self):
        code = delivered_code(LocmemBackend.outbox, self.ride.id)

        with self._losing_writes(2) as update:
            with self.captureOnCommitCallbacks(execute=True):
                ride = self.lifecycle.verify_otp(self.ride.id, Actor.for_user(self.driver), code)

        self.assertEqual(update.call_count, 3)
        self.assertEqual(ride.status, RideStatus.IN_PROGRESS)
        self.assertEqual(len(self.bus.events(event_type=events.RIDE_STARTED)), 1)

    def test_resend_recovers_when_every_retry_loses(self):
        code = delivered_code(LocmemBackend.outbox, self.ride.id)

        with self._losing_writes(self.lifecycle.verify_retries):
            with self.assertRaises(Conflict):
                self.lifecycle.verify_otp(self.ride.id, Actor.for_user(self.driver), code)

        # The code was used up but the ride is still waiting for one
        self.assertEqual(Ride.objects.get(pk=self.ride.id).status, RideStatus.OTP_PENDING)
        self.assertFalse(OtpRecord.objects.filter(ride_id=self.ride.id).exists())

        with self.captureOnCommitCallbacks(execute=True):
            self.lifecycle.resend_start_otp(self.ride.id, Actor.for_user(self.rider))
        new_code = delivered_code(LocmemBackend.outbox, self.ride.id)

        with self.captureOnCommitCallbacks(execute=True):
            ride = self.lifecycle.verify_otp(self.ride.id, Actor.for_user(self.rider), new_code)
        self.assertEqual(ride.status, RideStatus.IN_PROGRESS)
