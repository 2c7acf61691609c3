from datetime import timedelta
from io import StringIO
from unittest.mock import patch

from django.core.cache import cache
from django.core.management import call_command
from django.test import TestCase
from django.utils import timezone

from rides.models import OtpRecord, Ride, RideStatus
from rides.tasks import expire_ride_offer_task, purge_expired_otps_task
from services.container import get_ride_services, reset_ride_services
from services.matching import MatchOffer
from services.matching.offer_dispatch import schedule_offer_timeout

from .helpers import DROPOFF, PICKUP, make_driver, make_rider, make_services


class OfferTimeoutTaskTests(TestCase):
    def setUp(self):
        cache.clear()
        self.services, self.bus, self.scheduler = make_services()
        self.rider = make_rider()

    def test_schedules_through_celery(self):
        with patch("rides.tasks.expire_ride_offer_task") as task:
            schedule_offer_timeout(7, 1, 45)
        task.apply_async.assert_called_once_with((7, 1), countdown=45)

    def test_task_escalates_waiting_ride(self):
        make_driver("near", "9000000001", km_north=1)
        with self.captureOnCommitCallbacks(execute=True):
            ride = self.services.dispatch.request_ride(self.rider, *PICKUP, *DROPOFF)
        make_driver("far", "9000000002", km_north=12)

        with patch("services.container.get_ride_services", return_value=self.services):
            attempt = expire_ride_offer_task(ride.id, 1)

        self.assertEqual(attempt, 2)
        self.assertEqual(self.services.offers.get(ride.id).attempt, 2)

    def test_task_for_missing_ride_is_a_no_op(self):
        with patch("services.container.get_ride_services", return_value=self.services):
            self.assertIsNone(expire_ride_offer_task(424242, 1))


class MaintenanceCommandTests(TestCase):
    def setUp(self):
        cache.clear()
        reset_ride_services()
        self.addCleanup(reset_ride_services)
        self.rider = make_rider()
        self.ride = Ride.objects.create(
            rider=self.rider,
            pickup_latitude=PICKUP[0],
            pickup_longitude=PICKUP[1],
            dropoff_latitude=DROPOFF[0],
            dropoff_longitude=DROPOFF[1],
            requested_at=timezone.now() - timedelta(minutes=5),
        )

    def _otp(self, expires_at):
        return OtpRecord.objects.create(
            subject=self.rider.phone_number,
            ride=self.ride,
            code_hash="unused",
            created_at=expires_at - timedelta(minutes=10),
            expires_at=expires_at,
        )

    def test_purge_expired_otps_command(self):
        self._otp(timezone.now() - timedelta(seconds=1))
        out = StringIO()

        call_command("purge_expired_otps", stdout=out)

        self.assertIn("Deleted 1", out.getvalue())
        self.assertFalse(OtpRecord.objects.exists())

    def test_purge_expired_otps_task_keeps_live_codes(self):
        self._otp(timezone.now() + timedelta(minutes=5))
        self.assertEqual(purge_expired_otps_task(), 0)
        self.assertEqual(OtpRecord.objects.count(), 1)

    def test_process_offer_timeouts_command(self):
        old = timezone.now() - timedelta(minutes=2)
        get_ride_services().offers.put(MatchOffer(ride_id=self.ride.id, attempt=2, radius_km=15, issued_at=old))
        out = StringIO()

        call_command("process_offer_timeouts", stdout=out)

        self.assertIn("Handled 1 timed out offer(s); escalated 0 ride(s).", out.getvalue())
        self.assertIsNone(get_ride_services().offers.get(self.ride.id))
        self.assertEqual(Ride.objects.get(pk=self.ride.id).status, RideStatus.REQUESTED)

    def test_fresh_offers_are_left_alone(self):
        get_ride_services().offers.put(MatchOffer(ride_id=self.ride.id, attempt=1, radius_km=10))
        out = StringIO()

        call_command("process_offer_timeouts", stdout=out)

        self.assertIn("Handled 0", out.getvalue())
        self.assertIsNotNone(get_ride_services().offers.get(self.ride.id))
