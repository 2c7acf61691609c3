import random
from decimal import Decimal

from django.core.cache import cache
from django.test import SimpleTestCase, TestCase
from django.utils import timezone

from drivers.models import DriverProfile
from realtime import bus as events
from realtime.bus import driver_channel, ride_channel, user_channel
from realtime.delivery import LocmemBackend
from rides.models import Ride, RideStatus
from services.ride_management import (
    Actor,
    AlreadyRated,
    ActiveRideExists,
    Conflict,
    InvalidTransition,
    RideError,
    RideNotFound,
    TRANSITIONS,
    Unauthorized,
    ValidationFailed,
    can_transition,
)
from services.ride_management import transitions

from .helpers import (
    DROPOFF,
    PICKUP,
    FakeClock,
    delivered_code,
    make_driver,
    make_rider,
    make_services,
)


class TransitionTableTests(SimpleTestCase):
    def _actor_for(self, target):
        if target in (RideStatus.IN_PROGRESS, RideStatus.CANCELLED):
            return Actor(user_id=1, role="rider")
        return Actor(user_id=2, role="driver")

    def test_every_status_pair_follows_the_table(self):
        allowed = {
            (RideStatus.REQUESTED, RideStatus.ACCEPTED),
            (RideStatus.REQUESTED, RideStatus.CANCELLED),
            (RideStatus.ACCEPTED, RideStatus.DRIVER_ARRIVED),
            (RideStatus.ACCEPTED, RideStatus.OTP_PENDING),
            (RideStatus.ACCEPTED, RideStatus.CANCELLED),
            (RideStatus.DRIVER_ARRIVED, RideStatus.OTP_PENDING),
            (RideStatus.DRIVER_ARRIVED, RideStatus.CANCELLED),
            (RideStatus.OTP_PENDING, RideStatus.IN_PROGRESS),
            (RideStatus.IN_PROGRESS, RideStatus.COMPLETED),
        }

        for current in RideStatus.values:
            for target in RideStatus.values:
                with self.subTest(current=current, target=target):
                    ride = Ride(id=1, rider_id=1, driver_id=2, status=current)
                    self.assertEqual(can_transition(current, target), (current, target) in allowed)
                    if (current, target) in allowed:
                        transitions.check(ride, self._actor_for(target), target)
                    else:
                        with self.assertRaises(InvalidTransition):
                            transitions.check(ride, self._actor_for(target), target)

    def test_terminal_statuses_have_no_exits(self):
        self.assertEqual(TRANSITIONS[RideStatus.COMPLETED], frozenset())
        self.assertEqual(TRANSITIONS[RideStatus.CANCELLED], frozenset())

    def test_transition_is_checked_before_actor(self):
        ride = Ride(id=1, rider_id=1, driver_id=2, status=RideStatus.COMPLETED)
        stranger = Actor(user_id=99, role="rider")
        with self.assertRaises(InvalidTransition):
            transitions.check(ride, stranger, RideStatus.CANCELLED)

    def test_actor_rules(self):
        ride = Ride(id=1, rider_id=1, driver_id=2, status=RideStatus.ACCEPTED)

        transitions.authorize(ride, Actor.system(), RideStatus.OTP_PENDING)
        transitions.authorize(ride, Actor.system(), RideStatus.CANCELLED)
        with self.assertRaises(Unauthorized):
            transitions.authorize(ride, Actor(user_id=1, role="rider"), RideStatus.DRIVER_ARRIVED)
        with self.assertRaises(Unauthorized):
            transitions.authorize(ride, Actor(user_id=3, role="driver"), RideStatus.COMPLETED)
        with self.assertRaises(Unauthorized):
            transitions.authorize(ride, Actor(user_id=1, role="rider"), RideStatus.ACCEPTED)
        with self.assertRaises(Unauthorized):
            transitions.authorize(ride, Actor.system(), RideStatus.IN_PROGRESS)


class RideLifecycleTests(TestCase):
    def setUp(self):
        cache.clear()
        LocmemBackend.outbox.clear()
        self.clock = FakeClock()
        self.services, self.bus, _ = make_services(clock=self.clock)
        self.lifecycle = self.services.lifecycle
        self.rider = make_rider()
        self.driver = make_driver("driver_one", "9000000001", km_north=1)

    def _request(self, rider=None):
        with self.captureOnCommitCallbacks(execute=True):
            return self.lifecycle.create_ride(rider or self.rider, *PICKUP, *DROPOFF)

    def _ride(self, status, driver=None, **fields):
        values = {
            "rider": self.rider,
            "driver": driver,
            "status": status,
            "pickup_latitude": PICKUP[0],
            "pickup_longitude": PICKUP[1],
            "dropoff_latitude": DROPOFF[0],
            "dropoff_longitude": DROPOFF[1],
            "requested_at": timezone.now(),
            "base_fare": Decimal("4.00"),
            "total_fare": Decimal("40.00"),
        }
        values.update(fields)
        ride = Ride.objects.create(**values)
        if driver is not None:
            DriverProfile.objects.filter(user=driver).update(current_ride=ride)
        return ride

    def _run(self, operation, *args):
        with self.captureOnCommitCallbacks(execute=True):
            return operation(*args)

    def test_create_ride_estimates_fare(self):
        ride = self._request()

        self.assertEqual(ride.status, RideStatus.REQUESTED)
        self.assertEqual(ride.version, 0)
        self.assertGreater(ride.distance_km, 1.5)
        self.assertGreaterEqual(ride.estimated_duration_min, 2)
        self.assertGreaterEqual(ride.total_fare, Decimal("5.00"))
        self.assertEqual(ride.base_fare, Decimal("2.50"))

        published = self.bus.events(user_channel(self.rider.id), events.RIDE_REQUESTED)
        self.assertEqual(len(published), 1)
        self.assertEqual(published[0].seq, 0)

    def test_rider_cannot_hold_two_active_rides(self):
        self._request()
        with self.assertRaises(ActiveRideExists):
            self._request()

    def test_drivers_cannot_request_rides(self):
        with self.assertRaises(Unauthorized):
            self.lifecycle.create_ride(self.driver, *PICKUP, *DROPOFF)

    def test_out_of_range_coordinates_are_rejected(self):
        with self.assertRaises(ValidationFailed):
            self.lifecycle.create_ride(self.rider, 95, 0, 0, 0)

    def test_full_trip(self):
        ride = self._request()

        self.clock.advance(minutes=1)
        ride = self._run(self.lifecycle.accept, ride.id, self.driver)
        self.assertEqual(ride.status, RideStatus.ACCEPTED)
        self.assertEqual(ride.driver_id, self.driver.id)
        self.assertEqual(DriverProfile.objects.get(user=self.driver).current_ride_id, ride.id)

        self.clock.advance(minutes=4)
        ride = self._run(self.lifecycle.mark_arrived, ride.id, self.driver)
        ride = self._run(self.lifecycle.issue_start_otp, ride.id, Actor.for_user(self.driver))
        self.assertEqual(ride.status, RideStatus.OTP_PENDING)

        code = delivered_code(LocmemBackend.outbox, ride.id)
        self.assertIsNotNone(code)
        for event in self.bus.events(event_type=events.OTP_ISSUED):
            self.assertEqual(set(event.payload), {"expires_at"})

        self.clock.advance(minutes=1)
        ride = self._run(self.lifecycle.verify_otp, ride.id, Actor.for_user(self.driver), code)
        self.assertEqual(ride.status, RideStatus.IN_PROGRESS)
        self.assertTrue(ride.otp_verified)
        self.assertEqual(ride.otp_verified_by, "driver")

        self.clock.advance(minutes=15)
        ride = self._run(self.lifecycle.complete, ride.id, self.driver, 10, 20)
        self.assertEqual(ride.status, RideStatus.COMPLETED)
        self.assertEqual(ride.total_fare, Decimal("23.50"))

        stamps = [ride.requested_at, ride.accepted_at, ride.arrived_at, ride.otp_issued_at, ride.started_at, ride.completed_at]
        self.assertEqual(stamps, sorted(stamps))

        profile = DriverProfile.objects.get(user=self.driver)
        self.assertIsNone(profile.current_ride_id)
        self.assertEqual(profile.completed_rides, 1)
        self.rider.refresh_from_db()
        self.driver.refresh_from_db()
        self.assertEqual(self.rider.completed_rides, 1)
        self.assertEqual(self.driver.completed_rides, 1)

        ride_events = self.bus.events(ride_channel(ride.id))
        self.assertEqual(
            [event.type for event in ride_events],
            [
                events.RIDE_REQUESTED,
                events.RIDE_ACCEPTED,
                events.DRIVER_ARRIVED,
                events.OTP_ISSUED,
                events.RIDE_STARTED,
                events.RIDE_COMPLETED,
            ],
        )
        seqs = [event.seq for event in ride_events]
        self.assertEqual(seqs, sorted(set(seqs)))

    def test_complete_ignores_request_surge(self):
        ride = self._ride(
            RideStatus.IN_PROGRESS,
            driver=self.driver,
            surge_multiplier=Decimal("2.00"),
            started_at=timezone.now(),
        )

        ride = self._run(self.lifecycle.complete, ride.id, self.driver, 10, 20)

        self.assertEqual(ride.total_fare, Decimal("23.50"))
        self.assertEqual(ride.surge_multiplier, Decimal("1.00"))

    def test_stale_version_write_conflicts(self):
        ride = self._request()
        store = self.services.store

        store.update(ride.id, {"pickup_address": "Gate 1"}, ride.version)
        with self.assertRaises(Conflict):
            store.update(ride.id, {"pickup_address": "Gate 2"}, ride.version)

        self.assertEqual(store.get(ride.id).pickup_address, "Gate 1")

    def test_update_of_missing_ride(self):
        with self.assertRaises(RideNotFound):
            self.services.store.update(12345, {"pickup_address": "Nowhere"}, 0)

    def test_rider_cancel_of_accepted_ride_costs_half_the_fare(self):
        ride = self._ride(RideStatus.ACCEPTED, driver=self.driver)

        ride = self._run(self.lifecycle.cancel, ride.id, Actor.for_user(self.rider), "Changed plans")

        self.assertEqual(ride.status, RideStatus.CANCELLED)
        self.assertEqual(ride.cancellation_penalty, Decimal("20.00"))
        self.assertEqual(ride.cancelled_by, "rider")
        self.assertEqual(ride.total_fare, Decimal("40.00"))
        self.assertIsNone(ride.driver_id)
        self.assertEqual(ride.released_driver_id, self.driver.id)
        self.assertIsNone(DriverProfile.objects.get(user=self.driver).current_ride_id)
        self.assertEqual(len(self.bus.events(driver_channel(self.driver.id), events.RIDE_CANCELLED)), 1)

    def test_driver_cancel_of_accepted_ride_costs_quarter_of_base_fare(self):
        ride = self._ride(RideStatus.ACCEPTED, driver=self.driver)

        ride = self._run(self.lifecycle.cancel, ride.id, Actor.for_user(self.driver), "")

        self.assertEqual(ride.cancellation_penalty, Decimal("1.00"))
        profile = DriverProfile.objects.get(user=self.driver)
        self.assertGreater(profile.cancellation_rate, 0)
        self.assertLess(profile.acceptance_rate, 1.0)

    def test_cancelling_a_waiting_ride_is_free(self):
        ride = self._request()
        ride = self._run(self.lifecycle.cancel, ride.id, Actor.for_user(self.rider), "")
        self.assertEqual(ride.cancellation_penalty, Decimal("0.00"))

    def test_otp_pending_ride_cannot_be_cancelled(self):
        ride = self._ride(RideStatus.OTP_PENDING, driver=self.driver)
        with self.assertRaises(InvalidTransition):
            self.lifecycle.cancel(ride.id, Actor.for_user(self.rider), "")

    def test_strangers_cannot_cancel(self):
        ride = self._ride(RideStatus.ACCEPTED, driver=self.driver)
        stranger = make_rider("stranger", "9000000099")
        with self.assertRaises(Unauthorized):
            self.lifecycle.cancel(ride.id, Actor.for_user(stranger), "")

    def test_each_side_rates_once(self):
        ride = self._ride(RideStatus.COMPLETED, driver=self.driver)
        DriverProfile.objects.filter(user=self.driver).update(current_ride=None)

        ride = self._run(self.lifecycle.rate, ride.id, Actor.for_user(self.rider), 5, "Great")
        self.assertEqual(ride.rider_rating, 5)
        self.assertEqual(DriverProfile.objects.get(user=self.driver).rating, 5.0)

        with self.assertRaises(AlreadyRated):
            self.lifecycle.rate(ride.id, Actor.for_user(self.rider), 4)

        self._run(self.lifecycle.rate, ride.id, Actor.for_user(self.driver), 4)
        self.rider.refresh_from_db()
        self.assertEqual(self.rider.rating, 4.0)
        self.assertEqual(self.rider.rating_count, 1)

    def test_rating_rules(self):
        ride = self._ride(RideStatus.IN_PROGRESS, driver=self.driver)

        with self.assertRaises(ValidationFailed):
            self.lifecycle.rate(ride.id, Actor.for_user(self.rider), 6)
        with self.assertRaises(InvalidTransition):
            self.lifecycle.rate(ride.id, Actor.for_user(self.rider), 5)

    def test_only_participants_can_read_a_ride(self):
        ride = self._ride(RideStatus.ACCEPTED, driver=self.driver)
        stranger = make_rider("stranger", "9000000099")

        self.assertEqual(self.lifecycle.get_ride(ride.id, self.driver).id, ride.id)
        with self.assertRaises(Unauthorized):
            self.lifecycle.get_ride(ride.id, stranger)

    def test_current_ride_for_each_role(self):
        ride = self._ride(RideStatus.ACCEPTED, driver=self.driver)

        self.assertEqual(self.lifecycle.current_ride_for(self.rider).id, ride.id)
        self.assertEqual(self.lifecycle.current_ride_for(self.driver).id, ride.id)
        self.assertIsNone(self.lifecycle.current_ride_for(make_rider("idle", "9000000098")))


class RandomOperationTests(TestCase):
    """Random sequences of operations only ever move rides along the table."""

    def setUp(self):
        cache.clear()
        LocmemBackend.outbox.clear()
        self.clock = FakeClock()
        self.services, self.bus, _ = make_services(clock=self.clock)
        self.lifecycle = self.services.lifecycle

    def _operations(self, rider, driver):
        lifecycle = self.lifecycle

        def verify(ride_id):
            code = delivered_code(LocmemBackend.outbox, ride_id) or "000000"
            return lifecycle.verify_otp(ride_id, Actor.for_user(rider), code)

        return [
            lambda ride_id: lifecycle.accept(ride_id, driver),
            lambda ride_id: lifecycle.mark_arrived(ride_id, driver),
            lambda ride_id: lifecycle.issue_start_otp(ride_id, Actor.for_user(driver)),
            lambda ride_id: lifecycle.verify_otp(ride_id, Actor.for_user(driver), "000000"),
            verify,
            lambda ride_id: lifecycle.complete(ride_id, driver),
            lambda ride_id: lifecycle.cancel(ride_id, Actor.for_user(rider), ""),
            lambda ride_id: lifecycle.cancel(ride_id, Actor.for_user(driver), ""),
            lambda ride_id: lifecycle.cancel(ride_id, Actor.system(), ""),
        ]

    def test_random_sequences_respect_transitions(self):
        rng = random.Random(20240611)

        for round_number in range(6):
            rider = make_rider(f"rider_{round_number}", f"91000000{round_number:02d}")
            driver = make_driver(f"driver_{round_number}", f"92000000{round_number:02d}")
            operations = self._operations(rider, driver)

            with self.captureOnCommitCallbacks(execute=True):
                ride = self.lifecycle.create_ride(rider, *PICKUP, *DROPOFF)

            for _ in range(15):
                before = Ride.objects.get(pk=ride.id)
                self.clock.advance(minutes=1)
                try:
                    with self.captureOnCommitCallbacks(execute=True):
                        rng.choice(operations)(ride.id)
                except RideError:
                    after = Ride.objects.get(pk=ride.id)
                    self.assertEqual(after.status, before.status)
                    continue

                after = Ride.objects.get(pk=ride.id)
                self.assertTrue(
                    can_transition(before.status, after.status),
                    f"{before.status} -> {after.status}",
                )
                self.assertGreater(after.version, before.version)
                if after.is_terminal:
                    break

            self.assertLessEqual(
                Ride.objects.filter(driver=driver).exclude(status__in=[RideStatus.COMPLETED, RideStatus.CANCELLED]).count(),
                1,
            )
