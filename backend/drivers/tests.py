from datetime import timedelta
from unittest.mock import patch

from django.core.cache import cache
from django.test import SimpleTestCase, TestCase
from django.utils import timezone
from rest_framework.test import APIRequestFactory, force_authenticate

from drivers import location_index, services
from drivers.models import DriverProfile
from drivers.views import DriverLocationUpdateView, DriverStatusView
from realtime import bus as events
from realtime.bus import ride_channel, user_channel
from rides.models import Ride, RideStatus
from rides.tests.helpers import DROPOFF, PICKUP, make_driver, make_rider, make_services
from services.matching.driver_matcher import DriverMatcher, score_driver
from services.ride_management import Conflict, DriverBusy


def _profile(driver_id, rating=None, acceptance_rate=1.0, vehicle_class="standard", completed_rides=0):
    return DriverProfile(
        user_id=driver_id,
        rating=rating,
        acceptance_rate=acceptance_rate,
        vehicle_class=vehicle_class,
        completed_rides=completed_rides,
    )


def _matcher(nearby):
    return DriverMatcher(radius_km=10, max_candidates=10, finder=lambda *args, **kwargs: nearby)


class DriverMatcherTests(SimpleTestCase):
    def test_score_components(self):
        profile = _profile(1, rating=5.0, acceptance_rate=1.0, completed_rides=500)
        self.assertAlmostEqual(score_driver(profile, 2.0), 24 + 30 + 20 + 5)

    def test_unrated_driver_scores_as_four_and_a_half_stars(self):
        self.assertAlmostEqual(score_driver(_profile(1), 0.0), 30 + 27 + 20)

    def test_score_is_capped(self):
        veteran = _profile(1, rating=5.0, completed_rides=1_000_000)
        self.assertEqual(score_driver(veteran, 0.0), 100.0)

    def test_filters_rating_acceptance_and_class(self):
        nearby = [
            (_profile(1, rating=3.4), 1.0),
            (_profile(2, acceptance_rate=0.5), 1.0),
            (_profile(3, vehicle_class="standard"), 1.0),
            (_profile(4, vehicle_class="comfort"), 1.0),
            (_profile(5, vehicle_class="premium", rating=4.9), 1.0),
            (_profile(6), 1.0),
        ]

        standard = _matcher(nearby).find_candidates(*PICKUP, vehicle_class="standard")
        comfort = _matcher(nearby).find_candidates(*PICKUP, vehicle_class="comfort")
        premium = _matcher(nearby).find_candidates(*PICKUP, vehicle_class="premium")

        self.assertEqual({c.driver_id for c in standard}, {3, 4, 5, 6})
        self.assertEqual({c.driver_id for c in comfort}, {4, 5})
        self.assertEqual([c.driver_id for c in premium], [5])

    def test_returns_top_ten_best_first(self):
        nearby = [(_profile(driver_id), driver_id * 0.5) for driver_id in range(1, 16)]

        candidates = _matcher(nearby).find_candidates(*PICKUP)

        self.assertEqual(len(candidates), 10)
        scores = [c.score for c in candidates]
        self.assertEqual(scores, sorted(scores, reverse=True))
        self.assertEqual(candidates[0].driver_id, 1)

    def test_ties_go_to_nearer_then_lower_id(self):
        nearby = [
            (_profile(7), 3.0),
            (_profile(3), 3.0),
            (_profile(9), 1.0),
        ]
        candidates = _matcher(nearby).find_candidates(*PICKUP)
        self.assertEqual([c.driver_id for c in candidates], [9, 3, 7])


class LocationIndexTests(TestCase):
    def setUp(self):
        self.rider = make_rider()

    def test_only_fresh_free_online_drivers_within_radius(self):
        close = make_driver("close", "9000000001", km_north=2)
        make_driver("far", "9000000002", km_north=20)
        make_driver("offline", "9000000003", km_north=1, is_online=False)
        stale = make_driver("stale", "9000000004", km_north=1)
        DriverProfile.objects.filter(user=stale).update(
            last_location_update=timezone.now() - timedelta(minutes=10)
        )
        busy = make_driver("busy", "9000000005", km_north=1)
        ride = Ride.objects.create(
            rider=self.rider,
            driver=busy,
            status=RideStatus.ACCEPTED,
            pickup_latitude=PICKUP[0],
            pickup_longitude=PICKUP[1],
            dropoff_latitude=DROPOFF[0],
            dropoff_longitude=DROPOFF[1],
            requested_at=timezone.now(),
        )
        DriverProfile.objects.filter(user=busy).update(current_ride=ride)

        nearby = location_index.find_available_drivers_near(*PICKUP, radius_km=10)

        self.assertEqual([profile.user_id for profile, _ in nearby], [close.id])
        self.assertAlmostEqual(nearby[0][1], 2.0, delta=0.05)

    def test_excluded_users_are_skipped(self):
        driver = make_driver("driver", "9000000001", km_north=1)
        nearby = location_index.find_available_drivers_near(*PICKUP, radius_km=10, exclude_user_ids=[driver.id])
        self.assertEqual(nearby, [])


class DriverAvailabilityTests(TestCase):
    def setUp(self):
        cache.clear()
        self.rider = make_rider()
        self.driver = make_driver("driver", "9000000001", km_north=1)

    def _assign(self, status):
        ride = Ride.objects.create(
            rider=self.rider,
            driver=self.driver,
            status=status,
            pickup_latitude=PICKUP[0],
            pickup_longitude=PICKUP[1],
            dropoff_latitude=DROPOFF[0],
            dropoff_longitude=DROPOFF[1],
            requested_at=timezone.now(),
        )
        DriverProfile.objects.filter(user=self.driver).update(current_ride=ride)
        return ride

    def test_going_offline_mid_ride_conflicts(self):
        self._assign(RideStatus.IN_PROGRESS)

        with self.assertRaises(Conflict) as ctx:
            services.set_driver_online(self.driver.id, False)

        self.assertIsInstance(ctx.exception, DriverBusy)
        self.assertTrue(DriverProfile.objects.get(user=self.driver).is_online)

    def test_going_offline_clears_finished_ride(self):
        self._assign(RideStatus.COMPLETED)

        profile = services.set_driver_online(self.driver.id, False)

        self.assertFalse(profile.is_online)
        self.assertIsNone(profile.current_ride_id)

    def test_location_is_forwarded_to_the_rider(self):
        ride = self._assign(RideStatus.ACCEPTED)
        _, bus, _ = make_services()

        profile = services.update_driver_location(self.driver.id, 28.62, 77.21)
        event = services.publish_location_to_ride(profile, bus=bus)

        self.assertEqual(event.type, events.LOCATION_UPDATE)
        self.assertEqual(event.seq, ride.version)
        self.assertEqual(event.payload["latitude"], 28.62)
        self.assertEqual(len(bus.events(ride_channel(ride.id))), 1)
        self.assertEqual(len(bus.events(user_channel(self.rider.id))), 1)

    def test_location_without_ride_is_not_published(self):
        profile = services.update_driver_location(self.driver.id, 28.62, 77.21)
        self.assertIsNone(services.publish_location_to_ride(profile, bus=make_services()[1]))


class DriverApiTests(TestCase):
    def setUp(self):
        cache.clear()
        self.factory = APIRequestFactory()
        self.rider = make_rider()
        self.driver = make_driver("driver", "9000000001", km_north=1)

    def _put_status(self, user, status):
        request = self.factory.put("/api/driver/status/", {"status": status}, format="json")
        force_authenticate(request, user=user)
        return DriverStatusView.as_view()(request)

    def test_riders_are_turned_away(self):
        self.assertEqual(self._put_status(self.rider, "online").status_code, 403)

    def test_toggle_availability(self):
        response = self._put_status(self.driver, "offline")
        self.assertEqual(response.status_code, 200)
        self.assertFalse(DriverProfile.objects.get(user=self.driver).is_online)

        request = self.factory.get("/api/driver/status/")
        force_authenticate(request, user=self.driver)
        response = DriverStatusView.as_view()(request)
        self.assertEqual(response.data["status"], "offline")

    def test_status_reads_past_the_cached_profile(self):
        self.assertTrue(self.driver.driver_profile.is_online)
        services.set_driver_online(self.driver.id, False)

        request = self.factory.get("/api/driver/status/")
        force_authenticate(request, user=self.driver)
        response = DriverStatusView.as_view()(request)

        self.assertEqual(response.data["status"], "offline")

    def test_offline_refused_during_ride(self):
        ride = Ride.objects.create(
            rider=self.rider,
            driver=self.driver,
            status=RideStatus.ACCEPTED,
            pickup_latitude=PICKUP[0],
            pickup_longitude=PICKUP[1],
            dropoff_latitude=DROPOFF[0],
            dropoff_longitude=DROPOFF[1],
            requested_at=timezone.now(),
        )
        DriverProfile.objects.filter(user=self.driver).update(current_ride=ride)

        response = self._put_status(self.driver, "offline")

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.data["error"], "driver_busy")

    def test_location_update(self):
        ride_services, bus, _ = make_services()
        request = self.factory.post("/api/driver/location/", {"latitude": 28.62, "longitude": 77.21}, format="json")
        force_authenticate(request, user=self.driver)

        with patch("services.container.get_ride_services", return_value=ride_services):
            response = DriverLocationUpdateView.as_view()(request)

        self.assertEqual(response.status_code, 200)
        profile = DriverProfile.objects.get(user=self.driver)
        self.assertAlmostEqual(float(profile.current_latitude), 28.62)
        # No ride yet, nothing to forward
        self.assertEqual(bus.sent, [])
