from unittest.mock import patch

from datetime import timedelta

from django.core.cache import cache
from django.test import TestCase
from django.utils import timezone
from rest_framework.test import APIRequestFactory, force_authenticate

from realtime.delivery import LocmemBackend
from rides import views
from rides.models import Ride, RideStatus

from .helpers import DROPOFF, PICKUP, FakeClock, delivered_code, make_driver, make_rider, make_services


class RideApiTests(TestCase):
    def setUp(self):
        cache.clear()
        LocmemBackend.outbox.clear()
        self.factory = APIRequestFactory()
        self.clock = FakeClock()
        self.services, self.bus, self.scheduler = make_services(clock=self.clock)
        patcher = patch("rides.views.get_ride_services", return_value=self.services)
        patcher.start()
        self.addCleanup(patcher.stop)

        self.rider = make_rider()
        self.driver = make_driver("driver_one", "9000000001", km_north=1)

    def _call(self, view, user, path, data=None, **kwargs):
        request = self.factory.post(path, data or {}, format="json")
        force_authenticate(request, user=user)
        with self.captureOnCommitCallbacks(execute=True):
            return view(request, **kwargs)

    def _get(self, view, user, path, **kwargs):
        request = self.factory.get(path)
        force_authenticate(request, user=user)
        return view(request, **kwargs)

    def _request_ride(self):
        payload = {
            "pickup_latitude": PICKUP[0],
            "pickup_longitude": PICKUP[1],
            "dropoff_latitude": DROPOFF[0],
            "dropoff_longitude": DROPOFF[1],
            "pickup_address": "Connaught Place",
            "dropoff_address": "India Gate",
        }
        return self._call(views.create_ride_request, self.rider, "/api/rides/request/", payload)

    def _ride_through_otp(self):
        ride_id = self._request_ride().data["id"]
        self._call(views.accept_ride, self.driver, "/accept/", ride_id=ride_id)
        self._call(views.mark_arrived, self.driver, "/arrive/", ride_id=ride_id)
        self._call(views.start_otp, self.driver, "/start-otp/", ride_id=ride_id)
        return ride_id

    def test_request_ride_notifies_drivers(self):
        response = self._request_ride()

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["status"], RideStatus.REQUESTED)
        self.assertEqual(response.data["driver_candidates"], 1)
        self.assertEqual(response.data["pickup_address"], "Connaught Place")

    def test_request_without_drivers_still_creates_the_ride(self):
        self.driver.driver_profile.is_online = False
        self.driver.driver_profile.save(update_fields=["is_online"])

        response = self._request_ride()

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["error"], "no_drivers_available")
        self.assertEqual(Ride.objects.get(pk=response.data["id"]).status, RideStatus.REQUESTED)

    def test_drivers_cannot_request(self):
        response = self._call(views.create_ride_request, self.driver, "/api/rides/request/", {
            "pickup_latitude": PICKUP[0],
            "pickup_longitude": PICKUP[1],
            "dropoff_latitude": DROPOFF[0],
            "dropoff_longitude": DROPOFF[1],
        })
        self.assertEqual(response.status_code, 403)

    def test_bad_coordinates_are_rejected(self):
        response = self._call(views.create_ride_request, self.rider, "/api/rides/request/", {
            "pickup_latitude": 120,
            "pickup_longitude": PICKUP[1],
            "dropoff_latitude": DROPOFF[0],
            "dropoff_longitude": DROPOFF[1],
        })
        self.assertEqual(response.status_code, 400)

    def test_second_request_conflicts(self):
        self._request_ride()
        response = self._request_ride()
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.data["error"], "active_ride_exists")

    def test_accept_flow(self):
        ride_id = self._request_ride().data["id"]

        response = self._call(views.accept_ride, self.rider, "/accept/", ride_id=ride_id)
        self.assertEqual(response.status_code, 403)

        response = self._call(views.accept_ride, self.driver, "/accept/", ride_id=ride_id)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["ride"]["status"], RideStatus.ACCEPTED)
        self.assertEqual(response.data["ride"]["driver"]["user_id"], self.driver.id)

        late = make_driver("late", "9000000002", km_north=1)
        response = self._call(views.accept_ride, late, "/accept/", ride_id=ride_id)
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.data["error"], "ride_already_taken")

    def test_wrong_then_expired_code(self):
        ride_id = self._ride_through_otp()
        code = delivered_code(LocmemBackend.outbox, ride_id)
        wrong = "111111" if code != "111111" else "222222"

        response = self._call(views.verify_otp, self.rider, "/verify-otp/", {"code": wrong}, ride_id=ride_id)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.data["error"], "invalid_otp")
        self.assertEqual(response.data["attempts_left"], 2)

        self.clock.advance(minutes=11)
        response = self._call(views.verify_otp, self.rider, "/verify-otp/", {"code": code}, ride_id=ride_id)
        self.assertEqual(response.status_code, 410)
        self.assertEqual(response.data["error"], "otp_expired")

    def test_code_must_be_six_digits(self):
        ride_id = self._ride_through_otp()
        response = self._call(views.verify_otp, self.rider, "/verify-otp/", {"code": "12ab"}, ride_id=ride_id)
        self.assertEqual(response.status_code, 400)

    def test_complete_and_rate(self):
        ride_id = self._ride_through_otp()
        code = delivered_code(LocmemBackend.outbox, ride_id)
        response = self._call(views.verify_otp, self.driver, "/verify-otp/", {"code": code}, ride_id=ride_id)
        self.assertEqual(response.status_code, 200)

        response = self._call(
            views.complete_ride, self.driver, "/complete/",
            {"actual_distance_km": 10, "actual_duration_min": 20}, ride_id=ride_id,
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["ride"]["total_fare"], "23.50")

        response = self._call(views.rate_ride, self.rider, "/rate/", {"rating": 5}, ride_id=ride_id)
        self.assertEqual(response.status_code, 200)
        response = self._call(views.rate_ride, self.rider, "/rate/", {"rating": 4}, ride_id=ride_id)
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.data["error"], "already_rated")

    def test_cancel_reports_penalty(self):
        ride_id = self._request_ride().data["id"]
        self._call(views.accept_ride, self.driver, "/accept/", ride_id=ride_id)

        response = self._call(views.cancel_ride, self.rider, "/cancel/", {"reason": "Changed plans"}, ride_id=ride_id)

        self.assertEqual(response.status_code, 200)
        ride = Ride.objects.get(pk=ride_id)
        self.assertEqual(response.data["penalty"], str(ride.cancellation_penalty))
        self.assertGreater(ride.cancellation_penalty, 0)
        self.assertEqual(ride.cancellation_reason, "Changed plans")

    def test_detail_is_for_participants_only(self):
        ride_id = self._request_ride().data["id"]
        stranger = make_rider("stranger", "9000000099")

        self.assertEqual(self._get(views.ride_detail, self.rider, "/", ride_id=ride_id).status_code, 200)
        self.assertEqual(self._get(views.ride_detail, stranger, "/", ride_id=ride_id).status_code, 403)
        self.assertEqual(self._get(views.ride_detail, self.rider, "/", ride_id=999999).status_code, 404)

    def test_current_ride(self):
        response = self._get(views.get_current_ride, self.rider, "/current/")
        self.assertIsNone(response.data["ride"])

        ride_id = self._request_ride().data["id"]
        response = self._get(views.get_current_ride, self.rider, "/current/")
        self.assertEqual(response.data["ride"]["id"], ride_id)

    def test_out_of_order_action(self):
        ride_id = self._request_ride().data["id"]
        response = self._call(views.complete_ride, self.driver, "/complete/", ride_id=ride_id)
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.data["error"], "invalid_transition")


class RideHistoryApiTests(TestCase):
    def setUp(self):
        self.factory = APIRequestFactory()
        self.services, _, _ = make_services()
        patcher = patch("rides.views.get_ride_services", return_value=self.services)
        patcher.start()
        self.addCleanup(patcher.stop)

        self.rider = make_rider()
        self.driver = make_driver("driver_one", "9000000001")
        self.other_rider = make_rider("other", "9000000002")

    def _past_ride(self, rider, status, hours_ago, driver=None):
        return Ride.objects.create(
            rider=rider,
            driver=driver,
            status=status,
            pickup_latitude=PICKUP[0],
            pickup_longitude=PICKUP[1],
            dropoff_latitude=DROPOFF[0],
            dropoff_longitude=DROPOFF[1],
            requested_at=timezone.now() - timedelta(hours=hours_ago),
        )

    def _history(self, user, **params):
        request = self.factory.get("/api/rides/history/", params)
        force_authenticate(request, user=user)
        return views.ride_history(request)

    def test_riders_see_their_rides_newest_first(self):
        oldest = self._past_ride(self.rider, RideStatus.COMPLETED, 30, driver=self.driver)
        newest = self._past_ride(self.rider, RideStatus.CANCELLED, 1)
        middle = self._past_ride(self.rider, RideStatus.COMPLETED, 5, driver=self.driver)
        self._past_ride(self.other_rider, RideStatus.COMPLETED, 2)

        response = self._history(self.rider)

        self.assertEqual(response.status_code, 200)
        self.assertEqual([r["id"] for r in response.data["rides"]], [newest.id, middle.id, oldest.id])
        self.assertEqual(response.data["pagination"], {"page": 1, "limit": 10, "total": 3, "pages": 1})

    def test_status_filter_and_pages(self):
        for hours_ago in range(1, 6):
            self._past_ride(self.rider, RideStatus.COMPLETED, hours_ago, driver=self.driver)
        self._past_ride(self.rider, RideStatus.CANCELLED, 10)

        response = self._history(self.rider, status="completed", page=2, limit=2)

        self.assertEqual(len(response.data["rides"]), 2)
        self.assertTrue(all(r["status"] == RideStatus.COMPLETED for r in response.data["rides"]))
        self.assertEqual(response.data["pagination"], {"page": 2, "limit": 2, "total": 5, "pages": 3})

    def test_drivers_see_rides_they_drove(self):
        driven = self._past_ride(self.other_rider, RideStatus.COMPLETED, 3, driver=self.driver)
        self._past_ride(self.rider, RideStatus.CANCELLED, 1)

        response = self._history(self.driver)

        self.assertEqual([r["id"] for r in response.data["rides"]], [driven.id])

    def test_bad_query_is_rejected(self):
        self.assertEqual(self._history(self.rider, status="flying").status_code, 400)
        self.assertEqual(self._history(self.rider, limit=500).status_code, 400)
        self.assertEqual(self._history(self.rider, page=0).status_code, 400)
