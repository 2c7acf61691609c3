from django.test import SimpleTestCase

from common.utils import (
    bounding_box,
    calculate_distance,
    calculate_eta,
    calculate_fare,
    surge_multiplier,
)


class DistanceTests(SimpleTestCase):
    def test_one_degree_of_longitude_at_equator(self):
        self.assertAlmostEqual(calculate_distance(0, 0, 0, 1), 111.19, delta=111.19 * 0.005)

    def test_same_point_is_zero(self):
        self.assertEqual(calculate_distance(28.6139, 77.2090, 28.6139, 77.2090), 0)

    def test_symmetric(self):
        there = calculate_distance(28.6139, 77.2090, 19.0760, 72.8777)
        back = calculate_distance(19.0760, 72.8777, 28.6139, 77.2090)
        self.assertAlmostEqual(there, back)


class EtaTests(SimpleTestCase):
    def test_rounds_up_at_city_speed(self):
        self.assertEqual(calculate_eta(15), 30)
        self.assertEqual(calculate_eta(15.1), 31)

    def test_never_below_two_minutes(self):
        self.assertEqual(calculate_eta(0), 2)
        self.assertEqual(calculate_eta(0.2), 2)


class FareTests(SimpleTestCase):
    def test_standard_fare(self):
        fare = calculate_fare(10, 20, "standard", 1.0)
        self.assertEqual(fare.base_fare, 2.5)
        self.assertEqual(fare.distance_fare, 15.0)
        self.assertEqual(fare.time_fare, 6.0)
        self.assertEqual(fare.total, 23.5)
        self.assertEqual(fare, calculate_fare(10, 20, "standard", 1.0))

    def test_class_tables_and_surge(self):
        self.assertEqual(calculate_fare(10, 20, "comfort", 1.0).total, 31.5)
        self.assertEqual(calculate_fare(10, 20, "premium", 1.0).total, 42.5)
        self.assertEqual(calculate_fare(10, 20, "standard", 1.5).total, 35.25)

    def test_unknown_class_is_priced_as_standard(self):
        self.assertEqual(calculate_fare(10, 20, "limousine").total, 23.5)

    def test_minimum_fare(self):
        self.assertEqual(calculate_fare(0.1, 1, "standard", 1.0).total, 5.0)


class SurgeTests(SimpleTestCase):
    def test_tiers(self):
        self.assertEqual(surge_multiplier(0, 0), 1.0)
        self.assertEqual(surge_multiplier(3, 5), 1.0)
        self.assertEqual(surge_multiplier(8, 5), 1.5)
        self.assertEqual(surge_multiplier(11, 5), 2.0)
        self.assertEqual(surge_multiplier(1, 0), 2.0)


class BoundingBoxTests(SimpleTestCase):
    def test_box_contains_radius(self):
        min_lat, max_lat, min_lon, max_lon = bounding_box(28.6139, 77.2090, 10)
        self.assertLess(min_lat, 28.6139 - 0.089)
        self.assertGreater(max_lat, 28.6139 + 0.089)
        self.assertLess(min_lon, 77.2090 - 0.1)
        self.assertGreater(max_lon, 77.2090 + 0.1)
