from unittest.mock import patch

from django.test import SimpleTestCase

from common.utils.geo import Coordinates, calculate_distance, distance_km, parse_coordinates
from common.utils.otp import generate_otp


class DistanceTests(SimpleTestCase):
	def test_zero_for_identical_points(self):
		self.assertEqual(distance_km(14.0, 121.0, 14.0, 121.0), 0.0)

	def test_symmetric(self):
		pairs = [
			((14.0, 121.0), (14.05, 121.05)),
			((-33.86, 151.2), (51.5, -0.12)),
			((0.0, 179.9), (0.0, -179.9)),
		]
		for a, b in pairs:
			self.assertAlmostEqual(distance_km(*a, *b), distance_km(*b, *a), places=9)

	def test_one_degree_of_latitude(self):
		# 2 * pi * 6371 / 360
		self.assertAlmostEqual(distance_km(0, 0, 1, 0), 111.195, places=2)

	def test_antipodal_points_do_not_raise(self):
		self.assertAlmostEqual(distance_km(0, 0, 0, 180), 20015.09, places=1)

	def test_calculate_distance_is_in_meters(self):
		self.assertAlmostEqual(
			calculate_distance(14.0, 121.0, 14.05, 121.05),
			distance_km(14.0, 121.0, 14.05, 121.05) * 1000,
		)


class ParseCoordinatesTests(SimpleTestCase):
	def test_numeric_strings_are_accepted(self):
		coords = parse_coordinates({"latitude": "14.5", "longitude": "121.0", "heading": "90"})
		self.assertEqual(coords, Coordinates(14.5, 121.0, 90.0))

	def test_invalid_heading_is_dropped(self):
		coords = parse_coordinates({"latitude": 14.5, "longitude": 121.0, "heading": "north"})
		self.assertIsNotNone(coords)
		self.assertIsNone(coords.heading)

	def test_rejects_unusable_input(self):
		bad_inputs = [
			None,
			"14,121",
			{"latitude": 14.5},
			{"latitude": "abc", "longitude": 121.0},
			{"latitude": float("nan"), "longitude": 121.0},
			{"latitude": 14.5, "longitude": float("inf")},
			{"latitude": 91, "longitude": 121.0},
			{"latitude": 14.5, "longitude": -181},
			{"latitude": True, "longitude": 121.0},
		]
		for raw in bad_inputs:
			self.assertIsNone(parse_coordinates(raw), raw)


class OtpTests(SimpleTestCase):
	def test_four_digits(self):
		for _ in range(50):
			otp = generate_otp()
			self.assertEqual(len(otp), 4)
			self.assertTrue(1000 <= int(otp) <= 9999)

	@patch('common.utils.otp.random.randint', return_value=1000)
	def test_uses_inclusive_range(self, mock_randint):
		self.assertEqual(generate_otp(), '1000')
		mock_randint.assert_called_once_with(1000, 9999)
