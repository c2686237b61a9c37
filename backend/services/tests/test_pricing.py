from django.test import TestCase, override_settings

from rides.models import FareRate, VEHICLE_CAB, VEHICLE_MOTORCYCLE, VEHICLE_TRICYCLE
from services.pricing import FareRateConfig, compute_fares, fare_for, get_fare_rates


class FareComputationTests(TestCase):
	def test_default_rates(self):
		rates = get_fare_rates()
		self.assertEqual(rates[VEHICLE_MOTORCYCLE], FareRateConfig(15.0, 2.5))
		self.assertEqual(rates[VEHICLE_TRICYCLE], FareRateConfig(20.0, 2.8))
		self.assertEqual(rates[VEHICLE_CAB], FareRateConfig(30.0, 3.0))

	def test_fare_is_max_of_distance_rate_and_minimum(self):
		rates = get_fare_rates()
		for distance in (0.0, 0.5, 5.0, 9.99, 10.0, 42.7):
			fares = compute_fares(distance)
			self.assertEqual(set(fares), {VEHICLE_MOTORCYCLE, VEHICLE_TRICYCLE, VEHICLE_CAB})
			for vehicle, fare in fares.items():
				rate = rates[vehicle]
				self.assertEqual(fare, max(distance * rate.per_km_rate, rate.minimum_rate))

	def test_short_trip_pays_minimum(self):
		self.assertEqual(fare_for(VEHICLE_CAB, 1.0), 30.0)
		self.assertEqual(fare_for(VEHICLE_CAB, 20.0), 60.0)

	def test_fare_rate_row_overrides_default_for_its_vehicle_only(self):
		FareRate.objects.create(vehicle_type=VEHICLE_CAB, minimum_rate=50.0, per_km_rate=4.0)

		fares = compute_fares(20.0)

		self.assertEqual(fares[VEHICLE_CAB], 80.0)
		self.assertAlmostEqual(fares[VEHICLE_TRICYCLE], 56.0)

	@override_settings(DEFAULT_FARE_RATES={VEHICLE_CAB: {'minimum_rate': 30, 'per_km_rate': 3}})
	def test_unknown_vehicle_raises(self):
		with self.assertRaises(KeyError):
			fare_for(VEHICLE_MOTORCYCLE, 5.0)
