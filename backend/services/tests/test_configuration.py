from django.test import TestCase

from rides.models import AppSetting
from services.configuration import DistanceRadiusProvider


class FakeClock:
	def __init__(self):
		self.now = 1000.0

	def __call__(self):
		return self.now


class DistanceRadiusProviderTests(TestCase):
	def setUp(self):
		self.clock = FakeClock()
		self.provider = DistanceRadiusProvider(ttl=30, default_km=3, clock=self.clock)

	def test_creates_default_setting_when_missing(self):
		self.assertEqual(self.provider.get_meters(), 3000)

		setting = AppSetting.objects.get(key=AppSetting.DISTANCE_RADIUS)
		self.assertEqual(setting.value, 3)
		self.assertEqual(setting.unit, 'km')

	def test_value_is_cached_until_ttl(self):
		AppSetting.objects.create(key=AppSetting.DISTANCE_RADIUS, value=5, unit='km')
		self.assertEqual(self.provider.get_meters(), 5000)

		AppSetting.objects.filter(key=AppSetting.DISTANCE_RADIUS).update(value=8)
		self.clock.now += 29
		self.assertEqual(self.provider.get_meters(), 5000)

		self.clock.now += 2
		self.assertEqual(self.provider.get_meters(), 8000)
		self.assertEqual(self.provider.get_km(), 8)

	def test_invalidate_forces_reload(self):
		AppSetting.objects.create(key=AppSetting.DISTANCE_RADIUS, value=5, unit='km')
		self.provider.get_meters()

		AppSetting.objects.filter(key=AppSetting.DISTANCE_RADIUS).update(value=1.5)
		self.provider.invalidate()

		self.assertEqual(self.provider.get_meters(), 1500)

	def test_non_positive_value_falls_back_to_default(self):
		AppSetting.objects.create(key=AppSetting.DISTANCE_RADIUS, value=0, unit='km')
		self.assertEqual(self.provider.get_meters(), 3000)

	def test_saving_the_setting_invalidates_process_cache(self):
		from services.configuration import get_distance_radius_provider

		provider = get_distance_radius_provider()
		provider.invalidate()
		provider.get_meters()
		setting = AppSetting.objects.get(key=AppSetting.DISTANCE_RADIUS)
		setting.value = 7
		setting.save()

		self.assertEqual(provider.get_meters(), 7000)
