import asyncio

from django.test import SimpleTestCase

from common.utils.geo import Coordinates, calculate_distance
from rides.models import VEHICLE_CAB, VEHICLE_TRICYCLE
from services.matching import OnDutyRegistry, find_nearby_drivers
from .helpers import FixedRadius


class OnDutyRegistryTests(SimpleTestCase):
	def setUp(self):
		self.registry = OnDutyRegistry()

	def test_set_on_duty_and_off_duty(self):
		presence = self.registry.set_on_duty(1, {'latitude': 14.0, 'longitude': 121.0}, VEHICLE_TRICYCLE, name='Ana')

		self.assertEqual(presence.coords, Coordinates(14.0, 121.0))
		self.assertTrue(self.registry.is_on_duty(1))
		self.assertEqual(len(self.registry), 1)

		self.assertTrue(self.registry.set_off_duty(1))
		self.assertFalse(self.registry.is_on_duty(1))
		self.assertFalse(self.registry.set_off_duty(1))

	def test_invalid_coordinates_are_dropped(self):
		self.assertIsNone(self.registry.set_on_duty(1, {'latitude': 'x', 'longitude': 121.0}, VEHICLE_TRICYCLE))
		self.assertFalse(self.registry.is_on_duty(1))

		self.registry.set_on_duty(2, {'latitude': 14.0, 'longitude': 121.0}, VEHICLE_TRICYCLE)
		self.assertIsNone(self.registry.update_location(2, {'latitude': 200, 'longitude': 121.0}))
		self.assertEqual(self.registry.get(2).coords.latitude, 14.0)

	def test_update_location_moves_existing_rider(self):
		self.registry.set_on_duty(1, {'latitude': 14.0, 'longitude': 121.0}, VEHICLE_TRICYCLE)
		self.registry.update_location(1, {'latitude': 14.001, 'longitude': 121.002, 'heading': 45})

		presence = self.registry.get(1)
		self.assertEqual(presence.coords, Coordinates(14.001, 121.002, 45.0))

	def test_update_location_ignores_off_duty_rider(self):
		self.assertIsNone(self.registry.update_location(1, {'latitude': 14.0, 'longitude': 121.0}, VEHICLE_TRICYCLE))
		self.assertFalse(self.registry.is_on_duty(1))

	def test_update_location_reinserts_group_member(self):
		self.registry.join_group(1, 'chan-1')

		# Without a vehicle type the record cannot be rebuilt
		self.assertIsNone(self.registry.update_location(1, {'latitude': 14.0, 'longitude': 121.0}))

		presence = self.registry.update_location(1, {'latitude': 14.0, 'longitude': 121.0}, VEHICLE_TRICYCLE)
		self.assertIsNotNone(presence)
		self.assertEqual(presence.connection, 'chan-1')
		self.assertTrue(self.registry.is_on_duty(1))

	def test_leave_group_only_for_current_connection(self):
		self.registry.join_group(1, 'chan-new')
		self.registry.leave_group(1, connection='chan-old')
		self.assertTrue(self.registry.is_group_member(1))

		self.registry.leave_group(1)
		self.assertFalse(self.registry.is_group_member(1))


class FindNearbyTests(SimpleTestCase):
	def setUp(self):
		self.registry = OnDutyRegistry()
		self.registry.set_on_duty(1, {'latitude': 14.0, 'longitude': 121.0}, VEHICLE_TRICYCLE, name='Near')
		self.registry.set_on_duty(2, {'latitude': 14.01, 'longitude': 121.0}, VEHICLE_TRICYCLE, name='Mid')
		self.registry.set_on_duty(3, {'latitude': 14.02, 'longitude': 121.0}, VEHICLE_CAB, name='Cab')
		# About 11km north
		self.registry.set_on_duty(4, {'latitude': 14.1, 'longitude': 121.0}, VEHICLE_TRICYCLE, name='Far')

	def test_results_within_radius_sorted_by_distance(self):
		results = self.registry.find_nearby(14.0, 121.0, 3000)

		self.assertEqual([d.driver_id for d in results], [1, 2, 3])
		distances = [d.distance_meters for d in results]
		self.assertEqual(distances, sorted(distances))
		for driver in results:
			self.assertLessEqual(driver.distance_meters, 3000)

	def test_never_returns_excluded_ids(self):
		results = self.registry.find_nearby(14.0, 121.0, 50000, exclude_ids={1, 4})
		ids = {d.driver_id for d in results}
		self.assertFalse(ids & {1, 4})
		self.assertEqual(ids, {2, 3})

	def test_vehicle_filter(self):
		results = self.registry.find_nearby(14.0, 121.0, 3000, vehicle_type=VEHICLE_CAB)
		self.assertEqual([d.driver_id for d in results], [3])

	def test_radius_boundary_is_inclusive(self):
		exact = calculate_distance(14.0, 121.0, 14.01, 121.0)
		self.assertIn(2, [d.driver_id for d in self.registry.find_nearby(14.0, 121.0, exact)])
		self.assertNotIn(2, [d.driver_id for d in self.registry.find_nearby(14.0, 121.0, exact - 1)])

	def test_as_dict_payload(self):
		nearest = self.registry.find_nearby(14.0, 121.0, 3000)[0]
		self.assertEqual(nearest.as_dict(), {
			'rider_id': 1,
			'name': 'Near',
			'vehicle_type': VEHICLE_TRICYCLE,
			'coordinates': {'latitude': 14.0, 'longitude': 121.0, 'heading': None},
			'distance': 0.0,
		})

	def test_find_nearby_drivers_uses_configured_radius(self):
		results = find_nearby_drivers(14.0, 121.0, registry=self.registry, radius_provider=FixedRadius(km=20))
		self.assertEqual([d.driver_id for d in results], [1, 2, 3, 4])

		results = find_nearby_drivers(14.0, 121.0, registry=self.registry, radius_provider=FixedRadius(km=1))
		self.assertEqual([d.driver_id for d in results], [1])


class DisconnectGraceTests(SimpleTestCase):
	def setUp(self):
		self.registry = OnDutyRegistry()
		self.registry.set_on_duty(1, {'latitude': 14.0, 'longitude': 121.0}, VEHICLE_TRICYCLE, connection='chan-1')
		self.registry.join_group(1, 'chan-1')

	async def test_removed_after_grace_period(self):
		self.registry.schedule_removal(1, 'chan-1', 0.01)
		self.assertTrue(self.registry.has_pending_removal(1))
		self.assertTrue(self.registry.is_on_duty(1))

		await asyncio.sleep(0.05)

		self.assertFalse(self.registry.is_on_duty(1))
		self.assertFalse(self.registry.is_group_member(1))
		self.assertFalse(self.registry.has_pending_removal(1))

	async def test_reconnect_within_grace_keeps_rider(self):
		self.registry.schedule_removal(1, 'chan-1', 0.01)
		presence = self.registry.reattach(1, 'chan-2')

		await asyncio.sleep(0.05)

		self.assertIsNotNone(presence)
		self.assertTrue(self.registry.is_on_duty(1))
		self.assertEqual(self.registry.get(1).connection, 'chan-2')
		self.assertEqual(self.registry.group_members(), {1: 'chan-2'})

	async def test_expiry_skips_rider_bound_to_newer_connection(self):
		self.registry.schedule_removal(1, 'chan-1', 0.01)
		self.registry.update_location(1, {'latitude': 14.001, 'longitude': 121.0}, connection='chan-2')

		await asyncio.sleep(0.05)

		self.assertTrue(self.registry.is_on_duty(1))

	async def test_going_on_duty_again_cancels_removal(self):
		self.registry.schedule_removal(1, 'chan-1', 0.01)
		self.registry.set_on_duty(1, {'latitude': 14.0, 'longitude': 121.0}, VEHICLE_TRICYCLE, connection='chan-1')

		await asyncio.sleep(0.05)

		self.assertTrue(self.registry.is_on_duty(1))
		self.assertFalse(self.registry.has_pending_removal(1))
