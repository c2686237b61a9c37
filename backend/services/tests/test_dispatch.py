import asyncio
from datetime import timedelta
from unittest.mock import MagicMock

from django.test import TestCase, TransactionTestCase
from django.utils import timezone

from rides.models import Ride, STATUS_SEARCHING, STATUS_START, STATUS_TIMEOUT, VEHICLE_CAB, VEHICLE_TRICYCLE
from services import events
from services.dispatch import DispatchController, DispatchManager, dispatch_budget_seconds, expire_stale_rides
from services.matching import OnDutyRegistry
from services.ride_management import RideResult, RideSnapshot
from .helpers import FixedRadius, make_customer, ride_request


class FakeRideStore:
	"""In-memory stand-in for DatabaseRideStore."""

	def __init__(self, snapshot):
		self.snapshot = snapshot
		self.timeout_calls = 0

	async def get_snapshot(self, ride_id):
		return self.snapshot

	async def timeout(self, ride_id):
		self.timeout_calls += 1
		if self.snapshot.status != STATUS_SEARCHING:
			return RideResult(success=True, changed=False)
		self.snapshot = RideSnapshot(ride_id, STATUS_TIMEOUT, self.snapshot.vehicle, 14.0, 121.0)
		return RideResult(
			success=True,
			events=[events.to_ride(events.RIDE_TIMEOUT, ride_id, {'ride_id': ride_id})],
			stop_dispatch='timeout',
		)


class RecordingPublisher:
	def __init__(self, fail=False):
		self.published = []
		self.fail = fail

	async def __call__(self, outbound):
		if self.fail:
			raise ConnectionError('channel layer down')
		self.published.extend(outbound)

	def names(self):
		return [event.name for event in self.published]


class DispatchControllerTests(TransactionTestCase):
	def setUp(self):
		self.registry = OnDutyRegistry()
		self.registry.set_on_duty(1, {'latitude': 14.0, 'longitude': 121.0}, VEHICLE_TRICYCLE, name='Near')
		self.registry.set_on_duty(2, {'latitude': 14.001, 'longitude': 121.0}, VEHICLE_TRICYCLE, name='Declined')
		self.registry.set_on_duty(3, {'latitude': 14.0, 'longitude': 121.001}, VEHICLE_CAB, name='Cab')
		self.store = FakeRideStore(RideSnapshot(
			ride_id=10,
			status=STATUS_SEARCHING,
			vehicle=VEHICLE_TRICYCLE,
			pickup_latitude=14.0,
			pickup_longitude=121.0,
			blacklisted_rider_ids=frozenset({2}),
		))
		self.publisher = RecordingPublisher()

	def make_controller(self, interval=0, max_retries=3, publisher=None):
		return DispatchController(
			10,
			store=self.store,
			publish=publisher or self.publisher,
			registry=self.registry,
			radius_provider=FixedRadius(km=3),
			interval=interval,
			max_retries=max_retries,
		)

	async def test_tick_publishes_matching_riders_to_ride_group(self):
		controller = self.make_controller()

		await controller.tick()

		self.assertEqual(len(self.publisher.published), 1)
		event = self.publisher.published[0]
		self.assertEqual(event.name, events.NEARBY_DRIVERS)
		self.assertEqual(event.group, events.ride_group(10))
		self.assertEqual([r['rider_id'] for r in event.payload['riders']], [1])
		self.assertEqual(event.payload['attempt'], 1)
		self.assertEqual(event.payload['max_attempts'], 3)
		self.assertFalse(controller.stopped)

	async def test_stops_when_ride_resolved_elsewhere(self):
		self.store.snapshot = RideSnapshot(10, STATUS_START, VEHICLE_TRICYCLE, 14.0, 121.0)
		controller = self.make_controller()

		await controller.tick()

		self.assertEqual(controller.stop_reason, 'resolved')
		self.assertEqual(self.publisher.published, [])
		self.assertEqual(self.store.timeout_calls, 0)

	async def test_stops_when_ride_deleted(self):
		self.store.snapshot = None
		controller = self.make_controller()

		await controller.tick()

		self.assertEqual(controller.stop_reason, 'resolved')

	async def test_times_out_once_after_retry_budget(self):
		controller = self.make_controller(max_retries=3)
		controller.start()
		await asyncio.wait_for(controller.wait(), timeout=5)

		self.assertEqual(controller.stop_reason, 'timeout')
		self.assertEqual(controller.retries, 3)
		self.assertEqual(self.store.timeout_calls, 1)
		self.assertEqual(self.publisher.names(), [events.NEARBY_DRIVERS, events.NEARBY_DRIVERS, events.RIDE_TIMEOUT])

		# A late second expiry finds nothing to do
		await controller._expire()
		self.assertEqual(self.store.timeout_calls, 1)
		self.assertEqual(self.publisher.names().count(events.RIDE_TIMEOUT), 1)

	async def test_publish_failures_do_not_stop_the_timer(self):
		controller = self.make_controller(max_retries=3, publisher=RecordingPublisher(fail=True))

		with self.assertLogs('services.dispatch.controller', level='ERROR'):
			controller.start()
			await asyncio.wait_for(controller.wait(), timeout=5)

		self.assertEqual(controller.retries, 3)
		self.assertEqual(controller.stop_reason, 'timeout')
		self.assertEqual(self.store.timeout_calls, 1)

	async def test_stop_is_idempotent_and_cancels_sleep(self):
		stopped = []
		controller = DispatchController(
			10, self.store, self.publisher, self.registry, FixedRadius(), interval=60, max_retries=60,
			on_stop=stopped.append,
		)
		controller.start()

		controller.stop('accepted')
		controller.stop('cancelled')
		await asyncio.wait_for(controller.wait(), timeout=5)

		self.assertEqual(controller.stop_reason, 'accepted')
		self.assertEqual(stopped, [controller])
		self.assertEqual(controller.retries, 0)


class DispatchManagerTests(TransactionTestCase):
	def setUp(self):
		self.store = FakeRideStore(RideSnapshot(5, STATUS_SEARCHING, VEHICLE_TRICYCLE, 14.0, 121.0))
		self.manager = DispatchManager(
			store=self.store,
			publish=RecordingPublisher(),
			registry=OnDutyRegistry(),
			radius_provider=FixedRadius(),
			interval=60,
			max_retries=60,
		)

	async def test_start_is_idempotent(self):
		first = self.manager.start(5)
		second = self.manager.start(5)

		self.assertIs(first, second)
		self.assertTrue(self.manager.is_running(5))
		self.assertEqual(self.manager.active_ride_ids(), [5])

		self.assertTrue(self.manager.stop(5, 'accepted'))
		self.assertFalse(self.manager.stop(5, 'accepted'))
		self.assertFalse(self.manager.is_running(5))
		await first.wait()

	async def test_start_and_stop_from_worker_thread(self):
		self.manager.bind_loop(asyncio.get_running_loop())

		await asyncio.to_thread(self.manager.start, 5)
		await asyncio.sleep(0.01)
		controller = self.manager.get(5)
		self.assertIsNotNone(controller)
		self.assertTrue(self.manager.is_running(5))

		await asyncio.to_thread(self.manager.stop, 5, 'cancelled')
		await asyncio.wait_for(controller.wait(), timeout=5)
		self.assertEqual(controller.stop_reason, 'cancelled')
		self.assertIsNone(self.manager.get(5))

	async def test_stop_all(self):
		controllers = [self.manager.start(ride_id) for ride_id in (1, 2, 3)]

		await self.manager.stop_all()

		self.assertEqual(self.manager.active_ride_ids(), [])
		for controller in controllers:
			self.assertEqual(controller.stop_reason, 'shutdown')

	def test_start_without_event_loop_is_skipped(self):
		with self.assertLogs('services.dispatch.controller', level='WARNING'):
			self.assertIsNone(self.manager.start(5))
		self.assertFalse(self.manager.is_running(5))


class StaleRideSweeperTests(TestCase):
	def setUp(self):
		from services.ride_management import create_ride

		customer = make_customer()
		self.stale = create_ride(customer, ride_request()).ride
		self.fresh = create_ride(customer, ride_request()).ride
		Ride.objects.filter(pk=self.stale.pk).update(
			created_at=timezone.now() - timedelta(seconds=dispatch_budget_seconds() + 60)
		)
		self.publish = MagicMock()

	def test_expires_only_rides_past_the_dispatch_budget(self):
		expired = expire_stale_rides(publish=self.publish)

		self.assertEqual(expired, [self.stale.id])
		self.stale.refresh_from_db()
		self.fresh.refresh_from_db()
		self.assertEqual(self.stale.status, STATUS_TIMEOUT)
		self.assertEqual(self.fresh.status, STATUS_SEARCHING)

		self.publish.assert_called_once()
		published = [event.name for event in self.publish.call_args[0][0]]
		self.assertIn(events.RIDE_TIMEOUT, published)

	def test_second_run_is_a_noop(self):
		expire_stale_rides(publish=self.publish)
		self.assertEqual(expire_stale_rides(publish=self.publish), [])
		self.assertEqual(self.publish.call_count, 1)

	def test_dry_run_changes_nothing(self):
		self.assertEqual(expire_stale_rides(publish=self.publish, dry_run=True), [self.stale.id])

		self.stale.refresh_from_db()
		self.assertEqual(self.stale.status, STATUS_SEARCHING)
		self.publish.assert_not_called()

	def test_custom_max_age(self):
		expired = expire_stale_rides(max_age_seconds=0, publish=self.publish)
		self.assertEqual(sorted(expired), sorted([self.stale.id, self.fresh.id]))
