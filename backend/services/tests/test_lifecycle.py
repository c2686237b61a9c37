from django.test import TestCase, override_settings

from rides.models import (
	Ride,
	VEHICLE_CAB,
	VEHICLE_MOTORCYCLE,
	VEHICLE_TRICYCLE,
	STATUS_SEARCHING,
	STATUS_START,
	STATUS_ARRIVED,
	STATUS_COMPLETED,
	STATUS_CANCELLED,
	STATUS_TIMEOUT,
	PAYMENT_GCASH,
)
from services import events
from services.matching import OnDutyRegistry, find_nearby_drivers
from services.ride_management import (
	DriverNotAvailableError,
	DriverTooFarError,
	InvalidRideRequestError,
	LocationSyncRequiredError,
	NotRideParticipantError,
	RideAlreadyCompletedError,
	RideNotAvailableError,
	RideNotFoundError,
	VehicleMismatchError,
	accept_ride,
	cancel_ride,
	create_ride,
	list_searching_rides,
	set_payment_method,
	timeout_ride,
	update_ride_status,
)
from common.utils.geo import distance_km
from services.ride_management.ride_lifecycle import _decline_by_rider
from .helpers import FixedRadius, make_customer, make_rider, ride_request


def event_targets(result):
	return [(event.name, event.group) for event in result.events]


class LifecycleTestCase(TestCase):
	def setUp(self):
		self.customer = make_customer()
		self.rider = make_rider('rider_one')
		self.other_rider = make_rider('rider_two')
		self.registry = OnDutyRegistry()
		self.radius = FixedRadius(km=3)

	def go_on_duty(self, rider, latitude=14.0, longitude=121.0, vehicle_type=VEHICLE_TRICYCLE):
		self.registry.set_on_duty(rider.id, {'latitude': latitude, 'longitude': longitude}, vehicle_type)
		self.registry.join_group(rider.id, f'chan-{rider.id}')

	def create(self, **kwargs):
		return create_ride(self.customer, ride_request(**kwargs)).ride

	def accept(self, rider, ride):
		return accept_ride(rider, ride.id, registry=self.registry, radius_provider=self.radius)


class CreateRideTests(LifecycleTestCase):
	def test_cab_ride_fare_and_offer(self):
		result = create_ride(self.customer, ride_request(vehicle=VEHICLE_CAB))
		ride = result.ride

		expected_distance = distance_km(14.0, 121.0, 14.05, 121.05)
		self.assertGreater(ride.distance, 0)
		self.assertAlmostEqual(ride.distance, expected_distance)
		self.assertAlmostEqual(ride.fare, max(expected_distance * 3.0, 30.0))
		self.assertEqual(ride.status, STATUS_SEARCHING)
		self.assertIsNone(ride.rider_id)
		self.assertEqual(len(ride.otp), 4)
		self.assertEqual(ride.drop_landmark, 'Gate 2')

		self.assertTrue(result.start_dispatch)
		self.assertEqual(set(result.extra['fares']), {VEHICLE_MOTORCYCLE, VEHICLE_TRICYCLE, VEHICLE_CAB})
		self.assertEqual(event_targets(result), [(events.NEW_RIDE_OFFER, events.ON_DUTY_GROUP)])
		self.assertNotIn('otp', result.events[0].payload['ride'])

	def test_only_customers_can_create(self):
		with self.assertRaises(NotRideParticipantError):
			create_ride(self.rider, ride_request())
		self.assertFalse(Ride.objects.exists())

	def test_invalid_payload(self):
		data = ride_request()
		data['pickup']['latitude'] = 'north'
		with self.assertRaises(InvalidRideRequestError) as ctx:
			create_ride(self.customer, data)
		self.assertIn('pickup', ctx.exception.details['errors'])

	@override_settings(RIDE_VEHICLE_CAPACITY={VEHICLE_MOTORCYCLE: 1, VEHICLE_TRICYCLE: 3, VEHICLE_CAB: 4})
	def test_passenger_count_respects_vehicle_capacity(self):
		with self.assertRaises(InvalidRideRequestError):
			create_ride(self.customer, ride_request(vehicle=VEHICLE_MOTORCYCLE, passenger_count=2))
		with self.assertRaises(InvalidRideRequestError):
			create_ride(self.customer, ride_request(vehicle=VEHICLE_TRICYCLE, passenger_count=4))

		ride = create_ride(self.customer, ride_request(vehicle=VEHICLE_TRICYCLE, passenger_count=3)).ride
		self.assertEqual(ride.passenger_count, 3)


class AcceptRideTests(LifecycleTestCase):
	def test_tricycle_scenario(self):
		self.go_on_duty(self.rider)
		ride = self.create()

		nearby = find_nearby_drivers(
			ride.pickup_latitude, ride.pickup_longitude,
			vehicle_type=ride.vehicle, registry=self.registry, radius_provider=self.radius,
		)
		self.assertEqual([d.driver_id for d in nearby], [self.rider.id])
		self.assertAlmostEqual(nearby[0].distance_meters, 0, places=3)

		result = self.accept(self.rider, ride)

		ride.refresh_from_db()
		self.assertEqual(ride.status, STATUS_START)
		self.assertEqual(ride.rider_id, self.rider.id)
		self.assertIsNotNone(ride.accepted_at)
		self.assertEqual(result.stop_dispatch, 'accepted')
		self.assertIn((events.RIDE_ACCEPTED, events.ON_DUTY_GROUP), event_targets(result))
		self.assertIn((events.RIDE_ACCEPTED, events.ride_group(ride.id)), event_targets(result))
		self.assertIn((events.RIDE_UPDATED, events.ride_group(ride.id)), event_targets(result))
		on_duty_event = [e for e in result.events if e.group == events.ON_DUTY_GROUP][0]
		self.assertEqual(on_duty_event.payload, {'ride_id': ride.id, 'rider_id': self.rider.id})

	def test_second_accept_loses(self):
		self.go_on_duty(self.rider)
		self.go_on_duty(self.other_rider)
		ride = self.create()

		self.accept(self.rider, ride)
		with self.assertRaises(RideNotAvailableError):
			self.accept(self.other_rider, ride)

		ride.refresh_from_db()
		self.assertEqual(ride.rider_id, self.rider.id)

	def test_non_searching_ride_is_left_untouched(self):
		self.go_on_duty(self.rider)
		for status in (STATUS_CANCELLED, STATUS_TIMEOUT, STATUS_COMPLETED):
			ride = self.create()
			Ride.objects.filter(pk=ride.pk).update(status=status)

			with self.assertRaises(RideNotAvailableError) as ctx:
				self.accept(self.rider, ride)
			self.assertEqual(ctx.exception.message, 'Ride is no longer available for assignment')

			ride.refresh_from_db()
			self.assertEqual(ride.status, status)
			self.assertIsNone(ride.rider_id)
			self.assertIsNone(ride.accepted_at)

	def test_vehicle_mismatch(self):
		self.go_on_duty(self.rider)
		ride = self.create(vehicle=VEHICLE_CAB)

		with self.assertRaises(VehicleMismatchError) as ctx:
			self.accept(self.rider, ride)
		self.assertIn(VEHICLE_CAB, ctx.exception.message)
		self.assertIn(VEHICLE_TRICYCLE, ctx.exception.message)

	def test_rider_not_on_duty(self):
		ride = self.create()
		with self.assertRaises(DriverNotAvailableError):
			self.accept(self.rider, ride)

	def test_group_member_without_presence_must_resync(self):
		ride = self.create()
		self.registry.join_group(self.rider.id, 'chan-1')

		with self.assertRaises(LocationSyncRequiredError):
			self.accept(self.rider, ride)

	def test_rider_too_far(self):
		self.go_on_duty(self.rider, latitude=14.1)
		ride = self.create()

		with self.assertRaises(DriverTooFarError) as ctx:
			self.accept(self.rider, ride)
		self.assertEqual(ctx.exception.details['max_distance_km'], 3.0)
		self.assertGreater(ctx.exception.details['distance_km'], 3.0)

	def test_customer_cannot_accept(self):
		ride = self.create()
		with self.assertRaises(NotRideParticipantError):
			self.accept(self.customer, ride)

	def test_unknown_ride(self):
		with self.assertRaises(RideNotFoundError):
			accept_ride(self.rider, 999, registry=self.registry, radius_provider=self.radius)


class DeclineAndCancelTests(LifecycleTestCase):
	def test_rider_decline_blacklists_and_keeps_searching(self):
		self.go_on_duty(self.rider)
		self.go_on_duty(self.other_rider, latitude=14.001)
		ride = self.create()

		result = cancel_ride(self.rider, ride.id, 'Too far')

		ride.refresh_from_db()
		self.assertEqual(ride.status, STATUS_SEARCHING)
		self.assertIsNone(ride.rider_id)
		self.assertTrue(ride.blacklisted_riders.filter(pk=self.rider.pk).exists())
		self.assertIsNone(result.stop_dispatch)
		self.assertEqual(event_targets(result), [(events.RIDE_REMOVED_FOR_DRIVER, events.user_group(self.rider.id))])

		blacklist = set(ride.blacklisted_riders.values_list('id', flat=True))
		nearby = find_nearby_drivers(
			14.0, 121.0, exclude_ids=blacklist, vehicle_type=VEHICLE_TRICYCLE,
			registry=self.registry, radius_provider=self.radius,
		)
		self.assertEqual([d.driver_id for d in nearby], [self.other_rider.id])
		self.assertNotIn(ride, list_searching_rides(exclude_rider_id=self.rider.id))
		self.assertIn(ride, list_searching_rides(exclude_rider_id=self.other_rider.id))

		with self.assertRaises(RideNotAvailableError):
			self.accept(self.rider, ride)
		self.accept(self.other_rider, ride)

	def test_decline_after_another_rider_accepted(self):
		self.go_on_duty(self.rider)
		self.go_on_duty(self.other_rider, latitude=14.001)
		ride = self.create()
		stale = Ride.objects.get(pk=ride.id)
		self.accept(self.other_rider, ride)

		with self.assertRaises(RideNotAvailableError):
			_decline_by_rider(stale, self.rider)

		ride.refresh_from_db()
		self.assertEqual(ride.status, STATUS_START)
		self.assertEqual(ride.rider_id, self.other_rider.id)
		self.assertFalse(ride.blacklisted_riders.filter(pk=self.rider.pk).exists())

	def test_customer_cancels_assigned_ride(self):
		self.go_on_duty(self.rider)
		ride = self.create()
		self.accept(self.rider, ride)

		result = cancel_ride(self.customer, ride.id, 'Changed plans')

		ride.refresh_from_db()
		self.assertEqual(ride.status, STATUS_CANCELLED)
		self.assertEqual(ride.cancelled_by, 'customer')
		self.assertEqual(ride.cancellation_reason, 'Changed plans')
		self.assertIsNotNone(ride.cancelled_at)
		self.assertEqual(result.stop_dispatch, 'cancelled')
		self.assertTrue(result.extra['was_assigned'])
		self.assertIn(
			(events.PASSENGER_CANCELLED_RIDE, events.user_group(self.rider.id)),
			event_targets(result),
		)

	def test_customer_cancels_searching_ride(self):
		ride = self.create()
		result = cancel_ride(self.customer, ride.id)

		ride.refresh_from_db()
		self.assertEqual(ride.status, STATUS_CANCELLED)
		self.assertEqual(ride.cancellation_reason, 'No reason provided')
		self.assertFalse(result.extra['was_assigned'])
		self.assertIn((events.RIDE_CANCELLED, events.ON_DUTY_GROUP), event_targets(result))

	def test_assigned_rider_cancels(self):
		self.go_on_duty(self.rider)
		ride = self.create()
		self.accept(self.rider, ride)

		result = cancel_ride(self.rider, ride.id, 'Flat tire')

		ride.refresh_from_db()
		self.assertEqual(ride.status, STATUS_CANCELLED)
		self.assertEqual(ride.cancelled_by, 'rider')
		self.assertTrue(ride.blacklisted_riders.filter(pk=self.rider.pk).exists())
		self.assertIn(
			(events.RIDER_CANCELLED_RIDE, events.user_group(self.customer.id)),
			event_targets(result),
		)

	def test_outsiders_cannot_cancel(self):
		self.go_on_duty(self.rider)
		ride = self.create()
		self.accept(self.rider, ride)

		with self.assertRaises(NotRideParticipantError):
			cancel_ride(self.other_rider, ride.id)
		with self.assertRaises(NotRideParticipantError):
			cancel_ride(make_customer('stranger'), ride.id)


class StatusUpdateTests(LifecycleTestCase):
	def setUp(self):
		super().setUp()
		self.go_on_duty(self.rider)
		self.ride = self.create()
		self.accept(self.rider, self.ride)

	def test_full_trip_increments_counters(self):
		update_ride_status(self.ride.id, STATUS_ARRIVED, actor=self.rider)
		result = update_ride_status(self.ride.id, STATUS_COMPLETED, actor=self.rider)

		self.ride.refresh_from_db()
		self.assertEqual(self.ride.status, STATUS_COMPLETED)
		self.assertIsNotNone(self.ride.completed_at)
		self.assertEqual(result.stop_dispatch, 'completed')
		self.assertIn((events.RIDE_COMPLETED, events.ride_group(self.ride.id)), event_targets(result))
		self.assertIn((events.RIDE_COMPLETED, events.ON_DUTY_GROUP), event_targets(result))

		self.customer.refresh_from_db()
		self.rider.refresh_from_db()
		self.assertEqual(self.customer.completed_rides, 1)
		self.assertEqual(self.rider.completed_rides, 1)

	def test_completed_ride_is_frozen(self):
		update_ride_status(self.ride.id, STATUS_COMPLETED, actor=self.rider)
		self.ride.refresh_from_db()
		snapshot = (self.ride.status, self.ride.rider_id, self.ride.cancelled_by, self.ride.cancelled_at)

		again = update_ride_status(self.ride.id, STATUS_ARRIVED, actor=self.rider)
		self.assertFalse(again.changed)
		self.assertEqual(again.events, [])

		with self.assertRaises(RideNotAvailableError):
			self.accept(self.other_rider, self.ride)
		with self.assertRaises(RideAlreadyCompletedError):
			cancel_ride(self.customer, self.ride.id)
		with self.assertRaises(RideAlreadyCompletedError):
			cancel_ride(self.rider, self.ride.id)

		self.ride.refresh_from_db()
		self.assertEqual(
			(self.ride.status, self.ride.rider_id, self.ride.cancelled_by, self.ride.cancelled_at),
			snapshot,
		)
		self.rider.refresh_from_db()
		self.assertEqual(self.rider.completed_rides, 1)

	def test_same_status_is_noop(self):
		result = update_ride_status(self.ride.id, STATUS_START, actor=self.rider)
		self.assertFalse(result.changed)
		self.assertEqual(result.events, [])

	def test_cannot_go_backwards(self):
		update_ride_status(self.ride.id, STATUS_ARRIVED, actor=self.rider)
		with self.assertRaises(RideNotAvailableError):
			update_ride_status(self.ride.id, STATUS_START, actor=self.rider)

	def test_only_assigned_rider(self):
		with self.assertRaises(NotRideParticipantError):
			update_ride_status(self.ride.id, STATUS_ARRIVED, actor=self.other_rider)

	def test_rejects_unknown_status(self):
		with self.assertRaises(InvalidRideRequestError):
			update_ride_status(self.ride.id, STATUS_CANCELLED, actor=self.rider)

	def test_payment_method_after_completion(self):
		with self.assertRaises(RideNotAvailableError):
			set_payment_method(self.customer, self.ride.id, PAYMENT_GCASH)

		update_ride_status(self.ride.id, STATUS_COMPLETED, actor=self.rider)
		result = set_payment_method(self.customer, self.ride.id, PAYMENT_GCASH)

		self.ride.refresh_from_db()
		self.assertEqual(self.ride.payment_method, PAYMENT_GCASH)
		self.assertIsNotNone(self.ride.payment_confirmed_at)
		self.assertIn(
			(events.PAYMENT_METHOD_SELECTED, events.user_group(self.rider.id)),
			event_targets(result),
		)

	def test_payment_method_validation(self):
		update_ride_status(self.ride.id, STATUS_COMPLETED, actor=self.rider)
		with self.assertRaises(InvalidRideRequestError):
			set_payment_method(self.customer, self.ride.id, 'BITCOIN')
		with self.assertRaises(NotRideParticipantError):
			set_payment_method(self.rider, self.ride.id, PAYMENT_GCASH)


class TimeoutRideTests(LifecycleTestCase):
	def test_timeout_happens_once(self):
		ride = self.create()

		first = timeout_ride(ride.id)
		second = timeout_ride(ride.id)

		self.assertTrue(first.changed)
		self.assertEqual(first.stop_dispatch, 'timeout')
		self.assertEqual(event_targets(first), [
			(events.RIDE_TIMEOUT, events.ride_group(ride.id)),
			(events.RIDE_TIMEOUT, events.ON_DUTY_GROUP),
			(events.RIDE_CANCELLED, events.ON_DUTY_GROUP),
		])
		self.assertFalse(second.changed)
		self.assertEqual(second.events, [])

		ride.refresh_from_db()
		self.assertEqual(ride.status, STATUS_TIMEOUT)
		self.assertEqual(ride.cancelled_by, 'system')

	def test_timeout_does_not_touch_accepted_ride(self):
		self.go_on_duty(self.rider)
		ride = self.create()
		self.accept(self.rider, ride)

		result = timeout_ride(ride.id)

		self.assertFalse(result.changed)
		ride.refresh_from_db()
		self.assertEqual(ride.status, STATUS_START)
		self.assertEqual(ride.rider_id, self.rider.id)
