from datetime import timedelta
from io import StringIO

from django.core.management import call_command
from django.test import TestCase
from django.utils import timezone
from rest_framework.test import APIRequestFactory, force_authenticate
from unittest.mock import patch

from services.configuration import invalidate_distance_radius_cache
from services.dispatch import dispatch_budget_seconds
from services.matching import get_on_duty_registry
from services.tests.helpers import make_customer, make_rider, ride_request
from .models import Ride, STATUS_SEARCHING, STATUS_START, STATUS_ARRIVED, STATUS_TIMEOUT, VEHICLE_TRICYCLE
from .tasks import expire_stale_rides_task
from . import views


@patch('rides.views.publish_events')
@patch('rides.views.get_dispatch_manager')
class RideViewTests(TestCase):
	def setUp(self):
		self.factory = APIRequestFactory()
		self.customer = make_customer(phone_number='9000000000')
		self.rider = make_rider('rider_one')
		self.other_rider = make_rider('rider_two')
		self.registry = get_on_duty_registry()
		self.registry.clear()
		invalidate_distance_radius_cache()

	def tearDown(self):
		self.registry.clear()

	def post(self, view, user, data=None, **kwargs):
		request = self.factory.post('/api/rides/', data or {}, format='json')
		force_authenticate(request, user=user)
		return view(request, **kwargs)

	def get(self, view, user, path='/api/rides/', **kwargs):
		request = self.factory.get(path)
		force_authenticate(request, user=user)
		return view(request, **kwargs)

	def create_ride(self):
		response = self.post(views.create_ride, self.customer, ride_request())
		self.assertEqual(response.status_code, 201)
		return Ride.objects.get(pk=response.data['ride']['id'])

	def test_create_ride_starts_dispatch_and_publishes_offer(self, mock_manager, mock_publish):
		response = self.post(views.create_ride, self.customer, ride_request())

		self.assertEqual(response.status_code, 201)
		self.assertEqual(response.data['ride']['status'], STATUS_SEARCHING)
		self.assertIn('otp', response.data['ride'])
		self.assertIn(VEHICLE_TRICYCLE, response.data['fares'])
		mock_manager.return_value.start.assert_called_once_with(response.data['ride']['id'])
		published = [event.name for event in mock_publish.call_args[0][0]]
		self.assertEqual(published, ['new_ride_offer'])

	def test_create_ride_validation_error(self, mock_manager, mock_publish):
		data = ride_request()
		del data['drop']

		response = self.post(views.create_ride, self.customer, data)

		self.assertEqual(response.status_code, 400)
		self.assertEqual(response.data['error'], 'invalid_request')
		mock_manager.return_value.start.assert_not_called()

	def test_accept_requires_on_duty_rider(self, mock_manager, mock_publish):
		ride = self.create_ride()

		response = self.post(views.accept_ride, self.rider, ride_id=ride.id)

		self.assertEqual(response.status_code, 409)
		self.assertEqual(response.data['error'], 'rider_not_on_duty')

	def test_accept_stops_dispatch(self, mock_manager, mock_publish):
		ride = self.create_ride()
		self.registry.set_on_duty(self.rider.id, {'latitude': 14.0, 'longitude': 121.0}, VEHICLE_TRICYCLE)

		response = self.post(views.accept_ride, self.rider, ride_id=ride.id)

		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['ride']['status'], STATUS_START)
		self.assertEqual(response.data['ride']['rider']['id'], self.rider.id)
		self.assertEqual(response.data['ride']['rider']['vehicle_type'], VEHICLE_TRICYCLE)
		self.assertNotIn('otp', response.data['ride'])
		mock_manager.return_value.stop.assert_called_once_with(ride.id, 'accepted')

	def test_rider_decline_over_http(self, mock_manager, mock_publish):
		ride = self.create_ride()

		response = self.post(views.cancel_ride, self.rider, {'reason': 'Too far'}, ride_id=ride.id)

		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['ride']['status'], STATUS_SEARCHING)
		self.assertEqual(response.data['ride']['blacklisted_riders'], [self.rider.id])
		mock_manager.return_value.stop.assert_not_called()

		listing = self.get(views.searching_rides, self.rider)
		self.assertEqual(listing.data['count'], 0)
		listing = self.get(views.searching_rides, self.other_rider)
		self.assertEqual(listing.data['count'], 1)

	def test_searching_rides_is_for_riders(self, mock_manager, mock_publish):
		response = self.get(views.searching_rides, self.customer)
		self.assertEqual(response.status_code, 403)

	def test_update_status(self, mock_manager, mock_publish):
		ride = self.create_ride()
		self.registry.set_on_duty(self.rider.id, {'latitude': 14.0, 'longitude': 121.0}, VEHICLE_TRICYCLE)
		self.post(views.accept_ride, self.rider, ride_id=ride.id)

		response = self.post(views.update_ride_status, self.rider, {'status': STATUS_ARRIVED}, ride_id=ride.id)
		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['ride']['status'], STATUS_ARRIVED)

		response = self.post(views.update_ride_status, self.rider, {'status': 'FLYING'}, ride_id=ride.id)
		self.assertEqual(response.status_code, 400)

		response = self.post(views.update_ride_status, self.other_rider, {'status': 'COMPLETED'}, ride_id=ride.id)
		self.assertEqual(response.status_code, 403)

	def test_ride_detail_visibility(self, mock_manager, mock_publish):
		ride = self.create_ride()

		response = self.get(views.ride_detail, self.customer, ride_id=ride.id)
		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['otp'], ride.otp)

		response = self.get(views.ride_detail, make_customer('stranger'), ride_id=ride.id)
		self.assertEqual(response.status_code, 403)

		response = self.get(views.ride_detail, self.customer, ride_id=ride.id + 100)
		self.assertEqual(response.status_code, 404)

	def test_my_rides(self, mock_manager, mock_publish):
		self.create_ride()
		self.create_ride()

		response = self.get(views.my_rides, self.customer)

		self.assertEqual(response.data['count'], 2)
		response = self.get(views.my_rides, self.customer, path='/api/rides/mine/?status=COMPLETED')
		self.assertEqual(response.data['count'], 0)

	def test_fare_estimate(self, mock_manager, mock_publish):
		data = ride_request()
		response = self.post(views.fare_estimate, self.customer, {'pickup': data['pickup'], 'drop': data['drop']})

		self.assertEqual(response.status_code, 200)
		self.assertGreater(response.data['distance'], 0)
		self.assertEqual(set(response.data['fares']), {'Single Motorcycle', 'Tricycle', 'Cab'})


class StaleRideCommandTests(TestCase):
	def setUp(self):
		customer = make_customer()
		self.ride = Ride.objects.create(
			customer=customer,
			vehicle=VEHICLE_TRICYCLE,
			pickup_address='Pickup',
			pickup_latitude=14.0,
			pickup_longitude=121.0,
			drop_address='Drop',
			drop_latitude=14.05,
			drop_longitude=121.05,
			distance=7.6,
			fare=21.3,
			otp='1234',
		)
		Ride.objects.filter(pk=self.ride.pk).update(
			created_at=timezone.now() - timedelta(seconds=dispatch_budget_seconds() * 2)
		)

	def test_dry_run(self):
		out = StringIO()
		call_command('expire_stale_rides', '--dry-run', stdout=out)

		self.assertIn('DRY RUN', out.getvalue())
		self.ride.refresh_from_db()
		self.assertEqual(self.ride.status, STATUS_SEARCHING)

	@patch('realtime.broadcast.publish_events')
	def test_command_times_out_stale_rides(self, mock_publish):
		out = StringIO()
		call_command('expire_stale_rides', stdout=out)

		self.assertIn('Timed out 1', out.getvalue())
		self.ride.refresh_from_db()
		self.assertEqual(self.ride.status, STATUS_TIMEOUT)
		mock_publish.assert_called_once()

	@patch('realtime.broadcast.publish_events')
	def test_celery_task(self, mock_publish):
		self.assertEqual(expire_stale_rides_task(), [self.ride.id])
		self.assertEqual(expire_stale_rides_task(), [])
