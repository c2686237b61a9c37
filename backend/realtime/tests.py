import json
from unittest.mock import MagicMock, patch

from asgiref.sync import async_to_sync
from channels.db import database_sync_to_async
from channels.layers import get_channel_layer
from channels.testing import WebsocketCommunicator
from django.contrib.auth.models import AnonymousUser
from django.test import SimpleTestCase, TestCase, TransactionTestCase
from rest_framework_simplejwt.tokens import AccessToken

from rides.models import Ride, STATUS_SEARCHING, STATUS_START
from services.configuration import invalidate_distance_radius_cache
from services.matching import OnDutyRegistry
from services.ride_management import create_ride
from services.tests.helpers import make_customer, make_rider, ride_request
from .broadcast import reset_broadcast_throttle
from .consumers import BaseConsumer, CustomerConsumer, RiderConsumer
from .events import (
	AcceptRide,
	CancelRide,
	CreateRide,
	GoOnDuty,
	InboundEventError,
	SetPaymentMethod,
	UpdateRideStatus,
	parse_inbound,
)
from .middleware import JWTOrCookieAuthMiddleware, _token_from_scope


class ParseInboundTests(SimpleTestCase):
	def test_typed_events(self):
		self.assertEqual(parse_inbound({'type': 'accept_ride', 'ride_id': '12'}), AcceptRide(ride_id=12))
		self.assertEqual(
			parse_inbound({'type': 'update_ride_status', 'ride_id': 3, 'status': 'ARRIVED'}),
			UpdateRideStatus(ride_id=3, status='ARRIVED'),
		)
		self.assertEqual(parse_inbound({'type': 'cancel_ride', 'ride_id': 3}), CancelRide(ride_id=3))
		self.assertEqual(
			parse_inbound({'type': 'set_payment_method', 'ride_id': 3, 'payment_method': 'gcash'}),
			SetPaymentMethod(ride_id=3, payment_method='GCASH'),
		)

	def test_coordinates_nested_or_flat(self):
		nested = parse_inbound({'type': 'go_on_duty', 'coordinates': {'latitude': 14.0, 'longitude': 121.0}})
		flat = parse_inbound({'type': 'go_on_duty', 'latitude': 14.0, 'longitude': 121.0})

		self.assertIsInstance(nested, GoOnDuty)
		self.assertEqual(nested.coordinates, {'latitude': 14.0, 'longitude': 121.0})
		self.assertEqual(flat.coordinates, {'latitude': 14.0, 'longitude': 121.0, 'heading': None})

	def test_create_ride_keeps_payload_without_type(self):
		event = parse_inbound({'type': 'create_ride', **ride_request()})
		self.assertIsInstance(event, CreateRide)
		self.assertNotIn('type', event.data)
		self.assertEqual(event.data['vehicle'], 'Tricycle')

	def test_malformed_messages(self):
		bad_messages = [
			[],
			{},
			{'type': 'teleport'},
			{'type': 'accept_ride'},
			{'type': 'accept_ride', 'ride_id': 0},
			{'type': 'accept_ride', 'ride_id': 'abc'},
			{'type': 'accept_ride', 'ride_id': True},
			{'type': 'accept_ride', 'ride_id': 1.5},
			json.loads('{"type": "accept_ride", "ride_id": Infinity}'),
			{'type': 'subscribe_rider_location', 'rider_id': float('-inf')},
			{'type': 'accept_ride', 'ride_id': float('nan')},
			{'type': 'update_ride_status', 'ride_id': 1},
			{'type': 'cancel_ride', 'ride_id': 1, 'reason': 42},
			{'type': 'go_on_duty', 'coordinates': '14,121'},
		]
		for message in bad_messages:
			with self.assertRaises(InboundEventError, msg=message):
				parse_inbound(message)


class JWTMiddlewareTests(TestCase):
	def setUp(self):
		self.user = make_customer()

	def test_token_sources(self):
		self.assertEqual(_token_from_scope({'query_string': b'token=abc'}), 'abc')
		self.assertEqual(_token_from_scope({'headers': [(b'access_token', b'abc')]}), 'abc')
		self.assertEqual(_token_from_scope({'headers': [(b'authorization', b'Bearer abc')]}), 'abc')
		self.assertIsNone(_token_from_scope({'headers': [(b'authorization', b'Basic abc')]}))
		self.assertIsNone(_token_from_scope({}))

	async def _resolve_user(self, scope):
		captured = {}

		async def inner(scope, receive, send):
			captured['user'] = scope['user']

		await JWTOrCookieAuthMiddleware(inner)(scope, None, None)
		return captured['user']

	async def test_valid_token_sets_user(self):
		token = str(AccessToken.for_user(self.user))

		resolved = await self._resolve_user({'query_string': f'token={token}'.encode()})

		self.assertEqual(resolved.pk, self.user.pk)

	async def test_bad_token_is_anonymous(self):
		resolved = await self._resolve_user({'query_string': b'token=not-a-jwt'})
		self.assertTrue(resolved.is_anonymous)


async def receive_until(communicator, event_type, timeout=1):
	"""Read frames until one of `event_type` arrives; returns (frame, frames seen before it)."""
	seen = []
	while True:
		frame = await communicator.receive_json_from(timeout=timeout)
		if frame.get('type') == event_type:
			return frame, seen
		seen.append(frame)


class ConsumerTestCase(TransactionTestCase):
	def setUp(self):
		self.customer = make_customer()
		self.rider = make_rider('rider_one')
		self.registry = OnDutyRegistry()
		self.dispatch_manager = MagicMock()

		for attribute, value in (('registry', self.registry), ('dispatch_manager', self.dispatch_manager)):
			patcher = patch.object(BaseConsumer, attribute, value)
			patcher.start()
			self.addCleanup(patcher.stop)

		reset_broadcast_throttle()
		invalidate_distance_radius_cache()
		async_to_sync(get_channel_layer().flush)()

	async def connect(self, consumer_class, user, path):
		communicator = WebsocketCommunicator(consumer_class.as_asgi(), path)
		communicator.scope['user'] = user
		connected, _ = await communicator.connect()
		self.assertTrue(connected)
		await receive_until(communicator, 'connection_established')
		return communicator

	async def connect_rider(self, on_duty=False):
		communicator = await self.connect(RiderConsumer, self.rider, '/ws/rider/')
		if on_duty:
			await communicator.send_json_to({'type': 'go_on_duty', 'latitude': 14.0, 'longitude': 121.0})
			await receive_until(communicator, 'all_searching_rides')
		return communicator

	async def connect_customer(self):
		return await self.connect(CustomerConsumer, self.customer, '/ws/customer/')


class ConnectionTests(ConsumerTestCase):
	async def test_anonymous_is_rejected(self):
		communicator = WebsocketCommunicator(RiderConsumer.as_asgi(), '/ws/rider/')
		communicator.scope['user'] = AnonymousUser()

		connected, _ = await communicator.connect()

		self.assertFalse(connected)
		await communicator.disconnect()

	async def test_wrong_role_is_closed(self):
		communicator = WebsocketCommunicator(RiderConsumer.as_asgi(), '/ws/rider/')
		communicator.scope['user'] = self.customer

		await communicator.connect()
		frame = await communicator.receive_json_from()
		closed = await communicator.receive_output()

		self.assertEqual(frame['error'], 'forbidden')
		self.assertEqual(closed['code'], 4003)
		await communicator.disconnect()

	async def test_invalid_and_foreign_messages(self):
		customer = await self.connect_customer()

		await customer.send_json_to({'type': 'teleport'})
		frame = await customer.receive_json_from()
		self.assertEqual((frame['type'], frame['error']), ('error', 'invalid_message'))

		# Serialized as a bare Infinity token
		await customer.send_json_to({'type': 'subscribe_rider_location', 'rider_id': float('inf')})
		frame = await customer.receive_json_from()
		self.assertEqual((frame['type'], frame['error']), ('error', 'invalid_message'))

		await customer.send_json_to({'type': 'go_on_duty', 'latitude': 14.0, 'longitude': 121.0})
		frame = await customer.receive_json_from()
		self.assertEqual((frame['type'], frame['error']), ('error', 'forbidden'))

		await customer.disconnect()


class RideFlowTests(ConsumerTestCase):
	async def test_tricycle_ride_is_offered_and_accepted(self):
		rider = await self.connect_rider(on_duty=True)
		customer = await self.connect_customer()
		self.assertTrue(self.registry.is_on_duty(self.rider.id))

		await customer.send_json_to({'type': 'create_ride', **ride_request()})
		created, _ = await receive_until(customer, 'ride_created')
		ride_id = created['ride']['id']
		self.assertEqual(created['ride']['status'], STATUS_SEARCHING)
		self.assertIn('otp', created['ride'])
		self.dispatch_manager.start.assert_called_once_with(ride_id)

		offer, _ = await receive_until(rider, 'new_ride_offer')
		self.assertEqual(offer['ride']['id'], ride_id)
		self.assertNotIn('otp', offer['ride'])

		await rider.send_json_to({'type': 'accept_ride', 'ride_id': ride_id})
		success, _ = await receive_until(rider, 'accept_ride_success')
		self.assertEqual(success['ride']['status'], STATUS_START)

		accepted, _ = await receive_until(customer, 'ride_accepted')
		self.assertEqual(accepted['ride']['rider']['id'], self.rider.id)
		self.dispatch_manager.stop.assert_called_once_with(ride_id, 'accepted')

		ride = await database_sync_to_async(Ride.objects.get)(pk=ride_id)
		self.assertEqual(ride.status, STATUS_START)
		self.assertEqual(ride.rider_id, self.rider.id)

		await rider.disconnect()
		await customer.disconnect()

	async def test_accept_while_off_duty(self):
		ride = (await database_sync_to_async(create_ride)(self.customer, ride_request())).ride
		rider = await self.connect_rider()

		await rider.send_json_to({'type': 'accept_ride', 'ride_id': ride.id})
		frame, _ = await receive_until(rider, 'error')

		self.assertEqual(frame['error'], 'rider_not_on_duty')
		self.assertEqual(frame['event'], 'accept_ride')
		await rider.disconnect()

	async def test_lost_presence_asks_for_location_sync(self):
		ride = (await database_sync_to_async(create_ride)(self.customer, ride_request())).ride
		rider = await self.connect_rider()
		self.registry.join_group(self.rider.id, 'stale-channel')

		await rider.send_json_to({'type': 'accept_ride', 'ride_id': ride.id})
		error, _ = await receive_until(rider, 'error')
		sync, _ = await receive_until(rider, 'request_location_sync')

		self.assertEqual(error['error'], 'location_sync_required')
		self.assertEqual(sync['ride_id'], ride.id)
		await rider.disconnect()

	async def test_rider_decline_keeps_ride_searching(self):
		ride = (await database_sync_to_async(create_ride)(self.customer, ride_request())).ride
		rider = await self.connect_rider(on_duty=True)

		await rider.send_json_to({'type': 'cancel_ride', 'ride_id': ride.id, 'reason': 'Too far'})
		success, _ = await receive_until(rider, 'cancel_ride_success')
		removed, _ = await receive_until(rider, 'ride_removed_for_driver')

		self.assertEqual(success['status'], STATUS_SEARCHING)
		self.assertEqual(removed['ride_id'], ride.id)
		await rider.send_json_to({'type': 'request_searching_rides'})
		listing, _ = await receive_until(rider, 'all_searching_rides')
		self.assertEqual(listing['rides'], [])
		await rider.disconnect()


class TrackingTests(ConsumerTestCase):
	async def test_zone_watchers_see_riders_move(self):
		rider = await self.connect_rider(on_duty=True)
		customer = await self.connect_customer()

		await customer.send_json_to({'type': 'subscribe_zone', 'latitude': 14.0, 'longitude': 121.0})
		nearby, _ = await receive_until(customer, 'nearby_drivers')
		self.assertEqual([r['rider_id'] for r in nearby['riders']], [self.rider.id])

		await rider.send_json_to({'type': 'update_location', 'latitude': 14.002, 'longitude': 121.0})
		nearby, _ = await receive_until(customer, 'nearby_drivers')
		self.assertEqual(nearby['riders'][0]['coordinates']['latitude'], 14.002)

		await rider.disconnect()
		await customer.disconnect()

	async def test_rider_location_requires_assignment(self):
		customer = await self.connect_customer()

		await customer.send_json_to({'type': 'subscribe_rider_location', 'rider_id': self.rider.id})
		frame, _ = await receive_until(customer, 'error')

		self.assertEqual(frame['error'], 'not_ride_participant')
		await customer.disconnect()

	async def test_disconnect_keeps_rider_for_grace_period(self):
		rider = await self.connect_rider(on_duty=True)

		await rider.disconnect()

		self.assertTrue(self.registry.is_on_duty(self.rider.id))
		self.assertTrue(self.registry.has_pending_removal(self.rider.id))

		reconnected = await self.connect_rider()
		self.assertFalse(self.registry.has_pending_removal(self.rider.id))
		self.assertTrue(self.registry.is_on_duty(self.rider.id))
		await reconnected.disconnect()
