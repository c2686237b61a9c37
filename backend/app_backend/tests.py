from django.test import TestCase
from rest_framework.test import APIRequestFactory
from unittest.mock import patch

from .views import health_check


class HealthCheckTests(TestCase):
	def setUp(self):
		self.factory = APIRequestFactory()

	@patch('app_backend.views.redis.Redis.from_url')
	def test_healthy(self, mock_from_url):
		response = health_check(self.factory.get('/health/'))

		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.data['services']['database'], 'healthy')
		self.assertEqual(response.data['services']['redis'], 'healthy')
		self.assertIn('on_duty_riders', response.data['dispatch'])
		mock_from_url.return_value.ping.assert_called_once()

	@patch('app_backend.views.redis.Redis.from_url')
	def test_redis_down(self, mock_from_url):
		mock_from_url.return_value.ping.side_effect = ConnectionError('refused')

		response = health_check(self.factory.get('/health/'))

		self.assertEqual(response.status_code, 503)
		self.assertTrue(response.data['services']['redis'].startswith('unhealthy'))
