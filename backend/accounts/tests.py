from django.contrib.admin.sites import AdminSite
from django.test import TestCase
from django.urls import reverse

from accounts.admin import DriverProfileInline, UserAdmin
from accounts.models import User
from rides.models import VEHICLE_CAB
from services.tests.helpers import make_customer, make_rider


class UserAdminTests(TestCase):
	def setUp(self):
		self.user_admin = UserAdmin(User, AdminSite())
		self.customer = make_customer()
		self.rider = make_rider(vehicle_type=VEHICLE_CAB)

	def test_vehicle_column(self):
		self.assertEqual(self.user_admin.vehicle(self.rider), 'Cab')
		self.assertEqual(self.user_admin.vehicle(self.customer), '-')

	def test_vehicle_inline_only_for_riders(self):
		self.assertEqual(self.user_admin.get_inlines(None, self.rider), [DriverProfileInline])
		self.assertEqual(self.user_admin.get_inlines(None, self.customer), [])
		self.assertEqual(self.user_admin.get_inlines(None, None), [])

	def test_completed_rides_is_read_only(self):
		self.assertIn('completed_rides', self.user_admin.get_readonly_fields(None, self.rider))

	def test_changelist_and_rider_change_page_render(self):
		admin_user = User.objects.create_superuser('admin', 'admin@example.com', 'admin1234')
		self.client.force_login(admin_user)

		response = self.client.get(reverse('admin:accounts_user_changelist'))
		self.assertEqual(response.status_code, 200)
		self.assertContains(response, 'Cab')

		response = self.client.get(reverse('admin:accounts_user_change', args=[self.rider.id]))
		self.assertEqual(response.status_code, 200)
		self.assertContains(response, 'PLT-rider')
