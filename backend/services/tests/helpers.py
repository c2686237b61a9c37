from accounts.models import User
from drivers.models import DriverProfile
from rides.models import VEHICLE_TRICYCLE


class FixedRadius:
	"""Radius provider stand-in that never touches the database."""

	def __init__(self, km=3):
		self.km = km

	def get_meters(self):
		return self.km * 1000

	def get_km(self):
		return self.km


def make_customer(username='customer', **extra):
	return User.objects.create_user(
		username=username,
		password='pass1234',
		role=User.ROLE_CUSTOMER,
		**extra
	)


def make_rider(username='rider', vehicle_type=VEHICLE_TRICYCLE, plate_number=None):
	user = User.objects.create_user(
		username=username,
		password='rider1234',
		role=User.ROLE_RIDER,
	)
	DriverProfile.objects.create(
		user=user,
		vehicle_type=vehicle_type,
		plate_number=plate_number or f'PLT-{username}'
	)
	return user


def ride_request(vehicle=VEHICLE_TRICYCLE, pickup=(14.0, 121.0), drop=(14.05, 121.05), passenger_count=1):
	return {
		'vehicle': vehicle,
		'pickup': {'address': 'Pickup', 'latitude': pickup[0], 'longitude': pickup[1]},
		'drop': {'address': 'Drop', 'latitude': drop[0], 'longitude': drop[1], 'landmark': 'Gate 2'},
		'passenger_count': passenger_count,
	}
