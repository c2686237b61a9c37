from rest_framework import serializers

from accounts.serializers import UserBasicSerializer
from drivers.models import DriverProfile


class RiderBasicSerializer(UserBasicSerializer):
    """
    Lite version of rider info for ride details
    (sent to customers once a rider is assigned).
    """
    vehicle_type = serializers.SerializerMethodField()
    plate_number = serializers.SerializerMethodField()

    class Meta(UserBasicSerializer.Meta):
        fields = UserBasicSerializer.Meta.fields + ["vehicle_type", "plate_number"]

    def _profile(self, obj):
        try:
            return obj.driver_profile
        except DriverProfile.DoesNotExist:
            return None

    def get_vehicle_type(self, obj):
        profile = self._profile(obj)
        return profile.vehicle_type if profile else None

    def get_plate_number(self, obj):
        profile = self._profile(obj)
        return profile.plate_number if profile else None
