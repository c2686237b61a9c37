import math

from django.conf import settings
from rest_framework import serializers

from accounts.serializers import UserBasicSerializer
from drivers.serializers import RiderBasicSerializer
from .models import (
    Ride,
    VEHICLE_TYPES,
    PAYMENT_CHOICES,
    STATUS_START,
    STATUS_ARRIVED,
    STATUS_COMPLETED,
)


class CoordinateField(serializers.FloatField):
    """FloatField that refuses booleans and NaN/inf."""

    def to_internal_value(self, data):
        if isinstance(data, bool):
            self.fail('invalid')
        value = super().to_internal_value(data)
        if not math.isfinite(value):
            self.fail('invalid')
        return value


class LocationSerializer(serializers.Serializer):
    address = serializers.CharField(max_length=500)
    latitude = CoordinateField(min_value=-90, max_value=90)
    longitude = CoordinateField(min_value=-180, max_value=180)
    landmark = serializers.CharField(max_length=255, required=False, allow_blank=True, default='')


class RideSerializer(serializers.ModelSerializer):
    """Serializer for rides (payload of every ride event)"""
    pickup = serializers.SerializerMethodField()
    drop = serializers.SerializerMethodField()
    customer = UserBasicSerializer(read_only=True)
    rider = RiderBasicSerializer(read_only=True)
    blacklisted_riders = serializers.PrimaryKeyRelatedField(many=True, read_only=True)

    class Meta:
        model = Ride
        fields = ['id', 'vehicle', 'pickup', 'drop', 'passenger_count', 'distance',
                  'fare', 'status', 'otp', 'customer', 'rider', 'blacklisted_riders',
                  'cancelled_by', 'cancelled_by_name', 'cancelled_at', 'cancellation_reason',
                  'payment_method', 'payment_confirmed_at', 'accepted_at', 'completed_at',
                  'created_at', 'updated_at']
        read_only_fields = fields

    def get_pickup(self, obj):
        return {
            'address': obj.pickup_address,
            'latitude': obj.pickup_latitude,
            'longitude': obj.pickup_longitude,
            'landmark': obj.pickup_landmark,
        }

    def get_drop(self, obj):
        return {
            'address': obj.drop_address,
            'latitude': obj.drop_latitude,
            'longitude': obj.drop_longitude,
            'landmark': obj.drop_landmark,
        }

    def to_representation(self, instance):
        representation = super().to_representation(instance)
        # The pickup code is only for the customer to read out to the rider
        if not self.context.get('include_otp'):
            representation.pop('otp', None)
        return representation


class RideCreateSerializer(serializers.Serializer):
    """Serializer for creating rides"""
    vehicle = serializers.ChoiceField(choices=VEHICLE_TYPES)
    pickup = LocationSerializer()
    drop = LocationSerializer()
    passenger_count = serializers.IntegerField(min_value=1, default=1)

    def validate(self, data):
        capacity = settings.RIDE_VEHICLE_CAPACITY.get(data['vehicle'])
        if capacity is not None and data['passenger_count'] > capacity:
            raise serializers.ValidationError({
                'passenger_count': f"A {data['vehicle']} can carry at most {capacity} passenger(s)"
            })
        return data


class RideStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=[STATUS_START, STATUS_ARRIVED, STATUS_COMPLETED])


class RideCancelSerializer(serializers.Serializer):
    """Serializer for ride cancellation"""
    reason = serializers.CharField(required=False, allow_blank=True, max_length=500)


class PaymentMethodSerializer(serializers.Serializer):
    payment_method = serializers.ChoiceField(choices=PAYMENT_CHOICES)


class FareEstimateSerializer(serializers.Serializer):
    pickup = LocationSerializer()
    drop = LocationSerializer()
