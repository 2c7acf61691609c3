from rest_framework import serializers

from accounts.serializers import RiderBasicSerializer
from drivers.models import VehicleClass
from drivers.serializers import DriverBasicSerializer
from .models import Ride, RideStatus


class RideSerializer(serializers.ModelSerializer):
    """Serializer for rides. Never exposes the pickup code hash."""
    rider = RiderBasicSerializer(read_only=True)
    driver = DriverBasicSerializer(read_only=True, allow_null=True, source='driver.driver_profile')

    class Meta:
        model = Ride
        fields = [
            'id', 'rider', 'driver', 'status', 'version', 'vehicle_class',
            'pickup_address', 'pickup_latitude', 'pickup_longitude',
            'dropoff_address', 'dropoff_latitude', 'dropoff_longitude',
            'base_fare', 'distance_fare', 'time_fare', 'surge_multiplier', 'total_fare', 'currency',
            'distance_km', 'estimated_duration_min', 'actual_distance_km', 'actual_duration_min',
            'otp_verified', 'otp_verified_by', 'otp_verified_at',
            'requested_at', 'accepted_at', 'arrived_at', 'otp_issued_at',
            'started_at', 'completed_at', 'cancelled_at',
            'cancellation_reason', 'cancelled_by', 'cancellation_penalty',
            'rider_rating', 'rider_comment', 'driver_rating', 'driver_comment',
        ]
        read_only_fields = fields


class RideCreateSerializer(serializers.Serializer):
    """Serializer for creating ride requests"""
    pickup_latitude = serializers.FloatField(min_value=-90, max_value=90)
    pickup_longitude = serializers.FloatField(min_value=-180, max_value=180)
    dropoff_latitude = serializers.FloatField(min_value=-90, max_value=90)
    dropoff_longitude = serializers.FloatField(min_value=-180, max_value=180)
    pickup_address = serializers.CharField(required=False, allow_blank=True, default='')
    dropoff_address = serializers.CharField(required=False, allow_blank=True, default='')
    vehicle_class = serializers.ChoiceField(choices=VehicleClass.choices, default=VehicleClass.STANDARD)


class RideCancelSerializer(serializers.Serializer):
    """Serializer for ride cancellation"""
    reason = serializers.CharField(required=False, allow_blank=True, default='')


class VerifyOtpSerializer(serializers.Serializer):
    code = serializers.RegexField(r'^\d{6}$', error_messages={'invalid': 'Code must be 6 digits'})


class CompleteRideSerializer(serializers.Serializer):
    actual_distance_km = serializers.FloatField(required=False, min_value=0)
    actual_duration_min = serializers.FloatField(required=False, min_value=0)


class RateRideSerializer(serializers.Serializer):
    rating = serializers.IntegerField(min_value=1, max_value=5)
    comment = serializers.CharField(required=False, allow_blank=True, default='')


class RideHistoryQuerySerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=['all'] + list(RideStatus.values), default='all')
    page = serializers.IntegerField(min_value=1, default=1)
    limit = serializers.IntegerField(min_value=1, max_value=50, default=10)
