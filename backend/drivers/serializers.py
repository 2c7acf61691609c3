from rest_framework import serializers

from drivers.models import DriverProfile
from accounts.serializers import UserSerializer


class DriverProfileSerializer(serializers.ModelSerializer):
    """
    Full driver profile serializer
    """
    user = UserSerializer(read_only=True)

    class Meta:
        model = DriverProfile
        fields = [
            "id",
            "user",
            "vehicle_number",
            "vehicle_class",
            "is_online",
            "current_latitude",
            "current_longitude",
            "last_location_update",
            "current_ride",
            "acceptance_rate",
            "cancellation_rate",
            "rating",
            "rating_count",
            "completed_rides",
        ]
        read_only_fields = fields


class DriverBasicSerializer(serializers.ModelSerializer):
    """
    Lite version of driver info for ride details
    (sent to riders once a driver is assigned).
    """
    user_id = serializers.IntegerField(source="user.id", read_only=True)
    username = serializers.CharField(source="user.username", read_only=True)
    phone_number = serializers.CharField(source="user.phone_number", read_only=True)

    class Meta:
        model = DriverProfile
        fields = [
            "user_id",
            "username",
            "phone_number",
            "vehicle_number",
            "vehicle_class",
            "rating",
            "current_latitude",
            "current_longitude",
        ]


class DriverStatusSerializer(serializers.Serializer):
    """
    Serializer for switching driver availability.
    """
    status = serializers.ChoiceField(choices=["online", "offline"])


class LocationUpdateSerializer(serializers.Serializer):
    """
    Serializer for updating driver GPS location.
    """
    latitude = serializers.FloatField(min_value=-90, max_value=90)
    longitude = serializers.FloatField(min_value=-180, max_value=180)
