from rest_framework import serializers

from .models import User


class UserSerializer(serializers.ModelSerializer):
    class Meta:
        model = User
        fields = [
            "id",
            "username",
            "email",
            "role",
            "phone_number",
            "completed_rides",
            "rating",
            "rating_count",
        ]
        read_only_fields = ["id", "role", "completed_rides", "rating", "rating_count"]


class RiderBasicSerializer(serializers.ModelSerializer):
    """
    Basic rider representation used inside ride responses.
    """
    class Meta:
        model = User
        fields = ["id", "username", "phone_number", "rating"]
