from rest_framework import serializers
from drivers.models import DriverProfile


class DriverBasicSerializer(serializers.ModelSerializer):
    """
    Lite version of driver info for booking payloads
    (sent to requesters once a driver is assigned).
    """
    user_id = serializers.IntegerField(read_only=True)
    username = serializers.CharField(source="user.username", read_only=True)
    phone_number = serializers.CharField(source="user.phone_number", read_only=True)

    class Meta:
        model = DriverProfile
        fields = [
            "id",
            "user_id",
            "username",
            "phone_number",
            "vehicle_number",
            "rating",
            "current_latitude",
            "current_longitude",
        ]


class LocationUpdateSerializer(serializers.Serializer):
    """
    Serializer for updating driver GPS location.
    """
    latitude = serializers.FloatField(min_value=-90, max_value=90)
    longitude = serializers.FloatField(min_value=-180, max_value=180)
    heading = serializers.FloatField(required=False, allow_null=True)
