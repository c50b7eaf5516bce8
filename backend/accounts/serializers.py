from rest_framework import serializers

from .models import User


class UserBasicSerializer(serializers.ModelSerializer):
    """Minimal user info embedded in booking payloads."""

    class Meta:
        model = User
        fields = ["id", "username", "first_name", "last_name", "phone_number"]
        read_only_fields = fields
