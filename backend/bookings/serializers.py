from rest_framework import serializers

from accounts.serializers import UserBasicSerializer
from drivers.serializers import DriverBasicSerializer
from .models import Booking, ServiceType


class BookingSerializer(serializers.ModelSerializer):
    """Booking snapshot carried in notification payloads"""
    requester = UserBasicSerializer(read_only=True)
    driver = DriverBasicSerializer(read_only=True, source='driver.driver_profile')
    service_type = serializers.SlugRelatedField(slug_field='code', read_only=True)

    class Meta:
        model = Booking
        fields = ['id', 'requester', 'driver', 'service_type', 'ride_type', 'booking_type',
                  'scheduled_at', 'status', 'pickup_latitude', 'pickup_longitude', 'pickup_address',
                  'dropoff_latitude', 'dropoff_longitude', 'dropoff_address',
                  'estimated_distance', 'estimated_duration', 'driver_eta_minutes',
                  'estimated_price', 'surge_multiplier', 'final_price', 'payment_method',
                  'is_inter_regional', 'inter_regional_fee', 'requires_approval',
                  'requested_at', 'accepted_at', 'arrived_at', 'started_at', 'completed_at',
                  'cancelled_at', 'cancellation_reason']
        read_only_fields = fields


class BookingCreateSerializer(serializers.Serializer):
    """Validates booking intake before anything is written"""
    service_type = serializers.SlugRelatedField(
        slug_field='code',
        queryset=ServiceType.objects.filter(is_active=True),
    )
    ride_type = serializers.CharField(max_length=30, required=False, allow_blank=True, default='')
    booking_type = serializers.ChoiceField(choices=Booking.TYPE_CHOICES, default=Booking.TYPE_IMMEDIATE)
    scheduled_at = serializers.DateTimeField(required=False, allow_null=True, default=None)

    pickup_latitude = serializers.FloatField(min_value=-90, max_value=90)
    pickup_longitude = serializers.FloatField(min_value=-180, max_value=180)
    pickup_address = serializers.CharField(required=False, allow_blank=True, default='')
    dropoff_latitude = serializers.FloatField(min_value=-90, max_value=90)
    dropoff_longitude = serializers.FloatField(min_value=-180, max_value=180)
    dropoff_address = serializers.CharField(required=False, allow_blank=True, default='')

    payment_method = serializers.CharField(max_length=30, required=False, default='cash')

    def validate(self, attrs):
        if attrs['booking_type'] == Booking.TYPE_SCHEDULED and not attrs.get('scheduled_at'):
            raise serializers.ValidationError({'scheduled_at': 'Scheduled bookings need a pickup time.'})
        return attrs
