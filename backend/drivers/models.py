from decimal import Decimal

from django.db import models
from django.utils import timezone
from django.conf import settings

from common.utils import Coordinate

User = settings.AUTH_USER_MODEL


class DriverProfile(models.Model):
    """Driver-specific details, availability flags and running totals"""

    user = models.OneToOneField(User, on_delete=models.CASCADE, related_name='driver_profile')

    # Vehicle details
    vehicle_number = models.CharField(max_length=20, unique=True)

    # Availability. is_available is the only flag that decides whether new work may be offered
    is_online = models.BooleanField(default=False)
    is_available = models.BooleanField(default=False)
    is_verified = models.BooleanField(default=False)
    is_commission_current = models.BooleanField(default=True)

    # Last known position (unset while offline)
    current_latitude = models.DecimalField(max_digits=10, decimal_places=6, null=True, blank=True)
    current_longitude = models.DecimalField(max_digits=10, decimal_places=6, null=True, blank=True)
    heading = models.FloatField(null=True, blank=True)
    last_location_update = models.DateTimeField(default=timezone.now)

    # Compatibility tags. A requested ride type must be listed; empty service_types accepts all
    ride_types = models.JSONField(default=list, blank=True)
    service_types = models.JSONField(default=list, blank=True)

    rating = models.DecimalField(max_digits=3, decimal_places=2, default=Decimal('5.00'))

    # Settlement totals
    total_rides = models.PositiveIntegerField(default=0)
    total_earnings = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    commission_due = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))

    class Meta:
        db_table = 'driver_profiles'

    @property
    def location(self):
        if self.current_latitude is None or self.current_longitude is None:
            return None
        return Coordinate(self.current_latitude, self.current_longitude)

    def supports_ride_type(self, ride_type):
        return not ride_type or ride_type in (self.ride_types or [])

    def supports_service_type(self, service_type):
        return not service_type or not self.service_types or service_type in self.service_types

    def __str__(self):
        return f"{self.user.username} - {self.vehicle_number}"
