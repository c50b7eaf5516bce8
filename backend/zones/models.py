from decimal import Decimal

from django.db import models

from common.utils import Coordinate, calculate_distance, point_in_polygon


class ServiceZone(models.Model):
    """Geographic service area. Circular (center + radius) or polygon (GeoJSON boundaries)"""

    TYPE_LOCAL = 'local'
    TYPE_REGIONAL = 'regional'
    TYPE_INTER_REGIONAL = 'inter_regional'
    TYPE_NATIONAL = 'national'
    TYPE_INTERNATIONAL = 'international'

    TYPE_CHOICES = [
        (TYPE_LOCAL, 'Local'),
        (TYPE_REGIONAL, 'Regional'),
        (TYPE_INTER_REGIONAL, 'Inter-regional'),
        (TYPE_NATIONAL, 'National'),
        (TYPE_INTERNATIONAL, 'International'),
    ]

    name = models.CharField(max_length=100, unique=True)
    display_name = models.CharField(max_length=150, blank=True)
    zone_type = models.CharField(max_length=20, choices=TYPE_CHOICES, default=TYPE_LOCAL)

    # Geometry
    center_latitude = models.DecimalField(max_digits=9, decimal_places=6)
    center_longitude = models.DecimalField(max_digits=9, decimal_places=6)
    radius = models.PositiveIntegerField(null=True, blank=True, help_text='Meters')
    boundaries = models.JSONField(null=True, blank=True, help_text='GeoJSON Polygon, [lon, lat] positions')

    # Hierarchy & inter-regional pairing
    parent_zone = models.ForeignKey(
        'self',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='child_zones'
    )
    connected_zones = models.ManyToManyField('self', symmetrical=False, blank=True)
    allows_inter_regional = models.BooleanField(default=False)
    inter_regional_fee = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    is_high_risk = models.BooleanField(default=False)

    timezone = models.CharField(max_length=50, default='Africa/Accra')
    currency = models.CharField(max_length=3, default='GHS')
    priority = models.IntegerField(default=0)
    is_active = models.BooleanField(default=True)

    class Meta:
        db_table = 'service_zones'
        ordering = ['-priority', 'id']

    @property
    def is_circular(self):
        return bool(self.radius)

    @property
    def requires_approval(self):
        return self.is_high_risk or self.zone_type == self.TYPE_INTERNATIONAL

    def contains_radius(self, point: Coordinate) -> bool:
        if not self.radius:
            return False
        meters = calculate_distance(
            point.latitude, point.longitude,
            self.center_latitude, self.center_longitude,
        )
        return meters <= self.radius

    def contains_polygon(self, point: Coordinate) -> bool:
        return point_in_polygon(point, self.boundaries)

    def __str__(self):
        return f"{self.name} ({self.get_zone_type_display()})"


class DriverServiceZone(models.Model):
    """Which zones a driver works in, and whether they take inter-regional trips from there"""

    driver_profile = models.ForeignKey(
        'drivers.DriverProfile',
        on_delete=models.CASCADE,
        related_name='zone_assignments'
    )
    service_zone = models.ForeignKey(
        ServiceZone,
        on_delete=models.CASCADE,
        related_name='driver_assignments'
    )
    can_accept_inter_regional = models.BooleanField(default=False)
    inter_regional_rate = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    is_active = models.BooleanField(default=True)
    assigned_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'driver_service_zones'
        constraints = [
            models.UniqueConstraint(
                fields=['driver_profile', 'service_zone'],
                name='unique_driver_zone'
            )
        ]

    def __str__(self):
        return f"{self.driver_profile} @ {self.service_zone.name}"
