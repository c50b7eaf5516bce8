from decimal import Decimal

from django.conf import settings
from django.db import models

from common.utils import Coordinate


class ServiceType(models.Model):
    """Priced service offered on the marketplace (ride, courier, ...)"""

    code = models.CharField(max_length=50, unique=True)
    display_name = models.CharField(max_length=100)
    category = models.CharField(max_length=50, default='transport')
    base_price = models.DecimalField(max_digits=10, decimal_places=2)
    price_per_km = models.DecimalField(max_digits=10, decimal_places=2)
    # Unset means the platform default rate applies
    commission_rate = models.DecimalField(max_digits=5, decimal_places=4, null=True, blank=True)
    is_active = models.BooleanField(default=True)

    class Meta:
        db_table = 'service_types'

    def __str__(self):
        return self.display_name


class BookingStatus(models.TextChoices):
    PENDING = 'pending', 'Pending'
    DRIVER_ASSIGNED = 'driver_assigned', 'Driver Assigned'
    DRIVER_ARRIVED = 'driver_arrived', 'Driver Arrived'
    IN_PROGRESS = 'in_progress', 'In Progress'
    COMPLETED = 'completed', 'Completed'
    NO_DRIVER_AVAILABLE = 'no_driver_available', 'No Driver Available'
    CANCELLED = 'cancelled', 'Cancelled'


ACTIVE_STATUSES = (
    BookingStatus.PENDING,
    BookingStatus.DRIVER_ASSIGNED,
    BookingStatus.DRIVER_ARRIVED,
    BookingStatus.IN_PROGRESS,
)

TERMINAL_STATUSES = (
    BookingStatus.COMPLETED,
    BookingStatus.NO_DRIVER_AVAILABLE,
    BookingStatus.CANCELLED,
)


class Booking(models.Model):
    """A single service request and everything that happens to it"""

    TYPE_IMMEDIATE = 'immediate'
    TYPE_SCHEDULED = 'scheduled'

    TYPE_CHOICES = [
        (TYPE_IMMEDIATE, 'Immediate'),
        (TYPE_SCHEDULED, 'Scheduled'),
    ]

    PAYMENT_PENDING = 'pending'
    PAYMENT_CAPTURED = 'captured'
    PAYMENT_FAILED = 'failed'

    PAYMENT_STATUS_CHOICES = [
        (PAYMENT_PENDING, 'Pending'),
        (PAYMENT_CAPTURED, 'Captured'),
        (PAYMENT_FAILED, 'Failed'),
    ]

    requester = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='bookings'
    )
    driver = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='assigned_bookings'
    )
    service_type = models.ForeignKey(ServiceType, on_delete=models.PROTECT, related_name='bookings')
    ride_type = models.CharField(max_length=30, blank=True)
    booking_type = models.CharField(max_length=20, choices=TYPE_CHOICES, default=TYPE_IMMEDIATE)
    scheduled_at = models.DateTimeField(null=True, blank=True)

    # Route
    pickup_latitude = models.DecimalField(max_digits=9, decimal_places=6)
    pickup_longitude = models.DecimalField(max_digits=9, decimal_places=6)
    pickup_address = models.TextField(blank=True)
    dropoff_latitude = models.DecimalField(max_digits=9, decimal_places=6)
    dropoff_longitude = models.DecimalField(max_digits=9, decimal_places=6)
    dropoff_address = models.TextField(blank=True)
    estimated_distance = models.FloatField(default=0, help_text='Meters')
    estimated_duration = models.PositiveIntegerField(default=0, help_text='Minutes')
    actual_distance = models.FloatField(null=True, blank=True, help_text='Meters')
    driver_eta_minutes = models.PositiveIntegerField(null=True, blank=True)

    status = models.CharField(max_length=30, choices=BookingStatus.choices, default=BookingStatus.PENDING)

    # Pricing
    estimated_price = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    surge_multiplier = models.DecimalField(max_digits=4, decimal_places=2, default=Decimal('1.00'))
    final_price = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    platform_commission = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    driver_earning = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)

    # Payment
    payment_method = models.CharField(max_length=30, default='cash')
    payment_status = models.CharField(max_length=20, choices=PAYMENT_STATUS_CHOICES, default=PAYMENT_PENDING)
    payment_reference = models.CharField(max_length=100, blank=True)

    # Zones
    origin_zone = models.ForeignKey(
        'zones.ServiceZone',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='origin_bookings'
    )
    destination_zone = models.ForeignKey(
        'zones.ServiceZone',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='destination_bookings'
    )
    is_inter_regional = models.BooleanField(default=False)
    inter_regional_fee = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    requires_approval = models.BooleanField(default=False)
    approved_at = models.DateTimeField(null=True, blank=True)
    approved_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='approved_bookings'
    )

    # Dispatch bookkeeping. Only the round matching dispatch_round may act on the booking
    dispatch_round = models.PositiveIntegerField(default=0)
    dispatch_deadline = models.DateTimeField(null=True, blank=True)
    dispatch_task_id = models.CharField(max_length=64, blank=True)
    version = models.PositiveIntegerField(default=0)

    # Timestamps
    requested_at = models.DateTimeField(auto_now_add=True)
    accepted_at = models.DateTimeField(null=True, blank=True)
    arrived_at = models.DateTimeField(null=True, blank=True)
    started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    cancellation_reason = models.TextField(blank=True)
    cancelled_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='cancelled_bookings'
    )

    class Meta:
        db_table = 'bookings'
        ordering = ['-requested_at']
        indexes = [
            models.Index(fields=['status', 'dispatch_deadline']),
        ]

    @property
    def pickup(self):
        return Coordinate(self.pickup_latitude, self.pickup_longitude)

    @property
    def dropoff(self):
        return Coordinate(self.dropoff_latitude, self.dropoff_longitude)

    @property
    def is_active(self):
        return self.status in ACTIVE_STATUSES

    @property
    def is_awaiting_approval(self):
        return self.requires_approval and self.approved_at is None

    def __str__(self):
        return f"Booking #{self.id} - {self.requester} - {self.status}"


class DispatchAttempt(models.Model):
    """One offer of a booking to one driver. A driver is offered a booking at most once"""

    STATUS_SENT = 'sent'
    STATUS_ACCEPTED = 'accepted'
    STATUS_REJECTED = 'rejected'
    STATUS_EXPIRED = 'expired'

    STATUS_CHOICES = [
        (STATUS_SENT, 'Sent'),
        (STATUS_ACCEPTED, 'Accepted'),
        (STATUS_REJECTED, 'Rejected'),
        (STATUS_EXPIRED, 'Expired'),
    ]

    booking = models.ForeignKey(Booking, on_delete=models.CASCADE, related_name='dispatch_attempts')
    driver = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='dispatch_attempts'
    )
    round_number = models.PositiveIntegerField()
    rank = models.PositiveIntegerField()  # 0 = closest driver in the round
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_SENT)
    distance_meters = models.FloatField()
    eta_minutes = models.PositiveIntegerField()
    notified_at = models.DateTimeField(auto_now_add=True)
    responded_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = 'dispatch_attempts'
        ordering = ['round_number', 'rank']
        constraints = [
            models.UniqueConstraint(
                fields=['booking', 'driver'],
                name='unique_booking_driver_attempt'
            )
        ]

    def __str__(self):
        return f"Attempt #{self.id} - Booking {self.booking_id} -> Driver {self.driver_id} ({self.status})"


class TrackingUpdate(models.Model):
    """Timeline entry for a booking (assignment, arrival, start, completion)"""

    booking = models.ForeignKey(Booking, on_delete=models.CASCADE, related_name='tracking_updates')
    latitude = models.DecimalField(max_digits=9, decimal_places=6, null=True, blank=True)
    longitude = models.DecimalField(max_digits=9, decimal_places=6, null=True, blank=True)
    status = models.CharField(max_length=30, choices=BookingStatus.choices)
    message = models.CharField(max_length=255, blank=True)
    timestamp = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'tracking_updates'
        ordering = ['timestamp', 'id']


class BookingRejection(models.Model):
    booking = models.ForeignKey(Booking, on_delete=models.CASCADE, related_name='rejections')
    driver = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='booking_rejections'
    )
    reason = models.CharField(max_length=255, blank=True)
    rejected_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'booking_rejections'


class ProviderEarning(models.Model):
    """Settlement line written when a driver completes a booking"""

    driver_profile = models.ForeignKey(
        'drivers.DriverProfile',
        on_delete=models.CASCADE,
        related_name='earnings'
    )
    booking = models.OneToOneField(Booking, on_delete=models.CASCADE, related_name='earning')
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    commission = models.DecimalField(max_digits=10, decimal_places=2)
    net_earning = models.DecimalField(max_digits=10, decimal_places=2)
    earned_on = models.DateField()
    week_starting = models.DateField()
    month_year = models.CharField(max_length=7)  # YYYY-MM

    class Meta:
        db_table = 'provider_earnings'
        ordering = ['-earned_on']
