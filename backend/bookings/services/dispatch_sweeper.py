"""
Recovery sweep for dispatch rounds whose timer never fired.

Timeouts normally arrive through ``bookings.tasks.dispatch_timeout_task``. If a
worker restarts or a broker message is lost, a pending booking would sit past
its deadline forever; this sweep fires the timeout handler for those bookings.
"""

from datetime import timedelta
from typing import Optional, Tuple

from django.conf import settings
from django.db import close_old_connections
from django.utils import timezone

from bookings.models import Booking, BookingStatus


def process_dispatch_timeouts(grace_seconds: Optional[int] = None) -> Tuple[int, int]:
    """
    Fire the timeout handler for overdue pending bookings.

    Args:
        grace_seconds: How long past its deadline a round must be before the
            sweep takes over from the timer (defaults to DISPATCH_SWEEP_GRACE_SECONDS)

    Returns a tuple of (expired_rounds, redispatched_count).
    """
    from services.matching import on_dispatch_timeout

    if grace_seconds is None:
        grace_seconds = getattr(settings, "DISPATCH_SWEEP_GRACE_SECONDS", 15)

    cutoff = timezone.now() - timedelta(seconds=grace_seconds)
    overdue = list(
        Booking.objects.filter(
            status=BookingStatus.PENDING,
            dispatch_deadline__isnull=False,
            dispatch_deadline__lt=cutoff,
        )
        .order_by("dispatch_deadline")
        .values_list("id", "dispatch_round")
    )

    expired_count = 0
    redispatched_count = 0

    for booking_id, round_number in overdue:
        result = on_dispatch_timeout(booking_id, round_number)
        if result is None:
            continue
        expired_count += 1
        if not result.exhausted:
            redispatched_count += 1

    # Close stale DB connections for long-running workers
    close_old_connections()
    return expired_count, redispatched_count
