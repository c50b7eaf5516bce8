"""
Booking management service - Core booking lifecycle operations.

This module handles:
    - Booking intake, approval and cancellation
    - Driver acceptance, rejection, arrival, trip start and completion
    - Final price, commission and driver earning settlement
    - Surge from nearby supply, recent demand and time of day
"""

from .booking_lifecycle import (
    BookingResult,
    accept_booking,
    approve_booking,
    cancel_booking,
    complete_trip,
    create_booking,
    get_current_driver_booking,
    get_current_requester_booking,
    mark_driver_arrived,
    reject_booking,
    start_trip,
)
from .pricing import compute_final_price, compute_surge, current_surge, estimate_price, split_commission

__all__ = [
    # Lifecycle operations
    "BookingResult",
    "accept_booking",
    "approve_booking",
    "cancel_booking",
    "complete_trip",
    "create_booking",
    "get_current_driver_booking",
    "get_current_requester_booking",
    "mark_driver_arrived",
    "reject_booking",
    "start_trip",
    # Pricing
    "compute_final_price",
    "compute_surge",
    "current_surge",
    "estimate_price",
    "split_commission",
]
