"""
Notification helpers for sending WebSocket messages to connected clients.

Every recipient has a personal Channels group:
- ``driver_<user_id>`` for drivers
- ``user_<user_id>`` for requesters
- ``operators`` for admins who approve gated bookings

Sends are fire-and-forget. Delivery (and any offline fallback) belongs to the
consumers on the other side of the channel layer, so these helpers never raise:
a failed send is logged and reported as ``False``.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer

logger = logging.getLogger(__name__)

OPERATORS_GROUP = "operators"


def driver_group(user_id: int) -> str:
    return f"driver_{user_id}"


def requester_group(user_id: int) -> str:
    return f"user_{user_id}"


def _group_send(group: str, payload: Dict[str, Any]) -> bool:
    try:
        channel_layer = get_channel_layer()
        if channel_layer is None:
            logger.warning("No channel layer available, dropping %s for %s", payload.get("type"), group)
            return False

        logger.debug("WS -> %s: %s", group, payload.get("type"))
        async_to_sync(channel_layer.group_send)(group, payload)
        return True
    except Exception:
        logger.exception("Failed to send %s to %s", payload.get("type"), group)
        return False


# ---------------------- Channel operations ----------------------

def notify_provider(driver_id: int | None, payload: Dict[str, Any]) -> bool:
    """Send ``payload`` to a driver's personal group."""
    if not driver_id:
        return False
    return _group_send(driver_group(driver_id), payload)


def notify_requester(requester_id: int | None, payload: Dict[str, Any]) -> bool:
    """Send ``payload`` to a requester's personal group."""
    if not requester_id:
        return False
    return _group_send(requester_group(requester_id), payload)


def notify_admins(payload: Dict[str, Any]) -> bool:
    """Send ``payload`` to every connected operator."""
    return _group_send(OPERATORS_GROUP, payload)


# ---------------------- Booking event notifications ----------------------

def _booking_payload(event_type: str, booking, message: str, extra: Dict[str, Any] | None) -> Dict[str, Any]:
    from bookings.serializers import BookingSerializer

    payload = {
        "type": event_type,
        "booking_id": booking.id,
        "status": booking.status,
        "booking_data": BookingSerializer(booking).data,
        **(extra or {}),
    }
    if message:
        payload["message"] = message
    return payload


def notify_driver_event(
    event_type: str,
    booking,
    driver_id: int | None,
    message: str = "",
    extra: Dict[str, Any] | None = None,
) -> bool:
    """
    Send a booking event to a specific driver: driver_<driver_id>

    Args:
        event_type: Handler name in consumer (booking_offer, booking_cancelled, offer_expired, ...)
        booking: Booking model instance
        driver_id: Target driver's user ID
        message: Optional message to include
        extra: Additional payload data

    Returns:
        True if sent successfully, False otherwise
    """
    if not driver_id:
        return False
    try:
        payload = _booking_payload(event_type, booking, message, extra)
    except Exception:
        logger.exception("Failed to build %s payload for booking %s", event_type, booking.id)
        return False
    return notify_provider(driver_id, payload)


def notify_requester_event(
    event_type: str,
    booking,
    message: str = "",
    extra: Dict[str, Any] | None = None,
) -> bool:
    """
    Send a booking event to the requester through: user_<requester_id>

    Args:
        event_type: Handler name in consumer (driver_assigned, driver_arrived,
            trip_started, trip_completed, no_driver_available, booking_cancelled)
        booking: Booking model instance
        message: Optional message to include
        extra: Additional payload data

    Returns:
        True if sent successfully, False otherwise
    """
    try:
        payload = _booking_payload(event_type, booking, message, extra)
    except Exception:
        logger.exception("Failed to build %s payload for booking %s", event_type, booking.id)
        return False
    return notify_requester(booking.requester_id, payload)
