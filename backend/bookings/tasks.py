"""Celery tasks for booking-related background processing."""

import logging

from celery import shared_task

logger = logging.getLogger(__name__)


@shared_task
def dispatch_timeout_task(booking_id: int, round_number: int):
    """
    Celery task fired when a dispatch round's response window closes.

    Scheduled once per round. If the round was superseded, or the booking was
    accepted or cancelled, the handler does nothing.
    """
    from services.exceptions import NotFoundError
    from services.matching import on_dispatch_timeout

    try:
        result = on_dispatch_timeout(booking_id, round_number)
    except NotFoundError:
        logger.warning("Booking %s not found for dispatch timeout", booking_id)
        return None

    if result is None:
        return None
    return {
        "round": result.round_number,
        "notified": result.notified_count,
        "exhausted": result.exhausted,
    }
