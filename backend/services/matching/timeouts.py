"""
Dispatch round timers.

Each round arms one Celery task keyed by (booking id, round number). A new
round revokes the previous task; if the revoke is lost the stale task still
does nothing, because the timeout handler ignores any round that is no longer
current.
"""

import logging
from typing import Optional

from celery import current_app
from django.conf import settings

logger = logging.getLogger(__name__)


def dispatch_timeout_seconds() -> int:
    return getattr(settings, "DISPATCH_TIMEOUT_SECONDS", 60)


def schedule_dispatch_timeout(booking_id: int, round_number: int, countdown: Optional[int] = None) -> str:
    """Arm the single-shot timeout for a round and return the task id."""
    from bookings.tasks import dispatch_timeout_task

    if countdown is None:
        countdown = dispatch_timeout_seconds()

    result = dispatch_timeout_task.apply_async((booking_id, round_number), countdown=countdown)
    logger.debug("Armed timeout %s for booking %s round %s (%ss)", result.id, booking_id, round_number, countdown)
    return result.id


def cancel_dispatch_timeout(task_id: Optional[str]) -> None:
    if not task_id:
        return
    try:
        current_app.control.revoke(task_id)
    except Exception:
        logger.warning("Could not revoke dispatch timeout %s", task_id, exc_info=True)
