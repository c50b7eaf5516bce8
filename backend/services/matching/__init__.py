"""
Driver matching and dispatch service.

This module handles:
    - Ranking nearby drivers for a booking
    - Fanning a booking out to the closest drivers (one round at a time)
    - Timing out rounds, widening the search, or closing the booking
"""

from .candidates import Candidate, find_candidates
from .offer_dispatch import (
    DispatchResult,
    dispatch,
    mark_no_driver_available,
    on_dispatch_timeout,
    start_matching,
)
from .timeouts import cancel_dispatch_timeout, schedule_dispatch_timeout

__all__ = [
    "Candidate",
    "find_candidates",
    "DispatchResult",
    "dispatch",
    "mark_no_driver_available",
    "on_dispatch_timeout",
    "start_matching",
    "cancel_dispatch_timeout",
    "schedule_dispatch_timeout",
]
