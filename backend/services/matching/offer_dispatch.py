"""
Dispatch rounds and timeout escalation.

A booking is matched in rounds:
1. The closest candidates are offered the booking at the same time
2. The round waits for an answer until its timeout fires
3. If nobody accepted, the search widens and a new round starts
4. If the wider search is empty too, the booking ends as no_driver_available

Only the latest round of a booking may act on it. Every state change re-reads
the booking under a row lock and checks both its status and its round number,
so a superseded timer or a late response cannot move the booking again.
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Optional, Sequence

from django.conf import settings
from django.db import DatabaseError, transaction
from django.db.models import F
from django.utils import timezone

from bookings.models import Booking, BookingStatus, DispatchAttempt
from services.exceptions import (
    ApprovalRequiredError,
    BookingNotAvailableError,
    BookingNotFoundError,
    ConflictError,
    DependencyError,
    NoCandidateError,
    StaleDispatchRoundError,
)
from .candidates import Candidate, find_candidates
from .timeouts import cancel_dispatch_timeout, dispatch_timeout_seconds, schedule_dispatch_timeout

logger = logging.getLogger(__name__)


@dataclass
class DispatchResult:
    """Result object for dispatch operations."""
    booking_id: int
    round_number: int = 0
    notified_count: int = 0
    offered_driver_ids: List[int] = field(default_factory=list)
    exhausted: bool = False


def _locked_booking(booking_id: int) -> Booking:
    try:
        return Booking.objects.select_for_update().get(id=booking_id)
    except Booking.DoesNotExist:
        raise BookingNotFoundError(f"Booking {booking_id} not found")


def _candidates_for(booking: Booking, radius=None, max_results=None) -> List[Candidate]:
    attempted = booking.dispatch_attempts.values_list("driver_id", flat=True)
    return find_candidates(
        booking.pickup,
        service_type=booking.service_type.code,
        ride_type=booking.ride_type or None,
        radius=radius,
        max_results=max_results,
        exclude_provider_ids=list(attempted),
        inter_regional_zone_id=booking.origin_zone_id if booking.is_inter_regional else None,
    )


def _offer_payload(booking: Booking, attempt: DispatchAttempt) -> dict:
    return {
        "round": attempt.round_number,
        "distance_meters": round(attempt.distance_meters),
        "eta_minutes": attempt.eta_minutes,
        "estimated_price": str(booking.estimated_price),
        "auto_reject_in": dispatch_timeout_seconds(),
    }


# ===================== Rounds =====================

def dispatch(
    booking_id: int,
    candidates: Sequence[Candidate],
    fanout_size: Optional[int] = None,
    expected_round: Optional[int] = None,
) -> DispatchResult:
    """
    Start a new dispatch round offering the booking to the closest candidates.

    Args:
        booking_id: Booking to dispatch
        candidates: Ranked candidates, closest first
        fanout_size: How many candidates to notify (defaults to DISPATCH_FANOUT_SIZE)
        expected_round: Round the caller read; the new round only starts if the
            booking is still on it

    Returns:
        DispatchResult with the new round number and how many offers were delivered

    Raises:
        NoCandidateError: If ``candidates`` is empty
        BookingNotAvailableError: If the booking is no longer pending
        StaleDispatchRoundError: If another round started since ``expected_round``
    """
    if fanout_size is None:
        fanout_size = getattr(settings, "DISPATCH_FANOUT_SIZE", 5)

    selected = list(candidates)[:fanout_size]
    if not selected:
        raise NoCandidateError(f"No candidates to dispatch for booking {booking_id}")

    try:
        with transaction.atomic():
            booking = _locked_booking(booking_id)
            if booking.status != BookingStatus.PENDING:
                raise BookingNotAvailableError(f"Booking {booking_id} is {booking.status}")
            if booking.is_awaiting_approval:
                raise ApprovalRequiredError(f"Booking {booking_id} is waiting for approval")
            if expected_round is not None and booking.dispatch_round != expected_round:
                raise StaleDispatchRoundError(
                    f"Booking {booking_id} moved to round {booking.dispatch_round}"
                )

            now = timezone.now()
            previous_task_id = booking.dispatch_task_id
            round_number = booking.dispatch_round + 1

            # Supersede whatever the previous round still has out
            superseded_ids = list(
                booking.dispatch_attempts.filter(status=DispatchAttempt.STATUS_SENT)
                .values_list("driver_id", flat=True)
            )
            booking.dispatch_attempts.filter(status=DispatchAttempt.STATUS_SENT).update(
                status=DispatchAttempt.STATUS_EXPIRED,
                responded_at=now,
            )

            already_offered = set(
                booking.dispatch_attempts.filter(driver_id__in=[c.provider_id for c in selected])
                .values_list("driver_id", flat=True)
            )
            attempts = [
                DispatchAttempt(
                    booking=booking,
                    driver_id=candidate.provider_id,
                    round_number=round_number,
                    rank=rank,
                    distance_meters=candidate.distance,
                    eta_minutes=candidate.eta,
                )
                for rank, candidate in enumerate(selected)
                if candidate.provider_id not in already_offered
            ]
            if not attempts:
                raise NoCandidateError(f"Every candidate was already offered booking {booking_id}")
            DispatchAttempt.objects.bulk_create(attempts, ignore_conflicts=True)

            deadline = now + timedelta(seconds=dispatch_timeout_seconds())
            Booking.objects.filter(id=booking.id).update(
                dispatch_round=round_number,
                dispatch_deadline=deadline,
                dispatch_task_id="",
                version=F("version") + 1,
            )
    except DatabaseError as exc:
        logger.exception("Dispatch round failed for booking %s", booking_id)
        raise DependencyError(f"Could not start dispatch round for booking {booking_id}") from exc

    cancel_dispatch_timeout(previous_task_id)
    try:
        task_id = schedule_dispatch_timeout(booking_id, round_number)
    except Exception:
        # dispatch_deadline is committed, the sweep expires the round
        logger.exception("Could not arm timeout for booking %s round %s", booking_id, round_number)
    else:
        Booking.objects.filter(
            id=booking_id, status=BookingStatus.PENDING, dispatch_round=round_number,
        ).update(dispatch_task_id=task_id)

    from realtime.notifications import notify_driver_event

    booking = Booking.objects.select_related("service_type").get(id=booking_id)

    for driver_id in superseded_ids:
        notify_driver_event("offer_expired", booking, driver_id, "This booking offer has timed out.")

    result = DispatchResult(booking_id=booking_id, round_number=round_number)
    for attempt in attempts:
        result.offered_driver_ids.append(attempt.driver_id)
        if notify_driver_event(
            "booking_offer",
            booking,
            attempt.driver_id,
            "New booking request nearby.",
            extra=_offer_payload(booking, attempt),
        ):
            result.notified_count += 1

    logger.info(
        "Booking %s round %s: offered to %d driver(s), %d notified",
        booking_id, round_number, len(attempts), result.notified_count,
    )
    return result


def start_matching(booking_id: int) -> DispatchResult:
    """
    Run the first dispatch round for a new booking.

    An empty standard search escalates straight to the expanded search rather
    than waiting out a timeout with nobody notified.
    """
    booking = Booking.objects.select_related("service_type").filter(id=booking_id).first()
    if booking is None:
        raise BookingNotFoundError(f"Booking {booking_id} not found")
    if booking.status != BookingStatus.PENDING:
        raise BookingNotAvailableError(f"Booking {booking_id} is {booking.status}")
    if booking.is_awaiting_approval:
        raise ApprovalRequiredError(f"Booking {booking_id} is waiting for approval")

    candidates = _candidates_for(booking)
    if not candidates:
        logger.info("No drivers within standard radius for booking %s, widening search", booking_id)
        return _escalate(booking, booking.dispatch_round)

    return dispatch(booking_id, candidates, expected_round=booking.dispatch_round)


# ===================== Escalation =====================

def on_dispatch_timeout(booking_id: int, round_number: Optional[int] = None) -> Optional[DispatchResult]:
    """
    Handle a round that ended without an acceptance.

    No-op when the booking is no longer pending or ``round_number`` is not the
    booking's current round. Otherwise the round's open offers expire and the
    search widens to DISPATCH_EXPANDED_RADIUS_METERS.

    Returns:
        DispatchResult for the new round (``exhausted`` set when the booking
        ended as no_driver_available), or None when nothing was done
    """
    try:
        with transaction.atomic():
            booking = _locked_booking(booking_id)
            if booking.status != BookingStatus.PENDING:
                logger.info("Timeout for booking %s ignored, booking is %s", booking_id, booking.status)
                return None
            if round_number is not None and round_number != booking.dispatch_round:
                logger.info(
                    "Timeout for booking %s round %s ignored, current round is %s",
                    booking_id, round_number, booking.dispatch_round,
                )
                return None

            expired_ids = list(
                booking.dispatch_attempts.filter(status=DispatchAttempt.STATUS_SENT)
                .values_list("driver_id", flat=True)
            )
            booking.dispatch_attempts.filter(status=DispatchAttempt.STATUS_SENT).update(
                status=DispatchAttempt.STATUS_EXPIRED,
                responded_at=timezone.now(),
            )
    except DatabaseError as exc:
        logger.exception("Timeout handling failed for booking %s", booking_id)
        raise DependencyError(f"Could not expire round for booking {booking_id}") from exc

    from realtime.notifications import notify_driver_event

    for driver_id in expired_ids:
        notify_driver_event("offer_expired", booking, driver_id, "This booking offer has timed out.")

    logger.info("Booking %s round %s ended without acceptance", booking_id, booking.dispatch_round)
    return _escalate(booking, booking.dispatch_round)


def _escalate(booking: Booking, expected_round: int) -> Optional[DispatchResult]:
    candidates = _candidates_for(
        booking,
        radius=getattr(settings, "DISPATCH_EXPANDED_RADIUS_METERS", 30000),
        max_results=getattr(settings, "DISPATCH_EXPANDED_MAX_CANDIDATES", 8),
    )

    if candidates:
        try:
            return dispatch(booking.id, candidates, expected_round=expected_round)
        except NoCandidateError:
            pass
        except ConflictError as exc:
            # Accepted, cancelled or re-dispatched while we were searching
            logger.info("Escalation for booking %s skipped: %s", booking.id, exc)
            return None

    if mark_no_driver_available(booking.id, expected_round):
        return DispatchResult(booking_id=booking.id, round_number=expected_round, exhausted=True)
    return None


def mark_no_driver_available(booking_id: int, expected_round: int) -> bool:
    """
    Close a pending booking that ran out of candidates and tell the requester.

    Returns False (and notifies nobody) if the booking left pending or moved to
    another round in the meantime.
    """
    try:
        with transaction.atomic():
            booking = _locked_booking(booking_id)
            if booking.status != BookingStatus.PENDING or booking.dispatch_round != expected_round:
                return False

            task_id = booking.dispatch_task_id
            booking.dispatch_attempts.filter(status=DispatchAttempt.STATUS_SENT).update(
                status=DispatchAttempt.STATUS_EXPIRED,
                responded_at=timezone.now(),
            )
            Booking.objects.filter(id=booking_id).update(
                status=BookingStatus.NO_DRIVER_AVAILABLE,
                dispatch_deadline=None,
                dispatch_task_id="",
                version=F("version") + 1,
            )
    except DatabaseError as exc:
        logger.exception("Could not close booking %s", booking_id)
        raise DependencyError(f"Could not close booking {booking_id}") from exc

    cancel_dispatch_timeout(task_id)

    from realtime.notifications import notify_requester_event

    booking.refresh_from_db()
    notify_requester_event(
        "no_driver_available",
        booking,
        "No drivers accepted your booking. Please try again later.",
    )
    logger.info("Booking %s closed: no driver available", booking_id)
    return True
