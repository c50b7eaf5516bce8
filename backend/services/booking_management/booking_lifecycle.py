"""
Core booking lifecycle operations.

State machine:

    (new) -> pending -> driver_assigned -> driver_arrived -> in_progress -> completed
                  \\-> no_driver_available         \\-----------/
    pending / driver_assigned -> cancelled

Every transition runs in one transaction and is committed with a conditional
update on ``(status, version)``. A caller working from a stale read loses the
race and gets a ConflictError instead of overwriting someone else's change.
Notifications and payment capture happen after the commit and never undo it.
"""

import logging
import math
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import DatabaseError, transaction
from django.db.models import F
from django.utils import timezone

from bookings.models import (
    ACTIVE_STATUSES,
    Booking,
    BookingRejection,
    BookingStatus,
    DispatchAttempt,
    ProviderEarning,
    TrackingUpdate,
)
from common.utils import Coordinate, calculate_eta, distance, estimated_travel_time
from drivers.models import DriverProfile
from services.exceptions import (
    ActiveBookingLimitError,
    BookingNotAvailableError,
    BookingNotFoundError,
    DependencyError,
    DriverNotAvailableError,
    DriverNotFoundError,
    DriverTooFarError,
    InvalidTransitionError,
    NotAssignedDriverError,
    OfferExpiredError,
    OfferNotFoundError,
    RouteNotServicedError,
    ValidationError,
)
from services.matching.timeouts import cancel_dispatch_timeout
from .pricing import (
    commission_rate_for,
    compute_final_price,
    current_surge,
    estimate_price,
    split_commission,
)

User = get_user_model()
logger = logging.getLogger(__name__)


@dataclass
class BookingResult:
    """Result object for booking operations."""
    success: bool
    booking: Optional[Booking] = None
    message: str = ""
    error_code: Optional[str] = None
    extra: Optional[Dict[str, Any]] = None


@contextmanager
def _transition(action: str, booking_id=None):
    """Atomic block that reports data-store failures as DependencyError."""
    try:
        with transaction.atomic():
            yield
    except DatabaseError as exc:
        logger.exception("Could not %s booking %s", action, booking_id)
        raise DependencyError(f"Could not {action} booking", details={"booking_id": booking_id}) from exc


def _load_booking(booking_id: int) -> Booking:
    try:
        return Booking.objects.select_related("service_type").get(id=booking_id)
    except Booking.DoesNotExist:
        raise BookingNotFoundError("Booking not found")


def _compare_and_swap(booking: Booking, expected_status, **changes) -> None:
    """
    Write ``changes`` only if the booking is still at ``expected_status`` and
    unchanged since it was read.
    """
    updated = Booking.objects.filter(
        id=booking.id,
        status=expected_status,
        version=booking.version,
    ).update(version=F("version") + 1, updated_at=timezone.now(), **changes)

    if not updated:
        raise BookingNotAvailableError("This booking was already handled or cancelled")


def _track(booking: Booking, status, message: str, point: Optional[Coordinate] = None) -> TrackingUpdate:
    return TrackingUpdate.objects.create(
        booking=booking,
        status=status,
        message=message,
        latitude=round(point.latitude, 6) if point else None,
        longitude=round(point.longitude, 6) if point else None,
    )


def _require_assigned(booking: Booking, driver) -> None:
    if booking.driver_id != driver.id:
        raise NotAssignedDriverError("This booking is not assigned to you")


# ===================== Requester Operations =====================

def check_active_bookings(user) -> int:
    """Number of bookings the user still has in flight."""
    return Booking.objects.filter(requester=user, status__in=ACTIVE_STATUSES).count()


def create_booking(requester, data: Dict[str, Any]) -> BookingResult:
    """
    Validate a booking request, price it and start matching.

    Args:
        requester: User model instance (requester)
        data: Intake fields, see ``BookingCreateSerializer``

    Returns:
        BookingResult with the created booking

    Raises:
        ValidationError: If the request is malformed
        RouteNotServicedError: If the route is outside or between unconnected zones
        ActiveBookingLimitError: If the requester already has MAX_ACTIVE_BOOKINGS in flight
    """
    from bookings.serializers import BookingCreateSerializer
    from services.zones import evaluate_inter_regional

    serializer = BookingCreateSerializer(data=data)
    if not serializer.is_valid():
        raise ValidationError("Invalid booking request", details=serializer.errors)
    fields = serializer.validated_data

    pickup = Coordinate(fields["pickup_latitude"], fields["pickup_longitude"])
    dropoff = Coordinate(fields["dropoff_latitude"], fields["dropoff_longitude"])
    service_type = fields["service_type"]

    evaluation = evaluate_inter_regional(pickup, dropoff)
    if not evaluation.permitted:
        raise RouteNotServicedError(evaluation.reason or "This route is not serviced")

    trip = estimated_travel_time(pickup, dropoff)
    surge = current_surge(pickup)
    estimated_price = estimate_price(
        service_type,
        trip.distance_meters,
        surge,
        evaluation.surcharge,
    )

    limit = getattr(settings, "MAX_ACTIVE_BOOKINGS", 3)

    with _transition("create"):
        # Serialize concurrent intake for the same requester
        User.objects.select_for_update().filter(pk=requester.pk).first()
        if check_active_bookings(requester) >= limit:
            raise ActiveBookingLimitError(f"You already have {limit} active bookings")

        booking = Booking.objects.create(
            requester=requester,
            service_type=service_type,
            ride_type=fields["ride_type"],
            booking_type=fields["booking_type"],
            scheduled_at=fields["scheduled_at"],
            pickup_latitude=round(pickup.latitude, 6),
            pickup_longitude=round(pickup.longitude, 6),
            pickup_address=fields["pickup_address"],
            dropoff_latitude=round(dropoff.latitude, 6),
            dropoff_longitude=round(dropoff.longitude, 6),
            dropoff_address=fields["dropoff_address"],
            estimated_distance=trip.distance_meters,
            estimated_duration=trip.duration_minutes,
            estimated_price=estimated_price,
            surge_multiplier=surge,
            payment_method=fields["payment_method"],
            origin_zone=evaluation.origin_zone,
            destination_zone=evaluation.destination_zone,
            is_inter_regional=evaluation.is_inter_regional,
            inter_regional_fee=evaluation.surcharge,
            requires_approval=evaluation.requires_approval,
            status=BookingStatus.PENDING,
        )

    logger.info("Booking %s created for requester %s", booking.id, requester.id)

    if booking.requires_approval:
        from realtime.notifications import notify_admins

        notify_admins({
            "type": "booking_approval_required",
            "booking_id": booking.id,
            "origin_zone": evaluation.origin_zone.name,
            "destination_zone": evaluation.destination_zone.name,
            "estimated_price": str(estimated_price),
        })
        return BookingResult(
            success=True,
            booking=booking,
            message="Your booking is waiting for operator approval.",
            extra={"requires_approval": True, "notified_drivers": 0},
        )

    from services.matching import start_matching

    outcome = start_matching(booking.id)
    booking.refresh_from_db()

    if outcome is not None and outcome.exhausted:
        message = "No drivers available nearby. Please try again later."
    else:
        message = "Notifying nearby drivers..."

    return BookingResult(
        success=True,
        booking=booking,
        message=message,
        extra={
            "requires_approval": False,
            "notified_drivers": outcome.notified_count if outcome else 0,
        },
    )


def approve_booking(booking_id: int, operator) -> BookingResult:
    """Release an approval-gated booking to matching."""
    if not getattr(operator, "is_operator", False):
        raise ValidationError("Only operators can approve bookings")

    with _transition("approve", booking_id):
        booking = _load_booking(booking_id)
        if booking.status != BookingStatus.PENDING or not booking.is_awaiting_approval:
            raise InvalidTransitionError("Booking is not waiting for approval")

        _compare_and_swap(
            booking,
            BookingStatus.PENDING,
            approved_at=timezone.now(),
            approved_by=operator,
        )

    logger.info("Booking %s approved by operator %s", booking_id, operator.id)

    from services.matching import start_matching

    outcome = start_matching(booking_id)
    booking.refresh_from_db()
    return BookingResult(
        success=True,
        booking=booking,
        message="Booking approved",
        extra={"notified_drivers": outcome.notified_count if outcome else 0},
    )


def get_current_requester_booking(requester) -> Optional[Booking]:
    """Get requester's most recent active booking."""
    return Booking.objects.filter(
        requester=requester,
        status__in=ACTIVE_STATUSES,
    ).select_related("driver__driver_profile", "service_type").order_by("-requested_at").first()


def cancel_booking(actor, booking_id: int, reason: str = "No reason provided") -> BookingResult:
    """
    Cancel a booking that is pending or has a driver on the way.

    Args:
        actor: The requester who made the booking, or an operator
        booking_id: ID of the booking to cancel
        reason: Cancellation reason

    Returns:
        BookingResult with cancellation status
    """
    with _transition("cancel", booking_id):
        booking = _load_booking(booking_id)
        if booking.requester_id != actor.id and not getattr(actor, "is_operator", False):
            raise BookingNotFoundError("Booking not found")

        if booking.status not in (BookingStatus.PENDING, BookingStatus.DRIVER_ASSIGNED):
            raise InvalidTransitionError(f"Cannot cancel - booking is already {booking.status}")

        previous_status = booking.status
        task_id = booking.dispatch_task_id
        now = timezone.now()

        offered_ids = list(
            booking.dispatch_attempts.filter(status=DispatchAttempt.STATUS_SENT)
            .values_list("driver_id", flat=True)
        )
        booking.dispatch_attempts.filter(status=DispatchAttempt.STATUS_SENT).update(
            status=DispatchAttempt.STATUS_EXPIRED,
            responded_at=now,
        )

        _compare_and_swap(
            booking,
            previous_status,
            status=BookingStatus.CANCELLED,
            cancelled_at=now,
            cancelled_by=actor,
            cancellation_reason=reason,
            dispatch_deadline=None,
            dispatch_task_id="",
        )

        # Release the held driver
        had_driver = booking.driver_id is not None
        if had_driver:
            DriverProfile.objects.filter(user_id=booking.driver_id, is_online=True).update(is_available=True)

    cancel_dispatch_timeout(task_id)
    booking.refresh_from_db()
    logger.info("Booking %s cancelled by user %s", booking_id, actor.id)

    from realtime.notifications import notify_driver_event, notify_requester_event

    if had_driver:
        notify_driver_event("booking_cancelled", booking, booking.driver_id, "This booking was cancelled.")
    for driver_id in offered_ids:
        notify_driver_event("booking_cancelled", booking, driver_id, "Booking request cancelled.")
    if actor.id != booking.requester_id:
        notify_requester_event("booking_cancelled", booking, "Your booking was cancelled by support.")

    return BookingResult(
        success=True,
        booking=booking,
        message="Booking cancelled successfully",
        extra={"was_assigned": had_driver},
    )


# ===================== Driver Operations =====================

def accept_booking(driver, booking_id: int) -> BookingResult:
    """
    Accept a booking this driver was offered.

    The booking moves to driver_assigned only if it is still pending at commit
    time; of two drivers accepting at once, exactly one wins.

    Raises:
        DriverNotAvailableError: If the driver is unverified or not available
        BookingNotAvailableError: If the booking was taken or cancelled
        OfferNotFoundError / OfferExpiredError: If the driver holds no live offer
        DriverTooFarError: If the driver is outside ACCEPTANCE_RADIUS_METERS (immediate bookings)
    """
    with _transition("accept", booking_id):
        try:
            profile = DriverProfile.objects.select_for_update().get(user=driver)
        except DriverProfile.DoesNotExist:
            raise DriverNotFoundError("Driver profile not found")

        if not profile.is_verified:
            raise DriverNotAvailableError("Your account must be verified before accepting bookings")
        if not profile.is_available:
            raise DriverNotAvailableError("Please set your status to available before accepting bookings")

        booking = _load_booking(booking_id)
        if booking.status != BookingStatus.PENDING:
            raise BookingNotAvailableError("This booking was already handled or cancelled")

        attempt = booking.dispatch_attempts.filter(driver=driver).first()
        if attempt is None:
            raise OfferNotFoundError("This booking was not offered to you")
        if attempt.status == DispatchAttempt.STATUS_EXPIRED:
            raise OfferExpiredError("This booking offer has timed out")
        if attempt.status != DispatchAttempt.STATUS_SENT:
            raise OfferNotFoundError("This booking offer is no longer active for you")

        location = profile.location
        eta_minutes = None
        if location is not None:
            meters = distance(location, booking.pickup)
            limit = getattr(settings, "ACCEPTANCE_RADIUS_METERS", 15000)
            if booking.booking_type == Booking.TYPE_IMMEDIATE and meters > limit:
                raise DriverTooFarError(
                    "You are too far from the pickup location",
                    details={"distance_meters": round(meters), "limit_meters": limit},
                )
            eta_minutes = calculate_eta(location, booking.pickup, timezone.localtime()).eta_minutes

        now = timezone.now()
        task_id = booking.dispatch_task_id

        _compare_and_swap(
            booking,
            BookingStatus.PENDING,
            driver=driver,
            status=BookingStatus.DRIVER_ASSIGNED,
            accepted_at=now,
            driver_eta_minutes=eta_minutes,
            dispatch_deadline=None,
            dispatch_task_id="",
        )

        DispatchAttempt.objects.filter(id=attempt.id).update(
            status=DispatchAttempt.STATUS_ACCEPTED,
            responded_at=now,
        )

        # Accepting supersedes every other open offer for this booking
        superseded_ids = list(
            booking.dispatch_attempts.filter(status=DispatchAttempt.STATUS_SENT)
            .values_list("driver_id", flat=True)
        )
        booking.dispatch_attempts.filter(status=DispatchAttempt.STATUS_SENT).update(
            status=DispatchAttempt.STATUS_EXPIRED,
            responded_at=now,
        )

        profile.is_available = False
        profile.save(update_fields=["is_available"])

        _track(booking, BookingStatus.DRIVER_ASSIGNED, "Tracking started", location)

    cancel_dispatch_timeout(task_id)
    booking.refresh_from_db()
    logger.info("Booking %s accepted by driver %s", booking_id, driver.id)

    from realtime.notifications import notify_driver_event, notify_requester_event

    notify_requester_event(
        "driver_assigned",
        booking,
        "Your booking has been accepted! The driver is on the way.",
        extra={"eta_minutes": eta_minutes},
    )
    for driver_id in superseded_ids:
        notify_driver_event("offer_expired", booking, driver_id, "Another driver accepted this booking.")

    return BookingResult(
        success=True,
        booking=booking,
        message="Booking accepted successfully! Navigate to the pickup location.",
        extra={"eta_minutes": eta_minutes},
    )


def reject_booking(driver, booking_id: int, reason: str = "") -> BookingResult:
    """
    Decline an offered booking.

    When the last open offer of the round is declined the round ends early and
    escalates exactly as if its timeout had fired.
    """
    with _transition("reject", booking_id):
        booking = _load_booking(booking_id)
        if booking.status != BookingStatus.PENDING:
            raise BookingNotAvailableError("This booking was already handled or cancelled")

        attempt = (
            booking.dispatch_attempts
            .filter(driver=driver, status=DispatchAttempt.STATUS_SENT)
            .first()
        )
        if attempt is None:
            raise OfferNotFoundError("No active offer found for this booking")

        updated = DispatchAttempt.objects.filter(
            id=attempt.id,
            status=DispatchAttempt.STATUS_SENT,
        ).update(status=DispatchAttempt.STATUS_REJECTED, responded_at=timezone.now())
        if not updated:
            raise OfferExpiredError("This booking offer has timed out")

        BookingRejection.objects.create(booking=booking, driver=driver, reason=reason)

        round_number = booking.dispatch_round
        round_open = booking.dispatch_attempts.filter(
            round_number=round_number,
            status=DispatchAttempt.STATUS_SENT,
        ).exists()

    logger.info("Booking %s rejected by driver %s", booking_id, driver.id)

    outcome = None
    if not round_open:
        from services.matching import on_dispatch_timeout

        outcome = on_dispatch_timeout(booking_id, round_number)

    booking.refresh_from_db()
    message = "Offer declined."
    if outcome is not None and not outcome.exhausted:
        message += " We will notify the next available drivers."

    return BookingResult(
        success=True,
        booking=booking,
        message=message,
        extra={"round_exhausted": not round_open},
    )


def _driver_transition(driver, booking_id: int, allowed_from, to_status, timestamp_field: str, action: str, message: str):
    with _transition(action, booking_id):
        booking = _load_booking(booking_id)
        _require_assigned(booking, driver)
        if booking.status not in allowed_from:
            raise InvalidTransitionError(f"Cannot {action} - booking is {booking.status}")

        previous_status = booking.status
        _compare_and_swap(booking, previous_status, status=to_status, **{timestamp_field: timezone.now()})

        profile = DriverProfile.objects.filter(user=driver).first()
        _track(booking, to_status, message, profile.location if profile else None)

    booking.refresh_from_db()
    logger.info("Booking %s: %s -> %s", booking_id, previous_status, to_status)
    return booking


def mark_driver_arrived(driver, booking_id: int) -> BookingResult:
    """Driver reached the pickup point."""
    booking = _driver_transition(
        driver, booking_id,
        allowed_from=(BookingStatus.DRIVER_ASSIGNED,),
        to_status=BookingStatus.DRIVER_ARRIVED,
        timestamp_field="arrived_at",
        action="mark arrival",
        message="Driver arrived at pickup",
    )

    from realtime.notifications import notify_requester_event
    notify_requester_event("driver_arrived", booking, "Your driver has arrived at the pickup point.")

    return BookingResult(success=True, booking=booking, message="Arrival recorded")


def start_trip(driver, booking_id: int) -> BookingResult:
    """Driver picked up the requester (arrival may be skipped)."""
    booking = _driver_transition(
        driver, booking_id,
        allowed_from=(BookingStatus.DRIVER_ASSIGNED, BookingStatus.DRIVER_ARRIVED),
        to_status=BookingStatus.IN_PROGRESS,
        timestamp_field="started_at",
        action="start trip",
        message="Trip started",
    )

    from realtime.notifications import notify_requester_event
    notify_requester_event("trip_started", booking, "Your trip has started.")

    return BookingResult(success=True, booking=booking, message="Trip started")


def _completion_inputs(actual_distance, final_price):
    if actual_distance is not None:
        try:
            actual_distance = float(actual_distance)
        except (TypeError, ValueError):
            raise ValidationError("Distance must be a number", details={"actual_distance": actual_distance})
        if not math.isfinite(actual_distance) or actual_distance < 0:
            raise ValidationError("Distance must be a finite, non-negative number", details={"actual_distance": actual_distance})

    if final_price is not None:
        try:
            final_price = Decimal(str(final_price))
        except InvalidOperation:
            raise ValidationError("Meter reading must be a number", details={"final_price": str(final_price)})
        if not final_price.is_finite() or final_price < 0:
            raise ValidationError("Meter reading must be a finite, non-negative amount", details={"final_price": str(final_price)})

    return actual_distance, final_price


def complete_trip(
    driver,
    booking_id: int,
    actual_distance: Optional[float] = None,
    final_price: Optional[Decimal] = None,
) -> BookingResult:
    """
    Complete a trip and settle it.

    Args:
        driver: User model instance (assigned driver)
        booking_id: ID of the booking to complete
        actual_distance: Driven distance in meters, defaults to the estimate
        final_price: Meter reading that replaces the distance fare

    Returns:
        BookingResult with the settled booking. Payment capture runs after the
        completion is committed; its failure is recorded on the booking and
        does not undo the completion.

    Raises:
        ValidationError: If the distance or meter reading is negative or not a number
    """
    actual_distance, final_price = _completion_inputs(actual_distance, final_price)

    with _transition("complete", booking_id):
        booking = _load_booking(booking_id)
        _require_assigned(booking, driver)
        if booking.status != BookingStatus.IN_PROGRESS:
            raise InvalidTransitionError(f"Cannot complete - booking is {booking.status}")

        try:
            profile = DriverProfile.objects.select_for_update().get(user=driver)
        except DriverProfile.DoesNotExist:
            raise DriverNotFoundError("Driver profile not found")

        service_type = booking.service_type
        meters = booking.estimated_distance if actual_distance is None else actual_distance
        price = compute_final_price(
            service_type.base_price,
            service_type.price_per_km,
            meters,
            booking.surge_multiplier,
            meter_reading=final_price,
        )
        commission, earning = split_commission(price, commission_rate_for(service_type))
        now = timezone.now()

        _compare_and_swap(
            booking,
            BookingStatus.IN_PROGRESS,
            status=BookingStatus.COMPLETED,
            completed_at=now,
            actual_distance=meters,
            final_price=price,
            platform_commission=commission,
            driver_earning=earning,
        )

        DriverProfile.objects.filter(pk=profile.pk).update(
            is_available=True,
            total_rides=F("total_rides") + 1,
            total_earnings=F("total_earnings") + earning,
            commission_due=F("commission_due") + commission,
        )

        today = timezone.localdate(now)
        ProviderEarning.objects.create(
            driver_profile=profile,
            booking=booking,
            amount=price,
            commission=commission,
            net_earning=earning,
            earned_on=today,
            week_starting=today - timedelta(days=today.weekday()),
            month_year=today.strftime("%Y-%m"),
        )

        User.objects.filter(pk=booking.requester_id).update(completed_bookings=F("completed_bookings") + 1)

        _track(booking, BookingStatus.COMPLETED, "Trip completed", booking.dropoff)

    logger.info("Booking %s completed: price=%s commission=%s", booking_id, price, commission)

    _capture_payment(booking, price)
    booking.refresh_from_db()

    from realtime.notifications import notify_requester_event
    notify_requester_event(
        "trip_completed",
        booking,
        "Your trip has been completed. Thank you for riding with us!",
        extra={"final_price": str(price)},
    )

    return BookingResult(
        success=True,
        booking=booking,
        message="Trip completed successfully",
        extra={"final_price": price, "commission": commission, "earning": earning},
    )


def _capture_payment(booking: Booking, amount: Decimal) -> None:
    from services.payments import STATUS_CAPTURED, process_payment

    try:
        transaction_record = process_payment(
            payer_id=booking.requester_id,
            booking_id=booking.id,
            amount=amount,
            method=booking.payment_method,
        )
    except Exception:
        logger.warning("Payment capture failed for booking %s", booking.id, exc_info=True)
        Booking.objects.filter(id=booking.id).update(payment_status=Booking.PAYMENT_FAILED)
        return

    status = Booking.PAYMENT_CAPTURED if transaction_record.status == STATUS_CAPTURED else Booking.PAYMENT_PENDING
    Booking.objects.filter(id=booking.id).update(
        payment_status=status,
        payment_reference=transaction_record.reference,
    )


def get_current_driver_booking(driver) -> Optional[Booking]:
    """Get driver's current assigned booking."""
    return Booking.objects.filter(
        driver=driver,
        status__in=[BookingStatus.DRIVER_ASSIGNED, BookingStatus.DRIVER_ARRIVED, BookingStatus.IN_PROGRESS],
    ).select_related("requester", "service_type").first()
