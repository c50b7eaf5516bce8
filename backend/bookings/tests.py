from datetime import datetime, timedelta
from decimal import Decimal
from io import StringIO
from unittest.mock import MagicMock, patch

from django.core.management import call_command
from django.db import DatabaseError
from django.db.models import F
from django.test import SimpleTestCase, TestCase, override_settings
from django.utils import timezone

from accounts.models import User
from bookings.models import (
    Booking,
    BookingRejection,
    BookingStatus,
    DispatchAttempt,
    ProviderEarning,
    ServiceType,
    TrackingUpdate,
)
from bookings.tasks import dispatch_timeout_task
from common.utils import Coordinate
from drivers.models import DriverProfile
from services.booking_management import (
    accept_booking,
    approve_booking,
    cancel_booking,
    complete_trip,
    compute_final_price,
    compute_surge,
    create_booking,
    current_surge,
    estimate_price,
    get_current_driver_booking,
    get_current_requester_booking,
    mark_driver_arrived,
    reject_booking,
    split_commission,
    start_trip,
)
from services.exceptions import (
    ActiveBookingLimitError,
    ApprovalRequiredError,
    BookingNotAvailableError,
    BookingNotFoundError,
    ConflictError,
    DependencyError,
    DriverNotAvailableError,
    DriverTooFarError,
    InvalidTransitionError,
    NoCandidateError,
    NotAssignedDriverError,
    OfferExpiredError,
    OfferNotFoundError,
    RouteNotServicedError,
    StaleDispatchRoundError,
    ValidationError,
)
from services.matching import dispatch, find_candidates, on_dispatch_timeout, start_matching
from services.matching.timeouts import cancel_dispatch_timeout, schedule_dispatch_timeout
from services.payments import PaymentGateway, PaymentTransaction
from services.zones import assign_driver_to_zone
from zones.models import ServiceZone

ACCRA = Coordinate(5.6037, -0.1870)
ACCRA_WEST = Coordinate(5.5600, -0.2050)
KUMASI = Coordinate(6.6885, -1.6244)
TAMALE = Coordinate(9.4008, -0.8393)

METERS_PER_DEGREE = 111194.93


def north_of(origin, meters):
    return Coordinate(origin.latitude + meters / METERS_PER_DEGREE, origin.longitude)


class CapturingGateway(PaymentGateway):
    def process_payment(self, request):
        return PaymentTransaction(reference=f"cap-{request.booking_id}", status="captured", amount=request.amount)


class MarketplaceTestCase(TestCase):
    """Greater Accra zone, one ride service, one requester; timers and sockets patched out."""

    def setUp(self):
        self.zone = ServiceZone.objects.create(
            name='greater_accra',
            display_name='Greater Accra',
            center_latitude=ACCRA.latitude,
            center_longitude=ACCRA.longitude,
            radius=50000,
        )
        self.service = ServiceType.objects.create(
            code='ride',
            display_name='Ride',
            base_price=Decimal('10.00'),
            price_per_km=Decimal('2.50'),
        )
        self.requester = User.objects.create_user(username='requester', password='pass1234')
        self.operator = User.objects.create_user(
            username='operator', password='pass1234', role=User.ROLE_OPERATOR,
        )

        self.schedule_timer = self._patch(
            'services.matching.offer_dispatch.schedule_dispatch_timeout',
            side_effect=lambda booking_id, round_number: f'task-{booking_id}-{round_number}',
        )
        self.cancel_timer = self._patch('services.matching.offer_dispatch.cancel_dispatch_timeout')
        self.lifecycle_cancel_timer = self._patch(
            'services.booking_management.booking_lifecycle.cancel_dispatch_timeout'
        )
        self.notify_driver = self._patch('realtime.notifications.notify_driver_event', return_value=True)
        self.notify_requester = self._patch('realtime.notifications.notify_requester_event', return_value=True)
        self.notify_admins = self._patch('realtime.notifications.notify_admins', return_value=True)

    def _patch(self, target, **kwargs):
        patcher = patch(target, **kwargs)
        mock = patcher.start()
        self.addCleanup(patcher.stop)
        return mock

    def make_driver(self, username, meters=0, **flags):
        point = north_of(ACCRA, meters)
        user = User.objects.create_user(username=username, password='driver1234', role=User.ROLE_PROVIDER)
        defaults = {
            'is_online': True,
            'is_available': True,
            'is_verified': True,
            'current_latitude': round(point.latitude, 6),
            'current_longitude': round(point.longitude, 6),
        }
        defaults.update(flags)
        return DriverProfile.objects.create(user=user, vehicle_number=f'GR-{username}', **defaults)

    def make_booking(self, **fields):
        defaults = {
            'requester': self.requester,
            'service_type': self.service,
            'pickup_latitude': ACCRA.latitude,
            'pickup_longitude': ACCRA.longitude,
            'dropoff_latitude': ACCRA_WEST.latitude,
            'dropoff_longitude': ACCRA_WEST.longitude,
            'estimated_distance': 5000,
            'estimated_price': Decimal('23.00'),
            'origin_zone': self.zone,
            'destination_zone': self.zone,
            'status': BookingStatus.PENDING,
        }
        defaults.update(fields)
        return Booking.objects.create(**defaults)

    def requester_events(self):
        return [call.args[0] for call in self.notify_requester.call_args_list]

    def driver_events(self, event_type):
        return [call.args[2] for call in self.notify_driver.call_args_list if call.args[0] == event_type]

    def attempt_for(self, booking, profile):
        return DispatchAttempt.objects.get(booking=booking, driver=profile.user)


# ===================== Matching =====================

class CandidateSearchTests(MarketplaceTestCase):
    def test_excludes_out_of_radius_and_orders_by_distance(self):
        self.make_driver('far', 20000)
        mid = self.make_driver('mid', 9000)
        near = self.make_driver('near', 2000)

        candidates = find_candidates(ACCRA, radius=15000)

        self.assertEqual([c.provider_id for c in candidates], [near.user_id, mid.user_id])
        self.assertAlmostEqual(candidates[0].distance, 2000, delta=1)
        self.assertAlmostEqual(candidates[1].distance, 9000, delta=1)

    def test_truncates_to_max_results(self):
        for index in range(4):
            self.make_driver(f'driver{index}', 1000 * (index + 1))

        candidates = find_candidates(ACCRA, max_results=2)

        self.assertEqual(len(candidates), 2)
        self.assertLessEqual(candidates[0].distance, candidates[1].distance)

    def test_ride_type_must_be_listed(self):
        self.make_driver('economy', 1000, ride_types=['economy'])
        premium = self.make_driver('premium', 3000, ride_types=['economy', 'premium'])

        candidates = find_candidates(ACCRA, ride_type='premium')

        self.assertEqual([c.provider_id for c in candidates], [premium.user_id])

    def test_service_type_tags(self):
        self.make_driver('courier_only', 1000, service_types=['courier'])
        anything = self.make_driver('anything', 2000)

        candidates = find_candidates(ACCRA, service_type='ride')

        self.assertEqual([c.provider_id for c in candidates], [anything.user_id])

    def test_eta_uses_traffic_at_departure(self):
        self.make_driver('near', 2100)
        noon = timezone.make_aware(datetime(2026, 10, 19, 12, 0))
        rush = timezone.make_aware(datetime(2026, 10, 19, 8, 0))

        self.assertEqual(find_candidates(ACCRA, when=noon)[0].eta, 5)
        self.assertEqual(find_candidates(ACCRA, when=rush)[0].eta, 8)


class DispatchTests(MarketplaceTestCase):
    def setUp(self):
        super().setUp()
        self.booking = self.make_booking()

    def test_round_offers_closest_fanout(self):
        drivers = [self.make_driver(f'driver{index}', 1000 * (index + 1)) for index in range(7)]

        result = dispatch(self.booking.id, find_candidates(ACCRA))

        self.assertEqual(result.round_number, 1)
        self.assertEqual(result.notified_count, 5)
        self.assertEqual(result.offered_driver_ids, [d.user_id for d in drivers[:5]])
        self.assertEqual(
            DispatchAttempt.objects.filter(booking=self.booking, status=DispatchAttempt.STATUS_SENT).count(), 5
        )
        self.assertEqual(self.driver_events('booking_offer'), [d.user_id for d in drivers[:5]])
        self.schedule_timer.assert_called_once_with(self.booking.id, 1)

        self.booking.refresh_from_db()
        self.assertEqual(self.booking.dispatch_round, 1)
        self.assertEqual(self.booking.dispatch_task_id, f'task-{self.booking.id}-1')
        self.assertIsNotNone(self.booking.dispatch_deadline)

    def test_offer_payload_carries_pricing_and_deadline(self):
        self.make_driver('near', 2000)

        dispatch(self.booking.id, find_candidates(ACCRA))

        extra = self.notify_driver.call_args.kwargs['extra']
        self.assertEqual(extra['round'], 1)
        self.assertEqual(extra['estimated_price'], '23.00')
        self.assertEqual(extra['auto_reject_in'], 60)

    def test_failed_notifications_do_not_abort_round(self):
        for index in range(3):
            self.make_driver(f'driver{index}', 1000 * (index + 1))
        self.notify_driver.side_effect = [True, False, True]

        result = dispatch(self.booking.id, find_candidates(ACCRA))

        self.assertEqual(result.notified_count, 2)
        self.assertEqual(DispatchAttempt.objects.filter(booking=self.booking).count(), 3)

    def test_drivers_are_never_offered_twice(self):
        self.make_driver('near', 2000)
        candidates = find_candidates(ACCRA)
        dispatch(self.booking.id, candidates)

        with self.assertRaises(NoCandidateError):
            dispatch(self.booking.id, candidates)

        self.assertEqual(DispatchAttempt.objects.filter(booking=self.booking).count(), 1)
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.dispatch_round, 1)
        self.assertEqual(
            DispatchAttempt.objects.get(booking=self.booking).status, DispatchAttempt.STATUS_SENT
        )

    def test_new_round_supersedes_previous(self):
        first = self.make_driver('first', 2000)
        dispatch(self.booking.id, find_candidates(ACCRA))
        second = self.make_driver('second', 3000)

        result = dispatch(self.booking.id, find_candidates(ACCRA, exclude_provider_ids=[first.user_id]))

        self.assertEqual(result.round_number, 2)
        self.assertEqual(self.attempt_for(self.booking, first).status, DispatchAttempt.STATUS_EXPIRED)
        self.assertEqual(self.attempt_for(self.booking, second).status, DispatchAttempt.STATUS_SENT)
        self.cancel_timer.assert_called_with(f'task-{self.booking.id}-1')
        self.assertEqual(self.driver_events('offer_expired'), [first.user_id])

    def test_stale_round_is_refused(self):
        self.make_driver('near', 2000)
        dispatch(self.booking.id, find_candidates(ACCRA))

        with self.assertRaises(StaleDispatchRoundError):
            dispatch(self.booking.id, find_candidates(ACCRA), expected_round=0)

    def test_empty_candidates(self):
        with self.assertRaises(NoCandidateError):
            dispatch(self.booking.id, [])

    def test_only_pending_bookings(self):
        self.make_driver('near', 2000)
        Booking.objects.filter(id=self.booking.id).update(status=BookingStatus.CANCELLED)

        with self.assertRaises(BookingNotAvailableError):
            dispatch(self.booking.id, find_candidates(ACCRA))

    def test_timer_failure_still_notifies_drivers(self):
        near = self.make_driver('near', 2000)
        self.schedule_timer.side_effect = OSError('broker down')

        with self.assertLogs('services.matching.offer_dispatch', level='ERROR'):
            result = start_matching(self.booking.id)

        self.assertEqual(result.notified_count, 1)
        self.assertEqual(self.driver_events('booking_offer'), [near.user_id])
        self.assertEqual(self.attempt_for(self.booking, near).status, DispatchAttempt.STATUS_SENT)
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.dispatch_round, 1)
        self.assertEqual(self.booking.dispatch_task_id, '')
        self.assertIsNotNone(self.booking.dispatch_deadline)

    def test_task_id_not_written_once_booking_moves_on(self):
        self.make_driver('near', 2000)

        def accepted_while_scheduling(booking_id, round_number):
            Booking.objects.filter(id=booking_id).update(status=BookingStatus.DRIVER_ASSIGNED)
            return f'task-{booking_id}-{round_number}'

        self.schedule_timer.side_effect = accepted_while_scheduling

        dispatch(self.booking.id, find_candidates(ACCRA))

        self.booking.refresh_from_db()
        self.assertEqual(self.booking.status, BookingStatus.DRIVER_ASSIGNED)
        self.assertEqual(self.booking.dispatch_task_id, '')


class TimeoutEscalationTests(MarketplaceTestCase):
    def setUp(self):
        super().setUp()
        self.booking = self.make_booking()

    def test_no_driver_anywhere(self):
        result = start_matching(self.booking.id)

        self.assertTrue(result.exhausted)
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.status, BookingStatus.NO_DRIVER_AVAILABLE)
        self.assertEqual(self.requester_events(), ['no_driver_available'])
        self.notify_driver.assert_not_called()
        self.schedule_timer.assert_not_called()

    def test_empty_standard_radius_escalates_immediately(self):
        far = self.make_driver('far', 20000)

        result = start_matching(self.booking.id)

        self.assertEqual(result.offered_driver_ids, [far.user_id])
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.status, BookingStatus.PENDING)

    def test_timeout_widens_search(self):
        near = self.make_driver('near', 2000)
        far = self.make_driver('far', 20000)
        start_matching(self.booking.id)

        result = on_dispatch_timeout(self.booking.id, 1)

        self.assertEqual(result.round_number, 2)
        self.assertEqual(result.offered_driver_ids, [far.user_id])
        self.assertEqual(self.attempt_for(self.booking, near).status, DispatchAttempt.STATUS_EXPIRED)
        self.assertEqual(self.attempt_for(self.booking, far).round_number, 2)
        self.schedule_timer.assert_called_with(self.booking.id, 2)

    def test_timeout_with_nobody_left(self):
        near = self.make_driver('near', 2000)
        start_matching(self.booking.id)

        result = on_dispatch_timeout(self.booking.id, 1)

        self.assertTrue(result.exhausted)
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.status, BookingStatus.NO_DRIVER_AVAILABLE)
        self.assertIsNone(self.booking.dispatch_deadline)
        self.assertEqual(self.attempt_for(self.booking, near).status, DispatchAttempt.STATUS_EXPIRED)
        self.assertEqual(self.requester_events(), ['no_driver_available'])

    def test_timeout_after_acceptance_is_inert(self):
        near = self.make_driver('near', 2000)
        self.make_driver('far', 20000)
        start_matching(self.booking.id)
        accept_booking(near.user, self.booking.id)
        self.booking.refresh_from_db()
        version = self.booking.version
        self.notify_driver.reset_mock()
        self.notify_requester.reset_mock()

        self.assertIsNone(on_dispatch_timeout(self.booking.id, 1))

        self.booking.refresh_from_db()
        self.assertEqual(self.booking.status, BookingStatus.DRIVER_ASSIGNED)
        self.assertEqual(self.booking.version, version)
        self.notify_driver.assert_not_called()
        self.notify_requester.assert_not_called()

    def test_superseded_timer_is_inert(self):
        self.make_driver('near', 2000)
        self.make_driver('far', 20000)
        start_matching(self.booking.id)
        on_dispatch_timeout(self.booking.id, 1)
        self.notify_driver.reset_mock()

        self.assertIsNone(on_dispatch_timeout(self.booking.id, 1))

        self.booking.refresh_from_db()
        self.assertEqual(self.booking.dispatch_round, 2)
        self.notify_driver.assert_not_called()

    def test_task_ignores_missing_booking_and_stale_round(self):
        self.make_driver('near', 2000)
        start_matching(self.booking.id)

        self.assertIsNone(dispatch_timeout_task(987654, 1))
        self.assertIsNone(dispatch_timeout_task(self.booking.id, 7))

        self.booking.refresh_from_db()
        self.assertEqual(self.booking.status, BookingStatus.PENDING)
        self.assertEqual(self.booking.dispatch_round, 1)

    def test_task_runs_escalation(self):
        self.make_driver('near', 2000)
        start_matching(self.booking.id)

        outcome = dispatch_timeout_task(self.booking.id, 1)

        self.assertEqual(outcome, {'round': 1, 'notified': 0, 'exhausted': True})


# ===================== Driver responses =====================

class AcceptBookingTests(MarketplaceTestCase):
    def setUp(self):
        super().setUp()
        self.first = self.make_driver('first', 2000)
        self.second = self.make_driver('second', 9000)
        self.booking = self.make_booking()
        start_matching(self.booking.id)

    def test_accept_assigns_driver(self):
        result = accept_booking(self.first.user, self.booking.id)

        self.assertTrue(result.success)
        self.booking.refresh_from_db()
        self.first.refresh_from_db()
        self.assertEqual(self.booking.status, BookingStatus.DRIVER_ASSIGNED)
        self.assertEqual(self.booking.driver, self.first.user)
        self.assertIsNotNone(self.booking.accepted_at)
        self.assertIsNotNone(self.booking.driver_eta_minutes)
        self.assertIsNone(self.booking.dispatch_deadline)
        self.assertFalse(self.first.is_available)

        self.assertEqual(self.attempt_for(self.booking, self.first).status, DispatchAttempt.STATUS_ACCEPTED)
        self.assertEqual(self.attempt_for(self.booking, self.second).status, DispatchAttempt.STATUS_EXPIRED)
        self.assertFalse(
            DispatchAttempt.objects.filter(booking=self.booking, status=DispatchAttempt.STATUS_SENT).exists()
        )

        self.lifecycle_cancel_timer.assert_called_once_with(f'task-{self.booking.id}-1')
        self.assertEqual(self.requester_events(), ['driver_assigned'])
        self.assertEqual(self.driver_events('offer_expired'), [self.second.user_id])
        self.assertTrue(
            TrackingUpdate.objects.filter(booking=self.booking, status=BookingStatus.DRIVER_ASSIGNED).exists()
        )

    def test_second_accept_loses(self):
        accept_booking(self.first.user, self.booking.id)

        with self.assertRaises(ConflictError):
            accept_booking(self.second.user, self.booking.id)

        self.booking.refresh_from_db()
        self.second.refresh_from_db()
        self.assertEqual(self.booking.driver, self.first.user)
        self.assertTrue(self.second.is_available)

    def test_concurrent_accept_from_stale_read_loses(self):
        stale = Booking.objects.select_related('service_type').get(id=self.booking.id)
        # The other driver commits between our read and our write
        Booking.objects.filter(id=self.booking.id).update(
            status=BookingStatus.DRIVER_ASSIGNED,
            driver=self.first.user,
            version=F('version') + 1,
        )

        with patch('services.booking_management.booking_lifecycle._load_booking', return_value=stale):
            with self.assertRaises(BookingNotAvailableError):
                accept_booking(self.second.user, self.booking.id)

        self.booking.refresh_from_db()
        self.second.refresh_from_db()
        self.assertEqual(self.booking.driver, self.first.user)
        self.assertTrue(self.second.is_available)
        self.assertEqual(self.attempt_for(self.booking, self.second).status, DispatchAttempt.STATUS_SENT)
        self.assertFalse(TrackingUpdate.objects.filter(booking=self.booking).exists())

    @override_settings(ACCEPTANCE_RADIUS_METERS=5000)
    def test_immediate_booking_enforces_acceptance_radius(self):
        with self.assertRaises(DriverTooFarError):
            accept_booking(self.second.user, self.booking.id)

        self.booking.refresh_from_db()
        self.assertEqual(self.booking.status, BookingStatus.PENDING)

    @override_settings(ACCEPTANCE_RADIUS_METERS=5000)
    def test_scheduled_booking_skips_acceptance_radius(self):
        Booking.objects.filter(id=self.booking.id).update(
            booking_type=Booking.TYPE_SCHEDULED,
            scheduled_at=timezone.now() + timedelta(hours=2),
        )

        accept_booking(self.second.user, self.booking.id)

        self.booking.refresh_from_db()
        self.assertEqual(self.booking.driver, self.second.user)

    def test_driver_without_offer(self):
        stranger = self.make_driver('stranger', 1000)
        with self.assertRaises(OfferNotFoundError):
            accept_booking(stranger.user, self.booking.id)

    def test_expired_offer(self):
        DispatchAttempt.objects.filter(booking=self.booking, driver=self.first.user).update(
            status=DispatchAttempt.STATUS_EXPIRED,
        )
        with self.assertRaises(OfferExpiredError):
            accept_booking(self.first.user, self.booking.id)

    def test_driver_must_be_verified_and_available(self):
        DriverProfile.objects.filter(id=self.first.id).update(is_verified=False)
        with self.assertRaises(DriverNotAvailableError):
            accept_booking(self.first.user, self.booking.id)

        DriverProfile.objects.filter(id=self.second.id).update(is_available=False)
        with self.assertRaises(DriverNotAvailableError):
            accept_booking(self.second.user, self.booking.id)

    def test_unknown_booking(self):
        with self.assertRaises(BookingNotFoundError):
            accept_booking(self.first.user, 987654)


class RejectBookingTests(MarketplaceTestCase):
    def setUp(self):
        super().setUp()
        self.first = self.make_driver('first', 2000)
        self.second = self.make_driver('second', 9000)
        self.booking = self.make_booking()
        start_matching(self.booking.id)

    def test_reject_with_offers_still_open(self):
        result = reject_booking(self.first.user, self.booking.id, reason='Too far')

        self.assertFalse(result.extra['round_exhausted'])
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.status, BookingStatus.PENDING)
        self.assertEqual(self.booking.dispatch_round, 1)
        self.assertEqual(self.attempt_for(self.booking, self.first).status, DispatchAttempt.STATUS_REJECTED)
        rejection = BookingRejection.objects.get(booking=self.booking)
        self.assertEqual(rejection.driver, self.first.user)
        self.assertEqual(rejection.reason, 'Too far')

    def test_last_rejection_escalates(self):
        far = self.make_driver('far', 20000)
        reject_booking(self.first.user, self.booking.id)

        result = reject_booking(self.second.user, self.booking.id)

        self.assertTrue(result.extra['round_exhausted'])
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.dispatch_round, 2)
        self.assertEqual(self.attempt_for(self.booking, far).status, DispatchAttempt.STATUS_SENT)

    def test_last_rejection_with_nobody_left(self):
        reject_booking(self.first.user, self.booking.id)
        reject_booking(self.second.user, self.booking.id)

        self.booking.refresh_from_db()
        self.assertEqual(self.booking.status, BookingStatus.NO_DRIVER_AVAILABLE)
        self.assertEqual(self.requester_events(), ['no_driver_available'])
        self.assertEqual(BookingRejection.objects.filter(booking=self.booking).count(), 2)

    def test_reject_twice(self):
        reject_booking(self.first.user, self.booking.id)
        with self.assertRaises(OfferNotFoundError):
            reject_booking(self.first.user, self.booking.id)


# ===================== Trip lifecycle =====================

class TripLifecycleTests(MarketplaceTestCase):
    def setUp(self):
        super().setUp()
        self.driver = self.make_driver('driver', 2000, is_available=False)
        self.booking = self.make_booking(
            driver=self.driver.user,
            status=BookingStatus.DRIVER_ASSIGNED,
            accepted_at=timezone.now(),
        )

    def test_arrive_start_complete(self):
        mark_driver_arrived(self.driver.user, self.booking.id)
        start_trip(self.driver.user, self.booking.id)
        complete_trip(self.driver.user, self.booking.id, actual_distance=12000)

        self.booking.refresh_from_db()
        self.assertEqual(self.booking.status, BookingStatus.COMPLETED)
        self.assertIsNotNone(self.booking.arrived_at)
        self.assertIsNotNone(self.booking.started_at)
        self.assertIsNotNone(self.booking.completed_at)
        self.assertEqual(
            list(TrackingUpdate.objects.filter(booking=self.booking).values_list('status', flat=True)),
            [BookingStatus.DRIVER_ARRIVED, BookingStatus.IN_PROGRESS, BookingStatus.COMPLETED],
        )
        self.assertEqual(self.requester_events(), ['driver_arrived', 'trip_started', 'trip_completed'])

    def test_start_without_arrival(self):
        start_trip(self.driver.user, self.booking.id)
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.status, BookingStatus.IN_PROGRESS)

    def test_only_assigned_driver_may_act(self):
        other = self.make_driver('other', 1000)
        with self.assertRaises(NotAssignedDriverError):
            mark_driver_arrived(other.user, self.booking.id)

    def test_transitions_need_valid_predecessor(self):
        with self.assertRaises(InvalidTransitionError):
            complete_trip(self.driver.user, self.booking.id)

        start_trip(self.driver.user, self.booking.id)
        with self.assertRaises(InvalidTransitionError):
            mark_driver_arrived(self.driver.user, self.booking.id)

        self.booking.refresh_from_db()
        self.assertEqual(self.booking.status, BookingStatus.IN_PROGRESS)


class CompletionSettlementTests(MarketplaceTestCase):
    def setUp(self):
        super().setUp()
        self.driver = self.make_driver('driver', 2000, is_available=False)
        self.booking = self.make_booking(
            driver=self.driver.user,
            status=BookingStatus.IN_PROGRESS,
            started_at=timezone.now(),
        )

    def test_price_commission_and_earning(self):
        result = complete_trip(self.driver.user, self.booking.id, actual_distance=12000)

        self.booking.refresh_from_db()
        self.driver.refresh_from_db()
        self.requester.refresh_from_db()

        self.assertEqual(self.booking.final_price, Decimal('40'))
        self.assertEqual(self.booking.platform_commission, Decimal('7.20'))
        self.assertEqual(self.booking.driver_earning, Decimal('32.80'))
        self.assertEqual(self.booking.final_price, self.booking.platform_commission + self.booking.driver_earning)
        self.assertEqual(result.extra['final_price'], Decimal('40'))

        self.assertTrue(self.driver.is_available)
        self.assertEqual(self.driver.total_rides, 1)
        self.assertEqual(self.driver.total_earnings, Decimal('32.80'))
        self.assertEqual(self.driver.commission_due, Decimal('7.20'))
        self.assertEqual(self.requester.completed_bookings, 1)

        earning = ProviderEarning.objects.get(booking=self.booking)
        self.assertEqual(earning.driver_profile, self.driver)
        self.assertEqual(earning.net_earning, Decimal('32.80'))
        self.assertEqual(earning.week_starting.weekday(), 0)

    def test_distance_defaults_to_estimate(self):
        complete_trip(self.driver.user, self.booking.id)

        self.booking.refresh_from_db()
        # 10.00 + 5 km * 2.50 = 22.50, rounded half up
        self.assertEqual(self.booking.final_price, Decimal('23'))
        self.assertEqual(self.booking.actual_distance, 5000)

    def test_surge_locked_at_request(self):
        Booking.objects.filter(id=self.booking.id).update(surge_multiplier=Decimal('1.50'))

        complete_trip(self.driver.user, self.booking.id, actual_distance=12000)

        self.booking.refresh_from_db()
        self.assertEqual(self.booking.final_price, Decimal('60'))
        self.assertEqual(self.booking.platform_commission, Decimal('10.80'))
        self.assertEqual(self.booking.driver_earning, Decimal('49.20'))

    def test_service_commission_rate(self):
        ServiceType.objects.filter(id=self.service.id).update(commission_rate=Decimal('0.25'))

        complete_trip(self.driver.user, self.booking.id, actual_distance=12000)

        self.booking.refresh_from_db()
        self.assertEqual(self.booking.platform_commission, Decimal('10.00'))
        self.assertEqual(self.booking.driver_earning, Decimal('30.00'))

    def test_meter_reading_overrides_distance_fare(self):
        complete_trip(self.driver.user, self.booking.id, final_price=Decimal('55.40'))

        self.booking.refresh_from_db()
        self.assertEqual(self.booking.final_price, Decimal('55'))
        self.assertEqual(self.booking.platform_commission, Decimal('9.90'))
        self.assertEqual(self.booking.driver_earning, Decimal('45.10'))

    def test_deferred_payment_is_recorded(self):
        complete_trip(self.driver.user, self.booking.id)

        self.booking.refresh_from_db()
        self.assertEqual(self.booking.payment_status, Booking.PAYMENT_PENDING)
        self.assertTrue(self.booking.payment_reference.startswith(f'bk{self.booking.id}-'))

    @override_settings(PAYMENT_GATEWAY='bookings.tests.CapturingGateway')
    def test_configured_gateway(self):
        complete_trip(self.driver.user, self.booking.id)

        self.booking.refresh_from_db()
        self.assertEqual(self.booking.payment_status, Booking.PAYMENT_CAPTURED)
        self.assertEqual(self.booking.payment_reference, f'cap-{self.booking.id}')

    @patch('services.payments.process_payment', side_effect=RuntimeError('gateway down'))
    def test_payment_failure_keeps_completion(self, mock_payment):
        result = complete_trip(self.driver.user, self.booking.id)

        self.assertTrue(result.success)
        mock_payment.assert_called_once()
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.status, BookingStatus.COMPLETED)
        self.assertEqual(self.booking.payment_status, Booking.PAYMENT_FAILED)

    def test_store_failure_rolls_back_everything(self):
        with patch.object(ProviderEarning.objects, 'create', side_effect=DatabaseError('disk full')):
            with self.assertRaises(DependencyError):
                complete_trip(self.driver.user, self.booking.id)

        self.booking.refresh_from_db()
        self.driver.refresh_from_db()
        self.assertEqual(self.booking.status, BookingStatus.IN_PROGRESS)
        self.assertIsNone(self.booking.final_price)
        self.assertEqual(self.driver.total_rides, 0)
        self.assertFalse(self.driver.is_available)
        self.assertFalse(ProviderEarning.objects.exists())

    def assert_still_in_progress(self):
        self.booking.refresh_from_db()
        self.driver.refresh_from_db()
        self.assertEqual(self.booking.status, BookingStatus.IN_PROGRESS)
        self.assertIsNone(self.booking.final_price)
        self.assertEqual(self.driver.total_earnings, Decimal('0'))
        self.assertFalse(ProviderEarning.objects.exists())

    def test_negative_distance_is_rejected(self):
        with self.assertRaises(ValidationError) as ctx:
            complete_trip(self.driver.user, self.booking.id, actual_distance=-100000)

        self.assertIn('actual_distance', ctx.exception.details)
        self.assert_still_in_progress()

    def test_non_numeric_distance_is_rejected(self):
        for value in (float('nan'), float('inf'), 'far'):
            with self.assertRaises(ValidationError):
                complete_trip(self.driver.user, self.booking.id, actual_distance=value)

        self.assert_still_in_progress()

    def test_negative_meter_reading_is_rejected(self):
        with self.assertRaises(ValidationError) as ctx:
            complete_trip(self.driver.user, self.booking.id, final_price=Decimal('-50'))

        self.assertIn('final_price', ctx.exception.details)
        self.assert_still_in_progress()


class PricingTests(SimpleTestCase):
    def test_final_price_rounds_half_up_to_whole_units(self):
        self.assertEqual(compute_final_price(Decimal('10'), Decimal('2.50'), 5400), Decimal('24'))
        self.assertEqual(compute_final_price(Decimal('10'), Decimal('2.50'), 5300), Decimal('23'))

    def test_surge_below_one_is_ignored(self):
        self.assertEqual(compute_final_price(Decimal('10'), Decimal('2.50'), 4000, Decimal('0.5')), Decimal('20'))

    def test_split_always_sums_to_price(self):
        for price in (Decimal('1'), Decimal('17'), Decimal('23'), Decimal('999')):
            commission, earning = split_commission(price)
            self.assertEqual(commission + earning, price)
            self.assertEqual(commission, (price * Decimal('0.18')).quantize(Decimal('0.01')))

    def test_estimate_adds_surcharge(self):
        service = ServiceType(base_price=Decimal('10.00'), price_per_km=Decimal('2.50'))
        self.assertEqual(estimate_price(service, 5000, 1, Decimal('35.55')), Decimal('58.55'))

    def test_negative_price_is_refused(self):
        with self.assertRaises(ValueError):
            compute_final_price(Decimal('10'), Decimal('2.50'), 5000, meter_reading=Decimal('-50'))
        with self.assertRaises(ValueError):
            compute_final_price(Decimal('10'), Decimal('2.50'), -100000)


class SurgeTests(SimpleTestCase):
    noon = datetime(2026, 10, 19, 12, 0)
    rush = datetime(2026, 10, 19, 8, 0)
    late = datetime(2026, 10, 19, 23, 0)
    saturday = datetime(2026, 10, 17, 12, 0)

    def test_no_supply(self):
        self.assertEqual(compute_surge(0, 0, self.noon), Decimal('1.10'))
        self.assertEqual(compute_surge(0, 20, self.rush), Decimal('1.10'))

    def test_time_surge_needs_enough_drivers(self):
        self.assertEqual(compute_surge(2, 0, self.rush), Decimal('1.00'))
        self.assertEqual(compute_surge(3, 0, self.rush), Decimal('1.20'))
        self.assertEqual(compute_surge(3, 0, self.late), Decimal('1.25'))
        self.assertEqual(compute_surge(3, 0, self.noon), Decimal('1.00'))

    def test_weekend_only_without_other_time_factor(self):
        self.assertEqual(compute_surge(3, 0, self.saturday), Decimal('1.10'))
        self.assertEqual(compute_surge(3, 0, self.saturday.replace(hour=8)), Decimal('1.20'))

    def test_demand_ratio_steps(self):
        self.assertEqual(compute_surge(1, 1, self.noon), Decimal('1.00'))
        self.assertEqual(compute_surge(4, 5, self.noon), Decimal('1.00'))
        self.assertEqual(compute_surge(4, 6, self.noon), Decimal('1.10'))
        self.assertEqual(compute_surge(4, 10, self.noon), Decimal('1.20'))
        self.assertEqual(compute_surge(2, 8, self.noon), Decimal('1.30'))

    def test_capped(self):
        # 1.20 rush hour * 1.30 demand
        self.assertEqual(compute_surge(3, 12, self.rush), Decimal('1.50'))

    @override_settings(MAX_SURGE_MULTIPLIER='1.25')
    def test_cap_is_configurable(self):
        self.assertEqual(compute_surge(3, 0, self.late), Decimal('1.25'))
        self.assertEqual(compute_surge(4, 10, self.rush), Decimal('1.25'))


class CurrentSurgeTests(MarketplaceTestCase):
    def test_counts_nearby_drivers_only(self):
        rush = timezone.make_aware(datetime(2026, 10, 19, 8, 0))
        self.make_driver('one', 1000)
        self.make_driver('two', 2000)
        self.make_driver('far', 20000)
        self.make_driver('busy', 3000, is_available=False)

        self.assertEqual(current_surge(ACCRA, when=rush), Decimal('1.00'))

        self.make_driver('three', 3000)
        self.assertEqual(current_surge(ACCRA, when=rush), Decimal('1.20'))

    def test_counts_recent_nearby_demand(self):
        self.make_driver('near', 2000)
        for _ in range(4):
            self.make_booking()
        self.make_booking(pickup_latitude=KUMASI.latitude, pickup_longitude=KUMASI.longitude)
        self.make_booking(status=BookingStatus.COMPLETED)
        stale = self.make_booking()
        Booking.objects.filter(id=stale.id).update(requested_at=timezone.now() - timedelta(hours=2))

        # one driver, four waiting pickups
        self.assertEqual(current_surge(ACCRA), Decimal('1.30'))


# ===================== Intake, approval, cancellation =====================

class CreateBookingTests(MarketplaceTestCase):
    def payload(self, **overrides):
        data = {
            'service_type': 'ride',
            'pickup_latitude': ACCRA.latitude,
            'pickup_longitude': ACCRA.longitude,
            'pickup_address': 'Accra Mall',
            'dropoff_latitude': ACCRA_WEST.latitude,
            'dropoff_longitude': ACCRA_WEST.longitude,
            'dropoff_address': 'Korle Bu',
        }
        data.update(overrides)
        return data

    def test_creates_pending_booking_and_dispatches(self):
        near = self.make_driver('near', 2000)

        result = create_booking(self.requester, self.payload())

        booking = result.booking
        self.assertEqual(booking.status, BookingStatus.PENDING)
        self.assertEqual(booking.origin_zone, self.zone)
        self.assertEqual(booking.destination_zone, self.zone)
        self.assertFalse(booking.is_inter_regional)
        self.assertEqual(booking.inter_regional_fee, Decimal('0'))
        self.assertAlmostEqual(booking.estimated_distance, 5252, delta=50)
        # 10.00 + 5.25 km * 2.50, whole units
        self.assertEqual(booking.estimated_price, Decimal('23.00'))
        self.assertEqual(booking.dispatch_round, 1)
        self.assertEqual(result.extra['notified_drivers'], 1)
        self.assertEqual(self.attempt_for(booking, near).status, DispatchAttempt.STATUS_SENT)

    def test_requester_cannot_set_surge(self):
        self.make_driver('near', 2000)

        booking = create_booking(self.requester, self.payload(surge_multiplier='3.00')).booking

        self.assertEqual(booking.surge_multiplier, Decimal('1.00'))
        self.assertEqual(booking.estimated_price, Decimal('23.00'))

    def test_surge_is_locked_in_at_intake(self):
        self.make_driver('near', 2000)
        for _ in range(4):
            self.make_booking(requester=self.operator)

        booking = create_booking(self.requester, self.payload()).booking

        # one driver, four waiting pickups
        self.assertEqual(booking.surge_multiplier, Decimal('1.30'))
        self.assertEqual(booking.estimated_price, estimate_price(self.service, booking.estimated_distance, Decimal('1.30')))

    def test_no_driver_available_on_intake(self):
        result = create_booking(self.requester, self.payload())

        self.assertEqual(result.booking.status, BookingStatus.NO_DRIVER_AVAILABLE)
        self.assertEqual(self.requester_events(), ['no_driver_available'])

    def test_malformed_request(self):
        data = self.payload()
        del data['pickup_latitude']

        with self.assertRaises(ValidationError) as ctx:
            create_booking(self.requester, data)

        self.assertIn('pickup_latitude', ctx.exception.details)
        self.assertFalse(Booking.objects.exists())

    def test_unknown_service_type(self):
        with self.assertRaises(ValidationError) as ctx:
            create_booking(self.requester, self.payload(service_type='helicopter'))
        self.assertIn('service_type', ctx.exception.details)

    def test_scheduled_booking_needs_time(self):
        with self.assertRaises(ValidationError):
            create_booking(self.requester, self.payload(booking_type='scheduled'))

    def test_route_outside_zones(self):
        with self.assertRaises(RouteNotServicedError):
            create_booking(
                self.requester,
                self.payload(dropoff_latitude=KUMASI.latitude, dropoff_longitude=KUMASI.longitude),
            )
        self.assertFalse(Booking.objects.exists())

    def test_active_booking_limit(self):
        for _ in range(3):
            self.make_booking()

        with self.assertRaises(ActiveBookingLimitError):
            create_booking(self.requester, self.payload())

    def test_finished_bookings_do_not_count(self):
        for _ in range(3):
            self.make_booking(status=BookingStatus.COMPLETED)

        result = create_booking(self.requester, self.payload())
        self.assertIsNotNone(result.booking.id)

    def test_inter_regional_booking(self):
        ServiceZone.objects.filter(id=self.zone.id).update(
            allows_inter_regional=True, inter_regional_fee=Decimal('10.00'),
        )
        ashanti = ServiceZone.objects.create(
            name='ashanti',
            center_latitude=KUMASI.latitude,
            center_longitude=KUMASI.longitude,
            radius=50000,
            allows_inter_regional=True,
            inter_regional_fee=Decimal('25.00'),
        )
        ashanti.connected_zones.add(self.zone)
        cleared = self.make_driver('cleared', 3000)
        local_only = self.make_driver('local_only', 1000)
        assign_driver_to_zone(cleared, self.zone, can_accept_inter_regional=True)
        assign_driver_to_zone(local_only, self.zone)

        result = create_booking(
            self.requester,
            self.payload(dropoff_latitude=KUMASI.latitude, dropoff_longitude=KUMASI.longitude),
        )

        booking = result.booking
        self.assertTrue(booking.is_inter_regional)
        self.assertEqual(booking.destination_zone, ashanti)
        self.assertGreater(booking.inter_regional_fee, Decimal('25.00'))
        self.assertEqual(
            booking.estimated_price,
            estimate_price(self.service, booking.estimated_distance, 1, booking.inter_regional_fee),
        )
        offered = list(DispatchAttempt.objects.filter(booking=booking).values_list('driver_id', flat=True))
        self.assertEqual(offered, [cleared.user_id])


class ApprovalTests(MarketplaceTestCase):
    def setUp(self):
        super().setUp()
        ServiceZone.objects.filter(id=self.zone.id).update(allows_inter_regional=True)
        northern = ServiceZone.objects.create(
            name='northern',
            center_latitude=TAMALE.latitude,
            center_longitude=TAMALE.longitude,
            radius=50000,
            allows_inter_regional=True,
            is_high_risk=True,
        )
        northern.connected_zones.add(self.zone)
        self.driver = self.make_driver('cleared', 2000)
        assign_driver_to_zone(self.driver, self.zone, can_accept_inter_regional=True)

        self.booking = create_booking(self.requester, {
            'service_type': 'ride',
            'pickup_latitude': ACCRA.latitude,
            'pickup_longitude': ACCRA.longitude,
            'dropoff_latitude': TAMALE.latitude,
            'dropoff_longitude': TAMALE.longitude,
        }).booking

    def test_gated_booking_waits_for_operator(self):
        self.assertTrue(self.booking.requires_approval)
        self.assertEqual(self.booking.status, BookingStatus.PENDING)
        self.assertFalse(DispatchAttempt.objects.filter(booking=self.booking).exists())
        self.notify_admins.assert_called_once()
        self.assertEqual(self.notify_admins.call_args.args[0]['type'], 'booking_approval_required')

        with self.assertRaises(ApprovalRequiredError):
            start_matching(self.booking.id)

    def test_operator_approval_starts_matching(self):
        result = approve_booking(self.booking.id, self.operator)

        self.assertEqual(result.extra['notified_drivers'], 1)
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.approved_by, self.operator)
        self.assertEqual(self.attempt_for(self.booking, self.driver).status, DispatchAttempt.STATUS_SENT)

    def test_only_operators_approve(self):
        with self.assertRaises(ValidationError):
            approve_booking(self.booking.id, self.requester)

    def test_approval_is_one_shot(self):
        approve_booking(self.booking.id, self.operator)
        with self.assertRaises(InvalidTransitionError):
            approve_booking(self.booking.id, self.operator)


class CancelBookingTests(MarketplaceTestCase):
    def setUp(self):
        super().setUp()
        self.first = self.make_driver('first', 2000)
        self.second = self.make_driver('second', 9000)
        self.booking = self.make_booking()
        start_matching(self.booking.id)

    def test_cancel_pending(self):
        result = cancel_booking(self.requester, self.booking.id, reason='Changed plans')

        self.assertFalse(result.extra['was_assigned'])
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.status, BookingStatus.CANCELLED)
        self.assertEqual(self.booking.cancelled_by, self.requester)
        self.assertEqual(self.booking.cancellation_reason, 'Changed plans')
        self.assertFalse(
            DispatchAttempt.objects.filter(booking=self.booking, status=DispatchAttempt.STATUS_SENT).exists()
        )
        self.lifecycle_cancel_timer.assert_called_once_with(f'task-{self.booking.id}-1')
        self.assertEqual(
            sorted(self.driver_events('booking_cancelled')),
            sorted([self.first.user_id, self.second.user_id]),
        )

    def test_cancel_releases_assigned_driver(self):
        accept_booking(self.first.user, self.booking.id)

        result = cancel_booking(self.requester, self.booking.id)

        self.assertTrue(result.extra['was_assigned'])
        self.first.refresh_from_db()
        self.assertTrue(self.first.is_available)
        self.assertIn(self.first.user_id, self.driver_events('booking_cancelled'))

    def test_operator_cancel_notifies_requester(self):
        cancel_booking(self.operator, self.booking.id)
        self.assertEqual(self.requester_events(), ['booking_cancelled'])

    def test_cannot_cancel_trip_in_progress(self):
        accept_booking(self.first.user, self.booking.id)
        start_trip(self.first.user, self.booking.id)

        with self.assertRaises(InvalidTransitionError):
            cancel_booking(self.requester, self.booking.id)

    def test_other_requesters_cannot_cancel(self):
        stranger = User.objects.create_user(username='stranger', password='pass1234')
        with self.assertRaises(BookingNotFoundError):
            cancel_booking(stranger, self.booking.id)

    def test_timeout_after_cancel_is_inert(self):
        cancel_booking(self.requester, self.booking.id)
        self.notify_requester.reset_mock()

        self.assertIsNone(on_dispatch_timeout(self.booking.id, 1))
        self.notify_requester.assert_not_called()


class CurrentBookingTests(MarketplaceTestCase):
    def test_current_bookings(self):
        driver = self.make_driver('driver', 2000)
        self.make_booking(status=BookingStatus.COMPLETED, driver=driver.user)
        active = self.make_booking(status=BookingStatus.DRIVER_ASSIGNED, driver=driver.user)

        self.assertEqual(get_current_requester_booking(self.requester), active)
        self.assertEqual(get_current_driver_booking(driver.user), active)

    def test_nothing_active(self):
        self.make_booking(status=BookingStatus.CANCELLED)
        self.assertIsNone(get_current_requester_booking(self.requester))


# ===================== Recovery sweep =====================

class DispatchSweepTests(MarketplaceTestCase):
    def test_overdue_rounds_are_expired(self):
        near = self.make_driver('near', 2000)
        overdue = self.make_booking()
        start_matching(overdue.id)
        Booking.objects.filter(id=overdue.id).update(dispatch_deadline=timezone.now() - timedelta(minutes=2))

        waiting = self.make_booking(dispatch_round=1, dispatch_deadline=timezone.now() + timedelta(seconds=30))

        out = StringIO()
        call_command('process_dispatch_timeouts', stdout=out)

        overdue.refresh_from_db()
        waiting.refresh_from_db()
        self.assertEqual(overdue.status, BookingStatus.NO_DRIVER_AVAILABLE)
        self.assertEqual(self.attempt_for(overdue, near).status, DispatchAttempt.STATUS_EXPIRED)
        self.assertEqual(waiting.status, BookingStatus.PENDING)
        self.assertIn('Expired 1 round(s)', out.getvalue())

    def test_grace_period(self):
        self.make_driver('near', 2000)
        booking = self.make_booking()
        start_matching(booking.id)
        Booking.objects.filter(id=booking.id).update(dispatch_deadline=timezone.now() - timedelta(seconds=5))

        call_command('process_dispatch_timeouts', grace=60, stdout=StringIO())

        booking.refresh_from_db()
        self.assertEqual(booking.status, BookingStatus.PENDING)


class DispatchTimerTests(SimpleTestCase):
    @patch('bookings.tasks.dispatch_timeout_task.apply_async')
    def test_schedule_arms_round_task(self, mock_apply):
        mock_apply.return_value = MagicMock(id='timer-1')

        task_id = schedule_dispatch_timeout(42, 3)

        self.assertEqual(task_id, 'timer-1')
        mock_apply.assert_called_once_with((42, 3), countdown=60)

    @patch('services.matching.timeouts.current_app')
    def test_cancel_revokes_by_id(self, mock_app):
        cancel_dispatch_timeout('timer-1')
        mock_app.control.revoke.assert_called_once_with('timer-1')

    @patch('services.matching.timeouts.current_app')
    def test_cancel_without_task_is_noop(self, mock_app):
        cancel_dispatch_timeout('')
        mock_app.control.revoke.assert_not_called()

    @patch('services.matching.timeouts.current_app')
    def test_revoke_failure_is_logged(self, mock_app):
        mock_app.control.revoke.side_effect = ConnectionError('broker down')

        with self.assertLogs('services.matching.timeouts', level='WARNING'):
            cancel_dispatch_timeout('timer-1')
