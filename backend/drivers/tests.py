from decimal import Decimal
from unittest.mock import patch

from django.test import TestCase

from accounts.models import User
from bookings.models import Booking, BookingStatus, ServiceType
from common.utils import Coordinate
from drivers.models import DriverProfile
from drivers.services import (
    DriverQuery,
    find_available_drivers,
    set_driver_availability,
    update_driver_location,
)
from services.exceptions import ValidationError
from services.zones import assign_driver_to_zone
from zones.models import ServiceZone

ACCRA = Coordinate(5.6037, -0.1870)


def make_driver(username, lat=5.6037, lon=-0.1870, **flags):
    user = User.objects.create_user(username=username, password='driver1234', role=User.ROLE_PROVIDER)
    defaults = {
        'is_online': True,
        'is_available': True,
        'is_verified': True,
        'current_latitude': lat,
        'current_longitude': lon,
    }
    defaults.update(flags)
    return DriverProfile.objects.create(user=user, vehicle_number=f'GR-{username}', **defaults)


class DriverDirectoryTests(TestCase):
    def setUp(self):
        self.ready = make_driver('ready')
        make_driver('offline', is_online=False)
        make_driver('busy', is_available=False)
        make_driver('unverified', is_verified=False)
        make_driver('owing', is_commission_current=False)
        make_driver('unlocated', lat=None, lon=None)

    def test_only_eligible_drivers_are_returned(self):
        found = find_available_drivers(DriverQuery())
        self.assertEqual([p.id for p in found], [self.ready.id])

    def test_bounding_box_prefilters_far_drivers(self):
        kumasi = make_driver('kumasi', lat=6.6885, lon=-1.6244)

        near = find_available_drivers(DriverQuery(near=ACCRA, within_meters=15000))
        everywhere = find_available_drivers(DriverQuery())

        self.assertNotIn(kumasi.id, [p.id for p in near])
        self.assertIn(kumasi.id, [p.id for p in everywhere])

    def test_excluded_drivers_are_left_out(self):
        other = make_driver('other')
        found = find_available_drivers(DriverQuery(exclude_user_ids=(self.ready.user_id,)))
        self.assertEqual([p.id for p in found], [other.id])

    def test_results_are_in_directory_order(self):
        second = make_driver('second')
        third = make_driver('third')
        found = find_available_drivers(DriverQuery())
        self.assertEqual([p.id for p in found], [self.ready.id, second.id, third.id])

    def test_inter_regional_filter_needs_capability_on_zone(self):
        zone = ServiceZone.objects.create(
            name='greater_accra', center_latitude=5.6037, center_longitude=-0.1870, radius=50000,
        )
        cleared = make_driver('cleared')
        assign_driver_to_zone(cleared, zone, can_accept_inter_regional=True)
        assign_driver_to_zone(self.ready, zone, can_accept_inter_regional=False)

        found = find_available_drivers(DriverQuery(inter_regional_zone_id=zone.id))
        self.assertEqual([p.id for p in found], [cleared.id])


class DriverStatusTests(TestCase):
    def setUp(self):
        self.profile = make_driver('toggler')

    def test_going_offline_clears_availability(self):
        set_driver_availability(self.profile, is_online=False, is_available=True)
        self.profile.refresh_from_db()
        self.assertFalse(self.profile.is_online)
        self.assertFalse(self.profile.is_available)

    def test_going_online(self):
        self.profile.is_online = False
        self.profile.is_available = False
        self.profile.save()

        set_driver_availability(self.profile, is_online=True, is_available=True)
        self.profile.refresh_from_db()
        self.assertTrue(self.profile.is_online)
        self.assertTrue(self.profile.is_available)

    def test_compatibility_tags(self):
        self.profile.ride_types = ['economy']
        self.profile.service_types = []
        self.assertTrue(self.profile.supports_ride_type('economy'))
        self.assertFalse(self.profile.supports_ride_type('premium'))
        self.assertTrue(self.profile.supports_ride_type(None))
        self.assertTrue(self.profile.supports_service_type('courier'))

        self.profile.service_types = ['ride']
        self.assertFalse(self.profile.supports_service_type('courier'))


class DriverLocationTests(TestCase):
    def setUp(self):
        self.profile = make_driver('mover')
        self.requester = User.objects.create_user(username='rider', password='pass1234')
        self.service = ServiceType.objects.create(
            code='ride', display_name='Ride', base_price=Decimal('10.00'), price_per_km=Decimal('2.50'),
        )

    def _booking(self, status):
        return Booking.objects.create(
            requester=self.requester,
            driver=self.profile.user,
            service_type=self.service,
            pickup_latitude=5.6037,
            pickup_longitude=-0.1870,
            dropoff_latitude=5.5600,
            dropoff_longitude=-0.2050,
            status=status,
        )

    @patch('realtime.notifications.notify_requester', return_value=True)
    def test_location_is_saved_and_pushed_to_active_bookings(self, mock_notify):
        active = self._booking(BookingStatus.DRIVER_ASSIGNED)
        self._booking(BookingStatus.COMPLETED)

        update_driver_location(self.profile, 5.61, -0.19, heading=90.0)

        self.profile.refresh_from_db()
        self.assertEqual(self.profile.current_latitude, Decimal('5.610000'))
        self.assertEqual(self.profile.current_longitude, Decimal('-0.190000'))
        self.assertEqual(self.profile.heading, 90.0)

        mock_notify.assert_called_once()
        requester_id, payload = mock_notify.call_args[0]
        self.assertEqual(requester_id, self.requester.id)
        self.assertEqual(payload['type'], 'driver_location_updated')
        self.assertEqual(payload['booking_id'], active.id)

    def test_invalid_coordinates_are_rejected(self):
        with self.assertRaises(ValidationError) as ctx:
            update_driver_location(self.profile, 95, 0)

        self.assertIn('latitude', ctx.exception.details)
        self.profile.refresh_from_db()
        self.assertIsNone(self.profile.heading)

    def test_missing_coordinate_is_rejected(self):
        with self.assertRaises(ValidationError) as ctx:
            update_driver_location(self.profile, 5.61, None)

        self.assertIn('longitude', ctx.exception.details)
