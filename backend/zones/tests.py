from decimal import Decimal, ROUND_HALF_UP

from django.test import TestCase, override_settings

from accounts.models import User
from common.utils import Coordinate, distance
from drivers.models import DriverProfile
from services.exceptions import ZoneNotFoundError
from services.zones import (
    assign_driver_to_zone,
    evaluate_inter_regional,
    get_zone_hierarchy,
    resolve_zone,
    zone_cache,
)
from zones.models import DriverServiceZone, ServiceZone

ACCRA = Coordinate(5.6037, -0.1870)
ACCRA_WEST = Coordinate(5.5600, -0.2050)
KUMASI = Coordinate(6.6885, -1.6244)
TAMALE = Coordinate(9.4008, -0.8393)
LOME = Coordinate(6.1256, 1.2254)

TAMALE_BOUNDARY = {
    "type": "Polygon",
    "coordinates": [[[-1.0, 9.3], [-0.7, 9.3], [-0.7, 9.5], [-1.0, 9.5], [-1.0, 9.3]]],
}


def make_zone(name, point=None, radius=50000, **fields):
    point = point or ACCRA
    return ServiceZone.objects.create(
        name=name,
        center_latitude=point.latitude,
        center_longitude=point.longitude,
        radius=radius,
        **fields
    )


class ResolveZoneTests(TestCase):
    def test_point_inside_circle(self):
        accra = make_zone('greater_accra')
        self.assertEqual(resolve_zone(ACCRA_WEST), accra)

    def test_point_outside_every_zone(self):
        make_zone('greater_accra')
        self.assertIsNone(resolve_zone(KUMASI))

    def test_highest_priority_wins(self):
        make_zone('accra_metro', priority=1)
        airport = make_zone('airport', radius=20000, priority=10)
        self.assertEqual(resolve_zone(ACCRA), airport)

    def test_inactive_zones_are_ignored(self):
        make_zone('greater_accra', is_active=False)
        self.assertIsNone(resolve_zone(ACCRA))

    def test_polygon_zone(self):
        northern = make_zone('northern', point=TAMALE, radius=None, boundaries=TAMALE_BOUNDARY)
        self.assertEqual(resolve_zone(TAMALE), northern)
        self.assertIsNone(resolve_zone(Coordinate(9.6, -0.8393)))

    def test_circles_are_checked_before_polygons(self):
        make_zone('northern_polygon', point=TAMALE, radius=None, boundaries=TAMALE_BOUNDARY, priority=50)
        circle = make_zone('tamale_city', point=TAMALE, radius=10000, priority=0)
        self.assertEqual(resolve_zone(TAMALE), circle)


class InterRegionalTests(TestCase):
    def setUp(self):
        self.accra = make_zone(
            'greater_accra', allows_inter_regional=True, inter_regional_fee=Decimal('10.00'),
        )
        self.ashanti = make_zone(
            'ashanti', point=KUMASI, allows_inter_regional=True, inter_regional_fee=Decimal('25.00'),
        )

    def test_same_zone_trip(self):
        result = evaluate_inter_regional(ACCRA, ACCRA_WEST)

        self.assertTrue(result.permitted)
        self.assertEqual(result.surcharge, Decimal('0'))
        self.assertFalse(result.requires_approval)
        self.assertFalse(result.is_inter_regional)
        self.assertEqual(result.origin_zone, self.accra)

    def test_unresolved_endpoint(self):
        result = evaluate_inter_regional(ACCRA, LOME)
        self.assertFalse(result.permitted)
        self.assertIn('dropoff', result.reason)

    def test_unconnected_zones(self):
        result = evaluate_inter_regional(ACCRA, KUMASI)
        self.assertFalse(result.permitted)

    def test_connection_in_either_direction(self):
        # Only ashanti lists accra; the trip works both ways
        self.ashanti.connected_zones.add(self.accra)

        outbound = evaluate_inter_regional(ACCRA, KUMASI)
        inbound = evaluate_inter_regional(KUMASI, ACCRA)

        self.assertTrue(outbound.permitted)
        self.assertTrue(inbound.permitted)
        self.assertTrue(outbound.is_inter_regional)

    def test_surcharge(self):
        self.accra.connected_zones.add(self.ashanti)

        result = evaluate_inter_regional(ACCRA, KUMASI)

        km = Decimal(str(distance(ACCRA, KUMASI))) / Decimal(1000)
        expected = (Decimal('25.00') + km * Decimal('2.00')).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)
        self.assertEqual(result.surcharge, expected)
        self.assertFalse(result.requires_approval)

    def test_both_zones_must_allow_inter_regional(self):
        self.accra.connected_zones.add(self.ashanti)
        self.ashanti.allows_inter_regional = False
        self.ashanti.save()

        self.assertFalse(evaluate_inter_regional(ACCRA, KUMASI).permitted)

    def test_high_risk_zone_needs_approval(self):
        northern = make_zone(
            'northern', point=TAMALE, allows_inter_regional=True, is_high_risk=True,
        )
        northern.connected_zones.add(self.ashanti)

        result = evaluate_inter_regional(KUMASI, TAMALE)
        self.assertTrue(result.permitted)
        self.assertTrue(result.requires_approval)

    def test_international_zone_needs_approval(self):
        togo = make_zone(
            'lome', point=LOME, allows_inter_regional=True, zone_type=ServiceZone.TYPE_INTERNATIONAL,
        )
        self.accra.connected_zones.add(togo)

        result = evaluate_inter_regional(ACCRA, LOME)
        self.assertTrue(result.permitted)
        self.assertTrue(result.requires_approval)


class ZoneHierarchyTests(TestCase):
    def test_roots_and_children(self):
        ghana = make_zone('ghana', radius=600000, zone_type=ServiceZone.TYPE_NATIONAL)
        accra = make_zone('greater_accra', parent_zone=ghana)
        make_zone('closed', parent_zone=ghana, is_active=False)

        self.assertEqual(get_zone_hierarchy(), [ghana])
        self.assertEqual(get_zone_hierarchy(ghana.id), [accra])

    def test_unknown_zone(self):
        with self.assertRaises(ZoneNotFoundError):
            get_zone_hierarchy(9999)

    def test_assign_driver_is_idempotent(self):
        zone = make_zone('greater_accra')
        user = User.objects.create_user(username='driver', password='driver1234', role=User.ROLE_PROVIDER)
        profile = DriverProfile.objects.create(user=user, vehicle_number='GR-1')

        assign_driver_to_zone(profile, zone)
        assignment = assign_driver_to_zone(profile, zone, can_accept_inter_regional=True)

        self.assertEqual(DriverServiceZone.objects.count(), 1)
        self.assertTrue(assignment.can_accept_inter_regional)


@override_settings(CACHES={
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "zone-cache-tests",
    }
})
class ZoneCacheTests(TestCase):
    def setUp(self):
        zone_cache.invalidate()
        self.addCleanup(zone_cache.invalidate)

    def test_zones_are_served_from_cache_until_changed(self):
        zone = make_zone('greater_accra')
        self.assertEqual(resolve_zone(ACCRA), zone)

        # Bulk updates skip signals, so the cached copy is still used
        ServiceZone.objects.filter(id=zone.id).update(is_active=False)
        self.assertEqual(resolve_zone(ACCRA), zone)

        zone.is_active = False
        zone.save()
        self.assertIsNone(resolve_zone(ACCRA))

    def test_connection_changes_invalidate(self):
        accra = make_zone('greater_accra', allows_inter_regional=True)
        make_zone('ashanti', point=KUMASI, allows_inter_regional=True)
        self.assertFalse(evaluate_inter_regional(ACCRA, KUMASI).permitted)

        accra.connected_zones.add(ServiceZone.objects.get(name='ashanti'))
        self.assertTrue(evaluate_inter_regional(ACCRA, KUMASI).permitted)
