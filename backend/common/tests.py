from datetime import datetime

from django.test import SimpleTestCase

from common.utils import (
    Coordinate,
    bearing,
    bounding_box,
    calculate_distance,
    calculate_eta,
    distance,
    estimated_travel_time,
    find_points_within_radius,
    is_within_radius,
    optimal_route,
    point_in_polygon,
    traffic_multiplier,
)
from common.utils.routing import EXACT_ROUTE_LIMIT

ONE_DEGREE_AT_EQUATOR = 111194.93

# 2026-10-19 is a Monday
MONDAY = datetime(2026, 10, 19)
SATURDAY = datetime(2026, 10, 17, 8, 0)


class CoordinateTests(SimpleTestCase):
    def test_accepts_decimal_like_values(self):
        point = Coordinate("5.603700", "-0.187000")
        self.assertEqual(point.latitude, 5.6037)
        self.assertEqual(point.longitude, -0.187)

    def test_rejects_out_of_range(self):
        with self.assertRaises(ValueError):
            Coordinate(91, 0)
        with self.assertRaises(ValueError):
            Coordinate(0, -180.5)

    def test_rejects_nan(self):
        with self.assertRaises(ValueError):
            Coordinate(float("nan"), 0)


class DistanceTests(SimpleTestCase):
    def test_same_point_is_zero(self):
        accra = Coordinate(5.6037, -0.1870)
        self.assertEqual(distance(accra, accra), 0)

    def test_one_degree_of_longitude_at_equator(self):
        meters = distance(Coordinate(0, 0), Coordinate(0, 1))
        self.assertAlmostEqual(meters, ONE_DEGREE_AT_EQUATOR, delta=1)

    def test_accra_trip(self):
        meters = calculate_distance(5.6037, -0.1870, 5.5600, -0.2050)
        self.assertAlmostEqual(meters, 5252, delta=50)

    def test_symmetric(self):
        a = Coordinate(5.6037, -0.1870)
        b = Coordinate(6.6885, -1.6244)
        self.assertAlmostEqual(distance(a, b), distance(b, a), places=6)

    def test_is_within_radius_is_inclusive(self):
        center = Coordinate(0, 0)
        point = Coordinate(0, 1)
        meters = distance(center, point)
        self.assertTrue(is_within_radius(center, point, meters))
        self.assertFalse(is_within_radius(center, point, meters - 1))


class BearingTests(SimpleTestCase):
    def test_cardinal_directions(self):
        origin = Coordinate(0, 0)
        self.assertAlmostEqual(bearing(origin, Coordinate(1, 0)), 0.0, places=6)
        self.assertAlmostEqual(bearing(origin, Coordinate(0, 1)), 90.0, places=6)
        self.assertAlmostEqual(bearing(origin, Coordinate(-1, 0)), 180.0, places=6)
        self.assertAlmostEqual(bearing(origin, Coordinate(0, -1)), 270.0, places=6)

    def test_range(self):
        value = bearing(Coordinate(5.6037, -0.1870), Coordinate(5.5600, -0.2050))
        self.assertGreaterEqual(value, 0)
        self.assertLess(value, 360)


class TravelTimeTests(SimpleTestCase):
    def test_mode_speeds_are_ceiling_rounded(self):
        a, b = Coordinate(0, 0), Coordinate(0, 1)
        self.assertEqual(estimated_travel_time(a, b).duration_minutes, 223)
        self.assertEqual(estimated_travel_time(a, b, "walking").duration_minutes, 1340)
        self.assertEqual(estimated_travel_time(a, b, "transit").duration_minutes, 445)

    def test_unknown_mode_uses_driving(self):
        a, b = Coordinate(0, 0), Coordinate(0, 1)
        self.assertEqual(estimated_travel_time(a, b, "hovercraft").duration_minutes, 223)

    def test_bad_input_propagates(self):
        with self.assertNoLogs("common.utils.geo", level="ERROR"):
            with self.assertRaises(AttributeError):
                estimated_travel_time(None, Coordinate(0, 1))

    def test_traffic_windows(self):
        self.assertEqual(traffic_multiplier(SATURDAY), 0.8)
        self.assertEqual(traffic_multiplier(MONDAY.replace(hour=8)), 1.5)
        self.assertEqual(traffic_multiplier(MONDAY.replace(hour=18, minute=30)), 1.5)
        self.assertEqual(traffic_multiplier(MONDAY.replace(hour=12)), 1.0)
        self.assertEqual(traffic_multiplier(MONDAY.replace(hour=20)), 1.0)
        self.assertEqual(traffic_multiplier(MONDAY.replace(hour=23)), 0.7)
        self.assertEqual(traffic_multiplier(MONDAY.replace(hour=5)), 0.7)

    def test_eta_applies_multiplier(self):
        a, b = Coordinate(0, 0), Coordinate(0, 1)
        rush = calculate_eta(a, b, MONDAY.replace(hour=8))
        self.assertEqual(rush.eta_minutes, 335)
        self.assertEqual(rush.traffic_multiplier, 1.5)

        quiet = calculate_eta(a, b, MONDAY.replace(hour=12))
        self.assertEqual(quiet.eta_minutes, 223)


class RadiusSearchTests(SimpleTestCase):
    def test_filters_and_sorts_closest_first(self):
        center = Coordinate(0, 0)
        points = [
            (Coordinate(0, 0.1), "far"),
            (Coordinate(0, 0.01), "near"),
            (Coordinate(0, 1), "outside"),
            (Coordinate(0.05, 0), "middle"),
        ]
        found = find_points_within_radius(center, points, 20000)
        self.assertEqual([payload for _, _, payload in found], ["near", "middle", "far"])

    def test_ties_keep_input_order(self):
        center = Coordinate(0, 0)
        points = [(Coordinate(0, 0.01), "first"), (Coordinate(0, -0.01), "second")]
        found = find_points_within_radius(center, points, 5000)
        self.assertEqual([payload for _, _, payload in found], ["first", "second"])

    def test_bounding_box_encloses_radius(self):
        center = Coordinate(5.6037, -0.1870)
        min_lat, max_lat, min_lon, max_lon = bounding_box(center, 15000)
        edge = Coordinate(5.6037, -0.1870 + 0.13)  # ~14.4 km east
        self.assertLess(distance(center, edge), 15000)
        self.assertTrue(min_lat < center.latitude < max_lat)
        self.assertTrue(min_lon < edge.longitude < max_lon)


class PolygonTests(SimpleTestCase):
    square = {
        "type": "Polygon",
        "coordinates": [
            [[0, 0], [10, 0], [10, 10], [0, 10], [0, 0]],
            [[4, 4], [6, 4], [6, 6], [4, 6], [4, 4]],
        ],
    }

    def test_inside_outer_ring(self):
        # GeoJSON is [lon, lat]
        self.assertTrue(point_in_polygon(Coordinate(2, 8), self.square))

    def test_outside(self):
        self.assertFalse(point_in_polygon(Coordinate(11, 5), self.square))

    def test_inside_hole_is_outside(self):
        self.assertFalse(point_in_polygon(Coordinate(5, 5), self.square))

    def test_malformed_polygons_contain_nothing(self):
        self.assertFalse(point_in_polygon(Coordinate(1, 1), None))
        self.assertFalse(point_in_polygon(Coordinate(1, 1), {"type": "Polygon", "coordinates": []}))
        self.assertFalse(point_in_polygon(Coordinate(1, 1), {"coordinates": [[[0, 0], [1, 1]]]}))


class OptimalRouteTests(SimpleTestCase):
    def test_needs_two_waypoints(self):
        with self.assertRaises(ValueError):
            optimal_route([Coordinate(0, 0)])

    def test_small_routes_are_reordered_optimally(self):
        waypoints = [Coordinate(0, 0), Coordinate(0, 0.3), Coordinate(0, 0.1), Coordinate(0, 0.2)]
        route = optimal_route(waypoints)

        self.assertEqual(route.order, [0, 2, 3, 1])
        self.assertEqual(len(route.legs), 3)
        self.assertAlmostEqual(route.total_distance, distance(waypoints[0], waypoints[1]), delta=1)
        self.assertEqual(route.total_duration, sum(leg.duration_minutes for leg in route.legs))

    def test_exact_search_beats_greedy(self):
        # Greedy heads to the 1 km stop first and has to cross back over the start
        waypoints = [
            Coordinate(0, 0),
            Coordinate(0, 0.009),
            Coordinate(0, 0.09),
            Coordinate(0, -0.0108),
        ]
        route = optimal_route(waypoints)
        self.assertEqual(route.order, [0, 3, 1, 2])

    def test_large_routes_use_nearest_neighbour(self):
        count = EXACT_ROUTE_LIMIT + 2
        shuffled = [0, 5, 11, 2, 8, 1, 9, 3, 10, 4, 7, 6]
        waypoints = [Coordinate(0, index * 0.01) for index in shuffled[:count]]
        route = optimal_route(waypoints)

        visited = [shuffled[i] for i in route.order]
        self.assertEqual(visited, sorted(shuffled[:count]))
        self.assertEqual(route.order[0], 0)
