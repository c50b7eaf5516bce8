"""
Geographic utility functions.

This module provides the core geospatial calculations used throughout the application:
great-circle distance, bearing, straight-line travel estimates, traffic-adjusted ETA
and polygon containment.

Travel times here are an approximation: straight-line distance divided by an average
speed per travel mode. There is no road-network router behind them.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from math import radians, cos, sin, asin, sqrt, atan2, degrees
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

EARTH_RADIUS_METERS = 6371000

# Average speeds in meters per minute
DRIVING = "driving"
WALKING = "walking"
TRANSIT = "transit"

AVERAGE_SPEEDS = {
    DRIVING: 500,   # ~30 km/h in city traffic
    WALKING: 83,    # ~5 km/h
    TRANSIT: 250,   # ~15 km/h average with stops
}


@dataclass(frozen=True)
class Coordinate:
    """A WGS84 point in degrees."""
    latitude: float
    longitude: float

    def __post_init__(self):
        lat = float(self.latitude)
        lon = float(self.longitude)
        if math.isnan(lat) or math.isnan(lon):
            raise ValueError("Coordinate values must be numbers")
        if not -90.0 <= lat <= 90.0:
            raise ValueError(f"Latitude {lat} is outside [-90, 90]")
        if not -180.0 <= lon <= 180.0:
            raise ValueError(f"Longitude {lon} is outside [-180, 180]")
        # Model fields hand us Decimals
        object.__setattr__(self, "latitude", lat)
        object.__setattr__(self, "longitude", lon)


@dataclass(frozen=True)
class TravelEstimate:
    duration_minutes: int
    distance_meters: float


@dataclass(frozen=True)
class EtaEstimate:
    eta_minutes: int
    distance_meters: float
    traffic_multiplier: float


def calculate_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate distance between two points in meters using Haversine formula.

    Args:
        lat1: Latitude of first point
        lon1: Longitude of first point
        lat2: Latitude of second point
        lon2: Longitude of second point

    Returns:
        Distance in meters
    """
    lat1, lon1, lat2, lon2 = map(radians, [float(lat1), float(lon1), float(lat2), float(lon2)])
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    a = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
    c = 2 * asin(min(1.0, sqrt(a)))
    return c * EARTH_RADIUS_METERS


def distance(a: Coordinate, b: Coordinate) -> float:
    """Great-circle distance between two coordinates, in meters."""
    return calculate_distance(a.latitude, a.longitude, b.latitude, b.longitude)


def bearing(a: Coordinate, b: Coordinate) -> float:
    """
    Initial compass bearing from ``a`` to ``b``.

    Returns:
        Degrees in [0, 360), 0 = north, 90 = east
    """
    phi1 = radians(a.latitude)
    phi2 = radians(b.latitude)
    dlon = radians(b.longitude - a.longitude)

    y = sin(dlon) * cos(phi2)
    x = cos(phi1) * sin(phi2) - sin(phi1) * cos(phi2) * cos(dlon)

    return (degrees(atan2(y, x)) + 360.0) % 360.0


def estimated_travel_time(a: Coordinate, b: Coordinate, mode: str = DRIVING) -> TravelEstimate:
    """
    Estimate travel time between two points from straight-line distance.

    Unknown modes use the driving speed.

    Args:
        a: Start point
        b: End point
        mode: One of ``driving``, ``walking``, ``transit``

    Returns:
        TravelEstimate with whole minutes (ceiling) and meters
    """
    meters = distance(a, b)
    speed = AVERAGE_SPEEDS.get(mode, AVERAGE_SPEEDS[DRIVING])
    return TravelEstimate(
        duration_minutes=int(math.ceil(meters / speed)),
        distance_meters=meters,
    )


def traffic_multiplier(when: datetime) -> float:
    """
    Traffic factor for a departure time.

    Weekends are lighter (0.8). On weekdays the 07-09h and 17-19h hours are
    rush (1.5), 22h through 06h is late night (0.7), everything else 1.0.
    """
    if when.weekday() >= 5:
        return 0.8

    hour = when.hour
    if 7 <= hour <= 9 or 17 <= hour <= 19:
        return 1.5
    if hour >= 22 or hour <= 6:
        return 0.7
    return 1.0


def calculate_eta(a: Coordinate, b: Coordinate, when: Optional[datetime] = None) -> EtaEstimate:
    """
    Traffic-adjusted driving ETA from ``a`` to ``b``.

    Args:
        a: Start point (usually the driver)
        b: End point (usually the pickup)
        when: Departure time, defaults to now

    Returns:
        EtaEstimate with ``eta = ceil(base_duration * traffic_multiplier(when))``
    """
    estimate = estimated_travel_time(a, b, DRIVING)
    factor = traffic_multiplier(when or datetime.now())
    return EtaEstimate(
        eta_minutes=int(math.ceil(estimate.duration_minutes * factor)),
        distance_meters=estimate.distance_meters,
        traffic_multiplier=factor,
    )


def is_within_radius(center: Coordinate, point: Coordinate, radius_meters: float) -> bool:
    """Check if a point is within a radius of another point."""
    return distance(center, point) <= radius_meters


def find_points_within_radius(
    center: Coordinate,
    points: Iterable[Tuple[Coordinate, Any]],
    radius_meters: float,
) -> List[Tuple[float, Coordinate, Any]]:
    """
    Keep the points inside ``radius_meters`` of ``center``.

    Args:
        center: Search origin
        points: ``(coordinate, payload)`` pairs
        radius_meters: Inclusive radius

    Returns:
        ``(distance, coordinate, payload)`` tuples sorted closest first.
        Equal distances keep their input order.
    """
    found = []
    for point, payload in points:
        meters = distance(center, point)
        if meters <= radius_meters:
            found.append((meters, point, payload))

    found.sort(key=lambda item: item[0])
    return found


def bounding_box(center: Coordinate, radius_meters: float) -> Tuple[float, float, float, float]:
    """
    Degree bounds ``(min_lat, max_lat, min_lon, max_lon)`` enclosing a circle.

    Used as a coarse database pre-filter; exact distances are checked afterwards.
    The longitude span widens to the full range near the poles.
    """
    lat_offset = radius_meters / 111000.0
    cos_lat = abs(cos(radians(center.latitude)))
    if cos_lat < 1e-6:
        lon_offset = 180.0
    else:
        lon_offset = min(180.0, radius_meters / (111000.0 * cos_lat))

    return (
        max(-90.0, center.latitude - lat_offset),
        min(90.0, center.latitude + lat_offset),
        max(-180.0, center.longitude - lon_offset),
        min(180.0, center.longitude + lon_offset),
    )


def _point_in_ring(lat: float, lon: float, ring: Sequence[Sequence[float]]) -> bool:
    # GeoJSON positions are [lon, lat]
    inside = False
    count = len(ring)
    j = count - 1
    for i in range(count):
        xi, yi = float(ring[i][0]), float(ring[i][1])
        xj, yj = float(ring[j][0]), float(ring[j][1])
        if (yi > lat) != (yj > lat):
            x_cross = (xj - xi) * (lat - yi) / (yj - yi) + xi
            if lon < x_cross:
                inside = not inside
        j = i
    return inside


def point_in_polygon(point: Coordinate, polygon: Optional[Dict[str, Any]]) -> bool:
    """
    Ray-casting containment test against a GeoJSON Polygon.

    Args:
        point: Coordinate to test
        polygon: ``{"type": "Polygon", "coordinates": [outer_ring, *holes]}``
            with rings of ``[lon, lat]`` positions

    Returns:
        True if the point is inside the outer ring and outside every hole.
        Malformed or empty polygons contain nothing.
    """
    if not polygon or not isinstance(polygon, dict):
        return False

    rings = polygon.get("coordinates") or []
    if not rings or len(rings[0]) < 3:
        return False

    try:
        if not _point_in_ring(point.latitude, point.longitude, rings[0]):
            return False
        for hole in rings[1:]:
            if len(hole) >= 3 and _point_in_ring(point.latitude, point.longitude, hole):
                return False
    except (TypeError, ValueError, IndexError):
        logger.warning("Ignoring malformed polygon boundary")
        return False

    return True
