"""Common utility functions."""

from .geo import (
    Coordinate,
    EtaEstimate,
    TravelEstimate,
    bearing,
    bounding_box,
    calculate_distance,
    calculate_eta,
    distance,
    estimated_travel_time,
    find_points_within_radius,
    is_within_radius,
    point_in_polygon,
    traffic_multiplier,
)
from .routing import RouteLeg, RouteResult, optimal_route

__all__ = [
    "Coordinate",
    "EtaEstimate",
    "TravelEstimate",
    "bearing",
    "bounding_box",
    "calculate_distance",
    "calculate_eta",
    "distance",
    "estimated_travel_time",
    "find_points_within_radius",
    "is_within_radius",
    "point_in_polygon",
    "traffic_multiplier",
    "RouteLeg",
    "RouteResult",
    "optimal_route",
]
