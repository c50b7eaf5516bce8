"""
Multi-waypoint route ordering.

Up to ``EXACT_ROUTE_LIMIT`` waypoints the visiting order is solved exactly with a
Held-Karp dynamic program over straight-line distances. Beyond that a greedy
nearest-neighbour walk is used, which is fast but not guaranteed optimal.

Routes are open paths: they start at the first waypoint and do not return to it.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Sequence

from .geo import Coordinate, distance, estimated_travel_time

logger = logging.getLogger(__name__)

EXACT_ROUTE_LIMIT = 10


@dataclass(frozen=True)
class RouteLeg:
    from_index: int
    to_index: int
    distance_meters: float
    duration_minutes: int


@dataclass
class RouteResult:
    order: List[int]
    total_distance: float = 0.0
    total_duration: int = 0
    legs: List[RouteLeg] = field(default_factory=list)


def optimal_route(waypoints: Sequence[Coordinate]) -> RouteResult:
    """
    Order waypoints to minimise total travel distance.

    Args:
        waypoints: At least two coordinates; the first one is the fixed start

    Returns:
        RouteResult with the visiting order (indices into ``waypoints``),
        per-leg estimates and totals

    Raises:
        ValueError: If fewer than two waypoints are given
    """
    if len(waypoints) < 2:
        raise ValueError("At least 2 waypoints required")

    if len(waypoints) <= EXACT_ROUTE_LIMIT:
        order = _exact_order(waypoints)
    else:
        order = _nearest_neighbour_order(waypoints)

    return _build_route(waypoints, order)


def _exact_order(waypoints: Sequence[Coordinate]) -> List[int]:
    n = len(waypoints)
    dist = [[distance(waypoints[i], waypoints[j]) for j in range(n)] for i in range(n)]

    # best[mask][j]: shortest path from 0 visiting `mask` and ending at j
    full = 1 << n
    inf = float("inf")
    best = [[inf] * n for _ in range(full)]
    parent = [[-1] * n for _ in range(full)]
    best[1][0] = 0.0

    for mask in range(1, full):
        if not mask & 1:
            continue
        for last in range(n):
            current = best[mask][last]
            if current == inf or not mask & (1 << last):
                continue
            for nxt in range(1, n):
                if mask & (1 << nxt):
                    continue
                new_mask = mask | (1 << nxt)
                candidate = current + dist[last][nxt]
                if candidate < best[new_mask][nxt]:
                    best[new_mask][nxt] = candidate
                    parent[new_mask][nxt] = last

    mask = full - 1
    last = min(range(n), key=lambda j: (best[mask][j], j))
    order = []
    while last != -1:
        order.append(last)
        prev = parent[mask][last]
        mask &= ~(1 << last)
        last = prev
    order.reverse()
    return order


def _nearest_neighbour_order(waypoints: Sequence[Coordinate]) -> List[int]:
    unvisited = list(range(1, len(waypoints)))
    order = [0]

    while unvisited:
        current = waypoints[order[-1]]
        nearest = min(unvisited, key=lambda idx: distance(current, waypoints[idx]))
        order.append(nearest)
        unvisited.remove(nearest)

    return order


def _build_route(waypoints: Sequence[Coordinate], order: List[int]) -> RouteResult:
    result = RouteResult(order=order)
    for from_index, to_index in zip(order, order[1:]):
        estimate = estimated_travel_time(waypoints[from_index], waypoints[to_index])
        result.legs.append(RouteLeg(
            from_index=from_index,
            to_index=to_index,
            distance_meters=estimate.distance_meters,
            duration_minutes=estimate.duration_minutes,
        ))
        result.total_distance += estimate.distance_meters
        result.total_duration += estimate.duration_minutes

    logger.debug(
        "Route over %d waypoints: %.0fm, %d min",
        len(waypoints), result.total_distance, result.total_duration,
    )
    return result
