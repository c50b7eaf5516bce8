"""
Candidate search for a dispatch round.

Asks the driver directory for eligible drivers, keeps the ones inside the search
radius that carry the requested tags, ranks them closest first and attaches a
traffic-adjusted ETA to the pickup.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional

from django.conf import settings
from django.utils import timezone

from common.utils import Coordinate, calculate_eta, find_points_within_radius
from drivers.services import DriverQuery, find_available_drivers

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Candidate:
    provider_id: int
    distance: float
    eta: int
    profile: object


def find_candidates(
    origin: Coordinate,
    service_type: Optional[str] = None,
    ride_type: Optional[str] = None,
    radius: Optional[float] = None,
    max_results: Optional[int] = None,
    exclude_provider_ids: Iterable[int] = (),
    inter_regional_zone_id: Optional[int] = None,
    when: Optional[datetime] = None,
) -> List[Candidate]:
    """
    Rank available drivers around ``origin``.

    Args:
        origin: Pickup coordinate
        service_type: Service code the driver must support (empty tags accept all)
        ride_type: Ride type the driver must list, if given
        radius: Inclusive search radius in meters
        max_results: Maximum candidates returned
        exclude_provider_ids: Driver user ids to leave out (already offered)
        inter_regional_zone_id: Only drivers cleared for inter-regional work in this zone
        when: Departure time for the ETA, defaults to now

    Returns:
        Candidates sorted by distance ascending. Ties keep directory order.
    """
    if radius is None:
        radius = getattr(settings, "DISPATCH_SEARCH_RADIUS_METERS", 15000)
    if max_results is None:
        max_results = getattr(settings, "DISPATCH_MAX_CANDIDATES", 10)

    query = DriverQuery(
        near=origin,
        within_meters=radius,
        inter_regional_zone_id=inter_regional_zone_id,
        exclude_user_ids=tuple(exclude_provider_ids),
    )
    profiles = find_available_drivers(query)

    eligible = [
        (profile.location, profile)
        for profile in profiles
        if profile.supports_ride_type(ride_type) and profile.supports_service_type(service_type)
    ]
    ranked = find_points_within_radius(origin, eligible, radius)[:max_results]

    moment = timezone.localtime(when or timezone.now())
    candidates = [
        Candidate(
            provider_id=profile.user_id,
            distance=meters,
            eta=calculate_eta(location, origin, moment).eta_minutes,
            profile=profile,
        )
        for meters, location, profile in ranked
    ]

    logger.debug(
        "Found %d candidate(s) within %sm of (%.5f, %.5f)",
        len(candidates), radius, origin.latitude, origin.longitude,
    )
    return candidates
