"""
Provider directory lookup.

Thin data-access seam over ``DriverProfile``: the matching engine describes the
drivers it wants with a ``DriverQuery`` and gets model instances back, ordered
by primary key so that ranking ties resolve the same way every time.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from django.utils import timezone

from common.utils import Coordinate, bounding_box
from drivers.models import DriverProfile

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DriverQuery:
    """Typed filter for the driver directory. Unset fields do not constrain the query."""
    online: Optional[bool] = True
    available: Optional[bool] = True
    verified: Optional[bool] = True
    located: bool = True
    good_standing: bool = True
    near: Optional[Coordinate] = None
    within_meters: Optional[float] = None
    inter_regional_zone_id: Optional[int] = None
    exclude_user_ids: Tuple[int, ...] = field(default_factory=tuple)

    @property
    def bounds(self) -> Optional[Tuple[float, float, float, float]]:
        if self.near is None or self.within_meters is None:
            return None
        return bounding_box(self.near, self.within_meters)


def find_available_drivers(query: DriverQuery) -> List[DriverProfile]:
    """
    Fetch driver profiles matching ``query``.

    The bounding box is only a coarse pre-filter; callers still check the
    exact great-circle distance.
    """
    qs = DriverProfile.objects.select_related("user")

    if query.online is not None:
        qs = qs.filter(is_online=query.online)
    if query.available is not None:
        qs = qs.filter(is_available=query.available)
    if query.verified is not None:
        qs = qs.filter(is_verified=query.verified)
    if query.located:
        qs = qs.filter(current_latitude__isnull=False, current_longitude__isnull=False)
    if query.good_standing:
        qs = qs.filter(is_commission_current=True)

    bounds = query.bounds
    if bounds is not None:
        min_lat, max_lat, min_lon, max_lon = bounds
        qs = qs.filter(
            current_latitude__gte=min_lat,
            current_latitude__lte=max_lat,
            current_longitude__gte=min_lon,
            current_longitude__lte=max_lon,
        )

    if query.inter_regional_zone_id is not None:
        qs = qs.filter(
            zone_assignments__service_zone_id=query.inter_regional_zone_id,
            zone_assignments__is_active=True,
            zone_assignments__can_accept_inter_regional=True,
        )

    if query.exclude_user_ids:
        qs = qs.exclude(user_id__in=query.exclude_user_ids)

    return list(qs.distinct().order_by("id"))


def set_driver_availability(profile: DriverProfile, is_online: bool, is_available: Optional[bool] = None) -> DriverProfile:
    """
    Toggle the online flag and, optionally, availability.

    Going offline always clears availability; a driver cannot be offered work
    while offline.
    """
    profile.is_online = is_online
    if not is_online:
        profile.is_available = False
    elif is_available is not None:
        profile.is_available = is_available
    profile.save(update_fields=["is_online", "is_available"])

    logger.info(
        "Driver %s is now online=%s available=%s",
        profile.user_id, profile.is_online, profile.is_available,
    )
    return profile


def update_driver_location(profile: DriverProfile, lat, lon, heading=None) -> DriverProfile:
    """
    Record a location ping and push it to requesters of the driver's active bookings.

    Raises:
        ValidationError: If the coordinates are missing or out of range
    """
    from drivers.serializers import LocationUpdateSerializer
    from services.exceptions import ValidationError

    serializer = LocationUpdateSerializer(data={"latitude": lat, "longitude": lon, "heading": heading})
    if not serializer.is_valid():
        raise ValidationError("Invalid location update", details=serializer.errors)
    fields = serializer.validated_data
    point = Coordinate(fields["latitude"], fields["longitude"])
    heading = fields.get("heading")

    profile.current_latitude = round(point.latitude, 6)
    profile.current_longitude = round(point.longitude, 6)
    profile.heading = heading
    profile.last_location_update = timezone.now()
    profile.save(update_fields=["current_latitude", "current_longitude", "heading", "last_location_update"])

    from bookings.models import Booking, BookingStatus
    from realtime.notifications import notify_requester

    active = Booking.objects.filter(
        driver_id=profile.user_id,
        status__in=[BookingStatus.DRIVER_ASSIGNED, BookingStatus.DRIVER_ARRIVED, BookingStatus.IN_PROGRESS],
    ).values_list("id", "requester_id")

    for booking_id, requester_id in active:
        notify_requester(requester_id, {
            "type": "driver_location_updated",
            "booking_id": booking_id,
            "driver_id": profile.user_id,
            "latitude": point.latitude,
            "longitude": point.longitude,
            "heading": heading,
        })

    return profile

