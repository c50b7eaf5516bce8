"""
Service zone resolution and inter-regional route checks.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional

from django.conf import settings

from common.utils import Coordinate, distance
from services.exceptions import ZoneNotFoundError
from .cache import zone_cache

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


@dataclass
class InterRegionalEvaluation:
    """Outcome of checking whether a pickup/dropoff pair may be served."""
    permitted: bool
    surcharge: Decimal = Decimal("0.00")
    requires_approval: bool = False
    origin_zone: Optional[object] = None
    destination_zone: Optional[object] = None
    reason: str = ""

    @property
    def is_inter_regional(self) -> bool:
        return (
            self.permitted
            and self.origin_zone is not None
            and self.destination_zone is not None
            and self.origin_zone.id != self.destination_zone.id
        )


def resolve_zone(point: Coordinate):
    """
    Find the zone containing ``point``.

    Circular zones are checked before polygon zones; within each group the
    highest priority wins. Returns None when no active zone contains the point.
    """
    zones = zone_cache.active_zones()

    for zone in zones:
        if zone.is_circular and zone.contains_radius(point):
            return zone

    for zone in zones:
        if zone.boundaries and zone.contains_polygon(point):
            return zone

    return None


def _connected(a, b) -> bool:
    return (
        any(z.id == b.id for z in a.connected_zones.all())
        or any(z.id == a.id for z in b.connected_zones.all())
    )


def inter_regional_surcharge(origin_zone, destination_zone, meters: float) -> Decimal:
    """max(zone fees) + distance_km * INTER_REGIONAL_RATE_PER_KM, to the cent."""
    rate = Decimal(str(getattr(settings, "INTER_REGIONAL_RATE_PER_KM", "2.00")))
    fee = max(origin_zone.inter_regional_fee, destination_zone.inter_regional_fee)
    km = Decimal(str(meters)) / Decimal(1000)
    return (fee + km * rate).quantize(CENTS, rounding=ROUND_HALF_UP)


def evaluate_inter_regional(origin: Coordinate, destination: Coordinate) -> InterRegionalEvaluation:
    """
    Decide whether a trip from ``origin`` to ``destination`` may be matched.

    Same-zone trips are always permitted with no surcharge. Trips across zones
    need both zones to allow inter-regional service and at least one of them to
    list the other as connected. High-risk or international zones on either end
    flag the booking for operator approval.
    """
    origin_zone = resolve_zone(origin)
    destination_zone = resolve_zone(destination)

    if origin_zone is None or destination_zone is None:
        missing = "pickup" if origin_zone is None else "dropoff"
        return InterRegionalEvaluation(
            permitted=False,
            origin_zone=origin_zone,
            destination_zone=destination_zone,
            reason=f"The {missing} location is outside every service zone",
        )

    if origin_zone.id == destination_zone.id:
        return InterRegionalEvaluation(
            permitted=True,
            origin_zone=origin_zone,
            destination_zone=destination_zone,
        )

    if not (origin_zone.allows_inter_regional and destination_zone.allows_inter_regional):
        return InterRegionalEvaluation(
            permitted=False,
            origin_zone=origin_zone,
            destination_zone=destination_zone,
            reason="Inter-regional trips are not offered between these zones",
        )

    if not _connected(origin_zone, destination_zone):
        return InterRegionalEvaluation(
            permitted=False,
            origin_zone=origin_zone,
            destination_zone=destination_zone,
            reason=f"{origin_zone.name} is not connected to {destination_zone.name}",
        )

    surcharge = inter_regional_surcharge(origin_zone, destination_zone, distance(origin, destination))
    requires_approval = origin_zone.requires_approval or destination_zone.requires_approval

    logger.info(
        "Inter-regional route %s -> %s permitted, surcharge %s, approval=%s",
        origin_zone.name, destination_zone.name, surcharge, requires_approval,
    )
    return InterRegionalEvaluation(
        permitted=True,
        surcharge=surcharge,
        requires_approval=requires_approval,
        origin_zone=origin_zone,
        destination_zone=destination_zone,
    )


def get_zone_hierarchy(zone_id: Optional[int] = None) -> List:
    """Active child zones of ``zone_id``, or the active root zones when omitted."""
    from zones.models import ServiceZone

    if zone_id is None:
        return list(ServiceZone.objects.filter(parent_zone__isnull=True, is_active=True))

    if not ServiceZone.objects.filter(id=zone_id).exists():
        raise ZoneNotFoundError(f"Zone {zone_id} not found")
    return list(ServiceZone.objects.filter(parent_zone_id=zone_id, is_active=True))


def assign_driver_to_zone(profile, zone, can_accept_inter_regional: bool = False, inter_regional_rate=None):
    """Create or update a driver's assignment to ``zone``."""
    from zones.models import DriverServiceZone

    assignment, created = DriverServiceZone.objects.update_or_create(
        driver_profile=profile,
        service_zone=zone,
        defaults={
            "can_accept_inter_regional": can_accept_inter_regional,
            "inter_regional_rate": inter_regional_rate,
            "is_active": True,
        },
    )
    logger.info(
        "%s driver %s in zone %s (inter-regional=%s)",
        "Assigned" if created else "Updated", profile.user_id, zone.name, can_accept_inter_regional,
    )
    return assignment
