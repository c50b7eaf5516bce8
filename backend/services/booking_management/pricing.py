"""
Booking price calculations.

All money is ``Decimal``. Final prices are charged in whole currency units;
commission and earnings are kept to the cent so that
``final_price == commission + earning`` holds exactly.
"""

import logging
from datetime import timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Tuple

from django.conf import settings
from django.utils import timezone

logger = logging.getLogger(__name__)

CURRENCY_UNIT = Decimal("1")
CENTS = Decimal("0.01")


def _decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def default_commission_rate() -> Decimal:
    return _decimal(getattr(settings, "DEFAULT_COMMISSION_RATE", "0.18"))


def commission_rate_for(service_type) -> Decimal:
    if service_type is not None and service_type.commission_rate is not None:
        return _decimal(service_type.commission_rate)
    return default_commission_rate()


def distance_price(base_price, price_per_km, distance_meters, surge_multiplier=1) -> Decimal:
    km = _decimal(distance_meters) / Decimal(1000)
    price = _decimal(base_price) + km * _decimal(price_per_km)
    surge = _decimal(surge_multiplier)
    if surge > 1:
        price *= surge
    return price


def estimate_price(service_type, distance_meters, surge_multiplier=1, inter_regional_fee=0) -> Decimal:
    """Quoted price at intake: the distance fare plus any inter-regional surcharge."""
    fare = distance_price(
        service_type.base_price, service_type.price_per_km, distance_meters, surge_multiplier,
    ).quantize(CURRENCY_UNIT, rounding=ROUND_HALF_UP)
    return (fare + _decimal(inter_regional_fee)).quantize(CENTS, rounding=ROUND_HALF_UP)


def compute_final_price(
    base_price,
    price_per_km,
    distance_meters,
    surge_multiplier=1,
    meter_reading: Optional[Decimal] = None,
) -> Decimal:
    """
    Price charged at completion, rounded to the nearest whole currency unit.

    A meter reading supplied by the driver replaces the distance fare; surge
    still applies on top. Raises ValueError if the price comes out negative.
    """
    if meter_reading is not None:
        price = _decimal(meter_reading)
        surge = _decimal(surge_multiplier)
        if surge > 1:
            price *= surge
    else:
        price = distance_price(base_price, price_per_km, distance_meters, surge_multiplier)
    if price < 0:
        raise ValueError(f"Price cannot be negative: {price}")
    return price.quantize(CURRENCY_UNIT, rounding=ROUND_HALF_UP)


def split_commission(final_price, rate=None) -> Tuple[Decimal, Decimal]:
    """Returns ``(platform_commission, driver_earning)``, summing to ``final_price``."""
    price = _decimal(final_price)
    rate = default_commission_rate() if rate is None else _decimal(rate)
    commission = (price * rate).quantize(CENTS, rounding=ROUND_HALF_UP)
    return commission, price - commission


# ===================== Surge =====================

SURGE_RUSH_HOUR = Decimal("1.20")
SURGE_LATE_NIGHT = Decimal("1.25")
SURGE_WEEKEND = Decimal("1.10")
SURGE_NO_SUPPLY = Decimal("1.10")
MIN_DRIVERS_FOR_TIME_SURGE = 3
MIN_DEMAND_FOR_SURGE = 2

# (demand / supply ratio, factor), highest first
DEMAND_SURGE_STEPS = (
    (Decimal("4.0"), Decimal("1.30")),
    (Decimal("2.5"), Decimal("1.20")),
    (Decimal("1.5"), Decimal("1.10")),
)


def max_surge() -> Decimal:
    return _decimal(getattr(settings, "MAX_SURGE_MULTIPLIER", "1.50"))


def time_surge(when) -> Decimal:
    """One time factor only: rush hour, else late night, else weekend."""
    hour = when.hour
    if 7 <= hour <= 9 or 17 <= hour <= 19:
        return SURGE_RUSH_HOUR
    if hour >= 22 or hour <= 6:
        return SURGE_LATE_NIGHT
    if when.weekday() >= 5:
        return SURGE_WEEKEND
    return Decimal("1")


def demand_surge(demand: int, supply: int) -> Decimal:
    if demand < MIN_DEMAND_FOR_SURGE:
        return Decimal("1")
    for threshold, factor in DEMAND_SURGE_STEPS:
        if not supply or Decimal(demand) / Decimal(supply) >= threshold:
            return factor
    return Decimal("1")


def compute_surge(supply: int, demand: int, when) -> Decimal:
    """
    Surge factor from nearby supply and demand at ``when``.

    With no drivers around a flat SURGE_NO_SUPPLY applies. The time factor
    needs at least MIN_DRIVERS_FOR_TIME_SURGE drivers. The result is capped
    at MAX_SURGE_MULTIPLIER.
    """
    if supply == 0:
        return SURGE_NO_SUPPLY

    surge = time_surge(when) if supply >= MIN_DRIVERS_FOR_TIME_SURGE else Decimal("1")
    surge *= demand_surge(demand, supply)
    return min(surge, max_surge()).quantize(CENTS, rounding=ROUND_HALF_UP)


def current_surge(pickup, when=None) -> Decimal:
    """
    Surge locked into a booking requested at ``pickup``.

    Supply is the available drivers within DISPATCH_SEARCH_RADIUS_METERS;
    demand is the pending or assigned bookings picked up in the same radius
    during the last SURGE_DEMAND_WINDOW_MINUTES.
    """
    from bookings.models import Booking, BookingStatus
    from common.utils import Coordinate, find_points_within_radius
    from drivers.services import DriverQuery, find_available_drivers

    moment = timezone.localtime(when or timezone.now())
    radius = getattr(settings, "DISPATCH_SEARCH_RADIUS_METERS", 15000)
    window = getattr(settings, "SURGE_DEMAND_WINDOW_MINUTES", 30)

    drivers = find_available_drivers(DriverQuery(near=pickup, within_meters=radius))
    supply = len(find_points_within_radius(pickup, [(d.location, d) for d in drivers], radius))

    recent = Booking.objects.filter(
        status__in=[BookingStatus.PENDING, BookingStatus.DRIVER_ASSIGNED],
        requested_at__gte=moment - timedelta(minutes=window),
    ).values_list("pickup_latitude", "pickup_longitude")
    demand = len(find_points_within_radius(
        pickup, [(Coordinate(lat, lon), None) for lat, lon in recent], radius,
    ))

    surge = compute_surge(supply, demand, moment)
    logger.info("Surge at (%.5f, %.5f): supply=%d demand=%d -> %s", pickup.latitude, pickup.longitude, supply, demand, surge)
    return surge
