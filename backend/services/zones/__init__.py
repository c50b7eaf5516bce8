"""
Service zone resolver.

This module handles:
    - Mapping coordinates to service zones (circle and polygon geometry)
    - Inter-regional route permission, surcharge and approval flags
    - Zone hierarchy lookups and driver zone assignment
"""

from .cache import ZoneCache, zone_cache
from .resolver import (
    InterRegionalEvaluation,
    assign_driver_to_zone,
    evaluate_inter_regional,
    get_zone_hierarchy,
    inter_regional_surcharge,
    resolve_zone,
)

__all__ = [
    "ZoneCache",
    "zone_cache",
    "InterRegionalEvaluation",
    "assign_driver_to_zone",
    "evaluate_inter_regional",
    "get_zone_hierarchy",
    "inter_regional_surcharge",
    "resolve_zone",
]
