"""
Cached view of the active service zones.

Zones are reference data that change rarely, so the resolver reads them from
Django's cache framework instead of querying on every lookup. Entries expire
after ``ZONE_CACHE_TTL`` seconds and are dropped immediately whenever a zone or
its connections change (see ``zones.signals``).
"""

import logging
from typing import List, Optional

from django.conf import settings
from django.core.cache import caches

logger = logging.getLogger(__name__)


class ZoneCache:
    key = "zones:active"

    def __init__(self, alias: str = "default", ttl: Optional[int] = None):
        self.alias = alias
        self._ttl = ttl

    @property
    def ttl(self) -> int:
        if self._ttl is not None:
            return self._ttl
        return getattr(settings, "ZONE_CACHE_TTL", 300)

    @property
    def backend(self):
        return caches[self.alias]

    def active_zones(self) -> List:
        """Active zones with their connections prefetched, highest priority first."""
        zones = self.backend.get(self.key)
        if zones is None:
            zones = self._load()
            self.backend.set(self.key, zones, self.ttl)
            logger.debug("Zone cache refreshed with %d zones", len(zones))
        return zones

    def invalidate(self) -> None:
        self.backend.delete(self.key)
        logger.debug("Zone cache invalidated")

    def _load(self) -> List:
        from zones.models import ServiceZone

        return list(
            ServiceZone.objects.filter(is_active=True)
            .prefetch_related("connected_zones")
            .order_by("-priority", "id")
        )


zone_cache = ZoneCache()
