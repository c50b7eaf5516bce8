from django.db.models.signals import m2m_changed, post_delete, post_save
from django.dispatch import receiver

from services.zones.cache import zone_cache
from .models import ServiceZone


@receiver(post_save, sender=ServiceZone)
@receiver(post_delete, sender=ServiceZone)
def invalidate_zone_cache(sender, **kwargs):
    zone_cache.invalidate()


@receiver(m2m_changed, sender=ServiceZone.connected_zones.through)
def invalidate_zone_cache_on_connections(sender, action, **kwargs):
    if action in ("post_add", "post_remove", "post_clear"):
        zone_cache.invalidate()
