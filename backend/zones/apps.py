from django.apps import AppConfig


class ZonesConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'zones'

    def ready(self):
        # Zone cache invalidation hooks
        from . import signals  # noqa: F401
