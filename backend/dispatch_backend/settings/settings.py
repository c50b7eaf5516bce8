"""
Base settings for the dispatch backend.

Values come from the environment with development defaults. ``prod.py`` layers a
``.env`` file and Redis-backed services on top; ``test.py`` swaps in in-memory
backends.
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent.parent

SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "dev-only-insecure-key")
DEBUG = os.getenv("DJANGO_DEBUG", "true").lower() == "true"
ALLOWED_HOSTS = os.getenv("ALLOWED_HOSTS", "localhost,127.0.0.1").split(",")

INSTALLED_APPS = [
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "rest_framework",
    "channels",
    "accounts",
    "drivers",
    "zones",
    "bookings",
]

AUTH_USER_MODEL = "accounts.User"
DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

DATABASES = {
    "default": {
        "ENGINE": os.getenv("DB_ENGINE", "django.db.backends.sqlite3"),
        "NAME": os.getenv("DB_NAME", str(BASE_DIR / "db.sqlite3")),
        "USER": os.getenv("DB_USER", ""),
        "PASSWORD": os.getenv("DB_PASSWORD", ""),
        "HOST": os.getenv("DB_HOST", ""),
        "PORT": os.getenv("DB_PORT", ""),
    }
}

LANGUAGE_CODE = "en-us"
TIME_ZONE = os.getenv("TIME_ZONE", "Africa/Accra")
USE_TZ = True

# ---------------------- Channels / Cache / Celery ----------------------

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

CHANNEL_LAYERS = {
    "default": {
        "BACKEND": "channels.layers.InMemoryChannelLayer",
    }
}

CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "dispatch-backend",
    }
}

CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", REDIS_URL)
CELERY_RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", None)
CELERY_TASK_SERIALIZER = "json"
CELERY_ACCEPT_CONTENT = ["json"]
CELERY_TIMEZONE = TIME_ZONE

# ---------------------- Dispatch & pricing ----------------------

DISPATCH_TIMEOUT_SECONDS = int(os.getenv("DISPATCH_TIMEOUT_SECONDS", 60))
DISPATCH_SEARCH_RADIUS_METERS = int(os.getenv("DISPATCH_SEARCH_RADIUS_METERS", 15000))
DISPATCH_MAX_CANDIDATES = int(os.getenv("DISPATCH_MAX_CANDIDATES", 10))
DISPATCH_FANOUT_SIZE = int(os.getenv("DISPATCH_FANOUT_SIZE", 5))
DISPATCH_EXPANDED_RADIUS_METERS = int(os.getenv("DISPATCH_EXPANDED_RADIUS_METERS", 30000))
DISPATCH_EXPANDED_MAX_CANDIDATES = int(os.getenv("DISPATCH_EXPANDED_MAX_CANDIDATES", 8))
DISPATCH_SWEEP_GRACE_SECONDS = int(os.getenv("DISPATCH_SWEEP_GRACE_SECONDS", 15))
ACCEPTANCE_RADIUS_METERS = int(os.getenv("ACCEPTANCE_RADIUS_METERS", 15000))

DEFAULT_COMMISSION_RATE = os.getenv("DEFAULT_COMMISSION_RATE", "0.18")
INTER_REGIONAL_RATE_PER_KM = os.getenv("INTER_REGIONAL_RATE_PER_KM", "2.00")
MAX_ACTIVE_BOOKINGS = int(os.getenv("MAX_ACTIVE_BOOKINGS", 3))
ZONE_CACHE_TTL = int(os.getenv("ZONE_CACHE_TTL", 300))
MAX_SURGE_MULTIPLIER = os.getenv("MAX_SURGE_MULTIPLIER", "1.50")
SURGE_DEMAND_WINDOW_MINUTES = int(os.getenv("SURGE_DEMAND_WINDOW_MINUTES", 30))

PAYMENT_GATEWAY = os.getenv("PAYMENT_GATEWAY", "services.payments.DeferredCaptureGateway")

# ---------------------- Logging ----------------------

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "%(asctime)s %(levelname)s %(name)s: %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": "WARNING",
    },
    "loggers": {
        "services": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
        "bookings": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
        "drivers": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
        "zones": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
        "realtime": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
        "common": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
    },
}
