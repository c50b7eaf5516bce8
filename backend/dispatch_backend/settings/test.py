from .settings import *  # noqa: F401,F403

DEBUG = False

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]

CHANNEL_LAYERS = {
    "default": {
        "BACKEND": "channels.layers.InMemoryChannelLayer",
    }
}

# Zone lookups hit the database on every call; cache behaviour is tested explicitly
CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.dummy.DummyCache",
    }
}

CELERY_BROKER_URL = "memory://"
CELERY_TASK_ALWAYS_EAGER = False

LOGGING["loggers"]["services"]["level"] = "WARNING"  # noqa: F405
