import os

os.environ.setdefault("DJANGO_ENV", "test")

from config.settings import *  # noqa: E402,F401,F403
from config.settings import LOGGING, REST_FRAMEWORK, _db_config_from_url  # noqa: E402

test_database_url = os.getenv("TEST_DATABASE_URL", "").strip()
if test_database_url:
    DATABASES = {"default": _db_config_from_url(test_database_url)}
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": ":memory:",
        }
    }

PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]

REST_FRAMEWORK = {
    **REST_FRAMEWORK,
    "DEFAULT_THROTTLE_CLASSES": [],
}

LOGGING = {
    **LOGGING,
    "root": {"handlers": ["console"], "level": "WARNING"},
    "loggers": {
        name: {**config, "level": "WARNING"}
        for name, config in LOGGING["loggers"].items()
    },
}
