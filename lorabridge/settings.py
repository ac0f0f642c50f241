"""
Django settings for the lorabridge service.

Every LORABRIDGE_* value can be overridden from the environment.
"""

import json
import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY", "lorabridge-insecure-dev-key")
DEBUG = _env_bool("DJANGO_DEBUG", False)
ALLOWED_HOSTS = [host for host in os.environ.get("DJANGO_ALLOWED_HOSTS", "*").split(",") if host]

INSTALLED_APPS: list = []

MIDDLEWARE = [
    "django.middleware.common.CommonMiddleware",
]

ROOT_URLCONF = "lorabridge.urls"
ASGI_APPLICATION = "lorabridge.asgi.application"

# Devices and groups live in the external provisioning store.
DATABASES = {}

USE_TZ = True
TIME_ZONE = "UTC"

LOG_LEVEL = os.environ.get("LORABRIDGE_LOG_LEVEL", "INFO")

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {
            "format": "%(asctime)s %(levelname)s %(name)s %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "default",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": LOG_LEVEL,
    },
    "loggers": {
        # Paho logs at DEBUG through our adapters only when asked to.
        "paho": {"level": "WARNING"},
    },
}

# MQTT transport
LORABRIDGE_MQTT_KEEPALIVE = int(os.environ.get("LORABRIDGE_MQTT_KEEPALIVE", "60"))
LORABRIDGE_MQTT_ACK_TIMEOUT = float(os.environ.get("LORABRIDGE_MQTT_ACK_TIMEOUT", "10"))
LORABRIDGE_MQTT_CONNECT_ATTEMPTS = int(os.environ.get("LORABRIDGE_MQTT_CONNECT_ATTEMPTS", "3"))
LORABRIDGE_MQTT_RETRY_BASE_DELAY = float(os.environ.get("LORABRIDGE_MQTT_RETRY_BASE_DELAY", "1"))
LORABRIDGE_MQTT_RETRY_MAX_DELAY = float(os.environ.get("LORABRIDGE_MQTT_RETRY_MAX_DELAY", "60"))

# External collaborators, as dotted paths to zero-argument factories.
LORABRIDGE_PROVISIONING_STORE = os.environ.get(
    "LORABRIDGE_PROVISIONING_STORE", "apps.repositories.memory.InMemoryProvisioningStore"
)
LORABRIDGE_TRANSLATOR = os.environ.get(
    "LORABRIDGE_TRANSLATOR", "apps.repositories.memory.JSONObjectTranslator"
)
LORABRIDGE_CONTEXT_UPDATER = os.environ.get(
    "LORABRIDGE_CONTEXT_UPDATER", "apps.repositories.memory.LoggingContextUpdater"
)

# Bootstrap
LORABRIDGE_GROUP_PAGE_SIZE = int(os.environ.get("LORABRIDGE_GROUP_PAGE_SIZE", "100"))
LORABRIDGE_TYPES_FILE = os.environ.get("LORABRIDGE_TYPES_FILE") or None
LORABRIDGE_TYPES = json.loads(os.environ.get("LORABRIDGE_TYPES", "{}"))
