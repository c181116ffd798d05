"""Base settings for all environments.

This configuration file defines the common settings used in development,
production and test runs of the booking engine. It integrates Django Rest
Framework (serializers for the plain-data surface), Celery (sweeper and
notification tasks) and structlog. Environment-specific settings can be
overridden in `dev.py`, `prod.py` or `test.py`.
"""

import os
from pathlib import Path

import structlog
from django.core.exceptions import ImproperlyConfigured  # type: ignore

# Optionally load .env file if using python-dotenv
from dotenv import load_dotenv

# Build paths inside the project like this: BASE_DIR / 'subdir'.
BASE_DIR = Path(__file__).resolve().parent.parent.parent

load_dotenv(BASE_DIR / '.env')


def get_env(var_name: str, default=None, required: bool = False):
    value = os.environ.get(var_name, default)
    if required and value in (None, ''):
        raise ImproperlyConfigured(f"Missing required environment variable: {var_name}")
    return value


# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = get_env('DJANGO_SECRET_KEY', 'replace-me-in-production')

# SECURITY WARNING: don't run with debug turned on in production!
DEBUG = False

ALLOWED_HOSTS: list[str] = get_env('DJANGO_ALLOWED_HOSTS', '*').split(',')

# Application definition

INSTALLED_APPS = [
    'django.contrib.contenttypes',
    # Third‑party apps
    'rest_framework',
    # Domain apps
    'apps.catalog',
    'apps.inventory',
    'apps.bookings',
    'apps.notifications.apps.NotificationsConfig',
]

# Database

DATABASES = {
    'default': {
        'ENGINE': get_env('DB_ENGINE', 'django.db.backends.sqlite3'),
        'NAME': get_env('DB_NAME', BASE_DIR / 'db.sqlite3'),
        'USER': get_env('DB_USER', ''),
        'PASSWORD': get_env('DB_PASSWORD', ''),
        'HOST': get_env('DB_HOST', ''),
        'PORT': get_env('DB_PORT', ''),
    }
}

# Internationalization

LANGUAGE_CODE = 'en-us'

TIME_ZONE = 'UTC'

USE_I18N = True

USE_TZ = True

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# Django Rest Framework (serializers only; the engine exposes no views)
REST_FRAMEWORK = {
    'UNAUTHENTICATED_USER': None,
}

# Booking engine tunables, read through apps.bookings.conf.engine_settings()
BOOKING_ENGINE = {
    'PLATFORM_FEE_RATE': get_env('BOOKING_PLATFORM_FEE_RATE', '0.05'),
    'TAX_RATE': get_env('BOOKING_TAX_RATE', '0.18'),
    'REFERENCE_MAX_ATTEMPTS': int(get_env('BOOKING_REFERENCE_MAX_ATTEMPTS', 5)),
    'CONFLICT_RETRY_ATTEMPTS': int(get_env('BOOKING_CONFLICT_RETRY_ATTEMPTS', 3)),
    'CONFLICT_RETRY_BASE_DELAY': float(get_env('BOOKING_CONFLICT_RETRY_BASE_DELAY', 0.05)),
    'CELL_LOCK_TIMEOUT': float(get_env('BOOKING_CELL_LOCK_TIMEOUT', 5.0)),
    # Payment deadline for PENDING bookings (24 hours)
    'PENDING_HOLD_TTL_MINUTES': int(get_env('BOOKING_PENDING_HOLD_TTL_MINUTES', 24 * 60)),
    'DEFAULT_CURRENCY': get_env('BOOKING_DEFAULT_CURRENCY', 'USD'),
}

# Notification collaborator
NOTIFICATIONS_WEBHOOK_URL = get_env('NOTIFICATIONS_WEBHOOK_URL', '')
NOTIFICATIONS_WEBHOOK_TIMEOUT = float(get_env('NOTIFICATIONS_WEBHOOK_TIMEOUT', 5))

# Celery configuration (Broker and Result backend handled in environment)
CELERY_BROKER_URL = get_env('CELERY_BROKER_URL', 'redis://localhost:6379/0')
CELERY_RESULT_BACKEND = get_env('CELERY_RESULT_BACKEND', 'redis://localhost:6379/0')
CELERY_TASK_SERIALIZER = 'json'
CELERY_ACCEPT_CONTENT = ['json']
CELERY_TIMEZONE = TIME_ZONE

# Structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

LOG_LEVEL = get_env('LOG_LEVEL', 'INFO')

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "json": {
            "()": "structlog.stdlib.ProcessorFormatter",
            "processor": structlog.processors.JSONRenderer(),
            "foreign_pre_chain": [
                structlog.stdlib.add_logger_name,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.add_log_level,
            ],
        }
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "json",
            "level": LOG_LEVEL,
        }
    },
    "root": {"handlers": ["console"], "level": "WARNING"},
    "loggers": {
        "django": {"handlers": ["console"], "level": "INFO", "propagate": False},
        "apps": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
        "shared": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
    },
}
