"""Test settings.

In-memory SQLite, eager Celery and quiet logging. Apps ship no migrations,
so the test database is created straight from the models.
"""

from .base import *  # noqa: F401,F403

DEBUG = False

SECRET_KEY = 'test-secret-key'

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
    }
}

CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True
CELERY_BROKER_URL = 'memory://'
CELERY_RESULT_BACKEND = 'cache+memory://'

NOTIFICATIONS_WEBHOOK_URL = ''

BOOKING_ENGINE = {
    **BOOKING_ENGINE,  # noqa: F405
    'CONFLICT_RETRY_BASE_DELAY': 0.001,
}

LOGGING["handlers"]["console"]["level"] = "WARNING"  # noqa: F405
