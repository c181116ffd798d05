import os

from celery import Celery
from celery.schedules import crontab  # type: ignore

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings.dev")

app = Celery("booking_engine")

app.config_from_object("django.conf:settings", namespace="CELERY")
app.autodiscover_tasks()


# ============================================================================
# CELERY BEAT SCHEDULE (Periodic Tasks)
# ============================================================================

app.conf.beat_schedule = {
    # Cancel PENDING bookings whose payment window has passed, every 5 minutes
    "release-abandoned-holds": {
        "task": "bookings.release_abandoned_holds",
        "schedule": crontab(minute="*/5"),
        "options": {"expires": 240},
    },
}
