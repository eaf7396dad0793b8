"""Celery Beat periodic task schedules.

Scheduled tasks:
- expire_stale_alerts: crontab ``SOS_EXPIRY_CRON_MINUTE`` / ``SOS_EXPIRY_CRON_HOUR``
  in ``SOS_EXPIRY_TIMEZONE`` (default: top of every hour, Asia/Kolkata)
"""

from celery.schedules import crontab

from sos_relay.celery.app import celery_app
from sos_relay.core.config import settings

EXPIRY_SCHEDULE = crontab(
    minute=settings.SOS_EXPIRY_CRON_MINUTE,
    hour=settings.SOS_EXPIRY_CRON_HOUR,
)

celery_app.conf.beat_schedule = {
    "expire-stale-alerts": {
        "task": "sos_relay.celery.tasks.expire_stale_alerts",
        "schedule": EXPIRY_SCHEDULE,
        "options": {
            # A tick nobody picked up before the next one is redundant
            "expires": 3000,
        },
    },
}
