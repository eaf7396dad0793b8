"""Tests for Celery Beat schedule configuration."""

from sos_relay.celery import schedules
from sos_relay.celery.app import EXPIRY_TASK_TIME_LIMIT, celery_app
from sos_relay.core.config import settings

from celery.schedules import crontab


class TestCelerySchedulesImport:
    def test_beat_schedule_is_populated(self):
        """An empty beat_schedule means schedules.py was never imported."""
        assert schedules is not None
        assert len(celery_app.conf.beat_schedule) > 0, "beat_schedule is empty - schedules module may not be imported"

    def test_expiry_task_registered(self):
        assert "sos_relay.celery.tasks.expire_stale_alerts" in celery_app.tasks


class TestExpirySchedule:
    def test_expiry_entry(self):
        entry = celery_app.conf.beat_schedule["expire-stale-alerts"]

        assert entry["task"] == "sos_relay.celery.tasks.expire_stale_alerts"
        assert isinstance(entry["schedule"], crontab)
        assert entry["options"]["expires"] == 3000

    def test_default_is_top_of_every_hour(self):
        schedule = celery_app.conf.beat_schedule["expire-stale-alerts"]["schedule"]

        assert schedule.minute == {0}
        assert schedule.hour == set(range(24))

    def test_schedule_runs_in_configured_timezone(self):
        assert celery_app.conf.timezone == settings.SOS_EXPIRY_TIMEZONE == "Asia/Kolkata"
        assert celery_app.conf.enable_utc is True

    def test_time_limits(self):
        assert celery_app.conf.task_time_limit == EXPIRY_TASK_TIME_LIMIT
        assert celery_app.conf.task_soft_time_limit < EXPIRY_TASK_TIME_LIMIT
