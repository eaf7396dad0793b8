"""Celery application instance and configuration."""

import structlog
from celery.signals import beat_init
from opentelemetry import trace

from sos_relay.core.config import require_config, settings
from sos_relay.core.logging import configure_logging
from celery import Celery

logger = structlog.get_logger(__name__)

# Route worker and beat logs through structlog
configure_logging(log_level=settings.LOG_LEVEL)

require_config("CELERY_BROKER_URL", "CELERY_RESULT_BACKEND")

# Hard limit for a single sweep; also the TTL of the sweep lock
EXPIRY_TASK_TIME_LIMIT = 300

celery_app = Celery("sos_relay")

celery_app.conf.update(
    broker_url=settings.CELERY_BROKER_URL,
    result_backend=settings.CELERY_RESULT_BACKEND,
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    # Crontab entries are read in the sweeper's timezone
    timezone=settings.SOS_EXPIRY_TIMEZONE,
    enable_utc=True,
    task_track_started=True,
    task_time_limit=EXPIRY_TASK_TIME_LIMIT,
    task_soft_time_limit=EXPIRY_TASK_TIME_LIMIT - 60,
    # Don't hijack root logger - let structlog handle it
    worker_hijack_root_logger=False,
)

# TracerProvider is set in worker_process_init (database.py) after fork
if settings.OTEL_ENABLED:
    from opentelemetry.instrumentation.celery import CeleryInstrumentor

    CeleryInstrumentor().instrument()
    logger.info("celery_otel_instrumentation_enabled")


@beat_init.connect
def init_beat_otel(
    **kwargs: object,
) -> None:
    """Give the beat process its own tracer and logger providers."""
    if not settings.OTEL_ENABLED:
        return
    try:
        from sos_relay.core.telemetry import (  # noqa: PLC0415  # Lazy import for fork-safety
            get_tracer_provider,
            set_logger_provider,
        )

        if provider := get_tracer_provider():
            trace.set_tracer_provider(provider)
            logger.info("beat_otel_tracer_provider_initialized")

        set_logger_provider()
        logger.info("beat_otel_logger_provider_initialized")
    except Exception:
        # Beat keeps scheduling without telemetry
        logger.exception("beat_otel_initialization_failed")


# Populates beat_schedule and registers the tasks; must stay below celery_app
from sos_relay.celery import (  # noqa: E402
    schedules,  # noqa: F401
    tasks,  # noqa: F401
)
