"""Logging configuration for the application.

Routes structlog and stdlib logging through one pipeline so that the API
process and the Celery worker/beat processes emit the same structured events,
with OpenTelemetry trace ids attached when a span is active.
"""

import logging
import sys
from collections.abc import MutableMapping
from typing import Any

import structlog
from opentelemetry import trace

# Loggers that are too chatty at INFO for an alert relay
NOISY_LOGGERS = (
    "httpx",
    "httpcore",
    "aiosmtplib",
    "celery.app.trace",
    "opentelemetry.instrumentation.celery",
    "opentelemetry.exporter.otlp.proto.http",
    "uvicorn.access",  # Replaced by AccessLoggingMiddleware
)

# structlog adds _logger to the record, which the OTLP exporter cannot serialize
OTEL_DROP_ATTRIBUTES = ("_logger", "websocket")


def _add_otel_context(
    logger: logging.Logger, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Add OpenTelemetry trace and span IDs to log events for correlation."""
    span = trace.get_current_span()
    if span and span.is_recording():
        ctx = span.get_span_context()
        event_dict["trace_id"] = format(ctx.trace_id, "032x")
        event_dict["span_id"] = format(ctx.span_id, "016x")
    return event_dict


def build_otel_handler(level: int, logger_provider: Any) -> logging.Handler:  # noqa: ANN401
    """
    Build an OTLP logging handler that drops non-serializable record attributes.

    The OTEL SDK is imported lazily so that processes with OTEL disabled never
    load the exporter stack.

    Args:
        level: Minimum stdlib level exported over OTLP
        logger_provider: Configured OTEL LoggerProvider

    Returns:
        Logging handler bound to the provider
    """
    from opentelemetry.sdk._logs import LoggingHandler  # noqa: PLC0415

    class FilteredLoggingHandler(LoggingHandler):
        @staticmethod
        def _get_attributes(record: logging.LogRecord) -> Any:  # noqa: ANN401
            attributes = LoggingHandler._get_attributes(record)
            if attributes is None:
                return None
            filtered = dict(attributes)
            for attr in OTEL_DROP_ATTRIBUTES:
                filtered.pop(attr, None)
            return filtered

    return FilteredLoggingHandler(level=level, logger_provider=logger_provider)


def configure_logging(*, log_level: str = "INFO") -> None:
    """
    Configure structlog to integrate with Python's logging module.

    DEBUG level renders JSON (easier to grep in local runs), every other level
    uses the console renderer.

    Args:
        log_level: Log level string (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    normalized_level = log_level.upper()

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        _add_otel_context,
    ]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    if normalized_level == "DEBUG":
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, normalized_level))

    # Lazy import: telemetry imports this module's logger setup indirectly
    from sos_relay.core.config import settings  # noqa: PLC0415

    if settings.OTEL_ENABLED:
        from sos_relay.core.telemetry import get_logger_provider  # noqa: PLC0415

        if logger_provider := get_logger_provider():
            otel_handler = build_otel_handler(getattr(logging, settings.OTEL_LOG_LEVEL), logger_provider)
            root_logger.addHandler(otel_handler)
            structlog.get_logger(__name__).info(
                "otel_logging_handler_attached",
                level=settings.OTEL_LOG_LEVEL,
                endpoint=settings.OTEL_EXPORTER_OTLP_LOGS_ENDPOINT,
            )

    for logger_name in NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)
