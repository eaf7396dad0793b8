"""Tests for logging configuration module."""

import logging
import sys
from unittest.mock import MagicMock, patch

from opentelemetry import trace

from sos_relay.core.logging import NOISY_LOGGERS, _add_otel_context, configure_logging


class TestConfigureLogging:
    def test_sets_log_level(self) -> None:
        configure_logging(log_level="DEBUG")
        assert logging.getLogger().level == logging.DEBUG

        configure_logging(log_level="WARNING")
        assert logging.getLogger().level == logging.WARNING

    def test_default_level_is_info(self) -> None:
        configure_logging()
        assert logging.getLogger().level == logging.INFO

    def test_level_is_case_insensitive(self) -> None:
        configure_logging(log_level="Debug")
        assert logging.getLogger().level == logging.DEBUG

    def test_noisy_loggers_set_to_warning(self) -> None:
        configure_logging(log_level="DEBUG")

        for name in NOISY_LOGGERS:
            assert logging.getLogger(name).level == logging.WARNING

    def test_replaces_existing_handlers(self) -> None:
        root_logger = logging.getLogger()
        dummy_handler = logging.StreamHandler()
        root_logger.addHandler(dummy_handler)

        with patch("sos_relay.core.config.settings.OTEL_ENABLED", False):
            configure_logging()

        assert dummy_handler not in root_logger.handlers
        assert len(root_logger.handlers) == 1
        assert root_logger.handlers[0].stream == sys.stdout  # type: ignore[attr-defined]

    def test_attaches_otel_handler_when_provider_available(self) -> None:
        sentinel_handler = logging.NullHandler()

        with (
            patch("sos_relay.core.config.settings.OTEL_ENABLED", True),
            patch("sos_relay.core.telemetry.get_logger_provider", return_value=MagicMock()),
            patch("sos_relay.core.logging.build_otel_handler", return_value=sentinel_handler),
        ):
            configure_logging()

        assert sentinel_handler in logging.getLogger().handlers

        with patch("sos_relay.core.config.settings.OTEL_ENABLED", False):
            configure_logging(log_level="WARNING")


class TestOtelContext:
    def test_adds_ids_when_span_recording(self) -> None:
        span = MagicMock()
        span.is_recording.return_value = True
        span.get_span_context.return_value = MagicMock(trace_id=1, span_id=2)

        with patch.object(trace, "get_current_span", return_value=span):
            event = _add_otel_context(MagicMock(), "info", {"event": "sos_raised"})

        assert event["trace_id"] == f"{1:032x}"
        assert event["span_id"] == f"{2:016x}"

    def test_leaves_event_alone_without_span(self) -> None:
        with patch.object(trace, "get_current_span", return_value=trace.INVALID_SPAN):
            event = _add_otel_context(MagicMock(), "info", {"event": "sos_raised"})

        assert event == {"event": "sos_raised"}
