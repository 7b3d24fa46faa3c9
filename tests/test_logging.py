"""Tests for Courier structured logging."""

import logging

import structlog

from courier.logging import (
    DELIVERY_CONTEXT_KEYS,
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    unbind_context,
)


class TestConfigureLogging:
    """Tests for logging configuration."""

    def test_configure_with_defaults(self):
        """Should configure with INFO level and JSON format by default."""
        configure_logging()
        get_logger("test").info("test message")

    def test_configure_with_text_format(self):
        """Should accept text format for development."""
        configure_logging(level="DEBUG", format="text")
        get_logger("test").debug("text format message", attempt_id="dlv_1")

    def test_configure_multiple_times(self):
        """Should handle multiple configuration calls."""
        configure_logging(level="INFO")
        configure_logging(level="WARNING", format="json")
        get_logger("test").warning("after reconfigure")

    def test_unknown_level_falls_back(self):
        """An unknown level name should not raise."""
        configure_logging(level="VERBOSE")
        get_logger("test").info("still works")

    def test_http_client_loggers_quieted(self):
        """httpx request lines should not duplicate delivery records."""
        configure_logging(level="INFO")
        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("httpcore").level == logging.WARNING

    def test_http_client_loggers_follow_stricter_level(self):
        """A level above WARNING should apply to the quieted loggers too."""
        configure_logging(level="ERROR")
        assert logging.getLogger("httpx").level == logging.ERROR


class TestGetLogger:
    """Tests for logger creation."""

    def test_get_logger_with_name(self):
        """Should create logger with specified name."""
        assert get_logger("courier.webhooks") is not None

    def test_loggers_are_callable(self):
        """Should return loggers with the usual methods."""
        logger = get_logger("test")
        assert callable(getattr(logger, "info", None))
        assert callable(getattr(logger, "exception", None))


class TestContextBinding:
    """Tests for context variable binding."""

    def setup_method(self):
        """Clear context before each test."""
        clear_context()

    def teardown_method(self):
        """Clear context after each test."""
        clear_context()

    def test_bind_context(self):
        """Bound values should appear in the context."""
        bind_context(attempt_id="dlv_1", subscription_id="sub_1")
        context = structlog.contextvars.get_contextvars()
        assert context["attempt_id"] == "dlv_1"
        assert context["subscription_id"] == "sub_1"

    def test_unbind_context(self):
        """Unbound keys should be removed, others kept."""
        bind_context(attempt_id="dlv_1", event_id="evt_1")
        unbind_context("attempt_id")
        context = structlog.contextvars.get_contextvars()
        assert "attempt_id" not in context
        assert context["event_id"] == "evt_1"

    def test_clear_context(self):
        """clear_context should remove everything."""
        bind_context(attempt_id="dlv_1")
        clear_context()
        assert structlog.contextvars.get_contextvars() == {}

    def test_unbind_delivery_context(self):
        """Unbinding the delivery keys should keep unrelated context."""
        bind_context(
            attempt_id="dlv_1", subscription_id="sub_1", event_id="evt_1", try_number=2, env="test"
        )
        unbind_context(*DELIVERY_CONTEXT_KEYS)
        assert structlog.contextvars.get_contextvars() == {"env": "test"}
