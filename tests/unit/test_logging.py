"""Tests for the lodestar.logging module."""

from __future__ import annotations

import logging
import os
from unittest.mock import patch

import structlog

from lodestar.logging import (
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
)


class TestConfigureLogging:
    """Tests for configure_logging function."""

    def test_configure_logging_default(self) -> None:
        """Test default logging configuration (console output)."""
        configure_logging()

        log = structlog.get_logger()
        assert log is not None

    def test_configure_logging_json_via_env(self) -> None:
        """Test JSON logging when LODESTAR_LOG_FORMAT=json."""
        with patch.dict(os.environ, {"LODESTAR_LOG_FORMAT": "json"}):
            configure_logging()

            log = structlog.get_logger()
            assert log is not None

    def test_configure_logging_custom_level(self) -> None:
        """Test setting custom log level."""
        configure_logging(level=logging.DEBUG)

        assert logging.getLogger().level == logging.DEBUG

    def test_configure_logging_level_from_env(self) -> None:
        """Test log level from LODESTAR_LOG_LEVEL env var."""
        with patch.dict(os.environ, {"LODESTAR_LOG_LEVEL": "WARNING"}):
            configure_logging()

            assert logging.getLogger().level == logging.WARNING

    def test_configure_logging_invalid_level_falls_back(self) -> None:
        """Test that an unknown level name falls back to INFO."""
        with patch.dict(os.environ, {"LODESTAR_LOG_LEVEL": "CHATTY"}):
            configure_logging()

            assert logging.getLogger().level == logging.INFO

    def test_configure_logging_replaces_handlers(self) -> None:
        """Test that repeated calls do not stack handlers."""
        configure_logging()
        configure_logging()

        assert len(logging.getLogger().handlers) == 1


class TestGetLogger:
    """Tests for get_logger function."""

    def test_get_logger_with_name(self) -> None:
        log = get_logger("lodestar.repository")
        assert log is not None

    def test_get_logger_can_bind(self) -> None:
        log = get_logger().bind(root="/work/trunk", operation="Status")
        assert log is not None


class TestContextBinding:
    """Tests for bind_context and clear_context."""

    def test_bind_and_clear_context(self) -> None:
        bind_context(root="/work/trunk")
        assert structlog.contextvars.get_contextvars()["root"] == "/work/trunk"

        clear_context()
        assert "root" not in structlog.contextvars.get_contextvars()
