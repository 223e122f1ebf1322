"""Tests for structured logging."""

import json
import logging
from pathlib import Path

import structlog

from coderecall.config.models import LoggingConfig, LogOutputConfig
from coderecall.core.logging import (
    clear_request_id,
    configure_logging,
    get_log_file_path,
    get_logger,
    get_request_id,
    set_request_id,
)
from coderecall.core.progress import suppress_console_logs


class TestRequestIdCorrelation:
    """Request ID context variable tests."""

    def setup_method(self) -> None:
        """Clear request ID before each test."""
        clear_request_id()

    def test_given_request_id_when_set_then_can_retrieve(self) -> None:
        """Request ID can be set and retrieved."""
        # Given
        request_id = "test-123"

        # When
        result = set_request_id(request_id)

        # Then
        assert result == request_id
        assert get_request_id() == request_id

    def test_given_no_id_when_set_then_generates_short_hex(self) -> None:
        """Set generates a UUID-based ID when none provided."""
        # When
        rid = set_request_id()

        # Then
        assert len(rid) == 12
        int(rid, 16)

    def test_given_set_id_when_clear_then_removes_id(self) -> None:
        """Clear removes the current request ID."""
        # Given
        set_request_id("to-clear")

        # When
        clear_request_id()

        # Then
        assert get_request_id() is None


class TestLoggingConfiguration:
    """Logging configuration tests."""

    def setup_method(self) -> None:
        """Reset structlog and stdlib logging before each test."""
        structlog.reset_defaults()
        logging.getLogger().handlers.clear()
        clear_request_id()

    def teardown_method(self) -> None:
        logging.getLogger().handlers.clear()
        clear_request_id()

    def test_given_file_output_when_log_then_json_lines_written(self, tmp_path: Path) -> None:
        """JSON file output carries event, fields, level and timestamp."""
        # Given
        log_file = tmp_path / "logs" / "coderecall.log"
        config = LoggingConfig(
            level="INFO",
            outputs=[LogOutputConfig(format="json", destination=str(log_file))],
        )
        configure_logging(config=config)

        # When
        get_logger("test").info("indexer.started", workspace="/w")

        # Then
        data = json.loads(log_file.read_text().strip().splitlines()[-1])
        assert data["event"] == "indexer.started"
        assert data["workspace"] == "/w"
        assert data["level"] == "info"
        assert "timestamp" in data
        assert get_log_file_path() == log_file

    def test_given_request_id_when_log_then_included(self, tmp_path: Path) -> None:
        # Given
        log_file = tmp_path / "req.log"
        configure_logging(
            config=LoggingConfig(outputs=[LogOutputConfig(format="json", destination=str(log_file))])
        )
        set_request_id("abc123")

        # When
        get_logger().info("with.request")

        # Then
        data = json.loads(log_file.read_text().strip().splitlines()[-1])
        assert data["request_id"] == "abc123"

    def test_given_config_object_when_configure_then_takes_precedence(self, tmp_path: Path) -> None:
        """LoggingConfig object takes precedence over simple params."""
        # Given
        log_file = tmp_path / "test.log"
        config = LoggingConfig(
            level="DEBUG",
            outputs=[LogOutputConfig(format="json", destination=str(log_file))],
        )

        # When
        configure_logging(config=config, json_format=False, level="ERROR")
        get_logger().debug("debug msg")

        # Then
        assert "debug msg" in log_file.read_text()

    def test_given_per_output_levels_when_log_then_filtered(self, tmp_path: Path) -> None:
        """Each output only receives records at or above its own level."""
        # Given
        debug_file = tmp_path / "debug.log"
        error_file = tmp_path / "error.log"
        config = LoggingConfig(
            level="DEBUG",
            outputs=[
                LogOutputConfig(format="json", destination=str(debug_file), level="DEBUG"),
                LogOutputConfig(format="json", destination=str(error_file), level="ERROR"),
            ],
        )
        configure_logging(config=config)
        logger = get_logger()

        # When
        logger.debug("detail")
        logger.error("failure")

        # Then
        assert "detail" in debug_file.read_text()
        assert "failure" in debug_file.read_text()
        assert "detail" not in error_file.read_text()
        assert "failure" in error_file.read_text()

    def test_given_console_suppressed_when_log_then_file_still_receives(self, tmp_path: Path) -> None:
        # Given
        log_file = tmp_path / "both.log"
        config = LoggingConfig(
            outputs=[
                LogOutputConfig(format="console", destination="stderr"),
                LogOutputConfig(format="json", destination=str(log_file)),
            ],
        )
        configure_logging(config=config)

        # When
        with suppress_console_logs():
            get_logger().info("during.progress")

        # Then
        assert "during.progress" in log_file.read_text()
