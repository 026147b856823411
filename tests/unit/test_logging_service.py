"""Tests for logging service configuration."""

import logging
import re
import tempfile
from pathlib import Path
from unittest.mock import patch

from condo_ledger.services.logging import get_log_level, setup_server_logging


class TestServerLogging:
    """Test server logging configuration."""

    def setup_method(self):
        """Save original handlers before each test."""
        self.root_logger = logging.getLogger()
        self.original_handlers = self.root_logger.handlers.copy()
        self.original_level = self.root_logger.level

    def teardown_method(self):
        """Restore original handlers after each test."""
        self.root_logger = logging.getLogger()
        for handler in self.root_logger.handlers[:]:
            handler.close()
            self.root_logger.removeHandler(handler)
        for handler in self.original_handlers:
            self.root_logger.addHandler(handler)
        self.root_logger.setLevel(self.original_level)

    def test_setup_server_logging_creates_log_directory(self) -> None:
        """Verify setup_server_logging creates logs directory if missing."""
        with tempfile.TemporaryDirectory() as temp_dir:
            log_file = Path(temp_dir) / "test_logs" / "server.log"
            assert not log_file.parent.exists()

            setup_server_logging(str(log_file))

            assert log_file.parent.exists()

    def test_setup_server_logging_creates_handlers(self) -> None:
        """Verify setup_server_logging creates both stdout and file handlers."""
        with tempfile.TemporaryDirectory() as temp_dir:
            log_file = Path(temp_dir) / "server.log"

            setup_server_logging(str(log_file))

            assert len(self.root_logger.handlers) == 2

    def test_setup_server_logging_is_idempotent(self) -> None:
        """Verify repeated setup does not duplicate handlers."""
        with tempfile.TemporaryDirectory() as temp_dir:
            log_file = Path(temp_dir) / "server.log"

            setup_server_logging(str(log_file))
            setup_server_logging(str(log_file))

            assert len(self.root_logger.handlers) == 2

    def test_setup_server_logging_sets_info_level(self) -> None:
        """Verify setup_server_logging sets log level to INFO by default."""
        with tempfile.TemporaryDirectory() as temp_dir:
            log_file = Path(temp_dir) / "server.log"

            with patch.dict("os.environ", {"LOG_LEVEL": "INFO"}, clear=False):
                setup_server_logging(str(log_file))

                assert self.root_logger.level == logging.INFO
                for handler in self.root_logger.handlers:
                    assert handler.level == logging.INFO

    def test_explicit_level_overrides_environment(self) -> None:
        """Verify the level argument wins over LOG_LEVEL."""
        with tempfile.TemporaryDirectory() as temp_dir:
            log_file = Path(temp_dir) / "server.log"

            with patch.dict("os.environ", {"LOG_LEVEL": "ERROR"}, clear=False):
                setup_server_logging(str(log_file), "debug")

                assert self.root_logger.level == logging.DEBUG

    def test_setup_server_logging_writes_to_file(self) -> None:
        """Verify engine log messages reach the log file."""
        with tempfile.TemporaryDirectory() as temp_dir:
            log_file = Path(temp_dir) / "server.log"

            with patch.dict("os.environ", {"LOG_LEVEL": "INFO"}, clear=False):
                setup_server_logging(str(log_file))

                logging.getLogger("condo_ledger.services.payment_recorder").info("Committed payment 1")
                for handler in self.root_logger.handlers:
                    handler.flush()

                content = log_file.read_text()
                assert "Committed payment 1" in content
                assert "condo_ledger.services.payment_recorder - INFO" in content

    def test_log_lines_start_with_timestamp(self) -> None:
        """Verify each file line is prefixed with a [YYYY-MM-DD HH:MM:SS] stamp."""
        with tempfile.TemporaryDirectory() as temp_dir:
            log_file = Path(temp_dir) / "server.log"

            setup_server_logging(str(log_file), "INFO")
            logging.getLogger("condo_ledger.services.reversal_service").warning("Reversal abandoned")
            for handler in self.root_logger.handlers:
                handler.flush()

            line = log_file.read_text().splitlines()[-1]
            assert re.match(r"^\[\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}\] ", line)
            assert line.endswith("WARNING - Reversal abandoned")


class TestGetLogLevel:
    """Test level name resolution."""

    def test_known_levels(self) -> None:
        assert get_log_level("DEBUG") == logging.DEBUG
        assert get_log_level("warning") == logging.WARNING

    def test_unknown_level_falls_back_to_info(self) -> None:
        assert get_log_level("VERBOSE") == logging.INFO

    def test_environment_fallback(self) -> None:
        with patch.dict("os.environ", {"LOG_LEVEL": "ERROR"}, clear=False):
            assert get_log_level() == logging.ERROR
