"""Test logging setup and the resolution failure report"""

import logging

import pytest

from song_resolver.core.logger import (
    ColoredConsoleFormatter,
    get_logger,
    log_resolution_failure,
    setup_logging,
    shutdown_logging,
)


@pytest.fixture
def restore_root_logger():
    """Put back the root handlers pytest installed"""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    shutdown_logging()
    root.handlers[:] = handlers
    root.setLevel(level)


class TestSetupLogging:
    """Test setup_logging() and shutdown_logging()"""

    def test_creates_log_files(self, temp_dir, restore_root_logger):
        """Test the three log files are created in log_dir"""
        setup_logging(temp_dir / "logs")
        logger = get_logger("song_resolver.test")

        logger.debug("debug line")
        logger.error("error line")
        log_resolution_failure(logger, "Love Story", "Taylor Swift", "19292984", "netease", "320", "preview only")
        shutdown_logging()

        files = {p.name.split("_20")[0]: p for p in (temp_dir / "logs").iterdir()}
        assert set(files) == {"log_full", "log_errors", "resolution_failures"}

        full = files["log_full"].read_text(encoding="utf-8")
        assert "debug line" in full and "error line" in full

        errors = files["log_errors"].read_text(encoding="utf-8")
        assert "error line" in errors
        assert "debug line" not in errors

        report = files["resolution_failures"].read_text(encoding="utf-8")
        assert report == "Love Story - Taylor Swift [netease:19292984] @320\npreview only\n\n"

    def test_console_only(self, restore_root_logger):
        """Test log_dir=None installs only the console handler"""
        setup_logging(None, level="warning")
        handlers = logging.getLogger().handlers
        assert len(handlers) == 1
        assert handlers[0].level == logging.WARNING

    def test_shutdown_removes_handlers(self, temp_dir, restore_root_logger):
        """Test shutdown_logging() leaves no root handlers"""
        setup_logging(temp_dir)
        shutdown_logging()
        assert logging.getLogger().handlers == []


class TestFormatting:
    """Test console formatting and failure records"""

    def test_colored_level(self):
        """Test level names are colored"""
        record = logging.LogRecord("x", logging.WARNING, __file__, 1, "careful", None, None)
        assert ColoredConsoleFormatter().format(record) == "\033[33mWARNING\033[0m: careful"

    def test_failure_record_extras(self, caplog):
        """Test log_resolution_failure attaches report fields"""
        logger = get_logger("song_resolver.test")
        with caplog.at_level(logging.WARNING):
            log_resolution_failure(logger, "晴天", "周杰伦", "MUSIC_42", "kuwo", "128", "no source returned a URL")

        record = caplog.records[-1]
        assert record.resolution_failed_song_source == "kuwo"
        assert record.resolution_failed_reason == "no source returned a URL"
        assert "周杰伦 - 晴天" in record.getMessage()
