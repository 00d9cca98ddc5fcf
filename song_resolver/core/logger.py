"""
Logging configuration for song-resolver.

This module sets up the logging system with multiple outputs:
    - Console: Compact colored messages, written through tqdm so a UI
      shell's progress bars are not broken
    - log_full.log: Complete log of all events (DEBUG and above)
    - log_errors.log: Only ERROR and CRITICAL level messages
    - resolution_failures.log: Songs that resolved to nothing or only
      to a preview clip

The library itself only calls get_logger(); setup_logging() is for the
host application. Without it, records propagate to whatever handlers the
host has configured.

Usage:
    from song_resolver.core.logger import setup_logging, get_logger

    setup_logging(Path("~/.song_resolver/logs").expanduser())
    logger = get_logger(__name__)

    logger.info("Resolving song")
    log_resolution_failure(logger, "Song", "Artist", "123", "netease", "320", "all sources failed")
"""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import TextIO

from tqdm import tqdm


# Log file prefixes (created in the log directory, suffixed with a timestamp)
LOG_FULL_FILENAME = "log_full"
LOG_ERRORS_FILENAME = "log_errors"
RESOLUTION_FAILURES_FILENAME = "resolution_failures"

# Log format for file output (detailed with timestamp)
FILE_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
FILE_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class Colors:
    """ANSI color codes for terminal output."""
    RESET = "\033[0m"
    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    CYAN = "\033[36m"
    WHITE = "\033[37m"
    BOLD = "\033[1m"


class ColoredConsoleFormatter(logging.Formatter):
    """
    Custom formatter that adds colors to console output.

    Colors:
        - DEBUG: Blue
        - INFO: Green
        - WARNING: Yellow
        - ERROR: Red
        - CRITICAL: Bold Red
    """

    LEVEL_COLORS = {
        logging.DEBUG: Colors.BLUE,
        logging.INFO: Colors.GREEN,
        logging.WARNING: Colors.YELLOW,
        logging.ERROR: Colors.RED,
        logging.CRITICAL: Colors.BOLD + Colors.RED,
    }

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno, Colors.WHITE)
        colored_levelname = f"{color}{record.levelname}{Colors.RESET}"
        return f"{colored_levelname}: {record.getMessage()}"


class TqdmLoggingHandler(logging.Handler):
    """
    Logging handler that writes to console without breaking tqdm progress bars.

    tqdm progress bars use carriage returns to update in place. Plain
    stream handlers interleave with them and leave visual glitches;
    tqdm.write() prints above any active bar instead.
    """

    def __init__(self, stream: TextIO = sys.stderr) -> None:
        super().__init__()
        self.stream = stream

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
            tqdm.write(msg, file=self.stream)
        except Exception:
            self.handleError(record)


class ResolutionFailureHandler(logging.Handler):
    """
    Handler that captures unresolved songs for the resolution report file.

    Listens for log records carrying resolution failure extras and writes
    them to resolution_failures.log in a human-readable format:

        Song Title - Artist Name [netease:123456] @320
        all sources failed

        Another Song - Another Artist [kuwo:MUSIC_42] @128
        preview only (size 51200 bytes)

    The handler looks for these extra fields:
        - 'resolution_failed_song_name'
        - 'resolution_failed_song_artist'
        - 'resolution_failed_song_id'
        - 'resolution_failed_song_source'
        - 'resolution_failed_quality'
        - 'resolution_failed_reason'

    Records without them are ignored.

    Attributes:
        report_path: Path to the resolution_failures.log file.
        report_file: Open file handle, set by open().
    """

    def __init__(self, report_path: Path) -> None:
        super().__init__()
        self.report_path = report_path
        self.report_file: TextIO | None = None

    def open(self) -> None:
        """Open the report file for writing (overwrites existing content)."""
        self.report_file = open(self.report_path, "w", encoding="utf-8")

    def emit(self, record: logging.LogRecord) -> None:
        if not hasattr(record, "resolution_failed_song_name"):
            return

        if self.report_file is None:
            return

        try:
            name = getattr(record, "resolution_failed_song_name", "Unknown")
            artist = getattr(record, "resolution_failed_song_artist", "Unknown")
            song_id = getattr(record, "resolution_failed_song_id", "")
            source = getattr(record, "resolution_failed_song_source", "")
            quality = getattr(record, "resolution_failed_quality", "")
            reason = getattr(record, "resolution_failed_reason", "")

            self.report_file.write(f"{name} - {artist} [{source}:{song_id}] @{quality}\n")
            self.report_file.write(f"{reason}\n\n")
            self.report_file.flush()
        except Exception:
            self.handleError(record)

    def close(self) -> None:
        """Close the report file handle. Safe to call multiple times."""
        if self.report_file is not None:
            try:
                self.report_file.close()
            except OSError:
                pass
            self.report_file = None
        super().close()


class ErrorOnlyFilter(logging.Filter):
    """Filter that only allows ERROR and CRITICAL level records."""

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= logging.ERROR


def setup_logging(log_dir: Path | None = None, level: str = "INFO") -> None:
    """
    Configure the logging system for a host application.

    Call ONCE at application startup, before resolving anything.

    Args:
        log_dir: Directory where log files will be created. None disables
                 file logging (console only).
        level: Console level name (DEBUG, INFO, WARNING, ERROR).

    Behavior:
        1. Configure root logger level to DEBUG
        2. Console handler (TqdmLoggingHandler) at `level`, colored
        3. If log_dir is given:
           - log_full_{timestamp}.log at DEBUG
           - log_errors_{timestamp}.log filtered to ERROR+
           - resolution_failures_{timestamp}.log via ResolutionFailureHandler
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.handlers.clear()

    console_handler = TqdmLoggingHandler()
    console_handler.setLevel(getattr(logging, level.upper(), logging.INFO))
    console_handler.setFormatter(ColoredConsoleFormatter())
    root_logger.addHandler(console_handler)

    if log_dir is None:
        return

    log_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
    file_formatter = logging.Formatter(FILE_LOG_FORMAT, FILE_DATE_FORMAT)

    full_handler = logging.FileHandler(
        log_dir / f"{LOG_FULL_FILENAME}_{timestamp}.log", mode="w", encoding="utf-8"
    )
    full_handler.setLevel(logging.DEBUG)
    full_handler.setFormatter(file_formatter)
    root_logger.addHandler(full_handler)

    error_handler = logging.FileHandler(
        log_dir / f"{LOG_ERRORS_FILENAME}_{timestamp}.log", mode="w", encoding="utf-8"
    )
    error_handler.setLevel(logging.DEBUG)  # Filter handles the level restriction
    error_handler.setFormatter(file_formatter)
    error_handler.addFilter(ErrorOnlyFilter())
    root_logger.addHandler(error_handler)

    failures_handler = ResolutionFailureHandler(
        log_dir / f"{RESOLUTION_FAILURES_FILENAME}_{timestamp}.log"
    )
    failures_handler.open()
    root_logger.addHandler(failures_handler)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a module.

    Args:
        name: The logger name, typically __name__ of the calling module.

    Returns:
        logging.Logger in the 'song_resolver.*' hierarchy.
    """
    return logging.getLogger(name)


def log_resolution_failure(
    logger: logging.Logger,
    song_name: str,
    artist: str,
    song_id: str,
    source: str,
    quality: str,
    reason: str
) -> None:
    """
    Log a song that could not be resolved to a full-length URL.

    Attaches the extra fields ResolutionFailureHandler picks up.

    Args:
        logger: The logger to use for the message.
        song_name: Song title.
        artist: Primary artist name.
        song_id: Catalog id of the song.
        source: Catalog source tag.
        quality: Requested bitrate label.
        reason: Why resolution fell short (nothing found, preview only, ...).

    Example:
        log_resolution_failure(
            logger, "Love Story", "Taylor Swift", "19292984", "netease", "320",
            "preview only"
        )
    """
    logger.warning(
        f"Could not resolve full track: {artist} - {song_name} ({reason})",
        extra={
            "resolution_failed_song_name": song_name,
            "resolution_failed_song_artist": artist,
            "resolution_failed_song_id": song_id,
            "resolution_failed_song_source": source,
            "resolution_failed_quality": quality,
            "resolution_failed_reason": reason,
        }
    )


def shutdown_logging() -> None:
    """
    Flush and close all root handlers.

    Call at application exit, typically from a finally block.
    """
    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        try:
            handler.flush()
            handler.close()
        except OSError:
            pass
        root_logger.removeHandler(handler)
