"""
Logging configuration for playlist-archiver.

This module sets up the logging system with multiple outputs:
    - Console: Real-time messages with tqdm-compatible formatting
    - log_full.log: Complete log of all events (DEBUG and above)
    - log_errors.log: Only ERROR and CRITICAL level messages
    - archive_failures.log: Tracks that could not be archived, with their URLs

The logging system follows the principle: everything to screen is also saved
to file, then filtered into specialized files.

Log File Locations:
    All log files are created in {data_root}/logs. Each run gets its own
    timestamped set of files (no rotation).

Usage:
    from playlist_archiver.core.logger import setup_logging, get_logger

    setup_logging(data_root)  # Call once at startup
    logger = get_logger(__name__)  # Get logger for each module

    logger.info("Starting pass")
"""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import TextIO

from tqdm import tqdm


# Log file name prefixes (created in {data_root}/logs)
LOG_FULL_FILENAME = "log_full"
LOG_ERRORS_FILENAME = "log_errors"
ARCHIVE_FAILURES_FILENAME = "archive_failures"

# Log format for file output (detailed with timestamp)
FILE_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(threadName)s | %(name)s | %(message)s"
FILE_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Third-party loggers that are too chatty at DEBUG
QUIET_LOGGERS = ("PIL", "urllib3")


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
    Formatter that adds colors to console output.

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
    Logging handler that writes to console without breaking progress bars.

    Progress bars redraw themselves in place with carriage returns. Writing
    through tqdm.write() makes messages appear above any active bar instead
    of tearing it.

    Attributes:
        stream: The output stream (defaults to sys.stderr).
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


class ArchiveFailureFilter(logging.Filter):
    """Pass only records carrying the 'archive_failed_*' extra fields."""

    def filter(self, record: logging.LogRecord) -> bool:
        return hasattr(record, "archive_failed_identity")


class ArchiveFailureFormatter(logging.Formatter):
    """
    Human-readable block per track that could not be archived:

        [restricted] soundcloud:123456 Artist Name - Song Title
        https://soundcloud.com/artist/song-title
        source: soundcloud-favorites-1a2b3c4d

    The fields come from the extras set by log_archive_failure():
    archive_failed_identity, _name, _url, _kind and _source.
    """

    def format(self, record: logging.LogRecord) -> str:
        kind = getattr(record, "archive_failed_kind", "error")
        identity = getattr(record, "archive_failed_identity", "unknown")
        name = getattr(record, "archive_failed_name", "Unknown")
        url = getattr(record, "archive_failed_url", "")
        source_id = getattr(record, "archive_failed_source", "")
        return f"[{kind}] {identity} {name}\n{url}\nsource: {source_id}\n"


class ErrorOnlyFilter(logging.Filter):
    """
    Filter that only allows ERROR and CRITICAL level records.

    Used by the error log file handler to exclude DEBUG, INFO, and WARNING.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= logging.ERROR


def _file_handler(
    path: Path,
    formatter: logging.Formatter,
    log_filter: logging.Filter | None = None
) -> logging.FileHandler:
    # Level stays at DEBUG; filters do the narrowing
    handler = logging.FileHandler(path, mode="w", encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(formatter)
    if log_filter is not None:
        handler.addFilter(log_filter)
    return handler


def setup_logging(data_root: Path, verbose: bool = False) -> Path:
    """
    Configure the logging system for the application.

    This function should be called ONCE at application startup, after
    the configuration is loaded but before any worker threads start.
    Calling it again replaces the previous handlers.

    Args:
        data_root: Archive root. Logs are stored in a 'logs' subdirectory.
        verbose: If True, DEBUG messages are also shown on the console.

    Returns:
        The logs directory.

    Files ({timestamp} is the start time of the run):
        log_full_{timestamp}.log           DEBUG and above, full format
        log_errors_{timestamp}.log         ERROR and above (ErrorOnlyFilter)
        archive_failures_{timestamp}.log   log_archive_failure() records only
    """
    logs_dir = data_root / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")

    root_logger = logging.getLogger()
    shutdown_logging()
    root_logger.setLevel(logging.DEBUG)

    console_handler = TqdmLoggingHandler()
    console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    console_handler.setFormatter(ColoredConsoleFormatter())

    file_formatter = logging.Formatter(FILE_LOG_FORMAT, FILE_DATE_FORMAT)
    handlers = [
        console_handler,
        _file_handler(logs_dir / f"{LOG_FULL_FILENAME}_{timestamp}.log", file_formatter),
        _file_handler(
            logs_dir / f"{LOG_ERRORS_FILENAME}_{timestamp}.log", file_formatter, ErrorOnlyFilter()
        ),
        _file_handler(
            logs_dir / f"{ARCHIVE_FAILURES_FILENAME}_{timestamp}.log",
            ArchiveFailureFormatter(),
            ArchiveFailureFilter(),
        ),
    ]
    for handler in handlers:
        root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return logs_dir


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a module.

    Args:
        name: The logger name, typically __name__ of the calling module.
              This creates a hierarchy like 'playlist_archiver.sync.engine'.

    Note:
        Loggers obtained before setup_logging() is called have no handlers
        of their own and only propagate to whatever the root logger has.
    """
    return logging.getLogger(name)


def format_transition_message(display_name: str, old: str | None, new: str) -> str:
    """
    Format a lifecycle transition message with colors.

    Example:
        format_transition_message("Artist - Song", "active", "deleted")
        # "Artist - Song: active -> deleted" (colored)
    """
    color = Colors.GREEN if new == "active" else Colors.YELLOW
    origin = old if old is not None else "new"
    return f"{display_name}: {origin} -> {color}{new}{Colors.RESET}"


def log_archive_failure(
    logger: logging.Logger,
    identity: str,
    display_name: str,
    url: str,
    kind: str,
    source_id: str,
    error_message: str
) -> None:
    """
    Log a track that could not be archived.

    Attaches the extra fields the archive_failures file handler picks up. Transient
    failures are logged at WARNING (they are retried next pass), permanent
    ones at ERROR.

    Example:
        log_archive_failure(
            logger,
            identity="youtube:dQw4w9WgXcQ",
            display_name="Artist - Title",
            url="https://www.youtube.com/watch?v=dQw4w9WgXcQ",
            kind="restricted",
            source_id="youtube-favorites-1a2b3c4d",
            error_message="Private video"
        )
    """
    level = logging.WARNING if kind == "transient" else logging.ERROR
    logger.log(
        level,
        f"Archive failed ({kind}): {display_name} - {error_message}",
        extra={
            "archive_failed_identity": identity,
            "archive_failed_name": display_name,
            "archive_failed_url": url,
            "archive_failed_kind": kind,
            "archive_failed_source": source_id,
        }
    )


def shutdown_logging() -> None:
    """
    Flush, close and detach all root handlers.

    Called at application exit (and by setup_logging() before installing
    a fresh set of handlers).
    """
    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        try:
            handler.flush()
            handler.close()
        except (OSError, ValueError):
            pass
        root_logger.removeHandler(handler)
