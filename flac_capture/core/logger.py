"""
Logging configuration for flac-capture.

This module sets up the logging system with multiple outputs:
    - Console: Real-time progress with tqdm-compatible, colored formatting
    - log_full_{ts}.log: Complete log of all events (DEBUG and above)
    - log_errors_{ts}.log: Only ERROR and CRITICAL level messages
    - fetch_failures_{ts}.log: Stream URLs that could not be fetched

Everything printed to screen is also saved to file, then filtered into the
specialized files.

Log File Locations:
    All log files are created in {output_directory}/logs/, one set per run.

Usage:
    from flac_capture.core.logger import setup_logging, get_logger

    setup_logging(output_dir)  # Call once at startup
    logger = get_logger(__name__)  # Get logger for each module

    logger.info("Starting capture")
    log_fetch_failure(logger, url, "HTTP 404", playlist="mix.m3u")
"""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import TextIO

from colorama import Fore, Style, just_fix_windows_console
from tqdm import tqdm


# Log format for file output (detailed with timestamp)
FILE_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
FILE_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Separator used for phase banners
BANNER = "=" * 60


class ColoredConsoleFormatter(logging.Formatter):
    """
    Formatter that colors the level name on console output.

    Colors:
        - DEBUG: Blue
        - INFO: Green
        - WARNING: Yellow
        - ERROR: Red
        - CRITICAL: Bold Red
    """

    LEVEL_COLORS = {
        logging.DEBUG: Fore.BLUE,
        logging.INFO: Fore.GREEN,
        logging.WARNING: Fore.YELLOW,
        logging.ERROR: Fore.RED,
        logging.CRITICAL: Style.BRIGHT + Fore.RED,
    }

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno, Fore.WHITE)
        message = f"{color}{record.levelname}{Style.RESET_ALL}: {record.getMessage()}"
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"
        return message


class TqdmLoggingHandler(logging.Handler):
    """
    Logging handler that writes to console without breaking tqdm progress bars.

    tqdm progress bars redraw in place with carriage returns; a plain
    StreamHandler writing to the same stream corrupts them. tqdm.write()
    prints above any active bar instead.

    Attributes:
        stream: The output stream (defaults to sys.stderr).
    """

    def __init__(self, stream: TextIO | None = None) -> None:
        super().__init__()
        self.stream = stream if stream is not None else sys.stderr

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
            tqdm.write(msg, file=self.stream)
        except Exception:
            self.handleError(record)


class FetchFailureHandler(logging.Handler):
    """
    Handler that collects failed stream URLs into the fetch failure report.

    Records are written in a simple, human-readable format:

        mix.m3u
        https://radio.example/stream1.wav
        HTTP 404

    The handler only reacts to records carrying these extra fields:
        - 'fetch_failed_url': The URL that could not be fetched
        - 'fetch_failed_reason': Short description of the failure
        - 'fetch_failed_playlist': Playlist the URL came from (optional)

    Use log_fetch_failure() to produce such records.

    Attributes:
        report_path: Path to the fetch_failures log file.
        report_file: Open file handle (None until open() is called).
    """

    def __init__(self, report_path: Path) -> None:
        super().__init__()
        self.report_path = report_path
        self.report_file: TextIO | None = None

    def open(self) -> None:
        """Open the report file for writing (overwrites existing content)."""
        self.report_file = open(self.report_path, "w", encoding="utf-8")

    def emit(self, record: logging.LogRecord) -> None:
        if not hasattr(record, "fetch_failed_url"):
            return

        if self.report_file is None:
            return

        try:
            url = getattr(record, "fetch_failed_url", "")
            reason = getattr(record, "fetch_failed_reason", "")
            playlist = getattr(record, "fetch_failed_playlist", None)

            self.acquire()
            try:
                if playlist:
                    self.report_file.write(f"{playlist}\n")
                self.report_file.write(f"{url}\n{reason}\n\n")
                self.report_file.flush()
            finally:
                self.release()
        except Exception:
            self.handleError(record)

    def close(self) -> None:
        """Close the report file handle. Safe to call multiple times."""
        if self.report_file is not None:
            self.report_file.close()
            self.report_file = None
        super().close()


class ErrorOnlyFilter(logging.Filter):
    """Filter that only allows ERROR and CRITICAL level records."""

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= logging.ERROR


def setup_logging(output_dir: Path, level: str = "INFO") -> Path:
    """
    Configure the logging system for the application.

    This function should be called ONCE at application startup, after
    the configuration is loaded but before any other operations.

    Args:
        output_dir: Directory where log files will be created.
                    Logs are stored in a 'logs' subdirectory.
        level: Console log level name. Log files always receive DEBUG.

    Returns:
        The logs directory that was created.

    Behavior:
        1. Create output_dir/logs if it doesn't exist
        2. Generate timestamp for this run's log files
        3. Configure root logger level to DEBUG
        4. Console handler (TqdmLoggingHandler) at the requested level
        5. log_full_{timestamp}.log at DEBUG
        6. log_errors_{timestamp}.log filtered to ERROR+
        7. fetch_failures_{timestamp}.log via FetchFailureHandler

    Thread Safety:
        NOT thread-safe. Call it once from the main thread before
        starting the event loop or any observer threads.
    """
    just_fix_windows_console()

    logs_dir = output_dir / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    # Remove any existing handlers
    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)

    console_handler = TqdmLoggingHandler()
    console_handler.setLevel(logging.getLevelName(level.upper()))
    console_handler.setFormatter(ColoredConsoleFormatter())
    root_logger.addHandler(console_handler)

    full_handler = logging.FileHandler(logs_dir / f"log_full_{timestamp}.log", mode="w", encoding="utf-8")
    full_handler.setLevel(logging.DEBUG)
    full_handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT, FILE_DATE_FORMAT))
    root_logger.addHandler(full_handler)

    error_handler = logging.FileHandler(logs_dir / f"log_errors_{timestamp}.log", mode="w", encoding="utf-8")
    error_handler.setLevel(logging.DEBUG)  # Filter handles the level restriction
    error_handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT, FILE_DATE_FORMAT))
    error_handler.addFilter(ErrorOnlyFilter())
    root_logger.addHandler(error_handler)

    fetch_handler = FetchFailureHandler(logs_dir / f"fetch_failures_{timestamp}.log")
    fetch_handler.open()
    root_logger.addHandler(fetch_handler)

    # Third-party loggers are noisy at DEBUG
    for noisy in ("aiohttp", "asyncio", "watchdog", "pydub.converter"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return logs_dir


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a module.

    Args:
        name: The logger name, typically __name__ of the calling module.

    Returns:
        logging.Logger: A logger configured by setup_logging().
    """
    return logging.getLogger(name)


def log_banner(logger: logging.Logger, title: str) -> None:
    """Log a title framed by separator lines."""
    logger.info(BANNER)
    logger.info(title)
    logger.info(BANNER)


def log_fetch_failure(
    logger: logging.Logger,
    url: str,
    reason: str,
    playlist: str | None = None
) -> None:
    """
    Log a stream URL whose fetch failed.

    Logs an ERROR level message and attaches the extra fields that
    FetchFailureHandler writes to fetch_failures_{ts}.log.

    Args:
        logger: The logger to use for the message.
        url: The URL that failed.
        reason: Description of why the fetch failed.
        playlist: Name of the playlist the URL belongs to.

    Example:
        log_fetch_failure(
            logger,
            url="https://radio.example/stream1.wav",
            reason="HTTP 404",
            playlist="mix.m3u"
        )
    """
    logger.error(
        f"Fetch failed: {url} - {reason}",
        extra={
            "fetch_failed_url": url,
            "fetch_failed_reason": reason,
            "fetch_failed_playlist": playlist,
        }
    )


def shutdown_logging() -> None:
    """
    Flush, close and remove every handler on the root logger.

    Typically called in a finally block at application exit.
    """
    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        handler.flush()
        handler.close()
        root_logger.removeHandler(handler)
