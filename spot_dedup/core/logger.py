"""
Logging configuration for spot-dedup.

This module sets up the logging system with multiple outputs:
    - Console: Real-time progress with tqdm-compatible formatting
    - log_full_<timestamp>.log: Complete log of all events (DEBUG and above)
    - log_errors_<timestamp>.log: Only ERROR and CRITICAL level messages
    - removed_duplicates_<timestamp>.log: Every duplicate removed from Spotify,
      with the playlist it was removed from and its former position

The logging system follows the principle: everything to screen is also saved
to file, then filtered into specialized files.

Log File Locations:
    All log files are created in <storage directory>/logs.

Usage:
    from spot_dedup.core.logger import setup_logging, get_logger

    setup_logging(storage_dir)  # Call once at startup
    logger = get_logger(__name__)  # Get logger for each module

    logger.info("Scanning playlists")
"""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import TextIO

from tqdm import tqdm


# Log format for file output (detailed with timestamp)
FILE_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
FILE_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Log format for console output (compact, tqdm-friendly)
CONSOLE_LOG_FORMAT = "%(levelname)s: %(message)s"


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
    Logging handler that writes to console without breaking progress bars.

    Progress bars redraw in place on stderr. Writing through tqdm.write()
    keeps log lines above any active bar instead of tearing it.
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


class RemovedDuplicatesHandler(logging.Handler):
    """
    Handler that records every removed duplicate in a report file.

    This handler listens for log records that carry removal information
    and writes them to removed_duplicates_<timestamp>.log in a simple,
    human-readable format:

        My Playlist (spotify:playlist:xxxxx)
          #41 Song Title - Artist Name  spotify:track:yyyyy
          #17 Another Song - Another Artist  spotify:track:zzzzz

    The handler looks for specific extra fields in log records:
        - 'removed_playlist_name': Name of the playlist
        - 'removed_playlist_uri': Spotify URI of the playlist
        - 'removed_items': List of (position, display_name, uri) tuples

    Only records containing these fields are written to the report.

    Attributes:
        report_path: Path to the report file.
        report_file: Open file handle (opened by open()).
    """

    def __init__(self, report_path: Path) -> None:
        super().__init__()
        self.report_path = report_path
        self.report_file: TextIO | None = None

    def open(self) -> None:
        """
        Open the report file for writing.

        Called by setup_logging() after handler is created.
        File is opened in write mode (overwrites existing content).
        """
        self.report_file = open(self.report_path, "w", encoding="utf-8")

    def emit(self, record: logging.LogRecord) -> None:
        if not hasattr(record, "removed_playlist_uri"):
            return

        if self.report_file is None:
            return

        try:
            name = getattr(record, "removed_playlist_name", "Unknown")
            uri = getattr(record, "removed_playlist_uri", "")
            items = getattr(record, "removed_items", [])

            self.report_file.write(f"{name} ({uri})\n")
            for position, display_name, item_uri in items:
                self.report_file.write(f"  #{position} {display_name}  {item_uri or ''}\n")
            self.report_file.write("\n")
            self.report_file.flush()
        except Exception:
            self.handleError(record)

    def close(self) -> None:
        """
        Close the report file handle.

        Called automatically when logging is shut down.
        Safe to call multiple times.
        """
        if self.report_file is not None:
            try:
                self.report_file.close()
            except OSError:
                pass
            self.report_file = None
        super().close()


class ErrorOnlyFilter(logging.Filter):
    """
    Filter that only allows ERROR and CRITICAL level records.

    Used by the error log file handler to exclude DEBUG, INFO, and WARNING.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= logging.ERROR


def setup_logging(storage_dir: Path, verbose: bool = False) -> None:
    """
    Configure the logging system for the application.

    This function should be called ONCE at application startup, after
    the configuration is loaded but before any other operations.

    Args:
        storage_dir: Directory where log files will be created.
                     Logs are stored in a 'logs' subdirectory.
        verbose: If True, DEBUG messages are shown on the console too.

    Behavior:
        1. Create storage_dir/logs if it doesn't exist
        2. Generate timestamp for this run's log files
        3. Configure root logger level to DEBUG
        4. Console handler (TqdmLoggingHandler), INFO or DEBUG
        5. Full log file handler, DEBUG
        6. Error log file handler, filtered to ERROR+ by ErrorOnlyFilter
        7. Removed duplicates report handler
        8. Quiet down the HTTP stack (urllib3, spotipy) to WARNING
    """
    logs_dir = storage_dir / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.handlers.clear()

    console_handler = TqdmLoggingHandler()
    console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    console_handler.setFormatter(ColoredConsoleFormatter())
    root_logger.addHandler(console_handler)

    full_log_path = logs_dir / f"log_full_{timestamp}.log"
    full_handler = logging.FileHandler(full_log_path, mode="w", encoding="utf-8")
    full_handler.setLevel(logging.DEBUG)
    full_handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT, FILE_DATE_FORMAT))
    root_logger.addHandler(full_handler)

    error_log_path = logs_dir / f"log_errors_{timestamp}.log"
    error_handler = logging.FileHandler(error_log_path, mode="w", encoding="utf-8")
    error_handler.setLevel(logging.DEBUG)  # Filter handles the level restriction
    error_handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT, FILE_DATE_FORMAT))
    error_handler.addFilter(ErrorOnlyFilter())
    root_logger.addHandler(error_handler)

    removed_path = logs_dir / f"removed_duplicates_{timestamp}.log"
    removed_handler = RemovedDuplicatesHandler(removed_path)
    removed_handler.open()
    root_logger.addHandler(removed_handler)

    for noisy in ("urllib3", "spotipy"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a module.

    Args:
        name: The logger name, typically __name__ of the calling module.
              This creates a hierarchy like 'spot_dedup.dedup.remover'.

    Note:
        Loggers obtained before setup_logging() is called will have no
        handlers and will not produce output.
    """
    return logging.getLogger(name)


def format_duplicates_message(name: str, count: int) -> str:
    """
    Format a per-playlist scan result with colors.

    Returns:
        "No duplicates in X" in green, or "N duplicate(s) in X" in yellow.
    """
    if count == 0:
        return f"{Colors.GREEN}No duplicates{Colors.RESET} in {name}"
    noun = "duplicate" if count == 1 else "duplicates"
    return f"{Colors.YELLOW}{count} {noun}{Colors.RESET} in {name}"


def format_removed_message(name: str, count: int) -> str:
    """
    Format the message shown after a playlist was de-duplicated.

    Returns:
        "Removed 1 duplicate from X" or "Removed N duplicates from X".
    """
    noun = "duplicate" if count == 1 else "duplicates"
    return f"{Colors.GREEN}Removed {count} {noun}{Colors.RESET} from {name}"


def log_removed_duplicates(
    logger: logging.Logger,
    playlist_name: str,
    playlist_uri: str,
    items: list[tuple[int, str, str | None]]
) -> None:
    """
    Log one successfully removed batch of duplicates.

    This is a convenience function that logs the removal with the
    correct extra fields for the RemovedDuplicatesHandler to pick up.

    Args:
        logger: The logger to use for the message.
        playlist_name: Name of the playlist the items were removed from.
        playlist_uri: Spotify URI of the playlist.
        items: (position, display_name, uri) for each removed item.

    Example:
        log_removed_duplicates(
            logger,
            playlist_name="Road Trip",
            playlist_uri="spotify:playlist:xxx",
            items=[(41, "Song Title - Artist Name", "spotify:track:yyy")]
        )
    """
    logger.debug(
        f"Removed {len(items)} items from {playlist_name}",
        extra={
            "removed_playlist_name": playlist_name,
            "removed_playlist_uri": playlist_uri,
            "removed_items": items,
        }
    )


def shutdown_logging() -> None:
    """
    Properly shut down the logging system.

    Flushes and closes every handler on the root logger, then removes it.
    Typically called in a finally block at application exit.
    """
    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        try:
            handler.flush()
            handler.close()
        except OSError:
            pass
        root_logger.removeHandler(handler)
