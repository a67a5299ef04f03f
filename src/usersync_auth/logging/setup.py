"""Logging setup for the command line and embedding applications."""

import logging
import secrets
import sys
from datetime import datetime
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

from usersync_auth.logging.context import set_log_context
from usersync_auth.logging.formatters import ConsoleFormatter, JSONFormatter

DEFAULT_LOG_DIR = Path("logs")
DEFAULT_BACKUP_COUNT = 7
DEFAULT_CONSOLE_LEVEL = logging.INFO
DEFAULT_FILE_LEVEL = logging.DEBUG

PLAIN_FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"

# HTTP client and event loop loggers that drown out token lifecycle messages
NOISY_LOGGERS = [
    "aiohttp",
    "aiohttp.access",
    "aiohttp.client",
    "asyncio",
    "urllib3",
]


def get_log_file_path(log_dir: Path, name: str, component: str | None = None) -> Path:
    """
    ``{log_dir}/{YYYY-MM-DD}/{name}[_{component}]_{MMDD}_{HHMM}.log``

    One file per command invocation, grouped by day.
    """
    now = datetime.now()
    stem = f"{name}_{component}" if component else name
    return log_dir / now.strftime("%Y-%m-%d") / f"{stem}_{now:%m%d}_{now:%H%M}.log"


def _file_handler(log_file: Path, json_format: bool, level: int, backup_count: int) -> logging.Handler:
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = TimedRotatingFileHandler(
        log_file, when="midnight", backupCount=backup_count, encoding="utf-8"
    )
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter() if json_format else logging.Formatter(PLAIN_FILE_FORMAT))
    return handler


def setup_logging(
    name: str = "usersync_auth",
    component: str | None = None,
    log_dir: Path | None = None,
    json_format: bool = True,
    console_level: int = DEFAULT_CONSOLE_LEVEL,
    file_level: int = DEFAULT_FILE_LEVEL,
    backup_count: int = DEFAULT_BACKUP_COUNT,
    suppress_noisy: bool = True,
    log_to_stdout: bool = False,
) -> logging.Logger:
    """
    Replace root handlers with a console handler and, unless
    ``log_to_stdout`` is set, a daily-rotated file handler.

    Args:
        name: Logger name and log file prefix
        component: Command or subsystem name; tagged on every record and
            included in the log file name
        log_dir: Directory for log files (default: ./logs)
        json_format: JSON lines in the log file instead of plain text
        console_level: Console handler level
        file_level: File handler level; also the console level in
            stdout-only mode
        backup_count: Rotated files to keep
        suppress_noisy: Raise HTTP client and asyncio loggers to WARNING
        log_to_stdout: Console only, no file handler

    Returns:
        The ``name`` logger
    """
    if component:
        set_log_context(component=component)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    root.handlers.clear()

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(ConsoleFormatter())

    log_file = None
    if log_to_stdout:
        console.setLevel(min(console_level, file_level))
    else:
        console.setLevel(console_level)
        log_file = get_log_file_path(log_dir or DEFAULT_LOG_DIR, name, component)
        root.addHandler(_file_handler(log_file, json_format, file_level, backup_count))
    root.addHandler(console)

    if suppress_noisy:
        for logger_name in NOISY_LOGGERS:
            logging.getLogger(logger_name).setLevel(logging.WARNING)

    logger = logging.getLogger(name)
    if log_file is None:
        logger.debug("Logging to stdout only")
    else:
        logger.debug(f"Logging to {log_file} (json={json_format})")
    return logger


def generate_cycle_id() -> str:
    """Acquisition cycle id, ``c-YYYYMMDD-HHMMSS-xxxx`` with a random hex suffix."""
    return f"c-{datetime.now():%Y%m%d-%H%M%S}-{secrets.token_hex(2)}"


__all__ = [
    "setup_logging",
    "generate_cycle_id",
    "get_log_file_path",
    "NOISY_LOGGERS",
]
