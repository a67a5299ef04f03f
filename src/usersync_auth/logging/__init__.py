"""
Structured logging for usersync_auth.

Provides JSON and console formatters, context variables that tag every
record with the active acquisition cycle, and helpers for logging with
structured fields.

Usage:
    from usersync_auth.logging import setup_logging, log_with_context

    setup_logging(component="renewal", log_to_stdout=True)
    log_with_context(logger, logging.INFO, "Token renewed", refresh_count=3)
"""

from usersync_auth.logging.context import (
    clear_log_context,
    get_log_context,
    set_log_context,
)
from usersync_auth.logging.formatters import ConsoleFormatter, JSONFormatter
from usersync_auth.logging.setup import generate_cycle_id, setup_logging
from usersync_auth.logging.utilities import log_exception, log_with_context

__all__ = [
    "setup_logging",
    "generate_cycle_id",
    "set_log_context",
    "get_log_context",
    "clear_log_context",
    "JSONFormatter",
    "ConsoleFormatter",
    "log_with_context",
    "log_exception",
]
