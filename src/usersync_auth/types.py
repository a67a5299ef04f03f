"""
Core types shared across the token lifecycle modules.

This module provides the enums used to classify errors, describe token
health, and grade status severity so every component speaks the same
vocabulary.
"""

from enum import Enum


class ErrorCategory(Enum):
    """
    Classification of error types for handling decisions.

    Categories:
        TRANSIENT: Temporary failures that may succeed on a later attempt
                   (e.g., network timeouts, 429/503 errors, broker outages)
        AUTH: Credentials were presented and rejected, or every acquisition
              strategy failed for the cycle
        PERMANENT: Non-retriable failures that won't succeed on retry
                   (e.g., missing credentials, malformed tokens)
        UNKNOWN: Unclassified errors
    """

    TRANSIENT = "transient"
    AUTH = "auth"
    PERMANENT = "permanent"
    UNKNOWN = "unknown"


class HealthStatus(str, Enum):
    """
    Token health as tracked by the renewal manager.

    Every status is reachable from UNKNOWN, which is only held before the
    first health check runs.
    """

    UNKNOWN = "unknown"
    HEALTHY = "healthy"
    RENEWAL_NEEDED = "renewal_needed"
    EXPIRED = "expired"
    ERROR = "error"
    RENEWED = "renewed"
    NO_TOKEN = "no_token"


class Severity(str, Enum):
    """Display severity for token status views."""

    OK = "ok"
    WARNING = "warning"
    CRITICAL = "critical"
    UNKNOWN = "unknown"


class TokenSource(str, Enum):
    """Acquisition strategy that produced a cached token."""

    BROKER = "broker"
    CLIENT_CREDENTIALS = "client_credentials"


__all__ = [
    "ErrorCategory",
    "HealthStatus",
    "Severity",
    "TokenSource",
]
