"""
Unified exception hierarchy for usersync_auth.

Provides typed exceptions with retry classification so the coordinator,
renewal manager and callers can decide how to react to a failure without
inspecting messages.
"""

from usersync_auth.types import ErrorCategory


class AuthSyncError(Exception):
    """
    Base exception for all token lifecycle errors.

    Attributes:
        message: Human-readable error description
        category: Error classification for retry decisions
        cause: Original exception if wrapping
        context: Additional context dict for debugging
    """

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        self.message = message
        self.cause = cause
        self.context = context or {}
        super().__init__(message)

    @property
    def is_retryable(self) -> bool:
        return self.category in (
            ErrorCategory.TRANSIENT,
            ErrorCategory.UNKNOWN,
        )

    def __str__(self) -> str:
        parts = [self.message]
        if self.cause:
            parts.append(f"Caused by: {self.cause}")
        return " | ".join(parts)


# =============================================================================
# Configuration Errors (Don't Retry)
# =============================================================================


class ConfigurationError(AuthSyncError):
    """Credentials or settings are missing or incomplete.

    Never auto-retried; surfaced to the caller immediately.
    """

    category = ErrorCategory.PERMANENT


# =============================================================================
# Acquisition Errors
# =============================================================================


class TransientAcquisitionError(AuthSyncError):
    """One acquisition strategy failed (network, timeout, broker refusal).

    Triggers fallback to the next strategy within the same cycle.
    """

    category = ErrorCategory.TRANSIENT

    def __init__(
        self,
        message: str,
        strategy: str | None = None,
        status_code: int | None = None,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        super().__init__(message, cause, context)
        self.strategy = strategy
        self.status_code = status_code


class TerminalAcquisitionError(AuthSyncError):
    """Every acquisition strategy failed for a cycle.

    Delivered to every caller that joined the cycle.
    """

    category = ErrorCategory.AUTH

    def __init__(
        self,
        message: str,
        attempts: list[str] | None = None,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        super().__init__(message, cause, context)
        self.attempts = attempts or []


# =============================================================================
# Validation / Renewal Errors
# =============================================================================


class TokenValidationError(AuthSyncError):
    """Bearer token could not be decoded. Never leaves the validator."""

    category = ErrorCategory.PERMANENT


class RenewalError(AuthSyncError):
    """Proactive renewal failed; recorded in the health record and retried."""

    category = ErrorCategory.TRANSIENT


# =============================================================================
# Error Classification Utilities
# =============================================================================


def classify_http_status(status_code: int) -> ErrorCategory:
    """Classify a token endpoint HTTP status code into an error category."""
    if 200 <= status_code < 300:
        return ErrorCategory.UNKNOWN  # Not an error

    if status_code == 429:
        return ErrorCategory.TRANSIENT  # Rate limited

    if status_code in (400, 401, 403):
        return ErrorCategory.PERMANENT  # Bad client or grant, retrying won't fix it

    if 400 <= status_code < 500:
        return ErrorCategory.PERMANENT

    if status_code >= 500:
        return ErrorCategory.TRANSIENT  # Server errors, may recover

    return ErrorCategory.UNKNOWN




__all__ = [
    "AuthSyncError",
    "ConfigurationError",
    "TransientAcquisitionError",
    "TerminalAcquisitionError",
    "TokenValidationError",
    "RenewalError",
    "classify_http_status",
]
