"""Error hierarchy for token lifecycle management."""

from usersync_auth.errors.exceptions import (
    AuthSyncError,
    ConfigurationError,
    RenewalError,
    TerminalAcquisitionError,
    TokenValidationError,
    TransientAcquisitionError,
    classify_http_status,
)

__all__ = [
    "AuthSyncError",
    "ConfigurationError",
    "TransientAcquisitionError",
    "TerminalAcquisitionError",
    "TokenValidationError",
    "RenewalError",
    "classify_http_status",
]
