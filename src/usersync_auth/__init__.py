"""
Token lifecycle management for the user sync tool.

Obtains, caches, validates and proactively renews the bearer tokens used
to call the identity-provider API.

Usage:
    from usersync_auth import build_coordinator, load_settings

    coordinator = build_coordinator(load_settings())
    token = await coordinator.get_token()
"""

from usersync_auth.config import AuthSettings, load_settings
from usersync_auth.credentials import CredentialSet, CredentialStore
from usersync_auth.errors import (
    AuthSyncError,
    ConfigurationError,
    RenewalError,
    TerminalAcquisitionError,
    TokenValidationError,
    TransientAcquisitionError,
)
from usersync_auth.oauth2 import (
    TokenAcquisitionCoordinator,
    TokenValidator,
    build_coordinator,
)
from usersync_auth.renewal import ProactiveRenewalManager, TokenStatusProjection
from usersync_auth.types import HealthStatus, Severity

__version__ = "1.0.0"

__all__ = [
    "AuthSettings",
    "load_settings",
    "CredentialSet",
    "CredentialStore",
    "TokenAcquisitionCoordinator",
    "TokenValidator",
    "build_coordinator",
    "ProactiveRenewalManager",
    "TokenStatusProjection",
    "HealthStatus",
    "Severity",
    "AuthSyncError",
    "ConfigurationError",
    "TransientAcquisitionError",
    "TerminalAcquisitionError",
    "TokenValidationError",
    "RenewalError",
]
