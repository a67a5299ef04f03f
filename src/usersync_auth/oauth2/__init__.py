"""
Bearer token acquisition, caching and validation.

Provides a coordinator that serves tokens from cache while they are
usable and otherwise runs a single acquisition cycle shared by every
concurrent caller: broker first, then the direct client-credentials
exchange.

Usage:
    from usersync_auth.config import load_settings
    from usersync_auth.oauth2 import build_coordinator

    coordinator = build_coordinator(load_settings())

    token = await coordinator.get_token()
    headers = {"Authorization": f"Bearer {token}"}

    info = coordinator.get_token_info()
    print(info.expires_in, info.source)

    await coordinator.close()

Validating a token without calling the provider:
    validator = TokenValidator(issuer="https://auth.pingone.com/t1/as",
                               clock_tolerance_seconds=30)
    validator.validate(token)
    validator.is_expiring_soon(token, 900)
"""

from usersync_auth.oauth2.coordinator import (
    TokenAcquisitionCoordinator,
    build_coordinator,
    build_credential_store,
)
from usersync_auth.oauth2.models import (
    CredentialCheckResult,
    OAuth2Token,
    TokenInfo,
    utc_now,
)
from usersync_auth.oauth2.providers import (
    BaseOAuth2Provider,
    BrokerProvider,
    ClientCredentialsProvider,
    GuardedProvider,
)
from usersync_auth.oauth2.validator import TokenValidator

__all__ = [
    "TokenAcquisitionCoordinator",
    "build_coordinator",
    "build_credential_store",
    "OAuth2Token",
    "TokenInfo",
    "CredentialCheckResult",
    "utc_now",
    "TokenValidator",
    "BaseOAuth2Provider",
    "BrokerProvider",
    "ClientCredentialsProvider",
    "GuardedProvider",
]
