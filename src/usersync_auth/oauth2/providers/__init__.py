"""Token acquisition strategies."""

from usersync_auth.oauth2.providers.base import BaseOAuth2Provider
from usersync_auth.oauth2.providers.broker import BrokerProvider
from usersync_auth.oauth2.providers.client_credentials import ClientCredentialsProvider
from usersync_auth.oauth2.providers.guarded import GuardedProvider

__all__ = [
    "BaseOAuth2Provider",
    "BrokerProvider",
    "ClientCredentialsProvider",
    "GuardedProvider",
]
