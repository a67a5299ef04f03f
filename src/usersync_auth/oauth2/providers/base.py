"""Base token provider interface."""

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime

import aiohttp

from usersync_auth.oauth2.models import OAuth2Token, utc_now

logger = logging.getLogger(__name__)


class BaseOAuth2Provider(ABC):
    """
    Abstract base class for token acquisition strategies.

    One implementation per strategy (broker, direct client-credentials
    exchange). Implementations own their HTTP session and release it in
    :meth:`close`.
    """

    strategy: str = "unknown"

    def __init__(
        self,
        session: aiohttp.ClientSession | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize provider.

        Args:
            session: Shared HTTP session; created lazily when omitted
            clock: Time source for issued/refresh timestamps
        """
        self._session = session
        self._owns_session = session is None
        self._clock = clock

    async def _ensure_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP client session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    @abstractmethod
    async def acquire_token(self) -> OAuth2Token:
        """
        Acquire a new token.

        Returns:
            OAuth2Token with access token and expiration

        Raises:
            TransientAcquisitionError: If this strategy failed
            ConfigurationError: If the strategy cannot run at all
        """
        pass

    async def close(self) -> None:
        """Close the HTTP session if this provider created it."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()


__all__ = ["BaseOAuth2Provider"]
