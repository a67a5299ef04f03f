"""Timeout and failure normalization around a token provider."""

import asyncio
import logging
from collections.abc import Awaitable
from typing import TypeVar

from usersync_auth.errors.exceptions import (
    AuthSyncError,
    ConfigurationError,
    TransientAcquisitionError,
)
from usersync_auth.oauth2.models import OAuth2Token
from usersync_auth.oauth2.providers.base import BaseOAuth2Provider

logger = logging.getLogger(__name__)

T = TypeVar("T")


class GuardedProvider(BaseOAuth2Provider):
    """
    Wraps a provider so every acquisition either returns a token or raises
    a typed error within ``timeout_seconds``.

    - ConfigurationError and TransientAcquisitionError pass through
    - Timeouts and any other exception become TransientAcquisitionError

    Usage:
        broker = GuardedProvider(BrokerProvider(url), timeout_seconds=30)
        token = await broker.acquire_token()
    """

    def __init__(self, inner: BaseOAuth2Provider, timeout_seconds: float = 30):
        super().__init__(session=None)
        self._owns_session = False
        self.inner = inner
        self.timeout_seconds = timeout_seconds
        self.strategy = inner.strategy

    async def call(self, awaitable: Awaitable[T]) -> T:
        """Await an operation of the inner provider under the guard."""
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            raise TransientAcquisitionError(
                f"{self.strategy} exchange timed out after {self.timeout_seconds}s",
                strategy=self.strategy,
                cause=e,
            ) from e
        except (ConfigurationError, TransientAcquisitionError):
            raise
        except AuthSyncError as e:
            raise TransientAcquisitionError(
                f"{self.strategy} exchange failed: {e.message}",
                strategy=self.strategy,
                cause=e,
            ) from e
        except Exception as e:
            logger.warning(
                f"Unexpected {type(e).__name__} from {self.strategy} provider",
                extra={"strategy": self.strategy, "error": str(e)},
            )
            raise TransientAcquisitionError(
                f"{self.strategy} exchange failed: {e}",
                strategy=self.strategy,
                cause=e,
            ) from e

    async def acquire_token(self) -> OAuth2Token:
        return await self.call(self.inner.acquire_token())

    async def close(self) -> None:
        await self.inner.close()


__all__ = ["GuardedProvider"]
