"""Direct client-credentials exchange with the identity provider."""

import logging
from collections.abc import Callable
from datetime import datetime

import aiohttp
from pydantic import BaseModel, ValidationError

from usersync_auth.credentials.models import CredentialSet
from usersync_auth.errors.exceptions import (
    ConfigurationError,
    TransientAcquisitionError,
    classify_http_status,
)
from usersync_auth.oauth2.models import OAuth2Token, utc_now
from usersync_auth.oauth2.providers.base import BaseOAuth2Provider
from usersync_auth.resilience.rate_limiter import RateLimiter
from usersync_auth.types import TokenSource

logger = logging.getLogger(__name__)


class TokenEndpointResponse(BaseModel):
    """Token endpoint body; either a token or an OAuth2 error."""

    access_token: str | None = None
    token_type: str | None = None
    expires_in: float | None = None
    error: str | None = None
    error_description: str | None = None

    def error_text(self) -> str | None:
        return self.error_description or self.error


class ClientCredentialsProvider(BaseOAuth2Provider):
    """
    Exchanges stored client credentials for a token.

    POSTs ``grant_type=client_credentials`` to
    ``https://{auth_domain}/{tenant_id}/as/token`` with HTTP Basic auth of
    ``client_id:client_secret``. Credentials are read from the source on
    every acquisition so newly saved credentials take effect immediately.

    Args:
        credential_source: Returns the current credentials, or None
        rate_limiter: Spaces out token requests (default 20/s)
        timeout_seconds: HTTP timeout per request
    """

    strategy = TokenSource.CLIENT_CREDENTIALS.value

    def __init__(
        self,
        credential_source: Callable[[], CredentialSet | None],
        rate_limiter: RateLimiter | None = None,
        timeout_seconds: float = 30,
        session: aiohttp.ClientSession | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        super().__init__(session=session, clock=clock)
        self.credential_source = credential_source
        self.rate_limiter = rate_limiter or RateLimiter()
        self.timeout_seconds = timeout_seconds

    async def acquire_token(self, credentials: CredentialSet | None = None) -> OAuth2Token:
        """
        Exchange credentials for a token.

        Args:
            credentials: Use these instead of the credential source

        Raises:
            ConfigurationError: If no usable credentials exist
            TransientAcquisitionError: If the exchange failed
        """
        if credentials is None:
            credentials = self.credential_source()
        if credentials is None:
            raise ConfigurationError(
                "No credentials configured for client-credentials exchange. "
                "Save client id, client secret, tenant id and region first."
            )

        token_url = credentials.token_url
        session = await self._ensure_session()
        await self.rate_limiter.acquire()

        auth = aiohttp.BasicAuth(
            credentials.client_id, credentials.client_secret.get_secret_value()
        )

        try:
            async with session.post(
                token_url,
                data={"grant_type": "client_credentials"},
                auth=auth,
                headers={"Accept": "application/json"},
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
            ) as response:
                status = response.status
                try:
                    data = await response.json(content_type=None)
                except ValueError:
                    data = {"error": (await response.text())[:200] or f"HTTP {status}"}
        except aiohttp.ClientError as e:
            logger.error(
                f"HTTP error during token exchange: {e}",
                extra={"http_url": token_url, "client_id": credentials.client_id},
            )
            raise TransientAcquisitionError(
                f"HTTP error: {e}", strategy=self.strategy, cause=e
            ) from e

        try:
            body = TokenEndpointResponse.model_validate(data if isinstance(data, dict) else {})
        except ValidationError as e:
            raise TransientAcquisitionError(
                "Token endpoint response has unexpected shape",
                strategy=self.strategy,
                status_code=status,
                cause=e,
            ) from e

        if status != 200 or not body.access_token:
            detail = body.error_text() or f"HTTP {status}"
            logger.error(
                f"Token exchange failed: {detail}",
                extra={
                    "http_status": status,
                    "http_url": token_url,
                    "client_id": credentials.client_id,
                    "error_category": classify_http_status(status).value,
                },
            )
            raise TransientAcquisitionError(
                f"Token exchange failed: {detail}",
                strategy=self.strategy,
                status_code=status,
                context={
                    "error": body.error,
                    "error_category": classify_http_status(status).value,
                },
            )

        logger.debug(
            "Acquired token via client credentials",
            extra={
                "strategy": self.strategy,
                "expires_in": body.expires_in,
                "tenant_id": credentials.tenant_id,
                "auth_domain": credentials.resolved_region.auth_domain,
            },
        )

        try:
            return OAuth2Token.from_response(
                body.model_dump(),
                source=TokenSource.CLIENT_CREDENTIALS,
                now=self._clock(),
            )
        except ValueError as e:
            raise TransientAcquisitionError(
                f"Token endpoint returned an unusable token: {e}",
                strategy=self.strategy,
                status_code=status,
                cause=e,
            ) from e


__all__ = ["ClientCredentialsProvider", "TokenEndpointResponse"]
