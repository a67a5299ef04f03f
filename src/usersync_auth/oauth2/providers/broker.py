"""Token broker provider.

The broker is a trusted service that already holds credentials and hands
out tokens on request. It is always tried before the direct exchange.

Response shape::

    {"success": true, "token": "<jwt>",
     "tokenInfo": {"expiresAt": 1767225600000, "tokenType": "Bearer"}}

``expiresAt`` is epoch milliseconds (epoch seconds and ISO 8601 strings
are also accepted). When ``tokenInfo`` is missing, expiry is read from
the token's own claims, falling back to one hour.
"""

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import aiohttp
from pydantic import BaseModel, Field, ValidationError

from usersync_auth.errors.exceptions import TransientAcquisitionError
from usersync_auth.oauth2.models import DEFAULT_EXPIRES_IN_SECONDS, OAuth2Token, utc_now
from usersync_auth.oauth2.providers.base import BaseOAuth2Provider
from usersync_auth.oauth2.validator import TokenValidator
from usersync_auth.types import TokenSource

logger = logging.getLogger(__name__)

# Epoch values above this are milliseconds (year 5138 in seconds)
_MILLISECOND_THRESHOLD = 10**11


class BrokerTokenInfo(BaseModel):
    """Structured expiry metadata returned by the broker."""

    expires_at: float | datetime | None = Field(default=None, alias="expiresAt")
    token_type: str | None = Field(default=None, alias="tokenType")

    model_config = {"populate_by_name": True}

    def expires_at_datetime(self) -> datetime | None:
        if self.expires_at is None:
            return None
        if isinstance(self.expires_at, datetime):
            value = self.expires_at
            return value if value.tzinfo else value.replace(tzinfo=UTC)
        seconds = self.expires_at
        if seconds > _MILLISECOND_THRESHOLD:
            seconds = seconds / 1000
        return datetime.fromtimestamp(seconds, tz=UTC)


class BrokerTokenResponse(BaseModel):
    """Broker token endpoint response body."""

    success: bool = False
    token: str | None = None
    token_info: BrokerTokenInfo | None = Field(default=None, alias="tokenInfo")
    error: str | None = None
    message: str | None = None

    model_config = {"populate_by_name": True}


class BrokerProvider(BaseOAuth2Provider):
    """
    Fetches tokens from the broker endpoint with a GET request.

    Any failure (network error, non-2xx, ``success: false``, missing or
    already-expired token, issuer or audience mismatch) raises
    TransientAcquisitionError so the coordinator falls back to the direct
    exchange.
    """

    strategy = TokenSource.BROKER.value

    def __init__(
        self,
        url: str,
        validator: TokenValidator | None = None,
        timeout_seconds: float = 30,
        session: aiohttp.ClientSession | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        super().__init__(session=session, clock=clock)
        if not url:
            raise ValueError("Broker url is required")
        self.url = url
        self.validator = validator or TokenValidator(clock=clock)
        self.timeout_seconds = timeout_seconds

        logger.debug("Initialized broker provider", extra={"http_url": url})

    def _fail(self, message: str, status_code: int | None = None, cause: Exception | None = None):
        return TransientAcquisitionError(
            message,
            strategy=self.strategy,
            status_code=status_code,
            cause=cause,
            context={"url": self.url},
        )

    async def acquire_token(self) -> OAuth2Token:
        """
        Request a token from the broker.

        Raises:
            TransientAcquisitionError: If the broker cannot supply a usable token
        """
        session = await self._ensure_session()

        try:
            async with session.get(
                self.url,
                headers={"Accept": "application/json"},
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
            ) as response:
                if response.status < 200 or response.status >= 300:
                    error_text = await response.text()
                    raise self._fail(
                        f"Broker returned HTTP {response.status}: {error_text[:200]}",
                        status_code=response.status,
                    )
                data = await response.json()
        except aiohttp.ClientError as e:
            raise self._fail(f"Broker unreachable: {e}", cause=e) from e
        except ValueError as e:
            raise self._fail(f"Broker returned invalid JSON: {e}", cause=e) from e

        try:
            body = BrokerTokenResponse.model_validate(data)
        except ValidationError as e:
            raise self._fail("Broker response has unexpected shape", cause=e) from e

        if not body.success or not body.token:
            reason = body.error or body.message or "no token in response"
            raise self._fail(f"Broker declined token request: {reason}")

        return self._build_token(body)

    def _build_token(self, body: BrokerTokenResponse) -> OAuth2Token:
        now = self._clock()
        token_value = body.token

        if self.validator.checks_claims and not self.validator.validate(token_value):
            raise self._fail("Broker token failed issuer/audience validation")

        expires_at = body.token_info.expires_at_datetime() if body.token_info else None
        if expires_at is None:
            expires_at = self.validator.get_expiration(token_value)
        if expires_at is None:
            expires_at = now + timedelta(seconds=DEFAULT_EXPIRES_IN_SECONDS)

        if expires_at <= now:
            raise self._fail(f"Broker returned an expired token (expired {expires_at.isoformat()})")

        issued_at = self.validator.get_issued_at(token_value)
        if issued_at is None or issued_at >= expires_at:
            issued_at = min(now, expires_at - timedelta(seconds=1))

        token_type = (body.token_info.token_type if body.token_info else None) or "Bearer"

        logger.debug(
            "Acquired token from broker",
            extra={
                "strategy": self.strategy,
                "expires_at": expires_at.isoformat(),
                "token_type": token_type,
            },
        )

        return OAuth2Token(
            access_token=token_value,
            token_type=token_type,
            issued_at=issued_at,
            expires_at=expires_at,
            last_refresh_at=now,
            source=TokenSource.BROKER,
        )


__all__ = ["BrokerProvider", "BrokerTokenResponse", "BrokerTokenInfo"]
