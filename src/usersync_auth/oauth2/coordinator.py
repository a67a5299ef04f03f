"""Token acquisition coordinator with single-flight acquisition cycles."""

import asyncio
import logging
from collections import deque
from collections.abc import Callable, Mapping
from datetime import datetime
from pathlib import Path
from typing import Any

import aiohttp
from pydantic import ValidationError

from usersync_auth.config import AuthSettings
from usersync_auth.credentials.models import CredentialSet, credentials_from_env
from usersync_auth.credentials.store import (
    CredentialStore,
    InMemoryCredentialBackend,
    JsonFileCredentialBackend,
)
from usersync_auth.errors.exceptions import (
    AuthSyncError,
    ConfigurationError,
    TerminalAcquisitionError,
    TransientAcquisitionError,
)
from usersync_auth.logging.context import set_log_context
from usersync_auth.logging.setup import generate_cycle_id
from usersync_auth.logging.utilities import log_exception, log_with_context
from usersync_auth.oauth2.models import (
    CredentialCheckResult,
    OAuth2Token,
    TokenInfo,
    utc_now,
)
from usersync_auth.oauth2.providers.base import BaseOAuth2Provider
from usersync_auth.oauth2.providers.broker import BrokerProvider
from usersync_auth.oauth2.providers.client_credentials import ClientCredentialsProvider
from usersync_auth.oauth2.providers.guarded import GuardedProvider
from usersync_auth.oauth2.validator import TokenValidator
from usersync_auth.resilience.rate_limiter import RateLimiter, RateLimiterConfig

logger = logging.getLogger(__name__)

# Defaults mirror AuthSettings
DEFAULT_SAFETY_BUFFER_SECONDS = 300
DEFAULT_MAX_TOKEN_AGE_SECONDS = 3600
DEFAULT_EXCHANGE_TIMEOUT_SECONDS = 30


class TokenAcquisitionCoordinator:
    """
    Owns the cached token and runs at most one acquisition cycle at a time.

    A cycle tries the broker first (when configured) and falls back to the
    direct client-credentials exchange. Every caller that asks for a token
    while a cycle is running waits for that cycle and receives its outcome:
    the same token, or the same error.

    Usage:
        coordinator = TokenAcquisitionCoordinator(
            direct=ClientCredentialsProvider(store.get),
            broker=BrokerProvider("https://sync.example.com/api/v1/auth/token"),
            store=store,
        )

        token = await coordinator.get_token()
        headers = {"Authorization": f"Bearer {token}"}
    """

    def __init__(
        self,
        direct: ClientCredentialsProvider,
        broker: BaseOAuth2Provider | None = None,
        store: CredentialStore | None = None,
        safety_buffer_seconds: float = DEFAULT_SAFETY_BUFFER_SECONDS,
        max_token_age_seconds: float = DEFAULT_MAX_TOKEN_AGE_SECONDS,
        exchange_timeout_seconds: float = DEFAULT_EXCHANGE_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize coordinator.

        Args:
            direct: Client-credentials provider (always the last strategy)
            broker: Optional broker provider tried first
            store: Credential store used by save/clear helpers
            safety_buffer_seconds: Lead time before expiry after which the
                cached token is no longer served
            max_token_age_seconds: Hard ceiling on cached token age,
                regardless of provider-declared expiry
            exchange_timeout_seconds: Upper bound for each exchange
            clock: Time source (for tests)
        """
        self.store = store
        self.safety_buffer_seconds = safety_buffer_seconds
        self.max_token_age_seconds = max_token_age_seconds
        self.exchange_timeout_seconds = exchange_timeout_seconds
        self._clock = clock

        self._direct_provider = direct
        self._direct = GuardedProvider(direct, exchange_timeout_seconds)
        self._broker = GuardedProvider(broker, exchange_timeout_seconds) if broker else None

        self._token: OAuth2Token | None = None
        self._cycle: asyncio.Task | None = None
        self._waiters: deque[asyncio.Future] = deque()

        logger.debug(
            f"Initialized TokenAcquisitionCoordinator "
            f"(broker={'on' if broker else 'off'}, safety buffer {safety_buffer_seconds}s, "
            f"max age {max_token_age_seconds}s)"
        )

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    @property
    def cached_token(self) -> OAuth2Token | None:
        """Cached token regardless of validity."""
        return self._token

    @property
    def is_acquiring(self) -> bool:
        return self._cycle is not None

    @property
    def pending_waiters(self) -> int:
        return len(self._waiters)

    def _is_usable(self, token: OAuth2Token | None) -> bool:
        return token is not None and token.is_usable(
            self.safety_buffer_seconds, self.max_token_age_seconds, self._clock()
        )

    def has_valid_token(self) -> bool:
        return self._is_usable(self._token)

    def get_token_info(self) -> TokenInfo | None:
        """Diagnostics for the cached token, or None if nothing is cached."""
        if self._token is None:
            return None
        return self._token.info(
            self.safety_buffer_seconds, self.max_token_age_seconds, self._clock()
        )

    def clear_token(self) -> None:
        """Drop the cached token; the next request starts a new cycle."""
        self._token = None
        logger.debug("Cleared cached token")

    # ------------------------------------------------------------------
    # Acquisition
    # ------------------------------------------------------------------

    async def get_token(
        self,
        force_refresh: bool = False,
        keep_valid_on_failure: bool = False,
    ) -> str:
        """
        Get an access token, acquiring one if the cache can't serve it.

        Returns immediately, without suspending, when the cached token is
        usable. Otherwise joins the running cycle or starts one.

        Args:
            force_refresh: Skip the cache (still joins a running cycle)
            keep_valid_on_failure: If a cycle started by this call fails,
                keep the previous token while it is still usable instead of
                clearing the cache. Used by background renewal.

        Returns:
            Access token string

        Raises:
            ConfigurationError: If no credentials are available for the
                direct exchange
            TerminalAcquisitionError: If every strategy failed
        """
        if not force_refresh and self._is_usable(self._token):
            return self._token.access_token

        waiter: asyncio.Future[OAuth2Token] = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)

        if self._cycle is None:
            self._cycle = asyncio.create_task(self._run_cycle(keep_valid_on_failure))
        else:
            log_with_context(
                logger, logging.DEBUG, "Joining in-flight acquisition cycle",
                waiters=len(self._waiters), force_refresh=force_refresh,
            )

        token = await waiter
        return token.access_token

    async def _run_cycle(self, keep_valid_on_failure: bool) -> None:
        set_log_context(cycle_id=generate_cycle_id())
        attempts: list[str] = []

        try:
            token = None
            error: AuthSyncError | None = None
            strategies = [p for p in (self._broker, self._direct) if p is not None]

            for provider in strategies:
                attempts.append(provider.strategy)
                is_last = provider is strategies[-1]
                try:
                    token = await provider.acquire_token()
                    break
                except (ConfigurationError, TransientAcquisitionError) as e:
                    error = e
                    if not is_last:
                        logger.warning(
                            f"{provider.strategy} acquisition failed, falling back: {e.message}",
                            extra={"strategy": provider.strategy, "error": e.message},
                        )

            if token is not None:
                self._settle_success(token, attempts)
                return

            if not isinstance(error, ConfigurationError):
                error = TerminalAcquisitionError(
                    f"All token acquisition strategies failed: {error.message if error else 'none'}",
                    attempts=attempts,
                    cause=error,
                )
            self._settle_failure(error, keep_valid_on_failure)

        except asyncio.CancelledError:
            self._settle_failure(
                TerminalAcquisitionError("Token acquisition cancelled", attempts=attempts),
                keep_valid_on_failure=False,
            )
            raise

    def _drain_waiters(self) -> list[asyncio.Future]:
        waiters = list(self._waiters)
        self._waiters.clear()
        self._cycle = None
        return waiters

    def _settle_success(self, token: OAuth2Token, attempts: list[str]) -> None:
        self._token = token
        waiters = self._drain_waiters()

        logger.info(
            f"Token acquired via {token.source.value}, valid until {token.expires_at.isoformat()}",
            extra={
                "token_source": token.source.value,
                "expires_at": token.expires_at.isoformat(),
                "attempts": attempts,
                "waiters": len(waiters),
            },
        )

        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(token)

    def _settle_failure(self, error: AuthSyncError, keep_valid_on_failure: bool) -> None:
        if keep_valid_on_failure and self._is_usable(self._token):
            logger.warning("Acquisition failed; keeping previous token while it remains valid")
        else:
            self._token = None
        waiters = self._drain_waiters()

        log_exception(
            logger,
            error,
            "Token acquisition failed",
            include_traceback=False,
            waiters=len(waiters),
        )

        for waiter in waiters:
            if not waiter.done():
                waiter.set_exception(error)

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def _require_store(self) -> CredentialStore:
        if self.store is None:
            raise ConfigurationError("No credential store attached to coordinator")
        return self.store

    def save_credentials(self, credentials: CredentialSet | Mapping[str, Any]) -> bool:
        """Store new credentials and drop the token minted with the old ones."""
        saved = self._require_store().save(credentials)
        if saved:
            self.clear_token()
        return saved

    def clear_credentials(self) -> bool:
        cleared = self._require_store().clear()
        self.clear_token()
        return cleared

    async def validate_credentials(
        self, credentials: CredentialSet | Mapping[str, Any]
    ) -> CredentialCheckResult:
        """
        Test credentials with one direct exchange.

        The cache and stored credentials are left untouched.
        """
        if not isinstance(credentials, CredentialSet):
            try:
                credentials = CredentialSet.model_validate(dict(credentials or {}))
            except ValidationError as e:
                fields = sorted({str(err["loc"][0]) for err in e.errors() if err["loc"]})
                return CredentialCheckResult(False, f"Missing or invalid fields: {', '.join(fields)}")

        try:
            await self._direct.call(self._direct_provider.acquire_token(credentials))
        except AuthSyncError as e:
            return CredentialCheckResult(False, e.message)

        return CredentialCheckResult(True, "Credentials are valid")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Cancel any running cycle and close provider sessions."""
        cycle = self._cycle
        if cycle is not None:
            cycle.cancel()
            try:
                await cycle
            except asyncio.CancelledError:
                pass

        # A cycle cancelled before its first step never reaches its own handler
        if self._cycle is not None or self._waiters:
            self._settle_failure(
                TerminalAcquisitionError("Token acquisition cancelled", attempts=[]),
                keep_valid_on_failure=False,
            )

        for provider in (self._broker, self._direct):
            if provider is None:
                continue
            try:
                await provider.close()
            except Exception as e:
                logger.warning(f"Error closing {provider.strategy} provider: {e}")

        self._token = None
        logger.info("TokenAcquisitionCoordinator closed")


def build_credential_store(settings: AuthSettings) -> CredentialStore:
    """Credential store for the configured persistence, seeded from IDP_* env vars."""
    if settings.credentials_file:
        backend = JsonFileCredentialBackend(Path(settings.credentials_file))
    else:
        backend = InMemoryCredentialBackend()
    store = CredentialStore(backend)

    if not store.has():
        try:
            env_credentials = credentials_from_env(settings.default_region)
        except ValidationError as e:
            raise ConfigurationError("IDP_* environment credentials are invalid", cause=e) from e
        if env_credentials is not None:
            store.save(env_credentials)
            logger.info("Loaded credentials from environment")
    return store


def build_coordinator(
    settings: AuthSettings,
    store: CredentialStore | None = None,
    session: aiohttp.ClientSession | None = None,
    clock: Callable[[], datetime] = utc_now,
) -> TokenAcquisitionCoordinator:
    """Wire a coordinator from settings."""
    store = store or build_credential_store(settings)
    validator = TokenValidator(
        issuer=settings.issuer,
        audience=settings.audience,
        clock_tolerance_seconds=settings.clock_tolerance_seconds,
        clock=clock,
    )

    broker = None
    if settings.broker_enabled and settings.broker_url:
        broker = BrokerProvider(
            settings.broker_url,
            validator=validator,
            timeout_seconds=settings.exchange_timeout_seconds,
            session=session,
            clock=clock,
        )

    direct = ClientCredentialsProvider(
        store.get,
        rate_limiter=RateLimiter(
            RateLimiterConfig(calls_per_second=settings.token_requests_per_second)
        ),
        timeout_seconds=settings.exchange_timeout_seconds,
        session=session,
        clock=clock,
    )

    return TokenAcquisitionCoordinator(
        direct=direct,
        broker=broker,
        store=store,
        safety_buffer_seconds=settings.safety_buffer_seconds,
        max_token_age_seconds=settings.max_token_age_seconds,
        exchange_timeout_seconds=settings.exchange_timeout_seconds,
        clock=clock,
    )


__all__ = [
    "TokenAcquisitionCoordinator",
    "build_coordinator",
    "build_credential_store",
]
