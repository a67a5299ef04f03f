"""OAuth2 token models and cache validity rules."""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from usersync_auth.types import TokenSource

DEFAULT_EXPIRES_IN_SECONDS = 3600


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


@dataclass(frozen=True)
class OAuth2Token:
    """
    Cached bearer token with expiration tracking.

    Attributes:
        access_token: The access token string
        token_type: Token type (typically "Bearer")
        issued_at: UTC timestamp when the provider issued the token
        expires_at: UTC timestamp when the token expires
        last_refresh_at: UTC timestamp when this process obtained it
        source: Strategy that produced the token
    """

    access_token: str
    token_type: str
    issued_at: datetime
    expires_at: datetime
    last_refresh_at: datetime
    source: TokenSource

    def __post_init__(self):
        if not self.access_token:
            raise ValueError("access_token cannot be empty")
        if self.expires_at <= self.issued_at:
            raise ValueError("expires_at must be later than issued_at")

    @classmethod
    def from_response(
        cls,
        response: dict,
        source: TokenSource,
        now: datetime | None = None,
    ) -> "OAuth2Token":
        """
        Create token from an OAuth2 token endpoint response.

        Args:
            response: Response dict with access_token and optional
                token_type / expires_in
            source: Strategy that produced the response
            now: Acquisition time (default: current UTC time)
        """
        now = now or utc_now()
        expires_in = response.get("expires_in")
        if expires_in is None:
            expires_in = DEFAULT_EXPIRES_IN_SECONDS

        return cls(
            access_token=response["access_token"],
            token_type=response.get("token_type") or "Bearer",
            issued_at=now,
            expires_at=now + timedelta(seconds=float(expires_in)),
            last_refresh_at=now,
            source=source,
        )

    def remaining_lifetime(self, now: datetime | None = None) -> timedelta:
        """Time left before nominal expiry (negative once expired)."""
        return self.expires_at - (now or utc_now())

    def age(self, now: datetime | None = None) -> timedelta:
        return (now or utc_now()) - self.last_refresh_at

    def is_usable(
        self,
        safety_buffer_seconds: float,
        max_age_seconds: float,
        now: datetime | None = None,
    ) -> bool:
        """
        Check whether the token may be served from cache.

        Usable only while ``now + safety_buffer < expires_at`` and
        ``now - last_refresh_at < max_age``.
        """
        now = now or utc_now()
        return (
            now + timedelta(seconds=safety_buffer_seconds) < self.expires_at
            and now - self.last_refresh_at < timedelta(seconds=max_age_seconds)
        )

    def info(
        self,
        safety_buffer_seconds: float,
        max_age_seconds: float,
        now: datetime | None = None,
    ) -> "TokenInfo":
        now = now or utc_now()
        return TokenInfo(
            token_type=self.token_type,
            expires_at=self.expires_at,
            expires_in=self.remaining_lifetime(now).total_seconds(),
            last_refresh_at=self.last_refresh_at,
            is_valid=self.is_usable(safety_buffer_seconds, max_age_seconds, now),
            source=self.source,
        )

    def __repr__(self) -> str:
        return (
            f"OAuth2Token(token_type={self.token_type!r}, "
            f"expires_at={self.expires_at.isoformat()}, source={self.source.value})"
        )


@dataclass(frozen=True)
class TokenInfo:
    """Read-only description of the cached token, without the token itself."""

    token_type: str
    expires_at: datetime
    expires_in: float
    last_refresh_at: datetime
    is_valid: bool
    source: TokenSource

    def to_dict(self) -> dict:
        return {
            "tokenType": self.token_type,
            "expiresAt": self.expires_at.isoformat(),
            "expiresIn": int(self.expires_in),
            "lastRefresh": self.last_refresh_at.isoformat(),
            "isValid": self.is_valid,
            "source": self.source.value,
        }


@dataclass(frozen=True)
class CredentialCheckResult:
    """Outcome of test-exchanging a credential set."""

    success: bool
    message: str


__all__ = [
    "OAuth2Token",
    "TokenInfo",
    "CredentialCheckResult",
    "utc_now",
    "DEFAULT_EXPIRES_IN_SECONDS",
]
