"""
Stateless bearer token validation.

Tokens are JWTs: three base64url segments separated by ``.``. Claims are
decoded WITHOUT signature verification; the validator answers "is this
token still worth sending", not "is this token authentic". Authenticity
is the API's job.

Every public method degrades to a safe answer on malformed input:
``decode_claims`` returns None, ``is_expired`` returns True and
``validate`` returns False. Nothing raises.
"""

import logging
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from typing import Any

import jwt

from usersync_auth.errors.exceptions import TokenValidationError
from usersync_auth.oauth2.models import utc_now

logger = logging.getLogger(__name__)

_DECODE_OPTIONS = {
    "verify_signature": False,
    "verify_exp": False,
    "verify_nbf": False,
    "verify_iat": False,
    "verify_aud": False,
    "verify_iss": False,
}


class TokenValidator:
    """
    Decode and check JWT bearer tokens.

    Args:
        issuer: Expected ``iss`` claim; skipped when None
        audience: Expected audience value(s); skipped when None. Matches if
            any expected value appears in the token's ``aud`` claim
        clock_tolerance_seconds: Allowance for clock skew in ``validate``
        clock: Time source (for tests)
    """

    def __init__(
        self,
        issuer: str | None = None,
        audience: str | Iterable[str] | None = None,
        clock_tolerance_seconds: float = 0,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.issuer = issuer or None
        if isinstance(audience, str):
            audience = [audience] if audience else None
        self.audience = list(audience) if audience else None
        self.clock_tolerance_seconds = clock_tolerance_seconds
        self._clock = clock

    @property
    def checks_claims(self) -> bool:
        """True when an issuer or audience is configured."""
        return self.issuer is not None or self.audience is not None

    def _parse(self, token: str) -> dict[str, Any]:
        if not isinstance(token, str) or not token:
            raise TokenValidationError("Token is empty")
        if token.count(".") != 2:
            raise TokenValidationError(
                f"Token has {token.count('.') + 1} segments, expected 3"
            )
        try:
            claims = jwt.decode(token, options=_DECODE_OPTIONS)
        except (jwt.PyJWTError, ValueError, TypeError) as e:
            raise TokenValidationError("Token could not be decoded", cause=e) from e
        if not isinstance(claims, dict):
            raise TokenValidationError("Token payload is not an object")
        return claims

    def decode_claims(self, token: str) -> dict[str, Any] | None:
        """Token claims, or None if the token is malformed."""
        try:
            return self._parse(token)
        except TokenValidationError as e:
            logger.debug(f"Token decode failed: {e}")
            return None

    @staticmethod
    def _numeric_claim(claims: dict[str, Any], name: str) -> float | None:
        value = claims.get(name)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        return float(value)

    def get_expiration(self, token: str) -> datetime | None:
        """``exp`` claim as an aware UTC datetime, or None."""
        claims = self.decode_claims(token)
        exp = self._numeric_claim(claims, "exp") if claims else None
        return datetime.fromtimestamp(exp, tz=UTC) if exp is not None else None

    def get_issued_at(self, token: str) -> datetime | None:
        """``iat`` claim as an aware UTC datetime, or None."""
        claims = self.decode_claims(token)
        iat = self._numeric_claim(claims, "iat") if claims else None
        return datetime.fromtimestamp(iat, tz=UTC) if iat is not None else None

    def is_expired(self, token: str, buffer_seconds: float = 0) -> bool:
        """
        True if the token is undecodable, has no ``exp``, or
        ``exp - buffer_seconds <= now``.

        A positive buffer treats the token as expired early; a negative
        buffer tolerates tokens that nominally expired up to that long ago.
        """
        claims = self.decode_claims(token)
        exp = self._numeric_claim(claims, "exp") if claims else None
        if exp is None:
            return True
        return exp - buffer_seconds <= self._clock().timestamp()

    def is_expiring_soon(self, token: str, threshold_seconds: float) -> bool:
        """True only if NOT expired and ``exp - now <= threshold_seconds``."""
        if self.is_expired(token):
            return False
        exp = self._numeric_claim(self.decode_claims(token), "exp")
        return exp - self._clock().timestamp() <= threshold_seconds

    def validate(self, token: str) -> bool:
        """
        Check, in order: decodability, non-expiry (within clock tolerance),
        issuer and audience. Unconfigured checks are skipped.
        """
        claims = self.decode_claims(token)
        if claims is None:
            logger.debug("Token validation failed: could not parse token")
            return False

        if self.is_expired(token, -self.clock_tolerance_seconds):
            logger.debug("Token validation failed: token is expired")
            return False

        if self.issuer is not None and claims.get("iss") != self.issuer:
            logger.debug(
                "Token validation failed: invalid issuer",
                extra={"error": f"expected {self.issuer!r}, got {claims.get('iss')!r}"},
            )
            return False

        if self.audience is not None:
            token_audience = claims.get("aud")
            if not isinstance(token_audience, list):
                token_audience = [token_audience]
            if not set(self.audience).intersection(
                a for a in token_audience if isinstance(a, str)
            ):
                logger.debug("Token validation failed: invalid audience")
                return False

        return True


__all__ = ["TokenValidator"]
