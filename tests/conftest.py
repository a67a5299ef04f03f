"""
pytest configuration for usersync_auth tests.

Adds src directory to Python path for imports and provides shared
fixtures: a controllable clock, JWT minting, credential sets and
scripted fake providers.
"""

import asyncio
import os
import sys
from datetime import UTC, datetime, timedelta
from pathlib import Path

import jwt
import pytest

# Keep real IDP_* variables from leaking into tests
for _var in ("IDP_CLIENT_ID", "IDP_CLIENT_SECRET", "IDP_TENANT_ID", "IDP_REGION"):
    os.environ.pop(_var, None)

# Add src directory to Python path
src_dir = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_dir))

from usersync_auth.credentials.models import CredentialSet  # noqa: E402
from usersync_auth.oauth2.models import OAuth2Token  # noqa: E402
from usersync_auth.oauth2.providers.base import BaseOAuth2Provider  # noqa: E402
from usersync_auth.types import TokenSource  # noqa: E402

BASE_TIME = datetime(2026, 1, 15, 12, 0, 0, tzinfo=UTC)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = BASE_TIME):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


def make_jwt(now: datetime = BASE_TIME, lifetime_seconds: float = 3600, **claims) -> str:
    """Unsigned-for-our-purposes HS256 token with iat/exp relative to now."""
    payload = {
        "sub": "client-123",
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=lifetime_seconds)).timestamp()),
    }
    payload.update(claims)
    return jwt.encode(payload, "test-signing-secret-0123456789abcdef", algorithm="HS256")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def credentials() -> CredentialSet:
    return CredentialSet(
        client_id="client-123",
        client_secret="s3cret-value",
        tenant_id="tenant-abc",
        region="NA",
    )


@pytest.fixture
def jwt_factory():
    return make_jwt


class FakeProvider(BaseOAuth2Provider):
    """
    Scripted acquisition strategy.

    Each call consumes the next result; the last one repeats. A result is
    an access token string (one hour lifetime), a ``(token, lifetime)``
    tuple, or an exception to raise. When ``gate`` is set, calls block
    until it is released.
    """

    def __init__(self, strategy: str, clock: FakeClock, results=None, gate: asyncio.Event | None = None):
        super().__init__(clock=clock)
        self.strategy = strategy
        self.results = list(results or ["tok"])
        self.gate = gate
        self.calls = 0
        self.credentials_seen = []
        self.closed = False

    async def acquire_token(self, credentials=None) -> OAuth2Token:
        self.calls += 1
        self.credentials_seen.append(credentials)
        if self.gate is not None:
            await self.gate.wait()

        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result

        value, lifetime = result if isinstance(result, tuple) else (result, 3600)
        now = self._clock()
        return OAuth2Token(
            access_token=value,
            token_type="Bearer",
            issued_at=now,
            expires_at=now + timedelta(seconds=lifetime),
            last_refresh_at=now,
            source=TokenSource(self.strategy),
        )

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def make_provider(clock):
    def factory(strategy="client_credentials", results=None, gate=None):
        return FakeProvider(strategy, clock, results, gate)

    return factory
