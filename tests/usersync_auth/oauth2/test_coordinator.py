"""Tests for TokenAcquisitionCoordinator."""

import asyncio
import logging

import pytest

from usersync_auth.credentials.store import CredentialStore
from usersync_auth.errors import (
    ConfigurationError,
    TerminalAcquisitionError,
    TransientAcquisitionError,
)
from usersync_auth.oauth2.coordinator import TokenAcquisitionCoordinator
from usersync_auth.types import TokenSource

VALID = {"client_id": "c1", "client_secret": "s1", "tenant_id": "t1", "region": "NorthAmerica"}


def _broker_down():
    return TransientAcquisitionError("broker unreachable", strategy="broker")


def _direct_down():
    return TransientAcquisitionError("HTTP 503", strategy="client_credentials", status_code=503)


@pytest.fixture
def direct(make_provider):
    return make_provider("client_credentials", ["direct-1", "direct-2", "direct-3"])


@pytest.fixture
def coordinator(direct, clock):
    return TokenAcquisitionCoordinator(direct=direct, store=CredentialStore(), clock=clock)


async def _settle():
    for _ in range(5):
        await asyncio.sleep(0)


class TestCoalescing:
    """Concurrent callers share one acquisition cycle."""

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_exchange(self, make_provider, clock):
        gate = asyncio.Event()
        direct = make_provider("client_credentials", ["shared-token"], gate=gate)
        coordinator = TokenAcquisitionCoordinator(direct=direct, clock=clock)

        pending = asyncio.gather(*(coordinator.get_token() for _ in range(10)))
        await _settle()

        assert coordinator.is_acquiring is True
        assert coordinator.pending_waiters == 10
        assert direct.calls == 1

        gate.set()
        tokens = await pending

        assert tokens == ["shared-token"] * 10
        assert direct.calls == 1
        assert coordinator.is_acquiring is False
        assert coordinator.pending_waiters == 0

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_failure(self, make_provider, clock):
        gate = asyncio.Event()
        direct = make_provider("client_credentials", [_direct_down()], gate=gate)
        coordinator = TokenAcquisitionCoordinator(direct=direct, clock=clock)

        pending = asyncio.gather(
            *(coordinator.get_token() for _ in range(5)), return_exceptions=True
        )
        await _settle()
        gate.set()
        results = await pending

        assert direct.calls == 1
        assert all(isinstance(r, TerminalAcquisitionError) for r in results)
        assert len({id(r) for r in results}) == 1

    @pytest.mark.asyncio
    async def test_force_refresh_joins_running_cycle(self, make_provider, clock, caplog):
        caplog.set_level(logging.DEBUG, logger="usersync_auth.oauth2.coordinator")
        gate = asyncio.Event()
        direct = make_provider("client_credentials", ["tok"], gate=gate)
        coordinator = TokenAcquisitionCoordinator(direct=direct, clock=clock)

        first = asyncio.ensure_future(coordinator.get_token())
        await _settle()
        second = asyncio.ensure_future(coordinator.get_token(force_refresh=True))
        await _settle()
        gate.set()

        assert await first == await second == "tok"
        assert direct.calls == 1

        joined = [r for r in caplog.records if r.getMessage() == "Joining in-flight acquisition cycle"]
        assert len(joined) == 1
        assert joined[0].waiters == 2
        assert joined[0].force_refresh is True

    @pytest.mark.asyncio
    async def test_new_cycle_after_previous_settles(self, coordinator, direct):
        assert await coordinator.get_token() == "direct-1"
        assert await coordinator.get_token(force_refresh=True) == "direct-2"
        assert direct.calls == 2


class TestCacheValidity:
    """Token is served from cache iff inside safety buffer and max age."""

    @pytest.mark.asyncio
    async def test_cache_hit_does_not_call_provider(self, coordinator, direct):
        await coordinator.get_token()
        assert await coordinator.get_token() == "direct-1"
        assert direct.calls == 1

    @pytest.mark.asyncio
    async def test_cache_hit_completes_without_suspending(self, coordinator):
        await coordinator.get_token()

        coro = coordinator.get_token()
        with pytest.raises(StopIteration) as exc_info:
            coro.send(None)
        assert exc_info.value.value == "direct-1"

    @pytest.mark.asyncio
    async def test_inside_safety_buffer_reacquires(self, coordinator, direct, clock):
        await coordinator.get_token()

        clock.advance(3600 - 300)  # now + 300 == expires_at, not strictly before

        assert coordinator.has_valid_token() is False
        assert await coordinator.get_token() == "direct-2"
        assert direct.calls == 2

    @pytest.mark.asyncio
    async def test_just_outside_buffer_served(self, coordinator, direct, clock):
        await coordinator.get_token()
        clock.advance(3600 - 301)

        assert await coordinator.get_token() == "direct-1"
        assert direct.calls == 1

    @pytest.mark.asyncio
    async def test_max_age_ceiling(self, make_provider, clock):
        direct = make_provider("client_credentials", [("long-1", 86400), ("long-2", 86400)])
        coordinator = TokenAcquisitionCoordinator(
            direct=direct, max_token_age_seconds=1800, clock=clock
        )
        await coordinator.get_token()

        clock.advance(1799)
        assert await coordinator.get_token() == "long-1"

        clock.advance(1)
        assert await coordinator.get_token() == "long-2"

    @pytest.mark.asyncio
    async def test_force_refresh_skips_cache(self, coordinator, direct):
        await coordinator.get_token()
        assert await coordinator.get_token(force_refresh=True) == "direct-2"

    @pytest.mark.asyncio
    async def test_clear_token(self, coordinator, direct):
        await coordinator.get_token()
        coordinator.clear_token()

        assert coordinator.cached_token is None
        assert await coordinator.get_token() == "direct-2"


class TestFallback:
    """Broker first, then direct exchange; first success wins."""

    @pytest.mark.asyncio
    async def test_broker_success_skips_direct(self, make_provider, clock):
        broker = make_provider("broker", ["from-broker"])
        direct = make_provider("client_credentials", ["from-direct"])
        coordinator = TokenAcquisitionCoordinator(direct=direct, broker=broker, clock=clock)

        assert await coordinator.get_token() == "from-broker"
        assert broker.calls == 1
        assert direct.calls == 0
        assert coordinator.cached_token.source == TokenSource.BROKER

    @pytest.mark.asyncio
    async def test_broker_failure_falls_back_to_direct(self, make_provider, clock):
        broker = make_provider("broker", [_broker_down()])
        direct = make_provider("client_credentials", ["from-direct"])
        coordinator = TokenAcquisitionCoordinator(direct=direct, broker=broker, clock=clock)

        assert await coordinator.get_token() == "from-direct"
        assert broker.calls == 1
        assert direct.calls == 1
        assert coordinator.cached_token.source == TokenSource.CLIENT_CREDENTIALS

    @pytest.mark.asyncio
    async def test_broker_timeout_falls_back(self, make_provider, clock):
        broker = make_provider("broker", ["never"], gate=asyncio.Event())
        direct = make_provider("client_credentials", ["from-direct"])
        coordinator = TokenAcquisitionCoordinator(
            direct=direct, broker=broker, exchange_timeout_seconds=0.01, clock=clock
        )

        assert await coordinator.get_token() == "from-direct"

    @pytest.mark.asyncio
    async def test_broker_unexpected_error_falls_back(self, make_provider, clock):
        broker = make_provider("broker", [RuntimeError("bug in broker client")])
        direct = make_provider("client_credentials", ["from-direct"])
        coordinator = TokenAcquisitionCoordinator(direct=direct, broker=broker, clock=clock)

        assert await coordinator.get_token() == "from-direct"


class TestFailure:
    """Terminal failures clear the cache and reach every caller."""

    @pytest.mark.asyncio
    async def test_both_fail_raises_terminal(self, make_provider, clock):
        broker = make_provider("broker", [_broker_down()])
        direct = make_provider("client_credentials", [_direct_down()])
        coordinator = TokenAcquisitionCoordinator(direct=direct, broker=broker, clock=clock)

        with pytest.raises(TerminalAcquisitionError) as exc_info:
            await coordinator.get_token()

        assert exc_info.value.attempts == ["broker", "client_credentials"]
        assert isinstance(exc_info.value.cause, TransientAcquisitionError)

    @pytest.mark.asyncio
    async def test_failure_clears_cache_and_next_call_starts_new_cycle(self, make_provider, clock):
        broker = make_provider("broker", [_broker_down()])
        direct = make_provider(
            "client_credentials", ["first", _direct_down(), "recovered"]
        )
        coordinator = TokenAcquisitionCoordinator(direct=direct, broker=broker, clock=clock)

        assert await coordinator.get_token() == "first"

        with pytest.raises(TerminalAcquisitionError):
            await coordinator.get_token(force_refresh=True)
        assert coordinator.cached_token is None

        assert await coordinator.get_token() == "recovered"
        assert broker.calls == 3
        assert direct.calls == 3

    @pytest.mark.asyncio
    async def test_keep_valid_on_failure(self, make_provider, clock):
        direct = make_provider("client_credentials", ["first", _direct_down()])
        coordinator = TokenAcquisitionCoordinator(direct=direct, clock=clock)
        await coordinator.get_token()

        with pytest.raises(TerminalAcquisitionError):
            await coordinator.get_token(force_refresh=True, keep_valid_on_failure=True)

        assert coordinator.cached_token.access_token == "first"
        assert await coordinator.get_token() == "first"

    @pytest.mark.asyncio
    async def test_keep_valid_on_failure_drops_unusable_token(self, make_provider, clock):
        direct = make_provider("client_credentials", ["first", _direct_down()])
        coordinator = TokenAcquisitionCoordinator(direct=direct, clock=clock)
        await coordinator.get_token()
        clock.advance(3500)

        with pytest.raises(TerminalAcquisitionError):
            await coordinator.get_token(keep_valid_on_failure=True)

        assert coordinator.cached_token is None

    @pytest.mark.asyncio
    async def test_missing_credentials_is_configuration_error(self, make_provider, clock):
        direct = make_provider("client_credentials", [ConfigurationError("No credentials")])
        coordinator = TokenAcquisitionCoordinator(direct=direct, clock=clock)

        with pytest.raises(ConfigurationError):
            await coordinator.get_token()

    @pytest.mark.asyncio
    async def test_close_fails_in_flight_callers(self, make_provider, clock):
        direct = make_provider("client_credentials", ["tok"], gate=asyncio.Event())
        coordinator = TokenAcquisitionCoordinator(direct=direct, clock=clock)

        pending = asyncio.ensure_future(coordinator.get_token())
        await _settle()
        await coordinator.close()

        with pytest.raises(TerminalAcquisitionError, match="cancelled"):
            await pending
        assert direct.closed is True
        assert coordinator.is_acquiring is False

    @pytest.mark.asyncio
    async def test_close_before_cycle_starts_fails_callers(self, make_provider, clock):
        direct = make_provider("client_credentials", ["tok-after-close"])
        coordinator = TokenAcquisitionCoordinator(direct=direct, clock=clock)

        pending = asyncio.ensure_future(coordinator.get_token())
        # One step: get_token has created the cycle task, which has not run yet
        await asyncio.sleep(0)
        await coordinator.close()

        with pytest.raises(TerminalAcquisitionError, match="cancelled"):
            await asyncio.wait_for(pending, timeout=1)
        assert coordinator.is_acquiring is False
        assert coordinator.pending_waiters == 0
        assert direct.calls == 0

        # The coordinator remains usable
        assert await asyncio.wait_for(coordinator.get_token(), timeout=1) == "tok-after-close"


class TestTokenInfo:
    @pytest.mark.asyncio
    async def test_info_none_without_token(self, coordinator):
        assert coordinator.get_token_info() is None
        assert coordinator.has_valid_token() is False

    @pytest.mark.asyncio
    async def test_info_after_acquisition(self, coordinator, clock):
        await coordinator.get_token()
        clock.advance(600)

        info = coordinator.get_token_info()

        assert info.is_valid is True
        assert info.expires_in == 3000
        assert info.last_refresh_at < clock.now
        assert info.source == TokenSource.CLIENT_CREDENTIALS


class TestCredentialManagement:
    @pytest.mark.asyncio
    async def test_save_credentials_drops_cached_token(self, coordinator, direct):
        await coordinator.get_token()

        assert coordinator.save_credentials(VALID) is True

        assert coordinator.cached_token is None
        assert coordinator.store.get().client_id == "c1"

    @pytest.mark.asyncio
    async def test_invalid_save_keeps_token(self, coordinator):
        await coordinator.get_token()

        assert coordinator.save_credentials({**VALID, "tenant_id": ""}) is False
        assert coordinator.cached_token is not None

    @pytest.mark.asyncio
    async def test_clear_credentials(self, coordinator):
        coordinator.save_credentials(VALID)
        await coordinator.get_token()

        assert coordinator.clear_credentials() is True

        assert coordinator.store.has() is False
        assert coordinator.cached_token is None

    def test_no_store(self, direct, clock):
        coordinator = TokenAcquisitionCoordinator(direct=direct, clock=clock)
        with pytest.raises(ConfigurationError, match="No credential store"):
            coordinator.save_credentials(VALID)

    @pytest.mark.asyncio
    async def test_validate_credentials_success(self, coordinator, direct):
        result = await coordinator.validate_credentials(VALID)

        assert result.success is True
        assert direct.credentials_seen[-1].client_id == "c1"
        # Cache and store untouched
        assert coordinator.cached_token is None
        assert coordinator.store.has() is False

    @pytest.mark.asyncio
    async def test_validate_credentials_rejected(self, make_provider, clock):
        direct = make_provider(
            "client_credentials",
            [TransientAcquisitionError("Token exchange failed: Client authentication failed")],
        )
        coordinator = TokenAcquisitionCoordinator(direct=direct, clock=clock)

        result = await coordinator.validate_credentials(VALID)

        assert result.success is False
        assert "Client authentication failed" in result.message

    @pytest.mark.asyncio
    async def test_validate_incomplete_credentials(self, coordinator, direct):
        result = await coordinator.validate_credentials({"client_id": "c1"})

        assert result.success is False
        assert "client_secret" in result.message
        assert "tenant_id" in result.message
        assert direct.calls == 0
