"""
Proactive token renewal.

Keeps the coordinator's token warm: a periodic health check classifies the
cached token, renewal runs ahead of expiry through the coordinator's
normal broker-then-direct path, and failures are retried on a fixed delay.
Renewal problems are recorded in the health record and published as
events; they never surface to foreground callers of ``get_token()``.
"""

import asyncio
import dataclasses
import logging
from collections.abc import Callable, Coroutine
from datetime import datetime, timedelta
from typing import Any

from usersync_auth.errors.exceptions import RenewalError
from usersync_auth.logging.context import set_log_context
from usersync_auth.logging.utilities import log_exception
from usersync_auth.oauth2.coordinator import TokenAcquisitionCoordinator
from usersync_auth.oauth2.models import utc_now
from usersync_auth.renewal.events import EventBus, StatusChangeEvent, TokenRenewedEvent
from usersync_auth.renewal.health import HealthRecord, HealthSnapshot
from usersync_auth.types import HealthStatus

logger = logging.getLogger(__name__)

DEFAULT_RENEWAL_BUFFER_SECONDS = 900
DEFAULT_HEALTH_CHECK_INTERVAL_SECONDS = 300
DEFAULT_RETRY_DELAY_SECONDS = 60


class ProactiveRenewalManager:
    """
    Health state machine and renewal scheduler around a coordinator.

    Status transitions (published as StatusChangeEvent, only on change):
        no cached token                     -> no_token
        time to expiry <= 0                 -> expired, renew
        0 < time to expiry <= buffer        -> renewal_needed, renew
        otherwise                           -> healthy
        renewal succeeded                   -> renewed
        renewal failed                      -> error, retry after fixed delay

    Usage:
        manager = ProactiveRenewalManager(coordinator)
        manager.events.subscribe(on_status, StatusChangeEvent)
        await manager.start()
        ...
        await manager.stop()
    """

    def __init__(
        self,
        coordinator: TokenAcquisitionCoordinator,
        renewal_buffer_seconds: float = DEFAULT_RENEWAL_BUFFER_SECONDS,
        health_check_interval_seconds: float = DEFAULT_HEALTH_CHECK_INTERVAL_SECONDS,
        retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.coordinator = coordinator
        self.renewal_buffer_seconds = renewal_buffer_seconds
        self.health_check_interval_seconds = health_check_interval_seconds
        self.retry_delay_seconds = retry_delay_seconds
        self._clock = clock

        self.events: EventBus = EventBus("renewal")
        self._health = HealthRecord()

        self._tick_task: asyncio.Task | None = None
        self._background: set[asyncio.Task] = set()
        self._renewal_handle: asyncio.TimerHandle | None = None
        self._retry_handle: asyncio.TimerHandle | None = None
        self._renewing = False

        self.next_renewal_at: datetime | None = None
        self.next_retry_at: datetime | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._tick_task is not None

    @property
    def is_renewing(self) -> bool:
        return self._renewing

    @property
    def health(self) -> HealthRecord:
        """Copy of the current health record."""
        return dataclasses.replace(self._health)

    async def start(self, initial_acquire: bool = True) -> None:
        """
        Start monitoring.

        Args:
            initial_acquire: Acquire a token before the first health check
        """
        if self._tick_task is not None:
            logger.warning("Renewal manager already running")
            return

        set_log_context(component="renewal")
        self._health.started_at = self._clock()
        logger.info(
            f"Starting token renewal manager (check every {self.health_check_interval_seconds:.0f}s, "
            f"renew {self.renewal_buffer_seconds:.0f}s before expiry)"
        )

        if initial_acquire and not self.coordinator.has_valid_token():
            await self.renew(method="startup")
        elif self.coordinator.cached_token is not None:
            self._schedule_next_renewal()

        await self.perform_health_check()
        self._tick_task = asyncio.create_task(self._tick_loop())

    async def stop(self) -> None:
        """Cancel the health check loop, timers and any running renewal."""
        for handle in (self._renewal_handle, self._retry_handle):
            if handle is not None:
                handle.cancel()
        self._renewal_handle = None
        self._retry_handle = None
        self.next_renewal_at = None
        self.next_retry_at = None

        tasks = list(self._background)
        if self._tick_task is not None:
            tasks.append(self._tick_task)
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass

        self._tick_task = None
        self._background.clear()
        logger.info("Token renewal manager stopped")

    async def _tick_loop(self) -> None:
        try:
            while True:
                await asyncio.sleep(self.health_check_interval_seconds)
                await self.perform_health_check()
        except asyncio.CancelledError:
            logger.debug("Health check loop cancelled")
            raise

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def _update_status(self, status: HealthStatus, message: str) -> None:
        previous = self._health.status
        self._health.status = status
        self._health.last_check_at = self._clock()

        if status == HealthStatus.ERROR:
            self._health.error_count += 1
            self._health.last_error = message
        elif status == HealthStatus.HEALTHY:
            self._health.error_count = 0
            self._health.last_error = None

        if previous != status:
            logger.info(
                f"Token status changed: {previous.value} -> {status.value}",
                extra={
                    "previous_status": previous.value,
                    "health_status": status.value,
                    "error": message if status == HealthStatus.ERROR else None,
                },
            )
            self.events.publish(
                StatusChangeEvent(
                    previous=previous,
                    current=status,
                    message=message,
                    timestamp=self._clock(),
                )
            )

    def _time_to_expiry(self) -> float | None:
        token = self.coordinator.cached_token
        if token is None:
            return None
        return token.remaining_lifetime(self._clock()).total_seconds()

    async def perform_health_check(self) -> HealthStatus:
        """Classify the cached token and renew when it is expired or close to it."""
        try:
            time_to_expiry = self._time_to_expiry()

            if time_to_expiry is None:
                self._update_status(HealthStatus.NO_TOKEN, "No token available")
            elif time_to_expiry <= 0:
                self._update_status(HealthStatus.EXPIRED, "Token has expired")
                await self.renew()
            elif time_to_expiry <= self.renewal_buffer_seconds:
                self._update_status(
                    HealthStatus.RENEWAL_NEEDED, f"Token expires in {int(time_to_expiry)}s"
                )
                await self.renew()
            else:
                self._update_status(
                    HealthStatus.HEALTHY, f"Token valid for {int(time_to_expiry)}s"
                )
        except Exception as e:
            log_exception(logger, e, "Token health check failed")
            self._update_status(HealthStatus.ERROR, str(e))

        return self._health.status

    # ------------------------------------------------------------------
    # Renewal
    # ------------------------------------------------------------------

    async def renew(self, method: str = "proactive") -> bool:
        """
        Acquire a fresh token through the coordinator.

        Returns:
            True if a new token was obtained; False if the renewal failed or
            another renewal was already running
        """
        if self._renewing:
            logger.debug("Token renewal already in progress, skipping")
            return False

        self._renewing = True
        try:
            logger.info(f"Starting {method} token renewal", extra={"method": method})
            await self.coordinator.get_token(force_refresh=True, keep_valid_on_failure=True)
        except Exception as e:
            error = RenewalError(f"Token renewal failed: {e}", cause=e)
            log_exception(logger, error, "Token renewal failed", include_traceback=False,
                          method=method)
            self._update_status(HealthStatus.ERROR, error.message)
            self._schedule_retry()
            return False
        finally:
            self._renewing = False

        now = self._clock()
        self._health.refresh_count += 1
        self._health.last_refresh_at = now
        self._cancel_retry()
        self._update_status(HealthStatus.RENEWED, f"Token renewed ({method})")
        self._schedule_next_renewal()

        self.events.publish(
            TokenRenewedEvent(
                timestamp=now,
                method=method,
                token_info=self.coordinator.get_token_info(),
            )
        )
        logger.info(
            "Token renewal completed",
            extra={"method": method, "refresh_count": self._health.refresh_count},
        )
        return True

    async def force_refresh(self) -> bool:
        """Drop the cached token and renew immediately."""
        self.coordinator.clear_token()
        return await self.renew(method="manual")

    def _schedule_next_renewal(self) -> None:
        if self._renewal_handle is not None:
            self._renewal_handle.cancel()
            self._renewal_handle = None
        self.next_renewal_at = None

        time_to_expiry = self._time_to_expiry()
        if time_to_expiry is None:
            return

        delay = time_to_expiry - self.renewal_buffer_seconds
        if delay <= 0:
            # Inside the buffer already; the next health check renews
            return

        loop = asyncio.get_running_loop()
        self._renewal_handle = loop.call_later(delay, self._on_renewal_timer)
        self.next_renewal_at = self._clock() + timedelta(seconds=delay)
        logger.debug(
            f"Next renewal in {delay:.0f}s",
            extra={"delay_seconds": delay, "next_renewal_at": self.next_renewal_at.isoformat()},
        )

    def _on_renewal_timer(self) -> None:
        self._renewal_handle = None
        self.next_renewal_at = None
        self._spawn(self.renew(method="scheduled"))

    def _schedule_retry(self) -> None:
        self._cancel_retry()
        loop = asyncio.get_running_loop()
        self._retry_handle = loop.call_later(self.retry_delay_seconds, self._on_retry_timer)
        self.next_retry_at = self._clock() + timedelta(seconds=self.retry_delay_seconds)
        logger.info(
            f"Retrying token renewal in {self.retry_delay_seconds:.0f}s",
            extra={"delay_seconds": self.retry_delay_seconds},
        )

    def _cancel_retry(self) -> None:
        if self._retry_handle is not None:
            self._retry_handle.cancel()
        self._retry_handle = None
        self.next_retry_at = None

    def _on_retry_timer(self) -> None:
        self._retry_handle = None
        self.next_retry_at = None
        self._spawn(self.renew(method="retry"))

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    def get_health_snapshot(self) -> HealthSnapshot:
        now = self._clock()
        token = self.coordinator.cached_token
        started_at = self._health.started_at
        return HealthSnapshot(
            status=self._health.status,
            is_valid=self.coordinator.has_valid_token(),
            expires_at=token.expires_at if token else None,
            time_to_expiry=token.remaining_lifetime(now).total_seconds() if token else None,
            refresh_count=self._health.refresh_count,
            error_count=self._health.error_count,
            last_error=self._health.last_error,
            uptime=(now - started_at).total_seconds() if started_at else 0.0,
            last_check_at=self._health.last_check_at,
            last_refresh_at=self._health.last_refresh_at,
            next_renewal_at=self.next_renewal_at,
            monitoring=self.is_running,
        )


__all__ = [
    "ProactiveRenewalManager",
    "DEFAULT_RENEWAL_BUFFER_SECONDS",
    "DEFAULT_HEALTH_CHECK_INTERVAL_SECONDS",
    "DEFAULT_RETRY_DELAY_SECONDS",
]
