"""Read-only token status projection for display and telemetry."""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from usersync_auth.oauth2.coordinator import TokenAcquisitionCoordinator
from usersync_auth.oauth2.models import utc_now
from usersync_auth.renewal.events import EventBus, Subscription
from usersync_auth.renewal.manager import ProactiveRenewalManager
from usersync_auth.types import HealthStatus, Severity

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 10
DEFAULT_WARNING_THRESHOLD_SECONDS = 300

_STATUS_SEVERITY = {
    HealthStatus.HEALTHY: Severity.OK,
    HealthStatus.RENEWED: Severity.OK,
    HealthStatus.RENEWAL_NEEDED: Severity.WARNING,
    HealthStatus.EXPIRED: Severity.CRITICAL,
    HealthStatus.NO_TOKEN: Severity.CRITICAL,
    HealthStatus.ERROR: Severity.CRITICAL,
    HealthStatus.UNKNOWN: Severity.UNKNOWN,
}


def format_duration(seconds: float) -> str:
    """Compact human duration, e.g. ``1h 02m`` or ``4m 09s``."""
    seconds = max(0, int(seconds))
    hours, rem = divmod(seconds, 3600)
    minutes, secs = divmod(rem, 60)
    if hours:
        return f"{hours}h {minutes:02d}m"
    if minutes:
        return f"{minutes}m {secs:02d}s"
    return f"{secs}s"


@dataclass(frozen=True)
class TokenStatusView:
    """Display shape combining the cached token and health record."""

    status: HealthStatus
    status_text: str
    severity: Severity
    is_valid: bool
    seconds_remaining: int
    expires_at: datetime | None
    refresh_count: int
    error_count: int
    last_error: str | None
    token_source: str | None
    updated_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "statusText": self.status_text,
            "severity": self.severity.value,
            "isValid": self.is_valid,
            "secondsRemaining": self.seconds_remaining,
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
            "refreshCount": self.refresh_count,
            "errorCount": self.error_count,
            "lastError": self.last_error,
            "tokenSource": self.token_source,
            "updatedAt": self.updated_at.isoformat(),
        }


class TokenStatusProjection:
    """
    Builds TokenStatusView snapshots without mutating coordinator or
    renewal state.

    When started, refreshes on a fixed poll interval and immediately on
    every renewal event, publishing each view on :attr:`updates`.

    Args:
        coordinator: Source of the cached token
        renewal_manager: Source of the health record; optional on
            clients that run without proactive renewal
        poll_interval_seconds: Refresh period while started
        warning_threshold_seconds: Remaining lifetime at or below which a
            valid token is shown as a warning
    """

    def __init__(
        self,
        coordinator: TokenAcquisitionCoordinator,
        renewal_manager: ProactiveRenewalManager | None = None,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        warning_threshold_seconds: float = DEFAULT_WARNING_THRESHOLD_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.coordinator = coordinator
        self.renewal_manager = renewal_manager
        self.poll_interval_seconds = poll_interval_seconds
        self.warning_threshold_seconds = warning_threshold_seconds
        self._clock = clock

        self.updates: EventBus = EventBus("token_status")
        self.latest: TokenStatusView | None = None
        self._task: asyncio.Task | None = None
        self._subscription: Subscription | None = None

    def _derive_status(self, seconds_remaining: float | None, is_valid: bool) -> HealthStatus:
        if seconds_remaining is None:
            return HealthStatus.NO_TOKEN
        if seconds_remaining <= 0:
            return HealthStatus.EXPIRED
        if not is_valid:
            return HealthStatus.RENEWAL_NEEDED
        return HealthStatus.HEALTHY

    def _status_text(
        self, status: HealthStatus, seconds_remaining: float | None, last_error: str | None
    ) -> str:
        if status == HealthStatus.ERROR:
            return f"Renewal failed: {last_error}" if last_error else "Renewal failed"
        if seconds_remaining is None:
            return "No token"
        if seconds_remaining <= 0:
            return "Expired"
        if status == HealthStatus.RENEWAL_NEEDED:
            return f"Renewing, expires in {format_duration(seconds_remaining)}"
        return f"Valid for {format_duration(seconds_remaining)}"

    def _severity(
        self, status: HealthStatus, is_valid: bool, seconds_remaining: float | None
    ) -> Severity:
        severity = _STATUS_SEVERITY[status]
        if seconds_remaining is not None and seconds_remaining <= 0:
            return Severity.CRITICAL
        if (
            severity == Severity.OK
            and is_valid
            and seconds_remaining is not None
            and seconds_remaining <= self.warning_threshold_seconds
        ):
            return Severity.WARNING
        return severity

    def snapshot(self) -> TokenStatusView:
        """Current status view."""
        now = self._clock()
        token = self.coordinator.cached_token
        is_valid = self.coordinator.has_valid_token()
        seconds_remaining = (
            token.remaining_lifetime(now).total_seconds() if token is not None else None
        )

        if self.renewal_manager is not None:
            health = self.renewal_manager.health
            status = health.status
            if status == HealthStatus.UNKNOWN:
                status = self._derive_status(seconds_remaining, is_valid)
            refresh_count, error_count, last_error = (
                health.refresh_count,
                health.error_count,
                health.last_error,
            )
        else:
            status = self._derive_status(seconds_remaining, is_valid)
            refresh_count, error_count, last_error = 0, 0, None

        return TokenStatusView(
            status=status,
            status_text=self._status_text(status, seconds_remaining, last_error),
            severity=self._severity(status, is_valid, seconds_remaining),
            is_valid=is_valid,
            seconds_remaining=max(0, int(seconds_remaining)) if seconds_remaining else 0,
            expires_at=token.expires_at if token else None,
            refresh_count=refresh_count,
            error_count=error_count,
            last_error=last_error,
            token_source=token.source.value if token else None,
            updated_at=now,
        )

    def refresh(self) -> TokenStatusView:
        """Take a snapshot and publish it to :attr:`updates`."""
        view = self.snapshot()
        self.latest = view
        self.updates.publish(view)
        return view

    def _on_renewal_event(self, event: Any) -> None:
        self.refresh()

    def start(self) -> None:
        """Begin polling and follow renewal events."""
        if self._task is not None:
            logger.warning("Token status projection already running")
            return

        if self.renewal_manager is not None:
            self._subscription = self.renewal_manager.events.subscribe(self._on_renewal_event)
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run(self) -> None:
        try:
            while True:
                self.refresh()
                await asyncio.sleep(self.poll_interval_seconds)
        except asyncio.CancelledError:
            logger.debug("Token status polling cancelled")
            raise


__all__ = ["TokenStatusProjection", "TokenStatusView", "format_duration"]
