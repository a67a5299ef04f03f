"""Health record and snapshot for the renewal manager."""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from usersync_auth.types import HealthStatus


@dataclass
class HealthRecord:
    """
    Mutable health state. Written only by the renewal manager.

    Attributes:
        status: Current health status
        started_at: When monitoring started (basis for uptime)
        last_check_at: Time of the latest health check
        last_refresh_at: Time of the latest successful renewal
        refresh_count: Successful renewals since start
        error_count: Failed renewals since the last healthy check
        last_error: Message of the latest failure, cleared when healthy
    """

    status: HealthStatus = HealthStatus.UNKNOWN
    started_at: datetime | None = None
    last_check_at: datetime | None = None
    last_refresh_at: datetime | None = None
    refresh_count: int = 0
    error_count: int = 0
    last_error: str | None = None


@dataclass(frozen=True)
class HealthSnapshot:
    """Point-in-time view combining the health record and cached token."""

    status: HealthStatus
    is_valid: bool
    expires_at: datetime | None
    time_to_expiry: float | None
    refresh_count: int
    error_count: int
    last_error: str | None
    uptime: float
    last_check_at: datetime | None = None
    last_refresh_at: datetime | None = None
    next_renewal_at: datetime | None = None
    monitoring: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Serialized shape exposed to status endpoints."""
        return {
            "status": self.status.value,
            "isValid": self.is_valid,
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
            "timeToExpiry": self.time_to_expiry,
            "refreshCount": self.refresh_count,
            "errorCount": self.error_count,
            "lastError": self.last_error,
            "uptime": self.uptime,
            "lastCheck": self.last_check_at.isoformat() if self.last_check_at else None,
            "lastRefresh": self.last_refresh_at.isoformat() if self.last_refresh_at else None,
            "nextRenewal": self.next_renewal_at.isoformat() if self.next_renewal_at else None,
            "monitoring": self.monitoring,
        }


__all__ = ["HealthRecord", "HealthSnapshot"]
