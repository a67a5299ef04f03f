"""Proactive token renewal, health tracking and status projection."""

from usersync_auth.renewal.events import (
    EventBus,
    StatusChangeEvent,
    Subscription,
    TokenRenewedEvent,
)
from usersync_auth.renewal.health import HealthRecord, HealthSnapshot
from usersync_auth.renewal.manager import ProactiveRenewalManager
from usersync_auth.renewal.status import TokenStatusProjection, TokenStatusView

__all__ = [
    "EventBus",
    "Subscription",
    "StatusChangeEvent",
    "TokenRenewedEvent",
    "HealthRecord",
    "HealthSnapshot",
    "ProactiveRenewalManager",
    "TokenStatusProjection",
    "TokenStatusView",
]
