"""Observer for health and renewal notifications."""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Generic, TypeVar

from usersync_auth.oauth2.models import TokenInfo
from usersync_auth.types import HealthStatus

logger = logging.getLogger(__name__)

E = TypeVar("E")


@dataclass(frozen=True)
class StatusChangeEvent:
    """Health status moved from ``previous`` to ``current``."""

    previous: HealthStatus
    current: HealthStatus
    message: str
    timestamp: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "previous": self.previous.value,
            "current": self.current.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class TokenRenewedEvent:
    """A renewal cycle produced a new token."""

    timestamp: datetime
    method: str
    token_info: TokenInfo | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "method": self.method,
            "tokenInfo": self.token_info.to_dict() if self.token_info else None,
        }


@dataclass(eq=False)
class Subscription:
    """Handle returned by :meth:`EventBus.subscribe`."""

    bus: "EventBus"
    handler: Callable[[Any], None]
    event_type: type | None = None
    active: bool = field(default=True)

    def unsubscribe(self) -> None:
        self.bus._remove(self)


class EventBus(Generic[E]):
    """
    Synchronous publish/subscribe.

    Handlers run in subscription order on the publisher's call stack. A
    handler that raises is logged and skipped; the remaining handlers
    still receive the event.

    Usage:
        bus = EventBus()
        sub = bus.subscribe(on_change, StatusChangeEvent)
        bus.publish(StatusChangeEvent(...))
        sub.unsubscribe()
    """

    def __init__(self, name: str = "events"):
        self.name = name
        self._subscriptions: list[Subscription] = []

    def subscribe(
        self,
        handler: Callable[[E], None],
        event_type: type | None = None,
    ) -> Subscription:
        """Register ``handler`` for every event, or only ``event_type`` instances."""
        subscription = Subscription(self, handler, event_type)
        self._subscriptions.append(subscription)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        subscription.active = False
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def publish(self, event: E) -> None:
        for subscription in list(self._subscriptions):
            if not subscription.active:
                continue
            if subscription.event_type is not None and not isinstance(
                event, subscription.event_type
            ):
                continue
            try:
                subscription.handler(event)
            except Exception as e:
                logger.error(
                    f"Event handler failed on '{self.name}' for {type(event).__name__}: {e}",
                    exc_info=True,
                )


__all__ = [
    "EventBus",
    "Subscription",
    "StatusChangeEvent",
    "TokenRenewedEvent",
]
