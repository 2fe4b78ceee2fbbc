"""Notification dispatch for scheduling events.

Delivery (email, SMS, push) is owned by another service. The core only
emits events; a failed dispatch is logged and never affects the
operation that produced it.
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class NotificationEvent(str, Enum):
    """Events emitted by the scheduling core."""

    BOOKING_CONFIRMED = "booking_confirmed"
    APPOINTMENT_CANCELLED = "appointment_cancelled"
    QUEUE_POSITION_UPDATE = "queue_position_update"


class NotificationDispatcher(ABC):
    """Abstract base class for notification dispatchers."""

    @abstractmethod
    async def notify(self, event: NotificationEvent, payload: dict[str, Any]) -> None:
        """Hand an event to the delivery service."""
        pass


class LoggingNotificationDispatcher(NotificationDispatcher):
    """Dispatcher that only logs events.

    Used when no delivery service is configured (development and tests).
    """

    async def notify(self, event: NotificationEvent, payload: dict[str, Any]) -> None:
        logger.info(
            f"Notification {event.value}: {payload}",
            extra={"action": f"notify_{event.value}"},
        )


async def dispatch_safely(
    dispatcher: NotificationDispatcher | None,
    event: NotificationEvent,
    payload: dict[str, Any],
) -> bool:
    """Send a notification, logging and swallowing any dispatcher failure.

    Returns:
        True if the dispatcher accepted the event
    """
    if dispatcher is None:
        return False
    try:
        await dispatcher.notify(event, payload)
        return True
    except Exception:
        logger.exception(f"Failed to dispatch {event.value} notification")
        return False
