# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""In-process async event bus.

Domain services publish what they changed (an enrollment was created,
a code was deactivated) and interested components react without a direct
dependency on the publisher. The enrollment cache uses it to drop entries
made stale by local writes.

Subscriptions match either an exact event type or a wildcard pattern:

    bus = EventBus()
    bus.subscribe(EventTypes.Enrollment.CREATED, on_created)
    bus.subscribe(EventPatterns.ALL_ENROLLMENT, on_any_enrollment_change)

    await bus.publish(
        EventTypes.Enrollment.CREATED,
        {"enrollment_id": "e1", "student_id": "s1", "teacher_id": "t1"},
    )

Thread-safety: single-threaded async use only.
"""

import asyncio
import fnmatch
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable
from uuid import uuid4

from src.utils.datetime import utc_now

logger = logging.getLogger(__name__)

EventHandler = Callable[["EventData"], Awaitable[None]]


@dataclass
class EventData:
    """A published event.

    Attributes:
        event_type: The event type string.
        payload: Event-specific data.
        event_id: Unique event identifier.
        timestamp: When the event was published.
    """

    event_type: str
    payload: dict[str, Any]
    event_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=utc_now)


def _is_pattern(event_type: str) -> bool:
    return "*" in event_type or "?" in event_type


class EventBus:
    """Async publish/subscribe with fnmatch-style patterns.

    Handlers run concurrently per publish. A failing handler is logged
    and does not affect the publisher or the other handlers.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = {}
        self._event_count = 0
        logger.debug("EventBus initialized")

    def subscribe(self, event_type: str, handler: EventHandler) -> Callable[[], bool]:
        """Register ``handler`` for an event type or pattern.

        Returns:
            A callable that removes this registration again.
        """
        self._handlers.setdefault(event_type, []).append(handler)
        logger.debug(
            "Subscribed %s handler to: %s",
            "pattern" if _is_pattern(event_type) else "exact",
            event_type,
        )
        return lambda: self.unsubscribe(event_type, handler)

    def unsubscribe(self, event_type: str, handler: EventHandler) -> bool:
        """Remove a registration. Returns False if it was not present."""
        handlers = self._handlers.get(event_type)
        if not handlers or handler not in handlers:
            return False
        handlers.remove(handler)
        if not handlers:
            del self._handlers[event_type]
        return True

    def handlers_for(self, event_type: str) -> list[EventHandler]:
        """All handlers an event of ``event_type`` would be delivered to."""
        matched: list[EventHandler] = []
        for registered, handlers in self._handlers.items():
            if registered == event_type or (
                _is_pattern(registered) and fnmatch.fnmatch(event_type, registered)
            ):
                matched.extend(handlers)
        return matched

    async def publish(self, event_type: str, payload: dict[str, Any]) -> EventData:
        """Deliver an event to every matching handler.

        Args:
            event_type: The event type string.
            payload: Event data dictionary.

        Returns:
            The published EventData.
        """
        event = EventData(event_type=event_type, payload=payload)
        self._event_count += 1

        handlers = self.handlers_for(event_type)
        if not handlers:
            logger.debug("No handlers for event: %s", event_type)
            return event

        logger.debug("Publishing event %s to %d handlers", event_type, len(handlers))

        async def safe_call(handler: EventHandler) -> None:
            try:
                await handler(event)
            except Exception as e:
                logger.error(
                    "Handler error for event %s: %s",
                    event_type,
                    str(e),
                    exc_info=True,
                )

        await asyncio.gather(*[safe_call(handler) for handler in handlers])
        return event

    def clear(self) -> None:
        """Remove all subscriptions."""
        self._handlers.clear()

    def get_stats(self) -> dict[str, Any]:
        """Subscription and publish counters."""
        return {
            "subscriptions": len(self._handlers),
            "total_handlers": sum(len(h) for h in self._handlers.values()),
            "events_published": self._event_count,
            "event_types": sorted(self._handlers),
        }
