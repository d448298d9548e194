"""
Event Bus Infrastructure

Architectural Intent:
- In-memory event bus implementation for publishing domain events
- Handlers are keyed by event type and also receive subclasses of that type,
  so subscribing to DomainEvent observes every deployment event
- A failing subscriber is logged and never interrupts the publisher
"""

import logging
from typing import Callable, Awaitable
from bluegreen.domain.events.event_base import DomainEvent

logger = logging.getLogger(__name__)

Handler = Callable[[DomainEvent], Awaitable[None]]


class EventBus:
    def __init__(self) -> None:
        self._handlers: dict[type, list[Handler]] = {}

    def _handlers_for(self, event: DomainEvent) -> list[Handler]:
        matched: list[Handler] = []
        for cls in type(event).__mro__:
            matched.extend(self._handlers.get(cls, ()))
        return matched

    async def publish(self, events: list[DomainEvent]) -> None:
        for event in events:
            for handler in self._handlers_for(event):
                try:
                    await handler(event)
                except Exception:
                    logger.exception("Handler for %s failed", event.event_type)

    def subscribe(self, event_type: type, handler: Handler) -> None:
        self._handlers.setdefault(event_type, []).append(handler)
