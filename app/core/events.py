"""
In-process domain events.

Services publish an event once their transaction has committed. Subscribers
(cache invalidation, search indexing) run afterwards; a failing subscriber is
logged and never reaches the caller.
"""
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional
import logging

logger = logging.getLogger(__name__)

Handler = Callable[["DomainEvent"], Awaitable[None]]


@dataclass(frozen=True)
class DomainEvent:
    entity_type: str
    action: str
    entity_id: Optional[int] = None
    data: Dict[str, Any] = field(default_factory=dict)


class EventBus:
    def __init__(self):
        self._handlers: Dict[str, List[Handler]] = {}

    def subscribe(self, entity_type: str, handler: Handler) -> None:
        """Register a handler for an entity type, or "*" for every event"""
        self._handlers.setdefault(entity_type, []).append(handler)

    def clear(self) -> None:
        self._handlers.clear()

    async def publish(self, event: DomainEvent) -> None:
        handlers = self._handlers.get(event.entity_type, []) + self._handlers.get("*", [])
        for handler in handlers:
            try:
                await handler(event)
            except Exception:
                logger.exception(
                    f"Event handler {getattr(handler, '__name__', handler)} failed for "
                    f"{event.entity_type}:{event.action} ({event.entity_id})"
                )


# Global event bus instance
event_bus = EventBus()
