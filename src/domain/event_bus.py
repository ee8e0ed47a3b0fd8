"""
Event Bus implementation.

The event bus provides in-process event publication and subscription.
Check-ins themselves are the durable record; events only fan out
notifications of what the check-in log and weight ledger did.
"""

import logging
from typing import Callable, Dict, List, Type, Optional, Any
import asyncio

from .events import DomainEvent


logger = logging.getLogger(__name__)


# =============================================================================
# EVENT BUS
# =============================================================================

class EventBus:
    """
    Simple in-process event bus for publishing domain events.

    Supports both sync and async event handlers.
    Events are delivered to all registered handlers for their type.
    A failing handler is logged and never interrupts the publisher.
    """

    def __init__(self):
        """Initialize event bus."""
        self._handlers: Dict[Type[DomainEvent], List[Callable]] = {}
        self._async_handlers: Dict[Type[DomainEvent], List[Callable]] = {}
        self._global_handlers: List[Callable] = []
        self._async_global_handlers: List[Callable] = []

    def subscribe(
        self,
        event_type: Type[DomainEvent],
        handler: Callable[[DomainEvent], None]
    ) -> None:
        """
        Subscribe to events of a specific type.

        Args:
            event_type: Type of event to subscribe to
            handler: Callback function to invoke
        """
        self._handlers.setdefault(event_type, []).append(handler)
        logger.debug(f"Subscribed handler to {event_type.__name__}")

    def subscribe_async(
        self,
        event_type: Type[DomainEvent],
        handler: Callable[[DomainEvent], Any]
    ) -> None:
        """
        Subscribe an async handler to events of a specific type.

        Args:
            event_type: Type of event to subscribe to
            handler: Async callback function to invoke
        """
        self._async_handlers.setdefault(event_type, []).append(handler)
        logger.debug(f"Subscribed async handler to {event_type.__name__}")

    def subscribe_all(self, handler: Callable[[DomainEvent], None]) -> None:
        """Subscribe to all events."""
        self._global_handlers.append(handler)
        logger.debug("Subscribed global handler")

    def subscribe_all_async(self, handler: Callable[[DomainEvent], Any]) -> None:
        """Subscribe an async handler to all events."""
        self._async_global_handlers.append(handler)
        logger.debug("Subscribed async global handler")

    def unsubscribe(
        self,
        event_type: Type[DomainEvent],
        handler: Callable
    ) -> bool:
        """
        Unsubscribe a handler from an event type.

        Args:
            event_type: Type of event
            handler: Handler to remove

        Returns:
            True if handler was removed
        """
        for registry in (self._handlers, self._async_handlers):
            handlers = registry.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)
                return True
        return False

    def publish(self, event: DomainEvent) -> None:
        """
        Publish an event synchronously.

        Args:
            event: Event to publish
        """
        event_type = type(event)
        handlers = self._handlers.get(event_type, []) + self._global_handlers

        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Error in event handler: {e}", exc_info=True)

    async def publish_async(self, event: DomainEvent) -> None:
        """
        Publish an event asynchronously.

        Args:
            event: Event to publish
        """
        self.publish(event)

        event_type = type(event)
        async_handlers = self._async_handlers.get(event_type, []) + self._async_global_handlers
        if async_handlers:
            await asyncio.gather(
                *[self._safe_async_call(handler, event) for handler in async_handlers],
                return_exceptions=True
            )

    async def _safe_async_call(self, handler: Callable, event: DomainEvent) -> None:
        """Safely call an async handler."""
        try:
            await handler(event)
        except Exception as e:
            logger.error(f"Error in async event handler: {e}", exc_info=True)

    def clear(self) -> None:
        """Clear all subscriptions."""
        self._handlers.clear()
        self._async_handlers.clear()
        self._global_handlers.clear()
        self._async_global_handlers.clear()


class LoggingEventHandler:
    """
    Event handler that logs all events.

    Provides observability for check-ins and rollups.
    """

    def __init__(self, logger_name: str = "domain.events"):
        self._logger = logging.getLogger(logger_name)

    def handle(self, event: DomainEvent) -> None:
        """
        Handle an event by logging it.

        Args:
            event: Event to log
        """
        self._logger.info(
            f"Event: {event.event_type.value}",
            extra={
                "event_id": str(event.event_id),
                "event_type": event.event_type.value,
                "aggregate_type": event.aggregate_type,
                "aggregate_id": event.aggregate_id,
                "occurred_at": event.occurred_at.isoformat(),
            }
        )


# =============================================================================
# GLOBAL EVENT BUS INSTANCE
# =============================================================================

_event_bus: Optional[EventBus] = None


def get_event_bus() -> EventBus:
    """Get the global event bus instance."""
    global _event_bus
    if _event_bus is None:
        _event_bus = EventBus()
    return _event_bus


def reset_event_bus() -> None:
    """Drop the global event bus (used between tests)."""
    global _event_bus
    _event_bus = None


def publish_event(event: DomainEvent) -> None:
    """Publish an event to the global event bus."""
    get_event_bus().publish(event)


async def publish_event_async(event: DomainEvent) -> None:
    """Publish an event to the global event bus asynchronously."""
    await get_event_bus().publish_async(event)
