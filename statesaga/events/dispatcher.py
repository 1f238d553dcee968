"""
statesaga EventDispatcher

Instance-scoped dispatcher for lifecycle events.

Each SagaManager owns one dispatcher, injected into the transactions,
executors and rollback engines it creates. This allows:
- Testing with isolated dispatchers
- Several managers in one process with separate event streams
- Handler failures that never reach the transaction that emitted the event
"""

from typing import Callable, Dict, List, Optional
import logging

from statesaga.events.events import SagaEvent, SagaEventType


logger = logging.getLogger("statesaga.events.dispatcher")


EventHandler = Callable[[SagaEvent], None]


class EventDispatcher:
    """
    Dispatcher for transaction and step lifecycle events.

    Features:
    - Type-specific subscriptions
    - Wildcard subscriptions (receive all events)
    - Event history (configurable depth)
    - Pause/resume

    Usage:
        dispatcher = EventDispatcher()

        # Subscribe to specific event type
        unsubscribe = dispatcher.subscribe(SagaEventType.STEP_RETRY, handler)

        # Subscribe to all events (e.g., for a recorder)
        dispatcher.subscribe_all(recorder)

        # Emit an event
        dispatcher.emit(StepEvent(event_type=SagaEventType.STEP_RETRY, ...))
    """

    def __init__(self, max_history: int = 100):
        """
        Initialize the event dispatcher.

        Args:
            max_history: Maximum events to retain in history
        """
        self._max_history = max_history

        # Type-specific handlers: event_type -> list of handlers
        self._handlers: Dict[SagaEventType, List[EventHandler]] = {}

        # Wildcard handlers (receive all events)
        self._wildcard_handlers: List[EventHandler] = []

        self._history: List[SagaEvent] = []
        self._paused = False

    def subscribe(
        self,
        event_type: SagaEventType,
        handler: EventHandler,
    ) -> Callable[[], bool]:
        """
        Subscribe to events of a specific type.

        Args:
            event_type: Type of events to receive
            handler: Callback function(event) -> None

        Returns:
            Callable that removes the subscription
        """
        event_type = SagaEventType(event_type)
        handlers = self._handlers.setdefault(event_type, [])
        if handler not in handlers:
            handlers.append(handler)
            logger.debug(f"Subscribed handler to {event_type.value}")

        return lambda: self.unsubscribe(event_type, handler)

    def subscribe_all(self, handler: EventHandler) -> Callable[[], bool]:
        """
        Subscribe to all events (wildcard).

        Args:
            handler: Callback function(event) -> None

        Returns:
            Callable that removes the subscription
        """
        if handler not in self._wildcard_handlers:
            self._wildcard_handlers.append(handler)
            logger.debug("Subscribed wildcard handler")

        return lambda: self.unsubscribe_all(handler)

    def unsubscribe(
        self,
        event_type: SagaEventType,
        handler: EventHandler,
    ) -> bool:
        """
        Unsubscribe from events of a specific type.

        Returns:
            True if handler was removed
        """
        handlers = self._handlers.get(SagaEventType(event_type))
        if handlers and handler in handlers:
            handlers.remove(handler)
            if not handlers:
                del self._handlers[SagaEventType(event_type)]
            return True
        return False

    def unsubscribe_all(self, handler: EventHandler) -> bool:
        """
        Unsubscribe from wildcard events.

        Returns:
            True if handler was removed
        """
        if handler in self._wildcard_handlers:
            self._wildcard_handlers.remove(handler)
            return True
        return False

    def emit(self, event: SagaEvent) -> None:
        """
        Emit an event to all subscribers.

        Handler exceptions are logged and do not propagate.
        """
        if self._paused:
            logger.debug(f"Dispatcher paused, dropping: {event.event_type.value}")
            return

        self._history.append(event)
        if len(self._history) > self._max_history:
            self._history = self._history[-self._max_history:]

        # Copy so handlers may unsubscribe while being notified
        for handler in list(self._handlers.get(event.event_type, [])):
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Handler failed for {event.event_type.value}: {e}")

        for handler in list(self._wildcard_handlers):
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Wildcard handler failed for {event.event_type.value}: {e}")

    def pause(self) -> None:
        """Pause event emission (events are dropped)."""
        self._paused = True

    def resume(self) -> None:
        """Resume event emission."""
        self._paused = False

    def clear_handlers(self) -> None:
        """Drop every typed and wildcard handler."""
        self._handlers.clear()
        self._wildcard_handlers.clear()

    def get_history(
        self,
        limit: int = 20,
        event_type: Optional[SagaEventType] = None,
    ) -> List[SagaEvent]:
        """
        Get event history.

        Args:
            limit: Maximum events to return
            event_type: Filter by type (optional)
        """
        history = self._history
        if event_type:
            history = [e for e in history if e.event_type == event_type]
        return history[-limit:]

    def clear_history(self) -> None:
        self._history.clear()

    @property
    def handler_count(self) -> int:
        """Total number of registered handlers."""
        count = sum(len(handlers) for handlers in self._handlers.values())
        return count + len(self._wildcard_handlers)

    @property
    def event_count(self) -> int:
        """Number of events in history."""
        return len(self._history)
