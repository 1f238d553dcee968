"""
events/ - Lifecycle Events

Transaction and step lifecycle records plus the dispatcher that
delivers them to observability collaborators.
"""

from .events import (
    SagaEventType,
    SagaEvent,
    TransactionEvent,
    StepEvent,
    TRANSACTION_EVENT_TYPES,
    STEP_EVENT_TYPES,
)

from .dispatcher import (
    EventHandler,
    EventDispatcher,
)

__all__ = [
    # Events
    "SagaEventType",
    "SagaEvent",
    "TransactionEvent",
    "StepEvent",
    "TRANSACTION_EVENT_TYPES",
    "STEP_EVENT_TYPES",
    # Dispatcher
    "EventHandler",
    "EventDispatcher",
]
