"""
statesaga SagaManager

Facade binding one StateManager, one EventDispatcher and one shared
middleware list. Transactions and composers created here all report to
the same dispatcher and run inside the same middleware chain; middleware
registered later is seen by transactions created earlier.
"""

from typing import Any, Callable, Dict, List, Optional, Sequence
import logging

from statesaga.core.config import StateManagerOptions, TrackingOptions
from statesaga.core.state_manager import StateManager
from statesaga.events import EventDispatcher, EventHandler, SagaEvent, SagaEventType
from statesaga.signals import Selection
from statesaga.transactions import (
    CompositionBuilder,
    Transaction,
    TransactionBuilder,
    TransactionComposer,
)
from statesaga.transactions.middleware import Middleware
from statesaga.transactions.schemas import ConditionFunction


logger = logging.getLogger(__name__)


class SagaManager:
    """
    Entry point for transactional state.

    Usage:
        saga = SagaManager.create({"counter": 0})
        saga.use(create_logging_middleware())
        saga.on_event(SagaEventType.STEP_RETRY, on_retry)

        await (
            saga.create_transaction("increment")
            .add_step("inc", inc, dec, retries=1)
            .run({"amount": 5})
        )
    """

    def __init__(self, state_manager: StateManager, dispatcher: Optional[EventDispatcher] = None):
        self._state_manager = state_manager
        self._dispatcher = dispatcher or EventDispatcher()
        self._middleware: List[Middleware] = []
        self._composition = CompositionBuilder(state_manager, self._dispatcher)

    @classmethod
    def create(
        cls,
        initial_state: Any,
        options: Optional[StateManagerOptions] = None,
        tracking: Optional[TrackingOptions] = None,
    ) -> "SagaManager":
        """Create a manager over a new StateManager."""
        return cls(StateManager(initial_state, options, tracking))

    @classmethod
    def from_env(cls, initial_state: Any) -> "SagaManager":
        """Create a manager with StateManagerOptions read from the environment."""
        return cls.create(initial_state, StateManagerOptions.from_env())

    @property
    def state_manager(self) -> StateManager:
        return self._state_manager

    @property
    def dispatcher(self) -> EventDispatcher:
        return self._dispatcher

    @property
    def middleware(self) -> tuple:
        return tuple(self._middleware)

    # ==================== Transactions ====================

    def create_transaction(self, name: str) -> TransactionBuilder:
        return TransactionBuilder(name, self._state_manager, self._dispatcher, self._middleware)

    def create_raw_transaction(self, name: str) -> Transaction:
        return Transaction(name, self._state_manager, self._dispatcher, self._middleware)

    def use(self, middleware: Middleware) -> "SagaManager":
        self._middleware.append(middleware)
        logger.debug(f"Middleware registered ({len(self._middleware)} total)")
        return self

    # ==================== Events ====================

    def on_event(self, event_type: SagaEventType, handler: EventHandler) -> Callable[[], bool]:
        return self._dispatcher.subscribe(event_type, handler)

    def on_any_event(self, handler: EventHandler) -> Callable[[], bool]:
        return self._dispatcher.subscribe_all(handler)

    def emit(self, event: SagaEvent) -> None:
        self._dispatcher.emit(event)

    # ==================== State ====================

    def get_state(self) -> Any:
        return self._state_manager.get_state()

    def undo(self) -> bool:
        return self._state_manager.undo()

    def redo(self) -> bool:
        return self._state_manager.redo()

    def subscribe(self, observer: Callable[[Any], None]) -> Callable[[], None]:
        return self._state_manager.subscribe(observer)

    # ==================== Selectors ====================

    def select(self, selector: Callable[[Any], Any], equality_fn: Optional[Callable[[Any, Any], bool]] = None) -> Selection:
        return self._state_manager.select(selector, equality_fn)

    def select_property(self, name: str) -> Selection:
        return self._state_manager.select_property(name)

    def select_path(self, path: str, default: Any = None) -> Selection:
        return self._state_manager.select_path(path, default)

    def combine(
        self,
        selector1: Callable[[Any], Any],
        selector2: Callable[[Any], Any],
        combiner: Callable[[Any, Any], Any],
    ) -> Selection:
        return self._state_manager.combine(selector1, selector2, combiner)

    def select_filtered(self, array_selector: Callable[[Any], List[Any]], predicate: Callable[[Any], bool]) -> Selection:
        return self._state_manager.select_filtered(array_selector, predicate)

    def select_mapped(self, array_selector: Callable[[Any], List[Any]], mapper: Callable[[Any], Any]) -> Selection:
        return self._state_manager.select_mapped(array_selector, mapper)

    # ==================== Composition ====================

    def create_composer(self, name: str) -> TransactionComposer:
        return self._composition.create_composer(name)

    def compose_sequential(self, name: str, transactions: Sequence[Transaction]) -> TransactionComposer:
        return self._composition.sequential(name, transactions)

    def compose_parallel(self, name: str, transactions: Sequence[Transaction]) -> TransactionComposer:
        return self._composition.parallel(name, transactions)

    def compose_conditional(self, name: str, transaction: Transaction, condition: ConditionFunction) -> TransactionComposer:
        return self._composition.conditional(name, transaction, condition)

    def compose_with_fallback(self, name: str, primary: Transaction, fallback: Transaction) -> TransactionComposer:
        return self._composition.with_fallback(name, primary, fallback)

    # ==================== Lifecycle ====================

    def get_performance_metrics(self) -> Dict[str, Any]:
        metrics = self._state_manager.get_metrics()
        metrics["events_recorded"] = self._dispatcher.event_count
        metrics["event_handlers"] = self._dispatcher.handler_count
        metrics["middleware"] = len(self._middleware)
        return metrics

    def dispose(self) -> None:
        """Dispose the state manager and drop all handlers and middleware."""
        self._state_manager.dispose()
        self._dispatcher.clear_handlers()
        self._dispatcher.clear_history()
        self._middleware.clear()
        logger.debug("SagaManager disposed")
