"""
signals/selection.py - Selector handles

Bridges a Store into the signal graph and wraps signals in the
{get(), subscribe(observer), value} handle handed to UI collaborators.
"""

from typing import Any, Callable, Generic, List, Optional, TypeVar
import logging

from statesaga.signals.graph import EqualityFn, Signal, Unsubscribe, signal_equals
from statesaga.signals.store import Store


T = TypeVar("T")

logger = logging.getLogger(__name__)


class StoreSignal(Signal[T]):
    """Signal kept in sync with a projection of a Store."""

    def __init__(self, store: Store, selector: Callable[[Any], T], equality: Optional[EqualityFn] = None):
        eq = equality or signal_equals
        super().__init__(selector(store.get_state()), eq)
        self._unwatch: Optional[Unsubscribe] = store.watch(
            selector, lambda value, _prev: self.set(value), eq
        )

    def dispose(self) -> None:
        if self._unwatch is not None:
            self._unwatch()
            self._unwatch = None


def select_signal(store: Store, selector: Callable[[Any], T], equality: Optional[EqualityFn] = None) -> StoreSignal[T]:
    """Create a signal tracking selector(store state)."""
    return StoreSignal(store, selector, equality)


class Selection(Generic[T]):
    """
    Read-only handle over a signal.

    subscribe() delivers the current value immediately, then every
    subsequent change. Observer exceptions are logged, never raised.
    """

    def __init__(self, source: Signal[T]):
        self._source = source
        self._unsubscribers: List[Unsubscribe] = []

    def get(self) -> T:
        return self._source.get()

    @property
    def value(self) -> T:
        return self._source.get()

    def subscribe(self, observer: Callable[[T], None]) -> Unsubscribe:
        self._deliver(observer, self._source.peek())
        unsubscribe = self._source.subscribe(lambda value: self._deliver(observer, value))
        self._unsubscribers.append(unsubscribe)

        def release() -> None:
            unsubscribe()
            if unsubscribe in self._unsubscribers:
                self._unsubscribers.remove(unsubscribe)

        return release

    def dispose(self) -> None:
        """Release observers and detach the underlying signal."""
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        dispose = getattr(self._source, "dispose", None)
        if dispose is not None:
            dispose()

    @staticmethod
    def _deliver(observer: Callable[[T], None], value: T) -> None:
        try:
            observer(value)
        except Exception as e:
            logger.error(f"Selection observer failed: {e}")
