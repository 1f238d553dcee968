"""
signals/graph.py - Reactive signal graph

Value cells with subscriber sets, and derived cells that recompute
whenever a signal they read changes.

Dependency discovery is dynamic: a derived signal records every signal
read while its compute function runs, and rebuilds that set on each
recomputation. The collector for the running derivation lives in a
ContextVar, so interleaved asyncio tasks never share one.
"""

from contextvars import ContextVar
from typing import Any, Callable, Generic, List, Optional, Tuple, TypeVar
import logging

from statesaga.errors import DerivedSignalWriteError


T = TypeVar("T")

Unsubscribe = Callable[[], None]
SignalObserver = Callable[[Any], None]
EqualityFn = Callable[[Any, Any], bool]

logger = logging.getLogger(__name__)


_active_collector: ContextVar[Optional[List["Signal"]]] = ContextVar(
    "statesaga_active_collector", default=None
)

_UNSET = object()


def signal_equals(a: Any, b: Any) -> bool:
    """Default signal equality: identity, then ==."""
    if a is b:
        return True
    try:
        return bool(a == b)
    except (TypeError, ValueError):
        return False


class Signal(Generic[T]):
    """
    A value cell with a subscriber set.

    Reading with get() inside a derivation registers this signal as a
    dependency. Writing notifies subscribers only when the new value is
    unequal to the current one.
    """

    def __init__(self, value: T, equality: Optional[EqualityFn] = None):
        self._value = value
        self._equality = equality or signal_equals
        self._subscribers: List[SignalObserver] = []

    def get(self) -> T:
        collector = _active_collector.get()
        if collector is not None and not any(dep is self for dep in collector):
            collector.append(self)
        return self._value

    def peek(self) -> T:
        """Read without registering a dependency."""
        return self._value

    @property
    def value(self) -> T:
        return self.get()

    def set(self, value: T) -> bool:
        """
        Write a new value.

        Returns:
            True if subscribers were notified
        """
        if self._value is not _UNSET and self._equality(self._value, value):
            return False
        self._value = value
        self._notify()
        return True

    def subscribe(self, observer: SignalObserver) -> Unsubscribe:
        """Call observer(new_value) on every change."""
        self._subscribers.append(observer)

        def unsubscribe() -> None:
            if observer in self._subscribers:
                self._subscribers.remove(observer)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def _notify(self) -> None:
        for observer in list(self._subscribers):
            try:
                observer(self._value)
            except Exception as e:
                logger.error(f"Signal subscriber failed: {e}")

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._value!r})"


class Derived(Signal[T]):
    """
    A signal computed from other signals.

    Recomputes whenever any currently tracked dependency fires, and
    writes the result through its own equality gate, so a recomputation
    to an unchanged value does not cascade.
    """

    def __init__(self, compute: Callable[[], T], equality: Optional[EqualityFn] = None):
        super().__init__(_UNSET, equality)
        self._compute = compute
        self._dependencies: List[Signal] = []
        self._unsubscribers: List[Unsubscribe] = []
        self._disposed = False
        self._recompute()

    @property
    def dependencies(self) -> Tuple[Signal, ...]:
        return tuple(self._dependencies)

    def set(self, value: T) -> bool:
        raise DerivedSignalWriteError()

    def dispose(self) -> None:
        """Detach from all dependencies."""
        self._disposed = True
        self._release()

    def _release(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        self._dependencies = []

    def _recompute(self, *_: Any) -> None:
        if self._disposed:
            return
        self._release()

        collector: List[Signal] = []
        token = _active_collector.set(collector)
        try:
            value = self._compute()
        finally:
            _active_collector.reset(token)
            # Keep listening even if compute raised, so the next change retries
            self._dependencies = collector
            self._unsubscribers = [dep.subscribe(self._recompute) for dep in collector]

        Signal.set(self, value)


def signal(initial: T, equality: Optional[EqualityFn] = None) -> Signal[T]:
    """Create a writable signal."""
    return Signal(initial, equality)


def derived(compute: Callable[[], T], equality: Optional[EqualityFn] = None) -> Derived[T]:
    """Create a derived signal from a compute function."""
    return Derived(compute, equality)


def untracked(fn: Callable[[], T]) -> T:
    """Run fn without recording dependencies for the active derivation."""
    token = _active_collector.set(None)
    try:
        return fn()
    finally:
        _active_collector.reset(token)
