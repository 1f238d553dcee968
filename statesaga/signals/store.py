"""
signals/store.py - Equality-gated state store

Holds one state reference and notifies listeners when it is replaced.
Keyed watches and batching sit on top of the same notification path.
"""

from collections.abc import Mapping
from contextlib import contextmanager
from typing import Any, Callable, Generic, Iterator, List, Optional, TypeVar
import copy
import logging

from statesaga.signals.graph import EqualityFn, Unsubscribe


S = TypeVar("S")

Listener = Callable[[], None]

logger = logging.getLogger(__name__)


def identity_equals(a: Any, b: Any) -> bool:
    return a is b


class Store(Generic[S]):
    """
    Whole-state store with equality-gated replace.

    Usage:
        store = Store({"count": 0})
        store.watch(lambda s: s["count"], on_count)

        with store.batch():
            store.set_state({"count": 1})
            store.set_state({"count": 2})   # one notification at exit
    """

    def __init__(self, initial_state: S, equality: Optional[EqualityFn] = None):
        self._state = initial_state
        self._equality = equality or identity_equals
        self._listeners: List[Listener] = []
        self._batch_depth = 0
        self._pending_emit = False

    def get_state(self) -> S:
        return self._state

    def set_state(self, updater: Any) -> bool:
        """
        Apply a partial update or an updater function.

        Mapping partials are merged into a mapping state; anything else
        replaces it. No-op when the result equals the current state.

        Returns:
            True if the state changed
        """
        prev = self._state
        partial = updater(prev) if callable(updater) else updater
        if partial is prev:
            return False
        if isinstance(prev, Mapping) and isinstance(partial, Mapping):
            next_state = {**prev, **partial}
        else:
            next_state = partial
        return self._apply(next_state)

    def set_draft(self, recipe: Callable[[S], Optional[S]]) -> bool:
        """Run recipe against a deep copy and apply the result."""
        draft = copy.deepcopy(self._state)
        result = recipe(draft)
        return self._apply(draft if result is None else result)

    def replace_state(self, next_state: S) -> None:
        """Replace the state without merge or equality gate; always emits."""
        self._state = next_state
        self._emit()

    def subscribe(self, listener: Listener) -> Unsubscribe:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    @contextmanager
    def batch(self) -> Iterator["Store[S]"]:
        """Coalesce all emissions inside the block into one."""
        self._batch_depth += 1
        try:
            yield self
        finally:
            self._batch_depth -= 1
            if self._batch_depth == 0 and self._pending_emit:
                self._pending_emit = False
                self._emit()

    def watch(
        self,
        selector: Callable[[S], Any],
        callback: Callable[[Any, Any], None],
        equality: Optional[EqualityFn] = None,
    ) -> Unsubscribe:
        """
        Call callback(next, prev) when selector(state) changes.

        Args:
            selector: Projection of the state
            callback: Receives the new and previous projected values
            equality: Comparison for projected values (default: store equality)
        """
        eq = equality or self._equality
        prev = selector(self._state)

        def listener() -> None:
            nonlocal prev
            next_value = selector(self._state)
            if not eq(prev, next_value):
                old = prev
                prev = next_value
                callback(next_value, old)

        return self.subscribe(listener)

    def _apply(self, next_state: S) -> bool:
        if self._equality(self._state, next_state):
            return False
        self._state = next_state
        self._emit()
        return True

    def _emit(self) -> None:
        if self._batch_depth > 0:
            self._pending_emit = True
            return
        for listener in list(self._listeners):
            try:
                listener()
            except Exception as e:
                logger.error(f"Store listener failed: {e}")
