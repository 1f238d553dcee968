"""
statesaga StateManager

Owns the canonical state value, its undo/redo and snapshot stacks, and
the clone/equality policy. Selection handles are built on a Store that
holds a published copy of the live state.

INVARIANT: The live state never leaves the manager uncloned, except as a
tracked view (tracked_state()) whose writes are reported back here.

Notification has two paths:
- Tracked in-place writes during a transaction reach subscribe()
  observers directly (begin/end_proxy_mutation).
- commit_proxy_mutations() and every wholesale replace publish the live
  state to the Store once, which is what selectors observe.
"""

from contextlib import contextmanager
from collections.abc import Mapping
from typing import Any, Callable, Dict, Generic, Iterator, List, Optional, Set, TypeVar
import asyncio
import logging

from statesaga.core.config import StateManagerOptions, TrackingOptions, is_debug_enabled
from statesaga.core.tracking import MutationTracker
from statesaga.core.utils import deep_equal, default_clone, get_nested, resolve_equality, shallow_equal
from statesaga.signals import Selection, Store, select_signal
from statesaga.signals.graph import EqualityFn, Unsubscribe

logger = logging.getLogger(__name__)


S = TypeVar("S")
T = TypeVar("T")

Observer = Callable[[Any], None]


class StateManager(Generic[S]):
    """
    State manager with history, snapshots and reactive selection.

    Usage:
        manager = StateManager({"count": 0, "items": []})

        manager.set_state({"count": 1, "items": []})
        manager.undo()                              # back to count=0

        count = manager.select_property("count")
        count.subscribe(print)                      # prints 0, then on change
    """

    def __init__(
        self,
        initial_state: S,
        options: Optional[StateManagerOptions] = None,
        tracking: Optional[TrackingOptions] = None,
    ):
        """
        Initialize the state manager.

        Args:
            initial_state: Starting state (cloned, never held by reference)
            options: History bounds and clone/equality policy
            tracking: Options for the mutation-tracking wrapper
        """
        self._options = options or StateManagerOptions()
        self._clone: Callable[[Any], Any] = self._options.clone or default_clone
        self._equality: EqualityFn = resolve_equality(self._options.equality_fn)
        self._debug = self._options.debug or is_debug_enabled()

        self._state: S = self._clone(initial_state)
        self._undo_stack: List[S] = []
        self._redo_stack: List[S] = []
        self._snapshots: List[S] = []

        self._observers: List[Observer] = []
        self._selections: List[Selection] = []
        self._timers: Set[asyncio.TimerHandle] = set()

        self._proxy_mutation_depth = 0
        self._proxy_dirty = False
        self._running = True

        self._metrics: Dict[str, int] = {
            "total_changes": 0,
            "snapshot_creations": 0,
            "undo_operations": 0,
            "redo_operations": 0,
            "memory_optimizations": 0,
            "immediate_notifications": 0,
        }

        self._store: Store = Store(self._clone(self._state))
        self._store_unsubscribe: Optional[Unsubscribe] = self._store.subscribe(self._emit_to_observers)
        self._tracker = MutationTracker(self, tracking)

        if self._debug:
            logger.debug(f"StateManager created: {self._options.to_dict()}")

    # ==================== State Access ====================

    @property
    def options(self) -> StateManagerOptions:
        return self._options

    @property
    def store(self) -> Store:
        """Store holding the last published state (read-only by convention)."""
        return self._store

    @property
    def tracker(self) -> MutationTracker:
        return self._tracker

    @property
    def running(self) -> bool:
        return self._running

    def get_state(self) -> S:
        """Return a clone of the live state."""
        return self._clone(self._state)

    def tracked_state(self) -> Any:
        """Return a tracked view over the live state for in-place writes."""
        return self._tracker.wrap(self._state)

    def differs_from(self, other: Any, equality_fn: Optional[EqualityFn] = None) -> bool:
        """
        Compare the live state against other without cloning.

        A shallow identity check runs first; the configured (or given)
        equality function is only consulted when it fails.
        """
        if shallow_equal(self._state, other):
            return False
        equality = equality_fn or self._equality
        return not equality(self._state, other)

    def set_state(self, new_state: S) -> bool:
        """
        Replace the state.

        On a detected change the previous value is pushed onto the undo
        stack, the redo stack is cleared and subscribers are notified.

        Returns:
            True if the state changed
        """
        if not self.differs_from(new_state):
            return False

        self._undo_stack.append(self._clone(self._state))
        self._redo_stack.clear()
        self._replace_live_state(self._clone(new_state))
        self._metrics["total_changes"] += 1
        self._publish()
        self._cleanup()
        return True

    @contextmanager
    def mutate(self) -> Iterator[Any]:
        """
        Apply in-place writes as one committed change.

        Usage:
            with manager.mutate() as state:
                state["count"] += 1
                state["items"].append("a")

        On an exception the state is restored and the error re-raised.
        """
        before = self._clone(self._state)
        self.begin_proxy_mutation()
        try:
            yield self.tracked_state()
        except Exception:
            self._replace_live_state(before)
            self.end_proxy_mutation(commit=False)
            self._publish()
            raise

        if self.differs_from(before):
            self.add_to_undo_stack(before)
            self._metrics["total_changes"] += 1
        self.end_proxy_mutation(commit=True)

    # ==================== History ====================

    def add_to_undo_stack(self, state: S) -> None:
        """Record state as the previous committed value."""
        self._undo_stack.append(self._clone(state))
        self._redo_stack.clear()
        self._cleanup()

    def undo(self) -> bool:
        """
        Restore the previous committed state.

        Returns:
            False if there was nothing to undo
        """
        if not self._undo_stack:
            return False
        previous = self._undo_stack.pop()
        self._redo_stack.append(self._clone(self._state))
        self._replace_live_state(previous)
        self._metrics["undo_operations"] += 1
        logger.debug(f"Undo (remaining: {len(self._undo_stack)})")
        self._publish()
        return True

    def redo(self) -> bool:
        """
        Re-apply the most recently undone state.

        Returns:
            False if there was nothing to redo
        """
        if not self._redo_stack:
            return False
        following = self._redo_stack.pop()
        self._undo_stack.append(self._clone(self._state))
        self._replace_live_state(following)
        self._metrics["redo_operations"] += 1
        logger.debug(f"Redo (remaining: {len(self._redo_stack)})")
        self._publish()
        return True

    @property
    def can_undo(self) -> bool:
        return bool(self._undo_stack)

    @property
    def can_redo(self) -> bool:
        return bool(self._redo_stack)

    @property
    def undo_stack_length(self) -> int:
        return len(self._undo_stack)

    @property
    def redo_stack_length(self) -> int:
        return len(self._redo_stack)

    def clear_history(self) -> None:
        self._undo_stack.clear()
        self._redo_stack.clear()

    # ==================== Snapshots ====================

    def create_snapshot(self) -> None:
        """Push a restore point for the current state."""
        self._snapshots.append(self._clone(self._state))
        self._metrics["snapshot_creations"] += 1
        self._cleanup()

    def rollback_to_last_snapshot(self) -> bool:
        """
        Pop the newest snapshot and restore it.

        Returns:
            False if there was no snapshot
        """
        if not self._snapshots:
            logger.debug("No snapshot to roll back to")
            return False
        snapshot = self._snapshots.pop()
        self._replace_live_state(snapshot)
        self._publish()
        return True

    def discard_last_snapshot(self) -> bool:
        """Pop the newest snapshot without restoring it."""
        if not self._snapshots:
            return False
        self._snapshots.pop()
        return True

    @property
    def snapshots_length(self) -> int:
        return len(self._snapshots)

    # ==================== Notification ====================

    def subscribe(self, observer: Observer) -> Unsubscribe:
        """
        Observe state changes.

        The observer receives a clone of the current state immediately,
        then on every subsequent change.
        """
        self._deliver(observer, self._clone(self._state))
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def notify_change(self) -> None:
        """
        Report an in-place change to the live state.

        Inside a proxy mutation, observers are notified directly and the
        Store is left untouched until commit; otherwise the state is
        published immediately.
        """
        if not self._running:
            logger.debug("State manager stopped, change not propagated")
            return
        if self._proxy_mutation_depth > 0:
            self._proxy_dirty = True
            self._metrics["immediate_notifications"] += 1
            self._emit_to_observers()
        else:
            self._publish()

    def begin_proxy_mutation(self) -> None:
        self._proxy_mutation_depth += 1

    def end_proxy_mutation(self, commit: bool = True) -> None:
        self._proxy_mutation_depth = max(0, self._proxy_mutation_depth - 1)
        if commit and self._proxy_mutation_depth == 0:
            self.commit_proxy_mutations()

    def commit_proxy_mutations(self) -> None:
        """Publish the live state to the Store once if it has moved."""
        if not self._running:
            return
        self._tracker.flush()
        if self._proxy_dirty or not self._equality(self._store.get_state(), self._state):
            self._proxy_dirty = False
            self._publish()

    # ==================== Selection ====================

    def select(self, selector: Callable[[S], T], equality_fn: Optional[EqualityFn] = None) -> Selection[T]:
        """
        Build a selection handle over a projection of the state.

        Args:
            selector: Projection of the published state
            equality_fn: Comparison for projected values (default: deep_equal)
        """
        source = select_signal(self._store, selector, equality_fn or deep_equal)
        return self._track_selection(Selection(source))

    def select_property(self, name: str) -> Selection[Any]:
        """Select one top-level key (mapping state) or attribute."""

        def selector(state: Any) -> Any:
            if isinstance(state, Mapping):
                return state.get(name)
            return getattr(state, name, None)

        return self.select(selector)

    def select_path(self, path: str, default: Any = None) -> Selection[Any]:
        """Select a dot-notation path, e.g. "user.profile.name"."""
        return self.select(lambda state: get_nested(state, path, default))

    def combine(
        self,
        selector1: Callable[[S], Any],
        selector2: Callable[[S], Any],
        combiner: Callable[[Any, Any], T],
        equality_fn: Optional[EqualityFn] = None,
    ) -> Selection[T]:
        """Select combiner(selector1(state), selector2(state)) from one state read."""
        return self.select(lambda state: combiner(selector1(state), selector2(state)), equality_fn)

    def select_filtered(self, array_selector: Callable[[S], List[Any]], predicate: Callable[[Any], bool]) -> Selection[List[Any]]:
        return self.select(lambda state: [item for item in (array_selector(state) or []) if predicate(item)])

    def select_mapped(self, array_selector: Callable[[S], List[Any]], mapper: Callable[[Any], Any]) -> Selection[List[Any]]:
        return self.select(lambda state: [mapper(item) for item in (array_selector(state) or [])])

    def _track_selection(self, selection: Selection[T]) -> Selection[T]:
        self._selections.append(selection)
        return selection

    # ==================== Lifecycle ====================

    def register_timer(self, handle: asyncio.TimerHandle) -> None:
        self._timers.add(handle)

    def unregister_timer(self, handle: asyncio.TimerHandle) -> None:
        self._timers.discard(handle)

    def stop(self) -> None:
        """Stop propagating changes and cancel pending timers."""
        if not self._running:
            return
        self._running = False
        for handle in list(self._timers):
            handle.cancel()
        self._timers.clear()
        logger.debug("StateManager stopped")

    def dispose(self) -> None:
        """Stop, clear all stacks and release every subscription."""
        self.stop()
        self._tracker.dispose()
        for selection in self._selections:
            selection.dispose()
        self._selections.clear()
        self._observers.clear()
        if self._store_unsubscribe is not None:
            self._store_unsubscribe()
            self._store_unsubscribe = None
        self._undo_stack.clear()
        self._redo_stack.clear()
        self._snapshots.clear()
        logger.debug("StateManager disposed")

    # ==================== Diagnostics ====================

    def get_metrics(self) -> Dict[str, Any]:
        return {
            **self._metrics,
            "undo_stack_size": len(self._undo_stack),
            "redo_stack_size": len(self._redo_stack),
            "snapshots_size": len(self._snapshots),
            "active_subscriptions": len(self._observers) + len(self._selections),
            "tracked_mutations": self._tracker.mutation_count,
        }

    def get_debug_info(self) -> Dict[str, Any]:
        return {
            "running": self._running,
            "proxy_mutation_depth": self._proxy_mutation_depth,
            "options": self._options.to_dict(),
            "metrics": self.get_metrics(),
            "tracker": self._tracker.get_stats(),
            "store_listeners": self._store.listener_count,
            "pending_timers": len(self._timers),
        }

    # ==================== Internals ====================

    def _replace_live_state(self, value: S) -> None:
        self._state = value
        self._tracker.reset()

    def _publish(self) -> None:
        if not self._running:
            logger.debug("State manager stopped, publish skipped")
            return
        self._proxy_dirty = False
        self._store.replace_state(self._clone(self._state))

    def _emit_to_observers(self) -> None:
        if not self._observers:
            return
        value = self._clone(self._state)
        for observer in list(self._observers):
            self._deliver(observer, value)

    @staticmethod
    def _deliver(observer: Observer, value: Any) -> None:
        try:
            observer(value)
        except Exception as e:
            logger.error(f"State observer failed: {e}")

    def _cleanup(self) -> None:
        if not self._options.auto_cleanup:
            return
        trimmed = 0
        trimmed += _trim(self._undo_stack, self._options.max_undo_history)
        trimmed += _trim(self._redo_stack, self._options.max_undo_history)
        trimmed += _trim(self._snapshots, self._options.max_snapshots)
        if trimmed:
            self._metrics["memory_optimizations"] += 1
            logger.debug(f"Trimmed {trimmed} history entries")

    def __repr__(self) -> str:
        return (
            f"StateManager(undo={len(self._undo_stack)}, redo={len(self._redo_stack)}, "
            f"snapshots={len(self._snapshots)}, running={self._running})"
        )


def _trim(stack: List[Any], limit: int) -> int:
    """Drop the oldest entries beyond limit; return how many were dropped."""
    excess = len(stack) - limit
    if excess > 0:
        del stack[:excess]
        return excess
    return 0
