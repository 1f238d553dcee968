"""
core/tracking.py - Mutation-tracking wrapper

Views over the live state that intercept in-place writes made by step
bodies and report them to the owning StateManager.

Dicts are wrapped as TrackedDict, lists as TrackedList and plain
attribute objects (dataclasses, simple classes) as TrackedObject.
Nested containers are wrapped lazily on access and cached by identity,
so reading the same field twice returns the same view.

A write only notifies when it changes the stored value: rebinding the
same object, or an equal scalar of the same type, is silent.

Limitation: methods called on a TrackedObject run against the raw
object, so mutations they perform internally are not observed.
"""

from collections.abc import MutableMapping, MutableSequence
from typing import TYPE_CHECKING, Any, Dict, Iterator, Optional
import asyncio
import copy
import logging
import time

from statesaga.core.config import TrackingOptions
from statesaga.core.utils import _MISSING

if TYPE_CHECKING:
    from statesaga.core.state_manager import StateManager


logger = logging.getLogger(__name__)


_SCALARS = (str, bytes, int, float, complex, bool, type(None))


def _same_value(old: Any, new: Any) -> bool:
    if old is new:
        return True
    if isinstance(old, _SCALARS) and type(old) is type(new):
        # NaN != NaN, so it always counts as a change
        return old == new
    return False


def unwrap(value: Any) -> Any:
    """Return the raw object behind a tracked view (or value unchanged)."""
    if isinstance(value, TrackedView):
        return object.__getattribute__(value, "_target")
    return value


class TrackedView:
    """Base for tracked views. Holds the raw target and the owning tracker."""

    __slots__ = ("_target", "_tracker")

    def __init__(self, target: Any, tracker: "MutationTracker"):
        object.__setattr__(self, "_target", target)
        object.__setattr__(self, "_tracker", tracker)

    def __eq__(self, other: Any) -> bool:
        return self._target == unwrap(other)

    def __ne__(self, other: Any) -> bool:
        return not self.__eq__(other)

    __hash__ = None

    def __copy__(self) -> Any:
        return copy.copy(self._target)

    def __deepcopy__(self, memo: Dict[int, Any]) -> Any:
        return copy.deepcopy(self._target, memo)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._target!r})"


class TrackedDict(TrackedView, MutableMapping):
    """Tracked view over a mutable mapping."""

    __slots__ = ()

    def __getitem__(self, key: Any) -> Any:
        return self._tracker._wrap(self._target[key])

    def __setitem__(self, key: Any, value: Any) -> None:
        value = unwrap(value)
        old = self._target[key] if key in self._target else _MISSING
        self._target[key] = value
        if old is _MISSING:
            self._tracker._record("define", key)
        elif not _same_value(old, value):
            self._tracker._record("set", key)

    def __delitem__(self, key: Any) -> None:
        del self._target[key]
        self._tracker._record("delete", key)

    def __iter__(self) -> Iterator[Any]:
        return iter(self._target)

    def __len__(self) -> int:
        return len(self._target)

    def __contains__(self, key: Any) -> bool:
        return key in self._target


class TrackedList(TrackedView, MutableSequence):
    """Tracked view over a mutable sequence."""

    __slots__ = ()

    def __getitem__(self, index: Any) -> Any:
        if isinstance(index, slice):
            return [self._tracker._wrap(item) for item in self._target[index]]
        return self._tracker._wrap(self._target[index])

    def __setitem__(self, index: Any, value: Any) -> None:
        if isinstance(index, slice):
            values = [unwrap(item) for item in value]
            old = self._target[index]
            self._target[index] = values
            if len(old) != len(values) or not all(a is b for a, b in zip(old, values)):
                self._tracker._record("set", index)
            return
        value = unwrap(value)
        old = self._target[index]
        self._target[index] = value
        if not _same_value(old, value):
            self._tracker._record("set", index)

    def __delitem__(self, index: Any) -> None:
        del self._target[index]
        self._tracker._record("delete", index)

    def __len__(self) -> int:
        return len(self._target)

    def insert(self, index: int, value: Any) -> None:
        self._target.insert(index, unwrap(value))
        self._tracker._record("insert", index)

    def sort(self, *args: Any, **kwargs: Any) -> None:
        before = list(self._target)
        self._target.sort(*args, **kwargs)
        if not all(a is b for a, b in zip(before, self._target)):
            self._tracker._record("sort", None)


class TrackedObject(TrackedView):
    """Tracked view over an object with attributes."""

    __slots__ = ()

    def __getattr__(self, name: str) -> Any:
        return self._tracker._wrap(getattr(self._target, name))

    def __setattr__(self, name: str, value: Any) -> None:
        target = self._target
        value = unwrap(value)
        old = getattr(target, name, _MISSING)
        setattr(target, name, value)
        if old is _MISSING:
            self._tracker._record("define", name)
        elif not _same_value(old, value):
            self._tracker._record("set", name)

    def __delattr__(self, name: str) -> None:
        delattr(self._target, name)
        self._tracker._record("delete", name)


class MutationTracker:
    """
    Produces tracked views over a StateManager's live state.

    One tracker is owned by each StateManager. Its view cache maps
    id(target) to the view; each view keeps its target alive, so ids in
    the cache cannot be reused while cached. The manager calls reset()
    whenever it replaces the live state wholesale.
    """

    def __init__(self, state_manager: "StateManager", options: Optional[TrackingOptions] = None):
        self._state_manager = state_manager
        self._options = options or TrackingOptions()
        self._views: Dict[int, TrackedView] = {}
        self._pending: Optional[asyncio.TimerHandle] = None
        self._mutation_count = 0
        self._notification_count = 0
        self._last_notification: Optional[float] = None

    @property
    def options(self) -> TrackingOptions:
        return self._options

    @property
    def mutation_count(self) -> int:
        return self._mutation_count

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    def wrap(self, value: Any) -> Any:
        """Return a tracked view over value (scalars are returned unchanged)."""
        return self._view_for(value)

    def reset(self) -> None:
        """Drop cached views; the next access wraps fresh targets."""
        self._views.clear()

    def flush(self) -> None:
        """Deliver a pending debounced notification now."""
        if self._pending is not None:
            self._cancel_pending()
            self._perform_notification()

    def dispose(self) -> None:
        self._cancel_pending()
        self._views.clear()

    def get_stats(self) -> Dict[str, Any]:
        return {
            "mutation_count": self._mutation_count,
            "notification_count": self._notification_count,
            "last_notification": self._last_notification,
            "cached_views": len(self._views),
            "pending": self.has_pending,
        }

    # ==================== Wrapping ====================

    def _wrap(self, value: Any) -> Any:
        if not self._options.deep:
            return value
        return self._view_for(value)

    def _view_for(self, value: Any) -> Any:
        if isinstance(value, TrackedView):
            return value
        key = id(value)
        view = self._views.get(key)
        if view is not None and unwrap(view) is value:
            return view

        if isinstance(value, MutableMapping):
            view = TrackedDict(value, self)
        elif isinstance(value, MutableSequence):
            view = TrackedList(value, self)
        elif hasattr(value, "__dict__") and not callable(value) and not isinstance(value, type):
            view = TrackedObject(value, self)
        else:
            return value

        self._views[key] = view
        return view

    # ==================== Notification ====================

    def _record(self, kind: str, key: Any) -> None:
        self._mutation_count += 1
        if self._options.enable_logging:
            logger.info(f"State mutation: {kind} {key!r} (#{self._mutation_count})")
        self._schedule_notification()

    def _schedule_notification(self) -> None:
        if not self._state_manager.running:
            logger.debug("State manager stopped, mutation not reported")
            return

        delay = self._options.debounce_ms
        if delay > 0:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                loop = None
            if loop is not None:
                self._cancel_pending()
                self._pending = loop.call_later(delay / 1000.0, self._flush_pending)
                self._state_manager.register_timer(self._pending)
                return

        self._perform_notification()

    def _flush_pending(self) -> None:
        handle = self._pending
        self._pending = None
        if handle is not None:
            self._state_manager.unregister_timer(handle)
        self._perform_notification()

    def _cancel_pending(self) -> None:
        if self._pending is not None:
            self._pending.cancel()
            self._state_manager.unregister_timer(self._pending)
            self._pending = None

    def _perform_notification(self) -> None:
        manager = self._state_manager
        if not manager.running:
            return
        self._notification_count += 1
        self._last_notification = time.time()
        manager.begin_proxy_mutation()
        try:
            manager.notify_change()
        finally:
            manager.end_proxy_mutation(commit=False)
