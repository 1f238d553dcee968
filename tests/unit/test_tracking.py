"""
Unit tests for the mutation-tracking wrapper.
"""

import asyncio
import copy
from dataclasses import dataclass, field
from typing import List

import pytest
from unittest.mock import Mock

from statesaga.core.config import TrackingOptions
from statesaga.core.state_manager import StateManager
from statesaga.core.tracking import TrackedDict, TrackedList, TrackedObject, unwrap


@dataclass
class Cart:
    total: int = 0
    lines: List[str] = field(default_factory=list)


def observed(manager):
    """Subscribe a Mock and clear the immediate delivery."""
    observer = Mock()
    manager.subscribe(observer)
    observer.reset_mock()
    return observer


class TestWrapping:
    """Tests for view construction and caching."""

    def test_views_by_type(self):
        manager = StateManager({"items": [1], "cart": Cart()})
        tracked = manager.tracked_state()

        assert isinstance(tracked, TrackedDict)
        assert isinstance(tracked["items"], TrackedList)
        assert isinstance(tracked["cart"], TrackedObject)

    def test_nested_views_are_cached(self):
        """Repeated access returns the same view."""
        manager = StateManager({"user": {"name": "ada"}})
        tracked = manager.tracked_state()

        assert tracked["user"] is tracked["user"]
        assert manager.tracked_state() is tracked

    def test_cache_reset_on_replace(self):
        manager = StateManager({"user": {"name": "ada"}})
        before = manager.tracked_state()

        manager.set_state({"user": {"name": "grace"}})

        after = manager.tracked_state()
        assert after is not before
        assert after["user"]["name"] == "grace"

    def test_scalars_unwrapped(self):
        manager = StateManager({"count": 3, "name": "x"})
        tracked = manager.tracked_state()
        assert tracked["count"] == 3
        assert tracked["name"] == "x"

    def test_shallow_mode_does_not_wrap_nested(self):
        manager = StateManager({"items": [1]}, tracking=TrackingOptions(deep=False))
        tracked = manager.tracked_state()
        assert type(tracked["items"]) is list

    def test_equality_and_copy(self):
        manager = StateManager({"items": [1, 2]})
        tracked = manager.tracked_state()

        assert tracked == {"items": [1, 2]}
        assert tracked["items"] == [1, 2]
        assert copy.deepcopy(tracked) == {"items": [1, 2]}
        assert type(copy.deepcopy(tracked)) is dict
        assert type(unwrap(tracked["items"])) is list


class TestDetection:
    """Tests for change detection."""

    def test_dict_write_notifies(self):
        manager = StateManager({"count": 0})
        observer = observed(manager)

        manager.tracked_state()["count"] = 1

        observer.assert_called_once()
        assert manager.get_state() == {"count": 1}

    def test_same_value_write_is_silent(self):
        """Writing an identical value never notifies."""
        manager = StateManager({"count": 5, "name": "ada"})
        observer = observed(manager)
        tracked = manager.tracked_state()

        tracked["count"] = 5
        tracked["name"] = "ada"

        observer.assert_not_called()
        assert manager.tracker.mutation_count == 0

    def test_rebinding_same_object_is_silent(self):
        manager = StateManager({"user": {"name": "ada"}})
        observer = observed(manager)
        tracked = manager.tracked_state()

        tracked["user"] = tracked["user"]

        observer.assert_not_called()

    def test_define_and_delete(self):
        manager = StateManager({"a": 1})
        observer = observed(manager)
        tracked = manager.tracked_state()

        tracked["b"] = 2
        del tracked["a"]

        assert observer.call_count == 2
        assert manager.get_state() == {"b": 2}

    def test_nested_write(self):
        manager = StateManager({"user": {"profile": {"level": 1}}})
        observer = observed(manager)

        manager.tracked_state()["user"]["profile"]["level"] = 2

        observer.assert_called_once()
        assert manager.get_state()["user"]["profile"]["level"] == 2

    def test_list_operations(self):
        manager = StateManager({"items": [3, 1, 2]})
        tracked = manager.tracked_state()
        items = tracked["items"]

        items.append(4)
        items.sort()
        items[0] = 10
        del items[1]
        value = items.pop()

        assert value == 4
        assert manager.get_state()["items"] == [10, 3]
        assert manager.tracker.mutation_count == 5

    def test_object_attribute_write(self):
        manager = StateManager({"cart": Cart()})
        observer = observed(manager)
        cart = manager.tracked_state()["cart"]

        cart.total = 12
        cart.lines.append("apple")

        assert observer.call_count == 2
        state = manager.get_state()["cart"]
        assert state.total == 12
        assert state.lines == ["apple"]

    def test_stored_views_are_unwrapped(self):
        """Assigning a view stores the raw object."""
        manager = StateManager({"a": {"x": 1}, "b": None})
        tracked = manager.tracked_state()

        tracked["b"] = tracked["a"]

        assert type(unwrap(tracked)["b"]) is dict

    def test_stopped_manager_ignores_writes(self):
        manager = StateManager({"count": 0})
        observer = observed(manager)
        manager.stop()

        manager.tracked_state()["count"] = 1

        observer.assert_not_called()


class TestDebounce:
    """Tests for debounced notification."""

    def test_immediate_without_running_loop(self):
        """With no running loop, debounced tracking notifies immediately."""
        manager = StateManager({"count": 0}, tracking=TrackingOptions(debounce_ms=50))
        observer = observed(manager)

        manager.tracked_state()["count"] = 1

        observer.assert_called_once()

    @pytest.mark.asyncio
    async def test_debounce_coalesces(self):
        manager = StateManager({"count": 0}, tracking=TrackingOptions(debounce_ms=20))
        observer = observed(manager)
        tracked = manager.tracked_state()

        tracked["count"] = 1
        tracked["count"] = 2
        tracked["count"] = 3
        observer.assert_not_called()
        assert manager.get_debug_info()["pending_timers"] == 1

        await asyncio.sleep(0.06)

        observer.assert_called_once()
        assert observer.call_args[0][0]["count"] == 3
        assert manager.get_debug_info()["pending_timers"] == 0

    @pytest.mark.asyncio
    async def test_stop_cancels_pending(self):
        manager = StateManager({"count": 0}, tracking=TrackingOptions(debounce_ms=20))
        observer = observed(manager)

        manager.tracked_state()["count"] = 1
        manager.stop()
        await asyncio.sleep(0.05)

        observer.assert_not_called()

    @pytest.mark.asyncio
    async def test_flush_delivers_now(self):
        manager = StateManager({"count": 0}, tracking=TrackingOptions(debounce_ms=1000))
        observer = observed(manager)

        manager.tracked_state()["count"] = 1
        manager.tracker.flush()

        observer.assert_called_once()
        assert not manager.tracker.has_pending
