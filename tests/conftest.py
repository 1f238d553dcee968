"""
statesaga Test Configuration and Fixtures

Shared managers, dispatchers and an event recorder.
"""

import pytest
from typing import Any, Dict, List

from statesaga.core.state_manager import StateManager
from statesaga.events import EventDispatcher, SagaEvent
from statesaga.saga import SagaManager


class EventRecorder:
    """Wildcard handler that keeps every event it receives."""

    def __init__(self):
        self.events: List[SagaEvent] = []

    def __call__(self, event: SagaEvent) -> None:
        self.events.append(event)

    @property
    def types(self) -> List[str]:
        return [e.event_type.value for e in self.events]

    def of_type(self, event_type: Any) -> List[SagaEvent]:
        return [e for e in self.events if e.event_type == event_type]


@pytest.fixture
def counter_state() -> Dict[str, Any]:
    return {"counter": 0, "items": [], "user": {"name": "ada", "profile": {"level": 1}}}


@pytest.fixture
def state_manager(counter_state):
    """StateManager over the counter state."""
    manager = StateManager(counter_state)
    yield manager
    manager.dispose()


@pytest.fixture
def dispatcher():
    return EventDispatcher()


@pytest.fixture
def recorder(dispatcher):
    """Recorder subscribed to every event of the dispatcher fixture."""
    rec = EventRecorder()
    dispatcher.subscribe_all(rec)
    return rec


@pytest.fixture
def saga(counter_state):
    """SagaManager over the counter state."""
    manager = SagaManager.create(counter_state)
    yield manager
    manager.dispose()
