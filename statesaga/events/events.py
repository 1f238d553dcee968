"""
statesaga Lifecycle Events

Typed records emitted by the transaction engine for observability
collaborators (loggers, metrics, recorders). The set is closed:
four transaction events and four step events.

INVARIANT: Events describe what already happened; handlers cannot
influence the run that emitted them.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
import uuid

from statesaga.errors import describe_error


# =============================================================================
# EVENT TYPES
# =============================================================================

class SagaEventType(str, Enum):
    """Types of lifecycle events."""

    # Transaction events
    TRANSACTION_START = "transaction:start"
    TRANSACTION_SUCCESS = "transaction:success"
    TRANSACTION_FAIL = "transaction:fail"
    TRANSACTION_ROLLBACK = "transaction:rollback"

    # Step events
    STEP_START = "step:start"
    STEP_SUCCESS = "step:success"
    STEP_RETRY = "step:retry"
    STEP_ROLLBACK = "step:rollback"


# =============================================================================
# BASE EVENT
# =============================================================================

@dataclass
class SagaEvent:
    """
    Base class for lifecycle events.

    All events have:
    - event_id: Unique identifier
    - event_type: Type classification
    - payload: The payload the transaction was run with
    - timestamp: When the event occurred
    """
    event_id: str = field(default_factory=lambda: str(uuid.uuid4())[:12])
    event_type: SagaEventType = SagaEventType.TRANSACTION_START
    payload: Any = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "event_id": self.event_id,
            "event_type": self.event_type.value,
            "payload": self.payload,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


# =============================================================================
# TRANSACTION EVENTS
# =============================================================================

@dataclass
class TransactionEvent(SagaEvent):
    """
    Emitted at transaction start, success, failure and rollback.

    duration_ms is set on success and failure; error only on failure.
    """
    transaction_name: str = ""
    duration_ms: Optional[float] = None
    error: Optional[BaseException] = None

    def to_dict(self) -> Dict[str, Any]:
        base = super().to_dict()
        base.update({
            "transaction_name": self.transaction_name,
            "duration_ms": self.duration_ms,
            "error": describe_error(self.error),
        })
        return base


# =============================================================================
# STEP EVENTS
# =============================================================================

@dataclass
class StepEvent(SagaEvent):
    """
    Emitted at step start, success, retry and compensation.

    attempt and last_error are only set on retry.
    """
    step_name: str = ""
    duration_ms: Optional[float] = None
    attempt: Optional[int] = None
    last_error: Optional[BaseException] = None

    def to_dict(self) -> Dict[str, Any]:
        base = super().to_dict()
        base.update({
            "step_name": self.step_name,
            "duration_ms": self.duration_ms,
            "attempt": self.attempt,
            "last_error": describe_error(self.last_error),
        })
        return base


TRANSACTION_EVENT_TYPES = frozenset({
    SagaEventType.TRANSACTION_START,
    SagaEventType.TRANSACTION_SUCCESS,
    SagaEventType.TRANSACTION_FAIL,
    SagaEventType.TRANSACTION_ROLLBACK,
})

STEP_EVENT_TYPES = frozenset({
    SagaEventType.STEP_START,
    SagaEventType.STEP_SUCCESS,
    SagaEventType.STEP_RETRY,
    SagaEventType.STEP_ROLLBACK,
})
