"""
transactions/schemas.py - Transaction data structures

Step definitions, run status, the caller-facing option models and the
composition result record.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union
from enum import Enum

from pydantic import BaseModel, Field

from statesaga.errors import describe_error


StepFunction = Callable[[Any, Any], Union[None, Awaitable[None]]]
ConditionFunction = Callable[[Any, Any], Union[bool, Awaitable[bool]]]


class TransactionStatus(Enum):
    """Transaction run status."""
    CREATED = "created"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED_AND_ROLLED_BACK = "failed_and_rolled_back"
    FAILED_NO_ROLLBACK = "failed_no_rollback"
    ROLLBACK_FAILED = "rollback_failed"


class CompositionStrategy(Enum):
    """How a composer runs one registered transaction."""
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"
    CONDITIONAL = "conditional"
    RETRY_WITH_FALLBACK = "retry_with_fallback"


# =============================================================================
# Option models
# =============================================================================


class StepOptions(BaseModel):
    """Per-step execution options."""

    retries: int = Field(
        default=0, description="Extra attempts after the first; values <= 0 mean a single attempt"
    )
    timeout_ms: float = Field(
        default=0, ge=0, description="Per-attempt timeout in milliseconds (0 = none)"
    )


class TransactionOptions(BaseModel):
    """Transaction-level options."""

    disable_auto_rollback: bool = Field(
        default=False, description="Keep completed step effects on failure"
    )
    equality_fn: Optional[Callable[[Any, Any], bool]] = Field(
        None, description="Equality used for the no-op commit check"
    )


class CompositionOptions(BaseModel):
    """Options for one transaction registered with a composer."""

    strategy: CompositionStrategy = Field(
        default=CompositionStrategy.SEQUENTIAL, description="Execution strategy"
    )
    continue_on_error: bool = Field(
        default=False, description="Record the failure and keep going"
    )
    condition: Optional[Callable[..., Any]] = Field(
        None, description="Predicate (state, payload) gating a conditional entry"
    )
    fallback_transaction: Optional[Any] = Field(
        None, description="Transaction run when the primary one fails"
    )


# =============================================================================
# Records
# =============================================================================


@dataclass
class Step:
    """One unit of work with an optional compensating action."""

    name: str
    execute: StepFunction
    compensate: Optional[StepFunction] = None
    retries: int = 0
    timeout_ms: float = 0

    @classmethod
    def create(
        cls,
        name: str,
        execute: StepFunction,
        compensate: Optional[StepFunction] = None,
        options: Optional[StepOptions] = None,
    ) -> "Step":
        opts = options or StepOptions()
        return cls(
            name=name,
            execute=execute,
            compensate=compensate,
            retries=opts.retries,
            timeout_ms=opts.timeout_ms,
        )

    @property
    def max_attempts(self) -> int:
        return max(self.retries, 0) + 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "retries": self.retries,
            "timeout_ms": self.timeout_ms,
            "has_compensation": self.compensate is not None,
        }


@dataclass
class CompositionResult:
    """Outcome of one composer run."""

    success: bool = True
    executed_transactions: List[str] = field(default_factory=list)
    failed_transactions: List[str] = field(default_factory=list)
    final_state: Any = None
    errors: List[BaseException] = field(default_factory=list)
    duration_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "executed_transactions": list(self.executed_transactions),
            "failed_transactions": list(self.failed_transactions),
            "errors": [describe_error(e) for e in self.errors],
            "duration_ms": self.duration_ms,
        }
