"""
errors/taxonomy.py - Error classification

Codes, categories and the exception hierarchy raised by the engine.
The message is the only guaranteed diagnostic; attempt counts and timings
travel on lifecycle events instead.
"""

from __future__ import annotations
from typing import Any, Dict, Optional
from enum import Enum


class ErrorSeverity(Enum):
    """Error severity levels."""
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Error categories."""
    STEP = "step"
    TIMEOUT = "timeout"
    PROTOCOL = "protocol"
    ROLLBACK = "rollback"
    USAGE = "usage"
    TRANSACTION = "transaction"
    SIGNAL = "signal"
    COMPOSITION = "composition"


class ErrorCode(Enum):
    """Specific error codes."""

    # Step (1xxx)
    STP_FAILED = 1001
    STP_TIMEOUT = 1002

    # Middleware (2xxx)
    MDW_NEXT_REENTERED = 2001

    # Rollback (3xxx)
    RBK_COMPENSATION_FAILED = 3001
    RBK_MANUAL_MISUSE = 3002

    # Transaction (4xxx)
    TXN_FAILED = 4001
    TXN_FAILED_NO_ROLLBACK = 4002

    # Signals (5xxx)
    SIG_DERIVED_WRITE = 5001

    # Composition (6xxx)
    CMP_CIRCUIT_OPEN = 6001


class SagaError(Exception):
    """Base class for engine errors."""

    code: ErrorCode = ErrorCode.STP_FAILED
    category: ErrorCategory = ErrorCategory.STEP
    severity: ErrorSeverity = ErrorSeverity.ERROR

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": type(self).__name__,
            "code": self.code.value,
            "category": self.category.value,
            "severity": self.severity.value,
            "message": str(self),
        }


class StepTimeoutError(SagaError):
    """
    Raised when a step attempt exceeds its timeout.

    The step body is abandoned, not cancelled: its work may still finish
    in the background after this error is reported.
    """

    code = ErrorCode.STP_TIMEOUT
    category = ErrorCategory.TIMEOUT

    def __init__(self, step_name: str, timeout_ms: float):
        self.step_name = step_name
        self.timeout_ms = timeout_ms
        super().__init__(f'Step "{step_name}" timed out after {timeout_ms:g}ms')


class MiddlewareProtocolError(SagaError):
    """Raised when a middleware invokes next() more than once."""

    code = ErrorCode.MDW_NEXT_REENTERED
    category = ErrorCategory.PROTOCOL
    severity = ErrorSeverity.CRITICAL

    def __init__(self, message: str = "next() called multiple times"):
        super().__init__(message)


class CompensationError(SagaError):
    """
    Raised when a compensation fails during rollback.

    Remaining compensations are skipped. The failure that started the
    rollback is kept on original_error.
    """

    code = ErrorCode.RBK_COMPENSATION_FAILED
    category = ErrorCategory.ROLLBACK
    severity = ErrorSeverity.CRITICAL

    def __init__(
        self,
        step_name: str,
        transaction_name: str,
        cause: BaseException,
        original_error: Optional[BaseException] = None,
    ):
        self.step_name = step_name
        self.transaction_name = transaction_name
        self.cause = cause
        self.original_error = original_error
        super().__init__(
            f'Compensation for step "{step_name}" failed during rollback of '
            f'transaction "{transaction_name}": {_describe(cause)}'
        )

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["step_name"] = self.step_name
        data["transaction_name"] = self.transaction_name
        data["original_error"] = _describe(self.original_error) if self.original_error else None
        return data


class RollbackUsageError(SagaError):
    """Raised when manual rollback is requested while auto-rollback is enabled."""

    code = ErrorCode.RBK_MANUAL_MISUSE
    category = ErrorCategory.USAGE

    def __init__(self, transaction_name: str):
        self.transaction_name = transaction_name
        super().__init__(
            f'Manual rollback of transaction "{transaction_name}" is only available '
            f"when auto-rollback is disabled"
        )


class TransactionFailedError(SagaError):
    """A transaction failed; wraps the proximate cause."""

    category = ErrorCategory.TRANSACTION

    def __init__(self, transaction_name: str, cause: BaseException, rolled_back: bool):
        self.transaction_name = transaction_name
        self.cause = cause
        self.rolled_back = rolled_back
        self.code = ErrorCode.TXN_FAILED if rolled_back else ErrorCode.TXN_FAILED_NO_ROLLBACK
        outcome = "failed and rolled back" if rolled_back else "failed (rollback disabled)"
        super().__init__(f'Transaction "{transaction_name}" {outcome}: {_describe(cause)}')

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["transaction_name"] = self.transaction_name
        data["rolled_back"] = self.rolled_back
        return data


class DerivedSignalWriteError(SagaError):
    """Raised when set() is called on a derived signal."""

    code = ErrorCode.SIG_DERIVED_WRITE
    category = ErrorCategory.SIGNAL

    def __init__(self):
        super().__init__("Cannot set a derived signal")


class CircuitOpenError(SagaError):
    """Raised by a circuit breaker that is refusing calls."""

    code = ErrorCode.CMP_CIRCUIT_OPEN
    category = ErrorCategory.COMPOSITION
    severity = ErrorSeverity.WARNING

    def __init__(self, transaction_name: str, failures: int):
        self.transaction_name = transaction_name
        self.failures = failures
        super().__init__(f"Circuit breaker open for {transaction_name}: {failures} failures")


def _describe(error: BaseException) -> str:
    return str(error) or type(error).__name__


def describe_error(error: Optional[BaseException]) -> Optional[Dict[str, Any]]:
    """Serializable summary of any exception, for event payloads."""
    if error is None:
        return None
    if isinstance(error, SagaError):
        return error.to_dict()
    return {
        "type": type(error).__name__,
        "message": _describe(error),
    }
