"""
errors/ - Error Taxonomy

Structured error codes and the exceptions raised by the transaction engine.
"""

from .taxonomy import (
    ErrorSeverity,
    ErrorCategory,
    ErrorCode,
    SagaError,
    StepTimeoutError,
    MiddlewareProtocolError,
    CompensationError,
    RollbackUsageError,
    TransactionFailedError,
    DerivedSignalWriteError,
    CircuitOpenError,
    describe_error,
)

__all__ = [
    "ErrorSeverity",
    "ErrorCategory",
    "ErrorCode",
    "SagaError",
    "StepTimeoutError",
    "MiddlewareProtocolError",
    "CompensationError",
    "RollbackUsageError",
    "TransactionFailedError",
    "DerivedSignalWriteError",
    "CircuitOpenError",
    "describe_error",
]
