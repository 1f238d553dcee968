"""
transactions/ - Saga Transactions

Steps, middleware, execution, rollback and composition of transactions
over a StateManager.
"""

from .schemas import (
    TransactionStatus,
    CompositionStrategy,
    StepOptions,
    TransactionOptions,
    CompositionOptions,
    Step,
    CompositionResult,
)

from .middleware import (
    MiddlewareContext,
    MiddlewareOrchestrator,
    create_logging_middleware,
    create_timing_middleware,
)

from .executor import StepExecutor
from .rollback import RollbackEngine

from .transaction import (
    Transaction,
    TransactionBuilder,
)

from .composition import (
    TransactionComposer,
    CompositionBuilder,
    CompositionPatterns,
)

__all__ = [
    # Schemas
    "TransactionStatus",
    "CompositionStrategy",
    "StepOptions",
    "TransactionOptions",
    "CompositionOptions",
    "Step",
    "CompositionResult",
    # Middleware
    "MiddlewareContext",
    "MiddlewareOrchestrator",
    "create_logging_middleware",
    "create_timing_middleware",
    # Execution
    "StepExecutor",
    "RollbackEngine",
    # Transaction
    "Transaction",
    "TransactionBuilder",
    # Composition
    "TransactionComposer",
    "CompositionBuilder",
    "CompositionPatterns",
]
