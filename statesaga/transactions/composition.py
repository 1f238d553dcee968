"""
transactions/composition.py - Transaction composition

Orchestrates whole transactions: sequential, parallel groups,
conditional and primary-with-fallback. Each transaction keeps its own
rollback semantics; the composer only decides which ones run and how
failures are recorded.

Entries run in registration order. Consecutive parallel entries form
one group run concurrently with asyncio.gather.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Sequence
import asyncio
import logging
import time

from statesaga.core.utils import maybe_await
from statesaga.errors import CircuitOpenError
from statesaga.events import EventDispatcher, SagaEventType, TransactionEvent
from statesaga.transactions.schemas import (
    CompositionOptions,
    CompositionResult,
    CompositionStrategy,
    ConditionFunction,
)
from statesaga.transactions.transaction import Transaction

if TYPE_CHECKING:
    from statesaga.core.state_manager import StateManager


logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    transaction: Transaction
    options: CompositionOptions


class TransactionComposer:
    """
    Runs a list of transactions under per-entry strategies.

    Usage:
        composer = TransactionComposer("onboarding", manager, dispatcher)
        composer.add(create_account)
        composer.add_parallel([send_email, provision_storage])
        composer.add_conditional(grant_trial, lambda state, payload: payload["trial"])
        result = await composer.execute(payload)
    """

    def __init__(
        self,
        name: str,
        state_manager: "StateManager",
        dispatcher: Optional[EventDispatcher] = None,
    ):
        self.name = name
        self._state_manager = state_manager
        self._dispatcher = dispatcher or EventDispatcher()
        self._entries: List[_Entry] = []

    # ==================== Registration ====================

    def add(self, transaction: Transaction, options: Optional[CompositionOptions] = None) -> "TransactionComposer":
        self._entries.append(_Entry(transaction, options or CompositionOptions()))
        return self

    def add_all(self, transactions: Sequence[Transaction], options: Optional[CompositionOptions] = None) -> "TransactionComposer":
        for transaction in transactions:
            self.add(transaction, options)
        return self

    def add_conditional(
        self,
        transaction: Transaction,
        condition: ConditionFunction,
        continue_on_error: bool = False,
    ) -> "TransactionComposer":
        return self.add(transaction, CompositionOptions(
            strategy=CompositionStrategy.CONDITIONAL,
            condition=condition,
            continue_on_error=continue_on_error,
        ))

    def add_parallel(self, transactions: Sequence[Transaction], continue_on_error: bool = False) -> "TransactionComposer":
        for transaction in transactions:
            self.add(transaction, CompositionOptions(
                strategy=CompositionStrategy.PARALLEL,
                continue_on_error=continue_on_error,
            ))
        return self

    def add_with_fallback(
        self,
        primary: Transaction,
        fallback: Transaction,
        continue_on_error: bool = False,
    ) -> "TransactionComposer":
        return self.add(primary, CompositionOptions(
            strategy=CompositionStrategy.RETRY_WITH_FALLBACK,
            fallback_transaction=fallback,
            continue_on_error=continue_on_error,
        ))

    # ==================== Execution ====================

    async def execute(self, payload: Any = None) -> CompositionResult:
        """
        Run every entry.

        Returns:
            CompositionResult; success is False when a continue_on_error
            entry recorded a failure

        Raises:
            The first failure from an entry without continue_on_error
        """
        start = time.perf_counter()
        result = CompositionResult(final_state=self._state_manager.get_state())
        self._emit(SagaEventType.TRANSACTION_START, payload)
        logger.info(f"Composition {self.name} started ({len(self._entries)} transactions)")

        try:
            for group in self._groups():
                if len(group) > 1 or group[0].options.strategy == CompositionStrategy.PARALLEL:
                    await self._run_parallel(group, payload, result)
                else:
                    await self._run_entry(group[0], payload, result)
        except Exception as e:
            result.success = False
            result.duration_ms = (time.perf_counter() - start) * 1000
            self._emit(SagaEventType.TRANSACTION_FAIL, payload, result.duration_ms, error=e)
            logger.error(f"Composition {self.name} failed: {e}")
            raise

        result.success = not result.errors
        result.final_state = self._state_manager.get_state()
        result.duration_ms = (time.perf_counter() - start) * 1000
        self._emit(SagaEventType.TRANSACTION_SUCCESS, payload, result.duration_ms)
        return result

    def _groups(self) -> List[List[_Entry]]:
        groups: List[List[_Entry]] = []
        for entry in self._entries:
            parallel = entry.options.strategy == CompositionStrategy.PARALLEL
            if parallel and groups and groups[-1][-1].options.strategy == CompositionStrategy.PARALLEL:
                groups[-1].append(entry)
            else:
                groups.append([entry])
        return groups

    async def _run_entry(self, entry: _Entry, payload: Any, result: CompositionResult) -> None:
        transaction, options = entry.transaction, entry.options
        try:
            if options.strategy == CompositionStrategy.CONDITIONAL and options.condition is not None:
                should_run = await maybe_await(options.condition(self._state_manager.get_state(), payload))
                if not should_run:
                    logger.debug(f"Skipping {transaction.name}: condition not met")
                    return

            if options.strategy == CompositionStrategy.RETRY_WITH_FALLBACK:
                try:
                    await transaction.run(payload)
                except Exception as e:
                    fallback = options.fallback_transaction
                    if fallback is None:
                        raise
                    logger.warning(f"{transaction.name} failed, running fallback {fallback.name}: {e}")
                    await fallback.run(payload)
                    result.executed_transactions.append(f"{transaction.name} (fallback)")
                    return
            else:
                await transaction.run(payload)

            result.executed_transactions.append(transaction.name)
        except Exception as e:
            self._record_failure(entry, e, result)

    async def _run_parallel(self, group: List[_Entry], payload: Any, result: CompositionResult) -> None:
        async def run_one(entry: _Entry) -> None:
            try:
                await entry.transaction.run(payload)
                result.executed_transactions.append(entry.transaction.name)
            except Exception as e:
                self._record_failure(entry, e, result)

        await asyncio.gather(*(run_one(entry) for entry in group))

    @staticmethod
    def _record_failure(entry: _Entry, error: Exception, result: CompositionResult) -> None:
        result.errors.append(error)
        result.failed_transactions.append(entry.transaction.name)
        if not entry.options.continue_on_error:
            raise error
        logger.warning(f"{entry.transaction.name} failed, continuing: {error}")

    def _emit(
        self,
        event_type: SagaEventType,
        payload: Any,
        duration_ms: Optional[float] = None,
        error: Optional[BaseException] = None,
    ) -> None:
        self._dispatcher.emit(TransactionEvent(
            event_type=event_type,
            payload=payload,
            transaction_name=self.name,
            duration_ms=duration_ms,
            error=error,
        ))

    # ==================== Diagnostics ====================

    @property
    def transaction_count(self) -> int:
        return len(self._entries)

    def get_stats(self) -> Dict[str, int]:
        stats = {
            "total_transactions": len(self._entries),
            "sequential_count": 0,
            "parallel_count": 0,
            "conditional_count": 0,
            "fallback_count": 0,
        }
        keys = {
            CompositionStrategy.SEQUENTIAL: "sequential_count",
            CompositionStrategy.PARALLEL: "parallel_count",
            CompositionStrategy.CONDITIONAL: "conditional_count",
            CompositionStrategy.RETRY_WITH_FALLBACK: "fallback_count",
        }
        for entry in self._entries:
            stats[keys[entry.options.strategy]] += 1
        return stats


class CompositionBuilder:
    """Shortcuts for single-strategy composers."""

    def __init__(self, state_manager: "StateManager", dispatcher: Optional[EventDispatcher] = None):
        self._state_manager = state_manager
        self._dispatcher = dispatcher or EventDispatcher()

    def create_composer(self, name: str) -> TransactionComposer:
        return TransactionComposer(name, self._state_manager, self._dispatcher)

    def sequential(self, name: str, transactions: Sequence[Transaction]) -> TransactionComposer:
        return self.create_composer(name).add_all(transactions)

    def parallel(self, name: str, transactions: Sequence[Transaction]) -> TransactionComposer:
        return self.create_composer(name).add_parallel(transactions)

    def conditional(self, name: str, transaction: Transaction, condition: ConditionFunction) -> TransactionComposer:
        return self.create_composer(name).add_conditional(transaction, condition)

    def with_fallback(self, name: str, primary: Transaction, fallback: Transaction) -> TransactionComposer:
        return self.create_composer(name).add_with_fallback(primary, fallback)


StepCallable = Callable[[Any, Any], Any]


class CompositionPatterns:
    """
    Resilience wrappers that turn a transaction into a step function.

    Each returns an async (state, payload) callable, so the result can be
    used as a step in an outer transaction.
    """

    @staticmethod
    def circuit_breaker(transaction: Transaction, threshold: int = 3, reset_seconds: float = 60.0) -> StepCallable:
        """Fail fast with CircuitOpenError after threshold consecutive failures."""
        failures = 0
        last_failure = 0.0

        async def guarded(_state: Any, payload: Any) -> None:
            nonlocal failures, last_failure
            now = time.monotonic()
            if now - last_failure > reset_seconds:
                failures = 0
            if failures >= threshold:
                raise CircuitOpenError(transaction.name, failures)
            try:
                await transaction.run(payload)
            except Exception:
                failures += 1
                last_failure = now
                raise
            failures = 0

        return guarded

    @staticmethod
    def exponential_retry(transaction: Transaction, max_retries: int = 3, base_delay: float = 1.0) -> StepCallable:
        """Re-run the transaction with delays of base_delay * 2**attempt seconds."""

        async def retried(_state: Any, payload: Any) -> None:
            for attempt in range(max_retries + 1):
                try:
                    await transaction.run(payload)
                    return
                except Exception as e:
                    if attempt >= max_retries:
                        raise
                    delay = base_delay * (2 ** attempt)
                    logger.warning(f"{transaction.name} failed (attempt {attempt + 1}), retrying in {delay:g}s: {e}")
                    await asyncio.sleep(delay)

        return retried

    @staticmethod
    def bulkhead(transaction: Transaction, max_concurrent: int = 5) -> StepCallable:
        """Allow at most max_concurrent runs of the transaction at once."""
        semaphore = asyncio.Semaphore(max_concurrent)

        async def isolated(_state: Any, payload: Any) -> None:
            async with semaphore:
                await transaction.run(payload)

        return isolated
