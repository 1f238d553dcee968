"""
statesaga Transaction

One named saga: an ordered list of steps run against a StateManager
inside a middleware chain, with compensation-based rollback on failure.

Run sequence:
1. Clone the current state, push a snapshot, emit transaction:start
2. Enter the middleware chain; the core runs steps in order
3. Success: push the initial state onto the undo stack if the state
   changed, discard the snapshot, publish once, emit transaction:success
4. Failure: emit transaction:fail, then either compensate in reverse and
   restore the snapshot (default) or keep the partial effects
   (disable_auto_rollback), and raise TransactionFailedError

INVARIANT: A transaction whose final state equals its initial state
never grows the undo stack.
"""

from typing import TYPE_CHECKING, Any, Callable, List, Optional
import logging
import time

from statesaga.errors import CompensationError, RollbackUsageError, TransactionFailedError
from statesaga.events import EventDispatcher, SagaEventType, TransactionEvent
from statesaga.transactions.executor import StepExecutor
from statesaga.transactions.middleware import Middleware, MiddlewareContext, MiddlewareOrchestrator
from statesaga.transactions.rollback import RollbackEngine
from statesaga.transactions.schemas import (
    Step,
    StepFunction,
    StepOptions,
    TransactionOptions,
    TransactionStatus,
)

if TYPE_CHECKING:
    from statesaga.core.state_manager import StateManager


logger = logging.getLogger(__name__)


_UNSET = object()


class Transaction:
    """
    Ordered steps executed as a unit against one StateManager.

    Usage:
        tx = Transaction("checkout", manager, dispatcher)
        tx.add_step("reserve", reserve, release, retries=2)
        tx.add_step("charge", charge, refund, timeout_ms=5000)
        await tx.run({"order_id": 42})
    """

    def __init__(
        self,
        name: str,
        state_manager: "StateManager",
        dispatcher: Optional[EventDispatcher] = None,
        middleware: Optional[List[Middleware]] = None,
        options: Optional[TransactionOptions] = None,
    ):
        """
        Args:
            name: Transaction name, used in events and error messages
            state_manager: State the steps operate on
            dispatcher: Receives lifecycle events
            middleware: Middleware list (shared by reference with the owner)
            options: Rollback mode and no-op commit equality
        """
        self.name = name
        self._state_manager = state_manager
        self._dispatcher = dispatcher or EventDispatcher()
        self._options = options or TransactionOptions()

        self._steps: List[Step] = []
        self._executed: List[Step] = []
        self._status = TransactionStatus.CREATED
        self._last_payload: Any = None
        self._last_error: Optional[BaseException] = None
        self._last_duration_ms: Optional[float] = None

        self._executor = StepExecutor(state_manager, self._dispatcher)
        self._rollback_engine = RollbackEngine(state_manager, self._dispatcher)
        self._orchestrator = MiddlewareOrchestrator(middleware)

    # ==================== Definition ====================

    def add_step(
        self,
        name: str,
        execute: StepFunction,
        compensate: Optional[StepFunction] = None,
        options: Optional[StepOptions] = None,
        *,
        retries: Optional[int] = None,
        timeout_ms: Optional[float] = None,
    ) -> "Transaction":
        """
        Append a step.

        Keyword retries/timeout_ms override the matching fields of options.
        """
        overrides = {}
        if retries is not None:
            overrides["retries"] = retries
        if timeout_ms is not None:
            overrides["timeout_ms"] = timeout_ms
        if overrides:
            base = options.model_dump() if options is not None else {}
            options = StepOptions(**{**base, **overrides})

        self._steps.append(Step.create(name, execute, compensate, options))
        return self

    def configure(
        self,
        options: Optional[TransactionOptions] = None,
        *,
        disable_auto_rollback: Optional[bool] = None,
        equality_fn: Optional[Callable[[Any, Any], bool]] = None,
    ) -> "Transaction":
        """Replace or update transaction options; may be called at any time before run()."""
        updated = options or self._options
        changes = {}
        if disable_auto_rollback is not None:
            changes["disable_auto_rollback"] = disable_auto_rollback
        if equality_fn is not None:
            changes["equality_fn"] = equality_fn
        if changes:
            updated = TransactionOptions(**{**updated.model_dump(), **changes})
        self._options = updated
        return self

    @property
    def options(self) -> TransactionOptions:
        return self._options

    @property
    def steps_count(self) -> int:
        return len(self._steps)

    def get_step(self, index: int) -> Optional[Step]:
        if 0 <= index < len(self._steps):
            return self._steps[index]
        return None

    @property
    def status(self) -> TransactionStatus:
        return self._status

    @property
    def executed_step_names(self) -> List[str]:
        return [step.name for step in self._executed]

    @property
    def last_error(self) -> Optional[BaseException]:
        return self._last_error

    @property
    def last_duration_ms(self) -> Optional[float]:
        return self._last_duration_ms

    # ==================== Execution ====================

    async def run(self, payload: Any = None) -> None:
        """
        Execute all steps.

        Raises:
            TransactionFailedError: A step failed (after rollback, unless disabled)
            CompensationError: A compensation failed during rollback
        """
        manager = self._state_manager
        start = time.perf_counter()
        initial_state = manager.get_state()
        manager.create_snapshot()

        steps = list(self._steps)
        self._executed = []
        self._last_payload = payload
        self._last_error = None
        self._status = TransactionStatus.RUNNING

        logger.info(f"Transaction {self.name} started ({len(steps)} steps)")
        self._emit(SagaEventType.TRANSACTION_START, payload)

        core_entered = False

        async def core() -> None:
            nonlocal core_entered
            core_entered = True
            manager.begin_proxy_mutation()
            try:
                try:
                    for step in steps:
                        await self._executor.execute_step(step, payload)
                        self._executed.append(step)
                except Exception as exc:
                    await self._fail(exc, payload, initial_state, start)
                self._commit(payload, initial_state, start)
            finally:
                manager.end_proxy_mutation(commit=False)

        context = MiddlewareContext(transaction=self, payload=payload, state_manager=manager)
        try:
            await self._orchestrator.execute_with_middleware(context, core)
        except Exception as exc:
            if not core_entered:
                # Middleware failed before any step ran
                manager.discard_last_snapshot()
                self._status = TransactionStatus.FAILED_NO_ROLLBACK
                self._last_error = exc
                self._emit(SagaEventType.TRANSACTION_FAIL, payload, start=start, error=exc)
            raise

        if not core_entered:
            manager.discard_last_snapshot()
            self._status = TransactionStatus.SUCCEEDED
            self._emit(SagaEventType.TRANSACTION_SUCCESS, payload, start=start)

    async def rollback(self, payload: Any = _UNSET) -> int:
        """
        Compensate the last run's executed steps on demand.

        Only available with disable_auto_rollback. The state is not reset
        to a snapshot; compensations alone undo the step effects.

        Args:
            payload: Payload passed to compensations (default: last run's)

        Returns:
            Number of compensations run

        Raises:
            RollbackUsageError: auto-rollback is enabled
        """
        if not self._options.disable_auto_rollback:
            raise RollbackUsageError(self.name)
        if payload is _UNSET:
            payload = self._last_payload

        executed = list(self._executed)
        if not executed:
            logger.debug(f"Transaction {self.name} has no executed steps to roll back")
            return 0

        manager = self._state_manager
        before = manager.get_state()
        manager.begin_proxy_mutation()
        try:
            compensated = await self._rollback_engine.rollback_transaction(
                self.name, executed, payload, restore_snapshot=False,
            )
        finally:
            if manager.differs_from(before, self._options.equality_fn):
                manager.add_to_undo_stack(before)
            manager.end_proxy_mutation(commit=True)

        self._executed = []
        logger.info(f"Transaction {self.name} manually rolled back ({compensated} compensations)")
        return compensated

    # ==================== Outcomes ====================

    def _commit(self, payload: Any, initial_state: Any, start: float) -> None:
        manager = self._state_manager
        if manager.differs_from(initial_state, self._options.equality_fn):
            manager.add_to_undo_stack(initial_state)
        manager.discard_last_snapshot()
        manager.commit_proxy_mutations()

        self._status = TransactionStatus.SUCCEEDED
        duration = self._emit(SagaEventType.TRANSACTION_SUCCESS, payload, start=start)
        logger.info(f"Transaction {self.name} committed ({duration:.1f}ms)")

    async def _fail(self, exc: Exception, payload: Any, initial_state: Any, start: float) -> None:
        manager = self._state_manager
        self._last_error = exc
        self._emit(SagaEventType.TRANSACTION_FAIL, payload, start=start, error=exc)

        if self._options.disable_auto_rollback:
            manager.discard_last_snapshot()
            if manager.differs_from(initial_state, self._options.equality_fn):
                manager.add_to_undo_stack(initial_state)
            manager.commit_proxy_mutations()
            self._status = TransactionStatus.FAILED_NO_ROLLBACK
            logger.warning(f"Transaction {self.name} failed, rollback disabled: {exc}")
            raise TransactionFailedError(self.name, exc, rolled_back=False) from exc

        try:
            await self._rollback_engine.rollback_transaction(
                self.name, list(self._executed), payload, original_error=exc,
            )
        except CompensationError:
            self._status = TransactionStatus.ROLLBACK_FAILED
            raise

        self._status = TransactionStatus.FAILED_AND_ROLLED_BACK
        logger.info(f"Transaction {self.name} failed and rolled back: {exc}")
        raise TransactionFailedError(self.name, exc, rolled_back=True) from exc

    def _emit(
        self,
        event_type: SagaEventType,
        payload: Any,
        start: Optional[float] = None,
        error: Optional[BaseException] = None,
    ) -> Optional[float]:
        duration = None
        if start is not None:
            duration = (time.perf_counter() - start) * 1000
            self._last_duration_ms = duration
        self._dispatcher.emit(TransactionEvent(
            event_type=event_type,
            payload=payload,
            transaction_name=self.name,
            duration_ms=duration,
            error=error,
        ))
        return duration

    def __repr__(self) -> str:
        return f"Transaction({self.name!r}, steps={len(self._steps)}, status={self._status.value})"


class TransactionBuilder:
    """
    Fluent construction of a Transaction.

    Usage:
        await (
            manager.create_transaction("transfer")
            .add_step("debit", debit, credit_back)
            .configure(disable_auto_rollback=True)
            .add_step("credit", credit)
            .run({"amount": 10})
        )
    """

    def __init__(
        self,
        name: str,
        state_manager: "StateManager",
        dispatcher: Optional[EventDispatcher] = None,
        middleware: Optional[List[Middleware]] = None,
    ):
        self.name = name
        self._transaction = Transaction(name, state_manager, dispatcher, middleware)

    def add_step(
        self,
        name: str,
        execute: StepFunction,
        compensate: Optional[StepFunction] = None,
        options: Optional[StepOptions] = None,
        *,
        retries: Optional[int] = None,
        timeout_ms: Optional[float] = None,
    ) -> "TransactionBuilder":
        self._transaction.add_step(
            name, execute, compensate, options, retries=retries, timeout_ms=timeout_ms,
        )
        return self

    def configure(
        self,
        options: Optional[TransactionOptions] = None,
        *,
        disable_auto_rollback: Optional[bool] = None,
        equality_fn: Optional[Callable[[Any, Any], bool]] = None,
    ) -> "TransactionBuilder":
        self._transaction.configure(
            options, disable_auto_rollback=disable_auto_rollback, equality_fn=equality_fn,
        )
        return self

    def build(self) -> Transaction:
        return self._transaction

    async def run(self, payload: Any = None) -> None:
        await self._transaction.run(payload)

    async def rollback(self, payload: Any = _UNSET) -> int:
        return await self._transaction.rollback(payload)
