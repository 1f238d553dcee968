"""
transactions/rollback.py - Compensation and state restore

Undoes already-executed steps in strict reverse order, then restores
the pre-transaction snapshot.

Compensation is fail-fast: when one compensation raises, the remaining
ones are skipped and a CompensationError carrying both the compensation
failure and the original step failure propagates. The snapshot is
restored either way.
"""

from typing import TYPE_CHECKING, Any, Optional, Sequence
import logging

from statesaga.core.utils import maybe_await
from statesaga.errors import CompensationError
from statesaga.events import EventDispatcher, SagaEventType, StepEvent, TransactionEvent
from statesaga.transactions.schemas import Step

if TYPE_CHECKING:
    from statesaga.core.state_manager import StateManager


logger = logging.getLogger(__name__)


class RollbackEngine:
    """Runs compensations for one transaction's executed steps."""

    def __init__(self, state_manager: "StateManager", dispatcher: Optional[EventDispatcher] = None):
        self._state_manager = state_manager
        self._dispatcher = dispatcher or EventDispatcher()

    async def compensate_step(self, step: Step, payload: Any) -> bool:
        """
        Run one step's compensation.

        Returns:
            False if the step has no compensation
        """
        if step.compensate is None:
            return False
        self._dispatcher.emit(StepEvent(
            event_type=SagaEventType.STEP_ROLLBACK,
            payload=payload,
            step_name=step.name,
        ))
        await maybe_await(step.compensate(self._state_manager.tracked_state(), payload))
        return True

    async def rollback_steps(
        self,
        executed_steps: Sequence[Step],
        payload: Any,
        transaction_name: str = "",
        original_error: Optional[BaseException] = None,
        restore_snapshot: bool = True,
    ) -> int:
        """
        Compensate executed steps newest-first, then restore the snapshot.

        Args:
            executed_steps: Steps in the order they completed
            payload: Payload the transaction ran with
            transaction_name: For error messages
            original_error: Failure that triggered the rollback
            restore_snapshot: Pop and restore the newest snapshot afterwards

        Returns:
            Number of compensations run

        Raises:
            CompensationError: A compensation raised; later ones were skipped
        """
        compensated = 0
        try:
            for step in reversed(list(executed_steps)):
                try:
                    if await self.compensate_step(step, payload):
                        compensated += 1
                except Exception as e:
                    logger.error(f'Compensation for step "{step.name}" failed: {e}')
                    raise CompensationError(step.name, transaction_name, e, original_error) from e
        finally:
            if restore_snapshot:
                self._state_manager.rollback_to_last_snapshot()
        return compensated

    async def rollback_transaction(
        self,
        transaction_name: str,
        executed_steps: Sequence[Step],
        payload: Any,
        original_error: Optional[BaseException] = None,
        restore_snapshot: bool = True,
    ) -> int:
        """Roll back a transaction and emit transaction:rollback."""
        logger.info(f"Rolling back transaction {transaction_name} ({len(executed_steps)} executed steps)")
        compensated = await self.rollback_steps(
            executed_steps, payload, transaction_name, original_error, restore_snapshot,
        )
        self._dispatcher.emit(TransactionEvent(
            event_type=SagaEventType.TRANSACTION_ROLLBACK,
            payload=payload,
            transaction_name=transaction_name,
        ))
        return compensated
