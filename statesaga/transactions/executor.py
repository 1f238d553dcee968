"""
transactions/executor.py - Step execution

Runs one step with bounded retry and an optional per-attempt timeout.

Timeouts abandon the attempt rather than cancel it: the body keeps
running as a shielded task, and only the wait for it fails.
"""

from typing import TYPE_CHECKING, Any, Optional
import asyncio
import logging
import time

from statesaga.core.utils import maybe_await
from statesaga.errors import StepTimeoutError
from statesaga.events import EventDispatcher, SagaEventType, StepEvent
from statesaga.transactions.schemas import Step

if TYPE_CHECKING:
    from statesaga.core.state_manager import StateManager


logger = logging.getLogger(__name__)


def _log_abandoned(step_name: str, task: "asyncio.Future") -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.debug(f'Abandoned work of step "{step_name}" failed after timeout: {error}')
    else:
        logger.debug(f'Abandoned work of step "{step_name}" finished after timeout')


class StepExecutor:
    """
    Executes steps against a StateManager's tracked state.

    Attempts per step = max(retries, 0) + 1. Each failed attempt with
    attempts remaining emits step:retry; the last failure propagates.
    """

    def __init__(self, state_manager: "StateManager", dispatcher: Optional[EventDispatcher] = None):
        self._state_manager = state_manager
        self._dispatcher = dispatcher or EventDispatcher()

    async def execute_step(self, step: Step, payload: Any) -> None:
        """
        Run step.execute until it succeeds or attempts are exhausted.

        Raises:
            The last attempt's exception (StepTimeoutError on timeout)
        """
        self._emit(SagaEventType.STEP_START, step, payload)
        start = time.perf_counter()
        max_attempts = step.max_attempts

        for attempt in range(1, max_attempts + 1):
            try:
                await self._attempt(step, payload)
            except Exception as e:
                if attempt >= max_attempts:
                    raise
                logger.warning(f'Step "{step.name}" failed (attempt {attempt}/{max_attempts}), retrying: {e}')
                self._emit(
                    SagaEventType.STEP_RETRY, step, payload,
                    attempt=attempt, last_error=e,
                )
                continue

            duration = (time.perf_counter() - start) * 1000
            self._emit(SagaEventType.STEP_SUCCESS, step, payload, duration_ms=duration)
            return

    async def _attempt(self, step: Step, payload: Any) -> None:
        state = self._state_manager.tracked_state()
        if step.timeout_ms <= 0:
            await maybe_await(step.execute(state, payload))
            return

        task = asyncio.ensure_future(maybe_await(step.execute(state, payload)))
        try:
            await asyncio.wait_for(asyncio.shield(task), step.timeout_ms / 1000.0)
        except asyncio.TimeoutError:
            logger.warning(f'Step "{step.name}" timed out after {step.timeout_ms:g}ms; work abandoned')
            task.add_done_callback(lambda t: _log_abandoned(step.name, t))
            raise StepTimeoutError(step.name, step.timeout_ms) from None

    def _emit(self, event_type: SagaEventType, step: Step, payload: Any, **fields: Any) -> None:
        self._dispatcher.emit(StepEvent(
            event_type=event_type,
            payload=payload,
            step_name=step.name,
            **fields,
        ))
