"""
transactions/middleware.py - Middleware orchestration

Composes an ordered middleware list into one onion-style chain around
the transaction core. Middleware i receives a next() that dispatches
middleware i+1; the last next() enters the core.

Middleware may be sync or async. An async middleware awaits next();
a sync one must return next() so the chain can await it.
"""

from dataclasses import dataclass
from functools import partial
from typing import TYPE_CHECKING, Any, Awaitable, Callable, List, Optional, Sequence
import logging
import time

from statesaga.core.utils import maybe_await
from statesaga.errors import MiddlewareProtocolError

if TYPE_CHECKING:
    from statesaga.core.state_manager import StateManager


logger = logging.getLogger(__name__)


Next = Callable[[], Awaitable[None]]


@dataclass
class MiddlewareContext:
    """What each middleware sees: the transaction, its payload and the state."""

    transaction: Any
    payload: Any
    state_manager: "StateManager"

    @property
    def transaction_name(self) -> str:
        return getattr(self.transaction, "name", "")

    def get_state(self) -> Any:
        return self.state_manager.get_state()

    def set_state(self, new_state: Any) -> bool:
        return self.state_manager.set_state(new_state)


Middleware = Callable[[MiddlewareContext, Next], Any]


class _Chain:
    """One dispatch of the chain; index only moves forward."""

    def __init__(self, middleware: Sequence[Middleware], context: MiddlewareContext, core: Callable[[], Any]):
        self._middleware = tuple(middleware)
        self._context = context
        self._core = core
        self._index = -1
        self.core_entered = False

    async def dispatch(self, i: int) -> None:
        if i <= self._index:
            raise MiddlewareProtocolError()
        self._index = i

        if i == len(self._middleware):
            self.core_entered = True
            await maybe_await(self._core())
            return

        middleware = self._middleware[i]
        logger.debug(f"Entering middleware {i}: {getattr(middleware, '__name__', middleware)!r}")
        await maybe_await(middleware(self._context, partial(self.dispatch, i + 1)))


class MiddlewareOrchestrator:
    """
    Ordered middleware list with onion-style execution.

    Usage:
        orchestrator = MiddlewareOrchestrator()
        orchestrator.use(auth_middleware)
        orchestrator.use(create_logging_middleware())

        entered = await orchestrator.execute_with_middleware(context, core)
    """

    def __init__(self, middleware: Optional[List[Middleware]] = None):
        """
        Args:
            middleware: List to hold the middleware. Passing a list shares it,
                so later use() calls on the owner are seen here.
        """
        self._middleware: List[Middleware] = middleware if middleware is not None else []

    def use(self, middleware: Middleware) -> "MiddlewareOrchestrator":
        self._middleware.append(middleware)
        return self

    def remove(self, middleware: Middleware) -> bool:
        if middleware in self._middleware:
            self._middleware.remove(middleware)
            return True
        return False

    def clear(self) -> None:
        self._middleware.clear()

    @property
    def middleware(self) -> tuple:
        return tuple(self._middleware)

    def __len__(self) -> int:
        return len(self._middleware)

    async def execute_with_middleware(self, context: MiddlewareContext, core: Callable[[], Any]) -> bool:
        """
        Run the chain around core.

        Exceptions from any middleware or the core propagate to the caller.

        Returns:
            True if the core was entered, False if a middleware short-circuited
        """
        chain = _Chain(self._middleware, context, core)
        await chain.dispatch(0)
        if not chain.core_entered:
            logger.warning(f"Transaction {context.transaction_name} short-circuited by middleware")
        return chain.core_entered


# =============================================================================
# Built-in middleware
# =============================================================================


def create_logging_middleware(log: Optional[logging.Logger] = None) -> Middleware:
    """Log transaction start, completion and failure with duration."""
    log = log or logging.getLogger("statesaga.middleware.logging")

    async def logging_middleware(ctx: MiddlewareContext, next: Next) -> None:
        name = ctx.transaction_name
        start = time.perf_counter()
        log.info(f"Starting transaction: {name}")
        try:
            await next()
        except Exception as e:
            duration = (time.perf_counter() - start) * 1000
            log.error(f"Transaction failed: {name} ({duration:.1f}ms): {e}")
            raise
        duration = (time.perf_counter() - start) * 1000
        log.info(f"Completed transaction: {name} ({duration:.1f}ms)")

    return logging_middleware


def create_timing_middleware(on_complete: Callable[[str, float, Any], None]) -> Middleware:
    """Report (transaction_name, duration_ms, state) after every run."""

    async def timing_middleware(ctx: MiddlewareContext, next: Next) -> None:
        start = time.perf_counter()
        try:
            await next()
        finally:
            on_complete(ctx.transaction_name, (time.perf_counter() - start) * 1000, ctx.get_state())

    return timing_middleware
