"""
Unit tests for TransactionComposer, CompositionBuilder and CompositionPatterns.
"""

import asyncio

import pytest
from unittest.mock import Mock

from statesaga.core.state_manager import StateManager
from statesaga.errors import CircuitOpenError, TransactionFailedError
from statesaga.transactions import (
    CompositionBuilder,
    CompositionOptions,
    CompositionPatterns,
    CompositionStrategy,
    Transaction,
    TransactionComposer,
)


@pytest.fixture
def manager():
    return StateManager({"log": [], "counter": 0})


def logging_tx(manager, name, dispatcher=None):
    """Transaction appending its name to state['log']."""
    tx = Transaction(name, manager, dispatcher)
    tx.add_step(name, lambda state, payload: state["log"].append(name))
    return tx


def failing_tx(manager, name):
    tx = Transaction(name, manager)

    def fail(state, payload):
        raise RuntimeError(f"{name} failed")

    tx.add_step("fail", fail)
    return tx


class TestSequential:
    """Tests for sequential composition."""

    @pytest.mark.asyncio
    async def test_runs_in_order(self, manager):
        composer = TransactionComposer("seq", manager)
        composer.add_all([logging_tx(manager, "a"), logging_tx(manager, "b")])

        result = await composer.execute()

        assert result.success is True
        assert result.executed_transactions == ["a", "b"]
        assert result.final_state["log"] == ["a", "b"]
        assert result.duration_ms >= 0

    @pytest.mark.asyncio
    async def test_failure_stops_and_raises(self, manager):
        composer = TransactionComposer("seq", manager)
        composer.add(failing_tx(manager, "bad"))
        composer.add(logging_tx(manager, "never"))

        with pytest.raises(TransactionFailedError):
            await composer.execute()

        assert manager.get_state()["log"] == []

    @pytest.mark.asyncio
    async def test_continue_on_error(self, manager):
        composer = TransactionComposer("seq", manager)
        composer.add(failing_tx(manager, "bad"), CompositionOptions(continue_on_error=True))
        composer.add(logging_tx(manager, "after"))

        result = await composer.execute()

        assert result.success is False
        assert result.failed_transactions == ["bad"]
        assert result.executed_transactions == ["after"]
        assert len(result.errors) == 1


class TestParallel:
    """Tests for parallel groups."""

    @pytest.mark.asyncio
    async def test_parallel_group_runs_concurrently(self, manager):
        started = []
        release = asyncio.Event()

        def waiting_tx(name):
            async def body(state, payload):
                started.append(name)
                if len(started) == 2:
                    release.set()
                await asyncio.wait_for(release.wait(), 1)

            return Transaction(name, manager).add_step(name, body)

        composer = TransactionComposer("par", manager)
        composer.add_parallel([waiting_tx("x"), waiting_tx("y")])

        result = await composer.execute()

        assert sorted(result.executed_transactions) == ["x", "y"]

    @pytest.mark.asyncio
    async def test_registration_order_preserved(self, manager):
        """Sequential entries after a parallel group run after it."""
        composer = TransactionComposer("mixed", manager)
        composer.add(logging_tx(manager, "first"))
        composer.add_parallel([logging_tx(manager, "p1"), logging_tx(manager, "p2")])
        composer.add(logging_tx(manager, "last"))

        await composer.execute()

        log = manager.get_state()["log"]
        assert log[0] == "first"
        assert sorted(log[1:3]) == ["p1", "p2"]
        assert log[3] == "last"

    @pytest.mark.asyncio
    async def test_parallel_fail_fast(self, manager):
        composer = TransactionComposer("par", manager)
        composer.add_parallel([failing_tx(manager, "bad")])

        with pytest.raises(TransactionFailedError):
            await composer.execute()

    @pytest.mark.asyncio
    async def test_parallel_continue_on_error(self, manager):
        composer = TransactionComposer("par", manager)
        composer.add_parallel([failing_tx(manager, "bad"), logging_tx(manager, "ok")], continue_on_error=True)

        result = await composer.execute()

        assert result.success is False
        assert result.failed_transactions == ["bad"]
        assert result.executed_transactions == ["ok"]


class TestConditional:
    """Tests for conditional entries."""

    @pytest.mark.asyncio
    async def test_condition_false_skips(self, manager):
        composer = TransactionComposer("cond", manager)
        composer.add_conditional(logging_tx(manager, "gated"), lambda state, payload: payload["go"])

        result = await composer.execute({"go": False})

        assert result.executed_transactions == []
        assert manager.get_state()["log"] == []

    @pytest.mark.asyncio
    async def test_async_condition_sees_state(self, manager):
        seen = Mock()

        async def condition(state, payload):
            seen(state)
            return True

        composer = TransactionComposer("cond", manager)
        composer.add(logging_tx(manager, "first"))
        composer.add_conditional(logging_tx(manager, "gated"), condition)

        result = await composer.execute()

        assert result.executed_transactions == ["first", "gated"]
        assert seen.call_args[0][0]["log"] == ["first"]


class TestFallback:
    """Tests for primary-with-fallback entries."""

    @pytest.mark.asyncio
    async def test_fallback_runs_on_failure(self, manager):
        composer = TransactionComposer("fb", manager)
        composer.add_with_fallback(failing_tx(manager, "primary"), logging_tx(manager, "backup"))

        result = await composer.execute()

        assert result.success is True
        assert result.executed_transactions == ["primary (fallback)"]
        assert manager.get_state()["log"] == ["backup"]

    @pytest.mark.asyncio
    async def test_primary_success_skips_fallback(self, manager):
        composer = TransactionComposer("fb", manager)
        composer.add_with_fallback(logging_tx(manager, "primary"), logging_tx(manager, "backup"))

        result = await composer.execute()

        assert result.executed_transactions == ["primary"]
        assert manager.get_state()["log"] == ["primary"]

    @pytest.mark.asyncio
    async def test_fallback_failure_propagates(self, manager):
        composer = TransactionComposer("fb", manager)
        composer.add_with_fallback(failing_tx(manager, "primary"), failing_tx(manager, "backup"))

        with pytest.raises(TransactionFailedError, match="backup failed"):
            await composer.execute()


class TestComposerEvents:
    """Tests for composer events and stats."""

    @pytest.mark.asyncio
    async def test_emits_under_composer_name(self, manager, dispatcher, recorder):
        composer = TransactionComposer("outer", manager, dispatcher)
        composer.add(logging_tx(manager, "inner", dispatcher))

        await composer.execute()

        names = [(e.event_type.value, e.transaction_name) for e in recorder.events if hasattr(e, "transaction_name")]
        assert names[0] == ("transaction:start", "outer")
        assert names[-1] == ("transaction:success", "outer")
        assert ("transaction:success", "inner") in names

    def test_stats(self, manager):
        composer = TransactionComposer("s", manager)
        composer.add(logging_tx(manager, "a"))
        composer.add_parallel([logging_tx(manager, "b"), logging_tx(manager, "c")])
        composer.add_conditional(logging_tx(manager, "d"), lambda s, p: True)
        composer.add_with_fallback(logging_tx(manager, "e"), logging_tx(manager, "f"))

        assert composer.get_stats() == {
            "total_transactions": 5,
            "sequential_count": 1,
            "parallel_count": 2,
            "conditional_count": 1,
            "fallback_count": 1,
        }

    def test_options_default_strategy(self):
        assert CompositionOptions().strategy == CompositionStrategy.SEQUENTIAL


class TestCompositionBuilder:
    """Tests for CompositionBuilder shortcuts."""

    @pytest.mark.asyncio
    async def test_shortcuts(self, manager):
        builder = CompositionBuilder(manager)

        assert builder.sequential("s", [logging_tx(manager, "a")]).get_stats()["sequential_count"] == 1
        assert builder.parallel("p", [logging_tx(manager, "a")]).get_stats()["parallel_count"] == 1
        assert builder.conditional("c", logging_tx(manager, "a"), lambda s, p: True).get_stats()["conditional_count"] == 1
        composer = builder.with_fallback("f", failing_tx(manager, "x"), logging_tx(manager, "y"))
        assert composer.name == "f"

        result = await composer.execute()
        assert result.executed_transactions == ["x (fallback)"]


class TestPatterns:
    """Tests for CompositionPatterns."""

    @pytest.mark.asyncio
    async def test_circuit_breaker_opens(self, manager):
        guarded = CompositionPatterns.circuit_breaker(failing_tx(manager, "flaky"), threshold=2, reset_seconds=60)

        for _ in range(2):
            with pytest.raises(TransactionFailedError):
                await guarded(None, None)

        with pytest.raises(CircuitOpenError, match="2 failures"):
            await guarded(None, None)

    @pytest.mark.asyncio
    async def test_circuit_breaker_resets_on_success(self, manager):
        tx = logging_tx(manager, "ok")
        guarded = CompositionPatterns.circuit_breaker(tx, threshold=1)

        await guarded(None, None)
        await guarded(None, None)

        assert manager.get_state()["log"] == ["ok", "ok"]

    @pytest.mark.asyncio
    async def test_exponential_retry(self, manager):
        attempts = {"n": 0}

        def sometimes(state, payload):
            attempts["n"] += 1
            if attempts["n"] < 3:
                raise RuntimeError("later")

        tx = Transaction("retry", manager).add_step("s", sometimes)
        retried = CompositionPatterns.exponential_retry(tx, max_retries=3, base_delay=0.001)

        await retried(None, None)

        assert attempts["n"] == 3

    @pytest.mark.asyncio
    async def test_exponential_retry_exhausted(self, manager):
        retried = CompositionPatterns.exponential_retry(failing_tx(manager, "bad"), max_retries=1, base_delay=0.001)

        with pytest.raises(TransactionFailedError):
            await retried(None, None)

    @pytest.mark.asyncio
    async def test_bulkhead_limits_concurrency(self, manager):
        active = {"now": 0, "peak": 0}

        async def body(state, payload):
            active["now"] += 1
            active["peak"] = max(active["peak"], active["now"])
            await asyncio.sleep(0.01)
            active["now"] -= 1

        tx = Transaction("bulk", manager).add_step("s", body)
        isolated = CompositionPatterns.bulkhead(tx, max_concurrent=2)

        await asyncio.gather(*(isolated(None, i) for i in range(5)))

        assert active["peak"] == 2

    @pytest.mark.asyncio
    async def test_pattern_as_step(self, manager):
        """Pattern callables plug into an outer transaction."""
        inner = logging_tx(manager, "inner")
        outer = Transaction("outer", manager).add_step("guarded", CompositionPatterns.circuit_breaker(inner))

        await outer.run()

        assert manager.get_state()["log"] == ["inner"]
