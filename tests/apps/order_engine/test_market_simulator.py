"""
Tests for the Market Simulation Loop.

Tests verify:
- simulated prices stay within the max-move bound
- one tick evaluates every OPEN order, grouped by symbol
- a failing symbol is skipped without affecting the others
- a failing order does not abort its symbol's batch
- start/stop lifecycle
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Callable
from unittest.mock import AsyncMock, MagicMock

import pytest

from apps.order_engine.evaluator import ProfitEvaluator
from apps.order_engine.market_simulator import MarketSimulator
from apps.order_engine.order_store import OrderStore
from apps.order_engine.price_oracle import StaticPriceOracle
from apps.order_engine.schemas import Order, OrderStatus
from libs.common.exceptions import RemoteUnavailableError


def _simulator(store: OrderStore, oracle, **kwargs) -> MarketSimulator:
    kwargs.setdefault("rng", random.Random(42))
    return MarketSimulator(store, oracle, ProfitEvaluator(store), **kwargs)


class TestSimulatePrice:
    def test_random_walk_stays_within_bound(self, store: OrderStore) -> None:
        simulator = _simulator(store, StaticPriceOracle(), volatility=0.05, max_move=0.005)

        prices = [simulator.simulate_price(100.0) for _ in range(2000)]

        assert all(99.5 - 1e-9 <= p <= 100.5 + 1e-9 for p in prices)
        assert min(prices) == pytest.approx(99.5)
        assert max(prices) == pytest.approx(100.5)

    def test_volatility_below_bound_is_unclamped(self, store: OrderStore) -> None:
        simulator = _simulator(store, StaticPriceOracle(), volatility=0.002, max_move=0.005)

        prices = [simulator.simulate_price(100.0) for _ in range(2000)]

        assert all(99.8 - 1e-9 <= p <= 100.2 + 1e-9 for p in prices)

    def test_zero_volatility_returns_base(self, store: OrderStore) -> None:
        simulator = _simulator(store, StaticPriceOracle(), volatility=0.0)

        assert simulator.simulate_price(123.45) == 123.45

    def test_negative_volatility_rejected(self, store: OrderStore) -> None:
        with pytest.raises(ValueError):
            _simulator(store, StaticPriceOracle(), volatility=-0.1)


class TestTick:
    @pytest.mark.asyncio()
    async def test_tick_evaluates_all_open_orders(
        self, store: OrderStore, make_order: Callable[..., Order]
    ) -> None:
        btc = make_order()
        eth = make_order(
            symbol="ETHUSDT", entry_price=2000, take_profit_price=2100, stop_loss_price=1900
        )
        closed = make_order()
        store.update_status(closed.id, OrderStatus.CLOSED)
        oracle = StaticPriceOracle({"BTCUSDT": 101.0, "ETHUSDT": 2010.0})

        touched = await _simulator(store, oracle).force_update()

        assert touched == 2
        assert store.get(btc.id).profit is not None
        assert store.get(eth.id).profit is not None
        assert store.get(closed.id).profit is None

    @pytest.mark.asyncio()
    async def test_price_fetched_once_per_symbol(
        self, store: OrderStore, make_order: Callable[..., Order]
    ) -> None:
        for _ in range(3):
            make_order()
        oracle = MagicMock()
        oracle.get_current_price = AsyncMock(return_value=101.0)

        await _simulator(store, oracle).run_tick()

        oracle.get_current_price.assert_awaited_once_with("BTCUSDT")

    @pytest.mark.asyncio()
    async def test_failing_symbol_is_skipped(
        self, store: OrderStore, make_order: Callable[..., Order]
    ) -> None:
        btc = make_order()
        eth = make_order(
            symbol="ETHUSDT", entry_price=2000, take_profit_price=2100, stop_loss_price=1900
        )

        async def price(symbol: str) -> float:
            if symbol == "ETHUSDT":
                raise RemoteUnavailableError("feed down")
            return 101.0

        oracle = MagicMock()
        oracle.get_current_price = AsyncMock(side_effect=price)

        touched = await _simulator(store, oracle).run_tick()

        assert touched == 1
        assert store.get(btc.id).profit is not None
        assert store.get(eth.id).profit is None

    @pytest.mark.asyncio()
    async def test_unexpected_oracle_error_is_contained(
        self, store: OrderStore, make_order: Callable[..., Order]
    ) -> None:
        make_order()
        oracle = MagicMock()
        oracle.get_current_price = AsyncMock(side_effect=KeyError("weird"))

        assert await _simulator(store, oracle).run_tick() == 0

    @pytest.mark.asyncio()
    async def test_failing_order_does_not_abort_batch(
        self, store: OrderStore, make_order: Callable[..., Order]
    ) -> None:
        first = make_order()
        second = make_order()
        evaluator = MagicMock()

        def evaluate(order: Order, price: float) -> Order:
            if order.id == second.id:
                raise RuntimeError("boom")
            return order

        evaluator.evaluate.side_effect = evaluate
        simulator = MarketSimulator(
            store, StaticPriceOracle({"BTCUSDT": 100.0}), evaluator, rng=random.Random(1)
        )

        touched = await simulator.run_tick()

        assert touched == 1
        assert evaluator.evaluate.call_count == 2
        assert {c.args[0].id for c in evaluator.evaluate.call_args_list} == {first.id, second.id}

    @pytest.mark.asyncio()
    async def test_trigger_closes_order_within_tick(
        self, store: OrderStore, make_order: Callable[..., Order]
    ) -> None:
        """A price far above TP fills regardless of the random perturbation."""
        order = make_order()

        await _simulator(store, StaticPriceOracle({"BTCUSDT": 110.0})).run_tick()

        stored = store.get(order.id)
        assert stored.status is OrderStatus.FILLED
        assert stored.close_reason == "TP hit"

    @pytest.mark.asyncio()
    async def test_empty_store(self, store: OrderStore) -> None:
        assert await _simulator(store, StaticPriceOracle()).run_tick() == 0


class TestLifecycle:
    @pytest.mark.asyncio()
    async def test_start_stop(self, store: OrderStore, make_order: Callable[..., Order]) -> None:
        order = make_order()
        simulator = _simulator(store, StaticPriceOracle({"BTCUSDT": 101.0}), interval_seconds=3600)

        assert simulator.start() is True
        assert simulator.start() is False
        assert simulator.is_running() is True

        for _ in range(50):
            if store.get(order.id).profit is not None:
                break
            await asyncio.sleep(0.01)

        assert store.get(order.id).profit is not None
        assert simulator.stop() is True
        assert simulator.is_running() is False
        await simulator.shutdown()
