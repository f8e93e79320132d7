"""Shared pytest fixtures for order_engine tests."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from apps.order_engine.config import StrategyConfig
from apps.order_engine.order_store import OrderStore
from apps.order_engine.schemas import Order


class FakeClock:
    """Deterministic clock; every call advances by one second."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2024, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        value = self.current
        self.current = self.current + timedelta(seconds=1)
        return value


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def store(clock: FakeClock) -> OrderStore:
    """In-memory store with a deterministic clock."""
    return OrderStore(now=clock)


@pytest.fixture()
def strategy_config() -> StrategyConfig:
    return StrategyConfig(
        symbol="BTCUSDT",
        adx_minimum=20,
        plus_di_threshold=25,
        minus_di_threshold=20,
        take_profit_percent=2,
        stop_loss_percent=1,
        leverage=10,
        quantity=0.001,
    )


@pytest.fixture()
def make_order(store: OrderStore) -> Callable[..., Order]:
    """Create an order in ``store`` with sensible BUY defaults."""

    def _make(**overrides: Any) -> Order:
        data: dict[str, Any] = {
            "symbol": "BTCUSDT",
            "side": "BUY",
            "entry_price": 100.0,
            "take_profit_price": 104.0,
            "stop_loss_price": 98.0,
            "quantity": 1.0,
        }
        data.update(overrides)
        return store.create(data)

    return _make
