"""
Tests for signal processing.

Tests verify:
- TP/SL price derivation for BUY and SELL
- A valid signal creates an OPEN order priced from the oracle
- Invalid signals and missing prices are reported without creating orders
- Remote placement links the order, and a remote failure keeps the local order
- Remote TP/SL exits follow the link, and their failure does not undo it
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from apps.order_engine.config import StrategyConfig
from apps.order_engine.exchange_client import ExchangeConnectionError, ExchangeValidationError
from apps.order_engine.order_store import OrderStore
from apps.order_engine.price_oracle import StaticPriceOracle
from apps.order_engine.schemas import OrderSide, OrderStatus, RemoteOrderStatus, Signal
from apps.order_engine.trading import SignalProcessor, calculate_tp_sl
from libs.common.exceptions import ValidationError

BUY_SIGNAL = {"adx": 25, "plusDI": 30, "minusDI": 10}
SELL_SIGNAL = {"adx": 25, "plusDI": 10, "minusDI": 30}


def _processor(
    store: OrderStore,
    config: StrategyConfig,
    prices: dict[str, float] | None = None,
    exchange_client=None,
) -> SignalProcessor:
    oracle = StaticPriceOracle({"BTCUSDT": 64000.0} if prices is None else prices)
    return SignalProcessor(
        store, oracle, config_provider=lambda: config, exchange_client=exchange_client
    )


def _exchange(placed: RemoteOrderStatus, tp_sl_error: Exception | None = None) -> MagicMock:
    client = MagicMock()
    client.place_order = AsyncMock(return_value=placed)
    client.place_tp_sl_orders = AsyncMock(
        return_value=(
            RemoteOrderStatus(order_id="9002", symbol="BTCUSDT", status="NEW"),
            RemoteOrderStatus(order_id="9003", symbol="BTCUSDT", status="NEW"),
        ),
        side_effect=tp_sl_error,
    )
    return client


class TestCalculateTpSl:
    def test_buy(self) -> None:
        assert calculate_tp_sl(OrderSide.BUY, 100.0, 2.0, 1.0) == (102.0, 99.0)

    def test_sell(self) -> None:
        assert calculate_tp_sl(OrderSide.SELL, 100.0, 2.0, 1.0) == (98.0, 101.0)

    def test_rounded_to_eight_decimals(self) -> None:
        tp, sl = calculate_tp_sl(OrderSide.BUY, 0.123456789, 3.0, 3.0)

        assert tp == round(0.123456789 * 1.03, 8)
        assert sl == round(0.123456789 * 0.97, 8)

    def test_non_positive_price_rejected(self) -> None:
        with pytest.raises(ValidationError):
            calculate_tp_sl(OrderSide.BUY, 0, 2.0, 1.0)


class TestProcessSignal:
    @pytest.mark.asyncio()
    async def test_buy_signal_creates_open_order(
        self, store: OrderStore, strategy_config: StrategyConfig
    ) -> None:
        result = await _processor(store, strategy_config).process_signal(BUY_SIGNAL)

        assert result.success is True
        assert result.message == "Successfully created BUY order"
        order = result.order
        assert order.status is OrderStatus.OPEN
        assert order.side is OrderSide.BUY
        assert order.symbol == "BTCUSDT"
        assert order.entry_price == 64000.0
        assert order.take_profit_price == pytest.approx(65280.0)
        assert order.stop_loss_price == pytest.approx(63360.0)
        assert order.quantity == 0.001
        assert order.leverage == 10
        assert order.signal == {"plus_di": 30.0, "minus_di": 10.0, "adx": 25.0}
        assert store.get(order.id) == order
        assert result.remote is None

    @pytest.mark.asyncio()
    async def test_sell_signal_uses_signal_symbol(
        self, store: OrderStore, strategy_config: StrategyConfig
    ) -> None:
        signal = Signal(plus_di=10, minus_di=30, adx=25, symbol="ethusdt", timeframe="1h")
        processor = _processor(store, strategy_config, prices={"ETHUSDT": 2000.0})

        result = await processor.process_signal(signal)

        assert result.order.side is OrderSide.SELL
        assert result.order.symbol == "ETHUSDT"
        assert result.order.timeframe == "1h"
        assert result.order.take_profit_price == pytest.approx(1960.0)
        assert result.order.stop_loss_price == pytest.approx(2020.0)

    @pytest.mark.asyncio()
    async def test_invalid_signal_creates_nothing(
        self, store: OrderStore, strategy_config: StrategyConfig
    ) -> None:
        result = await _processor(store, strategy_config).process_signal(
            {"adx": 15, "plusDI": 30, "minusDI": 10}
        )

        assert result.success is False
        assert result.message == "Invalid signal: ADX below minimum"
        assert result.order is None
        assert len(store) == 0

    @pytest.mark.asyncio()
    async def test_price_unavailable_creates_nothing(
        self, store: OrderStore, strategy_config: StrategyConfig
    ) -> None:
        result = await _processor(store, strategy_config, prices={}).process_signal(BUY_SIGNAL)

        assert result.success is False
        assert result.message.startswith("Price unavailable for BTCUSDT")
        assert len(store) == 0

    @pytest.mark.asyncio()
    async def test_thresholds_read_per_signal(self, store: OrderStore) -> None:
        configs = iter([StrategyConfig(adx_minimum=20), StrategyConfig(adx_minimum=30)])
        processor = SignalProcessor(
            store, StaticPriceOracle({"BTCUSDT": 100.0}), config_provider=lambda: next(configs)
        )

        first = await processor.process_signal(BUY_SIGNAL)
        second = await processor.process_signal(BUY_SIGNAL)

        assert first.success is True
        assert second.success is False


class TestRemotePlacement:
    @pytest.mark.asyncio()
    async def test_remote_order_is_linked(
        self, store: OrderStore, strategy_config: StrategyConfig
    ) -> None:
        client = _exchange(RemoteOrderStatus(order_id="9001", symbol="BTCUSDT", status="NEW"))

        result = await _processor(store, strategy_config, exchange_client=client).process_signal(
            SELL_SIGNAL, use_remote=True
        )

        client.place_order.assert_awaited_once_with("BTCUSDT", OrderSide.SELL, 0.001, 10)
        assert result.success is True
        assert result.remote.success is True
        assert result.remote.remote_order_id == "9001"
        assert result.order.remote_order_id == "9001"
        assert store.get(result.order.id).remote.remote_status == "NEW"
        client.place_tp_sl_orders.assert_awaited_once_with(
            "BTCUSDT",
            OrderSide.SELL,
            0.001,
            result.order.take_profit_price,
            result.order.stop_loss_price,
        )
        assert result.remote.tp_sl_placed is True
        assert result.remote.take_profit_order_id == "9002"
        assert result.remote.stop_loss_order_id == "9003"

    @pytest.mark.asyncio()
    async def test_tp_sl_failure_keeps_link(
        self, store: OrderStore, strategy_config: StrategyConfig
    ) -> None:
        client = _exchange(
            RemoteOrderStatus(order_id="9001", symbol="BTCUSDT", status="NEW"),
            tp_sl_error=ExchangeValidationError("would immediately trigger", status_code=400, code=-2021),
        )

        result = await _processor(store, strategy_config, exchange_client=client).process_signal(
            BUY_SIGNAL, use_remote=True
        )

        assert result.success is True
        assert result.remote.success is True
        assert result.remote.tp_sl_placed is False
        assert "would immediately trigger" in result.remote.tp_sl_message
        assert result.remote.take_profit_order_id is None
        stored = store.get(result.order.id)
        assert stored.remote_order_id == "9001"
        assert stored.status is OrderStatus.OPEN

    @pytest.mark.asyncio()
    async def test_remote_failure_keeps_local_order(
        self, store: OrderStore, strategy_config: StrategyConfig
    ) -> None:
        client = MagicMock()
        client.place_order = AsyncMock(side_effect=ExchangeConnectionError("testnet down"))

        result = await _processor(store, strategy_config, exchange_client=client).process_signal(
            BUY_SIGNAL, use_remote=True
        )

        assert result.success is True
        assert result.remote.success is False
        assert "testnet down" in result.remote.message
        stored = store.get(result.order.id)
        assert stored.status is OrderStatus.OPEN
        assert stored.remote is None
        client.place_tp_sl_orders.assert_not_called()

    @pytest.mark.asyncio()
    async def test_missing_exchange_client(
        self, store: OrderStore, strategy_config: StrategyConfig
    ) -> None:
        result = await _processor(store, strategy_config).process_signal(
            BUY_SIGNAL, use_remote=True
        )

        assert result.success is True
        assert result.remote.success is False
        assert result.remote.message == "Remote exchange is not configured"
