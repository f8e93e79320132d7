"""
Signal processing: from an incoming indicator signal to a tracked order.

Flow:
    1. Validate the signal against the current strategy thresholds
    2. Fetch the current price for the symbol (signal symbol, else default)
    3. Derive take-profit / stop-loss prices from the configured percentages
    4. Create the local OPEN order
    5. Optionally mirror it as a market order on the remote exchange, link
       the two and place reduce-only take-profit / stop-loss exits

Expected failures (invalid signal, no price, remote placement failure) are
returned in the ``SignalResult``; nothing here raises to the caller. A remote
placement failure leaves the local order in place.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

import pydantic

from apps.order_engine.config import StrategyConfig, get_strategy_config
from apps.order_engine.exchange_client import ExchangeClient
from apps.order_engine.order_store import OrderStore
from apps.order_engine.price_oracle import PriceOracle
from apps.order_engine.schemas import (
    Order,
    OrderCreate,
    OrderSide,
    RemotePlacement,
    Signal,
    SignalResult,
)
from apps.order_engine.signal_validator import validate_signal
from libs.common.exceptions import RemoteUnavailableError, TradingPlatformError, ValidationError

logger = logging.getLogger(__name__)

PRICE_DECIMALS = 8


def calculate_tp_sl(
    side: OrderSide,
    current_price: float,
    take_profit_percent: float,
    stop_loss_percent: float,
) -> tuple[float, float]:
    """Return ``(take_profit_price, stop_loss_price)`` rounded to 8 dp.

    BUY targets above entry and stops below; SELL mirrors that.

    Examples:
        >>> calculate_tp_sl(OrderSide.BUY, 100.0, 2.0, 1.0)
        (102.0, 99.0)
        >>> calculate_tp_sl(OrderSide.SELL, 100.0, 2.0, 1.0)
        (98.0, 101.0)
    """
    if current_price <= 0:
        raise ValidationError(f"current_price must be positive, got {current_price}")

    tp_move = take_profit_percent / 100
    sl_move = stop_loss_percent / 100
    if OrderSide(side) is OrderSide.BUY:
        tp, sl = current_price * (1 + tp_move), current_price * (1 - sl_move)
    else:
        tp, sl = current_price * (1 - tp_move), current_price * (1 + sl_move)
    return round(tp, PRICE_DECIMALS), round(sl, PRICE_DECIMALS)


class SignalProcessor:
    """
    Turns validated signals into orders.

    Example:
        >>> processor = SignalProcessor(store, oracle)
        >>> result = await processor.process_signal({"adx": 25, "plusDI": 30, "minusDI": 10})
        >>> result.order.side
        <OrderSide.BUY: 'BUY'>
    """

    def __init__(
        self,
        store: OrderStore,
        oracle: PriceOracle,
        config_provider: Callable[[], StrategyConfig] = get_strategy_config,
        exchange_client: ExchangeClient | None = None,
    ) -> None:
        """
        Initialize processor.

        Args:
            store: Order Store receiving new orders
            oracle: Price source for the entry price
            config_provider: Returns the current strategy configuration; read
                once per signal so threshold changes apply to the next signal
            exchange_client: Remote exchange; required only for ``use_remote``
        """
        self.store = store
        self.oracle = oracle
        self.config_provider = config_provider
        self.exchange_client = exchange_client

    async def process_signal(
        self,
        signal: Signal | Mapping[str, Any],
        use_remote: bool = False,
    ) -> SignalResult:
        """Validate ``signal`` and, if it qualifies, open an order for it."""
        config = self.config_provider()

        validation = validate_signal(signal, config)
        if not validation.valid or validation.action is None:
            logger.info("Signal rejected", extra={"reason": validation.reason})
            return SignalResult(success=False, message=f"Invalid signal: {validation.reason}")

        parsed = signal if isinstance(signal, Signal) else Signal.model_validate(dict(signal))
        side = validation.action
        symbol = (parsed.symbol or config.symbol).upper()

        try:
            price = await self.oracle.get_current_price(symbol)
        except RemoteUnavailableError as exc:
            logger.warning(
                "Price unavailable for signal", extra={"symbol": symbol, "error": str(exc)}
            )
            return SignalResult(success=False, message=f"Price unavailable for {symbol}: {exc}")

        try:
            tp_price, sl_price = calculate_tp_sl(
                side, price, config.take_profit_percent, config.stop_loss_percent
            )
            order = self.store.create(
                OrderCreate(
                    symbol=symbol,
                    side=side,
                    entry_price=price,
                    take_profit_price=tp_price,
                    stop_loss_price=sl_price,
                    quantity=config.quantity,
                    leverage=config.leverage,
                    timeframe=parsed.timeframe or config.timeframe,
                    signal=parsed.indicators(),
                )
            )
        except (ValidationError, pydantic.ValidationError) as exc:
            logger.error("Order creation failed", extra={"symbol": symbol, "error": str(exc)})
            return SignalResult(success=False, message=f"Order creation failed: {exc}")

        remote: RemotePlacement | None = None
        if use_remote:
            remote, order = await self._place_remote(order, config)

        return SignalResult(
            success=True,
            message=f"Successfully created {side.value} order",
            order=order,
            remote=remote,
        )

    async def _place_remote(
        self, order: Order, config: StrategyConfig
    ) -> tuple[RemotePlacement, Order]:
        if self.exchange_client is None:
            logger.warning("Remote placement requested but no exchange is configured")
            return RemotePlacement(success=False, message="Remote exchange is not configured"), order

        try:
            placed = await self.exchange_client.place_order(
                order.symbol, order.side, order.quantity, order.leverage or config.leverage
            )
        except TradingPlatformError as exc:
            logger.warning(
                "Remote order placement failed",
                extra={"order_id": order.id, "symbol": order.symbol, "error": str(exc)},
            )
            return RemotePlacement(success=False, message=f"Remote order failed: {exc}"), order

        linked = self.store.link_remote(order.id, placed.order_id, placed.status)
        placement = RemotePlacement(
            success=True,
            message="Remote order placed",
            remote_order_id=placed.order_id,
            remote_status=placed.status,
        )

        # The link stands even when the exits are rejected.
        try:
            take_profit, stop_loss = await self.exchange_client.place_tp_sl_orders(
                order.symbol,
                order.side,
                order.quantity,
                order.take_profit_price,
                order.stop_loss_price,
            )
        except TradingPlatformError as exc:
            logger.warning(
                "Remote TP/SL placement failed",
                extra={
                    "order_id": order.id,
                    "remote_order_id": placed.order_id,
                    "symbol": order.symbol,
                    "error": str(exc),
                },
            )
            placement.tp_sl_placed = False
            placement.tp_sl_message = f"TP/SL orders failed: {exc}"
        else:
            placement.tp_sl_placed = True
            placement.tp_sl_message = "TP/SL orders placed"
            placement.take_profit_order_id = take_profit.order_id
            placement.stop_loss_order_id = stop_loss.order_id

        return placement, linked or order
