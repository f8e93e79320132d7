"""Mark-to-market and take-profit / stop-loss evaluation.

``compute_mark_to_market`` is a pure function; ``ProfitEvaluator`` applies its
result to the Order Store under the order's lock.

Formulas (direction = +1 for BUY, -1 for SELL):
    profit         = (price - entry) * direction * quantity
    profit_percent = (price - entry) * direction / entry * 100
Both are multiplied by leverage when the order has one, then rounded to
2 decimal places (half-up).

Triggers:
    BUY:  price >= take_profit -> FILLED ("TP hit"); price <= stop_loss -> CLOSED ("SL hit")
    SELL: price <= take_profit -> FILLED ("TP hit"); price >= stop_loss -> CLOSED ("SL hit")
Take-profit is checked first.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from apps.order_engine.metrics import evaluations_total
from apps.order_engine.order_store import OrderStore
from apps.order_engine.schemas import Order, OrderSide, OrderStatus
from libs.common.exceptions import ValidationError

logger = logging.getLogger(__name__)

CLOSE_REASON_TP = "TP hit"
CLOSE_REASON_SL = "SL hit"

_CENT = Decimal("0.01")


def round_2dp(value: float) -> float:
    """Round half-up to 2 decimal places.

    Goes through ``str`` so binary float noise (e.g. 2.675 stored as
    2.67499...) does not flip the result.

    Examples:
        >>> round_2dp(2.675)
        2.68
        >>> round_2dp(-3.0)
        -3.0
    """
    return float(Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class MarkToMarket:
    """Result of evaluating one order at one price."""

    status: OrderStatus
    profit: float
    profit_percent: float
    close_reason: str | None = None

    @property
    def triggered(self) -> bool:
        return self.close_reason is not None


def compute_mark_to_market(order: Order, current_price: float) -> MarkToMarket:
    """Compute profit and trigger outcome for an order at ``current_price``.

    Pure: reads nothing but its arguments.

    Raises:
        ValidationError: If current_price is not positive

    Examples:
        >>> order = Order(id="o1", symbol="BTCUSDT", side=OrderSide.BUY, quantity=1,
        ...               leverage=1, entry_price=100, take_profit_price=104,
        ...               stop_loss_price=98)
        >>> compute_mark_to_market(order, 105)
        MarkToMarket(status=<OrderStatus.FILLED: 'FILLED'>, profit=5.0, profit_percent=5.0, close_reason='TP hit')
    """
    if current_price <= 0:
        raise ValidationError(f"current_price must be positive, got {current_price}")

    direction = order.side.direction
    move = (current_price - order.entry_price) * direction
    profit = move * order.quantity
    profit_percent = move / order.entry_price * 100

    if order.leverage:
        profit *= order.leverage
        profit_percent *= order.leverage

    status = OrderStatus.OPEN
    close_reason: str | None = None

    if order.side is OrderSide.BUY:
        if current_price >= order.take_profit_price:
            status, close_reason = OrderStatus.FILLED, CLOSE_REASON_TP
        elif current_price <= order.stop_loss_price:
            status, close_reason = OrderStatus.CLOSED, CLOSE_REASON_SL
    else:
        if current_price <= order.take_profit_price:
            status, close_reason = OrderStatus.FILLED, CLOSE_REASON_TP
        elif current_price >= order.stop_loss_price:
            status, close_reason = OrderStatus.CLOSED, CLOSE_REASON_SL

    return MarkToMarket(
        status=status,
        profit=round_2dp(profit),
        profit_percent=round_2dp(profit_percent),
        close_reason=close_reason,
    )


class ProfitEvaluator:
    """
    Apply mark-to-market results to the Order Store.

    Every evaluation of an OPEN order is a write, even when nothing
    triggered, so profit fields always reflect the latest price. Under tight
    polling this means one write per order per tick;
    ``persist_unchanged=False`` skips writes whose profit fields did not
    change.
    """

    def __init__(self, store: OrderStore, persist_unchanged: bool = True) -> None:
        self.store = store
        self.persist_unchanged = persist_unchanged

    def evaluate(self, order: Order, current_price: float) -> Order:
        """Evaluate ``order`` at ``current_price`` and persist the outcome.

        The read-modify-write runs under the order's lock against the stored
        record, so a concurrent reconciliation write cannot be overwritten
        with stale data.

        Returns:
            The stored record after evaluation. Terminal (or unknown) orders
            are returned unchanged.
        """
        if order.is_terminal:
            evaluations_total.labels(outcome="skipped_terminal").inc()
            return order

        with self.store.locked(order.id):
            current = self.store.get(order.id)
            if current is None:
                logger.warning("Evaluated order no longer exists", extra={"order_id": order.id})
                return order
            if current.is_terminal:
                evaluations_total.labels(outcome="skipped_terminal").inc()
                return current

            result = compute_mark_to_market(current, current_price)

            if (
                not self.persist_unchanged
                and not result.triggered
                and current.profit == result.profit
                and current.profit_percent == result.profit_percent
            ):
                evaluations_total.labels(outcome="open").inc()
                return current

            patch: dict[str, object] = {
                "profit": result.profit,
                "profit_percent": result.profit_percent,
            }
            if result.triggered:
                patch["close_reason"] = result.close_reason
                patch["close_price"] = current_price

            updated = self.store.update_status(current.id, result.status, patch)

        if result.close_reason == CLOSE_REASON_TP:
            evaluations_total.labels(outcome="tp_hit").inc()
        elif result.close_reason == CLOSE_REASON_SL:
            evaluations_total.labels(outcome="sl_hit").inc()
        else:
            evaluations_total.labels(outcome="open").inc()

        if result.triggered:
            logger.info(
                "Order trigger hit",
                extra={
                    "order_id": current.id,
                    "symbol": current.symbol,
                    "close_reason": result.close_reason,
                    "price": current_price,
                    "profit": result.profit,
                },
            )
        return updated if updated is not None else current
