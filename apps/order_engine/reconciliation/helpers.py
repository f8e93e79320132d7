"""Pure helper functions for reconciliation.

No side effects: everything here depends only on its arguments, so it is
trivially testable with table-driven tests.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from apps.order_engine.evaluator import round_2dp
from apps.order_engine.schemas import Order, OrderStatus, PositionInfo, RemoteOrderStatus

# Exchange order status -> local status. TRADE_CLOSED is reported by the
# testnet for positions closed by a reduce-only fill.
REMOTE_STATUS_MAP: dict[str, OrderStatus] = {
    "NEW": OrderStatus.OPEN,
    "PARTIALLY_FILLED": OrderStatus.OPEN,
    "FILLED": OrderStatus.FILLED,
    "CANCELED": OrderStatus.CANCELLED,
    "REJECTED": OrderStatus.CANCELLED,
    "EXPIRED": OrderStatus.CANCELLED,
    "TRADE_CLOSED": OrderStatus.CLOSED,
}


def lookup_remote_status(remote_status: str | None) -> OrderStatus | None:
    """Return the local status for a remote status, or None if unmapped.

    Example:
        >>> lookup_remote_status("canceled")
        <OrderStatus.CANCELLED: 'CANCELLED'>
        >>> lookup_remote_status("PENDING_NEW") is None
        True
    """
    if not remote_status:
        return None
    return REMOTE_STATUS_MAP.get(remote_status.upper())


def compute_roe_percent(
    profit: float,
    entry_price: float,
    position_amt: float,
    leverage: float | None,
) -> float | None:
    """Return on margin, in percent, rounded to 2 dp.

    ``margin = entry_price * |position_amt| / leverage``; a missing leverage
    counts as 1x. Returns None when the margin is zero.

    Example:
        >>> compute_roe_percent(2.0, 100.0, 1.0, 10)
        20.0
    """
    margin = entry_price * abs(position_amt) / (leverage or 1)
    if margin <= 0:
        return None
    return round_2dp(profit / margin * 100)


def build_remote_patch(
    order: Order,
    remote: RemoteOrderStatus,
    local_status: OrderStatus,
    position: PositionInfo | None,
    now: datetime,
) -> dict[str, Any]:
    """Build the ``update_status`` patch for one remote observation.

    Timestamps come from the remote record whenever it carries one, so
    applying the same remote state twice produces the same fields.

    Args:
        order: Local order being reconciled
        remote: Remote order state
        local_status: Mapped local status for ``remote.status``
        position: Open position for the symbol (only fetched when FILLED)
        now: Local clock, used only when the remote gives no update time

    Returns:
        Patch dict for ``OrderStore.update_status``
    """
    patch: dict[str, Any] = {
        "remote_status": remote.status,
        "remote_updated_at": remote.update_time or now,
    }

    if position is not None:
        patch["profit"] = position.unrealized_profit
        roe = compute_roe_percent(
            position.unrealized_profit, position.entry_price, position.position_amt, order.leverage
        )
        if roe is not None:
            patch["profit_percent"] = roe

        if local_status is OrderStatus.FILLED and remote.update_time is not None:
            patch["close_time"] = remote.update_time
            patch["close_price"] = remote.price or position.mark_price

    if local_status.is_terminal:
        patch["close_reason"] = f"remote {remote.status}"

    return patch
