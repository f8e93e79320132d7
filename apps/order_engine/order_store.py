"""
Order Store: owner of order records and their status transitions.

Records live in an in-memory index keyed by order id. Each id has its own
re-entrant lock, which is the single serialisation point for mutations of
that order: the market simulation loop and the reconciliation service may
touch the same order in the same window, and both go through
``locked(order_id)`` for their read-modify-write.

Optionally the index is backed by an append-only JSON-lines journal. Each
write appends the full record; on startup the journal is replayed (last
record per id wins, delete tombstones honoured).

Terminal statuses are sticky: once an order is FILLED, CLOSED or CANCELLED,
``update_status`` returns the stored record unchanged.
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pydantic

from apps.order_engine.metrics import (
    order_transitions_refused_total,
    order_transitions_total,
    orders_created_total,
)
from apps.order_engine.schemas import (
    PATCHABLE_ORDER_FIELDS,
    PATCHABLE_REMOTE_FIELDS,
    Order,
    OrderCreate,
    OrderStatus,
    RemoteLink,
    is_allowed_transition,
)
from libs.common.exceptions import ValidationError

logger = logging.getLogger(__name__)

DEFAULT_ORDER_QUANTITY = 0.001


def _utcnow() -> datetime:
    return datetime.now(UTC)


class OrderJournal:
    """Append-only JSON-lines journal of order records."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _append(self, entry: dict[str, Any]) -> None:
        line = json.dumps(entry, default=str) + "\n"
        with self._lock, open(self._path, "a", encoding="utf-8") as f:
            f.write(line)

    def record(self, order: Order) -> None:
        self._append({"op": "put", "order": order.model_dump(mode="json")})

    def record_delete(self, order_id: str) -> None:
        self._append({"op": "delete", "id": order_id})

    def replay(self) -> dict[str, Order]:
        """Rebuild the index from the journal.

        Corrupt lines (e.g. a torn final write) are skipped with a warning.
        """
        orders: dict[str, Order] = {}
        if not self._path.exists():
            return orders

        with open(self._path, encoding="utf-8") as f:
            for line_no, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    entry = json.loads(line)
                    if entry["op"] == "delete":
                        orders.pop(entry["id"], None)
                    else:
                        order = Order.model_validate(entry["order"])
                        orders[order.id] = order
                except (json.JSONDecodeError, KeyError, pydantic.ValidationError) as exc:
                    logger.warning(
                        "Skipping unreadable journal line",
                        extra={"path": str(self._path), "line": line_no, "error": str(exc)},
                    )
        return orders


class OrderStore:
    """
    In-memory order index with per-id serialisation.

    Every public method returns copies; callers never hold a reference to a
    stored record. Not-found is reported as ``None`` (or ``False`` for
    ``delete``), never as an exception.

    Examples:
        >>> store = OrderStore()
        >>> order = store.create(
        ...     {"symbol": "BTCUSDT", "side": "BUY", "entry_price": 100,
        ...      "take_profit_price": 104, "stop_loss_price": 98, "quantity": 1}
        ... )
        >>> order.status
        <OrderStatus.OPEN: 'OPEN'>
        >>> store.update_status(order.id, OrderStatus.FILLED).close_time is not None
        True
    """

    def __init__(
        self,
        journal_path: str | Path | None = None,
        default_quantity: float = DEFAULT_ORDER_QUANTITY,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        """
        Initialize the store.

        Args:
            journal_path: Optional JSON-lines journal; replayed when it exists
            default_quantity: Quantity used when creation input carries none
            now: Injectable clock for deterministic tests
        """
        self._orders: dict[str, Order] = {}
        self._locks: dict[str, threading.RLock] = {}
        self._index_lock = threading.RLock()
        self._default_quantity = default_quantity
        self._now = now
        self._journal = OrderJournal(journal_path) if journal_path else None

        if self._journal is not None:
            self._orders = self._journal.replay()
            logger.info(
                "Order store loaded from journal",
                extra={"path": str(self._journal.path), "orders": len(self._orders)},
            )

    # -------------------------------------------------------------------------
    # Serialisation point
    # -------------------------------------------------------------------------

    def _lock_for(self, order_id: str) -> threading.RLock:
        with self._index_lock:
            lock = self._locks.get(order_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[order_id] = lock
            return lock

    @contextmanager
    def locked(self, order_id: str) -> Iterator[None]:
        """Hold the per-order lock for a read-modify-write sequence.

        Re-entrant, so ``get``/``update_status`` may be called inside.
        Never hold it across an ``await``.
        """
        with self._lock_for(order_id):
            yield

    def _persist(self, order: Order) -> None:
        with self._index_lock:
            self._orders[order.id] = order
        if self._journal is not None:
            self._journal.record(order)

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def create(self, data: OrderCreate | Mapping[str, Any]) -> Order:
        """Create a new OPEN order from canonical or aliased input.

        Raises:
            ValidationError: If required fields are missing or malformed
        """
        if isinstance(data, OrderCreate):
            payload = data
        else:
            try:
                payload = OrderCreate.model_validate(dict(data))
            except pydantic.ValidationError as exc:
                raise ValidationError(f"Invalid order data: {exc}") from exc

        now = self._now()
        order = Order(
            id=uuid.uuid4().hex,
            symbol=payload.symbol,
            side=payload.side,
            quantity=payload.quantity or self._default_quantity,
            leverage=payload.leverage,
            entry_price=payload.entry_price,
            take_profit_price=payload.take_profit_price,
            stop_loss_price=payload.stop_loss_price,
            order_type=payload.order_type,
            timeframe=payload.timeframe,
            signal=payload.signal,
            status=OrderStatus.OPEN,
            created_at=now,
            updated_at=now,
        )

        with self.locked(order.id):
            self._persist(order)

        orders_created_total.labels(symbol=order.symbol, side=order.side.value).inc()
        logger.info(
            "Order created",
            extra={
                "order_id": order.id,
                "symbol": order.symbol,
                "side": order.side.value,
                "entry_price": order.entry_price,
            },
        )
        return order.model_copy(deep=True)

    def get(self, order_id: str) -> Order | None:
        order = self._orders.get(order_id)
        return order.model_copy(deep=True) if order is not None else None

    def list(
        self,
        symbol: str | None = None,
        status: OrderStatus | str | None = None,
    ) -> list[Order]:
        """List orders, newest first by creation time.

        Args:
            symbol: Only orders for this symbol (case-insensitive)
            status: Only orders currently in this status (case-insensitive)
        """
        wanted_status = OrderStatus(status.upper()) if status is not None else None
        wanted_symbol = symbol.upper() if symbol else None

        with self._index_lock:
            snapshot = list(self._orders.values())

        # Reverse insertion order first so that equal timestamps still list
        # the most recently created order first (sort is stable).
        snapshot.reverse()
        snapshot.sort(key=lambda o: o.created_at, reverse=True)

        return [
            order.model_copy(deep=True)
            for order in snapshot
            if (wanted_symbol is None or order.symbol == wanted_symbol)
            and (wanted_status is None or order.status == wanted_status)
        ]

    def update_status(
        self,
        order_id: str,
        status: OrderStatus | str,
        patch: Mapping[str, Any] | None = None,
    ) -> Order | None:
        """
        Write a status and merge patch fields into an order.

        Behaviour:
            - Unknown id -> None
            - Stored status terminal -> stored record returned unchanged
            - Entering a terminal status -> ``close_time`` set (patch value
              wins, otherwise now)
            - ``remote_status`` / ``remote_updated_at`` patch keys update the
              remote link of a linked order
            - Keys naming immutable fields are ignored with a warning

        Args:
            order_id: Order to update
            status: Status to write
            patch: Extra fields (profit, profit_percent, close_reason, ...)

        Returns:
            The stored record after the update, or None if not found
        """
        target = OrderStatus(status)

        with self.locked(order_id):
            current = self._orders.get(order_id)
            if current is None:
                return None

            if not is_allowed_transition(current.status, target):
                order_transitions_refused_total.inc()
                if target != current.status:
                    logger.warning(
                        "Refusing status change on terminal order",
                        extra={
                            "order_id": order_id,
                            "current_status": current.status.value,
                            "requested_status": target.value,
                        },
                    )
                return current.model_copy(deep=True)

            now = self._now()
            updates: dict[str, Any] = {"status": target, "updated_at": now}
            remote_updates: dict[str, Any] = {}
            ignored: list[str] = []

            for key, value in (patch or {}).items():
                if key in PATCHABLE_ORDER_FIELDS:
                    updates[key] = value
                elif key in PATCHABLE_REMOTE_FIELDS:
                    remote_updates[key] = value
                else:
                    ignored.append(key)

            if ignored:
                logger.warning(
                    "Ignoring non-patchable order fields",
                    extra={"order_id": order_id, "fields": sorted(ignored)},
                )

            if remote_updates:
                if current.remote is None:
                    logger.warning(
                        "Remote fields patched on an order with no remote link",
                        extra={"order_id": order_id},
                    )
                else:
                    updates["remote"] = current.remote.model_copy(update=remote_updates)

            if target.is_terminal:
                updates["close_time"] = updates.get("close_time") or current.close_time or now
            else:
                # close_time is only ever written by the first terminal transition
                updates.pop("close_time", None)

            updated = current.model_copy(update=updates)
            self._persist(updated)

        order_transitions_total.labels(status=target.value).inc()
        if target != current.status:
            logger.info(
                "Order status changed",
                extra={
                    "order_id": order_id,
                    "from_status": current.status.value,
                    "to_status": target.value,
                    "close_reason": updated.close_reason,
                },
            )
        return updated.model_copy(deep=True)

    def link_remote(
        self,
        order_id: str,
        remote_order_id: str,
        remote_status: str | None = None,
    ) -> Order | None:
        """Attach the remote exchange order id to a local order (at most once).

        Re-linking with the same remote id is a no-op. Linking an already
        linked order to a different remote id is refused with a warning.

        Returns:
            The stored record, or None if the order does not exist
        """
        remote_order_id = str(remote_order_id)

        with self.locked(order_id):
            current = self._orders.get(order_id)
            if current is None:
                return None

            if current.remote is not None:
                if current.remote.remote_order_id != remote_order_id:
                    logger.warning(
                        "Order already linked to a different remote order",
                        extra={
                            "order_id": order_id,
                            "remote_order_id": current.remote.remote_order_id,
                            "requested_remote_order_id": remote_order_id,
                        },
                    )
                return current.model_copy(deep=True)

            now = self._now()
            link = RemoteLink(
                remote_order_id=remote_order_id,
                remote_status=remote_status,
                remote_created_at=now,
                remote_updated_at=now,
            )
            updated = current.model_copy(update={"remote": link, "updated_at": now})
            self._persist(updated)

        logger.info(
            "Order linked with remote order",
            extra={"order_id": order_id, "remote_order_id": remote_order_id},
        )
        return updated.model_copy(deep=True)

    def delete(self, order_id: str) -> bool:
        """Remove an order. Administrative only; the engine never deletes."""
        with self.locked(order_id):
            with self._index_lock:
                if self._orders.pop(order_id, None) is None:
                    return False
            if self._journal is not None:
                self._journal.record_delete(order_id)

        logger.info("Order deleted", extra={"order_id": order_id})
        return True

    def __len__(self) -> int:
        return len(self._orders)
