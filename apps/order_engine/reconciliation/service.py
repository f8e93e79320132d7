"""Reconciliation service orchestrator.

Periodically merges the authoritative remote exchange state of every linked,
non-terminal order into the Order Store. One order's failure never aborts
the batch; the service only stops on ``stop()``.

Public API:
    - start() -> bool
    - stop() -> bool
    - is_running() -> bool
    - async sync_all_orders() -> SyncResult
    - async force_sync_once() -> int
    - last_result() -> SyncResult | None
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime

from apps.order_engine.exchange_client import ExchangeClient
from apps.order_engine.metrics import reconciliation_orders_total
from apps.order_engine.order_store import OrderStore
from apps.order_engine.reconciliation.orders import SyncOutcome, reconcile_order
from apps.order_engine.reconciliation.state import ReconciliationState, SyncResult
from apps.order_engine.scheduler import PeriodicScheduler
from apps.order_engine.schemas import Order

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 30.0


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ReconciliationService:
    """Synchronize remote exchange state with the local Order Store."""

    def __init__(
        self,
        store: OrderStore,
        exchange_client: ExchangeClient,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        """Initialize reconciliation service.

        Args:
            store: Order Store to merge into.
            exchange_client: Remote exchange client.
            interval_seconds: Seconds between cycles.
            now: Injectable clock for deterministic tests.
        """
        self.store = store
        self.exchange_client = exchange_client
        self._now = now
        self._state = ReconciliationState()

        # Serialises scheduled and forced cycles
        self._lock = asyncio.Lock()
        self._scheduler = PeriodicScheduler("reconciliation", interval_seconds, self.sync_all_orders)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> bool:
        return self._scheduler.start()

    def stop(self) -> bool:
        return self._scheduler.stop()

    def is_running(self) -> bool:
        return self._scheduler.is_running()

    async def shutdown(self) -> None:
        await self._scheduler.shutdown()

    def last_result(self) -> SyncResult | None:
        return self._state.last_result()

    # -------------------------------------------------------------------------
    # Cycles
    # -------------------------------------------------------------------------

    def select_orders(self) -> list[Order]:
        """Orders eligible for sync: linked to a remote order and not terminal."""
        return [
            order
            for order in self.store.list()
            if order.remote_order_id is not None and not order.is_terminal
        ]

    async def force_sync_once(self) -> int:
        """Run one cycle now. Returns the number of orders synced."""
        logger.info("Forced reconciliation requested")
        result = await self.sync_all_orders()
        return result.synced

    async def sync_all_orders(self) -> SyncResult:
        """Run one reconciliation cycle over all eligible orders.

        Orders are fetched concurrently; each order's outcome is counted
        independently.
        """
        async with self._lock:
            started_at = self._now()
            orders = self.select_orders()

            outcomes = await asyncio.gather(
                *(
                    reconcile_order(order, self.exchange_client, self.store, self._now)
                    for order in orders
                ),
                return_exceptions=True,
            )

            synced = skipped = failed = 0
            for order, outcome in zip(orders, outcomes, strict=True):
                if isinstance(outcome, BaseException):
                    if isinstance(outcome, asyncio.CancelledError):
                        raise outcome
                    failed += 1
                    reconciliation_orders_total.labels(outcome=SyncOutcome.FAILED.value).inc()
                    logger.error(
                        "Order reconciliation failed",
                        exc_info=outcome,
                        extra={
                            "order_id": order.id,
                            "remote_order_id": order.remote_order_id,
                            "error": str(outcome),
                        },
                    )
                    continue

                reconciliation_orders_total.labels(outcome=outcome.value).inc()
                if outcome is SyncOutcome.SYNCED:
                    synced += 1
                else:
                    skipped += 1

            result = SyncResult(
                attempted=len(orders),
                synced=synced,
                skipped=skipped,
                failed=failed,
                started_at=started_at,
                finished_at=self._now(),
            )
            self._state.record_result(result)

        logger.info(
            "Reconciliation cycle complete",
            extra={
                "attempted": result.attempted,
                "synced": result.synced,
                "skipped": result.skipped,
                "failed": result.failed,
            },
        )
        return result
