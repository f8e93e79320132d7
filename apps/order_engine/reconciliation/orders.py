"""Per-order reconciliation.

Fetches the remote state of one linked order and merges it into the local
record. Remote calls happen outside the order lock; the merge itself runs
under ``OrderStore.locked`` against the freshest stored record, so a
concurrent mark-to-market write is never clobbered with stale data.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from enum import Enum

from apps.order_engine.exchange_client import ExchangeClient
from apps.order_engine.metrics import unmapped_remote_status_total
from apps.order_engine.order_store import OrderStore
from apps.order_engine.reconciliation.helpers import build_remote_patch, lookup_remote_status
from apps.order_engine.schemas import Order, OrderStatus, PositionInfo
from libs.common.exceptions import RemoteUnavailableError, UnmappedRemoteStatus

logger = logging.getLogger(__name__)


class SyncOutcome(str, Enum):
    SYNCED = "synced"
    SKIPPED = "skipped"
    FAILED = "failed"


def _utcnow() -> datetime:
    return datetime.now(UTC)


def resolve_local_status(remote_status: str, order_id: str | None = None) -> OrderStatus:
    """Map a remote status to a local one; unknown statuses keep the order OPEN.

    An unknown status is logged as ``UnmappedRemoteStatus`` and counted, so
    gaps in the vocabulary show up without dropping the order.
    """
    mapped = lookup_remote_status(remote_status)
    if mapped is not None:
        return mapped

    unmapped_remote_status_total.labels(remote_status=remote_status or "<empty>").inc()
    logger.warning(
        str(UnmappedRemoteStatus(remote_status)),
        extra={"order_id": order_id, "remote_status": remote_status},
    )
    return OrderStatus.OPEN


async def reconcile_order(
    order: Order,
    client: ExchangeClient,
    store: OrderStore,
    now: Callable[[], datetime] = _utcnow,
) -> SyncOutcome:
    """Synchronise one local order with its remote counterpart.

    Returns:
        SYNCED when remote state was merged, SKIPPED when this cycle could
        not (or need not) touch the order. An unreachable exchange and
        rejected credentials both skip.

    Raises:
        Exception: Anything other than ``RemoteUnavailableError`` propagates
            so the caller can count it as a failure
    """
    remote_order_id = order.remote_order_id
    if remote_order_id is None or order.is_terminal:
        return SyncOutcome.SKIPPED

    try:
        remote = await client.get_order_status(order.symbol, remote_order_id)
    except RemoteUnavailableError as exc:
        logger.warning(
            "Remote unavailable, skipping order this cycle",
            extra={"order_id": order.id, "remote_order_id": remote_order_id, "error": str(exc)},
        )
        return SyncOutcome.SKIPPED

    if remote is None:
        logger.info(
            "Remote order details unavailable, skipping",
            extra={"order_id": order.id, "remote_order_id": remote_order_id},
        )
        return SyncOutcome.SKIPPED

    local_status = resolve_local_status(remote.status, order.id)

    position: PositionInfo | None = None
    if local_status is OrderStatus.FILLED:
        try:
            position = await client.get_position_info(order.symbol)
        except RemoteUnavailableError as exc:
            # Status is still worth merging without profit figures.
            logger.warning(
                "Position lookup failed, merging status only",
                extra={"order_id": order.id, "symbol": order.symbol, "error": str(exc)},
            )

    with store.locked(order.id):
        current = store.get(order.id)
        if current is None or current.is_terminal:
            logger.info(
                "Order changed during sync, skipping merge",
                extra={
                    "order_id": order.id,
                    "status": current.status.value if current else None,
                },
            )
            return SyncOutcome.SKIPPED

        patch = build_remote_patch(current, remote, local_status, position, now())
        store.update_status(current.id, local_status, patch)

    logger.info(
        "Order synced with remote",
        extra={
            "order_id": order.id,
            "remote_order_id": remote_order_id,
            "remote_status": remote.status,
            "status": local_status.value,
        },
    )
    return SyncOutcome.SYNCED
