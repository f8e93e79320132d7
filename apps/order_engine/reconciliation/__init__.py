"""Reconciliation package for the order engine.

Keeps locally held orders consistent with the remote exchange.

    >>> from apps.order_engine.reconciliation import ReconciliationService

Package Structure:
    - service.py: ReconciliationService orchestrator (main entry point)
    - orders.py: Per-order fetch, status mapping and merge
    - state.py: SyncResult and last-run state
    - helpers.py: Pure utility functions (no side effects)
"""

from apps.order_engine.reconciliation.helpers import (
    REMOTE_STATUS_MAP,
    build_remote_patch,
    compute_roe_percent,
    lookup_remote_status,
)
from apps.order_engine.reconciliation.orders import (
    SyncOutcome,
    reconcile_order,
    resolve_local_status,
)
from apps.order_engine.reconciliation.service import ReconciliationService
from apps.order_engine.reconciliation.state import ReconciliationState, SyncResult

__all__ = [
    # Main service
    "ReconciliationService",
    # Results and state
    "ReconciliationState",
    "SyncOutcome",
    "SyncResult",
    # Per-order sync
    "reconcile_order",
    "resolve_local_status",
    # Pure helpers
    "REMOTE_STATUS_MAP",
    "build_remote_patch",
    "compute_roe_percent",
    "lookup_remote_status",
]
