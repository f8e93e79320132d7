"""Prometheus metrics definitions for the Order Engine.

All metric objects are defined here so names and labels stay stable across
modules.

Usage:
    from apps.order_engine.metrics import orders_created_total

    orders_created_total.labels(symbol="BTCUSDT", side="BUY").inc()
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge

# ============================================================================
# Order Store
# ============================================================================

orders_created_total = Counter(
    "order_engine_orders_created_total",
    "Total number of orders created",
    ["symbol", "side"],
)

order_transitions_total = Counter(
    "order_engine_order_transitions_total",
    "Order status writes by resulting status",
    ["status"],
)

order_transitions_refused_total = Counter(
    "order_engine_order_transitions_refused_total",
    "Status writes refused because the order was already terminal",
)

# ============================================================================
# Evaluator / Market Simulation
# ============================================================================

evaluations_total = Counter(
    "order_engine_evaluations_total",
    "Mark-to-market evaluations by outcome",
    ["outcome"],  # outcome: open, tp_hit, sl_hit, skipped_terminal
)

simulation_ticks_total = Counter(
    "order_engine_simulation_ticks_total",
    "Completed market simulation ticks",
)

price_fetch_failures_total = Counter(
    "order_engine_price_fetch_failures_total",
    "Price oracle failures during simulation ticks",
    ["symbol"],
)

# ============================================================================
# Reconciliation
# ============================================================================

reconciliation_orders_total = Counter(
    "order_engine_reconciliation_orders_total",
    "Per-order reconciliation outcomes",
    ["outcome"],  # outcome: synced, skipped, failed
)

unmapped_remote_status_total = Counter(
    "order_engine_unmapped_remote_status_total",
    "Remote statuses outside the known vocabulary (defaulted to OPEN)",
    ["remote_status"],
)

# ============================================================================
# Scheduler Health
# ============================================================================

scheduler_running = Gauge(
    "order_engine_scheduler_running",
    "Scheduler running status (1=running, 0=stopped)",
    ["scheduler"],
)

scheduler_last_tick_timestamp = Gauge(
    "order_engine_scheduler_last_tick_timestamp",
    "Last completed tick timestamp (epoch seconds)",
    ["scheduler"],
)

scheduler_tick_errors_total = Counter(
    "order_engine_scheduler_tick_errors_total",
    "Ticks that raised an unexpected exception",
    ["scheduler"],
)

# Changing metric names breaks dashboards and alerts; tests pin this list.
METRIC_NAMES = [
    "order_engine_orders_created_total",
    "order_engine_order_transitions_total",
    "order_engine_order_transitions_refused_total",
    "order_engine_evaluations_total",
    "order_engine_simulation_ticks_total",
    "order_engine_price_fetch_failures_total",
    "order_engine_reconciliation_orders_total",
    "order_engine_unmapped_remote_status_total",
    "order_engine_scheduler_running",
    "order_engine_scheduler_last_tick_timestamp",
    "order_engine_scheduler_tick_errors_total",
]
