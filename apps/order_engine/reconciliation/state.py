"""State management for the reconciliation service.

Keeps the result of the most recent run so operators (and tests) can see
what the last cycle did. Thread-safety is ensured via a lock.
"""

from __future__ import annotations

import threading
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any


@dataclass(frozen=True)
class SyncResult:
    """Aggregate outcome of one reconciliation cycle.

    Attributes:
        attempted: Orders selected for sync (linked and non-terminal)
        synced: Orders whose remote state was merged
        skipped: Orders left untouched this cycle (remote unreachable,
            remote order unknown, or the order went terminal meanwhile)
        failed: Orders whose sync raised an unexpected error
    """

    attempted: int = 0
    synced: int = 0
    skipped: int = 0
    failed: int = 0
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    finished_at: datetime | None = None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


class ReconciliationState:
    """Thread-safe holder for the last reconciliation result."""

    def __init__(self) -> None:
        self._last_result: SyncResult | None = None
        self._runs = 0
        self._lock = threading.Lock()

    def record_result(self, result: SyncResult) -> None:
        with self._lock:
            self._last_result = result
            self._runs += 1

    def last_result(self) -> SyncResult | None:
        """Return the last recorded result (immutable), or None before the first run."""
        with self._lock:
            return self._last_result

    @property
    def runs(self) -> int:
        with self._lock:
            return self._runs
