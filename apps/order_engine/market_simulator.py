"""
Market Simulation Loop.

Periodically marks every OPEN order to a synthetic price: the oracle's
current price for the order's symbol perturbed by a bounded uniform random
move. Each tick:

    1. Snapshot OPEN orders from the store
    2. Group them by symbol
    3. Per symbol (concurrently): fetch the base price and perturb it
    4. Evaluate every order of that symbol at the simulated price

A symbol whose price fetch fails is skipped for the tick; an order whose
evaluation fails is logged and the rest of the batch continues.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections import defaultdict

from apps.order_engine.evaluator import ProfitEvaluator
from apps.order_engine.metrics import price_fetch_failures_total, simulation_ticks_total
from apps.order_engine.order_store import OrderStore
from apps.order_engine.price_oracle import PriceOracle
from apps.order_engine.scheduler import PeriodicScheduler
from apps.order_engine.schemas import Order, OrderStatus
from libs.common.exceptions import RemoteUnavailableError

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 60.0
DEFAULT_VOLATILITY = 0.002
DEFAULT_MAX_MOVE = 0.005


class MarketSimulator:
    """
    Drives periodic mark-to-market of OPEN orders.

    Example:
        >>> simulator = MarketSimulator(store, oracle, ProfitEvaluator(store))
        >>> simulator.start()
        True
        >>> touched = await simulator.force_update()
    """

    def __init__(
        self,
        store: OrderStore,
        oracle: PriceOracle,
        evaluator: ProfitEvaluator,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        volatility: float = DEFAULT_VOLATILITY,
        max_move: float = DEFAULT_MAX_MOVE,
        rng: random.Random | None = None,
    ) -> None:
        """
        Initialize simulator.

        Args:
            store: Order Store holding the orders to mark
            oracle: Base price source
            evaluator: Applies mark-to-market results to the store
            interval_seconds: Seconds between ticks
            volatility: Half-width of the uniform perturbation (fraction of price)
            max_move: Hard clamp on the perturbation (fraction of price)
            rng: Random source; pass a seeded instance for reproducible runs
        """
        if volatility < 0 or max_move < 0:
            raise ValueError("volatility and max_move must be non-negative")

        self.store = store
        self.oracle = oracle
        self.evaluator = evaluator
        self.volatility = volatility
        self.max_move = max_move
        self._rng = rng or random.Random()
        self._scheduler = PeriodicScheduler("market_simulator", interval_seconds, self.run_tick)

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

    async def force_update(self) -> int:
        """Run one tick now, independent of the schedule.

        Returns:
            Number of orders evaluated
        """
        return await self.run_tick()

    # -------------------------------------------------------------------------
    # Tick
    # -------------------------------------------------------------------------

    def simulate_price(self, base_price: float) -> float:
        """Perturb ``base_price`` by a bounded uniform random move.

        ``change`` is drawn from ``[-volatility, volatility]`` and clamped to
        ``[-max_move, max_move]``, so the result always lies within
        ``base_price * (1 +/- max_move)``.
        """
        change = self._rng.uniform(-self.volatility, self.volatility)
        change = max(-self.max_move, min(self.max_move, change))
        return base_price * (1 + change)

    async def run_tick(self) -> int:
        """Mark every OPEN order once. Returns the number of orders evaluated."""
        open_orders = self.store.list(status=OrderStatus.OPEN)

        by_symbol: dict[str, list[Order]] = defaultdict(list)
        for order in open_orders:
            by_symbol[order.symbol].append(order)

        counts = await asyncio.gather(
            *(self._update_symbol(symbol, orders) for symbol, orders in by_symbol.items())
        )
        touched = sum(counts)

        simulation_ticks_total.inc()
        logger.info(
            "Market simulation tick complete",
            extra={"symbols": len(by_symbol), "open_orders": len(open_orders), "evaluated": touched},
        )
        return touched

    async def _update_symbol(self, symbol: str, orders: list[Order]) -> int:
        try:
            base_price = await self.oracle.get_current_price(symbol)
        except RemoteUnavailableError as exc:
            price_fetch_failures_total.labels(symbol=symbol).inc()
            logger.warning(
                "Price unavailable, skipping symbol this tick",
                extra={"symbol": symbol, "orders": len(orders), "error": str(exc)},
            )
            return 0
        except Exception as exc:
            price_fetch_failures_total.labels(symbol=symbol).inc()
            logger.error(
                "Unexpected price oracle error, skipping symbol this tick",
                exc_info=True,
                extra={"symbol": symbol, "error": str(exc)},
            )
            return 0

        simulated = self.simulate_price(base_price)
        logger.debug(
            "Simulated price",
            extra={"symbol": symbol, "base_price": base_price, "simulated_price": simulated},
        )

        evaluated = 0
        for order in orders:
            try:
                self.evaluator.evaluate(order, simulated)
                evaluated += 1
            except Exception as exc:
                logger.error(
                    "Failed to evaluate order",
                    exc_info=True,
                    extra={"order_id": order.id, "symbol": symbol, "error": str(exc)},
                )
        return evaluated
