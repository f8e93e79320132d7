"""Order engine entrypoint.

Wires the Order Store, price oracle, evaluator, market simulation loop and
(when testnet credentials are configured) the reconciliation service, then
runs both schedulers until SIGINT / SIGTERM.

Usage:
    python -m apps.order_engine.main
"""

from __future__ import annotations

import asyncio
import logging
import signal
from dataclasses import dataclass

from prometheus_client import start_http_server

from apps.order_engine.config import (
    EngineConfig,
    StrategyConfig,
    get_engine_config,
    get_strategy_config,
)
from apps.order_engine.evaluator import ProfitEvaluator
from apps.order_engine.exchange_client import BinanceTestnetClient
from apps.order_engine.market_simulator import MarketSimulator
from apps.order_engine.order_store import OrderStore
from apps.order_engine.price_oracle import FallbackPriceOracle, build_price_oracle
from apps.order_engine.reconciliation import ReconciliationService
from apps.order_engine.trading import SignalProcessor
from libs.common.logging import configure_logging

logger = logging.getLogger(__name__)

SERVICE_NAME = "order_engine"


@dataclass
class OrderEngine:
    """Runtime components of one engine instance."""

    store: OrderStore
    oracle: FallbackPriceOracle
    evaluator: ProfitEvaluator
    simulator: MarketSimulator
    processor: SignalProcessor
    exchange_client: BinanceTestnetClient | None = None
    reconciliation: ReconciliationService | None = None

    def start(self) -> None:
        self.simulator.start()
        if self.reconciliation is not None:
            self.reconciliation.start()

    async def aclose(self) -> None:
        """Stop the schedulers, let in-flight ticks finish, close HTTP clients."""
        await self.simulator.shutdown()
        if self.reconciliation is not None:
            await self.reconciliation.shutdown()
        await self.oracle.close()
        if self.exchange_client is not None:
            await self.exchange_client.close()


def build_engine(strategy: StrategyConfig, config: EngineConfig) -> OrderEngine:
    """Compose an engine from configuration. Must run inside an event loop."""
    store = OrderStore(journal_path=config.order_journal_path, default_quantity=strategy.quantity)
    oracle = build_price_oracle(strategy, config)
    evaluator = ProfitEvaluator(store)
    simulator = MarketSimulator(
        store,
        oracle,
        evaluator,
        interval_seconds=config.simulation_interval_seconds,
        volatility=config.volatility,
        max_move=config.max_price_move,
    )

    exchange_client: BinanceTestnetClient | None = None
    reconciliation: ReconciliationService | None = None
    if config.testnet_enabled:
        if config.testnet_configured:
            exchange_client = BinanceTestnetClient.from_config(config)
            reconciliation = ReconciliationService(
                store, exchange_client, interval_seconds=config.reconciliation_interval_seconds
            )
        else:
            logger.warning(
                "ENGINE_TESTNET_ENABLED is set but testnet credentials are missing; "
                "reconciliation disabled"
            )

    processor = SignalProcessor(store, oracle, get_strategy_config, exchange_client)

    return OrderEngine(
        store=store,
        oracle=oracle,
        evaluator=evaluator,
        simulator=simulator,
        processor=processor,
        exchange_client=exchange_client,
        reconciliation=reconciliation,
    )


async def run() -> None:
    """Run the engine until a termination signal arrives."""
    config = get_engine_config()
    configure_logging(SERVICE_NAME, config.log_level)

    if config.metrics_port is not None:
        start_http_server(config.metrics_port)
        logger.info("Metrics server started", extra={"port": config.metrics_port})

    engine = build_engine(get_strategy_config(), config)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    engine.start()
    logger.info(
        "Order engine started",
        extra={
            "orders": len(engine.store),
            "reconciliation_enabled": engine.reconciliation is not None,
        },
    )

    try:
        await stop_event.wait()
    finally:
        logger.info("Order engine shutting down")
        await engine.aclose()


def main() -> None:
    asyncio.run(run())


if __name__ == "__main__":
    main()
