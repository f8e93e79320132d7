"""Configuration module for the Order Engine.

All environment variable parsing lives here. Two immutable dataclasses are
produced:

    - StrategyConfig: signal thresholds and risk parameters (read-only input
      to the Signal Validator, signal processing and the simulation loop)
    - EngineConfig: scheduler intervals, simulation bounds, network settings
      and exchange credentials

Invalid values never abort startup: they are logged and replaced by the
documented default.

Usage:
    from apps.order_engine.config import get_engine_config, get_strategy_config

    engine = get_engine_config()
    strategy = get_strategy_config()
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

logger = logging.getLogger(__name__)


# ============================================================================
# Helper Functions
# ============================================================================


def _get_float_env(name: str, default: float) -> float:
    """Parse float from environment variable with fallback to default."""
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Invalid float for %s=%s; using default=%s", name, raw, default)
        return default


def _get_int_env(name: str, default: int) -> int:
    """Parse int from environment variable with fallback to default."""
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Invalid int for %s=%s; using default=%s", name, raw, default)
        return default


def _get_bool_env(name: str, default: bool) -> bool:
    """Parse boolean from environment variable (permissive: true/yes/on/1)."""
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.lower() in ("true", "yes", "on", "1")


def _get_positive_float_env(name: str, default: float) -> float:
    value = _get_float_env(name, default)
    if value <= 0:
        logger.warning("%s must be > 0; using default=%s", name, default)
        return default
    return value


# ============================================================================
# Configuration Dataclasses
# ============================================================================


@dataclass(frozen=True)
class StrategyConfig:
    """Strategy thresholds and risk parameters.

    Attributes:
        symbol: Default trading pair when a signal carries none
        timeframe: Default chart timeframe
        adx_minimum: Minimum ADX for any signal to be accepted
        plus_di_threshold: +DI bound (also bounds -DI for SELL, see validator)
        minus_di_threshold: -DI bound (also bounds +DI for SELL)
        take_profit_percent: TP distance from entry, in percent
        stop_loss_percent: SL distance from entry, in percent
        leverage: Multiplier applied to profit and profit percent
        quantity: Default order quantity
        market_data_source: "binance" or "coingecko"
    """

    symbol: str = "BTCUSDT"
    timeframe: str = "5m"
    adx_minimum: float = 20.0
    plus_di_threshold: float = 25.0
    minus_di_threshold: float = 20.0
    take_profit_percent: float = 2.0
    stop_loss_percent: float = 1.0
    leverage: float = 10.0
    quantity: float = 0.001
    market_data_source: str = "binance"

    @classmethod
    def from_env(cls) -> StrategyConfig:
        """Create config from STRATEGY_* environment variables."""
        defaults = cls()
        source = os.getenv("STRATEGY_MARKET_DATA_SOURCE", defaults.market_data_source).lower()
        if source not in ("binance", "coingecko"):
            logger.warning(
                "STRATEGY_MARKET_DATA_SOURCE must be binance or coingecko; using default=%s",
                defaults.market_data_source,
            )
            source = defaults.market_data_source

        return cls(
            symbol=os.getenv("STRATEGY_SYMBOL", defaults.symbol).upper(),
            timeframe=os.getenv("STRATEGY_TIMEFRAME", defaults.timeframe),
            adx_minimum=_get_float_env("STRATEGY_ADX_MINIMUM", defaults.adx_minimum),
            plus_di_threshold=_get_float_env(
                "STRATEGY_PLUS_DI_THRESHOLD", defaults.plus_di_threshold
            ),
            minus_di_threshold=_get_float_env(
                "STRATEGY_MINUS_DI_THRESHOLD", defaults.minus_di_threshold
            ),
            take_profit_percent=_get_positive_float_env(
                "STRATEGY_TAKE_PROFIT_PERCENT", defaults.take_profit_percent
            ),
            stop_loss_percent=_get_positive_float_env(
                "STRATEGY_STOP_LOSS_PERCENT", defaults.stop_loss_percent
            ),
            leverage=_get_positive_float_env("STRATEGY_LEVERAGE", defaults.leverage),
            quantity=_get_positive_float_env("STRATEGY_QUANTITY", defaults.quantity),
            market_data_source=source,
        )


@dataclass(frozen=True)
class EngineConfig:
    """Runtime settings for the schedulers and remote collaborators.

    Attributes:
        log_level: Logging level
        simulation_interval_seconds: Seconds between market simulation ticks
        reconciliation_interval_seconds: Seconds between reconciliation ticks
        volatility: Half-width of the uniform per-tick price perturbation
        max_price_move: Hard clamp on the per-tick perturbation
        network_timeout_seconds: Timeout for every remote HTTP call
        order_journal_path: Optional JSON-lines journal backing the Order Store
        testnet_enabled: Place and reconcile orders on the remote testnet
        testnet_api_key: Binance futures testnet API key
        testnet_api_secret: Binance futures testnet API secret
        futures_testnet_url: Binance futures testnet REST base URL
        spot_url: Binance spot REST base URL used for public prices
        coingecko_url: CoinGecko REST base URL
        recv_window_ms: Binance recvWindow for signed requests
        metrics_port: Port for the Prometheus metrics endpoint (disabled when unset)
    """

    log_level: str = "INFO"
    simulation_interval_seconds: float = 60.0
    reconciliation_interval_seconds: float = 30.0
    volatility: float = 0.002
    max_price_move: float = 0.005
    network_timeout_seconds: float = 10.0
    order_journal_path: str | None = None
    testnet_enabled: bool = False
    testnet_api_key: str = ""
    testnet_api_secret: str = ""
    futures_testnet_url: str = "https://testnet.binancefuture.com/fapi"
    spot_url: str = "https://testnet.binance.vision"
    coingecko_url: str = "https://api.coingecko.com/api/v3"
    recv_window_ms: int = 5000
    metrics_port: int | None = None

    @property
    def testnet_configured(self) -> bool:
        return bool(self.testnet_api_key and self.testnet_api_secret)

    @classmethod
    def from_env(cls) -> EngineConfig:
        """Create config from ENGINE_* / BINANCE_* environment variables."""
        defaults = cls()

        volatility = _get_positive_float_env("ENGINE_VOLATILITY", defaults.volatility)
        max_price_move = _get_positive_float_env("ENGINE_MAX_PRICE_MOVE", defaults.max_price_move)
        if max_price_move < volatility:
            # Clamp becomes the effective bound; worth knowing when tuning.
            logger.warning(
                "ENGINE_MAX_PRICE_MOVE is below ENGINE_VOLATILITY; perturbation will be clamped",
                extra={"volatility": volatility, "max_price_move": max_price_move},
            )

        return cls(
            log_level=os.getenv("ENGINE_LOG_LEVEL", defaults.log_level),
            simulation_interval_seconds=_get_positive_float_env(
                "ENGINE_SIMULATION_INTERVAL_SECONDS", defaults.simulation_interval_seconds
            ),
            reconciliation_interval_seconds=_get_positive_float_env(
                "ENGINE_RECONCILIATION_INTERVAL_SECONDS", defaults.reconciliation_interval_seconds
            ),
            volatility=volatility,
            max_price_move=max_price_move,
            network_timeout_seconds=_get_positive_float_env(
                "ENGINE_NETWORK_TIMEOUT_SECONDS", defaults.network_timeout_seconds
            ),
            order_journal_path=os.getenv("ENGINE_ORDER_JOURNAL_PATH", "").strip() or None,
            testnet_enabled=_get_bool_env("ENGINE_TESTNET_ENABLED", defaults.testnet_enabled),
            testnet_api_key=os.getenv("BINANCE_TESTNET_API_KEY", ""),
            testnet_api_secret=os.getenv("BINANCE_TESTNET_API_SECRET", ""),
            futures_testnet_url=os.getenv(
                "BINANCE_FUTURES_TESTNET_URL", defaults.futures_testnet_url
            ).rstrip("/"),
            spot_url=os.getenv("BINANCE_SPOT_URL", defaults.spot_url).rstrip("/"),
            coingecko_url=os.getenv("COINGECKO_API_URL", defaults.coingecko_url).rstrip("/"),
            recv_window_ms=_get_int_env("BINANCE_RECV_WINDOW_MS", defaults.recv_window_ms),
            metrics_port=_get_int_env("ENGINE_METRICS_PORT", 0) or None,
        )


# ============================================================================
# Configuration Factories
# ============================================================================


def get_strategy_config() -> StrategyConfig:
    """Read the strategy configuration.

    Not cached: the configuration is owned by an external collaborator and
    may change between signals.
    """
    return StrategyConfig.from_env()


_engine_config: EngineConfig | None = None


def get_engine_config() -> EngineConfig:
    """Get cached engine configuration (parsed once per process).

    Tests reset the cache by setting ``_engine_config = None``.
    """
    global _engine_config
    if _engine_config is None:
        _engine_config = EngineConfig.from_env()
    return _engine_config
