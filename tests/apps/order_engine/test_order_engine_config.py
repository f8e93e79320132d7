"""Tests for Order Engine configuration parsing."""

from __future__ import annotations

from apps.order_engine import config as config_module
from apps.order_engine.config import EngineConfig, StrategyConfig


def test_get_float_env_invalid_logs_default(caplog, monkeypatch):
    monkeypatch.setenv("TEST_FLOAT", "not-a-float")
    with caplog.at_level("WARNING"):
        value = config_module._get_float_env("TEST_FLOAT", 1.25)
    assert value == 1.25
    assert "Invalid float" in caplog.text


def test_get_int_env_invalid_logs_default(caplog, monkeypatch):
    monkeypatch.setenv("TEST_INT", "bad")
    with caplog.at_level("WARNING"):
        value = config_module._get_int_env("TEST_INT", 7)
    assert value == 7
    assert "Invalid int" in caplog.text


def test_bool_env_is_permissive(monkeypatch):
    monkeypatch.setenv("BOOL_PERM", "yes")
    assert config_module._get_bool_env("BOOL_PERM", False) is True

    monkeypatch.setenv("BOOL_PERM", "off")
    assert config_module._get_bool_env("BOOL_PERM", True) is False


def test_strategy_defaults(monkeypatch):
    for name in (
        "STRATEGY_SYMBOL",
        "STRATEGY_ADX_MINIMUM",
        "STRATEGY_PLUS_DI_THRESHOLD",
        "STRATEGY_MINUS_DI_THRESHOLD",
        "STRATEGY_MARKET_DATA_SOURCE",
    ):
        monkeypatch.delenv(name, raising=False)

    cfg = StrategyConfig.from_env()

    assert cfg.symbol == "BTCUSDT"
    assert cfg.adx_minimum == 20.0
    assert cfg.plus_di_threshold == 25.0
    assert cfg.minus_di_threshold == 20.0
    assert cfg.market_data_source == "binance"


def test_strategy_from_env(monkeypatch):
    monkeypatch.setenv("STRATEGY_SYMBOL", "ethusdt")
    monkeypatch.setenv("STRATEGY_ADX_MINIMUM", "30")
    monkeypatch.setenv("STRATEGY_TAKE_PROFIT_PERCENT", "3.5")
    monkeypatch.setenv("STRATEGY_LEVERAGE", "5")
    monkeypatch.setenv("STRATEGY_MARKET_DATA_SOURCE", "CoinGecko")

    cfg = StrategyConfig.from_env()

    assert cfg.symbol == "ETHUSDT"
    assert cfg.adx_minimum == 30.0
    assert cfg.take_profit_percent == 3.5
    assert cfg.leverage == 5.0
    assert cfg.market_data_source == "coingecko"


def test_strategy_invalid_values_fall_back(monkeypatch, caplog):
    monkeypatch.setenv("STRATEGY_STOP_LOSS_PERCENT", "-1")
    monkeypatch.setenv("STRATEGY_MARKET_DATA_SOURCE", "kraken")

    with caplog.at_level("WARNING"):
        cfg = StrategyConfig.from_env()

    assert cfg.stop_loss_percent == 1.0
    assert cfg.market_data_source == "binance"
    assert "STRATEGY_STOP_LOSS_PERCENT must be > 0" in caplog.text
    assert "STRATEGY_MARKET_DATA_SOURCE must be binance or coingecko" in caplog.text


def test_strategy_config_is_not_cached(monkeypatch):
    monkeypatch.setenv("STRATEGY_ADX_MINIMUM", "21")
    first = config_module.get_strategy_config()
    monkeypatch.setenv("STRATEGY_ADX_MINIMUM", "22")
    second = config_module.get_strategy_config()

    assert (first.adx_minimum, second.adx_minimum) == (21.0, 22.0)


def test_engine_from_env(monkeypatch):
    monkeypatch.setenv("ENGINE_SIMULATION_INTERVAL_SECONDS", "5")
    monkeypatch.setenv("ENGINE_TESTNET_ENABLED", "true")
    monkeypatch.setenv("BINANCE_TESTNET_API_KEY", "key")
    monkeypatch.setenv("BINANCE_TESTNET_API_SECRET", "secret")
    monkeypatch.setenv("BINANCE_FUTURES_TESTNET_URL", "https://fapi.test/fapi/")
    monkeypatch.setenv("ENGINE_ORDER_JOURNAL_PATH", "  ")
    monkeypatch.setenv("ENGINE_METRICS_PORT", "9105")

    cfg = EngineConfig.from_env()

    assert cfg.simulation_interval_seconds == 5.0
    assert cfg.testnet_enabled is True
    assert cfg.testnet_configured is True
    assert cfg.futures_testnet_url == "https://fapi.test/fapi"
    assert cfg.order_journal_path is None
    assert cfg.metrics_port == 9105


def test_engine_testnet_requires_both_credentials():
    assert EngineConfig(testnet_api_key="key").testnet_configured is False
    assert EngineConfig().metrics_port is None


def test_engine_warns_when_clamp_below_volatility(monkeypatch, caplog):
    monkeypatch.setenv("ENGINE_VOLATILITY", "0.01")
    monkeypatch.setenv("ENGINE_MAX_PRICE_MOVE", "0.005")

    with caplog.at_level("WARNING"):
        cfg = EngineConfig.from_env()

    assert (cfg.volatility, cfg.max_price_move) == (0.01, 0.005)
    assert "ENGINE_MAX_PRICE_MOVE is below ENGINE_VOLATILITY" in caplog.text


def test_get_engine_config_cached_returns_singleton(monkeypatch):
    monkeypatch.setenv("ENGINE_LOG_LEVEL", "DEBUG")
    first = config_module.get_engine_config()
    monkeypatch.setenv("ENGINE_LOG_LEVEL", "ERROR")
    second = config_module.get_engine_config()

    assert first is second
    assert second.log_level == "DEBUG"
