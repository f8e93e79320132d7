"""
Market price oracles.

The core depends only on the ``PriceOracle`` protocol. Implementations:

    - BinancePriceOracle: public ``/api/v3/ticker/price`` endpoint (source "real")
    - CoinGeckoPriceOracle: ``/simple/price`` endpoint (source "real")
    - StaticPriceOracle: fixed in-memory prices (source "simulated")
    - FallbackPriceOracle: primary then secondary; answers from the
      secondary are tagged "fallback" so callers can tell them apart

Every network failure surfaces as ``RemoteUnavailableError``. Transport
errors (connect, timeout) are retried briefly before giving up.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any, Protocol, runtime_checkable

import httpx
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from apps.order_engine.config import EngineConfig, StrategyConfig
from apps.order_engine.schemas import PriceQuote
from libs.common.exceptions import RemoteUnavailableError

logger = logging.getLogger(__name__)

# Binance symbol -> CoinGecko coin id. Unlisted symbols fall back to the
# lower-cased base asset, which works for most large caps.
COINGECKO_COIN_IDS: dict[str, str] = {
    "BTCUSDT": "bitcoin",
    "ETHUSDT": "ethereum",
    "BNBUSDT": "binancecoin",
    "ADAUSDT": "cardano",
    "SOLUSDT": "solana",
    "DOGEUSDT": "dogecoin",
    "XRPUSDT": "ripple",
    "DOTUSDT": "polkadot",
    "AVAXUSDT": "avalanche-2",
    "MATICUSDT": "matic-network",
}

_QUOTE_SUFFIXES = ("USDT", "BUSD", "USD")


@runtime_checkable
class PriceOracle(Protocol):
    """Source of the current market price for a symbol."""

    async def get_current_price(self, symbol: str) -> float:
        """Return the current price. Raises RemoteUnavailableError."""
        ...

    async def get_quote(self, symbol: str) -> PriceQuote:
        """Return the current price tagged with its source."""
        ...


def coingecko_coin_id(symbol: str) -> str:
    """Map an exchange symbol to a CoinGecko coin id.

    Examples:
        >>> coingecko_coin_id("BTCUSDT")
        'bitcoin'
        >>> coingecko_coin_id("LINKUSDT")
        'link'
    """
    symbol = symbol.upper()
    if symbol in COINGECKO_COIN_IDS:
        return COINGECKO_COIN_IDS[symbol]
    for suffix in _QUOTE_SUFFIXES:
        if symbol.endswith(suffix) and len(symbol) > len(suffix):
            return symbol[: -len(suffix)].lower()
    return symbol.lower()


# ==============================================================================
# HTTP Oracles
# ==============================================================================


class _HttpPriceOracle(ABC):
    """Shared client handling for the HTTP-backed oracles."""

    provider = "http"

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Initialize oracle.

        Args:
            base_url: Provider REST base URL
            timeout: Request timeout in seconds
            client: Optional pre-built client (tests pass one with a MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        """Close HTTP client."""
        await self.client.aclose()

    @retry(
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=2),
        retry=retry_if_exception_type(httpx.TransportError),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _get_json(self, path: str, params: dict[str, str]) -> Any:
        response = await self.client.get(f"{self.base_url}{path}", params=params)
        response.raise_for_status()
        return response.json()

    async def _request(self, symbol: str, path: str, params: dict[str, str]) -> Any:
        try:
            return await self._get_json(path, params)
        except httpx.HTTPStatusError as exc:
            raise RemoteUnavailableError(
                f"{self.provider} returned HTTP {exc.response.status_code} for {symbol}"
            ) from exc
        except httpx.HTTPError as exc:
            raise RemoteUnavailableError(
                f"{self.provider} request failed for {symbol}: {exc}"
            ) from exc
        except ValueError as exc:
            raise RemoteUnavailableError(
                f"{self.provider} returned a non-JSON body for {symbol}"
            ) from exc

    def _parse_price(self, symbol: str, raw: Any) -> float:
        try:
            price = float(raw)
        except (TypeError, ValueError) as exc:
            raise RemoteUnavailableError(
                f"{self.provider} returned an invalid price for {symbol}: {raw!r}"
            ) from exc
        if price <= 0:
            raise RemoteUnavailableError(
                f"{self.provider} returned a non-positive price for {symbol}: {price}"
            )
        return price

    @abstractmethod
    async def get_current_price(self, symbol: str) -> float:
        """Latest price for ``symbol`` from the provider."""

    async def get_quote(self, symbol: str) -> PriceQuote:
        price = await self.get_current_price(symbol)
        return PriceQuote(symbol=symbol.upper(), price=price, source="real", provider=self.provider)


class BinancePriceOracle(_HttpPriceOracle):
    """
    Latest trade price from the Binance public ticker.

    Example:
        >>> oracle = BinancePriceOracle("https://testnet.binance.vision")
        >>> await oracle.get_current_price("BTCUSDT")
        64250.12
    """

    provider = "binance"

    async def get_current_price(self, symbol: str) -> float:
        symbol = symbol.upper()
        data = await self._request(symbol, "/api/v3/ticker/price", {"symbol": symbol})
        if not isinstance(data, dict) or "price" not in data:
            raise RemoteUnavailableError(f"binance returned no price for {symbol}")
        return self._parse_price(symbol, data["price"])


class CoinGeckoPriceOracle(_HttpPriceOracle):
    """USD price from CoinGecko's ``/simple/price`` endpoint."""

    provider = "coingecko"

    async def get_current_price(self, symbol: str) -> float:
        coin_id = coingecko_coin_id(symbol)
        data = await self._request(
            symbol, "/simple/price", {"ids": coin_id, "vs_currencies": "usd"}
        )
        try:
            raw = data[coin_id]["usd"]
        except (KeyError, TypeError) as exc:
            raise RemoteUnavailableError(
                f"coingecko returned no usd price for {symbol} ({coin_id})"
            ) from exc
        return self._parse_price(symbol, raw)


# ==============================================================================
# In-memory and Composite Oracles
# ==============================================================================


class StaticPriceOracle:
    """Oracle answering from an in-memory price table.

    Used when no live feed is configured, and in tests. Quotes are tagged
    ``simulated``.
    """

    provider = "static"

    def __init__(self, prices: Mapping[str, float] | None = None) -> None:
        self._prices: dict[str, float] = {}
        for symbol, price in (prices or {}).items():
            self.set_price(symbol, price)

    def set_price(self, symbol: str, price: float) -> None:
        if price <= 0:
            raise ValueError(f"price must be positive, got {price}")
        self._prices[symbol.upper()] = float(price)

    async def get_current_price(self, symbol: str) -> float:
        try:
            return self._prices[symbol.upper()]
        except KeyError as exc:
            raise RemoteUnavailableError(f"No static price for {symbol}") from exc

    async def get_quote(self, symbol: str) -> PriceQuote:
        price = await self.get_current_price(symbol)
        return PriceQuote(
            symbol=symbol.upper(), price=price, source="simulated", provider=self.provider
        )


class FallbackPriceOracle:
    """
    Try ``primary``; on failure ask ``secondary``.

    A quote served by the secondary is re-tagged ``fallback`` so downstream
    code never mistakes it for the primary feed.
    """

    def __init__(self, primary: PriceOracle, secondary: PriceOracle) -> None:
        self.primary = primary
        self.secondary = secondary

    async def get_quote(self, symbol: str) -> PriceQuote:
        try:
            return await self.primary.get_quote(symbol)
        except RemoteUnavailableError as exc:
            logger.warning(
                "Primary price oracle failed, using fallback",
                extra={"symbol": symbol, "error": str(exc)},
            )
        quote = await self.secondary.get_quote(symbol)
        return quote.model_copy(update={"source": "fallback"})

    async def get_current_price(self, symbol: str) -> float:
        quote = await self.get_quote(symbol)
        return quote.price

    async def close(self) -> None:
        for oracle in (self.primary, self.secondary):
            close = getattr(oracle, "close", None)
            if close is not None:
                await close()


def build_price_oracle(
    strategy: StrategyConfig,
    engine: EngineConfig,
    client: httpx.AsyncClient | None = None,
) -> FallbackPriceOracle:
    """Build the configured oracle, with the other live provider as fallback."""
    binance = BinancePriceOracle(engine.spot_url, engine.network_timeout_seconds, client)
    coingecko = CoinGeckoPriceOracle(engine.coingecko_url, engine.network_timeout_seconds, client)

    if strategy.market_data_source == "coingecko":
        primary, secondary = coingecko, binance
    else:
        primary, secondary = binance, coingecko

    logger.info(
        "Price oracle configured",
        extra={"primary": primary.provider, "fallback": secondary.provider},
    )
    return FallbackPriceOracle(primary, secondary)
