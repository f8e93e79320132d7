"""
Remote exchange client for the Binance futures testnet.

Provides the calls the engine needs:
    - get_order_status: order state by remote order id (None when unknown)
    - get_position_info: open position for a symbol (None when flat)
    - place_order: market order, setting leverage first when > 1
    - place_tp_sl_orders: reduce-only take-profit and stop-loss exits

Error classification mirrors the broker client of the execution gateway:
    - ExchangeConnectionError: network / 5xx / rate limit (retryable)
    - ExchangeValidationError: 4xx request problems (non-retryable)
    - ExchangeAuthError: rejected API key or signature (non-retryable)

``ExchangeConnectionError`` and ``ExchangeAuthError`` are also
``RemoteUnavailableError``, which is what the reconciliation service treats
as "skip this cycle".
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import time
from collections.abc import Callable
from typing import Any, Protocol
from urllib.parse import urlencode

import httpx
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from apps.order_engine.config import EngineConfig
from apps.order_engine.schemas import OrderSide, PositionInfo, RemoteOrderStatus
from libs.common.exceptions import ConfigurationError, RemoteUnavailableError, TradingPlatformError

logger = logging.getLogger(__name__)

# Binance error code for "Order does not exist."
ORDER_NOT_FOUND_CODE = -2013

_RETRYABLE_STATUS_CODES = frozenset({418, 429})

_AUTH_STATUS_CODES = frozenset({401, 403})
# -2014 "API-key format invalid", -2015 "Invalid API-key, IP, or permissions"
_AUTH_ERROR_CODES = frozenset({-2014, -2015})


class ExchangeClientError(TradingPlatformError):
    """Base exception for exchange client errors."""


class ExchangeConnectionError(ExchangeClientError, RemoteUnavailableError):
    """Connection error to the exchange API (retryable)."""


class ExchangeValidationError(ExchangeClientError):
    """Request rejected by the exchange API (non-retryable).

    Attributes:
        status_code: HTTP status code
        code: Binance error code, when the body carried one
    """

    def __init__(self, message: str, status_code: int, code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code


class ExchangeAuthError(ExchangeValidationError, RemoteUnavailableError):
    """API key, signature or permissions rejected by the exchange (non-retryable).

    Raised for HTTP 401/403 and Binance codes -2014/-2015. Retrying the same
    request cannot succeed, but the next cycle may once the key is fixed.
    """


class ExchangeClient(Protocol):
    """Remote exchange operations used by the engine."""

    async def get_order_status(self, symbol: str, remote_order_id: str) -> RemoteOrderStatus | None:
        ...

    async def get_position_info(self, symbol: str) -> PositionInfo | None:
        ...

    async def place_order(
        self,
        symbol: str,
        side: OrderSide,
        quantity: float,
        leverage: float | None = None,
    ) -> RemoteOrderStatus:
        ...

    async def place_tp_sl_orders(
        self,
        symbol: str,
        side: OrderSide,
        quantity: float,
        take_profit_price: float,
        stop_loss_price: float,
    ) -> tuple[RemoteOrderStatus, RemoteOrderStatus]:
        ...


def sign_query(query: str, secret: str) -> str:
    """HMAC-SHA256 signature of a query string, hex encoded."""
    return hmac.new(secret.encode(), query.encode(), hashlib.sha256).hexdigest()


def _now_ms() -> int:
    return int(time.time() * 1000)


def _format_decimal(value: float) -> str:
    return f"{value:f}".rstrip("0").rstrip(".")


class BinanceTestnetClient:
    """
    Signed REST client for the Binance USD-M futures testnet.

    Every request carries ``timestamp`` and ``recvWindow`` and is signed with
    the API secret; the API key travels in the ``X-MBX-APIKEY`` header.

    Examples:
        >>> client = BinanceTestnetClient(api_key="...", api_secret="...")
        >>> status = await client.get_order_status("BTCUSDT", "4045812")
        >>> status.status
        'FILLED'
    """

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        base_url: str = "https://testnet.binancefuture.com/fapi",
        timeout: float = 10.0,
        recv_window_ms: int = 5000,
        client: httpx.AsyncClient | None = None,
        now_ms: Callable[[], int] = _now_ms,
    ) -> None:
        """
        Initialize client.

        Args:
            api_key: Testnet API key
            api_secret: Testnet API secret
            base_url: Futures REST base URL (including the ``/fapi`` prefix)
            timeout: Request timeout in seconds
            recv_window_ms: Binance ``recvWindow`` in milliseconds
            client: Optional pre-built client (tests pass one with a MockTransport)
            now_ms: Injectable clock for deterministic signatures

        Raises:
            ConfigurationError: If the key or secret is empty
        """
        if not api_key or not api_secret:
            raise ConfigurationError("Binance testnet API key and secret are required")

        self.api_key = api_key
        self._api_secret = api_secret
        self.base_url = base_url.rstrip("/")
        self.recv_window_ms = recv_window_ms
        self.client = client or httpx.AsyncClient(timeout=timeout)
        self._now_ms = now_ms

        logger.info("Initialized Binance testnet client", extra={"base_url": self.base_url})

    @classmethod
    def from_config(
        cls, config: EngineConfig, client: httpx.AsyncClient | None = None
    ) -> BinanceTestnetClient:
        return cls(
            api_key=config.testnet_api_key,
            api_secret=config.testnet_api_secret,
            base_url=config.futures_testnet_url,
            timeout=config.network_timeout_seconds,
            recv_window_ms=config.recv_window_ms,
            client=client,
        )

    async def close(self) -> None:
        """Close HTTP client."""
        await self.client.aclose()

    # -------------------------------------------------------------------------
    # Request plumbing
    # -------------------------------------------------------------------------

    def _signed_url(self, path: str, params: dict[str, Any]) -> str:
        query = urlencode({**params, "timestamp": self._now_ms(), "recvWindow": self.recv_window_ms})
        signature = sign_query(query, self._api_secret)
        return f"{self.base_url}{path}?{query}&signature={signature}"

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        retry=retry_if_exception_type(ExchangeConnectionError),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _send(self, method: str, path: str, params: dict[str, Any]) -> Any:
        """
        Send one signed request with retry on transient failures.

        Retry policy:
        - Max 3 attempts
        - Exponential backoff starting at 0.5s
        - Only transport errors, 5xx, 418 and 429 are retried
        - The signature is recomputed per attempt (fresh timestamp)

        Raises:
            ExchangeConnectionError: Transient failure after all attempts
            ExchangeAuthError: Key or signature rejected (401/403, -2014/-2015)
            ExchangeValidationError: Request rejected (other 4xx)
        """
        url = self._signed_url(path, params)
        try:
            response = await self.client.request(
                method, url, headers={"X-MBX-APIKEY": self.api_key}
            )
        except httpx.TransportError as exc:
            raise ExchangeConnectionError(f"{method} {path} failed: {exc}") from exc

        if response.status_code >= 500 or response.status_code in _RETRYABLE_STATUS_CODES:
            raise ExchangeConnectionError(
                f"{method} {path} returned HTTP {response.status_code}"
            )

        try:
            body = response.json()
        except ValueError as exc:
            if response.is_success:
                raise ExchangeConnectionError(f"{method} {path} returned a non-JSON body") from exc
            body = {}

        if not response.is_success:
            code = body.get("code") if isinstance(body, dict) else None
            msg = body.get("msg") if isinstance(body, dict) else None
            if response.status_code in _AUTH_STATUS_CODES or code in _AUTH_ERROR_CODES:
                raise ExchangeAuthError(
                    f"{method} {path} unauthorized (HTTP {response.status_code}, code={code}): {msg}",
                    status_code=response.status_code,
                    code=code,
                )
            raise ExchangeValidationError(
                f"{method} {path} rejected (HTTP {response.status_code}, code={code}): {msg}",
                status_code=response.status_code,
                code=code,
            )
        return body

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def get_order_status(self, symbol: str, remote_order_id: str) -> RemoteOrderStatus | None:
        """
        Query an order by its exchange order id.

        Returns:
            The remote order, or None if the exchange does not know it

        Raises:
            ExchangeConnectionError: Exchange unreachable after retries
            ExchangeValidationError: Request rejected for another reason
        """
        try:
            payload = await self._send(
                "GET", "/v1/order", {"symbol": symbol.upper(), "orderId": remote_order_id}
            )
        except ExchangeValidationError as exc:
            if exc.code == ORDER_NOT_FOUND_CODE:
                logger.info(
                    "Remote order not found",
                    extra={"symbol": symbol, "remote_order_id": remote_order_id},
                )
                return None
            raise
        return RemoteOrderStatus.from_exchange(payload)

    async def get_position_info(self, symbol: str) -> PositionInfo | None:
        """
        Return the open position for ``symbol``.

        Returns:
            The position with a non-zero amount, or None when flat
        """
        symbol = symbol.upper()
        payload = await self._send("GET", "/v2/positionRisk", {"symbol": symbol})
        for entry in payload if isinstance(payload, list) else []:
            if str(entry.get("symbol", "")).upper() != symbol:
                continue
            if float(entry.get("positionAmt") or 0) != 0:
                return PositionInfo.model_validate(entry)
        return None

    async def set_leverage(self, symbol: str, leverage: int) -> None:
        await self._send("POST", "/v1/leverage", {"symbol": symbol.upper(), "leverage": leverage})
        logger.info("Leverage set", extra={"symbol": symbol, "leverage": leverage})

    async def place_order(
        self,
        symbol: str,
        side: OrderSide,
        quantity: float,
        leverage: float | None = None,
    ) -> RemoteOrderStatus:
        """
        Place a market order. Leverage above 1 is applied to the symbol first.

        Returns:
            The order as acknowledged by the exchange
        """
        symbol = symbol.upper()
        if leverage and leverage > 1:
            await self.set_leverage(symbol, int(leverage))

        payload = await self._send(
            "POST",
            "/v1/order",
            {
                "symbol": symbol,
                "side": OrderSide(side).value,
                "type": "MARKET",
                "quantity": _format_decimal(quantity),
                "newOrderRespType": "RESULT",
            },
        )
        result = RemoteOrderStatus.from_exchange(payload)
        logger.info(
            "Remote order placed",
            extra={
                "symbol": symbol,
                "side": OrderSide(side).value,
                "quantity": quantity,
                "remote_order_id": result.order_id,
                "remote_status": result.status,
            },
        )
        return result

    async def place_tp_sl_orders(
        self,
        symbol: str,
        side: OrderSide,
        quantity: float,
        take_profit_price: float,
        stop_loss_price: float,
    ) -> tuple[RemoteOrderStatus, RemoteOrderStatus]:
        """
        Place the protective exits for a position opened with ``side``.

        Both are reduce-only trigger-market orders on the opposite side:
        TAKE_PROFIT_MARKET at ``take_profit_price`` then STOP_MARKET at
        ``stop_loss_price``. If the stop-loss is rejected the take-profit
        already placed stays on the exchange.

        Returns:
            ``(take_profit_order, stop_loss_order)`` as acknowledged
        """
        symbol = symbol.upper()
        exit_side = OrderSide.SELL if OrderSide(side) is OrderSide.BUY else OrderSide.BUY

        placed = []
        for order_type, stop_price in (
            ("TAKE_PROFIT_MARKET", take_profit_price),
            ("STOP_MARKET", stop_loss_price),
        ):
            payload = await self._send(
                "POST",
                "/v1/order",
                {
                    "symbol": symbol,
                    "side": exit_side.value,
                    "type": order_type,
                    "stopPrice": _format_decimal(stop_price),
                    "quantity": _format_decimal(quantity),
                    "reduceOnly": "true",
                },
            )
            placed.append(RemoteOrderStatus.from_exchange(payload))

        take_profit, stop_loss = placed
        logger.info(
            "Remote TP/SL orders placed",
            extra={
                "symbol": symbol,
                "side": exit_side.value,
                "take_profit_price": take_profit_price,
                "stop_loss_price": stop_loss_price,
                "take_profit_order_id": take_profit.order_id,
                "stop_loss_order_id": stop_loss.order_id,
            },
        )
        return take_profit, stop_loss
