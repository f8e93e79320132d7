"""
Exception hierarchy for the order engine.

Errors are organised under a single base class so callers can catch
platform failures without swallowing programming errors.

Expected conditions (unknown order id, rejected signal) are returned as
values by the core. Only malformed input and remote failures are raised.
"""


class TradingPlatformError(Exception):
    """
    Base exception for all order engine errors.

    Example:
        >>> try:
        ...     store.create({"symbol": "BTCUSDT"})
        ... except TradingPlatformError as e:
        ...     logger.error(f"Platform error: {e}")
    """

    pass


class ValidationError(TradingPlatformError):
    """
    Raised when signal or order input is malformed.

    Surfaced immediately to the caller; never retried.

    Example:
        >>> if entry_price <= 0:
        ...     raise ValidationError(f"entry_price must be positive, got {entry_price}")
    """

    pass


class NotFoundError(TradingPlatformError):
    """
    Raised by administrative callers that require an order to exist.

    The Order Store itself reports a missing id by returning None.
    """

    def __init__(self, order_id: str) -> None:
        super().__init__(f"Order {order_id} not found")
        self.order_id = order_id


class RemoteUnavailableError(TradingPlatformError):
    """
    Raised when the exchange or a price feed cannot be reached.

    Covers network errors, timeouts and authentication failures. Periodic
    drivers catch it, log it and retry on the next cycle.

    Example:
        >>> except httpx.TimeoutException as exc:
        ...     raise RemoteUnavailableError(f"Price feed timed out for {symbol}") from exc
    """

    pass


class UnmappedRemoteStatus(UserWarning):
    """
    Logged when the exchange reports a status outside the known vocabulary.

    The order is kept OPEN rather than dropped. This is a warning category,
    not a failure: it is attached to log records and never aborts a tick.
    """

    def __init__(self, remote_status: str) -> None:
        super().__init__(f"Unmapped remote order status {remote_status!r}; defaulting to OPEN")
        self.remote_status = remote_status


class ConfigurationError(TradingPlatformError):
    """
    Raised when required configuration or credentials are missing.

    Example:
        >>> if not api_key:
        ...     raise ConfigurationError("BINANCE_TESTNET_API_KEY not configured")
    """

    pass
