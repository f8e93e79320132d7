"""
Pydantic schemas for the Order Engine.

Defines the order entity and its status vocabulary, the canonical order
creation input (with the alias normalisation legacy callers rely on), trading
signals, price quotes and the remote exchange payloads consumed by
reconciliation.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal, TypeAlias

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

# ============================================================================
# Status Vocabulary
# ============================================================================


class OrderSide(str, Enum):
    BUY = "BUY"
    SELL = "SELL"

    @property
    def direction(self) -> int:
        """+1 for BUY, -1 for SELL."""
        return 1 if self is OrderSide.BUY else -1


class OrderStatus(str, Enum):
    """Local order status.

    OPEN is the only initial state. FILLED, CLOSED and CANCELLED are
    terminal: once reached, the status never changes again.
    """

    OPEN = "OPEN"
    FILLED = "FILLED"
    CLOSED = "CLOSED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES: frozenset[OrderStatus] = frozenset(
    {OrderStatus.FILLED, OrderStatus.CLOSED, OrderStatus.CANCELLED}
)


def is_allowed_transition(current: OrderStatus, target: OrderStatus) -> bool:
    """Return True if an order in ``current`` may be written with ``target``.

    OPEN may move anywhere (including OPEN again, which is a mark-to-market
    write). A terminal status accepts no writes at all.

    Examples:
        >>> is_allowed_transition(OrderStatus.OPEN, OrderStatus.FILLED)
        True
        >>> is_allowed_transition(OrderStatus.FILLED, OrderStatus.OPEN)
        False
    """
    return not current.is_terminal


PriceSource: TypeAlias = Literal["real", "simulated", "fallback"]

# ============================================================================
# Order Schemas
# ============================================================================


def _utcnow() -> datetime:
    return datetime.now(UTC)


class RemoteLink(BaseModel):
    """Link between a local order and its remote exchange order.

    ``remote_order_id`` is written once by ``OrderStore.link_remote`` and never
    changes; reconciliation only refreshes status and timestamp.
    """

    remote_order_id: str
    remote_status: str | None = None
    remote_updated_at: datetime | None = None
    remote_created_at: datetime | None = None


class Order(BaseModel):
    """Locally held order record.

    Records are owned by the Order Store. Every accessor returns a copy, so
    mutating an instance never changes stored state.
    """

    id: str
    symbol: str
    side: OrderSide
    quantity: float
    leverage: float | None = None
    entry_price: float
    take_profit_price: float
    stop_loss_price: float
    order_type: str = "MARKET"
    timeframe: str | None = None
    signal: dict[str, float] | None = None

    status: OrderStatus = OrderStatus.OPEN
    profit: float | None = None
    profit_percent: float | None = None
    close_reason: str | None = None
    close_price: float | None = None

    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    close_time: datetime | None = None

    remote: RemoteLink | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def remote_order_id(self) -> str | None:
        return self.remote.remote_order_id if self.remote else None


# Fields fixed at creation. A patch naming one of these is ignored.
IMMUTABLE_ORDER_FIELDS: frozenset[str] = frozenset(
    {
        "id",
        "symbol",
        "side",
        "quantity",
        "leverage",
        "entry_price",
        "take_profit_price",
        "stop_loss_price",
        "order_type",
        "timeframe",
        "signal",
        "created_at",
        "remote",
    }
)

# Fields an update_status patch may write directly on the order.
PATCHABLE_ORDER_FIELDS: frozenset[str] = frozenset(
    {"profit", "profit_percent", "close_reason", "close_price", "close_time"}
)

# Fields an update_status patch may write on the remote link.
PATCHABLE_REMOTE_FIELDS: frozenset[str] = frozenset({"remote_status", "remote_updated_at"})


class OrderCreate(BaseModel):
    """
    Canonical order creation input.

    Legacy producers use several spellings for the same field; all of them
    normalise onto one schema here:

        side              <- side | action
        entry_price       <- entry_price | entryPrice | price_entry | price
        take_profit_price <- take_profit_price | takeProfitPrice | tp_price
        stop_loss_price   <- stop_loss_price | stopLossPrice | sl_price
        quantity          <- quantity | qty | orderSize
        order_type        <- order_type | type

    When two spellings are present, the first one listed wins.

    Examples:
        >>> OrderCreate.model_validate(
        ...     {"symbol": "btcusdt", "action": "buy", "price_entry": 100,
        ...      "tp_price": 104, "sl_price": 98}
        ... ).side
        <OrderSide.BUY: 'BUY'>
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    symbol: str = Field(..., min_length=1)
    side: OrderSide = Field(..., validation_alias=AliasChoices("side", "action"))
    entry_price: float = Field(
        ...,
        gt=0,
        validation_alias=AliasChoices("entry_price", "entryPrice", "price_entry", "price"),
    )
    take_profit_price: float = Field(
        ..., gt=0, validation_alias=AliasChoices("take_profit_price", "takeProfitPrice", "tp_price")
    )
    stop_loss_price: float = Field(
        ..., gt=0, validation_alias=AliasChoices("stop_loss_price", "stopLossPrice", "sl_price")
    )
    quantity: float | None = Field(
        default=None, gt=0, validation_alias=AliasChoices("quantity", "qty", "orderSize")
    )
    leverage: float | None = Field(default=None, gt=0)
    order_type: str = Field(default="MARKET", validation_alias=AliasChoices("order_type", "type"))
    timeframe: str | None = None
    signal: dict[str, float] | None = None

    @field_validator("symbol")
    @classmethod
    def symbol_uppercase(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("side", mode="before")
    @classmethod
    def side_uppercase(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v

    @field_validator("order_type")
    @classmethod
    def order_type_uppercase(cls, v: str) -> str:
        return v.upper()


# ============================================================================
# Signal Schemas
# ============================================================================


class Signal(BaseModel):
    """Directional-movement trading signal from the charting tool.

    Indicator fields are optional at the schema level so that an incomplete
    payload reaches the validator and is rejected there with a reason,
    instead of failing at parse time.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    plus_di: float | None = Field(default=None, validation_alias=AliasChoices("plus_di", "plusDI"))
    minus_di: float | None = Field(
        default=None, validation_alias=AliasChoices("minus_di", "minusDI")
    )
    adx: float | None = None
    symbol: str | None = None
    timeframe: str | None = None

    def indicators(self) -> dict[str, float]:
        """Snapshot of the indicator values stored on the created order."""
        return {
            "plus_di": float(self.plus_di or 0.0),
            "minus_di": float(self.minus_di or 0.0),
            "adx": float(self.adx or 0.0),
        }


class SignalValidation(BaseModel):
    valid: bool
    action: OrderSide | None = None
    reason: str | None = None


class RemotePlacement(BaseModel):
    """Outcome of mirroring a local order onto the remote exchange.

    ``tp_sl_placed`` is None when the market order itself was not placed.
    """

    success: bool
    message: str
    remote_order_id: str | None = None
    remote_status: str | None = None
    tp_sl_placed: bool | None = None
    tp_sl_message: str | None = None
    take_profit_order_id: str | None = None
    stop_loss_order_id: str | None = None


class SignalResult(BaseModel):
    """Outcome of processing one signal end to end."""

    success: bool
    message: str
    order: Order | None = None
    remote: RemotePlacement | None = None


# ============================================================================
# Market Data Schemas
# ============================================================================


class PriceQuote(BaseModel):
    """A price sample tagged with where it came from.

    ``source`` is ``real`` for a live feed, ``simulated`` for a synthetic
    price and ``fallback`` when the primary provider failed and a secondary
    one answered.
    """

    symbol: str
    price: float = Field(..., gt=0)
    source: PriceSource
    provider: str
    fetched_at: datetime = Field(default_factory=_utcnow)


# ============================================================================
# Remote Exchange Schemas
# ============================================================================


def _parse_epoch_ms(value: Any) -> datetime | None:
    if value in (None, "", 0, "0"):
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromtimestamp(int(value) / 1000, tz=UTC)


def _positive_or_none(value: Any) -> float | None:
    if value in (None, ""):
        return None
    parsed = float(value)
    return parsed if parsed > 0 else None


class RemoteOrderStatus(BaseModel):
    """Order state as reported by the exchange.

    ``price`` is the average fill price when the exchange reports one,
    otherwise the order's limit price; zero values (market orders) map to
    None.
    """

    order_id: str
    symbol: str
    status: str
    update_time: datetime | None = None
    price: float | None = None

    @classmethod
    def from_exchange(cls, payload: dict[str, Any]) -> RemoteOrderStatus:
        """Build from a Binance ``/order`` response body."""
        price = _positive_or_none(payload.get("avgPrice")) or _positive_or_none(
            payload.get("price")
        )
        return cls(
            order_id=str(payload["orderId"]),
            symbol=str(payload.get("symbol", "")).upper(),
            status=str(payload.get("status") or "").upper(),
            update_time=_parse_epoch_ms(payload.get("updateTime")),
            price=price,
        )


class PositionInfo(BaseModel):
    """Open position as reported by the exchange (``/positionRisk``)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    symbol: str
    entry_price: float = Field(..., validation_alias=AliasChoices("entry_price", "entryPrice"))
    mark_price: float = Field(..., validation_alias=AliasChoices("mark_price", "markPrice"))
    unrealized_profit: float = Field(
        ...,
        validation_alias=AliasChoices("unrealized_profit", "unRealizedProfit", "unrealizedProfit"),
    )
    position_amt: float = Field(..., validation_alias=AliasChoices("position_amt", "positionAmt"))
