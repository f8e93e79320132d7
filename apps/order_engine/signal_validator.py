"""
Signal validation for directional-movement (ADX / +DI / -DI) signals.

Pure decision function: deterministic, no I/O, no side effects. Given the
same signal and thresholds it always returns the same decision.

Rules, evaluated in order:
    1. Any indicator missing or non-numeric -> invalid
    2. ADX below the minimum -> invalid, regardless of DI values
    3. +DI above its threshold and -DI below its threshold -> BUY
    4. -DI above the +DI threshold and +DI below the -DI threshold -> SELL
    5. Anything else -> invalid, with the compared values in the reason

Note on rule 4: SELL deliberately compares -DI against ``plus_di_threshold``
and +DI against ``minus_di_threshold``. Existing strategy configurations are
tuned against this behaviour, so it is kept as is.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping
from typing import Any, Protocol

import pydantic

from apps.order_engine.schemas import OrderSide, Signal, SignalValidation

logger = logging.getLogger(__name__)

REASON_MISSING_DATA = "missing required signal data"
REASON_ADX_BELOW_MINIMUM = "ADX below minimum"


class SignalThresholds(Protocol):
    """Subset of the strategy configuration the validator reads."""

    adx_minimum: float
    plus_di_threshold: float
    minus_di_threshold: float


def _coerce_signal(signal: Signal | Mapping[str, Any]) -> Signal | None:
    if isinstance(signal, Signal):
        return signal
    try:
        return Signal.model_validate(dict(signal))
    except pydantic.ValidationError:
        return None


def _is_number(value: float | None) -> bool:
    return value is not None and not math.isnan(value)


def validate_signal(
    signal: Signal | Mapping[str, Any], config: SignalThresholds
) -> SignalValidation:
    """Decide whether a signal justifies opening a position.

    Args:
        signal: Parsed signal or raw payload (``plusDI``/``minusDI`` spellings
            accepted)
        config: Thresholds (``adx_minimum``, ``plus_di_threshold``,
            ``minus_di_threshold``)

    Returns:
        SignalValidation with ``valid`` and either ``action`` or ``reason``

    Examples:
        >>> cfg = StrategyConfig(adx_minimum=20, plus_di_threshold=25, minus_di_threshold=20)
        >>> validate_signal({"adx": 25, "plusDI": 30, "minusDI": 10}, cfg)
        SignalValidation(valid=True, action=<OrderSide.BUY: 'BUY'>, reason=None)
        >>> validate_signal({"adx": 15, "plusDI": 30, "minusDI": 10}, cfg).reason
        'ADX below minimum'
    """
    parsed = _coerce_signal(signal)
    if parsed is None or not all(
        _is_number(value) for value in (parsed.plus_di, parsed.minus_di, parsed.adx)
    ):
        return SignalValidation(valid=False, reason=REASON_MISSING_DATA)

    # Narrowed above; locals keep the comparisons readable.
    plus_di = float(parsed.plus_di)  # type: ignore[arg-type]
    minus_di = float(parsed.minus_di)  # type: ignore[arg-type]
    adx = float(parsed.adx)  # type: ignore[arg-type]

    adx_minimum = float(config.adx_minimum)
    plus_threshold = float(config.plus_di_threshold)
    minus_threshold = float(config.minus_di_threshold)

    if adx < adx_minimum:
        return SignalValidation(valid=False, reason=REASON_ADX_BELOW_MINIMUM)

    if plus_di > plus_threshold and minus_di < minus_threshold:
        return SignalValidation(valid=True, action=OrderSide.BUY)

    if minus_di > plus_threshold and plus_di < minus_threshold:
        return SignalValidation(valid=True, action=OrderSide.SELL)

    reason = (
        "Signal does not meet criteria for BUY or SELL. "
        f"Values: +DI={plus_di}, -DI={minus_di}, ADX={adx}; "
        f"Thresholds: +DI={plus_threshold}, -DI={minus_threshold}, ADX={adx_minimum}"
    )
    logger.debug(
        "Signal rejected",
        extra={"plus_di": plus_di, "minus_di": minus_di, "adx": adx},
    )
    return SignalValidation(valid=False, reason=reason)
