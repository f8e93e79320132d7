"""Common utilities and exceptions."""

from libs.common.exceptions import (
    ConfigurationError,
    NotFoundError,
    RemoteUnavailableError,
    TradingPlatformError,
    UnmappedRemoteStatus,
    ValidationError,
)

__all__ = [
    "TradingPlatformError",
    "ValidationError",
    "NotFoundError",
    "RemoteUnavailableError",
    "UnmappedRemoteStatus",
    "ConfigurationError",
]
