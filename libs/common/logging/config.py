"""Logging setup shared by the order engine entry points.

Example:
    >>> from libs.common.logging import configure_logging
    >>> logger = configure_logging(service_name="order_engine", log_level="INFO")
    >>> logger.info("Engine started", extra={"simulation_interval": 60})
"""

import logging
import sys

from libs.common.logging.context import get_trace_id
from libs.common.logging.formatter import JSONFormatter


class TraceIDFilter(logging.Filter):
    """Inject the current trace ID into every record passing through a handler."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.trace_id = get_trace_id()
        return True


def configure_logging(
    service_name: str,
    log_level: str = "INFO",
    include_context: bool = True,
) -> logging.Logger:
    """Configure structured JSON logging on the root logger.

    Should be called once at process startup. Existing root handlers are
    removed so repeated calls do not duplicate output.

    Args:
        service_name: Name recorded in every log line
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        include_context: Whether to emit the context dict

    Returns:
        The configured root logger

    Raises:
        ValueError: If log_level is invalid
    """
    numeric_level = getattr(logging, log_level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {log_level}")

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)
    handler.setFormatter(JSONFormatter(service_name=service_name, include_context=include_context))
    handler.addFilter(TraceIDFilter())
    root_logger.addHandler(handler)

    # httpx logs every request at INFO; keep tick logs readable.
    logging.getLogger("httpx").setLevel(max(numeric_level, logging.WARNING))

    return root_logger
