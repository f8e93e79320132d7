"""Structured logging for the order engine.

Usage:
    # At process startup
    from libs.common.logging import configure_logging
    configure_logging(service_name="order_engine", log_level="INFO")

    # Around a unit of work
    from libs.common.logging import trace_scope
    with trace_scope():
        logger.info("Tick started")
"""

from libs.common.logging.config import TraceIDFilter, configure_logging
from libs.common.logging.context import (
    clear_trace_id,
    generate_trace_id,
    get_trace_id,
    set_trace_id,
    trace_scope,
)
from libs.common.logging.formatter import JSONFormatter

__all__ = [
    "configure_logging",
    "TraceIDFilter",
    "generate_trace_id",
    "get_trace_id",
    "set_trace_id",
    "clear_trace_id",
    "trace_scope",
    "JSONFormatter",
]
