"""Trace ID propagation for correlating log lines of a single unit of work.

A trace ID is a UUIDv4 string held in a context variable. Scheduler ticks
open a fresh trace scope so every log line emitted while processing one
tick (including lines from concurrently gathered tasks, which copy the
context) shares the same ID.

Example:
    >>> with trace_scope() as trace_id:
    ...     get_trace_id() == trace_id
    True
    >>> get_trace_id() is None
    True
"""

import contextvars
import uuid
from collections.abc import Iterator
from contextlib import contextmanager

_trace_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar("trace_id", default=None)


def generate_trace_id() -> str:
    """Generate a new unique trace ID (UUID v4 string)."""
    return str(uuid.uuid4())


def get_trace_id() -> str | None:
    """Return the trace ID of the current context, or None."""
    return _trace_id_var.get()


def set_trace_id(trace_id: str) -> None:
    """Set the trace ID for the current context.

    Raises:
        ValueError: If trace_id is empty
    """
    if not trace_id:
        raise ValueError("Trace ID cannot be empty")
    _trace_id_var.set(trace_id)


def clear_trace_id() -> None:
    _trace_id_var.set(None)


@contextmanager
def trace_scope(trace_id: str | None = None) -> Iterator[str]:
    """Bind a trace ID for the duration of the block and restore the previous one.

    Args:
        trace_id: ID to bind; a new one is generated when omitted

    Yields:
        The bound trace ID
    """
    bound = trace_id or generate_trace_id()
    token = _trace_id_var.set(bound)
    try:
        yield bound
    finally:
        _trace_id_var.reset(token)
