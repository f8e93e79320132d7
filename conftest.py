"""
Root conftest for all tests.

Resets process-wide state between tests:
- the cached engine configuration (parsed from the environment once)
- the logging trace ID context variable
"""

import pytest

from apps.order_engine import config as engine_config
from libs.common.logging import clear_trace_id


@pytest.fixture(autouse=True)
def _reset_process_state():
    """Give every test a fresh config cache and no bound trace ID."""
    engine_config._engine_config = None
    clear_trace_id()
    yield
    engine_config._engine_config = None
    clear_trace_id()
