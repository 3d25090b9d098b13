"""
resilient_db Test Utilities

Scriptable in-memory driver and result builders shared by the test suite.
"""

from .fake_driver import (
    FakeConnection,
    FakeConnectionLost,
    FakeDriver,
    FakeQueryError,
    empty_rows,
    fast_config,
    rows,
    write_result,
)

__all__ = [
    "FakeConnection",
    "FakeConnectionLost",
    "FakeDriver",
    "FakeQueryError",
    "empty_rows",
    "fast_config",
    "rows",
    "write_result",
]
