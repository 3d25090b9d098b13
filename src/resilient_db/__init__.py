"""
Resilient connection and query management over an async database driver.

This package keeps a working pool (or single connection) alive across
transient network and server failures, bounds reconnection with a retry
budget, and exposes a small set of query helpers that never crash the host.
"""

from resilient_db.exceptions import (
    DatabaseError,
    DatabaseClosedError,
    PoolError,
    PoolExhaustedError,
    PoolClosedError,
    ConnectionAcquireError,
    StaleConnectionError,
    RetryBudgetExhaustedError,
    UidSpaceExhaustedError,
)
from resilient_db.config import DatabaseConfig
from resilient_db.driver import DriverAdapter, ResultSet, get_driver
from resilient_db.retry import RetryBudget
from resilient_db.connection import ConnectionHandle
from resilient_db.pool import ConnectionPool
from resilient_db.pool_metrics import PoolMetrics, PoolStats
from resilient_db.strategies import (
    ConnectionStrategy,
    PooledStrategy,
    SingleConnectionStrategy,
    create_strategy,
)
from resilient_db.database import (
    Database,
    init_database,
    get_database,
    close_database,
)

__version__ = "0.1.0"

__all__ = [
    "DatabaseError",
    "DatabaseClosedError",
    "PoolError",
    "PoolExhaustedError",
    "PoolClosedError",
    "ConnectionAcquireError",
    "StaleConnectionError",
    "RetryBudgetExhaustedError",
    "UidSpaceExhaustedError",
    "DatabaseConfig",
    "DriverAdapter",
    "ResultSet",
    "get_driver",
    "RetryBudget",
    "ConnectionHandle",
    "ConnectionPool",
    "PoolMetrics",
    "PoolStats",
    "ConnectionStrategy",
    "PooledStrategy",
    "SingleConnectionStrategy",
    "create_strategy",
    "Database",
    "init_database",
    "get_database",
    "close_database",
]
