"""
Custom exceptions for resilient database access.
"""


class DatabaseError(Exception):
    """Base exception for all resilient_db errors."""
    pass


class DatabaseClosedError(DatabaseError):
    """Raised when using a Database after close()."""
    pass


class PoolError(DatabaseError):
    """Base exception for pool-related errors."""
    pass


class PoolExhaustedError(PoolError):
    """Raised when the pool cannot provide a connection within the acquire timeout."""
    pass


class PoolClosedError(PoolError, DatabaseClosedError):
    """Raised when attempting to use a closed pool."""
    pass


class ConnectionAcquireError(DatabaseError):
    """Raised when establishing a connection fails or times out."""
    pass


class StaleConnectionError(DatabaseError):
    """Raised when a handle is used after release or after its connection failed."""
    pass


class RetryBudgetExhaustedError(DatabaseError):
    """
    Raised once the connection retry budget is spent.

    This is fatal for the whole Database instance, not just the current call:
    no further connection attempts will be made. The query helpers never
    swallow it.
    """

    def __init__(self, attempts: int, max_attempts: int):
        super().__init__(
            f"Maximum connection attempts reached ({attempts}/{max_attempts})"
        )
        self.attempts = attempts
        self.max_attempts = max_attempts


class UidSpaceExhaustedError(DatabaseError):
    """Raised when uid_table cannot find a free ID within its draw cap."""
    pass
