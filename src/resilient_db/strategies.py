"""
Connection acquisition strategies.

Two strategies sit behind one interface and share the same RetryBudget:

* PooledStrategy hands out connections from a lazily created pool.
* SingleConnectionStrategy shares one long-lived connection and reconnects
  in the background when it fails.

Both either return a handle ready for one query/release cycle or keep
retrying within the budget; once the budget is spent they raise
RetryBudgetExhaustedError instead of attempting another connection.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

from resilient_db import observability
from resilient_db.config import DatabaseConfig
from resilient_db.connection import ConnectionHandle
from resilient_db.exceptions import (
    ConnectionAcquireError,
    DatabaseClosedError,
    RetryBudgetExhaustedError,
)
from resilient_db.log_events import LoggerLike, log_event
from resilient_db.pool_metrics import PoolStats
from resilient_db.retry import RetryBudget

logger = logging.getLogger(__name__)


def _error_code(error: BaseException) -> Optional[Any]:
    source = error.__cause__ or error
    code = getattr(source, "errno", None)
    if code is None and source.args and isinstance(source.args[0], int):
        code = source.args[0]
    return code


class ConnectionStrategy(ABC):
    """Common state for acquisition strategies."""

    name = "abstract"

    def __init__(
        self,
        config: DatabaseConfig,
        driver,
        budget: RetryBudget,
        log: Optional[LoggerLike] = None,
    ):
        self.config = config
        self.driver = driver
        self.budget = budget
        self.log = log or logger

    @abstractmethod
    async def acquire(self) -> ConnectionHandle:
        """
        Raises:
            RetryBudgetExhaustedError: If no connection attempt is permitted
        """

    @abstractmethod
    async def close(self) -> None:
        """Tear down connections owned by this strategy."""

    async def get_stats(self) -> Optional[PoolStats]:
        return None

    def _record_failure(self, text: str, error: BaseException, attempt: int) -> None:
        log_event(self.log, logging.ERROR, "db/connect", {
            "msg": str(error),
            "code": _error_code(error),
            "text": text,
            "attempts": attempt,
        })
        observability.record_connection_failure(self.name, attempt)

    async def _count_failure(self, text: str, error: BaseException) -> None:
        """Spend one attempt, then raise if the budget is gone or back off."""
        attempt = self.budget.attempt()
        self._record_failure(text, error, attempt)
        self.budget.ensure_available()
        await self.budget.backoff(attempt)


class PooledStrategy(ConnectionStrategy):
    """Connections leased from a pool created on first acquisition."""

    name = "pool"

    def __init__(self, config, driver, budget, log=None):
        super().__init__(config, driver, budget, log)
        self._pool = None

    @property
    def pool(self):
        return self._pool

    def _ensure_pool(self):
        # No suspension point between check and assignment
        if self._pool is None:
            self._pool = self.driver.create_pool(self.config)
            logger.debug(f"Created {self.driver.name} pool (limit={self.config.connection_limit})")
        return self._pool

    async def acquire(self) -> ConnectionHandle:
        while True:
            self.budget.ensure_available()
            pool = self._ensure_pool()

            try:
                connection = await pool.acquire()
            except ConnectionAcquireError as e:
                await self._count_failure("Error acquiring connection", e)
                continue

            return ConnectionHandle(
                self.driver,
                connection,
                on_release=self._release,
                on_error=self._on_connection_error,
            )

    async def _on_connection_error(self, handle: ConnectionHandle, error: BaseException) -> None:
        # The connection is abandoned; the next acquisition gets a fresh one
        attempt = self.budget.attempt()
        self._record_failure("Connection lost, discarding", error, attempt)
        if not self.budget.exhausted():
            await self.budget.backoff(attempt)

    async def _release(self, handle: ConnectionHandle) -> None:
        if handle.broken:
            await self._pool.discard(handle.connection)
        else:
            await self._pool.release(handle.connection)

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()

    async def get_stats(self) -> Optional[PoolStats]:
        if self._pool is None:
            return None
        return await self._pool.get_stats()


class SingleConnectionStrategy(ConnectionStrategy):
    """
    One shared, lazily established connection.

    Use of the connection is serialized: the lock is taken on acquire and
    given back on release. A connection-level error schedules a background
    reconnection; a successful reconnection resets the retry budget.
    """

    name = "single"

    def __init__(self, config, driver, budget, log=None):
        super().__init__(config, driver, budget, log)
        self._connection = None
        self._lock = asyncio.Lock()
        self._reconnect_task: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def connection(self):
        return self._connection

    @property
    def reconnecting(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    async def acquire(self) -> ConnectionHandle:
        await self._lock.acquire()
        try:
            if self.reconnecting:
                try:
                    await asyncio.shield(self._reconnect_task)
                except asyncio.CancelledError:
                    # close() cancels the reconnection; anything else is ours
                    if not self._closed:
                        raise

            if self._closed:
                raise DatabaseClosedError("Connection has been closed")

            self.budget.ensure_available()

            if self._connection is None:
                self._connection = await self._connect("Error on initial connection")

            return ConnectionHandle(
                self.driver,
                self._connection,
                on_release=self._release,
                on_error=self._on_connection_error,
            )
        except BaseException:
            self._lock.release()
            raise

    async def _connect(self, text: str) -> Any:
        timeout = self.config.acquire_timeout_seconds

        while True:
            self.budget.ensure_available()
            try:
                connection = await asyncio.wait_for(
                    self.driver.create_connection(self.config),
                    timeout=timeout
                )
            except Exception as e:
                await self._count_failure(text, e)
                continue

            self.budget.reset()
            return connection

    async def _on_connection_error(self, handle: ConnectionHandle, error: BaseException) -> None:
        if self._connection is handle.connection:
            self._connection = None

        if self.budget.exhausted():
            return

        attempt = self.budget.attempt()
        self._record_failure("Reconnecting", error, attempt)

        if self.budget.exhausted():
            return

        self._reconnect_task = asyncio.create_task(self._reconnect(handle.connection))

    async def _reconnect(self, stale: Any) -> None:
        await self.driver.close_connection(stale)
        await self.budget.backoff(self.budget.attempts)

        try:
            connection = await self._connect("Error during reconnection attempt")
        except RetryBudgetExhaustedError:
            logger.error("Reconnection abandoned, retry budget exhausted")
            return

        if self._closed:
            await self.driver.close_connection(connection)
            return

        self._connection = connection
        logger.info("Database connection re-established")

    async def _release(self, handle: ConnectionHandle) -> None:
        self._lock.release()

    async def close(self) -> None:
        self._closed = True

        if self.reconnecting:
            self._reconnect_task.cancel()
            try:
                await self._reconnect_task
            except asyncio.CancelledError:
                pass

        if self._connection is not None:
            await self.driver.close_connection(self._connection)
            self._connection = None


def create_strategy(
    config: DatabaseConfig,
    driver,
    budget: RetryBudget,
    log: Optional[LoggerLike] = None,
) -> ConnectionStrategy:
    """
    Select the acquisition strategy named by ``config.strategy``.

    Raises:
        ValueError: For an unknown strategy name
    """
    if config.strategy == "pool":
        return PooledStrategy(config, driver, budget, log)
    if config.strategy == "single":
        return SingleConnectionStrategy(config, driver, budget, log)
    raise ValueError(f"Unknown connection strategy: {config.strategy}")
