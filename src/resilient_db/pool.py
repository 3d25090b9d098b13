"""
Bounded connection pool on top of a driver adapter.
"""

import asyncio
import logging
import time
from typing import Any, Optional, Set

from resilient_db.config import DatabaseConfig
from resilient_db.exceptions import ConnectionAcquireError, PoolClosedError, PoolExhaustedError
from resilient_db.pool_metrics import PoolMetrics, PoolStats

logger = logging.getLogger(__name__)


class ConnectionPool:
    """
    Manages a pool of driver connections bounded by ``connection_limit``.

    Connections are opened lazily on demand and reused once released. When
    the pool is full, callers wait for a free connection (unless
    ``wait_for_connections`` is off), with at most ``queue_limit`` waiters
    (0 = unbounded) and for at most ``acquire_timeout``.

    Attributes:
        driver: DriverAdapter used to open and close connections
        config: DatabaseConfig with the pool tunables
        _idle: Queue of released connections; ``None`` entries mark a freed slot
        _free_markers: Number of ``None`` entries currently queued
        _in_use: Connections currently handed out
        _metrics: PoolMetrics instance for tracking statistics
    """

    def __init__(self, driver, config: DatabaseConfig):
        self.driver = driver
        self.config = config
        self._idle: asyncio.Queue = asyncio.Queue()
        self._in_use: Set[Any] = set()
        self._total_connections = 0
        self._waiting = 0
        self._free_markers = 0
        self._metrics = PoolMetrics()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def acquire(self) -> Any:
        """
        Acquire a connection from the pool.

        Returns:
            A raw driver connection, exclusively owned until released

        Raises:
            ConnectionAcquireError: If opening a new connection fails or times out
            PoolExhaustedError: If no connection frees up in time, waiting is
                disabled, or the wait queue is full
            PoolClosedError: If pool has been closed
        """
        loop = asyncio.get_running_loop()
        start_time = loop.time()
        deadline = start_time + self.config.acquire_timeout_seconds

        while True:
            if self._closed:
                raise PoolClosedError("Cannot acquire connection from closed pool")

            connection = self._take_idle()

            if connection is not None:
                # Parked connections may have died while idle (server restart)
                self._in_use.add(connection)
                if not await self.driver.ping(connection):
                    await self.discard(connection)
                    continue
            elif self._total_connections < self.config.connection_limit:
                connection = await self._open_connection()
            else:
                connection = await self._wait_for_idle(deadline - loop.time())
                if connection is None:
                    # A slot was freed or the pool closed; re-evaluate
                    continue

            self._in_use.add(connection)
            wait_time = loop.time() - start_time
            self._metrics.record_acquisition(wait_time)
            logger.debug(f"Connection acquired (wait time: {wait_time:.3f}s)")
            return connection

    def _take_idle(self) -> Optional[Any]:
        while True:
            try:
                connection = self._idle.get_nowait()
            except asyncio.QueueEmpty:
                return None
            if connection is not None:
                return connection
            self._free_markers -= 1

    async def _open_connection(self) -> Any:
        # Reserve the slot before the first suspension point
        self._total_connections += 1
        timeout = self.config.acquire_timeout_seconds

        try:
            connection = await asyncio.wait_for(
                self.driver.create_connection(self.config),
                timeout=timeout
            )
        except asyncio.TimeoutError as e:
            self._total_connections -= 1
            self._metrics.record_timeout()
            raise ConnectionAcquireError(f"Timed out opening connection after {timeout}s") from e
        except Exception as e:
            self._total_connections -= 1
            self._metrics.record_error()
            raise ConnectionAcquireError(f"Failed to create connection: {e}") from e
        except BaseException:
            self._total_connections -= 1
            raise

        self._metrics.record_connection_created()

        if self._closed:
            self._total_connections -= 1
            await self.driver.close_connection(connection)
            raise PoolClosedError("Pool closed while opening connection")

        logger.debug(f"Created new connection (total: {self._total_connections})")
        return connection

    async def _wait_for_idle(self, remaining: float) -> Optional[Any]:
        if not self.config.wait_for_connections:
            raise PoolExhaustedError(
                f"No connections available (limit={self.config.connection_limit})"
            )

        if self.config.queue_limit and self._waiting >= self.config.queue_limit:
            raise PoolExhaustedError(f"Queue limit reached ({self.config.queue_limit})")

        if remaining <= 0:
            self._metrics.record_timeout()
            raise PoolExhaustedError(self._exhausted_message())

        self._waiting += 1
        try:
            connection = await asyncio.wait_for(self._idle.get(), timeout=remaining)
            if connection is None:
                self._free_markers -= 1
            return connection
        except asyncio.TimeoutError:
            self._metrics.record_timeout()
            logger.warning(
                f"Pool exhausted: {len(self._in_use)} active, "
                f"{self._waiting} waiting, {self.config.connection_limit} max"
            )
            raise PoolExhaustedError(self._exhausted_message())
        finally:
            self._waiting -= 1

    def _mark_free_slot(self) -> None:
        self._free_markers += 1
        self._idle.put_nowait(None)

    def _idle_count(self) -> int:
        return self._idle.qsize() - self._free_markers

    def _exhausted_message(self) -> str:
        return (
            f"No connection available within {self.config.acquire_timeout_seconds}s. "
            f"Pool stats: active={len(self._in_use)}, "
            f"idle={self._idle_count()}, max={self.config.connection_limit}"
        )

    async def release(self, connection: Any) -> None:
        """
        Return a healthy connection to the pool.

        Args:
            connection: The connection to return
        """
        was_active = connection in self._in_use
        self._in_use.discard(connection)
        self._metrics.record_release()

        if self._closed:
            if was_active:
                self._total_connections -= 1
                await self.driver.close_connection(connection)
            return

        self._idle.put_nowait(connection)
        logger.debug("Connection returned to pool")

    async def discard(self, connection: Any) -> None:
        """
        Drop a broken connection and free its slot.

        Args:
            connection: The connection that failed
        """
        if connection not in self._in_use:
            return
        self._in_use.discard(connection)
        self._metrics.record_discard()
        self._total_connections -= 1

        # Wake one waiter so it can open a replacement
        if self._waiting:
            self._mark_free_slot()

        logger.warning("Broken connection discarded from pool")
        await self.driver.close_connection(connection)

    async def close(self, timeout: float = 10.0) -> None:
        """
        Close all connections and shut down the pool.
        Waits for active operations to complete.

        Args:
            timeout: Maximum time to wait for in-use connections
        """
        if self._closed:
            return

        logger.info("Closing connection pool")
        self._closed = True

        for _ in range(self._waiting):
            self._mark_free_slot()

        await self._wait_for_active_operations(timeout)
        await self._close_all_connections()

        logger.info("Connection pool closed")

    async def _wait_for_active_operations(self, timeout: float) -> None:
        start_time = time.time()

        while self._in_use:
            if time.time() - start_time > timeout:
                logger.warning(
                    f"Timeout waiting for active operations "
                    f"({len(self._in_use)} still active)"
                )
                break

            await asyncio.sleep(0.1)

    async def _close_all_connections(self) -> None:
        for connection in list(self._in_use):
            await self.driver.close_connection(connection)
        self._in_use.clear()

        while True:
            connection = self._take_idle()
            if connection is None:
                break
            await self.driver.close_connection(connection)

        self._total_connections = 0

    async def get_stats(self) -> PoolStats:
        """
        Get current pool statistics.

        Returns:
            PoolStats with current metrics
        """
        return PoolStats(
            active_connections=len(self._in_use),
            idle_connections=self._idle_count(),
            total_connections=self._total_connections,
            connection_limit=self.config.connection_limit,
            waiting_requests=self._waiting,
            total_created=self._metrics.total_connections_created,
            total_timeouts=self._metrics.total_timeouts,
            average_wait_time=self._metrics.get_average_wait_time(),
            total_acquisitions=self._metrics.total_acquisitions,
            total_releases=self._metrics.total_releases,
            total_discarded=self._metrics.total_discarded,
            total_errors=self._metrics.total_errors,
        )
