"""
Query façade over the connection strategies.

Every operation acquires a connection, runs its statement, and releases the
connection whatever happens. Failures are logged under a ``db/<operation>``
category and turned into ``None``; callers treat ``None`` as "failed, already
logged" or "nothing found". The one exception is RetryBudgetExhaustedError,
which always propagates so the host can decide whether to exit.
"""

import logging
import random
from collections.abc import Mapping
from typing import Any, Callable, Optional

from resilient_db import observability
from resilient_db.config import DatabaseConfig
from resilient_db.driver import Args, DriverAdapter, ResultSet, get_driver
from resilient_db.exceptions import (
    DatabaseError,
    RetryBudgetExhaustedError,
    UidSpaceExhaustedError,
)
from resilient_db.log_events import LoggerLike, log_event
from resilient_db.pool_metrics import PoolStats
from resilient_db.query_builder import build_exists, build_insert, build_update
from resilient_db.retry import RetryBudget
from resilient_db.strategies import create_strategy

logger = logging.getLogger(__name__)

# Largest signed 32-bit INT column value
MAX_INT_ID = 2147483647


class Database:
    """
    Resilient access to one database.

    Usage:
        db = Database(DatabaseConfig(host="db", user="app", database="shop"))
        row = await db.get_row("SELECT * FROM `users` WHERE `id` = ?", [5])
        await db.close()

    Args:
        config: Connection and retry parameters (defaults if omitted)
        driver: DriverAdapter override; chosen from ``config.driver`` otherwise
        logger: Logger collaborator for structured ``db/*`` events
        on_fatal: Called once when the retry budget is exhausted
    """

    def __init__(
        self,
        config: Optional[DatabaseConfig] = None,
        driver: Optional[DriverAdapter] = None,
        logger: Optional[LoggerLike] = None,
        on_fatal: Optional[Callable[[RetryBudgetExhaustedError], None]] = None,
    ):
        self.config = config or DatabaseConfig()
        self.config.validate()

        self.log = logger or logging.getLogger(__name__)
        self.driver = driver or get_driver(self.config.driver)
        self.budget = RetryBudget(
            self.config.max_attempts,
            backoff_step=self.config.retry_backoff_seconds,
            on_fatal=on_fatal,
            log=self.log,
        )
        self.strategy = create_strategy(self.config, self.driver, self.budget, self.log)

    async def _execute(self, sql: str, args: Args = None) -> ResultSet:
        handle = await self.strategy.acquire()
        try:
            if self.config.query_log:
                log_event(self.log, logging.DEBUG, "db/query", {"sql": sql, "args": args})
            async with observability.track_query():
                return await handle.query(sql, args)
        finally:
            await handle.release()

    def _log_failure(self, category: str, fields: dict, error: BaseException) -> None:
        log_event(self.log, logging.ERROR, category, {"args": fields, "msg": str(error)})
        observability.record_query_error(category)

    async def query(self, sql: str, args: Args = None) -> Optional[ResultSet]:
        """
        Execute a statement.

        Args:
            sql: Statement with ``?`` or ``:name`` placeholders
            args: Positional sequence or named mapping

        Returns:
            The ResultSet; None on failure or when a query matched no rows.
            Write statements return their (row-less) ResultSet carrying
            ``last_insert_id`` and ``affected_rows``.
        """
        try:
            result = await self._execute(sql, args)
        except RetryBudgetExhaustedError:
            raise
        except Exception as e:
            self._log_failure("db/query", {"sql": sql, "args": args}, e)
            return None

        if result.returns_rows and not result:
            return None
        return result

    async def get_row(self, sql: str, args: Args = None) -> Optional[dict]:
        """Return the first row, or None when there is none or the query failed."""
        result = await self.query(sql, args)
        if not result:
            return None
        return result[0]

    async def get_val(self, sql: str, args: Args = None) -> Any:
        """
        Return the first column of the first row.

        Falsy values such as 0, False or "" are returned as-is; None means no
        row, no column, SQL NULL, or failure.
        """
        row = await self.get_row(sql, args)
        if row is None:
            return None

        try:
            values = list(row.values()) if isinstance(row, Mapping) else list(row)
        except TypeError as e:
            self._log_failure("db/getVal", {"sql": sql, "args": args}, e)
            return None

        if not values:
            return None
        return values[0]

    async def insert(self, table: str, data: Mapping) -> Optional[int]:
        """
        Insert one row.

        Returns:
            The driver-reported last insert ID, or None on failure
        """
        try:
            sql, params = build_insert(table, data)
            result = await self._execute(sql, params)
        except RetryBudgetExhaustedError:
            raise
        except Exception as e:
            self._log_failure("db/insert", {"table": table, "data": data}, e)
            return None

        return result.last_insert_id

    async def update(self, table: str, data: Mapping, where: Mapping) -> Optional[int]:
        """
        Update rows matching every ``where`` condition.

        Returns:
            Affected row count, or None on failure (including an empty
            ``data`` or ``where``)
        """
        try:
            sql, params = build_update(table, data, where)
            result = await self._execute(sql, params)
        except RetryBudgetExhaustedError:
            raise
        except Exception as e:
            self._log_failure("db/update", {"table": table, "data": data, "where": where}, e)
            return None

        return result.affected_rows

    async def uid_table(
        self,
        table: str,
        id_field: str = "id",
        min_value: int = 10000,
        max_value: int = 0,
    ) -> Optional[int]:
        """
        Draw a random ID in [min_value, max_value] not yet used in ``table``.

        Rejection sampling: fine while the table is sparse relative to the
        range. The check and a later insert are not atomic.

        Args:
            table: Target table
            id_field: ID column name
            min_value: Lower bound, inclusive
            max_value: Upper bound, inclusive; 0 means 2147483647

        Returns:
            A free ID, or None if an existence check failed

        Raises:
            ValueError: If min_value exceeds max_value
            UidSpaceExhaustedError: If ``uid_max_draws`` draws all collided
        """
        if not max_value:
            max_value = MAX_INT_ID
        if min_value > max_value:
            raise ValueError(f"min_value {min_value} exceeds max_value {max_value}")

        fields = {"table": table, "id": id_field, "min": min_value, "max": max_value}

        try:
            sql = build_exists(table, id_field)
        except ValueError as e:
            self._log_failure("db/uidTable", fields, e)
            return None

        for _ in range(self.config.uid_max_draws):
            candidate = random.randint(min_value, max_value)
            try:
                result = await self._execute(sql, [candidate])
            except RetryBudgetExhaustedError:
                raise
            except Exception as e:
                self._log_failure("db/uidTable", fields, e)
                return None

            if not result:
                return candidate

        raise UidSpaceExhaustedError(
            f"No free {id_field} in `{table}` after {self.config.uid_max_draws} draws "
            f"in [{min_value}, {max_value}]"
        )

    async def get_stats(self) -> Optional[PoolStats]:
        """Pool statistics, or None in single-connection mode or before first use."""
        return await self.strategy.get_stats()

    async def close(self) -> None:
        """
        Tear down the pool or connection.

        Not safe to call while queries are still in flight.
        """
        await self.strategy.close()


# Global database instance
_database: Optional[Database] = None


async def init_database(config: Optional[DatabaseConfig] = None, **kwargs) -> Database:
    """
    Initialize the global database.
    Called during application startup.

    Args:
        config: Optional configuration. If None, loads from file.
        **kwargs: Passed to Database (driver, logger, on_fatal)

    Returns:
        The global Database instance
    """
    global _database

    if _database is not None:
        logger.warning("Database already initialized")
        return _database

    if config is None:
        config = DatabaseConfig.from_file()

    _database = Database(config, **kwargs)
    logger.info(f"Database initialized ({config.driver}, strategy={config.strategy})")
    return _database


def get_database() -> Database:
    """
    Raises:
        DatabaseError: If init_database() has not been called
    """
    if _database is None:
        raise DatabaseError("Database not initialized; call init_database() first")
    return _database


async def close_database() -> None:
    """
    Close the global database.
    Called during application shutdown.
    """
    global _database

    if _database is not None:
        await _database.close()
        _database = None
        logger.info("Database closed")
