"""
SQLite adapter built on aiosqlite.

Used for embedded deployments and local testing. MySQL-flavoured statements
from the query helpers are accepted: backtick identifiers work natively and
``INSERT INTO t SET ?`` is rewritten to the column-list form.
"""

import logging
import re
import sqlite3
from pathlib import Path
from typing import Any, Mapping

import aiosqlite

from resilient_db.config import DatabaseConfig
from resilient_db.driver import (
    Args,
    DriverAdapter,
    ResultSet,
    expand_object_placeholder,
    normalize_args,
)
from resilient_db.query_builder import quote_identifier

logger = logging.getLogger(__name__)

MEMORY_DATABASE = ":memory:"

_INSERT_SET = re.compile(
    r"^\s*(INSERT\s+(?:OR\s+\w+\s+)?INTO\s+\S+)\s+SET\s+\?\s*;?\s*$",
    re.IGNORECASE | re.DOTALL,
)

_LOST_CONNECTION_MESSAGES = (
    "unable to open database",
    "disk i/o error",
)


class SQLiteDriver(DriverAdapter):
    """aiosqlite connections in autocommit mode with dict rows."""

    name = "sqlite"

    async def create_connection(self, config: DatabaseConfig) -> Any:
        db_path = config.database or MEMORY_DATABASE

        # Ensure database directory exists
        if db_path != MEMORY_DATABASE and not db_path.startswith("file:"):
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        return await aiosqlite.connect(
            db_path,
            timeout=config.acquire_timeout_seconds,
            isolation_level=None,
        )

    async def execute(self, connection: Any, sql: str, args: Args = None) -> ResultSet:
        sql, params = self._prepare(sql, args)

        cursor = await connection.execute(sql, params)
        try:
            columns = None
            rows = []
            if cursor.description:
                columns = [column[0] for column in cursor.description]
                rows = [dict(zip(columns, row)) for row in await cursor.fetchall()]

            return ResultSet(
                rows,
                columns=columns,
                last_insert_id=cursor.lastrowid,
                affected_rows=max(cursor.rowcount, 0),
            )
        finally:
            await cursor.close()

    def _prepare(self, sql: str, args: Args):
        args = normalize_args(args)
        if isinstance(args, Mapping):
            match = _INSERT_SET.match(sql)
            if match:
                if not args:
                    raise ValueError("SET ? requires at least one field")
                columns = ", ".join(quote_identifier(column) for column in args)
                marks = ", ".join("?" for _ in args)
                return f"{match.group(1)} ({columns}) VALUES ({marks})", list(args.values())
        return expand_object_placeholder(sql, args)

    async def close_connection(self, connection: Any) -> None:
        try:
            await connection.close()
        except Exception as e:
            logger.debug(f"Error closing SQLite connection: {e}")

    def is_connection_error(self, exc: BaseException) -> bool:
        if isinstance(exc, sqlite3.OperationalError):
            message = str(exc).lower()
            return any(text in message for text in _LOST_CONNECTION_MESSAGES)
        if isinstance(exc, ValueError):
            # aiosqlite raises ValueError once the connection thread is gone
            message = str(exc).lower()
            return "connection" in message
        return isinstance(exc, (ConnectionError, OSError))
