"""
MySQL adapter built on aiomysql.
"""

import asyncio
import logging
import re
from typing import Any

import aiomysql
import pymysql

from resilient_db.config import DatabaseConfig
from resilient_db.driver import Args, DriverAdapter, ResultSet, expand_object_placeholder

logger = logging.getLogger(__name__)

# MySQL client error codes that mean the link itself is gone
CR_CONNECTION_ERROR = 2002
CR_CONN_HOST_ERROR = 2003
CR_SERVER_GONE_ERROR = 2006
CR_SERVER_LOST = 2013
CR_SERVER_LOST_EXTENDED = 2055

CONNECTION_ERROR_CODES = frozenset({
    CR_CONNECTION_ERROR,
    CR_CONN_HOST_ERROR,
    CR_SERVER_GONE_ERROR,
    CR_SERVER_LOST,
    CR_SERVER_LOST_EXTENDED,
})

# quoted strings and identifiers are matched whole so placeholders inside them survive
_TOKEN = re.compile(
    r"'(?:[^'\\]|\\.)*'"
    r'|"(?:[^"\\]|\\.)*"'
    r"|`[^`]*`"
    r"|\?"
    r"|(?<![:\w]):[A-Za-z_]\w*"
    r"|%",
    re.DOTALL,
)


def to_pyformat(sql: str) -> str:
    """
    Rewrite ``?`` and ``:name`` placeholders into PyMySQL's pyformat style.

    Literal ``%`` signs are doubled because PyMySQL interpolates with ``%``.
    """
    def replace(match: "re.Match") -> str:
        token = match.group(0)
        if token == "?":
            return "%s"
        if token == "%":
            return "%%"
        if token.startswith(":"):
            return f"%({token[1:]})s"
        return token.replace("%", "%%")

    return _TOKEN.sub(replace, sql)


class MySQLDriver(DriverAdapter):
    """aiomysql connections with autocommit and dict rows."""

    name = "mysql"

    async def create_connection(self, config: DatabaseConfig) -> Any:
        return await aiomysql.connect(
            host=config.host,
            port=config.port,
            user=config.user,
            password=config.password or "",
            db=config.database,
            charset=config.charset,
            autocommit=True,
            connect_timeout=config.acquire_timeout_seconds,
        )

    async def execute(self, connection: Any, sql: str, args: Args = None) -> ResultSet:
        sql, params = expand_object_placeholder(sql, args)
        if params:
            sql = to_pyformat(sql)
            query_args = params if isinstance(params, dict) else tuple(params)
        else:
            query_args = None

        async with connection.cursor(aiomysql.DictCursor) as cursor:
            await cursor.execute(sql, query_args)

            columns = None
            rows = []
            if cursor.description:
                columns = [column[0] for column in cursor.description]
                rows = await cursor.fetchall()

            return ResultSet(
                rows,
                columns=columns,
                last_insert_id=cursor.lastrowid,
                affected_rows=max(cursor.rowcount, 0),
            )

    async def ping(self, connection: Any) -> bool:
        if connection.closed:
            return False
        try:
            await connection.ping(reconnect=False)
            return True
        except Exception as e:
            logger.warning(f"MySQL connection validation failed: {e}")
            return False

    async def close_connection(self, connection: Any) -> None:
        if connection.closed:
            return
        try:
            connection.close()
        except Exception as e:
            logger.debug(f"Error closing MySQL connection: {e}")

    def is_connection_error(self, exc: BaseException) -> bool:
        if isinstance(exc, pymysql.err.OperationalError):
            return bool(exc.args) and exc.args[0] in CONNECTION_ERROR_CODES
        return isinstance(exc, (
            pymysql.err.InterfaceError,
            asyncio.IncompleteReadError,
            ConnectionError,
            OSError,
        ))
