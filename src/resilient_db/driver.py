"""
Driver adapter interface.

The database wire protocol belongs to an external async driver. Each adapter
exposes the same small surface: connect, execute a parameterized statement,
close, and classify an exception as connection-level or not. Pooling is
provided by ConnectionPool on top of ``create_connection``.
"""

import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from resilient_db.config import DatabaseConfig
from resilient_db.query_builder import assignment_list

logger = logging.getLogger(__name__)

Args = Union[Sequence[Any], Mapping[str, Any], None]

_SET_OBJECT = re.compile(r"\bSET\s+\?", re.IGNORECASE)


class ResultSet(list):
    """
    Rows returned by one statement.

    Attributes:
        columns: Column names, or None for statements that return no row set
        last_insert_id: Driver-reported ID of the last inserted row
        affected_rows: Rows changed by a write statement
    """

    def __init__(
        self,
        rows: Iterable[dict] = (),
        columns: Optional[List[str]] = None,
        last_insert_id: Optional[int] = None,
        affected_rows: int = 0,
    ):
        super().__init__(rows)
        self.columns = columns
        self.last_insert_id = last_insert_id
        self.affected_rows = affected_rows

    @property
    def returns_rows(self) -> bool:
        return self.columns is not None


def normalize_args(args: Args) -> Union[List[Any], Mapping[str, Any]]:
    if args is None:
        return []
    if isinstance(args, Mapping):
        return args
    if isinstance(args, (str, bytes)):
        return [args]
    return list(args)


def expand_object_placeholder(sql: str, args: Args) -> Tuple[str, Union[List[Any], Mapping[str, Any]]]:
    """
    Expand ``SET ?`` with a field->value mapping into an assignment list.

    ``UPDATE `t` SET ?`` with ``{"a": 1, "b": 2}`` becomes
    ``UPDATE `t` SET `a` = ?, `b` = ?`` with ``[1, 2]``. Statements without
    an object placeholder pass through unchanged.
    """
    args = normalize_args(args)
    if isinstance(args, Mapping) and _SET_OBJECT.search(sql):
        if not args:
            raise ValueError("SET ? requires at least one field")
        sql = _SET_OBJECT.sub(lambda _: "SET " + assignment_list(args.keys()), sql, count=1)
        return sql, list(args.values())
    return sql, args


class DriverAdapter(ABC):
    """Capability surface consumed from an async database driver."""

    name = "abstract"

    @abstractmethod
    async def create_connection(self, config: DatabaseConfig) -> Any:
        """Open one physical connection."""

    @abstractmethod
    async def execute(self, connection: Any, sql: str, args: Args = None) -> ResultSet:
        """Run one statement with ``?``/``:name``/``SET ?`` placeholders."""

    @abstractmethod
    async def close_connection(self, connection: Any) -> None:
        """Close a connection; must not raise for an already-broken one."""

    @abstractmethod
    def is_connection_error(self, exc: BaseException) -> bool:
        """True when ``exc`` means the connection itself is unusable."""

    async def ping(self, connection: Any) -> bool:
        """
        Validate connection is still usable.
        Executes a simple query to verify connection health.

        Returns:
            True if connection is valid, False otherwise
        """
        try:
            await self.execute(connection, "SELECT 1")
            return True
        except Exception as e:
            logger.warning(f"Connection validation failed: {e}")
            return False

    def create_pool(self, config: DatabaseConfig):
        from resilient_db.pool import ConnectionPool

        return ConnectionPool(self, config)


def get_driver(name: str) -> DriverAdapter:
    """
    Look up a driver adapter by configuration name.

    Raises:
        ValueError: For an unknown driver name
    """
    if name == "mysql":
        from resilient_db.drivers.mysql import MySQLDriver
        return MySQLDriver()
    if name == "sqlite":
        from resilient_db.drivers.sqlite import SQLiteDriver
        return SQLiteDriver()
    raise ValueError(f"Unknown database driver: {name}")
