"""
SQL assembly for the insert/update/unique-ID helpers.
"""

from typing import Any, List, Mapping, Tuple


def quote_identifier(name: str) -> str:
    """Backtick-quote an identifier, doubling embedded backticks."""
    if not isinstance(name, str) or not name:
        raise ValueError(f"Invalid SQL identifier: {name!r}")
    return "`" + name.replace("`", "``") + "`"


def assignment_list(columns, separator: str = ", ") -> str:
    return separator.join(f"{quote_identifier(column)} = ?" for column in columns)


def build_insert(table: str, data: Mapping[str, Any]) -> Tuple[str, Mapping[str, Any]]:
    """
    Returns:
        ("INSERT INTO `table` SET ?", data); the driver expands the object
    """
    if not data:
        raise ValueError("insert requires at least one column")
    return f"INSERT INTO {quote_identifier(table)} SET ?", data


def build_update(
    table: str,
    data: Mapping[str, Any],
    where: Mapping[str, Any],
) -> Tuple[str, List[Any]]:
    """
    Build a parameterized UPDATE.

    Parameters are ordered data values first, then where values, matching
    placeholder order.

    Raises:
        ValueError: If data or where is empty
    """
    if not data:
        raise ValueError("update requires at least one column to set")
    if not where:
        raise ValueError("update requires at least one where condition")

    sql = (
        f"UPDATE {quote_identifier(table)} "
        f"SET {assignment_list(data.keys())} "
        f"WHERE {assignment_list(where.keys(), ' AND ')}"
    )
    params = list(data.values()) + list(where.values())
    return sql, params


def build_exists(table: str, id_field: str) -> str:
    return (
        f"SELECT {quote_identifier(id_field)} FROM {quote_identifier(table)} "
        f"WHERE {quote_identifier(id_field)} = ?"
    )
