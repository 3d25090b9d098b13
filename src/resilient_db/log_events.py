"""
Structured log lines keyed by a category such as ``db/query``.
"""

import logging
from typing import Any, Dict, Union

LoggerLike = Union[logging.Logger, logging.LoggerAdapter]


def log_event(log: LoggerLike, level: int, category: str, fields: Dict[str, Any]) -> None:
    """
    Emit one structured log line.

    The category and field mapping are rendered in the message and also
    attached as ``db_event`` / ``db_fields`` record attributes for handlers
    that ship structured records.
    """
    log.log(
        level,
        "%s: %s",
        category,
        fields,
        extra={"db_event": category, "db_fields": fields},
    )
