"""
Storage error classification.

Connections let driver errors propagate unchanged. The persistence layer
passes them through ``report_database_error`` which classifies and logs
them, after which the caller re-raises the original exception. Nothing
here retries or swallows an error.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy import exc as sa_exc

from .exceptions import QueryError

logger = logging.getLogger(__name__)

_SQLSTATE_TYPES = {
    "23505": "UniqueConstraintViolation",
    "23503": "ForeignKeyViolation",
    "23502": "NotNullViolation",
    "23514": "CheckConstraintViolation",
    "42P01": "UndefinedTable",
    "42703": "UndefinedColumn",
    "42601": "SyntaxError",
}

# SQLite reports constraint failures through the message only.
_MESSAGE_PATTERNS = (
    (re.compile(r"UNIQUE constraint failed: (?P<table>\w+)\.(?P<column>\w+)", re.I), "UniqueConstraintViolation"),
    (re.compile(r"FOREIGN KEY constraint failed", re.I), "ForeignKeyViolation"),
    (re.compile(r"NOT NULL constraint failed: (?P<table>\w+)\.(?P<column>\w+)", re.I), "NotNullViolation"),
    (re.compile(r"CHECK constraint failed: ?(?P<constraint>\w+)?", re.I), "CheckConstraintViolation"),
    (re.compile(r"no such table: (?P<table>[\w.]+)", re.I), "UndefinedTable"),
    (re.compile(r"no such column: (?P<column>[\w.]+)", re.I), "UndefinedColumn"),
    (re.compile(r"table (?P<table>\w+) has no column named (?P<column>\w+)", re.I), "UndefinedColumn"),
    (re.compile(r"duplicate key value violates unique constraint \"(?P<constraint>[^\"]+)\"", re.I), "UniqueConstraintViolation"),
)

_DETAIL_KEY = re.compile(r"Key \((?P<column>[^)]+)\)")


@dataclass
class DatabaseErrorInfo:
    """Classification of a storage failure"""
    type: str
    message: str
    sql_state: Optional[str] = None
    constraint: Optional[str] = None
    column: Optional[str] = None
    table: Optional[str] = None
    details: Optional[str] = None


def _driver_error(error: BaseException) -> BaseException:
    return getattr(error, "orig", None) or error


def _sql_state(error: BaseException) -> Optional[str]:
    for attr in ("sqlstate", "pgcode"):
        value = getattr(error, attr, None)
        if isinstance(value, str) and value:
            return value
    return None


def is_database_error(error: BaseException) -> bool:
    """True for errors raised by a connection rather than by caller code."""
    return isinstance(error, (sa_exc.SQLAlchemyError, QueryError)) or _sql_state(_driver_error(error)) is not None


def parse_database_error(error: BaseException) -> DatabaseErrorInfo:
    """Classify ``error`` by SQLSTATE code, falling back to message patterns."""
    driver = _driver_error(error)
    message = str(driver) or error.__class__.__name__
    info = DatabaseErrorInfo(type="DatabaseError", message=message)

    sql_state = _sql_state(driver)
    if sql_state:
        info.sql_state = sql_state
        info.type = _SQLSTATE_TYPES.get(sql_state, "DatabaseError")
        info.constraint = getattr(driver, "constraint_name", None) or getattr(driver, "constraint", None)
        info.table = getattr(driver, "table_name", None)
        info.column = getattr(driver, "column_name", None)
        detail = getattr(driver, "detail", None)
        if detail:
            info.details = detail
            match = _DETAIL_KEY.search(detail)
            if match and info.column is None:
                info.column = match.group("column")
        return info

    for pattern, error_type in _MESSAGE_PATTERNS:
        match = pattern.search(message)
        if match:
            info.type = error_type
            groups = match.groupdict()
            info.table = groups.get("table")
            info.column = groups.get("column")
            info.constraint = groups.get("constraint")
            return info

    if isinstance(error, sa_exc.TimeoutError) or "timeout" in message.lower():
        info.type = "TimeoutError"
    elif isinstance(error, sa_exc.InterfaceError) or "connect" in message.lower():
        info.type = "ConnectionError"
    elif isinstance(error, (sa_exc.StatementError, QueryError)):
        info.type = "QueryError"
    return info


def report_database_error(error: BaseException, operation: str, model: Optional[str] = None,
                          context: Any = None) -> Optional[DatabaseErrorInfo]:
    """
    Log a storage failure. The caller re-raises ``error`` afterwards.

    Returns:
        The classification, or None when ``error`` did not come from storage
    """
    if not is_database_error(error):
        return None

    info = parse_database_error(error)
    target = f" on {model}" if model else ""
    logger.error(
        f"{info.type} during {operation}{target}: {info.message}"
        + (f" (sqlstate={info.sql_state})" if info.sql_state else "")
        + (f" [column={info.column}]" if info.column else "")
        + (f" [constraint={info.constraint}]" if info.constraint else "")
        + (f" context={context!r}" if context is not None else "")
    )
    return info
