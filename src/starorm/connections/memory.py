"""
StarORM Connections - Memory Backend

In-process query execution for development and testing. Tables are lists
of row dicts; every executed operation is appended to ``query_log`` so
tests can assert exactly which reads and writes a model operation issued.
"""

import copy
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from ..exceptions import QueryError
from ..query.interface import (
    Boolean, FilterGroup, QueryFilter, QueryOperator, QueryOptions, SortDirection,
)
from .base import Connection, Row, TransactionContext

logger = logging.getLogger(__name__)


@dataclass
class QueryLogEntry:
    """Record of one executed operation"""
    operation: str
    table: str
    options: Optional[Tuple[Any, ...]] = None
    values: Any = None
    executed_at: datetime = field(default_factory=datetime.now)


class MemoryTransaction(TransactionContext):
    """Snapshot/rollback transaction; nested contexts join the outermost one"""

    def __init__(self, connection: "MemoryConnection"):
        super().__init__(connection)
        self._owns_snapshot = False

    async def begin(self) -> None:
        conn = self.connection
        if conn._snapshot is None:
            conn._snapshot = (copy.deepcopy(conn._tables), dict(conn._sequences))
            self._owns_snapshot = True
        conn._depth += 1
        conn._log("begin", "")

    async def commit(self) -> None:
        conn = self.connection
        conn._depth -= 1
        if self._owns_snapshot:
            conn._snapshot = None
        conn._log("commit", "")

    async def rollback(self) -> None:
        conn = self.connection
        conn._depth -= 1
        if self._owns_snapshot and conn._snapshot is not None:
            conn._tables, conn._sequences = conn._snapshot
            conn._snapshot = None
        conn._log("rollback", "")


class MemoryConnection(Connection):
    """
    In-memory query execution.

    Data is lost when the connection is discarded. Unlike a real database
    there is no schema: a table springs into existence on first insert and
    rows may carry any columns.
    """

    name = "memory"

    def __init__(self):
        super().__init__()
        self._tables: Dict[str, List[Row]] = {}
        self._sequences: Dict[str, int] = {}
        self._snapshot: Optional[Tuple[Dict[str, List[Row]], Dict[str, int]]] = None
        self._depth = 0
        self.query_log: List[QueryLogEntry] = []

    # Inspection helpers

    def rows(self, table: str) -> List[Row]:
        """Copies of every stored row of ``table``."""
        return [dict(row) for row in self._tables.get(table, [])]

    def queries(self, operation: Optional[str] = None, table: Optional[str] = None) -> List[QueryLogEntry]:
        return [
            entry for entry in self.query_log
            if (operation is None or entry.operation == operation)
            and (table is None or entry.table == table)
        ]

    def clear_log(self) -> None:
        self.query_log.clear()

    def _log(self, operation: str, table: str, options: Optional[QueryOptions] = None, values: Any = None) -> None:
        entry = QueryLogEntry(operation, table, options.describe() if options else None, copy.deepcopy(values))
        self.query_log.append(entry)
        logger.debug(f"memory {operation} {table} {entry.options} {entry.values}")

    # Execution

    async def select(self, table: str, options: QueryOptions) -> List[Row]:
        self._log("select", table, options)
        rows = self._matching(table, options)
        rows = self._sorted(rows, table, options)
        end = options.offset + options.limit if options.limit is not None else None
        rows = rows[options.offset:end]
        return [self._project(row, table, options) for row in rows]

    async def count(self, table: str, options: QueryOptions) -> int:
        self._log("count", table, options)
        return len(self._matching(table, options))

    async def insert(self, table: str, rows: List[Row]) -> bool:
        self._log("insert", table, values=rows)
        for values in rows:
            self._store(table, values, None)
        return True

    async def insert_get_id(self, table: str, values: Row, key_name: str = "id") -> Any:
        self._log("insert", table, values=values)
        return self._store(table, values, key_name)

    async def update(self, table: str, options: QueryOptions, values: Row) -> int:
        self._log("update", table, options, values)
        self._reject_joins(options, "update")
        changes = {self._bare(column): value for column, value in values.items()}
        affected = 0
        for row in self._tables.get(table, []):
            if self._matches(row, table, options.filters):
                row.update(copy.deepcopy(changes))
                affected += 1
        return affected

    async def delete(self, table: str, options: QueryOptions) -> int:
        self._log("delete", table, options)
        self._reject_joins(options, "delete")
        stored = self._tables.get(table, [])
        kept = [row for row in stored if not self._matches(row, table, options.filters)]
        self._tables[table] = kept
        return len(stored) - len(kept)

    def transaction(self) -> MemoryTransaction:
        return MemoryTransaction(self)

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    # Internals

    def _store(self, table: str, values: Row, key_name: Optional[str]) -> Any:
        row = {self._bare(column): copy.deepcopy(value) for column, value in values.items()}
        sequence = self._sequences.get(table, 0)
        if key_name is None and isinstance(row.get("id"), int):
            key_name = "id"
        if key_name is not None:
            if row.get(key_name) is None:
                sequence += 1
                row[key_name] = sequence
            elif isinstance(row[key_name], int):
                sequence = max(sequence, row[key_name])
            self._sequences[table] = sequence
        self._tables.setdefault(table, []).append(row)
        return row.get(key_name) if key_name else None

    def _reject_joins(self, options: QueryOptions, operation: str) -> None:
        if options.joins:
            raise QueryError(f"Joins are not supported for {operation} on the memory connection")

    @staticmethod
    def _bare(column: str) -> str:
        return column.split(".", 1)[-1]

    def _source_rows(self, table: str, options: QueryOptions) -> List[Row]:
        rows = [dict(row) for row in self._tables.get(table, [])]
        if not options.joins:
            return rows

        # Joined rows carry every column qualified by table, plus the base
        # table's bare names.
        combined: List[Row] = []
        for row in rows:
            combined.append({**row, **{f"{table}.{k}": v for k, v in row.items()}})
        for join in options.joins:
            if join.operator != "=":
                raise QueryError(f"Only equality joins are supported, got {join.operator!r}")
            joined: List[Row] = []
            others = self._tables.get(join.table, [])
            for left in combined:
                matched = False
                for other in others:
                    candidate = {**left, **{f"{join.table}.{k}": v for k, v in other.items()}}
                    if self._resolve(candidate, join.first, table) == self._resolve(candidate, join.second, table):
                        joined.append(candidate)
                        matched = True
                if not matched and join.kind == "left":
                    joined.append(left)
            combined = joined
        return combined

    def _matching(self, table: str, options: QueryOptions) -> List[Row]:
        return [row for row in self._source_rows(table, options) if self._matches(row, table, options.filters)]

    def _resolve(self, row: Row, column: str, table: str) -> Any:
        if column in row:
            return row[column]
        if "." in column:
            owner, bare = column.split(".", 1)
            if owner == table:
                return row.get(bare)
            return row.get(column)
        return row.get(column)

    def _matches(self, row: Row, table: str, filters: List[Any]) -> bool:
        result = True
        for index, condition in enumerate(filters):
            if isinstance(condition, FilterGroup):
                outcome = self._matches(row, table, condition.filters)
            else:
                outcome = self._evaluate(row, table, condition)
            if index == 0:
                result = outcome
            elif condition.boolean is Boolean.OR:
                result = result or outcome
            else:
                result = result and outcome
        return result

    def _evaluate(self, row: Row, table: str, condition: QueryFilter) -> bool:
        actual = _comparable(self._resolve(row, condition.column, table))
        expected = condition.value
        if isinstance(expected, (list, tuple, set)):
            expected = [_comparable(item) for item in expected]
        else:
            expected = _comparable(expected)
        op = condition.operator

        if op is QueryOperator.IS_NULL:
            return actual is None
        if op is QueryOperator.IS_NOT_NULL:
            return actual is not None
        if op is QueryOperator.IN:
            return actual in expected
        if op is QueryOperator.NOT_IN:
            return actual not in expected
        if actual is None:
            return False
        if op is QueryOperator.EQUALS:
            return actual == expected
        if op is QueryOperator.NOT_EQUALS:
            return actual != expected
        if op is QueryOperator.LIKE:
            return _like(str(expected)).match(str(actual)) is not None
        try:
            if op is QueryOperator.GREATER_THAN:
                return actual > expected
            if op is QueryOperator.GREATER_THAN_OR_EQUAL:
                return actual >= expected
            if op is QueryOperator.LESS_THAN:
                return actual < expected
            if op is QueryOperator.LESS_THAN_OR_EQUAL:
                return actual <= expected
        except TypeError as exc:
            raise QueryError(f"Cannot compare {condition.column}={actual!r} with {expected!r}") from exc
        raise QueryError(f"Unsupported operator {op}")

    def _sorted(self, rows: List[Row], table: str, options: QueryOptions) -> List[Row]:
        # Stable sorts applied last-to-first give multi-column ordering;
        # NULLs sort first ascending, as in SQLite.
        for criteria in reversed(options.sort_by):
            reverse = criteria.direction is SortDirection.DESC
            rows = sorted(
                rows,
                key=lambda r, c=criteria.column: _null_first(_comparable(self._resolve(r, c, table))),
                reverse=reverse,
            )
        return rows

    def _project(self, row: Row, table: str, options: QueryOptions) -> Row:
        if options.columns == ["*"]:
            if options.joins:
                return {k: v for k, v in row.items() if "." not in k}
            return row
        projected: Row = {}
        for column in options.columns:
            if column.endswith(".*"):
                owner = column[:-2]
                prefix = f"{owner}."
                if owner == table and not options.joins:
                    projected.update(row)
                else:
                    projected.update({k[len(prefix):]: v for k, v in row.items() if k.startswith(prefix)})
                continue
            name, alias = _split_alias(column)
            projected[alias] = self._resolve(row, name, table)
        return projected


def _comparable(value: Any) -> Any:
    # Naive datetimes compare as UTC
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _null_first(value: Any) -> Tuple[int, Any]:
    return (0, 0) if value is None else (1, value)


def _split_alias(column: str) -> Tuple[str, str]:
    parts = re.split(r"\s+as\s+", column, flags=re.IGNORECASE)
    if len(parts) == 2:
        return parts[0].strip(), parts[1].strip()
    return column, column.split(".", 1)[-1]


def _like(pattern: str) -> "re.Pattern[str]":
    regex = "".join(
        ".*" if ch == "%" else "." if ch == "_" else re.escape(ch)
        for ch in pattern
    )
    return re.compile(f"^{regex}$", re.IGNORECASE | re.DOTALL)
