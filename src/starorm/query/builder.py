"""
Fluent query builder bound to one table of one connection.

The builder only accumulates ``QueryOptions``; execution is delegated to
the owning ``Connection``. Fluent methods mutate and return ``self`` so
chains read naturally; use ``clone()`` when a branch must not affect the
original.
"""

import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, TYPE_CHECKING, Union

from .interface import (
    Boolean, FilterGroup, JoinClause, QueryFilter, QueryOperator, QueryOptions,
    SortCriteria, SortDirection,
)

if TYPE_CHECKING:
    from ..connections.base import Connection, Row

logger = logging.getLogger(__name__)

_MISSING = object()


class QueryBuilder:
    """Fluent construction plus terminal operations for a single table"""

    def __init__(self, connection: "Connection", table: str, options: Optional[QueryOptions] = None):
        self.connection = connection
        self.table_name = table
        self.options = options or QueryOptions()

    def clone(self) -> "QueryBuilder":
        return QueryBuilder(self.connection, self.table_name, self.options.copy())

    # Fluent construction

    def select(self, *columns: str) -> "QueryBuilder":
        self.options.columns = list(columns) or ["*"]
        return self

    def where(self, column: Union[str, Callable, Dict[str, Any]], operator: Any = _MISSING,
              value: Any = _MISSING, boolean: Boolean = Boolean.AND) -> "QueryBuilder":
        """
        Add a basic where clause.

        ``where("status", "paid")`` compares for equality,
        ``where("total", ">", 50)`` uses an explicit operator,
        ``where({"a": 1, "b": 2})`` adds one equality per key and
        ``where(lambda q: q.where(...).or_where(...))`` adds a nested group.
        """
        if callable(column):
            nested = QueryBuilder(self.connection, self.table_name)
            column(nested)
            if nested.options.filters:
                self.options.filters.append(FilterGroup(nested.options.filters, boolean))
            return self

        if isinstance(column, dict):
            for key, item in column.items():
                self.where(key, "=", item, boolean)
            return self

        if value is _MISSING:
            if operator is _MISSING:
                raise ValueError("where() requires a value")
            value, operator = operator, "="

        op = operator if isinstance(operator, QueryOperator) else QueryOperator.from_symbol(str(operator))
        if value is None and op is QueryOperator.EQUALS:
            op = QueryOperator.IS_NULL
        elif value is None and op is QueryOperator.NOT_EQUALS:
            op = QueryOperator.IS_NOT_NULL

        self.options.filters.append(QueryFilter(column, op, value, boolean))
        return self

    def or_where(self, column: Union[str, Callable, Dict[str, Any]], operator: Any = _MISSING,
                 value: Any = _MISSING) -> "QueryBuilder":
        return self.where(column, operator, value, Boolean.OR)

    def where_in(self, column: str, values: Iterable[Any]) -> "QueryBuilder":
        self.options.filters.append(QueryFilter(column, QueryOperator.IN, list(values)))
        return self

    def where_not_in(self, column: str, values: Iterable[Any]) -> "QueryBuilder":
        self.options.filters.append(QueryFilter(column, QueryOperator.NOT_IN, list(values)))
        return self

    def where_null(self, column: str) -> "QueryBuilder":
        self.options.filters.append(QueryFilter(column, QueryOperator.IS_NULL))
        return self

    def where_not_null(self, column: str) -> "QueryBuilder":
        self.options.filters.append(QueryFilter(column, QueryOperator.IS_NOT_NULL))
        return self

    def remove_filter(self, column: str, operator: QueryOperator) -> "QueryBuilder":
        """Drop top-level filters matching ``column`` and ``operator``."""
        self.options.filters = [
            f for f in self.options.filters
            if not (isinstance(f, QueryFilter) and f.column == column and f.operator is operator)
        ]
        return self

    def order_by(self, column: str, direction: str = "asc") -> "QueryBuilder":
        self.options.sort_by.append(SortCriteria(column, SortDirection(direction.lower())))
        return self

    def latest(self, column: str = "created_at") -> "QueryBuilder":
        return self.order_by(column, "desc")

    def oldest(self, column: str = "created_at") -> "QueryBuilder":
        return self.order_by(column, "asc")

    def limit(self, count: Optional[int]) -> "QueryBuilder":
        self.options.limit = count
        return self

    take = limit

    def offset(self, count: int) -> "QueryBuilder":
        self.options.offset = max(count, 0)
        return self

    skip = offset

    def for_page(self, page: int, per_page: int) -> "QueryBuilder":
        return self.offset((max(page, 1) - 1) * per_page).limit(per_page)

    def join(self, table: str, first: str, operator: str, second: str) -> "QueryBuilder":
        self.options.joins.append(JoinClause(table, first, operator, second))
        return self

    def left_join(self, table: str, first: str, operator: str, second: str) -> "QueryBuilder":
        self.options.joins.append(JoinClause(table, first, operator, second, kind="left"))
        return self

    # Terminal operations

    async def get(self) -> List["Row"]:
        return await self.connection.select(self.table_name, self.options)

    async def first(self) -> Optional["Row"]:
        options = self.options.copy()
        options.limit = 1
        rows = await self.connection.select(self.table_name, options)
        return rows[0] if rows else None

    async def find(self, value: Any, column: str = "id") -> Optional["Row"]:
        return await self.clone().where(column, value).first()

    async def count(self) -> int:
        return await self.connection.count(self.table_name, self.options)

    async def exists(self) -> bool:
        return await self.count() > 0

    async def pluck(self, column: str) -> List[Any]:
        rows = await self.get()
        bare = column.split(".")[-1]
        return [row.get(column, row.get(bare)) for row in rows]

    async def insert(self, values: Union["Row", List["Row"]]) -> bool:
        rows = values if isinstance(values, list) else [values]
        if not rows:
            return True
        return await self.connection.insert(self.table_name, rows)

    async def insert_get_id(self, values: "Row", key_name: str = "id") -> Any:
        return await self.connection.insert_get_id(self.table_name, values, key_name)

    async def update(self, values: "Row") -> int:
        return await self.connection.update(self.table_name, self.options, values)

    async def delete(self) -> int:
        return await self.connection.delete(self.table_name, self.options)

    def __repr__(self) -> str:
        return f"<QueryBuilder table={self.table_name!r} options={self.options.describe()!r}>"
