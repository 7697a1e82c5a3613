"""
Query Interface

Backend-neutral description of a query. A ``QueryBuilder`` accumulates
these structures and every ``Connection`` implementation translates them
into its own execution strategy (row filtering in memory, SQLAlchemy
expressions for SQL databases).
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional, Tuple, Union


class QueryOperator(Enum):
    """Query operators for filtering"""
    EQUALS = "="
    NOT_EQUALS = "!="
    GREATER_THAN = ">"
    GREATER_THAN_OR_EQUAL = ">="
    LESS_THAN = "<"
    LESS_THAN_OR_EQUAL = "<="
    IN = "in"
    NOT_IN = "not in"
    LIKE = "like"
    IS_NULL = "is null"
    IS_NOT_NULL = "is not null"

    @classmethod
    def from_symbol(cls, symbol: str) -> "QueryOperator":
        """Resolve a user supplied operator string such as ``'>='`` or ``'<>'``."""
        normalized = symbol.strip().lower()
        if normalized == "<>":
            normalized = "!="
        if normalized == "==":
            normalized = "="
        for operator in cls:
            if operator.value == normalized:
                return operator
        raise ValueError(f"Unsupported query operator: {symbol!r}")


class SortDirection(Enum):
    """Sort direction for ordering"""
    ASC = "asc"
    DESC = "desc"


class Boolean(Enum):
    """How a condition combines with the ones before it"""
    AND = "and"
    OR = "or"


@dataclass
class QueryFilter:
    """Represents a single filter condition"""
    column: str
    operator: QueryOperator
    value: Any = None
    boolean: Boolean = Boolean.AND

    def __post_init__(self):
        if self.operator in (QueryOperator.IS_NULL, QueryOperator.IS_NOT_NULL):
            self.value = None
        elif self.operator in (QueryOperator.IN, QueryOperator.NOT_IN):
            self.value = list(self.value)


@dataclass
class FilterGroup:
    """A parenthesised group of conditions, e.g. ``a = 1 AND (b = 2 OR c = 3)``"""
    filters: List["Condition"] = field(default_factory=list)
    boolean: Boolean = Boolean.AND


Condition = Union[QueryFilter, FilterGroup]


@dataclass
class SortCriteria:
    """Represents sorting criteria"""
    column: str
    direction: SortDirection = SortDirection.ASC


@dataclass
class JoinClause:
    """Inner or left join on a single column equality"""
    table: str
    first: str
    operator: str
    second: str
    kind: str = "inner"


@dataclass
class QueryOptions:
    """Everything a connection needs to run a read, update or delete"""
    columns: List[str] = field(default_factory=lambda: ["*"])
    filters: List[Condition] = field(default_factory=list)
    joins: List[JoinClause] = field(default_factory=list)
    sort_by: List[SortCriteria] = field(default_factory=list)
    limit: Optional[int] = None
    offset: int = 0

    def copy(self) -> "QueryOptions":
        return QueryOptions(
            columns=list(self.columns),
            filters=_copy_conditions(self.filters),
            joins=list(self.joins),
            sort_by=list(self.sort_by),
            limit=self.limit,
            offset=self.offset,
        )

    def describe(self) -> Tuple[Any, ...]:
        """Compact tuple used in debug logging and query logs"""
        return (
            tuple(self.columns),
            tuple(_describe_condition(c) for c in self.filters),
            tuple((j.table, j.first, j.operator, j.second, j.kind) for j in self.joins),
            tuple((s.column, s.direction.value) for s in self.sort_by),
            self.limit,
            self.offset,
        )


def _copy_conditions(conditions: List[Condition]) -> List[Condition]:
    copied: List[Condition] = []
    for condition in conditions:
        if isinstance(condition, FilterGroup):
            copied.append(FilterGroup(_copy_conditions(condition.filters), condition.boolean))
        else:
            copied.append(condition)
    return copied


def _describe_condition(condition: Condition) -> Tuple[Any, ...]:
    if isinstance(condition, FilterGroup):
        return (condition.boolean.value, tuple(_describe_condition(c) for c in condition.filters))
    value = tuple(condition.value) if isinstance(condition.value, list) else condition.value
    return (condition.boolean.value, condition.column, condition.operator.value, value)
