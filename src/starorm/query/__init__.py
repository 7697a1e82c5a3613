"""
StarORM Query

Backend-neutral query description and the fluent builder over it.
"""

from .builder import QueryBuilder
from .interface import (
    Boolean, Condition, FilterGroup, JoinClause, QueryFilter, QueryOperator,
    QueryOptions, SortCriteria, SortDirection,
)

__all__ = [
    'QueryBuilder',
    'QueryOptions',
    'QueryFilter',
    'FilterGroup',
    'Condition',
    'QueryOperator',
    'SortCriteria',
    'SortDirection',
    'JoinClause',
    'Boolean',
]
