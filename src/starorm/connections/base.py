"""
StarORM Connections - Base Classes

This module provides the abstract interface every query-execution backend
implements. Models never talk to a database directly; they build a
``QueryBuilder`` through ``Connection.table()`` and the builder hands the
accumulated ``QueryOptions`` back to the connection for execution.
"""

import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, TYPE_CHECKING

from ..query.interface import QueryOptions

if TYPE_CHECKING:
    from ..query.builder import QueryBuilder

Row = Dict[str, Any]


class Connection(ABC):
    """
    Abstract base class for query-execution backends.

    Implementations must provide reads, counts, inserts, updates, deletes
    and transactional grouping. Returned rows are plain dicts keyed by
    column name, ready for model hydration.
    """

    name: str = "default"

    def __init__(self):
        self._logger = logging.getLogger(f"{self.__class__.__module__}.{self.__class__.__name__}")

    def table(self, table: str) -> "QueryBuilder":
        """Start a fluent query against ``table``."""
        from ..query.builder import QueryBuilder
        return QueryBuilder(self, table)

    @abstractmethod
    async def select(self, table: str, options: QueryOptions) -> List[Row]:
        """
        Run a read.

        Args:
            table: Base table name
            options: Columns, filters, joins, ordering and paging

        Returns:
            List of row dicts
        """
        pass

    @abstractmethod
    async def count(self, table: str, options: QueryOptions) -> int:
        """Count rows matching ``options`` (ordering and paging ignored)."""
        pass

    @abstractmethod
    async def insert(self, table: str, rows: List[Row]) -> bool:
        """Insert one or more rows."""
        pass

    @abstractmethod
    async def insert_get_id(self, table: str, values: Row, key_name: str = "id") -> Any:
        """
        Insert a single row and return its identity.

        Args:
            table: Table name
            values: Column values
            key_name: Primary-key column whose generated value is returned

        Returns:
            The generated (or supplied) primary-key value
        """
        pass

    @abstractmethod
    async def update(self, table: str, options: QueryOptions, values: Row) -> int:
        """Update rows matching ``options``; returns the affected row count."""
        pass

    @abstractmethod
    async def delete(self, table: str, options: QueryOptions) -> int:
        """Delete rows matching ``options``; returns the affected row count."""
        pass

    @abstractmethod
    def transaction(self) -> "TransactionContext":
        """Group every operation issued inside the returned async context."""
        pass

    async def close(self) -> None:
        """Release backend resources."""
        pass

    async def __aenter__(self) -> "Connection":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


class TransactionContext(ABC):
    """Async context manager returned by ``Connection.transaction()``"""

    def __init__(self, connection: Connection):
        self.connection = connection
        self.is_active = False
        self.is_committed = False
        self.is_rolled_back = False

    async def __aenter__(self) -> "TransactionContext":
        await self.begin()
        self.is_active = True
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.is_active = False
        if exc_type is not None:
            await self.rollback()
            self.is_rolled_back = True
        else:
            await self.commit()
            self.is_committed = True
        return False

    @abstractmethod
    async def begin(self) -> None:
        pass

    @abstractmethod
    async def commit(self) -> None:
        pass

    @abstractmethod
    async def rollback(self) -> None:
        pass


@asynccontextmanager
async def optional_transaction(connection: Connection, enabled: bool) -> AsyncIterator[Optional[TransactionContext]]:
    """Run the body inside ``connection.transaction()`` only when ``enabled``."""
    if not enabled:
        yield None
        return
    async with connection.transaction() as tx:
        yield tx
