"""
StarORM Connections - SQL Backend

SQLAlchemy asyncio Core implementation of ``Connection``.

Tables are reflected from the live database the first time they are
referenced, so models need no SQLAlchemy declarations. Backend-neutral
``QueryOptions`` are translated into SQLAlchemy expressions; driver errors
propagate unchanged.
"""

import contextvars
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

from sqlalchemy import MetaData, Table, and_, asc, delete, desc, func, insert, or_, select, text, update
from sqlalchemy.exc import InvalidRequestError, NoSuchTableError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, AsyncTransaction, create_async_engine

from ..exceptions import QueryError
from ..query.interface import Boolean, FilterGroup, QueryFilter, QueryOperator, QueryOptions, SortDirection
from .base import Connection, Row, TransactionContext

logger = logging.getLogger(__name__)


class SQLTransaction(TransactionContext):
    """Transaction bound to one ``AsyncConnection``; nested contexts join the outer one"""

    def __init__(self, connection: "SQLConnection"):
        super().__init__(connection)
        self._conn: Optional[AsyncConnection] = None
        self._tx: Optional[AsyncTransaction] = None
        self._token: Optional[contextvars.Token] = None

    async def begin(self) -> None:
        if self.connection._active.get() is not None:
            return
        self._conn = await self.connection.engine.connect()
        self._tx = await self._conn.begin()
        self._token = self.connection._active.set(self._conn)
        logger.debug("BEGIN")

    async def commit(self) -> None:
        if self._tx is None:
            return
        try:
            await self._tx.commit()
            logger.debug("COMMIT")
        finally:
            await self._release()

    async def rollback(self) -> None:
        if self._tx is None:
            return
        try:
            await self._tx.rollback()
            logger.debug("ROLLBACK")
        finally:
            await self._release()

    async def _release(self) -> None:
        self.connection._active.reset(self._token)
        await self._conn.close()
        self._conn = self._tx = self._token = None


class SQLConnection(Connection):
    """
    SQL database connection using SQLAlchemy's asyncio extension.

    Args:
        url: SQLAlchemy async URL, e.g. ``sqlite+aiosqlite:///app.db``
        echo: Log emitted SQL through SQLAlchemy
        pool_size: Connection pool size (ignored for SQLite)
        pool_timeout: Seconds to wait for a pooled connection (ignored for SQLite)
    """

    name = "sql"

    def __init__(self, url: str, echo: bool = False, pool_size: Optional[int] = None,
                 pool_timeout: Optional[int] = None, connect_args: Optional[Dict[str, Any]] = None):
        super().__init__()
        self.url = url
        engine_options: Dict[str, Any] = {"echo": echo}
        if connect_args:
            engine_options["connect_args"] = connect_args
        if not url.startswith("sqlite"):
            if pool_size is not None:
                engine_options["pool_size"] = pool_size
            if pool_timeout is not None:
                engine_options["pool_timeout"] = pool_timeout
        self.engine: AsyncEngine = create_async_engine(url, **engine_options)
        self.metadata = MetaData()
        self._active: contextvars.ContextVar[Optional[AsyncConnection]] = contextvars.ContextVar(
            f"starorm_sql_tx_{id(self)}", default=None
        )
        logger.info(f"SQL connection opened for {self.engine.url.render_as_string(hide_password=True)}")

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[AsyncConnection]:
        """Yield the active transaction's connection, or an autocommitting one."""
        active = self._active.get()
        if active is not None:
            yield active
            return
        async with self.engine.begin() as conn:
            yield conn

    async def _reflect(self, conn: AsyncConnection, *names: str) -> Dict[str, Table]:
        missing = [name for name in names if name not in self.metadata.tables]
        if missing:
            try:
                await conn.run_sync(lambda sync_conn: self.metadata.reflect(sync_conn, only=missing))
            except (NoSuchTableError, InvalidRequestError) as exc:
                raise QueryError(f"Unknown table in {missing}: {exc}") from exc
        return {name: self.metadata.tables[name] for name in names}

    def forget_schema(self) -> None:
        """Drop cached reflections, e.g. after DDL."""
        self.metadata.clear()

    async def statement(self, sql: str, parameters: Optional[Dict[str, Any]] = None) -> None:
        """Execute a raw SQL statement such as DDL."""
        async with self._connect() as conn:
            await conn.execute(text(sql), parameters or {})
        self.forget_schema()

    # Translation

    def _column(self, tables: Dict[str, Table], base: str, name: str):
        if "." in name:
            owner, column = name.split(".", 1)
            table = tables.get(owner)
            if table is None or column not in table.c:
                raise QueryError(f"Unknown column {name!r}")
            return table.c[column]
        if name in tables[base].c:
            return tables[base].c[name]
        for table in tables.values():
            if name in table.c:
                return table.c[name]
        raise QueryError(f"Unknown column {name!r} on {base!r}")

    def _condition(self, tables: Dict[str, Table], base: str, condition: QueryFilter):
        column = self._column(tables, base, condition.column)
        op, value = condition.operator, condition.value
        if op is QueryOperator.EQUALS:
            return column == value
        if op is QueryOperator.NOT_EQUALS:
            return column != value
        if op is QueryOperator.GREATER_THAN:
            return column > value
        if op is QueryOperator.GREATER_THAN_OR_EQUAL:
            return column >= value
        if op is QueryOperator.LESS_THAN:
            return column < value
        if op is QueryOperator.LESS_THAN_OR_EQUAL:
            return column <= value
        if op is QueryOperator.IN:
            return column.in_(value)
        if op is QueryOperator.NOT_IN:
            return column.not_in(value)
        if op is QueryOperator.LIKE:
            return column.like(value)
        if op is QueryOperator.IS_NULL:
            return column.is_(None)
        if op is QueryOperator.IS_NOT_NULL:
            return column.is_not(None)
        raise QueryError(f"Unsupported operator {op}")

    def _where(self, tables: Dict[str, Table], base: str, filters: List[Any]):
        clause = None
        for condition in filters:
            if isinstance(condition, FilterGroup):
                expression = self._where(tables, base, condition.filters)
                if expression is None:
                    continue
            else:
                expression = self._condition(tables, base, condition)
            if clause is None:
                clause = expression
            elif condition.boolean is Boolean.OR:
                clause = or_(clause, expression)
            else:
                clause = and_(clause, expression)
        return clause

    def _from(self, tables: Dict[str, Table], base: str, options: QueryOptions):
        source = tables[base]
        for join in options.joins:
            if join.operator != "=":
                raise QueryError(f"Only equality joins are supported, got {join.operator!r}")
            onclause = self._column(tables, base, join.first) == self._column(tables, base, join.second)
            source = source.join(tables[join.table], onclause, isouter=join.kind == "left")
        return source

    def _columns(self, tables: Dict[str, Table], base: str, options: QueryOptions) -> List[Any]:
        selected: List[Any] = []
        for column in options.columns:
            if column == "*":
                selected.extend(tables[base].c)
            elif column.endswith(".*"):
                owner = column[:-2]
                if owner not in tables:
                    raise QueryError(f"Unknown table {owner!r}")
                selected.extend(tables[owner].c)
            else:
                parts = column.replace(" AS ", " as ").split(" as ")
                expression = self._column(tables, base, parts[0].strip())
                selected.append(expression.label(parts[1].strip()) if len(parts) == 2 else expression)
        return selected

    async def _tables_for(self, conn: AsyncConnection, table: str, options: QueryOptions) -> Dict[str, Table]:
        return await self._reflect(conn, table, *[join.table for join in options.joins])

    # Execution

    async def select(self, table: str, options: QueryOptions) -> List[Row]:
        async with self._connect() as conn:
            tables = await self._tables_for(conn, table, options)
            stmt = select(*self._columns(tables, table, options)).select_from(self._from(tables, table, options))
            clause = self._where(tables, table, options.filters)
            if clause is not None:
                stmt = stmt.where(clause)
            for criteria in options.sort_by:
                column = self._column(tables, table, criteria.column)
                stmt = stmt.order_by(desc(column) if criteria.direction is SortDirection.DESC else asc(column))
            if options.offset:
                stmt = stmt.offset(options.offset)
            if options.limit is not None:
                stmt = stmt.limit(options.limit)
            logger.debug(f"select {table}: {stmt}")
            result = await conn.execute(stmt)
            return [dict(row._mapping) for row in result]

    async def count(self, table: str, options: QueryOptions) -> int:
        async with self._connect() as conn:
            tables = await self._tables_for(conn, table, options)
            stmt = select(func.count()).select_from(self._from(tables, table, options))
            clause = self._where(tables, table, options.filters)
            if clause is not None:
                stmt = stmt.where(clause)
            logger.debug(f"count {table}: {stmt}")
            return (await conn.execute(stmt)).scalar_one()

    async def insert(self, table: str, rows: List[Row]) -> bool:
        async with self._connect() as conn:
            target = (await self._reflect(conn, table))[table]
            logger.debug(f"insert {table}: {len(rows)} row(s)")
            await conn.execute(insert(target), [self._bare(row) for row in rows])
        return True

    async def insert_get_id(self, table: str, values: Row, key_name: str = "id") -> Any:
        values = self._bare(values)
        async with self._connect() as conn:
            target = (await self._reflect(conn, table))[table]
            logger.debug(f"insert {table}: {values}")
            result = await conn.execute(insert(target).values(**values))
            if values.get(key_name) is not None:
                return values[key_name]
            primary_key = result.inserted_primary_key
            if primary_key and primary_key[0] is not None:
                return primary_key[0]
            return result.lastrowid

    async def update(self, table: str, options: QueryOptions, values: Row) -> int:
        async with self._connect() as conn:
            tables = await self._reflect(conn, table)
            stmt = update(tables[table]).values(**self._bare(values))
            clause = self._where(tables, table, options.filters)
            if clause is not None:
                stmt = stmt.where(clause)
            logger.debug(f"update {table}: {stmt}")
            return (await conn.execute(stmt)).rowcount

    async def delete(self, table: str, options: QueryOptions) -> int:
        async with self._connect() as conn:
            tables = await self._reflect(conn, table)
            stmt = delete(tables[table])
            clause = self._where(tables, table, options.filters)
            if clause is not None:
                stmt = stmt.where(clause)
            logger.debug(f"delete {table}: {stmt}")
            return (await conn.execute(stmt)).rowcount

    def transaction(self) -> SQLTransaction:
        return SQLTransaction(self)

    @property
    def in_transaction(self) -> bool:
        return self._active.get() is not None

    async def close(self) -> None:
        await self.engine.dispose()
        logger.info("SQL connection closed")

    @staticmethod
    def _bare(values: Row) -> Row:
        return {column.split(".", 1)[-1]: value for column, value in values.items()}
