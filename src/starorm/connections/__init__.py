"""
StarORM Connections

Query-execution backends. Use ``MemoryConnection`` for tests and
development, ``SQLConnection`` for anything SQLAlchemy can reach.
"""

from .base import Connection, Row, TransactionContext, optional_transaction
from .memory import MemoryConnection, QueryLogEntry
from .sql import SQLConnection


def connection_from_url(url: str, **options) -> Connection:
    """Build a connection for ``url``; ``memory://`` selects the in-process backend."""
    if url.startswith("memory://"):
        return MemoryConnection()
    return SQLConnection(url, **options)


__all__ = [
    'Connection',
    'TransactionContext',
    'Row',
    'optional_transaction',
    'MemoryConnection',
    'QueryLogEntry',
    'SQLConnection',
    'connection_from_url',
]
