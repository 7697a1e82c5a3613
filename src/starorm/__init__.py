"""
StarORM - Async Active-Record ORM

Models with casts, dirty tracking, lifecycle events, soft deletes, global
and local scopes, and one-to-one, one-to-many, many-to-many and
has-many-through relations, running on an in-memory or SQLAlchemy
connection.
"""

from .collection import Collection
from .config import DatabaseConfig, Environment, LoggingConfig, ModelConfig, OrmConfig, get_config, set_config
from .configurator import OrmContext, configure_orm
from .connections import Connection, MemoryConnection, SQLConnection, connection_from_url
from .database_errors import DatabaseErrorInfo, parse_database_error, report_database_error
from .events import EventDispatcher, Observer, observe
from .exceptions import (
    ConfigurationError, MassAssignmentError, ModelNotFoundError, QueryError, RelationError, StarORMError,
)
from .logging_config import setup_logging
from .model import (
    BelongsTo, BelongsToMany, HasMany, HasManyThrough, HasOne, Model, ModelBuilder, ModelRegistry,
    PivotChanges, Scope, SoftDeletingScope, accessor, mutator, registry, scope,
)
from .pagination import Paginator
from .query import QueryBuilder

__version__ = "0.1.0"

__all__ = [
    # Models
    'Model',
    'ModelBuilder',
    'ModelRegistry',
    'registry',
    'accessor',
    'mutator',
    'scope',
    'Scope',
    'SoftDeletingScope',

    # Relations
    'HasOne',
    'HasMany',
    'BelongsTo',
    'BelongsToMany',
    'HasManyThrough',
    'PivotChanges',

    # Results
    'Collection',
    'Paginator',

    # Connections and queries
    'Connection',
    'MemoryConnection',
    'SQLConnection',
    'connection_from_url',
    'QueryBuilder',

    # Events
    'EventDispatcher',
    'Observer',
    'observe',

    # Configuration
    'OrmConfig',
    'DatabaseConfig',
    'ModelConfig',
    'LoggingConfig',
    'Environment',
    'get_config',
    'set_config',
    'configure_orm',
    'OrmContext',
    'setup_logging',

    # Errors
    'StarORMError',
    'ConfigurationError',
    'QueryError',
    'RelationError',
    'MassAssignmentError',
    'ModelNotFoundError',
    'DatabaseErrorInfo',
    'parse_database_error',
    'report_database_error',
]
