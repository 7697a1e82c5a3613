"""
StarORM Model Layer

Active-record models: attributes and casts, lifecycle persistence,
scopes, relations and the type registry.
"""

from .builder import ModelBuilder
from .casts import cast_from_storage, cast_to_storage, normalize_cast
from .model import Model
from .mutators import accessor, mutator, scope
from .registry import ModelRegistry, registry
from .relations import (
    BelongsTo, BelongsToMany, HasMany, HasManyThrough, HasOne, PivotChanges, Relation,
)
from .scopes import Scope, SoftDeletingScope

__all__ = [
    'Model',
    'ModelBuilder',
    'ModelRegistry',
    'registry',
    'accessor',
    'mutator',
    'scope',
    'Scope',
    'SoftDeletingScope',
    'Relation',
    'HasOne',
    'HasMany',
    'BelongsTo',
    'BelongsToMany',
    'HasManyThrough',
    'PivotChanges',
    'cast_to_storage',
    'cast_from_storage',
    'normalize_cast',
]
