"""
Global query scopes.

A global scope adds predicates to every query built for a model type. The
predicates are applied when the query is assembled for execution, so
reads, counts, mass updates and mass deletes all respect them.
"""

from abc import ABC, abstractmethod
from typing import Type, TYPE_CHECKING

if TYPE_CHECKING:
    from ..query.builder import QueryBuilder
    from .model import Model


class Scope(ABC):
    """Base class for global scopes."""

    #: Key under which the scope is registered; ``without_global_scope(name)`` removes it.
    name: str = ""

    @abstractmethod
    def apply(self, query: "QueryBuilder", model: Type["Model"]) -> None:
        """Add this scope's constraints to ``query``."""
        pass


class SoftDeletingScope(Scope):
    """Excludes rows whose deletion marker is set."""

    name = "soft_deletes"

    def apply(self, query: "QueryBuilder", model: Type["Model"]) -> None:
        query.where_null(model.get_qualified_deleted_at_column())

    @staticmethod
    def only_trashed(query: "QueryBuilder", model: Type["Model"]) -> None:
        query.where_not_null(model.get_qualified_deleted_at_column())
