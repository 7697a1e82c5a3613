"""
StarORM exceptions.

Storage failures raised by a connection are deliberately *not* wrapped:
they reach the caller as the driver raised them (see ``database_errors``).
Lifecycle vetoes are not exceptions either; they surface as ``False``.
"""

from typing import Any, Iterable, List, Optional


class StarORMError(Exception):
    """Base exception for StarORM"""
    pass


class ConfigurationError(StarORMError):
    """Raised when a model type cannot resolve a connection, dispatcher, cast or scope"""
    pass


class QueryError(StarORMError):
    """Raised when a query is malformed or references an unknown table"""
    pass


class RelationError(StarORMError):
    """Raised when a relation needs a key its owner does not have yet"""
    pass


class MassAssignmentError(StarORMError):
    """Raised by ``fill()`` for non-fillable keys when strict assignment is enabled"""

    def __init__(self, model: str, keys: Iterable[str]):
        self.model = model
        self.keys: List[str] = list(keys)
        super().__init__(f"Add {self.keys} to the fillable list of [{model}] to allow mass assignment.")


class ModelNotFoundError(StarORMError, LookupError):
    """Raised by ``find_or_fail`` when no row matches"""

    def __init__(self, model: str, ids: Optional[Any] = None):
        self.model = model
        if ids is None:
            self.ids: List[Any] = []
        elif isinstance(ids, (list, tuple, set)):
            self.ids = list(ids)
        else:
            self.ids = [ids]
        message = f"No query results for model [{model}]"
        if self.ids:
            message += " " + ", ".join(str(i) for i in self.ids)
        super().__init__(message)
