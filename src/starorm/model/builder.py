"""
Model-aware query builder.

``ModelBuilder`` wraps a table ``QueryBuilder`` for one model type. It owns
the type's global scopes, resolves local scopes, hydrates rows into models
and provides the model-level terminal operations. Global scopes are
applied to a clone of the underlying query when a terminal runs, so every
read, count, mass update and mass delete sees them.
"""

import logging
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Optional, Set, Type, Union, TYPE_CHECKING

from fastcore.basics import listify

from ..collection import Collection
from ..database_errors import report_database_error
from ..exceptions import ModelNotFoundError, QueryError
from ..pagination import Paginator
from ..query.builder import QueryBuilder
from .casts import cast_from_storage
from .scopes import Scope, SoftDeletingScope

if TYPE_CHECKING:
    from .model import Model

logger = logging.getLogger(__name__)

GlobalScope = Union[Scope, Callable[[QueryBuilder, type], Any]]

_FORWARDED = frozenset({
    "select", "where", "or_where", "where_in", "where_not_in", "where_null", "where_not_null",
    "order_by", "latest", "oldest", "limit", "take", "offset", "skip", "for_page", "join", "left_join",
})


class ModelBuilder:
    """
    Query builder returning models.

    Fluent ``QueryBuilder`` methods (``where``, ``order_by``, ``limit`` …) and
    the model's local scopes are available directly and return the builder.
    """

    def __init__(self, model: Type["Model"], query: QueryBuilder):
        self.model = model
        self.query = query
        self._scopes: Dict[str, GlobalScope] = model.get_global_scopes()
        self._removed: Set[str] = set()

    def clone(self) -> "ModelBuilder":
        builder = ModelBuilder(self.model, self.query.clone())
        builder._scopes = dict(self._scopes)
        builder._removed = set(self._removed)
        return builder

    def __getattr__(self, name: str):
        if name.startswith("_"):
            raise AttributeError(name)

        local_scope = self.model.__hooks__.scopes.get(name)
        if local_scope is not None:
            def apply_scope(*args, **kwargs) -> "ModelBuilder":
                result = local_scope(self, *args, **kwargs)
                return self if result is None else result
            return apply_scope

        if name in _FORWARDED:
            method = getattr(self.query, name)

            def forward(*args, **kwargs) -> "ModelBuilder":
                method(*args, **kwargs)
                return self
            return forward

        raise AttributeError(f"{type(self).__name__} for {self.model.__name__} has no method or local scope {name!r}")

    # Global scopes

    def with_global_scope(self, name: str, scope: GlobalScope) -> "ModelBuilder":
        self._scopes[name] = scope
        self._removed.discard(name)
        return self

    def without_global_scope(self, scope: Union[str, Scope, type]) -> "ModelBuilder":
        if isinstance(scope, str):
            name = scope
        else:
            name = getattr(scope, "name", "") or getattr(scope, "__name__", type(scope).__name__)
        self._removed.add(name)
        return self

    def without_global_scopes(self, *names: str) -> "ModelBuilder":
        self._removed.update(names or self._scopes.keys())
        return self

    def removed_scopes(self) -> List[str]:
        return sorted(self._removed)

    def with_trashed(self) -> "ModelBuilder":
        return self.without_global_scope(SoftDeletingScope.name)

    def only_trashed(self) -> "ModelBuilder":
        self._require_soft_deletes("only_trashed")
        self.without_global_scope(SoftDeletingScope.name)
        SoftDeletingScope.only_trashed(self.query, self.model)
        return self

    def without_trashed(self) -> "ModelBuilder":
        self._require_soft_deletes("without_trashed")
        return self.with_global_scope(SoftDeletingScope.name, SoftDeletingScope())

    def _require_soft_deletes(self, operation: str) -> None:
        if not self.model._soft_deletes:
            raise QueryError(f"{operation}() requires soft deletes, which {self.model.__name__} does not use")

    def apply_scopes(self) -> QueryBuilder:
        """Clone of the underlying query with every active global scope applied."""
        query = self.query.clone()
        for name, scope in self._scopes.items():
            if name in self._removed:
                continue
            if isinstance(scope, Scope):
                scope.apply(query, self.model)
            else:
                scope(query, self.model)
            logger.debug(f"{self.model.__name__}: applied global scope {name}")
        return query

    async def _run(self, operation: str, call):
        try:
            return await call
        except Exception as exc:
            report_database_error(exc, operation, self.model.__name__)
            raise

    # Hydration

    def hydrate(self, rows: Iterable[Dict[str, Any]]) -> Collection:
        return Collection(self.model.new_from_storage(row) for row in rows)

    def make(self, attributes: Optional[Dict[str, Any]] = None) -> "Model":
        return self.model(attributes or {})

    # Reads

    async def get(self, *columns: str) -> Collection:
        query = self.apply_scopes()
        if columns:
            query.select(*columns)
        rows = await self._run("select", query.get())
        models = self.hydrate(rows)
        for model in models:
            await model.fire_model_event("retrieved", halt=False)
        logger.debug(f"hydrated {len(models)} {self.model.__name__} model(s)")
        return models

    async def first(self) -> Optional["Model"]:
        models = await self.clone().limit(1).get()
        return models[0] if models else None

    async def first_or_fail(self) -> "Model":
        model = await self.first()
        if model is None:
            raise ModelNotFoundError(self.model.__name__)
        return model

    async def find(self, key: Any) -> Union["Model", Collection, None]:
        if isinstance(key, (list, tuple, set)):
            return await self.find_many(key)
        return await self.clone().where(self.model.get_qualified_key_name(), key).first()

    async def find_many(self, keys: Iterable[Any]) -> Collection:
        keys = listify(keys)
        if not keys:
            return Collection()
        return await self.clone().where_in(self.model.get_qualified_key_name(), keys).get()

    async def find_or_fail(self, key: Any) -> Union["Model", Collection]:
        result = await self.find(key)
        if isinstance(key, (list, tuple, set)):
            found = set(result.model_keys())
            missing = [k for k in key if k not in found]
            if missing:
                raise ModelNotFoundError(self.model.__name__, missing)
            return result
        if result is None:
            raise ModelNotFoundError(self.model.__name__, key)
        return result

    async def count(self) -> int:
        return await self._run("count", self.apply_scopes().count())

    async def exists(self) -> bool:
        return await self.count() > 0

    async def pluck(self, column: str) -> List[Any]:
        values = await self._run("select", self.apply_scopes().pluck(column))
        cast = self.model._cast_map.get(column.split(".")[-1])
        return [cast_from_storage(cast, v) for v in values] if cast else values

    async def paginate(self, per_page: Optional[int] = None, page: int = 1) -> Paginator:
        per_page = per_page or self.model._per_page or self.model._registry.config.per_page
        page = page if isinstance(page, int) and page >= 1 else 1
        total = await self.count()
        items = await self.clone().for_page(page, per_page).get()
        return Paginator(items, total, per_page, page)

    async def chunk(self, size: int) -> AsyncIterator[Collection]:
        """Yield successive pages of ``size`` models, ordered by key unless ordered already."""
        if size < 1:
            raise ValueError("chunk size must be at least 1")
        base = self.clone()
        if not base.query.options.sort_by:
            base.order_by(self.model.get_qualified_key_name())
        page = 1
        while True:
            models = await base.clone().for_page(page, size).get()
            if not models:
                break
            yield models
            if len(models) < size:
                break
            page += 1

    # Creation

    async def create(self, attributes: Optional[Dict[str, Any]] = None) -> "Model":
        model = self.make(attributes)
        await model.save()
        return model

    async def first_or_new(self, attributes: Dict[str, Any], values: Optional[Dict[str, Any]] = None) -> "Model":
        model = await self.clone().where(attributes).first()
        if model is None:
            model = self.make({**attributes, **(values or {})})
        return model

    async def first_or_create(self, attributes: Dict[str, Any], values: Optional[Dict[str, Any]] = None) -> "Model":
        model = await self.first_or_new(attributes, values)
        if not model.exists:
            await model.save()
        return model

    async def update_or_create(self, attributes: Dict[str, Any], values: Optional[Dict[str, Any]] = None) -> "Model":
        model = await self.first_or_new(attributes)
        model.fill(values or {})
        await model.save()
        return model

    # Mass writes (no model events)

    def _fresh_timestamp(self) -> datetime:
        return datetime.now(timezone.utc)

    async def update(self, values: Dict[str, Any]) -> int:
        """Update every matching row; the update timestamp is added when enabled."""
        values = dict(values)
        updated_at = self.model.get_updated_at_column()
        if updated_at and updated_at not in values:
            values[updated_at] = self._fresh_timestamp()
        return await self._run("update", self.apply_scopes().update(values))

    async def delete(self) -> int:
        """Delete every matching row, soft-deleting when the model uses soft deletes."""
        if self.model._soft_deletes:
            now = self._fresh_timestamp()
            values = {self.model.get_deleted_at_column(): now}
            updated_at = self.model.get_updated_at_column()
            if updated_at:
                values[updated_at] = now
            return await self._run("delete", self.apply_scopes().update(values))
        return await self._run("delete", self.apply_scopes().delete())

    async def force_delete(self) -> int:
        return await self._run("delete", self.apply_scopes().delete())

    async def restore(self) -> int:
        """Clear the deletion marker on every matching row."""
        self._require_soft_deletes("restore")
        self.with_trashed()
        return await self.update({self.model.get_deleted_at_column(): None})

    def __repr__(self) -> str:
        return f"<ModelBuilder {self.model.__name__} {self.query!r} removed_scopes={self.removed_scopes()}>"
