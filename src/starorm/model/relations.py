"""
Relationship resolution.

Each relation wraps a ``ModelBuilder`` for the related type and constrains
it with a key taken from the owning model. Fluent builder methods and the
related model's local scopes can be chained on a relation; terminals are
defined here so every read carries the relation's constraint:

    comments = await post.comments().where("approved", True).latest().get()

A relation whose owner has no key value yields empty results.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Type, Union, TYPE_CHECKING

from fastcore.basics import chunked, listify

from ..collection import Collection
from ..connections.base import optional_transaction
from ..exceptions import RelationError
from ..query.builder import QueryBuilder
from .builder import ModelBuilder

if TYPE_CHECKING:
    from .model import Model

logger = logging.getLogger(__name__)


class Relation:
    """Base class for relations between a parent model and a related type"""

    many = False

    def __init__(self, parent: "Model", related: Type["Model"]):
        self.parent = parent
        self.related = related
        self.query: ModelBuilder = related.query()
        self.add_constraints()

    def add_constraints(self) -> None:
        raise NotImplementedError

    def __getattr__(self, name: str):
        if name.startswith("_"):
            raise AttributeError(name)
        target = getattr(self.query, name)
        if not callable(target):
            return target

        def forward(*args, **kwargs):
            result = target(*args, **kwargs)
            return self if result is self.query else result
        return forward

    def _empty(self, column: str) -> None:
        self.query.where_in(column, [])

    async def _resolved(self) -> ModelBuilder:
        """Builder carrying every constraint of this relation."""
        return self.query

    async def get(self) -> Collection:
        return await (await self._resolved()).get()

    async def first(self) -> Optional["Model"]:
        return await (await self._resolved()).first()

    async def find(self, key: Any) -> Any:
        return await (await self._resolved()).find(key)

    async def count(self) -> int:
        return await (await self._resolved()).count()

    async def exists(self) -> bool:
        return await self.count() > 0

    async def pluck(self, column: str) -> List[Any]:
        return await (await self._resolved()).pluck(column)

    async def paginate(self, per_page: Optional[int] = None, page: int = 1):
        return await (await self._resolved()).paginate(per_page, page)

    async def update(self, values: Dict[str, Any]) -> int:
        """Mass-update the related rows."""
        return await (await self._resolved()).update(values)

    async def delete(self) -> int:
        """Mass-delete the related rows (soft when the related type uses soft deletes)."""
        return await (await self._resolved()).delete()

    async def get_results(self) -> Any:
        """Value cached by ``Model.load``: a model (or None) or a collection."""
        return await self.get() if self.many else await self.first()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {type(self.parent).__name__} -> {self.related.__name__}>"


class HasOneOrMany(Relation):
    """related.foreign_key = parent.local_key"""

    def __init__(self, parent: "Model", related: Type["Model"], foreign_key: str, local_key: str):
        self.foreign_key = foreign_key
        self.local_key = local_key
        super().__init__(parent, related)

    def add_constraints(self) -> None:
        qualified = self.related.qualify_column(self.foreign_key)
        key = self.get_parent_key()
        if key is None:
            self._empty(qualified)
        else:
            self.query.where(qualified, key)

    def get_parent_key(self) -> Any:
        return self.parent.get_attribute(self.local_key)

    def _require_parent_key(self) -> Any:
        key = self.get_parent_key()
        if key is None:
            raise RelationError(
                f"{type(self.parent).__name__} has no {self.local_key!r}; save it before creating related models"
            )
        return key

    def make(self, attributes: Optional[Dict[str, Any]] = None) -> "Model":
        model = self.related(attributes or {})
        model.set_attribute(self.foreign_key, self.get_parent_key())
        return model

    async def create(self, attributes: Optional[Dict[str, Any]] = None) -> "Model":
        """Insert a related model with the foreign key pre-filled."""
        key = self._require_parent_key()
        model = self.related(attributes or {})
        model.set_attribute(self.foreign_key, key)
        await model.save()
        return model

    async def save(self, model: "Model") -> Union["Model", bool]:
        model.set_attribute(self.foreign_key, self._require_parent_key())
        return model if await model.save() else False


class HasOne(HasOneOrMany):
    pass


class HasMany(HasOneOrMany):
    many = True

    async def create_many(self, records: Iterable[Dict[str, Any]]) -> Collection:
        return Collection([await self.create(attributes) for attributes in records])

    async def save_many(self, models: Iterable["Model"]) -> Collection:
        return Collection([await self.save(model) for model in models])


class BelongsTo(Relation):
    """related.owner_key = parent.foreign_key"""

    def __init__(self, parent: "Model", related: Type["Model"], foreign_key: str, owner_key: str,
                 relation_name: str):
        self.foreign_key = foreign_key
        self.owner_key = owner_key
        self.relation_name = relation_name
        super().__init__(parent, related)

    def add_constraints(self) -> None:
        qualified = self.related.qualify_column(self.owner_key)
        value = self.parent.get_attribute(self.foreign_key)
        if value is None:
            self._empty(qualified)
        else:
            self.query.where(qualified, value)

    def associate(self, model: Union["Model", Any]) -> "Model":
        """Point the parent at ``model`` (or a raw key). Persisted when the parent is saved."""
        from .model import Model

        if isinstance(model, Model):
            self.parent.set_attribute(self.foreign_key, model.get_attribute(self.owner_key))
            self.parent.set_relation(self.relation_name, model)
        else:
            self.parent.set_attribute(self.foreign_key, model)
            self.parent.unset_relation(self.relation_name)
        return self.parent

    def dissociate(self) -> "Model":
        self.parent.set_attribute(self.foreign_key, None)
        self.parent.set_relation(self.relation_name, None)
        return self.parent


@dataclass
class PivotChanges:
    """Ids affected by ``sync`` or ``toggle``"""
    attached: List[Any] = field(default_factory=list)
    detached: List[Any] = field(default_factory=list)
    updated: List[Any] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.attached or self.detached or self.updated)

    def to_dict(self) -> Dict[str, List[Any]]:
        return {"attached": list(self.attached), "detached": list(self.detached), "updated": list(self.updated)}


def _unique(ids: Iterable[Any]) -> List[Any]:
    seen = []
    for item in ids:
        if item not in seen:
            seen.append(item)
    return seen


class BelongsToMany(Relation):
    """
    Many-to-many through a pivot table.

    Reads take two round trips: pivot rows for the parent, then related
    models by id. Each returned model carries its pivot row in ``pivot``.
    Pivot mutations write the pivot table directly and leave the dirty
    state of parent and related models untouched.
    """

    many = True

    def __init__(self, parent: "Model", related: Type["Model"], table: str, foreign_pivot_key: str,
                 related_pivot_key: str, parent_key: str, related_key: str):
        self.table = table
        self.foreign_pivot_key = foreign_pivot_key
        self.related_pivot_key = related_pivot_key
        self.parent_key = parent_key
        self.related_key = related_key
        self.pivot_columns: List[str] = []
        super().__init__(parent, related)

    def add_constraints(self) -> None:
        # Applied per read in _resolved() once the pivot ids are known.
        pass

    def with_pivot(self, *columns: str) -> "BelongsToMany":
        self.pivot_columns.extend(c for c in columns if c not in self.pivot_columns)
        return self

    def get_parent_key(self) -> Any:
        return self.parent.get_attribute(self.parent_key)

    def new_pivot_query(self) -> QueryBuilder:
        """Query over the parent's pivot rows."""
        query = type(self.parent).get_connection().table(self.table)
        key = self.get_parent_key()
        if key is None:
            return query.where_in(self.foreign_pivot_key, [])
        return query.where(self.foreign_pivot_key, key)

    async def _pivot_rows(self) -> List[Dict[str, Any]]:
        if self.get_parent_key() is None:
            return []
        return await self.new_pivot_query().get()

    async def related_ids(self) -> List[Any]:
        """Related ids currently attached to the parent."""
        return _unique(row[self.related_pivot_key] for row in await self._pivot_rows())

    async def _resolved(self) -> ModelBuilder:
        ids = await self.related_ids()
        return self.query.clone().where_in(self.related.qualify_column(self.related_key), ids)

    async def get(self) -> Collection:
        rows = await self._pivot_rows()
        if not rows:
            return Collection()

        pivots: Dict[Any, Dict[str, Any]] = {}
        for row in rows:
            pivots.setdefault(row[self.related_pivot_key], row)

        models = await self.query.clone().where_in(
            self.related.qualify_column(self.related_key), list(pivots)
        ).get()

        columns = [self.foreign_pivot_key, self.related_pivot_key, *self.pivot_columns]
        for model in models:
            row = pivots.get(model.get_attribute(self.related_key), {})
            model.pivot = {column: row.get(column) for column in columns}
        return models

    async def first(self) -> Optional["Model"]:
        models = await self.get()
        return models[0] if models else None

    # Pivot mutation

    def _require_parent_key(self) -> Any:
        key = self.get_parent_key()
        if key is None:
            raise RelationError(
                f"{type(self.parent).__name__} has no {self.parent_key!r}; save it before changing {self.table}"
            )
        return key

    def _parse_ids(self, ids: Any) -> Dict[Any, Dict[str, Any]]:
        """Normalise ids, models, lists of either, or ``{id: pivot_attributes}``."""
        from .model import Model

        if isinstance(ids, dict):
            return {key: dict(value or {}) for key, value in ids.items()}
        parsed: Dict[Any, Dict[str, Any]] = {}
        for item in listify(ids):
            key = item.get_attribute(self.related_key) if isinstance(item, Model) else item
            parsed.setdefault(key, {})
        return parsed

    async def attach(self, ids: Any, attributes: Optional[Dict[str, Any]] = None) -> None:
        """
        Insert one pivot row per id, merging ``attributes`` into each.

        Attaching an id that is already attached inserts a duplicate row
        unless the pivot table enforces uniqueness.
        """
        key = self._require_parent_key()
        records = [
            {self.foreign_pivot_key: key, self.related_pivot_key: related_id, **(attributes or {}), **extra}
            for related_id, extra in self._parse_ids(ids).items()
        ]
        if not records:
            return
        await type(self.parent).get_connection().table(self.table).insert(records)
        logger.debug(f"{self.table}: attached {[r[self.related_pivot_key] for r in records]} to {key!r}")

    async def detach(self, ids: Any = None) -> int:
        """Delete the parent's pivot rows, limited to ``ids`` when given."""
        self._require_parent_key()
        query = self.new_pivot_query()
        if ids is not None:
            parsed = list(self._parse_ids(ids))
            if not parsed:
                return 0
            query.where_in(self.related_pivot_key, parsed)
        deleted = await query.delete()
        logger.debug(f"{self.table}: detached {ids if ids is not None else 'all'} ({deleted} row(s))")
        return deleted

    async def update_existing_pivot(self, related_id: Any, attributes: Dict[str, Any]) -> int:
        self._require_parent_key()
        return await self.new_pivot_query().where(self.related_pivot_key, related_id).update(attributes)

    async def sync(self, ids: Any, detaching: bool = True) -> PivotChanges:
        """
        Make the attached id set equal ``ids``.

        Computes ``ids - current`` to attach and, when ``detaching``,
        ``current - ids`` to detach, then detaches before attaching. Unless
        ``atomic_pivot_sync`` is disabled the read and both writes share one
        transaction.
        """
        self._require_parent_key()
        wanted = self._parse_ids(ids)
        changes = PivotChanges()
        connection = type(self.parent).get_connection()

        async with optional_transaction(connection, self._atomic()):
            current = await self.related_ids()
            if detaching:
                changes.detached = [i for i in current if i not in wanted]
            changes.attached = [i for i in wanted if i not in current]

            for related_id, attributes in wanted.items():
                if related_id in current and attributes:
                    if await self.update_existing_pivot(related_id, attributes):
                        changes.updated.append(related_id)

            if changes.detached:
                await self.detach(changes.detached)
            if changes.attached:
                await self.attach({i: wanted[i] for i in changes.attached})

        logger.debug(f"{self.table}: sync {changes.to_dict()}")
        return changes

    async def sync_without_detaching(self, ids: Any) -> PivotChanges:
        return await self.sync(ids, detaching=False)

    async def toggle(self, ids: Any) -> PivotChanges:
        """Attach each absent id and detach each present one."""
        self._require_parent_key()
        wanted = self._parse_ids(ids)
        changes = PivotChanges()
        connection = type(self.parent).get_connection()

        async with optional_transaction(connection, self._atomic()):
            current = await self.related_ids()
            changes.detached = [i for i in wanted if i in current]
            changes.attached = [i for i in wanted if i not in current]

            if changes.detached:
                await self.detach(changes.detached)
            if changes.attached:
                await self.attach({i: wanted[i] for i in changes.attached})

        logger.debug(f"{self.table}: toggle {changes.to_dict()}")
        return changes

    def _atomic(self) -> bool:
        return type(self.parent)._registry.config.atomic_pivot_sync


class HasManyThrough(Relation):
    """
    Distant relation via an intermediate type, e.g. country -> users -> posts.

    Resolves in two stages: intermediate keys for the parent, then related
    models whose ``second_key`` is in that set. Large key sets are queried
    in batches of ``through_chunk_size``.
    """

    many = True

    def __init__(self, parent: "Model", related: Type["Model"], through: Type["Model"], first_key: str,
                 second_key: str, local_key: str, second_local_key: str):
        self.through = through
        self.first_key = first_key
        self.second_key = second_key
        self.local_key = local_key
        self.second_local_key = second_local_key
        super().__init__(parent, related)

    def add_constraints(self) -> None:
        # Applied per read once the intermediate keys are known.
        pass

    async def through_keys(self) -> List[Any]:
        key = self.parent.get_attribute(self.local_key)
        if key is None:
            return []
        keys = await self.through.query().where(self.through.qualify_column(self.first_key), key).pluck(
            self.through.qualify_column(self.second_local_key)
        )
        return _unique(k for k in keys if k is not None)

    def _chunks(self, keys: List[Any]) -> List[List[Any]]:
        size = type(self.parent)._registry.config.through_chunk_size
        return [list(chunk) for chunk in chunked(keys, size)] or [[]]

    async def _resolved(self) -> ModelBuilder:
        keys = await self.through_keys()
        return self.query.clone().where_in(self.related.qualify_column(self.second_key), keys)

    async def get(self) -> Collection:
        keys = await self.through_keys()
        if not keys:
            return Collection()
        qualified = self.related.qualify_column(self.second_key)
        models = Collection()
        for chunk in self._chunks(keys):
            models.extend(await self.query.clone().where_in(qualified, chunk).get())
        return models

    async def count(self) -> int:
        keys = await self.through_keys()
        if not keys:
            return 0
        qualified = self.related.qualify_column(self.second_key)
        total = 0
        for chunk in self._chunks(keys):
            total += await self.query.clone().where_in(qualified, chunk).count()
        return total

    async def first(self) -> Optional["Model"]:
        models = await self.get()
        return models[0] if models else None
