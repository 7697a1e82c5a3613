"""
Model: the active-record base class.

Subclasses declare their mapping as underscore-prefixed class attributes
so they never collide with column names:

    class Order(Model):
        _fillable = ["total", "status"]
        _casts = {"total": "integer"}
        _soft_deletes = True

        def items(self):
            return self.has_many(OrderItem)

Column values are read and written as plain attributes
(``order.status = "paid"``); every access goes through the cast and
accessor/mutator pipeline of ``HasAttributes``.
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Type, Union

from ..collection import Collection
from ..connections.base import Connection, TransactionContext
from ..exceptions import ConfigurationError
from ..pagination import Paginator
from ..query.builder import QueryBuilder
from .attributes import HasAttributes
from .builder import GlobalScope, ModelBuilder
from .casts import normalize_cast
from .events import HasEvents
from .mutators import HookRegistry, collect_hooks
from .naming import foreign_key, pivot_table, table_name
from .persistence import PersistsModel
from .registry import ModelRegistry, registry
from .relations import BelongsTo, BelongsToMany, HasMany, HasManyThrough, HasOne, Relation
from .scopes import Scope, SoftDeletingScope

logger = logging.getLogger(__name__)

RelatedType = Union[Type["Model"], str]


class Model(HasAttributes, HasEvents, PersistsModel):
    """Base class for all models."""

    # Configuration as class attributes (underscore keeps them out of the attribute container)
    _abstract: bool = True
    _registry: ModelRegistry = registry
    _connection: Optional[Connection] = None
    _table: Optional[str] = None
    _primary_key: str = "id"
    _incrementing: bool = True
    _fillable: List[str] = []
    _guarded: List[str] = ["*"]
    _hidden: List[str] = []
    _visible: List[str] = []
    _appends: List[str] = []
    _casts: Dict[str, str] = {}
    _timestamps: bool = True
    _created_at_column: Optional[str] = "created_at"
    _updated_at_column: Optional[str] = "updated_at"
    _soft_deletes: bool = False
    _deleted_at_column: str = "deleted_at"
    _per_page: Optional[int] = None

    # Built per subclass
    __hooks__: HookRegistry = HookRegistry()
    _cast_map: Dict[str, str] = {}
    _global_scopes: Dict[str, GlobalScope] = {}

    # Pivot row attached by BelongsToMany reads
    pivot: Optional[Dict[str, Any]] = None

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)

        cls.__hooks__ = collect_hooks(cls, getattr(cls, "__hooks__", None))
        cls._cast_map = cls._build_cast_map()
        cls._global_scopes = dict(cls._global_scopes)

        if not cls.__dict__.get("_abstract", False):
            cls._registry.register(cls)

    @classmethod
    def _build_cast_map(cls) -> Dict[str, str]:
        casts: Dict[str, str] = {}
        if cls._timestamps:
            for column in (cls._created_at_column, cls._updated_at_column):
                if column:
                    casts[column] = "datetime"
        if cls._soft_deletes:
            casts[cls._deleted_at_column] = "datetime"
        for column, cast in cls._casts.items():
            casts[column] = normalize_cast(cast)
        return casts

    @classmethod
    def boot(cls) -> None:
        """
        One-time type initialisation, run by ``ModelRegistry.boot_all()``.

        Override to register listeners or global scopes:

            @classmethod
            def boot(cls):
                cls.on("creating", lambda order: order.set_attribute("status", "new"))
                cls.add_global_scope("paid", lambda query, model: query.where("status", "paid"))
        """
        pass

    def __init__(self, attributes: Optional[Dict[str, Any]] = None, **kwargs: Any):
        self._init_attributes()
        self._exists = False
        self._was_recently_created = False
        self.fill({**(attributes or {}), **kwargs})

    # Attribute sugar

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        return self.get_attribute(name)

    def __setattr__(self, name: str, value: Any) -> None:
        if name.startswith("_") or hasattr(type(self), name):
            object.__setattr__(self, name, value)
        else:
            self.set_attribute(name, value)

    def __delattr__(self, name: str) -> None:
        if name.startswith("_") or hasattr(type(self), name):
            object.__delattr__(self, name)
        else:
            self.unset_attribute(name)

    def __getitem__(self, key: str) -> Any:
        return self.get_attribute(key)

    def __setitem__(self, key: str, value: Any) -> None:
        self.set_attribute(key, value)

    def __contains__(self, key: str) -> bool:
        return key in self._attributes or key in self._relations

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self._primary_key}={self.get_key()!r} exists={self._exists}>"

    # State

    @property
    def exists(self) -> bool:
        return self._exists

    @exists.setter
    def exists(self, value: bool) -> None:
        self._exists = value

    @property
    def was_recently_created(self) -> bool:
        return self._was_recently_created

    # Keys and naming

    @classmethod
    def get_table(cls) -> str:
        return cls._table or table_name(cls)

    @classmethod
    def qualify_column(cls, column: str) -> str:
        return column if "." in column else f"{cls.get_table()}.{column}"

    @classmethod
    def get_key_name(cls) -> str:
        return cls._primary_key

    @classmethod
    def get_qualified_key_name(cls) -> str:
        return cls.qualify_column(cls._primary_key)

    @classmethod
    def get_foreign_key(cls) -> str:
        return foreign_key(cls)

    @classmethod
    def get_created_at_column(cls) -> Optional[str]:
        return cls._created_at_column if cls._timestamps else None

    @classmethod
    def get_updated_at_column(cls) -> Optional[str]:
        return cls._updated_at_column if cls._timestamps else None

    @classmethod
    def get_deleted_at_column(cls) -> str:
        return cls._deleted_at_column

    @classmethod
    def get_qualified_deleted_at_column(cls) -> str:
        return cls.qualify_column(cls._deleted_at_column)

    def get_key(self) -> Any:
        return self.get_attribute(self._primary_key)

    def set_key(self, value: Any) -> "Model":
        self.set_attribute(self._primary_key, value)
        return self

    # Construction

    @classmethod
    def new_from_storage(cls, row: Dict[str, Any]) -> "Model":
        """Hydrate a trusted storage row: bypasses fillable and mutators, keeps casts."""
        model = cls.__new__(cls)
        model._init_attributes()
        model._exists = True
        model._was_recently_created = False
        model.force_fill(row, raw=True)
        model.sync_original()
        return model

    # Queries

    @classmethod
    def get_connection(cls) -> Connection:
        return cls._registry.resolve_connection(cls)

    @classmethod
    def new_base_query(cls) -> QueryBuilder:
        """Table query with no global scopes."""
        return cls.get_connection().table(cls.get_table())

    @classmethod
    def query(cls) -> ModelBuilder:
        return ModelBuilder(cls, cls.new_base_query())

    @classmethod
    def new_query_without_scopes(cls) -> ModelBuilder:
        return cls.query().without_global_scopes()

    @classmethod
    def get_global_scopes(cls) -> Dict[str, GlobalScope]:
        scopes: Dict[str, GlobalScope] = {}
        if cls._soft_deletes:
            scopes[SoftDeletingScope.name] = SoftDeletingScope()
        scopes.update(cls._global_scopes)
        return scopes

    @classmethod
    def add_global_scope(cls, scope: Union[str, Scope], implementation: Optional[GlobalScope] = None) -> None:
        """Register ``Scope`` instance, or a ``name`` with a ``(query, model)`` callable."""
        if isinstance(scope, Scope):
            cls._global_scopes[scope.name or type(scope).__name__] = scope
        elif implementation is not None:
            cls._global_scopes[scope] = implementation
        else:
            raise ConfigurationError("add_global_scope() needs a Scope or a name and a callable")

    @classmethod
    def where(cls, *args: Any, **kwargs: Any) -> ModelBuilder:
        return cls.query().where(*args, **kwargs)

    @classmethod
    def with_trashed(cls) -> ModelBuilder:
        return cls.query().with_trashed()

    @classmethod
    def only_trashed(cls) -> ModelBuilder:
        return cls.query().only_trashed()

    @classmethod
    async def all(cls) -> Collection:
        return await cls.query().get()

    @classmethod
    async def find(cls, key: Any) -> Any:
        return await cls.query().find(key)

    @classmethod
    async def find_or_fail(cls, key: Any) -> Any:
        return await cls.query().find_or_fail(key)

    @classmethod
    async def find_many(cls, keys: Any) -> Collection:
        return await cls.query().find_many(keys)

    @classmethod
    async def first(cls) -> Optional["Model"]:
        return await cls.query().first()

    @classmethod
    async def paginate(cls, per_page: Optional[int] = None, page: int = 1) -> Paginator:
        return await cls.query().paginate(per_page, page)

    @classmethod
    async def create(cls, attributes: Optional[Dict[str, Any]] = None, **kwargs: Any) -> "Model":
        return await cls.query().create({**(attributes or {}), **kwargs})

    @classmethod
    async def first_or_new(cls, attributes: Dict[str, Any], values: Optional[Dict[str, Any]] = None) -> "Model":
        return await cls.query().first_or_new(attributes, values)

    @classmethod
    async def first_or_create(cls, attributes: Dict[str, Any], values: Optional[Dict[str, Any]] = None) -> "Model":
        return await cls.query().first_or_create(attributes, values)

    @classmethod
    async def update_or_create(cls, attributes: Dict[str, Any], values: Optional[Dict[str, Any]] = None) -> "Model":
        return await cls.query().update_or_create(attributes, values)

    @classmethod
    async def destroy(cls, *keys: Any) -> int:
        """Delete models by key, firing their delete events. Returns the number deleted."""
        flat: List[Any] = []
        for key in keys:
            flat.extend(key if isinstance(key, (list, tuple, set)) else [key])
        if not flat:
            return 0
        count = 0
        for model in await cls.find_many(flat):
            if await model.delete():
                count += 1
        return count

    @classmethod
    def transaction(cls) -> TransactionContext:
        """``async with Order.transaction(): ...`` groups writes on the model's connection."""
        return cls.get_connection().transaction()

    # Relations

    @classmethod
    def _resolve_type(cls, related: RelatedType) -> Type["Model"]:
        return cls._registry.get(related) if isinstance(related, str) else related

    def has_one(self, related: RelatedType, foreign_key: Optional[str] = None,
                local_key: Optional[str] = None) -> HasOne:
        related = self._resolve_type(related)
        return HasOne(self, related, foreign_key or self.get_foreign_key(), local_key or self._primary_key)

    def has_many(self, related: RelatedType, foreign_key: Optional[str] = None,
                 local_key: Optional[str] = None) -> HasMany:
        related = self._resolve_type(related)
        return HasMany(self, related, foreign_key or self.get_foreign_key(), local_key or self._primary_key)

    def belongs_to(self, related: RelatedType, foreign_key: Optional[str] = None,
                   owner_key: Optional[str] = None, relation: Optional[str] = None) -> BelongsTo:
        related = self._resolve_type(related)
        fk = foreign_key or related.get_foreign_key()
        suffix = f"_{related._primary_key}"
        name = relation or (fk[:-len(suffix)] if fk.endswith(suffix) else fk)
        return BelongsTo(self, related, fk, owner_key or related._primary_key, name)

    def belongs_to_many(self, related: RelatedType, table: Optional[str] = None,
                        foreign_pivot_key: Optional[str] = None, related_pivot_key: Optional[str] = None,
                        parent_key: Optional[str] = None, related_key: Optional[str] = None) -> BelongsToMany:
        related = self._resolve_type(related)
        return BelongsToMany(
            self,
            related,
            table or pivot_table(type(self), related),
            foreign_pivot_key or self.get_foreign_key(),
            related_pivot_key or related.get_foreign_key(),
            parent_key or self._primary_key,
            related_key or related._primary_key,
        )

    def has_many_through(self, related: RelatedType, through: RelatedType, first_key: Optional[str] = None,
                         second_key: Optional[str] = None, local_key: Optional[str] = None,
                         second_local_key: Optional[str] = None) -> HasManyThrough:
        related = self._resolve_type(related)
        through = self._resolve_type(through)
        return HasManyThrough(
            self,
            related,
            through,
            first_key or self.get_foreign_key(),
            second_key or through.get_foreign_key(),
            local_key or self._primary_key,
            second_local_key or through._primary_key,
        )

    def get_relation(self, name: str) -> Any:
        return self._relations.get(name)

    def set_relation(self, name: str, value: Any) -> "Model":
        self._relations[name] = value
        return self

    def unset_relation(self, name: str) -> "Model":
        self._relations.pop(name, None)
        return self

    def relation_loaded(self, name: str) -> bool:
        return name in self._relations

    async def load(self, *relations: str) -> "Model":
        """Resolve each named relation method and cache its results on this instance."""
        for name in relations:
            factory: Optional[Callable[[], Relation]] = getattr(type(self), name, None)
            if not callable(factory):
                raise ConfigurationError(f"{type(self).__name__} has no relation {name!r}")
            relation = factory(self)
            if not isinstance(relation, Relation):
                raise ConfigurationError(f"{type(self).__name__}.{name}() did not return a relation")
            self.set_relation(name, await relation.get_results())
        return self
