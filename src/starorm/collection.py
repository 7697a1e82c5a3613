"""
Collection of models returned by multi-row queries.

A plain ``list`` subclass, so indexing, iteration and ``len`` behave as
usual, with a few model-aware helpers on top.
"""

from typing import Any, Callable, Iterator, List, Optional


class Collection(list):
    """List of models (or plain values) with model-aware helpers"""

    def first(self, predicate: Optional[Callable[[Any], bool]] = None, default: Any = None) -> Any:
        for item in self:
            if predicate is None or predicate(item):
                return item
        return default

    def last(self, predicate: Optional[Callable[[Any], bool]] = None, default: Any = None) -> Any:
        for item in reversed(self):
            if predicate is None or predicate(item):
                return item
        return default

    def is_empty(self) -> bool:
        return not self

    def model_keys(self) -> List[Any]:
        return [item.get_key() for item in self]

    def pluck(self, key: str) -> List[Any]:
        return [item.get(key) if isinstance(item, dict) else item.get_attribute(key) for item in self]

    def find(self, key: Any, default: Any = None) -> Any:
        """Model whose primary key equals ``key``."""
        return self.first(lambda item: item.get_key() == key, default)

    def filter(self, predicate: Callable[[Any], bool]) -> "Collection":
        return Collection(item for item in self if predicate(item))

    def map(self, fn: Callable[[Any], Any]) -> "Collection":
        return Collection(fn(item) for item in self)

    def chunk(self, size: int) -> Iterator["Collection"]:
        for start in range(0, len(self), size):
            yield Collection(self[start:start + size])

    def to_dicts(self) -> List[Any]:
        return [item.to_dict() if hasattr(item, "to_dict") else item for item in self]

    async def load(self, *relations: str) -> "Collection":
        """Load ``relations`` on every model."""
        for item in self:
            await item.load(*relations)
        return self

    def __repr__(self) -> str:
        return f"Collection({list.__repr__(self)})"
