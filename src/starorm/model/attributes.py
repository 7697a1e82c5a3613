"""
HasAttributes: the attribute container of a model.

Values are kept in their storage representation in ``_attributes``; a
snapshot taken at the last load or write lives in ``_original``. Whether a
model is dirty is always derived from the difference between the two,
never from a separately maintained flag.
"""

import copy
import json
import logging
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Set

from ..exceptions import MassAssignmentError
from .casts import cast_from_storage, cast_to_storage

logger = logging.getLogger(__name__)


def _flatten(keys: Iterable[Any]) -> List[str]:
    flat: List[str] = []
    for key in keys:
        if isinstance(key, (list, tuple, set)):
            flat.extend(key)
        else:
            flat.append(key)
    return flat


class HasAttributes:
    """
    Attribute storage, cast pipeline, mass-assignment policy, dirty tracking
    and serialization.

    Expects the host class to define ``_fillable``, ``_guarded``,
    ``_hidden``, ``_visible``, ``_appends``, ``_cast_map`` and ``__hooks__``.
    """

    def _init_attributes(self) -> None:
        self._attributes: Dict[str, Any] = {}
        self._original: Dict[str, Any] = {}
        self._changes: Dict[str, Any] = {}
        self._relations: Dict[str, Any] = {}
        self._extra_hidden: Set[str] = set()
        self._extra_visible: Set[str] = set()
        self._mutating: Set[str] = set()

    # Casts

    def get_casts(self) -> Dict[str, str]:
        return dict(type(self)._cast_map)

    def has_cast(self, key: str) -> bool:
        return key in type(self)._cast_map

    def _cast_for_storage(self, key: str, value: Any) -> Any:
        cast = type(self)._cast_map.get(key)
        return cast_to_storage(cast, value) if cast else value

    def _cast_for_read(self, key: str, value: Any) -> Any:
        cast = type(self)._cast_map.get(key)
        return cast_from_storage(cast, value) if cast else value

    # Reading

    def get_attribute(self, key: str) -> Any:
        """Accessor, then loaded relation, then cast stored value."""
        accessor = type(self).__hooks__.accessors.get(key)
        if accessor is not None:
            return accessor(self, self._attributes.get(key))
        if key in self._relations:
            return self._relations[key]
        return self._cast_for_read(key, self._attributes.get(key))

    def get_attribute_value(self, key: str) -> Any:
        """Cast stored value, bypassing accessors and relations."""
        return self._cast_for_read(key, self._attributes.get(key))

    def get_raw_attribute(self, key: str, default: Any = None) -> Any:
        return self._attributes.get(key, default)

    def get_attributes(self) -> Dict[str, Any]:
        return dict(self._attributes)

    def has_attribute(self, key: str) -> bool:
        return key in self._attributes

    # Writing

    def set_attribute(self, key: str, value: Any) -> "HasAttributes":
        mutator = type(self).__hooks__.mutators.get(key)
        if mutator is not None and key not in self._mutating:
            self._mutating.add(key)
            try:
                mutator(self, value)
            finally:
                self._mutating.discard(key)
            return self
        self._attributes[key] = self._cast_for_storage(key, value)
        return self

    def set_raw_attribute(self, key: str, value: Any) -> "HasAttributes":
        """Store ``value`` exactly as given."""
        self._attributes[key] = value
        return self

    def unset_attribute(self, key: str) -> None:
        self._attributes.pop(key, None)

    # Mass assignment

    def is_fillable(self, key: str) -> bool:
        fillable = type(self)._fillable
        if fillable:
            return key in fillable
        guarded = type(self)._guarded
        if "*" in guarded:
            return False
        return key not in guarded

    def totally_guarded(self) -> bool:
        return not type(self)._fillable and "*" in type(self)._guarded

    def fill(self, attributes: Dict[str, Any]) -> "HasAttributes":
        """
        Assign ``attributes`` that pass the fillable/guarded policy.

        Rejected keys are logged and dropped; with ``strict_assignment``
        enabled a ``MassAssignmentError`` is raised before anything is set.
        """
        rejected = [key for key in attributes if not self.is_fillable(key)]
        if rejected:
            if type(self)._registry.config.strict_assignment:
                raise MassAssignmentError(type(self).__name__, rejected)
            logger.warning(f"{type(self).__name__}: dropped non-fillable attributes {rejected}")

        for key, value in attributes.items():
            if key not in rejected:
                self.set_attribute(key, value)
        return self

    def force_fill(self, attributes: Dict[str, Any], raw: bool = False) -> "HasAttributes":
        """
        Assign every key, ignoring the fillable policy.

        With ``raw=True`` mutators are skipped as well (storage casts still
        apply); this is the path used to hydrate rows read from storage.
        """
        for key, value in attributes.items():
            if raw:
                self._attributes[key] = self._cast_for_storage(key, value)
            else:
                self.set_attribute(key, value)
        return self

    # Dirty tracking

    def sync_original(self) -> "HasAttributes":
        self._original = copy.deepcopy(self._attributes)
        return self

    def sync_original_attributes(self, *keys: str) -> "HasAttributes":
        for key in _flatten(keys):
            if key in self._attributes:
                self._original[key] = copy.deepcopy(self._attributes[key])
            else:
                self._original.pop(key, None)
        return self

    def get_original(self, key: Optional[str] = None, default: Any = None) -> Any:
        if key is None:
            return {k: self._cast_for_read(k, v) for k, v in self._original.items()}
        if key not in self._original:
            return default
        return self._cast_for_read(key, self._original[key])

    def get_dirty(self) -> Dict[str, Any]:
        """Attributes whose stored value differs from the original snapshot."""
        return {
            key: value for key, value in self._attributes.items()
            if key not in self._original or self._original[key] != value
        }

    def is_dirty(self, *keys: Any) -> bool:
        dirty = self.get_dirty()
        wanted = _flatten(keys)
        if not wanted:
            return bool(dirty)
        return any(key in dirty for key in wanted)

    def is_clean(self, *keys: Any) -> bool:
        return not self.is_dirty(*keys)

    def get_changes(self) -> Dict[str, Any]:
        """Attributes written by the last successful save."""
        return dict(self._changes)

    def was_changed(self, *keys: Any) -> bool:
        wanted = _flatten(keys)
        if not wanted:
            return bool(self._changes)
        return any(key in self._changes for key in wanted)

    # Serialization

    def get_hidden(self) -> Set[str]:
        return (set(type(self)._hidden) | self._extra_hidden) - self._extra_visible

    def get_visible(self) -> Set[str]:
        visible = set(type(self)._visible)
        if visible:
            visible |= self._extra_visible
        return visible - self._extra_hidden

    def make_hidden(self, *keys: Any) -> "HasAttributes":
        for key in _flatten(keys):
            self._extra_hidden.add(key)
            self._extra_visible.discard(key)
        return self

    def make_visible(self, *keys: Any) -> "HasAttributes":
        for key in _flatten(keys):
            self._extra_visible.add(key)
            self._extra_hidden.discard(key)
        return self

    def _serializable_keys(self, keys: Iterable[str]) -> List[str]:
        visible = self.get_visible()
        hidden = self.get_hidden()
        return [k for k in keys if (not visible or k in visible) and k not in hidden]

    def to_dict(self) -> Dict[str, Any]:
        """
        Plain dict of attributes, appended attributes and loaded relations,
        honouring hidden and visible lists. Dates become ISO strings.
        """
        data: Dict[str, Any] = {}
        for key in self._serializable_keys(self._attributes):
            data[key] = _serialize(self.get_attribute(key) if key not in self._relations else self.get_attribute_value(key))
        for key in self._serializable_keys(type(self)._appends):
            data[key] = _serialize(self.get_attribute(key))
        for key in self._serializable_keys(self._relations):
            data[key] = _serialize(self._relations[key])
        return data

    def to_json(self, **kwargs) -> str:
        return json.dumps(self.to_dict(), **kwargs)


def _serialize(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if hasattr(value, "to_dict") and callable(value.to_dict):
        return value.to_dict()
    if isinstance(value, (list, tuple)):
        return [_serialize(item) for item in value]
    if isinstance(value, dict):
        return {k: _serialize(v) for k, v in value.items()}
    return value
