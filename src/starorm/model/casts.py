"""
Attribute casts.

Each cast converts in both directions: ``cast_to_storage`` when a value is
written to a model, ``cast_from_storage`` when it is read back. Both
directions accept either representation, so casting twice yields the same
result as casting once. ``None`` always passes through unchanged. Naive
datetimes are taken to be UTC and numbers are epoch milliseconds for
every date-like cast.

| cast                 | storage             | in memory            |
|----------------------|---------------------|----------------------|
| integer, int         | int (truncated)     | int                  |
| float, real, double  | float               | float                |
| string, str          | str                 | str                  |
| boolean, bool        | bool                | bool                 |
| json, array, object  | JSON text           | dict / list          |
| collection           | JSON text           | ``Collection``       |
| date                 | ``date``            | ``date``             |
| datetime             | UTC ``datetime``    | UTC ``datetime``     |
| timestamp            | UTC ``datetime``    | int epoch millis     |
"""

import json
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict

from pydantic import TypeAdapter, ValidationError

from ..exceptions import ConfigurationError

_DATETIME = TypeAdapter(datetime)
_DATE = TypeAdapter(date)
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_FALSE_STRINGS = frozenset({"", "0", "false", "no", "off"})

_ALIASES = {
    "int": "integer",
    "integer": "integer",
    "float": "float",
    "real": "float",
    "double": "float",
    "str": "string",
    "string": "string",
    "bool": "boolean",
    "boolean": "boolean",
    "json": "json",
    "array": "json",
    "object": "json",
    "collection": "collection",
    "date": "date",
    "datetime": "datetime",
    "timestamp": "timestamp",
}


def normalize_cast(name: str) -> str:
    """Canonical cast name for ``name``; raises ``ConfigurationError`` if unknown."""
    try:
        return _ALIASES[name.lower()]
    except KeyError:
        raise ConfigurationError(f"Unknown cast type {name!r}") from None


def _utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def parse_datetime(value: Any) -> datetime:
    """
    Coerce a datetime, date, ISO string or epoch-milliseconds number to an
    aware UTC ``datetime``. Naive input is taken to be UTC.
    """
    if isinstance(value, datetime):
        return _utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time(), tzinfo=timezone.utc)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return _EPOCH + timedelta(milliseconds=value)
    if isinstance(value, str):
        text = value.strip()
        try:
            return _utc(_DATETIME.validate_python(text))
        except ValidationError:
            return datetime.combine(_DATE.validate_python(text), time(), tzinfo=timezone.utc)
    raise TypeError(f"Cannot interpret {value!r} as a datetime")


def _to_integer(value: Any) -> int:
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            try:
                return int(Decimal(text))
            except InvalidOperation:
                raise ValueError(f"Cannot interpret {value!r} as an integer") from None
    return int(value)


def _to_boolean(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() not in _FALSE_STRINGS
    return bool(value)


def _to_json_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, default=str)


def _from_json_text(value: Any) -> Any:
    if isinstance(value, (str, bytes)):
        return json.loads(value)
    return value


def _to_collection(value: Any) -> Any:
    from ..collection import Collection
    parsed = _from_json_text(value)
    return parsed if isinstance(parsed, Collection) else Collection(parsed)


def _to_date(value: Any) -> date:
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    return parse_datetime(value).date()


def _timestamp_from_storage(value: Any) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return (parse_datetime(value) - _EPOCH) // timedelta(milliseconds=1)


_TO_STORAGE: Dict[str, Callable[[Any], Any]] = {
    "integer": _to_integer,
    "float": float,
    "string": str,
    "boolean": _to_boolean,
    "json": _to_json_text,
    "collection": _to_json_text,
    "date": _to_date,
    "datetime": parse_datetime,
    "timestamp": parse_datetime,
}

_FROM_STORAGE: Dict[str, Callable[[Any], Any]] = {
    "integer": _to_integer,
    "float": float,
    "string": str,
    "boolean": _to_boolean,
    "json": _from_json_text,
    "collection": _to_collection,
    "date": _to_date,
    "datetime": parse_datetime,
    "timestamp": _timestamp_from_storage,
}


def cast_to_storage(cast: str, value: Any) -> Any:
    """Convert ``value`` to the storage representation of ``cast``."""
    if value is None:
        return None
    return _TO_STORAGE[normalize_cast(cast)](value)


def cast_from_storage(cast: str, value: Any) -> Any:
    """Convert a stored ``value`` to the in-memory representation of ``cast``."""
    if value is None:
        return None
    return _FROM_STORAGE[normalize_cast(cast)](value)
