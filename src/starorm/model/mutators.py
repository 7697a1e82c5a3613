"""
Accessor, mutator and local scope decorators.

The decorators only store metadata on the function. When a ``Model``
subclass is defined, ``collect_hooks`` scans its namespace (and inherited
registries) and builds explicit per-type maps of field name to transform
function, so attribute reads and writes never search for methods by name.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Type


@dataclass
class HookInfo:
    """Metadata stored by ``@accessor``, ``@mutator`` and ``@scope``."""
    kind: str
    name: str
    method: str
    options: dict = field(default_factory=dict)


@dataclass
class HookRegistry:
    accessors: Dict[str, Callable[..., Any]] = field(default_factory=dict)
    mutators: Dict[str, Callable[..., Any]] = field(default_factory=dict)
    scopes: Dict[str, Callable[..., Any]] = field(default_factory=dict)

    def copy(self) -> "HookRegistry":
        return HookRegistry(dict(self.accessors), dict(self.mutators), dict(self.scopes))


def accessor(field_name: str):
    """
    Register the decorated method as the read transform for ``field_name``.

    The method receives the raw stored value (``None`` for appended,
    computed attributes) and returns the value callers see.

    Example:
        @accessor("name")
        def get_name(self, value):
            return value.title() if value else value
    """
    def decorator(func):
        func._hook_info = HookInfo("accessor", field_name, func.__name__)
        return func
    return decorator


def mutator(field_name: str):
    """
    Register the decorated method as the write transform for ``field_name``.

    The mutator owns final storage: it writes with ``set_raw_attribute``
    (or ``set_attribute`` for other fields). Writing its own field through
    ``set_attribute`` stores the value without re-entering the mutator.

    Example:
        @mutator("email")
        def set_email(self, value):
            self.set_raw_attribute("email", value.strip().lower())
    """
    def decorator(func):
        func._hook_info = HookInfo("mutator", field_name, func.__name__)
        return func
    return decorator


def scope(fn=None, *, name: Optional[str] = None):
    """
    Mark a function as a local query scope.

    The function takes the query builder plus optional arguments and
    returns the builder. It is exposed on every query for the model:
    ``await Post.query().published().get()``.
    """
    def decorator(func):
        func._hook_info = HookInfo("scope", name or func.__name__, func.__name__)
        return staticmethod(func)

    if fn is not None:
        return decorator(fn)
    return decorator


def collect_hooks(cls: Type, inherited: Optional[HookRegistry] = None) -> HookRegistry:
    """Build the hook registry for ``cls`` from its namespace and its parent's registry."""
    registry = inherited.copy() if inherited is not None else HookRegistry()
    for value in vars(cls).values():
        func = getattr(value, "__func__", value)
        info: Optional[HookInfo] = getattr(func, "_hook_info", None)
        if info is None:
            continue
        if info.kind == "accessor":
            registry.accessors[info.name] = func
        elif info.kind == "mutator":
            registry.mutators[info.name] = func
        elif info.kind == "scope":
            registry.scopes[info.name] = func
    return registry
