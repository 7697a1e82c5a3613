"""
Model observers.

An observer groups a model type's lifecycle listeners in one class.
Only the methods a subclass overrides are registered.
"""

from typing import Any, Type, Union, TYPE_CHECKING

if TYPE_CHECKING:
    from ..model.model import Model

MODEL_EVENTS = (
    "retrieved",
    "creating", "created",
    "updating", "updated",
    "saving", "saved",
    "deleting", "deleted",
    "restoring", "restored",
    "force_deleted",
)

HALTING_EVENTS = frozenset({"creating", "updating", "saving", "deleting", "restoring"})


class Observer:
    """Base class for model observers; return ``False`` from a halting method to veto."""

    def retrieved(self, model: "Model") -> Any: pass
    def creating(self, model: "Model") -> Any: pass
    def created(self, model: "Model") -> Any: pass
    def updating(self, model: "Model") -> Any: pass
    def updated(self, model: "Model") -> Any: pass
    def saving(self, model: "Model") -> Any: pass
    def saved(self, model: "Model") -> Any: pass
    def deleting(self, model: "Model") -> Any: pass
    def deleted(self, model: "Model") -> Any: pass
    def restoring(self, model: "Model") -> Any: pass
    def restored(self, model: "Model") -> Any: pass
    def force_deleted(self, model: "Model") -> Any: pass


def observe(model_cls: Type["Model"], observer: Union[Observer, Type[Observer]]) -> Observer:
    """
    Register every overridden lifecycle method of ``observer`` on ``model_cls``.

    Returns:
        The observer instance (instantiated if a class was given)
    """
    instance = observer() if isinstance(observer, type) else observer
    for name in MODEL_EVENTS:
        method = getattr(type(instance), name, None)
        if method is None or method is getattr(Observer, name):
            continue
        model_cls.on(name, getattr(instance, name))
    return instance
