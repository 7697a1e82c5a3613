"""
Model type registry.

Every concrete ``Model`` subclass registers itself here when its class
body is executed. The registry owns the defaults a model type falls back
to (connection, dispatcher, model configuration) and runs each type's
``boot()`` hook exactly once, either from ``boot_all()`` or, after the
registry has been started, at registration time.
"""

import logging
from typing import Dict, List, Optional, Set, Type, TYPE_CHECKING

from ..config import ModelConfig
from ..events.dispatcher import Dispatcher, EventDispatcher
from ..exceptions import ConfigurationError

if TYPE_CHECKING:
    from ..connections.base import Connection
    from .model import Model

logger = logging.getLogger(__name__)


class ModelRegistry:
    """Registry of model types and their shared collaborators"""

    def __init__(self):
        self._models: Dict[str, Type["Model"]] = {}
        self._booted: Set[Type["Model"]] = set()
        self._started = False
        self.connection: Optional["Connection"] = None
        self.dispatcher: Dispatcher = EventDispatcher()
        self.config = ModelConfig()

    def register(self, model_cls: Type["Model"]) -> None:
        name = model_cls.__name__
        existing = self._models.get(name)
        if existing is not None and existing is not model_cls:
            logger.debug(f"Model type {name} redefined in {model_cls.__module__}")
        self._models[name] = model_cls
        if self._started:
            self.boot(model_cls)

    def get(self, name: str) -> Type["Model"]:
        try:
            return self._models[name]
        except KeyError:
            raise ConfigurationError(f"Model type {name!r} is not registered") from None

    def models(self) -> List[Type["Model"]]:
        return list(self._models.values())

    def __contains__(self, model_cls: Type["Model"]) -> bool:
        return self._models.get(model_cls.__name__) is model_cls

    def boot(self, model_cls: Type["Model"]) -> None:
        """Run ``model_cls.boot()`` unless it already ran."""
        if model_cls in self._booted:
            return
        self._booted.add(model_cls)
        model_cls.boot()
        logger.info(f"Booted model type {model_cls.__name__} (table {model_cls.get_table()})")

    def boot_all(self) -> None:
        """Boot every registered type; types registered later boot on registration."""
        for model_cls in list(self._models.values()):
            self.boot(model_cls)
        self._started = True

    def is_booted(self, model_cls: Type["Model"]) -> bool:
        return model_cls in self._booted

    def set_connection(self, connection: Optional["Connection"]) -> None:
        self.connection = connection

    def set_dispatcher(self, dispatcher: Dispatcher) -> None:
        self.dispatcher = dispatcher

    def resolve_connection(self, model_cls: Type["Model"]) -> "Connection":
        connection = model_cls._connection or self.connection
        if connection is None:
            raise ConfigurationError(
                f"No connection configured for {model_cls.__name__}; call configure_orm() "
                f"or registry.set_connection()"
            )
        return connection

    def reset(self) -> None:
        """Forget boot state and collaborators; registered types are kept."""
        self._booted.clear()
        self._started = False
        self.connection = None
        self.dispatcher = EventDispatcher()
        self.config = ModelConfig()


registry = ModelRegistry()
