"""
HasEvents: lifecycle hook dispatch for models.

Events are named ``"<namespace>.<event>: <ModelName>"`` (namespace from
``ModelConfig.event_namespace``) and delivered through the registry's
dispatcher. Halting events may be vetoed by a listener returning ``False``.
"""

import logging
from typing import Any, Callable, Optional, Type, Union, TYPE_CHECKING

from ..events.dispatcher import Dispatcher
from ..events.observer import MODEL_EVENTS, Observer, observe

if TYPE_CHECKING:
    from .model import Model

logger = logging.getLogger(__name__)


class HasEvents:
    """Lifecycle event helpers; expects ``_registry`` on the host class."""

    @classmethod
    def event_name(cls, event: str) -> str:
        return f"{cls._registry.config.event_namespace}.{event}: {cls.__name__}"

    @classmethod
    def get_event_dispatcher(cls) -> Optional[Dispatcher]:
        return cls._registry.dispatcher

    @classmethod
    def on(cls, event: str, handler: Callable[["Model"], Any]) -> None:
        """
        Listen for a lifecycle event of this model type.

        Args:
            event: One of ``MODEL_EVENTS``, e.g. ``"creating"``
            handler: Callable (or coroutine function) receiving the model
        """
        if event not in MODEL_EVENTS:
            raise ValueError(f"Unknown model event {event!r}; expected one of {MODEL_EVENTS}")
        dispatcher = cls.get_event_dispatcher()
        if dispatcher is not None:
            dispatcher.listen(cls.event_name(event), handler)

    @classmethod
    def observe(cls, observer: Union[Observer, Type[Observer]]) -> Observer:
        return observe(cls, observer)

    async def fire_model_event(self, event: str, halt: bool = True) -> bool:
        """
        Fire ``event`` for this model.

        Returns:
            ``False`` if a halting listener vetoed the operation, else ``True``
        """
        dispatcher = self.get_event_dispatcher()
        if dispatcher is None:
            return True

        name = self.event_name(event)
        if halt:
            result = await dispatcher.until(name, self)
            if result is False:
                logger.warning(f"{name} vetoed for key {self.get_key()!r}")
                return False
            return True

        await dispatcher.dispatch(name, self)
        return True
