"""
Event Dispatcher

Named hook points with halting and non-halting delivery. Model lifecycle
events are dispatched through this class under names such as
``"model.saving: Order"``; listeners may be registered for an exact name
or a wildcard pattern (``"model.*: Order"``, ``"model.created: *"``).
"""

import inspect
import logging
from abc import ABC, abstractmethod
from fnmatch import fnmatchcase
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

logger = logging.getLogger(__name__)

Listener = Callable[[Any], Union[Any, Awaitable[Any]]]


class Dispatcher(ABC):
    """Abstract base class for event dispatchers."""

    @abstractmethod
    def listen(self, events: Union[str, List[str]], listener: Listener) -> None:
        """Register a listener for one or more event names or patterns."""
        pass

    @abstractmethod
    async def until(self, event: str, payload: Any = None) -> Any:
        """Dispatch until the first listener returns a non-None response."""
        pass

    @abstractmethod
    async def dispatch(self, event: str, payload: Any = None, halt: bool = False) -> Any:
        """Dispatch to every listener."""
        pass


class EventDispatcher(Dispatcher):
    """
    Simple in-process dispatcher.

    Listeners may be plain callables or coroutine functions; awaitable
    results are awaited in registration order. Exceptions raised by a
    listener propagate to whoever fired the event.
    """

    def __init__(self):
        self._listeners: Dict[str, List[Listener]] = {}
        self._wildcards: Dict[str, List[Listener]] = {}

    def listen(self, events: Union[str, List[str]], listener: Listener) -> None:
        """
        Register ``listener``.

        Args:
            events: Event name, wildcard pattern, or list of either
            listener: Callable receiving the event payload
        """
        names = [events] if isinstance(events, str) else list(events)
        for name in names:
            target = self._wildcards if "*" in name else self._listeners
            target.setdefault(name, []).append(listener)

    def subscribe(self, subscriber: Any) -> None:
        """Let ``subscriber.subscribe(dispatcher)`` register its own listeners."""
        subscriber.subscribe(self)

    def has_listeners(self, event: str) -> bool:
        return bool(self.get_listeners(event))

    def get_listeners(self, event: str) -> List[Listener]:
        listeners = list(self._listeners.get(event, []))
        for pattern, registered in self._wildcards.items():
            if fnmatchcase(event, pattern):
                listeners.extend(registered)
        return listeners

    def forget(self, event: str) -> None:
        """Remove every listener registered under ``event`` (exact name or pattern)."""
        self._listeners.pop(event, None)
        self._wildcards.pop(event, None)

    def clear(self) -> None:
        self._listeners.clear()
        self._wildcards.clear()

    async def until(self, event: str, payload: Any = None) -> Any:
        return await self.dispatch(event, payload, halt=True)

    async def dispatch(self, event: str, payload: Any = None, halt: bool = False) -> Any:
        """
        Call every listener for ``event``.

        With ``halt=True`` the first non-None response is returned at once
        (``False`` included, which is how a listener vetoes an operation).
        Otherwise responses are collected; a listener returning ``False``
        stops propagation to the remaining listeners.

        Returns:
            The halting response (or None), or the list of responses
        """
        responses: List[Any] = []
        for listener in self.get_listeners(event):
            response = listener(payload)
            if inspect.isawaitable(response):
                response = await response

            if halt and response is not None:
                logger.debug(f"{event} halted by {_describe(listener)} with {response!r}")
                return response
            if response is False:
                break
            responses.append(response)

        return None if halt else responses

    @property
    def listener_count(self) -> int:
        return sum(len(v) for v in self._listeners.values()) + sum(len(v) for v in self._wildcards.values())


def _describe(listener: Listener) -> str:
    return getattr(listener, "__qualname__", repr(listener))
