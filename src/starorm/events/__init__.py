"""
StarORM Events

Lifecycle hook dispatch for models.
"""

from .dispatcher import Dispatcher, EventDispatcher
from .observer import HALTING_EVENTS, MODEL_EVENTS, Observer, observe

__all__ = [
    'Dispatcher',
    'EventDispatcher',
    'Observer',
    'observe',
    'MODEL_EVENTS',
    'HALTING_EVENTS',
]
