"""
Shared fixtures for the StarORM test suite.

Every test gets a fresh in-memory connection and event dispatcher on the
global registry, with all model types booted again.
"""

import pytest

from starorm import EventDispatcher, MemoryConnection, registry


@pytest.fixture(autouse=True)
def connection():
    """Fresh memory connection installed on the global registry"""
    registry.reset()
    conn = MemoryConnection()
    registry.set_connection(conn)
    registry.set_dispatcher(EventDispatcher())
    registry.boot_all()
    yield conn
    registry.reset()


@pytest.fixture
def dispatcher():
    return registry.dispatcher


@pytest.fixture
def strict_assignment():
    registry.config.strict_assignment = True
    yield registry.config
    registry.config.strict_assignment = False
