"""
ORM Configurator

One-call bootstrap for StarORM. Handles initialization order: logging,
connection, dispatcher and registry defaults, then model type boot.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Type

from .config import OrmConfig, get_config, set_config
from .connections import Connection, connection_from_url
from .events.dispatcher import Dispatcher
from .logging_config import setup_logging
from .model.model import Model
from .model.registry import ModelRegistry, registry as default_registry

logger = logging.getLogger(__name__)


@dataclass
class OrmContext:
    """Collaborators wired by ``configure_orm``"""
    connection: Connection
    dispatcher: Dispatcher
    registry: ModelRegistry
    config: OrmConfig

    async def close(self) -> None:
        await self.connection.close()

    async def __aenter__(self) -> "OrmContext":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


def configure_orm(
    config: Optional[OrmConfig] = None,
    models: Optional[Iterable[Type[Model]]] = None,
    connection: Optional[Connection] = None,
    dispatcher: Optional[Dispatcher] = None,
    registry: Optional[ModelRegistry] = None,
) -> OrmContext:
    """
    Configure StarORM.

    Call after model classes are imported and before the first query.

    Args:
        config: Configuration; defaults to ``get_config()`` (environment based)
        models: Extra model types to register (normally registered on definition)
        connection: Use this connection instead of building one from ``config.database``
        dispatcher: Use this dispatcher instead of the registry's current one
        registry: Registry to configure; defaults to the global one

    Example:
        ```python
        from starorm import configure_orm, OrmConfig

        orm = configure_orm(OrmConfig.from_dict({"database": {"url": "memory://"}}))
        order = await Order.create({"total": 100, "status": "pending"})
        await orm.close()
        ```
    """
    config = config or get_config()
    set_config(config)
    setup_logging(config.logging)

    registry = registry or default_registry
    registry.config = config.models

    if connection is None:
        database = config.database
        if database.is_memory:
            connection = connection_from_url(database.url)
        else:
            connection = connection_from_url(
                database.url,
                echo=database.echo,
                pool_size=database.pool_size,
                pool_timeout=database.pool_timeout,
            )
    registry.set_connection(connection)

    if dispatcher is not None:
        registry.set_dispatcher(dispatcher)

    for model_cls in models or ():
        if model_cls not in registry:
            registry.register(model_cls)

    registry.boot_all()
    logger.info(
        f"StarORM configured: {connection.name} connection, {len(registry.models())} model type(s), "
        f"environment={config.environment.value}"
    )
    return OrmContext(connection, registry.dispatcher, registry, config)
