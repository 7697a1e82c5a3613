"""
Tests for configuration loading, logging setup and the configure_orm
bootstrap.
"""

import json
import logging

import pytest

from starorm import (
    ConfigurationError, Environment, MemoryConnection, Model, OrmConfig, configure_orm, get_config,
    registry, set_config, setup_logging,
)
from starorm.logging_config import LOGGER_NAME

from models import Order


@pytest.fixture
def restore_logging():
    logger = logging.getLogger(LOGGER_NAME)
    level, handlers = logger.level, list(logger.handlers)
    yield logger
    for handler in list(logger.handlers):
        if handler not in handlers:
            logger.removeHandler(handler)
            handler.close()
    logger.setLevel(level)
    set_config(None)


class TestOrmConfig:
    def test_environment_defaults(self):
        testing = OrmConfig.for_environment(Environment.TESTING)
        assert testing.database.url == "memory://"
        assert testing.database.is_memory
        assert testing.logging.level == "WARNING"

        development = OrmConfig.for_environment(Environment.DEVELOPMENT)
        assert development.debug
        assert development.database.echo

    def test_from_dict_overrides_sections(self):
        config = OrmConfig.from_dict({
            "environment": "production",
            "database": {"url": "sqlite+aiosqlite:///prod.db", "pool_size": 9},
            "models": {"per_page": 50, "strict_assignment": True, "unknown": 1},
        })

        assert config.environment is Environment.PRODUCTION
        assert config.database.pool_size == 9
        assert config.models.per_page == 50
        assert config.models.strict_assignment
        assert not hasattr(config.models, "unknown")

    def test_from_file(self, tmp_path):
        path = tmp_path / "starorm.json"
        path.write_text(json.dumps({"environment": "testing", "models": {"event_namespace": "app"}}))

        config = OrmConfig.from_file(path)
        assert config.environment is Environment.TESTING
        assert config.models.event_namespace == "app"

        with pytest.raises(FileNotFoundError):
            OrmConfig.from_file(tmp_path / "missing.json")
        yaml_path = tmp_path / "starorm.yaml"
        yaml_path.write_text("environment: testing")
        with pytest.raises(ValueError):
            OrmConfig.from_file(yaml_path)

    def test_from_environment(self, monkeypatch):
        monkeypatch.setenv("STARORM_ENV", "testing")
        monkeypatch.setenv("STARORM_DATABASE_URL", "sqlite+aiosqlite:///env.db")
        monkeypatch.setenv("STARORM_LOG_LEVEL", "error")
        monkeypatch.setenv("STARORM_STRICT_ASSIGNMENT", "true")
        monkeypatch.setenv("STARORM_PER_PAGE", "25")

        config = OrmConfig.from_environment()
        assert config.environment is Environment.TESTING
        assert config.database.url == "sqlite+aiosqlite:///env.db"
        assert config.logging.level == "ERROR"
        assert config.models.strict_assignment
        assert config.models.per_page == 25

    def test_to_dict_round_trips(self):
        config = OrmConfig.for_environment(Environment.TESTING)
        config.models.through_chunk_size = 10

        again = OrmConfig.from_dict(config.to_dict())
        assert again.to_dict() == config.to_dict()

    def test_global_config(self, restore_logging):
        config = OrmConfig.for_environment(Environment.TESTING)
        set_config(config)
        assert get_config() is config


class TestLogging:
    def test_setup_is_idempotent(self, restore_logging):
        config = OrmConfig.for_environment(Environment.TESTING).logging
        before = len(restore_logging.handlers)

        setup_logging(config)
        setup_logging(config)

        assert len(restore_logging.handlers) == before + 1
        assert restore_logging.level == logging.WARNING

    def test_file_handler(self, restore_logging, tmp_path):
        config = OrmConfig.for_environment(Environment.TESTING).logging
        config.file_path = str(tmp_path / "starorm.log")

        logger = setup_logging(config)
        logger.warning("written to file")
        for handler in logger.handlers:
            handler.flush()

        assert "written to file" in (tmp_path / "starorm.log").read_text()


class TestConfigureOrm:
    @pytest.mark.asyncio
    async def test_configures_the_registry(self, restore_logging):
        config = OrmConfig.from_dict({"environment": "testing", "models": {"per_page": 2}})

        async with configure_orm(config) as orm:
            assert isinstance(orm.connection, MemoryConnection)
            assert registry.connection is orm.connection
            assert registry.config.per_page == 2
            assert registry.is_booted(Order)

            await Order.create({"total": 1})
            assert len(orm.connection.rows("orders")) == 1

    @pytest.mark.asyncio
    async def test_explicit_connection_and_models(self, restore_logging):
        class Audit(Model):
            _abstract = True

        class Entry(Audit):
            pass

        registry._models.pop("Entry", None)
        connection = MemoryConnection()
        orm = configure_orm(OrmConfig.for_environment(Environment.TESTING), models=[Entry], connection=connection)

        assert orm.connection is connection
        assert Entry in registry
        assert registry.is_booted(Entry)

    def test_missing_connection(self):
        registry.set_connection(None)
        with pytest.raises(ConfigurationError):
            Order.query()
