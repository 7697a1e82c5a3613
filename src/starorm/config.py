"""
Configuration Management for StarORM

Dataclass configuration covering the database connection, model-layer
behaviour and logging, with per-environment presets and environment
variable overrides.
"""

import os
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Union


class Environment(Enum):
    """Application environments"""
    DEVELOPMENT = "development"
    TESTING = "testing"
    PRODUCTION = "production"


@dataclass
class DatabaseConfig:
    """Database connection configuration"""
    url: str = "sqlite+aiosqlite:///starorm.db"
    echo: bool = False
    pool_size: int = 5
    pool_timeout: int = 30

    @property
    def is_memory(self) -> bool:
        return self.url.startswith("memory://")


@dataclass
class ModelConfig:
    """Model layer behaviour"""
    event_namespace: str = "model"
    per_page: int = 15
    strict_assignment: bool = False
    through_chunk_size: int = 500
    atomic_pivot_sync: bool = True


@dataclass
class LoggingConfig:
    """Logging configuration"""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file_path: Optional[str] = None


@dataclass
class OrmConfig:
    """Complete ORM configuration"""
    environment: Environment = Environment.DEVELOPMENT
    debug: bool = False

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    models: ModelConfig = field(default_factory=ModelConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def for_environment(cls, environment: Environment) -> 'OrmConfig':
        """Create configuration for specific environment"""
        config = cls(environment=environment)

        if environment == Environment.DEVELOPMENT:
            config.debug = True
            config.database.echo = True
            config.logging.level = "DEBUG"

        elif environment == Environment.TESTING:
            config.database.url = "memory://"
            config.logging.level = "WARNING"

        elif environment == Environment.PRODUCTION:
            config.debug = False
            config.logging.level = "INFO"

        return config

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> 'OrmConfig':
        """Create configuration from dictionary; unknown keys are ignored"""
        environment = Environment(config_dict.get("environment", Environment.DEVELOPMENT.value))
        config = cls.for_environment(environment)

        if "debug" in config_dict:
            config.debug = bool(config_dict["debug"])

        for section in ("database", "models", "logging"):
            target = getattr(config, section)
            for key, value in config_dict.get(section, {}).items():
                if hasattr(target, key):
                    setattr(target, key, value)

        return config

    @classmethod
    def from_file(cls, config_path: Union[str, Path]) -> 'OrmConfig':
        """Load configuration from a JSON file"""
        import json

        config_path = Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")
        if config_path.suffix != '.json':
            raise ValueError(f"Unsupported configuration file format: {config_path.suffix}")

        with open(config_path) as f:
            return cls.from_dict(json.load(f))

    @classmethod
    def from_environment(cls) -> 'OrmConfig':
        """Create configuration from environment variables"""
        environment = Environment(os.getenv('STARORM_ENV', 'development'))
        config = cls.for_environment(environment)

        if os.getenv('STARORM_DEBUG'):
            config.debug = os.getenv('STARORM_DEBUG').lower() == 'true'

        if os.getenv('STARORM_DATABASE_URL'):
            config.database.url = os.getenv('STARORM_DATABASE_URL')

        if os.getenv('STARORM_LOG_LEVEL'):
            config.logging.level = os.getenv('STARORM_LOG_LEVEL').upper()

        if os.getenv('STARORM_STRICT_ASSIGNMENT'):
            config.models.strict_assignment = os.getenv('STARORM_STRICT_ASSIGNMENT').lower() == 'true'

        if os.getenv('STARORM_PER_PAGE'):
            config.models.per_page = int(os.getenv('STARORM_PER_PAGE'))

        return config

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary"""
        return {
            "environment": self.environment.value,
            "debug": self.debug,
            "database": asdict(self.database),
            "models": asdict(self.models),
            "logging": asdict(self.logging),
        }


# Global configuration management
_current_config: Optional[OrmConfig] = None


def set_config(config: Optional[OrmConfig]):
    """Set the global configuration"""
    global _current_config
    _current_config = config


def get_config() -> OrmConfig:
    """Get the current global configuration"""
    global _current_config

    if _current_config is None:
        _current_config = OrmConfig.from_environment()

    return _current_config


__all__ = [
    "OrmConfig", "Environment", "DatabaseConfig", "ModelConfig", "LoggingConfig",
    "set_config", "get_config",
]
