"""
MySQL Entity Mapper Configuration Management

This module provides configuration classes for the mapper runtime: the MySQL
connection used by the entity manager, logging switches and the custom type
mapping.

Classes:
    MysqlSettings: MySQL database connection configuration with connection pooling
    Settings: Main configuration class that orchestrates all settings

Key Features:
    - YAML-based configuration loading
    - Environment variable overrides for connection settings
    - Connection pool configuration for MySQL
    - Custom type tags mapped to importable classes
    - Type validation and error handling
"""

import os
from dataclasses import dataclass

import yaml


def stype(obj):
    """Get the simple type name of an object.

    Args:
        obj: Any object to get type name for

    Returns:
        str: Simple class name of the object's type

    Example:
        >>> stype([1, 2, 3])
        'list'
        >>> stype("hello")
        'str'
    """
    return type(obj).__name__


@dataclass
class MysqlSettings:
    """MySQL database connection configuration with connection pool support.

    Supports MySQL 5.7+, MySQL 8.0+ and MariaDB 10.x. The spatial read and
    write fragments of the point type need ST_AsText / ST_PointFromText,
    which all of them provide.

    Attributes:
        host: MySQL server hostname or IP address
        port: MySQL server port (default: 3306)
        user: MySQL username for authentication
        password: MySQL password for authentication
        database: Schema the entities live in (optional)
        pool_size: Base number of connections in pool (default: 5)
        max_overflow: Maximum additional connections beyond pool_size (default: 10)
        pool_name: Identifier for connection pool (default: "default")
        charset: Character set for connection (MariaDB compatibility, optional)
        collation: Collation for connection (MariaDB compatibility, optional)

    Example:
        mysql_config = MysqlSettings(
            host="mysql.example.com",
            port=3306,
            user="app",
            password="secure_password",
            database="geo",
            charset="utf8mb4"
        )
    """
    host: str = "localhost"
    port: int = 3306
    user: str = "root"
    password: str = ""
    database: str = None
    pool_size: int = 5
    max_overflow: int = 10
    pool_name: str = "default"
    charset: str = None
    collation: str = None

    def validate(self):
        if not isinstance(self.host, str):
            raise ValueError(f"mysql host should be string and not {stype(self.host)}")

        if not isinstance(self.port, int):
            raise ValueError(f"mysql port should be int and not {stype(self.port)}")

        if not isinstance(self.user, str):
            raise ValueError(f"mysql user should be string and not {stype(self.user)}")

        if not isinstance(self.password, str):
            raise ValueError(
                f"mysql password should be string and not {stype(self.password)}"
            )

        if self.database is not None and not isinstance(self.database, str):
            raise ValueError(
                f"mysql database should be string or None and not {stype(self.database)}"
            )

        if not isinstance(self.pool_size, int) or self.pool_size < 1:
            raise ValueError(
                f"mysql pool_size should be positive integer and not {stype(self.pool_size)}"
            )

        if not isinstance(self.max_overflow, int) or self.max_overflow < 0:
            raise ValueError(
                f"mysql max_overflow should be non-negative integer and not {stype(self.max_overflow)}"
            )

        if not isinstance(self.pool_name, str):
            raise ValueError(
                f"mysql pool_name should be string and not {stype(self.pool_name)}"
            )

        if self.charset is not None and not isinstance(self.charset, str):
            raise ValueError(
                f"mysql charset should be string or None and not {stype(self.charset)}"
            )

        if self.collation is not None and not isinstance(self.collation, str):
            raise ValueError(
                f"mysql collation should be string or None and not {stype(self.collation)}"
            )

    def get_connection_config(self, database=None, autocommit=True):
        """Build standardized MySQL connection configuration"""
        config = {
            "host": self.host,
            "port": self.port,
            "user": self.user,
            "password": self.password,
            "autocommit": autocommit,
        }

        database = database if database is not None else self.database
        if database is not None:
            config["database"] = database

        # Add charset if specified (important for MariaDB compatibility)
        if self.charset is not None:
            config["charset"] = self.charset

        # Add collation if specified (important for MariaDB compatibility)
        if self.collation is not None:
            config["collation"] = self.collation

        return config


# env var name => (MysqlSettings attribute, cast)
MYSQL_ENV_OVERRIDES = {
    "MYSQL_HOST": ("host", str),
    "MYSQL_PORT": ("port", int),
    "MYSQL_USER": ("user", str),
    "MYSQL_PASSWORD": ("password", str),
    "MYSQL_DATABASE": ("database", str),
    "MYSQL_CHARSET": ("charset", str),
}


class Settings:
    DEFAULT_LOG_LEVEL = "info"
    LOG_LEVELS = ["critical", "error", "warning", "info", "debug"]
    DEBUG_NAMESPACES = ["query", "discovery"]

    def __init__(self):
        self.mysql = MysqlSettings()
        self.settings_file = ""
        self.log_level = Settings.DEFAULT_LOG_LEVEL
        self.debug_log_level = False
        self.debug = []
        self.types_mapping = {}
        self.entities = []

    def load(self, settings_file):
        with open(settings_file, "r") as f:
            data = yaml.safe_load(f.read()) or {}

        self.settings_file = settings_file
        self.mysql = MysqlSettings(**data.pop("mysql", {}))
        self.log_level = data.pop("log_level", Settings.DEFAULT_LOG_LEVEL)
        self.debug = data.pop("debug", [])
        self.types_mapping = data.pop("types_mapping", {})
        self.entities = data.pop("entities", [])

        if data:
            raise Exception(f"Unsupported config options: {list(data.keys())}")

        self.apply_env_overrides()
        self.validate()

    def apply_env_overrides(self, environ=None):
        environ = os.environ if environ is None else environ
        for env_name, (attr_name, cast) in MYSQL_ENV_OVERRIDES.items():
            value = environ.get(env_name)
            if value is None:
                continue
            try:
                setattr(self.mysql, attr_name, cast(value))
            except ValueError:
                raise ValueError(f"{env_name} should be {cast.__name__}, got {value!r}")

    def is_debug_enabled(self, namespace):
        if self.debug is True:
            return True
        if not self.debug:
            return False
        return namespace in self.debug

    def validate_log_level(self):
        if self.log_level not in Settings.LOG_LEVELS:
            raise ValueError(f"wrong log level {self.log_level}")
        if self.log_level == "debug":
            self.debug_log_level = True

    def validate_debug(self):
        if isinstance(self.debug, bool):
            return
        if not isinstance(self.debug, list):
            raise ValueError(f"debug should be bool or list and not {stype(self.debug)}")
        for namespace in self.debug:
            if namespace not in Settings.DEBUG_NAMESPACES:
                raise ValueError(
                    f"unknown debug namespace {namespace}, expected one of {Settings.DEBUG_NAMESPACES}"
                )

    def validate_types_mapping(self):
        if not isinstance(self.types_mapping, dict):
            raise ValueError(f"types_mapping should be dict and not {stype(self.types_mapping)}")
        for tag, class_path in self.types_mapping.items():
            if not isinstance(class_path, str) or ":" not in class_path:
                raise ValueError(
                    f'types_mapping entry {tag} should look like "package.module:ClassName", got {class_path!r}'
                )

    def validate(self):
        self.mysql.validate()
        self.validate_log_level()
        self.validate_debug()
        self.validate_types_mapping()
        if not isinstance(self.entities, list):
            raise ValueError(f"entities should be list and not {stype(self.entities)}")
