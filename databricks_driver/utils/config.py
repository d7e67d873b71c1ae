"""Configuration utility for the Databricks driver.

This module provides centralized configuration management with:
- Environment variables as the only source
- Per-data-source variable naming (CUBEJS_DB_* / CUBEJS_DS_<NAME>_DB_*)
- Type-safe access to configuration values
"""

import os
from typing import Any

DEFAULT_DATA_SOURCE = "default"


def parse_config_value(value: str) -> str | bool:
    if value.lower() == "true":
        return True
    elif value.lower() == "false":
        return False
    else:
        return value


def get_config_value(key: str, default: Any = None) -> Any:
    """Get a configuration value from environment variables.

    Args:
        key: Configuration key name (e.g., "LOG_LEVEL")
        default: Default value if key not found

    Returns:
        Configuration value or default
    """
    env_value = os.environ.get(key)
    if env_value is not None:
        return parse_config_value(env_value)

    return default


def get_config_value_str(key: str) -> str | None:
    """
    Get a configuration value from environment variables. But sometimes you just want a string.
    """
    value = os.environ.get(key)
    if value == "":
        return None
    return value


def data_source_env_key(name: str, data_source: str = DEFAULT_DATA_SOURCE) -> str:
    """Build the environment variable name of a per-data-source DB setting.

    The default data source reads ``CUBEJS_DB_<NAME>``; any other data source
    reads ``CUBEJS_DS_<DATASOURCE>_DB_<NAME>``.
    """
    if data_source == DEFAULT_DATA_SOURCE:
        return f"CUBEJS_DB_{name}"
    return f"CUBEJS_DS_{data_source.upper()}_DB_{name}"


def get_data_source_value(name: str, data_source: str = DEFAULT_DATA_SOURCE) -> str | None:
    """Get a per-data-source DB setting as a string."""
    return get_config_value_str(data_source_env_key(name, data_source))


def get_driver_environment() -> str:
    """Get the driver runtime environment from env var."""
    return get_config_value("DATABRICKS_DRIVER_ENVIRONMENT", "local")


def is_dev_mode() -> bool:
    """Whether the surrounding query engine runs in development mode."""
    if get_config_value("CUBEJS_DEV_MODE") is True:
        return True
    return os.environ.get("NODE_ENV") != "production"


def get_pre_aggregations_schema() -> str:
    """Get the schema name holding pre-aggregation tables."""
    schema = get_config_value_str("CUBEJS_PRE_AGGREGATIONS_SCHEMA")
    if schema:
        return schema
    return "dev_pre_aggregations" if is_dev_mode() else "prod_pre_aggregations"
