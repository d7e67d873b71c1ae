"""
Databricks SQL warehouse driver.

This package provides credential management, catalog-aware identifier qualification,
type introspection and bulk unload to object storage for a Databricks SQL warehouse.
"""

from databricks_driver.auth.credentials import CredentialBroker
from databricks_driver.column_types import ColumnTypeResolver
from databricks_driver.config import BucketConfig, DatabricksDriverConfig, NamespaceConfig
from databricks_driver.driver import DatabricksDriver
from databricks_driver.exceptions import (
    AuthExchangeError,
    ConfigurationError,
    DatabricksDriverError,
    ExtractionError,
    HealthError,
    SqlExecutionError,
    TerminalStateError,
    UnhealthyError,
    UnreachableError,
    UnsupportedProviderError,
)
from databricks_driver.health import HealthProbe
from databricks_driver.models import BucketType, ColumnDescriptor, UnloadManifest
from databricks_driver.namespace import NamespaceResolver
from databricks_driver.unload.orchestrator import UnloadOrchestrator

__all__ = [
    "AuthExchangeError",
    "BucketConfig",
    "BucketType",
    "ColumnDescriptor",
    "ColumnTypeResolver",
    "ConfigurationError",
    "CredentialBroker",
    "DatabricksDriver",
    "DatabricksDriverConfig",
    "DatabricksDriverError",
    "ExtractionError",
    "HealthError",
    "HealthProbe",
    "NamespaceConfig",
    "NamespaceResolver",
    "SqlExecutionError",
    "TerminalStateError",
    "UnhealthyError",
    "UnloadManifest",
    "UnloadOrchestrator",
    "UnreachableError",
    "UnsupportedProviderError",
]
