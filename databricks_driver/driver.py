"""
Databricks driver for the query engine.

The driver is a composition of small strategies selected by configuration:
- NamespaceResolver: catalog qualification of names and SQL
- CredentialBroker: OAuth or token authentication
- HealthProbe: warehouse status check used by test_connection()
- ColumnTypeResolver: DESCRIBE based type introspection
- UnloadOrchestrator: export to S3 / Azure / GCS
SQL itself runs through a SqlExecutor.
"""

import asyncio
from collections.abc import Mapping, Sequence
from typing import Any

from databricks_driver.auth.credentials import CredentialBroker
from databricks_driver.column_types import ColumnTypeResolver
from databricks_driver.config import DatabricksDriverConfig
from databricks_driver.health import HealthProbe
from databricks_driver.models import (
    ColumnDescriptor,
    ColumnInfo,
    DriverCapabilities,
    TableInfo,
    UnloadManifest,
    WarehouseStatus,
)
from databricks_driver.namespace import NamespaceResolver
from databricks_driver.sql import DatabricksSqlExecutor, Row, SqlExecutor, http_path_for_warehouse
from databricks_driver.unload.extractors import ExtractorFactory
from databricks_driver.unload.orchestrator import UnloadOrchestrator
from databricks_driver.utils.config import DEFAULT_DATA_SOURCE, get_pre_aggregations_schema
from databricks_driver.utils.logging import LogContext, get_logger

logger = get_logger(__name__)

DEFAULT_CONCURRENCY = 10


class DatabricksDriver:
    """Databricks SQL warehouse driver.

    Args:
        config: Driver configuration
        executor: SQL execution collaborator. Defaults to databricks-sql-connector
            authenticated through the credential broker.
        broker: Credential broker. Built from the config when omitted.
        health_probe: Warehouse status checker
        type_overrides: Raw type -> generic type overrides for introspection
        extractor_factory: Bucket type -> file extractor lookup
    """

    def __init__(
        self,
        config: DatabricksDriverConfig,
        executor: SqlExecutor | None = None,
        broker: CredentialBroker | None = None,
        health_probe: HealthProbe | None = None,
        type_overrides: Mapping[str, str] | None = None,
        extractor_factory: type[ExtractorFactory] = ExtractorFactory,
    ):
        self.config = config
        self.namespace = NamespaceResolver(config.namespace)
        self.broker = broker or CredentialBroker(
            host=config.host,
            client_id=config.oauth_client_id,
            client_secret=config.oauth_client_secret,
            password=config.token,
        )
        self.health_probe = health_probe or HealthProbe()
        self.executor = executor or DatabricksSqlExecutor(
            server_hostname=config.host,
            http_path=http_path_for_warehouse(config.warehouse_id),
            access_token_provider=self.broker.get_sql_password,
        )
        self.column_types = ColumnTypeResolver(self.executor, overrides=type_overrides)
        self.unloader = UnloadOrchestrator(
            executor=self.executor,
            namespace=self.namespace,
            column_types=self.column_types,
            bucket=config.bucket,
            extractor_factory=extractor_factory,
        )
        self._log_deprecations()

    @classmethod
    def from_env(cls, data_source: str = DEFAULT_DATA_SOURCE, **overrides: Any) -> "DatabricksDriver":
        """Build a driver from environment variables, with keyword overrides."""
        return cls(DatabricksDriverConfig.from_env(data_source, **overrides))

    @staticmethod
    def default_concurrency() -> int:
        return DEFAULT_CONCURRENCY

    def _log_deprecations(self) -> None:
        if self.config.has_pwd_in_url:
            logger.warning(
                "PWD Parameter Deprecation in connection string",
                warning="PWD parameter is deprecated and will be ignored in future releases. "
                "Please migrate to the CUBEJS_DB_DATABRICKS_TOKEN environment variable.",
            )
        if self.config.spark_protocol:
            logger.warning(
                "jdbc:spark protocol deprecation",
                warning="The `jdbc:spark` protocol is deprecated and will be ignored in future "
                "releases. Please migrate your CUBEJS_DB_DATABRICKS_URL environment variable "
                "to the `jdbc:databricks` protocol.",
            )

    def read_only(self) -> bool:
        return self.config.read_only

    def capabilities(self) -> DriverCapabilities:
        return DriverCapabilities()

    async def test_connection(self) -> WarehouseStatus:
        """Check that the configured SQL warehouse is reachable and healthy.

        Raises:
            AuthExchangeError: If the OAuth exchange fails
            UnreachableError, TerminalStateError, UnhealthyError: From the health probe
        """
        with LogContext(host=self.config.host, warehouse_id=self.config.warehouse_id):
            auth_header = await self.broker.get_auth_header()
            return await self.health_probe.check(
                self.config.host, self.config.warehouse_id, auth_header
            )

    async def query(self, sql: str, params: Sequence[Any] | None = None) -> list[Row]:
        """Run SQL, qualifying pre-aggregation schema references with the catalog."""
        sql = self.namespace.rewrite_schema_references(sql, get_pre_aggregations_schema())
        return await self.executor.execute(sql, list(params or []))

    async def load_pre_aggregation_into_table(
        self, table_name: str, load_sql: str, params: Sequence[Any] | None = None
    ) -> list[Row]:
        """Run the statement that fills a pre-aggregation table."""
        schema = table_name.split(".")[0]
        load_sql = self.namespace.rewrite_schema_references(load_sql, schema)
        return await self.executor.execute(load_sql, list(params or []))

    async def drop_table(self, table_name: str) -> None:
        await self.executor.execute(f"DROP TABLE {self.namespace.full_name(table_name)}", [])

    async def create_schema_if_not_exists(self, schema_name: str) -> None:
        await self.executor.execute(
            f"CREATE SCHEMA IF NOT EXISTS {self.namespace.qualify_schema(schema_name)}", []
        )

    async def get_tables_query(self, schema_name: str) -> list[dict[str, str]]:
        """List the table names of one schema."""
        rows = await self.executor.execute(
            f"SHOW TABLES IN {self.namespace.qualify_schema(schema_name)}", []
        )
        return [{"table_name": row["tableName"]} for row in rows]

    async def _show_databases(self) -> list[str]:
        sql = "SHOW DATABASES"
        if self.namespace.catalog:
            sql = f"{sql} IN {self.namespace.quote_identifier(self.namespace.catalog)}"
        rows = await self.executor.execute(sql, [])
        # Newer runtimes name the column "namespace"
        return [row.get("databaseName") or row["namespace"] for row in rows]

    async def _show_tables(self, schema_name: str) -> list[TableInfo]:
        rows = await self.executor.execute(
            f"SHOW TABLES IN {self.namespace.qualify_schema(schema_name)}", []
        )
        return [TableInfo(schema_name=row["database"], table_name=row["tableName"]) for row in rows]

    async def get_schemas(self) -> list[str]:
        return await self._show_databases()

    async def get_tables(self) -> list[TableInfo]:
        """All accessible tables: of the configured database, or of every schema."""
        if self.config.database:
            return await self._show_tables(self.config.database)

        schemas = await self._show_databases()
        tables = await asyncio.gather(*(self._show_tables(schema) for schema in schemas))
        return [table for schema_tables in tables for table in schema_tables]

    async def get_tables_for_specific_schemas(self, schemas: Sequence[str]) -> list[TableInfo]:
        tables = await asyncio.gather(*(self._show_tables(schema) for schema in schemas))
        return [table for schema_tables in tables for table in schema_tables]

    async def get_columns_for_specific_tables(
        self, tables: Sequence[TableInfo]
    ) -> list[ColumnInfo]:
        async def _columns(table: TableInfo) -> list[ColumnInfo]:
            columns = await self.table_column_types(f"{table.schema_name}.{table.table_name}")
            return [
                ColumnInfo(
                    schema_name=table.schema_name,
                    table_name=table.table_name,
                    column_name=column.name,
                    data_type=column.type,
                )
                for column in columns
            ]

        results = await asyncio.gather(*(_columns(table) for table in tables))
        return [column for table_columns in results for column in table_columns]

    async def tables_schema(self) -> dict[str, dict[str, list[ColumnDescriptor]]]:
        """Schema -> table -> columns for every accessible table."""
        tables = await self.get_tables()
        columns = await asyncio.gather(
            *(self.table_column_types(f"{t.schema_name}.{t.table_name}") for t in tables)
        )

        metadata: dict[str, dict[str, list[ColumnDescriptor]]] = {}
        for table, table_columns in zip(tables, columns, strict=True):
            metadata.setdefault(table.schema_name, {})[table.table_name] = table_columns
        return metadata

    async def table_column_types(self, table: str) -> list[ColumnDescriptor]:
        return await self.column_types.describe_table(self.namespace.qualify_table_reference(table))

    async def query_column_types(
        self, sql: str, params: Sequence[Any] | None = None
    ) -> list[ColumnDescriptor]:
        sql = self.namespace.rewrite_schema_references(sql, get_pre_aggregations_schema())
        return await self.column_types.describe_query(sql, params)

    def is_unload_supported(self) -> bool:
        return self.config.bucket.export_bucket is not None

    async def unload(
        self,
        table_name: str,
        query_sql: str | None = None,
        query_params: Sequence[Any] | None = None,
    ) -> UnloadManifest:
        """Export a pre-aggregation table, or a query result, to the export bucket."""
        return await self.unloader.unload(table_name, query_sql, query_params)

    async def close(self) -> None:
        """Clean up resources (HTTP clients)."""
        await self.broker.close()
        await self.health_probe.close()
