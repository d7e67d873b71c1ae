"""
Unload pipeline: export a table or query result to the export bucket as CSV files.

Per call:
1. Validate the bucket type and the provider settings
2. Qualify the table name, and pre-aggregation schema references in the query, with the catalog
3. Describe the table or query to learn its columns
4. CREATE TABLE <name>_tmp USING CSV LOCATION '<bucket>/<name>' AS SELECT ...
5. DROP the temporary table, whatever happened in step 4
6. List the written files through the bucket provider's extractor
"""

from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from typing import Any

from databricks_driver.column_types import ColumnTypeResolver
from databricks_driver.config import BucketConfig
from databricks_driver.exceptions import (
    ConfigurationError,
    SqlExecutionError,
    UnsupportedProviderError,
)
from databricks_driver.models import (
    GENERIC_TYPE_HLL_DATASKETCHES,
    BucketType,
    ColumnDescriptor,
    ParsedBucketUrl,
    UnloadManifest,
)
from databricks_driver.namespace import NamespaceResolver
from databricks_driver.sql import SqlExecutor
from databricks_driver.unload.bucket import export_prefix, parse_bucket_url
from databricks_driver.unload.extractors import (
    AzureCredentials,
    ExtractorFactory,
    GCSCredentials,
    S3Credentials,
)
from databricks_driver.utils.config import get_pre_aggregations_schema
from databricks_driver.utils.logging import LogContext, get_logger

logger = get_logger(__name__)

TEMP_TABLE_SUFFIX = "_tmp"


def generate_table_columns_for_export(columns: Sequence[ColumnDescriptor]) -> str:
    """Projection list for the export. CSV cannot hold BINARY, so those go through base64()."""
    return ", ".join(
        f"base64({column.name})" if column.type == GENERIC_TYPE_HLL_DATASKETCHES else column.name
        for column in columns
    )


def has_binary_columns(columns: Sequence[ColumnDescriptor]) -> bool:
    return any(column.type == GENERIC_TYPE_HLL_DATASKETCHES for column in columns)


class UnloadOrchestrator:
    """Runs unloads. Holds no state between calls."""

    def __init__(
        self,
        executor: SqlExecutor,
        namespace: NamespaceResolver,
        column_types: ColumnTypeResolver,
        bucket: BucketConfig,
        extractor_factory: type[ExtractorFactory] = ExtractorFactory,
    ):
        self.executor = executor
        self.namespace = namespace
        self.column_types = column_types
        self.bucket = bucket
        self.extractor_factory = extractor_factory

    def _validated_bucket_type(self) -> BucketType:
        try:
            return BucketType(self.bucket.bucket_type)
        except ValueError:
            raise UnsupportedProviderError(self.bucket.bucket_type) from None

    async def unload(
        self,
        table_name: str,
        query_sql: str | None = None,
        query_params: Sequence[Any] | None = None,
    ) -> UnloadManifest:
        """
        Unload a table, or the result of a query, to the export bucket.

        Args:
            table_name: schema.table name of the pre-aggregation table
            query_sql: Optional SQL whose result is unloaded instead of the table
            query_params: Positional parameters of query_sql

        Returns:
            UnloadManifest listing the readable file URLs and the column types

        Raises:
            UnsupportedProviderError: Before any SQL when the bucket type is not supported
            ConfigurationError: Before any SQL when an Azure bucket URL names no container
                or GCS service account credentials are missing
            SqlExecutionError: When describing, creating or dropping fails
            ExtractionError: When the written files cannot be listed
        """
        bucket_type = self._validated_bucket_type()
        parsed_bucket = self._parsed_bucket(bucket_type)
        table_full_name = self.namespace.full_name(table_name)

        with LogContext(table=table_full_name, bucket_type=bucket_type.value):
            logger.info("Starting unload", from_query=query_sql is not None)

            if query_sql is not None:
                query_sql = self.namespace.rewrite_schema_references(
                    query_sql, get_pre_aggregations_schema()
                )
                params = list(query_params or [])
                columns = await self.column_types.describe_query(query_sql, params)
                await self._create_external_table_from_sql(
                    table_full_name, query_sql, params, columns
                )
            else:
                columns = await self.column_types.describe_table(
                    self.namespace.qualify_table_reference(table_full_name)
                )
                await self._create_external_table_from_table(table_full_name, columns)

            files = await self._extract_files(bucket_type, parsed_bucket, table_full_name)

            logger.info("Unload finished", files=len(files))

        return UnloadManifest(
            files=files,
            columns=columns,
            csv_escape_symbol=self.bucket.csv_escape_symbol,
            headerless=True,
        )

    def _create_statement(self, table_full_name: str, select: str) -> str:
        return (
            f"CREATE TABLE {table_full_name}{TEMP_TABLE_SUFFIX} "
            f"USING CSV LOCATION '{self.bucket.location}/{table_full_name}' "
            f"OPTIONS (escape = '\"') "
            f"AS ({select});"
        )

    async def _drop_temp_table(self, table_full_name: str) -> None:
        await self.executor.execute(
            f"DROP TABLE IF EXISTS {table_full_name}{TEMP_TABLE_SUFFIX};", []
        )

    @asynccontextmanager
    async def _temporary_table(self, table_full_name: str) -> AsyncIterator[None]:
        """Drop the temporary external table exactly once when the block exits.

        After a successful block a failed drop is only logged. After a failed block the
        drop error, if any, propagates chained onto the original error.
        """
        try:
            yield
        except BaseException:
            await self._drop_temp_table(table_full_name)
            raise

        try:
            await self._drop_temp_table(table_full_name)
        except SqlExecutionError as exc:
            logger.warning(
                "Failed to drop temporary unload table",
                table=f"{table_full_name}{TEMP_TABLE_SUFFIX}",
                error=str(exc),
            )

    async def _create_external_table_from_sql(
        self,
        table_full_name: str,
        sql: str,
        params: list[Any],
        columns: Sequence[ColumnDescriptor],
    ) -> None:
        select = sql
        if has_binary_columns(columns):
            select = f"SELECT {generate_table_columns_for_export(columns)} FROM ({sql})"

        async with self._temporary_table(table_full_name):
            await self.executor.execute(self._create_statement(table_full_name, select), params)

    async def _create_external_table_from_table(
        self, table_full_name: str, columns: Sequence[ColumnDescriptor]
    ) -> None:
        projection = "*"
        if has_binary_columns(columns):
            projection = generate_table_columns_for_export(columns)
        select = f"SELECT {projection} FROM {table_full_name}"

        async with self._temporary_table(table_full_name):
            await self.executor.execute(self._create_statement(table_full_name, select), [])

    def _parsed_bucket(self, bucket_type: BucketType) -> ParsedBucketUrl:
        """Parse the export bucket and check the provider settings the extractor needs."""
        parsed = parse_bucket_url(self.bucket.export_bucket)
        if bucket_type == BucketType.GCS and not self.bucket.gcs_credentials:
            raise ConfigurationError("GCS export bucket requires service account credentials")
        if bucket_type == BucketType.AZURE and not parsed.username:
            raise ConfigurationError(
                "Azure export bucket must be of the form "
                "wasbs://<container>@<account>.blob.core.windows.net/<path>"
            )
        return parsed

    async def _extract_files(
        self, bucket_type: BucketType, parsed: ParsedBucketUrl, table_full_name: str
    ) -> list[str]:
        prefix = export_prefix(parsed.path, table_full_name)
        extractor = self.extractor_factory.get_extractor(bucket_type)

        if bucket_type == BucketType.AZURE:
            # wasbs://container@account.blob.core.windows.net parses to host + container
            return await extractor.extract(
                AzureCredentials(
                    azure_key=self.bucket.azure_key,
                    tenant_id=self.bucket.azure_tenant_id,
                    client_id=self.bucket.azure_client_id,
                    client_secret=self.bucket.azure_client_secret,
                ),
                f"{parsed.bucket_name}/{parsed.username}",
                prefix,
            )
        if bucket_type == BucketType.S3:
            return await extractor.extract(
                S3Credentials(
                    access_key_id=self.bucket.aws_key or "",
                    secret_access_key=self.bucket.aws_secret or "",
                    region=self.bucket.aws_region or "",
                ),
                parsed.bucket_name,
                prefix,
            )
        return await extractor.extract(
            GCSCredentials(credentials=self.bucket.gcs_credentials),
            parsed.bucket_name,
            prefix,
        )
