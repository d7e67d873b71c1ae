"""Tests for DatabricksDriver."""

import os
from unittest.mock import AsyncMock, Mock, patch

import pytest

from databricks_driver.auth.credentials import CredentialBroker
from databricks_driver.config import BucketConfig, DatabricksDriverConfig, NamespaceConfig
from databricks_driver.driver import DatabricksDriver
from databricks_driver.exceptions import ConfigurationError, UnreachableError
from databricks_driver.models import (
    ColumnDescriptor,
    ColumnInfo,
    TableInfo,
    WarehouseHealth,
    WarehouseStatus,
)

HOST = "dbc-1.cloud.databricks.com"
JDBC_URL = f"jdbc:databricks://{HOST}:443/default;httpPath=/sql/1.0/warehouses/abc123"


class ScriptedExecutor:
    """SqlExecutor fake answering known statements and recording every call."""

    def __init__(self, responses=None):
        self.responses = responses or {}
        self.statements: list[tuple[str, list]] = []

    async def execute(self, sql, params=()):
        self.statements.append((sql, list(params)))
        return self.responses.get(sql, [])

    @property
    def sql(self):
        return [sql for sql, _ in self.statements]


def make_config(catalog=None, database=None, **bucket):
    return DatabricksDriverConfig(
        url=JDBC_URL,
        host=HOST,
        warehouse_id="abc123",
        token="dapi-token",
        database=database,
        namespace=NamespaceConfig(catalog=catalog),
        bucket=BucketConfig(**bucket),
    )


def make_driver(config=None, responses=None, health_probe=None):
    executor = ScriptedExecutor(responses)
    driver = DatabricksDriver(
        config or make_config(),
        executor=executor,
        health_probe=health_probe or Mock(),
    )
    return driver, executor


class TestDriverConstruction:
    """Test cases for building a driver."""

    def test_both_credential_modes_rejected(self):
        config = make_config().model_copy(
            update={"oauth_client_id": "client", "oauth_client_secret": "secret"}
        )

        with pytest.raises(ConfigurationError, match="mutually exclusive"):
            DatabricksDriver(config, executor=ScriptedExecutor())

    def test_no_credentials_rejected(self):
        config = make_config().model_copy(update={"token": None})

        with pytest.raises(ConfigurationError, match="No credentials provided"):
            DatabricksDriver(config, executor=ScriptedExecutor())

    def test_from_env(self):
        env = {"CUBEJS_DB_DATABRICKS_URL": JDBC_URL, "CUBEJS_DB_DATABRICKS_TOKEN": "dapi-token"}
        with patch.dict(os.environ, env, clear=True):
            driver = DatabricksDriver.from_env()

        assert driver.config.warehouse_id == "abc123"
        assert driver.broker.uses_oauth is False
        assert driver.read_only() is True
        assert driver.is_unload_supported() is False

    def test_defaults(self):
        driver, _ = make_driver(make_config(export_bucket="s3://exports", bucket_type="s3"))

        assert DatabricksDriver.default_concurrency() == 10
        assert driver.is_unload_supported() is True
        capabilities = driver.capabilities()
        assert capabilities.unload_without_temp_table is True
        assert capabilities.incremental_schema_loading is True


class TestTestConnection:
    """Test cases for DatabricksDriver.test_connection."""

    @pytest.mark.asyncio
    async def test_uses_bearer_token(self):
        status = WarehouseStatus(state="RUNNING", health=WarehouseHealth(status="HEALTHY"))
        probe = Mock()
        probe.check = AsyncMock(return_value=status)
        driver, _ = make_driver(health_probe=probe)

        assert await driver.test_connection() == status
        probe.check.assert_awaited_once_with(HOST, "abc123", "Bearer dapi-token")

    @pytest.mark.asyncio
    async def test_probe_errors_propagate(self):
        probe = Mock()
        probe.check = AsyncMock(side_effect=UnreachableError(404, "Not Found"))
        driver, _ = make_driver(health_probe=probe)

        with pytest.raises(UnreachableError, match="404"):
            await driver.test_connection()


class TestQueries:
    """Test cases for statement composition."""

    @pytest.mark.asyncio
    async def test_query_rewrites_pre_aggregation_schema(self):
        driver, executor = make_driver(make_config(catalog="main"))

        with patch.dict(os.environ, {"CUBEJS_PRE_AGGREGATIONS_SCHEMA": "dev_pre_aggregations"}):
            await driver.query("SELECT * FROM dev_pre_aggregations.orders WHERE id = ?", [7])

        assert executor.statements == [
            ("SELECT * FROM main.dev_pre_aggregations.orders WHERE id = ?", [7])
        ]

    @pytest.mark.asyncio
    async def test_query_without_catalog_is_unchanged(self):
        driver, executor = make_driver()

        await driver.query("SELECT * FROM dev_pre_aggregations.orders")

        assert executor.statements == [("SELECT * FROM dev_pre_aggregations.orders", [])]

    @pytest.mark.asyncio
    async def test_load_pre_aggregation_uses_table_schema(self):
        driver, executor = make_driver(make_config(catalog="main"))

        await driver.load_pre_aggregation_into_table(
            "rollups.orders_v1",
            "CREATE TABLE rollups.orders_v1 AS SELECT * FROM raw.orders",
        )

        assert executor.sql == ["CREATE TABLE main.rollups.orders_v1 AS SELECT * FROM raw.orders"]

    @pytest.mark.asyncio
    async def test_drop_table_and_create_schema(self):
        driver, executor = make_driver(make_config(catalog="main"))

        await driver.drop_table("dev_pre_aggregations.orders")
        await driver.create_schema_if_not_exists("dev_pre_aggregations")

        assert executor.sql == [
            "DROP TABLE main.dev_pre_aggregations.orders",
            "CREATE SCHEMA IF NOT EXISTS `main`.`dev_pre_aggregations`",
        ]

    @pytest.mark.asyncio
    async def test_get_tables_query(self):
        driver, _ = make_driver(
            responses={
                "SHOW TABLES IN `analytics`": [
                    {"database": "analytics", "tableName": "orders", "isTemporary": False}
                ]
            }
        )

        assert await driver.get_tables_query("analytics") == [{"table_name": "orders"}]


class TestIntrospection:
    """Test cases for schema introspection."""

    RESPONSES = {
        "SHOW DATABASES IN `main`": [{"databaseName": "analytics"}, {"namespace": "rollups"}],
        "SHOW TABLES IN `main`.`analytics`": [{"database": "analytics", "tableName": "orders"}],
        "SHOW TABLES IN `main`.`rollups`": [{"database": "rollups", "tableName": "orders_v1"}],
        "DESCRIBE `main`.`analytics`.`orders`": [
            {"col_name": "id", "data_type": "bigint"},
            {"col_name": "", "data_type": ""},
        ],
        "DESCRIBE `main`.`rollups`.`orders_v1`": [
            {"col_name": "sketch", "data_type": "binary"},
            {"col_name": "total", "data_type": "decimal(10,0)"},
        ],
    }

    @pytest.mark.asyncio
    async def test_get_schemas_accepts_both_column_names(self):
        driver, _ = make_driver(make_config(catalog="main"), responses=self.RESPONSES)

        assert await driver.get_schemas() == ["analytics", "rollups"]

    @pytest.mark.asyncio
    async def test_get_tables_uses_configured_database(self):
        driver, executor = make_driver(
            make_config(catalog="main", database="analytics"), responses=self.RESPONSES
        )

        assert await driver.get_tables() == [TableInfo(schema_name="analytics", table_name="orders")]
        assert executor.sql == ["SHOW TABLES IN `main`.`analytics`"]

    @pytest.mark.asyncio
    async def test_tables_schema(self):
        driver, _ = make_driver(make_config(catalog="main"), responses=self.RESPONSES)

        assert await driver.tables_schema() == {
            "analytics": {"orders": [ColumnDescriptor(name="id", type="bigint")]},
            "rollups": {
                "orders_v1": [
                    ColumnDescriptor(name="sketch", type="hll_datasketches"),
                    ColumnDescriptor(name="total", type="bigint"),
                ]
            },
        }

    @pytest.mark.asyncio
    async def test_columns_for_specific_tables(self):
        driver, _ = make_driver(make_config(catalog="main"), responses=self.RESPONSES)

        columns = await driver.get_columns_for_specific_tables(
            [TableInfo(schema_name="analytics", table_name="orders")]
        )

        assert columns == [
            ColumnInfo(
                schema_name="analytics", table_name="orders", column_name="id", data_type="bigint"
            )
        ]

    @pytest.mark.asyncio
    async def test_tables_for_specific_schemas(self):
        driver, _ = make_driver(make_config(catalog="main"), responses=self.RESPONSES)

        tables = await driver.get_tables_for_specific_schemas(["rollups"])

        assert tables == [TableInfo(schema_name="rollups", table_name="orders_v1")]

    @pytest.mark.asyncio
    async def test_query_column_types(self):
        driver, executor = make_driver(
            responses={"DESCRIBE QUERY SELECT 1 AS one": [{"col_name": "one", "data_type": "int"}]}
        )

        columns = await driver.query_column_types("SELECT 1 AS one")

        assert columns == [ColumnDescriptor(name="one", type="int")]
        assert executor.statements == [("DESCRIBE QUERY SELECT 1 AS one", [])]

    @pytest.mark.asyncio
    async def test_query_column_types_qualifies_pre_aggregation_schema(self):
        driver, executor = make_driver(make_config(catalog="main"))

        with patch.dict(os.environ, {"CUBEJS_PRE_AGGREGATIONS_SCHEMA": "dev_pre_aggregations"}):
            await driver.query_column_types(
                "SELECT id FROM dev_pre_aggregations.orders_abc WHERE id > ?", [3]
            )

        assert executor.statements == [
            ("DESCRIBE QUERY SELECT id FROM main.dev_pre_aggregations.orders_abc WHERE id > ?", [3])
        ]


class TestClose:
    """Test cases for DatabricksDriver.close."""

    @pytest.mark.asyncio
    async def test_closes_broker_and_probe(self):
        probe = Mock()
        probe.close = AsyncMock()
        broker = Mock(spec=CredentialBroker)
        broker.close = AsyncMock()
        driver = DatabricksDriver(
            make_config(), executor=ScriptedExecutor(), broker=broker, health_probe=probe
        )

        await driver.close()

        broker.close.assert_awaited_once()
        probe.close.assert_awaited_once()
