"""
Data models shared by the Databricks driver components.

Pydantic models for REST payloads (identity token, warehouse status) and for the
values handed back to the query engine (column descriptors, unload manifests).
"""

from enum import Enum

from pydantic import BaseModel, Field

# Generic type names produced by the override table
GENERIC_TYPE_HLL_DATASKETCHES = "hll_datasketches"
GENERIC_TYPE_BIGINT = "bigint"

# Seconds subtracted from the server-reported token lifetime
TOKEN_EXPIRY_SKEW_SECONDS = 60


class BucketType(str, Enum):
    """Supported export bucket providers."""

    S3 = "s3"
    GCS = "gcs"
    AZURE = "azure"


class ColumnDescriptor(BaseModel):
    """A column name with its generic type."""

    name: str
    type: str


class UnloadManifest(BaseModel):
    """Files produced by an unload, plus what the caller needs to read them."""

    files: list[str] = Field(..., description="Signed or otherwise readable file URIs, in order")
    columns: list[ColumnDescriptor]
    csv_escape_symbol: str | None = None
    headerless: bool = Field(True, description="Unloaded CSV files never carry a header row")


class TokenResponse(BaseModel):
    """Response from the workspace OIDC token endpoint."""

    access_token: str
    expires_in: int


class WarehouseHealth(BaseModel):
    """Nested health block of the warehouse status payload."""

    status: str | None = None
    summary: str | None = None
    details: str | None = None


class WarehouseStatus(BaseModel):
    """Response from the SQL warehouse status endpoint."""

    state: str | None = None
    health: WarehouseHealth | None = None


class ParsedConnectionProperties(BaseModel):
    """Host and warehouse id parsed from a JDBC URL."""

    host: str
    warehouse_id: str


class ParsedBucketUrl(BaseModel):
    """An export bucket URL split into its parts.

    ``s3://bucket/path`` gives bucket_name="bucket", path="path".
    ``wasbs://container@account.blob.core.windows.net/path`` gives
    bucket_name="account.blob.core.windows.net", username="container", path="path".
    """

    scheme: str
    bucket_name: str
    path: str = ""
    username: str | None = None


class DriverCapabilities(BaseModel):
    """Optional features the query engine may use with this driver."""

    unload_without_temp_table: bool = True
    incremental_schema_loading: bool = True


class TableInfo(BaseModel):
    schema_name: str
    table_name: str


class ColumnInfo(BaseModel):
    schema_name: str
    table_name: str
    column_name: str
    data_type: str
