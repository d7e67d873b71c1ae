"""
Driver configuration.

Settings are taken from explicit keyword arguments first and from the per-data-source
environment variables second (see databricks_driver.utils.config).
"""

import re
from typing import Any

from pydantic import BaseModel, ConfigDict

from databricks_driver.exceptions import ConfigurationError
from databricks_driver.models import BucketType, ParsedConnectionProperties
from databricks_driver.utils.config import (
    DEFAULT_DATA_SOURCE,
    get_config_value_str,
    get_data_source_value,
)

JDBC_DATABRICKS_PREFIX = "jdbc:databricks://"
JDBC_SPARK_PREFIX = "jdbc:spark://"
DEFAULT_UID = "token"

SUPPORTED_BUCKET_TYPES = tuple(bucket_type.value for bucket_type in BucketType)

_UID_PATTERN = re.compile(r";\s*UID\s*=\s*([^;]*)", re.IGNORECASE)
_PWD_PATTERN = re.compile(r";\s*PWD\s*=\s*([^;]*)", re.IGNORECASE)


class NamespaceConfig(BaseModel):
    """Optional Unity Catalog catalog applied to every qualified name."""

    model_config = ConfigDict(frozen=True)

    catalog: str | None = None


class BucketConfig(BaseModel):
    """Export bucket settings. The bucket type is only validated at unload time."""

    model_config = ConfigDict(frozen=True)

    bucket_type: str | None = None
    export_bucket: str | None = None
    mount_dir: str | None = None
    csv_escape_symbol: str | None = None
    # S3
    aws_key: str | None = None
    aws_secret: str | None = None
    aws_region: str | None = None
    # Azure
    azure_key: str | None = None
    azure_tenant_id: str | None = None
    azure_client_id: str | None = None
    azure_client_secret: str | None = None
    # GCS: service account JSON content
    gcs_credentials: str | None = None

    @property
    def location(self) -> str | None:
        """Base location external tables are written to. The mount dir wins."""
        return self.mount_dir or self.export_bucket


class DatabricksDriverConfig(BaseModel):
    """Complete driver configuration."""

    model_config = ConfigDict(frozen=True)

    url: str
    host: str
    warehouse_id: str
    uid: str = DEFAULT_UID
    token: str | None = None
    oauth_client_id: str | None = None
    oauth_client_secret: str | None = None
    database: str | None = None
    namespace: NamespaceConfig = NamespaceConfig()
    bucket: BucketConfig = BucketConfig()
    read_only: bool = True
    has_pwd_in_url: bool = False
    spark_protocol: bool = False

    @property
    def catalog(self) -> str | None:
        return self.namespace.catalog

    @classmethod
    def from_env(
        cls, data_source: str = DEFAULT_DATA_SOURCE, **overrides: Any
    ) -> "DatabricksDriverConfig":
        """Build a configuration from keyword overrides and environment variables.

        Raises:
            ConfigurationError: If no JDBC URL is configured
        """

        def setting(key: str, env_name: str) -> Any:
            value = overrides.get(key)
            if value is not None:
                return value
            return get_data_source_value(env_name, data_source)

        url = (
            overrides.get("url")
            or get_data_source_value("DATABRICKS_URL", data_source)
            or get_config_value_str("CUBEJS_JDBC_URL")
        )
        if not url:
            raise ConfigurationError("No Databricks JDBC URL provided")

        spark_protocol = JDBC_SPARK_PREFIX in url
        if spark_protocol:
            url = url.replace(JDBC_SPARK_PREFIX, JDBC_DATABRICKS_PREFIX)

        uid, pwd, cleaned_url = extract_and_remove_uid_pwd(url)
        connection = parse_databricks_jdbc_url(url)

        export_bucket = setting("export_bucket", "EXPORT_BUCKET")
        bucket = BucketConfig(
            bucket_type=setting("bucket_type", "EXPORT_BUCKET_TYPE"),
            export_bucket=export_bucket,
            mount_dir=setting("export_bucket_mount_dir", "EXPORT_BUCKET_MOUNT_DIR"),
            csv_escape_symbol=setting(
                "export_bucket_csv_escape_symbol", "EXPORT_BUCKET_CSV_ESCAPE_SYMBOL"
            ),
            aws_key=setting("aws_key", "EXPORT_BUCKET_AWS_KEY"),
            aws_secret=setting("aws_secret", "EXPORT_BUCKET_AWS_SECRET"),
            aws_region=setting("aws_region", "EXPORT_BUCKET_AWS_REGION"),
            azure_key=setting("azure_key", "EXPORT_BUCKET_AZURE_KEY"),
            azure_tenant_id=setting("azure_tenant_id", "EXPORT_BUCKET_AZURE_TENANT_ID"),
            azure_client_id=setting("azure_client_id", "EXPORT_BUCKET_AZURE_CLIENT_ID"),
            azure_client_secret=setting(
                "azure_client_secret", "EXPORT_BUCKET_AZURE_CLIENT_SECRET"
            ),
            gcs_credentials=setting("gcs_credentials", "EXPORT_GCS_CREDENTIALS"),
        )

        read_only = overrides.get("read_only")
        if read_only is None:
            # Without an export bucket nothing can be unloaded
            read_only = not export_bucket

        return cls(
            url=cleaned_url,
            host=connection.host,
            warehouse_id=connection.warehouse_id,
            uid=uid,
            token=setting("token", "DATABRICKS_TOKEN") or pwd,
            oauth_client_id=setting("oauth_client_id", "DATABRICKS_OAUTH_CLIENT_ID"),
            oauth_client_secret=setting("oauth_client_secret", "DATABRICKS_OAUTH_CLIENT_SECRET"),
            database=setting("database", "NAME"),
            namespace=NamespaceConfig(catalog=setting("catalog", "DATABRICKS_CATALOG")),
            bucket=bucket,
            read_only=read_only,
            has_pwd_in_url=pwd is not None,
            spark_protocol=spark_protocol,
        )


def extract_and_remove_uid_pwd(url: str) -> tuple[str, str | None, str]:
    """Pull UID and PWD out of a JDBC URL.

    Returns:
        (uid, pwd, url without the UID/PWD properties). uid defaults to "token".
    """
    uid_match = _UID_PATTERN.search(url)
    pwd_match = _PWD_PATTERN.search(url)
    uid = uid_match.group(1).strip() if uid_match else DEFAULT_UID
    pwd = pwd_match.group(1).strip() if pwd_match else None
    cleaned = _PWD_PATTERN.sub("", _UID_PATTERN.sub("", url))
    return uid or DEFAULT_UID, pwd or None, cleaned


def parse_databricks_jdbc_url(url: str) -> ParsedConnectionProperties:
    """Parse host and warehouse id out of a ``jdbc:databricks://`` URL.

    Example:
        jdbc:databricks://dbc-1.cloud.databricks.com:443/default;transportMode=http;
        httpPath=/sql/1.0/warehouses/abc123 -> host="dbc-1.cloud.databricks.com",
        warehouse_id="abc123"

    Raises:
        ConfigurationError: If the URL has no host or no httpPath
    """
    if not url.startswith(JDBC_DATABRICKS_PREFIX):
        raise ConfigurationError(f"Expected a {JDBC_DATABRICKS_PREFIX} URL")

    host_and_path, *params = url[len(JDBC_DATABRICKS_PREFIX) :].split(";")
    host = host_and_path.split("/", 1)[0].split(":", 1)[0]
    if not host:
        raise ConfigurationError("JDBC URL has no host")

    properties: dict[str, str] = {}
    for param in params:
        key, sep, value = param.partition("=")
        if sep:
            properties[key.strip().lower()] = value.strip()

    http_path = properties.get("httppath")
    if not http_path:
        raise ConfigurationError("JDBC URL has no httpPath property")

    warehouse_id = http_path.rstrip("/").split("/")[-1]
    return ParsedConnectionProperties(host=host, warehouse_id=warehouse_id)
