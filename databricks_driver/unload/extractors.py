"""
Export bucket file extractors.

After Databricks writes an external CSV table into the export bucket, an extractor lists
the files under the table's prefix and turns each into a URL the query engine can read
without further credentials. One extractor exists per bucket provider; the factory picks
it by bucket type.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from datetime import UTC, datetime, timedelta
from typing import Any

import boto3
from azure.core.exceptions import AzureError
from azure.identity import ClientSecretCredential, DefaultAzureCredential
from azure.storage.blob import BlobSasPermissions, BlobServiceClient, generate_blob_sas
from botocore.exceptions import BotoCoreError, ClientError
from google.api_core.exceptions import GoogleAPIError
from google.auth.exceptions import GoogleAuthError
from google.cloud import storage
from google.oauth2 import service_account
from pydantic import BaseModel

from databricks_driver.exceptions import ConfigurationError, ExtractionError
from databricks_driver.models import BucketType
from databricks_driver.utils.logging import get_logger

logger = get_logger(__name__)

# Lifetime of generated pre-signed / SAS / signed URLs
SIGNED_URL_EXPIRY_SECONDS = 3600
CSV_SUFFIX = ".csv"


class S3Credentials(BaseModel):
    access_key_id: str = ""
    secret_access_key: str = ""
    region: str = ""


class AzureCredentials(BaseModel):
    """Either an account key, or a service principal (tenant/client/secret)."""

    azure_key: str | None = None
    tenant_id: str | None = None
    client_id: str | None = None
    client_secret: str | None = None


class GCSCredentials(BaseModel):
    """Service account JSON content. Required: signing needs the account's private key."""

    credentials: str | None = None


class FileExtractor(ABC):
    """Lists unloaded files under a prefix and returns readable URLs for them."""

    @abstractmethod
    async def extract(self, credentials: Any, bucket_name: str, prefix: str) -> list[str]:
        """
        Return readable URLs of the CSV files written under a prefix.

        Args:
            credentials: Provider-specific credentials model
            bucket_name: Bucket (or container) to list
            prefix: Object name prefix the table was unloaded to

        Raises:
            ExtractionError: If listing or signing fails, or no files were written
        """
        pass


class S3FileExtractor(FileExtractor):
    """Pre-signed GET URLs for objects in an S3 bucket."""

    def _list_and_sign(self, credentials: S3Credentials, bucket_name: str, prefix: str) -> list[str]:
        session_kwargs: dict[str, str] = {}
        if credentials.access_key_id and credentials.secret_access_key:
            session_kwargs["aws_access_key_id"] = credentials.access_key_id
            session_kwargs["aws_secret_access_key"] = credentials.secret_access_key
        if credentials.region:
            session_kwargs["region_name"] = credentials.region
        client = boto3.Session(**session_kwargs).client("s3")

        urls: list[str] = []
        paginator = client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=bucket_name, Prefix=prefix):
            for obj in page.get("Contents", []):
                key = obj["Key"]
                if not key.endswith(CSV_SUFFIX):
                    continue
                urls.append(
                    client.generate_presigned_url(
                        "get_object",
                        Params={"Bucket": bucket_name, "Key": key},
                        ExpiresIn=SIGNED_URL_EXPIRY_SECONDS,
                    )
                )
        return urls

    async def extract(self, credentials: S3Credentials, bucket_name: str, prefix: str) -> list[str]:
        try:
            urls = await asyncio.to_thread(self._list_and_sign, credentials, bucket_name, prefix)
        except (BotoCoreError, ClientError) as exc:
            logger.error("S3 extraction failed", bucket=bucket_name, prefix=prefix, error=str(exc))
            raise ExtractionError(f"Unable to list unloaded files in S3: {exc}") from exc

        if not urls:
            raise ExtractionError("Unable to UNLOAD table, there are no files in S3 storage")
        return urls


def _split_azure_bucket(bucket_name: str) -> tuple[str, str]:
    """Split ``account.blob.core.windows.net/container`` into (account, container)."""
    splitter = (
        ".blob.core.windows.net/" if "blob.core" in bucket_name else ".dfs.core.windows.net/"
    )
    account, sep, rest = bucket_name.partition(splitter)
    if not sep or not rest:
        raise ExtractionError(f"Unrecognized Azure storage address: {bucket_name}")
    return account, rest.split("/", 1)[0]


class AzureFileExtractor(FileExtractor):
    """Blob SAS URLs for blobs in an Azure storage container."""

    def _list_and_sign(
        self, credentials: AzureCredentials, bucket_name: str, prefix: str
    ) -> list[str]:
        account, container = _split_azure_bucket(bucket_name)
        account_url = f"https://{account}.blob.core.windows.net"
        expiry = datetime.now(UTC) + timedelta(seconds=SIGNED_URL_EXPIRY_SECONDS)

        user_delegation_key = None
        if credentials.azure_key:
            client = BlobServiceClient(account_url=account_url, credential=credentials.azure_key)
        else:
            if credentials.tenant_id and credentials.client_id and credentials.client_secret:
                token_credential: Any = ClientSecretCredential(
                    tenant_id=credentials.tenant_id,
                    client_id=credentials.client_id,
                    client_secret=credentials.client_secret,
                )
            else:
                token_credential = DefaultAzureCredential()
            client = BlobServiceClient(account_url=account_url, credential=token_credential)
            user_delegation_key = client.get_user_delegation_key(
                key_start_time=datetime.now(UTC), key_expiry_time=expiry
            )

        container_client = client.get_container_client(container)
        urls: list[str] = []
        for blob in container_client.list_blobs(name_starts_with=prefix):
            if not blob.name.endswith(CSV_SUFFIX):
                continue
            sas = generate_blob_sas(
                account_name=account,
                container_name=container,
                blob_name=blob.name,
                account_key=credentials.azure_key,
                user_delegation_key=user_delegation_key,
                permission=BlobSasPermissions(read=True),
                expiry=expiry,
            )
            urls.append(f"{account_url}/{container}/{blob.name}?{sas}")
        return urls

    async def extract(
        self, credentials: AzureCredentials, bucket_name: str, prefix: str
    ) -> list[str]:
        try:
            urls = await asyncio.to_thread(self._list_and_sign, credentials, bucket_name, prefix)
        except (AzureError, ValueError) as exc:
            logger.error(
                "Azure extraction failed", bucket=bucket_name, prefix=prefix, error=str(exc)
            )
            raise ExtractionError(f"Unable to list unloaded files in Azure: {exc}") from exc

        if not urls:
            raise ExtractionError("Unable to UNLOAD table, there are no files in Azure storage")
        return urls


class GCSFileExtractor(FileExtractor):
    """V4 signed URLs for objects in a Google Cloud Storage bucket."""

    def _list_and_sign(self, credentials: GCSCredentials, bucket_name: str, prefix: str) -> list[str]:
        info = json.loads(credentials.credentials)
        client = storage.Client(
            project=info.get("project_id"),
            credentials=service_account.Credentials.from_service_account_info(info),
        )

        urls: list[str] = []
        for blob in client.list_blobs(bucket_name, prefix=prefix):
            if not blob.name.endswith(CSV_SUFFIX):
                continue
            urls.append(
                blob.generate_signed_url(
                    version="v4",
                    expiration=timedelta(seconds=SIGNED_URL_EXPIRY_SECONDS),
                    method="GET",
                )
            )
        return urls

    async def extract(self, credentials: GCSCredentials, bucket_name: str, prefix: str) -> list[str]:
        # Signing needs a service account private key
        if not credentials.credentials:
            raise ConfigurationError("GCS extraction requires service account credentials")

        try:
            urls = await asyncio.to_thread(self._list_and_sign, credentials, bucket_name, prefix)
        except (GoogleAPIError, GoogleAuthError, ValueError) as exc:
            logger.error("GCS extraction failed", bucket=bucket_name, prefix=prefix, error=str(exc))
            raise ExtractionError(f"Unable to list unloaded files in GCS: {exc}") from exc

        if not urls:
            raise ExtractionError("Unable to UNLOAD table, there are no files in GCS storage")
        return urls


class ExtractorFactory:
    """Factory for file extractors keyed by bucket type."""

    _extractors: dict[BucketType, type[FileExtractor]] = {}

    @classmethod
    def register(cls, bucket_type: BucketType, extractor_class: type[FileExtractor]) -> None:
        """
        Register a file extractor implementation.

        Args:
            bucket_type: Bucket type enum value
            extractor_class: Extractor class to instantiate
        """
        cls._extractors[bucket_type] = extractor_class

    @classmethod
    def get_extractor(cls, bucket_type: BucketType) -> FileExtractor:
        """
        Get an extractor instance for the given bucket type.

        Raises:
            ValueError: If no extractor is registered for the bucket type
        """
        extractor_class = cls._extractors.get(bucket_type)
        if not extractor_class:
            available = ", ".join(b.value for b in cls.get_available_bucket_types())
            raise ValueError(
                f"No extractor registered for {bucket_type.value}. Available: {available or 'none'}"
            )
        return extractor_class()

    @classmethod
    def get_available_bucket_types(cls) -> list[BucketType]:
        """Get list of registered bucket types."""
        return list(cls._extractors.keys())


ExtractorFactory.register(BucketType.S3, S3FileExtractor)
ExtractorFactory.register(BucketType.AZURE, AzureFileExtractor)
ExtractorFactory.register(BucketType.GCS, GCSFileExtractor)
