"""
Bulk unload of tables and query results to S3, Azure Blob Storage or GCS.
"""

from databricks_driver.unload.bucket import export_prefix, parse_bucket_url
from databricks_driver.unload.extractors import (
    AzureFileExtractor,
    ExtractorFactory,
    FileExtractor,
    GCSFileExtractor,
    S3FileExtractor,
)
from databricks_driver.unload.orchestrator import UnloadOrchestrator

__all__ = [
    "AzureFileExtractor",
    "ExtractorFactory",
    "FileExtractor",
    "GCSFileExtractor",
    "S3FileExtractor",
    "UnloadOrchestrator",
    "export_prefix",
    "parse_bucket_url",
]
