"""
Exceptions raised by the Databricks driver.
"""


class DatabricksDriverError(Exception):
    """Base class for all driver errors."""


class ConfigurationError(DatabricksDriverError):
    """Invalid or incomplete driver configuration. Raised before any I/O."""


class UnsupportedProviderError(ConfigurationError):
    """The configured export bucket type is not one of s3, gcs or azure."""

    def __init__(self, bucket_type: str | None):
        self.bucket_type = bucket_type
        super().__init__(f"Unsupported export bucket type: {bucket_type}")


class AuthExchangeError(DatabricksDriverError):
    """The OAuth client-credentials exchange failed."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class HealthError(DatabricksDriverError):
    """Base class for warehouse health check failures."""


class UnreachableError(HealthError):
    """The warehouse status endpoint answered with a non-2xx status."""

    def __init__(self, status_code: int, reason: str = ""):
        self.status_code = status_code
        super().__init__(f"Databricks API error: {status_code} {reason}".rstrip())


class TerminalStateError(HealthError):
    """The warehouse is being deleted or is already deleted."""

    def __init__(self, state: str):
        self.state = state
        super().__init__(f"Warehouse is being deleted (current state: {state})")


class UnhealthyError(HealthError):
    """The warehouse reports a FAILED health status."""

    def __init__(self, summary: str | None, details: str | None):
        self.summary = summary
        self.details = details
        super().__init__(f"Warehouse is unhealthy: {summary}. Details: {details}")


class SqlExecutionError(DatabricksDriverError):
    """A statement failed inside the SQL execution collaborator."""

    def __init__(self, message: str, sql: str | None = None):
        self.sql = sql
        super().__init__(message)


class ExtractionError(DatabricksDriverError):
    """Listing or signing unloaded files in the export bucket failed."""
