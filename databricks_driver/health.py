"""
SQL warehouse health check against the Databricks REST API.
"""

import httpx
from pydantic import ValidationError

from databricks_driver.exceptions import (
    TerminalStateError,
    UnhealthyError,
    UnreachableError,
)
from databricks_driver.models import WarehouseStatus
from databricks_driver.utils.logging import get_logger

logger = get_logger(__name__)

TERMINAL_STATES = frozenset({"DELETING", "DELETED"})
FAILED_HEALTH_STATUS = "FAILED"


class HealthProbe:
    """Verifies a SQL warehouse exists, is not being deleted and is not failing."""

    def __init__(self, http_client: httpx.AsyncClient | None = None):
        self._owns_http_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=30.0)

    @staticmethod
    def status_url(host: str, warehouse_id: str) -> str:
        return f"https://{host}/api/2.0/sql/warehouses/{warehouse_id}"

    async def check(self, host: str, warehouse_id: str, auth_header: str) -> WarehouseStatus:
        """
        Fetch the warehouse status and fail on terminal or unhealthy warehouses.

        DEGRADED health is not a failure: a degraded warehouse still serves queries.

        Args:
            host: Workspace host name
            warehouse_id: SQL warehouse id
            auth_header: Full Authorization header value ("Bearer ...")

        Returns:
            The parsed warehouse status

        Raises:
            UnreachableError: On transport failure or a non-2xx response
            TerminalStateError: If the warehouse is DELETING or DELETED
            UnhealthyError: If the warehouse health status is FAILED
        """
        try:
            response = await self.http_client.get(
                self.status_url(host, warehouse_id),
                headers={"Authorization": auth_header, "Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise UnreachableError(0, str(exc)) from exc

        if not response.is_success:
            logger.warning(
                "Warehouse status request failed",
                warehouse_id=warehouse_id,
                status_code=response.status_code,
            )
            raise UnreachableError(response.status_code, response.reason_phrase)

        try:
            status = WarehouseStatus.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise UnreachableError(response.status_code, f"malformed status payload: {exc}") from exc

        if status.state in TERMINAL_STATES:
            raise TerminalStateError(status.state)

        if status.health and status.health.status == FAILED_HEALTH_STATUS:
            raise UnhealthyError(status.health.summary, status.health.details)

        return status

    async def close(self) -> None:
        """Close the HTTP client if the probe created it."""
        if self._owns_http_client:
            await self.http_client.aclose()
