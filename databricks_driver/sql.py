"""
SQL execution collaborator.

The driver only composes statement text. Executing it is delegated to anything that
implements SqlExecutor; DatabricksSqlExecutor is the production implementation on top of
databricks-sql-connector, run in a worker thread since the connector is blocking.
"""

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, Protocol

from databricks import sql as databricks_sql
from databricks.sql.exc import Error as DatabricksSqlError

from databricks_driver.exceptions import SqlExecutionError
from databricks_driver.utils.logging import get_logger

logger = get_logger(__name__)

Row = dict[str, Any]

USER_AGENT_ENTRY = "CubeDev_Cube"


class SqlExecutor(Protocol):
    """Runs one statement with positional parameters and returns its rows."""

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> list[Row]: ...


class DatabricksSqlExecutor:
    """SqlExecutor backed by databricks-sql-connector.

    Args:
        server_hostname: Workspace host name
        http_path: SQL warehouse HTTP path (/sql/1.0/warehouses/<id>)
        access_token_provider: Async callable returning the token to connect with.
            Called for every connection so refreshed OAuth tokens are picked up.
    """

    def __init__(
        self,
        server_hostname: str,
        http_path: str,
        access_token_provider: Callable[[], Awaitable[str]],
    ):
        self._server_hostname = server_hostname
        self._http_path = http_path
        self._access_token_provider = access_token_provider

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> list[Row]:
        """
        Execute a statement and fetch every row as a dict keyed by column name.

        Raises:
            SqlExecutionError: If the connector raises
        """
        access_token = await self._access_token_provider()

        def _execute() -> list[Row]:
            with databricks_sql.connect(
                server_hostname=self._server_hostname,
                http_path=self._http_path,
                access_token=access_token,
                user_agent_entry=USER_AGENT_ENTRY,
            ) as connection:
                with connection.cursor() as cursor:
                    cursor.execute(sql, list(params) if params else None)
                    if cursor.description is None:
                        return []
                    columns = [column[0] for column in cursor.description]
                    return [dict(zip(columns, row, strict=True)) for row in cursor.fetchall()]

        try:
            return await asyncio.to_thread(_execute)
        except DatabricksSqlError as exc:
            logger.error("Databricks statement failed", error=str(exc))
            raise SqlExecutionError(str(exc), sql=sql) from exc


def http_path_for_warehouse(warehouse_id: str) -> str:
    return f"/sql/1.0/warehouses/{warehouse_id}"
