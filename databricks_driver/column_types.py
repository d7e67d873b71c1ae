"""
Column type introspection.

Databricks DESCRIBE output lists the columns first, then an empty-name row, then
human-readable metadata (partitioning, detailed table information, ...). Only the rows
before that separator are columns.
"""

import re
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from databricks_driver.models import (
    GENERIC_TYPE_BIGINT,
    GENERIC_TYPE_HLL_DATASKETCHES,
    ColumnDescriptor,
)
from databricks_driver.sql import Row, SqlExecutor

# Databricks-specific overrides, checked before the generic mapping
DATABRICKS_TO_GENERIC_TYPE: dict[str, str] = {
    "binary": GENERIC_TYPE_HLL_DATASKETCHES,
    "decimal(10,0)": GENERIC_TYPE_BIGINT,
}

DB_TYPE_TO_GENERIC_TYPE: dict[str, str] = {
    "timestamp without time zone": "timestamp",
    "timestamp_ntz": "timestamp",
    "timestamp": "timestamp",
    "datetime": "timestamp",
    "date": "date",
    "string": "text",
    "character varying": "text",
    "varchar": "text",
    "char": "text",
    "text": "text",
    "tinyint": "int",
    "smallint": "int",
    "int": "int",
    "integer": "int",
    "bigint": "bigint",
    "long": "bigint",
    "float": "float",
    "double": "double",
    "real": "float",
    "decimal": "decimal",
    "numeric": "decimal",
    "boolean": "boolean",
}

_PARAMETERIZED_TYPE = re.compile(r"^(\w+)\s*\(.*\)$")

TypeMapper = Callable[[str], str]


def default_type_map(raw_type: str) -> str:
    """Map a raw database type to the generic type vocabulary.

    Parameterized types (varchar(255), decimal(18,2)) map by their base name; unknown
    types pass through lower-cased.
    """
    column_type = raw_type.strip().lower()
    if column_type in DB_TYPE_TO_GENERIC_TYPE:
        return DB_TYPE_TO_GENERIC_TYPE[column_type]

    match = _PARAMETERIZED_TYPE.match(column_type)
    if match and match.group(1) in DB_TYPE_TO_GENERIC_TYPE:
        return DB_TYPE_TO_GENERIC_TYPE[match.group(1)]

    return column_type


class ColumnTypeResolver:
    """Describes tables and ad-hoc queries as ColumnDescriptor lists.

    Args:
        executor: SQL execution collaborator
        overrides: Lower-cased raw type -> generic type, consulted first.
            Defaults to DATABRICKS_TO_GENERIC_TYPE.
        fallback: Mapper for types missing from the overrides
    """

    def __init__(
        self,
        executor: SqlExecutor,
        overrides: Mapping[str, str] | None = None,
        fallback: TypeMapper = default_type_map,
    ):
        self.executor = executor
        self.overrides = dict(DATABRICKS_TO_GENERIC_TYPE if overrides is None else overrides)
        self.fallback = fallback

    def to_generic_type(self, raw_type: str) -> str:
        return self.overrides.get(raw_type.lower()) or self.fallback(raw_type)

    def _to_columns(self, rows: list[Row]) -> list[ColumnDescriptor]:
        columns: list[ColumnDescriptor] = []
        for row in rows:
            if row["col_name"] == "":
                break
            columns.append(
                ColumnDescriptor(
                    name=row["col_name"], type=self.to_generic_type(row["data_type"])
                )
            )
        return columns

    async def describe_table(self, qualified_name: str) -> list[ColumnDescriptor]:
        """Describe an already quoted and qualified table name."""
        rows = await self.executor.execute(f"DESCRIBE {qualified_name}", [])
        return self._to_columns(rows)

    async def describe_query(
        self, sql: str, params: Sequence[Any] | None = None
    ) -> list[ColumnDescriptor]:
        """Describe the result shape of a query without running it."""
        rows = await self.executor.execute(f"DESCRIBE QUERY {sql}", list(params or []))
        return self._to_columns(rows)
