"""
Identifier qualification for the Unity Catalog three-level namespace.

Everything here is plain string manipulation. The query generator upstream of the driver
knows nothing about catalogs, so SQL it produces is patched textually by
rewrite_schema_references(). That rewrite is a pattern match, not a SQL parser: a schema
name that also appears as a whitespace-preceded prefix inside a string literal will be
rewritten too. Callers only depend on this class, so a parser-based rewrite can replace it.
"""

import re

from databricks_driver.config import NamespaceConfig

QUOTE_CHAR = "`"


class NamespaceResolver:
    """Qualifies schemas, tables and SQL text with an optional catalog."""

    def __init__(self, config: NamespaceConfig | None = None):
        self.config = config or NamespaceConfig()

    @property
    def catalog(self) -> str | None:
        return self.config.catalog

    def quote_identifier(self, identifier: str) -> str:
        """Wrap an identifier in backticks unless it already is."""
        if (
            len(identifier) >= 2
            and identifier.startswith(QUOTE_CHAR)
            and identifier.endswith(QUOTE_CHAR)
        ):
            return identifier
        return f"{QUOTE_CHAR}{identifier}{QUOTE_CHAR}"

    def qualify_schema(self, schema: str) -> str:
        """Return `catalog`.`schema`, or `schema` when no catalog is configured."""
        if self.catalog:
            return f"{self.quote_identifier(self.catalog)}.{self.quote_identifier(schema)}"
        return self.quote_identifier(schema)

    def qualify_table_reference(self, table_ref: str) -> str:
        """Quote a dot-separated table reference, inserting the catalog into schema.table.

        - catalog.schema.table is quoted as-is
        - schema.table gets the configured catalog as first part, if any
        - a bare table name is quoted alone
        """
        parts = table_ref.split(".")
        if len(parts) == 2 and self.catalog:
            parts = [self.catalog, *parts]
        if len(parts) > 3:
            raise ValueError(f"Table reference has too many parts: {table_ref}")
        return ".".join(self.quote_identifier(part) for part in parts)

    def full_name(self, name: str) -> str:
        """Prefix a schema.table name with the catalog, unquoted."""
        if self.catalog:
            return f"{self.catalog}.{name}"
        return name

    def rewrite_schema_references(self, sql: str, schema: str) -> str:
        """Prefix whitespace-preceded ``schema.`` references with the catalog.

        ``SELECT * FROM dev_pre_aggregations.foo`` with catalog ``main`` becomes
        ``SELECT * FROM main.dev_pre_aggregations.foo``. No-op without a catalog.
        """
        if not self.catalog:
            return sql
        pattern = re.compile(rf"(?<=\s){re.escape(schema)}\.(?=\S)")
        return pattern.sub(lambda _: f"{self.catalog}.{schema}.", sql)
