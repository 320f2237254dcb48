"""Storage providers: in-memory Polars tables and DuckDB-backed tables."""

from relational_dm.storage.duckdb_provider import DuckDBTableProvider, SqlRelation
from relational_dm.storage.polars_provider import PolarsTableProvider
from relational_dm.storage.provider import Predicate, TableHandle, TableProvider

__all__ = ["DuckDBTableProvider", "PolarsTableProvider", "Predicate", "SqlRelation", "TableHandle", "TableProvider"]
