"""
TableProvider backed by a DuckDB connection.

Handles are SQL subqueries (``SqlRelation``). Filters and joins compose SQL text;
the database only runs a query when a count, a value sample or ``collect()`` is
requested, so every call reflects the current data.

Logical table names map to physical relations on the connection. Replacing a
table registers the new frame under a fresh physical name and returns a new
provider, so older providers keep seeing the previous data.
"""

import logging
import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

import duckdb
import polars as pl

from relational_dm.core.errors import ProviderError
from relational_dm.storage.provider import JoinHow, Predicate, TableProvider, wrap_provider_errors

logger = logging.getLogger(__name__)

_JOIN_KEYWORDS = {"left": "LEFT JOIN", "inner": "INNER JOIN", "full": "FULL OUTER JOIN"}


def _quote(identifier: str) -> str:
    """Quote an SQL identifier."""
    return '"' + identifier.replace('"', '""') + '"'


@dataclass(frozen=True)
class SqlRelation:
    """Lazy SQL table expression."""

    sql: str


class DuckDBTableProvider(TableProvider):
    """
    Tables living in DuckDB.

    Example:
        >>> conn = duckdb.connect(":memory:")
        >>> conn.execute("CREATE TABLE airlines AS SELECT * FROM read_csv('airlines.csv')")
        >>> provider = DuckDBTableProvider(conn)
    """

    def __init__(
        self,
        conn: duckdb.DuckDBPyConnection,
        table_names: Sequence[str] | None = None,
        physical_names: Mapping[str, str] | None = None,
        owns_connection: bool = False,
        registered: list[str] | None = None,
    ):
        """
        Args:
            conn: Open DuckDB connection
            table_names: Tables to expose (default: every table and view in the current schema)
            physical_names: Explicit logical -> physical name mapping (overrides table_names)
            owns_connection: Close the connection in ``close()``
            registered: Views registered by providers derived from the same origin,
                shared so that ``close()`` can unregister them
        """
        self.conn = conn
        self.owns_connection = owns_connection
        self._registered = registered if registered is not None else []

        if physical_names is not None:
            self._physical = dict(physical_names)
        else:
            names = list(table_names) if table_names is not None else self._discover_tables()
            self._physical = {name: name for name in names}

    @classmethod
    def from_frames(
        cls,
        frames: Mapping[str, pl.DataFrame],
        db_path: Path | str = ":memory:",
    ) -> "DuckDBTableProvider":
        """
        Create tables from Polars DataFrames in a new DuckDB database.

        Args:
            frames: Table name -> DataFrame
            db_path: Database file (default: in-memory)
        """
        conn = duckdb.connect(str(db_path))
        for name, frame in frames.items():
            with wrap_provider_errors("create_table", duckdb.Error):
                conn.register("__dm_import", frame)
                conn.execute(f"CREATE OR REPLACE TABLE {_quote(name)} AS SELECT * FROM __dm_import")
                conn.unregister("__dm_import")
            logger.info(f"Created DuckDB table '{name}' ({frame.height:,} rows)")

        return cls(conn, table_names=list(frames), owns_connection=True)

    def __repr__(self) -> str:
        return f"DuckDBTableProvider(tables={list(self._physical)})"

    def _discover_tables(self) -> list[str]:
        with wrap_provider_errors("table_names", duckdb.Error):
            rows = self.conn.execute("SHOW TABLES").fetchall()
        return [row[0] for row in rows]

    def _fetch_scalar(self, operation: str, query: str) -> int:
        with wrap_provider_errors(operation, duckdb.Error):
            result = self.conn.execute(query).fetchone()
        return int(result[0]) if result else 0

    def _to_polars(self, operation: str, query: str) -> pl.DataFrame:
        logger.debug(f"DuckDB {operation}: {query[:500]}")
        with wrap_provider_errors(operation, duckdb.Error):
            return self.conn.sql(query).pl()

    def table_names(self) -> list[str]:
        return list(self._physical)

    def table(self, name: str) -> SqlRelation:
        if name not in self._physical:
            raise ProviderError("table", f"unknown table '{name}'")
        return SqlRelation(f"SELECT * FROM {_quote(self._physical[name])}")

    def columns(self, handle: SqlRelation) -> list[str]:
        with wrap_provider_errors("columns", duckdb.Error):
            return list(self.conn.sql(handle.sql).columns)

    def row_count(self, handle: SqlRelation) -> int:
        return self._fetch_scalar("row_count", f"SELECT COUNT(*) FROM ({handle.sql}) AS t")

    def distinct_values(self, handle: SqlRelation, columns: Sequence[str]) -> pl.DataFrame:
        cols = ", ".join(_quote(c) for c in columns)
        not_null = " AND ".join(f"{_quote(c)} IS NOT NULL" for c in columns)
        return self._to_polars(
            "distinct_values",
            f"SELECT DISTINCT {cols} FROM ({handle.sql}) AS t WHERE {not_null} ORDER BY {cols}",
        )

    def duplicate_values(self, handle: SqlRelation, columns: Sequence[str], limit: int) -> pl.DataFrame:
        cols = ", ".join(_quote(c) for c in columns)
        return self._to_polars(
            "duplicate_values",
            f"SELECT {cols}, COUNT(*) AS n FROM ({handle.sql}) AS t "
            f"GROUP BY {cols} HAVING COUNT(*) > 1 ORDER BY {cols} LIMIT {int(limit)}",
        )

    def null_count(self, handle: SqlRelation, columns: Sequence[str]) -> int:
        if not columns:
            return 0
        any_null = " OR ".join(f"{_quote(c)} IS NULL" for c in columns)
        return self._fetch_scalar("null_count", f"SELECT COUNT(*) FROM ({handle.sql}) AS t WHERE {any_null}")

    def filter(self, handle: SqlRelation, predicate: Predicate) -> SqlRelation:
        if not isinstance(predicate, str):
            raise ProviderError("filter", "DuckDB provider only accepts SQL string predicates")
        return SqlRelation(f"SELECT * FROM ({handle.sql}) AS t WHERE {predicate}")

    def _exists_join(
        self,
        left: SqlRelation,
        right: SqlRelation,
        left_on: Sequence[str],
        right_on: Sequence[str],
        negate: bool,
    ) -> SqlRelation:
        condition = " AND ".join(f"l.{_quote(lc)} = r.{_quote(rc)}" for lc, rc in zip(left_on, right_on, strict=True))
        keyword = "NOT EXISTS" if negate else "EXISTS"
        return SqlRelation(
            f"SELECT l.* FROM ({left.sql}) AS l WHERE {keyword} (SELECT 1 FROM ({right.sql}) AS r WHERE {condition})"
        )

    def semi_join(
        self,
        left: SqlRelation,
        right: SqlRelation,
        left_on: Sequence[str],
        right_on: Sequence[str],
    ) -> SqlRelation:
        return self._exists_join(left, right, left_on, right_on, negate=False)

    def anti_join(
        self,
        left: SqlRelation,
        right: SqlRelation,
        left_on: Sequence[str],
        right_on: Sequence[str],
    ) -> SqlRelation:
        return self._exists_join(left, right, left_on, right_on, negate=True)

    def join(
        self,
        left: SqlRelation,
        right: SqlRelation,
        left_on: Sequence[str],
        right_on: Sequence[str],
        how: JoinHow,
        suffix: str,
    ) -> SqlRelation:
        if how == "semi":
            return self.semi_join(left, right, left_on, right_on)
        if how == "anti":
            return self.anti_join(left, right, left_on, right_on)
        if how not in _JOIN_KEYWORDS:
            raise ProviderError("join", f"unsupported join '{how}'")

        left_cols = self.columns(left)
        right_cols = self.columns(right)

        select_list = []
        for col in left_cols:
            if how == "full" and col in left_on:
                # Full joins keep keys from whichever side matched
                right_key = right_on[list(left_on).index(col)]
                select_list.append(f"COALESCE(l.{_quote(col)}, r.{_quote(right_key)}) AS {_quote(col)}")
            else:
                select_list.append(f"l.{_quote(col)}")

        taken = set(left_cols)
        for col in right_cols:
            if col in right_on:
                continue
            alias = f"{col}{suffix}" if col in taken else col
            taken.add(alias)
            select_list.append(f"r.{_quote(col)} AS {_quote(alias)}")

        condition = " AND ".join(f"l.{_quote(lc)} = r.{_quote(rc)}" for lc, rc in zip(left_on, right_on, strict=True))
        return SqlRelation(
            f"SELECT {', '.join(select_list)} FROM ({left.sql}) AS l "
            f"{_JOIN_KEYWORDS[how]} ({right.sql}) AS r ON {condition}"
        )

    def collect(self, handle: SqlRelation) -> pl.DataFrame:
        return self._to_polars("collect", handle.sql)

    def with_table(self, name: str, frame: pl.DataFrame | pl.LazyFrame) -> "DuckDBTableProvider":
        data = frame.collect() if isinstance(frame, pl.LazyFrame) else frame
        physical = f"__dm_{name}_{uuid.uuid4().hex[:12]}"
        with wrap_provider_errors("with_table", duckdb.Error):
            self.conn.register(physical, data)
        self._registered.append(physical)
        logger.debug(f"Registered table '{name}' as DuckDB view '{physical}' ({data.height:,} rows)")

        return DuckDBTableProvider(
            self.conn, physical_names={**self._physical, name: physical}, registered=self._registered
        )

    def without_table(self, name: str) -> "DuckDBTableProvider":
        return DuckDBTableProvider(
            self.conn,
            physical_names={k: v for k, v in self._physical.items() if k != name},
            registered=self._registered,
        )

    def rename_table(self, old: str, new: str) -> "DuckDBTableProvider":
        return DuckDBTableProvider(
            self.conn,
            physical_names={(new if k == old else k): v for k, v in self._physical.items()},
            registered=self._registered,
        )

    def registered_views(self) -> list[str]:
        """Physical views registered on the connection and not yet unregistered."""
        return list(self._registered)

    def close(self) -> None:
        """
        Unregister the views registered by every provider derived from the same
        origin, then close the DuckDB connection if this provider opened it.

        Providers sharing the connection lose the replaced tables.
        """
        if self._registered:
            with wrap_provider_errors("close", duckdb.Error):
                for physical in self._registered:
                    self.conn.unregister(physical)
            logger.debug(f"Unregistered {len(self._registered)} DuckDB view(s)")
            self._registered.clear()
        if self.owns_connection and self.conn:
            self.conn.close()
