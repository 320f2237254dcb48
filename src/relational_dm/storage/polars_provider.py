"""
In-memory TableProvider backed by Polars DataFrames.

Handles are ``pl.LazyFrame``; nothing is computed until a count, a value sample
or ``collect()`` is requested.
"""

import logging
from collections.abc import Mapping, Sequence

import polars as pl

from relational_dm.core.errors import ProviderError
from relational_dm.storage.provider import JoinHow, Predicate, TableProvider, wrap_provider_errors

logger = logging.getLogger(__name__)


def _as_expr(predicate: Predicate) -> pl.Expr:
    if isinstance(predicate, pl.Expr):
        return predicate
    return pl.sql_expr(predicate)


class PolarsTableProvider(TableProvider):
    """
    Tables held in memory as Polars DataFrames.

    Example:
        >>> provider = PolarsTableProvider({"airlines": airlines_df, "flights": flights_df})
        >>> provider.row_count(provider.table("flights"))
    """

    def __init__(self, tables: Mapping[str, pl.DataFrame | pl.LazyFrame]):
        self._tables: dict[str, pl.DataFrame] = {}
        for name, frame in tables.items():
            with wrap_provider_errors("load", pl.exceptions.PolarsError):
                self._tables[name] = frame.collect() if isinstance(frame, pl.LazyFrame) else frame

    def __repr__(self) -> str:
        return f"PolarsTableProvider(tables={list(self._tables)})"

    def table_names(self) -> list[str]:
        return list(self._tables)

    def table(self, name: str) -> pl.LazyFrame:
        if name not in self._tables:
            raise ProviderError("table", f"unknown table '{name}'")
        return self._tables[name].lazy()

    def columns(self, handle: pl.LazyFrame) -> list[str]:
        with wrap_provider_errors("columns", pl.exceptions.PolarsError):
            return handle.collect_schema().names()

    def row_count(self, handle: pl.LazyFrame) -> int:
        with wrap_provider_errors("row_count", pl.exceptions.PolarsError):
            return int(handle.select(pl.len()).collect().item())

    def distinct_values(self, handle: pl.LazyFrame, columns: Sequence[str]) -> pl.DataFrame:
        with wrap_provider_errors("distinct_values", pl.exceptions.PolarsError):
            return handle.select(list(columns)).drop_nulls().unique(maintain_order=True).collect()

    def duplicate_values(self, handle: pl.LazyFrame, columns: Sequence[str], limit: int) -> pl.DataFrame:
        with wrap_provider_errors("duplicate_values", pl.exceptions.PolarsError):
            return (
                handle.group_by(list(columns), maintain_order=True)
                .agg(pl.len().alias("n"))
                .filter(pl.col("n") > 1)
                .head(limit)
                .collect()
            )

    def null_count(self, handle: pl.LazyFrame, columns: Sequence[str]) -> int:
        if not columns:
            return 0
        with wrap_provider_errors("null_count", pl.exceptions.PolarsError):
            return int(
                handle.filter(pl.any_horizontal([pl.col(c).is_null() for c in columns]))
                .select(pl.len())
                .collect()
                .item()
            )

    def filter(self, handle: pl.LazyFrame, predicate: Predicate) -> pl.LazyFrame:
        with wrap_provider_errors("filter", pl.exceptions.PolarsError):
            return handle.filter(_as_expr(predicate))

    def semi_join(
        self,
        left: pl.LazyFrame,
        right: pl.LazyFrame,
        left_on: Sequence[str],
        right_on: Sequence[str],
    ) -> pl.LazyFrame:
        with wrap_provider_errors("semi_join", pl.exceptions.PolarsError):
            return left.join(right.select(list(right_on)), left_on=list(left_on), right_on=list(right_on), how="semi")

    def anti_join(
        self,
        left: pl.LazyFrame,
        right: pl.LazyFrame,
        left_on: Sequence[str],
        right_on: Sequence[str],
    ) -> pl.LazyFrame:
        with wrap_provider_errors("anti_join", pl.exceptions.PolarsError):
            return left.join(right.select(list(right_on)), left_on=list(left_on), right_on=list(right_on), how="anti")

    def join(
        self,
        left: pl.LazyFrame,
        right: pl.LazyFrame,
        left_on: Sequence[str],
        right_on: Sequence[str],
        how: JoinHow,
        suffix: str,
    ) -> pl.LazyFrame:
        if how == "semi":
            return self.semi_join(left, right, left_on, right_on)
        if how == "anti":
            return self.anti_join(left, right, left_on, right_on)

        with wrap_provider_errors("join", pl.exceptions.PolarsError):
            return left.join(
                right,
                left_on=list(left_on),
                right_on=list(right_on),
                how=how,
                suffix=suffix,
                coalesce=True,
            )

    def collect(self, handle: pl.LazyFrame) -> pl.DataFrame:
        with wrap_provider_errors("collect", pl.exceptions.PolarsError):
            return handle.collect()

    def materialize(self, handle: pl.LazyFrame) -> pl.LazyFrame:
        return self.collect(handle).lazy()

    def with_table(self, name: str, frame: pl.DataFrame | pl.LazyFrame) -> "PolarsTableProvider":
        logger.debug(f"Replacing in-memory table '{name}'")
        return PolarsTableProvider({**self._tables, name: frame})

    def without_table(self, name: str) -> "PolarsTableProvider":
        return PolarsTableProvider({k: v for k, v in self._tables.items() if k != name})

    def rename_table(self, old: str, new: str) -> "PolarsTableProvider":
        return PolarsTableProvider({(new if k == old else k): v for k, v in self._tables.items()})
