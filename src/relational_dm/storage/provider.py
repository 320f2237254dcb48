"""
TableProvider - abstract data access for the relational data model.

The core never touches rows directly. Everything it needs from concrete data
(column names, counts, distinct/duplicate values, filters, joins) goes through
this contract. A provider works on *handles*: provider-native, lazily evaluated
table expressions (a ``pl.LazyFrame`` for the in-memory provider, a SQL
subquery for DuckDB).

Boundary: handles are lazy; ``collect()`` is the only eager IO point.

Providers are copy-on-write: ``with_table`` / ``without_table`` / ``rename_table``
return a new provider and leave the receiver untouched, so models holding the
old provider stay valid.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from typing import Any, Literal

import polars as pl

from relational_dm.core.errors import ProviderError

logger = logging.getLogger(__name__)

# Provider-native table expression
TableHandle = Any

# SQL boolean expression (both providers) or polars expression (in-memory only)
Predicate = str | pl.Expr

JoinHow = Literal["left", "inner", "full", "semi", "anti"]


@contextmanager
def wrap_provider_errors(operation: str, *error_types: type[BaseException]) -> Iterator[None]:
    """
    Re-raise storage engine errors as ProviderError, keeping the original as cause.

    Args:
        operation: Name of the provider operation (for messages and logs)
        error_types: Engine-specific exception types to translate
    """
    try:
        yield
    except ProviderError:
        raise
    except error_types as e:
        logger.error(f"Provider operation '{operation}' failed: {type(e).__name__}: {e}")
        raise ProviderError(operation, str(e)) from e


class TableProvider(ABC):
    """
    Contract between the relational metadata engine and concrete storage.

    All operations are synchronous. Failures surface as ProviderError with the
    engine's exception chained; nothing is retried.
    """

    @abstractmethod
    def table_names(self) -> list[str]:
        """Names of all tables available on this provider."""

    @abstractmethod
    def table(self, name: str) -> TableHandle:
        """Lazy handle for a stored table."""

    @abstractmethod
    def columns(self, handle: TableHandle) -> list[str]:
        """Ordered column names of a handle."""

    @abstractmethod
    def row_count(self, handle: TableHandle) -> int:
        """Number of rows of a handle."""

    @abstractmethod
    def distinct_values(self, handle: TableHandle, columns: Sequence[str]) -> pl.DataFrame:
        """Distinct combinations of ``columns``, rows with missing values dropped."""

    @abstractmethod
    def duplicate_values(self, handle: TableHandle, columns: Sequence[str], limit: int) -> pl.DataFrame:
        """
        Combinations of ``columns`` occurring more than once.

        Returns at most ``limit`` rows with the key columns plus a count column ``n``.
        """

    @abstractmethod
    def null_count(self, handle: TableHandle, columns: Sequence[str]) -> int:
        """Number of rows with a missing value in any of ``columns``."""

    @abstractmethod
    def filter(self, handle: TableHandle, predicate: Predicate) -> TableHandle:
        """Rows of ``handle`` satisfying ``predicate``."""

    @abstractmethod
    def semi_join(
        self,
        left: TableHandle,
        right: TableHandle,
        left_on: Sequence[str],
        right_on: Sequence[str],
    ) -> TableHandle:
        """Rows of ``left`` whose key appears in ``right``; no columns are added."""

    @abstractmethod
    def anti_join(
        self,
        left: TableHandle,
        right: TableHandle,
        left_on: Sequence[str],
        right_on: Sequence[str],
    ) -> TableHandle:
        """Rows of ``left`` whose key does not appear in ``right``."""

    @abstractmethod
    def join(
        self,
        left: TableHandle,
        right: TableHandle,
        left_on: Sequence[str],
        right_on: Sequence[str],
        how: JoinHow,
        suffix: str,
    ) -> TableHandle:
        """
        Join two handles.

        The result keeps all columns of ``left`` (key columns under their left names)
        followed by the non-key columns of ``right``; right columns whose name already
        exists get ``suffix`` appended. ``semi``/``anti`` delegate to the filtering joins.
        """

    @abstractmethod
    def collect(self, handle: TableHandle) -> pl.DataFrame:
        """Execute a handle and return its rows."""

    def materialize(self, handle: TableHandle) -> TableHandle:
        """Optionally evaluate a handle to shorten long lazy chains. Default: no-op."""
        return handle

    @abstractmethod
    def with_table(self, name: str, frame: pl.DataFrame | pl.LazyFrame) -> "TableProvider":
        """New provider with ``name`` added or replaced by ``frame``."""

    @abstractmethod
    def without_table(self, name: str) -> "TableProvider":
        """New provider without ``name``."""

    @abstractmethod
    def rename_table(self, old: str, new: str) -> "TableProvider":
        """New provider where table ``old`` is available as ``new``."""

    def contains_duplicates(self, handle: TableHandle, columns: Sequence[str]) -> bool:
        return self.duplicate_values(handle, columns, limit=1).height > 0

    def table_row_count(self, name: str) -> int:
        return self.row_count(self.table(name))
