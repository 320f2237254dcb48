"""
Key checks - uniqueness, subset and cardinality of column value sets.

These functions never store anything. They ask a TableProvider for distinct,
duplicate and null information about a handle and decide whether columns can
act as a primary key or a foreign key.

Rules:
- A primary key must be non-empty, unique and free of missing values.
- A foreign key is valid if every non-missing child value appears among the
  parent key values.
- Cardinality classifies a valid foreign key relation; it never blocks key creation.
"""

from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import polars as pl
import structlog

from relational_dm.core.config_loader import get_dm_settings
from relational_dm.core.errors import (
    NotBijectiveError,
    NotInjectiveError,
    NotSubsetOfError,
    NotUniqueKeyError,
    SetsNotEqualError,
)
from relational_dm.storage.provider import TableHandle, TableProvider

logger = structlog.get_logger(__name__)


class Cardinality(Enum):
    """Relation between parent key values and foreign key values."""

    BIJECTIVE = "1..1"  # every parent row matched exactly once
    INJECTIVE = "0..1"  # every parent row matched at most once
    SURJECTIVE = "1..n"  # every parent row matched at least once
    GENERIC = "0..n"  # no constraint beyond the subset property


@dataclass(frozen=True)
class KeyUniqueness:
    """Result of a uniqueness check."""

    columns: list[str]
    is_unique: bool
    duplicate_sample: list[Any] = field(default_factory=list)
    null_count: int = 0


@dataclass(frozen=True)
class SubsetResult:
    """Result of a set-containment check."""

    ok: bool
    missing_count: int = 0
    missing_sample: list[Any] = field(default_factory=list)


def _sample_rows(frame: pl.DataFrame, columns: Sequence[str]) -> list[Any]:
    """Rows of ``frame[columns]`` as scalars (single column) or tuples."""
    if len(columns) == 1:
        return frame[columns[0]].to_list()
    return list(frame.select(list(columns)).iter_rows())


def is_unique_key(
    provider: TableProvider,
    handle: TableHandle,
    columns: Sequence[str],
    sample_size: int | None = None,
) -> KeyUniqueness:
    """
    Check whether ``columns`` together identify every row of ``handle``.

    An empty selection is never a key. Missing values count as violations.

    Args:
        provider: Provider owning the handle
        handle: Table handle
        columns: Candidate key columns
        sample_size: Max duplicate values to report (default from settings)

    Returns:
        KeyUniqueness with a bounded sample of duplicated values
    """
    columns = list(columns)
    if not columns:
        return KeyUniqueness(columns=columns, is_unique=False)

    if sample_size is None:
        sample_size = get_dm_settings().duplicate_sample_size

    null_count = provider.null_count(handle, columns)
    duplicates = provider.duplicate_values(handle, columns, limit=sample_size)
    duplicate_sample = _sample_rows(duplicates, columns)

    # Missing values are reported even when they occur only once
    if null_count and None not in duplicate_sample and len(duplicate_sample) < sample_size:
        duplicate_sample.append(None if len(columns) == 1 else tuple(None for _ in columns))

    return KeyUniqueness(
        columns=columns,
        is_unique=duplicates.height == 0 and null_count == 0,
        duplicate_sample=duplicate_sample,
        null_count=null_count,
    )


def check_key(
    provider: TableProvider,
    handle: TableHandle,
    columns: Sequence[str],
    table_name: str = "table",
) -> None:
    """
    Succeed silently if ``columns`` is a unique key of the table.

    Raises:
        NotUniqueKeyError: If columns are empty, contain duplicates or missing values
    """
    result = is_unique_key(provider, handle, columns)
    if result.is_unique:
        return

    logger.warning(
        "key_not_unique",
        table=table_name,
        columns=list(columns),
        duplicate_sample=result.duplicate_sample,
        null_count=result.null_count,
    )
    raise NotUniqueKeyError(table_name, columns, result.duplicate_sample)


def is_subset(
    child_values: pl.DataFrame,
    parent_values: pl.DataFrame,
    sample_size: int | None = None,
) -> SubsetResult:
    """
    Check that every non-missing row of ``child_values`` appears in ``parent_values``.

    Columns are matched by position. When dtypes differ both sides are compared
    as strings, so an Int64 key can reference a Utf8 key holding the same digits.

    Args:
        child_values: Child key values (any number of rows)
        parent_values: Parent key values, same number of columns
        sample_size: Max missing values to report (default from settings)

    Returns:
        SubsetResult with a bounded sample of child values missing from the parent
    """
    if child_values.width != parent_values.width:
        raise ValueError(
            f"Cannot compare {child_values.width} child column(s) with {parent_values.width} parent column(s)"
        )
    if sample_size is None:
        sample_size = get_dm_settings().missing_sample_size

    columns = child_values.columns
    parent = parent_values.rename(dict(zip(parent_values.columns, columns, strict=True)))
    child = child_values.drop_nulls().unique(maintain_order=True)

    if child.schema != parent.schema:
        child = child.with_columns([pl.col(c).cast(pl.Utf8, strict=False) for c in columns])
        parent = parent.with_columns([pl.col(c).cast(pl.Utf8, strict=False) for c in columns])

    missing = child.join(parent.unique(), on=columns, how="anti")
    return SubsetResult(
        ok=missing.height == 0,
        missing_count=missing.height,
        missing_sample=_sample_rows(missing.head(sample_size), columns),
    )


def check_if_subset(
    provider: TableProvider,
    child_handle: TableHandle,
    child_columns: Sequence[str],
    parent_handle: TableHandle,
    parent_columns: Sequence[str],
    child_table: str = "child",
    parent_table: str = "parent",
) -> None:
    """
    Raise NotSubsetOfError unless the child values are contained in the parent values.
    """
    result = is_subset(
        provider.distinct_values(child_handle, child_columns),
        provider.distinct_values(parent_handle, parent_columns),
    )
    if result.ok:
        return

    logger.warning(
        "values_not_subset",
        child_table=child_table,
        child_columns=list(child_columns),
        parent_table=parent_table,
        parent_columns=list(parent_columns),
        missing_count=result.missing_count,
        missing_sample=result.missing_sample,
    )
    raise NotSubsetOfError(child_table, child_columns, parent_table, parent_columns, result.missing_sample)


def check_set_equality(
    provider: TableProvider,
    handle_1: TableHandle,
    columns_1: Sequence[str],
    handle_2: TableHandle,
    columns_2: Sequence[str],
    table_1: str = "table_1",
    table_2: str = "table_2",
) -> None:
    """
    Raise SetsNotEqualError unless both column sets hold the same distinct values.
    """
    values_1 = provider.distinct_values(handle_1, columns_1)
    values_2 = provider.distinct_values(handle_2, columns_2)

    messages = []
    for (src, src_cols, src_values), (dst, dst_cols, dst_values) in (
        ((table_1, columns_1, values_1), (table_2, columns_2, values_2)),
        ((table_2, columns_2, values_2), (table_1, columns_1, values_1)),
    ):
        if not is_subset(src_values, dst_values).ok:
            messages.append(
                f"Column(s) {', '.join(src_cols)} of table {src} contain values not present in "
                f"column(s) {', '.join(dst_cols)} of table {dst}"
            )

    if messages:
        raise SetsNotEqualError(messages)


def _fk_is_unique(provider: TableProvider, child_handle: TableHandle, fk_columns: Sequence[str]) -> bool:
    """Non-missing foreign key values are pairwise distinct."""
    non_missing_rows = provider.row_count(child_handle) - provider.null_count(child_handle, fk_columns)
    return provider.distinct_values(child_handle, fk_columns).height == non_missing_rows


def examine_cardinality(
    provider: TableProvider,
    parent_handle: TableHandle,
    pk_columns: Sequence[str],
    child_handle: TableHandle,
    fk_columns: Sequence[str],
    parent_table: str = "parent",
    child_table: str = "child",
) -> Cardinality:
    """
    Classify the relation between a parent key and a child foreign key.

    Raises:
        NotSubsetOfError: If the foreign key references values missing from the parent
    """
    child_values = provider.distinct_values(child_handle, fk_columns)
    parent_values = provider.distinct_values(parent_handle, pk_columns)

    subset = is_subset(child_values, parent_values)
    if not subset.ok:
        raise NotSubsetOfError(child_table, fk_columns, parent_table, pk_columns, subset.missing_sample)

    unique = _fk_is_unique(provider, child_handle, fk_columns)
    surjective = is_subset(parent_values, child_values).ok

    if unique and surjective:
        cardinality = Cardinality.BIJECTIVE
    elif unique:
        cardinality = Cardinality.INJECTIVE
    elif surjective:
        cardinality = Cardinality.SURJECTIVE
    else:
        cardinality = Cardinality.GENERIC

    logger.debug(
        "cardinality_examined",
        parent_table=parent_table,
        child_table=child_table,
        fk_columns=list(fk_columns),
        cardinality=cardinality.value,
    )
    return cardinality


def check_cardinality_0_n(
    provider: TableProvider,
    parent_handle: TableHandle,
    pk_columns: Sequence[str],
    child_handle: TableHandle,
    fk_columns: Sequence[str],
    parent_table: str = "parent",
    child_table: str = "child",
) -> None:
    """Child values are a subset of the parent values."""
    check_if_subset(provider, child_handle, fk_columns, parent_handle, pk_columns, child_table, parent_table)


def check_cardinality_1_n(
    provider: TableProvider,
    parent_handle: TableHandle,
    pk_columns: Sequence[str],
    child_handle: TableHandle,
    fk_columns: Sequence[str],
    parent_table: str = "parent",
    child_table: str = "child",
) -> None:
    """Every parent value is referenced at least once."""
    check_set_equality(provider, parent_handle, pk_columns, child_handle, fk_columns, parent_table, child_table)


def check_cardinality_0_1(
    provider: TableProvider,
    parent_handle: TableHandle,
    pk_columns: Sequence[str],
    child_handle: TableHandle,
    fk_columns: Sequence[str],
    parent_table: str = "parent",
    child_table: str = "child",
) -> None:
    """Every parent value is referenced at most once."""
    check_if_subset(provider, child_handle, fk_columns, parent_handle, pk_columns, child_table, parent_table)
    if not _fk_is_unique(provider, child_handle, fk_columns):
        raise NotInjectiveError(child_table, fk_columns)


def check_cardinality_1_1(
    provider: TableProvider,
    parent_handle: TableHandle,
    pk_columns: Sequence[str],
    child_handle: TableHandle,
    fk_columns: Sequence[str],
    parent_table: str = "parent",
    child_table: str = "child",
) -> None:
    """Every parent value is referenced exactly once."""
    check_set_equality(provider, parent_handle, pk_columns, child_handle, fk_columns, parent_table, child_table)
    if not _fk_is_unique(provider, child_handle, fk_columns):
        raise NotBijectiveError(child_table, fk_columns)
