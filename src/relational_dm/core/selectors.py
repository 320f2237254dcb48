"""
Column selection for key and filter operations.

A ColumnSelector is a pure function ``available_columns -> chosen_columns``. It is
evaluated once, eagerly, against the live schema of a table at call time.

Usage:
    from relational_dm.core.selectors import starts_with

    dm.add_pk("airports", starts_with("fa"))
"""

import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from relational_dm.core.errors import WrongColNamesError


@dataclass(frozen=True)
class ColumnSelector:
    """Named selection function over a table's column names."""

    select: Callable[[Sequence[str]], list[str]]
    description: str

    def __call__(self, available: Sequence[str]) -> list[str]:
        return self.select(available)

    def __repr__(self) -> str:
        return f"ColumnSelector({self.description})"


# Anything that can name columns: a single name, a list of names, or a selector
ColumnSpec = str | Sequence[str] | ColumnSelector


def by_name(*names: str) -> ColumnSelector:
    """Select the given columns in the given order."""
    chosen = list(names)
    return ColumnSelector(lambda available: list(chosen), f"by_name({', '.join(chosen)})")


def starts_with(prefix: str) -> ColumnSelector:
    return ColumnSelector(
        lambda available: [c for c in available if c.startswith(prefix)],
        f"starts_with({prefix!r})",
    )


def ends_with(suffix: str) -> ColumnSelector:
    return ColumnSelector(
        lambda available: [c for c in available if c.endswith(suffix)],
        f"ends_with({suffix!r})",
    )


def matches(pattern: str) -> ColumnSelector:
    """Select columns whose name matches a regular expression (``re.search``)."""
    compiled = re.compile(pattern)
    return ColumnSelector(
        lambda available: [c for c in available if compiled.search(c)],
        f"matches({pattern!r})",
    )


def everything() -> ColumnSelector:
    return ColumnSelector(lambda available: list(available), "everything()")


def resolve_columns(columns: ColumnSpec | None, available: Sequence[str], table: str) -> list[str]:
    """
    Resolve a column specification against a table's columns.

    Args:
        columns: Column name, sequence of names, selector, or None (empty selection)
        available: Columns of the table, in schema order
        table: Table name (for error messages)

    Returns:
        Chosen column names; may be empty if a selector matched nothing

    Raises:
        WrongColNamesError: If a named column does not exist in the table
    """
    if columns is None:
        chosen: list[str] = []
    elif isinstance(columns, ColumnSelector):
        chosen = columns(available)
    elif isinstance(columns, str):
        chosen = [columns]
    else:
        chosen = list(columns)

    wrong = [c for c in chosen if c not in available]
    if wrong:
        raise WrongColNamesError(table, available, wrong)

    return chosen
