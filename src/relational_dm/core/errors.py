"""
Error taxonomy for the relational data model.

Every failure raised by the core belongs to exactly one category:

- DmKeyError: primary key problems (uniqueness, replacement, cardinality)
- DmReferenceError: foreign key problems (missing parent key, subset violations)
- GraphError: traversal problems (cycles, unreachable or non-adjacent tables)
- StateError: the model is in the wrong state for the call (zoom, filters, names)
- ProviderError: opaque passthrough of a storage/transport failure

Errors carry structured attributes (table names, column lists, samples) so callers
can build their own messages; ``str(err)`` gives a readable default.
"""

from collections.abc import Iterable, Sequence
from typing import Any


def _tick(name: Any) -> str:
    return f"`{name}`"


def _commas(values: Iterable[Any], max_items: int = 6) -> str:
    """Join values with commas, capping long lists with an ellipsis."""
    items = [str(v) for v in values]
    if len(items) > max_items:
        items = items[: max_items - 1] + ["..."]
    return ", ".join(items)


def _ticks(names: Iterable[Any]) -> str:
    return _commas(_tick(n) for n in names)


class DmError(Exception):
    """Base class for all errors raised by relational_dm."""


# ============================================================================
# Categories
# ============================================================================


class DmKeyError(DmError):
    """Primary key definition or validation failed."""


class DmReferenceError(DmError):
    """Foreign key definition or validation failed."""


class GraphError(DmError):
    """Relationship graph cannot be traversed as requested."""


class StateError(DmError):
    """Operation not allowed in the current model state."""


class ProviderError(DmError):
    """
    Storage provider failed.

    The original exception is chained as ``__cause__`` and is never retried.
    """

    def __init__(self, operation: str, detail: str = ""):
        self.operation = operation
        self.detail = detail
        message = f"Table provider failed during {operation}"
        if detail:
            message += f": {detail}"
        super().__init__(message)


# ============================================================================
# Key errors
# ============================================================================


class NotUniqueKeyError(DmKeyError):
    def __init__(self, table: str, columns: Sequence[str], duplicate_sample: Sequence[Any] = ()):
        self.table = table
        self.columns = list(columns)
        self.duplicate_sample = list(duplicate_sample)
        message = f"({_ticks(self.columns)}) not a unique key of {_tick(table)}."
        if self.duplicate_sample:
            message += f" Duplicate or missing values: {_commas(self.duplicate_sample)}."
        super().__init__(message)


class KeySetForceFalseError(DmKeyError):
    def __init__(self, table: str):
        self.table = table
        super().__init__(
            f"Table {_tick(table)} already has a primary key. Use `force=True` to change the existing primary key."
        )


class CompoundKeyNotSupportedError(DmKeyError):
    def __init__(self, table: str, columns: Sequence[str]):
        self.table = table
        self.columns = list(columns)
        super().__init__(
            f"Keys must consist of exactly one column, got ({_ticks(self.columns)}) for table {_tick(table)}."
        )


class NotBijectiveError(DmKeyError):
    def __init__(self, child_table: str, fk_columns: Sequence[str]):
        self.child_table = child_table
        self.fk_columns = list(fk_columns)
        super().__init__(
            f"1..1 cardinality (bijectivity) is not given: Column(s) {_ticks(self.fk_columns)} in table "
            f"{_tick(child_table)} contain duplicate values."
        )


class NotInjectiveError(DmKeyError):
    def __init__(self, child_table: str, fk_columns: Sequence[str]):
        self.child_table = child_table
        self.fk_columns = list(fk_columns)
        super().__init__(
            f"0..1 cardinality (injectivity from child table to parent table) is not given: "
            f"Column(s) {_ticks(self.fk_columns)} in table {_tick(child_table)} contain duplicate values."
        )


# ============================================================================
# Reference errors
# ============================================================================


class RefTableHasNoPkError(DmReferenceError):
    def __init__(self, ref_table: str):
        self.ref_table = ref_table
        super().__init__(
            f"ref_table {_tick(ref_table)} needs a primary key first. "
            "Use `enum_pk_candidates()` to find appropriate columns and `add_pk()` to define a primary key."
        )


class NotSubsetOfError(DmReferenceError):
    def __init__(
        self,
        child_table: str,
        child_columns: Sequence[str],
        parent_table: str,
        parent_columns: Sequence[str],
        missing_sample: Sequence[Any] = (),
    ):
        self.child_table = child_table
        self.child_columns = list(child_columns)
        self.parent_table = parent_table
        self.parent_columns = list(parent_columns)
        self.missing_sample = list(missing_sample)
        message = (
            f"Column(s) {_ticks(self.child_columns)} of table {_tick(child_table)} contain values "
            f"that are not present in column(s) {_ticks(self.parent_columns)} of table {_tick(parent_table)}."
        )
        if self.missing_sample:
            message += f" Missing values: {_commas(self.missing_sample)}."
        super().__init__(message)


class SetsNotEqualError(DmReferenceError):
    def __init__(self, messages: Sequence[str]):
        self.messages = list(messages)
        super().__init__("\n  ".join(f"{m}." for m in self.messages))


class IsNotForeignKeyError(DmReferenceError):
    def __init__(
        self,
        child_table: str,
        wrong_columns: Sequence[str],
        parent_table: str,
        actual_columns: Sequence[Sequence[str]],
    ):
        self.child_table = child_table
        self.wrong_columns = list(wrong_columns)
        self.parent_table = parent_table
        self.actual_columns = [list(c) for c in actual_columns]
        flat = [col for cols in self.actual_columns for col in cols]
        super().__init__(
            f"({_ticks(self.wrong_columns)}) is not a foreign key of table {_tick(child_table)} "
            f"into table {_tick(parent_table)}. Foreign key columns are: ({_ticks(flat)})."
        )


class FirstRemoveFksError(DmReferenceError):
    def __init__(self, table: str, fk_tables: Sequence[str]):
        self.table = table
        self.fk_tables = list(fk_tables)
        super().__init__(
            f"There are foreign keys pointing from table(s) {_ticks(self.fk_tables)} to table {_tick(table)}. "
            "First remove those or set `rm_referencing_fks=True`."
        )


class FkNotTrackedError(DmReferenceError):
    def __init__(self, zoomed_table: str, other_table: str):
        self.zoomed_table = zoomed_table
        self.other_table = other_table
        super().__init__(
            f"The foreign key that existed between the originally zoomed table {_tick(zoomed_table)} "
            f"and {_tick(other_table)} got lost in transformations."
        )


# ============================================================================
# Graph errors
# ============================================================================


class NoCyclesError(GraphError):
    def __init__(self, start: str | None = None):
        self.start = start
        super().__init__("Cycles in the relationship graph not yet supported.")


class TablesNotNeighboursError(GraphError):
    def __init__(self, table_1: str, table_2: str):
        self.table_1 = table_1
        self.table_2 = table_2
        super().__init__(
            f"Tables {_tick(table_1)} and {_tick(table_2)} are not directly linked by a foreign key relation."
        )


class TablesNotReachableFromStartError(GraphError):
    def __init__(self, start: str, unreachable: Sequence[str]):
        self.start = start
        self.unreachable = list(unreachable)
        super().__init__(
            f"All selected tables must be reachable from {_tick(start)}. Unreachable: {_ticks(self.unreachable)}."
        )


class SquashLimitedError(GraphError):
    def __init__(self, join: str):
        self.join = join
        super().__init__(f"`squash_to_tbl()` only supports joins `left`, `inner`, `full`, got {_tick(join)}.")


class NoFlattenWithNestJoinError(GraphError):
    def __init__(self) -> None:
        super().__init__("Tables can't be flattened with `join='nest'`. Consider `join='left'`.")


# ============================================================================
# State errors
# ============================================================================


class OnlyPossibleWithoutZoomError(StateError):
    def __init__(self, fun_name: str):
        self.fun_name = fun_name
        super().__init__(
            f"You can't call `{fun_name}()` on a zoomed model. Consider using one of "
            "`update_zoomed()`, `insert_zoomed()` or `discard_zoomed()` first."
        )


class OnlyPossibleWithZoomError(StateError):
    def __init__(self, fun_name: str):
        self.fun_name = fun_name
        super().__init__(f"You can't call `{fun_name}()` on an unzoomed model. Consider using `zoom_to()` first.")


class OnlyPossibleWithoutFiltersError(StateError):
    def __init__(self, fun_name: str, message: str | None = None):
        self.fun_name = fun_name
        super().__init__(
            message
            or f"You can't call `{fun_name}()` on a model with filter conditions. "
            "Consider using `apply_filters()` first."
        )


class ApplyFiltersFirstError(OnlyPossibleWithoutFiltersError):
    def __init__(self, join: str):
        self.join = join
        super().__init__(
            f"flatten_{join}",
            f"Flattening with join {_tick(join)} generally wouldn't produce the correct result when filters are set. "
            "Please consider calling `apply_filters()` first.",
        )


class TableNotInDmError(StateError):
    def __init__(self, tables: Sequence[str], available: Sequence[str]):
        self.tables = list(tables)
        self.available = list(available)
        super().__init__(
            f"Table(s) {_ticks(self.tables)} not in model. Available table names: {_ticks(self.available)}."
        )


class WrongColNamesError(StateError):
    def __init__(self, table: str, actual_columns: Sequence[str], wrong_columns: Sequence[str]):
        self.table = table
        self.actual_columns = list(actual_columns)
        self.wrong_columns = list(wrong_columns)
        if len(self.wrong_columns) > 1:
            head = f"Not all specified variables {_ticks(self.wrong_columns)} are columns of {_tick(table)}."
        else:
            head = f"{_ticks(self.wrong_columns)} is not a column of {_tick(table)}."
        super().__init__(f"{head} Its columns are: {_ticks(self.actual_columns)}.")


class NeedUniqueNamesError(StateError):
    def __init__(self, duplicate_names: Sequence[str]):
        self.duplicate_names = list(duplicate_names)
        super().__init__(
            f"Each table needs to have a unique name. Duplicate name(s): {_ticks(self.duplicate_names)}."
        )


class UnnamedTableListError(StateError):
    def __init__(self) -> None:
        super().__init__("Table list for a new model needs to be named.")


class ReqTableNotAvailError(StateError):
    def __init__(self, available: Sequence[str], missing: Sequence[str]):
        self.available = list(available)
        self.missing = list(missing)
        super().__init__(
            f"Table(s) {_ticks(self.missing)} not available on provider. "
            f"Available tables are: {_ticks(self.available)}."
        )


class ColorNotAvailableError(StateError):
    def __init__(self, colors: Sequence[str]):
        self.colors = list(colors)
        super().__init__(
            f"The color(s) {_ticks(self.colors)} are not available. Use a named color or a hex color code."
        )


class DmInvalidError(StateError):
    def __init__(self, reasons: Sequence[str]):
        self.reasons = list(reasons)
        super().__init__(f"This model is invalid, reason: {'; '.join(self.reasons)}")
