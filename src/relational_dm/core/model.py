"""
DmModel - immutable relational data model.

A DmModel combines:
- a TableProvider holding the data,
- one TableDef per table (primary key, active filter, color),
- a ConstraintGraph of foreign keys,
- an optional zoom state (one table being edited column-wise).

Every operation returns a new model; older models stay valid and can be reused.

Usage:
    dm = (
        DmModel.from_tables({"airlines": airlines, "flights": flights})
        .add_pk("airlines", "carrier", check=True)
        .add_fk("flights", "carrier", "airlines", check=True)
    )
    dm.get_all_fks()
"""

import re
from collections import Counter
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import duckdb
import polars as pl
import structlog

from relational_dm.core import filters, flatten, snapshot
from relational_dm.core import zoom as zoom_ops
from relational_dm.core.config_loader import get_dm_settings
from relational_dm.core.errors import (
    ColorNotAvailableError,
    CompoundKeyNotSupportedError,
    DmInvalidError,
    FirstRemoveFksError,
    IsNotForeignKeyError,
    KeySetForceFalseError,
    NeedUniqueNamesError,
    NotUniqueKeyError,
    OnlyPossibleWithoutFiltersError,
    OnlyPossibleWithoutZoomError,
    OnlyPossibleWithZoomError,
    RefTableHasNoPkError,
    ReqTableNotAvailError,
    TableNotInDmError,
    UnnamedTableListError,
)
from relational_dm.core.graph import ConstraintGraph
from relational_dm.core.keys import (
    Cardinality,
    check_if_subset,
    check_key,
    examine_cardinality,
    is_subset,
    is_unique_key,
)
from relational_dm.core.selectors import ColumnSpec, resolve_columns
from relational_dm.storage.duckdb_provider import DuckDBTableProvider
from relational_dm.storage.polars_provider import PolarsTableProvider
from relational_dm.storage.provider import Predicate, TableHandle, TableProvider

logger = structlog.get_logger(__name__)

_HEX_COLOR = re.compile(r"^#[0-9a-fA-F]{6}([0-9a-fA-F]{2})?$")

NAMED_COLORS = frozenset(
    {
        "default",
        "black",
        "white",
        "grey",
        "gray",
        "red",
        "darkred",
        "orange",
        "yellow",
        "green",
        "darkgreen",
        "lightgreen",
        "blue",
        "darkblue",
        "lightblue",
        "cyan",
        "purple",
        "violet",
        "pink",
        "brown",
    }
)


@dataclass(frozen=True)
class TableDef:
    """Per-table metadata. An empty ``pk`` means the table has no primary key."""

    name: str
    pk: tuple[str, ...] = ()
    filter: Predicate | None = None
    color: str | None = None


@dataclass(frozen=True)
class DmModel:
    provider: TableProvider
    table_defs: Mapping[str, TableDef] = field(default_factory=dict)
    graph: ConstraintGraph = field(default_factory=ConstraintGraph)
    zoom: zoom_ops.ZoomState | None = None

    def __post_init__(self) -> None:
        if tuple(self.table_defs) != self.graph.tables:
            raise ValueError(
                f"Table definitions {list(self.table_defs)} do not match graph tables {list(self.graph.tables)}"
            )

    def __repr__(self) -> str:
        zoomed = f", zoomed={self.zoom.table!r}" if self.zoom else ""
        return f"DmModel(tables={list(self.table_defs)}, fks={len(self.graph.edges)}{zoomed})"

    # ========================================================================
    # Construction
    # ========================================================================

    @classmethod
    def from_tables(
        cls,
        tables: Mapping[str, pl.DataFrame | pl.LazyFrame] | Sequence[tuple[str, pl.DataFrame | pl.LazyFrame]],
    ) -> "DmModel":
        """
        Build a model over in-memory Polars tables.

        Args:
            tables: Mapping name -> frame, or a sequence of (name, frame) pairs

        Raises:
            UnnamedTableListError: If a table has no name
            NeedUniqueNamesError: If a name is used twice
        """
        if isinstance(tables, Mapping):
            pairs = list(tables.items())
        else:
            pairs = []
            for item in tables:
                if not isinstance(item, tuple) or len(item) != 2:
                    raise UnnamedTableListError()
                pairs.append(item)

        names = [name for name, _ in pairs]
        if any(not isinstance(name, str) or not name for name in names):
            raise UnnamedTableListError()
        _check_unique_names(names)

        return cls.from_provider(PolarsTableProvider(dict(pairs)), names)

    @classmethod
    def from_duckdb(cls, conn: duckdb.DuckDBPyConnection, table_names: Sequence[str] | None = None) -> "DmModel":
        """Build a model over tables of an open DuckDB connection (default: all tables)."""
        return cls.from_provider(DuckDBTableProvider(conn), table_names)

    @classmethod
    def from_provider(cls, provider: TableProvider, table_names: Sequence[str] | None = None) -> "DmModel":
        """
        Build a model over tables of any provider.

        Raises:
            ReqTableNotAvailError: If a requested table does not exist on the provider
            NeedUniqueNamesError: If a name is requested twice
        """
        available = provider.table_names()
        names = list(available) if table_names is None else list(table_names)
        _check_unique_names(names)

        missing = [n for n in names if n not in available]
        if missing:
            raise ReqTableNotAvailError(available, missing)

        graph = ConstraintGraph(tables=tuple(names))
        logger.info("dm_created", tables=names, provider=type(provider).__name__)
        return cls(provider=provider, table_defs={n: TableDef(n) for n in names}, graph=graph)

    @classmethod
    def from_dict(cls, record: Mapping[str, Any], provider: TableProvider) -> "DmModel":
        """Rebuild a model from ``to_dict()`` output over the tables of ``provider``."""
        return snapshot.model_from_dict(record, provider)

    # ========================================================================
    # Guards and helpers
    # ========================================================================

    def _check_tables(self, *names: str) -> None:
        missing = [n for n in names if n not in self.table_defs]
        if missing:
            raise TableNotInDmError(missing, list(self.table_defs))

    def _check_not_zoomed(self, fun_name: str) -> None:
        if self.zoom is not None:
            raise OnlyPossibleWithoutZoomError(fun_name)

    def _check_zoomed(self, fun_name: str) -> None:
        if self.zoom is None:
            raise OnlyPossibleWithZoomError(fun_name)

    def _check_no_filters(self, fun_name: str) -> None:
        if self.has_filters:
            raise OnlyPossibleWithoutFiltersError(fun_name)

    def _with_def(self, table_def: TableDef) -> "DmModel":
        return replace(self, table_defs={**self.table_defs, table_def.name: table_def})

    def _handle(self, table: str) -> TableHandle:
        return self.provider.table(table)

    def _visible_handle(self, table: str) -> TableHandle:
        if not self.has_filters:
            return self._handle(table)
        return filters.propagate_filters(self).views[table]

    def _resolve_key(self, table: str, columns: ColumnSpec | None) -> list[str]:
        """Resolve a key specification to exactly one column (empty allowed)."""
        resolved = resolve_columns(columns, self.get_columns(table), table)
        if len(resolved) > 1:
            raise CompoundKeyNotSupportedError(table, resolved)
        return resolved

    @property
    def table_names(self) -> list[str]:
        return list(self.table_defs)

    def get_columns(self, table: str) -> list[str]:
        self._check_tables(table)
        return self.provider.columns(self._handle(table))

    # ========================================================================
    # Tables
    # ========================================================================

    def add_table(self, name: str, frame: pl.DataFrame | pl.LazyFrame) -> "DmModel":
        """Add a table without keys."""
        self._check_not_zoomed("add_table")
        if not name:
            raise UnnamedTableListError()
        if name in self.table_defs:
            raise NeedUniqueNamesError([name])

        logger.info("table_added", table=name)
        return DmModel(
            provider=self.provider.with_table(name, frame),
            table_defs={**self.table_defs, name: TableDef(name)},
            graph=self.graph.add_table(name),
        )

    def rm_table(self, table: str, rm_referencing_fks: bool = False) -> "DmModel":
        """
        Remove a table together with its own foreign keys.

        Raises:
            FirstRemoveFksError: If other tables still reference ``table`` and
                ``rm_referencing_fks`` is False
        """
        self._check_not_zoomed("rm_table")
        self._check_tables(table)
        graph = self.graph.remove_table(table, remove_referencing_fks=rm_referencing_fks)

        logger.info("table_removed", table=table)
        return DmModel(
            provider=self.provider.without_table(table),
            table_defs={n: d for n, d in self.table_defs.items() if n != table},
            graph=graph,
        )

    def select_tables(self, *tables: str) -> "DmModel":
        """Keep only ``tables`` (in the given order) and the foreign keys among them."""
        self._check_not_zoomed("select_tables")
        self._check_tables(*tables)
        _check_unique_names(tables)
        return DmModel(
            provider=self.provider,
            table_defs={n: self.table_defs[n] for n in tables},
            graph=self.graph.select_tables(tables),
        )

    def rename_tables(self, mapping: Mapping[str, str]) -> "DmModel":
        """Rename tables; keys and filters follow the new names."""
        self._check_not_zoomed("rename_tables")
        self._check_tables(*mapping)

        new_names = [mapping.get(n, n) for n in self.table_defs]
        _check_unique_names(new_names)

        provider = self.provider
        graph = self.graph
        # Go through temporary names so that swaps (a -> b, b -> a) work
        temp = {old: f"__dm_rename_{i}" for i, old in enumerate(mapping)}
        for old, tmp in temp.items():
            provider = provider.rename_table(old, tmp)
            graph = graph.rename_table(old, tmp)
        for old, tmp in temp.items():
            provider = provider.rename_table(tmp, mapping[old])
            graph = graph.rename_table(tmp, mapping[old])

        table_defs = {
            mapping.get(n, n): replace(d, name=mapping.get(n, n)) for n, d in self.table_defs.items()
        }
        logger.info("tables_renamed", mapping=dict(mapping))
        return DmModel(provider=provider, table_defs=table_defs, graph=graph)

    def tbl(self, table: str) -> pl.DataFrame:
        """Rows of ``table`` as currently visible, with active filters propagated."""
        self._check_tables(table)
        return self.provider.collect(self._visible_handle(table))

    def get_tables(self) -> dict[str, pl.DataFrame]:
        """All tables as currently visible, with active filters propagated."""
        if not self.has_filters:
            return {n: self.provider.collect(self._handle(n)) for n in self.table_defs}
        propagation = filters.propagate_filters(self)
        return {n: self.provider.collect(propagation.views[n]) for n in self.table_defs}

    # ========================================================================
    # Primary keys
    # ========================================================================

    def add_pk(self, table: str, columns: ColumnSpec, check: bool = False, force: bool = False) -> "DmModel":
        """
        Set the primary key of ``table``.

        Replacing an existing key requires ``force=True``. Foreign keys pointing
        at the old key are not revalidated.
        With ``check=True`` the rows visible under active filters are checked.

        Raises:
            KeySetForceFalseError: If a key exists and ``force`` is False
            NotUniqueKeyError: If ``check`` is True and the column is not unique,
                or if the selection is empty
            CompoundKeyNotSupportedError: If more than one column is selected
        """
        self._check_not_zoomed("add_pk")
        self._check_tables(table)
        resolved = self._resolve_key(table, columns)

        if self.has_pk(table) and not force:
            raise KeySetForceFalseError(table)
        if not resolved:
            raise NotUniqueKeyError(table, resolved)
        if check:
            check_key(self.provider, self._visible_handle(table), resolved, table_name=table)

        logger.info("pk_added", table=table, columns=resolved, checked=check)
        return self._with_def(replace(self.table_defs[table], pk=tuple(resolved)))

    def rm_pk(self, table: str, rm_referencing_fks: bool = False) -> "DmModel":
        """
        Remove the primary key of ``table``.

        Raises:
            FirstRemoveFksError: If foreign keys point at the table and
                ``rm_referencing_fks`` is False
        """
        self._check_not_zoomed("rm_pk")
        self._check_tables(table)
        if not self.has_pk(table):
            logger.debug("pk_not_set", table=table)
            return self

        referencing = self.graph.referencing_tables(table)
        if referencing and not rm_referencing_fks:
            raise FirstRemoveFksError(table, referencing)

        graph = self.graph
        for child in referencing:
            graph = graph.remove_edges(child, table)

        logger.info("pk_removed", table=table, removed_fks_from=referencing)
        model = replace(self, graph=graph)
        return model._with_def(replace(self.table_defs[table], pk=()))

    def has_pk(self, table: str) -> bool:
        self._check_not_zoomed("has_pk")
        self._check_tables(table)
        return bool(self.table_defs[table].pk)

    def get_pk(self, table: str) -> list[str]:
        self._check_not_zoomed("get_pk")
        self._check_tables(table)
        return list(self.table_defs[table].pk)

    def get_all_pks(self) -> pl.DataFrame:
        """One row per table with a primary key: ``table``, ``pk_col`` (list of columns)."""
        self._check_not_zoomed("get_all_pks")
        rows = [(name, list(d.pk)) for name, d in self.table_defs.items() if d.pk]
        return pl.DataFrame(
            {"table": [r[0] for r in rows], "pk_col": [r[1] for r in rows]},
            schema={"table": pl.Utf8, "pk_col": pl.List(pl.Utf8)},
        )

    def enum_pk_candidates(self, table: str) -> pl.DataFrame:
        """
        Report for every column of ``table`` whether it could be the primary key.

        Returns:
            DataFrame with ``columns`` (list), ``candidate`` (bool) and ``why``
            (empty for candidates), candidates first, then by column name
        """
        self._check_not_zoomed("enum_pk_candidates")
        self._check_no_filters("enum_pk_candidates")
        self._check_tables(table)

        handle = self._handle(table)
        rows = []
        for col in self.get_columns(table):
            result = is_unique_key(self.provider, handle, [col])
            reasons = []
            if result.null_count:
                reasons.append("has missing values")
            duplicates = [v for v in result.duplicate_sample if v is not None]
            if duplicates:
                reasons.append(f"has duplicate values: {', '.join(str(v) for v in duplicates)}")
            rows.append({"columns": [col], "candidate": result.is_unique, "why": ", and ".join(reasons)})

        rows.sort(key=lambda r: (not r["candidate"], r["columns"][0]))
        return pl.DataFrame(
            rows, schema={"columns": pl.List(pl.Utf8), "candidate": pl.Boolean, "why": pl.Utf8}
        )

    # ========================================================================
    # Foreign keys
    # ========================================================================

    def add_fk(self, table: str, columns: ColumnSpec, ref_table: str, check: bool = False) -> "DmModel":
        """
        Add a foreign key ``table(columns) -> ref_table``.

        Adding the same foreign key twice keeps both edges.

        Raises:
            RefTableHasNoPkError: If ``ref_table`` has no primary key
            NotSubsetOfError: If ``check`` is True and values are missing in ``ref_table``
            CompoundKeyNotSupportedError: If not exactly one column is selected
        """
        self._check_not_zoomed("add_fk")
        self._check_tables(table, ref_table)
        resolved = self._resolve_key(table, columns)
        if not resolved:
            raise CompoundKeyNotSupportedError(table, resolved)

        ref_pk = self.get_pk(ref_table)
        if not ref_pk:
            raise RefTableHasNoPkError(ref_table)

        if check:
            check_if_subset(
                self.provider,
                self._handle(table),
                resolved,
                self._handle(ref_table),
                ref_pk,
                child_table=table,
                parent_table=ref_table,
            )

        logger.info("fk_added", table=table, columns=resolved, ref_table=ref_table, checked=check)
        return replace(self, graph=self.graph.add_edge(table, resolved, ref_table))

    def rm_fk(self, table: str, columns: ColumnSpec | None, ref_table: str) -> "DmModel":
        """
        Remove foreign keys from ``table`` to ``ref_table``.

        ``columns=None`` removes all of them.

        Raises:
            IsNotForeignKeyError: If no matching foreign key exists
        """
        self._check_not_zoomed("rm_fk")
        self._check_tables(table, ref_table)
        resolved = None if columns is None else resolve_columns(columns, self.get_columns(table), table)

        graph = self.graph.remove_edges(table, ref_table, resolved)
        logger.info("fk_removed", table=table, columns=resolved, ref_table=ref_table)
        return replace(self, graph=graph)

    def has_fk(self, table: str, ref_table: str) -> bool:
        self._check_tables(table, ref_table)
        return any(e.parent_table == ref_table for e in self.graph.outgoing(table))

    def get_fk(self, table: str, ref_table: str) -> list[list[str]]:
        """Column lists of all foreign keys from ``table`` to ``ref_table``."""
        self._check_tables(table, ref_table)
        return [list(e.child_columns) for e in self.graph.outgoing(table) if e.parent_table == ref_table]

    def get_all_fks(self) -> pl.DataFrame:
        """One row per foreign key: ``child_table``, ``child_fk_cols`` (list), ``parent_table``."""
        edges = self.graph.edges
        return pl.DataFrame(
            {
                "child_table": [e.child_table for e in edges],
                "child_fk_cols": [list(e.child_columns) for e in edges],
                "parent_table": [e.parent_table for e in edges],
            },
            schema={"child_table": pl.Utf8, "child_fk_cols": pl.List(pl.Utf8), "parent_table": pl.Utf8},
        )

    def is_referenced(self, table: str) -> bool:
        self._check_tables(table)
        return self.graph.is_referenced(table)

    def get_referencing_tables(self, table: str) -> list[str]:
        self._check_tables(table)
        return self.graph.referencing_tables(table)

    def enum_fk_candidates(self, table: str, ref_table: str) -> pl.DataFrame:
        """
        Report for every column of ``table`` whether it could reference ``ref_table``.

        A column is a candidate when all its non-missing values appear in the
        primary key of ``ref_table``.

        Returns:
            DataFrame with ``columns`` (list), ``candidate`` (bool) and ``why``,
            candidates first, then by column name

        Raises:
            RefTableHasNoPkError: If ``ref_table`` has no primary key
        """
        self._check_not_zoomed("enum_fk_candidates")
        self._check_no_filters("enum_fk_candidates")
        self._check_tables(table, ref_table)
        ref_pk = self.get_pk(ref_table)
        if not ref_pk:
            raise RefTableHasNoPkError(ref_table)

        handle = self._handle(table)
        parent_values = self.provider.distinct_values(self._handle(ref_table), ref_pk)
        rows = []
        for col in self.get_columns(table):
            result = is_subset(self.provider.distinct_values(handle, [col]), parent_values)
            why = ""
            if not result.ok:
                sample = ", ".join(str(v) for v in result.missing_sample)
                why = f"{result.missing_count} value(s) not in `{ref_table}.{ref_pk[0]}`: {sample}"
            rows.append({"columns": [col], "candidate": result.ok, "why": why})

        rows.sort(key=lambda r: (not r["candidate"], r["columns"][0]))
        return pl.DataFrame(
            rows, schema={"columns": pl.List(pl.Utf8), "candidate": pl.Boolean, "why": pl.Utf8}
        )

    def examine_cardinality(
        self, table: str, ref_table: str, columns: ColumnSpec | None = None
    ) -> Cardinality:
        """
        Classify the foreign key from ``table`` to ``ref_table``.

        Args:
            table: Child table
            ref_table: Parent table
            columns: Foreign key columns (default: the first foreign key between the two)

        Raises:
            IsNotForeignKeyError: If no such foreign key exists
            NotSubsetOfError: If the foreign key is violated
        """
        self._check_tables(table, ref_table)
        fks = self.get_fk(table, ref_table)
        if columns is None:
            if not fks:
                raise IsNotForeignKeyError(table, [], ref_table, [])
            fk_cols = fks[0]
        else:
            fk_cols = resolve_columns(columns, self.get_columns(table), table)
            if fk_cols not in fks:
                raise IsNotForeignKeyError(table, fk_cols, ref_table, fks)

        return examine_cardinality(
            self.provider,
            self._handle(ref_table),
            self.get_pk(ref_table),
            self._handle(table),
            fk_cols,
            parent_table=ref_table,
            child_table=table,
        )

    # ========================================================================
    # Validation
    # ========================================================================

    def validate(self, check_data: bool = False) -> "DmModel":
        """
        Check that all keys are consistent and return the model unchanged.

        Structural checks: key columns exist, every foreign key points at a table
        with a primary key of matching arity. With ``check_data=True`` primary keys
        must be unique and foreign keys must be subsets of their parent keys.

        Raises:
            DmInvalidError: Listing every problem found
        """
        reasons = []
        columns = {name: self.get_columns(name) for name in self.table_defs}

        for name, table_def in self.table_defs.items():
            missing = [c for c in table_def.pk if c not in columns[name]]
            if missing:
                reasons.append(f"primary key column(s) {missing} not in table `{name}`")
            elif table_def.pk and check_data:
                if not is_unique_key(self.provider, self._handle(name), table_def.pk).is_unique:
                    reasons.append(f"primary key of `{name}` is not unique")

        for edge in self.graph.edges:
            ref_pk = self.table_defs[edge.parent_table].pk
            missing = [c for c in edge.child_columns if c not in columns[edge.child_table]]
            if missing:
                reasons.append(f"foreign key column(s) {missing} not in table `{edge.child_table}`")
                continue
            if not ref_pk:
                reasons.append(f"foreign key {edge} references table without primary key")
                continue
            if len(ref_pk) != len(edge.child_columns):
                reasons.append(f"foreign key {edge} does not match arity of primary key {list(ref_pk)}")
                continue
            if check_data:
                result = is_subset(
                    self.provider.distinct_values(self._handle(edge.child_table), edge.child_columns),
                    self.provider.distinct_values(self._handle(edge.parent_table), ref_pk),
                )
                if not result.ok:
                    reasons.append(f"foreign key {edge} has values missing in the parent table")

        if reasons:
            logger.warning("dm_invalid", reasons=reasons)
            raise DmInvalidError(reasons)
        return self

    # ========================================================================
    # Colors
    # ========================================================================

    def set_colors(self, colors: Mapping[str, str]) -> "DmModel":
        """
        Assign display colors to tables.

        Args:
            colors: Table name -> named color or hex code (``#RRGGBB`` / ``#RRGGBBAA``)

        Raises:
            ColorNotAvailableError: For unknown color names
        """
        self._check_tables(*colors)
        unknown = [c for c in colors.values() if c not in NAMED_COLORS and not _HEX_COLOR.match(c)]
        if unknown:
            raise ColorNotAvailableError(unknown)

        model = self
        for table, color in colors.items():
            model = model._with_def(replace(model.table_defs[table], color=color))
        return model

    def get_colors(self) -> dict[str, str]:
        return {name: d.color for name, d in self.table_defs.items() if d.color is not None}

    # ========================================================================
    # Filters
    # ========================================================================

    @property
    def has_filters(self) -> bool:
        return any(d.filter is not None for d in self.table_defs.values())

    def get_filters(self) -> dict[str, Predicate]:
        return {name: d.filter for name, d in self.table_defs.items() if d.filter is not None}

    def filter(self, table: str, predicate: Predicate) -> "DmModel":
        """Set the filter of ``table``, replacing any previous one. Takes effect on all connected tables."""
        self._check_not_zoomed("filter")
        self._check_tables(table)
        return filters.set_filter(self, table, predicate)

    def rm_filter(self, table: str | None = None) -> "DmModel":
        """Remove the filter of ``table`` (default: of all tables)."""
        self._check_not_zoomed("rm_filter")
        if table is not None:
            self._check_tables(table)
        return filters.remove_filter(self, table)

    def propagate_filters(self) -> filters.FilterPropagation:
        return filters.propagate_filters(self)

    def apply_filters(self) -> "DmModel":
        """Write filtered tables back into the provider and clear all filters."""
        self._check_not_zoomed("apply_filters")
        return filters.apply_filters(self)

    # ========================================================================
    # Flattening
    # ========================================================================

    def join_to_tbl(self, table_1: str, table_2: str, join: str | None = None) -> pl.DataFrame:
        """Join two directly linked tables, ``table_1`` on the left."""
        self._check_not_zoomed("join_to_tbl")
        plan = flatten.plan_join_to_tbl(self, table_1, table_2, join or get_dm_settings().default_join)
        return flatten.execute_plan(self, plan)

    def flatten_to_tbl(self, start: str, *tables: str, join: str | None = None) -> pl.DataFrame:
        """Join direct neighbours of ``start`` onto it (default: all neighbours)."""
        self._check_not_zoomed("flatten_to_tbl")
        plan = flatten.plan_flatten_to_tbl(self, start, tables, join or get_dm_settings().default_join)
        return flatten.execute_plan(self, plan)

    def squash_to_tbl(self, start: str, *tables: str, join: str | None = None) -> pl.DataFrame:
        """Join tables reachable from ``start`` breadth-first (default: all reachable tables)."""
        self._check_not_zoomed("squash_to_tbl")
        plan = flatten.plan_squash_to_tbl(self, start, tables, join or get_dm_settings().default_join)
        return flatten.execute_plan(self, plan)

    # ========================================================================
    # Zoom
    # ========================================================================

    def zoom_to(self, table: str) -> "DmModel":
        self._check_not_zoomed("zoom_to")
        self._check_tables(table)
        return zoom_ops.zoom_to(self, table)

    def get_zoomed_tbl(self) -> pl.DataFrame:
        self._check_zoomed("get_zoomed_tbl")
        return self.zoom.frame.collect()

    def transform_zoomed(self, fn: Callable[[pl.LazyFrame], pl.LazyFrame]) -> "DmModel":
        self._check_zoomed("transform_zoomed")
        return zoom_ops.transform_zoomed(self, fn)

    def rename_zoomed(self, mapping: Mapping[str, str]) -> "DmModel":
        self._check_zoomed("rename_zoomed")
        return zoom_ops.rename_zoomed(self, mapping)

    def join_zoomed(self, table: str, join: str = "left") -> "DmModel":
        self._check_zoomed("join_zoomed")
        self._check_tables(table)
        return zoom_ops.join_zoomed(self, table, join)

    def update_zoomed(self) -> "DmModel":
        self._check_zoomed("update_zoomed")
        return zoom_ops.update_zoomed(self)

    def insert_zoomed(self, new_name: str) -> "DmModel":
        self._check_zoomed("insert_zoomed")
        return zoom_ops.insert_zoomed(self, new_name)

    def discard_zoomed(self) -> "DmModel":
        self._check_zoomed("discard_zoomed")
        return replace(self, zoom=None)

    # ========================================================================
    # Snapshot, visualization and persistence
    # ========================================================================

    def graph_snapshot(self) -> snapshot.GraphSnapshot:
        return snapshot.graph_snapshot(self)

    def draw(self, sink: snapshot.VisualizationSink) -> Any:
        """Hand the graph snapshot to a visualization sink and return its result."""
        return sink.render(self.graph_snapshot())

    def to_dict(self) -> dict[str, Any]:
        return snapshot.model_to_dict(self)

    def save_definition(self, path: Path | str) -> Path:
        return snapshot.save_definition(self, path)


def _check_unique_names(names: Sequence[str]) -> None:
    duplicates = [name for name, count in Counter(names).items() if count > 1]
    if duplicates:
        raise NeedUniqueNamesError(duplicates)


__all__ = ["DmModel", "NAMED_COLORS", "TableDef"]
