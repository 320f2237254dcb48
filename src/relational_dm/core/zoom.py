"""
Zoom - edit one table column-wise, then put it back into the model.

While a model is zoomed, the zoomed table lives as a Polars LazyFrame next to the
model. A column tracker maps current column names back to the original column
names of the zoomed table, so that primary and foreign keys can follow renames
and joins. Columns that are dropped (or replaced by a transformation that does
not keep their name) are no longer tracked, and keys on them are lost.

Usage:
    dm = (
        dm.zoom_to("flights")
        .rename_zoomed({"carrier": "airline"})
        .join_zoomed("airlines")
        .insert_zoomed("flights_with_airlines")
    )
"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

import polars as pl
import structlog

from relational_dm.core.errors import (
    FkNotTrackedError,
    NeedUniqueNamesError,
    NoFlattenWithNestJoinError,
    TablesNotNeighboursError,
    UnnamedTableListError,
    WrongColNamesError,
)
from relational_dm.core.graph import ConstraintGraph, ForeignKey

if TYPE_CHECKING:
    from relational_dm.core.model import DmModel

logger = structlog.get_logger(__name__)

ZOOM_JOINS = ("left", "inner", "full", "semi", "anti")


@dataclass(frozen=True)
class ZoomState:
    """
    The table being edited.

    Attributes:
        table: Name of the original table
        frame: Current state of the zoomed table
        tracked: Current column name -> original column name
    """

    table: str
    frame: pl.LazyFrame
    tracked: Mapping[str, str]

    def columns(self) -> list[str]:
        return self.frame.collect_schema().names()

    def current_name(self, original: str) -> str | None:
        """Current name of an original column, None if it is no longer tracked."""
        for current, orig in self.tracked.items():
            if orig == original:
                return current
        return None


def zoom_to(dm: "DmModel", table: str) -> "DmModel":
    frame = dm.provider.collect(dm.provider.table(table)).lazy()
    columns = frame.collect_schema().names()
    state = ZoomState(table=table, frame=frame, tracked={c: c for c in columns})
    logger.debug("zoomed", table=table, columns=columns)
    return replace(dm, zoom=state)


def _with_frame(dm: "DmModel", frame: pl.LazyFrame, tracked: Mapping[str, str]) -> "DmModel":
    columns = set(frame.collect_schema().names())
    kept = {cur: orig for cur, orig in tracked.items() if cur in columns}
    lost = sorted(set(tracked.values()) - set(kept.values()))
    if lost:
        logger.debug("zoom_columns_untracked", table=dm.zoom.table, columns=lost)
    return replace(dm, zoom=replace(dm.zoom, frame=frame, tracked=kept))


def transform_zoomed(dm: "DmModel", fn: Callable[[pl.LazyFrame], pl.LazyFrame]) -> "DmModel":
    """
    Apply ``fn`` to the zoomed table.

    Columns keep being tracked as long as their name survives the transformation.
    """
    frame = fn(dm.zoom.frame)
    if isinstance(frame, pl.DataFrame):
        frame = frame.lazy()
    return _with_frame(dm, frame, dm.zoom.tracked)


def rename_zoomed(dm: "DmModel", mapping: Mapping[str, str]) -> "DmModel":
    """Rename columns of the zoomed table; keys on renamed columns follow along."""
    state = dm.zoom
    columns = state.columns()
    wrong = [c for c in mapping if c not in columns]
    if wrong:
        raise WrongColNamesError(state.table, columns, wrong)

    tracked = {mapping.get(cur, cur): orig for cur, orig in state.tracked.items()}
    return _with_frame(dm, state.frame.rename(dict(mapping)), tracked)


def join_zoomed(dm: "DmModel", table: str, join: str = "left") -> "DmModel":
    """
    Join a table linked to the zoomed table by a foreign key.

    The first foreign key between the two tables is used. Columns of ``table``
    are added; names already present get the suffix ``_<table>``. Added columns
    are not tracked.

    Raises:
        TablesNotNeighboursError: If no foreign key links the two tables
        FkNotTrackedError: If the key columns on the zoomed side are no longer tracked
    """
    state = dm.zoom
    if join == "nest":
        raise NoFlattenWithNestJoinError()
    if join not in ZOOM_JOINS:
        raise ValueError(f"Unknown join '{join}', expected one of {ZOOM_JOINS}")

    edges = dm.graph.edges_between(state.table, table)
    if not edges:
        raise TablesNotNeighboursError(state.table, table)
    edge = edges[0]

    if edge.child_table == state.table and edge.parent_table != state.table:
        zoomed_keys, other_keys = list(edge.child_columns), list(dm.table_defs[table].pk)
    else:
        zoomed_keys, other_keys = list(dm.table_defs[state.table].pk), list(edge.child_columns)

    left_on = [state.current_name(c) for c in zoomed_keys]
    if not zoomed_keys or None in left_on:
        raise FkNotTrackedError(state.table, table)

    right = dm.provider.collect(dm.provider.table(table)).lazy()
    if join in ("semi", "anti"):
        frame = state.frame.join(right.select(other_keys), left_on=left_on, right_on=other_keys, how=join)
    else:
        frame = state.frame.join(
            right, left_on=left_on, right_on=other_keys, how=join, suffix=f"_{table}", coalesce=True
        )

    logger.debug("zoom_joined", table=state.table, other=table, join=join, on=left_on)
    return _with_frame(dm, frame, state.tracked)


def _carry_keys(dm: "DmModel", state: ZoomState, target: str) -> tuple[tuple[str, ...], list[ForeignKey]]:
    """Primary key and outgoing foreign keys of the zoomed table, mapped to current names for ``target``."""
    pk = tuple(state.current_name(c) for c in dm.table_defs[state.table].pk)
    if None in pk:
        logger.warning("zoom_pk_lost", table=state.table, pk=list(dm.table_defs[state.table].pk))
        pk = ()

    outgoing = []
    for edge in dm.graph.outgoing(state.table):
        columns = tuple(state.current_name(c) for c in edge.child_columns)
        if None in columns:
            logger.warning("zoom_fk_lost", table=state.table, fk=str(edge))
            continue
        parent = target if edge.parent_table == state.table else edge.parent_table
        outgoing.append(ForeignKey(target, columns, parent))

    return pk, outgoing


def update_zoomed(dm: "DmModel") -> "DmModel":
    """
    Replace the original table with the zoomed table.

    Keys on tracked columns are kept under their new names. Foreign keys pointing
    at the table are dropped when its primary key is lost.
    """
    state = dm.zoom
    table = state.table
    pk, outgoing = _carry_keys(dm, state, table)

    edges = []
    for edge in dm.graph.edges:
        if edge.child_table == table:
            continue
        if edge.parent_table == table and not pk:
            logger.warning("zoom_referencing_fk_dropped", fk=str(edge))
            continue
        edges.append(edge)
    edges.extend(e for e in outgoing if pk or e.parent_table != table)

    frame = state.frame.collect()
    logger.info("zoomed_table_updated", table=table, columns=frame.columns, pk=list(pk))
    return replace(
        dm,
        provider=dm.provider.with_table(table, frame),
        table_defs={**dm.table_defs, table: replace(dm.table_defs[table], pk=pk)},
        graph=ConstraintGraph(tables=dm.graph.tables, edges=tuple(edges)),
        zoom=None,
    )


def insert_zoomed(dm: "DmModel", new_name: str) -> "DmModel":
    """
    Add the zoomed table as a new table and keep the original.

    The new table gets the primary key and the outgoing foreign keys of the
    original, as far as their columns are still tracked.
    """
    state = dm.zoom
    if not new_name:
        raise UnnamedTableListError()
    if new_name in dm.table_defs:
        raise NeedUniqueNamesError([new_name])

    pk, outgoing = _carry_keys(dm, state, new_name)
    frame = state.frame.collect()
    original = dm.table_defs[state.table]

    logger.info("zoomed_table_inserted", table=new_name, source=state.table, pk=list(pk))
    return replace(
        dm,
        provider=dm.provider.with_table(new_name, frame),
        table_defs={**dm.table_defs, new_name: replace(original, name=new_name, pk=pk, filter=None)},
        graph=ConstraintGraph(tables=dm.graph.tables + (new_name,), edges=dm.graph.edges + tuple(outgoing)),
        zoom=None,
    )
