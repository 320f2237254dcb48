"""
FlattenPlanner - turn a connected set of tables into one joined table.

Planning and execution are separate: a plan is a deterministic list of join
steps computed from the model's graph only; executing it runs the joins through
the TableProvider.

Modes:
- join_to_tbl: two directly linked tables
- flatten_to_tbl: ``start`` plus direct neighbours, each joined onto ``start``
- squash_to_tbl: breadth-first from ``start`` in foreign key order, each table joined
  to the table through which it was reached

Joins: left, inner, full, semi, anti. ``nest`` produces nested rows and can
never be flattened. Squashing supports left, inner and full only.
"""

from collections import deque
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

import polars as pl
import structlog

from relational_dm.core.errors import (
    ApplyFiltersFirstError,
    NoCyclesError,
    NoFlattenWithNestJoinError,
    RefTableHasNoPkError,
    SquashLimitedError,
    TableNotInDmError,
    TablesNotNeighboursError,
    TablesNotReachableFromStartError,
)
from relational_dm.core.filters import propagate_filters
from relational_dm.core.graph import ForeignKey

if TYPE_CHECKING:
    from relational_dm.core.model import DmModel

logger = structlog.get_logger(__name__)

JOIN_KINDS = ("left", "inner", "full", "semi", "anti", "nest")
SQUASH_JOINS = ("left", "inner", "full")


@dataclass(frozen=True)
class JoinStep:
    """Join ``right_table`` onto the accumulated result via columns of ``left_table``."""

    left_table: str
    right_table: str
    left_on: tuple[str, ...]
    right_on: tuple[str, ...]
    how: str


@dataclass(frozen=True)
class FlattenPlan:
    start: str
    steps: tuple[JoinStep, ...]
    join: str

    @property
    def tables(self) -> list[str]:
        return [self.start] + [step.right_table for step in self.steps]


def _check_join(join: str) -> None:
    if join not in JOIN_KINDS:
        raise ValueError(f"Unknown join '{join}', expected one of {JOIN_KINDS}")


def _check_filters(dm: "DmModel", join: str) -> None:
    # Full joins would bring back rows removed by the filters
    if join == "full" and dm.has_filters:
        raise ApplyFiltersFirstError(join)


def _step(dm: "DmModel", current: str, edge: ForeignKey, how: str) -> JoinStep:
    """Join step from ``current`` across ``edge``, oriented by which side ``current`` is on."""
    parent_pk = tuple(dm.get_pk(edge.parent_table))
    if not parent_pk:
        raise RefTableHasNoPkError(edge.parent_table)

    if edge.child_table == current:
        return JoinStep(current, edge.parent_table, edge.child_columns, parent_pk, how)
    return JoinStep(current, edge.child_table, parent_pk, edge.child_columns, how)


def _requested(dm: "DmModel", start: str, tables: Sequence[str]) -> list[str]:
    requested = [t for t in dict.fromkeys(tables) if t != start]
    missing = [t for t in [start, *requested] if t not in dm.table_defs]
    if missing:
        raise TableNotInDmError(missing, list(dm.table_defs))
    return requested


def plan_join_to_tbl(dm: "DmModel", table_1: str, table_2: str, join: str) -> FlattenPlan:
    """
    Plan a single join of two directly linked tables.

    Raises:
        TablesNotNeighboursError: If no foreign key links the tables
    """
    _check_join(join)
    _requested(dm, table_1, [table_2])
    if join == "nest":
        raise NoFlattenWithNestJoinError()
    _check_filters(dm, join)

    edges = dm.graph.edges_between(table_1, table_2)
    if not edges:
        raise TablesNotNeighboursError(table_1, table_2)

    return FlattenPlan(start=table_1, steps=(_step(dm, table_1, edges[0], join),), join=join)


def plan_flatten_to_tbl(dm: "DmModel", start: str, tables: Sequence[str], join: str) -> FlattenPlan:
    """
    Plan joining direct neighbours of ``start`` onto it, in the requested order.

    Args:
        dm: Model
        start: Left-most table
        tables: Tables to join (default: all neighbours of ``start`` in foreign key order)
        join: Join kind

    Raises:
        NoFlattenWithNestJoinError: For ``join='nest'``
        TablesNotNeighboursError: If a table is not adjacent to ``start``, connected or not
        NoCyclesError: If two foreign keys link ``start`` to the same table
    """
    _check_join(join)
    requested = _requested(dm, start, tables)
    if join == "nest":
        raise NoFlattenWithNestJoinError()

    if not tables:
        requested = [e.other(start) for e in dm.graph.incident_edges(start)]
        requested = [t for t in dict.fromkeys(requested) if t != start]

    neighbours = dm.graph.neighbors(start)
    for table in requested:
        if table not in neighbours:
            raise TablesNotNeighboursError(start, table)

    if dm.graph.select_tables([start, *requested]).has_cycle_from(start, directed=False):
        raise NoCyclesError(start)
    _check_filters(dm, join)

    steps = tuple(_step(dm, start, dm.graph.edges_between(start, t)[0], join) for t in requested)
    plan = FlattenPlan(start=start, steps=steps, join=join)
    logger.debug("flatten_planned", start=start, tables=plan.tables, join=join)
    return plan


def plan_squash_to_tbl(dm: "DmModel", start: str, tables: Sequence[str], join: str) -> FlattenPlan:
    """
    Plan a breadth-first join of tables reachable from ``start``.

    Traversal follows foreign keys in insertion order and only passes through
    requested tables, so identical models always give identical plans.

    Args:
        dm: Model
        start: Table the traversal starts from
        tables: Tables to join (default: every table reachable from ``start``)
        join: One of left, inner, full

    Raises:
        SquashLimitedError: For other join kinds
        TablesNotReachableFromStartError: If a table cannot be reached via requested tables
        NoCyclesError: If the part of the graph reachable from ``start`` has a cycle
    """
    _check_join(join)
    requested = _requested(dm, start, tables)
    if join not in SQUASH_JOINS:
        raise SquashLimitedError(join)

    if not tables:
        requested = dm.graph.reachable_from(start)[1:]

    within = {start, *requested}
    reachable = dm.graph.reachable_from(start, within=within)
    unreachable = [t for t in requested if t not in reachable]
    if unreachable:
        raise TablesNotReachableFromStartError(start, unreachable)

    if dm.graph.has_cycle_from(start, directed=False):
        raise NoCyclesError(start)
    _check_filters(dm, join)

    steps = []
    joined = {start}
    queue = deque([start])
    while queue:
        current = queue.popleft()
        for edge in dm.graph.incident_edges(current):
            nxt = edge.other(current)
            if nxt in within and nxt not in joined:
                steps.append(_step(dm, current, edge, join))
                joined.add(nxt)
                queue.append(nxt)

    plan = FlattenPlan(start=start, steps=tuple(steps), join=join)
    logger.debug("squash_planned", start=start, tables=plan.tables, join=join)
    return plan


def execute_plan(dm: "DmModel", plan: FlattenPlan) -> pl.DataFrame:
    """
    Run a plan through the model's provider.

    Active filters are honoured by joining the propagated views. Key columns of the
    right table are dropped after joining; other right columns whose name is taken
    get the suffix ``_<table>``.
    """
    provider = dm.provider
    if dm.has_filters:
        views = propagate_filters(dm).views
    else:
        views = {name: provider.table(name) for name in plan.tables}

    result = views[plan.start]
    # (table, column) -> column name in the accumulated result
    located = {(plan.start, c): c for c in provider.columns(result)}
    result_columns = list(provider.columns(result))

    for step in plan.steps:
        right = views[step.right_table]
        left_on = [located[(step.left_table, c)] for c in step.left_on]
        suffix = f"_{step.right_table}"
        result = provider.join(result, right, left_on, list(step.right_on), step.how, suffix)

        if step.how in ("semi", "anti"):
            continue
        for col in provider.columns(right):
            if col in step.right_on:
                located[(step.right_table, col)] = left_on[step.right_on.index(col)]
                continue
            name = f"{col}{suffix}" if col in result_columns else col
            located[(step.right_table, col)] = name
            result_columns.append(name)

    frame = provider.collect(result)
    logger.info("tables_flattened", start=plan.start, tables=plan.tables, join=plan.join, rows=frame.height)
    return frame
