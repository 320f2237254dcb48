"""
FilterPropagator - cascade table filters through foreign keys.

A model is either unfiltered or has one active predicate on one or more tables.
Setting a filter replaces the table's previous predicate; predicates are not
combined.

Propagation runs outward from every filtered table and semi-joins each newly
reached table against the table it was reached from:

- child side: rows whose foreign key value is among the parent's visible key values
- parent side: rows whose key value is referenced by the child's visible rows

Nothing flows back toward a filtered table, so a filtered table keeps every row
matching its own predicate, and children with a missing foreign key value only
lose rows when the referenced table itself is narrowed. Each traversal visits a
table once, so propagation ends even when the graph has cycles. Tables not
connected to any filtered table keep all rows.
"""

from collections import deque
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

import structlog

from relational_dm.core.graph import ForeignKey
from relational_dm.storage.provider import Predicate, TableHandle

if TYPE_CHECKING:
    from relational_dm.core.model import DmModel

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class FilterPropagation:
    """
    Outcome of filter propagation.

    Attributes:
        views: Table -> provider handle with the visible rows (every table of the model)
        row_counts: Table -> number of visible rows (every table of the model)
        reached: Tables touched by propagation, filtered tables first
        rounds: Number of tables taken off the worklist
    """

    views: dict[str, TableHandle]
    row_counts: dict[str, int]
    reached: list[str]
    rounds: int


def set_filter(dm: "DmModel", table: str, predicate: Predicate) -> "DmModel":
    previous = dm.table_defs[table].filter
    if previous is not None:
        logger.debug("filter_replaced", table=table, previous=str(previous))
    logger.info("filter_set", table=table, predicate=str(predicate))
    return replace(dm, table_defs={**dm.table_defs, table: replace(dm.table_defs[table], filter=predicate)})


def remove_filter(dm: "DmModel", table: str | None = None) -> "DmModel":
    names = list(dm.table_defs) if table is None else [table]
    table_defs = dict(dm.table_defs)
    for name in names:
        table_defs[name] = replace(table_defs[name], filter=None)
    logger.info("filter_removed", tables=names)
    return replace(dm, table_defs=table_defs)


def _edge_keys(dm: "DmModel", edge: ForeignKey, target: str) -> tuple[list[str], list[str]] | None:
    """Join columns ``(target side, other side)`` for reducing ``target`` along ``edge``."""
    parent_pk = list(dm.table_defs[edge.parent_table].pk)
    if not parent_pk:
        logger.warning("filter_edge_skipped", fk=str(edge), reason="parent has no primary key")
        return None
    if target == edge.child_table:
        return list(edge.child_columns), parent_pk
    return parent_pk, list(edge.child_columns)


def propagate_filters(dm: "DmModel") -> FilterPropagation:
    """
    Compute the visible rows of every table under the active filters.

    Every filtered table starts its own breadth-first traversal. A table reached
    from ``current`` keeps the rows matching ``current``'s rows of that traversal
    along every foreign key between the two, and a traversal never goes back to a
    table it already visited. A table reached from several filtered tables keeps
    the rows visible under all of them.

    Self-referencing foreign keys are not followed.
    """
    provider = dm.provider
    views = {name: provider.table(name) for name in dm.table_defs}
    filtered = [name for name, d in dm.table_defs.items() if d.filter is not None]

    reached = list(filtered)
    rounds = 0

    for source in filtered:
        predicate = dm.table_defs[source].filter
        # rows of this traversal only, independent of other filters
        local = {source: provider.materialize(provider.filter(provider.table(source), predicate))}
        views[source] = provider.materialize(provider.filter(views[source], predicate))
        queue = deque([source])

        while queue:
            current = queue.popleft()
            rounds += 1

            for other in dict.fromkeys(e.other(current) for e in dm.graph.incident_edges(current)):
                if other == current or other in local:
                    continue
                keys = [_edge_keys(dm, e, other) for e in dm.graph.edges_between(current, other)]
                keys = [k for k in keys if k is not None]
                if not keys:
                    continue

                reduced, visible = provider.table(other), views[other]
                for left_on, right_on in keys:
                    reduced = provider.semi_join(reduced, local[current], left_on, right_on)
                    visible = provider.semi_join(visible, local[current], left_on, right_on)
                local[other] = provider.materialize(reduced)
                views[other] = provider.materialize(visible)
                logger.debug("filter_propagated", source=source, via=current, target=other)

                if other not in reached:
                    reached.append(other)
                queue.append(other)

    row_counts = {name: provider.row_count(handle) for name, handle in views.items()}
    logger.debug("filters_propagated", filtered=filtered, reached=reached, rounds=rounds)
    return FilterPropagation(views=views, row_counts=row_counts, reached=reached, rounds=rounds)


def apply_filters(dm: "DmModel") -> "DmModel":
    """Replace every reached table by its visible rows and clear all filters."""
    if not dm.has_filters:
        return dm

    propagation = propagate_filters(dm)
    provider = dm.provider
    for name in propagation.reached:
        provider = provider.with_table(name, provider.collect(propagation.views[name]))

    logger.info(
        "filters_applied",
        tables=propagation.reached,
        row_counts={n: propagation.row_counts[n] for n in propagation.reached},
    )
    return remove_filter(replace(dm, provider=provider))
