"""
ConstraintGraph - tables as nodes, foreign keys as directed edges.

The graph is an immutable multigraph: ``tables`` is an insertion-ordered arena
(a table's position is its integer id) and ``edges`` keeps foreign keys in the
order they were added. Several edges between the same pair of tables are
allowed, and so are cycles; traversals that cannot handle cycles check for them
themselves.

Every mutating method returns a new graph.
"""

from collections import deque
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, replace

from relational_dm.core.errors import (
    FirstRemoveFksError,
    IsNotForeignKeyError,
    NeedUniqueNamesError,
    TableNotInDmError,
)


@dataclass(frozen=True)
class ForeignKey:
    """Directed edge ``child_table(child_columns) -> parent_table`` referencing the parent's PK."""

    child_table: str
    child_columns: tuple[str, ...]
    parent_table: str

    def involves(self, table: str) -> bool:
        return table in (self.child_table, self.parent_table)

    def other(self, table: str) -> str:
        """Table on the opposite end of the edge."""
        return self.parent_table if table == self.child_table else self.child_table

    def __str__(self) -> str:
        return f"{self.child_table}({', '.join(self.child_columns)}) -> {self.parent_table}"


@dataclass(frozen=True)
class ConstraintGraph:
    tables: tuple[str, ...] = ()
    edges: tuple[ForeignKey, ...] = ()

    def __post_init__(self) -> None:
        duplicates = sorted({t for t in self.tables if self.tables.count(t) > 1})
        if duplicates:
            raise NeedUniqueNamesError(duplicates)

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------

    def table_id(self, name: str) -> int:
        self._require(name)
        return self.tables.index(name)

    def _require(self, *names: str) -> None:
        missing = [n for n in names if n not in self.tables]
        if missing:
            raise TableNotInDmError(missing, self.tables)

    def add_table(self, name: str) -> "ConstraintGraph":
        return replace(self, tables=self.tables + (name,))

    def remove_table(self, name: str, remove_referencing_fks: bool = False) -> "ConstraintGraph":
        """
        Remove a table with its own outgoing edges.

        Edges pointing into the table from other tables block the removal unless
        ``remove_referencing_fks`` is set, in which case exactly those direct
        incoming edges are dropped as well.

        Raises:
            FirstRemoveFksError: If other tables still reference ``name``
        """
        self._require(name)
        referencing = [t for t in self.referencing_tables(name) if t != name]
        if referencing and not remove_referencing_fks:
            raise FirstRemoveFksError(name, referencing)

        return ConstraintGraph(
            tables=tuple(t for t in self.tables if t != name),
            edges=tuple(e for e in self.edges if not e.involves(name)),
        )

    def rename_table(self, old: str, new: str) -> "ConstraintGraph":
        self._require(old)
        if old == new:
            return self

        def rename(table: str) -> str:
            return new if table == old else table

        return ConstraintGraph(
            tables=tuple(rename(t) for t in self.tables),
            edges=tuple(
                ForeignKey(rename(e.child_table), e.child_columns, rename(e.parent_table)) for e in self.edges
            ),
        )

    def select_tables(self, names: Sequence[str]) -> "ConstraintGraph":
        """Induced subgraph on ``names``, in the given order."""
        self._require(*names)
        keep = set(names)
        return ConstraintGraph(
            tables=tuple(names),
            edges=tuple(e for e in self.edges if e.child_table in keep and e.parent_table in keep),
        )

    # ------------------------------------------------------------------
    # Edges
    # ------------------------------------------------------------------

    def add_edge(self, child: str, child_columns: Sequence[str], parent: str) -> "ConstraintGraph":
        """Append an edge. Identical edges are kept side by side."""
        self._require(child, parent)
        return replace(self, edges=self.edges + (ForeignKey(child, tuple(child_columns), parent),))

    def remove_edges(
        self, child: str, parent: str, columns: Sequence[str] | None = None
    ) -> "ConstraintGraph":
        """
        Remove edges from ``child`` to ``parent``.

        ``columns=None`` removes all edges between the pair, otherwise only the
        edges whose child columns equal ``columns``.

        Raises:
            IsNotForeignKeyError: If no edge matches
        """
        self._require(child, parent)
        between = [e for e in self.edges if e.child_table == child and e.parent_table == parent]
        drop = {
            i
            for i, e in enumerate(self.edges)
            if e.child_table == child
            and e.parent_table == parent
            and (columns is None or e.child_columns == tuple(columns))
        }
        if not drop:
            raise IsNotForeignKeyError(
                child, list(columns or []), parent, [e.child_columns for e in between]
            )

        return replace(self, edges=tuple(e for i, e in enumerate(self.edges) if i not in drop))

    def outgoing(self, table: str) -> list[ForeignKey]:
        return [e for e in self.edges if e.child_table == table]

    def incoming(self, table: str) -> list[ForeignKey]:
        return [e for e in self.edges if e.parent_table == table]

    def incident_edges(self, table: str) -> list[ForeignKey]:
        return [e for e in self.edges if e.involves(table)]

    def edges_between(self, table_1: str, table_2: str) -> list[ForeignKey]:
        """Edges linking the two tables in either direction, in insertion order."""
        return [e for e in self.edges if e.involves(table_1) and e.other(table_1) == table_2]

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def neighbors(self, table: str) -> set[str]:
        """Tables one edge away from ``table``, in either direction."""
        self._require(table)
        return {e.other(table) for e in self.incident_edges(table)}

    def is_referenced(self, table: str) -> bool:
        self._require(table)
        return any(e.parent_table == table for e in self.edges)

    def referencing_tables(self, table: str) -> list[str]:
        """Tables with at least one edge into ``table``, in edge order, without repeats."""
        self._require(table)
        return list(dict.fromkeys(e.child_table for e in self.incoming(table)))

    def reachable_from(self, start: str, within: Iterable[str] | None = None) -> list[str]:
        """
        Breadth-first, undirected reachability from ``start``.

        Args:
            start: Start table
            within: Restrict the traversal to these tables (default: all)

        Returns:
            Reached tables in visiting order, ``start`` first
        """
        self._require(start)
        allowed = set(self.tables if within is None else within) | {start}

        seen = [start]
        queue = deque([start])
        while queue:
            current = queue.popleft()
            for edge in self.incident_edges(current):
                nxt = edge.other(current)
                if nxt in allowed and nxt not in seen:
                    seen.append(nxt)
                    queue.append(nxt)
        return seen

    def has_cycle_from(self, start: str, directed: bool = True) -> bool:
        """
        Depth-first cycle search in the part of the graph reachable from ``start``.

        ``directed=True`` follows edges child -> parent and reports a cycle when an
        edge leads back onto the visitation stack. ``directed=False`` ignores edge
        direction; then two parallel edges between the same tables already form a
        cycle, and only the edge used to enter a table is not followed back.
        """
        self._require(start)
        if directed:
            return self._directed_cycle(start)
        return self._undirected_cycle(start)

    def _directed_cycle(self, start: str) -> bool:
        on_stack: set[str] = set()
        done: set[str] = set()
        # (table, iterator over parents)
        stack = [(start, iter(self.outgoing(start)))]
        on_stack.add(start)

        while stack:
            table, edges = stack[-1]
            edge = next(edges, None)
            if edge is None:
                stack.pop()
                on_stack.discard(table)
                done.add(table)
                continue
            parent = edge.parent_table
            if parent in on_stack:
                return True
            if parent not in done:
                on_stack.add(parent)
                stack.append((parent, iter(self.outgoing(parent))))
        return False

    def _undirected_cycle(self, start: str) -> bool:
        visited = {start}
        # (table, index of the edge used to enter it)
        stack: list[tuple[str, int | None]] = [(start, None)]

        while stack:
            table, entered_by = stack.pop()
            for idx, edge in enumerate(self.edges):
                if idx == entered_by or not edge.involves(table):
                    continue
                nxt = edge.other(table)
                if nxt in visited:
                    return True
                visited.add(nxt)
                stack.append((nxt, idx))
        return False
