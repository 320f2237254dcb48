"""
Graph snapshots and model definitions.

Two outward-facing shapes of a model:

- GraphSnapshot: tables (name, columns, color, pk) and foreign key edges, handed
  to a VisualizationSink for rendering. The core never renders anything itself.
- Model definition: a plain keyed record from which a model can be rebuilt over
  a provider holding the same tables. Saved as YAML.

Definition format:
    tables:
      - name: airlines
        columns: [carrier, name]
        pk: [carrier]
        color: blue
    fks:
      - child_table: flights
        child_columns: [carrier]
        parent_table: airlines
"""

from collections.abc import Mapping
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

import structlog
import yaml  # type: ignore

from relational_dm.core.errors import WrongColNamesError
from relational_dm.storage.provider import TableProvider

if TYPE_CHECKING:
    from relational_dm.core.model import DmModel

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class TableSnapshot:
    name: str
    columns: list[str]
    color: str | None
    pk: list[str]


@dataclass(frozen=True)
class EdgeSnapshot:
    child: str
    child_columns: list[str]
    parent: str


@dataclass(frozen=True)
class GraphSnapshot:
    tables: list[TableSnapshot]
    edges: list[EdgeSnapshot]

    def to_dict(self) -> dict[str, Any]:
        return {"tables": [asdict(t) for t in self.tables], "edges": [asdict(e) for e in self.edges]}


class VisualizationSink(Protocol):
    """Anything that can render a graph snapshot (diagram writer, UI widget, ...)."""

    def render(self, snapshot: GraphSnapshot) -> Any: ...


def graph_snapshot(dm: "DmModel") -> GraphSnapshot:
    tables = [
        TableSnapshot(name=name, columns=dm.get_columns(name), color=d.color, pk=list(d.pk))
        for name, d in dm.table_defs.items()
    ]
    edges = [EdgeSnapshot(e.child_table, list(e.child_columns), e.parent_table) for e in dm.graph.edges]
    return GraphSnapshot(tables=tables, edges=edges)


def model_to_dict(dm: "DmModel") -> dict[str, Any]:
    """Keyed record of table names, columns, primary keys, colors and foreign keys."""
    tables = []
    for name, table_def in dm.table_defs.items():
        entry: dict[str, Any] = {"name": name, "columns": dm.get_columns(name), "pk": list(table_def.pk)}
        if table_def.color:
            entry["color"] = table_def.color
        tables.append(entry)

    fks = [
        {"child_table": e.child_table, "child_columns": list(e.child_columns), "parent_table": e.parent_table}
        for e in dm.graph.edges
    ]
    return {"tables": tables, "fks": fks}


def model_from_dict(record: Mapping[str, Any], provider: TableProvider) -> "DmModel":
    """
    Rebuild a model from ``model_to_dict`` output.

    Keys are restored without data checks; call ``validate(check_data=True)``
    on the result to verify them against the provider's data.

    Raises:
        ValueError: If the record is malformed
        ReqTableNotAvailError: If a table is missing on the provider
        WrongColNamesError: If a recorded column is missing from the provider's table
    """
    from relational_dm.core.model import DmModel

    try:
        tables = list(record["tables"])
        fks = list(record.get("fks", []))
        names = [t["name"] for t in tables]
    except (KeyError, TypeError) as e:
        raise ValueError(f"Invalid model definition: {e}") from e

    dm = DmModel.from_provider(provider, names)

    colors = {}
    for entry in tables:
        name = entry["name"]
        actual = dm.get_columns(name)
        wrong = [c for c in entry.get("columns", []) if c not in actual]
        if wrong:
            raise WrongColNamesError(name, actual, wrong)
        if entry.get("pk"):
            dm = dm.add_pk(name, list(entry["pk"]))
        if entry.get("color"):
            colors[name] = entry["color"]
    if colors:
        dm = dm.set_colors(colors)

    for fk in fks:
        try:
            dm = dm.add_fk(fk["child_table"], list(fk["child_columns"]), fk["parent_table"])
        except KeyError as e:
            raise ValueError(f"Invalid foreign key definition {fk}: missing {e}") from e

    logger.info("dm_definition_loaded", tables=names, fk_count=len(fks))
    return dm


def save_definition(dm: "DmModel", path: Path | str) -> Path:
    """Write the model definition as YAML and return the path."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        yaml.safe_dump(model_to_dict(dm), f, sort_keys=False)

    logger.info("dm_definition_saved", path=str(path), tables=list(dm.table_defs))
    return path


def load_definition(path: Path | str, provider: TableProvider) -> "DmModel":
    """
    Read a YAML model definition and rebuild the model over ``provider``.

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the YAML is invalid
    """
    path = Path(path)
    try:
        with open(path) as f:
            record = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(record, dict):
        raise ValueError(f"Invalid model definition in {path}: expected a mapping, got {type(record).__name__}")
    return model_from_dict(record, provider)
