"""Relational data models over Polars and DuckDB tables: keys, filters, flattening."""

from relational_dm.core.errors import DmError
from relational_dm.core.graph import ConstraintGraph, ForeignKey
from relational_dm.core.keys import Cardinality
from relational_dm.core.logging_config import configure_logging
from relational_dm.core.model import DmModel, TableDef
from relational_dm.core.selectors import by_name, ends_with, everything, matches, starts_with
from relational_dm.core.snapshot import GraphSnapshot, VisualizationSink, load_definition, save_definition
from relational_dm.storage import DuckDBTableProvider, PolarsTableProvider, TableProvider

__all__ = [
    "by_name",
    "Cardinality",
    "configure_logging",
    "ConstraintGraph",
    "DmError",
    "DmModel",
    "DuckDBTableProvider",
    "ends_with",
    "everything",
    "ForeignKey",
    "GraphSnapshot",
    "load_definition",
    "matches",
    "PolarsTableProvider",
    "save_definition",
    "starts_with",
    "TableDef",
    "TableProvider",
    "VisualizationSink",
]
