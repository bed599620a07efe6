"""relmap: relation resolution and join-model translation for entity graphs."""

__version__ = "0.1.0"

from relmap.core.descriptor import RelationDescriptor, RelationKind, build_descriptor
from relmap.core.entity import Entity
from relmap.core.field import ScalarField
from relmap.core.filters import Quantifier, RelationFilter, translate_filter
from relmap.core.join_table import JoinTableSpec, synthesize_join_table
from relmap.core.nested_writes import NestedWriteTranslator, execute_writes, translate_nested_write
from relmap.core.operations import Connect, Create, Update, WriteTree
from relmap.core.relationship import RelationField
from relmap.core.schema_graph import SchemaGraph
from relmap.loaders import load_from_directory, load_schema

__all__ = [
    "Connect",
    "Create",
    "DuckDBStore",
    "Entity",
    "JoinTableSpec",
    "NestedWriteTranslator",
    "Quantifier",
    "RelationDescriptor",
    "RelationField",
    "RelationFilter",
    "RelationKind",
    "ScalarField",
    "SchemaGraph",
    "Update",
    "WriteTree",
    "build_descriptor",
    "execute_writes",
    "load_from_directory",
    "load_schema",
    "synthesize_join_table",
    "translate_filter",
    "translate_nested_write",
]


def __getattr__(name):  # Lazy import to avoid importing duckdb on package import
    if name == "DuckDBStore":
        from relmap.db.duckdb import DuckDBStore

        return DuckDBStore
    raise AttributeError(name)
