"""Recognize existing join tables as implicit many-to-many relations."""

import logging
from dataclasses import dataclass, field

from relmap.core.descriptor import RelationDescriptor, RelationKind
from relmap.core.join_table import COLUMN_A, COLUMN_B, IndexSpec, JoinTableSpec, canonical_order
from relmap.core.schema_graph import SchemaGraph

logger = logging.getLogger(__name__)


@dataclass
class TableInfo:
    """Physical table as reported by a database catalog."""

    name: str
    columns: list[str]
    indexes: list[IndexSpec] = field(default_factory=list)

    @classmethod
    def from_spec(cls, spec: JoinTableSpec) -> "TableInfo":
        return cls(name=spec.table_name, columns=list(spec.columns), indexes=list(spec.indexes))


def has_join_table_layout(table: TableInfo) -> bool:
    """Check for exactly columns A and B, a unique (A, B) index and an index on B."""
    if sorted(table.columns) != [COLUMN_A, COLUMN_B]:
        return False
    unique_ab = any(index.unique and index.columns == (COLUMN_A, COLUMN_B) for index in table.indexes)
    # The unique (B, A) index would serve reverse lookups too, but is not the layout we write
    b_lookup = any(index.columns and index.columns[0] == COLUMN_B for index in table.indexes)
    return unique_ab and b_lookup


def split_join_table_name(name: str, entity_names: set[str]) -> tuple[str, str] | None:
    """Split ``_<A>To<B>`` into known entity names in canonical order.

    Entity names may themselves contain ``To``; every split point is tried.
    """
    if not name.startswith("_"):
        return None
    body = name[1:]
    start = body.find("To")
    while start != -1:
        first, second = body[:start], body[start + 2 :]
        if first in entity_names and second in entity_names and canonical_order(first, second):
            return first, second
        start = body.find("To", start + 1)
    return None


def recognize_join_table(table: TableInfo, graph: SchemaGraph) -> RelationDescriptor | None:
    """Map a physical table back onto an implicit relation of the schema.

    Args:
        table: Introspected table
        graph: Schema graph to match against

    Returns:
        The implicit relation whose synthesized join table has this exact
        name and layout, or None
    """
    if not has_join_table_layout(table):
        return None
    for descriptor in graph.descriptors:
        if descriptor.kind is not RelationKind.MANY_TO_MANY_IMPLICIT:
            continue
        if graph.join_table(descriptor).table_name == table.name:
            return descriptor
    return None


def introspect_relations(tables: list[TableInfo], graph: SchemaGraph) -> dict[str, RelationDescriptor]:
    """Recognize every join table among ``tables``.

    Tables laid out like a join table but matching no relation of the schema
    are logged, not raised: they may belong to another schema.

    Returns:
        Mapping of table name to the implicit relation it materializes
    """
    recognized = {}
    entity_names = set(graph.entities)
    for table in tables:
        descriptor = recognize_join_table(table, graph)
        if descriptor is not None:
            recognized[table.name] = descriptor
        elif has_join_table_layout(table):
            pair = split_join_table_name(table.name, entity_names)
            if pair:
                logger.warning(
                    "Join table %s links %s and %s but the schema declares no implicit relation for it",
                    table.name,
                    *pair,
                )
            else:
                logger.warning("Table %s looks like a join table but matches no relation", table.name)
    return recognized
