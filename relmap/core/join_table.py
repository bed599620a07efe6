"""Physical layout of implicit many-to-many join tables.

The layout is a pure function of the two entity names (and, for self
relations, the two relation field names), so the schema loader and an
introspector working on an existing database always agree:

    table   _<First>To<Second>   (or the relation name, which must start with "_")
    columns A -> First.<id>, B -> Second.<id>
    indexes UNIQUE (A, B), (B)

Names are ordered by ordinal string comparison; the original casing is kept.
"""

import logging
from dataclasses import dataclass

from relmap.core.descriptor import RelationDescriptor, RelationKind, RelationSide, require_single_identifier
from relmap.validation import InvalidJoinTableNameError, RelationValidationError

logger = logging.getLogger(__name__)

COLUMN_A = "A"
COLUMN_B = "B"


@dataclass(frozen=True)
class IndexSpec:
    """Index on a join table."""

    name: str
    table: str
    columns: tuple[str, ...]
    unique: bool = False

    def __str__(self) -> str:
        kind = "UNIQUE INDEX" if self.unique else "INDEX"
        return f"{kind} {self.name} ON {self.table} ({', '.join(self.columns)})"


@dataclass(frozen=True)
class JoinTableSpec:
    """Synthesized join table of an implicit many-to-many relation."""

    table_name: str
    entity_a: str
    entity_b: str
    field_a: str
    field_b: str
    table_a: str
    table_b: str
    references_a: str
    references_b: str
    indexes: tuple[IndexSpec, ...]
    column_a: str = COLUMN_A
    column_b: str = COLUMN_B

    @property
    def columns(self) -> tuple[str, str]:
        return self.column_a, self.column_b

    @property
    def unique_index(self) -> IndexSpec:
        return next(index for index in self.indexes if index.unique)

    @property
    def secondary_index(self) -> IndexSpec:
        return next(index for index in self.indexes if not index.unique)

    def column_for(self, entity: str, field: str) -> str:
        """Get the join column holding the identifier of ``entity``'s rows.

        Args:
            entity: Entity name
            field: Relation field on that entity (distinguishes the ends of a self relation)
        """
        if entity == self.entity_a and field == self.field_a:
            return self.column_a
        if entity == self.entity_b and field == self.field_b:
            return self.column_b
        raise KeyError(f"{entity}.{field} is not an end of join table {self.table_name}")

    def other_column(self, column: str) -> str:
        return self.column_b if column == self.column_a else self.column_a


def canonical_order(first: str, second: str, first_field: str = "", second_field: str = "") -> bool:
    """Check whether two relation ends are already in canonical (A, B) order.

    Ordinal comparison of entity names decides; equal names (self relations)
    fall back to the relation field names.
    """
    return (first, first_field) <= (second, second_field)


def canonical_sides(descriptor: RelationDescriptor) -> tuple[RelationSide, RelationSide]:
    """Get the descriptor's sides ordered as (A, B)."""
    a, b = descriptor.side_a, descriptor.side_b
    if canonical_order(a.entity.name, b.entity.name, a.field.name, b.field.name):
        return a, b
    return b, a


def validate_join_table_name(name: str) -> str:
    """Validate a join table name override.

    Raises:
        InvalidJoinTableNameError: If the name does not start with '_'
    """
    if not name.startswith("_"):
        raise InvalidJoinTableNameError(f"Join table name '{name}' must start with '_'")
    if len(name) == 1:
        raise InvalidJoinTableNameError("Join table name '_' needs at least one character after '_'")
    return name


def join_table_name(first: str, second: str, override: str | None = None) -> str:
    """Derive the join table name for two entity names.

    Examples:
        >>> join_table_name("Post", "Category")
        '_CategoryToPost'
        >>> join_table_name("Post", "Category", "_PostCategories")
        '_PostCategories'
    """
    if override is not None:
        return validate_join_table_name(override)
    name_a, name_b = (first, second) if canonical_order(first, second) else (second, first)
    return f"_{name_a}To{name_b}"


def synthesize_join_table(descriptor: RelationDescriptor) -> JoinTableSpec:
    """Derive the physical join table of an implicit many-to-many relation.

    Args:
        descriptor: Descriptor with kind MANY_TO_MANY_IMPLICIT

    Returns:
        Join table spec with table name, column assignment and indexes

    Raises:
        RelationValidationError: If the descriptor is not an implicit many-to-many
        InvalidIdentifierError: If either entity lacks a single scalar identifier
        InvalidJoinTableNameError: If the relation name override does not start with '_'
    """
    if descriptor.kind is not RelationKind.MANY_TO_MANY_IMPLICIT:
        raise RelationValidationError(
            f"Join tables are only synthesized for implicit many-to-many relations, got {descriptor.describe()}"
        )

    side_a, side_b = canonical_sides(descriptor)
    identifier_a = require_single_identifier(side_a.entity, descriptor.describe())
    identifier_b = require_single_identifier(side_b.entity, descriptor.describe())

    table = join_table_name(side_a.entity.name, side_b.entity.name, descriptor.name)

    spec = JoinTableSpec(
        table_name=table,
        entity_a=side_a.entity.name,
        entity_b=side_b.entity.name,
        field_a=side_a.field.name,
        field_b=side_b.field.name,
        table_a=side_a.entity.table_name,
        table_b=side_b.entity.table_name,
        references_a=side_a.entity.column_for(identifier_a),
        references_b=side_b.entity.column_for(identifier_b),
        indexes=(
            IndexSpec(name=f"{table}_AB_unique", table=table, columns=(COLUMN_A, COLUMN_B), unique=True),
            IndexSpec(name=f"{table}_B_index", table=table, columns=(COLUMN_B,)),
        ),
    )
    logger.debug("Synthesized join table %s for %s", table, descriptor.describe())
    return spec
