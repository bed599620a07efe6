"""Relation descriptors and the builder that classifies relation field pairs.

A descriptor is built once per relation when the schema is loaded and is
never mutated afterwards. Each relation kind is its own class carrying only
the payload that kind needs:

- OneToManyDescriptor: foreign key scalars live on ``side_b``
- ExplicitManyToManyDescriptor: a user-declared join entity holds both keys
- ImplicitManyToManyDescriptor: a system-managed ``_AToB`` table holds both
  keys (see ``relmap.core.join_table``)
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import ClassVar

from relmap.core.entity import Entity
from relmap.core.relationship import RelationField
from relmap.validation import AmbiguousRelationError, InvalidIdentifierError, RelationValidationError

logger = logging.getLogger(__name__)


class RelationKind(str, Enum):
    """Physical representation behind a relation."""

    ONE_TO_MANY = "one_to_many"
    MANY_TO_MANY_EXPLICIT = "many_to_many_explicit"
    MANY_TO_MANY_IMPLICIT = "many_to_many_implicit"


@dataclass(frozen=True)
class RelationSide:
    """One end of a relation: an entity and its relation field."""

    entity: Entity
    field: RelationField

    @property
    def entity_name(self) -> str:
        return self.entity.name

    @property
    def field_name(self) -> str:
        return self.field.name

    def __str__(self) -> str:
        return f"{self.entity.name}.{self.field.name}"


@dataclass(frozen=True)
class ForeignKey:
    """Foreign key scalars on the holder side and the columns they reference."""

    fields: tuple[str, ...]
    references: tuple[str, ...]


@dataclass(frozen=True)
class ExplicitJoin:
    """Join entity payload of an explicit many-to-many relation.

    ``field_a``/``key_a`` belong to the relation between the join entity and
    the descriptor's ``side_a`` entity, ``field_b``/``key_b`` to ``side_b``.
    """

    entity: Entity
    field_a: RelationField
    field_b: RelationField
    key_a: ForeignKey
    key_b: ForeignKey

    def for_side(self, side_is_a: bool) -> tuple[RelationField, ForeignKey]:
        """Get the join entity's relation field and key for one side."""
        if side_is_a:
            return self.field_a, self.key_a
        return self.field_b, self.key_b


@dataclass(frozen=True, kw_only=True)
class RelationDescriptor:
    """Base descriptor: the two sides and the disambiguating relation name."""

    kind: ClassVar[RelationKind]

    side_a: RelationSide
    side_b: RelationSide
    name: str | None = None

    @property
    def entity_names(self) -> tuple[str, str]:
        return self.side_a.entity.name, self.side_b.entity.name

    def is_side_a(self, side: RelationSide) -> bool:
        return side.entity.name == self.side_a.entity.name and side.field.name == self.side_a.field.name

    def sides_for(self, entity: str, field: str | None = None) -> tuple[RelationSide, RelationSide]:
        """Orient the descriptor from one entity's point of view.

        Args:
            entity: Entity owning the relation field being traversed
            field: Relation field name (required to pick a side of a self relation)

        Returns:
            (this side, other side)

        Raises:
            KeyError: If the entity/field is not part of this relation
        """
        matches = [
            (this, other)
            for this, other in ((self.side_a, self.side_b), (self.side_b, self.side_a))
            if this.entity.name == entity and (field is None or this.field.name == field)
        ]
        if not matches:
            target = f"{entity}.{field}" if field else entity
            raise KeyError(f"{target} is not part of relation {self.describe()}")
        return matches[0]

    def describe(self) -> str:
        """Human-readable one-line description."""
        label = f" '{self.name}'" if self.name else ""
        return f"{self.side_a} <-> {self.side_b} ({self.kind.value}{label})"


@dataclass(frozen=True, kw_only=True)
class OneToManyDescriptor(RelationDescriptor):
    """One-to-many (or one-to-one) relation backed by a foreign key on ``side_b``."""

    kind: ClassVar[RelationKind] = RelationKind.ONE_TO_MANY

    foreign_key: ForeignKey

    def describe(self) -> str:
        keys = ", ".join(self.foreign_key.fields)
        return f"{super().describe()} via {self.side_b.entity.name}({keys})"


@dataclass(frozen=True, kw_only=True)
class ExplicitManyToManyDescriptor(RelationDescriptor):
    """Many-to-many relation through a user-declared join entity."""

    kind: ClassVar[RelationKind] = RelationKind.MANY_TO_MANY_EXPLICIT

    join: ExplicitJoin

    def describe(self) -> str:
        return f"{super().describe()} through {self.join.entity.name}"


@dataclass(frozen=True, kw_only=True)
class ImplicitManyToManyDescriptor(RelationDescriptor):
    """Many-to-many relation through a system-managed join table."""

    kind: ClassVar[RelationKind] = RelationKind.MANY_TO_MANY_IMPLICIT


def relation_pair_count(entity_a: Entity, entity_b: Entity) -> int:
    """Count relation field pairs declared between two entities."""
    if entity_a.name == entity_b.name:
        # Both ends of a self relation live on the same entity
        return (len(entity_a.relations_to(entity_a.name)) + 1) // 2
    return max(len(entity_a.relations_to(entity_b.name)), len(entity_b.relations_to(entity_a.name)))


def require_single_identifier(entity: Entity, relation: str) -> str:
    """Get the single scalar identifier field of an entity.

    Raises:
        InvalidIdentifierError: If the identifier is composite or missing
    """
    identifier = entity.single_identifier
    if identifier is None:
        columns = entity.primary_key_columns
        detail = f"composite identifier ({', '.join(columns)})" if len(columns) > 1 else "no scalar identifier"
        raise InvalidIdentifierError(
            f"Implicit many-to-many relation {relation} requires entity '{entity.name}' "
            f"to have a single scalar identifier, found {detail}"
        )
    return identifier.name


def _check_ambiguity(entity_a: Entity, entity_b: Entity, field_a: RelationField, field_b: RelationField) -> None:
    if field_a.relation != field_b.relation:
        raise AmbiguousRelationError(
            f"Relation fields {entity_a.name}.{field_a.name} and {entity_b.name}.{field_b.name} "
            f"use different relation names ({field_a.relation!r} vs {field_b.relation!r})"
        )
    if relation_pair_count(entity_a, entity_b) > 1 and field_a.relation is None:
        raise AmbiguousRelationError(
            f"Entities '{entity_a.name}' and '{entity_b.name}' have more than one relation; "
            f"{entity_a.name}.{field_a.name} and {entity_b.name}.{field_b.name} need a relation name"
        )


def _foreign_key(holder: Entity, field: RelationField, referenced: Entity) -> ForeignKey:
    fields = field.foreign_key_columns
    references = list(field.references or referenced.primary_key_columns)

    missing = [name for name in fields if holder.get_field(name) is None]
    if missing:
        raise RelationValidationError(
            f"Relation {holder.name}.{field.name} uses undefined foreign key field(s): {', '.join(missing)}"
        )
    if len(fields) != len(references):
        raise RelationValidationError(
            f"Relation {holder.name}.{field.name} has {len(fields)} foreign key field(s) "
            f"but references {len(references)} field(s) on '{referenced.name}'"
        )
    if not referenced.is_unique_on(references):
        raise RelationValidationError(
            f"Relation {holder.name}.{field.name} references {referenced.name}({', '.join(references)}), "
            f"which is neither its identifier nor a unique constraint"
        )
    return ForeignKey(fields=tuple(fields), references=tuple(references))


def _join_back_field(join_entity: Entity, owner: Entity, field: RelationField, exclude: RelationField | None = None):
    candidates = [
        r
        for r in join_entity.relations_to(owner.name)
        if r.has_foreign_key and not r.many and r.relation == field.relation and r is not exclude
    ]
    if not candidates:
        raise RelationValidationError(
            f"Join entity '{join_entity.name}' has no foreign key relation back to {owner.name}.{field.name}"
        )
    if len(candidates) > 1:
        raise AmbiguousRelationError(
            f"Join entity '{join_entity.name}' has {len(candidates)} relations to '{owner.name}'; "
            f"give {owner.name}.{field.name} and its counterpart a relation name"
        )
    return candidates[0]


def _build_explicit(
    entity_a: Entity, entity_b: Entity, field_a: RelationField, field_b: RelationField, join_entity: Entity
) -> ExplicitManyToManyDescriptor:
    if join_entity.name in (entity_a.name, entity_b.name):
        raise RelationValidationError(
            f"Join entity '{join_entity.name}' must be a third entity, not one of the related entities"
        )
    if field_a.target != join_entity.name or field_b.target != join_entity.name:
        raise RelationValidationError(
            f"Relation fields {entity_a.name}.{field_a.name} and {entity_b.name}.{field_b.name} "
            f"must both target join entity '{join_entity.name}'"
        )
    if not (field_a.many and field_b.many):
        raise RelationValidationError(
            f"Relation fields {entity_a.name}.{field_a.name} and {entity_b.name}.{field_b.name} "
            f"must be list fields to reach join entity '{join_entity.name}'"
        )

    for owner, field in ((entity_a, field_a), (entity_b, field_b)):
        if relation_pair_count(owner, join_entity) > 1 and field.relation is None:
            raise AmbiguousRelationError(
                f"Entities '{owner.name}' and '{join_entity.name}' have more than one relation; "
                f"{owner.name}.{field.name} needs a relation name"
            )

    join_field_a = _join_back_field(join_entity, entity_a, field_a)
    join_field_b = _join_back_field(join_entity, entity_b, field_b, exclude=join_field_a)

    join = ExplicitJoin(
        entity=join_entity,
        field_a=join_field_a,
        field_b=join_field_b,
        key_a=_foreign_key(join_entity, join_field_a, entity_a),
        key_b=_foreign_key(join_entity, join_field_b, entity_b),
    )
    return ExplicitManyToManyDescriptor(
        side_a=RelationSide(entity_a, field_a),
        side_b=RelationSide(entity_b, field_b),
        name=field_a.relation if field_a.relation == field_b.relation else None,
        join=join,
    )


def build_descriptor(
    entity_a: Entity,
    entity_b: Entity,
    field_a: RelationField,
    field_b: RelationField,
    *,
    join_entity: Entity | None = None,
) -> RelationDescriptor:
    """Classify a pair of relation fields and build its descriptor.

    Args:
        entity_a: Entity owning ``field_a``
        entity_b: Entity owning ``field_b``
        field_a: Relation field on ``entity_a``
        field_b: Relation field on ``entity_b``
        join_entity: User-declared join entity both fields point at (explicit relations)

    Returns:
        Descriptor for the relation

    Raises:
        AmbiguousRelationError: Several relations between the entities without names
        InvalidIdentifierError: Implicit relation on an entity without a single scalar identifier
        RelationValidationError: The fields do not form a valid relation
    """
    if join_entity is not None or (
        field_a.target == field_b.target and field_a.target not in (entity_a.name, entity_b.name)
    ):
        if join_entity is None:
            raise RelationValidationError(
                f"Relation fields {entity_a.name}.{field_a.name} and {entity_b.name}.{field_b.name} "
                f"point at '{field_a.target}'; pass it as the join entity"
            )
        descriptor = _build_explicit(entity_a, entity_b, field_a, field_b, join_entity)
        logger.debug("Built %s", descriptor.describe())
        return descriptor

    if field_a.target != entity_b.name or field_b.target != entity_a.name:
        raise RelationValidationError(
            f"Relation fields {entity_a.name}.{field_a.name} -> {field_a.target} and "
            f"{entity_b.name}.{field_b.name} -> {field_b.target} do not point at each other"
        )
    if entity_a.name == entity_b.name and field_a.name == field_b.name:
        raise RelationValidationError(f"Relation field {entity_a.name}.{field_a.name} cannot be its own back-relation")

    _check_ambiguity(entity_a, entity_b, field_a, field_b)

    side_a = RelationSide(entity_a, field_a)
    side_b = RelationSide(entity_b, field_b)

    if field_a.many and field_b.many:
        if field_a.has_foreign_key or field_b.has_foreign_key:
            raise RelationValidationError(
                f"List relation fields {side_a} and {side_b} cannot declare foreign key fields"
            )
        label = f"{side_a} <-> {side_b}"
        require_single_identifier(entity_a, label)
        require_single_identifier(entity_b, label)
        descriptor = ImplicitManyToManyDescriptor(side_a=side_a, side_b=side_b, name=field_a.relation)
        logger.debug("Built %s", descriptor.describe())
        return descriptor

    if field_a.has_foreign_key and field_b.has_foreign_key:
        raise RelationValidationError(f"Only one of {side_a} and {side_b} may declare foreign key fields")
    if not (field_a.has_foreign_key or field_b.has_foreign_key):
        raise RelationValidationError(f"One of {side_a} and {side_b} must declare foreign key fields")

    # Orient so that side_b holds the foreign key
    if field_a.has_foreign_key:
        side_a, side_b = side_b, side_a
    if side_b.field.many:
        raise RelationValidationError(f"Relation field {side_b} holds a foreign key and cannot be a list")

    descriptor = OneToManyDescriptor(
        side_a=side_a,
        side_b=side_b,
        name=field_a.relation,
        foreign_key=_foreign_key(side_b.entity, side_b.field, side_a.entity),
    )
    logger.debug("Built %s", descriptor.describe())
    return descriptor
