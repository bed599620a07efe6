"""Schema graph: the registry of entities and their resolved relations."""

import logging
from typing import TYPE_CHECKING

from relmap.core.descriptor import RelationDescriptor, RelationKind, build_descriptor
from relmap.core.entity import Entity
from relmap.core.join_table import JoinTableSpec, canonical_order, synthesize_join_table
from relmap.core.relationship import RelationField
from relmap.validation import AmbiguousRelationError, RelationValidationError, SchemaError, validate_schema

if TYPE_CHECKING:
    from sqlglot import exp

    from relmap.core.filters import RelationFilter
    from relmap.core.operations import PhysicalWrite, WriteTree

logger = logging.getLogger(__name__)


class SchemaGraph:
    """Entities plus every relation descriptor and join table derived from them.

    The graph is constructed and passed around explicitly, so several
    schemas can live in one process. Relations are resolved wholesale by
    ``build()`` (called lazily on first access); adding an entity discards
    the resolved state instead of patching it.
    """

    def __init__(self, entities: list[Entity] | None = None):
        self.entities: dict[str, Entity] = {}
        self._descriptors: list[RelationDescriptor] = []
        self._by_field: dict[tuple[str, str], RelationDescriptor] = {}
        self._join_tables: dict[RelationDescriptor, JoinTableSpec] = {}
        self._join_entities: set[str] = set()
        self._built = False

        for entity in entities or []:
            self.add_entity(entity)

    def add_entity(self, entity: Entity) -> None:
        """Add an entity to the graph.

        Args:
            entity: Entity to add
        """
        if entity.name in self.entities:
            raise ValueError(f"Entity {entity.name} already exists")

        self.entities[entity.name] = entity
        self._reset()

    def get_entity(self, name: str) -> Entity:
        """Get entity by name.

        Raises:
            KeyError: If entity not found
        """
        if name not in self.entities:
            raise KeyError(f"Entity {name} not found")
        return self.entities[name]

    @property
    def descriptors(self) -> list[RelationDescriptor]:
        self._ensure_built()
        return list(self._descriptors)

    @property
    def join_entities(self) -> set[str]:
        """Names of entities acting as explicit many-to-many join entities."""
        self._ensure_built()
        return set(self._join_entities)

    def relation_for(self, entity: str, field: str) -> RelationDescriptor:
        """Get the descriptor behind a relation field.

        A list field pointing at a join entity resolves to the explicit
        many-to-many descriptor, not to the one-to-many towards the join entity.

        Raises:
            KeyError: If the entity has no such relation field
        """
        self._ensure_built()
        key = (entity, field)
        if key not in self._by_field:
            raise KeyError(f"Relation {entity}.{field} not found")
        return self._by_field[key]

    def join_table(self, descriptor: RelationDescriptor) -> JoinTableSpec:
        """Get the synthesized join table of an implicit many-to-many relation."""
        self._ensure_built()
        if descriptor not in self._join_tables:
            raise KeyError(f"No join table for {descriptor.describe()}")
        return self._join_tables[descriptor]

    def join_tables(self) -> list[JoinTableSpec]:
        self._ensure_built()
        return sorted(self._join_tables.values(), key=lambda spec: spec.table_name)

    def build(self) -> None:
        """Resolve every relation field into descriptors and join tables.

        Raises:
            SchemaError: On the first invalid, ambiguous or unsupported relation
        """
        self._reset()

        errors = validate_schema(self)
        if errors:
            raise SchemaError("Invalid schema:\n  " + "\n  ".join(errors))

        join_entities = {name for name, entity in self.entities.items() if self._is_join_entity(entity)}
        pairs = self._pair_relation_fields()

        descriptors: list[RelationDescriptor] = []
        by_field: dict[tuple[str, str], RelationDescriptor] = {}
        for (owner, field), (target, back) in pairs:
            descriptor = build_descriptor(self.entities[owner], self.entities[target], field, back)
            descriptors.append(descriptor)
            by_field[(owner, field.name)] = descriptor
            by_field[(target, back.name)] = descriptor

        for join_name in sorted(join_entities):
            descriptor = self._build_explicit(self.entities[join_name], by_field)
            if descriptor is None:
                join_entities.discard(join_name)
                continue
            descriptors.append(descriptor)
            by_field[(descriptor.side_a.entity.name, descriptor.side_a.field.name)] = descriptor
            by_field[(descriptor.side_b.entity.name, descriptor.side_b.field.name)] = descriptor

        join_tables = {
            descriptor: synthesize_join_table(descriptor)
            for descriptor in descriptors
            if descriptor.kind is RelationKind.MANY_TO_MANY_IMPLICIT
        }
        names = [spec.table_name for spec in join_tables.values()]
        clashes = sorted({name for name in names if names.count(name) > 1})
        if clashes:
            raise AmbiguousRelationError(
                f"Several implicit relations map to join table(s) {', '.join(clashes)}; give them distinct names"
            )
        taken = {entity.table_name for entity in self.entities.values()}
        for spec in join_tables.values():
            if spec.table_name in taken:
                raise RelationValidationError(f"Join table '{spec.table_name}' clashes with an entity table")

        self._descriptors = descriptors
        self._by_field = by_field
        self._join_tables = join_tables
        self._join_entities = join_entities
        self._built = True
        logger.info(
            "Resolved %d relation(s) across %d entities (%d join table(s))",
            len(descriptors),
            len(self.entities),
            len(join_tables),
        )

    def translate_filter(
        self,
        entity: str,
        relation_filter: "RelationFilter",
        outer_alias: str | None = None,
        dialect: str = "duckdb",
    ) -> "exp.Expression":
        """Translate a relation filter on ``entity`` into a physical predicate."""
        from relmap.core.filters import translate_filter

        descriptor = self.relation_for(entity, relation_filter.field)
        return translate_filter(
            descriptor,
            relation_filter.quantifier,
            relation_filter.where,
            entity=entity,
            field=relation_filter.field,
            join_where=relation_filter.join_where,
            outer_alias=outer_alias,
            dialect=dialect,
        )

    def translate_nested_write(self, tree: "WriteTree") -> list["PhysicalWrite"]:
        """Translate a nested write tree, following every relation it touches."""
        from relmap.core.nested_writes import NestedWriteTranslator

        return NestedWriteTranslator(self).translate(tree)

    def _reset(self) -> None:
        self._descriptors = []
        self._by_field = {}
        self._join_tables = {}
        self._join_entities = set()
        self._built = False

    def _ensure_built(self) -> None:
        if not self._built:
            self.build()

    def _is_join_entity(self, entity: Entity) -> bool:
        # Exactly two foreign key relations whose keys together are unique,
        # each answered by a list field on the referenced entity
        keyed = [r for r in entity.relations if r.has_foreign_key and not r.many]
        if len(keyed) != 2:
            return False
        if not entity.is_unique_on(keyed[0].foreign_key_columns + keyed[1].foreign_key_columns):
            return False
        for relation in keyed:
            target = self.entities[relation.target]
            back_fields = [r for r in target.relations if r.many and r.target == entity.name]
            if not any(r.relation == relation.relation for r in back_fields):
                return False
        return True

    def _pair_relation_fields(
        self,
    ) -> list[tuple[tuple[str, RelationField], tuple[str, RelationField]]]:
        """Match every relation field with its back-relation on the target entity."""
        pairs = []
        seen: set[tuple[str, str]] = set()

        for owner in sorted(self.entities):
            entity = self.entities[owner]
            for field in entity.relations:
                if (owner, field.name) in seen:
                    continue
                target = self.entities[field.target]
                candidates = [
                    r
                    for r in target.relations
                    if field.matches(r, owner) and (target.name, r.name) != (owner, field.name)
                ]
                if not candidates:
                    raise RelationValidationError(
                        f"Relation field {owner}.{field.name} has no opposite relation field on '{target.name}'"
                    )
                if len(candidates) > 1:
                    names = ", ".join(f"{target.name}.{r.name}" for r in candidates)
                    raise AmbiguousRelationError(
                        f"Relation field {owner}.{field.name} matches several back-relations ({names}); "
                        f"add relation names to disambiguate"
                    )
                back = candidates[0]
                if (target.name, back.name) in seen:
                    raise AmbiguousRelationError(
                        f"Relation field {target.name}.{back.name} is claimed by several relations; "
                        f"add relation names to disambiguate"
                    )
                seen.add((owner, field.name))
                seen.add((target.name, back.name))

                if canonical_order(owner, target.name, field.name, back.name):
                    pairs.append(((owner, field), (target.name, back)))
                else:
                    pairs.append(((target.name, back), (owner, field)))

        return pairs

    def _build_explicit(
        self, join_entity: Entity, by_field: dict[tuple[str, str], RelationDescriptor]
    ) -> RelationDescriptor | None:
        ends = []
        for relation in join_entity.relations:
            if not relation.has_foreign_key or relation.many:
                continue
            descriptor = by_field[(join_entity.name, relation.name)]
            # The other end of the one-to-many is the list field on the related entity
            ends.append(descriptor.side_a)
        if len(ends) != 2:
            return None

        first, second = ends
        if not canonical_order(first.entity.name, second.entity.name, first.field.name, second.field.name):
            first, second = second, first
        return build_descriptor(first.entity, second.entity, first.field, second.field, join_entity=join_entity)
