"""Translate nested writes on the logical entity graph into physical writes.

The emitted sequence is ordered so every write only depends on earlier
ones: a join row always follows the related row it points at. Values that
are not known until execution are ``RowRef`` placeholders.

Duplicate pairings are never pre-checked. The store's unique index rejects
them and ``execute_writes`` reports the violation.
"""

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from relmap.core.descriptor import RelationDescriptor, RelationKind, RelationSide
from relmap.core.entity import Entity
from relmap.core.join_table import synthesize_join_table
from relmap.core.operations import (
    Connect,
    Create,
    CreateRow,
    InsertJoinRow,
    LocateRow,
    NestedOperation,
    PhysicalWrite,
    RowRef,
    Update,
    UpdateRow,
    WriteRole,
    WriteTree,
    is_join_write,
)
from relmap.validation import (
    DuplicateRelationError,
    NestedWriteError,
    PartialNestedWriteError,
    StoreError,
    UniqueViolation,
)

if TYPE_CHECKING:
    from relmap.core.schema_graph import SchemaGraph
    from relmap.db.base import BaseStore

logger = logging.getLogger(__name__)


class _WritePlan:
    """Accumulates physical writes in emission order."""

    def __init__(self):
        self.writes: list[PhysicalWrite] = []

    def add(self, write: PhysicalWrite) -> int:
        self.writes.append(write)
        return len(self.writes) - 1


# (entity, create op, extra column values, role, plan) -> index of the row's write
CreateHook = Callable[[Entity, Create, dict[str, Any], WriteRole, _WritePlan], int]


def _row_values(entity: Entity, data: dict[str, Any]) -> dict[str, Any]:
    """Map field names to physical columns."""
    values = {}
    for name, value in data.items():
        field = entity.get_field(name)
        if field is None:
            if entity.get_relation(name) is not None:
                raise NestedWriteError(f"'{entity.name}.{name}' is a relation field; pass it under relations")
            raise NestedWriteError(f"Unknown field '{name}' on entity '{entity.name}'")
        values[field.column_name] = value
    return values


def _is_unique_selector(entity: Entity, names: list[str]) -> bool:
    given = set(names)
    keys = [entity.primary_key_columns, *entity.unique]
    return any(key and set(key) <= given for key in keys)


def _connect_keys(entity: Entity, where: dict[str, Any], references: list[str], plan: _WritePlan) -> dict[str, Any]:
    """Resolve a connect selector into values for the referenced columns.

    A selector naming every referenced field is used as is; any other unique
    selector costs a lookup.
    """
    selector = _row_values(entity, where)
    columns = [entity.column_for(name) for name in references]
    if all(column in selector for column in columns):
        return {column: selector[column] for column in columns}
    if not _is_unique_selector(entity, list(where)):
        raise NestedWriteError(
            f"Connect on '{entity.name}' needs its identifier or a unique field set, got {', '.join(sorted(where))}"
        )
    index = plan.add(LocateRow(entity=entity.name, table=entity.table_name, where=selector))
    return {column: RowRef(index, column) for column in columns}


def _entity_write(
    entity: Entity, op: Create | Update, extra: dict[str, Any], role: WriteRole, plan: _WritePlan
) -> int:
    values = _row_values(entity, op.data)
    clash = sorted(set(values) & set(extra))
    if clash:
        raise NestedWriteError(
            f"'{entity.name}' sets {', '.join(clash)} directly while a nested relation also sets them"
        )
    values.update(extra)

    if isinstance(op, Create):
        return plan.add(CreateRow(entity=entity.name, table=entity.table_name, values=values, role=role))

    if not _is_unique_selector(entity, list(op.where)):
        raise NestedWriteError(
            f"Update on '{entity.name}' needs its identifier or a unique field set, got {', '.join(sorted(op.where))}"
        )
    where = _row_values(entity, op.where)
    if values:
        return plan.add(UpdateRow(entity=entity.name, table=entity.table_name, where=where, values=values, role=role))
    return plan.add(LocateRow(entity=entity.name, table=entity.table_name, where=where, role=role))


def _create_flat(entity: Entity, op: Create, extra: dict[str, Any], role: WriteRole, plan: _WritePlan) -> int:
    if op.relations:
        raise NestedWriteError(
            f"Nested relations under '{entity.name}' ({', '.join(op.relations)}) "
            f"need a SchemaGraph; use NestedWriteTranslator"
        )
    return _entity_write(entity, op, extra, role, plan)


def _holds_foreign_key(descriptor: RelationDescriptor, side: RelationSide) -> bool:
    return descriptor.kind is RelationKind.ONE_TO_MANY and not descriptor.is_side_a(side)


def _emit_parent(
    descriptor: RelationDescriptor,
    this: RelationSide,
    other: RelationSide,
    ops: list[NestedOperation],
    plan: _WritePlan,
    create: CreateHook,
) -> dict[str, Any]:
    """Write (or find) the referenced row of a to-one relation; return the foreign key values."""
    if len(ops) != 1:
        raise NestedWriteError(f"To-one relation {this} takes exactly one nested operation, got {len(ops)}")
    op = ops[0]
    key = descriptor.foreign_key
    references = [other.entity.column_for(name) for name in key.references]

    if isinstance(op, Create):
        index = create(other.entity, op, {}, WriteRole.RELATED, plan)
        refs = {column: RowRef(index, column) for column in references}
    elif isinstance(op, Connect):
        refs = _connect_keys(other.entity, op.where, list(key.references), plan)
    else:
        raise NestedWriteError(f"Unsupported nested operation {type(op).__name__} on {this}")

    return {this.entity.column_for(name): refs[column] for name, column in zip(key.fields, references)}


def _emit_one_to_many(
    descriptor: RelationDescriptor,
    this: RelationSide,
    other: RelationSide,
    owner: int,
    ops: list[NestedOperation],
    plan: _WritePlan,
    create: CreateHook,
) -> None:
    if not this.field.many and len(ops) > 1:
        raise NestedWriteError(f"To-one relation {this} takes at most one nested operation, got {len(ops)}")

    key = descriptor.foreign_key
    fk_values = {
        other.entity.column_for(name): RowRef(owner, this.entity.column_for(reference))
        for name, reference in zip(key.fields, key.references)
    }
    for op in ops:
        if isinstance(op, Create):
            create(other.entity, op, fk_values, WriteRole.RELATED, plan)
        elif isinstance(op, Connect):
            if not _is_unique_selector(other.entity, list(op.where)):
                raise NestedWriteError(
                    f"Connect on '{other.entity.name}' needs its identifier or a unique field set, "
                    f"got {', '.join(sorted(op.where))}"
                )
            plan.add(
                UpdateRow(
                    entity=other.entity.name,
                    table=other.entity.table_name,
                    where=_row_values(other.entity, op.where),
                    values=fk_values,
                )
            )
        else:
            raise NestedWriteError(f"Unsupported nested operation {type(op).__name__} on {this}")


def _emit_implicit(
    descriptor: RelationDescriptor,
    this: RelationSide,
    other: RelationSide,
    owner: int,
    ops: list[NestedOperation],
    plan: _WritePlan,
    create: CreateHook,
) -> None:
    spec = synthesize_join_table(descriptor)
    this_column = spec.column_for(this.entity.name, this.field.name)
    other_column = spec.other_column(this_column)
    this_reference = spec.references_a if this_column == spec.column_a else spec.references_b
    other_reference = spec.references_b if this_column == spec.column_a else spec.references_a
    other_identifier = other.entity.single_identifier.name

    for op in ops:
        if isinstance(op, Create):
            index = create(other.entity, op, {}, WriteRole.RELATED, plan)
            other_value = RowRef(index, other_reference)
        elif isinstance(op, Connect):
            other_value = _connect_keys(other.entity, op.where, [other_identifier], plan)[other_reference]
        else:
            raise NestedWriteError(f"Unsupported nested operation {type(op).__name__} on {this}")

        pair = {this_column: RowRef(owner, this_reference), other_column: other_value}
        plan.add(
            InsertJoinRow(
                table=spec.table_name,
                values={spec.column_a: pair[spec.column_a], spec.column_b: pair[spec.column_b]},
                pairing=(spec.entity_a, spec.entity_b),
            )
        )


def _emit_explicit(
    descriptor: RelationDescriptor,
    this: RelationSide,
    other: RelationSide,
    owner: int,
    ops: list[NestedOperation],
    plan: _WritePlan,
    create: CreateHook,
) -> None:
    join = descriptor.join
    join_entity = join.entity
    this_is_a = descriptor.is_side_a(this)
    _, this_key = join.for_side(this_is_a)
    far_field, far_key = join.for_side(not this_is_a)

    this_values = {
        join_entity.column_for(name): RowRef(owner, this.entity.column_for(reference))
        for name, reference in zip(this_key.fields, this_key.references)
    }

    for op in ops:
        if isinstance(op, Connect):
            attributes: dict[str, Any] = {}
            target = op
        elif isinstance(op, Create):
            attributes = op.data
            unexpected = sorted(set(op.relations) - {far_field.name})
            if unexpected:
                raise NestedWriteError(
                    f"Nested create on join entity '{join_entity.name}' only accepts '{far_field.name}', "
                    f"got {', '.join(unexpected)}"
                )
            nested = op.relations.get(far_field.name, [])
            if len(nested) != 1:
                raise NestedWriteError(
                    f"Nested create on join entity '{join_entity.name}' needs exactly one operation "
                    f"on '{far_field.name}', got {len(nested)}"
                )
            target = nested[0]
        else:
            raise NestedWriteError(f"Unsupported nested operation {type(op).__name__} on {this}")

        references = [other.entity.column_for(name) for name in far_key.references]
        if isinstance(target, Create):
            index = create(other.entity, target, {}, WriteRole.RELATED, plan)
            refs = {column: RowRef(index, column) for column in references}
        elif isinstance(target, Connect):
            refs = _connect_keys(other.entity, target.where, list(far_key.references), plan)
        else:
            raise NestedWriteError(f"Unsupported nested operation {type(target).__name__} on {join_entity.name}")
        far_values = {join_entity.column_for(name): refs[column] for name, column in zip(far_key.fields, references)}

        values = _row_values(join_entity, attributes)
        managed = {**this_values, **far_values}
        clash = sorted(set(values) & set(managed))
        if clash:
            raise NestedWriteError(
                f"Join entity '{join_entity.name}' keys {', '.join(clash)} are set by the relation, not the payload"
            )
        values.update(managed)

        plan.add(
            CreateRow(
                entity=join_entity.name,
                table=join_entity.table_name,
                values=values,
                role=WriteRole.JOIN,
                pairing=descriptor.entity_names,
                key_columns=tuple(managed),
            )
        )


def _emit_relation(
    descriptor: RelationDescriptor,
    this: RelationSide,
    other: RelationSide,
    owner: int,
    ops: list[NestedOperation],
    plan: _WritePlan,
    create: CreateHook,
) -> None:
    """Emit the writes for nested operations under one relation field of an existing row."""
    if descriptor.kind is RelationKind.MANY_TO_MANY_IMPLICIT:
        _emit_implicit(descriptor, this, other, owner, ops, plan, create)
    elif descriptor.kind is RelationKind.MANY_TO_MANY_EXPLICIT:
        _emit_explicit(descriptor, this, other, owner, ops, plan, create)
    else:
        _emit_one_to_many(descriptor, this, other, owner, ops, plan, create)


def _root_sides(
    descriptor: RelationDescriptor, tree: WriteTree, field: str | None
) -> tuple[RelationSide, RelationSide]:
    if field is not None:
        try:
            return descriptor.sides_for(tree.entity, field)
        except KeyError as e:
            raise NestedWriteError(str(e)) from e

    candidates = [
        (this, other)
        for this, other in ((descriptor.side_a, descriptor.side_b), (descriptor.side_b, descriptor.side_a))
        if this.entity.name == tree.entity
    ]
    if not candidates:
        raise NestedWriteError(f"Entity '{tree.entity}' is not part of relation {descriptor.describe()}")
    used = [pair for pair in candidates if pair[0].field.name in tree.op.relations]
    if len(used) > 1:
        raise NestedWriteError(f"Write on '{tree.entity}' touches both ends of {descriptor.describe()}")
    return used[0] if used else candidates[0]


def translate_nested_write(
    descriptor: RelationDescriptor, tree: WriteTree, *, field: str | None = None
) -> list[PhysicalWrite]:
    """Translate a nested write against one relation into ordered physical writes.

    Args:
        descriptor: Relation the nested operations are attached to
        tree: Write rooted at one of the descriptor's entities
        field: Relation field on the root entity (only needed for self relations)

    Returns:
        Physical writes in execution order

    Raises:
        NestedWriteError: If the tree does not fit the relation

    Example:
        >>> writes = translate_nested_write(
        ...     descriptor,
        ...     WriteTree("Post", Create({"title": "Hi"}, {"categories": [Create({"name": "news"})]})),
        ... )
        >>> for write in writes:
        ...     print(write)
        CREATE Post (title='Hi') [root]
        CREATE Category (name='news') [related]
        LINK _CategoryToPost (A=$1.id, B=$0.id)
    """
    this, other = _root_sides(descriptor, tree, field)
    unrelated = sorted(set(tree.op.relations) - {this.field.name})
    if unrelated:
        raise NestedWriteError(
            f"Relation(s) {', '.join(unrelated)} on '{tree.entity}' are not part of {descriptor.describe()}; "
            f"use NestedWriteTranslator"
        )
    ops = tree.op.relations.get(this.field.name, [])

    plan = _WritePlan()
    if _holds_foreign_key(descriptor, this):
        extra = _emit_parent(descriptor, this, other, ops, plan, _create_flat) if ops else {}
        _entity_write(this.entity, tree.op, extra, WriteRole.ROOT, plan)
    else:
        owner = _entity_write(this.entity, tree.op, {}, WriteRole.ROOT, plan)
        _emit_relation(descriptor, this, other, owner, ops, plan, _create_flat)

    logger.debug("Translated nested write on %s into %d physical write(s)", tree.entity, len(plan.writes))
    return plan.writes


class NestedWriteTranslator:
    """Translate whole nested write trees, resolving relation fields through a schema graph."""

    def __init__(self, graph: "SchemaGraph"):
        self.graph = graph

    def translate(self, tree: WriteTree) -> list[PhysicalWrite]:
        """Translate a nested write tree into ordered physical writes.

        Args:
            tree: Write rooted at any entity of the graph

        Returns:
            Physical writes in execution order
        """
        try:
            entity = self.graph.get_entity(tree.entity)
        except KeyError as e:
            raise NestedWriteError(f"Unknown entity '{tree.entity}'") from e

        plan = _WritePlan()
        self._write(entity, tree.op, {}, WriteRole.ROOT, plan)
        logger.debug("Translated nested write on %s into %d physical write(s)", tree.entity, len(plan.writes))
        return plan.writes

    def _write(
        self, entity: Entity, op: Create | Update, extra: dict[str, Any], role: WriteRole, plan: _WritePlan
    ) -> int:
        parents = []
        children = []
        for name, ops in op.relations.items():
            try:
                descriptor = self.graph.relation_for(entity.name, name)
            except KeyError as e:
                raise NestedWriteError(f"Unknown relation '{entity.name}.{name}'") from e
            this, other = descriptor.sides_for(entity.name, name)
            if _holds_foreign_key(descriptor, this):
                parents.append((descriptor, this, other, ops))
            else:
                children.append((descriptor, this, other, ops))

        # Referenced rows first so the foreign keys exist when this row is written
        values = dict(extra)
        for descriptor, this, other, ops in parents:
            if ops:
                values.update(_emit_parent(descriptor, this, other, ops, plan, self._create))

        owner = _entity_write(entity, op, values, role, plan)
        for descriptor, this, other, ops in children:
            _emit_relation(descriptor, this, other, owner, ops, plan, self._create)
        return owner

    def _create(self, entity: Entity, op: Create, extra: dict[str, Any], role: WriteRole, plan: _WritePlan) -> int:
        return self._write(entity, op, extra, role, plan)


def _resolve(values: dict[str, Any], results: list[dict[str, Any]]) -> dict[str, Any]:
    resolved = {}
    for column, value in values.items():
        if isinstance(value, RowRef):
            row = results[value.write]
            if value.column not in row:
                raise NestedWriteError(f"Write {value.write} did not return column '{value.column}'")
            value = row[value.column]
        resolved[column] = value
    return resolved


def _resolve_write(write: PhysicalWrite, results: list[dict[str, Any]]) -> PhysicalWrite:
    if isinstance(write, CreateRow):
        return CreateRow(
            entity=write.entity,
            table=write.table,
            values=_resolve(write.values, results),
            role=write.role,
            pairing=write.pairing,
            key_columns=write.key_columns,
        )
    if isinstance(write, LocateRow):
        return LocateRow(entity=write.entity, table=write.table, where=_resolve(write.where, results), role=write.role)
    if isinstance(write, UpdateRow):
        return UpdateRow(
            entity=write.entity,
            table=write.table,
            where=_resolve(write.where, results),
            values=_resolve(write.values, results),
            role=write.role,
        )
    return InsertJoinRow(table=write.table, values=_resolve(write.values, results), pairing=write.pairing)


def _duplicate_error(write: PhysicalWrite) -> DuplicateRelationError:
    if isinstance(write, InsertJoinRow):
        identifiers = dict(write.values)
    else:
        identifiers = {column: write.values[column] for column in write.key_columns}
    return DuplicateRelationError(write.table, write.pairing, identifiers)


def execute_writes(writes: list[PhysicalWrite], store: "BaseStore") -> list[dict[str, Any]]:
    """Execute translated writes in order against a store.

    No transaction is opened and nothing is retried or rolled back: callers
    wanting all-or-nothing semantics wrap this call in their own transaction.

    Args:
        writes: Writes from ``translate_nested_write`` or ``NestedWriteTranslator``
        store: Store executing each write

    Returns:
        The row produced by each write, in order

    Raises:
        DuplicateRelationError: A join pairing already exists
        PartialNestedWriteError: A write failed after at least one join row was written
        StoreError: Any other store failure before a join row was written
    """
    results: list[dict[str, Any]] = []
    succeeded: list[tuple[PhysicalWrite, dict[str, Any]]] = []
    completed: list[tuple[PhysicalWrite, dict[str, Any]]] = []

    for index, write in enumerate(writes):
        resolved = _resolve_write(write, results)
        try:
            row = store.apply(resolved)
        except StoreError as e:
            error: Exception = e
            if isinstance(e, UniqueViolation) and is_join_write(resolved):
                error = _duplicate_error(resolved)
            logger.debug("Write %d (%s) failed: %s", index, resolved, e)
            if succeeded:
                raise PartialNestedWriteError(succeeded, resolved, error, completed) from e
            if error is e:
                raise
            raise error from e

        results.append(row)
        completed.append((resolved, row))
        if is_join_write(resolved):
            succeeded.append((resolved, row))

    return results
