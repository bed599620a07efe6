"""Validation and error handling for relation schemas and translated writes."""

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from relmap.core.entity import Entity
    from relmap.core.schema_graph import SchemaGraph


class ValidationError(Exception):
    """Raised when relation schema or request validation fails."""

    pass


class SchemaError(ValidationError):
    """Raised at schema-load time. Never recoverable at request time."""

    pass


class RelationValidationError(SchemaError):
    """Raised when a relation field pair is structurally invalid."""

    pass


class AmbiguousRelationError(SchemaError):
    """Raised when two entities share several relations without relation names."""

    pass


class InvalidIdentifierError(SchemaError):
    """Raised when an implicit many-to-many entity lacks a single scalar identifier."""

    pass


class InvalidJoinTableNameError(SchemaError):
    """Raised when a join table name override does not start with '_'."""

    pass


class NestedWriteError(ValidationError):
    """Raised for request-scoped nested write failures."""

    pass


class DuplicateRelationError(NestedWriteError):
    """Raised when a join pairing already exists.

    Attributes:
        table: Join table (or join entity table) that rejected the row
        entities: Names of the two related entities
        identifiers: Identifier values of the pairing, keyed by column
    """

    def __init__(self, table: str, entities: tuple[str, str], identifiers: dict[str, Any]):
        self.table = table
        self.entities = entities
        self.identifiers = identifiers
        pairing = ", ".join(f"{column}={value!r}" for column, value in identifiers.items())
        super().__init__(
            f"Relation between '{entities[0]}' and '{entities[1]}' already exists in '{table}' ({pairing})"
        )


class PartialNestedWriteError(NestedWriteError):
    """Raised when a multi-row nested write stops after join rows were written.

    The engine never rolls back; callers decide whether to compensate.

    Attributes:
        succeeded: Join writes that completed, with their results
        failed: The write that failed
        cause: The underlying error
        completed: Every write that completed (entity and join rows), with its result
    """

    def __init__(
        self,
        succeeded: list[tuple[Any, dict[str, Any]]],
        failed: Any,
        cause: Exception,
        completed: list[tuple[Any, dict[str, Any]]] | None = None,
    ):
        self.succeeded = succeeded
        self.failed = failed
        self.cause = cause
        self.completed = completed if completed is not None else list(succeeded)
        super().__init__(
            f"Nested write stopped after {len(succeeded)} join row(s): {failed} failed with {cause}"
        )


class StoreError(Exception):
    """Raised by store implementations when a physical write fails."""

    pass


class UniqueViolation(StoreError):
    """Raised by store implementations when a unique constraint rejects a row."""

    pass


def validate_entity(entity: "Entity") -> list[str]:
    """Validate an entity definition.

    Args:
        entity: Entity to validate

    Returns:
        List of validation errors (empty if valid)
    """
    errors = []

    if not entity.primary_key_columns:
        errors.append(f"Entity '{entity.name}' must have a primary_key defined")

    field_names = [f.name for f in entity.fields]
    duplicates = {name for name in field_names if field_names.count(name) > 1}
    for name in sorted(duplicates):
        errors.append(f"Entity '{entity.name}': field '{name}' is defined more than once")

    for key in entity.primary_key_columns:
        if key not in field_names:
            errors.append(f"Entity '{entity.name}': primary key field '{key}' is not defined")

    for constraint in entity.unique:
        for name in constraint:
            if name not in field_names:
                errors.append(f"Entity '{entity.name}': unique constraint field '{name}' is not defined")

    relation_names = [r.name for r in entity.relations]
    for relation in entity.relations:
        if relation.name in field_names:
            errors.append(f"Entity '{entity.name}': relation '{relation.name}' clashes with a scalar field")
        if relation_names.count(relation.name) > 1:
            errors.append(f"Entity '{entity.name}': relation '{relation.name}' is defined more than once")
        for name in relation.foreign_key_columns:
            if name not in field_names:
                errors.append(
                    f"Entity '{entity.name}': relation '{relation.name}' foreign key field '{name}' is not defined"
                )
        if relation.references and not relation.fields:
            errors.append(f"Entity '{entity.name}': relation '{relation.name}' has references but no fields")

    # Report each clash once
    return list(dict.fromkeys(errors))


def validate_schema(graph: "SchemaGraph") -> list[str]:
    """Validate all entities in a schema graph and the targets they reference.

    Args:
        graph: Schema graph containing entities

    Returns:
        List of validation errors (empty if valid)
    """
    errors = []

    for entity in graph.entities.values():
        errors.extend(validate_entity(entity))
        for relation in entity.relations:
            if relation.target not in graph.entities:
                errors.append(
                    f"Entity '{entity.name}': relation '{relation.name}' targets unknown entity '{relation.target}'"
                )

    return errors
