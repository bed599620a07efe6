"""Tests for entity validation."""

from relmap.core.entity import Entity
from relmap.core.field import ScalarField
from relmap.core.relationship import RelationField
from relmap.validation import (
    DuplicateRelationError,
    NestedWriteError,
    RelationValidationError,
    SchemaError,
    validate_entity,
)


def test_valid_entity_has_no_errors():
    entity = Entity(name="Post", fields=[ScalarField(name="id", type="int")])

    assert validate_entity(entity) == []


def test_reports_undefined_and_duplicate_fields():
    entity = Entity(
        name="Post",
        primary_key="uuid",
        fields=[ScalarField(name="id", type="int"), ScalarField(name="id", type="int")],
        relations=[
            RelationField(name="author", target="User", fields=["authorId"]),
            RelationField(name="id", target="User", many=True),
            RelationField(name="editor", target="User", references=["id"]),
        ],
        unique=[["slug"]],
    )

    errors = validate_entity(entity)

    assert "Entity 'Post': field 'id' is defined more than once" in errors
    assert "Entity 'Post': primary key field 'uuid' is not defined" in errors
    assert "Entity 'Post': unique constraint field 'slug' is not defined" in errors
    assert "Entity 'Post': relation 'author' foreign key field 'authorId' is not defined" in errors
    assert "Entity 'Post': relation 'id' clashes with a scalar field" in errors
    assert "Entity 'Post': relation 'editor' has references but no fields" in errors


def test_missing_primary_key():
    entity = Entity(name="Log", primary_key=None, fields=[ScalarField(name="line", type="string")])

    assert validate_entity(entity) == ["Entity 'Log' must have a primary_key defined"]


def test_error_hierarchy():
    error = DuplicateRelationError("_CategoryToPost", ("Category", "Post"), {"A": 1, "B": 2})

    assert isinstance(error, NestedWriteError)
    assert issubclass(RelationValidationError, SchemaError)
    assert str(error) == "Relation between 'Category' and 'Post' already exists in '_CategoryToPost' (A=1, B=2)"
