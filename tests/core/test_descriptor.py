"""Tests for relation descriptor classification."""

import pytest

from relmap.core.descriptor import (
    ExplicitManyToManyDescriptor,
    ImplicitManyToManyDescriptor,
    OneToManyDescriptor,
    RelationKind,
    build_descriptor,
)
from relmap.core.entity import Entity
from relmap.core.field import ScalarField
from relmap.core.relationship import RelationField
from relmap.core.schema_graph import SchemaGraph
from relmap.validation import AmbiguousRelationError, InvalidIdentifierError, RelationValidationError


def _entity(name, relations, primary_key="id", extra_fields=()):
    fields = [ScalarField(name="id", type="int"), *extra_fields]
    return Entity(name=name, primary_key=primary_key, fields=fields, relations=relations)


def test_two_list_fields_are_implicit(implicit_graph):
    descriptor = implicit_graph.relation_for("Post", "categories")

    assert isinstance(descriptor, ImplicitManyToManyDescriptor)
    assert descriptor.kind is RelationKind.MANY_TO_MANY_IMPLICIT
    assert descriptor.entity_names == ("Category", "Post")
    assert descriptor is implicit_graph.relation_for("Category", "posts")


def test_join_entity_makes_relation_explicit(explicit_graph):
    descriptor = explicit_graph.relation_for("Post", "categories")

    assert isinstance(descriptor, ExplicitManyToManyDescriptor)
    assert descriptor.join.entity.name == "CategoriesOnPosts"
    field, key = descriptor.join.for_side(descriptor.side_a.entity.name == "Post")
    assert field.name == "post"
    assert key.fields == ("postId",)
    assert key.references == ("id",)


def test_foreign_key_side_becomes_side_b(author_graph):
    descriptor = author_graph.relation_for("Book", "author")

    assert isinstance(descriptor, OneToManyDescriptor)
    assert str(descriptor.side_a) == "Author.books"
    assert str(descriptor.side_b) == "Book.author"
    assert descriptor.foreign_key.fields == ("authorId",)
    assert descriptor.foreign_key.references == ("id",)


def test_one_to_one_is_one_to_many_with_to_one_back_field():
    user = _entity("User", [RelationField(name="profile", target="Profile")])
    profile = _entity(
        "Profile",
        [RelationField(name="user", target="User", fields=["userId"])],
        extra_fields=[ScalarField(name="userId", type="int")],
    )

    descriptor = build_descriptor(user, profile, user.relations[0], profile.relations[0])

    assert descriptor.kind is RelationKind.ONE_TO_MANY
    assert descriptor.side_b.entity.name == "Profile"


def test_several_unnamed_relations_are_ambiguous():
    post = _entity(
        "Post",
        [
            RelationField(name="authors", target="User", many=True),
            RelationField(name="readers", target="User", many=True),
        ],
    )
    user = _entity(
        "User",
        [
            RelationField(name="written", target="Post", many=True),
            RelationField(name="read", target="Post", many=True),
        ],
    )

    with pytest.raises(AmbiguousRelationError, match="Post"):
        build_descriptor(post, user, post.relations[0], user.relations[0])

    with pytest.raises(AmbiguousRelationError):
        SchemaGraph([post, user]).build()


def test_different_relation_names_are_ambiguous():
    post = _entity("Post", [RelationField(name="tags", target="Tag", many=True, relation="_PostTags")])
    tag = _entity("Tag", [RelationField(name="posts", target="Post", many=True, relation="_TagPosts")])

    with pytest.raises(AmbiguousRelationError, match="different relation names"):
        build_descriptor(post, tag, post.relations[0], tag.relations[0])


def test_named_relations_resolve_independently():
    post = _entity(
        "Post",
        [
            RelationField(name="authors", target="User", many=True, relation="_PostAuthors"),
            RelationField(name="readers", target="User", many=True, relation="_PostReaders"),
        ],
    )
    user = _entity(
        "User",
        [
            RelationField(name="written", target="Post", many=True, relation="_PostAuthors"),
            RelationField(name="read", target="Post", many=True, relation="_PostReaders"),
        ],
    )
    graph = SchemaGraph([post, user])

    assert graph.relation_for("Post", "authors") is graph.relation_for("User", "written")
    assert graph.relation_for("Post", "readers").name == "_PostReaders"
    assert [spec.table_name for spec in graph.join_tables()] == ["_PostAuthors", "_PostReaders"]


def test_implicit_requires_single_identifier():
    post = _entity("Post", [RelationField(name="tags", target="Tag", many=True)])
    tag = Entity(
        name="Tag",
        primary_key=["name", "lang"],
        fields=[ScalarField(name="name", type="string"), ScalarField(name="lang", type="string")],
        relations=[RelationField(name="posts", target="Post", many=True)],
    )

    with pytest.raises(InvalidIdentifierError, match="composite identifier"):
        build_descriptor(post, tag, post.relations[0], tag.relations[0])


def test_unique_constraint_does_not_substitute_identifier():
    post = _entity("Post", [RelationField(name="tags", target="Tag", many=True)])
    tag = Entity(
        name="Tag",
        primary_key=["name", "lang"],
        fields=[ScalarField(name="name", type="string"), ScalarField(name="lang", type="string")],
        relations=[RelationField(name="posts", target="Post", many=True)],
        unique=[["name"]],
    )

    with pytest.raises(InvalidIdentifierError):
        SchemaGraph([post, tag]).build()


def test_fields_must_point_at_each_other():
    post = _entity("Post", [RelationField(name="tags", target="Tag", many=True)])
    tag = _entity("Tag", [RelationField(name="labels", target="Label", many=True)])

    with pytest.raises(RelationValidationError, match="do not point at each other"):
        build_descriptor(post, tag, post.relations[0], tag.relations[0])


def test_to_one_pair_needs_a_foreign_key():
    user = _entity("User", [RelationField(name="profile", target="Profile")])
    profile = _entity("Profile", [RelationField(name="user", target="User")])

    with pytest.raises(RelationValidationError, match="must declare foreign key"):
        build_descriptor(user, profile, user.relations[0], profile.relations[0])


def test_foreign_key_must_reference_unique_columns():
    author = _entity("Author", [RelationField(name="books", target="Book", many=True)])
    book = _entity(
        "Book",
        [RelationField(name="author", target="Author", fields=["authorName"], references=["name"])],
        extra_fields=[ScalarField(name="authorName", type="string")],
    )
    author = author.model_copy(update={"fields": [*author.fields, ScalarField(name="name", type="string")]})

    with pytest.raises(RelationValidationError, match="neither its identifier nor a unique constraint"):
        build_descriptor(author, book, author.relations[0], book.relations[0])


def test_describe_names_both_sides(implicit_graph):
    description = implicit_graph.relation_for("Post", "categories").describe()

    assert "Category.posts" in description
    assert "Post.categories" in description
    assert "many_to_many_implicit" in description


def test_fields_through_third_entity_need_the_join_entity(explicit_graph):
    post = explicit_graph.get_entity("Post")
    category = explicit_graph.get_entity("Category")

    with pytest.raises(RelationValidationError, match="pass it as the join entity"):
        build_descriptor(category, post, category.get_relation("posts"), post.get_relation("categories"))

    descriptor = build_descriptor(
        category,
        post,
        category.get_relation("posts"),
        post.get_relation("categories"),
        join_entity=explicit_graph.get_entity("CategoriesOnPosts"),
    )
    assert descriptor == explicit_graph.relation_for("Category", "posts")
