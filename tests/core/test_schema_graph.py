"""Tests for schema graph resolution."""

import pytest

from relmap.core.descriptor import RelationKind
from relmap.core.entity import Entity
from relmap.core.field import ScalarField
from relmap.core.relationship import RelationField
from relmap.core.schema_graph import SchemaGraph
from relmap.validation import RelationValidationError, SchemaError


def test_explicit_graph_resolves_three_relations(explicit_graph):
    kinds = sorted(descriptor.kind.value for descriptor in explicit_graph.descriptors)

    assert kinds == ["many_to_many_explicit", "one_to_many", "one_to_many"]
    assert explicit_graph.join_entities == {"CategoriesOnPosts"}
    assert explicit_graph.join_tables() == []


def test_join_entity_side_stays_one_to_many(explicit_graph):
    descriptor = explicit_graph.relation_for("CategoriesOnPosts", "post")

    assert descriptor.kind is RelationKind.ONE_TO_MANY
    assert str(descriptor.side_a) == "Post.categories"


def test_entity_without_unique_keys_is_not_a_join_entity():
    link = Entity(
        name="Link",
        fields=[
            ScalarField(name="id", type="int"),
            ScalarField(name="postId", type="int"),
            ScalarField(name="tagId", type="int"),
        ],
        relations=[
            RelationField(name="post", target="Post", fields=["postId"]),
            RelationField(name="tag", target="Tag", fields=["tagId"]),
        ],
    )
    post = Entity(
        name="Post",
        fields=[ScalarField(name="id", type="int")],
        relations=[RelationField(name="links", target="Link", many=True)],
    )
    tag = Entity(
        name="Tag",
        fields=[ScalarField(name="id", type="int")],
        relations=[RelationField(name="links", target="Link", many=True)],
    )
    graph = SchemaGraph([link, post, tag])

    assert graph.join_entities == set()
    assert graph.relation_for("Post", "links").kind is RelationKind.ONE_TO_MANY


def test_missing_back_relation_is_rejected():
    post = Entity(
        name="Post",
        fields=[ScalarField(name="id", type="int")],
        relations=[RelationField(name="tags", target="Tag", many=True)],
    )
    tag = Entity(name="Tag", fields=[ScalarField(name="id", type="int")])

    with pytest.raises(RelationValidationError, match="no opposite relation field"):
        SchemaGraph([post, tag]).build()


def test_unknown_target_fails_validation():
    post = Entity(
        name="Post",
        fields=[ScalarField(name="id", type="int")],
        relations=[RelationField(name="tags", target="Tag", many=True)],
    )

    with pytest.raises(SchemaError, match="unknown entity 'Tag'"):
        SchemaGraph([post]).build()


def test_duplicate_entity_is_rejected(implicit_graph):
    with pytest.raises(ValueError, match="already exists"):
        implicit_graph.add_entity(implicit_graph.get_entity("Post"))


def test_adding_entity_rebuilds_relations(implicit_graph):
    assert len(implicit_graph.descriptors) == 1

    implicit_graph.add_entity(Entity(name="Tag", fields=[ScalarField(name="id", type="int")]))

    assert len(implicit_graph.descriptors) == 1
    assert set(implicit_graph.entities) == {"Category", "Post", "Tag"}


def test_unknown_lookups_raise_key_error(implicit_graph):
    with pytest.raises(KeyError):
        implicit_graph.get_entity("Tag")
    with pytest.raises(KeyError):
        implicit_graph.relation_for("Post", "tags")


def test_build_logs_summary(implicit_graph, caplog):
    with caplog.at_level("INFO", logger="relmap.core.schema_graph"):
        implicit_graph.build()

    assert "Resolved 1 relation(s) across 2 entities (1 join table(s))" in caplog.text
