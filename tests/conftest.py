"""Pytest configuration and fixtures."""

import pytest

from relmap.core.entity import Entity
from relmap.core.field import ScalarField
from relmap.core.relationship import RelationField
from relmap.core.schema_graph import SchemaGraph


def _identifier() -> ScalarField:
    return ScalarField(name="id", type="int", autoincrement=True)


def post_entity(target: str = "Category", **overrides) -> Entity:
    return Entity(
        name="Post",
        fields=[_identifier(), ScalarField(name="title", type="string")],
        relations=[RelationField(name="categories", target=target, many=True)],
        **overrides,
    )


def category_entity(target: str = "Post", **overrides) -> Entity:
    return Entity(
        name="Category",
        fields=[_identifier(), ScalarField(name="name", type="string")],
        relations=[RelationField(name="posts", target=target, many=True)],
        unique=[["name"]],
        **overrides,
    )


@pytest.fixture
def implicit_graph():
    """Post <-> Category through the system-managed _CategoryToPost table."""
    graph = SchemaGraph([post_entity(), category_entity()])
    graph.build()
    return graph


@pytest.fixture
def explicit_graph():
    """Post <-> Category through the CategoriesOnPosts join entity."""
    categories_on_posts = Entity(
        name="CategoriesOnPosts",
        primary_key=["postId", "categoryId"],
        fields=[
            ScalarField(name="postId", type="int"),
            ScalarField(name="categoryId", type="int"),
            ScalarField(name="assignedBy", type="string", optional=True),
        ],
        relations=[
            RelationField(name="post", target="Post", fields=["postId"], references=["id"]),
            RelationField(name="category", target="Category", fields=["categoryId"], references=["id"]),
        ],
    )
    graph = SchemaGraph(
        [
            post_entity(target="CategoriesOnPosts"),
            category_entity(target="CategoriesOnPosts"),
            categories_on_posts,
        ]
    )
    graph.build()
    return graph


@pytest.fixture
def author_graph():
    """Author 1:n Book, foreign key on Book."""
    author = Entity(
        name="Author",
        fields=[_identifier(), ScalarField(name="name", type="string")],
        relations=[RelationField(name="books", target="Book", many=True)],
    )
    book = Entity(
        name="Book",
        fields=[
            _identifier(),
            ScalarField(name="title", type="string"),
            ScalarField(name="authorId", type="int", optional=True),
        ],
        relations=[RelationField(name="author", target="Author", fields=["authorId"], optional=True)],
    )
    graph = SchemaGraph([author, book])
    graph.build()
    return graph


@pytest.fixture
def follow_graph():
    """Implicit self relation on User."""
    user = Entity(
        name="User",
        fields=[_identifier(), ScalarField(name="handle", type="string")],
        relations=[
            RelationField(name="following", target="User", many=True),
            RelationField(name="followers", target="User", many=True),
        ],
        unique=[["handle"]],
    )
    graph = SchemaGraph([user])
    graph.build()
    return graph
