"""Tests for the DuckDB store."""

import pytest

from relmap.core.introspection import introspect_relations
from relmap.db.duckdb import DuckDBStore
from relmap.validation import StoreError, UniqueViolation


@pytest.fixture
def store(implicit_graph):
    store = DuckDBStore()
    store.create_schema(implicit_graph)
    yield store
    store.close()


def test_store_memory():
    store = DuckDBStore(":memory:")
    assert store.dialect == "duckdb"
    assert store.raw_connection is not None


def test_store_from_url_variations():
    for url in ["duckdb:///:memory:", "duckdb:///"]:
        store = DuckDBStore.from_url(url)
        assert store.execute("SELECT 1").fetchone()[0] == 1


def test_store_from_url_rejects_other_schemes():
    with pytest.raises(ValueError, match="Invalid DuckDB URL"):
        DuckDBStore.from_url("postgres://localhost/db")


def test_create_returns_generated_identifier(store):
    first = store.create("Category", {"name": "news"})
    second = store.create("Category", {"name": "tech"})

    assert first == {"id": 1, "name": "news"}
    assert second["id"] == 2


def test_locate_and_update(store):
    store.create("Post", {"title": "Hi"})

    assert store.locate("Post", {"id": 1}) == {"id": 1, "title": "Hi"}
    assert store.update("Post", {"id": 1}, {"title": "Hello"}) == {"id": 1, "title": "Hello"}


def test_missing_rows_raise_store_error(store):
    with pytest.raises(StoreError, match="No row in Post"):
        store.locate("Post", {"id": 42})
    with pytest.raises(StoreError):
        store.update("Post", {"id": 42}, {"title": "x"})


def test_unique_constraint_raises_unique_violation(store):
    store.create("Category", {"name": "news"})

    with pytest.raises(UniqueViolation):
        store.create("Category", {"name": "news"})


def test_join_table_rejects_duplicate_pairs(store):
    store.create("Post", {"title": "Hi"})
    store.create("Category", {"name": "news"})
    store.insert_join("_CategoryToPost", {"A": 1, "B": 1})

    with pytest.raises(UniqueViolation):
        store.insert_join("_CategoryToPost", {"A": 1, "B": 1})


def test_join_table_indexes_are_created(store, implicit_graph):
    indexes = {index.name: index for index in store.get_indexes("_CategoryToPost")}

    assert indexes["_CategoryToPost_AB_unique"].columns == ("A", "B")
    assert indexes["_CategoryToPost_AB_unique"].unique
    assert indexes["_CategoryToPost_B_index"].columns == ("B",)
    assert not indexes["_CategoryToPost_B_index"].unique


def test_introspection_round_trip(store, implicit_graph):
    recognized = introspect_relations(store.describe_tables(), implicit_graph)

    assert recognized == {"_CategoryToPost": implicit_graph.relation_for("Post", "categories")}


def test_explicit_join_entity_table_uses_composite_key(explicit_graph):
    store = DuckDBStore()
    store.create_schema(explicit_graph)
    store.create("Post", {"title": "Hi"})
    store.create("Category", {"name": "news"})
    store.create("CategoriesOnPosts", {"postId": 1, "categoryId": 1, "assignedBy": "ann"})

    with pytest.raises(UniqueViolation):
        store.create("CategoriesOnPosts", {"postId": 1, "categoryId": 1})
    assert [c["column_name"] for c in store.get_columns("CategoriesOnPosts")] == ["postId", "categoryId", "assignedBy"]


def _foreign_keys(store, table):
    rows = store.execute(
        """
        SELECT constraint_column_names, referenced_table, referenced_column_names
        FROM duckdb_constraints()
        WHERE table_name = ? AND constraint_type = 'FOREIGN KEY'
    """,
        [table],
    ).fetchall()
    return sorted((list(columns), referenced, list(references)) for columns, referenced, references in rows)


def test_join_table_columns_reference_entity_identifiers(store):
    assert _foreign_keys(store, "_CategoryToPost") == [(["A"], "Category", ["id"]), (["B"], "Post", ["id"])]


def test_dangling_pairing_raises_store_error(store):
    with pytest.raises(StoreError) as excinfo:
        store.insert_join("_CategoryToPost", {"A": 99, "B": 42})

    assert not isinstance(excinfo.value, UniqueViolation)
    assert store.execute('SELECT COUNT(*) FROM "_CategoryToPost"').fetchone()[0] == 0


def test_entity_foreign_keys_reference_target_identifiers(explicit_graph, author_graph):
    store = DuckDBStore()
    store.create_schema(explicit_graph)

    assert _foreign_keys(store, "CategoriesOnPosts") == [
        (["categoryId"], "Category", ["id"]),
        (["postId"], "Post", ["id"]),
    ]
    with pytest.raises(StoreError):
        store.create("CategoriesOnPosts", {"postId": 1, "categoryId": 1})

    books = DuckDBStore()
    books.create_schema(author_graph)
    assert _foreign_keys(books, "Book") == [(["authorId"], "Author", ["id"])]


def test_self_relation_join_table_references_both_ends(follow_graph):
    store = DuckDBStore()
    store.create_schema(follow_graph)

    assert _foreign_keys(store, "_UserToUser") == [(["A"], "User", ["id"]), (["B"], "User", ["id"])]


def test_store_dialect_renders_find_queries(store):
    store.create("Post", {"title": "Hi"})

    assert store.dialect == "duckdb"
    assert store.find("Post") == [{"id": 1, "title": "Hi"}]
