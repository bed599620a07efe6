"""Tests for the YAML schema adapter."""

import pytest
import yaml

from relmap.adapters.yaml_schema import YAMLSchemaAdapter, substitute_env_vars
from relmap.core.descriptor import RelationKind

SCHEMA = """
entities:
  - name: Post
    table: ${TABLE_PREFIX}_posts
    fields:
      id: {type: int, autoincrement: true}
      title: string
    relations:
      - {name: categories, target: "Category[]"}
  - name: Category
    table: ${CATEGORY_TABLE:-categories}
    fields:
      - {name: id, type: int, autoincrement: true}
      - {name: name, type: string}
    unique: [[name]]
    relations:
      - {name: posts, target: "Post[]"}
"""


@pytest.fixture
def schema_file(tmp_path, monkeypatch):
    monkeypatch.setenv("TABLE_PREFIX", "blog")
    monkeypatch.delenv("CATEGORY_TABLE", raising=False)
    path = tmp_path / "schema.yml"
    path.write_text(SCHEMA)
    return path


def test_parse_entities_and_relations(schema_file):
    graph = YAMLSchemaAdapter().parse(schema_file)

    post = graph.get_entity("Post")
    assert post.table_name == "blog_posts"
    assert [f.name for f in post.fields] == ["id", "title"]
    assert post.get_field("id").autoincrement
    assert post.get_relation("categories").many
    assert post.get_relation("categories").target == "Category"
    assert graph.get_entity("Category").table_name == "categories"
    assert graph.relation_for("Post", "categories").kind is RelationKind.MANY_TO_MANY_IMPLICIT
    assert graph.join_tables()[0].table_name == "_CategoryToPost"
    assert graph.join_tables()[0].table_a == "categories"


def test_foreign_key_shorthand(tmp_path):
    path = tmp_path / "books.yml"
    path.write_text(
        """
entities:
  - name: Author
    fields: {id: int}
    relations: [{name: books, target: "Book[]"}]
  - name: Book
    fields: {id: int, authorId: int}
    relations: [{name: author, target: Author, fields: authorId, references: id}]
"""
    )

    graph = YAMLSchemaAdapter().parse(path)

    assert graph.get_entity("Book").get_relation("author").fields == ["authorId"]
    assert graph.relation_for("Author", "books").foreign_key.fields == ("authorId",)


def test_empty_file_gives_empty_graph(tmp_path):
    path = tmp_path / "empty.yml"
    path.write_text("")

    assert YAMLSchemaAdapter().parse(path).entities == {}


def test_export_writes_parseable_yaml(schema_file, tmp_path):
    adapter = YAMLSchemaAdapter()
    graph = adapter.parse(schema_file)
    output = tmp_path / "out" / "schema.yml"

    adapter.export(graph, output)

    data = yaml.safe_load(output.read_text())
    assert [e["name"] for e in data["entities"]] == ["Post", "Category"]
    assert data["entities"][1]["unique"] == [["name"]]
    assert adapter.parse(output).join_tables()[0].table_name == "_CategoryToPost"


def test_validate_reports_unknown_targets(tmp_path):
    path = tmp_path / "broken.yml"
    path.write_text(
        "entities:\n  - name: Post\n    fields: {id: int}\n    relations: [{name: tags, target: 'Tag[]'}]\n"
    )
    adapter = YAMLSchemaAdapter()

    errors = adapter.validate(adapter.parse(path))

    assert errors == ["Entity 'Post': relation 'tags' targets unknown entity 'Tag'"]


def test_substitute_env_vars(monkeypatch):
    monkeypatch.setenv("SCHEMA", "app")
    monkeypatch.delenv("MISSING", raising=False)

    assert substitute_env_vars("table: ${SCHEMA}_posts") == "table: app_posts"
    assert substitute_env_vars("table: $SCHEMA.posts") == "table: app.posts"
    assert substitute_env_vars("table: ${MISSING:-posts}") == "table: posts"
    assert substitute_env_vars("table: ${MISSING}") == "table: ${MISSING}"
