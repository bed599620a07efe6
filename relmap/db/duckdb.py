"""DuckDB reference store."""

import logging
import re
from typing import Any

import duckdb
from sqlglot import exp

from relmap.core.entity import Entity
from relmap.core.introspection import TableInfo
from relmap.core.join_table import IndexSpec
from relmap.core.schema_graph import SchemaGraph
from relmap.db.base import BaseStore, validate_identifier
from relmap.validation import StoreError, UniqueViolation

logger = logging.getLogger(__name__)

_COLUMN_TYPES = {
    "int": "INTEGER",
    "bigint": "BIGINT",
    "string": "VARCHAR",
    "boolean": "BOOLEAN",
    "float": "DOUBLE",
    "decimal": "DECIMAL(18, 4)",
    "datetime": "TIMESTAMP",
    "date": "DATE",
    "json": "VARCHAR",
}

# Column list of a CREATE INDEX statement: ... ON "table"("A", "B");
_INDEX_COLUMNS = re.compile(r"\(([^()]*)\)\s*;?\s*$")


def _quote(name: str) -> str:
    return exp.to_identifier(validate_identifier(name), quoted=True).sql(dialect="duckdb")


def _conditions(where: dict[str, Any]) -> str:
    return " AND ".join(f"{_quote(column)} = ?" for column in where)


def _foreign_key(columns: list[str], table: str, references: list[str]) -> str:
    local = ", ".join(_quote(column) for column in columns)
    remote = ", ".join(_quote(column) for column in references)
    return f"FOREIGN KEY ({local}) REFERENCES {_quote(table)} ({remote})"


def _creation_order(graph: SchemaGraph) -> list[Entity]:
    """Order entities so every foreign key target precedes its referencing entity where possible."""
    ordered: list[Entity] = []
    visiting: set[str] = set()
    done: set[str] = set()

    def visit(name: str) -> None:
        if name in done or name in visiting:
            return
        visiting.add(name)
        entity = graph.get_entity(name)
        for relation in entity.relations:
            if relation.has_foreign_key and not relation.many:
                visit(relation.target)
        visiting.discard(name)
        done.add(name)
        ordered.append(entity)

    for name in graph.entities:
        visit(name)
    return ordered


class DuckDBStore(BaseStore):
    """DuckDB store.

    Creates entity and join tables for a schema graph, executes translated
    writes, and reports tables back for introspection.
    """

    def __init__(self, path: str = ":memory:"):
        """Initialize DuckDB store.

        Args:
            path: Database file path or ":memory:" for in-memory database
        """
        self.conn = duckdb.connect(path)

    @classmethod
    def from_url(cls, url: str) -> "DuckDBStore":
        """Create store from connection URL (e.g. "duckdb:///:memory:" or "duckdb:///path/to/db.duckdb")."""
        if not url.startswith("duckdb://"):
            raise ValueError(f"Invalid DuckDB URL: {url}")

        db_path = url[len("duckdb://") :]
        if db_path in ("/:memory:", ":memory:", "", "/"):
            db_path = ":memory:"
        return cls(db_path)

    def execute(self, sql: str, params: list | None = None) -> Any:
        """Execute SQL and return the DuckDB connection cursor."""
        return self.conn.execute(sql, params or [])

    def create_schema(self, graph: SchemaGraph) -> None:
        """Create tables for every entity and implicit join table of a graph.

        Entity tables are created referenced-first so foreign keys can point at
        them. A foreign key that would close a cycle between entities, or point
        back at its own table, is left out.
        """
        created: set[str] = set()
        for entity in _creation_order(graph):
            self._create_entity_table(entity, graph, created)
            created.add(entity.name)

        for spec in graph.join_tables():
            type_a = self._identifier_type(graph.get_entity(spec.entity_a))
            type_b = self._identifier_type(graph.get_entity(spec.entity_b))
            table = _quote(spec.table_name)
            definitions = [
                f"{_quote(spec.column_a)} {type_a} NOT NULL",
                f"{_quote(spec.column_b)} {type_b} NOT NULL",
                _foreign_key([spec.column_a], spec.table_a, [spec.references_a]),
                _foreign_key([spec.column_b], spec.table_b, [spec.references_b]),
            ]
            self.conn.execute(f"CREATE TABLE {table} ({', '.join(definitions)})")
            for index in spec.indexes:
                kind = "UNIQUE INDEX" if index.unique else "INDEX"
                columns = ", ".join(_quote(column) for column in index.columns)
                self.conn.execute(f"CREATE {kind} {_quote(index.name)} ON {table} ({columns})")
            logger.debug("Created join table %s", spec.table_name)

    def _identifier_type(self, entity: Entity) -> str:
        return _COLUMN_TYPES[entity.single_identifier.type]

    def _create_entity_table(self, entity: Entity, graph: SchemaGraph, created: set[str]) -> None:
        definitions = []
        for field in entity.fields:
            parts = [_quote(field.column_name), _COLUMN_TYPES[field.type]]
            if field.autoincrement:
                sequence = f"{entity.table_name}_{field.column_name}_seq".lower()
                self.conn.execute(f"CREATE SEQUENCE {_quote(sequence)}")
                parts.append(f"DEFAULT nextval('{sequence}')")
            elif field.default_sql:
                parts.append(f"DEFAULT {field.default_sql}")
            elif field.default is not None:
                parts.append(f"DEFAULT {exp.convert(field.default).sql(dialect='duckdb')}")
            if not field.optional:
                parts.append("NOT NULL")
            definitions.append(" ".join(parts))

        keys = ", ".join(_quote(entity.column_for(name)) for name in entity.primary_key_columns)
        definitions.append(f"PRIMARY KEY ({keys})")
        for constraint in entity.unique:
            columns = ", ".join(_quote(entity.column_for(name)) for name in constraint)
            definitions.append(f"UNIQUE ({columns})")

        for relation in entity.relations:
            if not relation.has_foreign_key or relation.many:
                continue
            if relation.target not in created:
                logger.debug(
                    "Skipping foreign key %s.%s: '%s' not created yet", entity.name, relation.name, relation.target
                )
                continue
            target = graph.get_entity(relation.target)
            references = relation.references or target.primary_key_columns
            if not target.is_unique_on(references):
                continue
            definitions.append(
                _foreign_key(
                    [entity.column_for(name) for name in relation.foreign_key_columns],
                    target.table_name,
                    [target.column_for(name) for name in references],
                )
            )

        self.conn.execute(f"CREATE TABLE {_quote(entity.table_name)} ({', '.join(definitions)})")
        logger.debug("Created table %s", entity.table_name)

    def _fetch_row(self, sql: str, params: list, missing: str) -> dict[str, Any]:
        try:
            cursor = self.conn.execute(sql, params)
            row = cursor.fetchone()
        except duckdb.ConstraintException as e:
            if "duplicate key" in str(e).lower():
                raise UniqueViolation(str(e)) from e
            raise StoreError(str(e)) from e
        except duckdb.Error as e:
            raise StoreError(str(e)) from e

        if row is None:
            raise StoreError(missing)
        names = [column[0] for column in cursor.description]
        return dict(zip(names, row))

    def create(self, table: str, values: dict[str, Any]) -> dict[str, Any]:
        if values:
            columns = ", ".join(_quote(column) for column in values)
            placeholders = ", ".join("?" for _ in values)
            sql = f"INSERT INTO {_quote(table)} ({columns}) VALUES ({placeholders}) RETURNING *"
        else:
            sql = f"INSERT INTO {_quote(table)} DEFAULT VALUES RETURNING *"
        return self._fetch_row(sql, list(values.values()), f"Insert into {table} returned no row")

    def locate(self, table: str, where: dict[str, Any]) -> dict[str, Any]:
        sql = f"SELECT * FROM {_quote(table)} WHERE {_conditions(where)} LIMIT 1"
        return self._fetch_row(sql, list(where.values()), f"No row in {table} matching {where}")

    def update(self, table: str, where: dict[str, Any], values: dict[str, Any]) -> dict[str, Any]:
        assignments = ", ".join(f"{_quote(column)} = ?" for column in values)
        sql = f"UPDATE {_quote(table)} SET {assignments} WHERE {_conditions(where)} RETURNING *"
        params = list(values.values()) + list(where.values())
        return self._fetch_row(sql, params, f"No row in {table} matching {where}")

    def find(self, table: str, predicate: exp.Expression | None = None, alias: str | None = None) -> list[dict]:
        """Select rows of a table, optionally filtered by a translated relation predicate.

        Args:
            table: Table to read
            predicate: Condition, e.g. from ``translate_filter``
            alias: Alias the predicate uses for ``table`` (defaults to the table name)
        """
        source = exp.Table(this=exp.to_identifier(table, quoted=True))
        if alias:
            source.set("alias", exp.TableAlias(this=exp.to_identifier(alias, quoted=True)))
        select = exp.select("*").from_(source)
        if predicate is not None:
            select = select.where(predicate)

        cursor = self.conn.execute(select.sql(dialect=self.dialect))
        names = [column[0] for column in cursor.description]
        return [dict(zip(names, row)) for row in cursor.fetchall()]

    def get_tables(self) -> list[dict]:
        """Get list of tables in database."""
        rows = self.conn.execute(
            """
            SELECT table_name, schema_name as schema
            FROM duckdb_tables()
            WHERE schema_name NOT IN ('information_schema', 'pg_catalog')
            ORDER BY table_name
        """
        ).fetchall()
        return [{"table_name": row[0], "schema": row[1]} for row in rows]

    def get_columns(self, table_name: str) -> list[dict]:
        """Get columns for a table in declaration order."""
        rows = self.conn.execute(
            """
            SELECT column_name, data_type
            FROM duckdb_columns()
            WHERE table_name = ?
            ORDER BY column_index
        """,
            [table_name],
        ).fetchall()
        return [{"column_name": row[0], "data_type": row[1]} for row in rows]

    def get_indexes(self, table_name: str) -> list[IndexSpec]:
        """Get explicitly created indexes of a table."""
        rows = self.conn.execute(
            "SELECT index_name, is_unique, sql FROM duckdb_indexes() WHERE table_name = ? ORDER BY index_name",
            [table_name],
        ).fetchall()

        indexes = []
        for name, unique, sql in rows:
            match = _INDEX_COLUMNS.search(sql or "")
            if not match:
                continue
            columns = tuple(column.strip().strip('"') for column in match.group(1).split(","))
            indexes.append(IndexSpec(name=name, table=table_name, columns=columns, unique=bool(unique)))
        return indexes

    def describe_tables(self) -> list[TableInfo]:
        return [
            TableInfo(
                name=table["table_name"],
                columns=[column["column_name"] for column in self.get_columns(table["table_name"])],
                indexes=self.get_indexes(table["table_name"]),
            )
            for table in self.get_tables()
        ]

    def close(self) -> None:
        """Close database connection."""
        self.conn.close()

    @property
    def dialect(self) -> str:
        return "duckdb"

    @property
    def raw_connection(self) -> Any:
        """Get underlying DuckDB connection."""
        return self.conn
