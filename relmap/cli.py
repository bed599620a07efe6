"""CLI for relmap relation schemas."""

import json
import logging
from dataclasses import asdict
from pathlib import Path

import typer

from relmap import __version__
from relmap.config import RelmapConfig, find_config, load_config
from relmap.core.filters import Quantifier, RelationFilter
from relmap.core.introspection import introspect_relations
from relmap.core.schema_graph import SchemaGraph
from relmap.loaders import load_from_directory
from relmap.validation import SchemaError, ValidationError, validate_schema


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        typer.echo(f"relmap {__version__}")
        raise typer.Exit()


app = typer.Typer(
    help="relmap: relation resolution for entity schemas",
    no_args_is_help=True,
)

# Global state for config (set in callback, used in commands)
_loaded_config: RelmapConfig | None = None


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True, help="Show version"
    ),
    config: Path = typer.Option(None, "--config", "-c", help="Path to config file (relmap.yaml)"),
    verbose: bool = typer.Option(False, "--verbose", help="Log relation resolution details"),
):
    """relmap CLI.

    You can use a config file (relmap.yaml or relmap.json) to set default values.
    CLI arguments override config file values.
    """
    global _loaded_config

    if verbose:
        logging.basicConfig(level=logging.INFO)

    config_path = config or find_config()
    _loaded_config = None
    if config_path:
        try:
            _loaded_config = load_config(config_path)
            typer.echo(f"Loaded config from: {config_path}", err=True)
        except (OSError, ValueError) as e:
            typer.echo(f"Warning: Failed to load config: {e}", err=True)


def _schema_dir(directory: Path | None) -> Path:
    if directory is not None:
        return directory
    if _loaded_config:
        return Path(_loaded_config.schema_dir)
    return Path(".")


def _dialect(dialect: str | None) -> str:
    if dialect:
        return dialect
    if _loaded_config:
        return _loaded_config.dialect
    return "duckdb"


def _load_graph(directory: Path | None) -> SchemaGraph:
    directory = _schema_dir(directory)
    if not directory.exists():
        typer.echo(f"Error: Directory {directory} does not exist", err=True)
        raise typer.Exit(1)

    graph = SchemaGraph()
    try:
        load_from_directory(graph, directory)
        graph.build()
    except (SchemaError, ValueError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    if not graph.entities:
        typer.echo(f"No entities found in {directory}")
        raise typer.Exit(0)
    return graph


@app.command()
def validate(
    directory: Path = typer.Argument(None, help="Directory containing schema files (defaults to config or cwd)"),
):
    """
    Validate entity definitions and resolve every relation.

    Examples:
      relmap validate
      relmap validate ./schema
    """
    directory = _schema_dir(directory)
    if not directory.exists():
        typer.echo(f"Error: Directory {directory} does not exist", err=True)
        raise typer.Exit(1)

    graph = SchemaGraph()
    try:
        load_from_directory(graph, directory)
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    errors = validate_schema(graph)
    if errors:
        for error in errors:
            typer.echo(f"✗ {error}", err=True)
        raise typer.Exit(1)

    try:
        graph.build()
    except SchemaError as e:
        typer.echo(f"✗ {e}", err=True)
        raise typer.Exit(1)

    typer.echo(
        f"✓ {len(graph.entities)} entities, {len(graph.descriptors)} relations, "
        f"{len(graph.join_tables())} join tables"
    )


@app.command()
def relations(
    directory: Path = typer.Argument(None, help="Directory containing schema files (defaults to config or cwd)"),
):
    """
    List resolved relations and their physical representation.

    Examples:
      relmap relations ./schema
    """
    graph = _load_graph(directory)

    for descriptor in graph.descriptors:
        typer.echo(f"● {descriptor.describe()}")
        if descriptor.name:
            typer.echo(f"  Name: {descriptor.name}")


@app.command("join-tables")
def join_tables(
    directory: Path = typer.Argument(None, help="Directory containing schema files (defaults to config or cwd)"),
    as_json: bool = typer.Option(False, "--json", help="Print join table layouts as JSON"),
):
    """
    Show the synthesized join tables of implicit many-to-many relations.

    Examples:
      relmap join-tables ./schema
      relmap join-tables ./schema --json
    """
    graph = _load_graph(directory)
    specs = graph.join_tables()

    if as_json:
        typer.echo(json.dumps([asdict(spec) for spec in specs], indent=2))
        return

    if not specs:
        typer.echo("No implicit many-to-many relations")
        return

    for spec in specs:
        typer.echo(f"● {spec.table_name}")
        typer.echo(f"  {spec.column_a} -> {spec.table_a}.{spec.references_a}")
        typer.echo(f"  {spec.column_b} -> {spec.table_b}.{spec.references_b}")
        for index in spec.indexes:
            typer.echo(f"  {index}")
        typer.echo()


@app.command("filter")
def filter_command(
    directory: Path = typer.Argument(..., help="Directory containing schema files"),
    relation: str = typer.Argument(..., help="Relation field to filter on, as ENTITY.FIELD"),
    quantifier: Quantifier = typer.Argument(..., help="some, every or none"),
    where: str = typer.Argument(None, help="Condition on the related entity's fields"),
    join_where: str = typer.Option(None, "--join-where", help="Condition on join entity attributes"),
    dialect: str = typer.Option(None, "--dialect", help="SQL dialect (defaults to config or duckdb)"),
):
    """
    Translate a relation filter into a SQL condition.

    Examples:
      relmap filter ./schema Post.categories some "name = 'news'"
      relmap filter ./schema Post.categories every "published" --dialect postgres
    """
    entity, _, field = relation.partition(".")
    if not field:
        typer.echo(f"Error: Expected ENTITY.FIELD, got '{relation}'", err=True)
        raise typer.Exit(1)

    graph = _load_graph(directory)
    dialect = _dialect(dialect)
    relation_filter = RelationFilter(field=field, quantifier=quantifier, where=where, join_where=join_where)
    try:
        condition = graph.translate_filter(entity, relation_filter, dialect=dialect)
    except KeyError as e:
        typer.echo(f"Error: {e.args[0]}", err=True)
        raise typer.Exit(1)
    except ValidationError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    typer.echo(condition.sql(dialect=dialect, pretty=True))


@app.command()
def introspect(
    db_path: Path = typer.Argument(None, help="DuckDB database file (defaults to config connection)"),
    directory: Path = typer.Argument(None, help="Directory containing schema files (defaults to config or cwd)"),
):
    """
    Recognize join tables of an existing DuckDB database as implicit relations.

    Examples:
      relmap introspect data/app.duckdb ./schema
    """
    from relmap.db.duckdb import DuckDBStore

    if db_path is None and _loaded_config and _loaded_config.connection:
        db_path = Path(_loaded_config.connection.path)
    if db_path is None or not db_path.exists():
        typer.echo(f"Error: Database {db_path} does not exist", err=True)
        raise typer.Exit(1)

    graph = _load_graph(directory)
    store = DuckDBStore(str(db_path))
    try:
        recognized = introspect_relations(store.describe_tables(), graph)
    finally:
        store.close()

    if not recognized:
        typer.echo("No join tables recognized")
        return

    for table, descriptor in sorted(recognized.items()):
        typer.echo(f"● {table}: {descriptor.describe()}")


if __name__ == "__main__":
    app()
