"""Auto-discovery loaders for entity schemas."""

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError as PydanticValidationError

from relmap.adapters.yaml_schema import YAMLSchemaAdapter
from relmap.core.schema_graph import SchemaGraph


def load_from_directory(graph: SchemaGraph, directory: str | Path) -> None:
    """Load all entity definitions from a directory.

    Every ``*.yml``/``*.yaml`` file declaring ``entities:`` is parsed; files
    that fail to parse are skipped with a warning. Relations are resolved
    once all entities are in the graph.

    Args:
        graph: SchemaGraph to add entities to
        directory: Directory containing schema files

    Example:
        >>> graph = SchemaGraph()
        >>> load_from_directory(graph, "schema/")
        >>> graph.build()
    """
    directory = Path(directory)
    if not directory.exists():
        raise ValueError(f"Directory {directory} does not exist")

    adapter = YAMLSchemaAdapter()
    for file_path in sorted(directory.rglob("*")):
        if not file_path.is_file() or file_path.suffix.lower() not in (".yml", ".yaml"):
            continue
        if "entities:" not in file_path.read_text():
            continue

        try:
            parsed = adapter.parse(file_path)
        except (yaml.YAMLError, PydanticValidationError, TypeError) as e:
            logging.warning("Could not parse %s: %s", file_path, e)
            continue

        for entity in parsed.entities.values():
            graph.add_entity(entity)


def load_schema(path: str | Path) -> SchemaGraph:
    """Load a schema file or directory and resolve its relations.

    Raises:
        SchemaError: If any relation is invalid
    """
    path = Path(path)
    if path.is_dir():
        graph = SchemaGraph()
        load_from_directory(graph, path)
    else:
        graph = YAMLSchemaAdapter().parse(path)
    graph.build()
    return graph
