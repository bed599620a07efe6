"""YAML entity schema adapter."""

import os
import re
from pathlib import Path
from typing import Any

import yaml

from relmap.adapters.base import BaseAdapter
from relmap.core.entity import Entity
from relmap.core.field import ScalarField
from relmap.core.relationship import RelationField
from relmap.core.schema_graph import SchemaGraph

_BRACED_VAR = re.compile(r"\$\{([^}]+)\}")
_SIMPLE_VAR = re.compile(r"\$([A-Z_][A-Z0-9_]*)")


def substitute_env_vars(content: str) -> str:
    """Substitute environment variables in YAML content.

    Supports ``${VAR}``, ``${VAR:-default}`` and ``$VAR``. Unset variables
    without a default are left untouched.

    Examples:
        >>> os.environ['SCHEMA_PREFIX'] = 'app'
        >>> substitute_env_vars('table: ${SCHEMA_PREFIX}_posts')
        'table: app_posts'
        >>> substitute_env_vars('table: ${MISSING:-posts}')
        'table: posts'
    """

    def braced(match: re.Match) -> str:
        name, has_default, default = match.group(1).partition(":-")
        value = os.environ.get(name)
        if value is not None:
            return value
        return default if has_default else match.group(0)

    def simple(match: re.Match) -> str:
        return os.environ.get(match.group(1), match.group(0))

    return _SIMPLE_VAR.sub(simple, _BRACED_VAR.sub(braced, content))


class YAMLSchemaAdapter(BaseAdapter):
    """Adapter for the relmap YAML schema format.

    ```yaml
    entities:
      - name: Post
        primary_key: id
        fields:
          - {name: id, type: int, autoincrement: true}
          - {name: title, type: string}
        relations:
          - {name: categories, target: "Category[]"}
    ```

    ``fields`` may also be a mapping of field name to type, and a relation
    target ending in ``[]`` marks a list field.
    """

    def parse(self, source: str | Path) -> SchemaGraph:
        """Parse a YAML schema file into a schema graph.

        Args:
            source: Path to YAML file

        Returns:
            Schema graph with the file's entities (relations are resolved lazily)
        """
        graph = SchemaGraph()

        with open(source) as f:
            content = f.read()

        data = yaml.safe_load(substitute_env_vars(content))
        if not data:
            return graph

        for entity_def in data.get("entities", []):
            graph.add_entity(self._parse_entity(entity_def))

        return graph

    def export(self, graph: SchemaGraph, output_path: str | Path) -> None:
        """Export schema graph to YAML.

        Args:
            graph: Schema graph to export
            output_path: Path to output YAML file
        """
        output_path = Path(output_path)
        data = {"entities": [self._export_entity(entity) for entity in graph.entities.values()]}

        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, "w") as f:
            yaml.dump(data, f, sort_keys=False, default_flow_style=False)

    def _parse_entity(self, entity_def: dict) -> Entity:
        fields_def = entity_def.get("fields", [])
        if isinstance(fields_def, dict):
            # Shorthand: {id: int, title: {type: string, optional: true}}
            fields_def = [
                {"name": name, **(spec if isinstance(spec, dict) else {"type": spec})}
                for name, spec in fields_def.items()
            ]

        return Entity(
            name=entity_def.get("name"),
            table=entity_def.get("table"),
            description=entity_def.get("description"),
            primary_key=entity_def.get("primary_key", "id"),
            fields=[ScalarField(**field_def) for field_def in fields_def],
            relations=[self._parse_relation(relation_def) for relation_def in entity_def.get("relations", [])],
            unique=entity_def.get("unique", []),
        )

    def _parse_relation(self, relation_def: dict) -> RelationField:
        relation_def = dict(relation_def)
        target = relation_def.get("target", "")
        if isinstance(target, str) and target.endswith("[]"):
            relation_def["target"] = target[:-2]
            relation_def["many"] = True
        for key in ("fields", "references"):
            if isinstance(relation_def.get(key), str):
                relation_def[key] = [relation_def[key]]
        return RelationField(**relation_def)

    def _export_entity(self, entity: Entity) -> dict[str, Any]:
        result: dict[str, Any] = {"name": entity.name}
        if entity.table:
            result["table"] = entity.table
        if entity.description:
            result["description"] = entity.description
        result["primary_key"] = entity.primary_key
        result["fields"] = [field.model_dump(exclude_defaults=True) for field in entity.fields]
        if entity.relations:
            result["relations"] = [relation.model_dump(exclude_defaults=True) for relation in entity.relations]
        if entity.unique:
            result["unique"] = [list(constraint) for constraint in entity.unique]
        return result
