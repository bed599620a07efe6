"""Schema adapters."""

from relmap.adapters.base import BaseAdapter
from relmap.adapters.yaml_schema import YAMLSchemaAdapter

__all__ = ["BaseAdapter", "YAMLSchemaAdapter"]
