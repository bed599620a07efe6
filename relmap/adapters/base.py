"""Base adapter interface for importing entity schemas."""

from abc import ABC, abstractmethod
from pathlib import Path

from relmap.core.schema_graph import SchemaGraph
from relmap.validation import validate_schema


class BaseAdapter(ABC):
    """Base adapter for importing/exporting entity schemas from external formats."""

    @abstractmethod
    def parse(self, source: str | Path) -> SchemaGraph:
        """Parse external format into a schema graph.

        Args:
            source: Path to file containing entity definitions

        Returns:
            Schema graph with imported entities
        """
        raise NotImplementedError

    def export(self, graph: SchemaGraph, output_path: str | Path) -> None:
        """Export schema graph to external format.

        Raises:
            NotImplementedError: If export is not supported by this adapter
        """
        raise NotImplementedError(f"{self.__class__.__name__} does not support export")

    def validate(self, graph: SchemaGraph) -> list[str]:
        """Validate imported schema graph.

        Args:
            graph: Schema graph to validate

        Returns:
            List of validation errors (empty if valid)
        """
        return validate_schema(graph)
