"""Base store interface executing physical writes."""

import re
from abc import ABC, abstractmethod
from typing import Any

from relmap.core.introspection import TableInfo
from relmap.core.operations import CreateRow, InsertJoinRow, LocateRow, PhysicalWrite, UpdateRow

# Letters, digits and underscores, starting with a letter or underscore
_IDENTIFIER_PATTERN = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")


def validate_identifier(value: str, name: str = "identifier") -> str:
    """Validate that a value is a safe SQL identifier.

    Args:
        value: The identifier value to validate
        name: Human-readable name for error messages (e.g., "table name")

    Returns:
        The validated identifier (unchanged if valid)

    Raises:
        ValueError: If the identifier contains invalid characters
    """
    if not value:
        raise ValueError(f"Invalid {name}: cannot be empty")

    if not _IDENTIFIER_PATTERN.match(value):
        raise ValueError(
            f"Invalid {name}: '{value}'. "
            f"Identifiers must start with a letter or underscore and contain only letters, digits, and underscores."
        )

    return value


class BaseStore(ABC):
    """Abstract base class for stores executing translated writes.

    Implementations raise ``UniqueViolation`` when a unique index or
    constraint rejects a row and ``StoreError`` for any other failure;
    ``execute_writes`` maps those onto relation errors.
    """

    @abstractmethod
    def create(self, table: str, values: dict[str, Any]) -> dict[str, Any]:
        """Insert a row and return it as stored (including generated columns)."""
        raise NotImplementedError

    @abstractmethod
    def locate(self, table: str, where: dict[str, Any]) -> dict[str, Any]:
        """Return the row matching ``where``; raise StoreError if there is none."""
        raise NotImplementedError

    @abstractmethod
    def update(self, table: str, where: dict[str, Any], values: dict[str, Any]) -> dict[str, Any]:
        """Update the row matching ``where`` and return it; raise StoreError if there is none."""
        raise NotImplementedError

    def insert_join(self, table: str, values: dict[str, Any]) -> dict[str, Any]:
        """Insert an (A, B) pairing into an implicit join table."""
        return self.create(table, values)

    def apply(self, write: PhysicalWrite) -> dict[str, Any]:
        """Execute one physical write whose values are fully resolved."""
        if isinstance(write, InsertJoinRow):
            return self.insert_join(write.table, write.values)
        if isinstance(write, CreateRow):
            return self.create(write.table, write.values)
        if isinstance(write, UpdateRow):
            return self.update(write.table, write.where, write.values)
        if isinstance(write, LocateRow):
            return self.locate(write.table, write.where)
        raise TypeError(f"Unsupported write {write!r}")

    @abstractmethod
    def describe_tables(self) -> list[TableInfo]:
        """Describe every table with its columns and indexes."""
        raise NotImplementedError

    @abstractmethod
    def close(self) -> None:
        """Close database connection."""
        raise NotImplementedError

    @property
    @abstractmethod
    def dialect(self) -> str:
        """Get SQLGlot dialect name."""
        raise NotImplementedError
