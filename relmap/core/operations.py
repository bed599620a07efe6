"""Nested write operation trees and the physical writes they translate into."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union


@dataclass
class Create:
    """Create a row, optionally with nested relation operations.

    Under an explicit many-to-many field, ``data`` holds the join entity's own
    attributes and ``relations`` holds one operation on the join entity's
    relation field towards the related entity.
    """

    data: dict[str, Any] = field(default_factory=dict)
    relations: dict[str, list["NestedOperation"]] = field(default_factory=dict)


@dataclass
class Connect:
    """Link an existing row selected by its identifier or a unique field set."""

    where: dict[str, Any]


@dataclass
class Update:
    """Update (or just select) an existing root row and write nested relations."""

    where: dict[str, Any]
    data: dict[str, Any] = field(default_factory=dict)
    relations: dict[str, list["NestedOperation"]] = field(default_factory=dict)


NestedOperation = Union[Create, Connect]


@dataclass
class WriteTree:
    """A nested write request rooted at one entity."""

    entity: str
    op: Create | Update


class WriteRole(str, Enum):
    """Why a physical write was emitted."""

    ROOT = "root"
    RELATED = "related"
    JOIN = "join"


@dataclass(frozen=True)
class RowRef:
    """Placeholder for a column of the row produced by an earlier write."""

    write: int
    column: str

    def __str__(self) -> str:
        return f"${self.write}.{self.column}"


def _format_values(values: dict[str, Any]) -> str:
    return ", ".join(
        f"{column}={value}" if isinstance(value, RowRef) else f"{column}={value!r}" for column, value in values.items()
    )


@dataclass(frozen=True)
class CreateRow:
    """Insert one entity row (related row, root row or explicit join row)."""

    entity: str
    table: str
    values: dict[str, Any]
    role: WriteRole = WriteRole.RELATED
    pairing: tuple[str, str] | None = None
    key_columns: tuple[str, ...] = ()

    def __str__(self) -> str:
        return f"CREATE {self.table} ({_format_values(self.values)}) [{self.role.value}]"


@dataclass(frozen=True)
class LocateRow:
    """Look up an existing row; fails if it does not exist."""

    entity: str
    table: str
    where: dict[str, Any]
    role: WriteRole = WriteRole.RELATED

    def __str__(self) -> str:
        return f"LOCATE {self.table} WHERE ({_format_values(self.where)}) [{self.role.value}]"


@dataclass(frozen=True)
class UpdateRow:
    """Update an existing row."""

    entity: str
    table: str
    where: dict[str, Any]
    values: dict[str, Any]
    role: WriteRole = WriteRole.RELATED

    def __str__(self) -> str:
        values, where = _format_values(self.values), _format_values(self.where)
        return f"UPDATE {self.table} SET ({values}) WHERE ({where}) [{self.role.value}]"


@dataclass(frozen=True)
class InsertJoinRow:
    """Insert one (A, B) pairing into an implicit join table."""

    table: str
    values: dict[str, Any]
    pairing: tuple[str, str]
    role: WriteRole = WriteRole.JOIN

    def __str__(self) -> str:
        return f"LINK {self.table} ({_format_values(self.values)})"


PhysicalWrite = Union[CreateRow, LocateRow, UpdateRow, InsertJoinRow]


def is_join_write(write: PhysicalWrite) -> bool:
    """Whether a write materializes a relation pairing."""
    return write.role is WriteRole.JOIN
