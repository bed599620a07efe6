"""Entity definitions."""

from pydantic import BaseModel, ConfigDict, Field

from relmap.core.field import ScalarField
from relmap.core.relationship import RelationField


class Entity(BaseModel):
    """Entity (record type) definition.

    Entities map to physical tables. Exactly one field, or a composite of
    fields, identifies a row.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Unique entity name")
    table: str | None = Field(None, description="Physical table name (defaults to name)")
    description: str | None = Field(None, description="Human-readable description")

    primary_key: str | list[str] | None = Field(default="id", description="Identifier field(s)")

    fields: list[ScalarField] = Field(default_factory=list, description="Scalar field definitions")
    relations: list[RelationField] = Field(default_factory=list, description="Relation fields to other entities")
    unique: list[list[str]] = Field(default_factory=list, description="Composite unique constraints")

    def __hash__(self) -> int:
        return hash(self.name)

    @property
    def table_name(self) -> str:
        return self.table or self.name

    @property
    def primary_key_columns(self) -> list[str]:
        """Get identifier fields as a list (normalizes single string to list)."""
        if self.primary_key is None:
            return []
        if isinstance(self.primary_key, str):
            return [self.primary_key]
        return list(self.primary_key)

    @property
    def single_identifier(self) -> ScalarField | None:
        """Get the identifier field if the identifier is exactly one scalar field."""
        columns = self.primary_key_columns
        if len(columns) != 1:
            return None
        return self.get_field(columns[0])

    def get_field(self, name: str) -> ScalarField | None:
        """Get scalar field by name."""
        for field in self.fields:
            if field.name == name:
                return field
        return None

    def get_relation(self, name: str) -> RelationField | None:
        """Get relation field by name."""
        for relation in self.relations:
            if relation.name == name:
                return relation
        return None

    def relations_to(self, target: str) -> list[RelationField]:
        """Get all relation fields pointing at `target`."""
        return [r for r in self.relations if r.target == target]

    def column_for(self, name: str) -> str:
        """Map a field name to its physical column (unknown names pass through)."""
        field = self.get_field(name)
        return field.column_name if field else name

    def is_unique_on(self, columns: list[str]) -> bool:
        """Whether the identifier or a unique constraint covers exactly `columns`."""
        wanted = set(columns)
        if set(self.primary_key_columns) == wanted:
            return True
        return any(set(constraint) == wanted for constraint in self.unique)
